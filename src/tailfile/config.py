import codecs
import numbers
from dataclasses import dataclass, field, fields
from typing import Any, Mapping, Optional

from .errors import TailTypeError, TailValueError


@dataclass(frozen=True)
class TailOptions:
    # Steady-state cadence between polls of the followed path
    poll_file_interval_ms: float = 1000
    # Faster cadence used while the path is missing
    poll_failure_retry_ms: float = 200
    # Consecutive "not found" polls before the session gives up for good
    max_poll_failures: int = 10
    # None = end-of-file at open time; otherwise an absolute byte offset
    start_pos: Optional[int] = None
    # None yields bytes; a codec name yields decoded text
    encoding: Optional[str] = None
    # Passed straight through to aiofiles.open (buffering, opener, ...)
    read_stream_opts: Mapping[str, Any] = field(default_factory=dict)
    # Bytes per read call
    chunk_size: int = 64 * 1024
    # Buffered chunks above which reading suspends until the consumer pulls
    high_water_mark: int = 16

    def __post_init__(self) -> None:
        _check_duration("poll_file_interval_ms", self.poll_file_interval_ms, "EPOLLINTERVAL")
        _check_duration("poll_failure_retry_ms", self.poll_failure_retry_ms, "EPOLLRETRY")

        if not _is_number(self.max_poll_failures):
            raise TailTypeError(
                "max_poll_failures must be a number", code="EMAXPOLLFAIL", meta={"got": self.max_poll_failures}
            )
        if self.max_poll_failures < 1 or int(self.max_poll_failures) != self.max_poll_failures:
            raise TailValueError(
                "max_poll_failures must be an integer >= 1", code="EMAXPOLLFAIL", meta={"got": self.max_poll_failures}
            )
        object.__setattr__(self, "max_poll_failures", int(self.max_poll_failures))

        if not isinstance(self.read_stream_opts, Mapping):
            raise TailTypeError(
                "read_stream_opts must be a mapping",
                code="EREADSTREAMOPTS",
                meta={"got": type(self.read_stream_opts).__name__},
            )
        # Mode and file are owned by the session
        clash = {"file", "mode"} & set(self.read_stream_opts)
        if clash:
            raise TailValueError(
                f"read_stream_opts may not override {', '.join(sorted(clash))}",
                code="EREADSTREAMOPTS",
                meta={"got": sorted(clash)},
            )
        object.__setattr__(self, "read_stream_opts", dict(self.read_stream_opts))

        if self.start_pos is not None:
            if isinstance(self.start_pos, bool) or not _is_number(self.start_pos):
                raise TailTypeError(
                    "start_pos must be an integer >= 0", code="ESTARTPOS", meta={"got": type(self.start_pos).__name__}
                )
            if self.start_pos < 0 or int(self.start_pos) != self.start_pos:
                raise TailValueError("start_pos must be an integer >= 0", code="ESTARTPOS", meta={"got": self.start_pos})
            object.__setattr__(self, "start_pos", int(self.start_pos))

        if self.encoding is not None:
            if not isinstance(self.encoding, str):
                raise TailTypeError("encoding must be a string", code="EENCODING", meta={"got": type(self.encoding).__name__})
            try:
                codecs.lookup(self.encoding)
            except LookupError:
                raise TailValueError(f"unknown encoding: {self.encoding}", code="EENCODING", meta={"got": self.encoding}) from None

        for name in ("chunk_size", "high_water_mark"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TailTypeError(f"{name} must be an integer", code="ECHUNKSIZE", meta={"got": value})
            if value < 1:
                raise TailValueError(f"{name} must be >= 1", code="ECHUNKSIZE", meta={"got": value})

    @property
    def poll_interval_s(self) -> float:
        return self.poll_file_interval_ms / 1000.0

    @property
    def retry_interval_s(self) -> float:
        return self.poll_failure_retry_ms / 1000.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "TailOptions":
        merged = dict(data or {})
        merged.update(overrides)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(merged) - known)
        if unknown:
            raise TailTypeError(f"unknown option(s): {', '.join(unknown)}", code="EOPTION", meta={"got": unknown})
        return cls(**merged)


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _check_duration(name: str, value: Any, code: str) -> None:
    if not _is_number(value):
        raise TailTypeError(f"{name} must be a number", code=code, meta={"got": value})
    if value < 0:
        raise TailValueError(f"{name} must be >= 0", code=code, meta={"got": value})


__all__ = ["TailOptions"]
