"""Error taxonomy for tailfile.

Validation problems raise synchronously from the constructor. Everything that
goes wrong once a session is running is delivered on the signal channel
instead (``error`` for fatal conditions, ``tail_error`` for recoverable reads).
"""
from __future__ import annotations

import errno
from typing import Any, Dict, Optional


class TailFileError(Exception):
    """Base class; every error carries a short ``code`` and a ``meta`` dict."""

    code: str = "ETAILFILE"

    def __init__(self, message: str, code: Optional[str] = None, meta: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.meta: Dict[str, Any] = dict(meta or {})

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, meta={self.meta!r})"


class TailTypeError(TailFileError, TypeError):
    pass


class TailValueError(TailFileError, ValueError):
    pass


class TailStateError(TailFileError, RuntimeError):
    code = "ESTATE"


class TailPollError(TailFileError):
    """Fatal: the followed path stayed missing for ``max_poll_failures`` polls."""

    code = "EPOLLFAIL"

    def __init__(self, filename: str, attempts: int, actual: Optional[BaseException] = None) -> None:
        super().__init__(
            f"File disappeared and did not come back after {attempts} attempts",
            meta={"filename": filename, "attempts": attempts, "actual": actual},
        )
        self.filename = filename
        self.attempts = attempts
        self.actual = actual
        self.__cause__ = actual


class TailReadError(TailFileError):
    """Recoverable: reading a known byte range failed.

    ``code`` mirrors the errno name of the underlying failure when there is
    one (``EBADF`` for a handle closed underneath us, for instance).
    """

    def __init__(self, actual: BaseException, filename: Optional[str] = None) -> None:
        code = _errno_name(actual) or "EREAD"
        super().__init__(
            "An error was encountered while tailing the file",
            code=code,
            meta={"actual": actual, "filename": filename},
        )
        self.actual = actual
        self.filename = filename
        self.__cause__ = actual


def _errno_name(exc: BaseException) -> Optional[str]:
    num = getattr(exc, "errno", None)
    if isinstance(num, int):
        return errno.errorcode.get(num)
    return None


__all__ = [
    "TailFileError",
    "TailTypeError",
    "TailValueError",
    "TailStateError",
    "TailPollError",
    "TailReadError",
]
