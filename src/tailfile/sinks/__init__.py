"""Chunk sink abstractions.

Small pluggable targets for ``TailFile.pipe``: anything that can take chunks
(bytes or str) and be closed. Used by the CLI for stdout / ``--out`` copies.
"""
from __future__ import annotations
import io
from typing import IO, Any, List, Optional, Protocol, Union

Chunk = Union[bytes, str]


class ChunkSink(Protocol):  # pragma: no cover - simple protocol
    def write(self, chunk: Chunk) -> None: ...  # noqa: E701 - protocol stub
    def close(self) -> None: ...


class StreamSink:
    """Write chunks to an already-open stream; the stream is left open on close.

    Bytes go to the underlying binary buffer of a text stream (stdout) when it
    has one, otherwise they are decoded.
    """

    def __init__(self, stream: IO[Any], encoding: str = "utf-8") -> None:
        self.stream = stream
        self.encoding = encoding

    def write(self, chunk: Chunk) -> None:
        text_stream = isinstance(self.stream, io.TextIOBase)
        if isinstance(chunk, bytes) and text_stream:
            buffer = _binary_buffer(self.stream)
            if buffer is not None:
                self.stream.flush()
                buffer.write(chunk)
                buffer.flush()
                return
            chunk = chunk.decode(self.encoding, errors="replace")
        elif isinstance(chunk, str) and not text_stream:
            chunk = chunk.encode(self.encoding)
        self.stream.write(chunk)
        self.stream.flush()

    def close(self) -> None:
        try:
            self.stream.flush()
        except Exception:
            pass


class FileSink:
    """Append chunks to ``path``; opened lazily in binary or text mode to match the first chunk."""

    def __init__(self, path: str, encoding: str = "utf-8") -> None:
        self.path = path
        self.encoding = encoding
        self._fh: Optional[IO[Any]] = None

    def write(self, chunk: Chunk) -> None:
        if self._fh is None:
            if isinstance(chunk, bytes):
                self._fh = open(self.path, "ab")
            else:
                self._fh = open(self.path, "a", encoding=self.encoding, newline="")
        if isinstance(chunk, bytes) and "b" not in self._fh.mode:
            chunk = chunk.decode(self.encoding, errors="replace")
        elif isinstance(chunk, str) and "b" in self._fh.mode:
            chunk = chunk.encode(self.encoding)
        self._fh.write(chunk)
        self._fh.flush()

    def close(self) -> None:  # pragma: no cover - trivial
        if self._fh is None:
            return
        try:
            self._fh.close()
        except Exception:
            pass
        self._fh = None


class MultiSink:
    def __init__(self, sinks: List[ChunkSink]):
        self._sinks = sinks

    def write(self, chunk: Chunk) -> None:
        for s in self._sinks:
            try:
                s.write(chunk)
            except Exception:
                # Best-effort; individual sink failure should not cascade.
                pass

    def close(self) -> None:  # pragma: no cover
        for s in self._sinks:
            try:
                s.close()
            except Exception:
                pass


def _binary_buffer(stream: IO[Any]) -> Optional[IO[bytes]]:
    try:
        return stream.buffer  # type: ignore[attr-defined]
    except (AttributeError, io.UnsupportedOperation):
        return None


__all__ = ["ChunkSink", "StreamSink", "FileSink", "MultiSink"]
