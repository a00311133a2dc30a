"""Bounded chunk buffer between the file reader and its consumer.

The buffer holds at most ``high_water_mark`` chunks. ``push`` suspends while
it is full and ``pull`` suspends while it is empty, so unread file content
stays on disk instead of piling up in memory. ``close`` is terminal: pending
pushes are refused, and pulls drain what is already buffered before reporting
the end of the sequence.
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, Generic, Optional, TypeVar

T = TypeVar("T")


class ChunkChannel(Generic[T]):
    def __init__(self, high_water_mark: int = 16) -> None:
        if high_water_mark < 1:
            raise ValueError("high_water_mark must be >= 1")
        self.high_water_mark = high_water_mark
        self._chunks: Deque[T] = deque()
        self._closed = False
        # Two gates: set while the consumer may proceed / the producer may proceed
        self._readable = asyncio.Event()
        self._writable = asyncio.Event()
        self._writable.set()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def buffered(self) -> int:
        return len(self._chunks)

    @property
    def has_capacity(self) -> bool:
        return len(self._chunks) < self.high_water_mark

    async def push(self, chunk: T) -> bool:
        """Append ``chunk`` once there is room. Returns False if the channel closed first."""
        while not self._closed and not self.has_capacity:
            self._writable.clear()
            await self._writable.wait()
        if self._closed:
            return False
        self._chunks.append(chunk)
        self._readable.set()
        return True

    def push_nowait(self, chunk: T) -> bool:
        """Append ``chunk`` even past the high-water mark; used for a final tail."""
        if self._closed:
            return False
        self._chunks.append(chunk)
        self._readable.set()
        return True

    async def pull(self) -> Optional[T]:
        """Next chunk, or None once the channel is closed and drained."""
        while not self._chunks:
            if self._closed:
                return None
            self._readable.clear()
            await self._readable.wait()
        chunk = self._chunks.popleft()
        self._writable.set()
        return chunk

    def close(self) -> None:
        self._closed = True
        self._readable.set()
        self._writable.set()


__all__ = ["ChunkChannel"]
