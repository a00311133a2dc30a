import asyncio
import codecs
import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Set, Tuple, Union

import aiofiles
import aiofiles.os

from .channel import ChunkChannel
from .config import TailOptions
from .errors import TailPollError, TailReadError, TailStateError, TailTypeError
from .logutil import get_logger
from .signals import Listener, SignalChannel

Chunk = Union[bytes, str]
Identity = Tuple[int, int]

RENAMED_MESSAGE = "The file was renamed or rolled.  Tailing resumed from the beginning."
TRUNCATED_MESSAGE = "The file was truncated.  Tailing resumed from the beginning."
RETRY_MESSAGE = "File disappeared. Retrying."


class TailFile:
    """Follow a growing file by polling, like ``tail -F``.

    Behavior:
    - ``start()`` opens the file and begins at end-of-file (or at ``start_pos``).
    - Every poll stats the *path* and compares (device, inode) with the open
      handle. A different identity means the file was renamed or rotated: the
      rest of the old handle is drained, then the new file is read from 0.
    - A file smaller than the read position was truncated: reading restarts at 0.
    - A missing path is retried every ``poll_failure_retry_ms`` up to
      ``max_poll_failures`` times, then the session fails for good.
    - New bytes are pushed into a bounded buffer; reading suspends while the
      consumer is behind, so backpressure reaches all the way to the disk.

    Consume with ``async for chunk in tail`` and subscribe to signals with
    ``tail.on(name, fn)``.
    """

    def __init__(
        self,
        filename: Union[str, "os.PathLike[str]"],
        options: Optional[Union[TailOptions, Mapping[str, Any]]] = None,
        **overrides: Any,
    ) -> None:
        if not isinstance(filename, (str, os.PathLike)) or not os.fspath(filename):
            raise TailTypeError(
                "filename must be a non-empty string", code="EFILENAME", meta={"got": filename}
            )
        if isinstance(options, TailOptions):
            self.options = TailOptions.from_mapping(vars(options), **overrides) if overrides else options
        else:
            self.options = TailOptions.from_mapping(options, **overrides)
        self._filename: str = os.fspath(filename)

        self.signals = SignalChannel()
        self._channel: ChunkChannel[Chunk] = ChunkChannel(self.options.high_water_mark)
        self._decoder = self._new_decoder()

        self._identity: Optional[Identity] = None
        self._position: Optional[int] = None
        self._file_handle: Any = None
        self._poll_failure_count = 0
        self._poll_timer: Optional[asyncio.TimerHandle] = None
        self._poll_task: Optional[asyncio.Future] = None
        self._poll_lock = asyncio.Lock()
        self._active_poll: Optional[asyncio.Task] = None
        self._started = False
        self._quitting = False
        self._quit_done = asyncio.Event()
        # start_pos past end-of-file: wait for growth instead of calling it truncation
        self._awaiting_start = False
        self._missing = False
        self._initial_pass = True
        self._tasks: Set[asyncio.Future] = set()

        self._bytes_read = 0
        self._chunks_delivered = 0
        self._renames = 0
        self._truncations = 0
        self._retries = 0
        self._read_errors = 0

    # -- public state -------------------------------------------------------

    @property
    def filename(self) -> str:
        return self._filename

    @property
    def identity(self) -> Optional[Identity]:
        return self._identity

    @property
    def position(self) -> Optional[int]:
        return self._position

    @property
    def poll_failure_count(self) -> int:
        return self._poll_failure_count

    @property
    def started(self) -> bool:
        return self._started

    @property
    def quitting(self) -> bool:
        return self._quitting

    @property
    def has_pending_timer(self) -> bool:
        return self._poll_timer is not None

    # -- signals ------------------------------------------------------------

    def on(self, name: str, fn: Listener) -> "TailFile":
        self.signals.on(name, fn)
        return self

    def once(self, name: str, fn: Listener) -> "TailFile":
        self.signals.once(name, fn)
        return self

    def off(self, name: str, fn: Listener) -> "TailFile":
        self.signals.off(name, fn)
        return self

    async def wait_for(self, name: str, timeout: Optional[float] = None) -> Any:
        return await self.signals.wait_for(name, timeout)

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Open the file and arm the first poll, which delivers anything already due.

        The initial read pass runs as the first poll cycle right after this
        returns, so a consumer iterating in the same task is never starved by
        backpressure. Raises whatever the initial open raises
        (``FileNotFoundError`` when the file is absent); nothing is scheduled in
        that case. A ``quit()`` that lands while the file is being opened wins:
        the fresh handle is closed and ``TailStateError`` is raised.
        """
        if self._quitting:
            raise TailStateError("cannot start a session that has quit")
        if self._started:
            raise TailStateError("session already started")
        self._started = True
        try:
            await self._open_file()
        except BaseException:
            self._started = False
            raise
        get_logger().info("tailing %s from offset %s", self._filename, self._position)
        self._schedule_timer(0)

    async def quit(self, error: Optional[BaseException] = None) -> None:
        """Stop polling, release the handle and end the output sequence.

        Safe to call repeatedly and before ``start()``. ``error``, when given, is
        emitted on the ``error`` signal ahead of ``flush`` and ``end``.
        """
        if self._quitting:
            if error is not None:
                self._emit_error(error)
            if not self._inside_poll():
                await self._quit_done.wait()
            return
        self._quitting = True
        if error is not None:
            self._emit_error(error)
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None
        if self._active_poll is None or self._inside_poll():
            rest = self._finish_decoder()
            if rest:
                self._channel.push_nowait(rest)
        self._channel.close()
        if self._active_poll is not None and not self._inside_poll():
            # Let the in-flight cycle finish; it will not reschedule.
            async with self._poll_lock:
                pass
        await self._close_file_handle()
        self.signals.emit("flush", {"last_read_position": self._position})
        self.signals.emit("end", None)
        get_logger().info("stopped tailing %s", self._filename)
        self._quit_done.set()

    async def __aenter__(self) -> "TailFile":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.quit()

    # -- consumer side ------------------------------------------------------

    def __aiter__(self) -> "TailFile":
        return self

    async def __anext__(self) -> Chunk:
        chunk = await self.read()
        if chunk is None:
            raise StopAsyncIteration
        return chunk

    async def read(self) -> Optional[Chunk]:
        """Next chunk; waits for one. None once the session ended and the buffer is empty."""
        chunk = await self._channel.pull()
        if chunk is not None:
            self._chunks_delivered += 1
            self.signals.emit("data", chunk)
        return chunk

    def pipe(self, sink: Any) -> "asyncio.Task[None]":
        """Copy the output sequence into ``sink`` (anything with write/close) until end."""

        async def _pump() -> None:
            try:
                async for chunk in self:
                    sink.write(chunk)
            finally:
                sink.close()

        return asyncio.ensure_future(_pump())

    # -- poll loop ----------------------------------------------------------

    async def poll_once(self) -> None:
        """Run one stat/classify/react cycle, then rearm the timer."""
        if not self._started:
            raise TailStateError("start() must be called before polling")
        if self._quitting:
            return
        async with self._poll_lock:
            if self._quitting:
                return
            self._active_poll = asyncio.current_task()
            try:
                delay = await self._poll_file_for_changes()
            finally:
                self._active_poll = None
        if delay is not None:
            self._schedule_timer(delay)

    async def _poll_file_for_changes(self) -> Optional[float]:
        log = get_logger()
        try:
            st = await aiofiles.os.stat(self._filename)
        except FileNotFoundError as exc:
            if self._quitting:
                return None
            return await self._on_poll_failure(exc)
        except Exception as exc:  # noqa: BLE001 - anything but "not found" is not transient
            if self._quitting:
                return None
            log.error("stat of %s failed: %s", self._filename, exc)
            await self.quit(exc)
            return None
        if self._quitting:
            return None

        self._poll_failure_count = 0
        self._missing = False
        identity = (st.st_dev, st.st_ino)
        size = st.st_size
        # The initial pass always reports, later polls only when they moved data
        changed, self._initial_pass = self._initial_pass, False

        if identity != self._identity:
            log.info("%s was renamed or rotated; reopening", self._filename)
            await self._read_remainder_from_file_handle()
            await self._flush_decoder()
            await self._close_file_handle()
            self._identity = None
            if self._quitting:
                return None
            try:
                hst = await self._open_file()
            except TailStateError:
                return None
            except FileNotFoundError as exc:
                # Replaced again between stat and open
                return await self._on_poll_failure(exc)
            except OSError as exc:
                log.error("reopening %s failed: %s", self._filename, exc)
                await self.quit(exc)
                return None
            self._position = 0
            self._awaiting_start = False
            self._poll_failure_count = 0
            self._renames += 1
            self.signals.emit("renamed", self._notice(RENAMED_MESSAGE))
            await self._stream_range(0, hst.st_size)
            changed = True
        else:
            position = self._position or 0
            if self._awaiting_start and size >= position:
                self._awaiting_start = False
            if size < position and not self._awaiting_start:
                log.info("%s was truncated (%d < %d)", self._filename, size, position)
                await self._flush_decoder()
                self._position = 0
                self._truncations += 1
                self.signals.emit("truncated", self._notice(TRUNCATED_MESSAGE))
                await self._stream_range(0, size)
                changed = True
            elif size > position:
                await self._stream_range(position, size)
                changed = True

        if self._quitting:
            return None
        if changed:
            self.signals.emit("flush", {"last_read_position": self._position})
        return self.options.poll_interval_s

    async def _on_poll_failure(self, exc: BaseException) -> Optional[float]:
        log = get_logger()
        if not self._missing:
            # First miss: whatever was appended before the rename is still readable
            self._missing = True
            await self._read_remainder_from_file_handle()
        attempts = self._bump_failures()
        if attempts >= self.options.max_poll_failures:
            log.error("%s did not reappear after %d attempts; giving up", self._filename, attempts)
            await self.quit(TailPollError(self._filename, attempts, exc))
            return None
        self._retries += 1
        log.warning(
            "%s disappeared; retry %d/%d in %sms",
            self._filename,
            attempts,
            self.options.max_poll_failures,
            self.options.poll_failure_retry_ms,
        )
        notice = self._notice(RETRY_MESSAGE)
        notice["attempts"] = attempts
        self.signals.emit("retry", notice)
        return self.options.retry_interval_s

    def _bump_failures(self) -> int:
        self._poll_failure_count = min(self._poll_failure_count + 1, self.options.max_poll_failures)
        return self._poll_failure_count

    def _schedule_timer(self, delay: float) -> None:
        if self._quitting:
            return
        if self._poll_timer is not None:
            self._poll_timer.cancel()
        self._poll_timer = asyncio.get_running_loop().call_later(delay, self._on_timer)

    def _on_timer(self) -> None:
        self._poll_timer = None
        if self._quitting:
            return
        self._poll_task = asyncio.ensure_future(self.poll_once())
        self._poll_task.add_done_callback(self._poll_done)

    def _poll_done(self, task: asyncio.Future) -> None:
        if task.cancelled() or task.exception() is None:
            return
        exc = task.exception()
        get_logger().error("poll of %s crashed: %r", self._filename, exc)
        teardown = asyncio.ensure_future(self.quit(exc))
        self._tasks.add(teardown)
        teardown.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            get_logger().error("teardown of %s failed: %s", self._filename, task.exception())

    def _inside_poll(self) -> bool:
        return self._active_poll is not None and self._active_poll is asyncio.current_task()

    # -- file access --------------------------------------------------------

    async def _open_file(self) -> os.stat_result:
        handle = await aiofiles.open(self._filename, "rb", **self.options.read_stream_opts)
        try:
            st = os.fstat(handle.fileno())
        except BaseException:
            await handle.close()
            raise
        if self._quitting:
            # quit() already tore the session down while the open was in flight
            await handle.close()
            raise TailStateError("session quit while opening %s" % self._filename)
        self._file_handle = handle
        self._identity = (st.st_dev, st.st_ino)
        if self._position is None:
            start_pos = self.options.start_pos
            if start_pos is None:
                self._position = st.st_size
            else:
                self._position = start_pos
                self._awaiting_start = start_pos > st.st_size
        get_logger().debug("opened %s identity=%s size=%d", self._filename, self._identity, st.st_size)
        return st

    async def _read_remainder_from_file_handle(self) -> None:
        # Uses the handle, which still points at the old file after a rename
        handle = self._file_handle
        if handle is None or self._position is None:
            return
        try:
            st = os.fstat(handle.fileno())
        except (OSError, ValueError) as exc:
            self._on_read_error(exc)
            return
        if st.st_size > self._position:
            await self._stream_range(self._position, st.st_size)

    async def _stream_range(self, start: int, end: int) -> None:
        handle = self._file_handle
        if handle is None or self._quitting:
            return
        pos = start
        try:
            await handle.seek(start)
            while pos < end and not self._quitting:
                data = await handle.read(min(self.options.chunk_size, end - pos))
                if not data:
                    break
                chunk = self._decode(data)
                # A lone partial multi-byte character decodes to nothing yet
                if chunk and not await self._channel.push(chunk):
                    break
                pos += len(data)
                self._position = pos
                self._bytes_read += len(data)
        except (OSError, ValueError) as exc:
            self._on_read_error(exc)

    def _on_read_error(self, exc: BaseException) -> None:
        self._bump_failures()
        self._read_errors += 1
        err = TailReadError(exc, self._filename)
        get_logger().warning("reading %s failed (%s): %s", self._filename, err.code, exc)
        self.signals.emit("tail_error", err)

    async def _close_file_handle(self) -> None:
        handle, self._file_handle = self._file_handle, None
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as exc:  # noqa: BLE001 - close failures are not reported
            get_logger().debug("closing %s failed: %s", self._filename, exc)

    # -- helpers ------------------------------------------------------------

    def _new_decoder(self) -> Optional[codecs.IncrementalDecoder]:
        if self.options.encoding is None:
            return None
        return codecs.getincrementaldecoder(self.options.encoding)(errors="replace")

    def _decode(self, data: bytes) -> Chunk:
        if self._decoder is None:
            return data
        return self._decoder.decode(data)

    def _finish_decoder(self) -> str:
        """Replacement text for a dangling partial character; swaps in a fresh decoder."""
        if self._decoder is None:
            return ""
        rest = self._decoder.decode(b"", final=True)
        self._decoder = self._new_decoder()
        return rest

    async def _flush_decoder(self) -> None:
        rest = self._finish_decoder()
        if rest:
            await self._channel.push(rest)

    def _notice(self, message: str) -> Dict[str, Any]:
        return {"message": message, "filename": self._filename, "when": datetime.now(timezone.utc)}

    def _emit_error(self, error: BaseException) -> None:
        if not self.signals.emit("error", error):
            get_logger().error("unhandled tail error on %s: %s", self._filename, error)


__all__ = ["TailFile", "RENAMED_MESSAGE", "TRUNCATED_MESSAGE", "RETRY_MESSAGE"]
