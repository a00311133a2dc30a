import asyncio
import os
from datetime import datetime

import pytest

from tailfile import TailFile
from tailfile.tail import RENAMED_MESSAGE, TRUNCATED_MESSAGE

posix_only = pytest.mark.skipif(os.name == "nt", reason="rename/unlink of open files is POSIX behavior")


async def eventually(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


async def read(tail, timeout=2.0):
    return await asyncio.wait_for(tail.read(), timeout)


def append(path, text):
    with open(path, "a", encoding="utf-8") as h:
        h.write(text)


@posix_only
@pytest.mark.asyncio
async def test_keep_tailing_a_renamed_file(tmp_path):
    p = tmp_path / "logfile.txt"
    p.write_text("This is the first line in my log file\n", encoding="utf-8")
    renamed = []
    tail = TailFile(p, encoding="utf-8", poll_file_interval_ms=10)
    tail.on("renamed", renamed.append)
    await tail.start()
    try:
        append(p, "Here is line 2")
        assert await read(tail) == "Here is line 2"
        os.replace(p, tmp_path / "logfile.txt.rolled")
        p.write_text("This line happens after renaming\n", encoding="utf-8")
        assert await read(tail) == "This line happens after renaming\n"
        assert len(renamed) == 1
        evt = renamed[0]
        assert evt["message"] == RENAMED_MESSAGE
        assert evt["filename"] == str(p)
        assert isinstance(evt["when"], datetime)
        await asyncio.sleep(0.05)  # a quiet period changes nothing
        append(p, "Something new")
        assert await read(tail) == "Something new"
    finally:
        await tail.quit()


@posix_only
@pytest.mark.asyncio
async def test_bytes_written_to_old_file_before_rotation_are_not_lost(tmp_path):
    p = tmp_path / "app.log"
    p.write_text("", encoding="utf-8")
    tail = TailFile(p, encoding="utf-8", poll_file_interval_ms=10_000_000)  # polled by hand
    await tail.start()
    try:
        await tail.poll_once()
        append(p, "old tail\n")
        os.replace(p, tmp_path / "app.log.1")
        p.write_text("new head\n", encoding="utf-8")
        await tail.poll_once()
        got = await read(tail) + await read(tail)
    finally:
        await tail.quit()
    assert got == "old tail\nnew head\n"


@posix_only
@pytest.mark.asyncio
async def test_renamed_file_that_does_not_reappear_is_drained(tmp_path):
    p = tmp_path / "logfile.txt"
    p.write_text("", encoding="utf-8")
    retries = []
    tail = TailFile(p, encoding="utf-8", poll_file_interval_ms=10_000_000)
    tail.on("retry", retries.append)
    await tail.start()
    try:
        append(p, "Here is line 1\n")
        append(p, "Here is line 2\n")
        append(p, "Here is line 3\n")
        os.replace(p, tmp_path / "logfile.txt.rolled")
        await tail.poll_once()
        lines = await read(tail)
    finally:
        await tail.quit()
    assert lines == "Here is line 1\nHere is line 2\nHere is line 3\n"
    assert retries and retries[0]["attempts"] == 1


@pytest.mark.asyncio
async def test_tail_from_beginning_after_truncation(tmp_path):
    p = tmp_path / "logfile.txt"
    p.write_text("This is the first line in my log file\n", encoding="utf-8")
    truncated = []
    tail = TailFile(p, encoding="utf-8", poll_file_interval_ms=10)
    tail.on("truncated", truncated.append)
    await tail.start()
    try:
        append(p, "Here is line 2")
        assert await read(tail) == "Here is line 2"
        with open(p, "r+", encoding="utf-8") as h:
            h.truncate(0)
        await eventually(lambda: truncated)
        assert truncated[0]["message"] == TRUNCATED_MESSAGE
        assert truncated[0]["filename"] == str(p)
        assert tail.position == 0
        append(p, "This line is in the same file, but at the top\n")
        assert await read(tail) == "This line is in the same file, but at the top\n"
    finally:
        await tail.quit()
    assert len(truncated) == 1


@posix_only
@pytest.mark.asyncio
async def test_file_may_disappear_and_continue_when_it_reappears(tmp_path):
    p = tmp_path / "logfile.txt"
    p.write_text("", encoding="utf-8")
    renamed = []
    tail = TailFile(p, encoding="utf-8", poll_file_interval_ms=10, poll_failure_retry_ms=10)
    tail.on("renamed", renamed.append)
    await tail.start()
    try:
        old_identity = tail.identity
        p.unlink()
        await asyncio.sleep(0.03)
        p.write_text("The file has been re-created\n", encoding="utf-8")
        assert await read(tail) == "The file has been re-created\n"
        assert len(renamed) == 1
        assert tail.identity != old_identity
        assert tail.poll_failure_count == 0
    finally:
        await tail.quit()


@posix_only
@pytest.mark.asyncio
async def test_truncate_then_rotate_sequence(tmp_path):
    """Append, truncate and rotate in turn; each phase delivers only its own bytes."""
    p = tmp_path / "app.log"
    p.write_text("one\n", encoding="utf-8")
    tail = TailFile(p, encoding="utf-8", poll_file_interval_ms=10)
    await tail.start()
    collected = []

    async def consume():
        async for chunk in tail:
            collected.append(chunk)

    consumer = asyncio.ensure_future(consume())
    try:
        append(p, "two\nthree\n")
        await eventually(lambda: "".join(collected) == "two\nthree\n")

        p.write_text("", encoding="utf-8")
        await eventually(lambda: tail.position == 0)
        append(p, "fresh\n")
        await eventually(lambda: "".join(collected).endswith("fresh\n"))

        before = len("".join(collected))
        os.replace(p, tmp_path / "app.log.1")
        p.write_text("newA\nnewB\n", encoding="utf-8")
        append(p, "newC\n")
        await eventually(lambda: "".join(collected).endswith("newC\n"))
        assert "".join(collected)[before:] == "newA\nnewB\nnewC\n"
    finally:
        await tail.quit()
        await asyncio.wait_for(consumer, 2.0)


@posix_only
@pytest.mark.asyncio
async def test_dangling_partial_character_is_replaced_on_truncation(tmp_path):
    p = tmp_path / "euro.log"
    p.write_bytes(b"ab\xe2\x82")
    tail = TailFile(p, encoding="utf-8", start_pos=0, poll_file_interval_ms=10)
    await tail.start()
    try:
        assert await read(tail) == "ab"
        with open(p, "wb") as h:
            h.write(b"x\n")
        assert await read(tail) == "�"
        assert await read(tail) == "x\n"
    finally:
        await tail.quit()


@posix_only
@pytest.mark.asyncio
async def test_dangling_partial_character_is_replaced_on_rotation(tmp_path):
    p = tmp_path / "euro.log"
    p.write_bytes(b"ab\xe2")
    tail = TailFile(p, encoding="utf-8", start_pos=0, poll_file_interval_ms=10)
    await tail.start()
    try:
        assert await read(tail) == "ab"
        os.replace(p, tmp_path / "euro.log.1")
        p.write_bytes("€\n".encode("utf-8"))
        assert await read(tail) == "�"
        assert await read(tail) == "€\n"
    finally:
        await tail.quit()
