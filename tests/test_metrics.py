import asyncio

import pytest

from tailfile import TailFile
from tailfile.metrics import session_metrics


def test_metrics_before_start():
    m = session_metrics(TailFile(__file__, poll_file_interval_ms=50))
    assert m["filename"] == __file__
    assert m["identity"] is None and m["position"] is None
    assert m["started"] is False and m["quitting"] is False
    assert m["bytes_read"] == 0 and m["chunks_delivered"] == 0
    assert m["config"]["poll_file_interval_ms"] == 50
    assert m["config"]["max_poll_failures"] == 10


@pytest.mark.asyncio
async def test_metrics_track_reads_and_truncations(tmp_path):
    p = tmp_path / "m.log"
    p.write_bytes(b"12345")
    tail = TailFile(p, start_pos=0, poll_file_interval_ms=10)
    await tail.start()
    try:
        assert await asyncio.wait_for(tail.read(), 2.0) == b"12345"
        p.write_bytes(b"ab")
        assert await asyncio.wait_for(tail.read(), 2.0) == b"ab"
        m = session_metrics(tail)
    finally:
        await tail.quit()
    assert m["bytes_read"] == 7
    assert m["chunks_delivered"] == 2
    assert m["truncations"] == 1
    assert m["renames"] == 0
    assert m["position"] == 2
    assert len(m["identity"]) == 2
    assert session_metrics(tail)["quitting"] is True
