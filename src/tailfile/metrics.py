"""Metrics helper for TailFile.

Provides a lightweight, dependency-free snapshot of a session's counters
suitable for exposure via logging or a status endpoint. Avoids mutating the
session.
"""
from __future__ import annotations

from typing import Dict, Any

from .tail import TailFile


def session_metrics(tail: TailFile) -> Dict[str, Any]:
    return {
        "filename": tail.filename,
        "identity": list(tail.identity) if tail.identity is not None else None,
        "position": tail.position,
        "poll_failure_count": tail.poll_failure_count,
        "started": tail.started,
        "quitting": tail.quitting,
        "pending_timer": tail.has_pending_timer,
        "bytes_read": tail._bytes_read,
        "chunks_delivered": tail._chunks_delivered,
        "buffered_chunks": tail._channel.buffered,
        "renames": tail._renames,
        "truncations": tail._truncations,
        "retries": tail._retries,
        "read_errors": tail._read_errors,
        "config": {
            "poll_file_interval_ms": tail.options.poll_file_interval_ms,
            "poll_failure_retry_ms": tail.options.poll_failure_retry_ms,
            "max_poll_failures": tail.options.max_poll_failures,
            "start_pos": tail.options.start_pos,
            "encoding": tail.options.encoding,
            "chunk_size": tail.options.chunk_size,
            "high_water_mark": tail.options.high_water_mark,
        },
    }

__all__ = ["session_metrics"]
