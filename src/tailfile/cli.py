import argparse
import asyncio
import signal
import sys
from typing import Any, Dict, List, Optional

from . import __version__
from .errors import TailFileError, TailStateError
from .logutil import set_verbose
from .metrics import session_metrics
from .sinks import ChunkSink, FileSink, StreamSink
from .tail import TailFile


def _report(message: str) -> None:
    print(f"[tailfile] {message}", file=sys.stderr, flush=True)


def build_options(args: argparse.Namespace) -> Dict[str, Any]:
    opts: Dict[str, Any] = {
        "poll_file_interval_ms": args.interval_ms,
        "poll_failure_retry_ms": args.retry_ms,
        "max_poll_failures": args.max_poll_failures,
    }
    if args.from_start:
        opts["start_pos"] = 0
    elif args.start_pos is not None:
        opts["start_pos"] = args.start_pos
    if args.encoding:
        opts["encoding"] = args.encoding
    return opts


async def follow(path: str, opts: Dict[str, Any], sink: ChunkSink, summary: bool = False) -> int:
    tail = TailFile(path, opts)
    failures: List[BaseException] = []

    def _on_error(err: BaseException) -> None:
        failures.append(err)
        _report(f"error: {err}")

    tail.on("error", _on_error)
    tail.on("renamed", lambda evt: _report(f"renamed: {evt['filename']}"))
    tail.on("truncated", lambda evt: _report(f"truncated: {evt['filename']}"))
    tail.on("retry", lambda evt: _report(f"retry {evt['attempts']}: {evt['filename']} is missing"))
    tail.on("tail_error", lambda err: _report(f"read error ({err.code}): {err.actual}"))

    loop = asyncio.get_running_loop()

    def _stop() -> None:
        asyncio.ensure_future(tail.quit())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):  # pragma: no cover - Windows
            pass

    pump = tail.pipe(sink)
    try:
        await tail.start()
    except TailStateError:
        # Interrupted while the file was being opened
        await pump
        return 0
    except OSError as exc:
        _report(f"cannot open {path}: {exc}")
        await tail.quit()
        await pump
        return 1
    await pump
    if summary:
        m = session_metrics(tail)
        _report(
            f"summary: bytes={m['bytes_read']} chunks={m['chunks_delivered']} renames={m['renames']} "
            f"truncations={m['truncations']} retries={m['retries']} read_errors={m['read_errors']}"
        )
    return 1 if failures else 0


def cmd_follow(args: argparse.Namespace) -> int:
    set_verbose(args.verbose)
    sink: ChunkSink = FileSink(args.out) if args.out else StreamSink(sys.stdout)
    try:
        return asyncio.run(follow(args.file, build_options(args), sink, summary=args.summary))
    except TailFileError as exc:
        _report(f"{exc.code}: {exc}")
        return 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tailfile", description="Follow a growing file across rotation and truncation.")
    parser.add_argument("--version", action="version", version=f"tailfile {__version__}")
    sub = parser.add_subparsers(dest="cmd")

    follow_parser = sub.add_parser("follow", help="Print bytes appended to a file until interrupted")
    follow_parser.add_argument("file", help="Path to follow")
    start = follow_parser.add_mutually_exclusive_group()
    start.add_argument("--from-start", action="store_true", help="Deliver existing content too (start at offset 0)")
    start.add_argument("--start-pos", type=int, default=None, help="Start at this byte offset instead of end-of-file")
    follow_parser.add_argument("--interval-ms", type=float, default=1000, help="Poll interval in milliseconds (default: 1000)")
    follow_parser.add_argument("--retry-ms", type=float, default=200, help="Retry interval while the file is missing (default: 200)")
    follow_parser.add_argument("--max-poll-failures", type=int, default=10, help="Give up after this many consecutive misses (default: 10)")
    follow_parser.add_argument("--encoding", help="Decode output with this codec instead of passing bytes through")
    follow_parser.add_argument("--out", help="Append to this file instead of stdout")
    follow_parser.add_argument("--summary", action="store_true", help="Print session counters to stderr on exit")
    follow_parser.add_argument("--verbose", action="store_true", help="Log rotations and retries at INFO level")
    follow_parser.set_defaults(func=cmd_follow)

    # Simple 'version' subcommand for shells/users preferring explicit command
    version_parser = sub.add_parser("version", help="Show version and exit")
    version_parser.set_defaults(func=lambda _: (print(f"tailfile {__version__}"), 0)[1])

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "cmd", None):  # No subcommand provided
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
