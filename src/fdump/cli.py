from __future__ import annotations

import argparse
import json
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Tuple

from .errors import LocalIOFailure
from .registry import ActiveTransfers
from .session import Outcome, SourceFile, TransferResult, TransferSession
from .settings import Settings

log = logging.getLogger(__name__)


def send_with_retry(
    path: Path,
    dest: Tuple[str, int],
    registry: ActiveTransfers,
    settings: Settings,
    retries: int = 0,
) -> TransferResult:
    """Sends one file, starting over after a rejection up to `retries` times.

    A file whose name is held by another session of this run waits for that
    session to end; those waits do not count as attempts.
    """
    attempt = 0
    while True:
        try:
            source = SourceFile.from_path(path)
        except OSError as e:
            log.error("Cannot read file %s: %s", path, e)
            error = LocalIOFailure(f"cannot stat {path}: {e}")
            error.__cause__ = e
            result = TransferResult(Outcome.LOCAL_IO_FAILURE, path.name, error=error)
            result.end_ts = result.start_ts
            return result

        result = TransferSession(source, dest, registry, settings=settings).run()
        if result.outcome is Outcome.IN_FLIGHT:
            time.sleep(max(settings.file_check_interval, 0.05))
            continue
        if result.outcome is not Outcome.REJECTED or attempt >= retries:
            return result
        attempt += 1
        log.debug("retrying %s in %ss (attempt %d of %d)", path.name, settings.file_check_interval, attempt, retries)
        time.sleep(settings.file_check_interval)


def cmd_send(args: argparse.Namespace) -> int:
    settings = Settings.load(args.config) if args.config else Settings()
    settings = settings.replace(
        chunk_size=args.chunk_size,
        block_size=args.block_size,
        transfer_limit=args.transfer_limit,
        timeout_ms=args.timeout_ms,
        file_check_interval=args.file_check_interval,
        delete_after_transfer=True if args.delete_after_transfer else None,
    )
    dest = (args.dest_host, args.dest_port)
    registry = ActiveTransfers()
    paths = [Path(p) for p in args.files]

    with ThreadPoolExecutor(max_workers=max(1, args.parallel), thread_name_prefix="fdump-send") as pool:
        futures = [
            pool.submit(send_with_retry, p, dest, registry, settings, args.retry_rejected) for p in paths
        ]
        results = [f.result() for f in futures]

    for r in results:
        payload = {"role": "sender", **r.as_dict()}
        print(json.dumps(payload, indent=2) if args.json else payload)
    return 0 if all(r.ok for r in results) else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="fdump", description="Push files to a remote ingestion service over TCP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    send = sub.add_parser("send", help="send one or more files")
    send.add_argument("--dest-host", required=True)
    send.add_argument("--dest-port", type=int, required=True)
    send.add_argument("--config", help="JSON settings file")
    send.add_argument("--chunk-size", type=int, default=None, help="bytes read from disk per chunk")
    send.add_argument("--block-size", type=int, default=None, help="max payload bytes per frame")
    send.add_argument("--transfer-limit", type=int, default=None, help="bytes/sec, 0 = unlimited")
    send.add_argument("--timeout-ms", type=int, default=None)
    send.add_argument("--file-check-interval", type=float, default=None, help="seconds before retrying a rejected file")
    send.add_argument("--delete-after-transfer", action="store_true")
    send.add_argument("--retry-rejected", type=int, default=0, help="extra attempts for rejected files")
    send.add_argument("--parallel", type=int, default=1, help="files in flight at once")
    send.add_argument("--json", action="store_true")
    send.add_argument("files", nargs="+")
    send.set_defaults(func=cmd_send)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    try:
        return int(args.func(args))
    except (OSError, ValueError) as e:
        parser.error(str(e))


if __name__ == "__main__":
    raise SystemExit(main())
