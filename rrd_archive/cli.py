#!/usr/bin/env python3
"""
rrd-archive CLI entry point.

Runs an archive maintainer against one host or VM and prints the newest
sample of every data source after each merge.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from rrd_archive.config import MaintainerConfig
from rrd_archive.connection import SessionConnection
from rrd_archive.logging_config import LogContext, setup_logging
from rrd_archive.maintainer import ArchiveMaintainer
from rrd_archive.output import FORMATS, formatter
from rrd_archive.schemas import HostRef, Resolution, VmRef

logger = logging.getLogger(__name__)

# Exit code constants
EXIT_SUCCESS = 0
EXIT_ERROR = 1
EXIT_INVALID_ARGS = 2


def latest_samples(maintainer: ArchiveMaintainer, resolution: Resolution) -> List[Dict[str, Any]]:
    """One row per data source with its newest sample in a tier."""
    archive = maintainer.archive(resolution)
    rows = []
    for data_source_id in archive.data_source_ids:
        data_set = archive.try_get(data_source_id)
        if data_set is None or data_set.latest is None:
            continue
        latest = data_set.latest
        rows.append(
            {
                "data_source": data_source_id,
                "timestamp": datetime.fromtimestamp(
                    latest.timestamp_ms / 1000, tz=timezone.utc
                ).isoformat(),
                "value": latest.value,
                "points": len(data_set),
            }
        )
    return rows


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rrd-archive",
        description="Performance-metrics archive maintainer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Watch a host's five-second counters for three polls
  rrd-archive watch pool.example.com --session-id OpaqueRef:abc --host-uuid 1234 --updates 4

  # One-minute averages of a VM, as JSON
  rrd-archive watch 10.0.0.5 --session-id OpaqueRef:abc --vm-uuid 5678 \\
      --resolution one_minute --format json
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-dir", help="Also write rotating log files to this directory")
    parser.add_argument("--config", "-c", help="YAML configuration file")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    watch = subparsers.add_parser("watch", help="Follow the archives of one host or VM")
    watch.add_argument("hostname", help="Address the session was opened against")
    watch.add_argument("--session-id", required=True, help="API session reference")
    watch.add_argument("--port", type=int, default=443, help="API port (default: 443)")

    target = watch.add_mutually_exclusive_group(required=True)
    target.add_argument("--host-uuid", help="Monitor this host")
    target.add_argument("--vm-uuid", help="Monitor this VM")

    watch.add_argument("--address", help="Address of the host serving the RRDs")
    watch.add_argument(
        "--resolution",
        choices=[r.value for r in Resolution if r != Resolution.NONE],
        default=Resolution.FIVE_SECOND.value,
        help="Tier to print (default: five_second)",
    )
    watch.add_argument(
        "--data-source",
        action="append",
        dest="data_sources",
        default=[],
        help="Canonical data-source id to keep (repeatable; default: all)",
    )
    watch.add_argument(
        "--updates", type=int, default=1, help="Stop after this many merges (default: 1)"
    )
    watch.add_argument("--format", choices=FORMATS, default="table", help="Output format")
    watch.add_argument(
        "--stats", action="store_true", help="Print maintainer statistics before exiting"
    )
    return parser


def load_config(path: Optional[str]) -> MaintainerConfig:
    if path:
        return MaintainerConfig.from_yaml(path)
    return MaintainerConfig.from_env()


async def run_watch(args: argparse.Namespace, config: MaintainerConfig) -> int:
    """Start a maintainer and print after every merge until enough updates arrived."""
    if args.host_uuid:
        entity = HostRef(uuid=args.host_uuid, address=args.address)
    else:
        resident = HostRef(uuid="resident", address=args.address) if args.address else None
        entity = VmRef(uuid=args.vm_uuid, resident_on=resident)

    connection = SessionConnection(args.hostname, port=args.port, session_id=args.session_id)
    resolution = Resolution(args.resolution)
    done = asyncio.Event()
    merges = 0

    def on_update(maintainer: ArchiveMaintainer) -> None:
        nonlocal merges
        merges += 1
        rows = latest_samples(maintainer, resolution)
        print(formatter.format_output(rows, args.format))
        sys.stdout.flush()
        if merges >= args.updates:
            done.set()

    with LogContext(pool_host=args.hostname):
        async with ArchiveMaintainer(entity, connection, config=config) as maintainer:
            maintainer.set_data_source_ids(args.data_sources)
            maintainer.subscribe(on_update)
            await maintainer.start()
            await done.wait()
            if args.stats:
                print(formatter.format_output(maintainer.get_stats(), args.format))

    return EXIT_SUCCESS


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command != "watch":
        parser.print_help()
        return EXIT_INVALID_ARGS

    if args.updates < 1:
        parser.error("--updates must be at least 1")

    setup_logging(log_dir=args.log_dir, console_level="DEBUG" if args.verbose else "WARNING")

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValidationError, ValueError, yaml.YAMLError) as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_INVALID_ARGS

    try:
        return asyncio.run(run_watch(args, config))
    except KeyboardInterrupt:
        return EXIT_SUCCESS
    except Exception as e:
        logger.error(f"Watch failed: {e}")
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
