#!/usr/bin/env python3
"""Attendance Device Sync CLI.

Runs one sync cycle and exits: either for a single terminal or for every
enabled terminal in the registry.

Environment Variables Required:
    - DATABASE_URL: PostgreSQL connection string
    - ATTENDANCE_DEVICES: Optional JSON device list (instead of the
      attendance_devices table)

Example Usage:
    $ python main.py                     # Sync every enabled device once
    $ python main.py --device front-door # Sync one device
    $ python main.py --json              # Print results as JSON
    $ python main.py --test-device front-door  # Connectivity check only
"""
import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

load_dotenv()

# Local imports
from src.attendsync.common.exceptions import AttendanceSyncError, DeviceNotFoundError
from src.attendsync.config import SyncConfig, configure_logging
from src.attendsync.runtime import build_runtime, close_runtime
from src.attendsync.sync.domain.entities import ConnectionCheck, CycleSummary, SyncResult


def print_result(result: SyncResult) -> None:
    print(f"\n{result.device_id}: {result.outcome}")
    print(
        f"  fetched={result.records_fetched} reconciled={result.records_reconciled} "
        f"written={result.records_written} cleared={result.records_cleared} "
        f"attempts={result.attempts}"
    )
    for anomaly in result.anomalies:
        print(f"  ! {anomaly.kind.value} user={anomaly.user_id} ts={anomaly.timestamp} {anomaly.detail}")
    for detail in result.error_details:
        print(f"  x {detail}")


def print_check(check: ConnectionCheck) -> None:
    if not check.ok:
        print(f"\n{check.device_id}: unreachable ({check.error_code})")
        print(f"  x {check.error}")
        return
    info = check.device_info
    print(f"\n{check.device_id}: connected")
    print(f"  serial={info.serial_number} firmware={info.firmware_version} platform={info.platform}")
    print(f"  users={check.user_count} records={check.record_count}")


def print_summary(summary: CycleSummary) -> None:
    print("\n" + "=" * 60)
    print("SYNC COMPLETE")
    print("=" * 60)
    for result in summary.results:
        print_result(result)
    print(
        f"\n{summary.succeeded} succeeded, {summary.partially_failed} partial, "
        f"{summary.failed} failed, {summary.entries_written} entries written"
    )


async def run_sync(args: argparse.Namespace) -> int:
    """Run one cycle, or a connectivity check with --test-device.

    Returns:
        Process exit code (1 if any device failed or was unreachable)
    """
    try:
        config = SyncConfig.from_env()
        configure_logging("WARNING" if args.json else config.log_level)
        runtime = await build_runtime(config)
    except AttendanceSyncError as e:
        print(f"[Main] Configuration error: {e}", file=sys.stderr)
        return 2

    try:
        if args.test_device:
            try:
                check = await runtime.scheduler.test_connection(args.test_device)
            except DeviceNotFoundError as e:
                print(f"[Main] {e}", file=sys.stderr)
                return 2
            if args.json:
                print(json.dumps(check.to_dict(), indent=2))
            else:
                print_check(check)
            return 0 if check.ok else 1

        if args.device:
            try:
                result = await runtime.scheduler.trigger(args.device)
            except DeviceNotFoundError as e:
                print(f"[Main] {e}", file=sys.stderr)
                return 2
            if args.json:
                print(json.dumps(result.to_dict(), indent=2))
            else:
                print_result(result)
            return 1 if result.outcome.is_failure else 0

        summary = await runtime.scheduler.run_cycle()
        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
        else:
            print_summary(summary)
        return 1 if summary.failed else 0

    finally:
        await close_runtime(runtime)


def main():
    parser = argparse.ArgumentParser(
        description="Sync attendance terminals to the attendance ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                       # Sync every enabled device once
  python main.py --device front-door   # Sync one device
  python main.py --json                # Print results as JSON
  python main.py --test-device front-door  # Connect and read info, no sync
        """
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--device",
        type=str,
        metavar="ID",
        help="Sync only this device"
    )
    target.add_argument(
        "--test-device",
        type=str,
        metavar="ID",
        help="Connect to this device and read its info without syncing"
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print results as JSON"
    )

    args = parser.parse_args()

    # Run the async sync
    sys.exit(asyncio.run(run_sync(args)))


if __name__ == "__main__":
    main()
