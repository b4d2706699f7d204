#!/usr/bin/env python3
"""Run a scheduled task, or restore or verify a backup, from the command line."""
import argparse
import asyncio
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(PROJECT_ROOT))

from bot.context import AppContext
from bot.services.tasks import TaskType
from core.backup import BackupEngine
from core.errors import BackupNotFound, CryptoError, InvalidInput
from core.types import ReportPeriod
from utils.logger import get_logger

LOGGER = get_logger("scripts.run_task")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__)
    sub = parser.add_subparsers(dest="command", required=True)

    for task in TaskType:
        task_parser = sub.add_parser(task.value, help=f"run the {task.value} task")
        task_parser.add_argument("--notify", action="store_true", help="send a completion alert")
        task_parser.add_argument(
            "--period",
            choices=[p.value for p in ReportPeriod],
            default=ReportPeriod.WEEKLY.value,
            help="report window (report and all only)",
        )

    restore = sub.add_parser("restore", help="decrypt a backup and report its contents")
    restore.add_argument("backup_id")
    restore.add_argument("--apply", action="store_true", help="write the restored documents back to the store")

    verify = sub.add_parser("verify", help="check that a backup decrypts and parses, without writing anything")
    verify.add_argument("backup_id")
    return parser


async def verify_backup(backup: BackupEngine, backup_id: str) -> bool:
    """Decrypt and parse one artifact. Prints the verdict; True when the backup is usable."""
    try:
        items = await backup.restore_items(backup_id)
    except (BackupNotFound, CryptoError, InvalidInput) as e:
        LOGGER.warning(f"Backup {backup_id} failed verification: {e}")
        print(f"❌ {backup_id}: corrupted or missing ({e})")
        return False
    print(f"✅ {backup_id}: OK, {len(items)} documents")
    return True


async def _run(args: argparse.Namespace) -> int:
    context = await AppContext.create()
    try:
        if args.command == "verify":
            return 0 if await verify_backup(context.backup, args.backup_id) else 1

        if args.command == "restore":
            if args.apply:
                count = await context.backup.reload(args.backup_id)
                print(f"✅ Reloaded {count} documents from {args.backup_id}")
            else:
                records = await context.backup.restore(args.backup_id)
                print(f"✅ {args.backup_id}: {len(records)} interaction records")
            return 0

        result = await context.tasks.run_task(args.command, notify_on_completion=args.notify, period=args.period)
        print(f"✅ Task {result['taskType']} finished at {result['timestamp']}")
        return 0
    finally:
        await context.aclose()


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_run(args))
    except Exception as e:
        LOGGER.error(f"{args.command} failed: {e}", exc_info=True)
        print(f"❌ {args.command} failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
