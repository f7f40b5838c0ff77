#!/usr/bin/env python3
# SPDX-License-Identifier: Apache-2.0
#
# Copyright (c) 2024-2025 ScheduleSync Contributors
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
ScheduleSync - personal schedule manager with Google Calendar sync

Main entry point for the command-line application.
"""

import argparse
import asyncio
import os
import sys
import traceback

from config.__version__ import get_display_version
from config.app_config import ConfigManager
from core.schedule.catalog import ALL_PRIORITIES, is_overdue, priority_label
from core.schedule.engine import OperationOutcome, ReconciliationEngine
from core.schedule.exceptions import RemoteError, StorageError, ValidationError
from core.schedule.models import Priority
from core.schedule.sync_scheduler import SyncScheduler
from data.database.connection import DatabaseConnection
from data.storage.local_store import SqliteLocalStore
from engines.calendar_sync import create_remote_client
from utils.logger import setup_logging

ACCESS_TOKEN_ENV = "SCHEDULESYNC_GOOGLE_ACCESS_TOKEN"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2

# Global logger for exception hook
_logger = None


def exception_hook(exctype, value, tb):
    """Log uncaught exceptions before the interpreter exits."""
    error_msg = "".join(traceback.format_exception(exctype, value, tb))

    if _logger:
        _logger.critical(
            f"Uncaught exception: {exctype.__name__}: {value}",
            exc_info=(exctype, value, tb),
        )
    else:
        print(f"CRITICAL ERROR: {error_msg}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schedulesync",
        description="Personal schedule manager with optional Google Calendar sync",
    )
    parser.add_argument("--version", action="version", version=get_display_version())
    subparsers = parser.add_subparsers(dest="command", required=True)

    add_parser = subparsers.add_parser("add", help="Create a schedule")
    add_parser.add_argument("--title", required=True)
    add_parser.add_argument("--date", required=True, help="YYYY-MM-DD")
    add_parser.add_argument("--time", required=True, help="HH:MM")
    add_parser.add_argument("--description", default="")
    add_parser.add_argument("--priority", choices=Priority.values(), default="medium")

    list_parser = subparsers.add_parser("list", help="List schedules by date and time")
    list_parser.add_argument(
        "--priority", choices=[ALL_PRIORITIES] + Priority.values(), default=ALL_PRIORITIES
    )

    update_parser = subparsers.add_parser("update", help="Edit a schedule")
    update_parser.add_argument("id")
    update_parser.add_argument("--title")
    update_parser.add_argument("--date")
    update_parser.add_argument("--time")
    update_parser.add_argument("--description")
    update_parser.add_argument("--priority", choices=Priority.values())

    delete_parser = subparsers.add_parser("delete", help="Delete a schedule")
    delete_parser.add_argument("id")
    delete_parser.add_argument("--yes", action="store_true", help="Skip confirmation")

    clear_parser = subparsers.add_parser("clear", help="Delete every schedule")
    clear_parser.add_argument("--yes", action="store_true", help="Skip confirmation")

    subparsers.add_parser("sync", help="Run a two-way sync with the remote calendar")
    subparsers.add_parser("watch", help="Keep running and sync periodically")

    login_parser = subparsers.add_parser("login", help="Store a Google access token")
    login_parser.add_argument("--token", required=True)
    login_parser.add_argument("--expires-in", type=int, default=None, help="Seconds")

    subparsers.add_parser("logout", help="Forget the stored Google access token")

    return parser


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    answer = input(f"{prompt} [y/N] ").strip().lower()
    return answer in ("y", "yes")


def _print_result(action: str, result, removed: bool = False) -> None:
    if result.outcome is OperationOutcome.SYNCED:
        if not removed:
            detail = "saved and synced"
        elif result.record.remote_id:
            detail = "removed locally and remotely"
        else:
            detail = "removed"
        print(f"{action}: {detail} ({result.record.id})")
    else:
        detail = "removed locally only" if removed else "saved locally only"
        reason = f": {result.error}" if result.error else ""
        print(f"{action}: {detail} ({result.record.id}){reason}")


def _print_records(engine: ReconciliationEngine, priority: str) -> None:
    records = engine.catalog.view(priority)
    if not records:
        print("No schedules.")
        return

    for record in records:
        overdue = " (overdue)" if is_overdue(record) else ""
        print(
            f"{record.date} {record.time}  [{priority_label(record.priority)}] "
            f"{record.title}{overdue}  <{record.sync_status.value}>  {record.id}"
        )
        if record.description:
            print(f"    {record.description}")


def _build_token_store(config):
    if config.get("calendar.provider", "none") == "none":
        return None

    from data.security.encryption import SecurityManager
    from data.security.token_store import TokenStore

    return TokenStore(SecurityManager())


async def _connect(client, logger, access_token=None, expires_in=None) -> bool:
    try:
        return await client.sign_in(access_token, expires_in=expires_in)
    except RemoteError as e:
        logger.warning(f"Could not connect to remote calendar: {e}")
        print(f"Remote calendar unavailable ({e}); working locally.", file=sys.stderr)
        return False


async def _watch(engine: ReconciliationEngine, config, logger) -> int:
    interval = config.get("calendar.sync_interval_minutes", 0)
    if not interval:
        print("Periodic sync is disabled (calendar.sync_interval_minutes = 0).")
        return EXIT_OK

    scheduler = SyncScheduler(engine, interval_minutes=interval)
    scheduler.start()
    scheduler.sync_now()
    print(f"Syncing every {interval} minute(s). Press Ctrl+C to stop.")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.stop()
    return EXIT_OK


async def run_command(args, config, logger) -> int:
    """Wire collaborators and execute one CLI command."""
    db = DatabaseConnection(config.get("storage.path"))
    db.initialize_schema()
    store = SqliteLocalStore(
        db,
        current_key=config.get("storage.current_key"),
        legacy_key=config.get("storage.legacy_key"),
    )

    client = create_remote_client(config, _build_token_store(config))
    engine = ReconciliationEngine(store, client)

    try:
        engine.load()

        if args.command == "login":
            if client is None:
                print("No remote calendar provider configured.", file=sys.stderr)
                return EXIT_USAGE
            if await _connect(client, logger, args.token, args.expires_in):
                print("Connected to remote calendar.")
                return EXIT_OK
            return EXIT_FAILURE

        if args.command == "logout":
            if client is not None:
                await client.sign_out()
            print("Signed out.")
            return EXIT_OK

        if client is not None:
            await _connect(client, logger, os.environ.get(ACCESS_TOKEN_ENV))

        if args.command == "add":
            result = await engine.create({
                "title": args.title,
                "date": args.date,
                "time": args.time,
                "description": args.description,
                "priority": args.priority,
            })
            _print_result("Created", result)

        elif args.command == "list":
            _print_records(engine, args.priority)

        elif args.command == "update":
            changes = {
                name: getattr(args, name)
                for name in ("title", "date", "time", "description", "priority")
                if getattr(args, name) is not None
            }
            result = await engine.update(args.id, changes)
            if result is None:
                print(f"No schedule with id {args.id}.")
            else:
                _print_result("Updated", result)

        elif args.command == "delete":
            if not _confirm(f"Delete schedule {args.id}?", args.yes):
                print("Cancelled.")
                return EXIT_OK
            result = await engine.delete(args.id)
            if result is None:
                print(f"No schedule with id {args.id}.")
            else:
                _print_result("Deleted", result, removed=True)

        elif args.command == "clear":
            if not _confirm("Delete ALL schedules?", args.yes):
                print("Cancelled.")
                return EXIT_OK
            outcome = await engine.clear_all()
            if outcome is OperationOutcome.SYNCED:
                print("Cleared all schedules.")
            else:
                print("Cleared all schedules locally; some remote events were not removed.")

        elif args.command == "sync":
            report = await engine.sync()
            if report is None:
                print("Sync skipped: remote calendar not connected.")
            else:
                print(
                    f"Sync done: {report.pushed} pushed, {report.failed} failed, "
                    f"{report.pulled} pulled."
                )

        elif args.command == "watch":
            return await _watch(engine, config, logger)

        return EXIT_OK

    except ValidationError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return EXIT_USAGE
    except StorageError as e:
        logger.error(f"Storage failure: {e}")
        print(f"Storage failed: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except RemoteError as e:
        logger.error(f"Remote calendar error: {e}")
        print(f"Remote calendar error: {e}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        engine.close()
        if client is not None:
            await client.close()
        db.close()


def main(argv=None) -> int:
    """Application entry point."""
    global _logger

    args = build_parser().parse_args(argv)

    config = ConfigManager()
    # SCHEDULESYNC_ENV takes precedence over the configured level
    level = None if os.environ.get("SCHEDULESYNC_ENV") else config.get("logging.level")
    logger = setup_logging(
        level=level,
        console_output=config.get("logging.console_output", True),
    )
    _logger = logger

    sys.excepthook = exception_hook
    logger.info(f"ScheduleSync {get_display_version()} command: {args.command}")

    try:
        return asyncio.run(run_command(args, config, logger))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
