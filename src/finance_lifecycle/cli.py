"""Finance lifecycle command line interface.

Operational tools for month close and audit inspection:

Usage:
    python -m finance_lifecycle.cli period-status --month 2025-05
    python -m finance_lifecycle.cli close-period --month 2025-05 --actor-id X --reason "..."
    python -m finance_lifecycle.cli reopen-period --month 2025-05 --actor-id X --reason "..."
    python -m finance_lifecycle.cli audit --entity-type EXPENSE --limit 20
    python -m finance_lifecycle.cli init-db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Awaitable, Callable
from uuid import UUID

from finance_lifecycle.config import configure_logging, get_settings
from finance_lifecycle.database import create_schema, dispose_db, get_session, init_db
from finance_lifecycle.errors import LifecycleError
from finance_lifecycle.services.audit_recorder import AuditRecorder
from finance_lifecycle.services.period_lock import PeriodLockRegistry


def parse_uuid(s: str) -> UUID:
    """Parse UUID string."""
    return UUID(s)


class LifecycleCli:
    """Finance lifecycle command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m finance_lifecycle.cli",
            description="Finance lifecycle operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        status = subparsers.add_parser(
            "period-status",
            help="Show lock status of a month, or of all recorded months",
        )
        status.add_argument("--month", type=str, help="Month key (YYYY-MM)")

        for name, help_text in (
            ("close-period", "Close a month against further mutation"),
            ("reopen-period", "Reopen a closed month"),
        ):
            action = subparsers.add_parser(name, help=help_text)
            action.add_argument("--month", type=str, required=True, help="Month key (YYYY-MM)")
            action.add_argument(
                "--actor-id",
                type=parse_uuid,
                required=True,
                help="Acting user ID recorded in the audit trail",
            )
            action.add_argument("--reason", type=str, required=True, help="Mandatory reason")

        audit = subparsers.add_parser("audit", help="List audit records, newest first")
        audit.add_argument("--entity-type", type=str, help="Filter by entity type")
        audit.add_argument("--entity-id", type=str, help="Filter by entity ID")
        audit.add_argument(
            "--limit",
            type=int,
            default=50,
            help="Maximum records to show (default: 50)",
        )
        audit.add_argument(
            "--format",
            type=str,
            choices=["text", "json"],
            default="text",
            help="Output format",
        )

        subparsers.add_parser("init-db", help="Create database tables (development)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        handlers: dict[str, Callable[[argparse.Namespace], Awaitable[int]]] = {
            "period-status": self._cmd_period_status,
            "close-period": self._cmd_close_period,
            "reopen-period": self._cmd_reopen_period,
            "audit": self._cmd_audit,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        configure_logging(get_settings())
        return asyncio.run(self._run_handler(handler, parsed))

    async def _run_handler(
        self,
        handler: Callable[[argparse.Namespace], Awaitable[int]],
        args: argparse.Namespace,
    ) -> int:
        try:
            return await handler(args)
        except LifecycleError as exc:
            print(f"Error [{exc.code}]: {exc.message}", file=sys.stderr)
            return 2
        finally:
            await dispose_db()

    @staticmethod
    def _registry(session: Any) -> PeriodLockRegistry:
        return PeriodLockRegistry(
            session,
            AuditRecorder(session),
            enabled=get_settings().month_close_enabled,
        )

    async def _cmd_period_status(self, args: argparse.Namespace) -> int:
        """Show period lock status."""
        async with get_session() as session:
            registry = self._registry(session)
            if args.month:
                locks = [await registry.get_status(args.month)]
            else:
                locks = await registry.list_locks()

        if not locks:
            print("No months have been closed.")
            return 0
        for lock in locks:
            line = f"{lock.month_key}  {lock.status}"
            if lock.reason:
                line += f"  ({lock.reason})"
            print(line)
        return 0

    async def _cmd_close_period(self, args: argparse.Namespace) -> int:
        """Close a month."""
        async with get_session() as session:
            lock = await self._registry(session).close(args.month, args.actor_id, args.reason)
        print(f"Closed {lock.month_key}.")
        return 0

    async def _cmd_reopen_period(self, args: argparse.Namespace) -> int:
        """Reopen a month."""
        async with get_session() as session:
            lock = await self._registry(session).reopen(args.month, args.actor_id, args.reason)
        print(f"Reopened {lock.month_key}.")
        return 0

    async def _cmd_audit(self, args: argparse.Namespace) -> int:
        """List audit records."""
        async with get_session() as session:
            records = await AuditRecorder(session).list_records(
                entity_type=args.entity_type,
                entity_id=args.entity_id,
                limit=args.limit,
            )

        if args.format == "json":
            for record in records:
                print(json.dumps(record.to_dict(), default=str))
            return 0

        for record in records:
            print(
                f"{record.created_at.isoformat()} | {record.entity_type}:{record.entity_id} "
                f"| {record.action} | actor={record.actor_id} | reason={record.reason or '-'}"
            )
        return 0

    async def _cmd_init_db(self, args: argparse.Namespace) -> int:
        """Create database tables."""
        engine, _ = init_db()
        await create_schema(engine)
        print("Schema created.")
        return 0


def main() -> int:
    """Main entry point."""
    cli = LifecycleCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
