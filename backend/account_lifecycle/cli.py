import argparse
import asyncio
import json
import uuid
from typing import Any, Dict

from account_lifecycle.core.logging_config import configure_logging
from account_lifecycle.db.base import Base
from account_lifecycle.db.session import SessionLocal, engine
from account_lifecycle import models  # noqa: F401  (registers tables on Base.metadata)
from account_lifecycle.services import account_deletion, deletion_sweeper
from account_lifecycle.services.identity import IdentityProviderError, build_identity_gateway


def _parse_linked(values: list[str] | None) -> list[tuple[str, str | None]]:
    linked: list[tuple[str, str | None]] = []
    for raw in values or []:
        provider, _, subject = (raw or "").partition(":")
        provider = provider.strip().lower()
        if not provider:
            raise SystemExit(f"Invalid --link value: {raw!r} (expected provider[:subject])")
        linked.append((provider, subject.strip() or None))
    return linked


def _parse_user_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID((raw or "").strip())
    except ValueError:
        raise SystemExit(f"Invalid user id: {raw!r}")


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Database tables created")


async def create_user(*, email: str, password: str | None, linked: list[tuple[str, str | None]]) -> None:
    email_norm = (email or "").strip().lower()
    if not email_norm or "@" not in email_norm:
        raise SystemExit("Invalid email")
    gateway = build_identity_gateway(SessionLocal)
    try:
        account = await gateway.create_user(email_norm, password, linked=linked)
    except IdentityProviderError as exc:
        raise SystemExit(f"Failed to create user: {exc}")
    providers = ", ".join(identity.provider for identity in account.identities) or "-"
    print(f"User created: {account.email} id={account.user_id} password={'yes' if account.has_password else 'no'} linked={providers}")


def _summary_payload(summary: deletion_sweeper.SweepSummary) -> Dict[str, Any]:
    return {
        "run_id": summary.run_id,
        "processed": summary.processed,
        "succeeded": summary.succeeded,
        "skipped": summary.skipped,
        "failed": [
            {"user_id": str(item.user_id), "request_id": str(item.request_id), "reason": item.reason}
            for item in summary.failed
        ],
        "started_at": summary.started_at.isoformat(),
        "finished_at": summary.finished_at.isoformat() if summary.finished_at else None,
    }


async def sweep_deletions(*, limit: int | None, concurrency: int | None) -> bool:
    """Run one sweep in-process (operator path; the shared secret guards the HTTP path only)."""
    gateway = build_identity_gateway(SessionLocal)
    summary = await deletion_sweeper.run_sweep(
        session_factory=SessionLocal,
        identity=gateway,
        limit=limit,
        concurrency=concurrency,
    )
    print(json.dumps(_summary_payload(summary), indent=2))
    return not summary.failed


async def deletion_status(user_id: uuid.UUID) -> None:
    async with SessionLocal() as session:
        status = await account_deletion.get_deletion_status(session, user_id)
    if not status.pending:
        print(f"No pending deletion for {user_id}")
        return
    print(
        f"Deletion pending for {user_id}: requested_at={status.requested_at.isoformat()} "
        f"scheduled_for={status.scheduled_for_deletion_at.isoformat()}"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Account lifecycle utilities")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create tables (local/dev; use migrations in production)")

    user = subparsers.add_parser("create-user", help="Create an identity in the configured provider")
    user.add_argument("--email", required=True, help="User email")
    user.add_argument("--password", help="Password (omit for a social-only account)")
    user.add_argument(
        "--link",
        action="append",
        metavar="PROVIDER[:SUBJECT]",
        help="Linked social login, repeatable (e.g. google:1234)",
    )

    sweep = subparsers.add_parser("sweep-deletions", help="Hard-delete accounts whose grace period has elapsed")
    sweep.add_argument("--limit", type=int, help="Max requests to process in this run")
    sweep.add_argument("--concurrency", type=int, help="Max identity deletions in flight")

    status = subparsers.add_parser("deletion-status", help="Show the pending deletion for a user")
    status.add_argument("--user-id", required=True, help="User UUID")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "init-db":
        asyncio.run(init_db())
        return True

    if args.command == "create-user":
        asyncio.run(create_user(email=args.email, password=args.password, linked=_parse_linked(args.link)))
        return True

    if args.command == "sweep-deletions":
        if not asyncio.run(sweep_deletions(limit=args.limit, concurrency=args.concurrency)):
            raise SystemExit(1)
        return True

    if args.command == "deletion-status":
        asyncio.run(deletion_status(_parse_user_id(args.user_id)))
        return True

    return False


def main(argv: list[str] | None = None):
    configure_logging()
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
