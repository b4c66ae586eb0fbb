from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from signal import SIGINT, signal
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from creditkeeper import __version__
from creditkeeper.app import (
    Failure,
    build_access_service,
    create_profile,
    issue_session,
    upgrade_database,
)
from creditkeeper.config import configure_logging
from creditkeeper.domain.model import GrantStatus, MigrationStatus

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from creditkeeper.app import AccessService, Outcome

log = logging.getLogger(__name__)


class CommandFailed(RuntimeError):
    """A facade call returned a failure result."""


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Manage credits, guests and sessions")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("resolve", help="Resolve the current session")
    subparsers.add_parser("balance", help="Show the credit balance of the current identity")

    spend = subparsers.add_parser("spend", help="Spend credits as the current identity")
    spend.add_argument("--amount", type=int, required=True, help="Number of credits to spend")

    guest = subparsers.add_parser("guest", help="Guest identity commands")
    guest_sub = guest.add_subparsers(dest="guest_command", required=True)
    guest_sub.add_parser("create", help="Create the local guest identity")
    guest_migrate = guest_sub.add_parser("migrate", help="Move guest data into an account")
    guest_migrate.add_argument(
        "--user-id",
        type=str,
        required=True,
        help="Account that receives the guest's credits and artifacts",
    )

    grant = subparsers.add_parser("grant", help="Grant a product to an account")
    grant.add_argument("--user-id", type=str, required=True, help="Receiving account")
    grant.add_argument("--product-id", type=str, required=True, help="Catalog product id")
    grant.add_argument(
        "--transaction-id",
        type=str,
        required=True,
        help="Store transaction id; granting the same id twice is a no-op",
    )

    onboarding = subparsers.add_parser("onboarding", help="Onboarding commands")
    onboarding_sub = onboarding.add_subparsers(dest="onboarding_command", required=True)
    onboarding_sub.add_parser("complete", help="Mark onboarding as completed")

    sign_out = subparsers.add_parser("sign-out", help="Sign out of the current account")
    sign_out.add_argument(
        "--delete-account",
        action="store_true",
        help="Delete the account and every local trace of it",
    )

    profile = subparsers.add_parser("profile", help="Local profile store commands")
    profile_sub = profile.add_subparsers(dest="profile_command", required=True)
    profile_create = profile_sub.add_parser("create", help="Create an account profile")
    profile_create.add_argument("--user-id", type=str, required=True, help="Account id")
    profile_create.add_argument(
        "--onboarded",
        action="store_true",
        help="Mark onboarding as completed",
    )

    session = subparsers.add_parser("session", help="Local session token commands")
    session_sub = session.add_subparsers(dest="session_command", required=True)
    session_issue = session_sub.add_parser("issue", help="Issue a session token")
    session_issue.add_argument("--user-id", type=str, required=True, help="Account id")
    session_issue.add_argument(
        "--ttl-hours",
        type=float,
        help="Token lifetime in hours (default: no expiry)",
    )

    db = subparsers.add_parser("db", help="Database commands")
    db_sub = db.add_subparsers(dest="db_command", required=True)
    db_sub.add_parser("upgrade", help="Upgrade the schema to the latest revision")

    return parser.parse_args(list(argv))


def _validate(args: argparse.Namespace) -> None:
    if args.command == "spend" and args.amount <= 0:
        raise ValueError("Spend amount must be positive")
    if args.command == "session" and args.ttl_hours is not None and args.ttl_hours <= 0:
        raise ValueError("Token lifetime must be positive")
    for name in ("user_id", "product_id", "transaction_id"):
        value = getattr(args, name, None)
        if value is not None and not value.strip():
            raise ValueError(f"--{name.replace('_', '-')} must not be blank")


def _unwrap[T](outcome: Outcome[T]) -> T:
    if isinstance(outcome, Failure):
        raise CommandFailed(outcome.message) from outcome.error
    return outcome.value


async def _run_service_command(args: argparse.Namespace, service: AccessService) -> None:
    if args.command == "guest" and args.guest_command == "create":
        guest = _unwrap(await service.create_guest())
        log.info("Guest identity %s", guest.guest_id)
        return
    if args.command == "guest" and args.guest_command == "migrate":
        result = _unwrap(await service.migrate(args.user_id))
        if result.status is MigrationStatus.NO_GUEST:
            log.info("No guest identity to migrate")
        else:
            log.info(
                "Migration %s: credits=%s, artifacts=%s, user=%s",
                result.status,
                result.credits_transferred,
                result.artifacts_transferred,
                result.user_id,
            )
        return
    if args.command == "grant":
        granted = _unwrap(await service.grant(args.user_id, args.product_id, args.transaction_id))
        verb = "Granted" if granted.status is GrantStatus.APPLIED else "Already granted"
        log.info(
            "%s %s: balance %s/%s",
            verb,
            args.transaction_id,
            granted.record.credits_current,
            granted.record.credits_max,
        )
        return

    decision = _unwrap(await service.resolve())
    if args.command == "resolve":
        log.info(
            "authenticated=%s, guest=%s, identity=%s, source=%s",
            decision.is_authenticated,
            decision.is_guest,
            decision.identity.cache_key if decision.identity else None,
            decision.source,
        )
    elif args.command == "balance":
        record = _unwrap(await service.get_balance())
        log.info("Balance: %s/%s credits", record.credits_current, record.credits_max)
    elif args.command == "spend":
        record = _unwrap(await service.spend(args.amount))
        log.info("Spent %s credits, %s left", args.amount, record.credits_current)
    elif args.command == "onboarding":
        _unwrap(await service.complete_onboarding())
        log.info("Onboarding completed")
    elif args.command == "sign-out":
        if args.delete_account:
            _unwrap(await service.delete_account())
            log.info("Account deleted")
        else:
            _unwrap(await service.sign_out())
            log.info("Signed out")
    else:
        raise ValueError(f"Unsupported command: {args.command}")


async def _run(args: argparse.Namespace) -> None:
    service = build_access_service()
    try:
        await _run_service_command(args, service)
    finally:
        await service.aclose()


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    configure_logging()
    parsed_args: argparse.Namespace
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        _validate(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        if parsed_args.command == "db":
            revision = upgrade_database()
            log.info("Database schema is at revision %s", revision)
        elif parsed_args.command == "profile":
            create_profile(parsed_args.user_id, onboarding_completed=parsed_args.onboarded)
        elif parsed_args.command == "session":
            ttl = (
                timedelta(hours=parsed_args.ttl_hours)
                if parsed_args.ttl_hours is not None
                else None
            )
            token = issue_session(parsed_args.user_id, ttl=ttl)
            log.info("Session token for %s: %s", parsed_args.user_id, token)
        else:
            asyncio.run(_run(parsed_args))
    except CommandFailed as exc:
        log.error("%s", exc)  # noqa: TRY400
        sys.exit(1)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console entry point: load `.env`, install the SIGINT handler, run the CLI."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
