from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from datetime import date
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from refdata import __version__
from refdata.app import (
    LOADERS,
    apply_change_request,
    approve_change_request,
    decide_change_request,
    outbox_status,
    publish_outbox,
    record_timeline,
    recover_stale_events,
    reject_change_request,
    requeue_failed_events,
    run_loader,
)
from refdata.config import configure_logging, get_loader_config
from refdata.domain.model import DatasetType

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Load, approve and publish reference data")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    load = subparsers.add_parser("load", help="Run a reference-data loader")
    load.add_argument("loader", choices=sorted(LOADERS), help="Loader to run")
    load.add_argument(
        "--source",
        type=str,
        help="File path or URL to read from (defaults to REFDATA_SOURCE or the loader default)",
    )
    load.add_argument(
        "--dry-run",
        action="store_true",
        help="Stage and diff only; leave production untouched",
    )
    load.add_argument(
        "--incremental",
        action="store_true",
        default=None,
        help="Only consider keys present in the source; never infer deletions",
    )
    load.add_argument(
        "--auto-apply",
        action="store_true",
        default=None,
        help="Apply changes directly instead of submitting a change request",
    )
    load.add_argument("--batch-size", type=int, help="Staging batch size (defaults to config)")
    load.add_argument("--user", type=str, default="system", help="Actor recorded on new rows")

    outbox = subparsers.add_parser("outbox", help="Outbox publishing commands")
    outbox_sub = outbox.add_subparsers(dest="outbox_command", required=True)
    publish = outbox_sub.add_parser("publish", help="Send pending events to the message bus")
    publish.add_argument(
        "--continuous",
        action="store_true",
        help="Keep polling instead of draining once",
    )
    publish.add_argument(
        "--max-iterations",
        type=int,
        help="Stop a continuous run after this many polls",
    )
    outbox_sub.add_parser("status", help="Count events per status")
    recover = outbox_sub.add_parser("recover", help="Release events stuck in PROCESSING")
    recover.add_argument(
        "--older-than-minutes",
        type=int,
        help="Age threshold (defaults to REFDATA_OUTBOX_STALE_MINUTES)",
    )
    requeue = outbox_sub.add_parser("requeue", help="Give FAILED events a fresh retry budget")
    requeue.add_argument(
        "--event-id",
        action="append",
        dest="event_ids",
        help="Event id to requeue (repeatable; all FAILED events when omitted)",
    )

    change_request = subparsers.add_parser("change-request", help="Change request commands")
    cr_sub = change_request.add_subparsers(dest="cr_command", required=True)
    decide = cr_sub.add_parser("decide", help="Evaluate a change request against policy")
    decide.add_argument("reference", help="Change request id or CR number")
    decide.add_argument("--approver", type=str, default="policy")
    approve = cr_sub.add_parser("approve", help="Approve a change request")
    approve.add_argument("reference", help="Change request id or CR number")
    approve.add_argument("--approver", type=str, required=True)
    reject = cr_sub.add_parser("reject", help="Reject a change request")
    reject.add_argument("reference", help="Change request id or CR number")
    reject.add_argument("--reason", type=str, required=True)
    reject.add_argument("--reviewer", type=str)
    apply = cr_sub.add_parser("apply", help="Write an approved change request to production")
    apply.add_argument("reference", help="Change request id or CR number")
    apply.add_argument("--actor", type=str)
    apply.add_argument(
        "--no-events",
        action="store_true",
        help="Do not write outbox events for the applied changes",
    )

    timeline = subparsers.add_parser("timeline", help="Show every version of one record")
    timeline.add_argument("business_key", help="Business key, e.g. an ISO alpha-2 code")
    timeline.add_argument(
        "--dataset",
        type=DatasetType,
        choices=list(DatasetType),
        default=DatasetType.COUNTRY,
    )
    timeline.add_argument("--code-system", type=str, default="ISO3166-1")
    timeline.add_argument("--on", type=str, help="ISO date to resolve the valid version for")

    return parser.parse_args(list(argv))


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid ISO date: {value}") from exc


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _validate(args: argparse.Namespace) -> None:
    if args.command == "load" and args.batch_size is not None and args.batch_size <= 0:
        raise ValueError("Batch size must be positive")
    if args.command == "timeline" and args.on:
        _parse_date(args.on)
    if args.command == "outbox" and args.outbox_command == "requeue" and args.event_ids:
        for event_id in args.event_ids:
            _parse_uuid(event_id)
    if (
        args.command == "outbox"
        and args.outbox_command == "publish"
        and args.max_iterations is not None
        and args.max_iterations <= 0
    ):
        raise ValueError("Max iterations must be positive")


def _run_load(args: argparse.Namespace) -> int:
    config = get_loader_config(source=args.source)
    if args.auto_apply is not None:
        config = replace(config, auto_apply_changes=args.auto_apply)
    if args.batch_size is not None:
        config = replace(config, batch_size=args.batch_size)
    result = run_loader(
        args.loader,
        source=args.source,
        config=config,
        dry_run=args.dry_run,
        incremental=args.incremental,
        user_id=args.user,
    )
    log.info("Loader finished: %s", result.summary())
    return 0 if result.succeeded else 1


def _run_outbox(args: argparse.Namespace) -> None:
    if args.outbox_command == "publish":
        report = publish_outbox(continuous=args.continuous, max_iterations=args.max_iterations)
        log.info(
            "Outbox publish finished: processed=%s, retried=%s, failed=%s",
            report.processed,
            report.retried,
            report.failed,
        )
    elif args.outbox_command == "status":
        for status, count in outbox_status().items():
            log.info("%-10s %s", status, count)
    elif args.outbox_command == "recover":
        released = recover_stale_events(older_than_minutes=args.older_than_minutes)
        log.info("Released %s stale events", released)
    elif args.outbox_command == "requeue":
        event_ids = [_parse_uuid(value) for value in args.event_ids] if args.event_ids else None
        log.info("Requeued %s events", requeue_failed_events(event_ids))
    else:
        raise ValueError(f"Unsupported outbox command: {args.outbox_command}")


def _run_change_request(args: argparse.Namespace) -> None:
    if args.cr_command == "decide":
        status = decide_change_request(args.reference, approver=args.approver)
        log.info("Change request %s is %s", args.reference, status)
    elif args.cr_command == "approve":
        approve_change_request(args.reference, approver=args.approver)
    elif args.cr_command == "reject":
        reject_change_request(args.reference, reason=args.reason, reviewer=args.reviewer)
    elif args.cr_command == "apply":
        change_set = apply_change_request(
            args.reference, actor=args.actor, publish_events=not args.no_events
        )
        log.info(
            "Applied %s: added=%s, updated=%s, deleted=%s",
            args.reference,
            change_set.added,
            change_set.updated,
            change_set.deleted,
        )
    else:
        raise ValueError(f"Unsupported change-request command: {args.cr_command}")


def _run_timeline(args: argparse.Namespace) -> None:
    timeline = record_timeline(args.dataset, args.business_key, args.code_system)
    if not len(timeline):
        log.info("No versions recorded for %s:%s", args.code_system, args.business_key)
        return
    for record in timeline:
        log.info(
            "v%s [%s, %s) recorded %s by %s%s",
            record.version,
            record.valid_from,
            record.valid_to or "open",
            record.recorded_at.isoformat(),
            record.recorded_by or "-",
            " (correction)" if record.is_correction else "",
        )
    on = _parse_date(args.on) if args.on else None
    valid = timeline.current(on=on)
    log.info("Valid version on %s: %s", on or "today", f"v{valid.version}" if valid else "none")


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

    exit_code = 0
    try:
        if parsed_args.command == "load":
            exit_code = _run_load(parsed_args)
        elif parsed_args.command == "outbox":
            _run_outbox(parsed_args)
        elif parsed_args.command == "change-request":
            _run_change_request(parsed_args)
        elif parsed_args.command == "timeline":
            _run_timeline(parsed_args)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console-script entry point."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
