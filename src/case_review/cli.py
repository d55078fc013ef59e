"""Command line front end for case file review.

Usage:
    case-review list
    case-review show EXP-001
    case-review approve EXP-001
    case-review reject EXP-001 -j "Foto ilegible"
    case-review deactivate EXP-001 --yes
    case-review edit EXP-001 --code EXP-001A --description "..."

Environment Variables:
    CASE_REVIEW_API_URL: backend base URL (default: http://localhost:3000)
    CASE_REVIEW_TOKEN: bearer token for the session
    CASE_REVIEW_USER_ID / CASE_REVIEW_USER_NAME / CASE_REVIEW_ROLE: reviewer identity
    CASE_REVIEW_LOG_FORMAT: "json" (default) or "text"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any

import yaml

from . import __version__
from .board import FAILED, OK, Outcome, ReviewBoard
from .config import Config, load_yaml_config
from .errors import ConfigurationError
from .models import CaseFile
from .oplog import setup_logging
from .prompts import AssumeYes, ConsoleNotifier, ConsolePrompter
from .session import StaticSessionProvider, load_session

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def format_timestamp(value: datetime | None) -> str:
    """dd/mm/YYYY HH:MM:SS in local time, empty for missing values."""
    if value is None:
        return ""
    return value.astimezone().strftime("%d/%m/%Y %H:%M:%S")


def case_to_dict(case: CaseFile) -> dict[str, Any]:
    return {
        "id": case.id,
        "code": case.code,
        "description": case.description,
        "registration_date": case.registration_date.isoformat() if case.registration_date else None,
        "technician_id": case.technician_id,
        "technician_name": case.technician_name,
        "state": case.state.label,
        "justification": case.justification,
        "approver_id": case.approver_id,
        "approver_name": case.approver_name,
        "state_changed_at": case.state_changed_at.isoformat() if case.state_changed_at else None,
        "active": case.active,
        "evidence": [
            {
                "id": item.id,
                "description": item.description,
                "color": item.color,
                "size": item.size,
                "weight": item.weight,
                "location": item.location,
            }
            for item in case.evidence
        ],
    }


def _print_case_line(case: CaseFile) -> None:
    flag = "active" if case.active else "inactive"
    print(
        f"{case.code:<16} {case.state.label:<9} {flag:<8} "
        f"{format_timestamp(case.registration_date):<19} "
        f"{len(case.evidence):>3} evidence  {case.description}"
    )


def _print_case_detail(case: CaseFile) -> None:
    print(f"Case file: {case.code}  [{case.state.label.upper()}]")
    print(f"  Registered: {format_timestamp(case.registration_date)}")
    print(f"  Technician: {case.technician_name or case.technician_id}")
    print(f"  Active: {'yes' if case.active else 'no'}")
    if case.description:
        print(f"  Description: {case.description}")
    if case.approver_name:
        print(f"  Reviewer: {case.approver_name}")
    if case.state_changed_at:
        print(f"  State changed: {format_timestamp(case.state_changed_at)}")
    if case.justification:
        print(f"  Justification: {case.justification}")
    print("  Evidence:")
    if not case.evidence:
        print("    (none)")
    for item in case.evidence:
        parts = [item.description or "No description"]
        if item.color:
            parts.append(f"color: {item.color}")
        if item.size:
            parts.append(f"size: {item.size}")
        if item.weight is not None:
            parts.append(f"weight: {item.weight}g")
        if item.location:
            parts.append(f"location: {item.location}")
        print("    - " + " | ".join(parts))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="case-review",
        description="Review, approve and maintain case files.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--config", help="YAML config file (client + session sections)")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List case files with their evidence")

    p = sub.add_parser("show", help="Show one case file")
    p.add_argument("code")

    p = sub.add_parser("approve", help="Approve a case file")
    p.add_argument("code")
    p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    p = sub.add_parser("reject", help="Reject a case file with a justification")
    p.add_argument("code")
    p.add_argument("--justification", "-j", help="Justification (prompted if omitted)")

    p = sub.add_parser("activate", help="Re-activate a case file")
    p.add_argument("code")

    p = sub.add_parser("deactivate", help="Deactivate a case file")
    p.add_argument("code")
    p.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")

    p = sub.add_parser("edit", help="Edit code and/or description of an active case file")
    p.add_argument("code")
    p.add_argument("--code", dest="new_code", help="New code (default: unchanged)")
    p.add_argument("--description", help="New description (default: unchanged)")

    return parser


def _load_settings(args: argparse.Namespace) -> tuple[Config, StaticSessionProvider]:
    if args.config:
        config = Config.from_file(args.config)
        session_section = load_yaml_config(args.config).get("session") or {}
        if not isinstance(session_section, dict):
            raise ConfigurationError("'session' section must be a mapping")
    else:
        config = Config.load()
        session_section = {}
    return config, StaticSessionProvider(load_session(session_section))


def _report(outcome: Outcome, as_json: bool) -> int:
    if as_json:
        print(
            json.dumps(
                {
                    "status": outcome.status,
                    "message": outcome.message,
                    "case": case_to_dict(outcome.case) if outcome.case else None,
                },
                indent=2,
            )
        )
    elif outcome.case is not None:
        _print_case_detail(outcome.case)
    elif outcome.status != FAILED:
        print(outcome.message)
    return EXIT_FAILED if outcome.status == FAILED else EXIT_OK


async def run_command(args: argparse.Namespace, board: ReviewBoard) -> int:
    loaded = await board.load()
    if not loaded.ok:
        return EXIT_FAILED

    if args.command == "list":
        if args.json:
            print(json.dumps([case_to_dict(c) for c in board.cases], indent=2))
            return EXIT_OK
        if not board.cases:
            print("No case files to review.")
        for case in board.cases:
            _print_case_line(case)
        return EXIT_OK

    if args.command == "show":
        case = board.reconciler.lookup(args.code)
        if case is None:
            print(f"Case file {args.code} not found.", file=sys.stderr)
            return EXIT_FAILED
        return _report(Outcome(OK, case=case), args.json)

    if args.command == "approve":
        outcome = await board.approve(args.code)
    elif args.command == "reject":
        if args.justification is None:
            outcome = await board.request_rejection(args.code)
        else:
            outcome = await board.reject(args.code, args.justification)
    elif args.command == "activate":
        outcome = await board.activate(args.code)
    elif args.command == "deactivate":
        outcome = await board.deactivate(args.code)
    elif args.command == "edit":
        current = board.reconciler.lookup(args.code)
        new_code = args.new_code if args.new_code is not None else args.code
        description = args.description
        if description is None:
            description = current.description if current else ""
        outcome = await board.edit(args.code, new_code, description)
    else:
        raise ValueError(f"Unknown command: {args.command}")

    return _report(outcome, args.json)


async def _main_async(args: argparse.Namespace, config: Config, session: StaticSessionProvider) -> int:
    prompter = ConsolePrompter()
    skip_confirm = getattr(args, "yes", False)
    async with ReviewBoard(
        config,
        session,
        confirmer=AssumeYes() if skip_confirm else prompter,
        collector=prompter,
        notifier=ConsoleNotifier(),
    ) as board:
        return await run_command(args, board)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=getattr(logging, str(args.log_level).upper(), logging.WARNING))

    try:
        config, session = _load_settings(args)
    except (ConfigurationError, FileNotFoundError, yaml.YAMLError) as e:
        logger.error("Configuration error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    logger.info("Using backend %s", config.api_url)
    try:
        return asyncio.run(_main_async(args, config, session))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_FAILED


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
