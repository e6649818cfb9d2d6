"""Operator CLI for joiner/mover/leaver and mailbox operations.

This module is a thin wrapper around app.core.provisioning_service, so the CLI
and the HTTP API apply exactly the same rules.
"""
from __future__ import annotations
import argparse
import json
import os
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.errors import ProvisioningError
from app.core.models import CreateUserRequest, UpdateUserRequest
from scripts import audit

EVENT_BY_COMMAND = {
    "joiner": "joiner",
    "mover": "mover",
    "mailbox-enable": "mailbox_enable",
    "mailbox-disable": "mailbox_disable",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Active Directory / Exchange JML helper")
    parser.add_argument("--operator", default=os.environ.get("JML_OPERATOR", "cli"),
                        help="Operator identifier for audit logs (default: cli)")

    sub = parser.add_subparsers(dest="cmd")

    sj = sub.add_parser("joiner", help="Create a user account")
    sj.add_argument("--employee-id", required=True)
    sj.add_argument("--first", required=True)
    sj.add_argument("--last", required=True)
    _add_org_arguments(sj)
    sj.add_argument("--target-ou")

    sm = sub.add_parser("mover", help="Update a user account by employeeId")
    sm.add_argument("--employee-id", required=True)
    sm.add_argument("--first")
    sm.add_argument("--last")
    _add_org_arguments(sm)
    sm.add_argument("--state", choices=["enabled", "disabled"],
                    help="Enable or disable the account")

    sg = sub.add_parser("get", help="Show a user account")
    sg.add_argument("--sam", required=True)

    se = sub.add_parser("mailbox-enable", help="Create/repair a mailbox and send the welcome mail")
    se.add_argument("--sam", required=True)

    sd = sub.add_parser("mailbox-disable", help="Disable a mailbox")
    sd.add_argument("--sam", required=True)

    return parser


def _add_org_arguments(sp: argparse.ArgumentParser) -> None:
    for name in ("office", "company", "division", "department", "title", "description"):
        sp.add_argument(f"--{name}")
    sp.add_argument("--manager-employee-id")
    sp.add_argument("--employee-number")


def _run(args, service):
    if args.cmd == "joiner":
        request = CreateUserRequest(
            employee_id=args.employee_id,
            first_name=args.first,
            last_name=args.last,
            office=args.office,
            company=args.company,
            division=args.division,
            department=args.department,
            title=args.title,
            description=args.description,
            manager_employee_id=args.manager_employee_id,
            employee_number=args.employee_number,
            target_ou=args.target_ou,
        )
        return service.create_user(request, operator=args.operator).to_dict()
    if args.cmd == "mover":
        request = UpdateUserRequest(
            employee_id=args.employee_id,
            first_name=args.first,
            last_name=args.last,
            office=args.office,
            company=args.company,
            division=args.division,
            department=args.department,
            title=args.title,
            description=args.description,
            manager_employee_id=args.manager_employee_id,
            employee_number=args.employee_number,
            account_state=args.state,
        )
        return service.update_user(request, operator=args.operator).to_dict()
    if args.cmd == "get":
        return service.get_user(args.sam).to_dict()
    if args.cmd == "mailbox-enable":
        return service.enable_mailbox(args.sam, operator=args.operator).to_dict()
    if args.cmd == "mailbox-disable":
        return service.disable_mailbox(args.sam, operator=args.operator).to_dict()
    raise ValueError(f"Unknown command: {args.cmd}")


def _target_of(args) -> str:
    return getattr(args, "sam", None) or getattr(args, "employee_id", None) or "-"


def main(argv=None, service=None) -> int:
    """Command-line entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 2

    owns_service = service is None
    if owns_service:
        from app.config import load_settings
        from app.core.provisioning_service import build_service

        cfg = load_settings()
        service = build_service(cfg)

    try:
        result = _run(args, service)
    except ProvisioningError as e:
        print(f"[{args.cmd}] Error: {e.detail}", file=sys.stderr)
        event_type = EVENT_BY_COMMAND.get(args.cmd)
        if event_type:
            audit.safe_log_jml_event(
                event_type,
                _target_of(args),
                operator=args.operator,
                details={"error": e.detail},
                success=False
            )
        return 1
    finally:
        if owns_service:
            dispatcher = service.notifications.dispatcher
            dispatcher.drain(timeout=30)
            dispatcher.shutdown()

    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
