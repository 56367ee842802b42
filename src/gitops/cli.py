"""
gitops CLI.

Thin argparse front-end over GitOperations and the tool dispatcher. All
errors are printed to stderr with exit code 1.
"""

import argparse
import json
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import msgspec

from .audit import EVENT_TYPES, AuditLog, default_audit_path
from .config import GitOpsConfig, load_config
from .errors import GitOpsError
from .operations import GitOperations, LogRequest, StatusRequest
from .output import MAX_LOG_ENTRIES
from .tools import dispatch, tool_names


def _build_operations(config: GitOpsConfig) -> GitOperations:
    audit_path = default_audit_path()
    audit = AuditLog(audit_path) if audit_path else None
    return GitOperations(config, audit=audit)


def _fail(message: str) -> None:
    print(f"error: {message}", file=sys.stderr)
    sys.exit(1)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitops", description="Safe git operations for autonomous agents"
    )
    parser.add_argument("--cwd", help="Repository working directory (default: current)")
    parser.add_argument(
        "--config", type=Path, help="JSON config file (default: $GITOPS_CONFIG_FILE)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("status", help="Show working tree status")
    status.add_argument("--short", action="store_true", help="Short format output")

    log = subparsers.add_parser("log", help="Show recent commits")
    log.add_argument("--count", type=int, default=20, help="Number of commits (1-200)")
    log.add_argument("--full", action="store_true", help="Hash, author, date and subject")

    subparsers.add_parser("summary", help="Branch, changes and recent commits")

    tool = subparsers.add_parser(
        "tool",
        help="Run a tool request and print the JSON response",
        usage="gitops tool NAME [--params JSON | --params -]",
    )
    tool.add_argument("name", help="Tool name (see `gitops tools`)")
    tool.add_argument(
        "--params", default="{}", help="JSON object of parameters, or - to read stdin"
    )

    subparsers.add_parser("tools", help="List available tool names")

    audit = subparsers.add_parser("audit", help="Show recent audit events")
    audit.add_argument("--tail", type=int, default=10, help="Number of events")
    audit.add_argument("--event-type", choices=EVENT_TYPES, help="Only show events of this type")

    subparsers.add_parser("config", help="Print the resolved configuration")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point using argparse."""
    args = _build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except GitOpsError as e:
        _fail(str(e))
        return

    if args.command == "status":
        _cmd_status(config, args.cwd, args.short)
    elif args.command == "log":
        _cmd_log(config, args.cwd, args.count, args.full)
    elif args.command == "summary":
        _cmd_summary(config, args.cwd)
    elif args.command == "tool":
        _cmd_tool(config, args.cwd, args.name, args.params)
    elif args.command == "tools":
        for name in tool_names():
            print(name)
    elif args.command == "audit":
        _cmd_audit(args.tail, args.event_type)
    elif args.command == "config":
        print(msgspec.json.format(msgspec.json.encode(config), indent=2).decode())


def _cmd_status(config: GitOpsConfig, cwd: str | None, short: bool) -> None:
    try:
        print(_build_operations(config).status(StatusRequest(cwd=cwd, short=short)))
    except GitOpsError as e:
        _fail(str(e))


def _cmd_log(config: GitOpsConfig, cwd: str | None, count: int, full: bool) -> None:
    count = max(1, min(MAX_LOG_ENTRIES, count))
    try:
        request = LogRequest(cwd=cwd, count=count, oneline=not full)
        print(_build_operations(config).log(request))
    except GitOpsError as e:
        _fail(str(e))


def _cmd_summary(config: GitOpsConfig, cwd: str | None) -> None:
    try:
        print(_build_operations(config).summary(cwd))
    except GitOpsError as e:
        _fail(str(e))


def _cmd_tool(config: GitOpsConfig, cwd: str | None, name: str, raw_params: str) -> None:
    text = sys.stdin.read() if raw_params == "-" else raw_params
    try:
        params: Any = json.loads(text or "{}")
    except json.JSONDecodeError as e:
        _fail(f"--params is not valid JSON: {e}")
        return
    if not isinstance(params, dict):
        _fail("--params must be a JSON object")
        return
    if cwd and "cwd" not in params:
        params["cwd"] = cwd

    response = dispatch({"tool": name, "params": params}, _build_operations(config))
    print(json.dumps(response, indent=2))
    if response.get("status") != "ok":
        sys.exit(1)


def _cmd_audit(tail: int, event_type: str | None) -> None:
    audit_path = default_audit_path()
    if audit_path is None:
        _fail("audit log is disabled (GITOPS_AUDIT_FILE is empty)")
        return
    for event in AuditLog(audit_path).tail(tail, event_type=event_type):
        print(json.dumps(event))


if __name__ == "__main__":
    main()
