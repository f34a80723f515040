"""Command-line interface router for loopguard."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from loopguard.config import load_config, redact_config, resolve_runtime_config
from loopguard.control_plane.budgets import BudgetLedger
from loopguard.control_plane.tracker import IterationTracker
from loopguard.domain.models import LedgerStatus, SessionStatus
from loopguard.hooks.handlers import run_hook
from loopguard.hooks.protocol import HookEvent, HookPayloadError
from loopguard.spec_ingestion.task_spec import load_task_spec
from loopguard.ui.render import CLIRenderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="loopguard",
        description=(
            "loopguard — budget admission control and handoff for agent work loops.\n\n"
            "Common workflows:\n"
            "  loopguard hook before-shell < payload.json   Gate one agent action\n"
            "  loopguard status                             Show ledger and iteration\n"
            "  loopguard config                             Show effective config\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--workspace",
        default=".",
        help="Workspace root directory (default: current working directory).",
    )
    common.add_argument(
        "--set",
        dest="overrides",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Dotted config override, e.g. --set budget.threshold=120000 (repeatable).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # hook ----------------------------------------------------------------
    hook_parser = subparsers.add_parser(
        "hook",
        parents=[common],
        help="Handle one host hook event (JSON on stdin, JSON on stdout)",
        description=(
            "Read one JSON object from stdin and write the hook response to stdout.\n\n"
            "Examples:\n"
            "  echo '{\"command\": \"git status\"}' | loopguard hook before-shell\n"
            "  echo '{}' | loopguard hook stop\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    hook_parser.add_argument(
        "event",
        choices=[item.value for item in HookEvent],
        help="Hook event name",
    )
    hook_parser.set_defaults(handler=_cmd_hook)

    # status --------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show budget ledger, iteration record and criteria progress",
        description=(
            "Display the ledger total, the iteration record and task progress.\n\n"
            "Examples:\n"
            "  loopguard status\n"
            "  loopguard status --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    status_parser.add_argument("--json", action="store_true", help="Emit deterministic JSON output")
    status_parser.set_defaults(handler=_cmd_status)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, user and project files,\n"
            "environment and CLI overrides. Sensitive values are redacted.\n\n"
            "Examples:\n"
            "  loopguard config\n"
            "  loopguard config --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_hook(args: argparse.Namespace) -> int:
    event = HookEvent(args.event)
    payload = _read_payload(sys.stdin.read())
    response = run_hook(
        event,
        payload,
        cwd=_workspace(args),
        cli_overrides=_overrides(args),
    )
    _emit_json(response.to_dict())
    return 0


def _cmd_status(args: argparse.Namespace) -> int:
    config = resolve_runtime_config(_workspace(args), cli_overrides=_overrides(args))
    snapshot = BudgetLedger.from_config(config).current()
    record = IterationTracker.from_config(config).current()
    task = load_task_spec(config.task_path)

    payload: dict[str, object] = {
        "command": "status",
        "active": config.task_path.is_file(),
        "config": config.summary(),
        "ledger": {
            **snapshot.to_dict(),
            "remaining": snapshot.remaining,
            "percent_used": snapshot.percent_used,
        },
        "iteration": record.to_dict(),
        "criteria": {
            "total": len(task.criteria),
            "checked": task.checked_count,
            "unchecked": task.unchecked_count,
            "test_command": task.test_command,
        },
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = CLIRenderer()
    if not config.task_path.is_file():
        renderer.text(f"No task document at {config.task_path.as_posix()}; hooks are inactive.")
        return 0

    renderer.kv("Iteration", f"{record.iteration} ({record.status.value})")
    renderer.kv(
        "Budget",
        f"{snapshot.allocated}/{snapshot.threshold} units "
        f"({snapshot.percent_used}%, {snapshot.status.value}, {snapshot.remaining} remaining)",
    )
    if snapshot.status is not LedgerStatus.HEALTHY:
        renderer.warning(
            f"budget is {snapshot.status.value}; checkpoint soon, a handoff follows at "
            f"{snapshot.threshold} units"
        )
    renderer.kv(
        "Criteria",
        f"{task.checked_count}/{len(task.criteria)} complete",
    )
    renderer.kv("Verification", task.test_command or "(none)")
    renderer.kv("Continuation", config.summary()["continuation_mode"])
    if record.status is SessionStatus.HANDOFF_PENDING:
        renderer.next_steps(
            [f'Start a NEW conversation: "Continue from iteration {record.iteration}"']
        )
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    loaded = load_config(_workspace(args), cli_overrides=_overrides(args))
    redacted = redact_config(loaded.config)
    sources = [
        {
            "name": source.name,
            "path": source.path.as_posix() if source.path is not None else None,
            "present": bool(source.payload),
        }
        for source in loaded.sources
    ]

    payload: dict[str, object] = {
        "command": "config",
        "config": redacted,
        "sources": sources,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = CLIRenderer()
    renderer.kv("Workspace", loaded.workspace_root.as_posix())
    renderer.section("Sources (lowest precedence first):")
    renderer.items(
        [
            f"{item['name']}{' ' + str(item['path']) if item['path'] else ''}"
            f"{'' if item['present'] else ' (empty)'}"
            for item in sources
        ]
    )
    renderer.section("Effective config:")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _read_payload(raw: str) -> dict[str, Any]:
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise HookPayloadError(f"hook payload is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise HookPayloadError("hook payload must be a JSON object")
    return parsed


def _overrides(args: argparse.Namespace) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for item in getattr(args, "overrides", None) or []:
        key, separator, raw_value = item.partition("=")
        if not separator or not key.strip():
            raise CLIError(f"invalid override {item!r}; expected KEY=VALUE", exit_code=2)
        try:
            value = yaml.safe_load(raw_value) if raw_value.strip() else ""
        except yaml.YAMLError:
            value = raw_value
        overrides[key.strip()] = value
    return overrides


def _workspace(args: argparse.Namespace) -> Path:
    return Path(getattr(args, "workspace", ".") or ".").expanduser()


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


__all__ = ["CLIError", "build_parser", "run_cli"]
