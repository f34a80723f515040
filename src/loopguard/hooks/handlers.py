"""
loopguard — hook handlers

File: src/loopguard/hooks/handlers.py

Purpose
- Wire the ledger, gate, tracker, handoff orchestrator and verifier into the
  four host hook events.

Functional requirements
- A workspace without a task document is inactive: every hook is a no-op.
- A denied action triggers a handoff unless the session is already complete.
- Corrupt state never surfaces as a hook failure; the components recover it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from loopguard.config.runtime import RuntimeConfig, resolve_runtime_config
from loopguard.constants import GUARDRAILS_FILE
from loopguard.control_plane.admission import AdmissionGate, Decision, DecisionKind
from loopguard.control_plane.budgets import BudgetLedger
from loopguard.control_plane.handoff import HandoffOrchestrator, HandoffOutcome
from loopguard.control_plane.tracker import IterationTracker
from loopguard.domain.models import IterationRecord, SessionStatus, TaskSpec
from loopguard.errors import SessionCompleteError
from loopguard.hooks.protocol import (
    GateResponse,
    HookEvent,
    HookRequest,
    HookResponse,
    Permission,
    PromptResponse,
    StopResponse,
)
from loopguard.integration_plane.capabilities import (
    CapabilityError,
    CommandRunner,
    PersistCapability,
    SpawnCapability,
)
from loopguard.integration_plane.git_engine import GitCheckpointer
from loopguard.integration_plane.spawn import CommandSpawner
from loopguard.observability.logging import bind_hook_context, configure_logging
from loopguard.spec_ingestion.task_spec import load_guardrails, load_task_spec, seed_guardrails
from loopguard.verification_plane.completion import (
    CompletionResult,
    CompletionVerifier,
    VerificationOutcome,
)

STOP_AFTER_MESSAGE: Final[str] = (
    "Checkpoint command allowed. After it completes you MUST stop: the budget for this "
    "iteration is spent and work continues in a fresh context."
)

PROTOCOL_STEPS: Final[tuple[str, ...]] = (
    "Read the task document and pick the next unchecked criterion.",
    "Implement it, run the verification command and check the box only when it passes.",
    "Commit working states with git before risky changes.",
    "Stop when every criterion is checked; completion is verified automatically.",
)


@dataclass(frozen=True, slots=True)
class HookContext:
    """Components shared by every handler for one hook invocation."""

    config: RuntimeConfig
    ledger: BudgetLedger
    tracker: IterationTracker
    gate: AdmissionGate
    orchestrator: HandoffOrchestrator
    verifier: CompletionVerifier
    persist: PersistCapability

    @property
    def active(self) -> bool:
        return self.config.task_path.is_file()

    @property
    def guardrails_path(self) -> Path:
        return self.config.state_path / GUARDRAILS_FILE


def build_context(
    config: RuntimeConfig,
    *,
    persist: PersistCapability | None = None,
    spawn: SpawnCapability | None = None,
    runner: CommandRunner | None = None,
    logger: Any | None = None,
) -> HookContext:
    ledger = BudgetLedger.from_config(config, logger=logger)
    tracker = IterationTracker.from_config(config, logger=logger)
    checkpointer = (
        persist
        if persist is not None
        else GitCheckpointer.from_config(config, runner=runner, logger=logger)
    )
    spawner = (
        spawn
        if spawn is not None
        else CommandSpawner.from_config(config, runner=runner, logger=logger)
    )
    return HookContext(
        config=config,
        ledger=ledger,
        tracker=tracker,
        gate=AdmissionGate.from_config(config, ledger, logger=logger),
        orchestrator=HandoffOrchestrator(
            ledger,
            tracker,
            persist=checkpointer,
            spawn=spawner,
            workspace_root=config.workspace_root,
            auto_continuation=config.auto_continuation,
            logger=logger,
        ),
        verifier=CompletionVerifier.from_config(config, runner=runner, logger=logger),
        persist=checkpointer,
    )


def run_hook(
    event: HookEvent,
    payload: Mapping[str, object],
    *,
    cwd: str | Path,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
    persist: PersistCapability | None = None,
    spawn: SpawnCapability | None = None,
    runner: CommandRunner | None = None,
) -> HookResponse:
    """Resolve config for the payload's workspace, set up logging and dispatch."""

    request = HookRequest.from_payload(event, payload, default_root=cwd)
    config = resolve_runtime_config(
        request.workspace_root, cli_overrides=cli_overrides, environ=environ
    )
    log_path = config.log_path if config.task_path.is_file() else None
    configure_logging(log_path, level=config.log_level, redact=config.redact_secrets)
    bind_hook_context(hook=event.value, workspace=config.workspace_root.as_posix())

    context = build_context(config, persist=persist, spawn=spawn, runner=runner)
    return handle_hook(context, request)


def handle_hook(context: HookContext, request: HookRequest) -> HookResponse:
    if request.event is HookEvent.BEFORE_PROMPT:
        return before_prompt(context, request)
    if request.event is HookEvent.STOP:
        return stop(context, request)
    return gate_action(context, request)


def gate_action(context: HookContext, request: HookRequest) -> GateResponse:
    """Handle ``before-read`` and ``before-shell``."""

    if not context.active:
        return GateResponse()

    record = context.tracker.current()
    decision = context.gate.evaluate(
        request.to_action(),
        handoff_pending=record.status is SessionStatus.HANDOFF_PENDING,
        iteration=record.iteration,
    )
    if decision.denied:
        return _deny(context, decision, record)
    if decision.stop_after:
        return GateResponse(agent_message=STOP_AFTER_MESSAGE)
    if decision.kind is DecisionKind.ALLOW_WITH_WARNING:
        return GateResponse(agent_message=warning_message(decision))
    return GateResponse()


def before_prompt(context: HookContext, request: HookRequest) -> PromptResponse:
    """Gate the start of a work cycle and brief the agent on the task."""

    if not context.active:
        return PromptResponse()

    seed_guardrails(context.guardrails_path)
    record = context.tracker.current()
    if record.status is SessionStatus.COMPLETE:
        return PromptResponse(agent_message=_complete_notice(record))

    pending = record.status is SessionStatus.HANDOFF_PENDING
    decision = context.gate.evaluate(
        request.to_action(),
        handoff_pending=pending,
        iteration=record.iteration,
    )
    if decision.denied:
        outcome = _run_handoff(context, trigger="cycle_start")
        message = outcome.user_message if outcome is not None else _complete_notice(record)
        return PromptResponse(continue_=False, user_message=message)

    try:
        current = context.tracker.advance()
    except SessionCompleteError:
        return PromptResponse(agent_message=_complete_notice(record))

    task = load_task_spec(context.config.task_path)
    message = cycle_message(
        context,
        current,
        task,
        decision=decision,
        resumed=pending,
    )
    return PromptResponse(agent_message=message)


def stop(context: HookContext, request: HookRequest) -> StopResponse:
    """Decide whether the agent may stop: hand off, report progress or verify."""

    if not context.active:
        return StopResponse()

    record = context.tracker.current()
    if record.status is SessionStatus.COMPLETE:
        return StopResponse()

    snapshot = context.ledger.current()
    if (
        record.status is SessionStatus.HANDOFF_PENDING
        or snapshot.allocated >= snapshot.threshold
    ):
        outcome = _run_handoff(context, trigger="stop")
        if outcome is None:
            return StopResponse()
        return StopResponse(followup_message=outcome.user_message)

    result = context.verifier.verify()
    if result.outcome is VerificationOutcome.VERIFICATION_FAILED:
        return StopResponse(followup_message=_verification_failed_message(result))

    checkpoint = context.persist.persist(iteration=record.iteration, allocated=snapshot.allocated)
    if result.outcome is VerificationOutcome.INCOMPLETE:
        message = (
            f"Agent stopped with {result.unchecked} criteria remaining "
            f"(iteration {record.iteration}). Continue working or start a new conversation."
        )
    else:
        context.tracker.complete()
        message = _completion_message(result)

    if isinstance(checkpoint, CapabilityError):
        message += (
            f"\nCheckpoint failed: {checkpoint.reason}. Commit your changes manually."
        )
    return StopResponse(followup_message=message)


def warning_message(decision: Decision) -> str:
    return (
        f"Budget warning: {decision.percent_used}% used "
        f"({decision.allocated}/{decision.threshold} units, {decision.remaining} remaining). "
        "Checkpoint your work and finish the current criterion."
    )


def cycle_message(
    context: HookContext,
    record: IterationRecord,
    task: TaskSpec,
    *,
    decision: Decision,
    resumed: bool,
) -> str:
    """Build the context injected at the start of every work cycle."""

    config = context.config
    lines = [f"## Iteration {record.iteration}", ""]
    if decision.kind is DecisionKind.ALLOW_WITH_WARNING:
        lines.extend([warning_message(decision), ""])
    if resumed:
        used = record.previous_context if record.previous_context is not None else 0
        lines.extend(
            [
                f"Resumed after a handoff: iteration {record.iteration - 1} used {used} units. "
                "Re-read the task document and the git log before continuing.",
                "",
            ]
        )

    lines.append(
        f"Task document: {_display_path(config.task_path, config.workspace_root)} "
        f"({task.checked_count}/{len(task.criteria)} criteria complete, "
        f"{task.unchecked_count} remaining)"
    )
    if task.test_command is not None:
        lines.append(f"Verification command: `{task.test_command}`")
    else:
        lines.append("Verification command: none configured")

    last_output = context.verifier.last_output()
    if last_output is not None:
        lines.extend(
            [
                "",
                f"Last verification output (first {config.output_lines} lines):",
                "```",
                last_output,
                "```",
            ]
        )

    lines.extend(["", "Protocol:"])
    lines.extend(f"{index}. {step}" for index, step in enumerate(PROTOCOL_STEPS, start=1))

    guardrails = load_guardrails(context.guardrails_path)
    if len(guardrails):
        lines.extend(["", "Guardrails:", guardrails.render()])
    return "\n".join(lines)


def _deny(context: HookContext, decision: Decision, record: IterationRecord) -> GateResponse:
    outcome = _run_handoff(context, trigger=decision.reason_code)
    if outcome is None:
        return GateResponse(
            permission=Permission.DENY,
            user_message=_complete_notice(record),
            agent_message="The task is complete. Stop now.",
        )

    if decision.reason_code == "handoff_pending":
        agent_message = (
            f"A handoff to iteration {outcome.next_iteration} is pending. This action was "
            "blocked; only checkpoint commands are allowed. Stop now."
        )
    else:
        agent_message = (
            f"Budget exhausted: {decision.allocated}/{decision.threshold} units used. "
            f"This action was blocked. Stop now; work continues in iteration "
            f"{outcome.next_iteration}."
        )
    return GateResponse(
        permission=Permission.DENY,
        user_message=outcome.user_message,
        agent_message=agent_message,
    )


def _run_handoff(context: HookContext, *, trigger: str) -> HandoffOutcome | None:
    try:
        return context.orchestrator.handoff(trigger)
    except SessionCompleteError as exc:
        structlog.get_logger(__name__).info(
            "handoff_skipped_session_complete", iteration=exc.iteration
        )
        return None


def _complete_notice(record: IterationRecord) -> str:
    return f"Task complete at iteration {record.iteration}. Nothing left to do."


def _completion_message(result: CompletionResult) -> str:
    if result.outcome is VerificationOutcome.COMPLETE_VERIFIED:
        return (
            f"Task COMPLETE: all {result.total} criteria satisfied and "
            f"`{result.test_command}` passed."
        )
    return (
        f"Task complete: all {result.total} criteria checked "
        "(no verification command defined)."
    )


def _verification_failed_message(result: CompletionResult) -> str:
    reason = "timed out" if result.timed_out else f"exit {result.exit_code}"
    return (
        f"Criteria are checked but verification FAILED ({reason}). The task is not complete; "
        f"fix the failures and stop again.\n\nTest output:\n{result.output}"
    )


def _display_path(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = [
    "PROTOCOL_STEPS",
    "STOP_AFTER_MESSAGE",
    "HookContext",
    "before_prompt",
    "build_context",
    "cycle_message",
    "gate_action",
    "handle_hook",
    "run_hook",
    "stop",
    "warning_message",
]
