"""
Admission gate: allow, warn or deny each agent action against the budget ledger.

Decision order for an action with pre-action allocation ``allocated``:
1. exempt and ``allocated >= threshold``: allow, caller must stop afterwards
2. handoff pending and the action is a non-exempt read/shell: deny
3. ``allocated >= threshold``: deny
4. ``allocated >= warn_percent`` of threshold: allow with warning
5. otherwise: allow

Allowed metered actions are then charged to the ledger, so an action's own
cost only counts toward the next decision. Exempt actions are never charged.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from loopguard.constants import DEFAULT_WARN_PERCENT
from loopguard.control_plane.budgets import BudgetLedger, SizeEstimator
from loopguard.domain.models import ActionCategory, ActionKind

if TYPE_CHECKING:
    from loopguard.config.runtime import RuntimeConfig

_CONTROL_OPERATORS: Final[frozenset[str]] = frozenset(
    {";", "&&", "||", "|", "&", "|&", ";;", "(", ")"}
)
_REDIRECTION_OPERATORS: Final[frozenset[str]] = frozenset(
    {">", ">>", ">|", "&>", "&>>", "<>", ">&"}
)
_DISCARD_TARGETS: Final[frozenset[str]] = frozenset({"/dev/null", "1", "2"})
_ENV_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_COMMAND_PREFIXES: Final[frozenset[str]] = frozenset({"sudo", "env", "command", "nice", "time"})

_GIT_PERSIST_VERBS: Final[frozenset[str]] = frozenset({"add", "commit", "push", "status", "diff"})
_GIT_INSPECT_VERBS: Final[frozenset[str]] = frozenset(
    {"log", "show", "ls-files", "rev-parse", "blame", "grep", "describe", "shortlog", "reflog"}
)
_GIT_MUTATE_VERBS: Final[frozenset[str]] = frozenset(
    {"reset", "checkout", "restore", "clean", "rm", "mv", "rebase", "switch", "stash"}
)
_GIT_OPTIONS_WITH_VALUE: Final[frozenset[str]] = frozenset(
    {"-C", "-c", "--git-dir", "--work-tree", "--namespace", "--config-env"}
)
_INSPECT_PROGRAMS: Final[frozenset[str]] = frozenset(
    {
        "cat",
        "head",
        "tail",
        "less",
        "more",
        "ls",
        "tree",
        "grep",
        "rg",
        "find",
        "wc",
        "stat",
        "file",
        "pwd",
        "diff",
    }
)
_MUTATE_PROGRAMS: Final[frozenset[str]] = frozenset(
    {
        "rm",
        "rmdir",
        "mv",
        "cp",
        "touch",
        "mkdir",
        "chmod",
        "chown",
        "ln",
        "truncate",
        "dd",
        "tee",
        "shred",
        "unlink",
    }
)


class DecisionKind(StrEnum):
    """Outcome of one admission decision."""

    ALLOW = "allow"
    ALLOW_WITH_WARNING = "allow_with_warning"
    DENY = "deny"


@dataclass(frozen=True, slots=True)
class ActionDescriptor:
    """What the host is about to do, as reported by the hook payload."""

    kind: ActionKind
    target: str = ""
    content_hint: str | None = None
    size_hint: int | None = None

    @property
    def is_metered(self) -> bool:
        """Reads are always charged; other kinds only when they carry a size."""

        if self.kind is ActionKind.READ:
            return True
        return bool(self.content_hint) or self.size_hint is not None


@dataclass(frozen=True, slots=True)
class Decision:
    """Admission decision computed from the pre-action ledger total."""

    kind: DecisionKind
    category: ActionCategory
    exempt: bool
    allocated: int
    threshold: int
    reason_code: str
    stop_after: bool = False
    cost: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.threshold - self.allocated)

    @property
    def percent_used(self) -> int:
        return self.allocated * 100 // self.threshold

    @property
    def allowed(self) -> bool:
        return self.kind is not DecisionKind.DENY

    @property
    def denied(self) -> bool:
        return self.kind is DecisionKind.DENY

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "category": self.category.value,
            "exempt": self.exempt,
            "allocated": self.allocated,
            "threshold": self.threshold,
            "remaining": self.remaining,
            "reason_code": self.reason_code,
            "stop_after": self.stop_after,
            "cost": self.cost,
        }


ActionClassifier = Callable[[ActionDescriptor], ActionCategory]


def classify_action(action: ActionDescriptor) -> ActionCategory:
    """Assign a typed exemption category to ``action``.

    Shell commands are tokenized; a compound command takes the most
    restrictive category of its segments, and any output redirection
    makes it a mutation.
    """

    if action.kind is ActionKind.READ:
        return ActionCategory.INSPECT
    if action.kind is ActionKind.CYCLE_START:
        return ActionCategory.OTHER
    return classify_command(action.target)


def classify_command(command: str) -> ActionCategory:
    segments = _split_command(command)
    if segments is None or not segments:
        return ActionCategory.OTHER

    categories = [_classify_segment(segment) for segment in segments]
    if ActionCategory.MUTATE in categories:
        return ActionCategory.MUTATE
    if all(item is ActionCategory.PERSIST for item in categories):
        return ActionCategory.PERSIST
    if all(item in {ActionCategory.PERSIST, ActionCategory.INSPECT} for item in categories):
        return ActionCategory.INSPECT
    return ActionCategory.OTHER


class AdmissionGate:
    """Gate every agent action on the budget ledger and charge the allowed ones."""

    def __init__(
        self,
        ledger: BudgetLedger,
        *,
        estimator: SizeEstimator | None = None,
        exempt_categories: Iterable[ActionCategory] = (ActionCategory.PERSIST,),
        warn_percent: int = DEFAULT_WARN_PERCENT,
        workspace_root: str | Path | None = None,
        classifier: ActionClassifier = classify_action,
        logger: Any | None = None,
    ) -> None:
        if not 0 < warn_percent <= 100:
            raise ValueError("warn_percent must be in (0, 100]")
        self._ledger = ledger
        self._estimator = estimator if estimator is not None else SizeEstimator()
        self._exempt = frozenset(exempt_categories)
        self._warn_percent = warn_percent
        self._workspace_root = Path(workspace_root) if workspace_root is not None else None
        self._classifier = classifier
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def from_config(
        cls,
        config: RuntimeConfig,
        ledger: BudgetLedger,
        *,
        logger: Any | None = None,
    ) -> AdmissionGate:
        return cls(
            ledger,
            estimator=SizeEstimator.from_config(config),
            exempt_categories=config.exempt_categories,
            warn_percent=config.warn_percent,
            workspace_root=config.workspace_root,
            logger=logger,
        )

    @property
    def exempt_categories(self) -> frozenset[ActionCategory]:
        return self._exempt

    def is_exempt(self, action: ActionDescriptor) -> bool:
        return self._classifier(action) in self._exempt

    def evaluate(
        self,
        action: ActionDescriptor,
        *,
        handoff_pending: bool = False,
        iteration: int = 0,
    ) -> Decision:
        """Decide on ``action`` and charge its estimated cost when allowed."""

        category = self._classifier(action)
        exempt = category in self._exempt
        cost = 0
        with self._ledger.lock:
            snapshot = self._ledger.current()
            kind, reason, stop_after = self._decide(
                action,
                allocated=snapshot.allocated,
                threshold=snapshot.threshold,
                exempt=exempt,
                handoff_pending=handoff_pending,
            )
            if kind is not DecisionKind.DENY and not exempt and action.is_metered:
                cost = self._estimator.estimate(
                    action.content_hint,
                    self._resolve_target(action),
                    size=action.size_hint,
                )
                self._ledger.record(cost, target=action.target, iteration=iteration)

        decision = Decision(
            kind=kind,
            category=category,
            exempt=exempt,
            allocated=snapshot.allocated,
            threshold=snapshot.threshold,
            reason_code=reason,
            stop_after=stop_after,
            cost=cost,
        )
        self._log_decision(action, decision)
        return decision

    def _decide(
        self,
        action: ActionDescriptor,
        *,
        allocated: int,
        threshold: int,
        exempt: bool,
        handoff_pending: bool,
    ) -> tuple[DecisionKind, str, bool]:
        exhausted = allocated >= threshold
        if exempt and (exhausted or handoff_pending):
            reason = "exempt_after_exhaustion" if exhausted else "exempt_during_handoff"
            return DecisionKind.ALLOW, reason, True
        if handoff_pending and action.kind is not ActionKind.CYCLE_START:
            return DecisionKind.DENY, "handoff_pending", False
        if exhausted:
            return DecisionKind.DENY, "budget_exhausted", False
        if allocated * 100 >= threshold * self._warn_percent:
            return DecisionKind.ALLOW_WITH_WARNING, "approaching_threshold", False
        return DecisionKind.ALLOW, "within_budget", False

    def _resolve_target(self, action: ActionDescriptor) -> Path | None:
        if action.kind is not ActionKind.READ or not action.target:
            return None
        candidate = Path(action.target).expanduser()
        if not candidate.is_absolute() and self._workspace_root is not None:
            candidate = self._workspace_root / candidate
        return candidate

    def _log_decision(self, action: ActionDescriptor, decision: Decision) -> None:
        log = self._logger.warning if decision.denied else self._logger.info
        log(
            "admission_decision",
            action_kind=action.kind.value,
            target=action.target,
            **decision.to_dict(),
        )


def _split_command(command: str) -> list[list[str]] | None:
    lexer = shlex.shlex(command, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    try:
        tokens = list(lexer)
    except ValueError:
        return None

    segments: list[list[str]] = []
    current: list[str] = []
    for token in tokens:
        if token in _CONTROL_OPERATORS:
            if current:
                segments.append(current)
            current = []
            continue
        current.append(token)
    if current:
        segments.append(current)
    return segments


def _classify_segment(tokens: list[str]) -> ActionCategory:
    if _writes_output(tokens):
        return ActionCategory.MUTATE

    words = list(tokens)
    while words and (_ENV_ASSIGNMENT_PATTERN.match(words[0]) or words[0] in _COMMAND_PREFIXES):
        words.pop(0)
    if not words:
        return ActionCategory.OTHER

    program = Path(words[0]).name
    if program == "git":
        return _classify_git(words[1:])
    if program in _MUTATE_PROGRAMS:
        return ActionCategory.MUTATE
    if program == "sed" and any(word.startswith("-i") for word in words[1:]):
        return ActionCategory.MUTATE
    if program in _INSPECT_PROGRAMS:
        return ActionCategory.INSPECT
    return ActionCategory.OTHER


def _writes_output(tokens: list[str]) -> bool:
    for index, token in enumerate(tokens):
        if token not in _REDIRECTION_OPERATORS:
            continue
        target = tokens[index + 1] if index + 1 < len(tokens) else ""
        if target not in _DISCARD_TARGETS:
            return True
    return False


def _classify_git(arguments: list[str]) -> ActionCategory:
    remaining = list(arguments)
    while remaining and remaining[0].startswith("-"):
        option = remaining.pop(0)
        if option in _GIT_OPTIONS_WITH_VALUE and remaining:
            remaining.pop(0)
    if not remaining:
        return ActionCategory.PERSIST
    verb = remaining[0]
    if verb in _GIT_PERSIST_VERBS:
        return ActionCategory.PERSIST
    if verb in _GIT_INSPECT_VERBS:
        return ActionCategory.INSPECT
    if verb in _GIT_MUTATE_VERBS:
        return ActionCategory.MUTATE
    return ActionCategory.OTHER


__all__ = [
    "ActionClassifier",
    "ActionDescriptor",
    "AdmissionGate",
    "Decision",
    "DecisionKind",
    "classify_action",
    "classify_command",
]
