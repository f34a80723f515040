"""Task document and guardrail ingestion."""

from loopguard.spec_ingestion.task_spec import (
    DEFAULT_GUARDRAILS,
    load_guardrails,
    load_task_spec,
    parse_guardrails,
    parse_task_spec,
    seed_guardrails,
)

__all__ = [
    "DEFAULT_GUARDRAILS",
    "load_guardrails",
    "load_task_spec",
    "parse_guardrails",
    "parse_task_spec",
    "seed_guardrails",
]
