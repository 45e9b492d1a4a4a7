"""
Per-record progress state machine.

There is no status column: a record's stage is derived from which pipeline
fields are filled in. ``derive_stage`` and every eligibility predicate are
built from the same condition tables below, and the record store compiles
those same conditions to SQL, so the rules live in exactly one place.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, FrozenSet, List, Mapping, Optional, Tuple

from .database import CHANNEL_MARKERS
from .normalize import utcnow


class RecordStage(str, Enum):
    """Where a record is in the pipeline."""

    FETCHED = "fetched"
    SCORED = "scored"
    ENRICHED = "enriched"
    EMBEDDED = "embedded"


class Step(str, Enum):
    """Pipeline steps that select records from the store."""

    CONTENT = "content"
    SCORE = "score"
    ENRICH = "enrich"
    EMBED = "embed"
    NOTIFY = "notify"


@dataclass(frozen=True)
class Condition:
    """``field op value``; ops: is_null, not_null, ge, lt, eq."""

    field: str
    op: str
    value: Any = None

    def test(self, record: Any) -> bool:
        current = _value(record, self.field)
        if self.op == "is_null":
            return current is None
        if self.op == "not_null":
            return current is not None
        if self.op == "eq":
            return current == self.value
        if current is None:
            return False
        if self.op == "ge":
            return current >= self.value
        if self.op == "lt":
            return current < self.value
        raise ValueError(f"Unknown condition op: {self.op}")


def _value(record: Any, name: str) -> Any:
    if name == "description_length":
        return len(_value(record, "description") or "")
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


# Ordered from the first stage to the last; each marker is set by the step
# that leaves the previous stage.
_STAGE_MARKERS: Tuple[Tuple[RecordStage, Optional[str]], ...] = (
    (RecordStage.FETCHED, None),
    (RecordStage.SCORED, "relevance_score"),
    (RecordStage.ENRICHED, "summary"),
    (RecordStage.EMBEDDED, "embedded_at"),
)


def stage_conditions(stage: RecordStage) -> List[Condition]:
    """Conditions a record must satisfy to be in ``stage``."""
    conditions: List[Condition] = []
    found = False
    for candidate, marker in _STAGE_MARKERS:
        if candidate == stage:
            found = True
            if marker is not None:
                conditions.append(Condition(marker, "not_null"))
        elif found and marker is not None:
            conditions.append(Condition(marker, "is_null"))
    if not found:
        raise ValueError(f"Unknown stage: {stage}")
    return conditions


def derive_stage(record: Any) -> RecordStage:
    """
    Return the stage of a record (ORM object or mapping).

    The furthest marker that is set wins, so the stage sets are disjoint and
    every record lands in exactly one of them.
    """
    for stage, _ in reversed(_STAGE_MARKERS):
        if all(c.test(record) for c in stage_conditions(stage)):
            return stage
    return RecordStage.FETCHED


@dataclass(frozen=True)
class EligibilityParams:
    threshold: float = 0.8
    max_attempts: int = 3
    channel: Optional[str] = None
    channel_floor: Optional[float] = None
    recency_days: int = 3
    short_description_length: int = 100
    content_source: str = "github"
    now: Optional[datetime] = None


@dataclass(frozen=True)
class Eligibility:
    """Allowed stages plus step-specific extra conditions."""

    stages: FrozenSet[RecordStage]
    conditions: Tuple[Condition, ...] = field(default_factory=tuple)

    def test(self, record: Any) -> bool:
        return derive_stage(record) in self.stages and all(c.test(record) for c in self.conditions)


def eligibility_for(step: Step, params: Optional[EligibilityParams] = None) -> Eligibility:
    """Build the eligibility predicate for a step."""
    params = params or EligibilityParams()
    step = Step(step)

    if step == Step.SCORE:
        return Eligibility(frozenset({RecordStage.FETCHED}))

    if step == Step.CONTENT:
        return Eligibility(
            frozenset({RecordStage.FETCHED}),
            (
                Condition("source", "eq", params.content_source),
                Condition("content_checked_at", "is_null"),
                Condition("description_length", "lt", params.short_description_length),
            ),
        )

    if step == Step.ENRICH:
        return Eligibility(
            frozenset({RecordStage.SCORED}),
            (
                Condition("relevance_score", "ge", params.threshold),
                Condition("enrich_attempt_count", "lt", params.max_attempts),
            ),
        )

    if step == Step.EMBED:
        return Eligibility(frozenset({RecordStage.ENRICHED}))

    if step == Step.NOTIFY:
        marker = CHANNEL_MARKERS.get(params.channel or "")
        if marker is None:
            raise ValueError(f"Unknown notification channel: {params.channel!r}")
        now = params.now or utcnow()
        floor = params.channel_floor if params.channel_floor is not None else params.threshold
        return Eligibility(
            frozenset({RecordStage.ENRICHED, RecordStage.EMBEDDED}),
            (
                Condition("relevance_score", "ge", floor),
                Condition("created_at", "ge", now - timedelta(days=params.recency_days)),
                Condition(marker, "is_null"),
            ),
        )

    raise ValueError(f"No eligibility rule for step {step}")


def is_eligible(record: Any, step: Step, params: Optional[EligibilityParams] = None) -> bool:
    return eligibility_for(step, params).test(record)


__all__ = [
    "Condition",
    "Eligibility",
    "EligibilityParams",
    "RecordStage",
    "Step",
    "derive_stage",
    "eligibility_for",
    "is_eligible",
    "stage_conditions",
]
