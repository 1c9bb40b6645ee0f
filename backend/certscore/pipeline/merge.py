"""Reconciliation of AI and trainer scores into one authoritative state."""

from __future__ import annotations

import logging
from datetime import datetime

from certscore.errors import StateFrozen
from certscore.grading.calculator import calculate
from certscore.grading.rubrics import Rubric, get_rubric
from certscore.models import (
    ExerciseKind,
    ExerciseScoreState,
    ExerciseStatus,
    ItemSlot,
    RubricItem,
    RubricResult,
    ScoreEntry,
    ScoreSource,
)
from certscore.settings import settings

logger = logging.getLogger(__name__)

_BEFORE_EVALUATION = {
    ExerciseStatus.NOT_STARTED,
    ExerciseStatus.IN_PROGRESS,
    ExerciseStatus.SUBMITTED,
    ExerciseStatus.PENDING_VALIDATION,
}


def _later(current: ScoreEntry, new: ScoreEntry) -> ScoreEntry:
    return current if current.rank() >= new.rank() else new


def fold_entry(slot: ItemSlot | None, item: RubricItem, new: ScoreEntry) -> ItemSlot:
    """Fold one incoming entry into an item slot.

    Manual outranks AI regardless of timestamp; within one source the later
    entry wins. AI entries that cannot be authoritative land in the shadow slot.
    """
    if slot is None:
        return ItemSlot(item=item, authoritative=new)

    current = slot.authoritative
    if current.source == new.source:
        if _later(current, new) is current:
            return slot
        return slot.model_copy(update={"authoritative": new})

    if current.source == ScoreSource.MANUAL:
        shadow = new if slot.shadow is None else _later(slot.shadow, new)
        return slot.model_copy(update={"shadow": shadow})

    shadow = current if slot.shadow is None else _later(slot.shadow, current)
    return ItemSlot(item=slot.item, authoritative=new, shadow=shadow)


def recompute(state: ExerciseScoreState, rubric: Rubric, include_optional: bool | None = None) -> ExerciseScoreState:
    """Recompute derived totals over authoritative slots only."""
    if include_optional is None:
        include_optional = settings.include_optional_groups
    breakdown = calculate(
        ((slot.item, slot.authoritative.points) for slot in state.slots.values()),
        rubric.rule,
        include_optional=include_optional,
    )
    return state.model_copy(
        update={
            "total_score": breakdown.total,
            "max_score": breakdown.max_score,
            "final_score": breakdown.final_score,
        }
    )


def new_state(kind: ExerciseKind | str) -> ExerciseScoreState:
    """Empty initial state, as read for a document that does not exist yet."""
    state = ExerciseScoreState(exercise_kind=ExerciseKind(kind))
    try:
        rubric = get_rubric(state.exercise_kind)
    except ValueError:
        return state
    return recompute(state, rubric)


def merge(
    state: ExerciseScoreState,
    result: RubricResult,
    rubric: Rubric | None = None,
    include_optional: bool | None = None,
) -> ExerciseScoreState:
    if state.is_published:
        raise StateFrozen(state.exercise_kind.value)
    if result.source is None or result.timestamp is None:
        raise ValueError("RubricResult must be stamped with a source and timestamp before merging")

    rubric = rubric or get_rubric(state.exercise_kind)
    if result.exercise_type != rubric.exercise_type:
        raise ValueError(
            f"Cannot merge a {result.exercise_type.value} result into a {rubric.exercise_type.value} exercise"
        )

    slots = dict(state.slots)
    if not result.placeholder:
        for key, entry in result.entries.items():
            slots[key] = fold_entry(slots.get(key), entry.item, result.entry_for(key, result.source, result.timestamp))

    latest = _latest(state.updated_at, result.timestamp)
    feedback = state.feedback
    if result.feedback and latest == result.timestamp:
        feedback = result.feedback

    status = state.status
    if not result.placeholder and status in _BEFORE_EVALUATION:
        status = ExerciseStatus.EVALUATED

    merged = recompute(
        state.model_copy(update={"slots": slots, "status": status, "feedback": feedback, "updated_at": latest}),
        rubric,
        include_optional=include_optional,
    )
    logger.info(
        "pipeline/merge folded result",
        extra={
            "stage": "merge",
            "exercise_kind": state.exercise_kind.value,
            "source": result.source.value,
            "entries": len(result.entries),
            "placeholder": result.placeholder,
            "total_score": merged.total_score,
            "final_score": merged.final_score,
        },
    )
    return merged


def _latest(previous: datetime | None, incoming: datetime) -> datetime:
    if previous is None:
        return incoming
    return max(previous, incoming)
