"""Draft trainer scores held apart from committed state until publication."""

from __future__ import annotations

import logging
from datetime import datetime

from certscore.errors import StateFrozen
from certscore.grading.rubrics import Rubric, get_rubric
from certscore.models import ExerciseScoreState, ExerciseStatus, RubricResult, ScoreSource
from certscore.pipeline.merge import merge

logger = logging.getLogger(__name__)


class StagingBuffer:
    """Unmerged trainer RubricResults keyed by exercise id."""

    def __init__(self) -> None:
        self._drafts: dict[str, RubricResult] = {}

    def stage(self, exercise_id: str, result: RubricResult) -> RubricResult:
        """Add draft scores; an item staged twice keeps the latest value."""
        current = self._drafts.get(exercise_id)
        if current is None:
            staged = result
        else:
            if current.exercise_type != result.exercise_type:
                raise ValueError(f"Draft for '{exercise_id}' holds {current.exercise_type.value} scores")
            staged = current.model_copy(
                update={
                    "entries": {**current.entries, **result.entries},
                    "feedback": result.feedback or current.feedback,
                }
            )
        self._drafts[exercise_id] = staged
        return staged

    def get(self, exercise_id: str) -> RubricResult | None:
        return self._drafts.get(exercise_id)

    def discard(self, exercise_id: str) -> None:
        self._drafts.pop(exercise_id, None)

    def __contains__(self, exercise_id: object) -> bool:
        return exercise_id in self._drafts

    def __len__(self) -> int:
        return len(self._drafts)

    def publish(
        self,
        exercise_id: str,
        state: ExerciseScoreState,
        timestamp: datetime,
        rubric: Rubric | None = None,
    ) -> ExerciseScoreState:
        published = publish(state, self._drafts.get(exercise_id), timestamp, rubric=rubric)
        self.discard(exercise_id)
        return published


def publish(
    state: ExerciseScoreState,
    staged: RubricResult | None,
    timestamp: datetime,
    rubric: Rubric | None = None,
) -> ExerciseScoreState:
    """Merge staged trainer scores as manual entries and freeze the state."""
    if state.is_published:
        raise StateFrozen(state.exercise_kind.value)

    rubric = rubric or get_rubric(state.exercise_kind)
    if staged is not None:
        state = merge(state, staged.stamp(ScoreSource.MANUAL, timestamp), rubric=rubric)

    logger.info(
        "pipeline/staging published exercise",
        extra={"stage": "publish", "exercise_kind": state.exercise_kind.value, "final_score": state.final_score},
    )
    return state.model_copy(
        update={
            "status": ExerciseStatus.PUBLISHED,
            "published_at": timestamp,
            "updated_at": max(state.updated_at, timestamp) if state.updated_at else timestamp,
        }
    )
