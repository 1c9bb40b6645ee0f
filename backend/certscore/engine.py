"""Pure entry points of the scoring engine."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping

from certscore.ai.extract import extract_payload
from certscore.errors import Failure, MalformedResponse, SchemaViolation
from certscore.grading.normalizers import normalize
from certscore.grading.rubrics import Rubric, default_rubric_for, get_rubric
from certscore.models import (
    CertificationRollup,
    ExerciseKind,
    ExerciseScoreState,
    ExerciseTypeTag,
    RubricResult,
    ScoreSource,
)
from certscore.pipeline.certification import DEFAULT_CATALOGUE, CatalogueEntry, aggregate
from certscore.pipeline.merge import merge
from certscore.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class EvaluationOutcome:
    state: ExerciseScoreState
    failure: Failure | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


def _resolve_rubric(tag: ExerciseTypeTag, kind: ExerciseKind | str | None) -> Rubric:
    if kind is None:
        return default_rubric_for(tag)
    rubric = get_rubric(kind)
    if rubric.exercise_type != tag:
        raise ValueError(f"Exercise '{rubric.kind.value}' is scored as {rubric.exercise_type.value}, not {tag.value}")
    return rubric


def extract_and_normalize(
    raw: str,
    tag: ExerciseTypeTag | str,
    kind: ExerciseKind | str | None = None,
) -> RubricResult | Failure:
    """Turn a raw AI completion into a RubricResult, or an explicit failure value."""
    exercise_type = ExerciseTypeTag(tag)
    rubric = _resolve_rubric(exercise_type, kind)

    extraction = extract_payload(raw)
    if isinstance(extraction, MalformedResponse):
        logger.warning(
            "engine/extract malformed response",
            extra={"stage": "extract", "exercise_kind": rubric.kind.value, "reason": extraction.reason},
        )
        return extraction

    result = normalize(extraction.value, exercise_type, rubric)
    if isinstance(result, SchemaViolation) and extraction.repaired:
        # A truncated payload that only parses after repair is still a broken response.
        return MalformedResponse(raw=raw, reason=f"truncated response failed validation: {result}")
    return result


def placeholder_result(tag: ExerciseTypeTag | str, reason: str | None = None) -> RubricResult:
    """Zero-score result with generic feedback, substituted when the AI pass fails."""
    feedback = settings.placeholder_feedback
    if reason:
        feedback = f"{feedback} ({reason})"
    return RubricResult(exercise_type=ExerciseTypeTag(tag), feedback=feedback, placeholder=True)


def score_and_merge(
    existing: ExerciseScoreState,
    result: RubricResult,
    source: ScoreSource | str,
    timestamp: datetime,
    include_optional: bool | None = None,
) -> ExerciseScoreState:
    """Fold one evaluation pass into the exercise state and recompute totals."""
    return merge(existing, result.stamp(ScoreSource(source), timestamp), include_optional=include_optional)


def evaluate_response(existing: ExerciseScoreState, raw: str, timestamp: datetime) -> EvaluationOutcome:
    """Run a full AI pass, falling back to the placeholder result on failure."""
    rubric = get_rubric(existing.exercise_kind)
    outcome = extract_and_normalize(raw, rubric.exercise_type, rubric.kind)
    if isinstance(outcome, RubricResult):
        return EvaluationOutcome(state=score_and_merge(existing, outcome, ScoreSource.AI, timestamp))

    logger.warning(
        "engine/evaluate falling back to placeholder",
        extra={
            "stage": "evaluate",
            "exercise_kind": rubric.kind.value,
            "field": getattr(outcome, "field", None),
        },
    )
    fallback = placeholder_result(rubric.exercise_type)
    return EvaluationOutcome(
        state=score_and_merge(existing, fallback, ScoreSource.AI, timestamp),
        failure=outcome,
    )


def aggregate_certification(
    states: Mapping[ExerciseKind, ExerciseScoreState],
    catalogue: tuple[CatalogueEntry, ...] = DEFAULT_CATALOGUE,
    trainer_comment: str = "",
) -> CertificationRollup:
    return aggregate(states, catalogue=catalogue, trainer_comment=trainer_comment)
