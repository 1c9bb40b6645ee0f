"""Per-exercise-type normalizers from parsed AI JSON to a canonical RubricResult."""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ValidationError

from certscore.errors import OutOfRangeScore, SchemaViolation
from certscore.grading.rubrics import Rubric, default_rubric_for
from certscore.models import ExerciseTypeTag, ResultEntry, RubricItem, RubricResult
from certscore.schemas import (
    CharacteristicPayload,
    DialoguePayload,
    FreeScorePayload,
    ObjectionPayload,
    PayloadModel,
    SectionPayload,
)
from certscore.settings import settings

logger = logging.getLogger(__name__)

FREE_SCORE_ITEM = "score"


def _violation_from(exc: ValidationError) -> SchemaViolation:
    error = exc.errors()[0]
    field = ".".join(str(part) for part in error.get("loc", ())) or "$"
    return SchemaViolation(field=field, reason=error.get("msg", "invalid value"))


def _parse(model: type[BaseModel], value: Any) -> Any:
    if not isinstance(value, dict):
        raise SchemaViolation(field="$", reason="expected a JSON object")
    return model.model_validate(value)


def coerce_score(raw: Any, field: str, max_points: float, allowed: Iterable[float] = ()) -> float:
    """Return a valid score for ``raw`` or raise OutOfRangeScore.

    Values within the configured tolerance of an allowed score (or of the
    range bounds when no grid is declared) are snapped to it.
    """
    if isinstance(raw, bool):
        raise SchemaViolation(field=field, reason="score must be a number")
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise SchemaViolation(field=field, reason=f"score {raw!r} is not numeric") from None
    if not math.isfinite(value):
        raise OutOfRangeScore(field, value, max_points)

    tolerance = settings.score_snap_tolerance
    grid = tuple(allowed)
    if grid:
        nearest = min(grid, key=lambda candidate: abs(candidate - value))
        if abs(nearest - value) <= tolerance:
            return float(nearest)
        raise OutOfRangeScore(field, value, max_points)

    if -tolerance <= value < 0:
        return 0.0
    if max_points < value <= max_points + tolerance:
        return float(max_points)
    if 0 <= value <= max_points:
        return value
    raise OutOfRangeScore(field, value, max_points)


def _check_max(declared: float, expected: float, field: str) -> None:
    if abs(float(declared) - expected) > settings.score_snap_tolerance:
        raise SchemaViolation(field=field, reason=f"maxPoints {declared} does not match rubric max {expected}")


class _EntryCollector:
    def __init__(self) -> None:
        self.entries: dict[str, ResultEntry] = {}

    def add(self, item: RubricItem, points: float, comment: str, field: str) -> None:
        if item.key in self.entries:
            raise SchemaViolation(field=field, reason=f"duplicate score for {item.key}")
        self.entries[item.key] = ResultEntry(item=item, points=points, comment=comment)


def _normalize_dialogue(value: Any, rubric: Rubric) -> tuple[dict[str, ResultEntry], PayloadModel]:
    payload: DialoguePayload = _parse(DialoguePayload, value)
    rule = rubric.rule
    collector = _EntryCollector()

    for s_idx, section in enumerate(payload.sections):
        if section.id not in rule.group_ids:
            raise SchemaViolation(field=f"sections.{s_idx}.id", reason=f"unknown section '{section.id}'")
        scored_lines = 0
        for d_idx, line in enumerate(section.dialogues):
            field = f"sections.{s_idx}.dialogues.{d_idx}"
            if line.role not in rubric.role_scores:
                raise SchemaViolation(field=f"{field}.role", reason=f"unknown role '{line.role}'")
            required = line.role in rubric.scored_roles
            if required:
                scored_lines += 1
            max_points = rubric.role_max(line.role)
            points = coerce_score(line.score, f"{field}.score", max_points, rubric.role_scores[line.role])
            index = line.index if line.index is not None else d_idx
            item = RubricItem(group_id=section.id, item_key=f"{index}.{line.role}", max_points=max_points, required=required)
            collector.add(item, points, line.comment, field)
        if scored_lines > rule.size_of(section.id):
            raise SchemaViolation(
                field=f"sections.{s_idx}.dialogues",
                reason=f"{scored_lines} scored lines, section '{section.id}' declares {rule.size_of(section.id)}",
            )

    return collector.entries, payload


def _normalize_characteristic(value: Any, rubric: Rubric) -> tuple[dict[str, ResultEntry], PayloadModel]:
    payload: CharacteristicPayload = _parse(CharacteristicPayload, value)
    responses = payload.all_responses()
    if responses is None:
        raise SchemaViolation(field="responses", reason="responses array missing")

    rule = rubric.rule
    group_count = len(rule.group_ids)
    collector = _EntryCollector()
    for idx, response in enumerate(responses):
        field = f"responses.{idx}"
        if not 1 <= response.characteristic <= group_count:
            raise SchemaViolation(
                field=f"{field}.characteristic",
                reason=f"characteristic {response.characteristic} outside 1..{group_count}",
            )
        item_key = rubric.lookup(response.section)
        if item_key is None:
            raise SchemaViolation(field=f"{field}.section", reason=f"unknown section '{response.section}'")
        _check_max(response.max_points, rule.per_item_max, f"{field}.maxPoints")
        points = coerce_score(response.score, f"{field}.score", rule.per_item_max, rubric.allowed_scores)
        item = RubricItem(
            group_id=rule.group_ids[response.characteristic - 1],
            item_key=item_key,
            max_points=rule.per_item_max,
        )
        collector.add(item, points, response.comment, field)

    return collector.entries, payload


def _normalize_section(value: Any, rubric: Rubric) -> tuple[dict[str, ResultEntry], PayloadModel]:
    payload: SectionPayload = _parse(SectionPayload, value)
    rule = rubric.rule
    positions: dict[str, int] = {}
    for idx, section in enumerate(payload.sections):
        if section.id not in rule.group_ids:
            raise SchemaViolation(field=f"sections.{idx}.id", reason=f"unknown section '{section.id}'")
        if section.id in positions:
            raise SchemaViolation(field=f"sections.{idx}.id", reason=f"duplicate section '{section.id}'")
        positions[section.id] = idx

    collector = _EntryCollector()
    for group_id in rule.group_ids:
        if group_id not in positions:
            raise SchemaViolation(field="sections", reason=f"missing section '{group_id}'")
        idx = positions[group_id]
        answers = payload.sections[idx].answers
        expected = rule.size_of(group_id)
        if len(answers) != expected:
            raise SchemaViolation(
                field=f"sections.{idx}.answers",
                reason=f"expected {expected} answers for '{group_id}', got {len(answers)}",
            )
        for a_idx, answer in enumerate(answers):
            field = f"sections.{idx}.answers.{a_idx}"
            points = coerce_score(answer.score, f"{field}.score", rule.per_item_max, rubric.allowed_scores)
            item = RubricItem(group_id=group_id, item_key=str(a_idx + 1), max_points=rule.per_item_max)
            collector.add(item, points, answer.feedback, field)

    return collector.entries, payload


def _normalize_objection(value: Any, rubric: Rubric) -> tuple[dict[str, ResultEntry], PayloadModel]:
    payload: ObjectionPayload = _parse(ObjectionPayload, value)
    rule = rubric.rule
    group_count = len(rule.group_ids)
    collector = _EntryCollector()
    for idx, response in enumerate(payload.responses):
        field = f"responses.{idx}"
        if not 1 <= response.objection <= group_count:
            raise SchemaViolation(
                field=f"{field}.objection",
                reason=f"objection {response.objection} outside 1..{group_count}",
            )
        stage = rubric.lookup(response.stage)
        if stage is None:
            raise SchemaViolation(field=f"{field}.stage", reason=f"unknown stage '{response.stage}'")
        _check_max(response.max_points, rule.per_item_max, f"{field}.maxPoints")
        points = coerce_score(response.score, f"{field}.score", rule.per_item_max, rubric.allowed_scores)
        item = RubricItem(group_id=rule.group_ids[response.objection - 1], item_key=stage, max_points=rule.per_item_max)
        collector.add(item, points, response.comment, field)

    return collector.entries, payload


def _normalize_free_score(value: Any, rubric: Rubric) -> tuple[dict[str, ResultEntry], PayloadModel]:
    payload: FreeScorePayload = _parse(FreeScorePayload, value)
    rule = rubric.rule
    collector = _EntryCollector()
    for idx, criterion in enumerate(payload.criteria):
        field = f"criteria.{idx}"
        if criterion.id not in rule.group_ids:
            raise SchemaViolation(field=f"{field}.id", reason=f"unknown criterion '{criterion.id}'")
        max_points = rule.group_max(criterion.id)
        _check_max(criterion.max_points, max_points, f"{field}.maxPoints")
        points = coerce_score(criterion.score, f"{field}.score", max_points, rubric.allowed_scores)
        item = RubricItem(group_id=criterion.id, item_key=FREE_SCORE_ITEM, max_points=max_points)
        collector.add(item, points, criterion.feedback, field)

    return collector.entries, payload


Normalizer = Callable[[Any, Rubric], tuple[dict[str, ResultEntry], PayloadModel]]

_NORMALIZERS: dict[ExerciseTypeTag, Normalizer] = {
    ExerciseTypeTag.DIALOGUE: _normalize_dialogue,
    ExerciseTypeTag.CHARACTERISTIC: _normalize_characteristic,
    ExerciseTypeTag.SECTION: _normalize_section,
    ExerciseTypeTag.OBJECTION: _normalize_objection,
    ExerciseTypeTag.FREE_SCORE: _normalize_free_score,
}


def normalize(value: Any, tag: ExerciseTypeTag | str, rubric: Rubric | None = None) -> RubricResult | SchemaViolation:
    """Validate ``value`` against the exercise type's shape; no partial acceptance."""
    exercise_type = ExerciseTypeTag(tag)
    rubric = rubric or default_rubric_for(exercise_type)
    if rubric.exercise_type != exercise_type:
        raise ValueError(f"Rubric '{rubric.kind.value}' is not a {exercise_type.value} rubric")

    try:
        entries, payload = _NORMALIZERS[exercise_type](value, rubric)
    except ValidationError as exc:
        violation = _violation_from(exc)
    except SchemaViolation as exc:
        violation = exc
    else:
        return RubricResult(exercise_type=exercise_type, entries=entries, feedback=payload.feedback or "")

    logger.warning(
        "grading/normalize schema violation",
        extra={
            "stage": "normalize",
            "exercise_type": exercise_type.value,
            "exercise_kind": rubric.kind.value,
            "field": violation.field,
        },
    )
    return violation
