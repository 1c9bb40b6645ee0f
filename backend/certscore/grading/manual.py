"""Trainer-entered scores turned into a RubricResult."""

from __future__ import annotations

from typing import Mapping

from certscore.errors import SchemaViolation
from certscore.grading.normalizers import coerce_score
from certscore.grading.rubrics import Rubric
from certscore.models import ExerciseTypeTag, ResultEntry, RubricItem, RubricResult, item_key_for

ManualScore = tuple[float, str]


def _item_for(rubric: Rubric, group_id: str, item_key: str) -> RubricItem:
    rule = rubric.rule
    field = item_key_for(group_id, item_key)
    if group_id not in rule.group_ids:
        raise SchemaViolation(field=field, reason=f"unknown group '{group_id}'")

    if rubric.exercise_type == ExerciseTypeTag.DIALOGUE:
        _, _, role = item_key.partition(".")
        if role not in rubric.role_scores:
            raise SchemaViolation(field=field, reason=f"unknown role '{role}'")
        return RubricItem(
            group_id=group_id,
            item_key=item_key,
            max_points=rubric.role_max(role),
            required=role in rubric.scored_roles,
        )

    if rubric.exercise_type == ExerciseTypeTag.FREE_SCORE:
        return RubricItem(group_id=group_id, item_key=item_key, max_points=rule.group_max(group_id))

    if rubric.item_keys and item_key not in rubric.item_keys:
        raise SchemaViolation(field=field, reason=f"unknown item '{item_key}'")
    if rubric.exercise_type == ExerciseTypeTag.SECTION:
        if not item_key.isdigit() or not 1 <= int(item_key) <= rule.size_of(group_id):
            raise SchemaViolation(field=field, reason=f"answer '{item_key}' outside 1..{rule.size_of(group_id)}")
    return RubricItem(group_id=group_id, item_key=item_key, max_points=rule.per_item_max)


def manual_result(rubric: Rubric, scores: Mapping[tuple[str, str], ManualScore], feedback: str = "") -> RubricResult:
    """Build a trainer RubricResult keyed by ``(group_id, item_key)``.

    Raises SchemaViolation for keys or scores the rubric does not allow.
    """
    entries: dict[str, ResultEntry] = {}
    for (group_id, item_key), (points, comment) in scores.items():
        item = _item_for(rubric, str(group_id), item_key)
        if rubric.exercise_type == ExerciseTypeTag.DIALOGUE:
            allowed = rubric.role_scores[item.item_key.partition(".")[2]]
        else:
            allowed = rubric.allowed_scores
        value = coerce_score(points, item.key, item.max_points, allowed)
        entries[item.key] = ResultEntry(item=item, points=value, comment=comment)
    return RubricResult(exercise_type=rubric.exercise_type, entries=entries, feedback=feedback)
