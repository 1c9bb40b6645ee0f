"""Score calculation: group subtotals, raw total and rescaled final score."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from certscore.grading.rubrics import ScoringRule
from certscore.models import RubricItem, RubricResult

logger = logging.getLogger(__name__)

PATH_MAX_POSSIBLE = "max_possible"
PATH_REDUCED_MAX = "reduced_max"
PATH_FIXED_MAX = "fixed_max"


@dataclass
class ScoreBreakdown:
    group_totals: dict[str, float]
    raw_total: float
    # Points of non-required items (dialogue client lines), reported but never counted
    non_required_total: float
    total: float
    max_score: float
    final_score: float
    path: str
    all_required_present: bool


def round_half_up(value: float, places: int = 0) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def all_required_present(items: Iterable[RubricItem], rule: ScoringRule) -> bool:
    """True when every required group has its full set of required items recorded."""
    recorded: dict[str, set[str]] = defaultdict(set)
    for item in items:
        if item.required:
            recorded[item.group_id].add(item.item_key)
    return all(len(recorded[group_id]) >= rule.size_of(group_id) for group_id in rule.required_group_ids)


def max_possible(rule: ScoringRule, include_optional: bool = False) -> float:
    total = sum(rule.group_max(group_id) for group_id in rule.required_group_ids)
    if include_optional or not rule.optional_groups_excluded:
        total += sum(rule.group_max(group_id) for group_id in rule.optional_group_ids)
    return total


def calculate(
    scored: Iterable[tuple[RubricItem, float]],
    rule: ScoringRule,
    include_optional: bool = False,
) -> ScoreBreakdown:
    scored = list(scored)
    group_totals = {group_id: 0.0 for group_id in rule.group_ids}
    non_required_total = 0.0
    for item, points in scored:
        if item.group_id not in group_totals:
            raise ValueError(f"Item {item.key} belongs to no group of this rubric")
        if item.required:
            group_totals[item.group_id] += points
        else:
            non_required_total += points

    raw_total = sum(group_totals.values())
    required_present = all_required_present((item for item, _ in scored), rule)
    if rule.fixed_max is not None:
        path = PATH_FIXED_MAX
        max_score = rule.fixed_max
    elif rule.reduced_max is not None and required_present:
        path = PATH_REDUCED_MAX
        max_score = rule.reduced_max
    else:
        path = PATH_MAX_POSSIBLE
        max_score = max_possible(rule, include_optional=include_optional)

    total = min(raw_total, max_score)
    places = rule.fractional_places if rule.keep_fractional else 0
    final_score = round_half_up(total / max_score * rule.rescale_target, places) if max_score else 0.0
    final_score = min(final_score, rule.rescale_target)

    logger.debug(
        "grading/calculate",
        extra={"stage": "calculate", "path": path, "raw_total": raw_total, "max_score": max_score, "final_score": final_score},
    )
    return ScoreBreakdown(
        group_totals=group_totals,
        raw_total=raw_total,
        non_required_total=non_required_total,
        total=total,
        max_score=max_score,
        final_score=final_score,
        path=path,
        all_required_present=required_present,
    )


def calculate_result(result: RubricResult, rule: ScoringRule, include_optional: bool = False) -> ScoreBreakdown:
    """Score one evaluation pass on its own, before any reconciliation."""
    return calculate(
        ((entry.item, entry.points) for entry in result.entries.values()),
        rule,
        include_optional=include_optional,
    )
