"""Certification rollup over a learner's catalogue of exercises."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from certscore.models import (
    CertificationRollup,
    CertificationStatus,
    ExerciseContribution,
    ExerciseKind,
    ExerciseScoreState,
    ExerciseStatus,
)
from certscore.settings import settings

logger = logging.getLogger(__name__)

VALIDATED_STATUSES = frozenset({ExerciseStatus.PUBLISHED, ExerciseStatus.EVALUATED, ExerciseStatus.COMPLETED})


@dataclass(frozen=True)
class CatalogueEntry:
    kind: ExerciseKind
    max_points: float
    final_exam: bool = False


DEFAULT_CATALOGUE: tuple[CatalogueEntry, ...] = (
    CatalogueEntry(ExerciseKind.EISENHOWER, 30),
    CatalogueEntry(ExerciseKind.GOALKEEPER, 20),
    CatalogueEntry(ExerciseKind.SECTIONS, 30),
    CatalogueEntry(ExerciseKind.RDV_DECIDEUR, 40),
    CatalogueEntry(ExerciseKind.IIEP, 30),
    CatalogueEntry(ExerciseKind.COMPANY, 20),
    CatalogueEntry(ExerciseKind.EOMBUS_PAFI, 100),
    CatalogueEntry(ExerciseKind.TROIS_CLES, 50),
    CatalogueEntry(ExerciseKind.CDAB, 100),
    CatalogueEntry(ExerciseKind.OBJECTIONS, 50),
    CatalogueEntry(ExerciseKind.BONUS, 20),
    CatalogueEntry(ExerciseKind.FINAL_EXAM, 680, final_exam=True),
)


def _counted_score(entry: CatalogueEntry, state: ExerciseScoreState | None) -> tuple[bool, float]:
    if state is None:
        return False, 0.0
    score = min(max(state.final_score, 0.0), entry.max_points)
    if state.status in VALIDATED_STATUSES:
        return True, score
    if (
        entry.final_exam
        and settings.final_exam_accepts_in_progress
        and state.status == ExerciseStatus.IN_PROGRESS
        and state.final_score > 0
    ):
        return True, score
    return False, 0.0


def aggregate(
    states: Mapping[ExerciseKind, ExerciseScoreState],
    catalogue: tuple[CatalogueEntry, ...] = DEFAULT_CATALOGUE,
    trainer_comment: str = "",
) -> CertificationRollup:
    """Project the learner's exercise states onto one certification rollup.

    Pure read-side view: ``states`` is never modified and the result depends
    only on the states passed in.
    """
    if sum(1 for entry in catalogue if entry.final_exam) != 1:
        raise ValueError("Catalogue must designate exactly one final exam entry")

    online_score = 0.0
    final_exam_score = 0.0
    max_online = 0.0
    max_final = 0.0
    online_contributed = False
    final_contributed = False
    contributions: list[ExerciseContribution] = []

    for entry in catalogue:
        state = states.get(entry.kind)
        included, score = _counted_score(entry, state)
        if entry.final_exam:
            max_final = entry.max_points
            if included:
                final_exam_score = score
                final_contributed = score > 0
        else:
            max_online += entry.max_points
            if included:
                online_score += score
                online_contributed = True
        contributions.append(
            ExerciseContribution(
                exercise_kind=entry.kind,
                max_points=entry.max_points,
                status=state.status if state is not None else None,
                score=score,
                included=included,
            )
        )

    # Progress is driven by the online exercises; the final exam only completes it
    if online_contributed and final_contributed:
        status = CertificationStatus.COMPLETED
    elif online_contributed:
        status = CertificationStatus.IN_PROGRESS
    else:
        status = CertificationStatus.NOT_STARTED

    rollup = CertificationRollup(
        status=status,
        online_exercises_score=online_score,
        final_exam_score=final_exam_score,
        total_score=online_score + final_exam_score,
        max_online_score=max_online,
        max_final_exam_score=max_final,
        contributions=contributions,
        trainer_comment=trainer_comment,
    )
    logger.info(
        "pipeline/certification rollup",
        extra={
            "stage": "certification",
            "status": status.value,
            "online_exercises_score": online_score,
            "final_exam_score": final_exam_score,
        },
    )
    return rollup
