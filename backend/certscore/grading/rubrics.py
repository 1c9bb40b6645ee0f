"""Rubric descriptors and the registry of scored exercise kinds."""

from __future__ import annotations

import unicodedata
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from certscore.errors import RubricConfigError
from certscore.models import ExerciseKind, ExerciseTypeTag


class ScoringRule(BaseModel):
    """How one rubric turns recorded points into a final score."""

    model_config = ConfigDict(frozen=True)

    per_item_max: float = Field(gt=0)
    group_size: int = Field(ge=1)
    required_group_count: int = Field(ge=1)
    optional_group_count: int = Field(default=0, ge=0)
    optional_groups_excluded: bool = True
    rescale_target: float = Field(gt=0)
    group_ids: tuple[str, ...] = ()
    group_sizes: dict[str, int] = Field(default_factory=dict)
    group_maxes: dict[str, float] = Field(default_factory=dict)
    reduced_max: float | None = Field(default=None, gt=0)
    # Denominator used regardless of which items were recorded
    fixed_max: float | None = Field(default=None, gt=0)
    keep_fractional: bool = False
    fractional_places: int = Field(default=2, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _default_group_ids(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("group_ids"):
            count = int(data.get("required_group_count", 0)) + int(data.get("optional_group_count", 0))
            data = {**data, "group_ids": tuple(str(idx) for idx in range(1, count + 1))}
        return data

    @model_validator(mode="after")
    def _check_groups(self) -> "ScoringRule":
        expected = self.required_group_count + self.optional_group_count
        if len(self.group_ids) != expected:
            raise ValueError(f"expected {expected} group ids, got {len(self.group_ids)}")
        if len(set(self.group_ids)) != len(self.group_ids):
            raise ValueError("group ids must be unique")
        unknown = set(self.group_sizes) - set(self.group_ids)
        if unknown:
            raise ValueError(f"group sizes declared for unknown groups: {sorted(unknown)}")
        unknown = set(self.group_maxes) - set(self.group_ids)
        if unknown:
            raise ValueError(f"group maxima declared for unknown groups: {sorted(unknown)}")
        if any(value <= 0 for value in self.group_maxes.values()):
            raise ValueError("group maxima must be positive")
        return self

    @property
    def required_group_ids(self) -> tuple[str, ...]:
        return self.group_ids[: self.required_group_count]

    @property
    def optional_group_ids(self) -> tuple[str, ...]:
        return self.group_ids[self.required_group_count :]

    def size_of(self, group_id: str) -> int:
        return self.group_sizes.get(group_id, self.group_size)

    def group_max(self, group_id: str) -> float:
        if group_id in self.group_maxes:
            return self.group_maxes[group_id]
        return self.per_item_max * self.size_of(group_id)


def normalize_label(label: str) -> str:
    """Canonical form used to look up AI labels in a declared vocabulary."""
    folded = unicodedata.normalize("NFC", label).casefold()
    return " ".join(folded.split())


@dataclass(frozen=True)
class Rubric:
    kind: ExerciseKind
    exercise_type: ExerciseTypeTag
    rule: ScoringRule
    # Sub-dimensions of every group, in display order.
    item_keys: tuple[str, ...] = ()
    # AI wording -> item key; looked up through normalize_label.
    vocabulary: dict[str, str] = field(default_factory=dict)
    # Dialogue rubrics: role -> allowed scores. Roles listed in scored_roles are required items.
    role_scores: dict[str, tuple[float, ...]] = field(default_factory=dict)
    scored_roles: tuple[str, ...] = ()
    # Allowed score grid for non-dialogue items; empty means any value in [0, max].
    allowed_scores: tuple[float, ...] = ()

    @cached_property
    def _label_index(self) -> dict[str, str]:
        return {normalize_label(label): target for label, target in self.vocabulary.items()}

    def lookup(self, label: str) -> str | None:
        return self._label_index.get(normalize_label(label))

    def role_max(self, role: str) -> float:
        return max(self.role_scores[role])


def validate_rubric(rubric: Rubric) -> None:
    """Fail fast on a rubric whose vocabulary or grid cannot be honoured."""
    seen: dict[str, str] = {}
    for label, target in rubric.vocabulary.items():
        if target not in rubric.item_keys:
            raise RubricConfigError(f"{rubric.kind.value}: label '{label}' maps to undeclared item '{target}'")
        normalized = normalize_label(label)
        if normalized in seen and seen[normalized] != target:
            raise RubricConfigError(f"{rubric.kind.value}: label '{label}' is ambiguous after normalization")
        seen[normalized] = target

    if rubric.exercise_type in (ExerciseTypeTag.CHARACTERISTIC, ExerciseTypeTag.OBJECTION):
        if not rubric.item_keys:
            raise RubricConfigError(f"{rubric.kind.value}: item keys are required")
        if len(rubric.item_keys) != rubric.rule.group_size:
            raise RubricConfigError(f"{rubric.kind.value}: group size does not match declared item keys")
        missing = set(rubric.item_keys) - set(seen.values())
        if missing:
            raise RubricConfigError(f"{rubric.kind.value}: no label maps to items {sorted(missing)}")

    if rubric.exercise_type == ExerciseTypeTag.DIALOGUE:
        if not rubric.role_scores or not rubric.scored_roles:
            raise RubricConfigError(f"{rubric.kind.value}: dialogue rubrics need role scores")
        for role in rubric.scored_roles:
            if role not in rubric.role_scores:
                raise RubricConfigError(f"{rubric.kind.value}: scored role '{role}' has no score grid")
            if rubric.role_max(role) != rubric.rule.per_item_max:
                raise RubricConfigError(f"{rubric.kind.value}: role '{role}' max differs from per-item max")

    for score in rubric.allowed_scores:
        if score < 0 or score > rubric.rule.per_item_max:
            raise RubricConfigError(f"{rubric.kind.value}: allowed score {score} outside [0, {rubric.rule.per_item_max}]")


CDAB_RUBRIC = Rubric(
    kind=ExerciseKind.CDAB,
    exercise_type=ExerciseTypeTag.CHARACTERISTIC,
    rule=ScoringRule(
        per_item_max=2,
        group_size=5,
        required_group_count=7,
        optional_group_count=1,
        rescale_target=100,
        reduced_max=70,
    ),
    item_keys=("description", "advantages", "benefits", "proofs", "problems"),
    vocabulary={
        "Description": "description",
        "Avantages": "advantages",
        "Bénéfices": "benefits",
        "Benefices": "benefits",
        "Preuves Clients": "proofs",
        "Preuves": "proofs",
        "Problèmes": "problems",
        "Problemes": "problems",
    },
    allowed_scores=(0, 1, 2),
)

RDV_DECIDEUR_RUBRIC = Rubric(
    kind=ExerciseKind.RDV_DECIDEUR,
    exercise_type=ExerciseTypeTag.DIALOGUE,
    rule=ScoringRule(
        per_item_max=2,
        group_size=3,
        required_group_count=4,
        rescale_target=40,
        group_ids=("introduction", "premiere_accroche", "proposition_rdv", "deuxieme_accroche"),
        group_sizes={"introduction": 4, "proposition_rdv": 2},
        keep_fractional=True,
    ),
    role_scores={"commercial": (0, 1, 2), "client": (0, 0.25)},
    scored_roles=("commercial",),
)

SECTIONS_RUBRIC = Rubric(
    kind=ExerciseKind.SECTIONS,
    exercise_type=ExerciseTypeTag.SECTION,
    rule=ScoringRule(
        per_item_max=4,
        group_size=5,
        required_group_count=3,
        rescale_target=30,
        group_ids=("motivateurs", "caracteristiques", "concepts"),
        group_sizes={"concepts": 2},
    ),
    allowed_scores=(0, 1, 2, 3, 4),
)

IIEP_RUBRIC = Rubric(
    kind=ExerciseKind.IIEP,
    exercise_type=ExerciseTypeTag.OBJECTION,
    rule=ScoringRule(per_item_max=4, group_size=4, required_group_count=3, rescale_target=30),
    item_keys=("interroger", "investiguer", "empathie", "proposer"),
    vocabulary={
        "Interroger": "interroger",
        "(S')interroger": "interroger",
        "S'interroger": "interroger",
        "Investiguer": "investiguer",
        "Empathie": "empathie",
        "Proposer": "proposer",
    },
    allowed_scores=(0, 1, 2, 3, 4),
)

COMPANY_RUBRIC = Rubric(
    kind=ExerciseKind.COMPANY,
    exercise_type=ExerciseTypeTag.FREE_SCORE,
    rule=ScoringRule(
        per_item_max=2,
        group_size=1,
        required_group_count=10,
        rescale_target=20,
        group_ids=(
            "company_presentation",
            "company_history",
            "mission_values",
            "products_services",
            "target_market",
            "competitive_advantages",
            "key_figures",
            "team",
            "partnerships",
            "perspectives",
        ),
    ),
)

# Trainer grid scored per criterion and read on a fixed 43-point scale.
GOALKEEPER_RUBRIC = Rubric(
    kind=ExerciseKind.GOALKEEPER,
    exercise_type=ExerciseTypeTag.FREE_SCORE,
    rule=ScoringRule(
        per_item_max=1,
        group_size=1,
        required_group_count=8,
        rescale_target=20,
        group_ids=(
            "attitude",
            "ask_decider",
            "who_are_you",
            "know_decider",
            "why_calling",
            "unavailable",
            "interaction",
            "behavior",
        ),
        group_maxes={
            "attitude": 3,
            "ask_decider": 3,
            "who_are_you": 5,
            "know_decider": 2,
            "why_calling": 10,
            "unavailable": 7,
            "interaction": 3,
            "behavior": 3,
        },
        fixed_max=43,
        keep_fractional=True,
        fractional_places=1,
    ),
)

EISENHOWER_RUBRIC = Rubric(
    kind=ExerciseKind.EISENHOWER,
    exercise_type=ExerciseTypeTag.SECTION,
    rule=ScoringRule(
        per_item_max=1,
        group_size=15,
        required_group_count=1,
        rescale_target=30,
        group_ids=("tasks",),
    ),
    allowed_scores=(0, 1),
)

EOMBUS_PAFI_RUBRIC = Rubric(
    kind=ExerciseKind.EOMBUS_PAFI,
    exercise_type=ExerciseTypeTag.SECTION,
    rule=ScoringRule(
        per_item_max=100,
        group_size=7,
        required_group_count=5,
        rescale_target=100,
        group_ids=("entreprise", "organisation", "budgets", "usages", "situation"),
        group_sizes={"entreprise": 12, "organisation": 9, "situation": 14},
    ),
)

TROIS_CLES_RUBRIC = Rubric(
    kind=ExerciseKind.TROIS_CLES,
    exercise_type=ExerciseTypeTag.SECTION,
    rule=ScoringRule(
        per_item_max=2,
        group_size=1,
        required_group_count=5,
        rescale_target=50,
        group_ids=(
            "questions_explicites",
            "questions_evocatrices",
            "impacts_temporels",
            "besoins_solution",
            "questions_projectives",
        ),
        # evocatrices: 3 questions x (passé, présent, futur); projectives: 5 questions x 5 steps
        group_sizes={"questions_explicites": 7, "questions_evocatrices": 9, "questions_projectives": 25},
    ),
    allowed_scores=(0, 1, 2),
)

OBJECTIONS_RUBRIC = Rubric(
    kind=ExerciseKind.OBJECTIONS,
    exercise_type=ExerciseTypeTag.OBJECTION,
    rule=ScoringRule(per_item_max=2.5, group_size=2, required_group_count=10, rescale_target=50),
    item_keys=("type", "justification"),
    vocabulary={
        "Type": "type",
        "Type d'objection": "type",
        "Justification": "justification",
    },
    allowed_scores=(0, 2.5),
)

BONUS_RUBRIC = Rubric(
    kind=ExerciseKind.BONUS,
    exercise_type=ExerciseTypeTag.FREE_SCORE,
    rule=ScoringRule(
        per_item_max=4,
        group_size=1,
        required_group_count=5,
        rescale_target=20,
        group_ids=("google_review", "youtube", "linkedin", "facebook", "besales"),
    ),
)

RUBRICS: dict[ExerciseKind, Rubric] = {
    rubric.kind: rubric
    for rubric in (
        CDAB_RUBRIC,
        RDV_DECIDEUR_RUBRIC,
        SECTIONS_RUBRIC,
        IIEP_RUBRIC,
        COMPANY_RUBRIC,
        GOALKEEPER_RUBRIC,
        EISENHOWER_RUBRIC,
        EOMBUS_PAFI_RUBRIC,
        TROIS_CLES_RUBRIC,
        OBJECTIONS_RUBRIC,
        BONUS_RUBRIC,
    )
}

for _rubric in RUBRICS.values():
    validate_rubric(_rubric)


def get_rubric(kind: ExerciseKind | str) -> Rubric:
    try:
        return RUBRICS[ExerciseKind(kind)]
    except (KeyError, ValueError):
        known = ", ".join(k.value for k in RUBRICS)
        label = getattr(kind, "value", kind)
        raise ValueError(f"No rubric for exercise kind '{label}'. Use one of: {known}") from None


def default_rubric_for(tag: ExerciseTypeTag | str) -> Rubric:
    """First registered rubric of the given exercise type."""
    exercise_type = ExerciseTypeTag(tag)
    for rubric in RUBRICS.values():
        if rubric.exercise_type == exercise_type:
            return rubric
    raise ValueError(f"No rubric registered for exercise type '{exercise_type.value}'")
