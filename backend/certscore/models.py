"""Pydantic models for rubric items, score entries and exercise score state."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    """Return timezone-aware UTC now timestamp."""
    return datetime.now(timezone.utc)


class ExerciseTypeTag(str, Enum):
    DIALOGUE = "dialogue"
    CHARACTERISTIC = "characteristic"
    SECTION = "section"
    OBJECTION = "objection"
    FREE_SCORE = "free_score"


class ExerciseKind(str, Enum):
    EISENHOWER = "eisenhower"
    GOALKEEPER = "goalkeeper"
    SECTIONS = "sections"
    RDV_DECIDEUR = "rdv-decideur"
    IIEP = "iiep"
    COMPANY = "company"
    EOMBUS_PAFI = "eombus-pafi"
    TROIS_CLES = "trois-cles"
    CDAB = "cdab"
    OBJECTIONS = "objections"
    BONUS = "bonus"
    FINAL_EXAM = "points_role_final"


class ExerciseStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    PENDING_VALIDATION = "pending_validation"
    EVALUATED = "evaluated"
    COMPLETED = "completed"
    PUBLISHED = "published"


class ScoreSource(str, Enum):
    AI = "ai"
    MANUAL = "manual"


class CertificationStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


def item_key_for(group_id: str, item_key: str) -> str:
    return f"{group_id}/{item_key}"


class RubricItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    group_id: str
    item_key: str
    max_points: float = Field(gt=0)
    required: bool = True

    @property
    def key(self) -> str:
        return item_key_for(self.group_id, self.item_key)


class ScoreEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    points: float = Field(ge=0)
    comment: str = ""
    source: ScoreSource
    timestamp: datetime

    def rank(self) -> tuple[datetime, float, str]:
        """Ordering used to pick the winner between two entries of one source."""
        return (self.timestamp, self.points, self.comment)


class ResultEntry(BaseModel):
    """One item as scored by a single evaluation pass."""

    model_config = ConfigDict(frozen=True)

    item: RubricItem
    points: float = Field(ge=0)
    comment: str = ""

    @model_validator(mode="after")
    def _points_within_item_max(self) -> "ResultEntry":
        if self.points > self.item.max_points:
            raise ValueError(f"points {self.points} exceed max {self.item.max_points} for {self.item.key}")
        return self


class RubricResult(BaseModel):
    """All entries returned by one AI call or one trainer submission."""

    model_config = ConfigDict(frozen=True)

    exercise_type: ExerciseTypeTag
    entries: dict[str, ResultEntry] = Field(default_factory=dict)
    feedback: str = ""
    source: Optional[ScoreSource] = None
    timestamp: Optional[datetime] = None
    placeholder: bool = False

    def stamp(self, source: ScoreSource, timestamp: datetime) -> "RubricResult":
        return self.model_copy(update={"source": source, "timestamp": timestamp})

    def entry_for(self, key: str, source: ScoreSource, timestamp: datetime) -> ScoreEntry:
        result_entry = self.entries[key]
        return ScoreEntry(points=result_entry.points, comment=result_entry.comment, source=source, timestamp=timestamp)


class ItemSlot(BaseModel):
    model_config = ConfigDict(frozen=True)

    item: RubricItem
    authoritative: ScoreEntry
    shadow: Optional[ScoreEntry] = None

    @model_validator(mode="after")
    def _entries_within_item_max(self) -> "ItemSlot":
        for entry in (self.authoritative, self.shadow):
            if entry is not None and entry.points > self.item.max_points:
                raise ValueError(f"points {entry.points} exceed max {self.item.max_points} for {self.item.key}")
        return self


class ExerciseScoreState(BaseModel):
    """Persisted, authoritative score state of one exercise of one learner."""

    model_config = ConfigDict(frozen=True)

    exercise_kind: ExerciseKind
    status: ExerciseStatus = ExerciseStatus.NOT_STARTED
    slots: dict[str, ItemSlot] = Field(default_factory=dict)
    total_score: float = Field(default=0, ge=0)
    max_score: float = Field(default=0, ge=0)
    final_score: float = Field(default=0, ge=0)
    feedback: str = ""
    updated_at: Optional[datetime] = None
    published_at: Optional[datetime] = None

    @property
    def is_published(self) -> bool:
        return self.status == ExerciseStatus.PUBLISHED

    def authoritative_points(self) -> dict[str, float]:
        return {key: slot.authoritative.points for key, slot in self.slots.items()}


class ExerciseContribution(BaseModel):
    model_config = ConfigDict(frozen=True)

    exercise_kind: ExerciseKind
    max_points: float
    status: Optional[ExerciseStatus] = None
    score: float = 0
    included: bool = False


class CertificationRollup(BaseModel):
    """Read-side projection over a learner's exercise catalogue."""

    model_config = ConfigDict(frozen=True)

    status: CertificationStatus = CertificationStatus.NOT_STARTED
    online_exercises_score: float = 0
    final_exam_score: float = 0
    total_score: float = 0
    max_online_score: float = 0
    max_final_exam_score: float = 0
    contributions: list[ExerciseContribution] = Field(default_factory=list)
    trainer_comment: str = ""

    @property
    def max_total_score(self) -> float:
        return self.max_online_score + self.max_final_exam_score

    @property
    def percentage(self) -> float:
        if not self.max_total_score:
            return 0.0
        return round(self.total_score / self.max_total_score * 100, 1)
