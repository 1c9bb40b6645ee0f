"""Failure values and exceptions raised by the scoring engine."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class MalformedResponse(Exception):
    """The AI completion could not be turned into parseable JSON."""

    raw: str
    reason: str

    def __str__(self) -> str:
        return f"Malformed AI response: {self.reason}"


@dataclass
class SchemaViolation(Exception):
    """Parsed JSON does not have the shape expected for the exercise type."""

    field: str
    reason: str

    def __str__(self) -> str:
        return f"Schema violation at '{self.field}': {self.reason}"


@dataclass
class OutOfRangeScore(SchemaViolation):
    value: float
    max_points: float

    def __init__(self, field: str, value: float, max_points: float) -> None:
        super().__init__(field=field, reason=f"score {value} outside allowed values for max {max_points}")
        self.value = value
        self.max_points = max_points

    def __str__(self) -> str:
        return f"Score {self.value} at '{self.field}' is not a valid score out of {self.max_points}"


Failure = MalformedResponse | SchemaViolation


@dataclass
class StaleWrite(Exception):
    key: str
    expected_version: int
    actual_version: int

    def __str__(self) -> str:
        return f"Stale write for {self.key}: expected version {self.expected_version}, found {self.actual_version}"


@dataclass
class StateFrozen(Exception):
    exercise_kind: str

    def __str__(self) -> str:
        return f"Exercise '{self.exercise_kind}' is published; its scores can no longer change"


@dataclass
class RubricConfigError(Exception):
    message: str

    def __str__(self) -> str:
        return self.message
