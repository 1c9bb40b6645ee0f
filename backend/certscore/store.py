"""Score-state store boundary and the read-merge-write cycle around it."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

from certscore.errors import StaleWrite
from certscore.models import CertificationRollup, ExerciseKind, ExerciseScoreState
from certscore.pipeline.certification import DEFAULT_CATALOGUE, CatalogueEntry, aggregate
from certscore.pipeline.merge import new_state
from certscore.settings import settings

logger = logging.getLogger(__name__)


def document_key(learner_id: str, kind: ExerciseKind | str) -> str:
    return f"users/{learner_id}/exercises/{ExerciseKind(kind).value}"


class ScoreStateStore(Protocol):
    def read(self, learner_id: str, kind: ExerciseKind) -> tuple[ExerciseScoreState | None, int]:
        """Return the stored state (None when absent) and its version."""

    def write(self, learner_id: str, state: ExerciseScoreState, expected_version: int) -> int:
        """Atomically replace the document; raise StaleWrite on a version mismatch."""

    def read_rollup(self, learner_id: str) -> CertificationRollup | None:
        """Return the last persisted certification rollup."""

    def write_rollup(self, learner_id: str, rollup: CertificationRollup) -> None:
        """Persist a rollup; the last write wins."""


class InMemoryScoreStore:
    """Versioned in-process store, used by tests and local tooling."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[str, tuple[int, ExerciseScoreState]] = {}
        self._rollups: dict[str, CertificationRollup] = {}

    def read(self, learner_id: str, kind: ExerciseKind) -> tuple[ExerciseScoreState | None, int]:
        with self._lock:
            stored = self._documents.get(document_key(learner_id, kind))
        if stored is None:
            return None, 0
        version, state = stored
        return state, version

    def write(self, learner_id: str, state: ExerciseScoreState, expected_version: int) -> int:
        key = document_key(learner_id, state.exercise_kind)
        with self._lock:
            current_version = self._documents.get(key, (0, None))[0]
            if current_version != expected_version:
                raise StaleWrite(key=key, expected_version=expected_version, actual_version=current_version)
            self._documents[key] = (current_version + 1, state)
            return current_version + 1

    def read_rollup(self, learner_id: str) -> CertificationRollup | None:
        with self._lock:
            return self._rollups.get(learner_id)

    def write_rollup(self, learner_id: str, rollup: CertificationRollup) -> None:
        with self._lock:
            self._rollups[learner_id] = rollup


_store: ScoreStateStore | None = None


def get_score_store() -> ScoreStateStore:
    global _store
    if _store is None:
        _store = InMemoryScoreStore()
    return _store


def set_score_store(store: ScoreStateStore) -> None:
    global _store
    _store = store


def reset_score_store() -> None:
    global _store
    _store = None


def read_merge_write(
    store: ScoreStateStore,
    learner_id: str,
    kind: ExerciseKind | str,
    update: Callable[[ExerciseScoreState], ExerciseScoreState],
    max_attempts: int | None = None,
) -> ExerciseScoreState:
    """Run read -> update -> single atomic write, retrying on StaleWrite."""
    kind = ExerciseKind(kind)
    attempts = max_attempts or settings.max_write_retries
    last_exc: StaleWrite | None = None
    for attempt in range(attempts):
        current, version = store.read(learner_id, kind)
        updated = update(current if current is not None else new_state(kind))
        try:
            store.write(learner_id, updated, expected_version=version)
            return updated
        except StaleWrite as exc:
            last_exc = exc
            logger.warning(
                "store/write stale, retrying",
                extra={"stage": "read_merge_write", "exercise_kind": kind.value, "attempt": attempt + 1},
            )

    if last_exc:
        raise last_exc
    raise RuntimeError("read_merge_write made no attempt")


def refresh_certification(
    store: ScoreStateStore,
    learner_id: str,
    catalogue: tuple[CatalogueEntry, ...] = DEFAULT_CATALOGUE,
    trainer_comment: str | None = None,
) -> CertificationRollup:
    """Recompute the learner's rollup from current states and persist it."""
    states: dict[ExerciseKind, ExerciseScoreState] = {}
    for entry in catalogue:
        state, _ = store.read(learner_id, entry.kind)
        if state is not None:
            states[entry.kind] = state

    if trainer_comment is None:
        previous = store.read_rollup(learner_id)
        trainer_comment = previous.trainer_comment if previous else ""

    rollup = aggregate(states, catalogue=catalogue, trainer_comment=trainer_comment)
    store.write_rollup(learner_id, rollup)
    return rollup
