from __future__ import annotations

import pytest
from factories import cdab_state_from_ai

from certscore.errors import StateFrozen
from certscore.grading.manual import manual_result
from certscore.grading.rubrics import CDAB_RUBRIC, SECTIONS_RUBRIC
from certscore.models import ExerciseKind, ExerciseStatus, ScoreSource
from certscore.pipeline.merge import merge, new_state
from certscore.pipeline.staging import StagingBuffer, publish


def test_staging_keeps_latest_draft_per_item() -> None:
    buffer = StagingBuffer()
    buffer.stage("cdab", manual_result(CDAB_RUBRIC, {("1", "description"): (0, "premier jet")}))
    staged = buffer.stage(
        "cdab",
        manual_result(
            CDAB_RUBRIC,
            {("1", "description"): (2, "revu"), ("2", "proofs"): (1, "")},
            feedback="À retravailler",
        ),
    )

    assert "cdab" in buffer
    assert len(buffer) == 1
    assert staged.entries["1/description"].points == 2
    assert staged.entries["1/description"].comment == "revu"
    assert set(staged.entries) == {"1/description", "2/proofs"}
    assert staged.feedback == "À retravailler"


def test_staged_scores_do_not_touch_committed_state(t0) -> None:
    state = cdab_state_from_ai(t0)
    buffer = StagingBuffer()
    buffer.stage("cdab", manual_result(CDAB_RUBRIC, {("1", "description"): (2, "")}))

    assert state.slots["1/description"].authoritative.source == ScoreSource.AI
    assert state.final_score == 80


def test_staging_rejects_mixed_exercise_types() -> None:
    buffer = StagingBuffer()
    buffer.stage("ex-1", manual_result(CDAB_RUBRIC, {("1", "description"): (2, "")}))

    with pytest.raises(ValueError):
        buffer.stage("ex-1", manual_result(SECTIONS_RUBRIC, {("concepts", "1"): (4, "")}))


def test_publish_merges_drafts_as_manual_and_freezes(t0, later) -> None:
    buffer = StagingBuffer()
    buffer.stage("cdab", manual_result(CDAB_RUBRIC, {("1", "description"): (2, "Corrigé")}))

    published = buffer.publish("cdab", cdab_state_from_ai(t0), later(30))

    assert published.status == ExerciseStatus.PUBLISHED
    assert published.published_at == later(30)
    assert published.updated_at == later(30)
    assert published.slots["1/description"].authoritative.source == ScoreSource.MANUAL
    assert published.total_score == 57
    assert published.final_score == 81
    assert "cdab" not in buffer

    with pytest.raises(StateFrozen):
        merge(published, manual_result(CDAB_RUBRIC, {}).stamp(ScoreSource.MANUAL, later(31)))


def test_publish_without_drafts_freezes_current_scores(t0, later) -> None:
    state = cdab_state_from_ai(t0)

    published = publish(state, None, later(1))

    assert published.slots == state.slots
    assert published.final_score == 80
    assert published.is_published


def test_publishing_twice_is_rejected(t0, later) -> None:
    published = publish(new_state(ExerciseKind.CDAB), None, t0)

    with pytest.raises(StateFrozen):
        publish(published, None, later(1))


def test_discard_drops_draft() -> None:
    buffer = StagingBuffer()
    buffer.stage("cdab", manual_result(CDAB_RUBRIC, {("1", "description"): (2, "")}))

    buffer.discard("cdab")
    buffer.discard("unknown")

    assert buffer.get("cdab") is None
    assert len(buffer) == 0
