from __future__ import annotations

import logging

import pytest
from factories import cdab_responses

from certscore.errors import OutOfRangeScore, SchemaViolation
from certscore.grading.normalizers import FREE_SCORE_ITEM, coerce_score, normalize
from certscore.grading.rubrics import (
    CDAB_RUBRIC,
    COMPANY_RUBRIC,
    IIEP_RUBRIC,
    OBJECTIONS_RUBRIC,
    RDV_DECIDEUR_RUBRIC,
    SECTIONS_RUBRIC,
)
from certscore.models import ExerciseTypeTag, RubricResult


def _sections_payload(**overrides: list[dict]) -> dict:
    sizes = {"motivateurs": 5, "caracteristiques": 5, "concepts": 2}
    sections = []
    for section_id, size in sizes.items():
        answers = overrides.get(section_id)
        if answers is None:
            answers = [{"text": f"{section_id} {n}", "score": 3, "feedback": "ok"} for n in range(size)]
        sections.append({"id": section_id, "answers": answers})
    return {"sections": sections, "feedback": "Bonne maîtrise"}


def test_characteristic_payload_keys_items_by_group_and_section() -> None:
    result = normalize({"responses": cdab_responses(range(1, 3)), "totalScore": 16}, "characteristic", CDAB_RUBRIC)

    assert isinstance(result, RubricResult)
    assert result.exercise_type == ExerciseTypeTag.CHARACTERISTIC
    assert len(result.entries) == 10
    entry = result.entries["2/benefits"]
    assert entry.points == 2
    assert entry.comment == "C2 Bénéfices"
    assert entry.item.max_points == 2
    assert result.source is None


def test_characteristic_accepts_nested_evaluation_and_label_variants() -> None:
    payload = {
        "evaluation": {
            "responses": [
                {"characteristic": 8, "section": "  BÉNÉFICES ", "score": 1, "maxPoints": 2, "comment": "", "extra": 1},
                {"characteristic": 8, "section": "Preuves", "score": 0, "maxPoints": 2.0, "comment": "aucune"},
            ]
        },
        "commentaireGeneral": "Caractéristique bonus",
    }

    result = normalize(payload, ExerciseTypeTag.CHARACTERISTIC)

    assert isinstance(result, RubricResult)
    assert set(result.entries) == {"8/benefits", "8/proofs"}
    assert result.feedback == "Caractéristique bonus"


@pytest.mark.parametrize(
    ("mutation", "field"),
    [
        ({"characteristic": 9}, "responses.0.characteristic"),
        ({"characteristic": "1"}, "responses.0.characteristic"),
        ({"section": "Inconnue"}, "responses.0.section"),
        ({"maxPoints": 4}, "responses.0.maxPoints"),
        ({"comment": None}, "responses.0.comment"),
    ],
)
def test_characteristic_violations_name_the_field(mutation: dict, field: str) -> None:
    response = {**cdab_responses(range(1, 2))[0], **mutation}

    result = normalize({"responses": [response]}, "characteristic", CDAB_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == field


def test_characteristic_without_responses_is_a_violation() -> None:
    result = normalize({"totalScore": 0}, "characteristic", CDAB_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == "responses"


def test_one_bad_entry_rejects_the_whole_payload() -> None:
    responses = cdab_responses(range(1, 8))
    responses[-1] = {**responses[-1], "score": 3}

    result = normalize({"responses": responses}, "characteristic", CDAB_RUBRIC)

    assert isinstance(result, OutOfRangeScore)
    assert result.value == 3
    assert result.max_points == 2


def test_duplicate_item_is_a_violation() -> None:
    responses = cdab_responses(range(1, 2))

    result = normalize({"responses": responses + responses[:1]}, "characteristic", CDAB_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert "duplicate" in result.reason


def test_non_object_payload_is_a_violation() -> None:
    result = normalize([1, 2], "section", SECTIONS_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == "$"


def test_dialogue_lines_score_per_role() -> None:
    payload = {
        "sections": [
            {
                "id": "introduction",
                "dialogues": [
                    {"role": "commercial", "score": 2, "comment": "Présentation claire"},
                    {"index": 5, "role": "client", "score": "0.25", "comment": "Réponse spontanée"},
                ],
            }
        ],
        "commentaireGeneral": "Bonne accroche",
    }

    result = normalize(payload, "dialogue", RDV_DECIDEUR_RUBRIC)

    assert isinstance(result, RubricResult)
    commercial = result.entries["introduction/0.commercial"]
    client = result.entries["introduction/5.client"]
    assert commercial.points == 2 and commercial.item.required
    assert client.points == 0.25 and not client.item.required
    assert client.item.max_points == 0.25
    assert result.feedback == "Bonne accroche"


@pytest.mark.parametrize(
    ("line", "field"),
    [
        ({"role": "assistant", "score": 1, "comment": ""}, "sections.0.dialogues.0.role"),
        ({"role": "client", "score": 1, "comment": ""}, "sections.0.dialogues.0.score"),
        ({"role": "commercial", "score": "beaucoup", "comment": ""}, "sections.0.dialogues.0.score"),
    ],
)
def test_dialogue_violations(line: dict, field: str) -> None:
    result = normalize({"sections": [{"id": "introduction", "dialogues": [line]}]}, "dialogue", RDV_DECIDEUR_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == field


def test_dialogue_rejects_more_scored_lines_than_declared() -> None:
    lines = [{"role": "commercial", "score": 1, "comment": ""} for _ in range(3)]

    result = normalize({"sections": [{"id": "proposition_rdv", "dialogues": lines}]}, "dialogue", RDV_DECIDEUR_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == "sections.0.dialogues"


def test_section_payload_keys_answers_by_number() -> None:
    result = normalize(_sections_payload(), "section", SECTIONS_RUBRIC)

    assert isinstance(result, RubricResult)
    assert len(result.entries) == 12
    assert result.entries["concepts/2"].points == 3
    assert result.feedback == "Bonne maîtrise"


def test_section_answer_count_must_match() -> None:
    answers = [{"text": "a", "score": 4, "feedback": ""} for _ in range(3)]

    result = normalize(_sections_payload(concepts=answers), "section", SECTIONS_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == "sections.2.answers"


def test_section_unknown_and_missing_ids() -> None:
    payload = _sections_payload()
    payload["sections"][0]["id"] = "intrus"

    unknown = normalize(payload, "section", SECTIONS_RUBRIC)
    missing = normalize({"sections": payload["sections"][1:]}, "section", SECTIONS_RUBRIC)

    assert isinstance(unknown, SchemaViolation) and unknown.field == "sections.0.id"
    assert isinstance(missing, SchemaViolation) and "motivateurs" in missing.reason


def test_objection_stages_map_through_vocabulary() -> None:
    responses = [
        {"objection": objection, "stage": stage, "score": 4, "maxPoints": 4, "comment": ""}
        for objection in (1, 2, 3)
        for stage in ("(S')interroger", "Investiguer", "empathie", "PROPOSER")
    ]

    result = normalize({"responses": responses}, "objection", IIEP_RUBRIC)

    assert isinstance(result, RubricResult)
    assert len(result.entries) == 12
    assert result.entries["3/interroger"].points == 4


def test_objection_sheet_scores_type_and_justification() -> None:
    responses = [
        {"objection": 10, "stage": "Type d'objection", "score": 2.5, "maxPoints": 2.5, "comment": "Prix"},
        {"objection": 10, "stage": "justification", "score": 0, "maxPoints": 2.5, "comment": "Hors sujet"},
    ]

    result = normalize({"responses": responses}, "objection", OBJECTIONS_RUBRIC)

    assert isinstance(result, RubricResult)
    assert result.entries["10/type"].points == 2.5
    assert result.entries["10/justification"].comment == "Hors sujet"


def test_objection_number_bounded_by_rubric() -> None:
    response = {"objection": 4, "stage": "Empathie", "score": 1, "maxPoints": 4, "comment": ""}

    result = normalize({"responses": [response]}, "objection", IIEP_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == "responses.0.objection"


def test_free_score_criteria() -> None:
    payload = {
        "criteria": [
            {"id": "company_presentation", "score": 2, "maxPoints": 2, "feedback": "Complet"},
            {"id": "team", "score": 1.5, "maxPoints": 2},
        ]
    }

    result = normalize(payload, "free_score", COMPANY_RUBRIC)

    assert isinstance(result, RubricResult)
    assert result.entries[f"team/{FREE_SCORE_ITEM}"].points == 1.5
    assert result.entries[f"company_presentation/{FREE_SCORE_ITEM}"].comment == "Complet"


def test_free_score_unknown_criterion() -> None:
    result = normalize({"criteria": [{"id": "weather", "score": 1, "maxPoints": 2}]}, "free_score", COMPANY_RUBRIC)

    assert isinstance(result, SchemaViolation)
    assert result.field == "criteria.0.id"


def test_violation_is_logged_with_field(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.WARNING, logger="certscore.grading.normalizers")

    normalize({"responses": [{"characteristic": 1}]}, "characteristic", CDAB_RUBRIC)

    record = next(r for r in caplog.records if r.getMessage() == "grading/normalize schema violation")
    assert record.exercise_kind == "cdab"
    assert record.field.startswith("responses.0.")


def test_rubric_of_another_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        normalize({"sections": []}, "dialogue", CDAB_RUBRIC)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(1, 1.0), (1.004, 1.0), (1.995, 2.0), (-0.003, 0.0), ("2", 2.0)],
)
def test_coerce_score_snaps_within_tolerance(raw: object, expected: float) -> None:
    assert coerce_score(raw, "score", 2, (0, 1, 2)) == expected


def test_coerce_score_without_grid_accepts_the_range() -> None:
    assert coerce_score(1.5, "score", 2) == 1.5
    assert coerce_score(2.005, "score", 2) == 2.0


@pytest.mark.parametrize("raw", [1.5, 2.5, -1, float("nan")])
def test_coerce_score_out_of_range(raw: float) -> None:
    with pytest.raises(OutOfRangeScore):
        coerce_score(raw, "score", 2, (0, 1, 2))


@pytest.mark.parametrize("raw", [True, None, "deux"])
def test_coerce_score_rejects_non_numbers(raw: object) -> None:
    with pytest.raises(SchemaViolation) as excinfo:
        coerce_score(raw, "score", 2)

    assert not isinstance(excinfo.value, OutOfRangeScore)


def test_snap_tolerance_comes_from_settings(monkeypatch) -> None:
    from certscore.settings import settings

    monkeypatch.setattr(settings, "score_snap_tolerance", 0.0)

    with pytest.raises(OutOfRangeScore):
        coerce_score(1.004, "score", 2, (0, 1, 2))
