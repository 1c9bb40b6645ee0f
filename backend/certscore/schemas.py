"""Expected shapes of AI grading payloads, one set per exercise type.

Extra keys are ignored everywhere; missing or mistyped required keys fail
validation for the whole payload.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr

StrictNumber = Union[StrictInt, StrictFloat]


class PayloadModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    feedback: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("feedback", "commentaireGeneral", "comment"),
    )


class DialogueLine(BaseModel):
    model_config = ConfigDict(extra="ignore")

    index: Optional[StrictInt] = Field(default=None, ge=0)
    role: StrictStr
    # Numbers or numeric strings ("0.25") are both accepted
    score: Union[StrictInt, StrictFloat, StrictStr]
    comment: StrictStr


class DialogueSection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: StrictStr
    dialogues: list[DialogueLine]


class DialoguePayload(PayloadModel):
    sections: list[DialogueSection]


class CharacteristicResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    characteristic: StrictInt
    section: StrictStr
    score: StrictNumber
    max_points: StrictNumber = Field(alias="maxPoints")
    comment: StrictStr


class CharacteristicEvaluation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    responses: list[CharacteristicResponse]


class CharacteristicPayload(PayloadModel):
    responses: Optional[list[CharacteristicResponse]] = None
    evaluation: Optional[CharacteristicEvaluation] = None

    def all_responses(self) -> Optional[list[CharacteristicResponse]]:
        if self.responses is not None:
            return self.responses
        if self.evaluation is not None:
            return self.evaluation.responses
        return None


class SectionAnswer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: StrictStr
    score: StrictNumber
    feedback: StrictStr


class SectionEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: StrictStr
    answers: list[SectionAnswer]


class SectionPayload(PayloadModel):
    sections: list[SectionEntry]


class ObjectionResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    objection: StrictInt
    stage: StrictStr
    score: StrictNumber
    max_points: StrictNumber = Field(alias="maxPoints")
    comment: StrictStr


class ObjectionPayload(PayloadModel):
    responses: list[ObjectionResponse]


class Criterion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: StrictStr
    score: StrictNumber
    max_points: StrictNumber = Field(alias="maxPoints")
    feedback: StrictStr = ""


class FreeScorePayload(PayloadModel):
    criteria: list[Criterion]
