"""Engine settings loaded from environment variables."""

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLACEHOLDER_FEEDBACK = "Une erreur est survenue lors de l'évaluation. Veuillez réessayer."


class Settings(BaseSettings):
    """Runtime configuration for the CertScore engine."""

    model_config = SettingsConfigDict(env_prefix="CERTSCORE_", extra="ignore")

    app_name: str = "CertScore Engine"

    # Scores within this distance of an allowed value are snapped to it
    score_snap_tolerance: float = Field(default=0.01, ge=0)

    placeholder_feedback: str = Field(
        default=DEFAULT_PLACEHOLDER_FEEDBACK,
        validation_alias=AliasChoices("CERTSCORE_PLACEHOLDER_FEEDBACK", "PLACEHOLDER_FEEDBACK"),
    )
    max_write_retries: int = Field(default=3, ge=1)

    # Certification rollup toggles
    final_exam_accepts_in_progress: bool = True
    include_optional_groups: bool = False

    @field_validator("placeholder_feedback")
    @classmethod
    def _feedback_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("placeholder_feedback must not be blank")
        return value


settings = Settings()
