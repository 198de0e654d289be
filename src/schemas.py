"""Request bodies accepted by the generation endpoints."""

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _require_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value


class TextRequest(BaseModel):
    text: str

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, value: str) -> str:
        return _require_text(value)


class ActionPlanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    original_question: str | None = Field(default=None, alias="originalQuestion")
    user_goal: str = Field(alias="userGoal")

    @field_validator("user_goal")
    @classmethod
    def goal_not_blank(cls, value: str) -> str:
        return _require_text(value)
