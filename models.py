"""
models.py – request bodies accepted by the API.

Field names follow the browser client (camelCase); snake_case is accepted
too. Numeric bounds are enforced here so malformed marks or times never
reach the scoring engine.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from scoring import RESPONSE_STATUSES

OPTION_KEYS = ("A", "B", "C", "D")


def _option_key(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    key = value.strip().upper()
    if key not in OPTION_KEYS:
        raise ValueError("must be one of A, B, C, D")
    return key


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Users ─────────────────────────────────────────────────────────────────────

class CreateUserRequest(ApiModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)


# ── Tests ─────────────────────────────────────────────────────────────────────

class CreateTestRequest(ApiModel):
    name: str = Field(min_length=1)
    duration: int = Field(default=180, gt=0)
    instructions: Optional[str] = None
    total_marks: float = Field(default=0, ge=0)


class UpdateTestRequest(ApiModel):
    name: str = Field(min_length=1)
    duration: int = Field(gt=0)
    instructions: Optional[str] = None
    is_published: bool = False


# ── Questions ─────────────────────────────────────────────────────────────────

class QuestionFields(ApiModel):
    subject: str = Field(min_length=1)
    question_type: str = "mcq"
    option_a: Optional[str] = None
    option_b: Optional[str] = None
    option_c: Optional[str] = None
    option_d: Optional[str] = None
    correct_answer: str
    marks: float = Field(ge=0)
    negative_marks: float = Field(ge=0)
    difficulty: Optional[str] = None
    solution: Optional[str] = None

    @field_validator("correct_answer")
    @classmethod
    def _normalize_answer(cls, value: str) -> str:
        return _option_key(value)


class CreateQuestionRequest(QuestionFields):
    test_id: int
    crop_id: Optional[int] = None


# ── Percentile tables ─────────────────────────────────────────────────────────

class PercentileRow(ApiModel):
    marks_threshold: float
    percentile: float = Field(ge=0, le=100)


class PercentileTableRequest(ApiModel):
    test_id: int
    mappings: list[PercentileRow]

    @model_validator(mode="after")
    def _unique_thresholds(self) -> "PercentileTableRequest":
        seen = [m.marks_threshold for m in self.mappings]
        if len(seen) != len(set(seen)):
            raise ValueError("marks thresholds must be unique per test")
        return self


# ── Attempts ──────────────────────────────────────────────────────────────────

class StartSubmissionRequest(ApiModel):
    test_id: int
    user_id: Optional[int] = None


class SaveResponseRequest(ApiModel):
    submission_id: int
    question_id: int
    selected_answer: Optional[str] = None
    time_spent: int = Field(default=0, ge=0)
    status: str

    @field_validator("selected_answer")
    @classmethod
    def _normalize_answer(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return _option_key(value)

    @field_validator("status")
    @classmethod
    def _known_status(cls, value: str) -> str:
        if value not in RESPONSE_STATUSES:
            raise ValueError(f"must be one of: {', '.join(RESPONSE_STATUSES)}")
        return value


class SubmitRequest(ApiModel):
    submission_id: int


# ── Crops ─────────────────────────────────────────────────────────────────────

class CropBox(ApiModel):
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class CropUploadRequest(ApiModel):
    image_data: str = Field(min_length=1)
    pdf_id: int
    page_number: int = Field(ge=1)
    crop_data: CropBox
