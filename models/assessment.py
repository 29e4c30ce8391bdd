from pydantic import BaseModel, Field, field_validator, model_validator
from datetime import datetime, timedelta, timezone
from typing import List, Optional

DEFAULT_CODING_ATTEMPTS = 3
DEFAULT_MCQ_ATTEMPTS = 1


def as_naive_utc(dt):
    """Return dt as naive UTC (or None). Handles aware/naive inputs safely."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


class ManifestEntry(BaseModel):
    question: str
    points: float = Field(..., ge=1, le=100)
    maxAttempts: Optional[int] = Field(default=None, ge=1, le=10)


class AssessmentSettings(BaseModel):
    shuffleQuestions: bool = False
    shuffleOptions: bool = False
    showResultsImmediately: bool = True
    allowLateSubmission: bool = False
    showCorrectAnswers: bool = True
    preventTabSwitch: bool = False
    passingScore: float = Field(default=40, ge=0, le=100)
    negativeMarking: bool = False
    negativeMarkingValue: float = Field(default=0.25, ge=0, le=1)


class AssessmentCreate(AssessmentSettings):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    department: str
    groups: List[str] = Field(..., min_length=1)
    startTime: datetime
    duration: int = Field(..., ge=5, le=480)  # minutes
    windowDuration: Optional[int] = Field(default=None, ge=5)  # minutes the assessment stays open
    codingQuestions: List[ManifestEntry] = []
    mcqQuestions: List[ManifestEntry] = []
    instructions: Optional[str] = None

    @field_validator("title", "description", "instructions")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("startTime")
    @classmethod
    def normalize_start(cls, value):
        return as_naive_utc(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.windowDuration is not None and self.windowDuration < self.duration:
            raise ValueError("Window duration cannot be shorter than the duration")
        ids = [q.question for q in self.codingQuestions + self.mcqQuestions]
        if len(ids) != len(set(ids)):
            raise ValueError("A question can only appear once in an assessment")
        return self


class AssessmentUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    groups: Optional[List[str]] = Field(default=None, min_length=1)
    startTime: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=5, le=480)
    windowDuration: Optional[int] = Field(default=None, ge=5)
    shuffleQuestions: Optional[bool] = None
    shuffleOptions: Optional[bool] = None
    showResultsImmediately: Optional[bool] = None
    allowLateSubmission: Optional[bool] = None
    showCorrectAnswers: Optional[bool] = None
    preventTabSwitch: Optional[bool] = None
    passingScore: Optional[float] = Field(default=None, ge=0, le=100)
    negativeMarking: Optional[bool] = None
    negativeMarkingValue: Optional[float] = Field(default=None, ge=0, le=1)
    instructions: Optional[str] = None

    @field_validator("startTime")
    @classmethod
    def normalize_start(cls, value):
        return as_naive_utc(value)


def compute_end_time(start_time: datetime, duration: int, window_duration: Optional[int] = None) -> datetime:
    return start_time + timedelta(minutes=window_duration or duration)


def total_points(assessment: dict) -> float:
    return section_points(assessment, "codingQuestions") + section_points(assessment, "mcqQuestions")


def section_points(assessment: dict, section: str) -> float:
    return sum(entry["points"] for entry in assessment.get(section, []))


def normalize_manifest(entries: List[ManifestEntry], default_attempts: int) -> List[dict]:
    return [
        {
            "question": entry.question,
            "points": entry.points,
            "maxAttempts": entry.maxAttempts or default_attempts,
            "order": order,
        }
        for order, entry in enumerate(entries)
    ]


def new_assessment_document(data: AssessmentCreate, assessment_id: str, created_by: str, now: datetime) -> dict:
    doc = data.model_dump(exclude={"codingQuestions", "mcqQuestions"})
    doc["id"] = assessment_id
    doc["createdBy"] = created_by
    doc["codingQuestions"] = normalize_manifest(data.codingQuestions, DEFAULT_CODING_ATTEMPTS)
    doc["mcqQuestions"] = normalize_manifest(data.mcqQuestions, DEFAULT_MCQ_ATTEMPTS)
    doc["endTime"] = compute_end_time(data.startTime, data.duration, data.windowDuration)
    doc["isPublished"] = False
    doc["isActive"] = True
    doc["createdAt"] = now
    doc["updatedAt"] = now
    return doc
