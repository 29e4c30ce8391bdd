from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, Optional

from models.question import SUPPORTED_LANGUAGES

IN_PROGRESS = "in_progress"
SUBMITTED = "submitted"
EVALUATED = "evaluated"
EXPIRED = "expired"

FINALIZED_STATUSES = (SUBMITTED, EVALUATED)


class McqAnswerRequest(BaseModel):
    questionId: str
    answer: int = Field(..., ge=0)


class CodingAttemptRequest(BaseModel):
    questionId: str
    code: str = Field(..., min_length=1)
    language: str = Field(..., pattern="^(" + "|".join(SUPPORTED_LANGUAGES) + ")$")


class CodeRunRequest(BaseModel):
    code: str = Field(..., min_length=1)
    language: str = Field(..., pattern="^(" + "|".join(SUPPORTED_LANGUAGES) + ")$")
    stdin: str = ""


class ActivityReport(BaseModel):
    type: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=500)


class EvaluationRequest(BaseModel):
    questionScores: Dict[str, float]
    remarks: Optional[str] = None


def new_submission_document(submission_id: str, assessment: dict, student_id: str, now: datetime,
                            ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> dict:
    return {
        "id": submission_id,
        "assessmentId": assessment["id"],
        "studentId": student_id,
        "status": IN_PROGRESS,
        "version": 0,
        "startedAt": now,
        "submittedAt": None,
        "timeTaken": None,
        "mcqAnswers": {},
        "codingSubmissions": {},
        "mcqScore": 0,
        "codingScore": 0,
        "totalScore": 0,
        "maxScore": 0,
        "percentage": 0,
        "grade": None,
        "passed": None,
        "rank": None,
        "isLate": False,
        "ipAddress": ip_address,
        "userAgent": user_agent,
        "tabSwitches": 0,
        "suspiciousActivity": [],
        "createdAt": now,
        "updatedAt": now,
    }
