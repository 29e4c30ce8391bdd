from pydantic import BaseModel, Field, model_validator
from datetime import datetime
from typing import List, Optional

SUPPORTED_LANGUAGES = ("python", "java", "c", "cpp", "javascript")


class TestCase(BaseModel):
    __test__ = False

    input: str = ""
    expectedOutput: str
    isHidden: bool = False
    points: Optional[float] = Field(default=None, ge=1, le=100)  # None means proportional scoring
    description: Optional[str] = Field(default=None, max_length=200)


class QuestionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    description: str
    type: str = Field(..., pattern="^(coding|mcq)$")
    difficulty: str = Field(default="medium", pattern="^(easy|medium|hard)$")
    department: Optional[str] = None
    tags: List[str] = []
    hints: List[str] = []

    # coding
    language: Optional[str] = None
    testCases: List[TestCase] = []
    starterCode: Optional[str] = None
    solutionCode: Optional[str] = None
    timeLimit: float = Field(default=1, ge=0.1, le=10)  # seconds
    memoryLimit: int = Field(default=128, ge=16, le=1024)  # MB

    # mcq
    options: List[str] = []
    correctAnswer: Optional[int] = Field(default=None, ge=0)
    explanation: Optional[str] = None

    @model_validator(mode="after")
    def check_type_fields(self):
        if self.type == "coding":
            if self.language not in SUPPORTED_LANGUAGES:
                raise ValueError("Language is required for coding questions")
            if not self.testCases:
                raise ValueError("Coding questions need at least one test case")
        else:
            if len(self.options) < 2:
                raise ValueError("At least 2 options are required for MCQ questions")
            if self.correctAnswer is None or self.correctAnswer >= len(self.options):
                raise ValueError("Correct answer must be a valid option index for MCQ questions")
        return self


def new_question_document(question: QuestionCreate, question_id: str, created_by: str, now: datetime) -> dict:
    doc = question.model_dump()
    doc["id"] = question_id
    doc["createdBy"] = created_by
    doc["isActive"] = True
    doc["createdAt"] = now
    doc["updatedAt"] = now
    return doc


def student_question_view(question: dict) -> dict:
    """Copy of a question that is safe to hand to a student before submission."""
    view = {
        "id": question["id"],
        "title": question.get("title"),
        "description": question.get("description"),
        "type": question.get("type"),
        "difficulty": question.get("difficulty"),
        "hints": question.get("hints", []),
    }
    if question.get("type") == "coding":
        view["language"] = question.get("language")
        view["starterCode"] = question.get("starterCode")
        view["timeLimit"] = question.get("timeLimit")
        view["memoryLimit"] = question.get("memoryLimit")
        view["testCases"] = [
            redact_test_case(tc, index) for index, tc in enumerate(question.get("testCases", []))
        ]
    else:
        view["options"] = list(question.get("options", []))
    return view


def redact_test_case(test_case: dict, index: int) -> dict:
    if test_case.get("isHidden"):
        return {"testCase": index, "isHidden": True, "points": test_case.get("points")}
    return {
        "testCase": index,
        "isHidden": False,
        "input": test_case.get("input", ""),
        "expectedOutput": test_case.get("expectedOutput"),
        "points": test_case.get("points"),
        "description": test_case.get("description"),
    }
