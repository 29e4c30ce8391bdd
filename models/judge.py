from enum import Enum
from pydantic import BaseModel
from typing import Optional


class JudgeStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    WRONG_ANSWER = "wrong_answer"
    TIME_LIMIT_EXCEEDED = "time_limit_exceeded"
    COMPILATION_ERROR = "compilation_error"
    RUNTIME_ERROR = "runtime_error"
    # failures on the judge side, never the student's fault
    JUDGE_ERROR = "judge_error"
    TIMEOUT = "timeout"


# Judge0 status ids
JUDGE0_STATUS = {
    1: JudgeStatus.PENDING,
    2: JudgeStatus.PENDING,
    3: JudgeStatus.ACCEPTED,
    4: JudgeStatus.WRONG_ANSWER,
    5: JudgeStatus.TIME_LIMIT_EXCEEDED,
    6: JudgeStatus.COMPILATION_ERROR,
    7: JudgeStatus.RUNTIME_ERROR,
    8: JudgeStatus.RUNTIME_ERROR,
    9: JudgeStatus.RUNTIME_ERROR,
    10: JudgeStatus.RUNTIME_ERROR,
    11: JudgeStatus.RUNTIME_ERROR,
    12: JudgeStatus.RUNTIME_ERROR,
    13: JudgeStatus.JUDGE_ERROR,
    14: JudgeStatus.JUDGE_ERROR,
}

LANGUAGE_IDS = {
    "python": 71,
    "java": 62,
    "c": 50,
    "cpp": 54,
    "javascript": 63,
}


class ExecutionLimits(BaseModel):
    cpuTimeLimit: Optional[float] = None  # seconds
    memoryLimit: Optional[int] = None  # KB, as Judge0 expects


class ExecutionResult(BaseModel):
    token: Optional[str] = None
    status: JudgeStatus
    statusDescription: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    compileOutput: str = ""
    time: float = 0.0  # seconds
    memory: float = 0.0  # in the client's configured unit
    exitCode: Optional[int] = None
    message: Optional[str] = None

    @property
    def is_terminal(self):
        return self.status != JudgeStatus.PENDING


class TestCaseResult(BaseModel):
    __test__ = False

    testCase: int
    passed: bool
    status: JudgeStatus
    isHidden: bool = False
    input: str = ""
    actualOutput: str = ""
    expectedOutput: str = ""
    executionTime: float = 0.0
    memoryUsage: float = 0.0
    points: float = 0.0
    stderr: str = ""
    compileOutput: str = ""
    errorMessage: Optional[str] = None
