import json
from datetime import datetime, timedelta

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from database import init_db
from models.assessment import AssessmentCreate, new_assessment_document
from models.question import QuestionCreate, new_question_document
from services.judge_client import JudgeClient
from services.orchestrator import SubmissionOrchestrator
from services.store import AssessmentStore

T0 = datetime(2026, 3, 2, 9, 0, 0)


def minutes(n):
    return timedelta(minutes=n)


def judge0_result(status_id=3, stdout="", stderr="", compile_output="", time="0.05", memory=2048):
    descriptions = {1: "In Queue", 2: "Processing", 3: "Accepted", 4: "Wrong Answer",
                    5: "Time Limit Exceeded", 6: "Compilation Error", 11: "Runtime Error (NZEC)",
                    13: "Internal Error"}
    return {
        "stdout": stdout,
        "stderr": stderr,
        "compile_output": compile_output,
        "message": None,
        "status": {"id": status_id, "description": descriptions.get(status_id, "")},
        "time": time,
        "memory": memory,
        "exit_code": 0,
    }


# source code strings understood by the fake judge
PROGRAMS = {
    "sum": lambda stdin: str(sum(int(x) for x in stdin.split())),
    "three": lambda stdin: "3",
    "zero": lambda stdin: "0",
}


def run_program(payload):
    program = PROGRAMS.get(payload["source_code"])
    if program is None:
        return judge0_result(6, compile_output="SyntaxError: invalid syntax")
    return judge0_result(3, stdout=program(payload.get("stdin", "")))


class FakeJudge0:
    """In-memory Judge0 served through httpx.MockTransport.

    `run` maps a submission payload to the Judge0 result body. Stdin values in
    `broken_inputs` make that case's poll fail with HTTP 500, and
    `pending_polls` keeps every submission in the queue for that many polls.
    """

    def __init__(self, run=run_program):
        self.run = run
        self.submissions = {}
        self.polls = {}
        self.broken_inputs = set()
        self.fail_submit = False
        self.submit_status = 503
        self.pending_polls = 0
        self.posts = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST" and request.url.path == "/submissions":
            self.posts += 1
            if self.fail_submit:
                return httpx.Response(self.submit_status, json={"error": "queue full"})
            token = f"token-{len(self.submissions)}"
            self.submissions[token] = json.loads(request.content)
            return httpx.Response(201, json={"token": token})

        token = request.url.path.rsplit("/", 1)[-1]
        payload = self.submissions.get(token)
        if payload is None:
            return httpx.Response(404, json={"error": "not found"})
        if payload.get("stdin") in self.broken_inputs:
            return httpx.Response(500, json={"error": "boom"})
        self.polls[token] = self.polls.get(token, 0) + 1
        if self.polls[token] <= self.pending_polls:
            return httpx.Response(200, json=judge0_result(2))
        return httpx.Response(200, json=self.run(payload))


@pytest.fixture
async def db():
    database = AsyncMongoMockClient()["lms_assessment_test"]
    await init_db(database)
    return database


@pytest.fixture
def store(db):
    return AssessmentStore(db)


@pytest.fixture
def fake_judge0():
    return FakeJudge0()


@pytest.fixture
def judge(fake_judge0):
    return JudgeClient(
        base_url="http://judge.test",
        api_key="",
        poll_interval=0,
        max_polls=3,
        submit_retries=1,
        transport=httpx.MockTransport(fake_judge0.handler),
    )


@pytest.fixture
def orchestrator(store, judge):
    return SubmissionOrchestrator(store, judge, clock=lambda: T0 + minutes(5))


@pytest.fixture
def admin():
    return {"id": "admin-1", "role": "admin", "name": "Ada", "groups": [], "department": None}


@pytest.fixture
def hod():
    return {"id": "hod-1", "role": "hod", "name": "Hal", "groups": [], "department": "cs"}


@pytest.fixture
def teacher():
    return {"id": "teacher-1", "role": "teacher", "name": "Tess", "groups": ["cs-a"], "department": "cs"}


@pytest.fixture
def student():
    return {"id": "student-1", "role": "student", "name": "Sam", "groups": ["cs-a"], "department": "cs"}


@pytest.fixture
def student_b():
    return {"id": "student-2", "role": "student", "name": "Sky", "groups": ["cs-a"], "department": "cs"}


@pytest.fixture
def outsider():
    return {"id": "student-9", "role": "student", "name": "Oz", "groups": ["ee-b"], "department": "ee"}


class Seeder:
    def __init__(self, store):
        self.store = store
        self.count = 0

    def _next_id(self, prefix):
        self.count += 1
        return f"{prefix}-{self.count}"

    async def coding_question(self, **overrides):
        data = {
            "title": "Add two numbers",
            "description": "Print the sum of two integers",
            "type": "coding",
            "department": "cs",
            "language": "python",
            "testCases": [
                {"input": "1 2", "expectedOutput": "3", "points": 5},
                {"input": "2 3", "expectedOutput": "5", "points": 5, "isHidden": True},
            ],
            "solutionCode": "sum",
        }
        data.update(overrides)
        doc = new_question_document(QuestionCreate(**data), self._next_id("cq"), "teacher-1", T0 - minutes(60))
        return await self.store.insert_question(doc)

    async def mcq_question(self, **overrides):
        data = {
            "title": "Capital of France",
            "description": "Pick one",
            "type": "mcq",
            "department": "cs",
            "options": ["Berlin", "Madrid", "Paris", "Rome"],
            "correctAnswer": 2,
            "explanation": "Paris is the capital",
        }
        data.update(overrides)
        doc = new_question_document(QuestionCreate(**data), self._next_id("mq"), "teacher-1", T0 - minutes(60))
        return await self.store.insert_question(doc)

    async def assessment(self, coding=(), mcq=(), published=True, **overrides):
        """coding/mcq are (question, points) or (question, points, maxAttempts) tuples."""
        def entries(items):
            return [
                {"question": item[0]["id"], "points": item[1], "maxAttempts": item[2] if len(item) > 2 else None}
                for item in items
            ]

        data = {
            "title": "Midterm",
            "department": "cs",
            "groups": ["cs-a"],
            "startTime": T0,
            "duration": 30,
            "codingQuestions": entries(coding),
            "mcqQuestions": entries(mcq),
        }
        data.update(overrides)
        doc = new_assessment_document(AssessmentCreate(**data), self._next_id("as"), "teacher-1", T0 - minutes(60))
        doc["isPublished"] = published
        return await self.store.insert_assessment(doc)


@pytest.fixture
def seed(store):
    return Seeder(store)
