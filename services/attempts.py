import logging
from datetime import datetime
from typing import Optional

from models.submission import IN_PROGRESS
from services.errors import AttemptLimitExceeded, SessionClosed, UnknownQuestion

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

CODING = "codingQuestions"
MCQ = "mcqQuestions"


def manifest_entry(assessment: dict, question_id: str, section: str) -> dict:
    for entry in assessment.get(section, []):
        if entry["question"] == question_id:
            return entry
    raise UnknownQuestion(f"Question {question_id} is not part of this assessment")


def ensure_open(submission: dict):
    if submission is None or submission.get("status") != IN_PROGRESS:
        raise SessionClosed("This assessment session is closed")


def coding_attempt_count(submission: dict, question_id: str) -> int:
    return submission.get("codingSubmissions", {}).get(question_id, {}).get("totalAttempts", 0)


def ensure_attempts_left(count: int, max_attempts: int, question_id: str):
    if count >= max_attempts:
        logger.info(f"Attempt limit {max_attempts} reached for question {question_id}")
        raise AttemptLimitExceeded(f"Maximum attempts ({max_attempts}) reached for this question")


def is_completed_after(entry: dict, attempt: dict, max_attempts: int) -> bool:
    all_passed = attempt["totalTestCases"] > 0 and attempt["totalPassed"] == attempt["totalTestCases"]
    return entry.get("isCompleted", False) or all_passed or entry.get("totalAttempts", 0) + 1 >= max_attempts


async def record_coding_attempt(store, submission: dict, question_id: str, max_attempts: int,
                                attempt: dict, now: datetime) -> dict:
    """Append one judged attempt and return the updated submission.

    The append is conditional on the attempt count read here. Losing that race
    means another attempt landed first, so the count is re-read and re-checked.
    """
    current = submission
    for _ in range(max_attempts + 1):
        ensure_open(current)
        entry = current.get("codingSubmissions", {}).get(question_id, {})
        count = entry.get("totalAttempts", 0)
        ensure_attempts_left(count, max_attempts, question_id)
        completed = is_completed_after(entry, attempt, max_attempts)
        if await store.append_coding_attempt(current["id"], question_id, count, attempt, completed, now):
            logger.info(f"Recorded attempt {count + 1}/{max_attempts} for {question_id} on {current['id']}")
            return await store.get_submission(current["id"])
        logger.info(f"Concurrent attempt on {current['id']}/{question_id}, re-checking count")
        current = await store.get_submission(current["id"])
    raise AttemptLimitExceeded(f"Maximum attempts ({max_attempts}) reached for this question")


async def record_mcq_answer(store, submission: dict, question_id: str, selected_index: int,
                            correct_index: int, now: datetime, max_attempts: int = 1,
                            displayed_index: Optional[int] = None) -> dict:
    """Upsert the student's answer for one MCQ question.

    With a single allowed attempt the latest answer simply overwrites the last
    one. With more, answers are counted like coding attempts and refused past
    the ceiling.
    """
    limited = max_attempts > 1
    current = submission
    for _ in range(max_attempts + 1):
        ensure_open(current)
        existing = current.get("mcqAnswers", {}).get(question_id)
        count = existing.get("attemptCount", 0) if existing else 0
        if limited:
            ensure_attempts_left(count, max_attempts, question_id)
        answer = {
            "question": question_id,
            "selectedAnswer": selected_index if displayed_index is None else displayed_index,
            "originalSelectedAnswer": selected_index,
            "isCorrect": selected_index == correct_index,
            "answeredAt": now,
            "attemptCount": count + 1,
        }
        stored = await store.upsert_mcq_answer(
            current["id"], question_id, answer, now, expected_count=count if limited else None
        )
        if stored:
            return answer
        current = await store.get_submission(current["id"])
    raise AttemptLimitExceeded(f"Maximum attempts ({max_attempts}) reached for this question")
