"""Assessment and submission lifecycle.

Assessment phase (draft, upcoming, active, completed) is always derived from
the stored schedule and the caller's clock, never stored. Submission status
(in_progress, submitted, evaluated, expired) is stored and only moves forward.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional

from models.assessment import total_points
from models.question import student_question_view
from models.submission import (
    EXPIRED,
    FINALIZED_STATUSES,
    IN_PROGRESS,
    SUBMITTED,
    new_submission_document,
)
from services import scoring
from services.errors import AlreadySubmitted, Forbidden, NotAccessible, NotInProgress, SessionClosed
from services.policy import can_take_assessment

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DRAFT = "draft"
UPCOMING = "upcoming"
ACTIVE = "active"
COMPLETED = "completed"

FINALIZE_RETRIES = 10


def compute_assessment_phase(assessment: dict, now: datetime) -> str:
    if not assessment.get("isPublished"):
        return DRAFT
    if now < assessment["startTime"]:
        return UPCOMING
    if now <= assessment["endTime"]:
        return ACTIVE
    return COMPLETED


def is_accessible(assessment: dict, now: datetime) -> bool:
    if not assessment.get("isActive", True) or not assessment.get("isPublished"):
        return False
    phase = compute_assessment_phase(assessment, now)
    return phase == ACTIVE or (phase == COMPLETED and assessment.get("allowLateSubmission", False))


def student_deadline(submission: dict, assessment: dict) -> datetime:
    """The binding cutoff for one student: their own allowance, capped by the window end."""
    allowance_end = submission["startedAt"] + timedelta(minutes=assessment["duration"])
    return min(allowance_end, assessment["endTime"])


def closes_at(submission: dict, assessment: dict) -> datetime:
    """When the session stops accepting writes.

    Without late submission this is the student deadline. With it, the session
    stays writable until the window ends, and a student who started after the
    window still gets their full allowance; such work is flagged late.
    """
    if not assessment.get("allowLateSubmission"):
        return student_deadline(submission, assessment)
    allowance_end = submission["startedAt"] + timedelta(minutes=assessment["duration"])
    return max(assessment["endTime"], allowance_end)


def is_overdue(submission: dict, assessment: dict, now: datetime) -> bool:
    return now > closes_at(submission, assessment)


def remaining_seconds(submission: dict, assessment: dict, now: datetime) -> int:
    return max(0, int((student_deadline(submission, assessment) - now).total_seconds()))


async def expire_submission(store, submission: dict, assessment: dict, now: datetime) -> dict:
    # expired work is still scored so instructors can see it, it just never ranks
    fields = dict(scoring.compute_result(submission, assessment))
    fields.update({"status": EXPIRED, "expiredAt": now, "updatedAt": now})
    updated = await store.expire(submission["id"], fields)
    if updated is None:
        return await store.get_submission(submission["id"])
    logger.info(f"Submission {submission['id']} expired at {now.isoformat()}")
    return updated


async def check_expiry(store, submission: dict, assessment: dict, now: datetime) -> dict:
    if submission and submission["status"] == IN_PROGRESS and is_overdue(submission, assessment, now):
        return await expire_submission(store, submission, assessment, now)
    return submission


async def expire_overdue(store, assessment: dict, now: datetime) -> int:
    expired = 0
    for submission in await store.list_submissions(assessment["id"], [IN_PROGRESS]):
        if is_overdue(submission, assessment, now):
            await expire_submission(store, submission, assessment, now)
            expired += 1
    if expired:
        logger.info(f"Expired {expired} overdue submissions for assessment {assessment['id']}")
    return expired


async def start_session(store, assessment: dict, student: dict, now: datetime,
                        ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> dict:
    if not can_take_assessment(student, assessment):
        raise Forbidden("You are not assigned to this assessment")
    if not is_accessible(assessment, now):
        raise NotAccessible("Assessment is not accessible at this time")

    submission = await store.find_submission(assessment["id"], student["id"])
    if submission is None:
        doc = new_submission_document(str(uuid.uuid4()), assessment, student["id"], now, ip_address, user_agent)
        submission, created = await store.create_submission(doc)
        if created:
            logger.info(f"Started submission {submission['id']} for student {student['id']}")

    if submission["status"] in FINALIZED_STATUSES:
        raise AlreadySubmitted("You have already submitted this assessment")
    submission = await check_expiry(store, submission, assessment, now)
    if submission["status"] != IN_PROGRESS:
        raise SessionClosed("Your time for this assessment is over")

    questions = await store.get_questions(
        [e["question"] for e in assessment.get("codingQuestions", []) + assessment.get("mcqQuestions", [])]
    )
    return build_session_payload(assessment, questions, submission, now)


def build_session_payload(assessment: dict, questions: Dict[str, dict], submission: dict, now: datetime) -> dict:
    coding = [
        coding_question_view(entry, questions[entry["question"]], submission)
        for entry in assessment.get("codingQuestions", []) if entry["question"] in questions
    ]
    mcq = [
        mcq_question_view(entry, questions[entry["question"]], submission, assessment.get("shuffleOptions"))
        for entry in assessment.get("mcqQuestions", []) if entry["question"] in questions
    ]
    missing = len(assessment.get("codingQuestions", [])) + len(assessment.get("mcqQuestions", [])) \
        - len(coding) - len(mcq)
    if missing:
        logger.warning(f"Assessment {assessment['id']} references {missing} inactive questions")

    if assessment.get("shuffleQuestions"):
        coding = scoring.shuffle(coding, scoring.question_order_seed(submission["id"], "coding"))
        mcq = scoring.shuffle(mcq, scoring.question_order_seed(submission["id"], "mcq"))

    return {
        "submissionId": submission["id"],
        "status": submission["status"],
        "assessment": {
            "id": assessment["id"],
            "title": assessment.get("title"),
            "description": assessment.get("description"),
            "duration": assessment["duration"],
            "instructions": assessment.get("instructions"),
            "negativeMarking": assessment.get("negativeMarking", False),
            "negativeMarkingValue": assessment.get("negativeMarkingValue", 0),
            "preventTabSwitch": assessment.get("preventTabSwitch", False),
            "allowLateSubmission": assessment.get("allowLateSubmission", False),
        },
        "startedAt": submission["startedAt"],
        "endTime": student_deadline(submission, assessment),
        "timeRemaining": remaining_seconds(submission, assessment, now),
        "codingQuestions": coding,
        "mcqQuestions": mcq,
        "totalQuestions": len(assessment.get("codingQuestions", [])) + len(assessment.get("mcqQuestions", [])),
        "totalPoints": total_points(assessment),
    }


def coding_question_view(entry: dict, question: dict, submission: dict) -> dict:
    progress = submission.get("codingSubmissions", {}).get(entry["question"], {})
    return {
        "question": student_question_view(question),
        "points": entry["points"],
        "maxAttempts": entry["maxAttempts"],
        "attemptsUsed": progress.get("totalAttempts", 0),
        "isCompleted": progress.get("isCompleted", False),
    }


def mcq_question_view(entry: dict, question: dict, submission: dict, shuffle_options: bool) -> dict:
    view = student_question_view(question)
    if shuffle_options:
        view["options"], _, _ = scoring.shuffle_options(
            question.get("options", []),
            question.get("correctAnswer"),
            scoring.option_seed(submission["id"], question["id"]),
        )
    answer = submission.get("mcqAnswers", {}).get(entry["question"])
    return {
        "question": view,
        "points": entry["points"],
        "maxAttempts": entry["maxAttempts"],
        "selectedAnswer": answer.get("selectedAnswer") if answer else None,
    }


async def finalize_session(store, submission: dict, assessment: dict, now: datetime) -> tuple:
    """Score and submit. Returns (submission, transitioned).

    Only an in_progress submission at the version that was scored moves to
    submitted. A submission that is already submitted comes back unchanged, so
    a repeated or concurrent finalize never re-scores.
    """
    current = submission
    for _ in range(FINALIZE_RETRIES):
        if current is None:
            raise NotInProgress("No active assessment session found")
        if current["status"] in FINALIZED_STATUSES:
            logger.info(f"Submission {current['id']} already {current['status']}, finalize is a no-op")
            return current, False
        if current["status"] != IN_PROGRESS:
            raise NotInProgress(f"Submission is {current['status']}")
        if is_overdue(current, assessment, now):
            await expire_submission(store, current, assessment, now)
            raise NotInProgress("Time for this assessment is over")

        fields = dict(scoring.compute_result(current, assessment))
        fields.update({
            "status": SUBMITTED,
            "submittedAt": now,
            "timeTaken": int((now - current["startedAt"]).total_seconds()),
            "isLate": now > student_deadline(current, assessment),
            "updatedAt": now,
        })
        updated = await store.finalize(current["id"], current.get("version", 0), fields)
        if updated is not None:
            logger.info(
                f"Submission {current['id']} submitted: {fields['totalScore']}/{fields['maxScore']} "
                f"({fields['grade']})"
            )
            return updated, True
        current = await store.get_submission(current["id"])
    raise NotInProgress("Submission kept changing while finalizing, try again")
