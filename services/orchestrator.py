import logging
import uuid
from datetime import datetime
from typing import Dict, Optional

from models.assessment import total_points
from models.judge import LANGUAGE_IDS, JudgeStatus
from models.submission import EVALUATED, EXPIRED, FINALIZED_STATUSES
from services import attempts, scoring, session
from services.errors import (
    Forbidden,
    JudgeTimeout,
    JudgeUnavailable,
    NotAccessible,
    NotFound,
    NotInProgress,
    SessionClosed,
    ValidationError,
)
from services.judge_client import limits_for_question
from services.policy import (
    RUN_CODE,
    TAKE_ASSESSMENTS,
    can_evaluate,
    can_view_all_results,
    has_capability,
    require_capability,
    shares_group,
)
from services.rate_limit import UnlimitedRateLimiter

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def utcnow():
    return datetime.utcnow()


def attempt_status(results) -> str:
    statuses = {r.status for r in results}
    if JudgeStatus.JUDGE_ERROR in statuses:
        return "judge_error"
    if JudgeStatus.TIMEOUT in statuses:
        return "timeout"
    return "completed"


def needs_review(submission: dict) -> bool:
    """True when some attempt has a verdict the judge, not the student, is to blame for."""
    for entry in submission.get("codingSubmissions", {}).values():
        for attempt in entry.get("attempts", []):
            if attempt.get("status") in ("judge_error", "timeout"):
                return True
    return False


def redact_attempt(attempt: dict) -> dict:
    view = {k: v for k, v in attempt.items() if k != "testResults"}
    view["testResults"] = []
    for result in attempt.get("testResults", []):
        if result.get("isHidden"):
            view["testResults"].append({
                "testCase": result["testCase"],
                "isHidden": True,
                "passed": result["passed"],
                "status": result["status"],
                "executionTime": result.get("executionTime"),
                "memoryUsage": result.get("memoryUsage"),
                "points": result.get("points"),
            })
        else:
            view["testResults"].append(dict(result))
    return view


class SubmissionOrchestrator:
    """Entry point the HTTP layer calls for everything a student does during an assessment."""

    def __init__(self, store, judge, rate_limiter=None, clock=utcnow):
        self.store = store
        self.judge = judge
        self.rate_limiter = rate_limiter or UnlimitedRateLimiter()
        self.clock = clock

    async def _assessment(self, assessment_id: str) -> dict:
        assessment = await self.store.get_assessment(assessment_id)
        if not assessment:
            raise NotFound("Assessment not found")
        return assessment

    async def _open_submission(self, assessment: dict, student: dict, now: datetime) -> dict:
        require_capability(student, TAKE_ASSESSMENTS)
        submission = await self.store.find_submission(assessment["id"], student["id"])
        if submission is None:
            raise NotInProgress("No active assessment session found")
        submission = await session.check_expiry(self.store, submission, assessment, now)
        attempts.ensure_open(submission)
        return submission

    async def start(self, assessment_id: str, student: dict, now: Optional[datetime] = None,
                    ip_address: Optional[str] = None, user_agent: Optional[str] = None) -> dict:
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        return await session.start_session(self.store, assessment, student, now, ip_address, user_agent)

    async def submit_mcq_answer(self, assessment_id: str, student: dict, question_id: str, answer: int,
                                now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        submission = await self._open_submission(assessment, student, now)
        entry = attempts.manifest_entry(assessment, question_id, attempts.MCQ)
        question = await self.store.get_question(question_id)
        if not question or question.get("type") != "mcq":
            raise ValidationError("Invalid MCQ question")

        options = question.get("options", [])
        if answer >= len(options):
            raise ValidationError("Answer is not one of the options")
        original_index = answer
        if assessment.get("shuffleOptions"):
            _, order, _ = scoring.shuffle_options(
                options, question.get("correctAnswer"), scoring.option_seed(submission["id"], question_id)
            )
            original_index = order[answer]

        recorded = await attempts.record_mcq_answer(
            self.store, submission, question_id, original_index, question.get("correctAnswer"), now,
            max_attempts=entry.get("maxAttempts", 1), displayed_index=answer,
        )
        logger.info(f"MCQ answer stored for {question_id} on submission {submission['id']}")
        return {
            "questionId": question_id,
            "selectedAnswer": recorded["selectedAnswer"],
            "attemptCount": recorded["attemptCount"],
            "answeredAt": recorded["answeredAt"],
        }

    async def submit_coding_attempt(self, assessment_id: str, student: dict, question_id: str, code: str,
                                    language: str, now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        submission = await self._open_submission(assessment, student, now)
        entry = attempts.manifest_entry(assessment, question_id, attempts.CODING)
        question = await self.store.get_question(question_id)
        if not question or question.get("type") != "coding":
            raise ValidationError("Invalid coding question")
        if language not in LANGUAGE_IDS:
            raise ValidationError(f"Unsupported language: {language}")

        # refuse before spending judge time; the conditional append re-checks
        attempts.ensure_attempts_left(
            attempts.coding_attempt_count(submission, question_id), entry["maxAttempts"], question_id
        )
        await self.rate_limiter.acquire(student["id"])

        test_cases = question.get("testCases", [])
        results = await self.judge.run_batch(code, LANGUAGE_IDS[language], test_cases,
                                             limits_for_question(question))
        if test_cases and all(r.status == JudgeStatus.JUDGE_ERROR for r in results):
            # nothing was judged, so the attempt is not recorded
            raise JudgeUnavailable("Code execution service is unavailable, your attempt was not counted")

        passed = [r.passed for r in results]
        earned = scoring.case_points(test_cases, passed, entry["points"])
        for result, points in zip(results, earned):
            result.points = points
        status = attempt_status(results)
        if status != "completed":
            logger.warning(f"Attempt on {question_id} by {student['id']} finished with {status}")

        attempt = {
            "code": code,
            "language": language,
            "submittedAt": now,
            "executionId": str(uuid.uuid4()),
            "testResults": [r.model_dump(mode="json") for r in results],
            "totalPassed": sum(passed),
            "totalTestCases": len(test_cases),
            "score": sum(earned),
            "executionTime": sum(r.executionTime for r in results),
            "status": status,
        }
        updated = await attempts.record_coding_attempt(
            self.store, submission, question_id, entry["maxAttempts"], attempt, now
        )
        progress = updated["codingSubmissions"][question_id]
        return {
            "questionId": question_id,
            "executionId": attempt["executionId"],
            "status": status,
            "attempt": redact_attempt(attempt),
            "attemptsUsed": progress["totalAttempts"],
            "maxAttempts": entry["maxAttempts"],
            "bestScore": progress["bestScore"],
            "isCompleted": progress["isCompleted"],
        }

    async def finalize(self, assessment_id: str, student: dict, now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        require_capability(student, TAKE_ASSESSMENTS)
        submission = await self.store.find_submission(assessment_id, student["id"])
        submission, transitioned = await session.finalize_session(self.store, submission, assessment, now)
        if transitioned:
            await self.assign_ranks(assessment_id)
            submission = await self.store.get_submission(submission["id"])
        return self.submission_summary(submission, assessment)

    async def assign_ranks(self, assessment_id: str) -> int:
        """Recompute the whole standing table for one assessment in a single pass."""
        ranked = await self.store.list_finalized_ranked(assessment_id)
        rank = 0
        previous = None
        for submission in ranked:
            key = (submission.get("totalScore"), submission.get("timeTaken"), submission.get("submittedAt"))
            if key != previous:
                rank += 1
                previous = key
            if submission.get("rank") != rank:
                await self.store.set_rank(submission["id"], rank)
        logger.info(f"Ranked {len(ranked)} submissions for assessment {assessment_id}")
        return len(ranked)

    async def record_activity(self, assessment_id: str, student: dict, activity_type: str,
                              description: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        submission = await self._open_submission(assessment, student, now)
        entry = {"type": activity_type, "description": description, "timestamp": now}
        tab_switch = activity_type == "tab_switch"
        if not await self.store.record_activity(submission["id"], entry, tab_switch, now):
            raise SessionClosed("This assessment session is closed")
        if tab_switch and assessment.get("preventTabSwitch"):
            logger.warning(f"Tab switch on {submission['id']} while tab switching is prevented")
        updated = await self.store.get_submission(submission["id"])
        return {"tabSwitches": updated["tabSwitches"], "recorded": len(updated["suspiciousActivity"])}

    async def run_code(self, actor: dict, code: str, language: str, stdin: str = "") -> dict:
        require_capability(actor, RUN_CODE)
        if language not in LANGUAGE_IDS:
            raise ValidationError(f"Unsupported language: {language}")
        await self.rate_limiter.acquire(actor["id"])
        result = await self.judge.execute(code, LANGUAGE_IDS[language], stdin)
        if result.status == JudgeStatus.TIMEOUT:
            raise JudgeTimeout("The judge did not return a verdict in time")
        if result.status == JudgeStatus.JUDGE_ERROR:
            raise JudgeUnavailable(result.message or "Code execution service failed")
        return result.model_dump(mode="json")

    async def get_results(self, assessment_id: str, actor: dict, now: Optional[datetime] = None) -> dict:
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        if can_view_all_results(actor, assessment):
            return await self.instructor_results(assessment, now)
        if has_capability(actor, TAKE_ASSESSMENTS) and shares_group(actor, assessment):
            return await self.student_results(assessment, actor, now)
        raise Forbidden("Assessment not found or access denied")

    async def student_results(self, assessment: dict, student: dict, now: datetime) -> dict:
        if not (assessment.get("showResultsImmediately", True) or now > assessment["endTime"]):
            raise NotAccessible("Results are not yet available")
        submission = await self.store.find_submission(assessment["id"], student["id"])
        submission = await session.check_expiry(self.store, submission, assessment, now)
        if not submission or submission["status"] not in FINALIZED_STATUSES + (EXPIRED,):
            raise NotFound("No submitted assessment found")

        summary = self.submission_summary(submission, assessment)
        questions = await self.store.get_questions(list(submission.get("mcqAnswers", {}).keys()))
        if assessment.get("showCorrectAnswers", True):
            summary["mcqAnswers"] = [
                self.mcq_answer_review(answer, questions.get(qid), submission, assessment)
                for qid, answer in submission.get("mcqAnswers", {}).items()
            ]
        else:
            summary["mcqAnswers"] = [
                {"question": qid, "selectedAnswer": answer["selectedAnswer"]}
                for qid, answer in submission.get("mcqAnswers", {}).items()
            ]
        summary["codingSubmissions"] = [
            {
                "question": qid,
                "bestScore": scoring.question_coding_score(entry),
                "isCompleted": entry.get("isCompleted", False),
                "totalAttempts": entry.get("totalAttempts", 0),
                "attempts": [redact_attempt(a) for a in entry.get("attempts", [])],
            }
            for qid, entry in submission.get("codingSubmissions", {}).items()
        ]
        return {"assessment": self.assessment_summary(assessment), "submission": summary}

    def mcq_answer_review(self, answer: dict, question: Optional[dict], submission: dict, assessment: dict) -> dict:
        review = {
            "question": answer["question"],
            "selectedAnswer": answer["selectedAnswer"],
            "isCorrect": answer["isCorrect"],
            "answeredAt": answer.get("answeredAt"),
        }
        if question:
            options = question.get("options", [])
            correct = question.get("correctAnswer")
            if assessment.get("shuffleOptions"):
                options, _, correct = scoring.shuffle_options(
                    options, correct, scoring.option_seed(submission["id"], question["id"])
                )
            review.update({"options": options, "correctAnswer": correct, "explanation": question.get("explanation")})
        return review

    async def instructor_results(self, assessment: dict, now: datetime) -> dict:
        await session.expire_overdue(self.store, assessment, now)
        submissions = await self.store.list_finalized_ranked(assessment["id"])
        results = []
        for submission in submissions:
            row = self.submission_summary(submission, assessment)
            row["studentId"] = submission["studentId"]
            row["needsReview"] = needs_review(submission)
            row["tabSwitches"] = submission.get("tabSwitches", 0)
            results.append(row)

        count = len(results)
        passed = sum(1 for r in results if r["passed"])
        statistics = {
            "totalSubmissions": count,
            "averageScore": sum(r["scores"]["total"] for r in results) / count if count else 0,
            "averagePercentage": sum(r["scores"]["percentage"] for r in results) / count if count else 0,
            "passedCount": passed,
            "failedCount": count - passed,
            "passRate": passed / count * 100 if count else 0,
        }
        expired = await self.store.list_submissions(assessment["id"], [EXPIRED])
        return {
            "assessment": self.assessment_summary(assessment),
            "results": results,
            "expired": [
                {"submissionId": s["id"], "studentId": s["studentId"], "totalScore": s.get("totalScore"),
                 "needsReview": needs_review(s)}
                for s in expired
            ],
            "statistics": statistics,
        }

    async def leaderboard(self, assessment_id: str, actor: dict, limit: int = 50) -> list:
        if limit < 1:
            raise ValidationError("Leaderboard limit must be at least 1")
        assessment = await self._assessment(assessment_id)
        if not (can_view_all_results(actor, assessment) or shares_group(actor, assessment)):
            raise Forbidden("Assessment not found or access denied")
        ranked = await self.store.list_finalized_ranked(assessment_id)
        return [
            {
                "rank": s.get("rank"),
                "studentId": s["studentId"],
                "totalScore": s.get("totalScore"),
                "percentage": s.get("percentage"),
                "timeTaken": s.get("timeTaken"),
            }
            for s in ranked[:limit]
        ]

    async def evaluate(self, assessment_id: str, submission_id: str, actor: dict,
                       question_scores: Dict[str, float], remarks: Optional[str] = None,
                       now: Optional[datetime] = None) -> dict:
        """Instructor override of coding scores, e.g. after a judge timeout."""
        now = now or self.clock()
        assessment = await self._assessment(assessment_id)
        if not can_evaluate(actor, assessment):
            raise Forbidden("You cannot evaluate submissions for this assessment")
        submission = await self.store.get_submission(submission_id)
        if not submission or submission["assessmentId"] != assessment_id:
            raise NotFound("Submission not found")
        if submission["status"] not in FINALIZED_STATUSES:
            raise NotInProgress("Only submitted work can be evaluated")

        rescored = dict(submission)
        rescored["codingSubmissions"] = {k: dict(v) for k, v in submission.get("codingSubmissions", {}).items()}
        fields = {}
        for question_id, score in question_scores.items():
            entry = attempts.manifest_entry(assessment, question_id, attempts.CODING)
            if score < 0 or score > entry["points"]:
                raise ValidationError(f"Score for {question_id} must be between 0 and {entry['points']}")
            progress = rescored["codingSubmissions"].setdefault(
                question_id, {"question": question_id, "attempts": [], "totalAttempts": 0, "bestScore": 0}
            )
            progress["evaluatedScore"] = score
            fields[f"codingSubmissions.{question_id}"] = progress

        fields.update(scoring.compute_result(rescored, assessment))
        fields.update({
            "status": EVALUATED,
            "evaluatedBy": actor["id"],
            "evaluatedAt": now,
            "evaluationRemarks": remarks,
            "updatedAt": now,
        })
        updated = await self.store.apply_evaluation(submission_id, fields)
        if updated is None:
            raise NotInProgress("Submission changed while evaluating, try again")
        logger.info(f"Submission {submission_id} evaluated by {actor['id']}")
        await self.assign_ranks(assessment_id)
        updated = await self.store.get_submission(submission_id)
        return self.submission_summary(updated, assessment)

    @staticmethod
    def assessment_summary(assessment: dict) -> dict:
        return {
            "id": assessment["id"],
            "title": assessment.get("title"),
            "totalPoints": total_points(assessment),
            "passingScore": assessment.get("passingScore"),
            "totalQuestions": len(assessment.get("codingQuestions", [])) + len(assessment.get("mcqQuestions", [])),
        }

    @staticmethod
    def submission_summary(submission: dict, assessment: dict) -> dict:
        return {
            "submissionId": submission["id"],
            "status": submission["status"],
            "startedAt": submission.get("startedAt"),
            "submittedAt": submission.get("submittedAt"),
            "timeTaken": submission.get("timeTaken"),
            "isLate": submission.get("isLate", False),
            "scores": {
                "mcq": submission.get("mcqScore", 0),
                "coding": submission.get("codingScore", 0),
                "total": submission.get("totalScore", 0),
                "maxScore": submission.get("maxScore", 0),
                "percentage": submission.get("percentage", 0),
            },
            "grade": submission.get("grade"),
            "passed": bool(submission.get("passed")),
            "rank": submission.get("rank"),
        }
