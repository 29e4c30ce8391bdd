"""Mongo access for assessments, questions and submissions.

Every write that can race is a single conditional update: answers are written
only while the submission is in progress, coding attempts are appended only
when the stored attempt count still equals the count the caller checked, and
finalize only moves a submission out of in_progress at the version it scored.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from models.submission import FINALIZED_STATUSES, IN_PROGRESS

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

NO_ID = {"_id": 0}

RANK_ORDER = [("totalScore", -1), ("timeTaken", 1), ("submittedAt", 1)]


def count_guard(count: int):
    # a question with no attempts yet has no counter field at all
    return {"$exists": False} if count == 0 else count


async def set_where(collection, query: dict, fields: dict) -> Optional[dict]:
    """Apply $set only if the query still matches, then read the document back by id.

    Returns None when the query no longer matched, meaning another writer got there first.
    """
    result = await collection.update_one(query, {"$set": fields})
    if result.matched_count != 1:
        return None
    return await collection.find_one({"id": query["id"]}, NO_ID)


class AssessmentStore:
    def __init__(self, db):
        self.db = db
        self.assessments = db.assessments
        self.questions = db.questions
        self.submissions = db.assessment_submissions

    # assessments

    async def get_assessment(self, assessment_id: str, include_inactive: bool = False) -> Optional[dict]:
        query = {"id": assessment_id}
        if not include_inactive:
            query["isActive"] = True
        return await self.assessments.find_one(query, NO_ID)

    async def list_assessments(self, query: dict) -> List[dict]:
        query = dict(query, isActive=True)
        return await self.assessments.find(query, NO_ID).sort("startTime", -1).to_list(None)

    async def insert_assessment(self, doc: dict) -> dict:
        await self.assessments.insert_one(dict(doc))
        return doc

    async def update_assessment(self, assessment_id: str, fields: dict) -> Optional[dict]:
        return await set_where(self.assessments, {"id": assessment_id, "isActive": True}, fields)

    # questions are owned by the question bank; the engine only reads them

    async def get_question(self, question_id: str) -> Optional[dict]:
        return await self.questions.find_one({"id": question_id, "isActive": True}, NO_ID)

    async def get_questions(self, question_ids: Iterable[str]) -> Dict[str, dict]:
        ids = list(question_ids)
        docs = await self.questions.find({"id": {"$in": ids}, "isActive": True}, NO_ID).to_list(None)
        return {doc["id"]: doc for doc in docs}

    async def list_questions(self, query: dict) -> List[dict]:
        query = dict(query, isActive=True)
        return await self.questions.find(query, NO_ID).sort("createdAt", -1).to_list(None)

    async def insert_question(self, doc: dict) -> dict:
        await self.questions.insert_one(dict(doc))
        return doc

    # submissions

    async def count_submissions(self, assessment_id: str) -> int:
        return await self.submissions.count_documents({"assessmentId": assessment_id})

    async def get_submission(self, submission_id: str) -> Optional[dict]:
        return await self.submissions.find_one({"id": submission_id}, NO_ID)

    async def find_submission(self, assessment_id: str, student_id: str) -> Optional[dict]:
        return await self.submissions.find_one({"assessmentId": assessment_id, "studentId": student_id}, NO_ID)

    async def create_submission(self, doc: dict) -> tuple:
        """Insert a new submission, or return the one a concurrent start already made."""
        try:
            await self.submissions.insert_one(dict(doc))
            return doc, True
        except DuplicateKeyError:
            logger.info(f"Submission for {doc['assessmentId']}/{doc['studentId']} already exists, reusing it")
            existing = await self.find_submission(doc["assessmentId"], doc["studentId"])
            return existing, False

    async def upsert_mcq_answer(self, submission_id: str, question_id: str, answer: dict, now: datetime,
                                expected_count: Optional[int] = None) -> bool:
        query = {"id": submission_id, "status": IN_PROGRESS}
        if expected_count is not None:
            query[f"mcqAnswers.{question_id}.attemptCount"] = count_guard(expected_count)
        result = await self.submissions.update_one(
            query,
            {
                "$set": {f"mcqAnswers.{question_id}": answer, "updatedAt": now},
                "$inc": {"version": 1},
            },
        )
        return result.matched_count == 1

    async def append_coding_attempt(self, submission_id: str, question_id: str, expected_count: int,
                                    attempt: dict, completed: bool, now: datetime) -> bool:
        prefix = f"codingSubmissions.{question_id}"
        result = await self.submissions.update_one(
            {
                "id": submission_id,
                "status": IN_PROGRESS,
                f"{prefix}.totalAttempts": count_guard(expected_count),
            },
            {
                "$push": {f"{prefix}.attempts": attempt},
                "$inc": {f"{prefix}.totalAttempts": 1, "version": 1},
                "$max": {f"{prefix}.bestScore": attempt["score"]},
                "$set": {
                    f"{prefix}.question": question_id,
                    f"{prefix}.isCompleted": completed,
                    "updatedAt": now,
                },
            },
        )
        return result.matched_count == 1

    async def finalize(self, submission_id: str, expected_version: int, fields: dict) -> Optional[dict]:
        return await set_where(
            self.submissions, {"id": submission_id, "status": IN_PROGRESS, "version": expected_version}, fields
        )

    async def expire(self, submission_id: str, fields: dict) -> Optional[dict]:
        return await set_where(self.submissions, {"id": submission_id, "status": IN_PROGRESS}, fields)

    async def record_activity(self, submission_id: str, entry: dict, tab_switch: bool, now: datetime) -> bool:
        update = {"$push": {"suspiciousActivity": entry}, "$set": {"updatedAt": now}}
        if tab_switch:
            update["$inc"] = {"tabSwitches": 1}
        result = await self.submissions.update_one({"id": submission_id, "status": IN_PROGRESS}, update)
        return result.matched_count == 1

    async def apply_evaluation(self, submission_id: str, fields: dict) -> Optional[dict]:
        return await set_where(
            self.submissions, {"id": submission_id, "status": {"$in": list(FINALIZED_STATUSES)}}, fields
        )

    async def list_submissions(self, assessment_id: str, statuses: Optional[Iterable[str]] = None) -> List[dict]:
        query = {"assessmentId": assessment_id}
        if statuses is not None:
            query["status"] = {"$in": list(statuses)}
        return await self.submissions.find(query, NO_ID).to_list(None)

    async def list_finalized_ranked(self, assessment_id: str) -> List[dict]:
        return await self.submissions.find(
            {"assessmentId": assessment_id, "status": {"$in": list(FINALIZED_STATUSES)}},
            NO_ID,
        ).sort(RANK_ORDER).to_list(None)

    async def set_rank(self, submission_id: str, rank: Optional[int]):
        await self.submissions.update_one({"id": submission_id}, {"$set": {"rank": rank}})
