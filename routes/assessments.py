from fastapi import APIRouter, Depends, Query, Request
from typing import Optional
from datetime import datetime
import logging
import math
import re
import uuid

from models.assessment import (
    AssessmentCreate,
    AssessmentUpdate,
    compute_end_time,
    new_assessment_document,
    total_points,
)
from models.submission import (
    IN_PROGRESS,
    ActivityReport,
    CodingAttemptRequest,
    EvaluationRequest,
    McqAnswerRequest,
)
from services.errors import Forbidden, NotFound, ValidationError
from services.policy import (
    can_create_assessment,
    can_list_assessment,
    can_manage_assessment,
    can_take_assessment,
    can_view_all_results,
    shares_group,
)
from services.session import ACTIVE, DRAFT, UPCOMING, compute_assessment_phase
from .auth import get_current_user
from .dependencies import get_orchestrator, get_store

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assessments", tags=["assessments"])

STUDENT_FIELDS = (
    "id", "title", "description", "startTime", "endTime", "duration", "instructions",
    "negativeMarking", "negativeMarkingValue", "preventTabSwitch", "allowLateSubmission",
    "showResultsImmediately", "passingScore",
)


def assessment_detail(assessment: dict, now: datetime) -> dict:
    detail = dict(assessment)
    detail["phase"] = compute_assessment_phase(assessment, now)
    detail["totalPoints"] = total_points(assessment)
    detail["totalQuestions"] = len(assessment.get("codingQuestions", [])) + len(assessment.get("mcqQuestions", []))
    return detail


def student_detail(assessment: dict, now: datetime) -> dict:
    detail = {field: assessment.get(field) for field in STUDENT_FIELDS}
    detail["phase"] = compute_assessment_phase(assessment, now)
    detail["totalPoints"] = total_points(assessment)
    detail["totalQuestions"] = len(assessment.get("codingQuestions", [])) + len(assessment.get("mcqQuestions", []))
    return detail


async def validate_manifest(store, department: str, coding: list, mcq: list):
    ids = [entry.question for entry in coding + mcq]
    if not ids:
        return
    questions = await store.get_questions(ids)
    missing = set(ids) - set(questions)
    if missing:
        raise ValidationError(f"Some questions are invalid or inactive: {sorted(missing)}")
    for entry in coding:
        if questions[entry.question]["type"] != "coding":
            raise ValidationError("Invalid question type in coding questions array")
    for entry in mcq:
        if questions[entry.question]["type"] != "mcq":
            raise ValidationError("Invalid question type in MCQ questions array")
    for question in questions.values():
        if question.get("department") and question["department"] != department:
            raise ValidationError("Some questions belong to a different department")


async def managed_assessment(store, assessment_id: str, current_user: dict) -> dict:
    assessment = await store.get_assessment(assessment_id)
    if not assessment or not can_manage_assessment(current_user, assessment):
        raise NotFound("Assessment not found or access denied")
    return assessment


@router.post("/", status_code=201)
async def create_assessment(data: AssessmentCreate, current_user: dict = Depends(get_current_user),
                            store=Depends(get_store)):
    if not can_create_assessment(current_user, data.department, data.groups):
        raise Forbidden("You cannot create assessments for these groups")
    now = datetime.utcnow()
    if data.startTime <= now:
        raise ValidationError("Start time must be in the future")
    await validate_manifest(store, data.department, data.codingQuestions, data.mcqQuestions)

    assessment = new_assessment_document(data, str(uuid.uuid4()), current_user["id"], now)
    await store.insert_assessment(assessment)
    logger.info(f"Assessment {assessment['id']} created by {current_user['id']}")
    return assessment_detail(assessment, now)


@router.get("/")
async def list_assessments(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100),
                           search: Optional[str] = None, department: Optional[str] = None,
                           phase: Optional[str] = None, createdBy: Optional[str] = None,
                           current_user: dict = Depends(get_current_user), store=Depends(get_store)):
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"title": pattern}, {"description": pattern}]
    if department:
        query["department"] = department
    if createdBy:
        query["createdBy"] = createdBy

    now = datetime.utcnow()
    visible = [a for a in await store.list_assessments(query) if can_list_assessment(current_user, a)]
    if phase:
        visible = [a for a in visible if compute_assessment_phase(a, now) == phase]

    data = []
    for assessment in visible[(page - 1) * limit:page * limit]:
        if can_view_all_results(current_user, assessment):
            detail = assessment_detail(assessment, now)
            detail["submissionCount"] = await store.count_submissions(assessment["id"])
        else:
            detail = student_detail(assessment, now)
        data.append(detail)
    return {
        "data": data,
        "pagination": {
            "current": page,
            "pages": math.ceil(len(visible) / limit),
            "total": len(visible),
            "limit": limit,
        },
    }


@router.get("/active")
async def list_active_assessments(groupId: Optional[str] = None, current_user: dict = Depends(get_current_user),
                                  store=Depends(get_store)):
    """Assessments open right now, with the caller's own standing on each."""
    now = datetime.utcnow()
    query = {"isPublished": True, "startTime": {"$lte": now}, "endTime": {"$gte": now}}
    data = []
    for assessment in await store.list_assessments(query):
        if compute_assessment_phase(assessment, now) != ACTIVE:
            continue
        if can_view_all_results(current_user, assessment):
            detail = assessment_detail(assessment, now)
            detail["submissionCount"] = await store.count_submissions(assessment["id"])
        elif can_take_assessment(current_user, assessment):
            if groupId in (current_user.get("groups") or []) and groupId not in assessment["groups"]:
                continue
            submission = await store.find_submission(assessment["id"], current_user["id"])
            detail = student_detail(assessment, now)
            detail["hasSubmitted"] = submission is not None and submission["status"] != IN_PROGRESS
            # a session still in progress can be resumed
            detail["canRetake"] = submission is None or submission["status"] == IN_PROGRESS
        else:
            continue
        data.append(detail)
    return data


@router.get("/{assessment_id}")
async def get_assessment(assessment_id: str, current_user: dict = Depends(get_current_user),
                         store=Depends(get_store)):
    assessment = await store.get_assessment(assessment_id)
    if not assessment:
        raise NotFound("Assessment not found")
    now = datetime.utcnow()
    if can_view_all_results(current_user, assessment):
        return assessment_detail(assessment, now)
    if shares_group(current_user, assessment) and assessment.get("isPublished"):
        return student_detail(assessment, now)
    raise NotFound("Assessment not found or access denied")


@router.put("/{assessment_id}")
async def update_assessment(assessment_id: str, update: AssessmentUpdate,
                            current_user: dict = Depends(get_current_user), store=Depends(get_store)):
    assessment = await managed_assessment(store, assessment_id, current_user)
    now = datetime.utcnow()
    if compute_assessment_phase(assessment, now) not in (DRAFT, UPCOMING):
        raise ValidationError("Cannot update assessment that has already started")

    fields = update.model_dump(exclude_none=True)
    if "title" in fields:
        fields["title"] = fields["title"].strip()
    if "startTime" in fields and fields["startTime"] <= now:
        raise ValidationError("Start time must be in the future")
    if "groups" in fields and not can_create_assessment(current_user, assessment["department"], fields["groups"]):
        raise Forbidden("You cannot assign this assessment to these groups")

    start_time = fields.get("startTime", assessment["startTime"])
    duration = fields.get("duration", assessment["duration"])
    window = fields.get("windowDuration", assessment.get("windowDuration"))
    if window is not None and window < duration:
        raise ValidationError("Window duration cannot be shorter than the duration")
    fields["endTime"] = compute_end_time(start_time, duration, window)
    fields["updatedAt"] = now

    updated = await store.update_assessment(assessment_id, fields)
    logger.info(f"Assessment {assessment_id} updated: {sorted(fields)}")
    return assessment_detail(updated, now)


@router.post("/{assessment_id}/publish")
async def publish_assessment(assessment_id: str, current_user: dict = Depends(get_current_user),
                             store=Depends(get_store)):
    assessment = await managed_assessment(store, assessment_id, current_user)
    if not assessment.get("codingQuestions") and not assessment.get("mcqQuestions"):
        raise ValidationError("Cannot publish assessment without questions")
    now = datetime.utcnow()
    updated = await store.update_assessment(assessment_id, {"isPublished": True, "updatedAt": now})
    logger.info(f"Assessment {assessment_id} published")
    return {"id": assessment_id, "isPublished": True, "phase": compute_assessment_phase(updated, now)}


@router.delete("/{assessment_id}")
async def delete_assessment(assessment_id: str, current_user: dict = Depends(get_current_user),
                            store=Depends(get_store)):
    await managed_assessment(store, assessment_id, current_user)
    if await store.count_submissions(assessment_id) > 0:
        raise ValidationError("Cannot delete assessment with existing submissions")
    await store.update_assessment(assessment_id, {"isActive": False, "updatedAt": datetime.utcnow()})
    logger.info(f"Assessment {assessment_id} soft deleted")
    return {"message": "Assessment deleted successfully"}


@router.post("/{assessment_id}/start")
async def start_assessment(assessment_id: str, request: Request, current_user: dict = Depends(get_current_user),
                           orchestrator=Depends(get_orchestrator)):
    return await orchestrator.start(
        assessment_id,
        current_user,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


@router.post("/{assessment_id}/submit-mcq")
async def submit_mcq(assessment_id: str, body: McqAnswerRequest, current_user: dict = Depends(get_current_user),
                     orchestrator=Depends(get_orchestrator)):
    return await orchestrator.submit_mcq_answer(assessment_id, current_user, body.questionId, body.answer)


@router.post("/{assessment_id}/submit-coding")
async def submit_coding(assessment_id: str, body: CodingAttemptRequest,
                        current_user: dict = Depends(get_current_user), orchestrator=Depends(get_orchestrator)):
    return await orchestrator.submit_coding_attempt(
        assessment_id, current_user, body.questionId, body.code, body.language
    )


@router.post("/{assessment_id}/submit")
async def submit_assessment(assessment_id: str, current_user: dict = Depends(get_current_user),
                            orchestrator=Depends(get_orchestrator)):
    return await orchestrator.finalize(assessment_id, current_user)


@router.post("/{assessment_id}/activity")
async def report_activity(assessment_id: str, body: ActivityReport, current_user: dict = Depends(get_current_user),
                          orchestrator=Depends(get_orchestrator)):
    return await orchestrator.record_activity(assessment_id, current_user, body.type, body.description)


@router.get("/{assessment_id}/results")
async def get_results(assessment_id: str, current_user: dict = Depends(get_current_user),
                      orchestrator=Depends(get_orchestrator)):
    return await orchestrator.get_results(assessment_id, current_user)


@router.get("/{assessment_id}/leaderboard")
async def get_leaderboard(assessment_id: str, limit: int = Query(50, ge=1, le=500),
                          current_user: dict = Depends(get_current_user), orchestrator=Depends(get_orchestrator)):
    return await orchestrator.leaderboard(assessment_id, current_user, limit)


@router.post("/{assessment_id}/submissions/{submission_id}/evaluate")
async def evaluate_submission(assessment_id: str, submission_id: str, body: EvaluationRequest,
                              current_user: dict = Depends(get_current_user),
                              orchestrator=Depends(get_orchestrator)):
    return await orchestrator.evaluate(assessment_id, submission_id, current_user, body.questionScores, body.remarks)
