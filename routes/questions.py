# routes/questions.py
from fastapi import APIRouter, Depends
from typing import Optional
from datetime import datetime
import logging
import uuid

from models.question import QuestionCreate, new_question_document, student_question_view
from services.errors import Forbidden, NotFound
from services.policy import (
    MANAGE_QUESTIONS,
    default_question_department,
    has_capability,
    question_department_scope,
    require_capability,
)
from .auth import get_current_user
from .dependencies import get_store

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/questions", tags=["questions"])


@router.post("/", status_code=201)
async def add_question(question: QuestionCreate, current_user: dict = Depends(get_current_user),
                       store=Depends(get_store)):
    require_capability(current_user, MANAGE_QUESTIONS)
    scope = question_department_scope(current_user)
    if scope and question.department and question.department != scope:
        raise Forbidden("You can only add questions to your own department")

    question_dict = new_question_document(question, str(uuid.uuid4()), current_user["id"], datetime.utcnow())
    if not question_dict["department"]:
        question_dict["department"] = default_question_department(current_user)
    await store.insert_question(question_dict)
    logger.info(f"Question {question_dict['id']} ({question.type}) created by {current_user['id']}")
    return question_dict


@router.get("/")
async def get_questions(type: Optional[str] = None, department: Optional[str] = None,
                        current_user: dict = Depends(get_current_user), store=Depends(get_store)):
    require_capability(current_user, MANAGE_QUESTIONS)
    query = {}
    if type:
        query["type"] = type
    department = question_department_scope(current_user) or department
    if department:
        query["department"] = department
    return await store.list_questions(query)


@router.get("/{question_id}")
async def get_question_by_id(question_id: str, current_user: dict = Depends(get_current_user),
                             store=Depends(get_store)):
    question = await store.get_question(question_id)
    if not question:
        raise NotFound("Question not found")
    if has_capability(current_user, MANAGE_QUESTIONS):
        return question
    # students never see answers, solutions or hidden test cases
    return student_question_view(question)
