"""Capability checks for actors.

An actor is the dict returned by auth: id, role, groups, department.
"""
from services.errors import Forbidden

MANAGE_ASSESSMENTS = "manage_assessments"
MANAGE_QUESTIONS = "manage_questions"
TAKE_ASSESSMENTS = "take_assessments"
VIEW_RESULTS = "view_results"
EVALUATE_SUBMISSIONS = "evaluate_submissions"
RUN_CODE = "run_code"

ROLE_CAPABILITIES = {
    "admin": {MANAGE_ASSESSMENTS, MANAGE_QUESTIONS, VIEW_RESULTS, EVALUATE_SUBMISSIONS, RUN_CODE},
    "hod": {MANAGE_ASSESSMENTS, MANAGE_QUESTIONS, VIEW_RESULTS, EVALUATE_SUBMISSIONS, RUN_CODE},
    "teacher": {MANAGE_ASSESSMENTS, MANAGE_QUESTIONS, VIEW_RESULTS, EVALUATE_SUBMISSIONS, RUN_CODE},
    "student": {TAKE_ASSESSMENTS, RUN_CODE},
}

# how far an instructor's reach extends over assessments they manage
SCOPE_ALL = "all"
SCOPE_DEPARTMENT = "department"
SCOPE_OWN = "own"

ROLE_SCOPE = {
    "admin": SCOPE_ALL,
    "hod": SCOPE_DEPARTMENT,
    "teacher": SCOPE_OWN,
}


def has_capability(actor: dict, capability: str) -> bool:
    return capability in ROLE_CAPABILITIES.get(actor.get("role"), set())


def require_capability(actor: dict, capability: str):
    if not has_capability(actor, capability):
        raise Forbidden(f"Missing permission: {capability}")


def shares_group(actor: dict, assessment: dict) -> bool:
    return bool(set(actor.get("groups") or []) & set(assessment.get("groups") or []))


def can_take_assessment(actor: dict, assessment: dict) -> bool:
    return has_capability(actor, TAKE_ASSESSMENTS) and shares_group(actor, assessment)


def can_manage_assessment(actor: dict, assessment: dict) -> bool:
    if not has_capability(actor, MANAGE_ASSESSMENTS):
        return False
    scope = ROLE_SCOPE.get(actor.get("role"))
    if scope == SCOPE_ALL:
        return True
    if scope == SCOPE_DEPARTMENT:
        return actor.get("department") is not None and actor.get("department") == assessment.get("department")
    return assessment.get("createdBy") == actor.get("id")


def can_view_all_results(actor: dict, assessment: dict) -> bool:
    if not has_capability(actor, VIEW_RESULTS):
        return False
    # teachers also see assessments set for the groups they teach
    return can_manage_assessment(actor, assessment) or shares_group(actor, assessment)


def can_evaluate(actor: dict, assessment: dict) -> bool:
    return has_capability(actor, EVALUATE_SUBMISSIONS) and can_view_all_results(actor, assessment)


def can_create_assessment(actor: dict, department: str, groups) -> bool:
    if not has_capability(actor, MANAGE_ASSESSMENTS):
        return False
    scope = ROLE_SCOPE.get(actor.get("role"))
    if scope == SCOPE_DEPARTMENT:
        return actor.get("department") == department
    if scope == SCOPE_OWN:
        # teachers only set assessments for groups they teach
        return set(groups) <= set(actor.get("groups") or [])
    return True


def can_list_assessment(actor: dict, assessment: dict) -> bool:
    """Whether an assessment shows up in the actor's listings.

    Students only see published assessments set for one of their groups.
    """
    if can_view_all_results(actor, assessment):
        return True
    return bool(assessment.get("isPublished")) and can_take_assessment(actor, assessment)


def question_department_scope(actor: dict):
    # None means the actor is not confined to one department
    if ROLE_SCOPE.get(actor.get("role")) == SCOPE_DEPARTMENT:
        return actor.get("department")
    return None


def default_question_department(actor: dict):
    if ROLE_SCOPE.get(actor.get("role")) == SCOPE_ALL:
        return None
    return actor.get("department")
