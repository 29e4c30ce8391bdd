import pytest

from services import policy
from services.errors import Forbidden

ASSESSMENT = {"id": "as-1", "department": "cs", "groups": ["cs-a"], "createdBy": "teacher-1"}


def test_students_take_but_never_manage(student):
    assert policy.can_take_assessment(student, ASSESSMENT)
    assert not policy.can_manage_assessment(student, ASSESSMENT)
    assert not policy.can_view_all_results(student, ASSESSMENT)
    with pytest.raises(Forbidden):
        policy.require_capability(student, policy.MANAGE_ASSESSMENTS)


def test_outsider_cannot_take(outsider):
    assert not policy.can_take_assessment(outsider, ASSESSMENT)


def test_instructors_do_not_take_assessments(teacher):
    assert not policy.can_take_assessment(teacher, ASSESSMENT)


def test_management_scope(admin, hod, teacher):
    assert policy.can_manage_assessment(admin, ASSESSMENT)
    assert policy.can_manage_assessment(hod, ASSESSMENT)
    assert policy.can_manage_assessment(teacher, ASSESSMENT)

    other_department = dict(ASSESSMENT, department="ee")
    assert policy.can_manage_assessment(admin, other_department)
    assert not policy.can_manage_assessment(hod, other_department)

    colleagues = dict(ASSESSMENT, createdBy="teacher-2")
    assert not policy.can_manage_assessment(teacher, colleagues)
    # still visible through the shared group
    assert policy.can_view_all_results(teacher, colleagues)
    assert policy.can_evaluate(teacher, colleagues)


def test_create_scope(admin, hod, teacher):
    assert policy.can_create_assessment(admin, "ee", ["ee-b"])
    assert policy.can_create_assessment(hod, "cs", ["cs-a", "cs-b"])
    assert not policy.can_create_assessment(hod, "ee", ["ee-b"])
    assert policy.can_create_assessment(teacher, "cs", ["cs-a"])
    assert not policy.can_create_assessment(teacher, "cs", ["cs-a", "cs-b"])


def test_unknown_role_has_no_capabilities():
    ghost = {"id": "g", "role": "parent", "groups": ["cs-a"]}
    assert not policy.has_capability(ghost, policy.RUN_CODE)
    assert not policy.can_take_assessment(ghost, ASSESSMENT)


def test_question_department_scope(admin, hod, teacher):
    assert policy.question_department_scope(admin) is None
    assert policy.question_department_scope(hod) == "cs"
    assert policy.question_department_scope(teacher) is None

    assert policy.default_question_department(admin) is None
    assert policy.default_question_department(hod) == "cs"
    assert policy.default_question_department(teacher) == teacher["department"]


def test_listing_visibility(student, outsider, teacher):
    assert not policy.can_list_assessment(student, ASSESSMENT)
    published = dict(ASSESSMENT, isPublished=True)
    assert policy.can_list_assessment(student, published)
    assert not policy.can_list_assessment(outsider, published)
    # instructors also see drafts they can reach
    assert policy.can_list_assessment(teacher, ASSESSMENT)
