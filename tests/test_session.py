import asyncio

import pytest

from models.submission import EXPIRED, IN_PROGRESS, SUBMITTED
from services import session
from services.errors import AlreadySubmitted, Forbidden, NotAccessible, NotInProgress, SessionClosed
from tests.conftest import T0, minutes


class TestPhase:
    assessment = {"isPublished": True, "isActive": True, "startTime": T0, "endTime": T0 + minutes(30)}

    def test_unpublished_is_draft(self):
        assert session.compute_assessment_phase(dict(self.assessment, isPublished=False), T0) == session.DRAFT

    @pytest.mark.parametrize("offset,phase", [
        (-1, session.UPCOMING), (0, session.ACTIVE), (30, session.ACTIVE), (31, session.COMPLETED),
    ])
    def test_phase_follows_the_clock(self, offset, phase):
        assert session.compute_assessment_phase(self.assessment, T0 + minutes(offset)) == phase

    def test_completed_is_only_accessible_with_late_submission(self):
        later = T0 + minutes(45)
        assert not session.is_accessible(self.assessment, later)
        assert session.is_accessible(dict(self.assessment, allowLateSubmission=True), later)

    def test_inactive_is_never_accessible(self):
        assert not session.is_accessible(dict(self.assessment, isActive=False), T0 + minutes(1))


class TestDeadline:
    def test_own_allowance_binds_inside_a_longer_window(self):
        assessment = {"duration": 30, "startTime": T0, "endTime": T0 + minutes(60)}
        submission = {"startedAt": T0 + minutes(10)}
        assert session.student_deadline(submission, assessment) == T0 + minutes(40)

    def test_window_end_caps_a_late_starter(self):
        assessment = {"duration": 30, "startTime": T0, "endTime": T0 + minutes(30)}
        submission = {"startedAt": T0 + minutes(10)}
        assert session.student_deadline(submission, assessment) == T0 + minutes(30)

    def test_late_submission_keeps_session_open_until_window_end(self):
        assessment = {"duration": 30, "startTime": T0, "endTime": T0 + minutes(60), "allowLateSubmission": True}
        submission = {"startedAt": T0}
        assert session.closes_at(submission, assessment) == T0 + minutes(60)
        assert not session.is_overdue(submission, assessment, T0 + minutes(45))


class TestStartSession:
    async def test_payload_is_redacted(self, store, seed, student):
        coding = await seed.coding_question()
        mcq = await seed.mcq_question()
        assessment = await seed.assessment(coding=[(coding, 10)], mcq=[(mcq, 5)], windowDuration=60)

        payload = await session.start_session(store, assessment, student, T0 + minutes(10), "10.0.0.1", "pytest")
        assert payload["endTime"] == T0 + minutes(40)
        assert payload["timeRemaining"] == 30 * 60
        assert payload["totalPoints"] == 15

        coding_view = payload["codingQuestions"][0]["question"]
        assert "solutionCode" not in coding_view
        visible, hidden = coding_view["testCases"]
        assert visible["expectedOutput"] == "3"
        assert "expectedOutput" not in hidden and "input" not in hidden
        mcq_view = payload["mcqQuestions"][0]["question"]
        assert "correctAnswer" not in mcq_view and "explanation" not in mcq_view

        stored = await store.find_submission(assessment["id"], student["id"])
        assert stored["ipAddress"] == "10.0.0.1"
        assert stored["userAgent"] == "pytest"

    async def test_start_twice_reuses_submission(self, store, seed, student):
        mcq = await seed.mcq_question()
        assessment = await seed.assessment(mcq=[(mcq, 5)])
        first = await session.start_session(store, assessment, student, T0 + minutes(1))
        second = await session.start_session(store, assessment, student, T0 + minutes(2))
        assert first["submissionId"] == second["submissionId"]
        assert second["startedAt"] == T0 + minutes(1)
        assert await store.count_submissions(assessment["id"]) == 1

    async def test_other_group_is_forbidden(self, store, seed, outsider):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)])
        with pytest.raises(Forbidden):
            await session.start_session(store, assessment, outsider, T0 + minutes(1))

    @pytest.mark.parametrize("offset,published", [(-5, True), (45, True), (5, False)])
    async def test_outside_window_is_not_accessible(self, store, seed, student, offset, published):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)], published=published)
        with pytest.raises(NotAccessible):
            await session.start_session(store, assessment, student, T0 + minutes(offset))

    async def test_submitted_student_cannot_restart(self, store, seed, student):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)])
        await session.start_session(store, assessment, student, T0 + minutes(1))
        submission = await store.find_submission(assessment["id"], student["id"])
        await session.finalize_session(store, submission, assessment, T0 + minutes(5))
        with pytest.raises(AlreadySubmitted):
            await session.start_session(store, assessment, student, T0 + minutes(6))

    async def test_restart_after_own_deadline_expires_session(self, store, seed, student):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)], windowDuration=90)
        await session.start_session(store, assessment, student, T0)
        with pytest.raises(SessionClosed):
            await session.start_session(store, assessment, student, T0 + minutes(31))
        stored = await store.find_submission(assessment["id"], student["id"])
        assert stored["status"] == EXPIRED


class TestFinalizeSession:
    async def test_finalize_is_idempotent(self, store, seed, student):
        mcq = await seed.mcq_question()
        assessment = await seed.assessment(mcq=[(mcq, 5)])
        await session.start_session(store, assessment, student, T0)
        submission = await store.find_submission(assessment["id"], student["id"])
        await store.upsert_mcq_answer(submission["id"], mcq["id"], {"question": mcq["id"], "isCorrect": True,
                                                                     "selectedAnswer": 2}, T0)
        submission = await store.get_submission(submission["id"])

        first, transitioned = await session.finalize_session(store, submission, assessment, T0 + minutes(10))
        assert transitioned
        assert first["status"] == SUBMITTED
        assert first["timeTaken"] == 600
        assert first["totalScore"] == 5

        second, transitioned = await session.finalize_session(store, first, assessment, T0 + minutes(20))
        assert not transitioned
        for field in ("totalScore", "percentage", "grade", "submittedAt", "timeTaken"):
            assert second[field] == first[field]

    async def test_concurrent_finalize_scores_once(self, store, seed, student):
        mcq = await seed.mcq_question()
        assessment = await seed.assessment(mcq=[(mcq, 5)])
        await session.start_session(store, assessment, student, T0)
        submission = await store.find_submission(assessment["id"], student["id"])

        results = await asyncio.gather(
            session.finalize_session(store, submission, assessment, T0 + minutes(5)),
            session.finalize_session(store, submission, assessment, T0 + minutes(6)),
        )
        assert sorted(transitioned for _, transitioned in results) == [False, True]
        first, second = (doc for doc, _ in results)
        for field in ("totalScore", "submittedAt", "timeTaken", "status"):
            assert first[field] == second[field]

    async def test_stale_finalize_rescores_the_latest_answers(self, store, seed, student):
        mcq = await seed.mcq_question()
        assessment = await seed.assessment(mcq=[(mcq, 5)])
        await session.start_session(store, assessment, student, T0)
        stale = await store.find_submission(assessment["id"], student["id"])
        await store.upsert_mcq_answer(stale["id"], mcq["id"], {"question": mcq["id"], "isCorrect": True,
                                                                "selectedAnswer": 2}, T0)
        final, transitioned = await session.finalize_session(store, stale, assessment, T0 + minutes(3))
        assert transitioned
        assert final["mcqScore"] == 5

    async def test_overdue_finalize_expires(self, store, seed, student):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)])
        await session.start_session(store, assessment, student, T0)
        submission = await store.find_submission(assessment["id"], student["id"])
        with pytest.raises(NotInProgress):
            await session.finalize_session(store, submission, assessment, T0 + minutes(31))
        stored = await store.get_submission(submission["id"])
        assert stored["status"] == EXPIRED
        assert stored["grade"] == "F"

    async def test_late_finalize_is_flagged(self, store, seed, student):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)], allowLateSubmission=True)
        await session.start_session(store, assessment, student, T0 + minutes(40))
        submission = await store.find_submission(assessment["id"], student["id"])
        final, _ = await session.finalize_session(store, submission, assessment, T0 + minutes(45))
        assert final["isLate"] is True

    async def test_missing_submission(self, store, seed):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)])
        with pytest.raises(NotInProgress):
            await session.finalize_session(store, None, assessment, T0)

    async def test_expire_overdue_sweep(self, store, seed, student, student_b):
        assessment = await seed.assessment(mcq=[(await seed.mcq_question(), 5)], windowDuration=60)
        await session.start_session(store, assessment, student, T0)
        await session.start_session(store, assessment, student_b, T0 + minutes(20))
        assert await session.expire_overdue(store, assessment, T0 + minutes(35)) == 1
        remaining = await store.list_submissions(assessment["id"], [IN_PROGRESS])
        assert [s["studentId"] for s in remaining] == [student_b["id"]]
