"""Integration test: resource services over a seeded store with zero latency."""

from typing import Any

import pytest

from talentflow.core.config import Settings
from talentflow.core.context import AppContext
from talentflow.core.db import count_records, find_by_index, get_record, list_records
from talentflow.core.errors import NotFoundError, ValidationError
from talentflow.core.schemas import Assessment, AssessmentQuestion
from talentflow.pipeline.assessments import assessment_key, assessments_key
from talentflow.pipeline.candidates import candidate_key, candidates_key, timeline_key
from talentflow.pipeline.coordinator import MutationPhase
from talentflow.pipeline.jobs import job_key, jobs_key
from talentflow.pipeline.notes import notes_key
from talentflow.pipeline.service import TEMP_ID_PREFIX


def _cached(app: AppContext, key: Any) -> Any:
    return app.scheduler.peek(key).data


def _valid_answer(question: AssessmentQuestion) -> Any:
    if question.type == "single-choice":
        return question.options[0]
    if question.type == "multi-choice":
        return [question.options[0]]
    if question.type == "numeric":
        return 5
    return "Shipped a release pipeline"


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class TestAppContext:
    def test_services_unavailable_before_enter(self) -> None:
        app = AppContext(Settings())
        with pytest.raises(RuntimeError, match="not entered"):
            _ = app.jobs
        with pytest.raises(RuntimeError, match="not entered"):
            _ = app.conn

    async def test_exit_closes_store(self, open_app: Any) -> None:
        ctx = open_app()
        async with ctx as app:
            assert count_records(app.conn, "jobs") == 6
        with pytest.raises(RuntimeError):
            _ = ctx.conn


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


class TestJobs:
    async def test_list_filters_by_status(self, app: AppContext) -> None:
        active = await app.jobs.list_jobs(status="active")
        assert active["data"]
        assert all(j["status"] == "active" for j in active["data"])
        assert active["total"] == len(active["data"])

    async def test_create_appends_placeholder_then_reconciles(self, app: AppContext) -> None:
        await app.jobs.list_jobs()
        await app.jobs.list_jobs(status="archived")
        archived_before = _cached(app, jobs_key(status="archived"))

        result = await app.jobs.create_job("Platform Lead", tags=["Remote"])
        assert result.committed
        placeholder = _cached(app, jobs_key())["data"][-1]
        assert placeholder["id"].startswith(TEMP_ID_PREFIX)
        assert placeholder["order"] == 6
        assert _cached(app, jobs_key())["total"] == 7
        assert _cached(app, jobs_key(status="archived")) == archived_before

        await app.scheduler.drain()
        created = result.value["data"]
        listed = _cached(app, jobs_key())["data"]
        assert listed[-1]["id"] == created["id"]
        assert created["slug"] == "platform-lead"
        assert get_record(app.conn, "jobs", created["id"]).order == 6

    async def test_create_requires_title(self, app: AppContext) -> None:
        calls = app.transport.calls
        result = await app.jobs.create_job("   ")
        assert result.phase == MutationPhase.ROLLED_BACK
        assert isinstance(result.error, ValidationError)
        assert app.transport.calls == calls

    async def test_duplicate_slug_rolls_back(self, app: AppContext) -> None:
        await app.jobs.list_jobs()
        before = app.scheduler.peek(jobs_key())
        taken = list_records(app.conn, "jobs")[0].slug

        result = await app.jobs.create_job("Another", slug=taken)

        assert result.phase == MutationPhase.ROLLED_BACK
        assert isinstance(result.error, ValidationError)
        assert "already in use" in str(result.error)
        assert app.scheduler.peek(jobs_key()) == before
        assert count_records(app.conn, "jobs") == 6

    async def test_update_patches_list_and_detail(self, app: AppContext) -> None:
        job = list_records(app.conn, "jobs")[0]
        await app.jobs.list_jobs()
        await app.jobs.get_job(job.id)

        result = await app.jobs.update_job(job.id, title="Renamed Role")
        assert result.committed
        assert _cached(app, job_key(job.id))["data"]["title"] == "Renamed Role"
        titles = [j["title"] for j in _cached(app, jobs_key())["data"]]
        assert "Renamed Role" in titles
        assert get_record(app.conn, "jobs", job.id).title == "Renamed Role"

    async def test_update_rejects_order_field(self, app: AppContext) -> None:
        job = list_records(app.conn, "jobs")[0]
        result = await app.jobs.update_job(job.id, order=3)
        assert result.phase == MutationPhase.ROLLED_BACK
        assert "order" in str(result.error)

    async def test_archive_drops_job_from_active_listing(self, app: AppContext) -> None:
        active = await app.jobs.list_jobs(status="active")
        job_id = active["data"][0]["id"]

        result = await app.jobs.archive_job(job_id)
        assert result.committed
        ids = [j["id"] for j in _cached(app, jobs_key(status="active"))["data"]]
        assert job_id not in ids
        assert get_record(app.conn, "jobs", job_id).status == "archived"

        assert (await app.jobs.restore_job(job_id)).committed
        assert get_record(app.conn, "jobs", job_id).status == "active"

    async def test_unknown_status_rejected(self, app: AppContext) -> None:
        job = list_records(app.conn, "jobs")[0]
        result = await app.jobs.update_job(job.id, status="paused")
        assert isinstance(result.error, ValidationError)


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------


class TestCandidates:
    async def test_search_by_name(self, app: AppContext) -> None:
        candidate = list_records(app.conn, "candidates")[0]
        needle = candidate.name.split()[0].lower()
        page = await app.candidates.search_candidates(search=needle)
        assert candidate.id in [c["id"] for c in page["data"]]

    async def test_move_drops_candidate_from_stage_listing(self, app: AppContext) -> None:
        candidate = list_records(app.conn, "candidates")[0]
        await app.candidates.search_candidates(stage=candidate.stage)
        target = "rejected" if candidate.stage != "rejected" else "applied"

        result = await app.candidates.move_candidate(candidate.id, target)

        assert result.committed
        listed = _cached(app, candidates_key(stage=candidate.stage))["data"]
        assert candidate.id not in [c["id"] for c in listed]

    async def test_move_to_unknown_stage_rejected(self, app: AppContext) -> None:
        candidate = list_records(app.conn, "candidates")[0]
        result = await app.candidates.move_candidate(candidate.id, "interview")
        assert result.phase == MutationPhase.ROLLED_BACK
        assert isinstance(result.error, ValidationError)
        assert get_record(app.conn, "candidates", candidate.id).stage == candidate.stage

    async def test_create_prepends_and_records_application(self, app: AppContext) -> None:
        job = list_records(app.conn, "jobs")[0]
        await app.candidates.search_candidates()

        result = await app.candidates.create_candidate(job.id, "Jane Doe", "jane@example.com")

        assert result.committed
        assert _cached(app, candidates_key())["data"][0]["id"].startswith(TEMP_ID_PREFIX)
        await app.scheduler.drain()
        created = result.value["data"]
        assert _cached(app, candidates_key())["data"][0]["id"] == created["id"]
        assert created["stage"] == "applied"
        events = find_by_index(app.conn, "timeline", "candidate_id", created["id"])
        assert [e.content for e in events] == ["Application submitted"]

    async def test_create_for_missing_job_rolls_back(self, app: AppContext) -> None:
        await app.candidates.search_candidates()
        before = app.scheduler.peek(candidates_key())
        result = await app.candidates.create_candidate("no-such-job", "Jane", "j@example.com")
        assert isinstance(result.error, NotFoundError)
        assert app.scheduler.peek(candidates_key()) == before

    async def test_update_profile_fields(self, app: AppContext) -> None:
        candidate = list_records(app.conn, "candidates")[0]
        await app.candidates.get_candidate(candidate.id)

        assert (await app.candidates.update_candidate(candidate.id, name="Renamed")).committed
        assert _cached(app, candidate_key(candidate.id))["data"]["name"] == "Renamed"

        result = await app.candidates.update_candidate(candidate.id, stage="hired")
        assert isinstance(result.error, ValidationError)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class TestNotes:
    async def test_add_note_with_mentions(self, app: AppContext) -> None:
        candidate = list_records(app.conn, "candidates")[0]
        assert await app.notes.list_notes(candidate.id) == {"data": []}
        await app.candidates.get_timeline(candidate.id)

        result = await app.notes.add_note(candidate.id, "Strong call, looping in @alice and @bob")

        assert result.committed
        placeholder = _cached(app, notes_key(candidate.id))["data"][0]
        assert placeholder["mentions"] == ["alice", "bob"]
        await app.scheduler.drain()
        notes = _cached(app, notes_key(candidate.id))["data"]
        assert len(notes) == 1
        assert notes[0]["id"] == result.value["data"]["id"]
        timeline = _cached(app, timeline_key(candidate.id))["data"]
        assert timeline[0]["type"] == "note"

    async def test_empty_note_rejected(self, app: AppContext) -> None:
        candidate = list_records(app.conn, "candidates")[0]
        result = await app.notes.add_note(candidate.id, "  ")
        assert isinstance(result.error, ValidationError)
        assert count_records(app.conn, "notes") == 0


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------


def _seeded_assessment(app: AppContext) -> Assessment:
    return list_records(app.conn, "assessments")[0]


class TestAssessments:
    async def test_create_appends_to_job_listing(self, app: AppContext) -> None:
        job = list_records(app.conn, "jobs")[0]
        before = await app.assessments.list_for_job(job.id)
        sections = [{"title": "Basics", "order": 0, "questions": [
            {"type": "short-text", "text": "Favourite tool?", "required": True},
        ]}]

        result = await app.assessments.create_assessment(job.id, "Take-home", sections)

        assert result.committed
        await app.scheduler.drain()
        listed = _cached(app, assessments_key(job.id))["data"]
        assert len(listed) == len(before["data"]) + 1
        assert listed[-1]["title"] == "Take-home"

    async def test_create_with_bad_question_rejected(self, app: AppContext) -> None:
        job = list_records(app.conn, "jobs")[0]
        calls = app.transport.calls
        result = await app.assessments.create_assessment(
            job.id, "Broken", [{"title": "S", "questions": [{"type": "essay", "text": "?"}]}],
        )
        assert isinstance(result.error, ValidationError)
        assert app.transport.calls == calls

    async def test_save_updates_detail(self, app: AppContext) -> None:
        assessment = _seeded_assessment(app)
        await app.assessments.get_assessment(assessment.id)

        result = await app.assessments.save_assessment(assessment.id, {"title": "Revised"})

        assert result.committed
        assert _cached(app, assessment_key(assessment.id))["data"]["title"] == "Revised"
        assert get_record(app.conn, "assessments", assessment.id).title == "Revised"

    async def test_save_rejects_unknown_fields(self, app: AppContext) -> None:
        assessment = _seeded_assessment(app)
        result = await app.assessments.save_assessment(assessment.id, {"jobId": "elsewhere"})
        assert isinstance(result.error, ValidationError)

    async def test_invalid_submission_rejected_locally(self, app: AppContext) -> None:
        assessment = _seeded_assessment(app)
        await app.assessments.get_assessment(assessment.id)
        calls = app.transport.calls

        result = await app.assessments.submit_response(
            assessment.job_id, assessment.id, "someone", {},
        )

        assert result.phase == MutationPhase.ROLLED_BACK
        assert "Invalid answers" in str(result.error)
        assert app.transport.calls == calls

    async def test_valid_submission_recorded_on_timeline(self, app: AppContext) -> None:
        assessment = _seeded_assessment(app)
        applied = await app.candidates.create_candidate(
            assessment.job_id, "Sam Taylor", "sam@example.com",
        )
        candidate_id = applied.unwrap()["data"]["id"]
        await app.candidates.get_timeline(candidate_id)
        answers = {
            q.id: _valid_answer(q)
            for section in assessment.sections
            for q in section.questions
        }

        result = await app.assessments.submit_response(
            assessment.job_id, assessment.id, candidate_id, answers,
        )

        assert result.committed
        assert count_records(app.conn, "assessment_responses") == 1
        await app.scheduler.drain()
        timeline = _cached(app, timeline_key(candidate_id))["data"]
        assert timeline[0]["content"] == f"Completed {assessment.title}"
