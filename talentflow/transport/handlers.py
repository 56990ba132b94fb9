"""Simulated backend: resource routes over the persistent store.

The transport simulator hands every surviving request to ``Backend.dispatch``.
Handlers return JSON-ready payloads and raise domain errors; the simulator
turns those into ``{"error": ...}`` responses with the matching status.
"""

import logging
import re
import sqlite3
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import unquote

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from talentflow.core.assessment_rules import validate_answers
from talentflow.core.db import (
    count_records,
    find_by_index,
    get_record,
    list_records,
    put_record,
    update_fields,
)
from talentflow.core.errors import NotFoundError, ValidationError
from talentflow.core.ordering import reorder_collection
from talentflow.core.schemas import (
    Assessment,
    AssessmentResponse,
    Candidate,
    CandidateStage,
    Job,
    Note,
    TimelineEvent,
    TimelineEventType,
    extract_mentions,
    new_id,
    slugify,
    utc_now,
)
from talentflow.transport.simulator import Request

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 1000
NOTE_PREVIEW_CHARS = 100

Handler = Callable[..., Any]


def _compile(template: str) -> re.Pattern[str]:
    pattern = re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", template)
    return re.compile(f"^{pattern}$")


def _int_param(params: dict[str, Any], name: str, default: int, low: int, high: int) -> int:
    raw = params.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ValidationError(msg) from e
    if not low <= value <= high:
        msg = f"{name} must be within [{low}, {high}], got {value}"
        raise ValidationError(msg)
    return value


def _paginate(records: list[Any], params: dict[str, Any]) -> dict[str, Any]:
    page = _int_param(params, "page", 1, 1, 1_000_000)
    page_size = _int_param(params, "pageSize", DEFAULT_PAGE_SIZE, 1, MAX_PAGE_SIZE)
    start = (page - 1) * page_size
    return {
        "data": [r.to_wire() for r in records[start:start + page_size]],
        "total": len(records),
        "page": page,
        "pageSize": page_size,
    }


def _split_tags(raw: Any) -> list[str]:
    if isinstance(raw, str):
        items = raw.split(",")
    else:
        items = list(raw)
    return [t.strip().lower() for t in items if str(t).strip()]


def _body(request: Request) -> dict[str, Any]:
    if not isinstance(request.body, dict):
        msg = "Request body must be a JSON object"
        raise ValidationError(msg)
    return request.body


def _build(model: type[BaseModel], data: dict[str, Any]) -> Any:
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        msg = f"Invalid {model.__name__}: {e.errors()[0]['msg']} at {e.errors()[0]['loc']}"
        raise ValidationError(msg) from e


def _field_patch(model: type[BaseModel], body: dict[str, Any], readonly: set[str]) -> dict[str, Any]:
    """Translate a camelCase partial body into Python field names."""
    by_alias = {info.alias or name: name for name, info in model.model_fields.items()}
    patch: dict[str, Any] = {}
    for key, value in body.items():
        name = by_alias.get(key, key if key in model.model_fields else None)
        if name is None:
            msg = f"Unknown field '{key}' for {model.__name__}"
            raise ValidationError(msg)
        if name in readonly:
            msg = f"Field '{key}' cannot be updated"
            raise ValidationError(msg)
        patch[name] = value
    return patch


class Backend:
    """Route table plus handlers, bound to one store connection."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._conn = conn
        self._now = now
        self._last_timestamp: datetime | None = None
        self._routes: list[tuple[str, re.Pattern[str], Handler]] = []
        self._register_routes()

    def _register_routes(self) -> None:
        # Literal segments go before their parameterised siblings.
        for method, template, handler in (
            ("GET", "/jobs", self.list_jobs),
            ("POST", "/jobs", self.create_job),
            ("PATCH", "/jobs/reorder", self.reorder_jobs),
            ("GET", "/jobs/{job_id}", self.get_job),
            ("PATCH", "/jobs/{job_id}", self.update_job),
            ("GET", "/candidates", self.search_candidates),
            ("POST", "/candidates", self.create_candidate),
            ("GET", "/candidates/{candidate_id}", self.get_candidate),
            ("PATCH", "/candidates/{candidate_id}", self.update_candidate),
            ("GET", "/candidates/{candidate_id}/timeline", self.get_timeline),
            ("GET", "/assessments/job/{job_id}", self.list_assessments),
            ("POST", "/assessments/job/{job_id}/submit", self.submit_response),
            ("POST", "/assessments", self.create_assessment),
            ("GET", "/assessments/{assessment_id}", self.get_assessment),
            ("PUT", "/assessments/{assessment_id}", self.update_assessment),
            ("POST", "/notes", self.create_note),
            ("GET", "/notes/{candidate_id}", self.list_notes),
        ):
            self._routes.append((method, _compile(template), handler))

    def dispatch(self, request: Request) -> Any:
        method = request.method.upper()
        path = "/" + request.path.strip("/")
        path_matched = False
        for route_method, pattern, handler in self._routes:
            match = pattern.match(path)
            if match is None:
                continue
            path_matched = True
            if route_method != method:
                continue
            kwargs = {k: unquote(v) for k, v in match.groupdict().items()}
            return handler(request, **kwargs)
        if path_matched:
            msg = f"Method {method} not allowed for {path}"
            raise ValidationError(msg)
        msg = f"No route for {method} {path}"
        raise NotFoundError(msg)

    def _timestamp(self) -> datetime:
        """Current time, strictly after every timestamp handed out before."""
        now = self._now()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _get(self, collection: str, record_id: str, label: str) -> Any:
        try:
            return get_record(self._conn, collection, record_id)
        except NotFoundError as e:
            msg = f"{label} not found"
            raise NotFoundError(msg) from e

    def _add_timeline_event(self, candidate_id: str, event_type: TimelineEventType,
                            content: str, **extra: Any) -> TimelineEvent:
        event = TimelineEvent(
            candidate_id=candidate_id,
            type=event_type,
            content=content,
            created_at=self._timestamp(),
            **extra,
        )
        put_record(self._conn, "timeline", event)
        return event

    # --- jobs -------------------------------------------------------------

    def list_jobs(self, request: Request) -> dict[str, Any]:
        params = request.params
        jobs = list_records(self._conn, "jobs", order_by="order")
        if params.get("status"):
            jobs = [j for j in jobs if j.status == params["status"]]
        if params.get("tags"):
            wanted = set(_split_tags(params["tags"]))
            jobs = [j for j in jobs if any(t.lower() in wanted for t in j.tags)]
        if params.get("search"):
            needle = str(params["search"]).lower()
            jobs = [
                j for j in jobs
                if needle in j.title.lower() or any(needle in t.lower() for t in j.tags)
            ]
        return _paginate(jobs, params)

    def get_job(self, request: Request, job_id: str) -> dict[str, Any]:
        return {"data": self._get("jobs", job_id, "Job").to_wire()}

    def create_job(self, request: Request) -> dict[str, Any]:
        body = _body(request)
        now = self._timestamp()
        slug = body.get("slug") or slugify(str(body.get("title", "")))
        if find_by_index(self._conn, "jobs", "slug", slug):
            if body.get("slug"):
                msg = f"Slug '{slug}' is already in use"
                raise ValidationError(msg)
            slug = f"{slug}-{new_id()[:6]}"
        # New jobs always go to the end so the order stays dense.
        data = {
            **body,
            "id": new_id(),
            "slug": slug,
            "order": count_records(self._conn, "jobs"),
            "createdAt": now,
            "updatedAt": now,
        }
        job = _build(Job, data)
        put_record(self._conn, "jobs", job)
        logger.info("Created job %s (%s) at order %d", job.id, job.slug, job.order)
        return {"data": job.to_wire()}

    def update_job(self, request: Request, job_id: str) -> dict[str, Any]:
        patch = _field_patch(Job, _body(request), readonly={"id", "order", "created_at"})
        self._get("jobs", job_id, "Job")
        if "slug" in patch:
            clash = [j for j in find_by_index(self._conn, "jobs", "slug", patch["slug"])
                     if j.id != job_id]
            if clash:
                msg = f"Slug '{patch['slug']}' is already in use"
                raise ValidationError(msg)
        patch["updated_at"] = self._timestamp()
        job = update_fields(self._conn, "jobs", job_id, patch)
        return {"data": job.to_wire()}

    def reorder_jobs(self, request: Request) -> dict[str, Any]:
        body = _body(request)
        if "fromOrder" not in body or "toOrder" not in body:
            msg = "fromOrder and toOrder are required"
            raise ValidationError(msg)
        reorder_collection(self._conn, "jobs", body["fromOrder"], body["toOrder"])
        return {"success": True}

    # --- candidates -------------------------------------------------------

    def search_candidates(self, request: Request) -> dict[str, Any]:
        params = request.params
        if params.get("jobId"):
            candidates = find_by_index(self._conn, "candidates", "job_id", params["jobId"],
                                       order_by="applied_at", descending=True)
        else:
            candidates = list_records(self._conn, "candidates",
                                      order_by="applied_at", descending=True)
        if params.get("stage"):
            candidates = [c for c in candidates if c.stage == params["stage"]]
        if params.get("search"):
            needle = str(params["search"]).lower()
            candidates = [
                c for c in candidates
                if needle in c.name.lower() or needle in c.email.lower()
            ]
        return _paginate(candidates, params)

    def get_candidate(self, request: Request, candidate_id: str) -> dict[str, Any]:
        return {"data": self._get("candidates", candidate_id, "Candidate").to_wire()}

    def create_candidate(self, request: Request) -> dict[str, Any]:
        body = _body(request)
        job_id = body.get("jobId") or body.get("job_id")
        if not job_id:
            msg = "jobId is required"
            raise ValidationError(msg)
        self._get("jobs", str(job_id), "Job")
        now = self._timestamp()
        candidate = _build(Candidate, {
            **body,
            "id": new_id(),
            "stage": CandidateStage.APPLIED,
            "appliedAt": now,
            "updatedAt": now,
        })
        put_record(self._conn, "candidates", candidate)
        self._add_timeline_event(
            candidate.id, TimelineEventType.STAGE_CHANGE, "Application submitted",
            to_stage=CandidateStage.APPLIED,
        )
        return {"data": candidate.to_wire()}

    def update_candidate(self, request: Request, candidate_id: str) -> dict[str, Any]:
        patch = _field_patch(Candidate, _body(request),
                             readonly={"id", "job_id", "applied_at"})
        current = self._get("candidates", candidate_id, "Candidate")
        new_stage = patch.get("stage")
        if new_stage is not None:
            try:
                new_stage = CandidateStage(new_stage)
            except ValueError as e:
                msg = f"Unknown stage '{new_stage}'"
                raise ValidationError(msg) from e
            patch["stage"] = new_stage
        patch["updated_at"] = self._timestamp()
        updated = update_fields(self._conn, "candidates", candidate_id, patch)

        if new_stage is not None and new_stage != current.stage:
            self._add_timeline_event(
                candidate_id, TimelineEventType.STAGE_CHANGE,
                f"Moved from {current.stage} to {new_stage.value}",
                from_stage=current.stage, to_stage=new_stage,
            )
        return {"data": updated.to_wire()}

    def get_timeline(self, request: Request, candidate_id: str) -> dict[str, Any]:
        events = find_by_index(self._conn, "timeline", "candidate_id", candidate_id,
                               order_by="created_at", descending=True)
        return {"data": [e.to_wire() for e in events]}

    # --- assessments ------------------------------------------------------

    def list_assessments(self, request: Request, job_id: str) -> dict[str, Any]:
        assessments = find_by_index(self._conn, "assessments", "job_id", job_id)
        return {"data": [a.to_wire() for a in assessments]}

    def get_assessment(self, request: Request, assessment_id: str) -> dict[str, Any]:
        return {"data": self._get("assessments", assessment_id, "Assessment").to_wire()}

    def create_assessment(self, request: Request) -> dict[str, Any]:
        body = _body(request)
        now = self._timestamp()
        assessment = _build(Assessment, {**body, "id": new_id(),
                                         "createdAt": now, "updatedAt": now})
        self._get("jobs", assessment.job_id, "Job")
        put_record(self._conn, "assessments", assessment)
        return {"data": assessment.to_wire()}

    def update_assessment(self, request: Request, assessment_id: str) -> dict[str, Any]:
        current = self._get("assessments", assessment_id, "Assessment")
        body = _body(request)
        merged = {**current.to_wire(), **body,
                  "id": current.id, "createdAt": current.created_at,
                  "updatedAt": self._timestamp()}
        assessment = _build(Assessment, merged)
        put_record(self._conn, "assessments", assessment)
        return {"data": assessment.to_wire()}

    def submit_response(self, request: Request, job_id: str) -> dict[str, Any]:
        body = _body(request)
        assessment = self._get("assessments", str(body.get("assessmentId", "")), "Assessment")
        if assessment.job_id != job_id:
            msg = "Assessment not found for this job"
            raise NotFoundError(msg)
        answers = body.get("answers") or {}
        if not isinstance(answers, dict):
            msg = "answers must be an object keyed by question id"
            raise ValidationError(msg)
        errors = validate_answers(assessment, answers)
        if errors:
            details = "; ".join(f"{qid}: {message}" for qid, message in errors.items())
            msg = f"Invalid answers: {details}"
            raise ValidationError(msg)

        now = self._timestamp()
        response = _build(AssessmentResponse, {
            "id": new_id(),
            "assessmentId": assessment.id,
            "candidateId": body.get("candidateId", ""),
            "answers": answers,
            "submittedAt": now,
            "completedAt": now,
        })
        put_record(self._conn, "assessment_responses", response)
        candidates = find_by_index(self._conn, "candidates", "job_id", job_id)
        if any(c.id == response.candidate_id for c in candidates):
            self._add_timeline_event(
                response.candidate_id, TimelineEventType.ASSESSMENT_COMPLETED,
                f"Completed {assessment.title}",
            )
        return {"data": response.to_wire()}

    # --- notes ------------------------------------------------------------

    def create_note(self, request: Request) -> dict[str, Any]:
        body = _body(request)
        content = str(body.get("content", ""))
        candidate_id = str(body.get("candidateId", ""))
        self._get("candidates", candidate_id, "Candidate")
        note = _build(Note, {
            **body,
            "id": new_id(),
            "mentions": body.get("mentions") or extract_mentions(content),
            "createdAt": self._timestamp(),
        })
        put_record(self._conn, "notes", note)
        preview = content[:NOTE_PREVIEW_CHARS] + ("..." if len(content) > NOTE_PREVIEW_CHARS else "")
        self._add_timeline_event(candidate_id, TimelineEventType.NOTE, preview)
        return {"data": note.to_wire()}

    def list_notes(self, request: Request, candidate_id: str) -> dict[str, Any]:
        notes = find_by_index(self._conn, "notes", "candidate_id", candidate_id,
                              order_by="created_at", descending=True)
        return {"data": [n.to_wire() for n in notes]}
