"""Assessments: per-job builder reads and writes, and candidate submissions."""

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from talentflow.cache.query_cache import QueryKey
from talentflow.core.assessment_rules import validate_answers
from talentflow.core.errors import ValidationError
from talentflow.core.schemas import Assessment, utc_now
from talentflow.pipeline.candidates import timeline_key
from talentflow.pipeline.coordinator import MutationIntent, MutationResult
from talentflow.pipeline.optimistic import append_record, patch_record
from talentflow.pipeline.service import ResourceService, temp_id

logger = logging.getLogger(__name__)

ASSESSMENTS = QueryKey.of("assessments")


def assessments_key(job_id: str) -> QueryKey:
    return QueryKey.of("assessments", job_id=job_id)


def assessment_key(assessment_id: str) -> QueryKey:
    return QueryKey.of("assessment", id=assessment_id)


def _parse(data: dict[str, Any]) -> Assessment:
    try:
        return Assessment.model_validate(data)
    except PydanticValidationError as e:
        error = e.errors()[0]
        msg = f"Invalid assessment: {error['msg']} at {error['loc']}"
        raise ValidationError(msg) from e


class AssessmentsService(ResourceService):

    # --- reads ------------------------------------------------------------

    async def list_for_job(self, job_id: str) -> dict[str, Any]:
        return await self._query(
            assessments_key(job_id), lambda: self.api.list_assessments(job_id),
        )

    async def get_assessment(self, assessment_id: str) -> dict[str, Any]:
        return await self._query(
            assessment_key(assessment_id), lambda: self.api.get_assessment(assessment_id),
        )

    def _cached_assessment(self, job_id: str, assessment_id: str) -> Assessment | None:
        """Look the assessment up in whatever the cache already holds."""
        entry = self.scheduler.peek(assessment_key(assessment_id))
        if entry is not None and isinstance(entry.data.get("data"), dict):
            return Assessment.model_validate(entry.data["data"])
        entry = self.scheduler.peek(assessments_key(job_id))
        if entry is not None:
            for item in entry.data.get("data", []):
                if item.get("id") == assessment_id:
                    return Assessment.model_validate(item)
        return None

    # --- mutations --------------------------------------------------------

    async def create_assessment(
        self,
        job_id: str,
        title: str,
        sections: list[dict[str, Any]] | None = None,
        description: str | None = None,
    ) -> MutationResult:
        body: dict[str, Any] = {"jobId": job_id, "title": title, "sections": sections or []}
        if description is not None:
            body["description"] = description
        now = utc_now().isoformat()
        placeholder = {**body, "id": temp_id(), "createdAt": now, "updatedAt": now}

        return await self._mutate(MutationIntent(
            name=f"create assessment '{title}'",
            targets=[assessments_key(job_id)],
            transform=lambda key, data: append_record(data, placeholder),
            perform=lambda api: api.create_assessment(body),
            validate=lambda: _parse(placeholder),
        ))

    async def save_assessment(self, assessment_id: str, changes: dict[str, Any]) -> MutationResult:
        """Replace builder fields (title, description, sections) of an assessment.

        ``changes`` uses wire field names, as the builder edits wire payloads.
        """
        allowed = {"title", "description", "sections"}

        def validate() -> None:
            unknown = set(changes) - allowed
            if unknown:
                msg = f"Cannot update assessment fields: {', '.join(sorted(unknown))}"
                raise ValidationError(msg)
            entry = self.scheduler.peek(assessment_key(assessment_id))
            if entry is not None and isinstance(entry.data.get("data"), dict):
                _parse({**entry.data["data"], **changes})

        return await self._mutate(MutationIntent(
            name=f"save assessment {assessment_id}",
            targets=[ASSESSMENTS, assessment_key(assessment_id)],
            transform=lambda key, data: patch_record(data, assessment_id, changes),
            perform=lambda api: api.update_assessment(assessment_id, changes),
            validate=validate,
        ))

    async def submit_response(
        self,
        job_id: str,
        assessment_id: str,
        candidate_id: str,
        answers: dict[str, Any],
    ) -> MutationResult:
        """Submit a candidate's answers.

        When the assessment is already cached the answers are checked locally
        first, so an invalid submission never reaches the backend.
        """
        body = {"assessmentId": assessment_id, "candidateId": candidate_id, "answers": answers}

        def validate() -> None:
            assessment = self._cached_assessment(job_id, assessment_id)
            if assessment is None:
                return
            errors = validate_answers(assessment, answers)
            if errors:
                details = "; ".join(f"{qid}: {message}" for qid, message in errors.items())
                msg = f"Invalid answers: {details}"
                raise ValidationError(msg)

        result = await self._mutate(MutationIntent(
            name=f"submit assessment {assessment_id} for {candidate_id}",
            targets=[],
            transform=lambda key, data: data,
            perform=lambda api: api.submit_response(job_id, body),
            invalidates=[timeline_key(candidate_id)],
            validate=validate,
        ))
        if result.committed:
            logger.info("Candidate %s completed assessment %s", candidate_id, assessment_id)
        return result
