"""Candidate pipeline: search, profile and timeline reads, stage moves and edits."""

import logging
from typing import Any

from pydantic.alias_generators import to_camel

from talentflow.cache.query_cache import QueryKey
from talentflow.core.errors import ValidationError
from talentflow.core.schemas import CandidateStage, utc_now
from talentflow.pipeline.coordinator import MutationIntent, MutationResult
from talentflow.pipeline.optimistic import drop_unmatched, patch_record, prepend_record
from talentflow.pipeline.service import ResourceService, require_text, temp_id

logger = logging.getLogger(__name__)

CANDIDATES = QueryKey.of("candidates")
EDITABLE_FIELDS = frozenset({"name", "email", "avatar"})


def candidates_key(
    stage: str | None = None,
    job_id: str | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> QueryKey:
    return QueryKey.of("candidates", stage=stage, job_id=job_id, search=search,
                       page=page, page_size=page_size)


def candidate_key(candidate_id: str) -> QueryKey:
    return QueryKey.of("candidate", id=candidate_id)


def timeline_key(candidate_id: str) -> QueryKey:
    return QueryKey.of("timeline", candidate_id=candidate_id)


def _check_stage(stage: Any) -> str:
    try:
        return CandidateStage(stage).value
    except ValueError as e:
        msg = f"Unknown stage '{stage}'"
        raise ValidationError(msg) from e


class CandidatesService(ResourceService):

    # --- reads ------------------------------------------------------------

    async def search_candidates(
        self,
        stage: str | None = None,
        job_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        key = candidates_key(stage, job_id, search, page, page_size)
        return await self._query(
            key, lambda: self.api.search_candidates(stage, job_id, search, page, page_size),
        )

    async def get_candidate(self, candidate_id: str) -> dict[str, Any]:
        return await self._query(
            candidate_key(candidate_id), lambda: self.api.get_candidate(candidate_id),
        )

    async def get_timeline(self, candidate_id: str) -> dict[str, Any]:
        return await self._query(
            timeline_key(candidate_id), lambda: self.api.get_timeline(candidate_id),
        )

    # --- mutations --------------------------------------------------------

    async def move_candidate(self, candidate_id: str, stage: str) -> MutationResult:
        """Move a candidate to ``stage``.

        Moves of the same candidate run one after another, so the backend
        records one stage_change event per move in the order they were made.
        """
        patch = {"stage": stage}

        def validate() -> None:
            _check_stage(stage)

        def transform(key: QueryKey, data: dict[str, Any]) -> dict[str, Any]:
            updated = patch_record(data, candidate_id, patch)
            if key.resource == CANDIDATES.resource:
                updated = drop_unmatched(updated, "stage", key.param("stage"))
            return updated

        async with self.mutex.hold(("candidate", candidate_id)):
            result = await self._mutate(MutationIntent(
                name=f"move candidate {candidate_id} to {stage}",
                targets=[CANDIDATES, candidate_key(candidate_id)],
                transform=transform,
                perform=lambda api: api.update_candidate(candidate_id, patch),
                invalidates=[timeline_key(candidate_id)],
                validate=validate,
            ))
        if result.committed:
            logger.info("Candidate %s moved to %s", candidate_id, stage)
        return result

    async def update_candidate(self, candidate_id: str, **changes: Any) -> MutationResult:
        """Edit name, email or avatar of a candidate."""
        patch = {to_camel(name): value for name, value in changes.items()}

        def validate() -> None:
            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                msg = f"Cannot update candidate fields: {', '.join(sorted(unknown))}"
                raise ValidationError(msg)
            if not changes:
                msg = "No changes given"
                raise ValidationError(msg)
            for field in ("name", "email"):
                if field in changes:
                    require_text(changes[field], field)

        async with self.mutex.hold(("candidate", candidate_id)):
            return await self._mutate(MutationIntent(
                name=f"update candidate {candidate_id}",
                targets=[CANDIDATES, candidate_key(candidate_id)],
                transform=lambda key, data: patch_record(data, candidate_id, patch),
                perform=lambda api: api.update_candidate(candidate_id, patch),
                validate=validate,
            ))

    async def create_candidate(self, job_id: str, name: str, email: str) -> MutationResult:
        """Register an application. It shows up first in every matching listing."""
        body = {"jobId": job_id, "name": name, "email": email}
        now = utc_now().isoformat()
        placeholder = {
            **body,
            "id": temp_id(),
            "stage": CandidateStage.APPLIED.value,
            "appliedAt": now,
            "updatedAt": now,
        }

        def validate() -> None:
            require_text(job_id, "jobId")
            require_text(name, "name")
            require_text(email, "email")

        def transform(key: QueryKey, data: dict[str, Any]) -> dict[str, Any]:
            if key.param("job_id") not in (None, job_id):
                return data
            if key.param("stage") not in (None, CandidateStage.APPLIED.value):
                return data
            if key.param("search") is not None:
                return data
            return prepend_record(data, placeholder)

        return await self._mutate(MutationIntent(
            name=f"create candidate '{name}'",
            targets=[CANDIDATES],
            transform=transform,
            perform=lambda api: api.create_candidate(body),
            validate=validate,
        ))
