"""Candidate notes with @mentions."""

from typing import Any

from talentflow.cache.query_cache import QueryKey
from talentflow.core.schemas import extract_mentions, utc_now
from talentflow.pipeline.candidates import timeline_key
from talentflow.pipeline.coordinator import MutationIntent, MutationResult
from talentflow.pipeline.optimistic import prepend_record
from talentflow.pipeline.service import ResourceService, require_text, temp_id


def notes_key(candidate_id: str) -> QueryKey:
    return QueryKey.of("notes", candidate_id=candidate_id)


class NotesService(ResourceService):

    async def list_notes(self, candidate_id: str) -> dict[str, Any]:
        return await self._query(
            notes_key(candidate_id), lambda: self.api.list_notes(candidate_id),
        )

    async def add_note(
        self,
        candidate_id: str,
        content: str,
        created_by: str | None = None,
    ) -> MutationResult:
        """Post a note; it appears at the top of the candidate's notes at once."""
        body: dict[str, Any] = {
            "candidateId": candidate_id,
            "content": content,
            "mentions": extract_mentions(content or ""),
        }
        if created_by is not None:
            body["createdBy"] = created_by
        placeholder = {**body, "id": temp_id(), "createdAt": utc_now().isoformat()}

        def validate() -> None:
            require_text(content, "content")

        return await self._mutate(MutationIntent(
            name=f"add note for {candidate_id}",
            targets=[notes_key(candidate_id)],
            transform=lambda key, data: prepend_record(data, placeholder),
            perform=lambda api: api.create_note(body),
            invalidates=[timeline_key(candidate_id)],
            validate=validate,
        ))
