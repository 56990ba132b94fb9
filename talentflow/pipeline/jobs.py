"""Job postings: cached listings plus create, edit, archive and reorder mutations."""

from typing import Any

from pydantic.alias_generators import to_camel

from talentflow.cache.query_cache import QueryKey
from talentflow.core.errors import ValidationError
from talentflow.core.ordering import apply_reorder_to_items, validate_move
from talentflow.core.schemas import JobStatus, slugify, utc_now
from talentflow.pipeline.coordinator import MutationIntent, MutationResult
from talentflow.pipeline.optimistic import append_record, drop_unmatched, patch_record, reorder_items
from talentflow.pipeline.service import ResourceService, require_text, temp_id

JOBS = QueryKey.of("jobs")
JOB = QueryKey.of("job")
EDITABLE_FIELDS = frozenset({"title", "slug", "status", "tags", "description"})


def jobs_key(
    status: str | None = None,
    tags: list[str] | None = None,
    search: str | None = None,
    page: int = 1,
    page_size: int = 20,
) -> QueryKey:
    return QueryKey.of("jobs", status=status, tags=tags or None, search=search,
                       page=page, page_size=page_size)


def job_key(job_id: str) -> QueryKey:
    return QueryKey.of("job", id=job_id)


def _check_status(status: Any) -> str:
    try:
        return JobStatus(status).value
    except ValueError as e:
        msg = f"Unknown job status '{status}'"
        raise ValidationError(msg) from e


class JobsService(ResourceService):

    # --- reads ------------------------------------------------------------

    async def list_jobs(
        self,
        status: str | None = None,
        tags: list[str] | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        key = jobs_key(status, tags, search, page, page_size)
        return await self._query(
            key, lambda: self.api.list_jobs(status, tags, search, page, page_size),
        )

    async def get_job(self, job_id: str) -> dict[str, Any]:
        return await self._query(job_key(job_id), lambda: self.api.get_job(job_id))

    def _known_total(self) -> int | None:
        """Collection size from a cached unfiltered listing, if there is one."""
        entry = self.scheduler.peek(jobs_key())
        if entry is None or not isinstance(entry.data, dict):
            return None
        total = entry.data.get("total")
        return total if isinstance(total, int) else None

    # --- mutations --------------------------------------------------------

    async def create_job(
        self,
        title: str,
        tags: list[str] | None = None,
        description: str | None = None,
        slug: str | None = None,
        status: str = JobStatus.ACTIVE.value,
    ) -> MutationResult:
        body: dict[str, Any] = {"title": title, "tags": tags or [], "status": status}
        if description is not None:
            body["description"] = description
        if slug:
            body["slug"] = slug

        def validate() -> None:
            require_text(title, "title")
            _check_status(status)

        now = utc_now().isoformat()
        placeholder = {
            **body,
            "id": temp_id(),
            "slug": slug or slugify(title or ""),
            "createdAt": now,
            "updatedAt": now,
        }

        known_total = self._known_total()

        def transform(key: QueryKey, data: dict[str, Any]) -> dict[str, Any]:
            if key.param("status") not in (None, status):
                return data
            # New jobs land at the end of the collection.
            order = known_total
            if order is None:
                order = data.get("total", len(data.get("data", [])))
            return append_record(data, {**placeholder, "order": order})

        return await self._mutate(MutationIntent(
            name=f"create job '{title}'",
            targets=[JOBS],
            transform=transform,
            perform=lambda api: api.create_job(body),
            validate=validate,
        ))

    async def update_job(self, job_id: str, **changes: Any) -> MutationResult:
        """Edit title, slug, status, tags or description of one job."""
        patch = {to_camel(name): value for name, value in changes.items()}

        def validate() -> None:
            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                msg = f"Cannot update job fields: {', '.join(sorted(unknown))}"
                raise ValidationError(msg)
            if not changes:
                msg = "No changes given"
                raise ValidationError(msg)
            if "title" in changes:
                require_text(changes["title"], "title")
            if "status" in changes:
                _check_status(changes["status"])

        def transform(key: QueryKey, data: dict[str, Any]) -> dict[str, Any]:
            updated = patch_record(data, job_id, patch)
            if "status" in patch and key.resource == JOBS.resource:
                updated = drop_unmatched(updated, "status", key.param("status"))
            return updated

        return await self._mutate(MutationIntent(
            name=f"update job {job_id}",
            targets=[JOBS, job_key(job_id)],
            transform=transform,
            perform=lambda api: api.update_job(job_id, patch),
            validate=validate,
        ))

    async def archive_job(self, job_id: str) -> MutationResult:
        return await self.update_job(job_id, status=JobStatus.ARCHIVED.value)

    async def restore_job(self, job_id: str) -> MutationResult:
        return await self.update_job(job_id, status=JobStatus.ACTIVE.value)

    async def reorder_jobs(self, from_order: int, to_order: int) -> MutationResult:
        """Move the job at ``from_order`` to ``to_order``, shifting those in between.

        Without a cached unfiltered listing the collection size is unknown, so
        the move is only checked for sign locally and nothing is applied
        optimistically; the post-commit refetch shows the result.
        """
        async with self.mutex.hold(("jobs", "order")):
            total = self._known_total()

            def validate() -> None:
                if total is not None:
                    validate_move(total, from_order, to_order)
                    return
                for name, value in (("fromOrder", from_order), ("toOrder", to_order)):
                    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                        msg = f"{name} must be a non-negative integer, got {value!r}"
                        raise ValidationError(msg)

            def transform(key: QueryKey, data: dict[str, Any]) -> dict[str, Any]:
                if total is None:
                    return data
                record = data.get("data")
                if isinstance(record, dict):
                    return {**data, "data": apply_reorder_to_items([record], from_order, to_order)[0]}
                return reorder_items(data, from_order, to_order)

            return await self._mutate(MutationIntent(
                name=f"reorder jobs {from_order}->{to_order}",
                targets=[JOBS, JOB],
                transform=transform,
                perform=lambda api: api.reorder_jobs(from_order, to_order),
                validate=validate,
            ))
