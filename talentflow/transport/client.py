"""API client: typed calls over the transport simulator.

Any non-success response is raised as the matching domain error, so callers
(and the mutation coordinator) only ever see payloads or exceptions.
"""

import logging
from typing import Any
from urllib.parse import quote

from talentflow.core.errors import error_from_response
from talentflow.transport.simulator import Request, TransportSimulator

logger = logging.getLogger(__name__)


def _seg(value: str) -> str:
    return quote(str(value), safe="")


def _clean(params: dict[str, Any] | None) -> dict[str, Any]:
    if not params:
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ",".join(str(v) for v in value)
        cleaned[key] = value
    return cleaned


class ApiClient:
    """One method per backend route; every method returns the JSON payload."""

    def __init__(self, transport: TransportSimulator) -> None:
        self._transport = transport

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        request = Request(method=method, path=path, params=_clean(params), body=body)
        response = await self._transport.perform(request)
        if not response.ok:
            error = error_from_response(response.status, response.body)
            logger.debug("%s %s failed: %s", method, path, error)
            raise error
        return response.body

    # --- jobs -------------------------------------------------------------

    async def list_jobs(
        self,
        status: str | None = None,
        tags: list[str] | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        params = {"status": status, "tags": tags, "search": search,
                  "page": page, "pageSize": page_size}
        return await self.request("GET", "/jobs", params=params)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/jobs/{_seg(job_id)}")

    async def create_job(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/jobs", body=data)

    async def update_job(self, job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PATCH", f"/jobs/{_seg(job_id)}", body=data)

    async def reorder_jobs(self, from_order: int, to_order: int) -> dict[str, Any]:
        return await self.request(
            "PATCH", "/jobs/reorder", body={"fromOrder": from_order, "toOrder": to_order},
        )

    # --- candidates -------------------------------------------------------

    async def search_candidates(
        self,
        stage: str | None = None,
        job_id: str | None = None,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> dict[str, Any]:
        params = {"stage": stage, "jobId": job_id, "search": search,
                  "page": page, "pageSize": page_size}
        return await self.request("GET", "/candidates", params=params)

    async def get_candidate(self, candidate_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/candidates/{_seg(candidate_id)}")

    async def get_timeline(self, candidate_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/candidates/{_seg(candidate_id)}/timeline")

    async def update_candidate(self, candidate_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PATCH", f"/candidates/{_seg(candidate_id)}", body=data)

    async def create_candidate(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/candidates", body=data)

    # --- assessments ------------------------------------------------------

    async def list_assessments(self, job_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/assessments/job/{_seg(job_id)}")

    async def get_assessment(self, assessment_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/assessments/{_seg(assessment_id)}")

    async def create_assessment(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/assessments", body=data)

    async def update_assessment(self, assessment_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("PUT", f"/assessments/{_seg(assessment_id)}", body=data)

    async def submit_response(self, job_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", f"/assessments/job/{_seg(job_id)}/submit", body=data)

    # --- notes ------------------------------------------------------------

    async def create_note(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self.request("POST", "/notes", body=data)

    async def list_notes(self, candidate_id: str) -> dict[str, Any]:
        return await self.request("GET", f"/notes/{_seg(candidate_id)}")
