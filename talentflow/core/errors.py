"""Error taxonomy shared by the store, the simulated backend and the cache layer.

Every error carries a status-like code so it can cross the simulated transport
as ``{"error": message}`` and be rebuilt on the client side.
"""

from typing import Any


class TalentFlowError(Exception):
    """Base class for all domain errors."""

    status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.message}


class ValidationError(TalentFlowError):
    """Malformed input, rejected before any store access. Never retried."""

    status = 400


class NotFoundError(TalentFlowError):
    """Referenced entity is absent."""

    status = 404


class RepairRequired(TalentFlowError):
    """A collection's dense ordering is violated; reorders are blocked."""

    status = 409


class TransientServerError(TalentFlowError):
    """Injected transport failure. The caller may re-issue the request."""

    status = 500


_BY_STATUS: dict[int, type[TalentFlowError]] = {
    400: ValidationError,
    404: NotFoundError,
    409: RepairRequired,
}


def error_from_response(status: int, body: Any) -> TalentFlowError:
    """Rebuild a typed error from a non-success response.

    Unknown statuses (including every 5xx) become TransientServerError.
    """
    message = ""
    if isinstance(body, dict):
        message = str(body.get("error") or "")
    if not message:
        message = f"HTTP {status}"
    cls = _BY_STATUS.get(status, TransientServerError)
    return cls(message)
