"""Transport simulator: latency and failure injection in front of the backend.

Every request first waits a random latency. Writes then fail with a fixed
probability *before* the backend sees them, so a failed write never touches
the store. Reads never fail through injection.
"""

import logging
import random
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from talentflow.core.config import TransportConfig
from talentflow.core.errors import TalentFlowError
from talentflow.transport.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class Request(BaseModel):
    """One call across the transport: method, resource path, params, JSON body."""

    method: str
    path: str
    params: dict[str, Any] = Field(default_factory=dict)
    body: Any = None

    @property
    def is_write(self) -> bool:
        return self.method.upper() in WRITE_METHODS


class Response(BaseModel):
    status: int = 200
    body: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class TransportPolicy:
    """Injected latency/failure behaviour: ``{latency_range, failure_probability, rng, clock}``."""

    def __init__(
        self,
        latency_range_ms: tuple[float, float] = (200.0, 1200.0),
        failure_probability: float = 0.075,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ) -> None:
        low, high = latency_range_ms
        if low < 0 or high < low:
            msg = f"Invalid latency range: {latency_range_ms}"
            raise ValueError(msg)
        if not 0.0 <= failure_probability <= 1.0:
            msg = f"failure_probability must be within [0, 1], got {failure_probability}"
            raise ValueError(msg)
        self.latency_range_ms = (low, high)
        self.failure_probability = failure_probability
        self.rng = rng or random.Random()
        self.clock = clock or SystemClock()

    @classmethod
    def from_config(
        cls,
        config: TransportConfig,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ) -> "TransportPolicy":
        return cls(
            latency_range_ms=(config.latency_min_ms, config.latency_max_ms),
            failure_probability=config.failure_probability,
            rng=rng or random.Random(config.seed),
            clock=clock,
        )

    def draw_latency(self) -> float:
        return self.rng.uniform(*self.latency_range_ms)

    def should_fail(self) -> bool:
        return self.rng.random() < self.failure_probability


Dispatcher = Callable[[Request], Any]


class TransportSimulator:
    """Wraps a backend dispatcher with latency and injected write failures.

    Domain errors raised by the backend come back as error responses carrying
    their status code; anything else propagates to the caller unchanged.
    """

    def __init__(self, dispatch: Dispatcher, policy: TransportPolicy | None = None) -> None:
        self._dispatch = dispatch
        self.policy = policy or TransportPolicy()
        self.calls = 0
        self.failures = 0

    async def perform(self, request: Request) -> Response:
        self.calls += 1
        latency = self.policy.draw_latency()
        logger.debug("%s %s params=%s (latency %.0fms)",
                      request.method, request.path, request.params, latency)
        await self.policy.clock.sleep(latency)

        if request.is_write and self.policy.should_fail():
            self.failures += 1
            logger.warning("Injected failure for %s %s", request.method, request.path)
            return Response(
                status=500,
                body={"error": f"Failed to {request.method} {request.path}. Please try again."},
            )

        try:
            payload = self._dispatch(request)
        except TalentFlowError as e:
            logger.debug("%s %s -> %d %s", request.method, request.path, e.status, e.message)
            return Response(status=e.status, body=e.to_payload())
        return Response(status=200, body=payload)
