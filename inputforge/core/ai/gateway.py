"""AI gateway: the "submit a request, get text or a typed failure" seam.

The orchestrator only sees `AIGateway.submit`. Retry, backoff and per-attempt
timeouts live in `RetryingGateway`, which wraps a transport that performs a
single attempt against one backend.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal, Optional, Protocol

from inputforge.core.ai.openai_client import OpenAITransport
from inputforge.core.ai.prompts import AnalysisRequest
from inputforge.core.errors import GatewayError, ValidationError, gateway_error

logger = logging.getLogger(__name__)

ProgressFn = Callable[[float], None]
SleepFn = Callable[[float], Awaitable[None]]
Backend = Literal["openai", "mock"]

BACKENDS: tuple[str, ...] = ("openai", "mock")


class AIGateway(Protocol):
    async def submit(
        self, request: AnalysisRequest, *, on_progress: Optional[ProgressFn] = None
    ) -> str: ...


class Transport(Protocol):
    async def send(self, request: AnalysisRequest, on_progress: Optional[ProgressFn]) -> str: ...


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    timeout: float = 120.0
    base: float = 2.0
    jitter: float = 1.0

    def backoff(self, attempt: int, rng: random.Random) -> float:
        return self.base**attempt + rng.uniform(0, self.jitter)


class RetryingGateway:
    def __init__(
        self,
        transport: Transport,
        policy: RetryPolicy | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def submit(
        self, request: AnalysisRequest, *, on_progress: Optional[ProgressFn] = None
    ) -> str:
        attempts = max(1, self._policy.max_attempts)
        last_error: GatewayError = gateway_error("timeout", "Request timed out.")

        for attempt in range(attempts):
            if attempt > 0:
                delay = self._policy.backoff(attempt, self._rng)
                if last_error.retry_after:
                    delay = max(delay, last_error.retry_after)
                logger.warning(
                    f"Attempt {attempt}/{attempts} failed ({last_error.kind}); retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

            try:
                return await asyncio.wait_for(
                    self._transport.send(request, on_progress), timeout=self._policy.timeout
                )
            except asyncio.TimeoutError:
                err = gateway_error("timeout", "Request timed out.")
            except GatewayError as e:
                err = e

            if not err.retryable or attempt == attempts - 1:
                raise err
            last_error = err

        raise last_error


class MockTransport:
    """Deterministic offline backend: stepped progress, then a canned plan."""

    def __init__(self, *, steps: int = 8, delay: float = 0.0) -> None:
        self._steps = max(1, steps)
        self._delay = delay

    async def send(self, request: AnalysisRequest, on_progress: Optional[ProgressFn]) -> str:
        for step in range(1, self._steps + 1):
            await asyncio.sleep(self._delay)
            if on_progress is not None:
                on_progress(step / self._steps)
        return json.dumps(mock_plan_payload(request.project_name), indent=2)


def mock_plan_payload(project_name: str) -> dict:
    return {
        "description": f"Project plan for {project_name}.",
        "milestones": [
            {
                "title": "Discovery & Requirements",
                "deliverables": [
                    {
                        "title": "Input Analysis",
                        "tasks": [
                            {
                                "title": "Review and catalogue all inputs",
                                "estimate": "1h",
                                "context": "mac",
                                "type": "research",
                                "nextActions": [
                                    {"title": "Open each input and take notes", "context": "mac", "estimate": "30m"},
                                    {"title": "Identify cross-references between inputs", "context": "mac", "estimate": "30m"},
                                ],
                            },
                            {
                                "title": "Identify missing information",
                                "estimate": "30m",
                                "context": "mac",
                                "type": "research",
                                "isFlagged": True,
                                "notes": "Flag any ambiguities for follow-up",
                            },
                        ],
                    }
                ],
            },
            {
                "title": "Planning & Design",
                "deliverables": [
                    {
                        "title": "Architecture",
                        "tasks": [
                            {
                                "title": "Define project structure and milestones",
                                "estimate": "2h",
                                "context": "mac",
                                "type": "design",
                                "nextActions": [
                                    {"title": "Draft milestone breakdown", "context": "mac", "estimate": "1h"},
                                    {"title": "Review with stakeholders", "context": "calls", "estimate": "30m"},
                                ],
                            }
                        ],
                    }
                ],
            },
            {
                "title": "Execution",
                "deliverables": [
                    {
                        "title": "Core Implementation",
                        "tasks": [
                            {
                                "title": "Execute primary deliverables",
                                "estimate": "8h",
                                "context": "mac",
                                "type": "development",
                                "isFlagged": True,
                                "nextActions": [
                                    {"title": "Begin first deliverable", "context": "mac", "estimate": "4h"},
                                ],
                            }
                        ],
                    }
                ],
            },
        ],
        "uncertaintyFlags": ["Timeline not specified - dates are estimated"],
        "clarityScore": 0.7,
    }


def _env_int(key: str, default: int) -> int:
    raw = (os.getenv(key, "") or "").strip()
    return int(raw) if raw else default


def _env_float(key: str, default: float) -> float:
    raw = (os.getenv(key, "") or "").strip()
    return float(raw) if raw else default


@dataclass(frozen=True)
class GatewaySettings:
    backend: str = "openai"
    model: str = "gpt-4o"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    base_url: Optional[str] = None

    @classmethod
    def from_env(cls, *, backend: str | None = None, model: str | None = None) -> "GatewaySettings":
        """Resolution order for each field: explicit argument, environment, default."""
        return cls(
            backend=backend or (os.getenv("INPUTFORGE_BACKEND", "") or "").strip() or "openai",
            model=model or (os.getenv("OPENAI_MODEL", "") or "").strip() or "gpt-4o",
            retry=RetryPolicy(
                max_attempts=_env_int("INPUTFORGE_MAX_ATTEMPTS", 3),
                timeout=_env_float("INPUTFORGE_TIMEOUT", 120.0),
            ),
            base_url=(os.getenv("OPENAI_BASE_URL", "") or "").strip() or None,
        )


def build_gateway(settings: GatewaySettings, *, sleep: SleepFn = asyncio.sleep) -> RetryingGateway:
    if settings.backend == "mock":
        transport: Transport = MockTransport()
    elif settings.backend == "openai":
        transport = OpenAITransport(model=settings.model, base_url=settings.base_url)
    else:
        raise ValidationError(
            code="E_UNKNOWN_BACKEND",
            message=f"unknown backend: {settings.backend} (choose one of: {', '.join(BACKENDS)})",
            path="backend",
        )
    return RetryingGateway(transport, settings.retry, sleep=sleep)
