from __future__ import annotations

import asyncio
import os
from typing import Any, Callable, Optional

import openai
from openai import OpenAI

from inputforge.core.ai.prompts import AnalysisRequest
from inputforge.core.errors import gateway_error


class OpenAITransport:
    """One attempt against the OpenAI Responses API.

    SDK-level retries are disabled; RetryingGateway owns the retry loop.
    """

    def __init__(self, *, model: str, base_url: str | None = None) -> None:
        self._model = model
        self._base_url = base_url

    async def send(
        self, request: AnalysisRequest, on_progress: Optional[Callable[[float], None]]
    ) -> str:
        if not os.getenv("OPENAI_API_KEY"):
            raise gateway_error("unavailable", "OPENAI_API_KEY is not set")

        if on_progress is not None:
            on_progress(0.1)
        text = await asyncio.to_thread(self._create, request)
        if on_progress is not None:
            on_progress(1.0)
        return text

    def _create(self, request: AnalysisRequest) -> str:
        kwargs: dict[str, Any] = {"max_retries": 0}
        if self._base_url:
            kwargs["base_url"] = self._base_url
        client = OpenAI(**kwargs)

        try:
            resp = client.responses.create(
                model=self._model,
                input=[{"role": m.role, "content": m.content} for m in request.messages],
            )
        except openai.APITimeoutError as e:
            raise gateway_error("timeout", "Request timed out.") from e
        except openai.RateLimitError as e:
            retry_after = _retry_after(e)
            msg = (
                f"Rate limited. Retry after {int(retry_after)} seconds."
                if retry_after
                else "Rate limited. Please try again later."
            )
            raise gateway_error("rate_limited", msg, status_code=429, retry_after=retry_after) from e
        except openai.APIStatusError as e:
            raise gateway_error(
                "server", f"Server error ({e.status_code}): {e.message}", status_code=e.status_code
            ) from e
        except openai.APIConnectionError as e:
            raise gateway_error("network", f"Network error: {e}") from e

        text = _extract_output_text(resp)
        if not text.strip():
            raise gateway_error("server", "Missing text in response", status_code=0)
        return text


def _retry_after(e: openai.APIStatusError) -> float | None:
    raw = e.response.headers.get("retry-after") if e.response is not None else None
    try:
        return float(raw) if raw else None
    except ValueError:
        return None


def _extract_output_text(resp: Any) -> str:
    """Extract response text robustly across OpenAI SDK response shapes."""
    raw = getattr(resp, "output_text", None)
    if isinstance(raw, str) and raw.strip():
        return raw

    out = getattr(resp, "output", None)
    if isinstance(out, list):
        texts: list[str] = []
        for item in out:
            content = getattr(item, "content", None)
            if isinstance(content, list):
                for c in content:
                    t = getattr(c, "text", None)
                    if isinstance(t, str) and t.strip():
                        texts.append(t)
        if texts:
            return "\n".join(texts)

    return ""
