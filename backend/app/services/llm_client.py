"""
Inference client for the upstream OpenAI-compatible model server.

Uses the server's /chat/completions API via httpx. The caller's body goes
through untouched apart from the resolved model id; the upstream JSON comes
back verbatim.

Configuration:
  LLM_BASE_URL         upstream base, e.g. http://localhost:12434/engines/llama.cpp/v1
  LLM_API_KEY          placeholder credential; the upstream is local
  LLM_TIMEOUT_SECONDS  None by default (wait as long as the upstream does)

No retries: a failed upstream call fails the request.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)


class UpstreamError(RuntimeError):
    """The model server answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"Upstream model server returned {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class InferenceClient:
    """Thin forwarding client; one shared httpx.AsyncClient per process."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.LLM_BASE_URL).rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key or settings.LLM_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def chat_completion(
        self,
        payload: dict[str, Any],
        model: str,
    ) -> dict[str, Any]:
        """
        Forward a chat-completion request.

        Args:
            payload: The caller's request body, as received.
            model:   Resolved model id; overrides payload["model"].

        Returns:
            The upstream chat.completion object.

        Raises:
            UpstreamError: Non-2xx response.
            httpx.HTTPError: Transport-level failure.
        """
        body = {**payload, "model": model}
        response = await self._client.post("/chat/completions", json=body)

        if response.is_error:
            logger.error(
                "Upstream error: status=%d body=%s",
                response.status_code,
                response.text[:500],
            )
            raise UpstreamError(response.status_code, response.text[:200])

        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()


_client: InferenceClient | None = None


def get_inference_client() -> InferenceClient:
    """FastAPI dependency: lazily built process-wide client."""
    global _client
    if _client is None:
        _client = InferenceClient()
    return _client


async def close_inference_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
