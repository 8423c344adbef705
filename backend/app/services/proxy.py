"""
Proxy handler: the shared envelope around every inference endpoint.

Per request:
  1. Key already validated by the get_api_key dependency (401s never get here)
  2. Parse the JSON body
  3. Operation-specific validation (chat: model must be in the registry)
  4. Start the clock, run the operation (forward upstream, or mock)
  5. One transaction: append a `success` usage row + stamp key.last_used_at
  6. Return the operation's body

Any exception after step 1, other than a validation rejection, rolls back,
appends an `error` usage row (best-effort, tokens=0) and surfaces as a 500.

Endpoints differ only in their ProxyOperation. Chat completions go to the
upstream model server; completions, embeddings and the test endpoint return
synthesized responses; models returns the static registry.
"""

from __future__ import annotations

import datetime
import logging
import math
import random
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import transaction
from app.core.errors import InvalidModel, UpstreamFailure, ValidationFailed
from app.models.api_key import ApiKey
from app.models.usage import STATUS_ERROR, STATUS_SUCCESS, UsageEvent
from app.services.llm_client import InferenceClient
from app.services import model_registry

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS = 1536
MOCK_COMPLETION_TOKENS = 20

_GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


def estimate_tokens(value: Any) -> int:
    """ceil(len/4) per string; lists are summed item by item."""
    if value is None:
        return 0
    if isinstance(value, str):
        return math.ceil(len(value) / 4)
    if isinstance(value, (list, tuple)):
        return sum(estimate_tokens(item) for item in value)
    return math.ceil(len(str(value)) / 4)


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.perf_counter() - started) * 1000))


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass(frozen=True, slots=True)
class OperationResult:
    body: dict[str, Any]
    tokens: int


@dataclass(frozen=True, slots=True)
class RequestMeta:
    """Request details copied onto the usage row."""

    method: str
    user_agent: str | None
    ip_address: str | None

    @classmethod
    def from_request(cls, request: Request) -> RequestMeta:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip()
        else:
            ip = request.client.host if request.client else None
        return cls(
            method=request.method,
            user_agent=request.headers.get("user-agent"),
            ip_address=ip,
        )


# ── Operations ──────────────────────────────────────────────
class ProxyOperation(ABC):
    """The endpoint-specific part of a proxied call."""

    endpoint: str
    reads_body: bool = True

    def prepare(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate/normalize the body before the clock starts.

        Raise ValidationFailed to reject without a usage row.
        """
        return payload

    @abstractmethod
    async def run(self, payload: dict[str, Any]) -> OperationResult:
        ...


class ChatCompletionOperation(ProxyOperation):
    """Forward to the upstream model server."""

    endpoint = "/api/v1/chat/completions"

    def __init__(self, client: InferenceClient) -> None:
        self.client = client

    def prepare(self, payload: dict[str, Any]) -> dict[str, Any]:
        model = payload.get("model") or settings.default_chat_model
        if not model_registry.is_valid_model(model):
            available = model_registry.valid_model_ids()
            if not isinstance(model, str):
                model = str(model)
            raise InvalidModel(
                f"Model '{model}' is not supported. "
                f"Available models: {', '.join(available)}",
                requested_model=model,
                available_models=available,
            )
        return {**payload, "model": model}

    async def run(self, payload: dict[str, Any]) -> OperationResult:
        response = await self.client.chat_completion(payload, payload["model"])
        usage = response.get("usage") or {}
        return OperationResult(body=response, tokens=int(usage.get("total_tokens") or 0))


class CompletionOperation(ProxyOperation):
    """Synthesized text_completion echoing the prompt."""

    endpoint = "/api/v1/completions"

    async def run(self, payload: dict[str, Any]) -> OperationResult:
        prompt = payload.get("prompt")
        prompt_tokens = estimate_tokens(prompt)
        total = prompt_tokens + MOCK_COMPLETION_TOKENS
        body = {
            "id": f"cmpl-{int(time.time() * 1000)}",
            "object": "text_completion",
            "created": int(time.time()),
            "model": payload.get("model") or settings.default_chat_model,
            "choices": [
                {
                    "text": (
                        "\n\nThis is a mock completion response for the prompt: "
                        f"\"{prompt or 'No prompt provided'}\""
                    ),
                    "index": 0,
                    "logprobs": None,
                    "finish_reason": "stop",
                }
            ],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": MOCK_COMPLETION_TOKENS,
                "total_tokens": total,
            },
        }
        return OperationResult(body=body, tokens=total)


class EmbeddingOperation(ProxyOperation):
    """Synthesized random 1536-dim vectors, one per input string."""

    endpoint = "/api/v1/embeddings"

    async def run(self, payload: dict[str, Any]) -> OperationResult:
        raw = payload.get("input")
        inputs = list(raw) if isinstance(raw, (list, tuple)) else [raw]
        tokens = estimate_tokens(raw)
        body = {
            "object": "list",
            "data": [
                {
                    "object": "embedding",
                    "embedding": [
                        random.uniform(-1.0, 1.0) for _ in range(EMBEDDING_DIMENSIONS)
                    ],
                    "index": i,
                }
                for i, _ in enumerate(inputs)
            ],
            "model": payload.get("model") or settings.EMBEDDING_MODEL,
            "usage": {"prompt_tokens": tokens, "total_tokens": tokens},
        }
        return OperationResult(body=body, tokens=tokens)


class ModelsOperation(ProxyOperation):
    """Static registry listing."""

    endpoint = "/api/v1/models"
    reads_body = False

    async def run(self, payload: dict[str, Any]) -> OperationResult:
        body = {
            "object": "list",
            "data": [m.to_openai() for m in model_registry.all_models()],
        }
        return OperationResult(body=body, tokens=0)


class KeyTestOperation(ProxyOperation):
    """Fixed chat-shaped reply for checking a key from the dashboard."""

    endpoint = "/api/v1/test"

    async def run(self, payload: dict[str, Any]) -> OperationResult:
        message = payload.get("message") or "Hello!"
        body = {
            "id": f"test-{int(time.time() * 1000)}",
            "object": "test.completion",
            "created": int(time.time()),
            "model": "test-model",
            "choices": [
                {
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": f"Test response for: {message}",
                    },
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 15, "total_tokens": 25},
        }
        return OperationResult(body=body, tokens=25)


# ── Handler ─────────────────────────────────────────────────
class ProxyHandler:
    """Runs one ProxyOperation inside the validate → time → log envelope."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def handle(
        self,
        operation: ProxyOperation,
        api_key: ApiKey,
        request: Request,
    ) -> dict[str, Any]:
        # Captured up front: a rollback expires the ORM instance.
        api_key_id = api_key.id
        meta = RequestMeta.from_request(request)
        started = time.perf_counter()

        try:
            payload: dict[str, Any] = await request.json() if operation.reads_body else {}
            payload = operation.prepare(payload)

            started = time.perf_counter()
            result = await operation.run(payload)
            elapsed = _elapsed_ms(started)

            async with transaction(self.session):
                self.session.add(
                    UsageEvent(
                        api_key_id=api_key_id,
                        endpoint=operation.endpoint,
                        method=meta.method,
                        status=STATUS_SUCCESS,
                        status_code=200,
                        response_time_ms=elapsed,
                        tokens=result.tokens,
                        user_agent=meta.user_agent,
                        ip_address=meta.ip_address,
                    )
                )
                api_key.last_used_at = _now()

        except ValidationFailed:
            raise
        except Exception as exc:
            logger.exception("Proxy call to %s failed", operation.endpoint)
            await self._record_failure(api_key_id, operation, meta, started, exc)
            if settings.EXPOSE_ERROR_DETAILS:
                message = str(exc) or type(exc).__name__
            else:
                message = _GENERIC_ERROR_MESSAGE
            raise UpstreamFailure(message) from exc

        logger.debug(
            "%s ok key=%s ms=%d tokens=%d",
            operation.endpoint, str(api_key_id)[:8], elapsed, result.tokens,
        )
        return result.body

    async def _record_failure(
        self,
        api_key_id: uuid.UUID,
        operation: ProxyOperation,
        meta: RequestMeta,
        started: float,
        exc: Exception,
    ) -> None:
        """Append the error row. Never raises; a lost row is only logged."""
        try:
            await self.session.rollback()
            self.session.add(
                UsageEvent(
                    api_key_id=api_key_id,
                    endpoint=operation.endpoint,
                    method=meta.method,
                    status=STATUS_ERROR,
                    status_code=500,
                    response_time_ms=_elapsed_ms(started),
                    tokens=0,
                    error_type=type(exc).__name__,
                    user_agent=meta.user_agent,
                    ip_address=meta.ip_address,
                )
            )
            await self.session.commit()
        except Exception:
            logger.exception("Failed to record error usage for %s", operation.endpoint)
            await self.session.rollback()
