"""
Inference router: the OpenAI-compatible surface behind API keys.

Every route authenticates with a Bearer nai_ key (get_api_key runs first, so
401s never reach the handler) and then hands one ProxyOperation to the shared
ProxyHandler, which times the call and writes the usage row.

POST /api/v1/chat/completions  forwarded to the upstream model server
POST /api/v1/completions       mock text completion
POST /api/v1/embeddings        mock 1536-dim embeddings
GET  /api/v1/models            static model registry
POST /api/v1/test              mock reply for trying out a key
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.dependencies import get_api_key
from app.core.database import get_db_session
from app.models.api_key import ApiKey
from app.services.llm_client import InferenceClient, get_inference_client
from app.services.proxy import (
    ChatCompletionOperation,
    CompletionOperation,
    EmbeddingOperation,
    KeyTestOperation,
    ModelsOperation,
    ProxyHandler,
)

router = APIRouter(tags=["Inference"])

DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Key = Annotated[ApiKey, Depends(get_api_key)]
Client = Annotated[InferenceClient, Depends(get_inference_client)]

_ERRORS: dict[int | str, dict[str, Any]] = {
    401: {"description": "Missing or invalid API key"},
    500: {"description": "Upstream or internal failure (usage row written best-effort)"},
}


@router.post(
    "/chat/completions",
    summary="Create a chat completion",
    description="Validates the model against the registry, then forwards to the model server.",
    responses={**_ERRORS, 400: {"description": "Unknown model"}},
)
async def chat_completions(
    request: Request,
    session: DbSession,
    api_key: Key,
    client: Client,
) -> dict[str, Any]:
    return await ProxyHandler(session).handle(ChatCompletionOperation(client), api_key, request)


@router.post(
    "/completions",
    summary="Create a text completion (mock)",
    responses=_ERRORS,
)
async def completions(request: Request, session: DbSession, api_key: Key) -> dict[str, Any]:
    return await ProxyHandler(session).handle(CompletionOperation(), api_key, request)


@router.post(
    "/embeddings",
    summary="Create embeddings (mock)",
    description="Returns random 1536-dimension vectors; values are not stable across calls.",
    responses=_ERRORS,
)
async def embeddings(request: Request, session: DbSession, api_key: Key) -> dict[str, Any]:
    return await ProxyHandler(session).handle(EmbeddingOperation(), api_key, request)


@router.get(
    "/models",
    summary="List available models",
    responses=_ERRORS,
)
async def list_models(request: Request, session: DbSession, api_key: Key) -> dict[str, Any]:
    return await ProxyHandler(session).handle(ModelsOperation(), api_key, request)


@router.post(
    "/test",
    summary="Test an API key",
    responses=_ERRORS,
)
async def test_key(request: Request, session: DbSession, api_key: Key) -> dict[str, Any]:
    return await ProxyHandler(session).handle(KeyTestOperation(), api_key, request)
