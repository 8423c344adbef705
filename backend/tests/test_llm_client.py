"""Tests for the upstream inference client."""

import json

import httpx
import pytest

from app.services.llm_client import InferenceClient, UpstreamError

from conftest import chat_completion_body


@pytest.mark.asyncio
async def test_forwards_payload_with_model_override():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=chat_completion_body())

    client = InferenceClient(
        base_url="http://llm.local/v1/",
        api_key="placeholder",
        transport=httpx.MockTransport(handler),
    )
    try:
        result = await client.chat_completion(
            {"model": "ignored", "messages": [{"role": "user", "content": "hi"}], "top_p": 0.9},
            model="ai/gpt-oss-3b",
        )
    finally:
        await client.aclose()

    assert result == chat_completion_body()
    assert seen["url"] == "http://llm.local/v1/chat/completions"
    assert seen["auth"] == "Bearer placeholder"
    assert seen["body"]["model"] == "ai/gpt-oss-3b"
    assert seen["body"]["top_p"] == 0.9


@pytest.mark.asyncio
async def test_non_2xx_raises_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    client = InferenceClient(
        base_url="http://llm.local/v1",
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(UpstreamError) as exc_info:
            await client.chat_completion({"messages": []}, model="ai/gpt-oss-20b")
    finally:
        await client.aclose()

    assert exc_info.value.status_code == 502
    assert "bad gateway" in str(exc_info.value)


@pytest.mark.asyncio
async def test_transport_errors_propagate():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = InferenceClient(
        base_url="http://llm.local/v1",
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(httpx.ConnectError):
            await client.chat_completion({"messages": []}, model="ai/gpt-oss-20b")
    finally:
        await client.aclose()
