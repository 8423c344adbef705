"""Tests for the /api/v1 inference endpoints and their usage accounting."""

import datetime
import json

import httpx
import pytest

from conftest import as_utc, chat_completion_body, count_usage, usage_rows

INFERENCE_CALLS = [
    ("post", "/api/v1/chat/completions", {"messages": [{"role": "user", "content": "hi"}]}),
    ("post", "/api/v1/completions", {"prompt": "Say hi"}),
    ("post", "/api/v1/embeddings", {"input": "hello"}),
    ("get", "/api/v1/models", None),
]


async def _call(client, method, path, body, headers=None):
    if method == "get":
        return await client.get(path, headers=headers)
    return await client.post(path, json=body, headers=headers)


@pytest.mark.api
class TestAuthentication:
    """Key validation happens before anything else and never writes usage."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path,body", INFERENCE_CALLS)
    async def test_missing_header(self, client, db_session, api_key, method, path, body):
        response = await _call(client, method, path, body)

        assert response.status_code == 401
        assert response.json() == {"error": "API key required"}
        assert response.headers["www-authenticate"] == "Bearer"
        assert await count_usage(db_session) == 0

    @pytest.mark.asyncio
    async def test_non_bearer_scheme(self, client, db_session, api_key):
        response = await client.get(
            "/api/v1/models", headers={"Authorization": f"Basic {api_key.key}"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "API key required"}
        assert await count_usage(db_session) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path,body", INFERENCE_CALLS)
    async def test_unknown_key(self, client, db_session, api_key, method, path, body):
        headers = {"Authorization": "Bearer nai_" + "0" * 32}
        response = await _call(client, method, path, body, headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key"}
        assert await count_usage(db_session) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method,path,body", INFERENCE_CALLS)
    async def test_inactive_key(self, client, db_session, inactive_key, method, path, body):
        headers = {"Authorization": f"Bearer {inactive_key.key}"}
        response = await _call(client, method, path, body, headers)

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key"}
        assert await count_usage(db_session) == 0

    @pytest.mark.asyncio
    async def test_malformed_token_is_invalid(self, client, db_session, api_key):
        response = await client.get(
            "/api/v1/models", headers={"Authorization": "Bearer not-a-key"},
        )

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid API key"}


@pytest.mark.api
class TestChatCompletions:
    """Chat completions are forwarded to the upstream model server."""

    @pytest.mark.asyncio
    async def test_success_logs_usage_and_stamps_key(
        self, client, db_session, api_key, auth_headers, upstream_requests,
    ):
        started = datetime.datetime.now(datetime.timezone.utc)

        response = await client.post(
            "/api/v1/chat/completions",
            json={"model": "ai/gpt-oss-20b", "messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["choices"][0]["message"]["content"] == "Hello there!"

        rows = await usage_rows(db_session)
        assert len(rows) == 1
        row = rows[0]
        assert row.endpoint == "/api/v1/chat/completions"
        assert row.status == "success"
        assert row.status_code == 200
        assert row.method == "POST"
        assert row.tokens == 42
        assert row.response_time_ms >= 0
        assert row.api_key_id == api_key.id

        assert api_key.last_used_at is not None
        assert as_utc(api_key.last_used_at) >= started
        assert len(upstream_requests) == 1

    @pytest.mark.asyncio
    async def test_body_forwarded_with_resolved_model(
        self, client, api_key, auth_headers, upstream_requests,
    ):
        await client.post(
            "/api/v1/chat/completions",
            json={
                "messages": [{"role": "user", "content": "hi"}],
                "temperature": 0.3,
            },
            headers=auth_headers,
        )

        sent = upstream_requests[0]
        assert sent.url.path == "/v1/chat/completions"
        assert sent.headers["authorization"] == "Bearer 1"
        body = json.loads(sent.content)
        assert body["model"] == "ai/gpt-oss-20b"
        assert body["temperature"] == 0.3
        assert body["messages"] == [{"role": "user", "content": "hi"}]

    @pytest.mark.asyncio
    async def test_invalid_model_rejected_without_usage(
        self, client, db_session, api_key, auth_headers, upstream_requests,
    ):
        response = await client.post(
            "/api/v1/chat/completions",
            json={"model": "not-a-real-model", "messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid model"
        assert "not supported" in data["message"]
        assert data["requested_model"] == "not-a-real-model"
        assert "ai/gpt-oss-20b" in data["available_models"]
        assert "ai/embed-small" in data["available_models"]
        assert await count_usage(db_session) == 0
        assert upstream_requests == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("model", [["ai/gpt-oss-20b"], {"name": "ai/gpt-oss-20b"}, 7])
    async def test_non_string_model_rejected_without_usage(
        self, client, db_session, api_key, auth_headers, upstream_requests, model,
    ):
        response = await client.post(
            "/api/v1/chat/completions",
            json={"model": model, "messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 400
        data = response.json()
        assert data["error"] == "Invalid model"
        assert data["requested_model"] == str(model)
        assert await count_usage(db_session) == 0
        assert upstream_requests == []


@pytest.mark.api
class TestChatWithoutUsageBlock:
    """Upstreams that omit `usage` are logged with zero tokens."""

    @pytest.fixture
    def upstream_handler(self):
        body = chat_completion_body()
        del body["usage"]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=body)

        return handler

    @pytest.mark.asyncio
    async def test_zero_tokens(self, client, db_session, auth_headers):
        response = await client.post(
            "/api/v1/chat/completions",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        rows = await usage_rows(db_session)
        assert rows[0].status == "success"
        assert rows[0].tokens == 0


@pytest.mark.api
class TestFailurePath:
    """Failures after key validation write exactly one error row."""

    @pytest.fixture
    def upstream_handler(self, upstream_requests):
        def handler(request: httpx.Request) -> httpx.Response:
            upstream_requests.append(request)
            return httpx.Response(503, text="model not loaded")

        return handler

    @pytest.mark.asyncio
    async def test_upstream_error(self, client, db_session, api_key, auth_headers):
        key_id = api_key.id

        response = await client.post(
            "/api/v1/chat/completions",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "Internal server error"
        assert "503" in data["message"]

        rows = await usage_rows(db_session)
        assert len(rows) == 1
        assert rows[0].status == "error"
        assert rows[0].tokens == 0
        assert rows[0].status_code == 500
        assert rows[0].error_type == "UpstreamError"
        assert rows[0].api_key_id == key_id

    @pytest.mark.asyncio
    async def test_upstream_error_leaves_last_used_untouched(
        self, client, db_session, api_key, auth_headers,
    ):
        from app.models.api_key import ApiKey

        key_id = api_key.id
        await client.post(
            "/api/v1/chat/completions",
            json={"messages": []},
            headers=auth_headers,
        )

        refreshed = await db_session.get(ApiKey, key_id, populate_existing=True)
        assert refreshed.last_used_at is None

    @pytest.mark.asyncio
    async def test_malformed_json_body(self, client, db_session, api_key, auth_headers):
        response = await client.post(
            "/api/v1/completions",
            content=b"{not json",
            headers={**auth_headers, "Content-Type": "application/json"},
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"

        rows = await usage_rows(db_session)
        assert len(rows) == 1
        assert rows[0].status == "error"
        assert rows[0].endpoint == "/api/v1/completions"
        assert rows[0].tokens == 0

    @pytest.mark.asyncio
    async def test_error_details_hidden_when_disabled(
        self, client, api_key, auth_headers, monkeypatch,
    ):
        from app.core.config import settings

        monkeypatch.setattr(settings, "EXPOSE_ERROR_DETAILS", False)

        response = await client.post(
            "/api/v1/chat/completions",
            json={"messages": []},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert response.json()["message"] == "An unexpected error occurred"


@pytest.mark.api
class TestLedgerWriteFailures:
    """The success write is atomic, and a failed error write never masks the 500."""

    @pytest.fixture
    def upstream_handler(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=chat_completion_body(total_tokens=-1))

        return handler

    @pytest.mark.asyncio
    async def test_rejected_success_row_rolls_back_key_stamp(
        self, client, db_session, api_key, auth_headers,
    ):
        from app.models.api_key import ApiKey

        key_id = api_key.id
        response = await client.post(
            "/api/v1/chat/completions",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"

        assert await count_usage(db_session, status="success") == 0
        rows = await usage_rows(db_session, status="error")
        assert len(rows) == 1
        assert rows[0].tokens == 0
        assert rows[0].error_type == "IntegrityError"

        refreshed = await db_session.get(ApiKey, key_id, populate_existing=True)
        assert refreshed.last_used_at is None

    @pytest.mark.asyncio
    async def test_failed_error_row_is_swallowed(
        self, client, db_session, api_key, auth_headers, monkeypatch, caplog,
    ):
        async def broken_commit():
            raise RuntimeError("database went away")

        monkeypatch.setattr(db_session, "commit", broken_commit)

        response = await client.post(
            "/api/v1/chat/completions",
            json={"messages": [{"role": "user", "content": "hi"}]},
            headers=auth_headers,
        )

        assert response.status_code == 500
        assert response.json()["error"] == "Internal server error"
        assert "Failed to record error usage" in caplog.text

        monkeypatch.undo()
        assert await count_usage(db_session) == 0

@pytest.mark.api
class TestMockEndpoints:
    """Completions, embeddings, models and test are answered locally."""

    @pytest.mark.asyncio
    async def test_completion_echoes_prompt(self, client, db_session, auth_headers, upstream_requests):
        prompt = "Write a haiku about the sea"
        response = await client.post(
            "/api/v1/completions", json={"prompt": prompt}, headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "text_completion"
        assert prompt in data["choices"][0]["text"]
        assert data["usage"]["prompt_tokens"] == 7  # ceil(27 / 4)
        assert data["usage"]["total_tokens"] == 27

        rows = await usage_rows(db_session)
        assert len(rows) == 1
        assert rows[0].tokens == 27
        assert rows[0].status == "success"
        assert upstream_requests == []

    @pytest.mark.asyncio
    async def test_completion_without_prompt(self, client, auth_headers):
        response = await client.post("/api/v1/completions", json={}, headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert "No prompt provided" in data["choices"][0]["text"]
        assert data["usage"]["total_tokens"] == 20

    @pytest.mark.asyncio
    async def test_embedding_shape(self, client, db_session, auth_headers):
        response = await client.post(
            "/api/v1/embeddings", json={"input": "hello world"}, headers=auth_headers,
        )

        assert response.status_code == 200
        data = response.json()
        vector = data["data"][0]["embedding"]
        assert len(vector) == 1536
        assert all(isinstance(v, float) and -1.0 <= v <= 1.0 for v in vector)
        assert data["usage"]["total_tokens"] == 3

        rows = await usage_rows(db_session)
        assert rows[0].endpoint == "/api/v1/embeddings"
        assert rows[0].tokens == 3

    @pytest.mark.asyncio
    async def test_embedding_batch_input(self, client, auth_headers):
        response = await client.post(
            "/api/v1/embeddings", json={"input": ["one", "two", "three"]}, headers=auth_headers,
        )

        data = response.json()["data"]
        assert [d["index"] for d in data] == [0, 1, 2]
        assert all(len(d["embedding"]) == 1536 for d in data)

    @pytest.mark.asyncio
    async def test_models_list(self, client, db_session, auth_headers):
        response = await client.get("/api/v1/models", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["object"] == "list"
        ids = [m["id"] for m in data["data"]]
        assert "ai/gpt-oss-20b" in ids
        assert "ai/embed-large" in ids

        rows = await usage_rows(db_session)
        assert len(rows) == 1
        assert rows[0].method == "GET"
        assert rows[0].tokens == 0

    @pytest.mark.asyncio
    async def test_key_test_endpoint(self, client, db_session, auth_headers):
        response = await client.post(
            "/api/v1/test", json={"message": "ping"}, headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["choices"][0]["message"]["content"] == "Test response for: ping"
        rows = await usage_rows(db_session)
        assert rows[0].tokens == 25

    @pytest.mark.asyncio
    async def test_request_metadata_recorded(self, client, db_session, auth_headers):
        await client.get(
            "/api/v1/models",
            headers={**auth_headers, "User-Agent": "sdk/1.0", "X-Forwarded-For": "203.0.113.9, 10.0.0.1"},
        )

        row = (await usage_rows(db_session))[0]
        assert row.user_agent == "sdk/1.0"
        assert row.ip_address == "203.0.113.9"

    @pytest.mark.asyncio
    async def test_each_call_appends_one_row(self, client, db_session, api_key, auth_headers):
        for _ in range(3):
            await client.get("/api/v1/models", headers=auth_headers)

        assert await count_usage(db_session, api_key_id=api_key.id) == 3
