from __future__ import annotations

import asyncio
import json

import httpx

from mediation.states import ConversationStatus
from mediation.store import SupabaseTranscriptStore, get_transcript_store


BASE = "https://project.supabase.test"


def _store(handler) -> SupabaseTranscriptStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SupabaseTranscriptStore(BASE, "anon-key", client=client)


def test_validate_code_queries_active_sessions_uppercased() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json=[{"code": "ABC123", "name": "3학년 2반"}])

    check = asyncio.run(_store(handler).validate_code(" abc123 "))
    assert check.valid
    assert check.label == "3학년 2반"
    assert seen["path"] == "/rest/v1/sessions"
    assert seen["params"]["code"] == "eq.ABC123"
    assert seen["params"]["is_active"] == "eq.true"
    assert seen["apikey"] == "anon-key"


def test_validate_code_unknown_and_failure() -> None:
    def empty(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[])

    check = asyncio.run(_store(empty).validate_code("NOPE"))
    assert not check.valid
    assert check.error == "유효하지 않거나 비활성화된 세션 코드입니다."

    def broken(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "boom"})

    check = asyncio.run(_store(broken).validate_code("ABC"))
    assert not check.valid
    assert check.error == "세션 코드 확인 중 오류가 발생했습니다."

    assert not asyncio.run(_store(empty).validate_code("   ")).valid


def test_create_returns_new_id() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["prefer"] = request.headers.get("prefer")
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=[{"id": 17, **seen["body"]}])

    conversation_id = asyncio.run(_store(handler).create(["A", "B"], "xyz1"))
    assert conversation_id == "17"
    assert seen["method"] == "POST"
    assert seen["prefer"] == "return=representation"
    assert seen["body"] == {"participants": ["A", "B"], "messages": [], "status": "active", "session_code": "XYZ1"}


def test_create_failure_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "invalid key"})

    assert asyncio.run(_store(handler).create(["A", "B"], "XYZ1")) is None


def test_upsert_active_replaces_messages() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["params"] = dict(request.url.params)
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    messages = [{"type": "ai", "content": "안녕", "timestamp": "09:00"}]
    assert asyncio.run(_store(handler).upsert("17", messages))
    assert seen["method"] == "PATCH"
    assert seen["params"] == {"id": "eq.17"}
    assert seen["body"] == {"messages": messages, "status": "active"}


def test_upsert_completed_sets_end_fields() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(204)

    ok = asyncio.run(
        _store(handler).upsert("17", [], summary="요약", status=ConversationStatus.COMPLETED, resolution="resolved")
    )
    assert ok
    body = seen["body"]
    assert body["status"] == "completed"
    assert body["summary"] == "요약"
    assert body["resolution"] == "resolved"
    assert "ended_at" in body


def test_upsert_failure_returns_false() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    assert asyncio.run(_store(handler).upsert("17", [])) is False


def test_missing_credentials_disable_store(monkeypatch) -> None:
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)
    get_transcript_store.cache_clear()
    try:
        assert get_transcript_store() is None
    finally:
        get_transcript_store.cache_clear()


def test_credentials_enable_store(monkeypatch) -> None:
    monkeypatch.setenv("SUPABASE_URL", BASE + "/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    get_transcript_store.cache_clear()
    try:
        store = get_transcript_store()
        assert isinstance(store, SupabaseTranscriptStore)
        assert store.base_url == BASE + "/rest/v1"
    finally:
        get_transcript_store.cache_clear()
