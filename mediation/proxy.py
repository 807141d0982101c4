from __future__ import annotations

import os
import time
from functools import lru_cache
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from loguru import logger

from .env import load_environment
from .retry import MediationError, Outcome, attempt


load_environment()

DEFAULT_PROXY_URL = "http://localhost:3000/api/chat"

_OVERLOAD_MARKERS = ("503", "overloaded", "RESOURCE_EXHAUSTED")


class ProxyError(MediationError):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status
        self.overloaded = is_overloaded(status, message)


def is_overloaded(status: Optional[int], message: Optional[str]) -> bool:
    """Whether a proxy failure is a transient overload worth retrying.

    The proxy reports Gemini overload either as HTTP 503 or only in the error
    text it relays, so the text has to be inspected here.
    """
    if status == 503:
        return True
    text = message or ""
    return any(marker in text for marker in _OVERLOAD_MARKERS)


def _is_retryable(error: Exception) -> bool:
    return isinstance(error, ProxyError) and error.overloaded


def history_to_wire(history: Sequence[BaseMessage]) -> List[Dict[str, Any]]:
    """Render the session history buffer in the proxy's ``history`` format."""
    out: List[Dict[str, Any]] = []
    for msg in history:
        if isinstance(msg, HumanMessage):
            out.append({"type": "user", "speaker": msg.name, "content": msg.content})
        elif isinstance(msg, AIMessage):
            out.append({"type": "ai", "content": msg.content})
    return out


class ChatProxy(Protocol):
    async def start(self, participants: Sequence[str]) -> Outcome[str]: ...

    async def message(
        self,
        participants: Sequence[str],
        speaker: str,
        text: str,
        history: Sequence[BaseMessage],
    ) -> Outcome[str]: ...

    async def summary(self, messages: Sequence[Dict[str, Any]], participants: Sequence[str]) -> Outcome[str]: ...


class HttpChatProxy:
    """Single-attempt client for the ``/api/chat`` proxy; callers add retries."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url or DEFAULT_PROXY_URL
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def start(self, participants: Sequence[str]) -> Outcome[str]:
        payload = {"action": "start", "participants": list(participants)}
        return await attempt(lambda: self._post(payload, "response"), _is_retryable)

    async def message(
        self,
        participants: Sequence[str],
        speaker: str,
        text: str,
        history: Sequence[BaseMessage],
    ) -> Outcome[str]:
        payload = {
            "action": "message",
            "participants": list(participants),
            "speaker": speaker,
            "message": text,
            "history": history_to_wire(history),
        }
        return await attempt(lambda: self._post(payload, "response"), _is_retryable)

    async def summary(self, messages: Sequence[Dict[str, Any]], participants: Sequence[str]) -> Outcome[str]:
        payload = {"action": "summary", "messages": list(messages), "participants": list(participants)}
        return await attempt(lambda: self._post(payload, "summary"), _is_retryable)

    async def _post(self, payload: Dict[str, Any], key: str) -> str:
        action = payload.get("action")
        t0 = time.perf_counter()
        try:
            r = await self._client.post(self.url, json=payload)
        except httpx.RequestError as e:
            raise ProxyError(f"proxy unreachable: {e}") from e
        dt = time.perf_counter() - t0
        logger.info(f"proxy_call | action={action} status={r.status_code} dt={dt:.2f}s")

        try:
            data = r.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if r.is_error:
            raise ProxyError(str(data.get("error") or f"API error: {r.status_code}"), status=r.status_code)
        if data.get("error"):
            raise ProxyError(str(data["error"]), status=r.status_code)
        text = data.get(key)
        if not isinstance(text, str):
            raise ProxyError(f"proxy response missing '{key}'", status=r.status_code)
        return text

    async def aclose(self) -> None:
        await self._client.aclose()


@lru_cache(maxsize=4)
def get_chat_proxy(url: Optional[str] = None) -> HttpChatProxy:
    """Return a cached proxy client using env configuration.

    Env vars:
      - MEDIATION_PROXY_URL (optional; default: http://localhost:3000/api/chat)
      - MEDIATION_PROXY_TIMEOUT (optional; seconds, default: 30)
    """
    target = url or os.getenv("MEDIATION_PROXY_URL", DEFAULT_PROXY_URL)
    try:
        timeout = float(os.getenv("MEDIATION_PROXY_TIMEOUT", "30"))
    except ValueError:
        timeout = 30.0
    logger.debug(f"Initializing chat proxy url={target} timeout={timeout}")
    return HttpChatProxy(target, timeout=timeout)
