from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from loguru import logger

from .env import load_environment
from .states import ConversationStatus


load_environment()


@dataclass(frozen=True)
class CodeValidation:
    valid: bool
    session: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def label(self) -> str:
        return (self.session or {}).get("name") or "학급"


class TranscriptStore(Protocol):
    async def validate_code(self, code: str) -> CodeValidation: ...

    async def create(self, participants: Sequence[str], code: Optional[str] = None) -> Optional[str]: ...

    async def upsert(
        self,
        conversation_id: str,
        messages: List[Dict[str, Any]],
        summary: Optional[str] = None,
        status: ConversationStatus = ConversationStatus.ACTIVE,
        resolution: Optional[str] = None,
    ) -> bool: ...


class SupabaseTranscriptStore:
    """Conversations and session codes kept in Supabase, reached over PostgREST.

    Every failure is logged and reported as a falsy return; the engine keeps
    running without the record.
    """

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = url.rstrip("/") + "/rest/v1"
        self._headers = {
            "apikey": anon_key,
            "Authorization": f"Bearer {anon_key}",
            "Content-Type": "application/json",
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def validate_code(self, code: str) -> CodeValidation:
        normalized = (code or "").strip().upper()
        if not normalized:
            return CodeValidation(False, error="학급 코드를 입력해주세요.")
        try:
            r = await self._client.get(
                f"{self.base_url}/sessions",
                params={"select": "*", "code": f"eq.{normalized}", "is_active": "eq.true"},
                headers=self._headers,
            )
            r.raise_for_status()
            rows = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"store_validate_failed | code={normalized} | {e}")
            return CodeValidation(False, error="세션 코드 확인 중 오류가 발생했습니다.")
        if not rows:
            return CodeValidation(False, error="유효하지 않거나 비활성화된 세션 코드입니다.")
        return CodeValidation(True, session=rows[0])

    async def create(self, participants: Sequence[str], code: Optional[str] = None) -> Optional[str]:
        row: Dict[str, Any] = {
            "participants": list(participants),
            "messages": [],
            "status": ConversationStatus.ACTIVE.value,
        }
        if code:
            row["session_code"] = code.upper()
        try:
            r = await self._client.post(
                f"{self.base_url}/conversations",
                json=row,
                headers={**self._headers, "Prefer": "return=representation"},
            )
            r.raise_for_status()
            created = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"store_create_failed | {e}")
            return None
        if isinstance(created, list):
            created = created[0] if created else {}
        conversation_id = (created or {}).get("id")
        if conversation_id is None:
            logger.error("store_create_failed | response carried no id")
            return None
        logger.info(f"store_create | conversation={conversation_id}")
        return str(conversation_id)

    async def upsert(
        self,
        conversation_id: str,
        messages: List[Dict[str, Any]],
        summary: Optional[str] = None,
        status: ConversationStatus = ConversationStatus.ACTIVE,
        resolution: Optional[str] = None,
    ) -> bool:
        update: Dict[str, Any] = {"messages": list(messages), "status": status.value}
        if summary:
            update["summary"] = summary
        if resolution:
            update["resolution"] = resolution
        if status is ConversationStatus.COMPLETED:
            update["ended_at"] = datetime.now(timezone.utc).isoformat()
        try:
            r = await self._client.patch(
                f"{self.base_url}/conversations",
                params={"id": f"eq.{conversation_id}"},
                json=update,
                headers=self._headers,
            )
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"store_save_failed | conversation={conversation_id} | {e}")
            return False
        logger.debug(f"store_save | conversation={conversation_id} messages={len(messages)} status={status.value}")
        return True

    async def aclose(self) -> None:
        await self._client.aclose()


@lru_cache(maxsize=1)
def get_transcript_store() -> Optional[SupabaseTranscriptStore]:
    """Return the configured store, or None when credentials are missing.

    Env vars:
      - SUPABASE_URL
      - SUPABASE_ANON_KEY
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_ANON_KEY")
    if not url or not key:
        logger.warning("Supabase credentials not set; conversation saving is disabled")
        return None
    logger.debug(f"Initializing Supabase store url={url}")
    return SupabaseTranscriptStore(url, key)
