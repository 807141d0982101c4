from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import pytest

from mediation.proxy import ProxyError
from mediation.retry import Failure, Ok, RetryPolicy
from mediation.states import ConversationStatus
from mediation.store import CodeValidation


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeProxy:
    """Scripted proxy: each action pops the next queued reply (str or Exception)."""

    def __init__(self, start=None, messages=None, summary=None) -> None:
        self.start_replies = list(start or [])
        self.message_replies = list(messages or [])
        self.summary_replies = list(summary or [])
        self.calls: List[Dict[str, Any]] = []

    @staticmethod
    def _outcome(reply):
        if isinstance(reply, ProxyError):
            return Failure(reply, retryable=reply.overloaded)
        if isinstance(reply, Exception):
            return Failure(reply)
        return Ok(reply)

    async def start(self, participants: Sequence[str]):
        self.calls.append({"action": "start", "participants": list(participants)})
        return self._outcome(self.start_replies.pop(0))

    async def message(self, participants, speaker, text, history):
        self.calls.append(
            {
                "action": "message",
                "participants": list(participants),
                "speaker": speaker,
                "message": text,
                "history": list(history),
            }
        )
        return self._outcome(self.message_replies.pop(0))

    async def summary(self, messages, participants):
        self.calls.append({"action": "summary", "messages": list(messages), "participants": list(participants)})
        return self._outcome(self.summary_replies.pop(0))


class FakeStore:
    def __init__(self, conversation_id: Optional[str] = "conv-1") -> None:
        self.conversation_id = conversation_id
        self.created: List[Dict[str, Any]] = []
        self.saves: List[Dict[str, Any]] = []

    async def validate_code(self, code: str) -> CodeValidation:
        return CodeValidation(True, session={"name": "3학년 2반", "code": code.upper()})

    async def create(self, participants, code=None):
        self.created.append({"participants": list(participants), "code": code})
        return self.conversation_id

    async def upsert(self, conversation_id, messages, summary=None, status=ConversationStatus.ACTIVE, resolution=None):
        self.saves.append(
            {
                "id": conversation_id,
                "messages": list(messages),
                "summary": summary,
                "status": status,
                "resolution": resolution,
            }
        )
        return True


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def policy(sleep) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, initial_delay=1.0, sleep=sleep)
