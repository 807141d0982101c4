from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from langchain_core.messages import BaseMessage


class SessionState(Enum):
    SETUP = "setup"
    OPENING = "opening"
    ACTIVE = "active"
    CHOOSING_RESOLUTION = "choosing_resolution"
    SAVING = "saving"
    ENDED = "ended"
    FAILED = "failed"


class Resolution(Enum):
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


class ConversationStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class MessageKind(Enum):
    HUMAN = "human"
    ASSISTANT = "assistant"


def timestamp_now() -> str:
    return datetime.now().strftime("%H:%M")


@dataclass(frozen=True)
class Message:
    kind: MessageKind
    text: str
    sent_at: str
    speaker: Optional[str] = None

    @classmethod
    def human(cls, speaker: str, text: str, sent_at: Optional[str] = None) -> "Message":
        return cls(MessageKind.HUMAN, text, sent_at or timestamp_now(), speaker)

    @classmethod
    def assistant(cls, text: str, sent_at: Optional[str] = None) -> "Message":
        return cls(MessageKind.ASSISTANT, text, sent_at or timestamp_now())

    def to_record(self) -> Dict[str, Any]:
        """Row shape stored in ``conversations.messages`` and sent for summaries."""
        if self.kind is MessageKind.HUMAN:
            return {"type": "user", "speaker": self.speaker, "content": self.text, "timestamp": self.sent_at}
        return {"type": "ai", "content": self.text, "timestamp": self.sent_at}


@dataclass
class Session:
    participants: Tuple[str, ...] = ()
    code: str = ""
    state: SessionState = SessionState.SETUP
    transcript: List[Message] = field(default_factory=list)
    history: List[BaseMessage] = field(default_factory=list)
    expected_speaker: Optional[str] = None
    resolution: Optional[Resolution] = None
    summary: Optional[str] = None
    conversation_id: Optional[str] = None
    error: Optional[str] = None
    opening_acknowledged: bool = False
    pending: bool = False

    def records(self) -> List[Dict[str, Any]]:
        return [m.to_record() for m in self.transcript]
