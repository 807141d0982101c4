from __future__ import annotations

from typing import List, Optional, Sequence, Union

from langchain_core.messages import AIMessage, HumanMessage
from loguru import logger

from .opening import OPENING_PROMPT
from .proxy import ChatProxy
from .retry import MediationError, RetryPolicy, with_retry
from .roster import check_roster
from .speaker import detect_next_speaker, strip_next_speaker_marker
from .states import ConversationStatus, Message, Resolution, Session, SessionState
from .store import TranscriptStore


FALLBACK_REPLY = "죄송해요, 잠시 문제가 생겼어요. 다시 한 번 말해줄 수 있을까요? 🌱"
OPENING_ERROR = "채팅을 시작하는 중 오류가 발생했습니다. 잠시 후 다시 시도해주세요."

_TRANSITIONS = {
    SessionState.SETUP: {SessionState.OPENING},
    SessionState.OPENING: {SessionState.ACTIVE, SessionState.FAILED},
    SessionState.ACTIVE: {SessionState.CHOOSING_RESOLUTION},
    SessionState.CHOOSING_RESOLUTION: {SessionState.ACTIVE, SessionState.SAVING, SessionState.ENDED},
    SessionState.SAVING: {SessionState.ENDED},
    SessionState.ENDED: set(),
    SessionState.FAILED: set(),
}


class MediationManager:
    """Drives one mediation session at a time between students and the AI mediator.

    Every public action returns True when accepted. Rejected actions (wrong
    state, no expected speaker, blank text, an exchange still outstanding)
    return False and leave the session untouched. ``restart`` swaps in a fresh
    Session; replies that arrive for the old one are dropped.
    """

    def __init__(
        self,
        proxy: ChatProxy,
        store: Optional[TranscriptStore] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        self.proxy = proxy
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.session = Session()

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def transcript(self) -> List[Message]:
        return list(self.session.transcript)

    @property
    def expected_speaker(self) -> Optional[str]:
        return self.session.expected_speaker

    @property
    def persistence_enabled(self) -> bool:
        return self.store is not None

    def _transition(self, session: Session, target: SessionState) -> None:
        if target not in _TRANSITIONS[session.state]:
            raise RuntimeError(f"illegal transition {session.state.value} -> {target.value}")
        session.state = target
        logger.info(f"mediation_state_transition | state={target.value}")

    def _is_stale(self, session: Session) -> bool:
        if session is not self.session:
            logger.info("mediation_stale_result | session was restarted; dropping reply")
            return True
        return False

    def _reject(self, action: str, reason: str) -> bool:
        logger.debug(f"mediation_rejected | action={action} state={self.session.state.value} | {reason}")
        return False

    def _absorb_reply(self, session: Session, raw: str) -> Message:
        # Inference reads the marker, so it must see the reply before stripping
        nxt = detect_next_speaker(raw, session.participants)
        msg = Message.assistant(strip_next_speaker_marker(raw))
        session.transcript.append(msg)
        if nxt:
            session.expected_speaker = nxt
        self._log_turn(session, msg)
        return msg

    async def start(self, participants: Sequence[str], code: str) -> bool:
        if self.session.state is not SessionState.SETUP:
            return self._reject("start", "session already started")
        problem = check_roster(participants)
        if problem:
            return self._reject("start", problem)
        if not code or not code.strip():
            return self._reject("start", "session code is blank")

        session = Session(participants=tuple(participants), code=code.strip())
        self.session = session
        self._transition(session, SessionState.OPENING)
        logger.info(f"mediation_start | code={session.code} | participants={','.join(session.participants)}")

        try:
            raw = await with_retry(lambda: self.proxy.start(session.participants), self.retry_policy)
        except MediationError as e:
            if self._is_stale(session):
                return False
            logger.error(f"mediation_opening_failed | {e}")
            session.error = OPENING_ERROR
            self._transition(session, SessionState.FAILED)
            return False
        if self._is_stale(session):
            return False

        session.history.append(HumanMessage(content=OPENING_PROMPT, name="system"))
        session.history.append(AIMessage(content=raw))
        first = self._absorb_reply(session, raw)

        if self.store is not None:
            conversation_id = await self.store.create(session.participants, session.code)
            if self._is_stale(session):
                return False
            if conversation_id:
                session.conversation_id = conversation_id
                await self.store.upsert(conversation_id, [first.to_record()])
                if self._is_stale(session):
                    return False

        # acknowledge_opening() may already have moved on while the store was busy
        if session.state is SessionState.OPENING and session.opening_acknowledged:
            self._transition(session, SessionState.ACTIVE)
        return True

    def acknowledge_opening(self) -> bool:
        session = self.session
        if session.state is not SessionState.OPENING:
            return self._reject("acknowledge_opening", "no opening overlay")
        session.opening_acknowledged = True
        # The opening reply may still be in flight; start() finishes the transition then
        if session.transcript:
            self._transition(session, SessionState.ACTIVE)
        return True

    def select_speaker(self, name: str) -> bool:
        session = self.session
        if session.state not in (SessionState.OPENING, SessionState.ACTIVE):
            return self._reject("select_speaker", "not taking turns")
        if name not in session.participants:
            return self._reject("select_speaker", f"unknown participant {name!r}")
        session.expected_speaker = name
        return True

    async def send(self, text: str) -> bool:
        session = self.session
        if session.state is not SessionState.ACTIVE:
            return self._reject("send", "not active")
        if session.pending:
            return self._reject("send", "an exchange is already in flight")
        speaker = session.expected_speaker
        if not speaker:
            return self._reject("send", "no expected speaker")
        content = (text or "").strip()
        if not content:
            return self._reject("send", "empty message")

        human = Message.human(speaker, content)
        session.transcript.append(human)
        self._log_turn(session, human)
        history = list(session.history)
        session.pending = True
        try:
            raw = await with_retry(
                lambda: self.proxy.message(session.participants, speaker, content, history),
                self.retry_policy,
            )
        except MediationError as e:
            logger.error(f"mediation_exchange_failed | speaker={speaker} | {e}")
            if not self._is_stale(session):
                session.transcript.append(Message.assistant(FALLBACK_REPLY))
            return True
        finally:
            session.pending = False
        if self._is_stale(session):
            return True

        session.history.append(HumanMessage(content=content, name=speaker))
        session.history.append(AIMessage(content=raw))
        self._absorb_reply(session, raw)

        if self.store is not None and session.conversation_id:
            await self.store.upsert(session.conversation_id, session.records())
        return True

    def request_end(self) -> bool:
        session = self.session
        if session.state is not SessionState.ACTIVE:
            return self._reject("request_end", "not active")
        if session.pending:
            return self._reject("request_end", "an exchange is already in flight")
        if len(session.transcript) < 2:
            return self._reject("request_end", "no exchange yet")
        self._transition(session, SessionState.CHOOSING_RESOLUTION)
        return True

    def cancel_end(self) -> bool:
        session = self.session
        if session.state is not SessionState.CHOOSING_RESOLUTION:
            return self._reject("cancel_end", "not closing")
        self._transition(session, SessionState.ACTIVE)
        return True

    async def choose_resolution(self, resolution: Union[Resolution, str]) -> bool:
        session = self.session
        if session.state is not SessionState.CHOOSING_RESOLUTION:
            return self._reject("choose_resolution", "not closing")
        try:
            chosen = Resolution(resolution)
        except ValueError:
            return self._reject("choose_resolution", f"unknown resolution {resolution!r}")

        session.resolution = chosen
        if self.store is None or not session.conversation_id:
            self._transition(session, SessionState.ENDED)
            self._log_end(session)
            return True

        self._transition(session, SessionState.SAVING)
        records = session.records()
        summary = await self._summarize(session, records)
        if self._is_stale(session):
            return True
        session.summary = summary
        await self.store.upsert(
            session.conversation_id,
            records,
            summary=summary,
            status=ConversationStatus.COMPLETED,
            resolution=chosen.value,
        )
        if self._is_stale(session):
            return True
        self._transition(session, SessionState.ENDED)
        self._log_end(session)
        return True

    async def _summarize(self, session: Session, records) -> Optional[str]:
        try:
            return await with_retry(lambda: self.proxy.summary(records, session.participants), self.retry_policy)
        except MediationError as e:
            logger.error(f"mediation_summary_failed | {e}")
            return None

    def restart(self) -> None:
        old = self.session
        self.session = Session()
        logger.info(f"mediation_restart | from={old.state.value} | messages={len(old.transcript)}")

    def _log_turn(self, session: Session, msg: Message) -> None:
        raw = msg.text or ""
        snippet = raw if len(raw) <= 400 else raw[:400] + '...'
        one_line = ' '.join(snippet.split())
        spk = msg.speaker or "mediator"
        logger.info(
            f"mediation_turn | spk={spk} t={len(session.transcript)} "
            f"next={session.expected_speaker or '-'} | msg='{one_line}'"
        )

    def _log_end(self, session: Session) -> None:
        logger.info(
            f"mediation_end | resolution={session.resolution.value if session.resolution else '-'} | "
            f"turns={len(session.transcript)} | summary={'yes' if session.summary else 'no'}"
        )
