from __future__ import annotations

import asyncio

import run_mediation
from mediation.manager import MediationManager
from mediation.states import SessionState
from tests.conftest import FakeProxy


def _script_input(monkeypatch, lines):
    queue = list(lines)

    async def fake_ask(prompt: str) -> str:
        # input() runs in a thread in the real runner, so other tasks get a turn
        await asyncio.sleep(0)
        return queue.pop(0)

    monkeypatch.setattr(run_mediation, "ask", fake_ask)
    return queue


def test_cancel_in_resolution_prompt_returns_to_conversation(monkeypatch, policy) -> None:
    proxy = FakeProxy(start=["안녕 [다음 화자: A]"], messages=["그렇구나"])
    manager = MediationManager(proxy, retry_policy=policy)
    queue = _script_input(monkeypatch, ["/cancel"])

    async def _run() -> None:
        assert await manager.start(["A", "B"], "XYZ1")
        manager.acknowledge_opening()
        await manager.send("속상했어요")
        assert manager.request_end()
        await run_mediation.choose_resolution(manager)

    asyncio.run(_run())
    assert queue == []
    assert manager.state is SessionState.ACTIVE
    assert manager.session.resolution is None


def test_cancel_command_in_session_loop(monkeypatch, policy, capsys) -> None:
    proxy = FakeProxy(start=["안녕 [다음 화자: A]"], messages=["B는 어때?"])
    manager = MediationManager(proxy, retry_policy=policy)
    queue = _script_input(monkeypatch, ["", "/cancel", "제가 먼저 말할게요", "/end", "/cancel", "/quit"])

    restart = asyncio.run(run_mediation.run_session(manager, ["A", "B"], "XYZ1"))

    assert restart is False
    assert queue == []
    assert manager.state is SessionState.ACTIVE
    assert [c["action"] for c in proxy.calls] == ["start", "message"]
    assert [m.text for m in manager.transcript] == ["안녕", "제가 먼저 말할게요", "B는 어때?"]
    out = capsys.readouterr().out
    assert "/cancel" in out
    assert "마무리 중이 아니에요" in out
