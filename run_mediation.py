from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List

from loguru import logger

from mediation.manager import MediationManager
from mediation.opening import render_opening_script
from mediation.proxy import get_chat_proxy
from mediation.retry import RetryPolicy, retry_policy_from_env
from mediation.roster import check_roster, participant_colors
from mediation.states import MessageKind, Resolution, SessionState
from mediation.store import get_transcript_store


HELP = "/who <이름>  화자 선택 | /end  대화 마무리 | /cancel  마무리 취소 | /restart  처음으로 | /quit  종료"
CANCEL_COMMANDS = ("0", "/cancel")


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run a student mediation session in the terminal")
    p.add_argument("--code", type=str, required=True, help="Class session code to file the conversation under")
    p.add_argument("--participant", "-p", action="append", default=[], help="Participant name (repeat 2-6 times)")
    p.add_argument("--proxy-url", type=str, default=None, help="Override MEDIATION_PROXY_URL")
    p.add_argument("--no-store", action="store_true", help="Do not save the conversation even if Supabase is configured")
    p.add_argument("--max-attempts", type=int, default=None, help="Attempts per proxy call when it reports overload (default: MEDIATION_MAX_ATTEMPTS or 3)")
    p.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    return p.parse_args()


async def ask(prompt: str) -> str:
    return await asyncio.to_thread(input, prompt)


def show_new_messages(manager: MediationManager, shown: int) -> int:
    colors = participant_colors(manager.session.participants)
    transcript = manager.transcript
    for msg in transcript[shown:]:
        if msg.kind is MessageKind.HUMAN:
            color = colors.get(msg.speaker, "white")
            # Markup only in the template; names and text go in as args
            template = "<" + color + ">[{}] {}</" + color + ">: {}\n"
            logger.opt(colors=True, raw=True).info(template, msg.sent_at, msg.speaker, msg.text)
        else:
            logger.opt(raw=True).info("[{}] 🌱 {}\n", msg.sent_at, msg.text)
    return len(transcript)


async def choose_resolution(manager: MediationManager) -> None:
    print("대화를 마무리할게요. 1) 갈등이 해결되었어요!  2) 아직 해결되지 않았어요  0 또는 /cancel) 계속하기")
    while manager.state is SessionState.CHOOSING_RESOLUTION:
        pick = (await ask("> ")).strip()
        if pick == "1":
            await manager.choose_resolution(Resolution.RESOLVED)
        elif pick == "2":
            await manager.choose_resolution(Resolution.UNRESOLVED)
        elif pick in CANCEL_COMMANDS:
            manager.cancel_end()


async def run_session(manager: MediationManager, participants: List[str], code: str) -> bool:
    """Run one session; returns True when the user asked to restart."""
    print(render_opening_script())
    print()
    start = asyncio.create_task(manager.start(participants, code))
    await ask("Enter 를 누르면 대화를 시작합니다... ")
    manager.acknowledge_opening()
    await start
    if manager.state is SessionState.FAILED:
        print(manager.session.error)
        return False

    if not manager.persistence_enabled:
        logger.info("Conversation saving is disabled for this session")
    print(HELP)
    shown = show_new_messages(manager, 0)
    while manager.state is SessionState.ACTIVE:
        who = manager.expected_speaker
        line = (await ask(f"{who or '(화자 선택 필요)'}> ")).strip()
        if line == "/quit":
            return False
        if line == "/restart":
            manager.restart()
            return True
        if line.startswith("/who"):
            name = line[len("/who"):].strip()
            if not manager.select_speaker(name):
                print(f"참여자 중에서 골라주세요: {', '.join(manager.session.participants)}")
            continue
        if line == "/end":
            if not manager.request_end():
                print("아직 대화가 충분하지 않아요.")
                continue
            await choose_resolution(manager)
            continue
        if line == "/cancel":
            print("마무리 중이 아니에요. 대화를 계속해주세요.")
            continue
        if not who:
            print("먼저 이름을 선택해주세요! (/who <이름>)")
            continue
        await manager.send(line)
        shown = show_new_messages(manager, shown)

    if manager.state is SessionState.ENDED:
        print("대화가 종료되었어요!")
        if manager.session.resolution is Resolution.UNRESOLVED:
            print("오늘 해결되지 않은 부분은 담임 선생님과 함께 더 이야기해보면 좋겠어요.")
        if manager.session.summary:
            print(manager.session.summary)
    return False


async def main() -> None:
    args = parse_args()
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO", colorize=True, format="{time:HH:mm:ss} | {level} | {message}")

    participants = [p.strip() for p in args.participant]
    problem = check_roster(participants)
    if problem:
        logger.error(f"Invalid participants: {problem}")
        sys.exit(2)

    store = None if args.no_store else get_transcript_store()
    if store is not None:
        check = await store.validate_code(args.code)
        if not check.valid:
            logger.error(check.error)
            sys.exit(2)
        logger.info(f"✅ {check.label} 연결됨")

    proxy = get_chat_proxy(args.proxy_url)
    policy = RetryPolicy(max_attempts=args.max_attempts) if args.max_attempts else retry_policy_from_env()
    manager = MediationManager(proxy, store=store, retry_policy=policy)
    while await run_session(manager, participants, args.code):
        pass
    await proxy.aclose()
    if store is not None:
        await store.aclose()


if __name__ == "__main__":
    asyncio.run(main())
