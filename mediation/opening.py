from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from loguru import logger

from .env import load_environment


load_environment()

_DEFAULT_OPENING_PROMPT = (
    "대화 모임이 시작되었습니다. 학생들에게 이미 규칙 안내가 완료되었습니다.\n\n"
    "이제 따뜻하게 인사하고, \"무슨 일이 있었는지 편하게 이야기해줄래?\" 라고 질문하며 대화를 시작하세요.\n"
    "짧고 친근하게 시작해주세요."
)


def _load_opening_prompt() -> str:
    # Allow override via PROMPTS_DIR; else use local prompts/opening_prompt.md
    base_dir = os.getenv("PROMPTS_DIR")
    if base_dir:
        path = Path(base_dir) / "opening_prompt.md"
    else:
        path = Path(__file__).resolve().parents[1] / "prompts" / "opening_prompt.md"
    try:
        text = path.read_text(encoding="utf-8").strip()
    except OSError as e:
        logger.warning(f"Falling back to default opening prompt: {e}")
        return _DEFAULT_OPENING_PROMPT
    return text or _DEFAULT_OPENING_PROMPT


# Seeded as the first (human, speaker="system") history turn; the proxy holds the same text.
OPENING_PROMPT = _load_opening_prompt()


@dataclass(frozen=True)
class Rule:
    title: str
    desc: str


OPENING_INTRO = (
    "저의 역할은 서로의 하고 싶은 말을 충분히 하고, 서로 그 말을 귀 기울여 듣도록 이끄는 것입니다. "
    "그러기 위해서 저는 중립을 지킬 거예요. 무엇보다 중요한 것은 이 자리에 참여한 한 사람 한 사람의 의지입니다."
)

OPENING_RULES: Tuple[Rule, ...] = (
    Rule(
        "첫째, 적극적으로 경청하고 참여합니다.",
        "상대가 말할 때는 끼어들지 않고 자신의 순서를 기다리거나 발언권을 얻고 말합니다.",
    ),
    Rule(
        "둘째, 비방이나 욕설 등 거친 언어를 자제합니다.",
        "서로의 진심을 듣는데 방해가 되는 심한 비방이나 욕설, 언성을 높이는 일을 자제하고 선생님의 안내를 따릅니다.",
    ),
    Rule(
        "셋째, 비밀을 지킵니다.",
        "이 자리에서 말한 내용, 말하고 들으면서 알게 된 것에 대해 다른 사람들과 이야기하지 않습니다.",
    ),
    Rule(
        "넷째, 모임 중에 자리를 떠나지 않습니다.",
        "개인의 특별한 상황이나 긴급한 용무가 있는 경우 선생님께 도움을 요청합니다.",
    ),
    Rule(
        "다섯째, 본 사안에만 집중합니다.",
        "본 사안과 관련이 없는 이야기를 하지 않습니다.",
    ),
)


def render_opening_script() -> str:
    lines = ["관계 회복 대화 모임", "", OPENING_INTRO, "", "대화 규칙"]
    for rule in OPENING_RULES:
        lines.append(f"  - {rule.title}")
        lines.append(f"      {rule.desc}")
    lines.extend(["", "규칙을 잘 지킬 수 있겠죠? 😊"])
    return "\n".join(lines)
