from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


def load_environment() -> None:
    # Local .env next to the project first, then the working directory
    here = Path(__file__).resolve().parents[1]
    for env_path in (here / ".env", Path.cwd() / ".env"):
        if env_path.is_file():
            load_dotenv(dotenv_path=str(env_path), override=False)
            return
    load_dotenv()
