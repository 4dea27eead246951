"""Runtime settings for screenmate, read from the environment and ``.env.local``."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_LLM_URL = "https://api.openai.com"
DEFAULT_LLM_MODEL = "gpt-4o"


@dataclass
class Settings:
    """アプリケーション設定."""

    llm_url: str = DEFAULT_LLM_URL
    llm_model: str = DEFAULT_LLM_MODEL
    api_key: str | None = None
    data_dir: Path = REPO_ROOT / "data"
    request_timeout: float = 60.0
    memory_timeout: float = 0.5
    persona_timeout: float = 1.0
    clipboard_settle: float = 0.2
    capture_interval: float = 1.0
    transcribe_command: str = "python3 transcribe.py"
    transcribe_timeout: float = 30.0
    spotify_client_id: str | None = None
    spotify_client_secret: str | None = None
    spotify_redirect_uri: str = "http://127.0.0.1:3000/callback"

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got {raw!r}"
        raise ValueError(msg) from None


def load_local_env() -> None:
    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=True)


def load_settings() -> Settings:
    """環境変数から設定を構築する.

    APIキーが無くても起動は失敗しない（AI経路の初回利用時に401となる）。
    """
    load_local_env()
    return Settings(
        llm_url=(os.getenv("LLM_URL") or DEFAULT_LLM_URL).rstrip("/"),
        llm_model=os.getenv("LLM_MODEL") or DEFAULT_LLM_MODEL,
        api_key=os.getenv("OPENAI_API_KEY") or os.getenv("LLM_API_KEY") or None,
        data_dir=Path(os.getenv("SCREENMATE_DATA_DIR") or REPO_ROOT / "data"),
        request_timeout=_float_env("SCREENMATE_REQUEST_TIMEOUT", 60.0),
        memory_timeout=_float_env("SCREENMATE_MEMORY_TIMEOUT", 0.5),
        persona_timeout=_float_env("SCREENMATE_PERSONA_TIMEOUT", 1.0),
        clipboard_settle=_float_env("SCREENMATE_CLIPBOARD_SETTLE", 0.2),
        capture_interval=_float_env("SCREENMATE_CAPTURE_INTERVAL", 1.0),
        transcribe_command=os.getenv("SCREENMATE_TRANSCRIBE_CMD")
        or "python3 transcribe.py",
        transcribe_timeout=_float_env("SCREENMATE_TRANSCRIBE_TIMEOUT", 30.0),
        spotify_client_id=os.getenv("SPOTIFY_CLIENT_ID") or None,
        spotify_client_secret=os.getenv("SPOTIFY_CLIENT_SECRET") or None,
        spotify_redirect_uri=os.getenv("SPOTIFY_REDIRECT_URI")
        or "http://127.0.0.1:3000/callback",
    )
