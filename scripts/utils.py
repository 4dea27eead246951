import logging
from pathlib import Path
from typing import cast

import requests
from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent
LOG_DIR = REPO_ROOT / "log"
API_PID_FILE = REPO_ROOT / "api_server.pid"

API_HOST = "127.0.0.1"
API_PORT = 3001

HTTP_OK_MIN = 200
HTTP_OK_MAX = 400

logging.basicConfig(level=logging.INFO, format="%(message)s")
logger = logging.getLogger("screenmate.scripts")


def http_ok(url: str, timeout: float = 2.5) -> bool:
    if not url.lower().startswith(("http://", "https://")):
        return False
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException:
        return False
    else:
        status = cast("int", getattr(resp, "status_code", 0))
        return HTTP_OK_MIN <= status < HTTP_OK_MAX


def wait_http_ok(url: str, attempts: int = 30, interval: float = 1.0) -> bool:
    """起動直後は接続できないので、応答するまで繰り返し確認する"""
    import time

    for _ in range(attempts):
        if http_ok(url):
            return True
        time.sleep(interval)
    return False


def load_local_env() -> None:
    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=True)
