#!/usr/bin/env python3
import os
import subprocess
import sys
from pathlib import Path

from utils import (
    API_HOST,
    API_PID_FILE,
    API_PORT,
    LOG_DIR,
    REPO_ROOT,
    load_local_env,
    logger,
    wait_http_ok,
)


def background_popen(
    cmd: list[str], stdout_path: Path, stderr_path: Path, env: dict[str, str]
) -> subprocess.Popen[bytes]:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    with (
        stdout_path.open("ab", buffering=0) as stdout_f,
        stderr_path.open("ab", buffering=0) as stderr_f,
    ):
        return subprocess.Popen(  # noqa: S603
            cmd,
            cwd=str(REPO_ROOT),
            stdout=stdout_f,
            stderr=stderr_f,
            env=env,
            start_new_session=True,
        )


def start_api(env: dict[str, str], reload: bool = False) -> int:
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "screenmate.api.main:app",
        "--port",
        str(API_PORT),
        "--host",
        API_HOST,
    ]
    if reload:
        cmd.append("--reload")
    proc = background_popen(
        cmd,
        stdout_path=LOG_DIR / "api.log",
        stderr_path=LOG_DIR / "api.err.log",
        env=env,
    )
    API_PID_FILE.write_text(str(proc.pid), encoding="ascii")
    if wait_http_ok(f"http://{API_HOST}:{API_PORT}/health"):
        logger.info(f"API Server: http://{API_HOST}:{API_PORT} が起動 (PID {proc.pid})")
    else:
        logger.warning("FastAPI が応答しません ./log/ 以下を見て")
    return proc.pid


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("================ Screenmate Starting up... ===============")

    load_local_env()
    if not os.environ.get("OPENAI_API_KEY") and not os.environ.get("LLM_API_KEY"):
        logger.warning("OPENAI_API_KEY が未設定です. AI応答は401になります")

    start_api(os.environ.copy(), reload="--reload" in sys.argv)

    logger.info("\n============== Screenmate is now running! =================\n")
    logger.info("\nLogs: ./log/api.log, ./log/screenmate.log")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
