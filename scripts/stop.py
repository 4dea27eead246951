#!/usr/bin/env python3
import contextlib
import os
from pathlib import Path

import psutil
from utils import API_PID_FILE, REPO_ROOT, logger


def stop_by_pid_file(path: Path) -> bool:
    if not path.exists():
        logger.info("PIDファイルがありません")
        return False
    pid = int(path.read_text(encoding="ascii"))
    stopped = False
    try:
        proc = psutil.Process(pid)
        for child in proc.children(recursive=True):
            child.terminate()
        proc.terminate()
        stopped = True
    except psutil.NoSuchProcess:
        logger.info("すでに停止済みです")
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)
    return stopped


def main() -> int:
    os.chdir(REPO_ROOT)

    logger.info("============== Screenmate 停止中 ================")

    if stop_by_pid_file(API_PID_FILE):
        logger.info("API Server を停止しました")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
