"""OS automation: subprocess runner, clipboard staging and fallback strategies."""

import asyncio
import contextlib
import os
import tempfile
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

import psutil

from screenmate.api.errors import AutomationFailure
from screenmate.logger import get_logger

logger = get_logger("automation")

T = TypeVar("T")

MAX_ATTEMPTS = 2
EXIT_NOT_FOUND = 127
EXIT_TIMEOUT = -1


@dataclass
class ProcessOutcome:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def check(self, action: str) -> "ProcessOutcome":
        """失敗していればAutomationFailureを送出する."""
        if not self.ok:
            detail = self.stderr.strip() or f"exit code {self.exit_code}"
            msg = f"{action} failed: {detail}"
            raise AutomationFailure(msg)
        return self


class AutomationProvider:
    """osascript / open / pbcopy などをサブプロセスとして実行する."""

    def __init__(self, timeout: float = 15.0) -> None:
        self.timeout = timeout

    async def run_command(
        self,
        argv: Sequence[str],
        stdin_path: str | None = None,
        timeout: float | None = None,
    ) -> ProcessOutcome:
        """コマンドを実行する. 例外は投げずに終了コードで返す."""
        stdin_file = open(stdin_path, "rb") if stdin_path else None  # noqa: SIM115
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=stdin_file or asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning("Command not runnable: %s (%s)", argv[0], e)
            return ProcessOutcome(exit_code=EXIT_NOT_FOUND, stderr=str(e))
        finally:
            if stdin_file is not None:
                stdin_file.close()

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(), timeout or self.timeout
            )
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            logger.warning("Command timed out: %s", argv[0])
            return ProcessOutcome(exit_code=EXIT_TIMEOUT, stderr="timed out")

        return ProcessOutcome(
            exit_code=proc.returncode if proc.returncode is not None else EXIT_TIMEOUT,
            stdout=stdout.decode(errors="ignore"),
            stderr=stderr.decode(errors="ignore"),
        )

    async def run_script(self, source: str, timeout: float | None = None) -> ProcessOutcome:
        """AppleScriptを実行する."""
        return await self.run_command(["osascript", "-e", source], timeout=timeout)

    async def open_url(self, url: str) -> ProcessOutcome:
        return await self.run_command(["open", url])

    async def open_application(self, name: str) -> ProcessOutcome:
        return await self.run_command(["open", "-a", name])

    def is_app_running(self, name: str) -> bool:
        target = name.lower()
        for proc in psutil.process_iter(["name"]):
            proc_name = (proc.info.get("name") or "").lower()
            if proc_name == target or proc_name.startswith(target):
                return True
        return False


class Clipboard:
    """pbcopy/pbpasteによるクリップボード操作.

    ``staged()`` は書き込み → 待機 → 検証 を行い、ブロック内で貼り付けを実行する。
    ロックを保持している間は別の書き込みが割り込まない。
    """

    def __init__(self, automation: AutomationProvider, settle_delay: float = 0.2) -> None:
        self.automation = automation
        self.settle_delay = settle_delay
        self._lock = asyncio.Lock()

    async def read(self) -> str | None:
        outcome = await self.automation.run_command(["pbpaste"])
        return outcome.stdout if outcome.ok else None

    async def _copy_file(self, path: str) -> None:
        outcome = await self.automation.run_command(["pbcopy"], stdin_path=path)
        outcome.check("Copying to clipboard")

    @contextlib.asynccontextmanager
    async def staged(self, text: str) -> AsyncIterator[bool]:
        """クリップボードにtextを置いた状態でブロックを実行する.

        Yields:
            bool: 読み戻しで内容が一致したか（検証不能ならFalse）

        """
        async with self._lock:
            fd, path = tempfile.mkstemp(prefix="screenmate_", suffix=".txt")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                await self._copy_file(path)
                await asyncio.sleep(self.settle_delay)
                current = await self.read()
                verified = current is not None and current.strip() == text.strip()
                if not verified:
                    logger.warning("Clipboard verification failed, continuing")
                yield verified
            finally:
                with contextlib.suppress(OSError):
                    os.unlink(path)

    async def write(self, text: str) -> bool:
        async with self.staged(text) as verified:
            return verified


@dataclass
class FallbackOutcome(Generic[T]):
    value: T
    strategy: str
    failures: list[tuple[str, str]] = field(default_factory=list)

    @property
    def used_fallback(self) -> bool:
        return bool(self.failures)


async def attempt_in_order(
    strategies: Sequence[tuple[str, Callable[[], Awaitable[T]]]],
) -> FallbackOutcome[T]:
    """ストラテジーを順に試し、最初に成功したものを返す.

    2つ目は1つ目の失敗を確認してから実行する。全て失敗したら
    AutomationFailure（失敗一覧付き）を送出する。
    """
    if not strategies or len(strategies) > MAX_ATTEMPTS:
        msg = f"expected 1 to {MAX_ATTEMPTS} strategies, got {len(strategies)}"
        raise ValueError(msg)

    failures: list[tuple[str, str]] = []
    for name, attempt in strategies:
        try:
            value = await attempt()
        except Exception as e:  # noqa: BLE001
            logger.warning("Strategy %s failed: %s", name, e)
            failures.append((name, str(e)))
            continue
        if failures:
            logger.info("Fallback strategy %s succeeded", name)
        return FallbackOutcome(value=value, strategy=name, failures=failures)

    summary = "; ".join(f"{name}: {error}" for name, error in failures)
    msg = f"All automation strategies failed ({summary})"
    raise AutomationFailure(msg, failures)
