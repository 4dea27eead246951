"""Capture Activity Gate.

Background capture runs on an asyncio task that ticks every ``interval``
seconds. While the user is active (a foreground request is in flight, or the
client pinned the flag) the task is cancelled and every tick that still slips
through is skipped, so no background frame is taken during an active window.
"""

import asyncio
import contextlib
from collections.abc import Iterator
from typing import Protocol

from screenmate.logger import get_logger
from screenmate.watchers.screen_capture import Frame

logger = get_logger("capture_gate")


class FrameProvider(Protocol):
    def capture_frame(self) -> Frame: ...


class CaptureActivityGate:
    """前面リクエスト中はバックグラウンドキャプチャを止める."""

    def __init__(self, provider: FrameProvider, interval: float = 1.0) -> None:
        self.provider = provider
        self.interval = interval
        self._foreground = 0
        self._pinned = False
        self._background_enabled = False
        self._task: asyncio.Task[None] | None = None
        self._last_frame: Frame | None = None
        self.background_captures = 0
        self.skipped_ticks = 0

    @property
    def is_user_active(self) -> bool:
        return self._pinned or self._foreground > 0

    @property
    def is_background_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # --- activity ---

    def set_active(self, active: bool) -> None:
        """クライアントからの明示的な指定. Trueの場合は戻る前にループを止める."""
        self._pinned = active
        self._sync()

    def begin_foreground(self) -> None:
        self._foreground += 1
        self._sync()

    def end_foreground(self) -> None:
        self._foreground = max(0, self._foreground - 1)
        self._sync()

    @contextlib.contextmanager
    def foreground(self) -> Iterator[None]:
        self.begin_foreground()
        try:
            yield
        finally:
            self.end_foreground()

    def _sync(self) -> None:
        if self.is_user_active:
            self._cancel_loop()
        elif self._background_enabled and not self.is_background_running:
            self._start_loop()

    def _start_loop(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, background capture not resumed")
            return
        self._task = loop.create_task(self._loop())

    def _cancel_loop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    # --- background ---

    def start_background(self) -> None:
        self._background_enabled = True
        self._sync()
        logger.info("Background capture enabled | interval=%.2fs", self.interval)

    async def stop_background(self) -> None:
        self._background_enabled = False
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if self.is_user_active:
                self.skipped_ticks += 1
                continue
            try:
                frame = await asyncio.to_thread(self.provider.capture_frame)
            except Exception:
                logger.exception("Background capture failed")
                continue
            # 撮影中にアクティブになった場合は破棄する
            if self.is_user_active:
                self.skipped_ticks += 1
                continue
            self._last_frame = frame
            self.background_captures += 1

    # --- foreground ---

    async def capture_once(self, force: bool = True) -> Frame:
        """前面用のキャプチャ. forceならキャッシュを捨てて撮り直す."""
        if force:
            self._last_frame = None
        elif self._last_frame is not None:
            return self._last_frame
        frame = await asyncio.to_thread(self.provider.capture_frame)
        self._last_frame = frame
        return frame

    def get_last_frame(self) -> Frame | None:
        return self._last_frame
