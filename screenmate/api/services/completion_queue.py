"""Post-completion side channel: persist finished conversations off the response path."""

import asyncio
import contextlib
import time
from dataclasses import dataclass, field
from typing import Any

from screenmate.logger import get_logger

logger = get_logger("completion_queue")


@dataclass(frozen=True)
class CompletionEvent:
    """ストリーミング完了イベント."""

    query: str
    response: str
    capture_ref: str | None = None
    created_at: float = field(default_factory=time.time)


class PostCompletionQueue:
    """完了イベントを受け取り、記憶とペルソナの更新を別タスクで行う.

    ここでの失敗はログに残すだけで、レスポンスには影響させない。
    """

    def __init__(self, memory: Any = None, persona: Any = None, maxsize: int = 1000) -> None:
        self.memory = memory
        self.persona = persona
        self._queue: asyncio.Queue[CompletionEvent] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task[None] | None = None
        self.processed = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None

    def submit(self, event: CompletionEvent) -> bool:
        """イベントを積む. 待機はしない."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Completion queue full, dropping event for %r", event.query[:40])
            return False
        self.start()
        return True

    async def join(self) -> None:
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.handle(event)
            finally:
                self._queue.task_done()

    async def handle(self, event: CompletionEvent) -> None:
        if self.memory is not None:
            try:
                await asyncio.to_thread(
                    self.memory.add_conversation, event.query, event.response, event.capture_ref
                )
            except Exception:
                logger.exception("Storing conversation failed")
        if self.persona is not None:
            try:
                insights = await asyncio.to_thread(
                    self.persona.extract_user_info, event.query, event.response
                )
                if insights:
                    logger.info("Persona insights extracted: %d", len(insights))
            except Exception:
                logger.exception("Persona extraction failed")
        self.processed += 1
