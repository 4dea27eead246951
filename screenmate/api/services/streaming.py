"""Server-sent event streaming of model output.

One ``StreamSession`` per response moves through
``IDLE -> STREAMING -> {REJECTED | COMPLETED | ERRORED} -> CLOSED``.
Whatever happens, the sink receives exactly one ``data: [DONE]`` frame and is
closed exactly once.
"""

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from screenmate.api.errors import ScreenmateError
from screenmate.api.services.completion_queue import CompletionEvent, PostCompletionQueue
from screenmate.api.services.llm import CompletionParams, LLMService
from screenmate.api.services.text_tools import normalize_math
from screenmate.logger import get_logger

logger = get_logger("streaming")

DONE_FRAME = "data: [DONE]\n\n"
REJECTION_WINDOW = 100
TIMEOUT_MESSAGE = "Request timed out. Please try again."
UNEXPECTED_MESSAGE = "Something went wrong while generating the response. Please try again."

REFUSAL_PHRASES = (
    "i'm sorry i can't assist",
    "i'm sorry, i can't assist",
    "i'm sorry, but i can't assist",
    "i cannot assist",
    "i can't assist with that",
    "i'm unable to help",
)

FALLBACK_BODIES = {
    "email": (
        "Here's a draft reply you can use for this email:\n\n"
        "Hi,\n\n"
        "Thank you for your message. I appreciate your insights and will get back "
        "to you with more details soon.\n\n"
        "Best,\n[Your Name]"
    ),
    "continuation": (
        "I can see your document and I'll continue writing from where you left off. "
        "Place the cursor at the end of the text you want continued and ask again, "
        "and I'll pick the thread back up in the same style and tone."
    ),
    "default": (
        "I couldn't put together a full answer for this one. Try rephrasing the "
        "question or capturing the part of the screen you want help with, and I'll "
        "take another look."
    ),
}

RejectionDetector = Callable[[str], bool]


def default_rejection_detector(text: str) -> bool:
    """モデレーションによる拒否文かどうか（短い応答のみ対象）."""
    normalized = text.lower().replace(chr(0x2019), "'")
    return any(phrase in normalized for phrase in REFUSAL_PHRASES)


def content_frame(text: str) -> str:
    return f"data: {json.dumps({'content': text})}\n\n"


def error_frame(message: str) -> str:
    return f"data: {json.dumps({'error': message})}\n\n"


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    REJECTED = "rejected"
    COMPLETED = "completed"
    ERRORED = "errored"
    CLOSED = "closed"


class EventSink(Protocol):
    async def send(self, frame: str) -> None: ...

    async def close(self) -> None: ...


class QueueEventSink:
    """StreamingResponseに渡すためのキュー型シンク."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, frame: str) -> None:
        await self._queue.put(frame)

    async def close(self) -> None:
        await self._queue.put(None)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


@dataclass
class StreamRequest:
    system_prompt: str
    user_prompt: str
    image_url: str | None = None
    params: CompletionParams = field(default_factory=CompletionParams)
    query: str = ""
    fallback_kind: str = "default"
    record: bool = True
    capture_ref: str | None = None
    template: str = ""


@dataclass
class StreamSession:
    accumulated_text: str = ""
    state: StreamState = StreamState.IDLE
    outcome: StreamState | None = None
    is_rejected: bool = False
    is_closed: bool = False
    frames_sent: int = 0
    error: str | None = None


class StreamingResponseManager:
    """モデルのストリームをSSEとしてクライアントへ中継する."""

    def __init__(
        self,
        llm: LLMService,
        completion_queue: PostCompletionQueue | None = None,
        rejection_detector: RejectionDetector = default_rejection_detector,
        rejection_window: int = REJECTION_WINDOW,
        timeout: float = 60.0,
        normalizer: Callable[[str], str] = normalize_math,
    ) -> None:
        self.llm = llm
        self.completion_queue = completion_queue
        self.rejection_detector = rejection_detector
        self.rejection_window = rejection_window
        self.timeout = timeout
        self.normalizer = normalizer

    async def run(self, request: StreamRequest, sink: EventSink) -> StreamSession:
        """1レスポンス分のストリームを最後まで処理する. 例外は送出しない."""
        session = StreamSession(state=StreamState.STREAMING)
        try:
            await asyncio.wait_for(self._consume(request, session, sink), self.timeout)
        except asyncio.TimeoutError:
            await self._fail(session, sink, TIMEOUT_MESSAGE)
        except ScreenmateError as e:
            await self._fail(session, sink, e.message)
        except Exception:
            logger.exception("Stream failed")
            await self._fail(session, sink, UNEXPECTED_MESSAGE)
        finally:
            await self._close(session, sink)

        logger.info(
            "Stream closed | outcome=%s chars=%d frames=%d",
            session.outcome.value if session.outcome else None,
            len(session.accumulated_text),
            session.frames_sent,
        )
        if session.outcome is StreamState.COMPLETED and request.record:
            self._emit_completion(request, session)
        return session

    async def emit(
        self, sink: EventSink, content: str | None = None, error: str | None = None
    ) -> StreamSession:
        """モデルを呼ばずに1件だけ送って閉じる."""
        session = StreamSession(state=StreamState.STREAMING)
        try:
            if error is not None:
                await self._fail(session, sink, error)
            else:
                await self._send(session, sink, content_frame(content or ""))
                session.accumulated_text = content or ""
                session.outcome = StreamState.COMPLETED
        finally:
            await self._close(session, sink)
        return session

    async def _consume(
        self, request: StreamRequest, session: StreamSession, sink: EventSink
    ) -> None:
        messages = self.llm.build_messages(
            request.system_prompt, request.user_prompt, request.image_url
        )
        # 拒否判定の窓を抜けるまでは送らずに保持する
        held: list[str] = []
        window_open = True

        async for chunk in self.llm.stream_chat(messages, request.params):
            if not chunk:
                continue
            session.accumulated_text += chunk

            if window_open and len(session.accumulated_text) < self.rejection_window:
                if self.rejection_detector(session.accumulated_text):
                    await self._reject(request, session, sink)
                    return
                held.append(chunk)
                continue

            if window_open:
                window_open = False
                for pending in held:
                    await self._forward(session, sink, pending)
                held.clear()
            await self._forward(session, sink, chunk)

        for pending in held:
            await self._forward(session, sink, pending)
        session.outcome = StreamState.COMPLETED
        session.state = StreamState.COMPLETED

    async def _forward(self, session: StreamSession, sink: EventSink, chunk: str) -> None:
        await self._send(session, sink, content_frame(self.normalizer(chunk)))

    async def _reject(
        self, request: StreamRequest, session: StreamSession, sink: EventSink
    ) -> None:
        logger.warning("Refusal detected, substituting %s fallback", request.fallback_kind)
        fallback = FALLBACK_BODIES.get(request.fallback_kind, FALLBACK_BODIES["default"])
        session.is_rejected = True
        session.state = StreamState.REJECTED
        session.outcome = StreamState.REJECTED
        session.accumulated_text = fallback
        await self._send(session, sink, content_frame(fallback))

    async def _fail(self, session: StreamSession, sink: EventSink, message: str) -> None:
        logger.error("Stream errored: %s", message)
        session.state = StreamState.ERRORED
        session.outcome = StreamState.ERRORED
        session.error = message
        try:
            await self._send(session, sink, error_frame(message))
        except Exception:
            logger.exception("Could not deliver error frame")

    async def _send(self, session: StreamSession, sink: EventSink, frame: str) -> None:
        if session.is_closed:
            return
        await sink.send(frame)
        session.frames_sent += 1

    async def _close(self, session: StreamSession, sink: EventSink) -> None:
        if session.is_closed:
            return
        try:
            await sink.send(DONE_FRAME)
        except Exception:
            logger.exception("Could not deliver terminal frame")
        finally:
            session.is_closed = True
            session.state = StreamState.CLOSED
            await sink.close()

    def _emit_completion(self, request: StreamRequest, session: StreamSession) -> None:
        if self.completion_queue is None:
            return
        try:
            self.completion_queue.submit(
                CompletionEvent(
                    query=request.query,
                    response=session.accumulated_text,
                    capture_ref=request.capture_ref,
                )
            )
        except Exception:
            logger.exception("Could not enqueue completion event")
