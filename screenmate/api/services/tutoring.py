"""Interactive tutoring sessions (step-by-step quiz walkthroughs).

Sessions live in memory only. Every mutating operation is idempotent so a
client retry never double-advances or double-ends a session.
"""

import itertools
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from screenmate.api.errors import ScreenmateError
from screenmate.logger import get_logger

logger = get_logger("tutoring")

TOTAL_STEPS = 10
ACTIVE_WINDOW_SECONDS = 30 * 60
CLEANUP_AFTER_SECONDS = 60 * 60

_FEEDBACK = re.compile(r"\*\*AI Feedback:\*\*(.*?)(?=\*\*Next Step:\*\*)", re.DOTALL)
_NEXT_STEP = re.compile(r"\*\*Next Step:\*\*(.*)", re.DOTALL)


class SessionNotFound(ScreenmateError):
    status_code = 404

    def __init__(self, session_id: str) -> None:
        super().__init__("Session not found")
        self.session_id = session_id


@dataclass
class TutoringSession:
    id: str
    user_id: str
    question_type: str
    context: str
    start_time: float
    last_activity: float
    current_step: int = 1
    total_steps: int = TOTAL_STEPS
    user_responses: list[dict[str, Any]] = field(default_factory=list)
    checkpoints: list[dict[str, Any]] = field(default_factory=list)
    end_time: float | None = None
    status: str = "active"

    def understanding(self) -> float:
        if not self.checkpoints:
            return 0.0
        levels = [cp["level"] for cp in self.checkpoints]
        return round(sum(levels) / len(levels), 2)


class TutoringService:
    """チュータリングセッションの管理."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._sessions: dict[str, TutoringSession] = {}
        self._counter = itertools.count()

    def create_session(
        self,
        user_id: str,
        question_type: str = "general",
        context: str = "",
        session_id: str | None = None,
    ) -> TutoringSession:
        """セッションを作成する. 既存のIDが渡された場合はそのセッションを返す."""
        if session_id and session_id in self._sessions:
            return self._sessions[session_id]
        now = self._clock()
        sid = session_id or f"tutoring_{int(now * 1000)}_{next(self._counter)}"
        session = TutoringSession(
            id=sid,
            user_id=user_id,
            question_type=question_type,
            context=context,
            start_time=now,
            last_activity=now,
        )
        self._sessions[sid] = session
        logger.info("Tutoring session created: %s (%s)", sid, question_type)
        return session

    def get(self, session_id: str) -> TutoringSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def add_response(
        self, session_id: str, step: int, response: str, understanding_level: float = 0.5
    ) -> TutoringSession:
        session = self.get(session_id)
        now = self._clock()
        session.user_responses.append(
            {
                "step": step,
                "response": response,
                "understandingLevel": understanding_level,
                "timestamp": now,
            }
        )
        session.checkpoints.append({"step": step, "level": understanding_level, "timestamp": now})
        session.last_activity = now
        return session

    def advance(self, session_id: str, from_step: int | None = None) -> int | None:
        """次のステップへ進める.

        ``from_step`` が現在より前なら既に進めた後の再送とみなし、現在の
        ステップをそのまま返す。最終ステップでは ``None`` を返す。
        """
        session = self.get(session_id)
        if from_step is not None and from_step < session.current_step:
            return session.current_step
        if session.current_step >= session.total_steps:
            return None
        session.current_step += 1
        session.last_activity = self._clock()
        return session.current_step

    def end(self, session_id: str) -> TutoringSession:
        session = self.get(session_id)
        if session.status != "completed":
            session.status = "completed"
            session.end_time = self._clock()
            logger.info("Tutoring session ended: %s", session_id)
        return session

    def progress(self, session_id: str) -> dict[str, Any]:
        session = self.get(session_id)
        return {
            "currentStep": session.current_step,
            "totalSteps": session.total_steps,
            "progress": session.current_step / session.total_steps * 100,
            "understandingLevel": session.understanding(),
        }

    def is_active(self, session: TutoringSession) -> bool:
        recent = self._clock() - session.last_activity < ACTIVE_WINDOW_SECONDS
        return recent and session.status == "active"

    def summary(self, session_id: str) -> dict[str, Any]:
        session = self.get(session_id)
        until = session.end_time if session.end_time is not None else self._clock()
        return {
            "id": session.id,
            "questionType": session.question_type,
            "totalSteps": session.total_steps,
            "completedSteps": session.current_step,
            "understandingLevel": session.understanding(),
            "duration": (until - session.start_time) / 60,
            "userResponses": len(session.user_responses),
            "status": session.status,
        }

    def user_sessions(self, user_id: str) -> list[dict[str, Any]]:
        return [
            {"sessionId": sid, **self.summary(sid)}
            for sid, session in self._sessions.items()
            if session.user_id == user_id and self.is_active(session)
        ]

    def cleanup(self) -> int:
        """1時間以上操作のないセッションを削除し、削除件数を返す."""
        cutoff = self._clock() - CLEANUP_AFTER_SECONDS
        stale = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info("Removed %d stale tutoring sessions", len(stale))
        return len(stale)


def parse_quiz_step_response(text: str) -> dict[str, str]:
    """``**AI Feedback:**`` / ``**Next Step:**`` 形式の応答を分解する."""
    feedback = _FEEDBACK.search(text)
    next_step = _NEXT_STEP.search(text)
    return {
        "aiFeedback": feedback.group(1).strip() if feedback else "",
        "nextStepMarkdown": next_step.group(1).strip() if next_step else "",
    }
