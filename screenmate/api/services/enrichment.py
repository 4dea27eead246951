"""System prompt assembly with timeout-bounded enrichment sources.

Order of sections is fixed: base + mode instructions, memory, persona, resume.
Memory and persona are fetched concurrently; a source that is slow or fails is
left out of the prompt instead of failing the request.
"""

import asyncio
from collections.abc import Callable
from typing import Any, Protocol

from screenmate.api.services.prompts import PromptMode, system_prompt
from screenmate.logger import get_logger
from screenmate.model.models import ResumeProfile

logger = get_logger("enrichment")

MEMORY_HEADER = "PREVIOUS CONVERSATION HISTORY:"
PERSONA_HEADER = "PERSONALIZED LEARNING CONTEXT:"
RESUME_HEADER = "USER RESUME INFORMATION:"
NOT_SPECIFIED = "Not specified"

PERSONA_GUIDANCE = (
    "Use this information to tailor your responses to the user's learning style, "
    "confidence level, and preferences. Adapt your teaching approach based on their "
    "anxiety level and preferred feedback style."
)
MEMORY_GUIDANCE = (
    "Use this conversation history to provide more personalized and contextual "
    "responses. Reference previous conversations when relevant."
)


class MemorySource(Protocol):
    def generate_memory_context(self, query: str = "") -> Any: ...


class PersonaSource(Protocol):
    def generate_learning_context(self) -> Any: ...


def _join(items: list[Any]) -> str:
    return ", ".join(str(item) for item in items) if items else NOT_SPECIFIED


def format_resume(resume: ResumeProfile) -> str:
    """履歴書プロフィールをプロンプト用テキストにする."""
    lines = [
        RESUME_HEADER,
        f"Name: {resume.name or NOT_SPECIFIED}",
        f"University: {resume.university or NOT_SPECIFIED}",
        f"Major: {resume.major or NOT_SPECIFIED}",
        f"Class Year: {resume.class_year or NOT_SPECIFIED}",
        f"Graduation Year: {resume.graduation_year or NOT_SPECIFIED}",
        f"Skills: {_join(resume.skills)}",
        f"Relevant Experience: {_join(resume.relevant_experience)}",
    ]
    optional = (
        ("Leadership Roles", resume.leadership_roles),
        ("Projects", resume.projects),
        ("Achievements", resume.achievements),
        ("Extracurriculars", resume.extracurriculars),
    )
    lines.extend(f"{label}: {_join(values)}" for label, values in optional if values)
    lines.append(
        "Use this resume information when the user asks about their background, "
        "applications, or career decisions."
    )
    return "\n".join(lines)


class ContextEnrichmentPipeline:
    """システムプロンプトを組み立てる."""

    def __init__(
        self,
        memory: MemorySource | None = None,
        persona: PersonaSource | None = None,
        memory_timeout: float = 0.5,
        persona_timeout: float = 1.0,
    ) -> None:
        self.memory = memory
        self.persona = persona
        self.memory_timeout = memory_timeout
        self.persona_timeout = persona_timeout

    async def _fetch(
        self, name: str, fn: Callable[..., Any] | None, timeout: float, *args: Any
    ) -> str:
        if fn is None:
            return ""
        if asyncio.iscoroutinefunction(fn):
            pending = fn(*args)
        else:
            pending = asyncio.to_thread(fn, *args)
        try:
            result = await asyncio.wait_for(pending, timeout)
        except asyncio.TimeoutError:
            logger.info("Enrichment source %s exceeded %.2fs, omitted", name, timeout)
            return ""
        except Exception:
            logger.exception("Enrichment source %s failed, omitted", name)
            return ""
        return (result or "").strip()

    async def build_prompt(
        self,
        mode: PromptMode,
        query: str = "",
        resume: ResumeProfile | None = None,
        *,
        base: str | None = None,
        include_history: bool = True,
    ) -> str:
        """システムプロンプトを構築する. 例外は送出しない.

        Args:
            mode: プロンプトのモード（regular / active / quiz）
            query: ユーザーの入力（記憶の検索に使う）
            resume: 履歴書プロフィール（あれば末尾に追加）
            base: モード別テンプレートの代わりに使う基本プロンプト
            include_history: 記憶・ペルソナを含めるか

        """
        sections = [base or system_prompt(mode)]

        if include_history:
            memory_text, persona_text = await asyncio.gather(
                self._fetch(
                    "memory",
                    getattr(self.memory, "generate_memory_context", None),
                    self.memory_timeout,
                    query,
                ),
                self._fetch(
                    "persona",
                    getattr(self.persona, "generate_learning_context", None),
                    self.persona_timeout,
                ),
            )
            if memory_text:
                sections.append(f"{MEMORY_HEADER}\n{memory_text}\n\n{MEMORY_GUIDANCE}")
            if persona_text:
                sections.append(f"{PERSONA_HEADER}\n{persona_text}\n\n{PERSONA_GUIDANCE}")

        if resume is not None:
            sections.append(format_resume(resume))

        return "\n\n".join(sections)
