import asyncio
from unittest.mock import Mock

import pytest

from screenmate.api.services.enrichment import (
    MEMORY_HEADER,
    PERSONA_HEADER,
    RESUME_HEADER,
    ContextEnrichmentPipeline,
    format_resume,
)
from screenmate.api.services.prompts import PromptMode, system_prompt
from screenmate.model.models import ResumeProfile

RESUME = ResumeProfile.model_validate(
    {"name": "Aiko", "university": "Keio", "classYear": 2026, "skills": ["Python", "SQL"]}
)


class SlowMemory:
    async def generate_memory_context(self, query=""):
        await asyncio.sleep(1.0)
        return "too late"


class TestBuildPrompt:
    """システムプロンプトの組み立て"""

    @pytest.mark.asyncio
    async def test_sections_in_fixed_order(self):
        memory, persona = Mock(), Mock()
        memory.generate_memory_context.return_value = "User asked about fractions."
        persona.generate_learning_context.return_value = "Prefers visual examples."
        pipeline = ContextEnrichmentPipeline(memory, persona)

        prompt = await pipeline.build_prompt(PromptMode.REGULAR, "fractions", RESUME)

        base = system_prompt(PromptMode.REGULAR)
        assert prompt.startswith(base)
        positions = [prompt.index(h) for h in (MEMORY_HEADER, PERSONA_HEADER, RESUME_HEADER)]
        assert positions == sorted(positions)
        memory.generate_memory_context.assert_called_once_with("fractions")

    @pytest.mark.asyncio
    async def test_slow_memory_is_omitted(self):
        """タイムアウトした記憶は省略され、他のセクションは残る"""
        persona = Mock()
        persona.generate_learning_context.return_value = "Confident learner."
        pipeline = ContextEnrichmentPipeline(SlowMemory(), persona, memory_timeout=0.05)

        prompt = await pipeline.build_prompt(PromptMode.ACTIVE, "q")

        assert MEMORY_HEADER not in prompt
        assert "too late" not in prompt
        assert "Confident learner." in prompt

    @pytest.mark.asyncio
    async def test_failing_persona_is_omitted(self):
        memory, persona = Mock(), Mock()
        memory.generate_memory_context.return_value = "history"
        persona.generate_learning_context.side_effect = OSError("corrupt file")
        pipeline = ContextEnrichmentPipeline(memory, persona)

        prompt = await pipeline.build_prompt(PromptMode.REGULAR)

        assert MEMORY_HEADER in prompt
        assert PERSONA_HEADER not in prompt

    @pytest.mark.asyncio
    async def test_empty_sources_add_nothing(self):
        memory, persona = Mock(), Mock()
        memory.generate_memory_context.return_value = ""
        persona.generate_learning_context.return_value = None
        pipeline = ContextEnrichmentPipeline(memory, persona)

        prompt = await pipeline.build_prompt(PromptMode.QUIZ)

        assert prompt == system_prompt(PromptMode.QUIZ)

    @pytest.mark.asyncio
    async def test_history_can_be_skipped(self):
        memory = Mock()
        pipeline = ContextEnrichmentPipeline(memory, None)

        prompt = await pipeline.build_prompt(
            PromptMode.REGULAR, base="Continue the text.", include_history=False
        )

        assert prompt == "Continue the text."
        memory.generate_memory_context.assert_not_called()

    @pytest.mark.asyncio
    async def test_resume_appended_last(self):
        pipeline = ContextEnrichmentPipeline()

        prompt = await pipeline.build_prompt(PromptMode.REGULAR, resume=RESUME)

        assert prompt.endswith(format_resume(RESUME))


class TestFormatResume:
    def test_missing_fields_marked(self):
        text = format_resume(RESUME)
        assert "Name: Aiko" in text
        assert "Class Year: 2026" in text
        assert "Major: Not specified" in text
        assert "Skills: Python, SQL" in text
        assert "Projects" not in text
