from unittest.mock import patch

import pytest

from screenmate.api.errors import (
    ClassificationGap,
    ProviderAuthError,
    ProviderError,
    ValidationFailure,
)
from screenmate.api.services.automation import Clipboard
from screenmate.api.services.coordinator import (
    CAPTURE_REQUIRED,
    NOTES_MESSAGES,
    YOUTUBE_DEFAULT_QUERY,
    CommandResult,
    SideEffectCoordinator,
    StreamPlan,
    is_minimal_notes,
)
from screenmate.api.services.enrichment import ContextEnrichmentPipeline
from screenmate.api.services.intents import classify_request
from screenmate.api.services.orchestrator import PreparedStream, RequestOrchestrator
from screenmate.api.services.spotify import SpotifyService, Track
from screenmate.api.services.streaming import FALLBACK_BODIES, StreamingResponseManager
from screenmate.model.models import AIRequest
from tests.fakes import FakeAutomation, FakeLLM

NOTES = (
    "# Photosynthesis\n\n"
    "- Plants convert light energy into chemical energy\n"
    "- Chlorophyll absorbs mostly red and blue light\n"
)
RESUME = {"name": "Aiko", "major": "Economics", "skills": ["Excel"]}


def _request(query, capture=None, **fields):
    body = {"query": query, **fields}
    if capture is not None:
        body["screenCapture"] = {"dataURL": capture, "uniqueId": "capture_1"}
    return AIRequest.model_validate(body)


def _coordinator(llm=None, automation=None, clipboard=None, **kwargs):
    automation = automation or FakeAutomation()
    clipboard = clipboard or Clipboard(automation, settle_delay=0)
    return SideEffectCoordinator(llm or FakeLLM(), automation, clipboard, **kwargs)


async def _run(coordinator, request):
    return await coordinator.execute(classify_request(request), request)


class TestAppCommands:
    """アプリの起動・終了"""

    @pytest.mark.asyncio
    async def test_open_app_single_automation_call(self):
        automation = FakeAutomation()
        result = await _run(_coordinator(automation=automation), _request("open Safari"))

        assert result == CommandResult(success=True, content="Successfully opened Safari.")
        assert len(automation.automation_calls) == 1
        assert 'tell application "Safari" to activate' in automation.automation_calls[0][2]

    @pytest.mark.asyncio
    async def test_open_app_falls_back_to_open(self):
        automation = FakeAutomation(fail_when=["to activate"])
        result = await _run(_coordinator(automation=automation), _request("open Safari"))

        assert result.success
        assert automation.automation_calls[-1] == ["open", "-a", "Safari"]

    @pytest.mark.asyncio
    async def test_open_app_both_strategies_fail(self):
        automation = FakeAutomation(fail_when=["Safari"])
        result = await _run(_coordinator(automation=automation), _request("open Safari"))

        body = result.to_json()
        assert body["success"] is False
        assert body["hint"]
        assert [f["strategy"] for f in body["failures"]] == ["activate", "open"]

    @pytest.mark.asyncio
    async def test_close_app_not_running(self):
        automation = FakeAutomation()
        result = await _run(_coordinator(automation=automation), _request("close Spotify"))

        assert result.content == "Spotify is not running."
        assert automation.automation_calls == []

    @pytest.mark.asyncio
    async def test_close_running_app(self):
        automation = FakeAutomation(running=["Spotify"])
        result = await _run(_coordinator(automation=automation), _request("quit spotify"))

        assert result.content == "Successfully closed Spotify."
        assert automation.scripts[0][0] == 'quit app "Spotify"'


class TestSpotify:
    @pytest.mark.asyncio
    async def test_search_uri_fallback_without_auth(self):
        automation = FakeAutomation()
        spotify = SpotifyService(automation, launch_delay=0)
        coordinator = _coordinator(automation=automation, spotify=spotify)

        result = await _run(coordinator, _request("play Yesterday by The Beatles on spotify"))

        assert result.success
        assert "Yesterday" in result.content
        assert result.extra["strategy"] == "search_uri"
        assert automation.automation_calls[-1][0] == "open"
        assert automation.automation_calls[-1][1].startswith("spotify:search:")

    @pytest.mark.asyncio
    async def test_web_api_playback_with_tokens(self):
        automation = FakeAutomation(running=["Spotify"])
        spotify = SpotifyService(automation, launch_delay=0)
        spotify.tokens = object()
        track = Track(name="Yesterday", artist="The Beatles", uri="spotify:track:abc")
        coordinator = _coordinator(automation=automation, spotify=spotify)

        with patch.object(SpotifyService, "search_track", return_value=track):
            result = await _run(coordinator, _request("play Yesterday by The Beatles on spotify"))

        assert result.content == 'Now playing "Yesterday" by The Beatles'
        assert result.extra == {"strategy": "web_api"}
        assert "spotify:track:abc" in automation.scripts[0][0]


class TestSearch:
    """ブラウザ検索"""

    @pytest.mark.asyncio
    async def test_google_search_opens_tab(self):
        automation = FakeAutomation()
        result = await _run(_coordinator(automation=automation), _request("search for pandas groupby"))

        assert result.content == 'Opened a new tab with Google search results for "pandas groupby".'
        assert "q=pandas+groupby" in automation.scripts[0][0]

    @pytest.mark.asyncio
    async def test_google_search_fallback_suffix(self):
        automation = FakeAutomation(fail_when=["Google Chrome"])
        result = await _run(_coordinator(automation=automation), _request("search for pandas groupby"))

        assert result.content.endswith("(using fallback method).")
        assert automation.automation_calls[-1][0] == "open"

    @pytest.mark.asyncio
    async def test_google_search_failure_gives_manual_url(self):
        automation = FakeAutomation(fail_when=["google.com"])
        result = await _run(_coordinator(automation=automation), _request("search for pandas groupby"))

        assert not result.success
        assert "https://www.google.com/search?q=pandas+groupby" in result.error
        assert "hint" in result.extra

    @pytest.mark.asyncio
    async def test_resource_search_opens_three_urls(self):
        automation = FakeAutomation()
        result = await _run(
            _coordinator(automation=automation),
            _request("get me resources to learn about photosynthesis"),
        )

        assert result.content.startswith("Opened 3 tabs")
        assert automation.scripts[0][0].count("make new tab") == 3

    @pytest.mark.asyncio
    async def test_youtube_from_screen_uses_generated_query(self, png_data_url):
        llm = FakeLLM(completions=['"cell biology basics"'])
        automation = FakeAutomation()
        result = await _run(
            _coordinator(llm=llm, automation=automation),
            _request("find a youtube video about this", png_data_url),
        )

        assert result.extra == {"searchQuery": "cell biology basics"}
        assert llm.complete_calls[0]["image_url"] == png_data_url

    @pytest.mark.asyncio
    async def test_youtube_query_failure_uses_default(self, png_data_url):
        llm = FakeLLM(error=ProviderError("down"))
        result = await _run(
            _coordinator(llm=llm), _request("find a youtube video about this", png_data_url)
        )

        assert result.extra == {"searchQuery": YOUTUBE_DEFAULT_QUERY}


class TestTakeNotes:
    """ノート作成と貼り付け"""

    @pytest.mark.asyncio
    async def test_clipboard_written_before_paste(self, png_data_url):
        automation = FakeAutomation()
        coordinator = _coordinator(llm=FakeLLM(completions=[NOTES]), automation=automation)

        result = await _run(coordinator, _request("take notes", png_data_url))

        assert result.success
        assert result.content == NOTES_MESSAGES["notes_app"]
        commands = [call[0] for call in automation.calls]
        assert commands.index("pbcopy") < commands.index("osascript")
        script, snapshot = automation.scripts[0]
        assert 'tell application "Notes"' in script
        assert snapshot == result.extra["notes"]
        assert result.extra["clipboardVerified"] is True

    @pytest.mark.asyncio
    async def test_word_falls_back_to_notes_app(self, png_data_url):
        automation = FakeAutomation(fail_when=["Microsoft Word"])
        coordinator = _coordinator(llm=FakeLLM(completions=[NOTES]), automation=automation)

        result = await _run(coordinator, _request("take notes in word", png_data_url))

        assert result.success
        assert result.content == NOTES_MESSAGES["word_fallback"]
        assert result.extra["target"] == "word"

    @pytest.mark.asyncio
    async def test_minimal_notes_retried_then_rejected(self, png_data_url):
        llm = FakeLLM(completions=["The screen is blank.", "Nothing."])
        automation = FakeAutomation()

        result = await _run(_coordinator(llm=llm, automation=automation), _request("take notes", png_data_url))

        assert not result.success
        assert len(llm.complete_calls) == 2
        assert automation.scripts == []

    @pytest.mark.asyncio
    async def test_notes_need_capture(self):
        with pytest.raises(ClassificationGap):
            await _run(_coordinator(), _request("take notes"))

    def test_is_minimal_notes(self):
        assert is_minimal_notes("too short")
        assert is_minimal_notes("I cannot see any readable material in this capture, sorry about that.")
        assert not is_minimal_notes(NOTES)


class TestDraftingCommands:
    """メール返信・カバーレター・インターン"""

    @pytest.mark.asyncio
    async def test_email_refusal_uses_fallback_draft(self, png_data_url):
        automation = FakeAutomation()
        llm = FakeLLM(completions=["I'm sorry, I can't assist with that."])

        result = await _run(
            _coordinator(llm=llm, automation=automation), _request("reply to this email", png_data_url)
        )

        assert result.content == FALLBACK_BODIES["email"]
        assert result.extra["needsEmailAutomation"] is True
        assert automation.clipboard == FALLBACK_BODIES["email"]

    @pytest.mark.asyncio
    async def test_cover_letter_pasted_into_docs(self, png_data_url):
        letter = "Dear Hiring Manager, I am excited to apply for this role."
        automation = FakeAutomation()
        coordinator = _coordinator(llm=FakeLLM(completions=[letter]), automation=automation)

        result = await _run(
            coordinator, _request("write a cover letter", png_data_url, resumeData=RESUME)
        )

        assert result.success
        assert automation.scripts[0][1] == letter
        assert "hint" not in result.extra

    @pytest.mark.asyncio
    async def test_cover_letter_left_on_clipboard_when_paste_fails(self, png_data_url):
        letter = "Dear Hiring Manager, I am excited to apply for this role."
        automation = FakeAutomation(fail_when=["docs.google.com"])
        coordinator = _coordinator(llm=FakeLLM(completions=[letter]), automation=automation)

        result = await _run(
            coordinator, _request("write a cover letter", png_data_url, resumeData=RESUME)
        )

        assert result.success
        assert automation.clipboard == letter
        assert "Cmd+V" in result.extra["hint"]

    @pytest.mark.asyncio
    async def test_internship_without_resume(self):
        result = await _run(_coordinator(), _request("apply to internships for me"))

        assert not result.success
        assert result.extra == {"needsFileUpload": True, "field": "finance"}

    @pytest.mark.asyncio
    async def test_internship_opens_best_match(self):
        automation = FakeAutomation()
        result = await _run(
            _coordinator(automation=automation),
            _request("apply to internships for me", resumeData=RESUME),
        )

        assert result.success
        opportunity = result.extra["opportunity"]
        assert opportunity["url"] in automation.scripts[0][0]
        assert opportunity["finalScore"] >= opportunity["matchScore"]


class TestMessages:
    @pytest.mark.asyncio
    async def test_send_message(self):
        automation = FakeAutomation()
        result = await _run(_coordinator(automation=automation), _request('text mom "running late"'))

        assert result.content == 'Message "running late" sent successfully to mom.'
        assert 'participant "mom"' in automation.scripts[0][0]

    @pytest.mark.asyncio
    async def test_send_message_failure_has_hint(self):
        automation = FakeAutomation(fail_when=["Messages"])
        result = await _run(_coordinator(automation=automation), _request('text mom "running late"'))

        assert not result.success
        assert "Messages" in result.extra["hint"]


class TestStreamPlans:
    """AI系intentの計画"""

    @pytest.mark.asyncio
    async def test_explain_this_uses_selection_without_image(self, png_data_url):
        plan = await _run(
            _coordinator(), _request("explain this", png_data_url, selectedText="mitochondria")
        )

        assert isinstance(plan, StreamPlan)
        assert plan.template == "text_explanation"
        assert plan.image_url is None
        assert "mitochondria" in plan.user_prompt

    @pytest.mark.asyncio
    async def test_generic_chat_requires_capture(self):
        with pytest.raises(ClassificationGap, match=CAPTURE_REQUIRED):
            await _run(_coordinator(), _request("what is on my screen"))

    @pytest.mark.asyncio
    async def test_generic_chat_rejects_non_image_data_url(self):
        with pytest.raises(ValidationFailure) as exc_info:
            await _run(_coordinator(), _request("what is on my screen", "data:text/plain;base64,AA"))

        assert exc_info.value.field == "screenCapture.dataURL"

    @pytest.mark.asyncio
    async def test_email_question_uses_email_fallback(self, png_data_url):
        plan = await _run(_coordinator(), _request("what should this email say", png_data_url))

        assert plan.fallback_kind == "email"
        assert plan.template == "screen"

    @pytest.mark.asyncio
    async def test_continuation_skips_history(self, png_data_url):
        plan = await _run(_coordinator(), _request("keep going", png_data_url, continuationOnly=True))

        assert plan.template == "continuation"
        assert plan.include_history is False
        assert plan.image_url == png_data_url


class TestOrchestrator:
    """分類→実行→プロンプト準備"""

    def _orchestrator(self, llm):
        return RequestOrchestrator(
            _coordinator(llm=llm),
            ContextEnrichmentPipeline(),
            StreamingResponseManager(llm),
            llm,
        )

    @pytest.mark.asyncio
    async def test_ai_intent_without_key(self, png_data_url):
        orchestrator = self._orchestrator(FakeLLM(api_key=None))

        with pytest.raises(ProviderAuthError):
            await orchestrator.handle(_request("what is on my screen", png_data_url))

    @pytest.mark.asyncio
    async def test_command_intent_does_not_need_key(self):
        orchestrator = self._orchestrator(FakeLLM(api_key=None))

        result = await orchestrator.handle(_request("close Spotify"))

        assert isinstance(result, CommandResult)

    @pytest.mark.asyncio
    async def test_prepared_stream_carries_capture_ref(self, png_data_url, sink):
        llm = FakeLLM(chunks=["It shows a graph."])
        orchestrator = self._orchestrator(llm)

        prepared = await orchestrator.handle(_request("what is on my screen", png_data_url))
        session = await orchestrator.run_stream(prepared, sink)

        assert isinstance(prepared, PreparedStream)
        assert prepared.request.capture_ref == "capture_1"
        assert prepared.request.image_url == png_data_url
        assert session.accumulated_text == "It shows a graph."

    @pytest.mark.asyncio
    async def test_extra_instructions_appended(self, png_data_url):
        orchestrator = self._orchestrator(FakeLLM())

        prepared = await orchestrator.handle(_request("continue writing this essay", png_data_url))

        assert prepared.plan.extra_instructions
        assert prepared.request.system_prompt.endswith(prepared.plan.extra_instructions)
