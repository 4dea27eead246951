import json
from unittest.mock import Mock

import pytest

from screenmate.api.errors import ProviderError
from screenmate.api.services.completion_queue import PostCompletionQueue
from screenmate.api.services.streaming import (
    DONE_FRAME,
    FALLBACK_BODIES,
    TIMEOUT_MESSAGE,
    UNEXPECTED_MESSAGE,
    QueueEventSink,
    StreamingResponseManager,
    StreamRequest,
    StreamState,
    default_rejection_detector,
)
from tests.fakes import FakeLLM


def _payloads(frames):
    """DONE以外のフレームをdictにする"""
    return [json.loads(f[len("data: ") :]) for f in frames if f != DONE_FRAME]


def _request(**kwargs):
    return StreamRequest(system_prompt="system", user_prompt="user", query="q", **kwargs)


class TestStreamingRoundTrip:
    """正常系のストリーミング"""

    @pytest.mark.asyncio
    async def test_two_chunks_then_done(self, sink):
        manager = StreamingResponseManager(FakeLLM(chunks=["Hello", " world"]))

        session = await manager.run(_request(), sink)

        assert _payloads(sink.frames) == [{"content": "Hello"}, {"content": " world"}]
        assert sink.frames.count(DONE_FRAME) == 1
        assert sink.frames[-1] == DONE_FRAME
        assert sink.close_count == 1
        assert session.outcome is StreamState.COMPLETED
        assert session.state is StreamState.CLOSED
        assert session.accumulated_text == "Hello world"

    @pytest.mark.asyncio
    async def test_math_is_normalized_per_chunk(self, sink):
        manager = StreamingResponseManager(FakeLLM(chunks=[r"Area is \(\pi r^2\)"]))

        await manager.run(_request(), sink)

        assert _payloads(sink.frames) == [{"content": r"Area is $\pi r^2$"}]

    @pytest.mark.asyncio
    async def test_long_output_forwarded_after_window(self, sink):
        """拒否判定の窓を抜けたら保留分を順に送る"""
        chunks = ["a" * 60, "b" * 60, "c"]
        manager = StreamingResponseManager(FakeLLM(chunks=chunks))

        await manager.run(_request(), sink)

        assert [p["content"] for p in _payloads(sink.frames)] == chunks

    @pytest.mark.asyncio
    async def test_image_is_passed_to_provider(self, sink):
        llm = FakeLLM(chunks=["ok"])
        manager = StreamingResponseManager(llm)

        await manager.run(_request(image_url="data:image/png;base64,AAAA"), sink)

        user = llm.stream_calls[0]["messages"][1]
        assert user["content"][1]["image_url"]["url"] == "data:image/png;base64,AAAA"


class TestRejection:
    """拒否応答の差し替え"""

    @pytest.mark.asyncio
    async def test_refusal_replaced_with_fallback(self, sink):
        manager = StreamingResponseManager(FakeLLM(chunks=["I'm sorry I can't assist with that"]))

        session = await manager.run(_request(), sink)

        payloads = _payloads(sink.frames)
        assert payloads == [{"content": FALLBACK_BODIES["default"]}]
        assert "sorry" not in payloads[0]["content"].lower()
        assert sink.frames.count(DONE_FRAME) == 1
        assert session.is_rejected
        assert session.outcome is StreamState.REJECTED

    @pytest.mark.asyncio
    async def test_email_fallback_body(self, sink):
        manager = StreamingResponseManager(FakeLLM(chunks=["I cannot assist", " with that."]))

        await manager.run(_request(fallback_kind="email"), sink)

        assert _payloads(sink.frames) == [{"content": FALLBACK_BODIES["email"]}]

    @pytest.mark.asyncio
    async def test_no_retroactive_rejection(self, sink):
        """十分に長くなった後の拒否文は差し替えない"""
        chunks = ["x" * 120, " I cannot assist with the rest."]
        manager = StreamingResponseManager(FakeLLM(chunks=chunks))

        session = await manager.run(_request(), sink)

        assert not session.is_rejected
        assert len(_payloads(sink.frames)) == 2

    @pytest.mark.asyncio
    async def test_pluggable_detector(self, sink):
        manager = StreamingResponseManager(
            FakeLLM(chunks=["nope"]), rejection_detector=lambda text: text == "nope"
        )

        session = await manager.run(_request(), sink)

        assert session.is_rejected

    def test_detector_handles_curly_apostrophe(self):
        assert default_rejection_detector("I" + chr(0x2019) + "m unable to help with this")
        assert not default_rejection_detector("Sure, here is the answer.")


class TestStreamErrors:
    """エラー終端"""

    @pytest.mark.asyncio
    async def test_provider_error_frame(self, sink):
        manager = StreamingResponseManager(FakeLLM(error=ProviderError("provider down")))

        session = await manager.run(_request(), sink)

        assert _payloads(sink.frames) == [{"error": "provider down"}]
        assert sink.frames.count(DONE_FRAME) == 1
        assert sink.close_count == 1
        assert session.outcome is StreamState.ERRORED

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, sink):
        manager = StreamingResponseManager(FakeLLM(error=RuntimeError("boom")))

        await manager.run(_request(), sink)

        assert _payloads(sink.frames) == [{"error": UNEXPECTED_MESSAGE}]

    @pytest.mark.asyncio
    async def test_watchdog_timeout(self, sink):
        manager = StreamingResponseManager(FakeLLM(chunks=["slow"], delay=1.0), timeout=0.05)

        session = await manager.run(_request(), sink)

        assert _payloads(sink.frames) == [{"error": TIMEOUT_MESSAGE}]
        assert sink.frames.count(DONE_FRAME) == 1
        assert sink.close_count == 1
        assert session.outcome is StreamState.ERRORED

    @pytest.mark.asyncio
    async def test_partial_output_then_error(self, sink):
        chunks = ["y" * 150]
        manager = StreamingResponseManager(FakeLLM(chunks=chunks, error=ProviderError("cut")))

        await manager.run(_request(), sink)

        assert _payloads(sink.frames) == [{"content": chunks[0]}, {"error": "cut"}]
        assert sink.frames[-1] == DONE_FRAME


class TestCompletionSideChannel:
    """完了後の記憶・ペルソナ更新"""

    @pytest.mark.asyncio
    async def test_completed_stream_is_recorded(self, sink):
        memory, persona = Mock(), Mock()
        persona.extract_user_info.return_value = []
        queue = PostCompletionQueue(memory, persona)
        manager = StreamingResponseManager(FakeLLM(chunks=["Hi", " there"]), queue)

        await manager.run(_request(capture_ref="capture_1"), sink)
        await queue.join()
        await queue.stop()

        memory.add_conversation.assert_called_once_with("q", "Hi there", "capture_1")
        persona.extract_user_info.assert_called_once_with("q", "Hi there")
        assert queue.processed == 1

    @pytest.mark.asyncio
    async def test_side_channel_failure_is_contained(self, sink):
        memory = Mock()
        memory.add_conversation.side_effect = OSError("disk full")
        queue = PostCompletionQueue(memory, None)
        manager = StreamingResponseManager(FakeLLM(chunks=["fine"]), queue)

        session = await manager.run(_request(), sink)
        await queue.join()
        await queue.stop()

        assert session.outcome is StreamState.COMPLETED
        assert queue.processed == 1

    @pytest.mark.asyncio
    async def test_rejected_or_unrecorded_streams_are_skipped(self, sink):
        queue = Mock()
        manager = StreamingResponseManager(FakeLLM(chunks=["I cannot assist"]), queue)
        await manager.run(_request(), sink)

        other = StreamingResponseManager(FakeLLM(chunks=["ok"]), queue)
        await other.run(_request(record=False), sink)

        queue.submit.assert_not_called()


class TestEmitAndSink:
    @pytest.mark.asyncio
    async def test_emit_static_content(self, sink):
        manager = StreamingResponseManager(FakeLLM())

        session = await manager.emit(sink, content="Changes applied.")

        assert _payloads(sink.frames) == [{"content": "Changes applied."}]
        assert sink.frames.count(DONE_FRAME) == 1
        assert session.outcome is StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_emit_static_error(self, sink):
        manager = StreamingResponseManager(FakeLLM())

        await manager.emit(sink, error="Could not edit.")

        assert _payloads(sink.frames) == [{"error": "Could not edit."}]

    @pytest.mark.asyncio
    async def test_queue_sink_ends_after_close(self):
        queue_sink = QueueEventSink()
        manager = StreamingResponseManager(FakeLLM(chunks=["a"]))

        await manager.run(_request(), queue_sink)
        frames = [frame async for frame in queue_sink.frames()]

        assert frames[-1] == DONE_FRAME
        assert len(frames) == 2
