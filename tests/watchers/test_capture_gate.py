import asyncio

import pytest

from screenmate.watchers.capture_gate import CaptureActivityGate
from tests.fakes import FakeFrameProvider


class FailingProvider:
    def __init__(self):
        self.calls = 0

    def capture_frame(self):
        self.calls += 1
        raise OSError("display unavailable")


class TestActivityFlag:
    """アクティブ状態の判定"""

    def test_foreground_requests_are_counted(self):
        gate = CaptureActivityGate(FakeFrameProvider())

        gate.begin_foreground()
        gate.begin_foreground()
        gate.end_foreground()

        # Then: まだ1件残っているのでアクティブ
        assert gate.is_user_active
        gate.end_foreground()
        assert not gate.is_user_active

    def test_end_never_goes_negative(self):
        gate = CaptureActivityGate(FakeFrameProvider())
        gate.end_foreground()
        gate.begin_foreground()
        assert gate.is_user_active

    def test_pinned_flag_survives_foreground_end(self):
        gate = CaptureActivityGate(FakeFrameProvider())
        gate.set_active(True)
        with gate.foreground():
            pass
        assert gate.is_user_active

    def test_start_without_event_loop(self):
        gate = CaptureActivityGate(FakeFrameProvider())
        gate.start_background()
        assert not gate.is_background_running


class TestBackgroundCapture:
    """バックグラウンドキャプチャの停止と再開"""

    @pytest.mark.asyncio
    async def test_captures_while_idle(self):
        gate = CaptureActivityGate(FakeFrameProvider(), interval=0.01)

        gate.start_background()
        await asyncio.sleep(0.1)
        await gate.stop_background()

        assert gate.background_captures > 0
        assert gate.get_last_frame() is not None
        assert not gate.is_background_running

    @pytest.mark.asyncio
    async def test_no_capture_during_active_window(self):
        gate = CaptureActivityGate(FakeFrameProvider(), interval=0.01)
        gate.start_background()
        await asyncio.sleep(0.05)

        # When: 前面リクエストが始まる
        gate.begin_foreground()
        assert not gate.is_background_running
        before = gate.background_captures
        await asyncio.sleep(0.1)

        # Then: アクティブな間は1枚も撮らない
        assert gate.background_captures == before

        gate.end_foreground()
        assert gate.is_background_running
        await gate.stop_background()

    @pytest.mark.asyncio
    async def test_set_active_stops_loop_before_returning(self):
        gate = CaptureActivityGate(FakeFrameProvider(delay=0.05), interval=0.01)
        gate.start_background()
        await asyncio.sleep(0.03)

        gate.set_active(True)
        before = gate.background_captures

        assert not gate.is_background_running
        await asyncio.sleep(0.1)
        assert gate.background_captures == before

        gate.set_active(False)
        assert gate.is_background_running
        await gate.stop_background()

    @pytest.mark.asyncio
    async def test_provider_errors_do_not_stop_loop(self):
        provider = FailingProvider()
        gate = CaptureActivityGate(provider, interval=0.01)

        gate.start_background()
        await asyncio.sleep(0.08)

        assert provider.calls >= 2
        assert gate.background_captures == 0
        assert gate.is_background_running
        await gate.stop_background()

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self):
        gate = CaptureActivityGate(FakeFrameProvider(), interval=0.01)
        await gate.stop_background()
        gate.start_background()
        await gate.stop_background()
        await gate.stop_background()
        assert not gate.is_background_running


class TestCaptureOnce:
    @pytest.mark.asyncio
    async def test_force_takes_new_frame(self):
        provider = FakeFrameProvider()
        gate = CaptureActivityGate(provider)

        first = await gate.capture_once()
        second = await gate.capture_once(force=True)

        assert first.data_url != second.data_url
        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_cached_frame_reused(self):
        provider = FakeFrameProvider()
        gate = CaptureActivityGate(provider)

        first = await gate.capture_once()
        again = await gate.capture_once(force=False)

        assert again is first
        assert provider.calls == 1
