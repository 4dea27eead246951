from pathlib import Path

import pytest

from screenmate.api.services.automation import EXIT_TIMEOUT, ProcessOutcome
from screenmate.api.services.transcription import (
    Transcriber,
    TranscriptionFailed,
    TranscriptionTimeout,
)
from tests.fakes import FakeAutomation


def _transcriber(outcome):
    automation = FakeAutomation(responses={"transcribe-cli": outcome})
    return Transcriber(automation, command="transcribe-cli --lang en", timeout=1.0), automation


class TestTranscriber:
    """外部コマンドによる文字起こし"""

    @pytest.mark.asyncio
    async def test_transcribes_and_removes_temp_file(self):
        transcriber, automation = _transcriber(ProcessOutcome(exit_code=0, stdout=" hello there \n"))

        text = await transcriber.transcribe_bytes(b"RIFF....", suffix=".wav")

        assert text == "hello there"
        argv = automation.calls[0]
        assert argv[:3] == ["transcribe-cli", "--lang", "en"]
        assert argv[3].endswith(".wav")
        assert not Path(argv[3]).exists()

    @pytest.mark.asyncio
    async def test_timeout(self):
        transcriber, automation = _transcriber(ProcessOutcome(exit_code=EXIT_TIMEOUT, stderr="timed out"))

        with pytest.raises(TranscriptionTimeout):
            await transcriber.transcribe_bytes(b"audio")
        assert not Path(automation.calls[0][-1]).exists()

    @pytest.mark.asyncio
    async def test_empty_output_is_failure(self):
        transcriber, _ = _transcriber(ProcessOutcome(exit_code=0, stdout="   "))

        with pytest.raises(TranscriptionFailed, match="empty result"):
            await transcriber.transcribe_bytes(b"audio")

    @pytest.mark.asyncio
    async def test_command_error_detail(self):
        transcriber, _ = _transcriber(ProcessOutcome(exit_code=2, stderr="model not found"))

        with pytest.raises(TranscriptionFailed, match="model not found"):
            await transcriber.transcribe_bytes(b"audio")
