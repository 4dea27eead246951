"""Speech-to-text delegation to an external command."""

import contextlib
import os
import shlex
import tempfile

from screenmate.api.errors import ScreenmateError
from screenmate.api.services.automation import EXIT_TIMEOUT, AutomationProvider
from screenmate.logger import get_logger

logger = get_logger("transcription")


class TranscriptionTimeout(ScreenmateError):
    status_code = 408


class TranscriptionFailed(ScreenmateError):
    status_code = 500


class Transcriber:
    """アップロードされた音声を一時ファイルに書き、外部コマンドで文字起こしする."""

    def __init__(
        self,
        automation: AutomationProvider,
        command: str = "python3 transcribe.py",
        timeout: float = 30.0,
    ) -> None:
        self.automation = automation
        self.command = shlex.split(command)
        self.timeout = timeout

    async def transcribe_file(self, path: str) -> str:
        outcome = await self.automation.run_command([*self.command, path], timeout=self.timeout)
        if outcome.exit_code == EXIT_TIMEOUT:
            raise TranscriptionTimeout("Transcription timed out")
        text = outcome.stdout.strip()
        if not outcome.ok or not text:
            detail = outcome.stderr.strip() or "Transcription failed or returned empty result"
            raise TranscriptionFailed(detail)
        return text

    async def transcribe_bytes(self, audio: bytes, suffix: str = ".webm") -> str:
        """音声データを文字起こしする. 一時ファイルは必ず削除する."""
        fd, path = tempfile.mkstemp(prefix="screenmate_audio_", suffix=suffix)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(audio)
            logger.info("Transcribing %d bytes", len(audio))
            return await self.transcribe_file(path)
        finally:
            with contextlib.suppress(OSError):
                os.unlink(path)
