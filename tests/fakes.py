"""Test doubles shared by the API and watcher tests."""

import asyncio
import base64
import io
import time
from pathlib import Path

from PIL import Image

from screenmate.api.services.automation import AutomationProvider, ProcessOutcome
from screenmate.api.services.llm import LLMService
from screenmate.watchers.screen_capture import PNG_DATA_URL_PREFIX, Frame


class FakeLLM:
    """ストリームと一括生成の応答を台本どおりに返すLLM."""

    def __init__(
        self,
        chunks=(),
        completions=(),
        error: Exception | None = None,
        api_key: str | None = "test-key",
        delay: float = 0.0,
    ):
        self.chunks = list(chunks)
        self.completions = list(completions)
        self.error = error
        self.api_key = api_key
        self.delay = delay
        self.model_name = "fake-model"
        self.stream_calls: list[dict] = []
        self.complete_calls: list[dict] = []

    build_messages = staticmethod(LLMService.build_messages)

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def is_available(self) -> bool:
        return True

    async def stream_chat(self, messages, params=None):
        self.stream_calls.append({"messages": messages, "params": params})
        for chunk in self.chunks:
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.error is not None:
            raise self.error

    async def complete(self, system_prompt, user_prompt, image_url=None, params=None):
        self.complete_calls.append(
            {"system": system_prompt, "user": user_prompt, "image_url": image_url, "params": params}
        )
        if self.error is not None:
            raise self.error
        if self.completions:
            return self.completions.pop(0)
        return "".join(self.chunks)


class FakeAutomation(AutomationProvider):
    """サブプロセスを実行せず、クリップボードの内容をモデル化する."""

    def __init__(self, fail_when=(), running=(), responses=None):
        super().__init__(timeout=1.0)
        self.clipboard = ""
        self.calls: list[list[str]] = []
        self.scripts: list[tuple[str, str]] = []
        self.staged_paths: list[str] = []
        self.fail_when = list(fail_when)
        self.running = set(running)
        self.responses: dict[str, ProcessOutcome] = dict(responses or {})

    async def run_command(self, argv, stdin_path=None, timeout=None):
        argv = list(argv)
        self.calls.append(argv)
        joined = " ".join(argv)
        if any(token in joined for token in self.fail_when):
            return ProcessOutcome(exit_code=1, stderr="simulated failure")
        if argv[0] in self.responses:
            return self.responses[argv[0]]
        if argv[0] == "pbcopy":
            self.staged_paths.append(stdin_path)
            self.clipboard = Path(stdin_path).read_text(encoding="utf-8")
            return ProcessOutcome(exit_code=0)
        if argv[0] == "pbpaste":
            return ProcessOutcome(exit_code=0, stdout=self.clipboard)
        if argv[0] == "osascript":
            # 貼り付け時点のクリップボードを記録する
            self.scripts.append((argv[2], self.clipboard))
        return ProcessOutcome(exit_code=0)

    def is_app_running(self, name: str) -> bool:
        return name in self.running

    @property
    def automation_calls(self) -> list[list[str]]:
        return [c for c in self.calls if c[0] not in ("pbcopy", "pbpaste")]


class RecordingSink:
    def __init__(self):
        self.frames: list[str] = []
        self.close_count = 0

    async def send(self, frame: str) -> None:
        self.frames.append(frame)

    async def close(self) -> None:
        self.close_count += 1


class FakeFrameProvider:
    def __init__(self, delay: float = 0.0):
        self.calls = 0
        self.delay = delay

    def capture_frame(self) -> Frame:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return Frame(
            data_url=f"{PNG_DATA_URL_PREFIX}frame{self.calls}",
            width=4,
            height=4,
            captured_at=time.time(),
        )


def make_png_data_url(size=(4, 4)) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", size, color="white").save(buffer, format="PNG")
    return PNG_DATA_URL_PREFIX + base64.b64encode(buffer.getvalue()).decode()


