"""Long-lived collaborators, constructed once at startup."""

from collections import deque
from dataclasses import dataclass, field

from screenmate.api.services.automation import AutomationProvider, Clipboard
from screenmate.api.services.completion_queue import PostCompletionQueue
from screenmate.api.services.coordinator import SideEffectCoordinator
from screenmate.api.services.docs_editor import GoogleDocsEditor
from screenmate.api.services.enrichment import ContextEnrichmentPipeline
from screenmate.api.services.llm import LLMService, create_llm_service
from screenmate.api.services.memory import MemoryStore
from screenmate.api.services.orchestrator import RequestOrchestrator
from screenmate.api.services.persona import PersonaStore
from screenmate.api.services.spotify import SpotifyService
from screenmate.api.services.streaming import StreamingResponseManager
from screenmate.api.services.transcription import Transcriber
from screenmate.api.services.tutoring import TutoringService
from screenmate.config import Settings, load_settings
from screenmate.logger import get_logger
from screenmate.watchers.capture_gate import CaptureActivityGate, FrameProvider
from screenmate.watchers.screen_capture import ScreenCapture

logger = get_logger("context")


class _LazyScreenCapture:
    """最初のキャプチャ時にモニター情報を取得する（起動時にディスプレイを要求しない）."""

    def __init__(self) -> None:
        self._capture: ScreenCapture | None = None

    def capture_frame(self):  # noqa: ANN201
        if self._capture is None:
            self._capture = ScreenCapture()
        return self._capture.capture_frame()


@dataclass
class AppContext:
    settings: Settings
    llm: LLMService
    automation: AutomationProvider
    clipboard: Clipboard
    memory: MemoryStore
    persona: PersonaStore
    enrichment: ContextEnrichmentPipeline
    completion_queue: PostCompletionQueue
    streaming: StreamingResponseManager
    coordinator: SideEffectCoordinator
    orchestrator: RequestOrchestrator
    tutoring: TutoringService
    spotify: SpotifyService
    docs_editor: GoogleDocsEditor
    transcriber: Transcriber
    capture_gate: CaptureActivityGate
    logs: deque = field(default_factory=lambda: deque(maxlen=100))

    def log_message(self, message: str) -> None:
        """ファイルログに出力し、ログキューにも追加する"""
        logger.info(message)
        self.logs.append(message)


def build_context(
    settings: Settings | None = None,
    *,
    llm: LLMService | None = None,
    automation: AutomationProvider | None = None,
    frame_provider: FrameProvider | None = None,
) -> AppContext:
    """設定から全コンポーネントを組み立てる. テストでは一部を差し替えられる."""
    settings = settings or load_settings()
    llm = llm or create_llm_service(settings)
    automation = automation or AutomationProvider()
    clipboard = Clipboard(automation, settle_delay=settings.clipboard_settle)

    memory = MemoryStore(settings.data_dir)
    persona = PersonaStore(settings.data_dir)
    enrichment = ContextEnrichmentPipeline(
        memory,
        persona,
        memory_timeout=settings.memory_timeout,
        persona_timeout=settings.persona_timeout,
    )
    completion_queue = PostCompletionQueue(memory, persona)
    streaming = StreamingResponseManager(
        llm, completion_queue, timeout=settings.request_timeout
    )

    spotify = SpotifyService(
        automation,
        client_id=settings.spotify_client_id,
        client_secret=settings.spotify_client_secret,
        redirect_uri=settings.spotify_redirect_uri,
    )
    docs_editor = GoogleDocsEditor(llm, automation, clipboard)
    coordinator = SideEffectCoordinator(
        llm, automation, clipboard, spotify=spotify, docs_editor=docs_editor
    )
    orchestrator = RequestOrchestrator(coordinator, enrichment, streaming, llm)

    return AppContext(
        settings=settings,
        llm=llm,
        automation=automation,
        clipboard=clipboard,
        memory=memory,
        persona=persona,
        enrichment=enrichment,
        completion_queue=completion_queue,
        streaming=streaming,
        coordinator=coordinator,
        orchestrator=orchestrator,
        tutoring=TutoringService(),
        spotify=spotify,
        docs_editor=docs_editor,
        transcriber=Transcriber(
            automation,
            command=settings.transcribe_command,
            timeout=settings.transcribe_timeout,
        ),
        capture_gate=CaptureActivityGate(
            frame_provider or _LazyScreenCapture(), interval=settings.capture_interval
        ),
    )
