"""Request pipeline for ``POST /api/ai``: classify, coordinate, enrich, stream."""

from dataclasses import dataclass

from screenmate.api.errors import ProviderAuthError
from screenmate.api.services.coordinator import (
    CommandResult,
    Outcome,
    SideEffectCoordinator,
    StreamPlan,
)
from screenmate.api.services.enrichment import ContextEnrichmentPipeline
from screenmate.api.services.intents import Intent, classify_request
from screenmate.api.services.llm import API_KEY_MISSING, LLMService
from screenmate.api.services.streaming import (
    EventSink,
    StreamingResponseManager,
    StreamRequest,
    StreamSession,
)
from screenmate.logger import get_logger
from screenmate.model.models import AIRequest

logger = get_logger("orchestrator")


@dataclass
class PreparedStream:
    plan: StreamPlan
    intent: Intent
    request: StreamRequest | None = None


class RequestOrchestrator:
    def __init__(
        self,
        coordinator: SideEffectCoordinator,
        enrichment: ContextEnrichmentPipeline,
        streaming: StreamingResponseManager,
        llm: LLMService,
    ) -> None:
        self.coordinator = coordinator
        self.enrichment = enrichment
        self.streaming = streaming
        self.llm = llm

    async def handle(self, request: AIRequest) -> CommandResult | PreparedStream:
        """1リクエストを処理し、JSON結果かストリームの準備を返す.

        分類は1回だけ行い、その結果で経路が決まる。
        """
        intent = classify_request(request)
        logger.info(
            "Classified query | intent=%s rule=%s params=%s",
            intent.kind.value,
            intent.rule,
            {k: v for k, v in intent.params.items() if k != "text"},
        )
        if intent.is_ai and not self.llm.has_api_key:
            raise ProviderAuthError(API_KEY_MISSING)

        outcome: Outcome = await self.coordinator.execute(intent, request)
        if isinstance(outcome, CommandResult):
            return outcome
        return await self.prepare(outcome, request, intent)

    async def prepare(
        self, plan: StreamPlan, request: AIRequest, intent: Intent
    ) -> PreparedStream:
        if plan.is_static:
            return PreparedStream(plan=plan, intent=intent)

        system = await self.enrichment.build_prompt(
            plan.mode,
            request.query,
            request.resume_data if plan.include_resume else None,
            base=plan.base_prompt,
            include_history=plan.include_history,
        )
        if plan.extra_instructions:
            system = f"{system}\n\n{plan.extra_instructions}"

        capture_ref = request.screen_capture.unique_id if request.screen_capture else None
        stream_request = StreamRequest(
            system_prompt=system,
            user_prompt=plan.user_prompt,
            image_url=plan.image_url,
            params=plan.params,
            query=request.query,
            fallback_kind=plan.fallback_kind,
            record=plan.record,
            capture_ref=capture_ref,
            template=plan.template,
        )
        return PreparedStream(plan=plan, intent=intent, request=stream_request)

    async def run_stream(self, prepared: PreparedStream, sink: EventSink) -> StreamSession:
        if prepared.request is None:
            return await self.streaming.emit(
                sink, content=prepared.plan.static_content, error=prepared.plan.static_error
            )
        return await self.streaming.run(prepared.request, sink)
