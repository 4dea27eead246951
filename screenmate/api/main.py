import asyncio
from collections.abc import AsyncIterator, Coroutine
from pathlib import Path
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, StreamingResponse

from screenmate.api.context import AppContext, build_context
from screenmate.api.errors import AutomationFailure, ProviderAuthError, ScreenmateError
from screenmate.api.services.coordinator import HINTS, CommandResult
from screenmate.api.services.llm import API_KEY_MISSING, CompletionParams
from screenmate.api.services.intents import IntentKind
from screenmate.api.services.orchestrator import PreparedStream
from screenmate.api.services.prompts import PromptMode, render
from screenmate.api.services.streaming import QueueEventSink, StreamRequest
from screenmate.api.services.tutoring import parse_quiz_step_response
from screenmate.model.models import (
    AIRequest,
    CaptureActivityUpdate,
    InteractiveFeedbackRequest,
    QuizStepRequest,
    SendMessageRequest,
    TutoringAdvance,
    TutoringSessionCreate,
    TutoringStepResponse,
)

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
TUTORING_PARAMS = CompletionParams(max_tokens=800, temperature=0.4, top_p=0.95)
LEARNING_SUCCESS_LEVEL = 0.6

router = APIRouter()


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _require_api_key(ctx: AppContext) -> None:
    if not ctx.llm.has_api_key:
        raise ProviderAuthError(API_KEY_MISSING)


_producers: set[asyncio.Task] = set()


def _stream_response(produce: Coroutine[Any, Any, Any], sink: QueueEventSink) -> StreamingResponse:
    """producerをすぐにタスクとして開始し、SSEレスポンスを返す.

    本文が一度も読まれずにクライアントが切断しても、producerは最後まで
    実行され、後始末（キャプチャゲートの解放など）が必ず走る。
    """
    task = asyncio.create_task(produce)
    _producers.add(task)
    task.add_done_callback(_producers.discard)
    return StreamingResponse(
        _sse(task, sink), media_type="text/event-stream", headers=SSE_HEADERS
    )


async def _sse(task: asyncio.Task, sink: QueueEventSink) -> AsyncIterator[str]:
    try:
        async for frame in sink.frames():
            yield frame
    finally:
        await task


# --- ヘルスチェック ---


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/status")
async def get_status(ctx: AppContext = Depends(get_context)):
    """現在のシステム状態を取得する"""
    gate = ctx.capture_gate
    return {
        "llmAvailable": await asyncio.to_thread(ctx.llm.is_available),
        "apiKeyConfigured": ctx.llm.has_api_key,
        "model": ctx.llm.model_name,
        "captureActive": gate.is_user_active,
        "backgroundCaptureRunning": gate.is_background_running,
        "backgroundCaptures": gate.background_captures,
        "completionsProcessed": ctx.completion_queue.processed,
        "logs": list(ctx.logs),
    }


# --- AIアシスタント ---


@router.post("/api/ai")
async def ask_ai(req: AIRequest, ctx: AppContext = Depends(get_context)):
    """クエリを分類し、コマンドはJSON、AI応答はSSEで返す"""
    gate = ctx.capture_gate
    gate.begin_foreground()
    try:
        result = await ctx.orchestrator.handle(req)
    except Exception:
        gate.end_foreground()
        raise

    if isinstance(result, CommandResult):
        gate.end_foreground()
        ctx.log_message(f"Command handled: success={result.success}")
        return JSONResponse(result.to_json(), status_code=result.status_code)

    ctx.log_message(f"Streaming response: intent={result.intent.kind.value}")
    sink = QueueEventSink()
    return _stream_response(_run_prepared(ctx, result, sink), sink)


async def _run_prepared(ctx: AppContext, prepared: PreparedStream, sink: QueueEventSink) -> None:
    try:
        await ctx.orchestrator.run_stream(prepared, sink)
    finally:
        ctx.capture_gate.end_foreground()


@router.post("/api/send-message")
async def send_message(req: SendMessageRequest, ctx: AppContext = Depends(get_context)):
    try:
        message = await ctx.coordinator.send_message(req.recipient, req.message)
    except AutomationFailure as e:
        ctx.log_message(f"Message send failed: {e.message}")
        return JSONResponse(
            {"success": False, "error": e.message, "hint": HINTS[IntentKind.SEND_MESSAGE]},
            status_code=500,
        )
    return {"success": True, "message": message}


@router.post("/api/transcribe")
async def transcribe(
    audio: UploadFile = File(...), ctx: AppContext = Depends(get_context)
):
    """音声ファイルを文字起こしする"""
    data = await audio.read()
    if not data:
        raise HTTPException(status_code=400, detail="No audio file provided")
    suffix = Path(audio.filename or "").suffix or ".webm"
    text = await ctx.transcriber.transcribe_bytes(data, suffix=suffix)
    return {"success": True, "transcription": text}


# --- 記憶・ペルソナ ---


@router.get("/api/memory")
async def get_memory(ctx: AppContext = Depends(get_context)):
    return {"success": True, **ctx.memory.summary()}


@router.delete("/api/memory")
async def clear_memory(ctx: AppContext = Depends(get_context)):
    ctx.memory.clear()
    ctx.log_message("Memory cleared")
    return {"success": True}


@router.get("/api/learning-persona")
async def get_learning_persona(ctx: AppContext = Depends(get_context)):
    return {
        "success": True,
        "summary": ctx.persona.summary(),
        "recommendations": ctx.persona.generate_recommendations(),
    }


# --- キャプチャ ---


@router.post("/api/capture/activity")
async def update_capture_activity(
    req: CaptureActivityUpdate, ctx: AppContext = Depends(get_context)
):
    ctx.capture_gate.set_active(req.active)
    return {"success": True, "active": ctx.capture_gate.is_user_active}


@router.post("/api/capture/once")
async def capture_once(ctx: AppContext = Depends(get_context)):
    """前面用のキャプチャ（キャッシュは使わない）"""
    with ctx.capture_gate.foreground():
        try:
            frame = await ctx.capture_gate.capture_once(force=True)
        except OSError as e:
            raise ScreenmateError(f"Screen capture failed: {e}", status_code=503) from e
    return {
        "success": True,
        "dataURL": frame.data_url,
        "width": frame.width,
        "height": frame.height,
        "timestamp": frame.captured_at,
        "uniqueId": frame.unique_id,
    }


# --- Spotify ---


@router.get("/api/spotify/auth")
def spotify_auth(ctx: AppContext = Depends(get_context)):
    return RedirectResponse(ctx.spotify.auth_url())


@router.get("/callback", response_class=HTMLResponse)
def spotify_callback(
    code: str | None = None, error: str | None = None, ctx: AppContext = Depends(get_context)
):
    if error or not code:
        raise HTTPException(status_code=400, detail=f"Spotify authorization failed: {error}")
    ctx.spotify.handle_callback(code)
    ctx.log_message("Spotify authenticated")
    return HTMLResponse(
        "<html><body><h1>Spotify authentication successful!</h1>"
        "<p>You can close this window and return to the app.</p></body></html>"
    )


# --- チュータリング ---


@router.post("/api/tutoring/session")
async def create_tutoring_session(
    req: TutoringSessionCreate, ctx: AppContext = Depends(get_context)
):
    session = ctx.tutoring.create_session(
        req.user_id, req.question_type, req.context, session_id=req.session_id
    )
    return {"success": True, "sessionId": session.id, "session": ctx.tutoring.summary(session.id)}


@router.get("/api/tutoring/sessions/{user_id}")
async def list_tutoring_sessions(user_id: str, ctx: AppContext = Depends(get_context)):
    return {"success": True, "sessions": ctx.tutoring.user_sessions(user_id)}


@router.get("/api/tutoring/session/{session_id}/progress")
async def tutoring_progress(session_id: str, ctx: AppContext = Depends(get_context)):
    return {"success": True, **ctx.tutoring.progress(session_id)}


@router.get("/api/tutoring/session/{session_id}/summary")
async def tutoring_summary(session_id: str, ctx: AppContext = Depends(get_context)):
    return {"success": True, "summary": ctx.tutoring.summary(session_id)}


@router.post("/api/tutoring/session/{session_id}/response")
async def tutoring_response(
    session_id: str, req: TutoringStepResponse, ctx: AppContext = Depends(get_context)
):
    ctx.tutoring.add_response(session_id, req.step, req.response, req.understanding_level)
    return {"success": True, "progress": ctx.tutoring.progress(session_id)}


@router.post("/api/tutoring/session/{session_id}/ai-response")
async def tutoring_ai_response(
    session_id: str, req: TutoringStepResponse, ctx: AppContext = Depends(get_context)
):
    """ステップへの回答を記録し、講師としてのフィードバックをSSEで返す"""
    ctx.tutoring.add_response(session_id, req.step, req.response, req.understanding_level)
    _require_api_key(ctx)
    system = await ctx.enrichment.build_prompt(PromptMode.ACTIVE, req.response)
    stream_request = StreamRequest(
        system_prompt=system,
        user_prompt=render(
            "tutoring_feedback_user",
            step=req.step,
            response=req.response,
            level=round(req.understanding_level * 10),
        ),
        params=TUTORING_PARAMS,
        query=req.response,
        record=False,
        template="tutoring_feedback",
    )
    sink = QueueEventSink()
    return _stream_response(ctx.streaming.run(stream_request, sink), sink)


@router.post("/api/tutoring/session/{session_id}/advance")
async def tutoring_advance(
    session_id: str, req: TutoringAdvance | None = None, ctx: AppContext = Depends(get_context)
):
    next_step = ctx.tutoring.advance(session_id, req.from_step if req else None)
    if next_step is None:
        return {"success": True, "completed": True, "currentStep": ctx.tutoring.get(session_id).current_step}
    return {"success": True, "completed": False, "currentStep": next_step}


@router.post("/api/tutoring/session/{session_id}/end")
async def tutoring_end(session_id: str, ctx: AppContext = Depends(get_context)):
    """セッションを終了し、初回の終了時のみ学習傾向に反映する"""
    already_ended = ctx.tutoring.get(session_id).status == "completed"
    ctx.tutoring.end(session_id)
    summary = ctx.tutoring.summary(session_id)
    if not already_ended:
        await asyncio.to_thread(
            ctx.persona.update_learning_patterns,
            duration=summary["duration"],
            success=summary["understandingLevel"] >= LEARNING_SUCCESS_LEVEL,
        )
    return {"success": True, "summary": summary}


@router.post("/api/tutoring/interactive-feedback")
async def tutoring_interactive_feedback(
    req: InteractiveFeedbackRequest, ctx: AppContext = Depends(get_context)
):
    _require_api_key(ctx)
    history = "\n".join(
        f"{turn.get('role', 'user')}: {turn.get('content', '')}" for turn in req.history
    )
    system = await ctx.enrichment.build_prompt(PromptMode.ACTIVE, req.response)
    feedback = await ctx.llm.complete(
        system,
        render(
            "tutoring_interactive_user",
            question=req.question,
            history=history or "(none yet)",
            response=req.response,
        ),
        params=TUTORING_PARAMS,
    )
    return {"success": True, "feedback": feedback}


@router.post("/api/tutoring/cleanup")
async def tutoring_cleanup(ctx: AppContext = Depends(get_context)):
    return {"success": True, "removed": ctx.tutoring.cleanup()}


@router.post("/api/quiz/step")
async def quiz_step(req: QuizStepRequest, ctx: AppContext = Depends(get_context)):
    """クイズの1ステップを採点し、フィードバックと次のステップをJSONで返す"""
    _require_api_key(ctx)
    system = await ctx.enrichment.build_prompt(PromptMode.QUIZ, req.response)
    text = await ctx.llm.complete(
        system,
        render(
            "quiz_step_user",
            step_number=req.step_number,
            context=req.context,
            response=req.response,
        ),
        params=TUTORING_PARAMS,
    )
    return {"success": True, **parse_quiz_step_response(text)}


# --- アプリケーション ---


async def _handle_screenmate_error(_request: Request, exc: ScreenmateError) -> JSONResponse:
    return JSONResponse(exc.to_response(), status_code=exc.status_code)


def create_app(context: AppContext | None = None, *, background_capture: bool = True) -> FastAPI:
    """FastAPIアプリケーションを作成する

    Args:
        context: 事前に組み立てたAppContext（Noneなら設定から構築）
        background_capture: 起動時にバックグラウンドキャプチャを開始するか

    """
    app = FastAPI(
        title="Screenmate AI Assistant",
        description="Request classification and streaming response API for the desktop overlay",
    )
    app.state.context = context or build_context()
    app.include_router(router)
    app.add_exception_handler(ScreenmateError, _handle_screenmate_error)

    @app.on_event("startup")
    async def startup_event():
        """完了キューとバックグラウンドキャプチャを開始する"""
        ctx: AppContext = app.state.context
        ctx.completion_queue.start()
        if background_capture:
            ctx.capture_gate.start_background()
        ctx.log_message(f"API key configured: {ctx.llm.has_api_key}")

    @app.on_event("shutdown")
    async def shutdown_event():
        ctx: AppContext = app.state.context
        await ctx.capture_gate.stop_background()
        await ctx.completion_queue.stop()

    return app


app = create_app()
