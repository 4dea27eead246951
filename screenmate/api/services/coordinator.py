"""Side-Effect Coordinator.

Command intents (search, notes, apps, Spotify, messages, ...) are resolved here
and answered with a plain JSON ``CommandResult``. AI intents are turned into a
``StreamPlan`` that the orchestrator hands to the Streaming Response Manager.

Automation failures never leave this module: they become
``{"success": false, "error": ..., "hint": ...}``.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote_plus

from screenmate.api.errors import (
    AutomationFailure,
    ClassificationGap,
    ProviderError,
    ScreenmateError,
    ValidationFailure,
)
from screenmate.api.services import applescripts
from screenmate.api.services.automation import (
    AutomationProvider,
    Clipboard,
    FallbackOutcome,
    attempt_in_order,
)
from screenmate.api.services.docs_editor import GoogleDocsEditor
from screenmate.api.services.enrichment import format_resume
from screenmate.api.services.intents import Intent, IntentKind, NotesTarget
from screenmate.api.services.internships import best_opportunity
from screenmate.api.services.llm import CompletionParams, LLMService
from screenmate.api.services.prompts import PromptMode, mode_for, render
from screenmate.api.services.spotify import SpotifyService
from screenmate.api.services.streaming import FALLBACK_BODIES, default_rejection_detector
from screenmate.api.services.text_tools import format_notes_for_paste, sanitize_for_paste
from screenmate.logger import get_logger
from screenmate.model.models import AIRequest

logger = get_logger("coordinator")

CAPTURE_REQUIRED = (
    "Screen capture is required for analysis. Please ensure screen capture "
    "permissions are granted."
)
INVALID_IMAGE = "Invalid image data format"
GOOGLE_SEARCH_URL = "https://www.google.com/search?q="
YOUTUBE_SEARCH_URL = "https://www.youtube.com/results?search_query="
YOUTUBE_DEFAULT_QUERY = "educational tutorial"

MIN_NOTES_CHARS = 50
NON_CONTENT_INDICATORS = (
    "no text",
    "cannot see",
    "can't see",
    "unable to see",
    "no content",
    "blank",
    "empty",
    "nothing visible",
)
NOTES_PARAMS = CompletionParams(max_tokens=1500, temperature=0.3, top_p=0.95)
LETTER_PARAMS = CompletionParams(max_tokens=1000, temperature=0.4, top_p=0.95)
YOUTUBE_PARAMS = CompletionParams(max_tokens=20, temperature=0.3, top_p=0.95)

DEFAULT_HINT = "Check that the app is installed and that automation permissions are granted."
HINTS = {
    IntentKind.GOOGLE_SEARCH: "Allow Terminal to control Google Chrome in System Settings > Privacy & Security > Automation.",
    IntentKind.RESOURCE_SEARCH: "Allow Terminal to control Google Chrome in System Settings > Privacy & Security > Automation.",
    IntentKind.TAKE_NOTES: "Grant Accessibility access so the notes can be pasted, or paste them manually from the clipboard.",
    IntentKind.SPOTIFY_PLAY: "Make sure Spotify is installed, or authenticate at /api/spotify/auth.",
    IntentKind.SEND_MESSAGE: "Make sure Messages is signed in and the recipient is a known contact.",
    IntentKind.OPEN_APP: "Check the application name and that it is installed in /Applications.",
    IntentKind.CLOSE_APP: "Check the application name, or quit it manually.",
}

NOTES_MESSAGES = {
    "notes_app": (
        "Notes have been created and imported into the Notes app. "
        "A new note was created with your formatted notes."
    ),
    "word": (
        "Notes have been created and imported into Microsoft Word. "
        "A new document was created with your formatted notes."
    ),
    "word_fallback": (
        "Microsoft Word was not available, so your notes were imported into the "
        "Notes app instead."
    ),
    "google_docs": (
        "Notes have been created and imported into Google Docs. "
        "Your formatted notes were pasted into the document."
    ),
}


@dataclass
class CommandResult:
    """コマンド系intentの結果. そのままJSONで返す."""

    success: bool
    content: str | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    status_code: int = 200

    def to_json(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.content is not None:
            data["content"] = self.content
        if self.error is not None:
            data["error"] = self.error
        data.update(self.extra)
        return data


@dataclass
class StreamPlan:
    """AI系intentのストリーミング計画.

    ``static_content`` / ``static_error`` が設定されている場合はモデルを呼ばず、
    その1件だけを送って閉じる。
    """

    mode: PromptMode
    user_prompt: str = ""
    image_url: str | None = None
    params: CompletionParams = field(default_factory=CompletionParams)
    base_prompt: str | None = None
    extra_instructions: str = ""
    include_history: bool = True
    include_resume: bool = True
    fallback_kind: str = "default"
    template: str = ""
    static_content: str | None = None
    static_error: str | None = None
    record: bool = True

    @property
    def is_static(self) -> bool:
        return self.static_content is not None or self.static_error is not None


Outcome = CommandResult | StreamPlan
Handler = Callable[[Intent, AIRequest], Awaitable[Outcome]]


def _require_image(request: AIRequest) -> str:
    if not request.has_capture or request.screen_capture is None:
        raise ClassificationGap(CAPTURE_REQUIRED)
    if not request.screen_capture.is_image:
        raise ValidationFailure("screenCapture.dataURL", INVALID_IMAGE)
    return request.screen_capture.data_url


def _optional_image(request: AIRequest) -> str | None:
    if not request.has_capture:
        return None
    return _require_image(request)


def _selected_suffix(request: AIRequest) -> str:
    if request.selected_text and request.selected_text.strip():
        return render("selected_text_suffix", text=request.selected_text.strip())
    return ""


def _fallback_kind(query: str, continuation: bool) -> str:
    if "email" in query.lower():
        return "email"
    return "continuation" if continuation else "default"


def is_minimal_notes(notes: str) -> bool:
    """モデルが「何も見えない」系の短い応答を返したか."""
    text = notes.strip()
    if len(text) < MIN_NOTES_CHARS:
        return True
    lowered = text.lower()
    return len(text) < MIN_NOTES_CHARS * 4 and any(
        indicator in lowered for indicator in NON_CONTENT_INDICATORS
    )


class SideEffectCoordinator:
    """intentごとの副作用を実行する."""

    def __init__(
        self,
        llm: LLMService,
        automation: AutomationProvider,
        clipboard: Clipboard,
        spotify: SpotifyService | None = None,
        docs_editor: GoogleDocsEditor | None = None,
    ) -> None:
        self.llm = llm
        self.automation = automation
        self.clipboard = clipboard
        self.spotify = spotify
        self.docs_editor = docs_editor
        self._handlers: dict[IntentKind, Handler] = {
            IntentKind.CONTINUATION: self._continuation,
            IntentKind.INTERNSHIP_APPLY: self._internship,
            IntentKind.COVER_LETTER: self._cover_letter,
            IntentKind.RESOURCE_SEARCH: self._resource_search,
            IntentKind.EMAIL_RESPONSE: self._email_response,
            IntentKind.GOOGLE_SEARCH: self._google_search,
            IntentKind.TAKE_NOTES: self._take_notes,
            IntentKind.RESUME_UPLOAD: self._resume_upload,
            IntentKind.SPOTIFY_PLAY: self._spotify,
            IntentKind.YOUTUBE_SEARCH: self._youtube,
            IntentKind.OPEN_APP: self._open_app,
            IntentKind.CLOSE_APP: self._close_app,
            IntentKind.SEND_MESSAGE: self._send_message,
            IntentKind.GOOGLE_DOCS_EDIT: self._docs_edit,
            IntentKind.UNDERSTANDING: self._understanding,
            IntentKind.PLAIN_EXPLAIN: self._plain_explain,
            IntentKind.GENERIC_CHAT: self._generic_chat,
        }

    async def execute(self, intent: Intent, request: AIRequest) -> Outcome:
        """intentを実行する.

        Raises:
            ClassificationGap: 画面キャプチャ等の前提が無い
            ValidationFailure: リクエストの値が不正
            ProviderAuthError: APIキー未設定

        """
        handler = self._handlers[intent.kind]
        try:
            return await handler(intent, request)
        except AutomationFailure as e:
            logger.warning("Automation failed for %s: %s", intent.kind.value, e.message)
            return CommandResult(
                success=False,
                error=e.message,
                extra={
                    "hint": HINTS.get(intent.kind, DEFAULT_HINT),
                    "failures": [{"strategy": s, "error": err} for s, err in e.failures],
                },
            )

    # --- automation helpers ---

    async def _run_checked(self, script: str, action: str) -> None:
        outcome = await self.automation.run_script(script)
        outcome.check(action)

    async def _open_urls(self, urls: list[str]) -> FallbackOutcome[None]:
        """Chromeの新しいタブで開く. 失敗したら ``open`` で1件ずつ開く."""

        async def via_open() -> None:
            for url in urls:
                (await self.automation.open_url(url)).check(f"Opening {url}")

        return await attempt_in_order(
            [
                (
                    "applescript",
                    lambda: self._run_checked(
                        applescripts.chrome_open_tabs(urls), "Opening browser tabs"
                    ),
                ),
                ("open", via_open),
            ]
        )

    # --- AI intents ---

    async def _continuation(self, intent: Intent, request: AIRequest) -> Outcome:
        return StreamPlan(
            mode=mode_for(request.is_active_mode),
            base_prompt=render("continuation_system"),
            user_prompt=render("continuation_user"),
            image_url=_optional_image(request),
            params=CompletionParams.for_mode(request.is_active_mode),
            include_history=False,
            fallback_kind="continuation",
            template="continuation",
        )

    async def _docs_edit(self, intent: Intent, request: AIRequest) -> Outcome:
        image = _require_image(request)
        if self.docs_editor is None:
            return StreamPlan(
                mode=PromptMode.REGULAR,
                static_error="Google Docs editing is not available.",
                template="docs_edit",
                record=False,
            )
        try:
            result = await self.docs_editor.edit(image, request.query, intent.params["edit_kind"])
        except ScreenmateError as e:
            logger.warning("Docs edit failed: %s", e.message)
            return StreamPlan(
                mode=PromptMode.REGULAR, static_error=e.message, template="docs_edit", record=False
            )
        return StreamPlan(
            mode=PromptMode.REGULAR,
            static_content=result.message,
            template="docs_edit",
            record=False,
        )

    async def _understanding(self, intent: Intent, request: AIRequest) -> Outcome:
        quiz = bool(intent.params.get("quiz"))
        image = _require_image(request)
        return StreamPlan(
            mode=mode_for(True, quiz=quiz),
            user_prompt=render("understanding_user", query=request.query) + _selected_suffix(request),
            image_url=image,
            params=CompletionParams.for_mode(True),
            template="quiz" if quiz else "understanding",
        )

    async def _plain_explain(self, intent: Intent, request: AIRequest) -> Outcome:
        return StreamPlan(
            mode=mode_for(request.is_active_mode),
            user_prompt=render("text_explanation_user", text=intent.params["text"]),
            params=CompletionParams.for_mode(request.is_active_mode),
            template="text_explanation",
        )

    async def _generic_chat(self, intent: Intent, request: AIRequest) -> Outcome:
        image = _require_image(request)
        continuation = bool(intent.params.get("writing_continuation"))
        return StreamPlan(
            mode=mode_for(request.is_active_mode),
            user_prompt=request.query + _selected_suffix(request),
            image_url=image,
            params=CompletionParams.for_mode(request.is_active_mode),
            extra_instructions=render("continuation_enhancement") if continuation else "",
            fallback_kind=_fallback_kind(request.query, continuation),
            template="continuation" if continuation else "screen",
        )

    # --- command intents ---

    async def _internship(self, intent: Intent, request: AIRequest) -> Outcome:
        field_name = intent.params.get("field") or "finance"
        if request.resume_data is None:
            return CommandResult(
                success=False,
                error=(
                    "Please upload your resume first so I can find internships that "
                    "match your background."
                ),
                extra={"needsFileUpload": True, "field": field_name},
            )
        picked = best_opportunity(field_name, request.resume_data)
        if picked is None:
            return CommandResult(
                success=False, error=f"No internship opportunities found for {field_name}."
            )
        opportunity, final_score = picked
        await self._open_urls([opportunity.url])
        return CommandResult(
            success=True,
            content=(
                f"Found a great match: {opportunity.title} at {opportunity.company} "
                f"({opportunity.location}). I opened the application page for you."
            ),
            extra={
                "needsBrowserAction": True,
                "field": field_name,
                "opportunity": opportunity.to_dict(final_score),
            },
        )

    async def _cover_letter(self, intent: Intent, request: AIRequest) -> Outcome:
        if request.resume_data is None:
            return CommandResult(
                success=False,
                error="Please upload your resume first so I can write a tailored cover letter.",
                extra={"needsFileUpload": True},
            )
        image = _require_image(request)
        letter = await self.llm.complete(
            render("cover_letter_system", resume=format_resume(request.resume_data)),
            render("cover_letter_user"),
            image_url=image,
            params=LETTER_PARAMS,
        )
        if not letter or default_rejection_detector(letter[:150]):
            return CommandResult(
                success=False,
                error="I couldn't generate a cover letter from this page. Please try again.",
                extra={"needsRetry": True},
            )
        letter = sanitize_for_paste(letter)

        async with self.clipboard.staged(letter):
            try:
                await self._run_checked(
                    applescripts.google_docs_new_document_paste(), "Pasting into Google Docs"
                )
            except AutomationFailure as e:
                logger.warning("Cover letter paste failed, left on clipboard: %s", e.message)
                return CommandResult(
                    success=True,
                    content="Your cover letter has been copied to the clipboard.",
                    extra={
                        "coverLetter": letter,
                        "hint": "Open a new Google Doc and paste with Cmd+V.",
                    },
                )
        return CommandResult(
            success=True,
            content="Your cover letter has been written and pasted into a new Google Doc.",
            extra={"coverLetter": letter},
        )

    async def _email_response(self, intent: Intent, request: AIRequest) -> Outcome:
        image = _require_image(request)
        resume = format_resume(request.resume_data) if request.resume_data else "Not provided"
        reply = await self.llm.complete(
            render("email_system", resume=resume),
            render("email_user", query=request.query),
            image_url=image,
        )
        if not reply or default_rejection_detector(reply[:150]):
            logger.info("Email reply refused, using fallback draft")
            reply = FALLBACK_BODIES["email"]
        await self.clipboard.write(reply)
        return CommandResult(
            success=True,
            content=reply,
            extra={"needsEmailAutomation": True, "emailResponse": reply},
        )

    async def _google_search(self, intent: Intent, request: AIRequest) -> Outcome:
        topic = intent.params["topic"]
        url = GOOGLE_SEARCH_URL + quote_plus(topic)
        try:
            outcome = await self._open_urls([url])
        except AutomationFailure as e:
            return CommandResult(
                success=False,
                error=f"Failed to open Google search. You can open it manually: {url}",
                extra={"hint": HINTS[IntentKind.GOOGLE_SEARCH], "failures": [
                    {"strategy": s, "error": err} for s, err in e.failures
                ]},
            )
        suffix = " (using fallback method)" if outcome.used_fallback else ""
        return CommandResult(
            success=True,
            content=f'Opened a new tab with Google search results for "{topic}"{suffix}.',
        )

    async def _resource_search(self, intent: Intent, request: AIRequest) -> Outcome:
        topic = intent.params["topic"]
        urls = [
            GOOGLE_SEARCH_URL + quote_plus(f"{topic} {suffix}")
            for suffix in ("filetype:pdf", "article", "learning resource")
        ]
        outcome = await self._open_urls(urls)
        suffix = " (using fallback method)" if outcome.used_fallback else ""
        return CommandResult(
            success=True,
            content=f'Opened {len(urls)} tabs with learning resources about "{topic}"{suffix}.',
        )

    async def generate_notes(self, image: str) -> str | None:
        """画面からノートを生成する. 内容が乏しい場合はフォールバックで1回だけ再試行."""
        notes = await self.llm.complete(
            render("notes_system"), render("notes_user"), image_url=image, params=NOTES_PARAMS
        )
        if not is_minimal_notes(notes):
            return notes
        logger.info("Notes looked empty, retrying with fallback prompt")
        notes = await self.llm.complete(
            render("notes_system"), render("notes_fallback"), image_url=image, params=NOTES_PARAMS
        )
        if len(notes.strip()) > MIN_NOTES_CHARS:
            return notes
        return None

    def _notes_strategies(
        self, target: NotesTarget
    ) -> list[tuple[str, Callable[[], Awaitable[str]]]]:
        async def paste(script: str, app: str, key: str) -> str:
            await self._run_checked(script, f"Pasting into {app}")
            return key

        notes_app = (
            "notes_app",
            lambda: paste(applescripts.notes_new_note_paste(), "Notes", "notes_app"),
        )
        if target is NotesTarget.WORD:
            return [
                ("word", lambda: paste(applescripts.word_new_document_paste(), "Word", "word")),
                (
                    "notes_app",
                    lambda: paste(applescripts.notes_new_note_paste(), "Notes", "word_fallback"),
                ),
            ]
        if target is NotesTarget.GOOGLE_DOCS:
            return [
                (
                    "google_docs",
                    lambda: paste(
                        applescripts.google_docs_new_document_paste(), "Google Docs", "google_docs"
                    ),
                )
            ]
        return [notes_app]

    async def _take_notes(self, intent: Intent, request: AIRequest) -> Outcome:
        image = _require_image(request)
        target = intent.params.get("target", NotesTarget.NOTES_APP)
        notes = await self.generate_notes(image)
        if notes is None:
            return CommandResult(
                success=False,
                error=(
                    "I couldn't find enough content on screen to take notes. Make sure the "
                    "material is visible and try again."
                ),
            )
        formatted = format_notes_for_paste(notes)
        # クリップボードを確定させてから貼り付けを実行する
        async with self.clipboard.staged(formatted) as verified:
            outcome = await attempt_in_order(self._notes_strategies(target))
        return CommandResult(
            success=True,
            content=NOTES_MESSAGES[outcome.value],
            extra={"notes": formatted, "target": target.value, "clipboardVerified": verified},
        )

    async def _resume_upload(self, intent: Intent, request: AIRequest) -> Outcome:
        return CommandResult(
            success=True,
            content=(
                "Use the upload button in the overlay to select your resume (PDF or DOCX). "
                "Once it's parsed I can tailor internship searches and cover letters to you."
            ),
            extra={"needsFileUpload": True},
        )

    async def _spotify(self, intent: Intent, request: AIRequest) -> Outcome:
        if self.spotify is None:
            return CommandResult(success=False, error="Spotify integration is not available.")
        song, artist = intent.params["song"], intent.params.get("artist")
        outcome = await self.spotify.play(song, artist)
        extra: dict[str, Any] = {"strategy": outcome.strategy}
        if outcome.used_fallback and self.spotify.is_configured and self.spotify.tokens is None:
            extra.update(needsAuth=True, authUrl="/api/spotify/auth")
        return CommandResult(success=True, content=outcome.value, extra=extra)

    async def _youtube(self, intent: Intent, request: AIRequest) -> Outcome:
        if intent.params.get("from_screen"):
            image = _require_image(request)
            try:
                query = await self.llm.complete(
                    render("youtube_query_system"),
                    render("youtube_query_user"),
                    image_url=image,
                    params=YOUTUBE_PARAMS,
                )
            except ProviderError as e:
                logger.warning("YouTube query generation failed: %s", e.message)
                query = ""
            query = query.strip().strip("\"'") or YOUTUBE_DEFAULT_QUERY
        else:
            query = intent.params["topic"]
        url = YOUTUBE_SEARCH_URL + quote_plus(query)
        await self._open_urls([url])
        return CommandResult(
            success=True,
            content=f'Opened YouTube search results for "{query}".',
            extra={"searchQuery": query},
        )

    async def _open_app(self, intent: Intent, request: AIRequest) -> Outcome:
        name = intent.params["name"]

        async def via_open() -> None:
            (await self.automation.open_application(name)).check(f"Opening {name}")

        await attempt_in_order(
            [
                ("activate", lambda: self._run_checked(applescripts.activate_app(name), f"Activating {name}")),
                ("open", via_open),
            ]
        )
        return CommandResult(success=True, content=f"Successfully opened {name}.")

    async def _close_app(self, intent: Intent, request: AIRequest) -> Outcome:
        name = intent.params["name"]
        if not self.automation.is_app_running(name):
            return CommandResult(success=True, content=f"{name} is not running.")
        await self._run_checked(applescripts.quit_app(name), f"Closing {name}")
        return CommandResult(success=True, content=f"Successfully closed {name}.")

    async def send_message(self, recipient: str, message: str) -> str:
        """Messagesアプリで送信する. 失敗時はAutomationFailure."""
        await self._run_checked(applescripts.messages_send(recipient, message), "Sending message")
        logger.info("Message sent to %s", recipient)
        return f'Message "{message}" sent successfully to {recipient}.'

    async def _send_message(self, intent: Intent, request: AIRequest) -> Outcome:
        content = await self.send_message(intent.params["recipient"], intent.params["message"])
        return CommandResult(success=True, content=content)
