"""Intent classification for assistant queries.

A query is matched against ``RULES``, an ordered table of
``Rule(name, kind, predicate, guard, extractor)`` entries. The first rule whose
predicate matches and whose guard holds decides the intent; later rules are
never evaluated. Several triggers overlap literally, so the table order is part
of the behaviour and is pinned by tests.
"""

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from screenmate.api.services.text_tools import normalize_app_name
from screenmate.model.models import AIRequest, ContextTab


class IntentKind(str, Enum):
    CONTINUATION = "continuation"
    INTERNSHIP_APPLY = "internship_apply"
    COVER_LETTER = "cover_letter"
    RESOURCE_SEARCH = "resource_search"
    EMAIL_RESPONSE = "email_response"
    GOOGLE_SEARCH = "google_search"
    TAKE_NOTES = "take_notes"
    RESUME_UPLOAD = "resume_upload"
    SPOTIFY_PLAY = "spotify_play"
    YOUTUBE_SEARCH = "youtube_search"
    OPEN_APP = "open_app"
    CLOSE_APP = "close_app"
    SEND_MESSAGE = "send_message"
    GOOGLE_DOCS_EDIT = "google_docs_edit"
    UNDERSTANDING = "understanding"
    PLAIN_EXPLAIN = "plain_explain"
    GENERIC_CHAT = "generic_chat"


class NotesTarget(str, Enum):
    NOTES_APP = "notes_app"
    WORD = "word"
    GOOGLE_DOCS = "google_docs"


class EditKind(str, Enum):
    GRAMMAR = "grammar"
    SYNTHESIS = "synthesis"
    POLISH = "polish"


# ストリーミング経路に渡すintent
AI_INTENTS = frozenset(
    {
        IntentKind.CONTINUATION,
        IntentKind.GOOGLE_DOCS_EDIT,
        IntentKind.UNDERSTANDING,
        IntentKind.PLAIN_EXPLAIN,
        IntentKind.GENERIC_CHAT,
    }
)


@dataclass(frozen=True)
class Intent:
    """分類結果. ``params`` はルールが抽出したパラメータ."""

    kind: IntentKind
    params: dict[str, Any] = field(default_factory=dict)
    rule: str = ""

    @property
    def is_ai(self) -> bool:
        return self.kind in AI_INTENTS


@dataclass(frozen=True)
class ClassificationContext:
    query: str
    has_capture: bool = False
    context_tabs: Sequence[ContextTab] = ()
    continuation_only: bool = False
    is_active_mode: bool = False
    selected_text: str | None = None

    @property
    def text(self) -> str:
        return self.query.strip()

    @property
    def lowered(self) -> str:
        return self.text.lower()

    @property
    def google_doc_open(self) -> bool:
        return any(tab.is_google_doc for tab in self.context_tabs)


Predicate = Callable[[ClassificationContext], Any]
Guard = Callable[[ClassificationContext], bool]
Extractor = Callable[[ClassificationContext, Any], dict[str, Any]]


@dataclass(frozen=True)
class Rule:
    name: str
    kind: IntentKind
    predicate: Predicate
    extractor: Extractor = lambda _ctx, _match: {}
    guard: Guard | None = None

    def apply(self, ctx: ClassificationContext) -> Intent | None:
        match = self.predicate(ctx)
        if not match:
            return None
        if self.guard is not None and not self.guard(ctx):
            return None
        return Intent(kind=self.kind, params=self.extractor(ctx, match), rule=self.name)


# --- 共有パターン ---

_CONTINUATION_VERBS = (
    r"(?:continue|finish|extend|complete|keep writing|wrap up|conclude|fill in"
    r"|write the next|carry on|help me write|assist with writing|write more"
    r"|add to|expand|develop|elaborate)"
)
_CONTINUATION_OBJECTS = (
    r"(?:writing|the|this\s+(?:essay|paragraph|section|doc|document|writing|content)"
    r"|from|where|at|this point|here|essay|paragraph|section|doc|document)"
)
# 早期判定（ルール2）と一般チャットでの再判定は必ずこの2つを共有する
CONTINUATION_PATTERN = re.compile(
    rf"{_CONTINUATION_VERBS}\s+{_CONTINUATION_OBJECTS}", re.IGNORECASE
)
SIMPLE_QUESTION_PATTERN = re.compile(
    r"\b(what|how|why|when|where|who|which|can you|could you|would you|do you"
    r"|are you|is this|does this|tell me|explain|describe|analyze|summarize"
    r"|help me understand|what does|what is|what are)\b",
    re.IGNORECASE,
)

EDIT_PATTERNS = (
    re.compile(
        r"\b(edit|fix|improve|polish|refine|revise|rewrite|enhance|clean up|correct)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(fix.*grammar|grammar.*fix|correct.*grammar|grammar.*error|grammar.*mistake)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(synthesize|combine|merge|consolidate)\b.*\b(notes|bullets?|paragraphs?)\b",
        re.IGNORECASE,
    ),
    re.compile(
        r"\b(improve.*writing|better.*writing|polish.*writing|refine.*writing)\b",
        re.IGNORECASE,
    ),
)
EXPLICIT_EDIT_WORDS = ("polish", "edit", "improve")

UNDERSTANDING_KEYWORDS = (
    "explain",
    "understand",
    "deconstruct",
    "main idea",
    "what is",
    "what are",
    "eli5",
    "summarize",
    "how does",
    "why is",
    "teach",
    "help",
    "solve",
    "question",
    "problem",
    "number",
)
QUIZ_KEYWORDS = (
    "quiz",
    "test",
    "exam",
    "question",
    "problem",
    "number",
    "answer",
    "choice",
    "option",
    "solve",
    "attack",
    "tackle",
)
_NUMBERED_QUESTION = re.compile(
    r"^\s*(?:\d+[.)]|q\d+[.:)]?|question\s+\d+|problem\s+\d+)\s",
    re.IGNORECASE | re.MULTILINE,
)
_CHOICE_MARKER = re.compile(r"^\s*\(?[a-e][.)]\s+\S", re.IGNORECASE | re.MULTILINE)


def is_continuation_phrase(query: str) -> bool:
    """続き書き依頼かどうか. 単純な質問文は除外する."""
    return bool(CONTINUATION_PATTERN.search(query)) and not SIMPLE_QUESTION_PATTERN.search(
        query
    )


def is_edit_request(query: str) -> bool:
    return any(pattern.search(query) for pattern in EDIT_PATTERNS)


def edit_kind(query: str) -> EditKind:
    lowered = query.lower()
    if re.search(r"\b(grammar|grammatical|spelling|punctuation)\b", lowered):
        return EditKind.GRAMMAR
    if re.search(
        r"\b(synthesize|combine|merge|consolidate)\b|notes.*paragraph|bullet.*paragraph",
        lowered,
    ):
        return EditKind.SYNTHESIS
    return EditKind.POLISH


def looks_like_quiz(query: str, selected_text: str | None = None) -> bool:
    """クイズ形式（設問番号・選択肢）かを判定する."""
    lowered = query.lower()
    if any(keyword in lowered for keyword in QUIZ_KEYWORDS):
        return True
    if not selected_text:
        return False
    if _NUMBERED_QUESTION.search(selected_text):
        return True
    return len(_CHOICE_MARKER.findall(selected_text)) >= 2


# --- ルール部品 ---


def _search(*patterns: str) -> Predicate:
    compiled = [re.compile(p, re.IGNORECASE) for p in patterns]

    def predicate(ctx: ClassificationContext) -> re.Match[str] | None:
        for pattern in compiled:
            match = pattern.search(ctx.text)
            if match:
                return match
        return None

    return predicate


def _group(name: str, index: int = 1) -> Extractor:
    def extractor(_ctx: ClassificationContext, match: re.Match[str]) -> dict[str, Any]:
        value = match.group(index) or ""
        return {name: value.strip().strip("\"'").strip()}

    return extractor


def _constant(**params: Any) -> Extractor:
    return lambda _ctx, _match: dict(params)


def _internship_params(_ctx: ClassificationContext, match: re.Match[str]) -> dict[str, Any]:
    return {"field": (match.group(1) or "finance").lower()}


def _spotify_params(_ctx: ClassificationContext, match: re.Match[str]) -> dict[str, Any]:
    song = match.group(1).strip().strip("\"'")
    artist = (match.group(2) or "").strip().strip("\"'") or None
    return {"song": song, "artist": artist}


def _app_params(_ctx: ClassificationContext, match: re.Match[str]) -> dict[str, Any]:
    return {"name": normalize_app_name(match.group(1))}


def _message_params(_ctx: ClassificationContext, match: re.Match[str]) -> dict[str, Any]:
    return {"recipient": match.group(1), "message": match.group(2).strip()}


def _understanding_params(ctx: ClassificationContext, _match: Any) -> dict[str, Any]:
    return {"quiz": looks_like_quiz(ctx.query, ctx.selected_text)}


def _chat_params(ctx: ClassificationContext, _match: Any) -> dict[str, Any]:
    # タブ情報が無くてルール2を通過した続き書き依頼をここで拾う
    return {"writing_continuation": is_continuation_phrase(ctx.lowered)}


_PREFIX = r"^(?:can you )?(?:please )?"

RULES: tuple[Rule, ...] = (
    Rule(
        "continuation_only",
        IntentKind.CONTINUATION,
        lambda ctx: ctx.continuation_only,
        _constant(continuation_only=True),
    ),
    Rule(
        "docs_continuation",
        IntentKind.CONTINUATION,
        lambda ctx: CONTINUATION_PATTERN.search(ctx.lowered),
        _constant(continuation_only=False),
        guard=lambda ctx: not SIMPLE_QUESTION_PATTERN.search(ctx.lowered)
        and ctx.google_doc_open,
    ),
    Rule(
        "internship_apply",
        IntentKind.INTERNSHIP_APPLY,
        _search(r"apply to (?:an? )?internships?(?: for me)?(?:\s+(?:in|for)\s+(\w+))?"),
        _internship_params,
    ),
    Rule(
        "cover_letter",
        IntentKind.COVER_LETTER,
        _search(
            r"(?:apply to|write cover letter for|analyze|help me with) (?:this|the) "
            r"(?:job|position|role|opportunity)",
            r"(?:write|create|generate) (?:a )?cover letter",
            r"(?:help me )?apply for this (?:job|position|role)",
        ),
    ),
    Rule(
        "resource_search",
        IntentKind.RESOURCE_SEARCH,
        _search(r"get me resources to learn (?:more )?about (.+)"),
        _group("topic"),
    ),
    Rule(
        "email_response",
        IntentKind.EMAIL_RESPONSE,
        _search(
            r"(?:respond to|reply to|answer|draft.*response.*for) (?:this|the) "
            r"(?:email|message|thread)",
            r"(?:write|create|generate) (?:a )?(?:response|reply|email) (?:to|for) "
            r"(?:this|the) (?:email|message|thread)",
            r"(?:help me )?(?:respond|reply|answer) (?:to|for) (?:this|the) "
            r"(?:email|message|thread)",
        ),
    ),
    Rule(
        "open_tab_search",
        IntentKind.GOOGLE_SEARCH,
        _search(r"open a (?:new )?tab (?:on|for|about) (.+)"),
        _group("topic"),
    ),
    # "google docs" を含むため google_search より前に評価する
    Rule(
        "notes_google_docs",
        IntentKind.TAKE_NOTES,
        _search(
            _PREFIX + r"(?:take|create|make|generate)\s+notes\s+(?:in|on)\s+google\s+docs?$",
            r"take notes (?:in|on) google docs?",
        ),
        _constant(target=NotesTarget.GOOGLE_DOCS),
    ),
    Rule(
        "notes_word",
        IntentKind.TAKE_NOTES,
        _search(
            _PREFIX
            + r"(?:take|create|make|generate)\s+notes\s+(?:in|on)\s+(?:microsoft\s+)?word$",
            r"take notes (?:in|on) (?:microsoft )?word",
        ),
        _constant(target=NotesTarget.WORD),
    ),
    Rule(
        "notes_plain",
        IntentKind.TAKE_NOTES,
        _search(_PREFIX + r"(?:take|create|make|generate)\s+notes(?:\s+on\s+(?:it|this))?$"),
        _constant(target=NotesTarget.NOTES_APP),
    ),
    # 先読み (?!docs?\s*$) は "google docs" 単体を検索トピックにしないため
    Rule(
        "google_search",
        IntentKind.GOOGLE_SEARCH,
        _search(
            r"open google and search for (.+)",
            r"search for (.+)",
            r"google (?!docs?\s*$)(.+)",
            r"look up (.+)",
            r"find information about (.+)",
        ),
        _group("topic"),
    ),
    Rule("resume_upload", IntentKind.RESUME_UPLOAD, _search(r"upload my resume")),
    Rule(
        "spotify_play",
        IntentKind.SPOTIFY_PLAY,
        _search(_PREFIX + r"play\s+(.+?)(?:\s+by\s+(.+?))?\s+(?:on\s+)?spotify$"),
        _spotify_params,
    ),
    # "about this" がトピック検索に取られないよう画面コンテキスト版を先に評価する
    Rule(
        "youtube_screen",
        IntentKind.YOUTUBE_SEARCH,
        _search(
            _PREFIX + r"(?:open|get|find|search for) (?:a )?youtube video "
            r"(?:to help me understand this|to help me learn this|about this|on this)$"
        ),
        _constant(from_screen=True),
    ),
    Rule(
        "youtube_topic",
        IntentKind.YOUTUBE_SEARCH,
        _search(
            _PREFIX + r"(?:get|find|search for|open) (?:a )?youtube video "
            r"(?:to learn about|about|on) (.+)$"
        ),
        lambda ctx, match: {"topic": match.group(1).strip(), "from_screen": False},
    ),
    Rule(
        "open_app",
        IntentKind.OPEN_APP,
        _search(_PREFIX + r"(?:open|launch|start) ([\w\s]+?)[.!]?$"),
        _app_params,
    ),
    Rule(
        "close_app",
        IntentKind.CLOSE_APP,
        _search(_PREFIX + r"(?:close|quit|exit) ([\w\s]+?)[.!]?$"),
        _app_params,
    ),
    Rule(
        "send_message",
        IntentKind.SEND_MESSAGE,
        _search(_PREFIX + r"(?:text|send|message) (\w+) [\"']?([^\"']+)[\"']?$"),
        _message_params,
    ),
    # 編集語は他のコマンド文にも現れるのでコマンド規則の後に置く
    Rule(
        "google_docs_edit",
        IntentKind.GOOGLE_DOCS_EDIT,
        lambda ctx: is_edit_request(ctx.lowered),
        lambda ctx, _match: {"edit_kind": edit_kind(ctx.lowered)},
        guard=lambda ctx: ctx.has_capture
        and (
            ctx.google_doc_open
            or any(word in ctx.lowered for word in EXPLICIT_EDIT_WORDS)
        ),
    ),
    Rule(
        "understanding",
        IntentKind.UNDERSTANDING,
        lambda ctx: any(keyword in ctx.lowered for keyword in UNDERSTANDING_KEYWORDS),
        _understanding_params,
        guard=lambda ctx: ctx.is_active_mode,
    ),
    Rule(
        "plain_explain",
        IntentKind.PLAIN_EXPLAIN,
        lambda ctx: ctx.lowered == "explain this",
        lambda ctx, _match: {"text": ctx.selected_text or ""},
        guard=lambda ctx: bool(ctx.selected_text and ctx.selected_text.strip()),
    ),
    Rule("generic_chat", IntentKind.GENERIC_CHAT, lambda _ctx: True, _chat_params),
)


def classify_context(ctx: ClassificationContext, rules: Sequence[Rule] = RULES) -> Intent:
    for rule in rules:
        intent = rule.apply(ctx)
        if intent is not None:
            return intent
    # generic_chat が常に一致するので通常ここには来ない
    return Intent(kind=IntentKind.GENERIC_CHAT, params=_chat_params(ctx, None), rule="default")


def classify(
    query: str,
    has_capture: bool = False,
    context_tabs: Sequence[ContextTab] = (),
    *,
    continuation_only: bool = False,
    is_active_mode: bool = False,
    selected_text: str | None = None,
) -> Intent:
    """クエリを分類してIntentを返す.

    Args:
        query: ユーザーの入力文
        has_capture: スクリーンキャプチャがあるか
        context_tabs: ブラウザで開いているタブ
        continuation_only: クライアントからの続き書き専用フラグ
        is_active_mode: Active Understanding Mode か
        selected_text: ユーザーが選択しているテキスト

    Returns:
        Intent: 最初に一致したルールの分類結果

    """
    ctx = ClassificationContext(
        query=query,
        has_capture=has_capture,
        context_tabs=tuple(context_tabs),
        continuation_only=continuation_only,
        is_active_mode=is_active_mode,
        selected_text=selected_text,
    )
    return classify_context(ctx)


def classify_request(request: AIRequest) -> Intent:
    return classify(
        request.query,
        has_capture=request.has_capture,
        context_tabs=request.context_tabs,
        continuation_only=request.continuation_only,
        is_active_mode=request.is_active_mode,
        selected_text=request.selected_text,
    )
