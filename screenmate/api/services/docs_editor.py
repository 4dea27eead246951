"""In-place Google Docs editing: OCR the visible document, rewrite it, paste it back."""

import asyncio
import base64
import binascii
import io
import re
from collections.abc import Callable
from dataclasses import dataclass

import pytesseract
from PIL import Image, UnidentifiedImageError

from screenmate.api.errors import ScreenmateError
from screenmate.api.services import applescripts
from screenmate.api.services.automation import AutomationProvider, Clipboard
from screenmate.api.services.intents import EditKind
from screenmate.api.services.llm import CompletionParams, LLMService
from screenmate.api.services.prompts import render
from screenmate.api.services.text_tools import sanitize_for_paste, strip_code_fences
from screenmate.logger import get_logger

logger = get_logger("docs_editor")

MIN_SOURCE_CHARS = 10
MIN_EDIT_CHARS = 5
EDIT_PARAMS = CompletionParams(max_tokens=4000, temperature=0.3, top_p=0.95)

_UI_LINE = re.compile(
    r"^(File|Edit|View|Insert|Format|Tools|Help|Share|Comments|Suggesting|Editing|Page|Zoom)",
    re.IGNORECASE,
)
_SYMBOL_LINE = re.compile(r"^[^a-zA-Z0-9\s]{3,}$")
_REFUSAL_START = (
    re.compile(r"^(i'm|i am)\s+sorry[,.]?\s+i\s+can(?:not|'?t)\s+assist\s+with\s+that", re.I),
    re.compile(r"^sorry[,.]?\s+i\s+can(?:not|'?t)\s+assist\s+with\s+that", re.I),
    re.compile(r"^i\s+apologize[,.]?\s+but\s+i\s+can(?:not|'?t)\s+assist", re.I),
    re.compile(r"^unfortunately[,.]?\s+i\s+can(?:not|'?t)\s+assist", re.I),
)

_ANALYZING = "Analyzing your document and preparing improvements...\n\n"
_APPLIED = " Changes have been applied directly to your Google Doc."
SUCCESS_MESSAGES = {
    EditKind.GRAMMAR: _ANALYZING + "Fixed all grammar and spelling errors in your document." + _APPLIED,
    EditKind.SYNTHESIS: _ANALYZING
    + "Synthesized your notes into well-written paragraphs."
    + _APPLIED,
    EditKind.POLISH: _ANALYZING + "Polished and improved your document." + _APPLIED,
}


class DocsEditError(ScreenmateError):
    status_code = 422


@dataclass(frozen=True)
class EditResult:
    kind: EditKind
    original_length: int
    improved_length: int
    clipboard_verified: bool = False

    @property
    def message(self) -> str:
        return SUCCESS_MESSAGES[self.kind]


def decode_data_url(data_url: str) -> Image.Image:
    """``data:image/...;base64,`` 形式の文字列をPIL画像に変換する."""
    _, sep, payload = data_url.partition(",")
    if not sep:
        raise DocsEditError("Screen capture is not a data URL")
    try:
        return Image.open(io.BytesIO(base64.b64decode(payload)))
    except (binascii.Error, UnidentifiedImageError, ValueError) as e:
        raise DocsEditError(f"Screen capture could not be decoded: {e}") from e


def filter_ui_lines(text: str) -> str:
    """OCR結果からメニュー等のUI行とノイズ行を除く."""
    kept = []
    for line in text.splitlines():
        stripped = line.strip()
        if len(stripped) < 3:
            continue
        if _SYMBOL_LINE.match(stripped) or _UI_LINE.match(stripped):
            continue
        kept.append(stripped)
    return "\n".join(kept).strip()


def looks_like_refusal(text: str) -> bool:
    head = text[:150].strip().replace(chr(0x2019), "'")
    return any(pattern.search(head) for pattern in _REFUSAL_START)


class GoogleDocsEditor:
    def __init__(
        self,
        llm: LLMService,
        automation: AutomationProvider,
        clipboard: Clipboard,
        ocr: Callable[[Image.Image], str] | None = None,
    ) -> None:
        self.llm = llm
        self.automation = automation
        self.clipboard = clipboard
        self._ocr = ocr or pytesseract.image_to_string

    async def extract_text(self, data_url: str) -> str:
        image = decode_data_url(data_url)
        try:
            raw = await asyncio.to_thread(self._ocr, image)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError) as e:
            raise DocsEditError(f"Failed to extract text from screen: {e}") from e
        return filter_ui_lines(raw)

    async def improve(self, text: str, kind: EditKind, query: str = "") -> str:
        improved = await self.llm.complete(
            render(f"edit_{kind.value}_system"),
            render(f"edit_{kind.value}_user", text=text, query=query),
            params=EDIT_PARAMS,
        )
        improved = strip_code_fences(improved)
        if looks_like_refusal(improved):
            raise DocsEditError(
                "AI returned an error message instead of improved text. Please try again."
            )
        if len(improved.strip()) < MIN_EDIT_CHARS:
            raise DocsEditError(
                "Failed to generate improved text. The AI response was empty or too short."
            )
        return improved

    async def replace_document_text(self, text: str) -> bool:
        """クリップボードに置いてから全選択→貼り付けで置き換える."""
        async with self.clipboard.staged(sanitize_for_paste(text)) as verified:
            outcome = await self.automation.run_script(applescripts.google_docs_replace_all())
            outcome.check("Replacing document text")
        return verified

    async def edit(self, data_url: str, query: str, kind: EditKind) -> EditResult:
        original = await self.extract_text(data_url)
        if len(original) < MIN_SOURCE_CHARS:
            raise DocsEditError(
                "Could not extract sufficient text from the document. "
                "Please ensure the Google Doc is visible on screen."
            )
        improved = await self.improve(original, kind, query)
        verified = await self.replace_document_text(improved)
        logger.info(
            "Document edited | kind=%s original=%d improved=%d",
            kind.value,
            len(original),
            len(improved),
        )
        return EditResult(
            kind=kind,
            original_length=len(original),
            improved_length=len(improved),
            clipboard_verified=verified,
        )
