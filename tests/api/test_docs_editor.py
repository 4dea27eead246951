import pytest

from screenmate.api.services.automation import Clipboard
from screenmate.api.services.docs_editor import (
    SUCCESS_MESSAGES,
    DocsEditError,
    GoogleDocsEditor,
    filter_ui_lines,
    looks_like_refusal,
)
from screenmate.api.services.intents import EditKind
from tests.fakes import FakeAutomation, FakeLLM

OCR_TEXT = """File Edit View Insert Format Tools
|||
The mitocondria is the powerhouse of the cell.
It produce energy for the cell to use.
"""
IMPROVED = "The mitochondria is the powerhouse of the cell. It produces energy for the cell to use."


def _editor(llm, automation=None, ocr_text=OCR_TEXT):
    automation = automation or FakeAutomation()
    return GoogleDocsEditor(
        llm, automation, Clipboard(automation, settle_delay=0), ocr=lambda _image: ocr_text
    )


class TestFilterUiLines:
    def test_menu_and_symbol_lines_removed(self):
        assert filter_ui_lines(OCR_TEXT) == (
            "The mitocondria is the powerhouse of the cell.\nIt produce energy for the cell to use."
        )

    def test_short_lines_removed(self):
        assert filter_ui_lines("ok\n  \nA real sentence here.") == "A real sentence here."


class TestGoogleDocsEditor:
    """OCR→修正→貼り付けの一連の流れ"""

    @pytest.mark.asyncio
    async def test_edit_replaces_document(self, png_data_url):
        automation = FakeAutomation()
        llm = FakeLLM(completions=[f"```\n{IMPROVED}\n```"])

        result = await _editor(llm, automation).edit(png_data_url, "fix grammar", EditKind.GRAMMAR)

        assert result.message == SUCCESS_MESSAGES[EditKind.GRAMMAR]
        assert result.clipboard_verified
        script, snapshot = automation.scripts[0]
        assert "keystroke \"a\" using command down" in script
        assert snapshot == IMPROVED
        assert "mitocondria" in llm.complete_calls[0]["user"]

    @pytest.mark.asyncio
    async def test_insufficient_text(self, png_data_url):
        llm = FakeLLM()
        editor = _editor(llm, ocr_text="File\nok\n")

        with pytest.raises(DocsEditError, match="sufficient text"):
            await editor.edit(png_data_url, "fix grammar", EditKind.GRAMMAR)
        assert llm.complete_calls == []

    @pytest.mark.asyncio
    async def test_refusal_is_not_pasted(self, png_data_url):
        automation = FakeAutomation()
        llm = FakeLLM(completions=["I'm sorry, I can't assist with that."])

        with pytest.raises(DocsEditError, match="instead of improved text"):
            await _editor(llm, automation).edit(png_data_url, "polish", EditKind.POLISH)
        assert automation.scripts == []

    @pytest.mark.asyncio
    async def test_undecodable_capture(self):
        with pytest.raises(DocsEditError):
            await _editor(FakeLLM()).edit("data:image/png;base64,bm90IGFuIGltYWdl", "", EditKind.POLISH)

    def test_refusal_detection(self):
        assert looks_like_refusal("Unfortunately, I cannot assist with this request.")
        assert not looks_like_refusal("Sorry for the delay: here is the revised text.")

    @pytest.mark.parametrize(
        "text",
        [
            "I'm sorry, I can't assist with that.",
            "I’m sorry, I can’t assist with that.",
            "Sorry, I cant assist with that request.",
            "I apologize, but I can't assist with editing this.",
        ],
    )
    def test_contracted_refusals(self, text):
        """短縮形（can't）や曲がった引用符の拒否文も検出する"""
        assert looks_like_refusal(text)
