import pytest

from screenmate.api.services.text_tools import (
    escape_applescript,
    format_notes_for_paste,
    normalize_app_name,
    normalize_math,
    sanitize_for_paste,
    strip_code_fences,
)


class TestNormalizeMath:
    """数式区切りの正規化"""

    def test_display_and_inline(self):
        text = r"Block \[x^2\] and inline \(y\)"
        assert normalize_math(text) == r"Block $$x^2$$ and inline $y$"

    def test_double_backslashes_unescaped(self):
        assert normalize_math(r"$\\frac{1}{2}$") == r"$\frac{1}{2}$"

    def test_trig_theta(self):
        assert normalize_math(r"$\sin\theta$") == r"$\sin(\theta)$"

    def test_empty(self):
        assert normalize_math("") == ""


class TestPasteFormatting:
    def test_notes_markdown_flattened(self):
        notes = "# Title\n\n**Key** idea\n- first\n* second\n\n\n\nend"
        assert format_notes_for_paste(notes) == "Title\n\nKey idea\n• first\n• second\n\nend"

    def test_sanitize_replaces_smart_punctuation(self):
        text = "It" + chr(0x2019) + "s " + chr(0x201C) + "done" + chr(0x201D) + chr(0x2026)
        assert sanitize_for_paste(text) == "It's \"done\"..."

    def test_sanitize_collapses_whitespace(self):
        assert sanitize_for_paste("a  \t b\n\n\n\nc") == "a b\n\nc"

    def test_strip_code_fences(self):
        assert strip_code_fences("```markdown\nHello\n```") == "Hello"


class TestAppNames:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("chrome", "Google Chrome"),
            ("Spotify.", "Spotify"),
            ("visual studio code", "Visual Studio Code"),
            ("zoom", "zoom.us"),
        ],
    )
    def test_normalize_app_name(self, raw, expected):
        assert normalize_app_name(raw) == expected

    def test_escape_applescript(self):
        assert escape_applescript('say "hi"\nnow') == 'say \\"hi\\"\\nnow'
