"""Text helpers: math delimiter normalization, paste formatting and app names."""

import re
import unicodedata

_DISPLAY_MATH = re.compile(r"\\\[(.*?)\\\]", re.DOTALL)
_INLINE_MATH = re.compile(r"\\\((.*?)\\\)", re.DOTALL)
_DOLLAR_MATH = re.compile(r"\$\$(.+?)\$\$|\$([^$]+?)\$", re.DOTALL)
_TRIG_THETA = re.compile(r"\\(sin|cos|tan)\\theta")

APP_NAME_MAP = {
    "messages": "Messages",
    "spotify": "Spotify",
    "safari": "Safari",
    "chrome": "Google Chrome",
    "google chrome": "Google Chrome",
    "word": "Microsoft Word",
    "microsoft word": "Microsoft Word",
    "excel": "Microsoft Excel",
    "powerpoint": "Microsoft PowerPoint",
    "terminal": "Terminal",
    "finder": "Finder",
    "calendar": "Calendar",
    "mail": "Mail",
    "notes": "Notes",
    "photos": "Photos",
    "music": "Music",
    "maps": "Maps",
    "notion": "Notion",
    "slack": "Slack",
    "zoom": "zoom.us",
}


def normalize_math(text: str) -> str:
    r"""LaTeXの ``\[..\]`` / ``\(..\)`` をドル記号区切りに変換する.

    ドル区切りの内側では二重バックスラッシュを1つに戻す。
    """
    if not text:
        return text
    processed = _DISPLAY_MATH.sub(lambda m: f"$${m.group(1)}$$", text)
    processed = _INLINE_MATH.sub(lambda m: f"${m.group(1)}$", processed)

    def _unescape(match: re.Match[str]) -> str:
        if match.group(1) is not None:
            return "$$" + match.group(1).replace("\\\\", "\\") + "$$"
        return "$" + match.group(2).replace("\\\\", "\\") + "$"

    processed = _DOLLAR_MATH.sub(_unescape, processed)
    return _TRIG_THETA.sub(r"\\\1(\\theta)", processed)


def format_notes_for_paste(notes: str) -> str:
    """Markdownのノートを貼り付け用のプレーンテキストに整形する."""
    text = re.sub(r"^#{1,6}\s*", "", notes, flags=re.MULTILINE)
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text)
    text = re.sub(r"^\s*[-*]\s+", "• ", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


_PASTE_REPLACEMENTS = {
    "\u2018": "'",
    "\u2019": "'",
    "\u201a": "'",
    "\u201b": "'",
    "\u201c": '"',
    "\u201d": '"',
    "\u201e": '"',
    "\u201f": '"',
    "\u2032": "'",
    "\u2033": "'",
    "\u2013": "-",
    "\u2014": "-",
    "\u2026": "...",
    "\u00a0": " ",
    "\u2028": "\n",
    "\u2029": "\n\n",
    "\ufffd": "",
    "\u200b": "",
    "\u200c": "",
    "\u200d": "",
    "\ufeff": "",
}
_WIDE_SPACES = re.compile("[\u2000-\u200a]")


def sanitize_for_paste(text: str) -> str:
    """Google Docsへ貼り付ける前に文字化けしやすい文字を置換する."""
    sanitized = unicodedata.normalize("NFC", str(text))
    for src, dst in _PASTE_REPLACEMENTS.items():
        sanitized = sanitized.replace(src, dst)
    sanitized = _WIDE_SPACES.sub(" ", sanitized)
    sanitized = re.sub(r"[ \t]+", " ", sanitized)
    sanitized = re.sub(r"\n{3,}", "\n\n", sanitized)
    return sanitized.strip()


def strip_code_fences(text: str) -> str:
    text = re.sub(r"^```[\w]*\n?", "", text.strip())
    return re.sub(r"\n?```$", "", text).strip()


def normalize_app_name(name: str) -> str:
    """ユーザー入力のアプリ名をmacOSのアプリ名に正規化する."""
    cleaned = re.sub(r"[.!?,;:]+$", "", name.strip())
    mapped = APP_NAME_MAP.get(cleaned.lower())
    if mapped:
        return mapped
    return " ".join(word[:1].upper() + word[1:] for word in cleaned.split())


def escape_applescript(text: str) -> str:
    """AppleScriptの文字列リテラル用にエスケープする."""
    return (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )
