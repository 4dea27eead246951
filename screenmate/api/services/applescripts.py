"""AppleScript sources used by the side-effect coordinator."""

from collections.abc import Sequence

from screenmate.api.services.text_tools import escape_applescript

GOOGLE_DOCS_CREATE_URL = "https://docs.google.com/document/create"


def activate_app(name: str) -> str:
    return f'tell application "{escape_applescript(name)}" to activate'


def quit_app(name: str) -> str:
    return f'quit app "{escape_applescript(name)}"'


def chrome_open_tabs(urls: Sequence[str]) -> str:
    """Chromeで新しいタブを開きURLを順に表示する."""
    lines = ['tell application "Google Chrome"', "    activate"]
    lines.append("    if (count of windows) = 0 then make new window")
    for url in urls:
        lines.append(
            f'    tell front window to make new tab with properties {{URL:"{escape_applescript(url)}"}}'
        )
    lines.append("end tell")
    return "\n".join(lines)


def notes_new_note_paste() -> str:
    return """
tell application "Notes" to activate
delay 0.8
tell application "System Events"
    keystroke "n" using command down
    delay 0.5
    keystroke "v" using command down
end tell
""".strip()


def word_new_document_paste() -> str:
    return """
tell application "Microsoft Word"
    activate
    make new document
end tell
delay 1.0
tell application "System Events"
    keystroke "v" using command down
end tell
""".strip()


def google_docs_new_document_paste() -> str:
    """既存のGoogle Docsタブを前面に出して貼り付ける. 無ければ新規作成する."""
    return f"""
tell application "Google Chrome"
    activate
    set docTab to missing value
    repeat with w in windows
        repeat with t in tabs of w
            if URL of t contains "docs.google.com/document" then
                set docTab to t
                set active tab of w to t
                set index of w to 1
                exit repeat
            end if
        end repeat
        if docTab is not missing value then exit repeat
    end repeat
    if docTab is missing value then
        if (count of windows) = 0 then make new window
        tell front window to make new tab with properties {{URL:"{GOOGLE_DOCS_CREATE_URL}"}}
        delay 4
    end if
end tell
delay 1.0
tell application "System Events"
    keystroke "v" using command down
end tell
""".strip()


def google_docs_replace_all() -> str:
    """開いているGoogle Docの本文を全選択して貼り付けで置き換える."""
    return """
tell application "Google Chrome" to activate
delay 0.5
tell application "System Events"
    keystroke "a" using command down
    delay 0.3
    keystroke "v" using command down
end tell
""".strip()


def messages_send(recipient: str, message: str) -> str:
    return f"""
tell application "Messages"
    set targetService to 1st account whose service type = iMessage
    set targetBuddy to participant "{escape_applescript(recipient)}" of targetService
    send "{escape_applescript(message)}" to targetBuddy
end tell
""".strip()


def spotify_play_track(uri: str) -> str:
    return f'tell application "Spotify" to play track "{escape_applescript(uri)}"'
