"""Conversation memory: append-only history plus a lightweight user profile.

Both documents are JSON files under the data directory. Every mutation goes
through ``_write_lock`` and is written with an atomic replace, so concurrent
appends from the post-completion queue cannot interleave.
"""

import copy
import json
import os
import re
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from screenmate.logger import get_logger
from screenmate.model.models import ConversationRecord, UserProfile

logger = get_logger("memory")

MAX_HISTORY = 100
CONTEXT_CONVERSATIONS = 3
USER_PREVIEW_CHARS = 150
AI_PREVIEW_CHARS = 200

_NAME_PATTERNS = (
    re.compile(r"(?i:my name is|call me|name:)\s+([A-Za-z]+(?:\s+[A-Z][a-z]+)?)"),
    re.compile(r"(?i:i'm|i am)\s+([A-Z][a-z]+)\b"),
)
_EMAIL_PATTERN = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_PHONE_PATTERN = re.compile(r"(\+?1?[-.\s]?\(?[0-9]{3}\)?[-.\s]?[0-9]{3}[-.\s]?[0-9]{4})")
_COMPANY_PATTERN = re.compile(
    r"(?i:work at|worked at|employed at|intern at|company:)\s*([A-Za-z&][A-Za-z\s&]{1,40}?)(?=[.,!?\n]|$)"
)
_ROLE_PATTERN = re.compile(r"(?i:role|position|job):\s*([A-Za-z\s]{2,40}?)(?=[.,!?\n]|$)")
_SKILLS_PATTERN = re.compile(
    r"(?i:skills?:|proficient in|experience with)\s*([A-Za-z,\s+#]+?)(?=[.!?\n]|$)"
)
_EDUCATION_PATTERN = re.compile(
    r"(?i:studying at|student at|attending|university:|college:)\s*([A-Za-z\s&]{2,60}?)(?=[.,!?\n]|$)"
)
_YEARS_PATTERN = re.compile(r"(\d+)\s*(?:years?|yrs?)\s*(?:of\s*)?experience", re.IGNORECASE)

_LEARNING_STYLE_HINTS = (
    ("visual", ("visual", "diagram", "chart", "picture")),
    ("auditory", ("audio", "listen", "hear")),
    ("kinesthetic", ("practice", "hands-on", "do it")),
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_profile() -> UserProfile:
    return {
        "personal": {"name": None, "email": None, "phone": None},
        "professional": {
            "currentRole": None,
            "company": None,
            "education": None,
            "yearsOfExperience": None,
        },
        "skills": [],
        "experiences": [],
        "preferences": {"learningStyle": "unknown"},
        "metadata": {"totalInteractions": 0, "lastInteraction": None, "createdAt": _now()},
    }


def extract_facts(text: str) -> dict[str, Any]:
    """テキストからユーザー情報（名前・連絡先・職歴・スキル）を抽出する."""
    facts: dict[str, Any] = {}
    for pattern in _NAME_PATTERNS:
        match = pattern.search(text)
        if match:
            facts["name"] = match.group(1).strip().title()
            break
    if match := _EMAIL_PATTERN.search(text):
        facts["email"] = match.group(1)
    if match := _PHONE_PATTERN.search(text):
        facts["phone"] = match.group(1).strip()
    if match := _COMPANY_PATTERN.search(text):
        facts["company"] = match.group(1).strip()
    if match := _ROLE_PATTERN.search(text):
        facts["currentRole"] = match.group(1).strip()
    if match := _EDUCATION_PATTERN.search(text):
        facts["education"] = match.group(1).strip()
    if match := _YEARS_PATTERN.search(text):
        facts["yearsOfExperience"] = int(match.group(1))
    if match := _SKILLS_PATTERN.search(text):
        skills = [s.strip() for s in re.split(r",|\band\b", match.group(1)) if s.strip()]
        if skills:
            facts["skills"] = skills
    return facts


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class MemoryStore:
    """会話履歴とユーザープロフィールを保持する."""

    def __init__(self, data_dir: Path, max_history: int = MAX_HISTORY) -> None:
        self.data_dir = Path(data_dir)
        self.history_path = self.data_dir / "conversation_history.json"
        self.profile_path = self.data_dir / "user_profile.json"
        self.max_history = max_history
        self._write_lock = threading.Lock()
        self.history: list[ConversationRecord] = self._load(self.history_path, [])
        self.profile: UserProfile = self._load(self.profile_path, default_profile())

    # --- 永続化 ---

    @staticmethod
    def _load(path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load %s, starting fresh: %s", path.name, e)
            return default

    def _save(self, path: Path, data: Any) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    # --- 書き込み ---

    def add_conversation(
        self, user_query: str, ai_response: str, screen_capture_ref: str | None = None
    ) -> ConversationRecord | None:
        """会話を1件追記し、本文からプロフィール情報を更新する."""
        if not user_query or not ai_response:
            logger.warning("Skipping conversation with empty query or response")
            return None

        record: ConversationRecord = {
            "timestamp": _now(),
            "userQuery": user_query,
            "aiResponse": ai_response,
            "screenCaptureRef": screen_capture_ref,
        }
        with self._write_lock:
            self.history.append(record)
            if len(self.history) > self.max_history:
                self.history = self.history[-self.max_history :]
            self._save(self.history_path, self.history)
            self._merge_facts(extract_facts(user_query))
            self._update_learning_style(f"{user_query} {ai_response}")
            self.profile["metadata"]["totalInteractions"] += 1
            self.profile["metadata"]["lastInteraction"] = record["timestamp"]
            self._save(self.profile_path, self.profile)
        return record

    def _merge_facts(self, facts: dict[str, Any]) -> None:
        personal = self.profile["personal"]
        professional = self.profile["professional"]
        for key in ("name", "email", "phone"):
            if key in facts:
                personal[key] = facts[key]
        for key in ("company", "currentRole", "education", "yearsOfExperience"):
            if key in facts:
                professional[key] = facts[key]
        for skill in facts.get("skills", []):
            if skill not in self.profile["skills"]:
                self.profile["skills"].append(skill)

    def _update_learning_style(self, text: str) -> None:
        lowered = text.lower()
        for style, hints in _LEARNING_STYLE_HINTS:
            if any(hint in lowered for hint in hints):
                self.profile["preferences"]["learningStyle"] = style
                return

    def clear(self) -> None:
        with self._write_lock:
            self.history = []
            self.profile = default_profile()
            self._save(self.history_path, self.history)
            self._save(self.profile_path, self.profile)
        logger.info("Memory cleared")

    # --- 読み出し ---

    def generate_memory_context(self, query: str = "") -> str:
        """プロンプトに差し込む記憶コンテキストを生成する. 何も無ければ空文字."""
        with self._write_lock:
            profile = copy.deepcopy(self.profile)
            recent = list(self.history[-CONTEXT_CONVERSATIONS:])

        lines: list[str] = []
        personal = profile["personal"]
        professional = profile["professional"]
        if personal.get("name"):
            lines.append("USER PROFILE:")
            lines.append(f"Name: {personal['name']}")
            labels = (
                ("education", "Education"),
                ("currentRole", "Current Role"),
                ("company", "Company"),
                ("yearsOfExperience", "Years of Experience"),
            )
            for key, label in labels:
                if professional.get(key):
                    lines.append(f"{label}: {professional[key]}")
            if profile["skills"]:
                lines.append(f"Skills: {', '.join(profile['skills'])}")
            lines.append(f"Learning Style: {profile['preferences'].get('learningStyle')}")
            lines.append(f"Total Interactions: {profile['metadata'].get('totalInteractions', 0)}")
            lines.append("")

        if recent:
            lines.append("RECENT CONVERSATION HISTORY:")
            lines.append("")
            for index, record in enumerate(recent, start=1):
                lines.append(f"Conversation {index}:")
                lines.append(f"User: {_truncate(record['userQuery'], USER_PREVIEW_CHARS)}")
                lines.append(f"AI: {_truncate(record['aiResponse'], AI_PREVIEW_CHARS)}")
                lines.append("")

        if not lines:
            return ""
        lines.append(
            "INSTRUCTIONS: Use this user profile and conversation history to provide "
            "highly personalized responses. Reference the user's name, background, "
            "skills, and previous conversations when relevant."
        )
        return "\n".join(lines)

    def summary(self) -> dict[str, Any]:
        with self._write_lock:
            return {
                "totalConversations": len(self.history),
                "recentConversations": list(self.history[-5:]),
                "userProfile": copy.deepcopy(self.profile),
                "lastUpdated": self.history[-1]["timestamp"] if self.history else None,
            }

    def recent(self, count: int = 5) -> list[ConversationRecord]:
        return list(self.history[-count:])
