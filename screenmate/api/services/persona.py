"""Learning persona: how the user learns, built up from their queries."""

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

logger = get_logger("persona")

RECENT_INSIGHTS = 3
MAX_SESSION_HISTORY = 200

_NAME_PATTERN = re.compile(r"(?i:my name is|call me)\s+([A-Za-z]+)|(?i:i'm|i am)\s+([A-Z][a-z]+)\b")
_ROLE_PATTERN = re.compile(r"(?:i work as|i'm a|i am a|my role is|current role)\s+([^.!?]+)", re.IGNORECASE)

LEARNING_KEYWORDS = (
    "learn",
    "study",
    "understand",
    "explain",
    "help me with",
    "how to",
    "practice",
    "review",
    "test",
    "exam",
    "quiz",
    "assignment",
    "homework",
    "concept",
    "theory",
    "problem",
    "solve",
    "figure out",
    "get better at",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def default_persona() -> dict[str, Any]:
    return {
        "profile": {"name": None, "currentRole": None},
        "learningProfile": {
            "primaryLearningStyle": "unknown",
            "confidenceLevel": "medium",
            "anxietyLevel": "low",
        },
        "learningPatterns": {
            "optimalSessionLength": 45,
            "bestTimeOfDay": "morning",
            "retentionRate": 0.7,
        },
        "adaptiveStrategies": {
            "feedbackStyle": "constructive",
            "encouragementLevel": "moderate",
            "challengeLevel": "optimal",
        },
        "progressMetrics": {
            "totalLearningSessions": 0,
            "averageSessionLength": 0.0,
            "successRate": 0.0,
        },
        "lifeContext": {"currentStressors": []},
        "sessionHistory": [],
        "insights": [],
        "lastUpdated": _now(),
    }


def is_learning_context(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in LEARNING_KEYWORDS)


def classify_session_type(message: str) -> str:
    """学習セッションの種類を判定する."""
    lowered = message.lower()
    if any(word in lowered for word in ("test", "exam", "quiz")):
        return "assessment"
    if any(word in lowered for word in ("practice", "exercise")):
        return "practice"
    if any(word in lowered for word in ("review", "recap")):
        return "review"
    if any(word in lowered for word in ("explain", "understand")):
        return "concept_learning"
    return "general_learning"


class PersonaStore:
    """学習ペルソナの保持と更新."""

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / "learning_persona.json"
        self._write_lock = threading.Lock()
        self.persona = self._load()

    def _load(self) -> dict[str, Any]:
        persona = default_persona()
        if not self.path.exists():
            return persona
        try:
            with open(self.path, encoding="utf-8") as f:
                stored = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not load persona, starting fresh: %s", e)
            return persona
        for key, value in stored.items():
            if isinstance(value, dict) and isinstance(persona.get(key), dict):
                persona[key].update(value)
            else:
                persona[key] = value
        return persona

    def _save(self) -> None:
        self.persona["lastUpdated"] = _now()
        self.data_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.data_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.persona, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def _insight(self, kind: str, description: str, confidence: float) -> dict[str, Any]:
        return {
            "timestamp": _now(),
            "type": kind,
            "description": description,
            "confidence": confidence,
            "actionable": True,
        }

    def extract_user_info(self, user_message: str, ai_response: str) -> list[dict[str, Any]]:
        """会話から学習者情報を抽出してペルソナを更新し、得られた知見を返す."""
        lowered = user_message.lower()
        insights: list[dict[str, Any]] = []

        with self._write_lock:
            profile = self.persona["profile"]
            learning = self.persona["learningProfile"]

            name_match = _NAME_PATTERN.search(user_message)
            if name_match and not profile.get("name"):
                profile["name"] = (name_match.group(1) or name_match.group(2)).title()
                insights.append(
                    self._insight("profile_update", f"Learned user's name: {profile['name']}", 0.9)
                )

            role_match = _ROLE_PATTERN.search(user_message)
            if role_match and not profile.get("currentRole"):
                profile["currentRole"] = role_match.group(1).strip()
                insights.append(
                    self._insight(
                        "profile_update",
                        f"Learned user's current role: {profile['currentRole']}",
                        0.8,
                    )
                )

            if "visual learner" in lowered or "visual learning" in lowered:
                learning["primaryLearningStyle"] = "visual"
                insights.append(self._insight("learning_style", "User identified as visual learner", 0.9))

            if any(word in lowered for word in ("stress", "anxious", "overwhelmed")):
                learning["anxietyLevel"] = "medium"
                stressors = self.persona["lifeContext"]["currentStressors"]
                if "learning pressure" not in stressors:
                    stressors.append("learning pressure")
                insights.append(self._insight("stress_detection", "Detected learning-related stress", 0.7))

            if any(word in lowered for word in ("unsure", "doubt", "not sure")):
                learning["confidenceLevel"] = "low"
            elif "confident" in lowered or "sure" in lowered:
                learning["confidenceLevel"] = "high"

            if is_learning_context(user_message):
                self.persona["progressMetrics"]["totalLearningSessions"] += 1
                history = self.persona["sessionHistory"]
                history.append(
                    {
                        "timestamp": _now(),
                        "query": user_message,
                        "response": ai_response[:500],
                        "sessionType": classify_session_type(user_message),
                    }
                )
                del history[:-MAX_SESSION_HISTORY]

            self.persona["insights"].extend(insights)
            self._save()
        return insights

    def update_learning_patterns(self, duration: float | None = None, success: bool | None = None) -> None:
        with self._write_lock:
            metrics = self.persona["progressMetrics"]
            sessions = max(metrics["totalLearningSessions"], 1)
            if duration is not None:
                metrics["averageSessionLength"] = (
                    metrics["averageSessionLength"] * (sessions - 1) + duration
                ) / sessions
            if success is not None:
                metrics["successRate"] = (
                    metrics["successRate"] * (sessions - 1) + (1 if success else 0)
                ) / sessions
            self._save()

    def generate_learning_context(self) -> str:
        with self._write_lock:
            persona = copy.deepcopy(self.persona)

        profile = persona["profile"]
        learning = persona["learningProfile"]
        patterns = persona["learningPatterns"]
        strategies = persona["adaptiveStrategies"]

        lines: list[str] = []
        if profile.get("name"):
            lines.append(f"User's name: {profile['name']}")
        if profile.get("currentRole"):
            lines.append(f"Current role: {profile['currentRole']}")
        lines.append(f"Learning style: {learning['primaryLearningStyle']}")
        lines.append(f"Confidence level: {learning['confidenceLevel']}")
        lines.append(f"Anxiety level: {learning['anxietyLevel']}")

        recent = persona["insights"][-RECENT_INSIGHTS:]
        if recent:
            lines.append("")
            lines.append("Recent learning insights:")
            lines.extend(f"- {insight['description']}" for insight in recent)

        lines.append("")
        lines.append(f"Optimal session length: {patterns['optimalSessionLength']} minutes")
        lines.append(f"Best time of day: {patterns['bestTimeOfDay']}")
        lines.append(f"Retention rate: {patterns['retentionRate'] * 100:.0f}%")
        lines.append("")
        lines.append(f"Preferred feedback style: {strategies['feedbackStyle']}")
        lines.append(f"Encouragement level: {strategies['encouragementLevel']}")
        lines.append(f"Challenge level: {strategies['challengeLevel']}")
        return "\n".join(lines)

    def summary(self) -> dict[str, Any]:
        with self._write_lock:
            persona = copy.deepcopy(self.persona)
        return {
            "profile": persona["profile"],
            "learningProfile": persona["learningProfile"],
            "progressMetrics": persona["progressMetrics"],
            "recentInsights": persona["insights"][-5:],
            "recommendations": self._recommendations(persona),
            "lastUpdated": persona["lastUpdated"],
        }

    @staticmethod
    def _recommendations(persona: dict[str, Any]) -> list[dict[str, str]]:
        learning = persona["learningProfile"]
        recommendations: list[dict[str, str]] = []
        if learning["primaryLearningStyle"] == "visual":
            recommendations.append(
                {
                    "type": "learning_style",
                    "title": "Visual Learning Enhancement",
                    "description": "Since you prefer visual learning, try using diagrams, charts, and visual aids when studying new concepts.",
                    "priority": "high",
                }
            )
        if learning["confidenceLevel"] == "low":
            recommendations.append(
                {
                    "type": "confidence_building",
                    "title": "Confidence Building",
                    "description": "Focus on breaking down complex topics into smaller, manageable chunks to build confidence gradually.",
                    "priority": "high",
                }
            )
        if learning["anxietyLevel"] in ("medium", "high"):
            recommendations.append(
                {
                    "type": "stress_management",
                    "title": "Stress Management",
                    "description": "Consider taking regular breaks and using relaxation techniques during study sessions.",
                    "priority": "medium",
                }
            )
        return recommendations

    def generate_recommendations(self) -> list[dict[str, str]]:
        with self._write_lock:
            persona = copy.deepcopy(self.persona)
        return self._recommendations(persona)
