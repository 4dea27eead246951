__all__ = [
    "AIRequest",
    "CaptureActivityUpdate",
    "ContextTab",
    "ConversationRecord",
    "InteractiveFeedbackRequest",
    "QuizStepRequest",
    "ResumeProfile",
    "ScreenCapture",
    "SendMessageRequest",
    "TutoringAdvance",
    "TutoringSessionCreate",
    "TutoringStepResponse",
    "UserProfile",
]


import time
import uuid
from typing import Any, TypedDict

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

IMAGE_DATA_URL_PREFIX = "data:image/"


class _WireModel(BaseModel):
    """クライアントとのJSONはcamelCase、Python側はsnake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScreenCapture(_WireModel):
    """クライアントから送られるスクリーンキャプチャ."""

    data_url: str = Field(alias="dataURL")
    timestamp: float | None = None
    unique_id: str | None = None

    @property
    def is_image(self) -> bool:
        return self.data_url.startswith(IMAGE_DATA_URL_PREFIX)


class ContextTab(_WireModel):
    url: str = ""
    title: str = ""

    @property
    def is_google_doc(self) -> bool:
        return "docs.google.com/document" in self.url


class ResumeProfile(_WireModel):
    """外部の履歴書解析が生成するプロフィール. リクエスト中は不変."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True, extra="ignore"
    )

    name: str | None = None
    university: str | None = None
    major: str | None = None
    class_year: str | None = None
    graduation_year: str | None = None
    skills: list[str] = Field(default_factory=list)
    relevant_experience: list[Any] = Field(default_factory=list)
    leadership_roles: list[Any] = Field(default_factory=list)
    projects: list[Any] = Field(default_factory=list)
    achievements: list[Any] = Field(default_factory=list)
    extracurriculars: list[Any] = Field(default_factory=list)

    @field_validator("class_year", "graduation_year", mode="before")
    @classmethod
    def year_as_text(cls, v: Any) -> Any:
        """年は数値で送られてくることがある"""
        if isinstance(v, int):
            return str(v)
        return v


class AIRequest(_WireModel):
    """``POST /api/ai`` のリクエストボディ."""

    query: str = ""
    screen_capture: ScreenCapture | None = None
    selected_text: str | None = None
    resume_data: ResumeProfile | None = None
    context_tabs: list[ContextTab] = Field(default_factory=list)
    continuation_only: bool = False
    is_active_mode: bool = False

    @field_validator("screen_capture", mode="before")
    @classmethod
    def normalize_capture(cls, v: Any) -> Any:
        """dataURL文字列だけが送られてきた場合はオブジェクトに揃える"""
        if isinstance(v, str):
            if not v:
                return None
            return {
                "dataURL": v,
                "timestamp": time.time(),
                "uniqueId": f"capture_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            }
        return v

    @property
    def has_capture(self) -> bool:
        return self.screen_capture is not None and bool(self.screen_capture.data_url)

    @property
    def google_doc_open(self) -> bool:
        return any(tab.is_google_doc for tab in self.context_tabs)


class ConversationRecord(TypedDict):
    """Memory Storeに追記される会話記録."""

    timestamp: str
    userQuery: str
    aiResponse: str
    screenCaptureRef: str | None


class UserProfile(TypedDict):
    personal: dict[str, Any]
    professional: dict[str, Any]
    skills: list[str]
    experiences: list[dict[str, Any]]
    preferences: dict[str, Any]
    metadata: dict[str, Any]


class SendMessageRequest(_WireModel):
    recipient: str
    message: str

    @field_validator("recipient", "message")
    @classmethod
    def must_not_be_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class CaptureActivityUpdate(_WireModel):
    active: bool


class TutoringSessionCreate(_WireModel):
    user_id: str = "default"
    question_type: str = "general"
    context: str = ""
    session_id: str | None = None


class TutoringStepResponse(_WireModel):
    step: int
    response: str
    understanding_level: float = Field(default=0.5, ge=0.0, le=1.0)


class TutoringAdvance(_WireModel):
    from_step: int | None = None


class InteractiveFeedbackRequest(_WireModel):
    question: str = ""
    history: list[dict[str, str]] = Field(default_factory=list)
    response: str


class QuizStepRequest(_WireModel):
    step_number: int
    context: str = ""
    response: str
