"""Error taxonomy shared by the request pipeline and the HTTP layer."""

from typing import Any


class ScreenmateError(Exception):
    """構造化レスポンスに変換されるエラーの基底クラス."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_response(self) -> dict[str, Any]:
        return {"success": False, "error": self.message}


class ClassificationGap(ScreenmateError):
    """フォールバック規則の前提条件（キャプチャ等）が満たされない."""

    status_code = 400


class ValidationFailure(ScreenmateError):
    status_code = 400

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field

    def to_response(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "field": self.field}


class ProviderAuthError(ScreenmateError):
    status_code = 401


class ProviderError(ScreenmateError):
    status_code = 502


class ProviderTimeout(ProviderError):
    status_code = 504


class AutomationFailure(ScreenmateError):
    """OS自動化の全ストラテジーが失敗した."""

    status_code = 200

    def __init__(self, message: str, failures: list[tuple[str, str]] | None = None) -> None:
        super().__init__(message)
        self.failures = failures or []
