import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx
import requests

from screenmate.api.errors import ProviderAuthError, ProviderError, ProviderTimeout
from screenmate.config import Settings, load_settings
from screenmate.logger import get_logger

HTTP_OK = 200
HTTP_UNAUTHORIZED = 401

API_KEY_MISSING = "OpenAI API key is not configured. Please set OPENAI_API_KEY in .env.local."

logger = get_logger("llm")


@dataclass
class CompletionParams:
    """生成パラメータ."""

    max_tokens: int = 600
    temperature: float = 0.05
    top_p: float = 0.95

    @classmethod
    def for_mode(cls, is_active_mode: bool) -> "CompletionParams":
        # Active Modeは6セクション構成なので長めに
        if is_active_mode:
            return cls(max_tokens=1536, temperature=0.2)
        return cls()


class LLMService:
    """OpenAI互換APIクライアント（ストリーミング対応）."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        api_key: str | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初期化

        Args:
        base_url: OpenAI互換APIのベースURL（例: https://api.openai.com）
        model_name: 使用するモデル名（例: gpt-4o）
        api_key: APIキー. 未設定でも生成できるが、初回利用時に401となる
        timeout: APIタイムアウト(秒)
        transport: httpxのトランスポート（テスト差し替え用）

        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.api_key = api_key
        self.timeout = timeout
        self.chat_url = f"{self.base_url}/v1/chat/completions"
        self._transport = transport

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def is_available(self) -> bool:
        """LLMサービスが利用可能かチェック."""
        try:
            response = requests.get(
                f"{self.base_url}/v1/models", headers=self._headers(), timeout=5
            )
        except requests.RequestException:
            return False
        else:
            status_code: int = response.status_code
            return status_code == HTTP_OK

    @staticmethod
    def build_messages(
        system_prompt: str, user_prompt: str, image_url: str | None = None
    ) -> list[dict[str, Any]]:
        """system/userメッセージを構築（画像があればビジョン形式）."""
        messages: list[dict[str, Any]] = [{"role": "system", "content": system_prompt}]
        if image_url:
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            )
        else:
            messages.append({"role": "user", "content": user_prompt})
        return messages

    async def stream_chat(
        self,
        messages: list[dict[str, Any]],
        params: CompletionParams | None = None,
    ) -> AsyncIterator[str]:
        """チャット補完をストリーミングし、テキスト断片を順に返す.

        Raises:
            ProviderAuthError: APIキー未設定、または401
            ProviderTimeout: タイムアウト
            ProviderError: その他のHTTP/通信エラー

        """
        if not self.has_api_key:
            raise ProviderAuthError(API_KEY_MISSING)

        params = params or CompletionParams()
        payload = {
            "model": self.model_name,
            "messages": messages,
            "stream": True,
            "max_tokens": params.max_tokens,
            "temperature": params.temperature,
            "top_p": params.top_p,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client, client.stream(
                "POST", self.chat_url, json=payload, headers=self._headers()
            ) as response:
                if response.status_code == HTTP_UNAUTHORIZED:
                    raise ProviderAuthError("The completion provider rejected the API key.")
                if response.status_code != HTTP_OK:
                    body = (await response.aread()).decode(errors="ignore")
                    msg = f"Completion provider returned {response.status_code}: {body[:200]}"
                    raise ProviderError(msg)

                async for line in response.aiter_lines():
                    content = self._parse_sse_line(line)
                    if content is None:
                        continue
                    if content == "[DONE]":
                        break
                    yield content
        except httpx.TimeoutException as e:
            raise ProviderTimeout("Request timed out. Please try again.") from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Completion provider unreachable: {e}") from e

    @staticmethod
    def _parse_sse_line(line: str) -> str | None:
        """``data: {...}`` 行からdelta.contentを取り出す."""
        line = line.strip()
        if not line.startswith("data:"):
            return None
        data = line[len("data:") :].strip()
        if data == "[DONE]":
            return data
        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.warning("Unparseable stream line: %s", data[:80])
            return None
        choices = chunk.get("choices") or [{}]
        delta = choices[0].get("delta") or {}
        return delta.get("content") or None

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        image_url: str | None = None,
        params: CompletionParams | None = None,
    ) -> str:
        """ストリームを最後まで読み、全文を返す."""
        messages = self.build_messages(system_prompt, user_prompt, image_url)
        parts = [chunk async for chunk in self.stream_chat(messages, params)]
        return "".join(parts).strip()


# 便利関数
def create_llm_service(settings: Settings | None = None) -> LLMService:
    """LLMサービスのファクトリ関数.

    環境変数で設定:
    - LLM_URL: OpenAI互換APIのベースURL（既定: https://api.openai.com）
    - LLM_MODEL: 使用するモデル名（既定: gpt-4o）
    - OPENAI_API_KEY: APIキー
    """
    settings = settings or load_settings()
    return LLMService(
        base_url=settings.llm_url,
        model_name=settings.llm_model,
        api_key=settings.api_key,
        timeout=settings.request_timeout,
    )
