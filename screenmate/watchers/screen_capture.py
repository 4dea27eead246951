import base64
import time
from dataclasses import dataclass
from io import BytesIO
from typing import cast

import mss  # pyright: ignore[reportMissingImports]
from PIL import Image  # pyright: ignore[reportMissingImports]

from screenmate.logger import get_logger

logger = get_logger("screen_capture")

PNG_DATA_URL_PREFIX = "data:image/png;base64,"


@dataclass(frozen=True)
class Frame:
    """1枚分のキャプチャ."""

    data_url: str
    width: int
    height: int
    captured_at: float

    @property
    def unique_id(self) -> str:
        return f"capture_{int(self.captured_at * 1000)}"


class ScreenCapture:
    """スクリーンキャプチャを取得するクラス."""

    def __init__(self, bbox: dict[str, int] | None = None, max_width: int | None = 1920) -> None:
        """初期化する

        Args:
        bbox: キャプチャ領域 {"top": int, "left": int, "width": int, "height": int}
             Noneの場合はプライマリモニター全体
        max_width: この幅を超える場合は縮小する（Noneなら縮小しない）

        """
        self.bbox = bbox or self._get_primary_monitor_bbox()
        self.max_width = max_width
        self.last_capture_time: float = 0.0
        logger.info("ScreenCapture initialized | bbox=%s", self.bbox)

    def _get_primary_monitor_bbox(self) -> dict[str, int]:
        """プライマリモニターの実際の解像度を取得"""
        with mss.mss() as sct:
            monitors = sct.monitors
            chosen = cast(
                "dict[str, int]",
                monitors[1] if len(monitors) > 1 else monitors[0],
            )
            logger.info("Monitors detected: %s | chosen=%s", len(monitors) - 1, chosen)
            return chosen

    def _grab(self) -> Image.Image:
        with mss.mss() as sct:
            screenshot = sct.grab(self.bbox)
            image = Image.frombytes(
                "RGB", screenshot.size, screenshot.bgra, "raw", "BGRX"
            )
        if self.max_width and image.width > self.max_width:
            ratio = self.max_width / image.width
            image = image.resize((self.max_width, int(image.height * ratio)))
        return image

    def capture_frame(self) -> Frame:
        """スクリーンキャプチャをPNGのdata URLとして返す"""
        image = self._grab()
        buffer = BytesIO()
        image.save(buffer, format="PNG")
        encoded = base64.b64encode(buffer.getvalue()).decode()
        self.last_capture_time = time.time()
        return Frame(
            data_url=PNG_DATA_URL_PREFIX + encoded,
            width=image.width,
            height=image.height,
            captured_at=self.last_capture_time,
        )
