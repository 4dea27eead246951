import logging
import os

__all__ = ["get_logger", "logger"]

LOG_DIR = os.getenv("SCREENMATE_LOG_DIR") or os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "log"
)

logger = logging.getLogger("screenmate")
if not logger.handlers:
    logger.setLevel(logging.INFO)
    os.makedirs(LOG_DIR, exist_ok=True)
    _fh = logging.FileHandler(
        os.path.join(LOG_DIR, "screenmate.log"), encoding="utf-8"
    )
    _fh.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(_fh)


def get_logger(name: str) -> logging.Logger:
    """``screenmate.<name>`` の子ロガーを返す."""
    return logger.getChild(name)
