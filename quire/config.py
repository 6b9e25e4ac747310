from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

BASE_DIR = Path(__file__).resolve().parent.parent
LOGGER_NAME = "quire"

DEFAULT_CACHE_TTL = 30 * 60.0
DEFAULT_STATS_TTL = 60 * 60.0
DEFAULT_LOG_LEVEL = "INFO"

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def read_env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value not in {None, ""}:
        return value

    file_var = os.getenv(f"{name}_FILE")
    if not file_var:
        return default

    try:
        content = Path(file_var).read_text(encoding="utf-8")
    except OSError:
        return default
    return content.rstrip("\r\n")


def _read_seconds(name: str, default: float) -> float:
    raw = read_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _read_flag(name: str, default: bool) -> bool:
    raw = read_env(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def library_dir() -> Path:
    env = read_env("QUIRE_LIBRARY_DIR")
    base = Path(env) if env else BASE_DIR / "library"
    base.mkdir(parents=True, exist_ok=True)
    return base


def chapter_cache_ttl() -> float:
    return _read_seconds("QUIRE_CACHE_TTL", DEFAULT_CACHE_TTL)


def stats_cache_ttl() -> float:
    return _read_seconds("QUIRE_STATS_TTL", DEFAULT_STATS_TTL)


def syntax_highlight_enabled() -> bool:
    return _read_flag("QUIRE_SYNTAX_HIGHLIGHT", True)


def log_level() -> int:
    raw = (read_env("QUIRE_LOG_LEVEL") or DEFAULT_LOG_LEVEL).strip().upper()
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[int] = None) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level if level is not None else log_level())
    if not any(getattr(handler, "_quire_handler", False) for handler in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._quire_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
