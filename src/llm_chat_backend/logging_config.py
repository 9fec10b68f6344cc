import logging
import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {process}:{thread.name} | {name}:{function}:{line} - {message}"

# Server and HTTP client loggers that use the stdlib logging module.
_STDLIB_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "httpx")


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, colorize: bool | None = None):
        self._colorize = colorize

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=self._colorize, enqueue=True)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    def __init__(
        self,
        path: str = "logs/llm_chat.log",
        rotation: str = "10 MB",
        retention: int = 3,
        compression: str | None = None,
    ):
        self._path = Path(path)
        self._rotation = rotation
        self._retention = retention
        self._compression = compression

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(self._path),
            level=level,
            format=_FILE_FORMAT,
            rotation=self._rotation,
            retention=self._retention,
            compression=self._compression,
            enqueue=True,
        )

    def describe(self, level: str) -> str:
        suffix = f", {self._compression}" if self._compression else ""
        return f"file ({self._path}, {level}, rotate at {self._rotation}{suffix})"


class InterceptHandler(logging.Handler):
    """Forward stdlib records (uvicorn, httpx) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console"},
    {"type": "file"},
]


def _build_consumer(config: dict[str, Any]) -> LogConsumer | None:
    sink_type = str(config.get("type", "")).lower()
    cls = _CONSUMER_TYPES.get(sink_type)
    if cls is None:
        logger.warning(f"Ignoring log consumer with unknown type {sink_type!r}")
        return None
    options = {k: v for k, v in config.items() if k not in ("type", "level")}
    return cls(**options)


def _route_stdlib_logging() -> None:
    for name in _STDLIB_LOGGERS:
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's sinks with the configured consumers.

    Each consumer entry is ``{"type": "console" | "file", "level": ..., **options}``;
    a missing ``level`` falls back to ``level``. Records from uvicorn and httpx
    are routed through the same sinks. Returns one description per sink.
    """
    logger.remove()

    descriptions: list[str] = []
    for config in _DEFAULT_CONSUMERS if consumers is None else consumers:
        consumer = _build_consumer(config)
        if consumer is None:
            continue
        sink_level = config.get("level", level)
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    _route_stdlib_logging()
    return descriptions
