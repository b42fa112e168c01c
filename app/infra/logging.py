"""
结构化日志配置

- 生产环境输出 JSON（便于 ELK/Loki 聚合），开发环境输出带颜色的控制台格式
- 每条日志自动携带 request_id（X-Request-ID）和 JWT 中的用户名
- RequestTimer 记录一次请求内各阶段耗时（选模型、建立上游连接等）

使用示例：
    from app.infra.logging import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("上游流结束", extra={"provider": "stepfun", "lines": 42})
"""

import json
import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

from app.config import get_settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
username_var: ContextVar[str | None] = ContextVar("username", default=None)

# LogRecord 自带属性，其余属性视为 extra
_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "taskName", "message",
}


def get_request_id() -> str | None:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def get_username() -> str | None:
    return username_var.get()


def set_username(username: str) -> None:
    """JWT 校验通过后写入，供后续日志关联"""
    username_var.set(username)


class JSONFormatter(logging.Formatter):
    """
    JSON 格式日志

    {"timestamp": "...", "level": "INFO", "logger": "app.services.relay",
     "message": "...", "request_id": "...", "username": "alice", "extra": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id
        username = get_username()
        if username:
            log_data["username"] = username

        if record.levelno <= logging.DEBUG:
            log_data["location"] = f"{record.pathname}:{record.lineno}"

        extra = {
            k: v for k, v in record.__dict__.items()
            if k not in _STANDARD_ATTRS and not k.startswith("_")
        }
        if extra:
            log_data["extra"] = extra

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """开发环境：2024-01-01 00:00:00 INFO [request_id] [user] logger - message"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        parts = [f"{datetime.now().strftime('%Y-%m-%d %H:%M:%S')} {color}{record.levelname:8}{self.RESET}"]

        request_id = get_request_id()
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        username = get_username()
        if username:
            parts.append(f"[{username}]")

        parts.append(f"{record.name} -")
        parts.append(record.getMessage())
        result = " ".join(parts)

        if record.exc_info:
            result += "\n" + self.formatException(record.exc_info)
        return result


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """
    配置应用日志

    Args:
        level: 日志级别，默认取 settings.log_level
        json_format: 是否 JSON 输出；默认取 settings.log_json，未配置时非开发环境使用 JSON
    """
    settings = get_settings()

    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    if json_format is None:
        json_format = settings.log_json
    if json_format is None:
        json_format = settings.environment not in ("dev", "development", "test")

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # 降低第三方库日志级别
    for noisy_logger in (
        "uvicorn.access",
        "uvicorn.error",
        "httpx",
        "httpcore",
        "openai",
        "sqlalchemy.engine",
        "aiosqlite",
    ):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("app").setLevel(log_level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


class RequestTimer:
    """
    请求计时器

        timer = RequestTimer()
        timer.mark("select_model")
        timer.mark("upstream")
        timer.get_metrics()
        # {"total_ms": 150, "select_model_ms": 50, "upstream_ms": 100}
    """

    def __init__(self):
        self.start_time = time.perf_counter()
        self.marks: list[tuple[str, float]] = []
        self._last_mark = self.start_time

    def mark(self, name: str) -> None:
        now = time.perf_counter()
        self.marks.append((name, now - self._last_mark))
        self._last_mark = now

    def get_metrics(self) -> dict[str, float]:
        total = time.perf_counter() - self.start_time
        metrics = {"total_ms": round(total * 1000, 2)}
        for name, duration in self.marks:
            metrics[f"{name}_ms"] = round(duration * 1000, 2)
        return metrics
