import inspect
import json
import logging
import sys
from logging import LogRecord
from typing import Any

from loguru import logger


_RESERVED_LOG_RECORD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename",
    "module", "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "created", "msecs", "relativeCreated", "thread", "threadName",
    "processName", "process", "taskName", "message", "asctime",
}


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (uvicorn, fastapi) into loguru."""

    def emit(self, record: LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_RECORD_ATTRS
        }
        frame, depth = inspect.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        bound_logger = logger.bind(**extra) if extra else logger
        bound_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _json_sink(metadata: dict[str, Any]):
    def sink(message) -> None:
        record = message.record
        payload: dict[str, Any] = {
            "timestamp": record["time"].isoformat(),
            "level": record["level"].name.lower(),
            "message": record["message"],
            "logger": record["name"],
            **metadata,
        }
        if record["extra"]:
            payload.update(record["extra"])
        sys.stdout.write(json.dumps(payload, default=str) + "\n")

    return sink


def configure_logging(*, service_name: str, environment: str, version: str,
                      level: str = "INFO", json_output: bool = False) -> None:
    """Configure loguru sinks and bridge stdlib logging into them."""

    logger.remove()
    if json_output:
        metadata = {"service": service_name, "environment": environment, "version": version}
        logger.add(_json_sink(metadata), level=level, backtrace=False, diagnose=False)
    else:
        logger.add(
            sys.stderr,
            level=level,
            format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {name} | {message} | {extra}",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
