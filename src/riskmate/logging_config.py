"""
Logging setup for the API, scheduled jobs and CLI

Every record gets the environment name and the current request ID through
RequestContextFilter. Secrets that end up in messages (Stripe keys, webhook
signing secrets, bearer tokens) are masked by the same filter.
"""
import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_SAFE_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]+$")

SECRET_PATTERNS = [
    re.compile(r"\b(?:sk|rk)_(?:live|test)_[A-Za-z0-9]{8,}"),
    re.compile(r"\bwhsec_[A-Za-z0-9]{8,}"),
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9_\-.]{20,}"),
]

# LogRecord attributes that are not caller-supplied extras
_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime", "env", "request_id"}


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind a request ID to the current context

    Used by scheduled jobs and CLI commands so their log lines carry an ID too.
    """
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def clean_request_id(value: Optional[str]) -> Optional[str]:
    """Incoming X-Request-ID if it is short and header-safe, else None"""
    if not value or len(value) > MAX_REQUEST_ID_LENGTH:
        return None
    if not _SAFE_REQUEST_ID.match(value):
        return None
    return value


def mask_secrets(text: str) -> str:
    for pattern in SECRET_PATTERNS:
        if pattern.groups:
            text = pattern.sub(r"\1***REDACTED***", text)
        else:
            text = pattern.sub("***REDACTED***", text)
    return text


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Accept or mint a request ID and echo it on the response"""

    async def dispatch(self, request: Request, call_next):
        request_id = set_request_id(clean_request_id(request.headers.get(REQUEST_ID_HEADER)))
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestContextFilter(logging.Filter):
    """
    Adds env and request_id to every record and masks secrets in the message

    An explicit extra={"request_id": ...} wins over the context value.
    """

    def __init__(self, env: str = "dev"):
        super().__init__()
        self.env = env

    def filter(self, record: logging.LogRecord) -> bool:
        record.env = self.env
        if not getattr(record, "request_id", None):
            record.request_id = get_request_id() or "-"
        if isinstance(record.msg, str):
            record.msg = mask_secrets(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(mask_secrets(arg) if isinstance(arg, str) else arg for arg in record.args)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line, including any extra= fields"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "env": getattr(record, "env", None),
            "request_id": getattr(record, "request_id", None),
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_FIELDS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


TEXT_FORMAT = "%(asctime)s [%(env)s] [%(request_id)s] %(levelname)-8s %(name)s: %(message)s"


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    env: str = "dev",
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    stream: Optional[TextIO] = None,
):
    """
    Configure the root logger

    Args:
        env: Environment name (dev, staging, prod, test)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: "text" or "json"; defaults to json in staging and prod
        stream: Output stream, stdout unless given
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    if not log_format:
        log_format = "json" if env in ("staging", "prod") else "text"

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.addFilter(RequestContextFilter(env=env))
    handler.setFormatter(build_formatter(log_format))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    for noisy in ("sqlalchemy.engine", "httpx", "stripe", "apscheduler"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger
