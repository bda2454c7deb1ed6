"""
Logging setup - plain or JSON structured output with request correlation.

Every module logs through ``logging.getLogger(__name__)``; this module only
decides how records under the ``agentchat`` logger are rendered.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variables for request correlation
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        req_id = request_id_var.get("")
        if req_id:
            log_entry["request_id"] = req_id
        usr_id = user_id_var.get("")
        if usr_id:
            log_entry["user_id"] = usr_id

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }

        return json.dumps(log_entry, default=str)


class RequestIdFilter(logging.Filter):
    """Attach the current request id to plain-text records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get("") or "-"
        return True


_configured = False


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Install a single stdout handler on the ``agentchat`` logger."""
    global _configured
    root = logging.getLogger("agentchat")
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
        handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    root.propagate = False
    _configured = True


def bind_user_id(user_id: Optional[str]) -> None:
    """Tag log records from the rest of this request with the caller's user id."""
    if user_id:
        user_id_var.set(user_id)


def generate_request_id() -> str:
    return str(uuid.uuid4())[:12]
