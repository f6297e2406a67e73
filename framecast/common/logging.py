"""Structured JSON logging carrying subscriber and content correlation fields.

Webhook handling binds the subscriber `fid`; dispatch binds the `post_id` of
the content item being delivered. Kafka consumption also binds the event's
`trace_id`. Every record emitted inside `log_context` carries those fields.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from framecast.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
fid_ctx: ContextVar[str] = ContextVar("fid", default="")
post_id_ctx: ContextVar[str] = ContextVar("post_id", default="")

_CONTEXT_VARS = {"trace_id": trace_id_ctx, "fid": fid_ctx, "post_id": post_id_ctx}

# httpx logs every request line at INFO, including RPC URLs that embed provider keys.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiokafka")


class ContextFilter(logging.Filter):
    """Inject service and correlation identifiers into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for name, var in _CONTEXT_VARS.items():
            setattr(record, name, var.get())
        return True


@contextmanager
def log_context(**fields):
    """Bind correlation fields (`trace_id`, `fid`, `post_id`) for the enclosed block."""

    tokens = []
    try:
        for name, value in fields.items():
            tokens.append((_CONTEXT_VARS[name], _CONTEXT_VARS[name].set(str(value))))
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging() -> None:
    """Configure root logger once per service process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter("%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(fid)s %(post_id)s %(message)s")
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    root.addFilter(context_filter)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("framecast")
