"""Structured JSON logging with request/checkout context fields.

Log lines carry the request trace id and, while a checkout is being worked
on, its provider token. Provider credentials never reach a log record.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from expresspay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
checkout_token_ctx: ContextVar[str] = ContextVar("checkout_token", default="")

LOG_FORMAT = "%(asctime)s %(levelname)s %(service_name)s %(trace_id)s %(checkout_token)s %(message)s"


class CheckoutContextFilter(logging.Filter):
    """Stamp service name, trace id and checkout token on every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.checkout_token = checkout_token_ctx.get()
        return True


@contextmanager
def checkout_context(token: str | None) -> Iterator[None]:
    """Bind a provider token to log lines for the duration of the block."""

    reset_token = checkout_token_ctx.set(token or "")
    try:
        yield
    finally:
        checkout_token_ctx.reset(reset_token)


def configure_logging() -> None:
    """Send JSON lines to stdout at the configured level, replacing prior handlers."""

    context_filter = CheckoutContextFilter()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(context_filter)
    handler.setFormatter(JsonFormatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    # httpx logs every request line at INFO, including the NVP endpoint.
    logging.getLogger("httpx").setLevel(logging.WARNING)


logger = logging.getLogger("expresspay")
