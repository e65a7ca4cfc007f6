"""Structured JSON logging with the payment being processed on every record."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from .config import settings


reference_ctx: ContextVar[str] = ContextVar("merchant_reference", default="")
gateway_id_ctx: ContextVar[str] = ContextVar("gateway_payment_id", default="")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.merchant_reference = reference_ctx.get()
        record.gateway_payment_id = gateway_id_ctx.get()
        return True


def configure_logging() -> None:
    """Configure root logger once per process."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(merchant_reference)s %(gateway_payment_id)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)


logger = logging.getLogger("churpay")
