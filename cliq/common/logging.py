"""Structured JSON logging with worker and delivery context fields."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from cliq.common.config import settings


instance_id_ctx: ContextVar[str] = ContextVar("instance_id", default="")
notification_id_ctx: ContextVar[str] = ContextVar("notification_id", default="")
delivery_id_ctx: ContextVar[str] = ContextVar("delivery_id", default="")


class ContextFilter(logging.Filter):
    """Stamp every record with the worker identity and the delivery in flight."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.instance_id = instance_id_ctx.get()
        record.notification_id = notification_id_ctx.get()
        record.delivery_id = delivery_id_ctx.get()
        return True


def configure_logging() -> None:
    """Route all records through one JSON handler on stdout."""

    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter()
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(instance_id)s "
            "%(notification_id)s %(delivery_id)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    # SQL echo from the claim loop would drown everything else.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


@contextmanager
def delivery_context(delivery_id: str, notification_id: str):
    """Bind one delivery's ids to every log line emitted inside the block."""

    delivery_token = delivery_id_ctx.set(delivery_id)
    notification_token = notification_id_ctx.set(notification_id)
    try:
        yield
    finally:
        delivery_id_ctx.reset(delivery_token)
        notification_id_ctx.reset(notification_token)


logger = logging.getLogger("cliq")
