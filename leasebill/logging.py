import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

from leasebill.settings import settings

CONTEXT_FIELDS = ("run_number", "lease_id")
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s [run=%(run_number)s lease=%(lease_id)s]: %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(run_number)s %(lease_id)s %(message)s"

_log_context: ContextVar[dict[str, object]] = ContextVar("leasebill_log_context", default={})


@contextmanager
def log_context(**fields: object) -> Iterator[None]:
    """Tag every record logged inside the block with ``fields``.

    Context variables do not follow work into pool threads, so a worker
    opens its own block with the run number and lease it is handling.
    """
    token = _log_context.set({**_log_context.get(), **fields})
    try:
        yield
    finally:
        _log_context.reset(token)


class BillingContextFilter(logging.Filter):
    """Stamps ``run_number`` and ``lease_id`` onto records; ``-`` outside a run."""

    def filter(self, record: logging.LogRecord) -> bool:
        current = _log_context.get()
        for name in CONTEXT_FIELDS:
            setattr(record, name, current.get(name, "-"))
        return True


def configure_logging() -> None:
    """Configure the root logger based on settings.

    Call once at startup.  Call ``reconfigure()`` after any operation that
    may override the root logger (e.g. Alembic ``fileConfig``).
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.addFilter(BillingContextFilter())

    if settings.log_json:
        from pythonjsonlogger.json import JsonFormatter

        handler.setFormatter(
            JsonFormatter(
                fmt=JSON_FORMAT,
                rename_fields={"asctime": "timestamp", "levelname": "level"},
            )
        )
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # SQLAlchemy engine chatter is only useful when debugging queries.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# Alias, used after Alembic migrations may have overridden logging config.
reconfigure = configure_logging
