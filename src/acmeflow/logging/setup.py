"""Structured logging configuration for acmeflow.

Provides JSON and text formatters, a run-context filter that stamps
every record with the current issuance run, and a one-call
``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import sys
import uuid
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from acmeflow.config.settings import LoggingSettings

AUDIT_LOGGER = "acmeflow.audit"

_run_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "acmeflow_run_id",
    default=None,
)
_certificate: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "acmeflow_certificate",
    default=None,
)

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Context attributes (handled explicitly):
        "run_id",
        "certificate",
    }
)


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def run_context(certificate: str, run_id: str | None = None) -> Iterator[str]:
    """Bind *certificate* and a run id to every record logged inside the block.

    Yields the run id (generated when not given).
    """
    run_id = run_id or uuid.uuid4().hex[:12]
    run_token = _run_id.set(run_id)
    cert_token = _certificate.set(certificate)
    try:
        yield run_id
    finally:
        _certificate.reset(cert_token)
        _run_id.reset(run_token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        for attr in ("run_id", "certificate"):
            value = getattr(record, attr, None)
            if value is not None:
                data[attr] = value

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(run_id)s] %(certificate)s %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RunContextFilter(logging.Filter):
    """Inject ``run_id`` and ``certificate`` from :func:`run_context`.

    Outside a run both fall back to ``"-"`` so the text format always
    has its placeholders filled.
    """

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if getattr(record, "run_id", None) is None:
            record.run_id = _run_id.get() or "-"  # type: ignore[attr-defined]
        if getattr(record, "certificate", None) is None:
            record.certificate = _certificate.get() or "-"  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> logging.Logger:
    """Configure the ``acmeflow`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted output.
    Sets up the audit logger if ``settings.audit.enabled``.

    Returns the root ``acmeflow`` logger.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("acmeflow")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = RunContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    audit = logging.getLogger(AUDIT_LOGGER)
    audit.handlers.clear()
    if settings.audit.enabled and settings.audit.file:
        audit.setLevel(logging.INFO)
        try:
            fh = RotatingFileHandler(
                settings.audit.file,
                maxBytes=settings.audit.max_file_size_bytes,
                backupCount=settings.audit.backup_count,
            )
        except OSError as exc:
            root.warning(
                "Could not open audit log file %s: %s",
                settings.audit.file,
                exc,
            )
        else:
            # Audit logs are always structured JSON
            fh.setFormatter(StructuredFormatter())
            fh.addFilter(ctx_filter)
            audit.addHandler(fh)

    for lib in ("urllib3", "dns"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return root
