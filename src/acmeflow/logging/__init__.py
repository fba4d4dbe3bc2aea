"""Logging subsystem for acmeflow.

Public API::

    from acmeflow.logging import configure_logging, run_context

    configure_logging(settings.logging)
    with run_context("www"):
        ...
"""

from acmeflow.logging.setup import configure_logging, run_context

__all__ = ["configure_logging", "run_context"]
