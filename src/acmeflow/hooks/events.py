"""Canonical hook event definitions.

Single source of truth for all known lifecycle event names and their
corresponding :class:`~acmeflow.hooks.base.Hook` method names.

This module has **zero** internal dependencies, so it can be imported
from anywhere without circular import risk.
"""

from __future__ import annotations

ORDER_CREATION = "order.creation"
CHALLENGE_COMPLETED = "challenge.completed"
CERTIFICATE_ISSUANCE = "certificate.issuance"
ISSUANCE_FAILURE = "issuance.failure"

EVENT_METHOD_MAP: dict[str, str] = {
    ORDER_CREATION: "on_order_creation",
    CHALLENGE_COMPLETED: "on_challenge_completed",
    CERTIFICATE_ISSUANCE: "on_certificate_issuance",
    ISSUANCE_FAILURE: "on_issuance_failure",
}

KNOWN_EVENTS: frozenset[str] = frozenset(EVENT_METHOD_MAP.keys())
