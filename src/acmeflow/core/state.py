"""ACME resource state machines as observed by a client (RFC 8555 §7.1.6).

The server owns every transition; the client only observes them through
polling.  This module turns wire strings into typed statuses, knows
which statuses are terminal failures, and logs each observed change.

Usage::

    from acmeflow.core.state import parse_order_status, is_terminal_failure

    status = parse_order_status(body["status"])
    if is_terminal_failure(status):
        ...
"""

from __future__ import annotations

import logging

from acmeflow.core.errors import ProtocolStateError
from acmeflow.core.types import (
    AuthorizationStatus,
    ChallengeStatus,
    OrderStatus,
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Order: pending → ready/invalid, ready → processing/invalid,
#         processing → valid/invalid.  valid & invalid are terminal.
# ---------------------------------------------------------------------------

ORDER_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.READY, OrderStatus.INVALID}),
    OrderStatus.READY: frozenset({OrderStatus.PROCESSING, OrderStatus.INVALID}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.VALID, OrderStatus.INVALID}),
    OrderStatus.VALID: frozenset(),
    OrderStatus.INVALID: frozenset(),
}

# ---------------------------------------------------------------------------
# Authorization: pending → processing/valid/invalid/deactivated/expired,
#                processing → valid/invalid, valid → deactivated/revoked.
# ---------------------------------------------------------------------------

AUTHORIZATION_TRANSITIONS: dict[AuthorizationStatus, frozenset[AuthorizationStatus]] = {
    AuthorizationStatus.PENDING: frozenset(
        {
            AuthorizationStatus.PROCESSING,
            AuthorizationStatus.VALID,
            AuthorizationStatus.INVALID,
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.EXPIRED,
        }
    ),
    AuthorizationStatus.PROCESSING: frozenset(
        {
            AuthorizationStatus.VALID,
            AuthorizationStatus.INVALID,
        }
    ),
    AuthorizationStatus.VALID: frozenset(
        {
            AuthorizationStatus.DEACTIVATED,
            AuthorizationStatus.REVOKED,
        }
    ),
    AuthorizationStatus.INVALID: frozenset(),
    AuthorizationStatus.DEACTIVATED: frozenset(),
    AuthorizationStatus.EXPIRED: frozenset(),
    AuthorizationStatus.REVOKED: frozenset(),
}

# Statuses from which the resource can never become valid.
TERMINAL_FAILURES: frozenset[str] = frozenset(
    {
        OrderStatus.INVALID,
        AuthorizationStatus.DEACTIVATED,
        AuthorizationStatus.EXPIRED,
        AuthorizationStatus.REVOKED,
    }
)


def _parse(
    enum_cls: type[OrderStatus] | type[AuthorizationStatus] | type[ChallengeStatus],
    resource: str,
    value: object,
):
    try:
        return enum_cls(value)
    except ValueError:
        msg = f"{resource} reported unknown status {value!r}"
        raise ProtocolStateError(
            msg,
            resource=resource,
            status=str(value),
        ) from None


def parse_order_status(value: object) -> OrderStatus:
    """Return the :class:`OrderStatus` for *value* or raise :class:`ProtocolStateError`."""
    return _parse(OrderStatus, "order", value)


def parse_authorization_status(value: object) -> AuthorizationStatus:
    """Return the :class:`AuthorizationStatus` for *value* or raise :class:`ProtocolStateError`."""
    return _parse(AuthorizationStatus, "authorization", value)


def parse_challenge_status(value: object) -> ChallengeStatus:
    """Return the :class:`ChallengeStatus` for *value* or raise :class:`ProtocolStateError`."""
    return _parse(ChallengeStatus, "challenge", value)


def is_terminal_failure(status: OrderStatus | AuthorizationStatus | ChallengeStatus) -> bool:
    """Whether *status* means the resource can no longer reach ``valid``."""
    return status in TERMINAL_FAILURES


def is_terminal(status: OrderStatus | AuthorizationStatus | ChallengeStatus) -> bool:
    """Whether *status* is final: ``valid`` or a terminal failure."""
    return status == "valid" or is_terminal_failure(status)


def is_reachable(current, observed, table: dict) -> bool:
    """Whether *observed* can follow *current* in *table*, in any number of steps.

    Polling may miss intermediate states, so a jump such as
    ``pending`` → ``valid`` is reachable.
    """
    if current is None or current == observed:
        return True
    seen = set()
    frontier = [current]
    while frontier:
        state = frontier.pop()
        for nxt in table.get(state, frozenset()):
            if nxt == observed:
                return True
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    return False


TRANSITION_TABLES: dict[str, dict] = {
    "order": ORDER_TRANSITIONS,
    "authorization": AUTHORIZATION_TRANSITIONS,
}


def log_transition(
    resource_type: str,
    resource_url: str,
    from_status,
    to_status,
    *,
    reason: str | None = None,
) -> None:
    """Emit a structured log entry for an observed state transition.

    Parameters
    ----------
    resource_type:
        ``"order"`` or ``"authorization"``.
    resource_url:
        The URL identifying the resource on the server.
    from_status:
        The previously observed status (``None`` on first observation).
    to_status:
        The newly observed status.
    reason:
        Optional human-readable reason for the transition.

    """
    extra = {
        "event": "state_transition",
        "resource_type": resource_type,
        "resource_url": resource_url,
        "from_status": from_status.value if hasattr(from_status, "value") else str(from_status),
        "to_status": to_status.value if hasattr(to_status, "value") else str(to_status),
    }
    if reason:
        extra["reason"] = reason
    log.info(
        "%s %s: %s -> %s%s",
        resource_type,
        resource_url,
        extra["from_status"],
        extra["to_status"],
        f" ({reason})" if reason else "",
        extra=extra,
    )
