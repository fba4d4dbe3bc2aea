"""Enumerated types for the ACMEFLOW protocol layer.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is the
exact wire string and JSON round-trips naturally.
"""

from __future__ import annotations

from enum import StrEnum

from acmeflow.core.errors import ConfigurationError

# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


class OrderStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Challenge
# ---------------------------------------------------------------------------


class ChallengeStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------


class IdentifierType(StrEnum):
    DNS = "dns"
    IP = "ip"


# ---------------------------------------------------------------------------
# Challenge types
# ---------------------------------------------------------------------------


class ChallengeType(StrEnum):
    """Configuration-level challenge kind.

    ``str(kind)`` yields the lowercase wire literal.
    """

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"

    @classmethod
    def parse(cls, value: str) -> ChallengeType:
        """Parse a configuration string case-insensitively.

        Raises
        ------
        ConfigurationError
            If *value* is not one of the three recognised literals.

        """
        try:
            return cls(value.lower())
        except (ValueError, AttributeError):
            msg = f"{value}: unknown challenge type; expected one of {[c.value for c in cls]}"
            raise ConfigurationError(msg) from None


# ---------------------------------------------------------------------------
# Key types
# ---------------------------------------------------------------------------


class KeyType(StrEnum):
    EC256 = "ec256"
    EC384 = "ec384"
    RSA2048 = "rsa2048"
    RSA4096 = "rsa4096"
