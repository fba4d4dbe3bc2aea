"""Wire-level challenge variants and the challenge type registry.

The server offers one or more challenges per authorization.  Each
supported kind is a subclass of :class:`OfferedChallenge` exposing the
same three capabilities:

- :meth:`~OfferedChallenge.get_proof` -- the value to publish
- :meth:`~OfferedChallenge.get_file_name` -- where to publish it
- :meth:`~OfferedChallenge.get_url` -- where to POST acceptance

Matching against configuration is by kind only::

    offered = parse_challenge(body)
    if offered is not None and offered.matches(ChallengeType.DNS_01):
        proof = offered.get_proof(account_jwk)
"""

from __future__ import annotations

import abc
import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from acmeflow.core.errors import MissingResourceError
from acmeflow.core.jws import b64url_encode, key_authorization
from acmeflow.core.state import parse_challenge_status
from acmeflow.core.types import ChallengeStatus, ChallengeType

log = logging.getLogger(__name__)

HTTP01_PATH_PREFIX = ".well-known/acme-challenge/"
DNS01_RECORD_LABEL = "_acme-challenge"


@dataclass(frozen=True)
class OfferedChallenge(abc.ABC):
    """One challenge instance offered by the server for an authorization.

    Subclasses must set :attr:`challenge_type` as a class attribute.
    """

    challenge_type: ClassVar[ChallengeType]

    url: str
    token: str
    status: ChallengeStatus = ChallengeStatus.PENDING
    error: dict[str, Any] | None = field(default=None, compare=False)

    def matches(self, configured: ChallengeType) -> bool:
        """Variant-kind equality with a configured challenge type."""
        return self.challenge_type == configured

    def get_url(self) -> str:
        """The challenge's own URL, used for the acceptance POST."""
        return self.url

    def key_authorization(self, jwk: dict[str, Any]) -> str:
        return key_authorization(self.token, jwk)

    @abc.abstractmethod
    def get_proof(self, jwk: dict[str, Any]) -> str:
        """Derive the value that proves control, from the token and account key."""

    @abc.abstractmethod
    def get_file_name(self) -> str:
        """Derive the file path or record label where the proof is published."""


@dataclass(frozen=True)
class Http01Challenge(OfferedChallenge):
    """HTTP-01 (RFC 8555 §8.3): serve the key authorization over HTTP."""

    challenge_type = ChallengeType.HTTP_01

    def get_proof(self, jwk: dict[str, Any]) -> str:
        return self.key_authorization(jwk)

    def get_file_name(self) -> str:
        return f"{HTTP01_PATH_PREFIX}{self.token}"


@dataclass(frozen=True)
class Dns01Challenge(OfferedChallenge):
    """DNS-01 (RFC 8555 §8.4): publish a TXT record with the digest."""

    challenge_type = ChallengeType.DNS_01

    def get_proof(self, jwk: dict[str, Any]) -> str:
        digest = hashlib.sha256(self.key_authorization(jwk).encode("ascii")).digest()
        return b64url_encode(digest)

    def get_file_name(self) -> str:
        return DNS01_RECORD_LABEL


@dataclass(frozen=True)
class TlsAlpn01Challenge(OfferedChallenge):
    """TLS-ALPN-01 (RFC 8737): present a certificate carrying the digest.

    The proof is the hex SHA-256 of the key authorization, i.e. the
    content of the ``acmeIdentifier`` extension.
    """

    challenge_type = ChallengeType.TLS_ALPN_01

    def get_proof(self, jwk: dict[str, Any]) -> str:
        return hashlib.sha256(self.key_authorization(jwk).encode("ascii")).hexdigest()

    def get_file_name(self) -> str:
        return self.token


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

# Maps wire type string → variant class
_CHALLENGE_CLASSES: dict[str, type[OfferedChallenge]] = {
    ChallengeType.HTTP_01.value: Http01Challenge,
    ChallengeType.DNS_01.value: Dns01Challenge,
    ChallengeType.TLS_ALPN_01.value: TlsAlpn01Challenge,
}


def parse_challenge(body: dict[str, Any]) -> OfferedChallenge | None:
    """Decode one challenge object from an authorization.

    Returns ``None`` for challenge types this client does not implement
    (servers may offer more than the three known kinds).

    Raises
    ------
    MissingResourceError
        If a known challenge lacks its ``url`` or ``token``.

    """
    wire_type = body.get("type")
    cls = _CHALLENGE_CLASSES.get(wire_type)  # type: ignore[arg-type]
    if cls is None:
        log.debug("Ignoring unsupported challenge type %r", wire_type)
        return None

    url = body.get("url")
    token = body.get("token")
    if not url or not token:
        msg = f"{wire_type} challenge is missing 'url' or 'token'"
        raise MissingResourceError(msg)

    return cls(
        url=url,
        token=token,
        status=parse_challenge_status(body.get("status", ChallengeStatus.PENDING.value)),
        error=body.get("error"),
    )


def find_matching(
    configured: ChallengeType,
    offered: tuple[OfferedChallenge, ...] | list[OfferedChallenge],
) -> list[OfferedChallenge]:
    """Return every offered challenge whose kind equals *configured*."""
    return [c for c in offered if c.matches(configured)]
