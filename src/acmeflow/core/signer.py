"""Deferred-nonce request signing.

A :class:`RequestSigner` binds everything that stays the same across
retries of one logical request (account key, ``kid``, URL, payload) and
leaves only the nonce to be supplied at send time::

    signer = make_signer(account, EMPTY_PAYLOAD, authz_url)
    body = signer.sign(nonce)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from acmeflow.core.jws import sign_jws

if TYPE_CHECKING:
    from acmeflow.core.jws import PrivateKey

EMPTY_PAYLOAD: bytes | None = None
"""POST-as-GET: the JWS ``payload`` member is the empty string."""

EMPTY_OBJECT_PAYLOAD: bytes = b"{}"
"""Challenge acceptance: an explicit ``{}`` JSON object."""


@dataclass(frozen=True)
class Account:
    """The caller's ACME identity for one run.

    Attributes
    ----------
    private_key:
        The account signing key.
    url:
        The server-assigned account URL, sent as ``kid``.

    """

    private_key: PrivateKey
    url: str


@dataclass(frozen=True)
class RequestSigner:
    """Signing recipe for one logical request, minus the nonce."""

    account: Account
    payload: bytes | None
    url: str

    def sign(self, nonce: str) -> dict[str, Any]:
        """Return the flattened JWS body for this request signed with *nonce*."""
        return sign_jws(
            self.account.private_key,
            url=self.url,
            nonce=nonce,
            payload=self.payload,
            kid=self.account.url,
        )


def make_signer(account: Account, payload: bytes | None, url: str) -> RequestSigner:
    """Bind *account*, *payload* and *url*; only the nonce stays late-bound."""
    return RequestSigner(account=account, payload=payload, url=url)


def make_empty_signer(account: Account, url: str) -> RequestSigner:
    """Shorthand for a POST-as-GET signer."""
    return make_signer(account, EMPTY_PAYLOAD, url)
