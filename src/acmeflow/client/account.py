"""Default account manager: resolve or register the ACME account.

The account key lives at ``account.key_path`` and is generated on first
use.  ``newAccount`` is idempotent on the server side (RFC 8555 §7.3):
posting the same key returns the existing account, so resolution and
registration are a single request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from acmeflow.client.keys import load_or_generate
from acmeflow.client.transport import exchange
from acmeflow.core.errors import ConfigurationError, MissingResourceError, ProtocolStateError
from acmeflow.core.jws import build_eab, jwk_from_key, sign_jws
from acmeflow.core.signer import Account

if TYPE_CHECKING:
    from acmeflow.client.structs import Directory
    from acmeflow.client.transport import HttpTransport
    from acmeflow.config.settings import AccountSettings
    from acmeflow.core.jws import PrivateKey

log = logging.getLogger(__name__)

_HTTP_CREATED = 201


@dataclass(frozen=True)
class _JwkSigner:
    """Signer for requests made before the account URL is known."""

    private_key: PrivateKey
    payload: bytes
    url: str

    def sign(self, nonce: str) -> dict[str, Any]:
        return sign_jws(self.private_key, url=self.url, nonce=nonce, payload=self.payload)


class AccountManager:
    """Resolve the run's :class:`~acmeflow.core.signer.Account`.

    Parameters
    ----------
    settings:
        The ``account`` configuration section.
    transport:
        Transport to the ACME server.

    """

    def __init__(self, settings: AccountSettings, transport: HttpTransport) -> None:
        self._settings = settings
        self._transport = transport

    def _payload(self, directory: Directory, jwk: dict[str, str]) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "termsOfServiceAgreed": self._settings.terms_of_service_agreed,
        }
        if self._settings.contacts:
            payload["contact"] = list(self._settings.contacts)

        if self._settings.has_eab:
            payload["externalAccountBinding"] = build_eab(
                jwk,
                eab_kid=self._settings.eab_kid,  # type: ignore[arg-type]
                hmac_key_b64=self._settings.eab_hmac_key,  # type: ignore[arg-type]
                url=directory.new_account,
            )
        elif directory.external_account_required:
            msg = (
                "The ACME server requires external account binding; "
                "set account.eab_kid and account.eab_hmac_key"
            )
            raise ConfigurationError(msg)
        return payload

    def resolve_or_register(self, directory: Directory, nonce: str) -> tuple[Account, str]:
        """Find the account for the configured key, creating it if needed.

        Returns
        -------
        tuple
            The bound :class:`Account` and the next live nonce.

        Raises
        ------
        ConfigurationError
            Unusable key, or EAB required but not configured.
        MissingResourceError
            The server did not return the account URL.
        ProtocolStateError
            The account exists but is deactivated or revoked.

        """
        if directory.terms_of_service and not self._settings.terms_of_service_agreed:
            log.warning(
                "Terms of service at %s not agreed; the server may refuse registration",
                directory.terms_of_service,
            )

        key = load_or_generate(self._settings.key_path, self._settings.key_type)
        payload = self._payload(directory, jwk_from_key(key))
        signer = _JwkSigner(
            private_key=key,
            payload=json.dumps(payload).encode("utf-8"),
            url=directory.new_account,
        )
        resp, nonce = exchange(self._transport, signer, nonce)

        if not resp.location:
            msg = "newAccount response carried no Location header (account URL)"
            raise MissingResourceError(msg)

        status = resp.body.get("status") if isinstance(resp.body, dict) else None
        if status not in (None, "valid"):
            msg = f"Account {resp.location} is {status}"
            raise ProtocolStateError(msg, resource="account", status=status)

        if resp.status == _HTTP_CREATED:
            log.info("Registered new ACME account %s", resp.location)
        else:
            log.info("Using existing ACME account %s", resp.location)
        return Account(private_key=key, url=resp.location), nonce
