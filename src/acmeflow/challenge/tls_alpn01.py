"""TLS-ALPN-01 certificate responder (RFC 8737).

Builds the self-signed validation certificate for a domain and writes
it, with its key, to ``output_dir`` as ``{domain}.alpn.crt`` /
``{domain}.alpn.key``.  A TLS server routing the ``acme-tls/1`` ALPN
protocol to those files completes the challenge.

The certificate carries the identifier in its SAN and a critical
``acmeIdentifier`` extension (OID 1.3.6.1.5.5.7.1.31) holding the
SHA-256 digest of the key authorization as a DER OCTET STRING.
"""

from __future__ import annotations

import datetime
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID, ObjectIdentifier

from acmeflow.challenge.base import ChallengeResponder
from acmeflow.client.keys import private_key_pem
from acmeflow.client.storage import atomic_write
from acmeflow.core.errors import ChallengeResponderError, StorageError
from acmeflow.core.types import ChallengeType

if TYPE_CHECKING:
    from acmeflow.config.settings import TlsAlpn01Settings

log = logging.getLogger(__name__)

ACME_IDENTIFIER_OID = ObjectIdentifier("1.3.6.1.5.5.7.1.31")
ACME_TLS_ALPN = "acme-tls/1"

_DIGEST_LENGTH = 32
_VALIDITY = datetime.timedelta(days=7)


def acme_identifier_value(proof: str) -> bytes:
    """Encode the hex digest *proof* as the DER OCTET STRING of the extension.

    Raises
    ------
    ChallengeResponderError
        If *proof* is not a hex SHA-256 digest.

    """
    try:
        digest = bytes.fromhex(proof)
    except ValueError as exc:
        msg = f"TLS-ALPN-01: proof is not a hex digest: {exc}"
        raise ChallengeResponderError(msg) from exc
    if len(digest) != _DIGEST_LENGTH:
        msg = f"TLS-ALPN-01: expected a 32-byte digest, got {len(digest)} bytes"
        raise ChallengeResponderError(msg)
    return bytes([0x04, len(digest)]) + digest


def build_validation_certificate(
    domain: str,
    proof: str,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Return the self-signed ``acme-tls/1`` certificate and its key."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    now = datetime.datetime.now(datetime.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + _VALIDITY)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .add_extension(
            x509.UnrecognizedExtension(ACME_IDENTIFIER_OID, acme_identifier_value(proof)),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    return cert, key


class AlpnCertificateResponder(ChallengeResponder):
    """Stage TLS-ALPN-01 validation certificates on disk."""

    challenge_types = frozenset({ChallengeType.TLS_ALPN_01})

    def __init__(self, settings: TlsAlpn01Settings | None = None) -> None:
        super().__init__(settings=settings)
        output_dir = getattr(settings, "output_dir", None)
        if not output_dir:
            msg = "challenges.tlsalpn01.output_dir is not configured"
            raise ChallengeResponderError(msg)
        self._output_dir = Path(output_dir)

    def paths_for(self, domain: str) -> tuple[Path, Path]:
        """Certificate and key paths used for *domain*."""
        stem = domain.removeprefix("*.")
        return (
            self._output_dir / f"{stem}.alpn.crt",
            self._output_dir / f"{stem}.alpn.key",
        )

    def complete(
        self,
        *,
        challenge_type: ChallengeType,  # noqa: ARG002
        file_name: str,  # noqa: ARG002
        proof: str,
        domain: str,
    ) -> None:
        cert, key = build_validation_certificate(domain, proof)
        cert_path, key_path = self.paths_for(domain)
        try:
            atomic_write(key_path, private_key_pem(key), mode=0o600)
            atomic_write(cert_path, cert.public_bytes(serialization.Encoding.PEM))
        except StorageError as exc:
            msg = f"TLS-ALPN-01: cannot stage certificate for {domain}: {exc.detail}"
            raise ChallengeResponderError(msg) from exc
        log.info("TLS-ALPN-01 certificate for %s written to %s", domain, cert_path)

    def cleanup(
        self,
        *,
        challenge_type: ChallengeType,  # noqa: ARG002
        file_name: str,  # noqa: ARG002
        proof: str,  # noqa: ARG002
        domain: str,
    ) -> None:
        for path in self.paths_for(domain):
            path.unlink(missing_ok=True)
