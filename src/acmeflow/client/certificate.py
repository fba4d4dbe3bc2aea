"""Default certificate/key collaborator: key pair and CSR for finalize.

The certificate key stays in memory until the run has stored the new
certificate; :meth:`CertificateBuilder.commit_key` then writes it.  A
failed run therefore leaves the previous key and certificate pair
untouched.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID

from acmeflow.client.keys import generate_private_key, private_key_pem, read_private_key
from acmeflow.client.storage import atomic_write
from acmeflow.core.jws import b64url_encode

if TYPE_CHECKING:
    from acmeflow.core.jws import PrivateKey
    from acmeflow.issuance.orchestrator import IssuanceRequest

log = logging.getLogger(__name__)

# RFC 5280 upper bound for commonName
_MAX_CN_LENGTH = 64


def _has_stored_key(request: IssuanceRequest) -> bool:
    return request.reuse_key and os.path.exists(request.key_path)  # noqa: PTH110


class CertificateBuilder:
    """Generate the certificate key and the CSR submitted at finalize."""

    def generate_key_pair(self, request: IssuanceRequest) -> PrivateKey:
        """Return the certificate key for *request* without writing it.

        The key stored at ``request.key_path`` is reused when
        ``request.reuse_key`` is set; otherwise a fresh key is generated.
        """
        if _has_stored_key(request):
            log.debug("Reusing certificate key %s", request.key_path)
            return read_private_key(request.key_path)
        log.debug("Generated new %s certificate key", request.key_type.value)
        return generate_private_key(request.key_type)

    def commit_key(self, request: IssuanceRequest, key: PrivateKey) -> None:
        """Store *key* at ``request.key_path`` once its certificate is stored.

        Raises
        ------
        StorageError
            If the key cannot be written.

        """
        if _has_stored_key(request):
            return
        atomic_write(request.key_path, private_key_pem(key), mode=0o600)
        log.info("Stored certificate key for '%s' at %s", request.name, request.key_path)

    def build_csr(self, request: IssuanceRequest, key: PrivateKey) -> bytes:
        """Build a DER CSR for every domain of *request*.

        The first domain becomes the subject CN (when it fits); all
        domains are listed in the subjectAltName extension.
        """
        names = [x509.DNSName(domain) for domain in request.domains]
        subject = []
        if len(request.domains[0]) <= _MAX_CN_LENGTH:
            subject.append(x509.NameAttribute(NameOID.COMMON_NAME, request.domains[0]))

        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name(subject))
            .add_extension(x509.SubjectAlternativeName(names), critical=False)
            .sign(key, hashes.SHA256())
        )
        log.debug("Built CSR for %s", ", ".join(request.domains))
        return csr.public_bytes(serialization.Encoding.DER)


def finalize_payload(csr_der: bytes) -> bytes:
    """The finalize request body: ``{"csr": base64url(DER)}``."""
    return json.dumps({"csr": b64url_encode(csr_der)}).encode("utf-8")
