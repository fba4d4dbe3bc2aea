"""Private key generation, loading and storage.

Shared by the account manager (account key) and the certificate
collaborator (certificate key).  Keys are written as unencrypted PKCS#8
PEM with mode ``0600``.
"""

from __future__ import annotations

import logging
import os
import stat
from pathlib import Path

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from acmeflow.client.storage import atomic_write
from acmeflow.core.errors import ConfigurationError
from acmeflow.core.jws import PrivateKey, load_private_key
from acmeflow.core.types import KeyType

log = logging.getLogger(__name__)

_RSA_SIZES = {KeyType.RSA2048: 2048, KeyType.RSA4096: 4096}
_EC_CURVES = {KeyType.EC256: ec.SECP256R1, KeyType.EC384: ec.SECP384R1}


def generate_private_key(key_type: KeyType) -> PrivateKey:
    """Create a new key of *key_type*."""
    if key_type in _RSA_SIZES:
        return rsa.generate_private_key(
            public_exponent=65537,
            key_size=_RSA_SIZES[key_type],
        )
    return ec.generate_private_key(_EC_CURVES[key_type]())


def private_key_pem(key: PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _warn_if_permissive(path: Path) -> None:
    try:
        mode = path.stat().st_mode
    except OSError:
        return
    if mode & (stat.S_IRGRP | stat.S_IROTH | stat.S_IWGRP | stat.S_IWOTH):
        log.warning(
            "Private key file '%s' has overly permissive permissions (mode=%o). "
            "Recommend chmod 600.",
            path,
            stat.S_IMODE(mode),
        )


def read_private_key(path: str | Path) -> PrivateKey:
    """Load the PEM key at *path*.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or does not hold a usable key.

    """
    path = Path(path)
    try:
        pem = path.read_bytes()
    except OSError as exc:
        msg = f"Cannot read private key {path}: {exc}"
        raise ConfigurationError(msg) from exc
    _warn_if_permissive(path)
    return load_private_key(pem, source=str(path))


def load_or_generate(path: str | Path, key_type: KeyType) -> PrivateKey:
    """Return the key stored at *path*, creating and storing it when absent."""
    path = Path(path)
    if os.path.exists(path):  # noqa: PTH110
        log.debug("Using existing private key %s", path)
        return read_private_key(path)

    key = generate_private_key(key_type)
    atomic_write(path, private_key_pem(key), mode=0o600)
    log.info("Generated new %s private key at %s", key_type.value, path)
    return key
