"""JWS signing and JWK utilities (RFC 7515 / 7517 / 7638).

Uses the ``cryptography`` library directly -- no josepy dependency.
Signing failures caused by an unusable key raise
:class:`~acmeflow.core.errors.ConfigurationError`; they are never retried.

Security note:
    This module handles raw cryptographic operations.  Changes should
    be reviewed carefully for canonical encodings and algorithm/key
    agreement.
"""

from __future__ import annotations

import base64
import hashlib
import hmac as _hmac
import json
import logging
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa, utils

from acmeflow.core.errors import ConfigurationError

log = logging.getLogger(__name__)

# --- Constants -----------------------------------------------------------

_EC_SIG_COMPONENT_MULTIPLIER = 2
"""EC signatures consist of two equal-length components (r || s)."""

# Maps cryptography curve name to (JWA alg, JWK crv, hash, component length)
_EC_ALGORITHMS: dict[str, tuple[str, str, hashes.HashAlgorithm, int]] = {
    "secp256r1": ("ES256", "P-256", hashes.SHA256(), 32),
    "secp384r1": ("ES384", "P-384", hashes.SHA384(), 48),
    "secp521r1": ("ES512", "P-521", hashes.SHA512(), 66),
}

_RSA_ALGORITHM = "RS256"

PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey


# --- Base64url helpers (RFC 7515 S2) -------------------------------------


def b64url_decode(s: str) -> bytes:
    """Decode a base64url string (no padding required)."""
    s = s.replace("-", "+").replace("_", "/")
    remainder = len(s) % 4
    if remainder:
        s += "=" * (4 - remainder)
    return base64.b64decode(s)


def b64url_encode(b: bytes) -> str:
    """Encode bytes to base64url without padding."""
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def _int_to_b64url(value: int, length: int | None = None) -> str:
    if length is None:
        length = max(1, (value.bit_length() + 7) // 8)
    return b64url_encode(value.to_bytes(length, "big"))


def _canonical_json(data: Any) -> bytes:  # noqa: ANN401
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


# --- Keys ----------------------------------------------------------------


def load_private_key(pem: bytes, *, source: str = "<memory>") -> PrivateKey:
    """Load a PEM private key usable for ACME signing.

    Raises
    ------
    ConfigurationError
        If the PEM cannot be parsed or the key type is unsupported.

    """
    try:
        key = serialization.load_pem_private_key(pem, password=None)
    except (ValueError, TypeError) as exc:
        msg = f"Cannot load private key from {source}: {exc}"
        raise ConfigurationError(msg) from exc

    signing_algorithm(key)
    return key  # type: ignore[return-value]


def signing_algorithm(private_key: Any) -> str:  # noqa: ANN401
    """Return the JWA algorithm name for *private_key*.

    Raises
    ------
    ConfigurationError
        If the key is neither RSA nor a supported EC curve.

    """
    if isinstance(private_key, rsa.RSAPrivateKey):
        return _RSA_ALGORITHM
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        spec = _EC_ALGORITHMS.get(private_key.curve.name)
        if spec is None:
            msg = f"Unsupported EC curve '{private_key.curve.name}' for ACME signing"
            raise ConfigurationError(msg)
        return spec[0]
    msg = f"Unsupported account key type '{type(private_key).__name__}'"
    raise ConfigurationError(msg)


def jwk_from_key(private_key: PrivateKey) -> dict[str, str]:
    """Return the public JWK dictionary for *private_key*."""
    signing_algorithm(private_key)

    if isinstance(private_key, rsa.RSAPrivateKey):
        numbers = private_key.public_key().public_numbers()
        return {
            "e": _int_to_b64url(numbers.e),
            "kty": "RSA",
            "n": _int_to_b64url(numbers.n),
        }

    _, crv, _, size = _EC_ALGORITHMS[private_key.curve.name]
    numbers = private_key.public_key().public_numbers()
    return {
        "crv": crv,
        "kty": "EC",
        "x": _int_to_b64url(numbers.x, size),
        "y": _int_to_b64url(numbers.y, size),
    }


# --- JWK thumbprint (RFC 7638) -------------------------------------------


def compute_thumbprint(jwk_dict: dict[str, Any]) -> str:
    """Compute the RFC 7638 JWK Thumbprint using SHA-256.

    Construct the canonical JSON representation with required members
    in lexicographic order, then return the base64url-encoded SHA-256
    hash.

    Parameters
    ----------
    jwk_dict:
        The JWK dictionary.

    Returns
    -------
    str
        Base64url-encoded thumbprint.

    """
    kty = jwk_dict.get("kty")

    if kty == "RSA":
        canonical = {
            "e": jwk_dict["e"],
            "kty": "RSA",
            "n": jwk_dict["n"],
        }
    elif kty == "EC":
        canonical = {
            "crv": jwk_dict["crv"],
            "kty": "EC",
            "x": jwk_dict["x"],
            "y": jwk_dict["y"],
        }
    else:
        msg = f"Cannot compute thumbprint for kty '{kty}'"
        raise ConfigurationError(msg)

    digest = hashlib.sha256(_canonical_json(canonical)).digest()
    return b64url_encode(digest)


# --- Key authorization (RFC 8555 S8.1) ------------------------------------


def key_authorization(token: str, jwk_dict: dict[str, Any]) -> str:
    """Compute the key authorization string: ``token.thumbprint``.

    Used by all ACME challenge types.
    """
    thumbprint = compute_thumbprint(jwk_dict)
    return f"{token}.{thumbprint}"


# --- Signing -------------------------------------------------------------


def _sign_bytes(private_key: PrivateKey, signing_input: bytes) -> bytes:
    if isinstance(private_key, rsa.RSAPrivateKey):
        return private_key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())

    _, _, hash_alg, size = _EC_ALGORITHMS[private_key.curve.name]
    der_sig = private_key.sign(signing_input, ec.ECDSA(hash_alg))
    # JWS EC signatures are raw r||s (not DER)
    r, s = utils.decode_dss_signature(der_sig)
    return r.to_bytes(size, "big") + s.to_bytes(size, "big")


def sign_jws(  # noqa: PLR0913
    private_key: PrivateKey,
    *,
    url: str,
    nonce: str,
    payload: bytes | None,
    kid: str | None = None,
) -> dict[str, str]:
    """Produce a JWS Flattened JSON Serialization for an ACME request.

    Parameters
    ----------
    private_key:
        The account private key.
    url:
        The request URL, bound into the protected header.
    nonce:
        The single-use anti-replay nonce.
    payload:
        Raw payload bytes, or ``None`` for POST-as-GET (empty payload).
        ``b"{}"`` is a distinct, non-empty payload.
    kid:
        Account URL.  When ``None`` the public ``jwk`` is embedded
        instead (account creation only).

    Raises
    ------
    ConfigurationError
        If the key cannot be used for signing.

    """
    protected: dict[str, Any] = {
        "alg": signing_algorithm(private_key),
        "nonce": nonce,
        "url": url,
    }
    if kid is not None:
        protected["kid"] = kid
    else:
        protected["jwk"] = jwk_from_key(private_key)

    protected_b64 = b64url_encode(json.dumps(protected).encode("utf-8"))
    payload_b64 = "" if payload is None else b64url_encode(payload)
    signing_input = f"{protected_b64}.{payload_b64}".encode("ascii")

    try:
        signature = _sign_bytes(private_key, signing_input)
    except (ValueError, TypeError) as exc:
        msg = f"Account key cannot sign requests: {exc}"
        raise ConfigurationError(msg) from exc

    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": b64url_encode(signature),
    }


# --- EAB inner JWS (RFC 8555 S7.3.4) --------------------------------------


def build_eab(
    jwk_dict: dict[str, Any],
    *,
    eab_kid: str,
    hmac_key_b64: str,
    url: str,
) -> dict[str, str]:
    """Build an externalAccountBinding inner JWS.

    The inner JWS uses ``alg=HS256``, carries the EAB ``kid`` and the
    newAccount ``url``, and signs the outer account JWK as payload.
    """
    protected = {
        "alg": "HS256",
        "kid": eab_kid,
        "url": url,
    }
    protected_b64 = b64url_encode(json.dumps(protected).encode("utf-8"))
    payload_b64 = b64url_encode(_canonical_json(jwk_dict))
    signing_input = f"{protected_b64}.{payload_b64}".encode("ascii")

    try:
        hmac_key = b64url_decode(hmac_key_b64)
    except ValueError as exc:
        msg = f"EAB HMAC key is not valid base64url: {exc}"
        raise ConfigurationError(msg) from exc

    signature = _hmac.new(hmac_key, signing_input, "sha256").digest()
    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": b64url_encode(signature),
    }
