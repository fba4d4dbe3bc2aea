"""ACME resource documents decoded from server JSON (RFC 8555 §7.1).

All structs are frozen dataclasses built through ``from_dict``, which
raises :class:`~acmeflow.core.errors.MissingResourceError` when a field
the protocol requires is absent.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from acmeflow.client.challenges import OfferedChallenge, parse_challenge
from acmeflow.core.errors import MissingResourceError, ProtocolStateError
from acmeflow.core.state import parse_authorization_status, parse_order_status
from acmeflow.core.types import AuthorizationStatus, IdentifierType, OrderStatus


def _require(body: dict[str, Any], key: str, what: str) -> Any:  # noqa: ANN401
    if not isinstance(body, dict):
        msg = f"{what} response is not a JSON object"
        raise MissingResourceError(msg)
    value = body.get(key)
    if value is None:
        msg = f"{what} response is missing '{key}'"
        raise MissingResourceError(msg)
    return value


@dataclass(frozen=True)
class Directory:
    """Server-advertised endpoint map."""

    new_nonce: str
    new_account: str
    new_order: str
    revoke_cert: str | None = None
    key_change: str | None = None
    new_authz: str | None = None
    terms_of_service: str | None = None
    external_account_required: bool = False

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> Directory:
        meta = (body.get("meta") or {}) if isinstance(body, dict) else {}
        return cls(
            new_nonce=_require(body, "newNonce", "directory"),
            new_account=_require(body, "newAccount", "directory"),
            new_order=_require(body, "newOrder", "directory"),
            revoke_cert=body.get("revokeCert"),
            key_change=body.get("keyChange"),
            new_authz=body.get("newAuthz"),
            terms_of_service=meta.get("termsOfService"),
            external_account_required=bool(meta.get("externalAccountRequired", False)),
        )


@dataclass(frozen=True)
class Identifier:
    """ACME identifier value object."""

    type: IdentifierType
    value: str

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> Identifier:
        kind = _require(body, "type", "identifier")
        try:
            identifier_type = IdentifierType(kind)
        except ValueError:
            msg = f"identifier has unsupported type {kind!r}"
            raise ProtocolStateError(msg, resource="identifier", status=str(kind)) from None
        return cls(
            type=identifier_type,
            value=_require(body, "value", "identifier"),
        )

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "value": self.value}


@dataclass(frozen=True)
class NewOrder:
    """Payload of a newOrder request."""

    identifiers: tuple[Identifier, ...]

    @classmethod
    def for_domains(cls, domains: list[str] | tuple[str, ...]) -> NewOrder:
        return cls(
            identifiers=tuple(Identifier(IdentifierType.DNS, d) for d in domains),
        )

    def to_json(self) -> bytes:
        return json.dumps(
            {"identifiers": [i.to_dict() for i in self.identifiers]},
        ).encode("utf-8")


@dataclass(frozen=True)
class Order:
    status: OrderStatus
    authorizations: tuple[str, ...]
    finalize: str
    identifiers: tuple[Identifier, ...] = ()
    certificate: str | None = None
    expires: str | None = None
    error: dict[str, Any] | None = field(default=None, compare=False)

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> Order:
        return cls(
            status=parse_order_status(_require(body, "status", "order")),
            authorizations=tuple(_require(body, "authorizations", "order")),
            finalize=_require(body, "finalize", "order"),
            identifiers=tuple(Identifier.from_dict(i) for i in body.get("identifiers", [])),
            certificate=body.get("certificate"),
            expires=body.get("expires"),
            error=body.get("error"),
        )


@dataclass(frozen=True)
class Authorization:
    identifier: Identifier
    status: AuthorizationStatus
    challenges: tuple[OfferedChallenge, ...] = ()
    wildcard: bool = False
    expires: str | None = None

    @classmethod
    def from_dict(cls, body: dict[str, Any]) -> Authorization:
        offered = (parse_challenge(c) for c in body.get("challenges", []))
        return cls(
            identifier=Identifier.from_dict(_require(body, "identifier", "authorization")),
            status=parse_authorization_status(_require(body, "status", "authorization")),
            challenges=tuple(c for c in offered if c is not None),
            wildcard=bool(body.get("wildcard", False)),
            expires=body.get("expires"),
        )

    @property
    def error(self) -> dict[str, Any] | None:
        """The first challenge error reported by the server, if any."""
        for challenge in self.challenges:
            if challenge.error:
                return challenge.error
        return None
