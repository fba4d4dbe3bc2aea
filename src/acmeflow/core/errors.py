"""Error hierarchy for an issuance run, plus RFC 8555 problem types.

Every failure surfaced by a run derives from :class:`IssuanceError` so
callers can catch one type and still classify the cause.  Server-side
problem documents (RFC 7807) are decoded into :class:`AcmeProblem`.

Usage::

    try:
        orchestrator.run()
    except PollTimeout:
        ...
    except IssuanceError as exc:
        log.error("run failed: %s", exc.detail)
"""

from __future__ import annotations

from typing import Any

# ---------------------------------------------------------------------------
# RFC 8555 §6.7: ACME error-type URNs
# ---------------------------------------------------------------------------
_P = "urn:ietf:params:acme:error:"

ACCOUNT_DOES_NOT_EXIST = _P + "accountDoesNotExist"
ALREADY_REVOKED = _P + "alreadyRevoked"
BAD_CSR = _P + "badCSR"
BAD_NONCE = _P + "badNonce"
BAD_PUBLIC_KEY = _P + "badPublicKey"
BAD_SIGNATURE_ALGORITHM = _P + "badSignatureAlgorithm"
CAA = _P + "caa"
COMPOUND = _P + "compound"
CONNECTION = _P + "connection"
DNS = _P + "dns"
EXTERNAL_ACCOUNT_REQUIRED = _P + "externalAccountRequired"
INCORRECT_RESPONSE = _P + "incorrectResponse"
INVALID_CONTACT = _P + "invalidContact"
MALFORMED = _P + "malformed"
ORDER_NOT_READY = _P + "orderNotReady"
RATE_LIMITED = _P + "rateLimited"
REJECTED_IDENTIFIER = _P + "rejectedIdentifier"
SERVER_INTERNAL = _P + "serverInternal"
TLS = _P + "tls"
UNAUTHORIZED = _P + "unauthorized"
UNSUPPORTED_CONTACT = _P + "unsupportedContact"
UNSUPPORTED_IDENTIFIER = _P + "unsupportedIdentifier"
USER_ACTION_REQUIRED = _P + "userActionRequired"

# Content type of RFC 7807 documents
PROBLEM_CONTENT_TYPE = "application/problem+json"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class IssuanceError(Exception):
    """Base class for every classified failure of an issuance run.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.

    """

    def __init__(self, detail: str) -> None:
        self.detail = detail
        super().__init__(detail)


class ConfigurationError(IssuanceError):
    """Fatal configuration problem (unknown challenge, bad account key)."""


class TransportError(IssuanceError):
    """Connection, TLS, or decoding failure talking to the ACME server.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether a later, whole-run retry may succeed.

    """

    def __init__(self, detail: str, *, retryable: bool = True) -> None:  # noqa: FBT001, FBT002
        self.retryable = retryable
        super().__init__(detail)


class AcmeProblem(IssuanceError):
    """An RFC 7807 *problem details* document returned by the server.

    Parameters
    ----------
    error_type:
        A URN string (one of the constants above) or ``"about:blank"``.
    detail:
        Human-readable explanation of the problem.
    status:
        HTTP status code of the response.
    title:
        Short summary, when the server supplied one.
    subproblems:
        Optional list of sub-problem dicts (RFC 8555 §6.7.1).

    """

    def __init__(
        self,
        error_type: str,
        detail: str,
        status: int = 400,
        *,
        title: str | None = None,
        subproblems: list[dict[str, Any]] | None = None,
    ) -> None:
        self.error_type = error_type
        self.status = status
        self.title = title
        self.subproblems = subproblems
        super().__init__(detail)

    @classmethod
    def from_dict(cls, body: dict[str, Any], status: int) -> AcmeProblem:
        """Build from a decoded ``application/problem+json`` body."""
        return cls(
            body.get("type", "about:blank"),
            body.get("detail", "") or f"HTTP {status}",
            body.get("status", status),
            title=body.get("title"),
            subproblems=body.get("subproblems"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise back to the RFC 7807 JSON structure."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "detail": self.detail,
            "status": self.status,
        }
        if self.title is not None:
            body["title"] = self.title
        if self.subproblems:
            body["subproblems"] = self.subproblems
        return body

    def __str__(self) -> str:
        return f"{self.error_type}: {self.detail} (HTTP {self.status})"


class ProtocolStateError(IssuanceError):
    """A server resource is in a status the run cannot proceed from.

    Parameters
    ----------
    detail:
        Human-readable description.
    resource:
        ``"order"`` or ``"authorization"`` (or the resource URL).
    status:
        The offending status string as reported by the server.
    reason:
        The server-provided error object, when present.

    """

    def __init__(
        self,
        detail: str,
        *,
        resource: str | None = None,
        status: str | None = None,
        reason: dict[str, Any] | None = None,
    ) -> None:
        self.resource = resource
        self.status = status
        self.reason = reason
        super().__init__(detail)


class MissingResourceError(IssuanceError):
    """The server omitted something the protocol requires (e.g. certificate URL)."""


class PollError(IssuanceError):
    """Base class for failures of the poll-until-ready loop."""


class PollFailed(PollError, ProtocolStateError):
    """The polled resource reached a terminal state that cannot satisfy the wait."""

    def __init__(
        self,
        detail: str,
        *,
        resource: str | None = None,
        status: str | None = None,
        reason: dict[str, Any] | None = None,
    ) -> None:
        ProtocolStateError.__init__(
            self,
            detail,
            resource=resource,
            status=status,
            reason=reason,
        )


class PollTimeout(PollError):
    """The awaited state was not observed within the configured bound."""

    def __init__(self, detail: str, *, attempts: int, elapsed: float) -> None:
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(detail)


class ChallengeResponderError(IssuanceError):
    """A challenge responder could not publish or remove its proof."""


class StorageError(IssuanceError):
    """Persisting the issued certificate or its key failed."""
