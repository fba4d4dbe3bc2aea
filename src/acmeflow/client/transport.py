"""HTTP transport to the ACME server.

Sends unsigned GET/HEAD requests (directory, nonce) and signed JWS
POSTs over ``urllib.request``.  Every response is reduced to an
:class:`AcmeResponse`; problem documents become
:class:`~acmeflow.core.errors.AcmeProblem` and connection-level failures
become :class:`~acmeflow.core.errors.TransportError`.

Usage::

    transport = HttpTransport(settings.server)
    directory = transport.get_directory(settings.server.directory_url)
    nonce = transport.new_nonce(directory.new_nonce)
    resp, nonce = exchange(transport, signer, nonce)
"""

from __future__ import annotations

import contextlib
import http.client
import json
import logging
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

from acmeflow import __version__
from acmeflow.client.structs import Directory
from acmeflow.core.errors import (
    PROBLEM_CONTENT_TYPE,
    AcmeProblem,
    MissingResourceError,
    TransportError,
)

if TYPE_CHECKING:
    from acmeflow.config.settings import ServerSettings
    from acmeflow.core.signer import RequestSigner

log = logging.getLogger(__name__)

JOSE_CONTENT_TYPE = "application/jose+json"
_MAX_ERROR_BODY = 500


@dataclass(frozen=True)
class AcmeResponse:
    """Decoded response from the ACME server.

    Attributes
    ----------
    status:
        HTTP status code.
    body:
        Decoded JSON for JSON responses, raw bytes otherwise
        (e.g. ``application/pem-certificate-chain``).
    nonce:
        The ``Replay-Nonce`` header, if present.
    location:
        The ``Location`` header, if present.
    retry_after:
        Seconds suggested by ``Retry-After``, if present.

    """

    status: int
    body: Any
    nonce: str | None = None
    location: str | None = None
    retry_after: float | None = None
    content_type: str = ""
    headers: dict[str, str] = field(default_factory=dict, compare=False)

    def json(self) -> dict[str, Any]:
        if not isinstance(self.body, dict):
            msg = f"Expected a JSON object, got {self.content_type or 'no content type'}"
            raise MissingResourceError(msg)
        return self.body


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a ``Retry-After`` header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        log.debug("Ignoring unparseable Retry-After header %r", value)
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    delta = (when - (now or datetime.now(UTC))).total_seconds()
    return max(0.0, delta)


class HttpTransport:
    """Synchronous ACME transport over ``urllib.request``.

    Parameters
    ----------
    settings:
        The ``server`` configuration section.

    """

    def __init__(self, settings: ServerSettings) -> None:
        self._settings = settings
        self._ssl_ctx: ssl.SSLContext | None = None
        self._opener: urllib.request.OpenerDirector | None = None

    # -- plumbing ------------------------------------------------------------

    def _get_ssl_context(self) -> ssl.SSLContext:
        """Build (and cache) an SSL context honouring the trust settings."""
        if self._ssl_ctx is not None:
            return self._ssl_ctx

        ctx = ssl.create_default_context()
        if self._settings.ca_cert_path:
            ctx.load_verify_locations(self._settings.ca_cert_path)
        if not self._settings.verify_ssl:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            log.warning("TLS certificate verification is disabled")

        self._ssl_ctx = ctx
        return ctx

    def _get_opener(self) -> urllib.request.OpenerDirector:
        if self._opener is None:
            handler = urllib.request.HTTPSHandler(context=self._get_ssl_context())
            self._opener = urllib.request.build_opener(handler)
        return self._opener

    def _user_agent(self) -> str:
        return self._settings.user_agent or f"acmeflow/{__version__}"

    def _build_request(
        self,
        url: str,
        body: dict[str, Any] | None,
        method: str,
    ) -> urllib.request.Request:
        data = None if body is None else json.dumps(body).encode("utf-8")
        req = urllib.request.Request(url, data=data, method=method)
        req.add_header("User-Agent", self._user_agent())
        req.add_header("Accept-Language", "en")
        if data is not None:
            req.add_header("Content-Type", JOSE_CONTENT_TYPE)
        return req

    @staticmethod
    def _decode(raw: bytes, content_type: str) -> Any:  # noqa: ANN401
        if "json" in content_type:
            try:
                return json.loads(raw.decode("utf-8")) if raw else {}
            except (json.JSONDecodeError, UnicodeDecodeError) as exc:
                msg = f"ACME server returned invalid JSON: {exc}"
                raise TransportError(msg, retryable=False) from exc
        return raw

    def _to_response(self, status: int, headers, raw: bytes) -> AcmeResponse:
        content_type = (headers.get("Content-Type") or "").split(";")[0].strip().lower()
        return AcmeResponse(
            status=status,
            body=self._decode(raw, content_type),
            nonce=headers.get("Replay-Nonce"),
            location=headers.get("Location"),
            retry_after=parse_retry_after(headers.get("Retry-After")),
            content_type=content_type,
            headers=dict(headers.items()),
        )

    def _problem_from_http_error(self, exc: urllib.error.HTTPError) -> AcmeProblem:
        raw = b""
        with contextlib.suppress(OSError):
            raw = exc.read()
        headers = exc.headers or {}
        content_type = (headers.get("Content-Type") or "").split(";")[0].strip().lower()
        if content_type == PROBLEM_CONTENT_TYPE:
            try:
                return AcmeProblem.from_dict(json.loads(raw.decode("utf-8")), exc.code)
            except (json.JSONDecodeError, UnicodeDecodeError, AttributeError):
                log.debug("Problem document from server could not be decoded")
        text = raw.decode("utf-8", errors="replace")[:_MAX_ERROR_BODY]
        return AcmeProblem("about:blank", text or exc.reason or "HTTP error", exc.code)

    # -- public API ------------------------------------------------------------

    def send(
        self,
        url: str,
        body: dict[str, Any] | None = None,
        *,
        method: str | None = None,
    ) -> AcmeResponse:
        """Send one request and decode the response.

        ``body=None`` issues a GET (or *method*), otherwise a JWS POST.

        Raises
        ------
        AcmeProblem
            On HTTP status >= 400.
        TransportError
            On connection, TLS, or decoding failure.

        """
        method = method or ("GET" if body is None else "POST")
        req = self._build_request(url, body, method)
        log.debug("%s %s", method, url)

        try:
            resp = self._get_opener().open(req, timeout=self._settings.timeout_seconds)
        except urllib.error.HTTPError as exc:
            problem = self._problem_from_http_error(exc)
            log.debug("ACME server returned %s for %s", problem, url)
            raise problem from exc
        except (urllib.error.URLError, http.client.HTTPException, OSError) as exc:
            msg = f"Failed to reach ACME server at {url}: {exc}"
            raise TransportError(msg, retryable=True) from exc

        with resp:
            try:
                raw = resp.read()
            except (http.client.HTTPException, OSError) as exc:
                msg = f"Error reading response from {url}: {exc}"
                raise TransportError(msg, retryable=True) from exc
            return self._to_response(resp.status, resp.headers, raw)

    def get_directory(self, url: str) -> Directory:
        """Fetch and decode the directory (unsigned GET)."""
        resp = self.send(url)
        return Directory.from_dict(resp.json())

    def new_nonce(self, url: str) -> str:
        """Fetch a fresh nonce from the newNonce endpoint (HEAD)."""
        resp = self.send(url, method="HEAD")
        if not resp.nonce:
            msg = f"newNonce response from {url} carried no Replay-Nonce header"
            raise MissingResourceError(msg)
        return resp.nonce


def exchange(
    transport: HttpTransport,
    signer: RequestSigner,
    nonce: str,
) -> tuple[AcmeResponse, str]:
    """Sign with *nonce*, send, and return the response plus the next nonce.

    Raises
    ------
    MissingResourceError
        If the response carries no ``Replay-Nonce``.

    """
    resp = transport.send(signer.url, signer.sign(nonce))
    if not resp.nonce:
        msg = f"Response from {signer.url} carried no Replay-Nonce header"
        raise MissingResourceError(msg)
    return resp, resp.nonce
