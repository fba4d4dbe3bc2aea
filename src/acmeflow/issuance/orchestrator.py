"""Issuance orchestrator: one end-to-end certificate issuance run.

Drives the RFC 8555 flow against one ACME server for one account:

 1. fetch the directory
 2. obtain the first nonce
 3. resolve (or register) the account
 4. create the order
 5. satisfy every pending authorization with the configured challenge
 6. wait for the order to become ``ready``
 7. generate the certificate key and CSR
 8. finalize the order
 9. wait for the order to become ``valid``
10. read the certificate URL
11. download the certificate
12. hand it to storage, then store the certificate key

Exactly one nonce is live at any time: every signed request consumes
it and its response supplies the next.  Steps run strictly in sequence
and every failure propagates unchanged; the only retries are the
polling loops of steps 5, 6 and 9.

Usage::

    orchestrator = IssuanceOrchestrator(
        transport, accounts, certificates, responders, storage,
        poller=Poller(transport, policy), hooks=hook_registry,
    )
    result = orchestrator.run(IssuanceRequest.from_settings(cert, settings.server))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from acmeflow.client.certificate import finalize_payload
from acmeflow.client.challenges import find_matching
from acmeflow.client.structs import Authorization, NewOrder, Order
from acmeflow.client.transport import exchange
from acmeflow.core.errors import IssuanceError, MissingResourceError, ProtocolStateError
from acmeflow.core.jws import jwk_from_key
from acmeflow.core.signer import EMPTY_OBJECT_PAYLOAD, make_empty_signer, make_signer
from acmeflow.core.state import is_terminal_failure
from acmeflow.core.types import AuthorizationStatus, KeyType, OrderStatus
from acmeflow.hooks import events
from acmeflow.logging.setup import AUDIT_LOGGER, run_context

if TYPE_CHECKING:
    from acmeflow.challenge.base import ChallengeResponder
    from acmeflow.client.account import AccountManager
    from acmeflow.client.certificate import CertificateBuilder
    from acmeflow.client.challenges import OfferedChallenge
    from acmeflow.client.poll import Poller
    from acmeflow.client.storage import FileStorage
    from acmeflow.client.transport import HttpTransport
    from acmeflow.config.settings import CertificateSettings, ServerSettings
    from acmeflow.core.signer import Account
    from acmeflow.core.types import ChallengeType
    from acmeflow.hooks.registry import HookRegistry

log = logging.getLogger(__name__)
audit_log = logging.getLogger(AUDIT_LOGGER)


class ResponderSource(Protocol):
    def get(self, challenge_type: ChallengeType) -> ChallengeResponder: ...


@dataclass(frozen=True)
class IssuanceRequest:
    """Everything one run needs to know about the certificate to issue."""

    name: str
    domains: tuple[str, ...]
    directory_url: str
    challenge: ChallengeType
    key_path: str
    output_path: str
    key_type: KeyType = KeyType.EC256
    reuse_key: bool = False

    @classmethod
    def from_settings(cls, cert: CertificateSettings, server: ServerSettings) -> IssuanceRequest:
        return cls(
            name=cert.name,
            domains=cert.domains,
            directory_url=server.directory_url,
            challenge=cert.challenge,
            key_path=cert.key_path,
            output_path=cert.output_path,
            key_type=cert.key_type,
            reuse_key=cert.reuse_key,
        )


@dataclass(frozen=True)
class IssuanceResult:
    """Outcome of a successful run."""

    run_id: str
    order_url: str
    certificate_url: str
    certificate: bytes = field(repr=False)


@dataclass(frozen=True)
class _PublishedProof:
    responder: ChallengeResponder
    challenge_type: ChallengeType
    file_name: str
    proof: str
    domain: str


class IssuanceOrchestrator:
    """Run the issuance flow with injected collaborators.

    Parameters
    ----------
    transport:
        Sends unsigned and signed requests to the ACME server.
    accounts:
        Resolves or registers the account (``resolve_or_register``).
    certificates:
        Provides the certificate key and CSR.
    responders:
        Returns the responder that publishes proofs for a challenge type.
    storage:
        Persists the downloaded certificate.
    poller:
        Poll-until-ready loop shared by every asynchronous wait.
    hooks:
        Optional lifecycle observer registry.

    """

    def __init__(  # noqa: PLR0913
        self,
        transport: HttpTransport,
        accounts: AccountManager,
        certificates: CertificateBuilder,
        responders: ResponderSource,
        storage: FileStorage,
        *,
        poller: Poller,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._transport = transport
        self._accounts = accounts
        self._certificates = certificates
        self._responders = responders
        self._storage = storage
        self._poller = poller
        self._hooks = hooks

    # -- observers -------------------------------------------------------------

    def _emit(self, event: str, context: dict[str, Any]) -> None:
        if self._hooks is not None:
            self._hooks.dispatch(event, context)

    # -- public API ------------------------------------------------------------

    def run(self, request: IssuanceRequest) -> IssuanceResult:
        """Issue the certificate described by *request*.

        Raises
        ------
        IssuanceError
            The run failed; the subclass classifies the cause.

        """
        published: list[_PublishedProof] = []
        with run_context(request.name) as run_id:
            log.info(
                "Starting issuance of '%s' for %s via %s",
                request.name,
                ", ".join(request.domains),
                request.challenge,
            )
            try:
                result = self._issue(request, run_id, published)
            except IssuanceError as exc:
                audit_log.error(
                    "Issuance of '%s' failed: %s",
                    request.name,
                    exc.detail,
                    extra={"event": events.ISSUANCE_FAILURE, "error_class": type(exc).__name__},
                )
                self._emit(
                    events.ISSUANCE_FAILURE,
                    {
                        "certificate": request.name,
                        "run_id": run_id,
                        "domains": list(request.domains),
                        "error_class": type(exc).__name__,
                        "error": exc.detail,
                    },
                )
                raise
            finally:
                self._cleanup(published)

            log.info("Certificate issued for %s", ", ".join(request.domains))
            audit_log.info(
                "Certificate '%s' issued",
                request.name,
                extra={
                    "event": events.CERTIFICATE_ISSUANCE,
                    "certificate_url": result.certificate_url,
                },
            )
            self._emit(
                events.CERTIFICATE_ISSUANCE,
                {
                    "certificate": request.name,
                    "run_id": run_id,
                    "domains": list(request.domains),
                    "order_url": result.order_url,
                    "certificate_url": result.certificate_url,
                    "output_path": request.output_path,
                },
            )
            return result

    # -- flow ------------------------------------------------------------------

    def _issue(
        self,
        request: IssuanceRequest,
        run_id: str,
        published: list[_PublishedProof],
    ) -> IssuanceResult:
        # 1-3. Directory, first nonce, account
        directory = self._transport.get_directory(request.directory_url)
        nonce = self._transport.new_nonce(directory.new_nonce)
        account, nonce = self._accounts.resolve_or_register(directory, nonce)

        # 4. New order
        signer = make_signer(
            account,
            NewOrder.for_domains(request.domains).to_json(),
            directory.new_order,
        )
        resp, nonce = exchange(self._transport, signer, nonce)
        order = Order.from_dict(resp.json())
        if not resp.location:
            msg = "newOrder response carried no Location header (order URL)"
            raise MissingResourceError(msg)
        order_url = resp.location
        log.info("Created order %s (status=%s)", order_url, order.status)
        self._emit(
            events.ORDER_CREATION,
            {
                "certificate": request.name,
                "run_id": run_id,
                "order_url": order_url,
                "domains": list(request.domains),
                "authorizations": list(order.authorizations),
            },
        )

        # 5. Authorizations
        for authz_url in order.authorizations:
            nonce = self._authorize(request, run_id, account, authz_url, nonce, published)

        # 6. Wait for ready
        order, nonce = self._poller.poll(
            make_empty_signer(account, order_url),
            Order.from_dict,
            lambda o: o.status == OrderStatus.READY,
            nonce,
            resource="order",
        )

        # 7-8. Key, CSR, finalize
        key = self._certificates.generate_key_pair(request)
        csr = self._certificates.build_csr(request, key)
        resp, nonce = exchange(
            self._transport,
            make_signer(account, finalize_payload(csr), order.finalize),
            nonce,
        )
        finalized = Order.from_dict(resp.json())
        log.info("Finalized order %s (status=%s)", order_url, finalized.status)

        # 9. Wait for valid
        order, nonce = self._poller.poll(
            make_empty_signer(account, order_url),
            Order.from_dict,
            lambda o: o.status == OrderStatus.VALID,
            nonce,
            failed=lambda o: is_terminal_failure(o.status),
            resource="order",
        )

        # 10-12. Download, store the certificate, then its key
        if not order.certificate:
            msg = f"Order {order_url} is valid but has no certificate URL"
            raise MissingResourceError(msg)
        resp = self._transport.send(
            order.certificate,
            make_empty_signer(account, order.certificate).sign(nonce),
        )
        if not isinstance(resp.body, bytes):
            msg = f"Certificate download from {order.certificate} returned {resp.content_type}"
            raise MissingResourceError(msg)
        certificate = resp.body
        self._storage.persist(request, certificate)
        self._certificates.commit_key(request, key)

        return IssuanceResult(
            run_id=run_id,
            order_url=order_url,
            certificate_url=order.certificate,
            certificate=certificate,
        )

    def _authorize(  # noqa: PLR0913
        self,
        request: IssuanceRequest,
        run_id: str,
        account: Account,
        authz_url: str,
        nonce: str,
        published: list[_PublishedProof],
    ) -> str:
        """Satisfy one authorization; return the next live nonce."""
        resp, nonce = exchange(self._transport, make_empty_signer(account, authz_url), nonce)
        authz = Authorization.from_dict(resp.json())

        if authz.status == AuthorizationStatus.VALID:
            log.info("Authorization for %s is already valid", authz.identifier)
            return nonce
        if authz.status != AuthorizationStatus.PENDING:
            msg = f"{authz.identifier}: authorization status is {authz.status}"
            raise ProtocolStateError(
                msg,
                resource="authorization",
                status=str(authz.status),
                reason=authz.error,
            )

        matching = find_matching(request.challenge, authz.challenges)
        if not matching:
            offered = ", ".join(str(c.challenge_type) for c in authz.challenges) or "none"
            msg = (
                f"{authz.identifier}: no matching challenge offered "
                f"(wanted {request.challenge}, offered {offered})"
            )
            raise ProtocolStateError(
                msg,
                resource="authorization",
                status=str(authz.status),
            )

        jwk = jwk_from_key(account.private_key)
        domain = authz.identifier.value
        for challenge in matching:
            nonce = self._answer(request, run_id, account, challenge, jwk, domain, nonce, published)

        _, nonce = self._poller.poll(
            make_empty_signer(account, authz_url),
            Authorization.from_dict,
            lambda a: a.status == AuthorizationStatus.VALID,
            nonce,
            resource="authorization",
        )
        return nonce

    def _answer(  # noqa: PLR0913
        self,
        request: IssuanceRequest,
        run_id: str,
        account: Account,
        challenge: OfferedChallenge,
        jwk: dict[str, str],
        domain: str,
        nonce: str,
        published: list[_PublishedProof],
    ) -> str:
        """Publish the proof for *challenge* and tell the server it is ready."""
        responder = self._responders.get(challenge.challenge_type)
        proof = _PublishedProof(
            responder=responder,
            challenge_type=challenge.challenge_type,
            file_name=challenge.get_file_name(),
            proof=challenge.get_proof(jwk),
            domain=domain,
        )
        responder.complete(
            challenge_type=proof.challenge_type,
            file_name=proof.file_name,
            proof=proof.proof,
            domain=proof.domain,
        )
        published.append(proof)

        _, nonce = exchange(
            self._transport,
            make_signer(account, EMPTY_OBJECT_PAYLOAD, challenge.get_url()),
            nonce,
        )
        log.info("Accepted %s challenge for %s", challenge.challenge_type, domain)
        self._emit(
            events.CHALLENGE_COMPLETED,
            {
                "certificate": request.name,
                "run_id": run_id,
                "domain": domain,
                "challenge_type": challenge.challenge_type.value,
                "challenge_url": challenge.get_url(),
                "file_name": proof.file_name,
            },
        )
        return nonce

    @staticmethod
    def _cleanup(published: list[_PublishedProof]) -> None:
        """Remove every published proof; failures are logged only."""
        for item in reversed(published):
            try:
                item.responder.cleanup(
                    challenge_type=item.challenge_type,
                    file_name=item.file_name,
                    proof=item.proof,
                    domain=item.domain,
                )
            except Exception:
                log.warning(
                    "Cleanup of %s proof for %s failed",
                    item.challenge_type,
                    item.domain,
                    exc_info=True,
                )
