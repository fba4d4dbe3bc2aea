"""DNS-01 responder using RFC 2136 dynamic updates (RFC 8555 §8.4).

Adds a TXT record ``_acme-challenge.{domain}`` holding the proof on the
configured primary nameserver (optionally TSIG-signed), then waits
until the record is visible through the configured resolvers before
the challenge is accepted.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

import dns.exception
import dns.name
import dns.query
import dns.rcode
import dns.resolver
import dns.tsigkeyring
import dns.update

from acmeflow.challenge.base import ChallengeResponder
from acmeflow.core.errors import ChallengeResponderError
from acmeflow.core.types import ChallengeType

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmeflow.config.settings import Dns01Settings

log = logging.getLogger(__name__)


class Rfc2136Responder(ChallengeResponder):
    """Publish DNS-01 proofs through RFC 2136 dynamic DNS updates."""

    challenge_types = frozenset({ChallengeType.DNS_01})

    def __init__(
        self,
        settings: Dns01Settings | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(settings=settings)
        if settings is None or not settings.nameserver:
            msg = "challenges.dns01.nameserver is not configured"
            raise ChallengeResponderError(msg)
        self._sleep = sleep
        self._clock = clock
        self._keyring = None
        if settings.tsig_key_name and settings.tsig_secret:
            self._keyring = dns.tsigkeyring.from_text(
                {settings.tsig_key_name: settings.tsig_secret},
            )

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def record_name(file_name: str, domain: str) -> str:
        return f"{file_name}.{domain.removeprefix('*.').rstrip('.')}."

    def _zone_for(self, record: str) -> dns.name.Name:
        if self.settings.zone:
            return dns.name.from_text(self.settings.zone)
        try:
            return dns.resolver.zone_for_name(record)
        except dns.exception.DNSException as exc:
            msg = f"DNS-01: cannot determine the zone of {record}: {exc}"
            raise ChallengeResponderError(msg) from exc

    def _send_update(self, record: str, proof: str, *, delete: bool) -> None:
        s = self.settings
        update = dns.update.UpdateMessage(
            self._zone_for(record),
            keyring=self._keyring,
            keyalgorithm=s.tsig_algorithm,
        )
        name = dns.name.from_text(record)
        if delete:
            update.delete(name, "TXT", f'"{proof}"')
        else:
            update.add(name, s.ttl, "TXT", f'"{proof}"')

        try:
            response = dns.query.tcp(update, s.nameserver, port=s.port, timeout=s.timeout_seconds)
        except (dns.exception.DNSException, OSError) as exc:
            msg = f"DNS-01: update for {record} to {s.nameserver}:{s.port} failed: {exc}"
            raise ChallengeResponderError(msg) from exc

        rcode = response.rcode()
        if rcode != dns.rcode.NOERROR:
            msg = (
                f"DNS-01: {s.nameserver} refused the update for {record} "
                f"({dns.rcode.to_text(rcode)})"
            )
            raise ChallengeResponderError(msg)

    def _resolver(self) -> dns.resolver.Resolver:
        s = self.settings
        resolver = dns.resolver.Resolver(configure=not s.resolvers)
        if s.resolvers:
            resolver.nameservers = list(s.resolvers)
        resolver.lifetime = s.timeout_seconds
        return resolver

    def _is_visible(self, resolver: dns.resolver.Resolver, record: str, proof: str) -> bool:
        try:
            answer = resolver.resolve(record, "TXT")
        except dns.exception.DNSException as exc:
            log.debug("DNS-01: %s not visible yet: %s", record, exc)
            return False
        values = {b"".join(rdata.strings).decode("ascii", errors="replace") for rdata in answer}
        return proof in values

    def _wait_for_propagation(self, record: str, proof: str) -> None:
        s = self.settings
        if s.propagation_timeout_seconds <= 0:
            return
        resolver = self._resolver()
        deadline = self._clock() + s.propagation_timeout_seconds
        while not self._is_visible(resolver, record, proof):
            if self._clock() >= deadline:
                msg = (
                    f"DNS-01: TXT record {record} not visible after "
                    f"{s.propagation_timeout_seconds}s"
                )
                raise ChallengeResponderError(msg)
            self._sleep(s.propagation_interval_seconds)
        log.debug("DNS-01: %s is visible", record)

    # -- ChallengeResponder ----------------------------------------------------

    def complete(
        self,
        *,
        challenge_type: ChallengeType,  # noqa: ARG002
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        record = self.record_name(file_name, domain)
        self._send_update(record, proof, delete=False)
        log.info("DNS-01 TXT record %s added via %s", record, self.settings.nameserver)
        self._wait_for_propagation(record, proof)

    def cleanup(
        self,
        *,
        challenge_type: ChallengeType,  # noqa: ARG002
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        record = self.record_name(file_name, domain)
        self._send_update(record, proof, delete=True)
        log.debug("DNS-01 TXT record %s removed", record)
