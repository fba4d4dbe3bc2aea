"""Poll-until-ready: wait for an asynchronous server-side transition.

Re-fetches a resource with signed POST-as-GET requests until a
predicate holds, a terminal state makes that impossible, or the
configured bound is exhausted.  Every attempt consumes exactly one
nonce and yields exactly one replacement.

Usage::

    poller = Poller(transport, PollPolicy.from_settings(settings.polling))
    order, nonce = poller.poll(
        make_empty_signer(account, order_url),
        Order.from_dict,
        lambda o: o.status == OrderStatus.READY,
        nonce,
        resource="order",
    )
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from acmeflow.client.transport import exchange
from acmeflow.core.errors import PollFailed, PollTimeout
from acmeflow.core.state import (
    TRANSITION_TABLES,
    is_reachable,
    is_terminal,
    log_transition,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmeflow.client.transport import HttpTransport
    from acmeflow.config.settings import PollingSettings
    from acmeflow.core.signer import RequestSigner

log = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    """Bounds and pacing of a polling loop.

    Attributes
    ----------
    interval_seconds:
        Fixed wait between attempts when the server gives no hint.
    max_attempts:
        Maximum number of fetches, including the first.
    timeout_seconds:
        Maximum total wall-clock time spent polling.
    honor_retry_after:
        Use the server's ``Retry-After`` when present.
    max_retry_after_seconds:
        Upper bound applied to a server-provided ``Retry-After``.

    """

    interval_seconds: float = 2.0
    max_attempts: int = 30
    timeout_seconds: float = 300.0
    honor_retry_after: bool = True
    max_retry_after_seconds: float = 60.0

    @classmethod
    def from_settings(cls, settings: PollingSettings) -> PollPolicy:
        return cls(
            interval_seconds=settings.interval_seconds,
            max_attempts=settings.max_attempts,
            timeout_seconds=settings.timeout_seconds,
            honor_retry_after=settings.honor_retry_after,
            max_retry_after_seconds=settings.max_retry_after_seconds,
        )

    def delay_for(self, retry_after: float | None) -> float:
        """Return how long to wait before the next attempt."""
        if self.honor_retry_after and retry_after is not None:
            return min(max(retry_after, 0.0), self.max_retry_after_seconds)
        return self.interval_seconds


def _default_failed(obj: Any) -> bool:  # noqa: ANN401
    status = getattr(obj, "status", None)
    return status is not None and is_terminal(status)


class Poller:
    """Poll a signed resource until a predicate is satisfied.

    Parameters
    ----------
    transport:
        The transport used to send each attempt.
    policy:
        Attempt/time bounds and interval.
    sleep:
        Sleep function (injectable for tests).
    clock:
        Monotonic clock (injectable for tests).

    """

    def __init__(
        self,
        transport: HttpTransport,
        policy: PollPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._policy = policy
        self._sleep = sleep
        self._clock = clock

    @property
    def policy(self) -> PollPolicy:
        return self._policy

    def poll(  # noqa: PLR0913
        self,
        signer: RequestSigner,
        decode: Callable[[dict[str, Any]], T],
        predicate: Callable[[T], bool],
        nonce: str,
        *,
        failed: Callable[[T], bool] | None = None,
        resource: str = "resource",
    ) -> tuple[T, str]:
        """Fetch ``signer.url`` until *predicate* holds.

        Parameters
        ----------
        signer:
            POST-as-GET signer bound to the resource URL.
        decode:
            Turns the JSON body into the typed resource.
        predicate:
            Satisfied when the awaited state is reached.
        nonce:
            The live nonce; consumed by the first attempt.
        failed:
            Returns ``True`` when the resource can never satisfy
            *predicate*.  Defaults to "status is terminal".
        resource:
            Resource kind for logs and errors.

        Returns
        -------
        tuple
            The decoded resource and the next live nonce.

        Raises
        ------
        PollFailed
            The resource reached a terminal state first.
        PollTimeout
            The attempt or time bound was exhausted.

        """
        failed = failed or _default_failed
        policy = self._policy
        start = self._clock()
        last_status = None
        attempt = 0

        while True:
            attempt += 1
            resp, nonce = exchange(self._transport, signer, nonce)
            obj = decode(resp.json())

            status = getattr(obj, "status", None)
            if status != last_status:
                table = TRANSITION_TABLES.get(resource, {})
                reachable = is_reachable(last_status, status, table)
                log_transition(
                    resource,
                    signer.url,
                    last_status,
                    status,
                    reason=None if reachable else "unexpected transition",
                )
                last_status = status

            if predicate(obj):
                log.debug(
                    "%s %s ready after %d attempt(s)",
                    resource,
                    signer.url,
                    attempt,
                )
                return obj, nonce

            if failed(obj):
                error = getattr(obj, "error", None)
                msg = f"{resource} {signer.url} reached terminal status '{status}'"
                if error:
                    msg += f": {error.get('detail', error)}"
                raise PollFailed(
                    msg,
                    resource=resource,
                    status=str(status),
                    reason=error,
                )

            elapsed = self._clock() - start
            delay = policy.delay_for(resp.retry_after)
            if attempt >= policy.max_attempts or elapsed + delay > policy.timeout_seconds:
                msg = (
                    f"{resource} {signer.url} still '{status}' after "
                    f"{attempt} attempt(s) in {elapsed:.1f}s"
                )
                raise PollTimeout(msg, attempts=attempt, elapsed=elapsed)

            log.debug(
                "%s %s is '%s'; retrying in %.1fs (attempt %d/%d)",
                resource,
                signer.url,
                status,
                delay,
                attempt,
                policy.max_attempts,
            )
            self._sleep(delay)
