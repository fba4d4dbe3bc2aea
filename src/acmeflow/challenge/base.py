"""Abstract base class for challenge responders.

A responder makes a proof observable to the ACME server: it writes a
file under a webroot, publishes a DNS record, stages a TLS certificate,
or runs an external command.  All responders (built-in and custom)
inherit from :class:`ChallengeResponder` and implement :meth:`complete`.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar

from acmeflow.core.types import ChallengeType

log = logging.getLogger(__name__)


class ChallengeResponder(abc.ABC):
    """Base class for all challenge responders.

    Subclasses set :attr:`challenge_types` to the kinds they can
    publish and implement :meth:`complete`.

    Parameters
    ----------
    settings:
        Per-type settings (e.g. ``Http01Settings``, ``Dns01Settings``).

    """

    challenge_types: ClassVar[frozenset[ChallengeType]]
    """Challenge kinds this responder can publish proofs for."""

    def __init__(self, settings: Any = None) -> None:  # noqa: ANN401
        self.settings = settings

    def supports(self, challenge_type: ChallengeType) -> bool:
        return challenge_type in self.challenge_types

    @abc.abstractmethod
    def complete(
        self,
        *,
        challenge_type: ChallengeType,
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        """Publish *proof* so the server can observe it.

        Must raise :class:`~acmeflow.core.errors.ChallengeResponderError`
        on failure.  Returning without error means the proof is live.

        Parameters
        ----------
        challenge_type:
            The kind being answered.
        file_name:
            File path or record label derived from the challenge.
        proof:
            The value to publish.
        domain:
            The identifier being validated (``*.`` already stripped).

        """

    def cleanup(  # noqa: B027
        self,
        *,
        challenge_type: ChallengeType,
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        """Remove a previously published proof.

        Default implementation is a no-op.
        """
