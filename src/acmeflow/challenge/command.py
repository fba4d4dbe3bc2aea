"""External-command responder.

Runs a configured command to publish (and optionally remove) a proof,
for setups no built-in responder covers.  The challenge is described
to the command through environment variables:

``ACME_CHALLENGE``
    ``http-01``, ``dns-01`` or ``tls-alpn-01``
``ACME_DOMAIN``
    the identifier being validated
``ACME_FILE_NAME``
    file path or record label derived from the challenge
``ACME_PROOF``
    the value to publish
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING

from acmeflow.challenge.base import ChallengeResponder
from acmeflow.core.errors import ChallengeResponderError
from acmeflow.core.types import ChallengeType

if TYPE_CHECKING:
    from acmeflow.config.settings import CommandSettings

log = logging.getLogger(__name__)

_MAX_OUTPUT = 500


class CommandResponder(ChallengeResponder):
    """Publish proofs by running ``challenges.command.complete``."""

    challenge_types = frozenset(ChallengeType)

    def __init__(self, settings: CommandSettings | None = None) -> None:
        super().__init__(settings=settings)
        if settings is None or not settings.complete:
            msg = "challenges.command.complete is not configured"
            raise ChallengeResponderError(msg)

    def _run(
        self,
        argv: tuple[str, ...],
        *,
        challenge_type: ChallengeType,
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        env = dict(os.environ)
        env.update(
            {
                "ACME_CHALLENGE": challenge_type.value,
                "ACME_DOMAIN": domain,
                "ACME_FILE_NAME": file_name,
                "ACME_PROOF": proof,
            }
        )
        try:
            result = subprocess.run(  # noqa: S603
                list(argv),
                env=env,
                capture_output=True,
                text=True,
                timeout=self.settings.timeout_seconds,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            msg = f"Command {argv[0]} timed out after {self.settings.timeout_seconds}s"
            raise ChallengeResponderError(msg) from exc
        except OSError as exc:
            msg = f"Command {argv[0]} could not be started: {exc}"
            raise ChallengeResponderError(msg) from exc

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()[:_MAX_OUTPUT]
            msg = f"Command {argv[0]} exited with status {result.returncode}: {output}"
            raise ChallengeResponderError(msg)

    def complete(
        self,
        *,
        challenge_type: ChallengeType,
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        self._run(
            self.settings.complete,
            challenge_type=challenge_type,
            file_name=file_name,
            proof=proof,
            domain=domain,
        )
        log.info("%s proof for %s published by %s", challenge_type, domain, self.settings.complete[0])

    def cleanup(
        self,
        *,
        challenge_type: ChallengeType,
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        if not self.settings.cleanup:
            return
        self._run(
            self.settings.cleanup,
            challenge_type=challenge_type,
            file_name=file_name,
            proof=proof,
            domain=domain,
        )
