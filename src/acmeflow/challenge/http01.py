"""HTTP-01 webroot responder (RFC 8555 §8.3).

Writes the key authorization to
``{webroot}/.well-known/acme-challenge/{token}`` so an existing web
server publishes it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from acmeflow.challenge.base import ChallengeResponder
from acmeflow.core.errors import ChallengeResponderError
from acmeflow.core.types import ChallengeType

if TYPE_CHECKING:
    from acmeflow.config.settings import Http01Settings

log = logging.getLogger(__name__)


class WebrootResponder(ChallengeResponder):
    """Publish HTTP-01 proofs as files under a webroot directory."""

    challenge_types = frozenset({ChallengeType.HTTP_01})

    def __init__(self, settings: Http01Settings | None = None) -> None:
        super().__init__(settings=settings)
        webroot = getattr(settings, "webroot", None)
        if not webroot:
            msg = "challenges.http01.webroot is not configured"
            raise ChallengeResponderError(msg)
        self._webroot = Path(webroot).resolve()

    def _target(self, file_name: str) -> Path:
        target = (self._webroot / file_name).resolve()
        if not target.is_relative_to(self._webroot):
            msg = f"Challenge file '{file_name}' escapes the webroot {self._webroot}"
            raise ChallengeResponderError(msg)
        return target

    def complete(
        self,
        *,
        challenge_type: ChallengeType,  # noqa: ARG002
        file_name: str,
        proof: str,
        domain: str,
    ) -> None:
        target = self._target(file_name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(proof, encoding="ascii")
            target.chmod(0o644)
        except OSError as exc:
            msg = f"HTTP-01: cannot write {target} for {domain}: {exc}"
            raise ChallengeResponderError(msg) from exc
        log.info("HTTP-01 proof for %s written to %s", domain, target)

    def cleanup(
        self,
        *,
        challenge_type: ChallengeType,  # noqa: ARG002
        file_name: str,
        proof: str,  # noqa: ARG002
        domain: str,  # noqa: ARG002
    ) -> None:
        self._target(file_name).unlink(missing_ok=True)
