"""``issue`` subcommand: run one issuance per configured certificate."""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

from acmeflow.challenge.registry import ResponderRegistry
from acmeflow.client.account import AccountManager
from acmeflow.client.certificate import CertificateBuilder
from acmeflow.client.poll import Poller, PollPolicy
from acmeflow.client.storage import FileStorage
from acmeflow.client.transport import HttpTransport
from acmeflow.core.errors import IssuanceError
from acmeflow.hooks.registry import HookRegistry
from acmeflow.issuance import IssuanceOrchestrator, IssuanceRequest

if TYPE_CHECKING:
    from acmeflow.config import AcmeflowConfig
    from acmeflow.config.settings import AcmeflowSettings

log = logging.getLogger(__name__)


def build_orchestrator(settings: AcmeflowSettings, hooks: HookRegistry) -> IssuanceOrchestrator:
    """Wire the default collaborators for one run.

    Every run gets its own transport and therefore its own nonce chain.
    """
    transport = HttpTransport(settings.server)
    return IssuanceOrchestrator(
        transport,
        AccountManager(settings.account, transport),
        CertificateBuilder(),
        ResponderRegistry(settings.challenges),
        FileStorage(),
        poller=Poller(transport, PollPolicy.from_settings(settings.polling)),
        hooks=hooks,
    )


def run_issue(config: AcmeflowConfig, names: list[str], *, debug: bool = False) -> int:
    """Issue the selected certificates in sequence; return the exit status."""
    settings = config.settings
    try:
        selected = [settings.certificate(n) for n in names] or list(settings.certificates)
    except KeyError as exc:
        print(f"acmeflow: error: {exc.args[0]}", file=sys.stderr)  # noqa: T201
        return 1

    hooks = HookRegistry(settings.hooks)
    failed = 0
    try:
        for cert in selected:
            orchestrator = build_orchestrator(settings, hooks)
            try:
                orchestrator.run(IssuanceRequest.from_settings(cert, settings.server))
            except IssuanceError as exc:
                if debug:
                    log.exception("Issuance of '%s' failed", cert.name)
                print(  # noqa: T201
                    f"{cert.name}: {type(exc).__name__}: {exc.detail}",
                    file=sys.stderr,
                )
                failed += 1
            else:
                print(f"{cert.name}: issued -> {cert.output_path}")  # noqa: T201
    finally:
        hooks.shutdown()

    return 1 if failed else 0
