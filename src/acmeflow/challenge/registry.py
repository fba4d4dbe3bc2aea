"""Challenge responder registry.

Maps each challenge type to the responder configured for it, either a
built-in name or a custom ``ext:`` class, and instantiates responders
on first use so a broken entry only affects certificates that need it.

Usage::

    from acmeflow.challenge.registry import ResponderRegistry

    registry = ResponderRegistry(settings.challenges)
    responder = registry.get(ChallengeType.DNS_01)
    responder.complete(challenge_type=..., file_name=..., proof=..., domain=...)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from acmeflow.challenge.base import ChallengeResponder
from acmeflow.core.errors import ConfigurationError

if TYPE_CHECKING:
    from acmeflow.config.settings import ChallengeSettings
    from acmeflow.core.types import ChallengeType

log = logging.getLogger(__name__)

# Maps responder name → (module_path, class_name, per-type settings attribute)
_BUILTIN_RESPONDERS: dict[str, tuple[str, str, str]] = {
    "webroot": ("acmeflow.challenge.http01", "WebrootResponder", "http01"),
    "rfc2136": ("acmeflow.challenge.dns01", "Rfc2136Responder", "dns01"),
    "alpn-cert": ("acmeflow.challenge.tls_alpn01", "AlpnCertificateResponder", "tlsalpn01"),
    "command": ("acmeflow.challenge.command", "CommandResponder", "command"),
}


class ResponderRegistry:
    """Registry of challenge responders, keyed by challenge type.

    Parameters
    ----------
    settings:
        The ``challenges`` section from :class:`AcmeflowSettings`.

    """

    def __init__(self, settings: ChallengeSettings) -> None:
        self._settings = settings
        self._responders: dict[ChallengeType, ChallengeResponder] = {}

    def _load_builtin(self, name: str) -> ChallengeResponder:
        mod_path, cls_name, settings_attr = _BUILTIN_RESPONDERS[name]
        cls = getattr(importlib.import_module(mod_path), cls_name)
        return cls(settings=getattr(self._settings, settings_attr))

    def _load_external(self, fqn: str) -> ChallengeResponder:
        """Load a custom responder by fully-qualified class name.

        The class receives the whole ``challenges`` section as settings.
        """
        module_path, _, cls_name = fqn.rpartition(".")
        if not module_path:
            msg = (
                f"Invalid external responder '{fqn}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise ConfigurationError(msg)

        try:
            cls = getattr(importlib.import_module(module_path), cls_name)
        except (ImportError, AttributeError) as exc:
            msg = f"External responder '{fqn}' could not be imported: {exc}"
            raise ConfigurationError(msg) from exc

        if not (isinstance(cls, type) and issubclass(cls, ChallengeResponder)):
            msg = f"External responder '{fqn}' must be a subclass of ChallengeResponder"
            raise ConfigurationError(msg)
        return cls(settings=self._settings)

    def _load(self, challenge_type: ChallengeType) -> ChallengeResponder:
        name = self._settings.responders.get(challenge_type.value)
        if name is None:
            msg = f"No responder configured for challenge type '{challenge_type.value}'"
            raise ConfigurationError(msg)

        if name.startswith("ext:"):
            responder = self._load_external(name[4:])
        elif name in _BUILTIN_RESPONDERS:
            responder = self._load_builtin(name)
        else:
            msg = f"Unknown responder '{name}' for challenge type '{challenge_type.value}'"
            raise ConfigurationError(msg)

        if not responder.supports(challenge_type):
            msg = f"Responder '{name}' cannot publish {challenge_type.value} proofs"
            raise ConfigurationError(msg)

        log.info("Loaded challenge responder '%s' for %s", name, challenge_type.value)
        return responder

    def get(self, challenge_type: ChallengeType) -> ChallengeResponder:
        """Return the responder for *challenge_type*, loading it on first use.

        Raises
        ------
        ConfigurationError
            If no usable responder is configured for the type.

        """
        responder = self._responders.get(challenge_type)
        if responder is None:
            responder = self._load(challenge_type)
            self._responders[challenge_type] = responder
        return responder
