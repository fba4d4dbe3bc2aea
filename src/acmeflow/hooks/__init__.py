"""Lifecycle hooks subsystem for acmeflow.

Public API::

    from acmeflow.hooks import Hook, HookRegistry, KNOWN_EVENTS

    class MyHook(Hook):
        def on_certificate_issuance(self, ctx: dict) -> None:
            ...
"""

from acmeflow.hooks.base import Hook
from acmeflow.hooks.events import KNOWN_EVENTS
from acmeflow.hooks.registry import HookRegistry

__all__ = ["KNOWN_EVENTS", "Hook", "HookRegistry"]
