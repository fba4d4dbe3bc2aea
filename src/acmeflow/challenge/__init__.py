"""Pluggable challenge responders that publish domain-control proofs.

Exports the abstract base class and the registry.
"""

from acmeflow.challenge.base import ChallengeResponder
from acmeflow.challenge.registry import ResponderRegistry

__all__ = [
    "ChallengeResponder",
    "ResponderRegistry",
]
