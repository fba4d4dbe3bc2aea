"""Protocol orchestration of one certificate issuance run.

Public API::

    from acmeflow.issuance import IssuanceOrchestrator, IssuanceRequest
"""

from acmeflow.issuance.orchestrator import (
    IssuanceOrchestrator,
    IssuanceRequest,
    IssuanceResult,
)

__all__ = ["IssuanceOrchestrator", "IssuanceRequest", "IssuanceResult"]
