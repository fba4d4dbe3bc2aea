"""Configuration subsystem for acmeflow.

Public API::

    from acmeflow.config import get_config, AcmeflowConfig

    # Before the first run (CLI only):
    AcmeflowConfig(config_file="config.yaml")

    # Everywhere else:
    cfg  = get_config()
    url  = cfg.settings.server.directory_url   # typed access
    zone = cfg.get("challenges.dns01.zone")    # dynamic dot-path
"""

from acmeflow.config.acmeflow_config import (
    AcmeflowConfig,
    ConfigValidationError,
    get_config,
)
from acmeflow.config.settings import (
    AccountSettings,
    AcmeflowSettings,
    AuditLogSettings,
    CertificateSettings,
    ChallengeSettings,
    CommandSettings,
    Dns01Settings,
    HookEntrySettings,
    HookSettings,
    Http01Settings,
    LoggingSettings,
    PollingSettings,
    ServerSettings,
    TlsAlpn01Settings,
)

__all__ = [
    "AccountSettings",
    # Core
    "AcmeflowConfig",
    # Root
    "AcmeflowSettings",
    "AuditLogSettings",
    "CertificateSettings",
    "ChallengeSettings",
    "CommandSettings",
    "ConfigValidationError",
    "Dns01Settings",
    "HookEntrySettings",
    "HookSettings",
    "Http01Settings",
    "LoggingSettings",
    "PollingSettings",
    # Sections
    "ServerSettings",
    "TlsAlpn01Settings",
    "get_config",
]
