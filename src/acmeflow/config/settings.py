"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the application actually reads.

Access pattern::

    from acmeflow.config import get_config

    server = get_config().settings.server
    print(server.directory_url, server.timeout_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from acmeflow.core.types import ChallengeType, KeyType

# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServerSettings:
    """ACME server endpoint and HTTP client settings."""

    directory_url: str
    verify_ssl: bool
    ca_cert_path: str | None
    timeout_seconds: int
    user_agent: str | None


def _build_server(data: dict | None) -> ServerSettings:
    d = data or {}
    return ServerSettings(
        directory_url=d["directory_url"],
        verify_ssl=d.get("verify_ssl", True),
        ca_cert_path=d.get("ca_cert_path"),
        timeout_seconds=d.get("timeout_seconds", 30),
        user_agent=d.get("user_agent"),
    )


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSettings:
    """ACME account key and registration details."""

    key_path: str
    key_type: KeyType
    contacts: tuple[str, ...]
    terms_of_service_agreed: bool
    eab_kid: str | None
    eab_hmac_key: str | None

    @property
    def has_eab(self) -> bool:
        return bool(self.eab_kid and self.eab_hmac_key)


def _build_account(data: dict | None) -> AccountSettings:
    d = data or {}
    return AccountSettings(
        key_path=d["key_path"],
        key_type=KeyType(d.get("key_type", "ec256")),
        contacts=tuple(d.get("contacts", [])),
        terms_of_service_agreed=d.get("terms_of_service_agreed", True),
        eab_kid=d.get("eab_kid"),
        eab_hmac_key=d.get("eab_hmac_key"),
    )


# ---------------------------------------------------------------------------
# Polling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PollingSettings:
    """Bounds of every poll-until-ready loop (authorization and order)."""

    interval_seconds: float
    max_attempts: int
    timeout_seconds: float
    honor_retry_after: bool
    max_retry_after_seconds: float


def _build_polling(data: dict | None) -> PollingSettings:
    d = data or {}
    return PollingSettings(
        interval_seconds=float(d.get("interval_seconds", 2)),
        max_attempts=d.get("max_attempts", 30),
        timeout_seconds=float(d.get("timeout_seconds", 300)),
        honor_retry_after=d.get("honor_retry_after", True),
        max_retry_after_seconds=float(d.get("max_retry_after_seconds", 60)),
    )


# ---------------------------------------------------------------------------
# Challenge responders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Http01Settings:
    webroot: str | None


@dataclass(frozen=True)
class Dns01Settings:
    """RFC 2136 dynamic update target and propagation check."""

    nameserver: str | None
    port: int
    zone: str | None
    tsig_key_name: str | None
    tsig_secret: str | None
    tsig_algorithm: str
    ttl: int
    timeout_seconds: int
    propagation_timeout_seconds: int
    propagation_interval_seconds: int
    resolvers: tuple[str, ...]


@dataclass(frozen=True)
class TlsAlpn01Settings:
    output_dir: str | None


@dataclass(frozen=True)
class CommandSettings:
    """External command run to publish (and remove) a proof."""

    complete: tuple[str, ...]
    cleanup: tuple[str, ...]
    timeout_seconds: int


@dataclass(frozen=True)
class ChallengeSettings:
    """Challenge responder configuration.

    ``responders`` maps a challenge type string to the responder that
    publishes its proof: a built-in name (``webroot``, ``rfc2136``,
    ``alpn-cert``, ``command``) or ``ext:package.module.Class``.
    """

    http01: Http01Settings
    dns01: Dns01Settings
    tlsalpn01: TlsAlpn01Settings
    command: CommandSettings
    responders: dict[str, str]


_DEFAULT_RESPONDERS = {
    "http-01": "webroot",
    "dns-01": "rfc2136",
    "tls-alpn-01": "alpn-cert",
}


def _build_challenges(data: dict | None) -> ChallengeSettings:
    d = data or {}
    h = d.get("http01") or {}
    dn = d.get("dns01") or {}
    t = d.get("tlsalpn01") or {}
    c = d.get("command") or {}
    responders = dict(_DEFAULT_RESPONDERS)
    responders.update({k.lower(): v for k, v in (d.get("responders") or {}).items()})
    return ChallengeSettings(
        http01=Http01Settings(webroot=h.get("webroot")),
        dns01=Dns01Settings(
            nameserver=dn.get("nameserver"),
            port=dn.get("port", 53),
            zone=dn.get("zone"),
            tsig_key_name=dn.get("tsig_key_name"),
            tsig_secret=dn.get("tsig_secret"),
            tsig_algorithm=dn.get("tsig_algorithm", "hmac-sha256"),
            ttl=dn.get("ttl", 60),
            timeout_seconds=dn.get("timeout_seconds", 10),
            propagation_timeout_seconds=dn.get("propagation_timeout_seconds", 120),
            propagation_interval_seconds=dn.get("propagation_interval_seconds", 5),
            resolvers=tuple(dn.get("resolvers", [])),
        ),
        tlsalpn01=TlsAlpn01Settings(output_dir=t.get("output_dir")),
        command=CommandSettings(
            complete=tuple(c.get("complete", [])),
            cleanup=tuple(c.get("cleanup", [])),
            timeout_seconds=c.get("timeout_seconds", 60),
        ),
        responders=responders,
    )


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateSettings:
    """One certificate to issue: its domains, challenge, and output files."""

    name: str
    domains: tuple[str, ...]
    challenge: ChallengeType
    key_type: KeyType
    key_path: str
    output_path: str
    reuse_key: bool


def _build_certificate(d: dict) -> CertificateSettings:
    output_path = d["output_path"]
    return CertificateSettings(
        name=d["name"],
        domains=tuple(d["domains"]),
        challenge=ChallengeType.parse(d.get("challenge", "http-01")),
        key_type=KeyType(d.get("key_type", "ec256")),
        key_path=d.get("key_path") or str(Path(output_path).with_suffix(".key")),
        output_path=output_path,
        reuse_key=d.get("reuse_key", False),
    )


def _build_certificates(data: list | None) -> tuple[CertificateSettings, ...]:
    return tuple(_build_certificate(entry) for entry in data or [])


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """Audit log output settings (file, rotation)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", False),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 10485760),
            backup_count=a.get("backup_count", 5),
        ),
    )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HookEntrySettings:
    """Single registered hook entry with events and config."""

    class_path: str
    enabled: bool
    events: tuple[str, ...]
    timeout_seconds: int | None
    config: dict[str, Any]


@dataclass(frozen=True)
class HookSettings:
    """Lifecycle hook system settings (workers, retries, registry)."""

    timeout_seconds: int
    max_workers: int
    max_retries: int
    registered: tuple[HookEntrySettings, ...]


def _build_hooks(data: dict | None) -> HookSettings:
    from acmeflow.hooks.events import KNOWN_EVENTS  # noqa: PLC0415

    d = data or {}
    registered = []
    for idx, entry in enumerate(d.get("registered", [])):
        events = tuple(entry.get("events", []))
        for evt in events:
            if evt not in KNOWN_EVENTS:
                msg = (
                    f"hooks.registered[{idx}].events: unknown event "
                    f"'{evt}'. Known events: {sorted(KNOWN_EVENTS)}"
                )
                raise ValueError(msg)
        registered.append(
            HookEntrySettings(
                class_path=entry["class"],
                enabled=entry.get("enabled", True),
                events=events,
                timeout_seconds=entry.get("timeout_seconds"),
                config=entry.get("config", {}),
            )
        )
    return HookSettings(
        timeout_seconds=d.get("timeout_seconds", 30),
        max_workers=d.get("max_workers", 4),
        max_retries=d.get("max_retries", 0),
        registered=tuple(registered),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmeflowSettings:
    server: ServerSettings
    account: AccountSettings
    polling: PollingSettings
    challenges: ChallengeSettings
    certificates: tuple[CertificateSettings, ...]
    hooks: HookSettings
    logging: LoggingSettings

    def certificate(self, name: str) -> CertificateSettings:
        """Return the certificate entry called *name*.

        Raises
        ------
        KeyError
            If no certificate with that name is configured.

        """
        for cert in self.certificates:
            if cert.name == name:
                return cert
        msg = f"No certificate named '{name}' is configured"
        raise KeyError(msg)


def build_settings(data: dict) -> AcmeflowSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`AcmeflowConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return AcmeflowSettings(
        server=_build_server(data.get("server")),
        account=_build_account(data.get("account")),
        polling=_build_polling(data.get("polling")),
        challenges=_build_challenges(data.get("challenges")),
        certificates=_build_certificates(data.get("certificates")),
        hooks=_build_hooks(data.get("hooks")),
        logging=_build_logging(data.get("logging")),
    )
