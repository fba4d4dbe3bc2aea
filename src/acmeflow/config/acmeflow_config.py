"""acmeflow configuration loader built on PyYAML and jsonschema.

Lifecycle::

    # 1. CLI creates the singleton (once, before any certificate is issued)
    AcmeflowConfig(config_file="/etc/acmeflow/config.yaml")

    # 2. Any module retrieves it afterwards
    from acmeflow.config import get_config
    cfg = get_config()
    cfg.settings.server.directory_url  # typed access

    # 3. Extension / dynamic access
    cfg.get("challenges.dns01.zone", default="example.com")
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from acmeflow.config.settings import AcmeflowSettings, build_settings
from acmeflow.core.errors import ConfigurationError
from acmeflow.core.types import ChallengeType

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

_ENV_RE = re.compile(
    r"^\$\{([^}:]+?)(?::-(.*))?\}$",
    re.DOTALL,
)

_BUILTIN_RESPONDERS = frozenset({"webroot", "rfc2136", "alpn-cert", "command"})

_CLASS_PATH_RE = re.compile(
    r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$",
)

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level singleton reference
# ---------------------------------------------------------------------------
_instance: AcmeflowConfig | None = None


def get_config() -> AcmeflowConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`AcmeflowConfig` has not been
    created yet (i.e. the CLI entry point has not run).
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "AcmeflowConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


# ---------------------------------------------------------------------------
# Validation error collector
# ---------------------------------------------------------------------------


class ConfigValidationError(Exception):
    """Raised when schema or cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


# ---------------------------------------------------------------------------
# Environment variable resolution
# ---------------------------------------------------------------------------


def _resolve_value(value: str, path: str) -> str:
    """Replace ``${VAR}`` or ``${VAR:-default}`` with env var value."""
    match = _ENV_RE.match(value)
    if match is None:
        return value
    var_name = match.group(1)
    fallback = match.group(2)
    resolved = os.environ.get(var_name)
    if resolved is not None:
        return resolved
    if fallback is not None:
        return fallback
    raise ConfigValidationError(
        [
            f"Environment variable '${{{var_name}}}' referenced "
            f"at '{path}' is not set and has no default",
        ],
    )


def _resolve_env_vars(
    data: Any,  # noqa: ANN401
    path: str = "",
) -> None:
    """Walk *data* in-place and resolve ``${VAR}``/``${VAR:-default}`` strings."""
    if isinstance(data, dict):
        for key in data:
            child_path = f"{path}.{key}" if path else key
            if isinstance(data[key], str):
                data[key] = _resolve_value(data[key], child_path)
            elif isinstance(data[key], (dict, list)):
                _resolve_env_vars(data[key], child_path)
    elif isinstance(data, list):
        for idx, item in enumerate(data):
            child_path = f"{path}[{idx}]"
            if isinstance(item, str):
                data[idx] = _resolve_value(item, child_path)
            elif isinstance(item, (dict, list)):
                _resolve_env_vars(item, child_path)


def _read_file(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError:
        msg = f"Config file not found: {path}"
        raise ConfigValidationError([msg]) from None
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"Config file {path} could not be parsed: {exc}"
        raise ConfigValidationError([msg]) from exc
    if data is None:
        data = {}
    if not isinstance(data, dict):
        msg = f"Config file {path} must contain a mapping at the top level"
        raise ConfigValidationError([msg])
    return data


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class AcmeflowConfig:
    """Central configuration for acmeflow.

    The JSON schema is bundled at ``config/schema.json``; users supply
    only ``config_file``.

    After construction the typed settings tree is available at
    :pyattr:`settings` and the raw dict via :pyattr:`data` /
    :pymeth:`get`.
    """

    def __init__(self, *, config_file: str | Path) -> None:
        global _instance  # noqa: PLW0603

        self._path = Path(config_file)
        self._data = self._load()
        self._validate_schema()
        self.additional_checks()

        # Materialise the typed settings tree from the resolved data.
        self._settings: AcmeflowSettings = build_settings(self._data)
        _instance = self

    # -- lifecycle ------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs env-var resolution **before** schema validation so that
        substituted values (e.g. ``${LOG_LEVEL:-INFO}``) are checked
        against enum constraints in the schema.
        """
        data = _read_file(self._path)
        _resolve_env_vars(data)
        data["_source"] = str(self._path)
        return data

    def _validate_schema(self) -> None:
        with _SCHEMA_PATH.open(encoding="utf-8") as f:
            schema = json.load(f)
        validator = jsonschema.Draft202012Validator(schema)
        errors = sorted(validator.iter_errors(self._data), key=lambda e: list(e.absolute_path))
        if errors:
            raise ConfigValidationError(
                [f"{e.json_path}: {e.message}" for e in errors],
            )

    # -- typed access -------------------------------------------------------

    @property
    def settings(self) -> AcmeflowSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    @property
    def data(self) -> dict[str, Any]:
        """The raw, env-resolved configuration mapping."""
        return self._data

    def get(self, path: str, default: Any = None) -> Any:  # noqa: ANN401
        """Look up a dot-separated *path* in the raw data."""
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Semantic & cross-field validation.

        Called **after** schema validation passes.  All problems are
        collected and raised together.
        """
        errors: list[str] = []
        warnings: list[str] = []

        server = self._data.get("server") or {}
        account = self._data.get("account") or {}
        challenges = self._data.get("challenges") or {}
        certificates = self._data.get("certificates") or []
        hooks = self._data.get("hooks") or {}

        # -- server --
        if not server.get("verify_ssl", True):
            warnings.append(
                "server.verify_ssl is false: ACME server certificates will not be verified",
            )

        # -- account --
        if bool(account.get("eab_kid")) != bool(account.get("eab_hmac_key")):
            errors.append(
                "account.eab_kid and account.eab_hmac_key must be set together",
            )

        # -- certificates --
        seen: set[str] = set()
        used_types: set[ChallengeType] = set()
        for idx, cert in enumerate(certificates):
            name = cert.get("name", "")
            if name in seen:
                errors.append(f"certificates[{idx}].name: duplicate name '{name}'")
            seen.add(name)
            try:
                used_types.add(ChallengeType.parse(cert.get("challenge", "http-01")))
            except ConfigurationError as exc:
                errors.append(f"certificates[{idx}].challenge: {exc.detail}")

        # -- challenge responders --
        responders = {
            "http-01": "webroot",
            "dns-01": "rfc2136",
            "tls-alpn-01": "alpn-cert",
        }
        for key, value in (challenges.get("responders") or {}).items():
            try:
                ChallengeType.parse(key)
            except ConfigurationError as exc:
                errors.append(f"challenges.responders: {exc.detail}")
                continue
            responders[key.lower()] = value
            if value.startswith("ext:"):
                if not _CLASS_PATH_RE.match(value[4:]):
                    errors.append(
                        f"challenges.responders.{key}: '{value}' is not a "
                        "fully-qualified class path",
                    )
            elif value not in _BUILTIN_RESPONDERS:
                errors.append(
                    f"challenges.responders.{key}: unknown responder '{value}'. "
                    f"Built-in responders: {sorted(_BUILTIN_RESPONDERS)}",
                )

        for ctype in sorted(used_types):
            responder = responders.get(ctype.value)
            if responder == "webroot" and not (challenges.get("http01") or {}).get("webroot"):
                errors.append(
                    "challenges.http01.webroot is required when a certificate uses http-01",
                )
            elif responder == "rfc2136" and not (challenges.get("dns01") or {}).get("nameserver"):
                errors.append(
                    "challenges.dns01.nameserver is required when a certificate uses dns-01",
                )
            elif responder == "alpn-cert" and not (challenges.get("tlsalpn01") or {}).get(
                "output_dir"
            ):
                errors.append(
                    "challenges.tlsalpn01.output_dir is required when a certificate uses "
                    "tls-alpn-01",
                )
            elif responder == "command" and not (challenges.get("command") or {}).get("complete"):
                errors.append(
                    f"challenges.command.complete is required when {ctype.value} "
                    "uses the command responder",
                )

        dns01 = challenges.get("dns01") or {}
        if bool(dns01.get("tsig_key_name")) != bool(dns01.get("tsig_secret")):
            errors.append(
                "challenges.dns01.tsig_key_name and challenges.dns01.tsig_secret "
                "must be set together",
            )

        # -- hooks --
        from acmeflow.hooks.events import KNOWN_EVENTS  # noqa: PLC0415

        for idx, entry in enumerate(hooks.get("registered", [])):
            class_path = entry.get("class", "")
            if not _CLASS_PATH_RE.match(class_path):
                errors.append(
                    f"hooks.registered[{idx}].class: '{class_path}' is not a "
                    "fully-qualified class path",
                )
            for evt in entry.get("events", []):
                if evt not in KNOWN_EVENTS:
                    errors.append(
                        f"hooks.registered[{idx}].events: unknown event '{evt}'. "
                        f"Known events: {sorted(KNOWN_EVENTS)}",
                    )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None

    def __repr__(self) -> str:
        return f"<AcmeflowConfig config_file={self._path}>"
