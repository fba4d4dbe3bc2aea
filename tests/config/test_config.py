"""Tests for acmeflow.config: loading, validation and typed settings."""

from __future__ import annotations

import json
import logging

import pytest
import yaml

from acmeflow.config import AcmeflowConfig, ConfigValidationError, get_config
from acmeflow.config.settings import build_settings
from acmeflow.core.types import ChallengeType, KeyType


def _write(tmp_path, data, name="config.yaml"):
    path = tmp_path / name
    if name.endswith((".yaml", ".yml")):
        path.write_text(yaml.safe_dump(data), encoding="utf-8")
    else:
        path.write_text(json.dumps(data), encoding="utf-8")
    return path


def _errors(tmp_path, data) -> list[str]:
    with pytest.raises(ConfigValidationError) as exc_info:
        AcmeflowConfig(config_file=_write(tmp_path, data))
    return exc_info.value.errors


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoading:
    def test_minimal_yaml(self, tmp_config_file):
        cfg = AcmeflowConfig(config_file=tmp_config_file)
        s = cfg.settings

        assert s.server.directory_url == "https://acme.test/directory"
        assert s.server.verify_ssl is True
        assert s.account.key_type is KeyType.EC256
        assert s.account.terms_of_service_agreed is True
        assert s.polling.interval_seconds == 2.0
        assert s.polling.max_attempts == 30
        assert s.logging.format == "text"
        assert s.hooks.registered == ()

        cert = s.certificate("www")
        assert cert.challenge is ChallengeType.HTTP_01
        assert cert.domains == ("www.example.com", "example.com")
        assert cert.key_path.endswith("www.key")
        assert cert.reuse_key is False

    def test_json_file(self, tmp_path, minimal_config_data):
        cfg = AcmeflowConfig(config_file=_write(tmp_path, minimal_config_data, "config.json"))
        assert cfg.settings.certificates[0].name == "www"

    def test_singleton(self, tmp_config_file):
        cfg = AcmeflowConfig(config_file=tmp_config_file)
        assert get_config() is cfg

    def test_get_config_before_init(self):
        with pytest.raises(RuntimeError, match="not initialised"):
            get_config()

    def test_dotpath_get(self, tmp_config_file):
        cfg = AcmeflowConfig(config_file=tmp_config_file)
        assert cfg.get("server.directory_url") == "https://acme.test/directory"
        assert cfg.get("challenges.dns01.zone", "fallback") == "fallback"
        assert cfg.data["_source"] == str(tmp_config_file)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigValidationError, match="not found"):
            AcmeflowConfig(config_file=tmp_path / "nope.yaml")

    def test_unparseable_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("server: [unclosed", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="could not be parsed"):
            AcmeflowConfig(config_file=path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ConfigValidationError, match="mapping"):
            AcmeflowConfig(config_file=path)


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------


class TestEnvResolution:
    def test_variable_is_substituted(self, tmp_path, minimal_config_data, monkeypatch):
        monkeypatch.setenv("ACME_DIR", "https://ca.internal/directory")
        minimal_config_data["server"]["directory_url"] = "${ACME_DIR}"
        cfg = AcmeflowConfig(config_file=_write(tmp_path, minimal_config_data))
        assert cfg.settings.server.directory_url == "https://ca.internal/directory"

    def test_default_used_when_unset(self, tmp_path, minimal_config_data, monkeypatch):
        monkeypatch.delenv("ACMEFLOW_LEVEL", raising=False)
        minimal_config_data["logging"] = {"level": "${ACMEFLOW_LEVEL:-DEBUG}"}
        cfg = AcmeflowConfig(config_file=_write(tmp_path, minimal_config_data))
        assert cfg.settings.logging.level == "DEBUG"

    def test_substitution_inside_lists(self, tmp_path, minimal_config_data, monkeypatch):
        monkeypatch.setenv("CERT_DOMAIN", "api.example.com")
        minimal_config_data["certificates"][0]["domains"] = ["${CERT_DOMAIN}"]
        cfg = AcmeflowConfig(config_file=_write(tmp_path, minimal_config_data))
        assert cfg.settings.certificates[0].domains == ("api.example.com",)

    def test_unset_without_default(self, tmp_path, minimal_config_data, monkeypatch):
        monkeypatch.delenv("EAB_SECRET", raising=False)
        minimal_config_data["account"]["eab_hmac_key"] = "${EAB_SECRET}"
        errors = _errors(tmp_path, minimal_config_data)
        assert "account.eab_hmac_key" in errors[0]

    def test_substituted_value_is_schema_checked(
        self, tmp_path, minimal_config_data, monkeypatch
    ):
        monkeypatch.setenv("ACMEFLOW_LEVEL", "LOUD")
        minimal_config_data["logging"] = {"level": "${ACMEFLOW_LEVEL}"}
        errors = _errors(tmp_path, minimal_config_data)
        assert any("$.logging.level" in e for e in errors)


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


class TestSchema:
    def test_missing_required_section(self, tmp_path, minimal_config_data):
        del minimal_config_data["account"]
        errors = _errors(tmp_path, minimal_config_data)
        assert any("'account' is a required property" in e for e in errors)

    def test_unknown_key(self, tmp_path, minimal_config_data):
        minimal_config_data["server"]["proxy"] = "http://proxy"
        errors = _errors(tmp_path, minimal_config_data)
        assert any(e.startswith("$.server") for e in errors)

    def test_certificate_needs_domains(self, tmp_path, minimal_config_data):
        minimal_config_data["certificates"][0]["domains"] = []
        errors = _errors(tmp_path, minimal_config_data)
        assert any("$.certificates[0].domains" in e for e in errors)

    def test_contact_must_be_mailto(self, tmp_path, minimal_config_data):
        minimal_config_data["account"]["contacts"] = ["ops@example.com"]
        errors = _errors(tmp_path, minimal_config_data)
        assert any("contacts" in e for e in errors)

    def test_all_errors_reported_together(self, tmp_path, minimal_config_data):
        minimal_config_data["server"]["timeout_seconds"] = 0
        minimal_config_data["polling"] = {"max_attempts": 0}
        assert len(_errors(tmp_path, minimal_config_data)) == 2


# ---------------------------------------------------------------------------
# Cross-field checks
# ---------------------------------------------------------------------------


class TestAdditionalChecks:
    def test_unknown_challenge_type(self, tmp_path, minimal_config_data):
        minimal_config_data["certificates"][0]["challenge"] = "dns-02"
        errors = _errors(tmp_path, minimal_config_data)
        assert errors == [
            "certificates[0].challenge: dns-02: unknown challenge type; "
            "expected one of ['http-01', 'dns-01', 'tls-alpn-01']"
        ]

    def test_challenge_is_case_insensitive(self, tmp_path, minimal_config_data):
        minimal_config_data["certificates"][0]["challenge"] = "HTTP-01"
        cfg = AcmeflowConfig(config_file=_write(tmp_path, minimal_config_data))
        assert cfg.settings.certificates[0].challenge is ChallengeType.HTTP_01

    def test_duplicate_certificate_names(self, tmp_path, minimal_config_data):
        minimal_config_data["certificates"].append(dict(minimal_config_data["certificates"][0]))
        errors = _errors(tmp_path, minimal_config_data)
        assert errors == ["certificates[1].name: duplicate name 'www'"]

    def test_eab_pair(self, tmp_path, minimal_config_data):
        minimal_config_data["account"]["eab_kid"] = "kid"
        errors = _errors(tmp_path, minimal_config_data)
        assert "must be set together" in errors[0]

    def test_webroot_required_for_http01(self, tmp_path, minimal_config_data):
        del minimal_config_data["challenges"]
        errors = _errors(tmp_path, minimal_config_data)
        assert errors == ["challenges.http01.webroot is required when a certificate uses http-01"]

    def test_nameserver_required_for_dns01(self, tmp_path, minimal_config_data):
        minimal_config_data["certificates"][0]["challenge"] = "dns-01"
        errors = _errors(tmp_path, minimal_config_data)
        assert "challenges.dns01.nameserver" in errors[0]

    def test_output_dir_required_for_tls_alpn01(self, tmp_path, minimal_config_data):
        minimal_config_data["certificates"][0]["challenge"] = "tls-alpn-01"
        errors = _errors(tmp_path, minimal_config_data)
        assert "challenges.tlsalpn01.output_dir" in errors[0]

    def test_command_responder_needs_command(self, tmp_path, minimal_config_data):
        minimal_config_data["challenges"]["responders"] = {"http-01": "command"}
        errors = _errors(tmp_path, minimal_config_data)
        assert "challenges.command.complete" in errors[0]

    def test_unknown_responder(self, tmp_path, minimal_config_data):
        minimal_config_data["challenges"]["responders"] = {"dns-01": "route53"}
        errors = _errors(tmp_path, minimal_config_data)
        assert "unknown responder 'route53'" in errors[0]

    def test_external_responder_path(self, tmp_path, minimal_config_data):
        minimal_config_data["challenges"]["responders"] = {"http-01": "ext:nodots"}
        errors = _errors(tmp_path, minimal_config_data)
        assert "fully-qualified class path" in errors[0]

    def test_responder_key_must_be_challenge_type(self, tmp_path, minimal_config_data):
        minimal_config_data["challenges"]["responders"] = {"smtp-01": "webroot"}
        errors = _errors(tmp_path, minimal_config_data)
        assert errors[0].startswith("challenges.responders: smtp-01")

    def test_tsig_pair(self, tmp_path, minimal_config_data):
        minimal_config_data["challenges"]["dns01"] = {
            "nameserver": "192.0.2.53",
            "tsig_key_name": "acme.",
        }
        errors = _errors(tmp_path, minimal_config_data)
        assert "tsig_secret" in errors[0]

    def test_hook_checks(self, tmp_path, minimal_config_data):
        minimal_config_data["hooks"] = {
            "registered": [{"class": "NotDotted", "events": ["certificate.renewed"]}]
        }
        errors = _errors(tmp_path, minimal_config_data)
        assert len(errors) == 2
        assert "hooks.registered[0].class" in errors[0]
        assert "unknown event 'certificate.renewed'" in errors[1]

    def test_verify_ssl_warning(self, tmp_path, minimal_config_data, caplog):
        minimal_config_data["server"]["verify_ssl"] = False
        with caplog.at_level(logging.WARNING, logger="acmeflow.config.acmeflow_config"):
            AcmeflowConfig(config_file=_write(tmp_path, minimal_config_data))
        assert "verify_ssl is false" in caplog.text


# ---------------------------------------------------------------------------
# Typed settings
# ---------------------------------------------------------------------------


class TestBuildSettings:
    def test_full_document(self, minimal_config_data):
        minimal_config_data["challenges"] = {
            "dns01": {"nameserver": "192.0.2.53", "resolvers": ["192.0.2.1"]},
            "command": {"complete": ["/bin/publish"]},
            "responders": {"TLS-ALPN-01": "command"},
        }
        minimal_config_data["certificates"][0].update(
            {"key_type": "rsa2048", "key_path": "/etc/keys/www.key", "reuse_key": True}
        )
        minimal_config_data["hooks"] = {
            "max_retries": 2,
            "registered": [{"class": "pkg.mod.Hook", "events": ["certificate.issuance"]}],
        }
        s = build_settings(minimal_config_data)

        assert s.challenges.dns01.port == 53
        assert s.challenges.dns01.resolvers == ("192.0.2.1",)
        assert s.challenges.dns01.propagation_timeout_seconds == 120
        assert s.challenges.command.complete == ("/bin/publish",)
        assert s.challenges.command.timeout_seconds == 60
        assert s.challenges.responders == {
            "http-01": "webroot",
            "dns-01": "rfc2136",
            "tls-alpn-01": "command",
        }
        cert = s.certificates[0]
        assert cert.key_type is KeyType.RSA2048
        assert cert.key_path == "/etc/keys/www.key"
        assert cert.reuse_key is True
        assert s.hooks.max_retries == 2
        assert s.hooks.registered[0].events == ("certificate.issuance",)
        assert s.hooks.registered[0].enabled is True

    def test_unknown_certificate_name(self, minimal_config_data):
        s = build_settings(minimal_config_data)
        with pytest.raises(KeyError, match="mail"):
            s.certificate("mail")

    def test_unknown_hook_event(self, minimal_config_data):
        minimal_config_data["hooks"] = {
            "registered": [{"class": "pkg.mod.Hook", "events": ["order.renewed"]}]
        }
        with pytest.raises(ValueError, match="unknown event"):
            build_settings(minimal_config_data)
