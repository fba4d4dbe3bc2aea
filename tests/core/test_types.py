"""Unit tests for acmeflow.core.types."""

from __future__ import annotations

import pytest

from acmeflow.core.errors import ConfigurationError
from acmeflow.core.types import (
    AuthorizationStatus,
    ChallengeType,
    KeyType,
    OrderStatus,
)


class TestChallengeTypeParse:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("http-01", ChallengeType.HTTP_01),
            ("HTTP-01", ChallengeType.HTTP_01),
            ("Dns-01", ChallengeType.DNS_01),
            ("tls-alpn-01", ChallengeType.TLS_ALPN_01),
            ("TLS-ALPN-01", ChallengeType.TLS_ALPN_01),
        ],
    )
    def test_case_insensitive(self, raw, expected):
        assert ChallengeType.parse(raw) is expected

    @pytest.mark.parametrize("raw", ["http01", "dns", "", "tls-sni-01"])
    def test_unknown_is_configuration_error(self, raw):
        with pytest.raises(ConfigurationError, match="unknown challenge type"):
            ChallengeType.parse(raw)

    def test_non_string_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            ChallengeType.parse(None)  # type: ignore[arg-type]

    def test_display_is_lowercase_wire_literal(self):
        assert str(ChallengeType.TLS_ALPN_01) == "tls-alpn-01"
        assert f"{ChallengeType.DNS_01}" == "dns-01"


class TestStatuses:
    def test_wire_values(self):
        assert OrderStatus("processing") is OrderStatus.PROCESSING
        assert AuthorizationStatus("revoked") is AuthorizationStatus.REVOKED

    def test_status_compares_to_string(self):
        assert OrderStatus.VALID == "valid"


class TestKeyType:
    def test_values(self):
        assert {k.value for k in KeyType} == {"ec256", "ec384", "rsa2048", "rsa4096"}
