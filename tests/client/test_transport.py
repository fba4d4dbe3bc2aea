"""Tests for acmeflow.client.transport: HTTP plumbing and nonce exchange."""

from __future__ import annotations

import http.client
import io
import json
import logging
import ssl
import urllib.error
from datetime import UTC, datetime
from email.message import Message
from unittest.mock import MagicMock, patch

import pytest

from acmeflow.client.transport import (
    JOSE_CONTENT_TYPE,
    AcmeResponse,
    HttpTransport,
    exchange,
    parse_retry_after,
)
from acmeflow.config.settings import ServerSettings
from acmeflow.core.errors import (
    BAD_NONCE,
    AcmeProblem,
    MissingResourceError,
    TransportError,
)


def _settings(**overrides) -> ServerSettings:
    values = {
        "directory_url": "https://acme.test/directory",
        "verify_ssl": True,
        "ca_cert_path": None,
        "timeout_seconds": 7,
        "user_agent": None,
    }
    values.update(overrides)
    return ServerSettings(**values)


def _headers(**values) -> Message:
    msg = Message()
    for key, value in values.items():
        msg[key.replace("_", "-")] = value
    return msg


def _http_response(status=200, body=b"", **headers):
    resp = MagicMock()
    resp.__enter__.return_value = resp
    resp.status = status
    resp.headers = _headers(**headers)
    resp.read.return_value = body
    return resp


@pytest.fixture()
def opener():
    return MagicMock()


@pytest.fixture()
def transport(opener):
    t = HttpTransport(_settings())
    with patch.object(t, "_get_opener", return_value=opener):
        yield t


# ---------------------------------------------------------------------------
# Retry-After
# ---------------------------------------------------------------------------


class TestParseRetryAfter:
    def test_seconds(self):
        assert parse_retry_after("12") == 12.0

    def test_missing(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_http_date(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Thu, 01 Jan 2026 12:00:30 GMT", now=now) == 30.0

    def test_past_date_clamps_to_zero(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Thu, 01 Jan 2026 11:00:00 GMT", now=now) == 0.0

    def test_garbage(self):
        assert parse_retry_after("soon") is None


# ---------------------------------------------------------------------------
# send
# ---------------------------------------------------------------------------


class TestSend:
    def test_json_response(self, transport, opener):
        opener.open.return_value = _http_response(
            201,
            json.dumps({"status": "pending"}).encode(),
            Content_Type="application/json",
            Replay_Nonce="abc",
            Location="https://acme.test/order/1",
            Retry_After="3",
        )

        resp = transport.send("https://acme.test/new-order", {"protected": "p"})

        assert resp.status == 201
        assert resp.json() == {"status": "pending"}
        assert resp.nonce == "abc"
        assert resp.location == "https://acme.test/order/1"
        assert resp.retry_after == 3.0

        req = opener.open.call_args.args[0]
        assert req.get_method() == "POST"
        assert req.get_header("Content-type") == JOSE_CONTENT_TYPE
        assert req.get_header("User-agent").startswith("acmeflow/")
        assert json.loads(req.data) == {"protected": "p"}
        assert opener.open.call_args.kwargs["timeout"] == 7

    def test_pem_body_stays_bytes(self, transport, opener):
        pem = b"-----BEGIN CERTIFICATE-----\n"
        opener.open.return_value = _http_response(
            200,
            pem,
            Content_Type="application/pem-certificate-chain",
            Replay_Nonce="n",
        )
        resp = transport.send("https://acme.test/cert/1", {"protected": "p"})
        assert resp.body == pem
        with pytest.raises(MissingResourceError, match="pem-certificate-chain"):
            resp.json()

    def test_invalid_json(self, transport, opener):
        opener.open.return_value = _http_response(
            200, b"{not json", Content_Type="application/json"
        )
        with pytest.raises(TransportError) as exc_info:
            transport.send("https://acme.test/x")
        assert exc_info.value.retryable is False

    def test_problem_document(self, transport, opener):
        problem = {"type": BAD_NONCE, "detail": "stale nonce", "status": 400}
        opener.open.side_effect = urllib.error.HTTPError(
            "https://acme.test/x",
            400,
            "Bad Request",
            _headers(Content_Type="application/problem+json"),
            io.BytesIO(json.dumps(problem).encode()),
        )
        with pytest.raises(AcmeProblem) as exc_info:
            transport.send("https://acme.test/x", {"protected": "p"})
        assert exc_info.value.error_type == BAD_NONCE
        assert exc_info.value.detail == "stale nonce"
        assert exc_info.value.status == 400

    def test_plain_http_error(self, transport, opener):
        opener.open.side_effect = urllib.error.HTTPError(
            "https://acme.test/x",
            502,
            "Bad Gateway",
            _headers(Content_Type="text/html"),
            io.BytesIO(b"<html>upstream down</html>"),
        )
        with pytest.raises(AcmeProblem) as exc_info:
            transport.send("https://acme.test/x")
        assert exc_info.value.error_type == "about:blank"
        assert exc_info.value.status == 502
        assert "upstream down" in exc_info.value.detail

    def test_connection_failure(self, transport, opener):
        opener.open.side_effect = urllib.error.URLError("connection refused")
        with pytest.raises(TransportError, match="Failed to reach ACME server") as exc_info:
            transport.send("https://acme.test/x")
        assert exc_info.value.retryable is True

    def test_incomplete_response_on_open(self, transport, opener):
        opener.open.side_effect = http.client.IncompleteRead(b"", 12)
        with pytest.raises(TransportError, match="Failed to reach ACME server") as exc_info:
            transport.send("https://acme.test/x")
        assert exc_info.value.retryable is True

    def test_truncated_body(self, transport, opener):
        resp = _http_response(200)
        resp.read.side_effect = http.client.IncompleteRead(b'{"par', 40)
        opener.open.return_value = resp
        with pytest.raises(TransportError, match="Error reading response") as exc_info:
            transport.send("https://acme.test/x")
        assert exc_info.value.retryable is True


# ---------------------------------------------------------------------------
# Directory and nonce
# ---------------------------------------------------------------------------


class TestDirectoryAndNonce:
    def test_get_directory(self, transport, opener):
        body = {
            "newNonce": "https://acme.test/nn",
            "newAccount": "https://acme.test/na",
            "newOrder": "https://acme.test/no",
        }
        opener.open.return_value = _http_response(
            200, json.dumps(body).encode(), Content_Type="application/json"
        )
        directory = transport.get_directory("https://acme.test/directory")
        assert directory.new_nonce == "https://acme.test/nn"
        assert opener.open.call_args.args[0].get_method() == "GET"

    def test_new_nonce_uses_head(self, transport, opener):
        opener.open.return_value = _http_response(200, b"", Replay_Nonce="fresh")
        assert transport.new_nonce("https://acme.test/nn") == "fresh"
        assert opener.open.call_args.args[0].get_method() == "HEAD"

    def test_new_nonce_without_header(self, transport, opener):
        opener.open.return_value = _http_response(200, b"")
        with pytest.raises(MissingResourceError, match="Replay-Nonce"):
            transport.new_nonce("https://acme.test/nn")


# ---------------------------------------------------------------------------
# TLS settings
# ---------------------------------------------------------------------------


class TestSslContext:
    def test_verification_on_by_default(self):
        ctx = HttpTransport(_settings())._get_ssl_context()
        assert ctx.verify_mode == ssl.CERT_REQUIRED
        assert ctx.check_hostname is True

    def test_verification_disabled_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="acmeflow.client.transport"):
            ctx = HttpTransport(_settings(verify_ssl=False))._get_ssl_context()
        assert ctx.verify_mode == ssl.CERT_NONE
        assert "verification is disabled" in caplog.text

    def test_context_is_cached(self):
        t = HttpTransport(_settings())
        assert t._get_ssl_context() is t._get_ssl_context()

    def test_custom_user_agent(self):
        t = HttpTransport(_settings(user_agent="ops-bot/2"))
        req = t._build_request("https://acme.test/x", None, "GET")
        assert req.get_header("User-agent") == "ops-bot/2"


# ---------------------------------------------------------------------------
# exchange
# ---------------------------------------------------------------------------


class TestExchange:
    def test_returns_next_nonce(self):
        signer = MagicMock(url="https://acme.test/x")
        signer.sign.return_value = {"protected": "p"}
        t = MagicMock()
        t.send.return_value = AcmeResponse(status=200, body={}, nonce="next")

        resp, nonce = exchange(t, signer, "current")

        signer.sign.assert_called_once_with("current")
        t.send.assert_called_once_with("https://acme.test/x", {"protected": "p"})
        assert nonce == "next"
        assert resp.status == 200

    def test_missing_replay_nonce(self):
        signer = MagicMock(url="https://acme.test/x")
        t = MagicMock()
        t.send.return_value = AcmeResponse(status=200, body={})
        with pytest.raises(MissingResourceError, match="Replay-Nonce"):
            exchange(t, signer, "current")
