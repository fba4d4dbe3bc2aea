"""Root conftest for the acmeflow test suite."""

from __future__ import annotations

import json
import sys
from collections import defaultdict, deque
from pathlib import Path

import pytest
import yaml

# ---------------------------------------------------------------------------
# Make ``src/`` importable without installing the package
# ---------------------------------------------------------------------------
_SRC = str(Path(__file__).resolve().parent.parent / "src")
if _SRC not in sys.path:
    sys.path.insert(0, _SRC)

from acmeflow.client.structs import Directory  # noqa: E402
from acmeflow.client.transport import AcmeResponse  # noqa: E402
from acmeflow.core.jws import b64url_decode  # noqa: E402

ACME = "https://acme.test"
DIRECTORY_URL = f"{ACME}/directory"
DIRECTORY_BODY = {
    "newNonce": f"{ACME}/new-nonce",
    "newAccount": f"{ACME}/new-account",
    "newOrder": f"{ACME}/new-order",
    "revokeCert": f"{ACME}/revoke-cert",
    "keyChange": f"{ACME}/key-change",
    "meta": {"termsOfService": f"{ACME}/tos"},
}
PEM_CHAIN = b"-----BEGIN CERTIFICATE-----\nMIIBfake\n-----END CERTIFICATE-----\n"


# ---------------------------------------------------------------------------
# Scripted ACME server
# ---------------------------------------------------------------------------


class FakeTransport:
    """Transport double answering from per-URL scripts.

    Every response carries a fresh ``Replay-Nonce`` (``nonce-1``,
    ``nonce-2``, ...).  ``issued`` lists nonces in the order they were
    handed out, ``used`` the nonce of every signed request.
    """

    def __init__(self, directory: dict | None = None) -> None:
        self.directory_body = directory or DIRECTORY_BODY
        self.scripts: dict[str, deque] = defaultdict(deque)
        self.requests: list[tuple[str, dict | None]] = []
        self.issued: list[str] = []
        self.used: list[str] = []
        self._counter = 0

    # -- scripting -------------------------------------------------------------

    def script(self, url: str, *responses: dict) -> FakeTransport:
        """Queue responses for *url*; each is a dict of AcmeResponse fields.

        The last queued response is repeated once the queue drains.
        """
        self.scripts[url].extend(responses)
        return self

    def _next_nonce(self) -> str:
        self._counter += 1
        nonce = f"nonce-{self._counter}"
        self.issued.append(nonce)
        return nonce

    # -- transport API ---------------------------------------------------------

    def get_directory(self, url: str) -> Directory:
        self.requests.append((url, None))
        return Directory.from_dict(self.directory_body)

    def new_nonce(self, url: str) -> str:
        self.requests.append((url, None))
        return self._next_nonce()

    def send(self, url: str, body: dict | None = None, *, method: str | None = None):  # noqa: ARG002
        self.requests.append((url, body))
        if body is not None:
            self.used.append(protected_header(body)["nonce"])

        queue = self.scripts.get(url)
        if not queue:
            msg = f"unscripted request to {url}"
            raise AssertionError(msg)
        spec = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(spec, Exception):
            raise spec

        spec = dict(spec)
        raw = spec.pop("body", {})
        content_type = spec.pop("content_type", "application/json")
        return AcmeResponse(
            status=spec.pop("status", 200),
            body=raw,
            nonce=self._next_nonce(),
            location=spec.pop("location", None),
            retry_after=spec.pop("retry_after", None),
            content_type=content_type,
        )

    # -- assertions ------------------------------------------------------------

    def signed_urls(self) -> list[str]:
        return [url for url, body in self.requests if body is not None]

    def payloads(self, url: str) -> list[bytes]:
        return [
            b64url_decode(body["payload"])
            for u, body in self.requests
            if u == url and body is not None
        ]


def protected_header(body: dict) -> dict:
    return json.loads(b64url_decode(body["protected"]))


class RecordingResponder:
    """Challenge responder double recording publish and cleanup calls."""

    def __init__(self, *, fail: Exception | None = None) -> None:
        self.completed: list[dict] = []
        self.cleaned: list[dict] = []
        self._fail = fail

    def supports(self, challenge_type) -> bool:  # noqa: ANN001, ARG002
        return True

    def complete(self, **kwargs) -> None:
        if self._fail is not None:
            raise self._fail
        self.completed.append(kwargs)

    def cleanup(self, **kwargs) -> None:
        self.cleaned.append(kwargs)


class StaticResponders:
    def __init__(self, responder: RecordingResponder) -> None:
        self.responder = responder

    def get(self, challenge_type):  # noqa: ANN001, ARG002
        return self.responder


class MemoryStorage:
    def __init__(self) -> None:
        self.persisted: list[tuple[object, bytes]] = []

    def persist(self, request, certificate: bytes) -> None:  # noqa: ANN001
        self.persisted.append((request, certificate))


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def recording_responder() -> RecordingResponder:
    return RecordingResponder()


@pytest.fixture()
def responder_source(recording_responder: RecordingResponder) -> StaticResponders:
    return StaticResponders(recording_responder)


@pytest.fixture()
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def pem_chain() -> bytes:
    return PEM_CHAIN


@pytest.fixture()
def decode_protected():
    """Return a helper that decodes the protected header of a JWS body."""
    return protected_header


# ---------------------------------------------------------------------------
# Minimal config data shared by multiple test modules
# ---------------------------------------------------------------------------


@pytest.fixture()
def minimal_config_data(tmp_path: Path) -> dict:
    """Return a dict containing the minimum required config fields."""
    return {
        "server": {"directory_url": DIRECTORY_URL},
        "account": {"key_path": str(tmp_path / "account.key")},
        "challenges": {"http01": {"webroot": str(tmp_path / "www")}},
        "certificates": [
            {
                "name": "www",
                "domains": ["www.example.com", "example.com"],
                "output_path": str(tmp_path / "certs" / "www.pem"),
            }
        ],
    }


@pytest.fixture()
def tmp_config_file(tmp_path: Path, minimal_config_data: dict) -> Path:
    """Write *minimal_config_data* to a temp YAML file and return its path."""
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        yaml.safe_dump(minimal_config_data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return cfg


# ---------------------------------------------------------------------------
# Config singleton cleanup: autouse so every test gets a fresh slate
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def fresh_config():
    """Reset the AcmeflowConfig singleton before and after every test."""
    from acmeflow.config.acmeflow_config import AcmeflowConfig

    AcmeflowConfig.reset()
    yield
    AcmeflowConfig.reset()


@pytest.fixture(autouse=True)
def restore_acmeflow_loggers():
    """Undo ``configure_logging`` so caplog keeps seeing acmeflow records."""
    import logging

    loggers = [logging.getLogger(name) for name in ("acmeflow", "acmeflow.audit")]
    saved = [(lg, lg.level, lg.propagate, list(lg.handlers)) for lg in loggers]
    yield
    for lg, level, propagate, handlers in saved:
        for handler in lg.handlers:
            if handler not in handlers:
                handler.close()
        lg.handlers[:] = handlers
        lg.setLevel(level)
        lg.propagate = propagate
