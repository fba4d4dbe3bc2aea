"""Tests for acmeflow.client.storage: atomic writes and certificate persistence."""

from __future__ import annotations

import datetime
import logging

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from acmeflow.client.storage import FileStorage, atomic_write
from acmeflow.core.errors import StorageError
from acmeflow.core.types import ChallengeType
from acmeflow.issuance import IssuanceRequest


def _self_signed_pem(domain: str = "example.com") -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(0x1234)
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=90))
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM)


def _request(tmp_path, output="live/www.pem") -> IssuanceRequest:
    return IssuanceRequest(
        name="www",
        domains=("example.com",),
        directory_url="https://acme.test/directory",
        challenge=ChallengeType.HTTP_01,
        key_path=str(tmp_path / "www.key"),
        output_path=str(tmp_path / output),
    )


class TestAtomicWrite:
    def test_creates_parents_and_sets_mode(self, tmp_path):
        target = tmp_path / "a" / "b" / "file.bin"
        atomic_write(target, b"data", mode=0o600)

        assert target.read_bytes() == b"data"
        assert target.stat().st_mode & 0o777 == 0o600
        assert [p.name for p in target.parent.iterdir()] == ["file.bin"]

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "file.bin"
        target.write_bytes(b"old")
        atomic_write(target, b"new")
        assert target.read_bytes() == b"new"

    def test_parent_is_a_file(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_bytes(b"")
        with pytest.raises(StorageError, match="Cannot prepare"):
            atomic_write(blocker / "file.bin", b"data")


class TestFileStorage:
    def test_persists_chain_verbatim(self, tmp_path, caplog):
        pem = _self_signed_pem() + _self_signed_pem("issuer.test")
        request = _request(tmp_path)

        with caplog.at_level(logging.INFO, logger="acmeflow.client.storage"):
            FileStorage().persist(request, pem)

        assert (tmp_path / "live" / "www.pem").read_bytes() == pem
        assert "serial=1234" in caplog.text

    def test_rejects_non_pem(self, tmp_path):
        request = _request(tmp_path)
        with pytest.raises(StorageError, match="not a PEM chain"):
            FileStorage().persist(request, b"\x30\x82\x01\x00")
        assert not (tmp_path / "live" / "www.pem").exists()

    def test_unparseable_pem_still_stored(self, tmp_path, pem_chain, caplog):
        request = _request(tmp_path)
        with caplog.at_level(logging.WARNING, logger="acmeflow.client.storage"):
            FileStorage().persist(request, pem_chain)

        assert (tmp_path / "live" / "www.pem").read_bytes() == pem_chain
        assert "could not be parsed" in caplog.text
