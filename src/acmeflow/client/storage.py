"""On-disk persistence of issued certificates.

Files are written through a temporary sibling and renamed into place,
so a reader never observes a half-written certificate or key.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from cryptography import x509

from acmeflow.core.errors import StorageError

if TYPE_CHECKING:
    from acmeflow.issuance.orchestrator import IssuanceRequest

log = logging.getLogger(__name__)

_PEM_BEGIN = b"-----BEGIN CERTIFICATE-----"


def atomic_write(path: str | Path, data: bytes, *, mode: int = 0o644) -> None:
    """Write *data* to *path* via a temp file in the same directory.

    Raises
    ------
    StorageError
        If the directory cannot be created or the write fails.

    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    except OSError as exc:
        msg = f"Cannot prepare {path} for writing: {exc}"
        raise StorageError(msg) from exc

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, mode)  # noqa: PTH101
        os.replace(tmp, path)
    except OSError as exc:
        Path(tmp).unlink(missing_ok=True)
        msg = f"Failed to write {path}: {exc}"
        raise StorageError(msg) from exc


class FileStorage:
    """Default storage collaborator: writes the PEM chain to ``output_path``."""

    def persist(self, request: IssuanceRequest, certificate: bytes) -> None:
        """Store *certificate* exactly as downloaded.

        Raises
        ------
        StorageError
            If the bytes are not a PEM certificate chain or cannot be
            written.

        """
        if _PEM_BEGIN not in certificate:
            msg = f"Downloaded certificate for '{request.name}' is not a PEM chain"
            raise StorageError(msg)

        atomic_write(request.output_path, certificate)

        try:
            leaf = x509.load_pem_x509_certificate(certificate)
        except ValueError:
            log.warning("Stored certificate for '%s' could not be parsed", request.name)
            return
        log.info(
            "Stored certificate for '%s' at %s (serial=%x, not_after=%s)",
            request.name,
            request.output_path,
            leaf.serial_number,
            leaf.not_valid_after_utc.isoformat(),
        )
