"""Local disk storage for uploaded documents, partitioned per tenant."""

from __future__ import annotations

import re
import time
from pathlib import Path

import structlog

logger = structlog.get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(original: str) -> str:
    """Timestamp-prefixed filename with path separators and spaces removed."""
    name = Path(original or "upload").name
    name = _UNSAFE_CHARS.sub("-", name.replace(" ", "-")).strip("-") or "upload"
    return f"{int(time.time() * 1000)}-{name}"


class UploadStorage:
    """Writes uploads under ``<root>/<tenant_id>[/<subdir>]``."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def tenant_dir(self, tenant_id: str, subdir: str | None = None) -> Path:
        path = self._root / tenant_id
        if subdir:
            path = path / subdir
        return path

    def save(self, tenant_id: str, filename: str, data: bytes, subdir: str | None = None) -> Path:
        directory = self.tenant_dir(tenant_id, subdir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / safe_filename(filename)
        path.write_bytes(data)
        logger.info("storage.saved", tenant_id=tenant_id, path=str(path), size=len(data))
        return path

    def discard(self, path: str | Path | None) -> None:
        """Best-effort delete; a file that cannot be removed is left behind."""
        if not path:
            return
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("storage.discard_failed", path=str(path), error=str(exc))

    def exists(self, path: str | Path | None) -> bool:
        return bool(path) and Path(path).is_file()
