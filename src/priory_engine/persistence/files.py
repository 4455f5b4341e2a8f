from __future__ import annotations

import logging
import os
import re
from pathlib import Path

from ..core.errors import StoreError

logger = logging.getLogger(__name__)

_DOC_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class FileBlobStore:
    """``BlobStore`` keeping one ``<id>.json`` file per document under ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, doc_id: str) -> Path:
        if not _DOC_ID_RE.match(doc_id or ""):
            raise StoreError(f"invalid document id {doc_id!r}")
        return self.root / f"{doc_id}.json"

    def read(self, doc_id: str) -> bytes | None:
        path = self._path(doc_id)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"could not read {path}") from exc

    def write(self, doc_id: str, payload: bytes) -> None:
        path = self._path(doc_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            tmp.write_bytes(payload)
            os.replace(tmp, path)
        except OSError as exc:
            raise StoreError(f"could not write {path}") from exc
        logger.debug("Wrote %s (%d bytes)", path, len(payload))

    def exists(self, doc_id: str) -> bool:
        return self._path(doc_id).is_file()
