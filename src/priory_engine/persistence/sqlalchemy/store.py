from __future__ import annotations

import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from ...core.errors import StoreError
from ..interfaces import UnitOfWork

logger = logging.getLogger(__name__)


class SQLAlchemyBlobStore:
    """``BlobStore`` backed by the ``pe_documents`` table, one namespace per store."""

    def __init__(self, uow_factory: Callable[[], UnitOfWork], namespace: str = "saves"):
        self._uow_factory = uow_factory
        self.namespace = namespace

    def read(self, doc_id: str) -> bytes | None:
        try:
            with self._uow_factory() as uow:
                row = uow.documents.get(self.namespace, doc_id)
                return bytes(row.payload) if row is not None else None
        except SQLAlchemyError as exc:
            raise StoreError(f"could not read {self.namespace}/{doc_id}") from exc

    def write(self, doc_id: str, payload: bytes) -> None:
        try:
            with self._uow_factory() as uow:
                row = uow.documents.upsert(self.namespace, doc_id, payload)
                uow.commit()
                logger.debug("Wrote %s/%s (row_version=%s)", self.namespace, doc_id, row.row_version)
        except SQLAlchemyError as exc:
            raise StoreError(f"could not write {self.namespace}/{doc_id}") from exc

    def exists(self, doc_id: str) -> bool:
        try:
            with self._uow_factory() as uow:
                return uow.documents.exists(self.namespace, doc_id)
        except SQLAlchemyError as exc:
            raise StoreError(f"could not check {self.namespace}/{doc_id}") from exc
