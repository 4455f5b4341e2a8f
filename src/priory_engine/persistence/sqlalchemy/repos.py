from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .base import utcnow
from .models import Document


class DocumentRepo:
    def __init__(self, session: Session):
        self.session = session

    def get(self, namespace: str, doc_id: str) -> Document | None:
        stmt = (
            select(Document)
            .where(Document.namespace == namespace)
            .where(Document.doc_id == doc_id)
            .limit(1)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def exists(self, namespace: str, doc_id: str) -> bool:
        stmt = (
            select(Document.id)
            .where(Document.namespace == namespace)
            .where(Document.doc_id == doc_id)
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def upsert(self, namespace: str, doc_id: str, payload: bytes) -> Document:
        """Insert or overwrite a document, bumping its row version."""
        row = self.get(namespace, doc_id)
        if row is None:
            row = Document(namespace=namespace, doc_id=doc_id, payload=payload)
            self.session.add(row)
            self.session.flush()
            return row
        stmt = (
            update(Document)
            .where(Document.id == row.id)
            .values(payload=payload, row_version=Document.row_version + 1, updated_at=utcnow())
        )
        self.session.execute(stmt)
        self.session.refresh(row)
        return row
