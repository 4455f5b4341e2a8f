from __future__ import annotations

from typing import Any, Protocol


class DocumentRepo(Protocol):
    def get(self, namespace: str, doc_id: str): ...
    def exists(self, namespace: str, doc_id: str) -> bool: ...
    def upsert(self, namespace: str, doc_id: str, payload: bytes): ...


class UnitOfWork(Protocol):
    documents: DocumentRepo

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> Any: ...
    def commit(self) -> None: ...
    def rollback(self) -> None: ...
