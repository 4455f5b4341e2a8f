from __future__ import annotations

from typing import Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    def randint(self, a: int, b: int) -> int:
        ...

    def randrange(self, stop: int) -> int:
        ...

    def choice(self, seq: Sequence[T]) -> T:
        ...


class BlobStore(Protocol):
    def read(self, doc_id: str) -> bytes | None:
        ...

    def write(self, doc_id: str, payload: bytes) -> None:
        ...

    def exists(self, doc_id: str) -> bool:
        ...
