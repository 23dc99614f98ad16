"""
Document store contract for the Session Directory.

Treated as "a document store queryable by collection and filter".
MemoryDocumentStore backs tests and single-process deployments.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Mapping, Protocol

from directory.errors import StoreError


Document = tuple[str, dict[str, Any]]


class DocumentStore(Protocol):
    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False
    ) -> None: ...

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None: ...

    async def delete(self, collection: str, doc_id: str) -> None: ...

    async def add(self, collection: str, data: Mapping[str, Any]) -> str: ...

    async def query(
        self, collection: str, field: str, op: str, value: Any
    ) -> list[Document]: ...


def _matches(data: Mapping[str, Any], field: str, op: str, value: Any) -> bool:
    current = data.get(field)
    if op == "==":
        return current == value
    if op == "in":
        return current in value
    if op == "<=":
        return current is not None and current <= value
    if op == "<":
        return current is not None and current < value
    raise ValueError(f"unsupported query operator: {op}")


class MemoryDocumentStore:
    """Dict-of-dicts DocumentStore."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    def _collection(self, name: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        data = self._collection(collection).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False
    ) -> None:
        docs = self._collection(collection)
        if merge and doc_id in docs:
            docs[doc_id].update(copy.deepcopy(dict(data)))
        else:
            docs[doc_id] = copy.deepcopy(dict(data))

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise StoreError(f"no document {collection}/{doc_id}", code="not-found")
        docs[doc_id].update(copy.deepcopy(dict(data)))

    async def delete(self, collection: str, doc_id: str) -> None:
        self._collection(collection).pop(doc_id, None)

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = uuid.uuid4().hex[:20]
        self._collection(collection)[doc_id] = copy.deepcopy(dict(data))
        return doc_id

    async def query(self, collection: str, field: str, op: str, value: Any) -> list[Document]:
        return [
            (doc_id, copy.deepcopy(data))
            for doc_id, data in self._collection(collection).items()
            if _matches(data, field, op, value)
        ]
