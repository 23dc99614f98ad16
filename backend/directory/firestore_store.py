"""
Firestore-backed DocumentStore (google-cloud-firestore async client).
"""

from __future__ import annotations

from typing import Any, Mapping

from google.api_core import exceptions as gexc
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from directory.errors import StoreError
from directory.store import Document


class FirestoreDocumentStore:
    def __init__(self, project_id: str | None, *, client: Any | None = None) -> None:
        if client is None and not project_id:
            raise StoreError("Missing FIREBASE_PROJECT_ID in environment")
        self.db = client or firestore.AsyncClient(project=project_id)

    async def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        snap = await self.db.collection(collection).document(doc_id).get()
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    async def set(
        self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False
    ) -> None:
        await self.db.collection(collection).document(doc_id).set(dict(data), merge=merge)

    async def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        try:
            await self.db.collection(collection).document(doc_id).update(dict(data))
        except gexc.NotFound as exc:
            raise StoreError(str(exc), code="not-found") from exc

    async def delete(self, collection: str, doc_id: str) -> None:
        await self.db.collection(collection).document(doc_id).delete()

    async def add(self, collection: str, data: Mapping[str, Any]) -> str:
        _, ref = await self.db.collection(collection).add(dict(data))
        return ref.id

    async def query(self, collection: str, field: str, op: str, value: Any) -> list[Document]:
        stream = (
            self.db.collection(collection)
            .where(filter=FieldFilter(field, op, value))
            .stream()
        )
        return [(snap.id, snap.to_dict() or {}) async for snap in stream]
