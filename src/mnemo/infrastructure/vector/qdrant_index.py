from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

from qdrant_client import AsyncQdrantClient
from qdrant_client import models as qdrant_models

from mnemo.application.ports.vector_index_port import VectorHit, VectorIndex
from mnemo.config.settings import VectorConfig

logger = logging.getLogger(__name__)


def _point_id(memory_id: str) -> str:
    try:
        return str(uuid.UUID(memory_id))
    except (TypeError, ValueError):
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"mnemo:{memory_id}"))


class QdrantVectorIndex(VectorIndex):
    """
    Qdrant-backed similarity store.

    Every point carries ``memory_id`` / ``user_id`` in its payload; searches are
    restricted to an allow-list of memory ids through a payload filter.
    """

    def __init__(self, client: AsyncQdrantClient, collection: str, dimension: int):
        self._client = client
        self.collection = collection
        self.dimension = dimension
        self._ready = False

    @classmethod
    def from_config(cls, config: VectorConfig) -> "QdrantVectorIndex":
        client = AsyncQdrantClient(url=config.url, api_key=config.api_key)
        return cls(client, collection=config.collection, dimension=config.dimension)

    async def ensure_collection(self) -> None:
        if self._ready:
            return
        if not await self._client.collection_exists(self.collection):
            logger.info(f"creating qdrant collection {self.collection} (dim={self.dimension})")
            await self._client.create_collection(
                collection_name=self.collection,
                vectors_config=qdrant_models.VectorParams(
                    size=self.dimension,
                    distance=qdrant_models.Distance.COSINE,
                ),
            )
            for field_name in ("memory_id", "user_id"):
                await self._client.create_payload_index(
                    collection_name=self.collection,
                    field_name=field_name,
                    field_schema=qdrant_models.PayloadSchemaType.KEYWORD,
                )
        self._ready = True

    async def upsert(
        self,
        memory_id: str,
        vector: Sequence[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.ensure_collection()
        body = dict(payload or {})
        body["memory_id"] = memory_id
        await self._client.upsert(
            collection_name=self.collection,
            points=[
                qdrant_models.PointStruct(
                    id=_point_id(memory_id),
                    vector=[float(v) for v in vector],
                    payload=body,
                )
            ],
        )

    async def search(
        self,
        vector: Sequence[float],
        *,
        allowed_ids: Sequence[str],
        limit: int,
        score_threshold: Optional[float] = None,
    ) -> List[VectorHit]:
        if not allowed_ids or limit <= 0:
            return []
        await self.ensure_collection()
        response = await self._client.query_points(
            collection_name=self.collection,
            query=[float(v) for v in vector],
            query_filter=qdrant_models.Filter(
                must=[
                    qdrant_models.FieldCondition(
                        key="memory_id",
                        match=qdrant_models.MatchAny(any=list(allowed_ids)),
                    )
                ]
            ),
            limit=int(limit),
            score_threshold=score_threshold,
            with_payload=True,
        )
        hits = []
        for point in response.points:
            memory_id = (point.payload or {}).get("memory_id")
            if memory_id:
                hits.append(VectorHit(memory_id=str(memory_id), score=float(point.score)))
        return hits

    async def delete(self, memory_id: str) -> None:
        await self.ensure_collection()
        await self._client.delete(
            collection_name=self.collection,
            points_selector=qdrant_models.PointIdsList(points=[_point_id(memory_id)]),
        )

    async def close(self) -> None:
        await self._client.close()
