"""
Service wiring: builds every collaborator once from Settings.

Tests and the worker pass ready-made pieces (cache, index, AI ports, store)
through the keyword overrides; anything not given is built from config.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from mnemo.application.ports.ai_port import Embedder, Generator
from mnemo.application.ports.cache_port import KeyValueCache
from mnemo.application.ports.event_log_port import EventLogPort
from mnemo.application.ports.vector_index_port import VectorIndex
from mnemo.config.settings import Settings, get_settings
from mnemo.infrastructure.cache import InMemoryKeyValueCache, RedisKeyValueCache
from mnemo.infrastructure.event_log import LoggingEventLog
from mnemo.infrastructure.llm import ModelRouter, ProviderEmbedder, RouterGenerator, TaskType
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore
from mnemo.infrastructure.vector import InMemoryVectorIndex, QdrantVectorIndex
from mnemo.ingestion.cancellation import CancellationRegistry
from mnemo.ingestion.queue import IngestionQueue, redis_settings_from
from mnemo.ingestion.worker import BackgroundTasks, IngestionWorker
from mnemo.memory.extractor import ContentExtractor
from mnemo.memory.mesh import MemoryMesh
from mnemo.memory.profile import ProfileService
from mnemo.retrieval.cache import SearchCache
from mnemo.retrieval.classifier import QueryClassifier
from mnemo.retrieval.engine import SearchEngine
from mnemo.retrieval.jobs import SearchJobStore
from mnemo.retrieval.vector_client import VectorRetrievalClient

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class ServiceContainer:
    settings: Settings
    store: SqlAlchemyMemoryStore
    cache: KeyValueCache
    index: VectorIndex
    embedder: Optional[Embedder]
    generator: Optional[Generator]
    cancellations: CancellationRegistry
    event_log: EventLogPort
    background: BackgroundTasks
    profiles: ProfileService
    mesh: MemoryMesh
    worker: IngestionWorker
    queue: IngestionQueue
    search_jobs: SearchJobStore
    search_engine: SearchEngine
    _closeables: List[Any] = field(default_factory=list)

    async def close(self) -> None:
        await self.queue.close()
        for resource in self._closeables:
            try:
                await resource.close()
            except Exception as exc:
                logger.warning(f"error closing {type(resource).__name__}: {exc}")
        self.event_log.close()
        self.store.close()


def _for_task(generator: Optional[Generator], task: TaskType) -> Optional[Generator]:
    if isinstance(generator, RouterGenerator):
        return generator.for_task(task)
    return generator


async def _build_index(settings: Settings) -> VectorIndex:
    if settings.vector.backend == "memory":
        return InMemoryVectorIndex()
    index = QdrantVectorIndex.from_config(settings.vector)
    try:
        await index.ensure_collection()
    except Exception as exc:
        logger.warning(f"qdrant collection check failed, will retry on first use: {exc}")
    return index


async def build_container(
    settings: Optional[Settings] = None,
    *,
    redis: Any = None,
    store: Optional[SqlAlchemyMemoryStore] = None,
    cache: Optional[KeyValueCache] = None,
    index: Optional[VectorIndex] = None,
    embedder: Optional[Embedder] = _UNSET,
    generator: Optional[Generator] = _UNSET,
    event_log: Optional[EventLogPort] = None,
    queue_pool: Any = None,
) -> ServiceContainer:
    settings = settings or get_settings()
    closeables: List[Any] = []

    if store is None:
        store = SqlAlchemyMemoryStore(settings.database.url, auto_create_schema=settings.database.auto_create_schema)

    if cache is None:
        if settings.cache.backend == "memory":
            cache = InMemoryKeyValueCache()
        elif redis is not None:
            # share the worker's connection; arq owns and closes it
            cache = RedisKeyValueCache(redis)
        else:
            cache = RedisKeyValueCache.from_config(settings.redis)
            closeables.append(cache)

    if index is None:
        index = await _build_index(settings)
        if isinstance(index, QdrantVectorIndex):
            closeables.append(index)

    if embedder is _UNSET or generator is _UNSET:
        router = ModelRouter.from_settings(settings.llm)
        if embedder is _UNSET:
            embedder = ProviderEmbedder(router, settings.search.embed_timeout_seconds) if router.configured else None
        if generator is _UNSET:
            generator = (
                RouterGenerator(router, TaskType.DEFAULT, settings.search.answer_timeout_seconds)
                if router.configured
                else None
            )
    if embedder is None or generator is None:
        logger.warning("AI providers not fully configured; search will report capability errors")

    event_log = event_log or LoggingEventLog()
    cancellations = CancellationRegistry(cache, settings.queue.cancel_flag_ttl_seconds)
    background = BackgroundTasks()

    profiles = ProfileService(store, _for_task(generator, TaskType.PROFILE), cache)
    mesh = MemoryMesh(
        store,
        embedder,
        index,
        relation_threshold=settings.ingestion.relation_threshold,
        relation_limit=settings.ingestion.relation_limit,
        dimension=settings.vector.dimension,
    )
    summary_generator = _for_task(generator, TaskType.SUMMARY)
    extractor = (
        ContentExtractor(summary_generator, summary_timeout=settings.ingestion.summary_timeout_seconds)
        if summary_generator is not None
        else None
    )
    worker = IngestionWorker(
        store,
        extractor,
        mesh,
        profiles,
        config=settings.ingestion,
        event_log=event_log,
        background=background,
    )
    queue = IngestionQueue(
        redis_settings_from(settings.redis),
        cancellations=cancellations,
        queue_name=settings.queue.queue_name,
        dedup_similarity=settings.queue.dedup_similarity,
        max_canonical_length=settings.ingestion.max_canonical_length,
        pool=queue_pool,
    )

    search_jobs = SearchJobStore(cache, settings.search.job_ttl_seconds)
    search_engine = SearchEngine(
        store,
        VectorRetrievalClient(index),
        embedder=embedder,
        generator=_for_task(generator, TaskType.ANSWER),
        classifier=QueryClassifier(
            _for_task(generator, TaskType.CLASSIFICATION),
            cache,
            ttl_seconds=settings.search.classification_ttl_seconds,
            timeout=settings.search.classify_timeout_seconds,
        ),
        profiles=profiles,
        cache=SearchCache(cache, settings.search.cache_ttl_seconds),
        jobs=search_jobs,
        config=settings.search,
        dimension=settings.vector.dimension,
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        cache=cache,
        index=index,
        embedder=embedder,
        generator=generator,
        cancellations=cancellations,
        event_log=event_log,
        background=background,
        profiles=profiles,
        mesh=mesh,
        worker=worker,
        queue=queue,
        search_jobs=search_jobs,
        search_engine=search_engine,
        _closeables=closeables,
    )
