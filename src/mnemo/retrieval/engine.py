"""
Search orchestration.

query -> cache -> classify -> analyze -> plan -> vector retrieval -> hybrid
score -> policy re-rank -> context -> answer -> query event -> cache / job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from mnemo.application.ports.ai_port import Embedder, Generator
from mnemo.config.settings import SearchConfig
from mnemo.core.errors import CapabilityUnavailableError, ValidationError
from mnemo.domain.memory import MemoryRecord
from mnemo.infrastructure.llm.ai_services import (
    FALLBACK_EMBEDDING_MODEL,
    embedding_hash,
    fallback_embedding,
    with_timeout,
)
from mnemo.infrastructure.stores.memory_store import SqlAlchemyMemoryStore
from mnemo.memory.profile import ProfileService

from .answer import AnswerSynthesizer
from .cache import SearchCache, search_cache_key
from .classifier import QueryClassifier
from .context_builder import build_context
from .jobs import SearchJob, SearchJobStore
from .planner import PlannerConfig, analyze_query, normalize_query, plan_search, tokenize_query
from .policy import apply_policy, get_policy, memory_time
from .scorer import ScoredCandidate, rank_candidates
from .vector_client import VectorRetrievalClient

logger = logging.getLogger(__name__)

EMBED_SALT = "mnemo"


@dataclass
class SearchRequest:
    user_id: str
    query: str
    limit: Optional[int] = None
    policy: Optional[str] = None
    context_only: bool = False
    job_id: Optional[str] = None


@dataclass
class SearchResponse:
    query: str
    policy: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    answer: Optional[str] = None
    citations: List[Dict[str, Any]] = field(default_factory=list)
    context: Optional[str] = None
    context_blocks: List[Dict[str, Any]] = field(default_factory=list)
    strategy: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "results": self.results,
            "answer": self.answer,
            "citations": self.citations,
            "context": self.context,
            "context_blocks": self.context_blocks,
            "policy": self.policy,
            "strategy": self.strategy,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchResponse":
        return cls(
            query=data.get("query", ""),
            policy=data.get("policy", "chat"),
            results=list(data.get("results") or []),
            answer=data.get("answer"),
            citations=list(data.get("citations") or []),
            context=data.get("context"),
            context_blocks=list(data.get("context_blocks") or []),
            strategy=data.get("strategy"),
        )


def result_item(candidate: ScoredCandidate, related: List[str]) -> Dict[str, Any]:
    memory: MemoryRecord = candidate.memory
    moment = memory_time(memory)
    return {
        "memory_id": memory.id,
        "title": memory.title,
        "summary": memory.summary,
        "url": memory.url,
        "timestamp": int(moment.timestamp()) if moment else None,
        "related_memories": related,
        "score": round(candidate.final_score, 6),
        "memory_type": memory.memory_type.value,
        "importance_score": memory.importance_score,
        "source": memory.source,
    }


class SearchEngine:
    def __init__(
        self,
        store: SqlAlchemyMemoryStore,
        retrieval: VectorRetrievalClient,
        *,
        embedder: Optional[Embedder],
        generator: Optional[Generator],
        classifier: Optional[QueryClassifier] = None,
        profiles: Optional[ProfileService] = None,
        cache: Optional[SearchCache] = None,
        jobs: Optional[SearchJobStore] = None,
        config: Optional[SearchConfig] = None,
        planner_config: Optional[PlannerConfig] = None,
        dimension: int = 768,
    ):
        self.store = store
        self.retrieval = retrieval
        self.embedder = embedder
        self.generator = generator
        self.classifier = classifier
        self.profiles = profiles
        self.cache = cache
        self.jobs = jobs
        self.config = config or SearchConfig()
        self.planner_config = planner_config or PlannerConfig(
            default_limit=self.config.default_limit,
            max_limit=self.config.max_limit,
        )
        self.dimension = dimension
        self.answers = AnswerSynthesizer(generator, timeout=self.config.answer_timeout_seconds)

    async def search(self, request: SearchRequest) -> SearchResponse:
        normalized = normalize_query(request.query, self.config.max_query_length)
        if not normalized:
            raise ValidationError("query must not be empty")
        if not request.user_id:
            raise ValidationError("user_id is required")

        should_cache = self.cache is not None and not request.context_only and not request.job_id
        cache_key = search_cache_key(
            request.user_id,
            request.query,
            request.limit or self.config.default_limit,
            request.policy,
        )
        if should_cache:
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"search cache hit for {request.user_id}")
                return SearchResponse.from_dict(cached)

        try:
            self._check_capabilities(request)
            if request.job_id and self.jobs is not None:
                await self.jobs.update(request.job_id, status="processing")
            response = await self._search(request, normalized)
        except Exception as exc:
            if request.job_id and self.jobs is not None:
                await self.jobs.update(request.job_id, status="failed", error=str(exc))
            raise

        if request.job_id and self.jobs is not None:
            await self.jobs.update(
                request.job_id,
                status="completed",
                answer=response.answer,
                citations=response.citations,
                results=[
                    {k: r.get(k) for k in ("memory_id", "title", "url", "score")} for r in response.results[:10]
                ],
            )
        if should_cache:
            await self.cache.set(cache_key, response.to_dict())
        return response

    def _check_capabilities(self, request: SearchRequest) -> None:
        if self.embedder is None:
            raise CapabilityUnavailableError("no embedding provider configured")
        if self.generator is None and not request.context_only:
            raise CapabilityUnavailableError("no generation provider configured")

    async def _resolve_policy(self, request: SearchRequest, normalized: str):
        if request.policy:
            return get_policy(request.policy)
        if self.classifier is None:
            return get_policy(self.config.default_policy)
        classification = await self.classifier.classify(normalized)
        logger.debug(f"query classified as {classification.query_class} ({classification.confidence:.2f})")
        return get_policy(classification.suggested_policy)

    async def _embed(self, text: str):
        try:
            vector = await with_timeout(self.embedder.embed(text), self.config.embed_timeout_seconds, what="embedding")
            return vector, getattr(self.embedder, "model_name", "unknown")
        except Exception as exc:
            logger.warning(f"query embedding failed, using fallback vector: {exc}")
            return fallback_embedding(text, self.dimension), FALLBACK_EMBEDDING_MODEL

    async def _search(self, request: SearchRequest, normalized: str) -> SearchResponse:
        policy = await self._resolve_policy(request, normalized)
        memory_ids = self.store.list_memory_ids(request.user_id)
        if not memory_ids:
            logger.info(f"no memories found for {request.user_id}")
            return SearchResponse(query=normalized, policy=policy.name)

        limit = min(request.limit, policy.max_results) if request.limit else policy.max_results
        analysis = analyze_query(normalized, len(memory_ids), self.planner_config)
        plan = plan_search(analysis, len(memory_ids), limit, self.planner_config)
        logger.info(
            f"search for {request.user_id}: strategy={plan.strategy} pool={plan.retrieval_limit} "
            f"policy={policy.name} corpus={len(memory_ids)}"
        )

        vector, model = await self._embed(normalized)
        query_hash = embedding_hash(model, vector, EMBED_SALT)

        hits = await self.retrieval.retrieve(vector, memory_ids, plan)
        memories = {m.id: m for m in self.store.get_memories([h.memory_id for h in hits])}
        ranked = rank_candidates(
            memories,
            {h.memory_id: h.score for h in hits},
            tokenize_query(normalized),
            plan,
            analysis.estimated_memory_age,
        )
        final = apply_policy(ranked, policy)
        logger.debug(f"{len(hits)} hit(s), {len(ranked)} above thresholds, {len(final)} after policy")

        self._record_query(request.user_id, normalized, query_hash, final, policy.name)

        if not final:
            return SearchResponse(query=normalized, policy=policy.name, strategy=plan.strategy)

        ordered = [c.memory for c in final]
        related = self.store.related_memory_ids([m.id for m in ordered])
        profile_text = await self.profiles.get_profile_context(request.user_id) if self.profiles else ""
        context, blocks = build_context(ordered, policy, profile_text or None)

        answer = None
        citations = []
        if not request.context_only:
            answer, citations = await self.answers.synthesize(normalized, ordered, profile_text or None)

        return SearchResponse(
            query=normalized,
            policy=policy.name,
            results=[result_item(c, related.get(c.memory_id, [])) for c in final],
            answer=answer,
            citations=[c.to_dict() for c in citations],
            context=context,
            context_blocks=[b.to_dict() for b in blocks],
            strategy=plan.strategy,
        )

    def _record_query(self, user_id: str, query: str, query_hash: str, final: List[ScoredCandidate], policy: str) -> None:
        try:
            self.store.record_query_event(
                user_id=user_id,
                query=query,
                embedding_hash=query_hash,
                results=[(c.memory_id, c.semantic_score) for c in final],
                policy=policy,
            )
        except Exception as exc:
            logger.warning(f"query event not recorded: {exc}")

    async def create_job(self) -> SearchJob:
        if self.jobs is None:
            raise CapabilityUnavailableError("search job store is not configured")
        return await self.jobs.create()

    async def run_job(self, request: SearchRequest) -> None:
        """Background entry point; failures are already recorded on the job."""
        try:
            await self.search(request)
        except Exception as exc:
            logger.error(f"search job {request.job_id} failed: {exc}")
