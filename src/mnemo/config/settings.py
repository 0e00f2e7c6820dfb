# mnemo/config/settings.py

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


def _env_flag(value: str) -> bool:
    return value.lower() in ("1", "true", "yes", "on")


@dataclass
class DatabaseConfig:
    """Relational store"""
    url: str = "sqlite:///data/mnemo.db"
    auto_create_schema: bool = True


@dataclass
class RedisConfig:
    """Redis connection shared by the queue, the cache and cancellation flags"""
    host: str = "127.0.0.1"
    port: int = 6379
    database: int = 0
    password: Optional[str] = None


@dataclass
class QueueConfig:
    """Ingestion queue and worker pool"""
    queue_name: str = "mnemo:process-content"
    concurrency: int = 1
    job_timeout_seconds: int = 600
    lease_seconds: int = 30
    max_tries: int = 2
    retry_defer_seconds: float = 5.0
    keep_result_seconds: int = 86400
    cancel_flag_ttl_seconds: int = 3600
    dedup_similarity: float = 0.9


@dataclass
class IngestionConfig:
    """Canonicalization, duplicate detection and background enrichment"""
    max_canonical_length: int = 100_000
    duplicate_window_minutes: int = 60
    duplicate_scan_limit: int = 50
    duplicate_similarity: float = 0.9
    summary_retries: int = 1
    retry_base_delay: float = 2.0
    retry_max_delay: float = 60.0
    summary_timeout_seconds: float = 120.0
    profile_importance_threshold: float = 0.7
    profile_stale_days: int = 3
    resummarize_profile_stale_days: int = 7
    relation_threshold: float = 0.4
    relation_limit: int = 5


@dataclass
class SearchConfig:
    """Query pipeline"""
    default_limit: int = 50
    max_limit: int = 1000
    max_query_length: int = 8000
    default_policy: str = "chat"
    cache_ttl_seconds: int = 300
    job_ttl_seconds: int = 900
    classification_ttl_seconds: int = 86400
    embed_timeout_seconds: float = 30.0
    answer_timeout_seconds: float = 300.0
    classify_timeout_seconds: float = 15.0


@dataclass
class LLMConfig:
    """Generation / embedding providers"""
    provider: str = "openai"  # openai / ollama / none
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    api_key_env: str = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    router_config: Optional[str] = None
    embedding_dim: int = 768


@dataclass
class VectorConfig:
    """Similarity store"""
    backend: str = "qdrant"  # qdrant / memory
    url: str = "http://localhost:6333"
    api_key: Optional[str] = None
    collection: str = "mnemo_memories"
    dimension: int = 768


@dataclass
class CacheConfig:
    """Key-value cache for search results, search jobs and classifications"""
    backend: str = "redis"  # redis / memory


@dataclass
class LoggingConfig:
    """Logging"""
    level: str = "INFO"
    file: Optional[str] = None
    max_size: int = 10485760  # 10MB
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class APIConfig:
    """HTTP surface"""
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])


@dataclass
class Settings:
    """Root configuration"""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    vector: VectorConfig = field(default_factory=VectorConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    api: APIConfig = field(default_factory=APIConfig)

    @classmethod
    def load_from_file(cls, config_path: Optional[str] = None) -> "Settings":
        """Load settings from YAML, falling back to defaults when the file is missing."""
        if config_path is None:
            config_path = os.getenv("MNEMO_CONFIG") or "config/mnemo.yaml"

        path = Path(config_path)
        if not path.exists():
            return cls()

        with open(path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        return cls.from_dict(config_data)

    @classmethod
    def from_dict(cls, config_data: Dict[str, Any]) -> "Settings":
        settings = cls()
        sections = {
            "database": DatabaseConfig,
            "redis": RedisConfig,
            "queue": QueueConfig,
            "ingestion": IngestionConfig,
            "search": SearchConfig,
            "llm": LLMConfig,
            "vector": VectorConfig,
            "cache": CacheConfig,
            "logging": LoggingConfig,
            "api": APIConfig,
        }
        for name, config_cls in sections.items():
            if name in config_data and config_data[name] is not None:
                setattr(settings, name, config_cls(**config_data[name]))
        return settings

    def load_environment_variables(self) -> "Settings":
        """Apply MNEMO_* overrides on top of file/default values."""
        db_url = os.getenv("MNEMO_DB_URL")
        if db_url:
            self.database.url = db_url
        auto_schema = os.getenv("MNEMO_DB_AUTO_CREATE")
        if auto_schema is not None:
            self.database.auto_create_schema = _env_flag(auto_schema)

        self.redis.host = os.getenv("MNEMO_REDIS_HOST", self.redis.host)
        self.redis.port = int(os.getenv("MNEMO_REDIS_PORT", str(self.redis.port)))
        self.redis.database = int(os.getenv("MNEMO_REDIS_DB", str(self.redis.database)))
        self.redis.password = os.getenv("MNEMO_REDIS_PASSWORD") or self.redis.password

        concurrency = os.getenv("MNEMO_QUEUE_CONCURRENCY")
        if concurrency:
            try:
                self.queue.concurrency = max(1, int(concurrency))
            except ValueError:
                pass
        lease = os.getenv("MNEMO_QUEUE_LEASE_SECONDS")
        if lease:
            try:
                self.queue.lease_seconds = max(3, int(lease))
            except ValueError:
                pass

        top_k = os.getenv("MNEMO_SEARCH_TOP_K")
        if top_k:
            try:
                self.search.default_limit = int(top_k)
            except ValueError:
                pass
        max_limit = os.getenv("MNEMO_SEARCH_MAX_LIMIT")
        if max_limit:
            try:
                self.search.max_limit = int(max_limit)
            except ValueError:
                pass

        self.llm.provider = os.getenv("MNEMO_LLM_PROVIDER", self.llm.provider)
        self.llm.model = os.getenv("LLM_DEFAULT_MODEL", self.llm.model)
        self.llm.embedding_model = os.getenv("MNEMO_EMBEDDING_MODEL", self.llm.embedding_model)
        self.llm.base_url = os.getenv("MNEMO_LLM_BASE_URL") or self.llm.base_url
        self.llm.router_config = os.getenv("MNEMO_LLM_ROUTER_CONFIG") or self.llm.router_config

        self.vector.backend = os.getenv("MNEMO_VECTOR_BACKEND", self.vector.backend)
        self.vector.url = os.getenv("MNEMO_QDRANT_URL", self.vector.url)
        self.vector.api_key = os.getenv("MNEMO_QDRANT_API_KEY") or self.vector.api_key
        self.vector.collection = os.getenv("MNEMO_QDRANT_COLLECTION", self.vector.collection)

        self.cache.backend = os.getenv("MNEMO_CACHE_BACKEND", self.cache.backend)

        self.logging.level = os.getenv("MNEMO_LOG_LEVEL", self.logging.level)
        self.logging.file = os.getenv("MNEMO_LOG_FILE") or self.logging.file

        origins = os.getenv("MNEMO_CORS_ORIGINS")
        if origins:
            self.api.cors_origins = [o.strip() for o in origins.split(",") if o.strip()]
        return self


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Process-wide settings (YAML + env), validated on first access."""
    global _settings
    if _settings is None:
        from .validated_settings import load_validated_settings

        _settings = load_validated_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
