"""
Pydantic validation for the YAML configuration.

Unknown keys are ignored; the validated tree is converted into the dataclass Settings.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .settings import (
    APIConfig,
    CacheConfig,
    DatabaseConfig,
    IngestionConfig,
    LLMConfig,
    LoggingConfig,
    QueueConfig,
    RedisConfig,
    SearchConfig,
    Settings,
    VectorConfig,
)


class _Section(BaseModel):
    model_config = ConfigDict(extra="ignore")


class DatabaseConfigModel(_Section):
    url: str = "sqlite:///data/mnemo.db"
    auto_create_schema: bool = True


class RedisConfigModel(_Section):
    host: str = "127.0.0.1"
    port: int = Field(default=6379, ge=1, le=65535)
    database: int = Field(default=0, ge=0)
    password: Optional[str] = None


class QueueConfigModel(_Section):
    queue_name: str = "mnemo:process-content"
    concurrency: int = Field(default=1, ge=1)
    job_timeout_seconds: int = Field(default=600, ge=1)
    lease_seconds: int = Field(default=30, ge=3)
    max_tries: int = Field(default=2, ge=1)
    retry_defer_seconds: float = Field(default=5.0, ge=0)
    keep_result_seconds: int = Field(default=86400, ge=0)
    cancel_flag_ttl_seconds: int = Field(default=3600, ge=1)
    dedup_similarity: float = Field(default=0.9, ge=0, le=1)


class IngestionConfigModel(_Section):
    max_canonical_length: int = Field(default=100_000, ge=1)
    duplicate_window_minutes: int = Field(default=60, ge=0)
    duplicate_scan_limit: int = Field(default=50, ge=0)
    duplicate_similarity: float = Field(default=0.9, ge=0, le=1)
    summary_retries: int = Field(default=1, ge=0)
    retry_base_delay: float = Field(default=2.0, ge=0)
    retry_max_delay: float = Field(default=60.0, ge=0)
    summary_timeout_seconds: float = Field(default=120.0, gt=0)
    profile_importance_threshold: float = Field(default=0.7, ge=0, le=1)
    profile_stale_days: int = Field(default=3, ge=0)
    resummarize_profile_stale_days: int = Field(default=7, ge=0)
    relation_threshold: float = Field(default=0.4, ge=0, le=1)
    relation_limit: int = Field(default=5, ge=0)


class SearchConfigModel(_Section):
    default_limit: int = Field(default=50, ge=1)
    max_limit: int = Field(default=1000, ge=1)
    max_query_length: int = Field(default=8000, ge=1)
    default_policy: str = "chat"
    cache_ttl_seconds: int = Field(default=300, ge=0)
    job_ttl_seconds: int = Field(default=900, ge=1)
    classification_ttl_seconds: int = Field(default=86400, ge=0)
    embed_timeout_seconds: float = Field(default=30.0, gt=0)
    answer_timeout_seconds: float = Field(default=300.0, gt=0)
    classify_timeout_seconds: float = Field(default=15.0, gt=0)


class LLMConfigModel(_Section):
    provider: str = "openai"
    model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    api_key_env: str = "OPENAI_API_KEY"
    base_url: Optional[str] = None
    router_config: Optional[str] = None
    embedding_dim: int = Field(default=768, ge=1)


class VectorConfigModel(_Section):
    backend: str = "qdrant"
    url: str = "http://localhost:6333"
    api_key: Optional[str] = None
    collection: str = "mnemo_memories"
    dimension: int = Field(default=768, ge=1)


class CacheConfigModel(_Section):
    backend: str = "redis"


class LoggingConfigModel(_Section):
    level: str = "INFO"
    file: Optional[str] = None
    max_size: int = 10485760
    backup_count: int = 5
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class APIConfigModel(_Section):
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class SettingsModel(_Section):
    database: DatabaseConfigModel = Field(default_factory=DatabaseConfigModel)
    redis: RedisConfigModel = Field(default_factory=RedisConfigModel)
    queue: QueueConfigModel = Field(default_factory=QueueConfigModel)
    ingestion: IngestionConfigModel = Field(default_factory=IngestionConfigModel)
    search: SearchConfigModel = Field(default_factory=SearchConfigModel)
    llm: LLMConfigModel = Field(default_factory=LLMConfigModel)
    vector: VectorConfigModel = Field(default_factory=VectorConfigModel)
    cache: CacheConfigModel = Field(default_factory=CacheConfigModel)
    logging: LoggingConfigModel = Field(default_factory=LoggingConfigModel)
    api: APIConfigModel = Field(default_factory=APIConfigModel)

    def to_dataclass(self) -> Settings:
        s = Settings()
        s.database = DatabaseConfig(**self.database.model_dump())
        s.redis = RedisConfig(**self.redis.model_dump())
        s.queue = QueueConfig(**self.queue.model_dump())
        s.ingestion = IngestionConfig(**self.ingestion.model_dump())
        s.search = SearchConfig(**self.search.model_dump())
        s.llm = LLMConfig(**self.llm.model_dump())
        s.vector = VectorConfig(**self.vector.model_dump())
        s.cache = CacheConfig(**self.cache.model_dump())
        s.logging = LoggingConfig(**self.logging.model_dump())
        s.api = APIConfig(**self.api.model_dump())
        return s


def load_validated_settings(config_path: Optional[str] = None, apply_env: bool = True) -> Settings:
    """Load YAML (if present), validate it, then apply environment overrides."""
    cfg_file = Path(config_path or os.getenv("MNEMO_CONFIG") or "config/mnemo.yaml")
    data = {}
    if cfg_file.exists():
        data = yaml.safe_load(cfg_file.read_text(encoding="utf-8")) or {}
    settings = SettingsModel(**data).to_dataclass()
    if apply_env:
        settings.load_environment_variables()
    return settings
