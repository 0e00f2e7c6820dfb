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
    get_settings,
    reset_settings,
)
from .validated_settings import load_validated_settings
from .log_config import configure_logging

__all__ = [
    "APIConfig",
    "CacheConfig",
    "DatabaseConfig",
    "IngestionConfig",
    "LLMConfig",
    "LoggingConfig",
    "QueueConfig",
    "RedisConfig",
    "SearchConfig",
    "Settings",
    "VectorConfig",
    "get_settings",
    "reset_settings",
    "load_validated_settings",
    "configure_logging",
]
