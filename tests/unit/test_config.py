"""
YAML + environment configuration.
"""

import pytest
from pydantic import ValidationError

from mnemo.config import Settings, get_settings, load_validated_settings, reset_settings

YAML = """
database:
  url: sqlite:///tmp/test.db
queue:
  lease_seconds: 45
  max_tries: 3
search:
  default_policy: planning
vector:
  backend: memory
  dimension: 128
unknown_section:
  ignored: true
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "mnemo.yaml"
    path.write_text(YAML, encoding="utf-8")
    return path


class TestLoadValidatedSettings:
    def test_reads_yaml(self, config_file):
        settings = load_validated_settings(str(config_file), apply_env=False)
        assert settings.database.url == "sqlite:///tmp/test.db"
        assert settings.queue.lease_seconds == 45
        assert settings.queue.max_tries == 3
        assert settings.search.default_policy == "planning"
        assert settings.vector.dimension == 128
        # untouched sections keep defaults
        assert settings.ingestion.summary_retries == 1
        assert settings.search.default_limit == 50

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_validated_settings(str(tmp_path / "absent.yaml"), apply_env=False)
        assert settings.queue.queue_name == "mnemo:process-content"
        assert settings.queue.lease_seconds == 30

    def test_env_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("MNEMO_DB_URL", "sqlite:///tmp/other.db")
        monkeypatch.setenv("MNEMO_REDIS_PORT", "6390")
        monkeypatch.setenv("MNEMO_CACHE_BACKEND", "memory")
        settings = load_validated_settings(str(config_file))
        assert settings.database.url == "sqlite:///tmp/other.db"
        assert settings.redis.port == 6390
        assert settings.cache.backend == "memory"

    def test_rejects_invalid_values(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("queue:\n  lease_seconds: 1\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_validated_settings(str(path), apply_env=False)


class TestSettings:
    def test_from_dict(self):
        settings = Settings.from_dict({"llm": {"provider": "none"}, "cache": None})
        assert settings.llm.provider == "none"
        assert settings.cache.backend == "redis"

    def test_get_settings_is_cached_until_reset(self, config_file, monkeypatch):
        monkeypatch.setenv("MNEMO_CONFIG", str(config_file))
        reset_settings()
        try:
            first = get_settings()
            assert first is get_settings()
            assert first.queue.lease_seconds == 45
            reset_settings()
            assert get_settings() is not first
        finally:
            reset_settings()
