"""
Tests for application settings.
"""
from backend.core.config import Settings, get_settings


class TestSettings:
    """Tests for defaults and environment overrides."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        settings = Settings(_env_file=None)

        assert settings.embedding_model == "text-embedding-3-small"
        assert settings.embedding_dimensions == 1536
        assert settings.chat_model == "gpt-4o-mini"
        assert settings.grants_namespace == "grants"
        assert settings.provider_max_attempts == 3
        assert settings.analysis_cache_ttl_hours is None
        assert settings.openai_api_key is None

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("EMBEDDING_DIMENSIONS", "512")
        monkeypatch.setenv("ANALYSIS_CACHE_TTL_HOURS", "24")
        monkeypatch.setenv("pinecone_index_name", "test-index")

        settings = Settings(_env_file=None)

        assert settings.embedding_dimensions == 512
        assert settings.analysis_cache_ttl_hours == 24
        assert settings.pinecone_index_name == "test-index"

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
