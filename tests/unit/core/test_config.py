"""Unit tests for settings and rate limit rendering."""

import json

import pytest

from core.config import Settings
from core.rate_limit import rate_limit_exceeded_handler


class TestSettings:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("postgresql://u:p@db:5432/tags", "postgresql+asyncpg://u:p@db:5432/tags"),
            ("postgresql+asyncpg://u:p@db/tags", "postgresql+asyncpg://u:p@db/tags"),
            ("sqlite+aiosqlite:///:memory:", "sqlite+aiosqlite:///:memory:"),
        ],
    )
    def test_async_database_url(self, url, expected):
        assert Settings(database_url=url).async_database_url == expected

    def test_cors_origins_list_skips_blanks(self):
        settings = Settings(cors_origins="http://a.test, ,http://b.test,")

        assert settings.cors_origins_list == ["http://a.test", "http://b.test"]

    def test_is_production(self):
        assert Settings(app_env="production").is_production is True
        assert Settings(app_env="staging").is_production is False


class TestRateLimitHandler:
    @pytest.mark.asyncio
    async def test_renders_standard_error_body(self):
        response = await rate_limit_exceeded_handler(None, Exception("10 per 1 minute"))  # type: ignore[arg-type]

        assert response.status_code == 429
        body = json.loads(response.body)
        assert body["error_code"] == "RATE_LIMIT_EXCEEDED"
        assert body["details"] == {"retry_after": "10 per 1 minute"}
