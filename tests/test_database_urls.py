"""
Tests for database URL resolution used by the store and the migration runner.
"""

import pytest

from creditgate.config import Settings
from creditgate.db.migration_runner import sync_database_url
from creditgate.db.session import resolve_database_url


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestResolveDatabaseUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "postgresql://user:pw@db:5432/credits",
            "postgres://user:pw@db:5432/credits",
            "postgresql+asyncpg://user:pw@db:5432/credits",
        ],
    )
    def test_asyncpg_driver(self, url: str):
        assert resolve_database_url(_settings(database_url=url)) == (
            "postgresql+asyncpg://user:pw@db:5432/credits"
        )

    def test_database_name_override(self):
        config = _settings(database_url="postgresql://user:pw@db/credits", database_name="other")

        assert resolve_database_url(config).endswith("/other")

    def test_password_kept(self):
        config = _settings(database_url="postgresql://user:p%40ss@db/credits")

        assert "p%40ss" in resolve_database_url(config)


class TestSyncDatabaseUrl:
    def test_psycopg2_driver(self):
        config = _settings(database_url="postgresql+asyncpg://user:pw@db:5432/credits")

        assert sync_database_url(config) == "postgresql+psycopg2://user:pw@db:5432/credits"
