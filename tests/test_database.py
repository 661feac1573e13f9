"""
Tests for engine configuration per backend.
"""

from community_events.database import _engine_options


def test_postgres_connections_carry_lock_and_statement_timeouts(settings):
    postgres = settings.model_copy(update={
        "database_url": "postgresql+asyncpg://app:secret@db:5432/events",
        "registration_timeout_seconds": 2.5,
        "database_statement_timeout_seconds": 30.0,
    })

    options = _engine_options(postgres)

    server_settings = options["connect_args"]["server_settings"]
    assert server_settings["lock_timeout"] == "2500"
    assert server_settings["statement_timeout"] == "30000"
    assert options["pool_pre_ping"] is True


def test_sqlite_waits_on_the_database_lock(settings):
    options = _engine_options(settings)

    assert options == {"connect_args": {"timeout": 15}}
