"""
Pytest configuration and fixtures for envelope store tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Callable

import pytest
import asyncpg
from dotenv import load_dotenv

from envelope_store import (
    Client,
    ClientInfo,
    Config,
    InMemoryBackend,
    PostgresStorageService,
    create_schema,
    register_client,
)


@pytest.fixture
def backend() -> InMemoryBackend:
    """Create an in-memory server for testing."""
    return InMemoryBackend()


@pytest.fixture
def make_client(backend: InMemoryBackend) -> Callable[..., Client]:
    """Factory registering a new client with the in-memory server."""

    def factory(client_id: str, email: str = None) -> Client:
        config = Config.generate(client_id, client_email=email)
        backend.register_client(ClientInfo(client_id, config.public_key, email))
        return Client(config, backend.connect(client_id))

    return factory


@pytest.fixture
def alice(make_client) -> Client:
    return make_client("alice", "alice@example.com")


@pytest.fixture
def bob(make_client) -> Client:
    return make_client("bob", "bob@example.com")


@pytest.fixture
async def pg_pool() -> AsyncGenerator[asyncpg.Pool, None]:
    """Create a PostgreSQL connection pool for testing."""
    # Load environment from project root
    env_path = Path(__file__).parent.parent / ".env"
    load_dotenv(env_path)

    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set, skipping PostgreSQL tests")

    pool = await asyncpg.create_pool(database_url)
    if pool is None:
        pytest.skip("Failed to create PostgreSQL connection pool")

    await create_schema(pool)
    await pool.execute("TRUNCATE TABLE records, clients, access_keys, policies")

    yield pool

    await pool.close()


@pytest.fixture
def make_pg_client(pg_pool: asyncpg.Pool) -> Callable[..., object]:
    """Factory registering a new client in the PostgreSQL directory."""

    async def factory(client_id: str, email: str = None) -> Client:
        config = Config.generate(client_id, client_email=email)
        await register_client(pg_pool, ClientInfo(client_id, config.public_key, email))
        return Client(config, PostgresStorageService(pg_pool, client_id))

    return factory
