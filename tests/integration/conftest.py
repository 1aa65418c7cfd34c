"""Integration test fixtures (require a Postgres with the pgvector extension)."""

from __future__ import annotations

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from embedq.core.models.database import PostgresConfig
from embedq.core.stores.postgres import PostgresEntityStore

DB_URL = os.environ.get('EMBEDQ_TEST_DB_URL', '')

DIMENSIONS = 3

SCHEMA_STATEMENTS = [
    'DROP TABLE IF EXISTS recommendations, annotations, places, services, users',
    'CREATE TABLE users (id INTEGER PRIMARY KEY, display_name TEXT)',
    'CREATE TABLE places (id INTEGER PRIMARY KEY, name TEXT, address TEXT)',
    """
    CREATE TABLE services (
        id INTEGER PRIMARY KEY,
        name TEXT,
        service_type TEXT,
        business_name TEXT,
        address TEXT
    )
    """,
    f"""
    CREATE TABLE recommendations (
        id INTEGER PRIMARY KEY,
        title TEXT,
        description TEXT,
        content_type TEXT,
        labels TEXT[],
        place_id INTEGER,
        service_id INTEGER,
        user_id INTEGER,
        embedding vector({DIMENSIONS}),
        updated_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE TABLE annotations (
        id INTEGER PRIMARY KEY,
        notes TEXT,
        rating INTEGER,
        labels TEXT[],
        place_id INTEGER,
        user_id INTEGER,
        embedding vector({DIMENSIONS}),
        updated_at TIMESTAMPTZ
    )
    """,
]

SEED_STATEMENTS = [
    "INSERT INTO users VALUES (1, 'Asha')",
    "INSERT INTO places VALUES (10, 'Indian Coffee House', 'MG Road, Bengaluru')",
    "INSERT INTO services VALUES (20, 'Dosa Corner', 'restaurant', 'Dosa Corner Pvt', 'Jayanagar')",
    """
    INSERT INTO recommendations (id, title, description, content_type, labels, place_id, service_id, user_id)
    VALUES (1, 'Filter coffee', 'Strong and frothy', 'food', ARRAY['coffee', 'breakfast'], 10, NULL, 1),
           (2, 'Masala dosa', NULL, 'food', NULL, NULL, 20, 99)
    """,
    """
    INSERT INTO annotations (id, notes, rating, labels, place_id, user_id)
    VALUES (1, 'Crispy and hot', 5, NULL, 10, 1)
    """,
]


@pytest.fixture(scope='session')
def db_url() -> str:
    if not DB_URL:
        pytest.skip('EMBEDQ_TEST_DB_URL is not set')
    return DB_URL


@pytest_asyncio.fixture
async def engine(db_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """Engine with a freshly created and seeded schema."""
    eng = create_async_engine(db_url)
    try:
        async with eng.begin() as conn:
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS vector'))
    except DBAPIError as exc:
        await eng.dispose()
        pytest.skip(f'pgvector extension unavailable: {exc}')

    async with eng.begin() as conn:
        for statement in SCHEMA_STATEMENTS + SEED_STATEMENTS:
            await conn.execute(text(statement))
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def store(
    engine: AsyncEngine, db_url: str
) -> AsyncGenerator[PostgresEntityStore, None]:
    entity_store = PostgresEntityStore(
        PostgresConfig(database_url=db_url, connect_retries=1)
    )
    yield entity_store
    await entity_store.close()
