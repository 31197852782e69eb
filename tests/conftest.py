"""Pytest configuration and fixtures for CellFlow tests.

Provides a throwaway SQLite database per test, settings without delays and
a scripted model router so no test talks to a real provider.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

import cellflow.database.models  # noqa: F401  (registers metadata tables)
from cellflow.config import Settings
from cellflow.container import Container
from cellflow.events import EventEmitter
from cellflow.schemas import FieldInfo, TableMetaInfo


class FakeRouter:
    """Records prompts and answers them with a scripted responder."""

    def __init__(self, responder: Callable[[str], str] | None = None):
        self.prompts: list[str] = []
        self.responder = responder or (lambda prompt: f"generated: {prompt}")
        self.stream_chunks: list[str] = ["Hel", "lo"]

    async def generate_text(self, prompt: str, task: str = "coding", **kwargs) -> str:
        self.prompts.append(prompt)
        result = self.responder(prompt)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    async def stream_text(self, prompt: str, task: str = "coding"):
        self.prompts.append(prompt)
        for chunk in self.stream_chunks:
            yield chunk

    async def close(self) -> None:
        pass


@pytest.fixture
def settings() -> Settings:
    """Settings with every delay switched off."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        deepseek_api_key="test-key",
        kimi_api_key="test-key",
        calc_chunk_size=1000,
        intelligence_batch_delay_ms=0,
        intelligence_retry_base_delay_ms=0,
        intelligence_record_batch_delay_ms=0,
    )


@pytest.fixture
def fake_router() -> FakeRouter:
    return FakeRouter()


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """File-backed SQLite database with the metadata tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cellflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def container(session_maker, settings, fake_router):
    """Fully wired services on the test database."""
    container = Container(
        session_maker=session_maker,
        emitter=EventEmitter(),
        router=fake_router,
        settings=settings,
    )
    yield container
    await container.emitter.drain()


@pytest_asyncio.fixture
async def people_table(container) -> tuple[TableMetaInfo, FieldInfo]:
    """A table with a plain `Name` text field."""
    table = await container.table_service.create_table("bse1", "People")
    name = await container.field_service.create_field(table.id, "Name")
    await container.emitter.drain()
    return table, name


def intelligence_options(prompt: str, depends: list[str], enabled: bool = True) -> dict:
    """Field options enabling text generation, in wire format."""
    return {
        "intelligence": {
            "enabled": enabled,
            "prompt": prompt,
            "dynamic": True,
            "dynamicDepends": depends,
            "method": "textGeneration",
        }
    }
