"""Shared fixtures: a throwaway SQLite database and in-memory collaborators."""
from __future__ import annotations

from collections.abc import AsyncIterator

import httpx
import pytest
import pytest_asyncio
from fakes import RECORDING_URL, FakeBlobStore, FakeLanguageModel, FakeSpeechToText, RecordingSleep

from meetnotes.container import ServiceContainer, build_container
from meetnotes.core.settings import Settings
from meetnotes.db.base import Database
from meetnotes.db.repositories import MeetingStore
from meetnotes.main import create_app
from meetnotes.services.resilience import ResilientExecutor, build_retry_policies


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'meetnotes.db'}",
        openai_api_key=None,
        task_backend="inline",
        ai_retry_jitter=0.0,
        log_level="WARNING",
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def speech() -> FakeSpeechToText:
    return FakeSpeechToText()


@pytest.fixture
def language_model() -> FakeLanguageModel:
    return FakeLanguageModel()


@pytest.fixture
def blobs() -> FakeBlobStore:
    store = FakeBlobStore()
    store.add(RECORDING_URL)
    return store


@pytest_asyncio.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    db = Database.from_settings(settings)
    await db.init_models(drop=True)
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def store(database: Database, settings: Settings, sleep: RecordingSleep) -> MeetingStore:
    return MeetingStore(database.session_factory, ResilientExecutor(sleep=sleep), build_retry_policies(settings))


@pytest_asyncio.fixture
async def container(
    settings: Settings,
    database: Database,
    speech: FakeSpeechToText,
    language_model: FakeLanguageModel,
    blobs: FakeBlobStore,
    sleep: RecordingSleep,
) -> AsyncIterator[ServiceContainer]:
    services = build_container(
        settings,
        database=database,
        speech=speech,
        language_model=language_model,
        blobs=blobs,
        sleep=sleep,
    )
    try:
        yield services
    finally:
        await services.runner.aclose()
        await services.http_client.aclose()


@pytest_asyncio.fixture
async def client(container: ServiceContainer) -> AsyncIterator[httpx.AsyncClient]:
    app = create_app(container=container)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
