"""Wiring of the process-wide services.

One :class:`ServiceContainer` is built per process (API lifespan, Celery task
run or CLI command) and closed when that process is done with it.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import redis.asyncio as redis
from openai import AsyncOpenAI

from meetnotes.core.settings import Settings, get_settings
from meetnotes.db.base import Database
from meetnotes.db.repositories import MeetingStore
from meetnotes.pipelines.analysis import AnalysisStage
from meetnotes.pipelines.interfaces import (
    BlobStoreProtocol,
    LanguageModelProtocol,
    ProcessingDispatcherProtocol,
    SpeechToTextProtocol,
)
from meetnotes.pipelines.processing import MeetingProcessor
from meetnotes.pipelines.transcription import TranscriptionStage
from meetnotes.services.blob_store import HttpBlobStore
from meetnotes.services.ingestion import TeamsIngestionService
from meetnotes.services.meetings import MeetingService
from meetnotes.services.openai_clients import (
    OpenAILanguageModel,
    OpenAISpeechToText,
    UnconfiguredAIService,
)
from meetnotes.services.resilience import ResilientExecutor, RetryPolicies, build_retry_policies
from meetnotes.services.usage import UsageService
from meetnotes.tasks import get_celery_app
from meetnotes.tasks.dispatch import CeleryDispatcher, InlineDispatcher
from meetnotes.tasks.locks import InMemoryProcessingLock, ProcessingLockProtocol, RedisProcessingLock
from meetnotes.tasks.runner import BackgroundTaskRunner

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    database: Database
    policies: RetryPolicies
    store: MeetingStore
    processor: MeetingProcessor
    runner: BackgroundTaskRunner
    dispatcher: ProcessingDispatcherProtocol
    meetings: MeetingService
    ingestion: TeamsIngestionService
    usage: UsageService
    http_client: httpx.AsyncClient
    redis_client: redis.Redis | None = None

    async def aclose(self) -> None:
        await self.runner.aclose()
        await self.http_client.aclose()
        if self.redis_client is not None:
            await self.redis_client.aclose()
        await self.database.dispose()
        logger.info("Service container closed")


def _ai_adapters(settings: Settings) -> tuple[SpeechToTextProtocol, LanguageModelProtocol]:
    if not settings.openai_api_key:
        logger.warning("No OpenAI API key configured; processing will fail until one is set")
        unconfigured = UnconfiguredAIService()
        return unconfigured, unconfigured
    # Retries are handled by the resilient executor, not the SDK
    client = AsyncOpenAI(
        api_key=settings.openai_api_key,
        timeout=settings.openai_timeout,
        max_retries=0,
    )
    return (
        OpenAISpeechToText(client, settings.transcription_model),
        OpenAILanguageModel(client, settings.analysis_model),
    )


def build_container(
    settings: Settings | None = None,
    *,
    database: Database | None = None,
    speech: SpeechToTextProtocol | None = None,
    language_model: LanguageModelProtocol | None = None,
    blobs: BlobStoreProtocol | None = None,
    http_client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> ServiceContainer:
    """Assemble every service; collaborators can be swapped for tests."""
    settings = settings or get_settings()
    database = database or Database.from_settings(settings)
    http_client = http_client or httpx.AsyncClient(
        timeout=settings.blob_timeout, follow_redirects=True
    )
    blobs = blobs or HttpBlobStore(http_client, token=settings.blob_token)

    if speech is None or language_model is None:
        default_speech, default_model = _ai_adapters(settings)
        speech = speech or default_speech
        language_model = language_model or default_model

    executor = ResilientExecutor(sleep=sleep)
    policies = build_retry_policies(settings)
    store = MeetingStore(database.session_factory, executor, policies)

    transcription = TranscriptionStage(
        blobs,
        speech,
        executor,
        policies.ai,
        max_bytes=settings.max_recording_bytes,
        language=settings.transcription_language,
    )
    analysis = AnalysisStage(
        language_model, executor, policies.ai, temperature=settings.analysis_temperature
    )

    redis_client: redis.Redis | None = None
    lock: ProcessingLockProtocol
    if settings.task_backend == "celery":
        redis_client = redis.from_url(settings.redis_url, db=settings.redis_db)
        lock = RedisProcessingLock(redis_client, ttl=settings.processing_lock_ttl)
    else:
        lock = InMemoryProcessingLock()

    processor = MeetingProcessor(
        store,
        transcription,
        analysis,
        lock,
        persist_failure_detail=settings.persist_failure_detail,
    )
    runner = BackgroundTaskRunner()
    dispatcher: ProcessingDispatcherProtocol
    if settings.task_backend == "celery":
        dispatcher = CeleryDispatcher(get_celery_app())
    else:
        dispatcher = InlineDispatcher(runner, processor)

    usage = UsageService(store)
    return ServiceContainer(
        settings=settings,
        database=database,
        policies=policies,
        store=store,
        processor=processor,
        runner=runner,
        dispatcher=dispatcher,
        meetings=MeetingService(store, dispatcher, blobs, usage),
        ingestion=TeamsIngestionService(store, dispatcher),
        usage=usage,
        http_client=http_client,
        redis_client=redis_client,
    )
