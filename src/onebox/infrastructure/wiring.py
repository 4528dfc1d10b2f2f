"""Builds the object graph shared by the API, the worker and the CLIs."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from onebox.application.sync.manager import SyncManager
from onebox.application.use_cases.enrich_email import EnrichEmailUseCase
from onebox.application.use_cases.ingest_email import IngestEmailUseCase
from onebox.infrastructure.email.providers.imap.client import ImapConnectionConfig, ImapConnectionFactory
from onebox.infrastructure.embeddings import EmbeddingsFactory
from onebox.infrastructure.enrichment import create_enrichment_gateway
from onebox.infrastructure.event_bus import EventBus
from onebox.infrastructure.milvus_client import MilvusClientWrapper
from onebox.infrastructure.notifications import NotificationFanout
from onebox.infrastructure.postgres_client import PostgresClientWrapper
from onebox.infrastructure.settings import Settings, SyncPolicy
from onebox.infrastructure.stores import MilvusEmailIndex, PostgresAccountRegistry


@dataclass
class Services:
    settings: Settings
    policy: SyncPolicy
    milvus: MilvusClientWrapper
    postgres: PostgresClientWrapper
    index: MilvusEmailIndex
    registry: PostgresAccountRegistry
    events: EventBus
    notifier: NotificationFanout
    connections: ImapConnectionFactory
    ingest: IngestEmailUseCase
    enrich: EnrichEmailUseCase
    manager: SyncManager

    async def aclose(self) -> None:
        await self.manager.stop_all()
        await self.notifier.drain(timeout=self.settings.notification_timeout_seconds)
        self.milvus.disconnect()
        self.postgres.disconnect()
        logger.info("Services shut down")


def build_services(settings: Settings) -> Services:
    """Connect to Milvus and PostgreSQL and assemble the sync engine."""
    logger.info("Initializing infrastructure...")
    policy = SyncPolicy.from_settings(settings)

    milvus = MilvusClientWrapper(settings)
    milvus.connect()
    postgres = PostgresClientWrapper(settings)
    postgres.connect()
    postgres.setup_schema()

    index = MilvusEmailIndex(
        milvus,
        EmbeddingsFactory.from_settings(settings),
        collection_name=settings.milvus_collection_name,
    )
    registry = PostgresAccountRegistry(postgres)
    events = EventBus()
    notifier = NotificationFanout.from_settings(settings)
    enrichment = create_enrichment_gateway(settings)
    connections = ImapConnectionFactory(
        ImapConnectionConfig(
            folder=settings.imap_folder,
            connect_timeout=settings.sync_connect_timeout_seconds,
            read_timeout=settings.imap_read_timeout_seconds,
        )
    )

    ingest = IngestEmailUseCase(
        index=index,
        enrichment=enrichment,
        notifier=notifier,
        events=events,
        registry=registry,
        chunk_size=policy.chunk_size,
        fetch_timeout=policy.fetch_timeout,
    )
    manager = SyncManager(registry, connections, ingest, events, policy)

    logger.info(f"Infrastructure initialized (llm_provider={settings.llm_provider})")
    return Services(
        settings=settings,
        policy=policy,
        milvus=milvus,
        postgres=postgres,
        index=index,
        registry=registry,
        events=events,
        notifier=notifier,
        connections=connections,
        ingest=ingest,
        enrich=EnrichEmailUseCase(index, enrichment),
        manager=manager,
    )
