"""Wiring of services, repositories and listeners."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cellflow.config import Settings, get_settings
from cellflow.database.records import RecordRepository
from cellflow.database.session import get_session_maker
from cellflow.events import EventEmitter, get_event_emitter
from cellflow.intelligence.listener import IntelligenceTriggerListener
from cellflow.intelligence.registry import ProcessingRegistry
from cellflow.intelligence.service import IntelligenceService
from cellflow.llm.router import ModelRouter, get_router
from cellflow.services.records import RecordService
from cellflow.services.tables import FieldService, TableService


class Container:
    """Holds one instance of every service, built from shared dependencies."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        emitter: EventEmitter | None = None,
        router: ModelRouter | None = None,
        registry: ProcessingRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.session_maker = session_maker or get_session_maker()
        self.emitter = emitter or get_event_emitter()
        self.router = router or get_router()
        self.registry = registry or ProcessingRegistry()

        self.repository = RecordRepository(self.session_maker)
        self.table_service = TableService(self.session_maker, self.repository)
        self.field_service = FieldService(
            self.session_maker, self.repository, self.table_service, self.emitter
        )
        self.record_service = RecordService(
            self.table_service, self.field_service, self.repository, self.emitter
        )
        self.intelligence_service = IntelligenceService(
            table_service=self.table_service,
            field_service=self.field_service,
            record_service=self.record_service,
            repository=self.repository,
            router=self.router,
            registry=self.registry,
            settings=self.settings,
        )
        self.listener = IntelligenceTriggerListener(self.intelligence_service)
        self.listener.register(self.emitter)


# Singleton instance
_container: Container | None = None


def get_container() -> Container:
    """Get the global container instance."""
    global _container
    if _container is None:
        _container = Container()
    return _container

