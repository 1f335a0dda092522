"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the API layer and tests.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from lifeos.ai import AiProvider, AiProviderFactory
from lifeos.audit import AiAuditService
from lifeos.config import AppConfig
from lifeos.entries import EntryStore, RawLogJournal
from lifeos.session import ConversationSession
from lifeos.storage.sqlite_store import SqliteStore
from lifeos.taxonomy import TaxonomyRegistry


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for LifeOS.

    Importance: Simplifies passing dependencies to the API layer.
    Alternatives: Use a dependency injection container.
    """

    store: SqliteStore
    ai_provider: AiProvider
    session: ConversationSession
    audit: AiAuditService

    @property
    def taxonomy(self) -> TaxonomyRegistry:
        return self.session.taxonomy

    @property
    def entries(self) -> EntryStore:
        return self.session.entries

    @property
    def raw_logs(self) -> RawLogJournal:
        return self.session.raw_logs


def build_services(
    config: AppConfig,
    ai_provider: AiProvider | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path for the application.
    Alternatives: Instantiate services directly within the API module.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    provider = ai_provider or AiProviderFactory(config).build()
    session = ConversationSession.load(store, provider, clock=clock)
    return AppServices(store=store, ai_provider=provider, session=session, audit=session.audit)
