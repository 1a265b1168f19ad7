"""
Engine context
Explicit wiring of registry, store, progress tracker, orchestrator, resolver and tracking
"""

from dataclasses import dataclass
from typing import Optional
import logging

from config.settings import Settings, settings as default_settings
from database.client import CatalogDatabase
from pipeline.orchestrator import ScrapeOrchestrator
from progress.tracker import ProgressTracker
from resolver.resolver import ProductResolver
from sources.registry import SourceRegistry
from tracking.cache import TrackingCache
from tracking.service import TrackingService

logger = logging.getLogger(__name__)


@dataclass
class EngineContext:
    settings: Settings
    registry: SourceRegistry
    db: CatalogDatabase
    tracker: ProgressTracker
    orchestrator: ScrapeOrchestrator
    resolver: ProductResolver
    tracking: TrackingService

    @classmethod
    def build(cls, settings: Settings, db: CatalogDatabase,
              registry: Optional[SourceRegistry] = None,
              tracker: Optional[ProgressTracker] = None,
              client_factory=None) -> "EngineContext":
        """Assemble the components around an already-constructed store."""
        registry = registry or SourceRegistry.from_settings(settings)
        tracker = tracker or ProgressTracker(eviction_seconds=settings.PROGRESS_EVICTION_SECONDS)
        factory_kwargs = {"client_factory": client_factory} if client_factory else {}

        orchestrator = ScrapeOrchestrator(registry, db, tracker, **factory_kwargs)
        resolver = ProductResolver(registry, db, tracker, **factory_kwargs)
        tracking = TrackingService(
            db, resolver,
            TrackingCache(ttl_seconds=settings.TRACKING_CACHE_TTL),
            max_per_user=settings.TRACKING_MAX_PER_USER,
        )
        return cls(settings, registry, db, tracker, orchestrator, resolver, tracking)

    async def close(self):
        logger.info("🛑 Stopping active catalog runs...")
        await self.orchestrator.shutdown()
        logger.info("✅ Engine context closed")


async def create_engine_context(settings: Settings = default_settings) -> EngineContext:
    """Connect the store and build the engine. Raises when the store cannot be reached."""
    logger.info("🔄 Initializing catalog engine...")
    db = CatalogDatabase()
    if not await db.initialize():
        raise RuntimeError("Database initialization failed")

    context = EngineContext.build(settings, db)
    logger.info(f"✅ Catalog engine ready with sources: {', '.join(context.registry.source_ids)}")
    return context
