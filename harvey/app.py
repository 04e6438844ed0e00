from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .backends.sqlite import SQLiteStore
from .cache import CacheStore
from .config import Settings
from .models import utcnow
from .persistence import Persistence
from .review import ReviewWorkflow
from .services import AppointmentService, ConsultationService, ProfileService
from .sharing import ShareLinks

logger = logging.getLogger(__name__)


@dataclass
class HarveyApp:
    settings: Settings
    store: Persistence
    cache: CacheStore
    profiles: ProfileService
    consultations: ConsultationService
    appointments: AppointmentService
    shares: ShareLinks
    reviews: ReviewWorkflow

    @classmethod
    def create(
        cls,
        settings: Settings,
        *,
        store: Optional[Persistence] = None,
        cache: Optional[CacheStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> "HarveyApp":
        if store is None:
            store = SQLiteStore(settings.storage.database_path)
        if cache is None:
            cache = CacheStore(
                namespace=settings.cache.namespace,
                default_ttl=settings.cache.default_ttl_seconds,
                max_entries=settings.cache.max_entries,
                purge_fraction=settings.cache.purge_fraction,
            )
        ttl = settings.cache.ttl
        profiles = ProfileService(store, cache, ttl)
        consultations = ConsultationService(store, cache, ttl, clock=clock)
        appointments = AppointmentService(store, cache, consultations, ttl, clock=clock)
        shares = ShareLinks(store, consultations, profiles, settings.sharing, clock=clock)
        reviews = ReviewWorkflow(store, consultations, profiles, shares, clock=clock)
        return cls(
            settings=settings,
            store=store,
            cache=cache,
            profiles=profiles,
            consultations=consultations,
            appointments=appointments,
            shares=shares,
            reviews=reviews,
        )

    def sign_out(self) -> None:
        """Drop every cached read so the next session starts cold."""
        self.cache.clear()
        logger.info("Cleared cached data on sign-out")

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if close is not None:
            close()
