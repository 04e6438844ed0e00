from __future__ import annotations

import logging
from typing import Any, Optional

from .. import keys
from ..cache import CacheStore
from ..cached import cached
from ..config import CacheTTLSettings
from ..models import EmergencyInfo, PersistenceError, Profile
from ..persistence import PROFILES, Persistence, select_one

logger = logging.getLogger(__name__)


class ProfileService:
    def __init__(
        self,
        store: Persistence,
        cache: CacheStore,
        ttl: Optional[CacheTTLSettings] = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.ttl = ttl or CacheTTLSettings()
        self.get = cached(cache, keys.profile, self.ttl.profile)(self.fetch)

    async def create(self, user_id: str, **fields: Any) -> Optional[Profile]:
        try:
            row = await self.store.insert(PROFILES, {"id": user_id, **fields})
        except PersistenceError as exc:
            logger.error("Failed to create profile %s: %s", user_id, exc)
            return None
        self.cache.invalidate(keys.profile(user_id))
        return Profile.from_row(row)

    async def update(self, user_id: str, **changes: Any) -> Optional[Profile]:
        try:
            row = await self.store.update(PROFILES, user_id, changes)
        except PersistenceError as exc:
            logger.error("Failed to update profile %s: %s", user_id, exc)
            return None
        self.cache.invalidate(keys.profile(user_id))
        if row is None:
            logger.warning("Profile %s not found for update", user_id)
            return None
        return Profile.from_row(row)

    async def update_emergency_info(
        self, user_id: str, info: EmergencyInfo | dict
    ) -> Optional[Profile]:
        if not isinstance(info, EmergencyInfo):
            info = EmergencyInfo.model_validate(info)
        return await self.update(user_id, emergency_info=info)

    async def set_avatar(self, user_id: str, avatar_url: str) -> Optional[Profile]:
        return await self.update(user_id, avatar_url=avatar_url)

    async def is_doctor(self, user_id: str) -> bool:
        profile = await self.get(user_id)
        return bool(profile and profile.is_doctor)

    async def is_admin(self, user_id: str) -> bool:
        profile = await self.get(user_id)
        return bool(profile and profile.is_admin)

    async def fetch(self, user_id: str) -> Optional[Profile]:
        try:
            row = await select_one(self.store, PROFILES, id=user_id)
        except PersistenceError as exc:
            logger.error("Error fetching profile %s: %s", user_id, exc)
            return None
        return Profile.from_row(row) if row else None
