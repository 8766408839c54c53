"""Feature flags, license entitlements and per-user restrictions"""

import json
from typing import Iterable, Optional

import structlog

from .utils.store import KeyValueStore

logger = structlog.get_logger(__name__)


class FeatureGate:
    """Answers whether a feature may be used, and by whom"""

    def __init__(
        self,
        store: KeyValueStore,
        enabled_features: Iterable[str] = (),
        license_active: bool = True,
        entitled_users: Iterable[str] = (),
    ):
        self.store = store
        self.enabled_features = set(enabled_features)
        self.license_active = license_active
        self.entitled_users = set(entitled_users)

    def is_feature_enabled(self, feature_key: str) -> bool:
        return feature_key in self.enabled_features

    def user_has_entitlement(self, user_id: Optional[str], feature_key: str) -> bool:
        """Licensed features are open to everyone unless an allow-list is configured"""
        if not self.license_active or not self.is_feature_enabled(feature_key):
            return False
        if not self.entitled_users:
            return True
        return user_id is not None and user_id in self.entitled_users

    async def is_user_restricted(self, user_id: Optional[str], feature_key: str) -> bool:
        if user_id is None:
            return False
        raw = await self.store.get(self._restriction_key(user_id))
        return bool(raw) and feature_key in json.loads(raw)

    async def restrict_user(self, user_id: str, feature_key: str):
        key = self._restriction_key(user_id)
        async with self.store.lock(key):
            raw = await self.store.get(key)
            restricted = set(json.loads(raw)) if raw else set()
            restricted.add(feature_key)
            await self.store.set(key, json.dumps(sorted(restricted)))
        logger.info("User restricted", user_id=user_id, feature=feature_key)

    async def unrestrict_user(self, user_id: str, feature_key: str):
        key = self._restriction_key(user_id)
        async with self.store.lock(key):
            raw = await self.store.get(key)
            restricted = set(json.loads(raw)) if raw else set()
            restricted.discard(feature_key)
            if restricted:
                await self.store.set(key, json.dumps(sorted(restricted)))
            else:
                await self.store.delete(key)
        logger.info("User restriction lifted", user_id=user_id, feature=feature_key)

    @staticmethod
    def _restriction_key(user_id: str) -> str:
        return f"restrictions:{user_id}"
