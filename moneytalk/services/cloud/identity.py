"""
Device Identity

Every cloud row is partitioned by a per-installation UUID kept in the
local settings database. Older builds wrote ids like "device_1699..."
which are not UUIDs; those are replaced on first load.
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from moneytalk.models.transaction import DeviceIdentity, utc_now
from moneytalk.services.storage.interface import TransactionStoreInterface


logger = structlog.get_logger(__name__)

DEVICE_USER_ID_KEY = "device_user_id"
LEGACY_ID_PREFIX = "device_"


class DeviceIdentityManager:
    """Loads the device identity, creating and persisting it when needed."""

    def __init__(self, store: TransactionStoreInterface):
        self._store = store
        self._identity: Optional[DeviceIdentity] = None

    async def load_or_create(self) -> DeviceIdentity:
        """
        Return the persisted identity, or mint a new one.

        Raises:
            StorageError: If the settings database cannot be read or written
        """
        if self._identity is not None:
            return self._identity

        stored = await self._store.get_setting(DEVICE_USER_ID_KEY)
        if stored and not stored.startswith(LEGACY_ID_PREFIX):
            try:
                self._identity = DeviceIdentity(user_id=UUID(stored))
                return self._identity
            except ValueError:
                logger.warning("invalid_device_id", stored=stored)

        user_id = uuid4()
        await self._store.set_setting(DEVICE_USER_ID_KEY, str(user_id))
        logger.info("device_identity_created", user_id=str(user_id), replaced=stored)

        self._identity = DeviceIdentity(user_id=user_id, created_at=utc_now())
        return self._identity
