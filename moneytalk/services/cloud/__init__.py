"""
Cloud Services Package

Remote replica interface, the Google Sheets replica, device identity and
the reconciliation service built on them.
"""

from moneytalk.services.cloud.identity import DEVICE_USER_ID_KEY, DeviceIdentityManager
from moneytalk.services.cloud.interface import (
    REMOTE_TABLE_COLUMNS,
    REMOTE_TABLE_KEYS,
    DuplicateKeyError,
    RemoteReplicaError,
    RemoteReplicaInterface,
    ReplicaConnectionError,
)
from moneytalk.services.cloud.reconciliation import (
    AUTO_SYNC_ENABLED_KEY,
    LAST_CLOUD_SYNC_KEY,
    CloudReconciliationService,
)

__all__ = [
    "AUTO_SYNC_ENABLED_KEY",
    "CloudReconciliationService",
    "DEVICE_USER_ID_KEY",
    "DeviceIdentityManager",
    "DuplicateKeyError",
    "LAST_CLOUD_SYNC_KEY",
    "REMOTE_TABLE_COLUMNS",
    "REMOTE_TABLE_KEYS",
    "RemoteReplicaError",
    "RemoteReplicaInterface",
    "ReplicaConnectionError",
]
