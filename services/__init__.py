"""
============================================================================
Centennial Activity Map - Services Layer
============================================================================

Sync engine services: configuration, fingerprinting, the local cache
store, change notification and the sync scheduler.

Reliability Level: L5 Core
============================================================================
"""

from services.sync_config import (
    SyncConfig,
    SyncConfigurationError,
    get_sync_config,
    reset_sync_config,
)

from services.fingerprint import (
    compute_view_fingerprint,
)

from services.cache_store import (
    ProjectCacheStore,
    PersistenceError,
    SyncMeta,
)

from services.change_notifier import (
    ChangeNotifier,
    PROJECTS_UPDATED_EVENT,
    get_change_notifier,
    reset_change_notifier,
)

from services.sync_scheduler import (
    SyncScheduler,
    SyncOutcome,
    SyncErrorCode,
    system_clock,
)

__all__ = [
    # Configuration
    "SyncConfig",
    "SyncConfigurationError",
    "get_sync_config",
    "reset_sync_config",
    # Fingerprint
    "compute_view_fingerprint",
    # Cache store
    "ProjectCacheStore",
    "PersistenceError",
    "SyncMeta",
    # Change notifier
    "ChangeNotifier",
    "PROJECTS_UPDATED_EVENT",
    "get_change_notifier",
    "reset_change_notifier",
    # Scheduler
    "SyncScheduler",
    "SyncOutcome",
    "SyncErrorCode",
    "system_clock",
]
