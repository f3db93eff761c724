import logging
import time
from typing import Any, Callable, Dict, Optional

from offline_sync.models import ConnectivitySnapshot, FlushResult, OfflineStatus, QueuedAction, SyncResult
from offline_sync.services.alert_store import AlertStore
from offline_sync.services.connectivity import ConnectivityMonitor
from offline_sync.services.kv_store import KeyValueStore, StorageError
from offline_sync.services.offline_queue import OfflineActionQueue

logger = logging.getLogger(__name__)

OFFLINE_MODE_KEY = "offline_mode"
LAST_SYNC_KEY = "last_sync"


class OfflineModeController:
    """Offline toggle, pending count and sync triggers for the UI.

    The offline-mode flag is metadata for the UI and for callers deciding
    whether to enqueue or call the backend directly; the queue accepts
    actions whatever its value.
    """

    def __init__(
        self,
        queue: OfflineActionQueue,
        monitor: ConnectivityMonitor,
        store: KeyValueStore,
        alerts: AlertStore,
    ) -> None:
        self.queue = queue
        self.monitor = monitor
        self.store = store
        self.alerts = alerts
        self.pending_actions = 0
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_connectivity_change)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def enqueue(self, kind: str, payload: Dict[str, Any]) -> QueuedAction:
        action = await self.queue.enqueue(kind, payload)
        await self.refresh_pending_count()
        return action

    async def refresh_pending_count(self) -> int:
        self.pending_actions = len(await self.queue.list_pending())
        return self.pending_actions

    async def pending_actions_count(self) -> int:
        return await self.refresh_pending_count()

    async def is_offline_mode(self) -> bool:
        return bool(await self._read(OFFLINE_MODE_KEY))

    async def last_sync_timestamp(self) -> Optional[int]:
        value = await self._read(LAST_SYNC_KEY)
        return value if isinstance(value, int) else None

    async def enable_offline_mode(self) -> None:
        await self._write(OFFLINE_MODE_KEY, True)

    async def disable_offline_mode(self) -> Optional[FlushResult]:
        await self._write(OFFLINE_MODE_KEY, False)
        if self.monitor.is_online() and await self.refresh_pending_count() > 0:
            return await self._flush()
        return None

    async def sync_data(self) -> SyncResult:
        flush = await self._flush()
        last_sync = await self.last_sync_timestamp()
        if flush.skipped_offline:
            message = "You're offline. Pending actions will sync when you reconnect."
            self.alerts.create("Sync failed", message, level="error")
            return SyncResult(ok=False, message=message, flush=flush, last_sync_timestamp=last_sync)

        ok = flush.dropped == 0 and flush.retried == 0 and not flush.errors
        if ok:
            message = f"Synced {flush.replayed} pending action(s)."
            self.alerts.create("Sync complete", message, level="success")
        else:
            message = (
                f"Synced {flush.replayed} action(s); {flush.retried} will retry, "
                f"{flush.dropped} could not be delivered."
            )
            self.alerts.create("Sync failed", message, level="error")
        return SyncResult(ok=ok, message=message, flush=flush, last_sync_timestamp=last_sync)

    async def status(self) -> OfflineStatus:
        snapshot = self.monitor.current_state()
        return OfflineStatus(
            is_online=snapshot.online,
            is_offline_mode=await self.is_offline_mode(),
            pending_actions=await self.refresh_pending_count(),
            last_sync_timestamp=await self.last_sync_timestamp(),
            connectivity=snapshot,
        )

    async def _on_connectivity_change(self, previous: ConnectivitySnapshot, current: ConnectivitySnapshot) -> None:
        pending = await self.refresh_pending_count()
        if previous.online or not current.online:
            return
        if pending > 0:
            logger.info("Connectivity restored, flushing %d pending action(s)", pending)
            await self._flush()

    async def _flush(self) -> FlushResult:
        result = await self.queue.flush()
        self.pending_actions = result.pending
        if not result.skipped_offline:
            await self._write(LAST_SYNC_KEY, int(time.time() * 1000))
        if result.dropped:
            self.alerts.create(
                "Some changes were not saved",
                f"{result.dropped} offline action(s) failed repeatedly and were discarded.",
                level="error",
            )
        return result

    async def _read(self, key: str) -> Any:
        try:
            return await self.store.get(key)
        except StorageError:
            logger.exception("Error reading %s", key)
            return None

    async def _write(self, key: str, value: Any) -> None:
        try:
            await self.store.set(key, value)
        except StorageError:
            logger.exception("Error storing %s", key)
