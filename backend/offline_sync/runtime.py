import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fastapi import Request

from offline_sync.services.alert_store import AlertStore
from offline_sync.services.connectivity import ConnectivityMonitor
from offline_sync.services.kv_store import KeyValueStore
from offline_sync.services.offline_mode import OfflineModeController
from offline_sync.services.offline_queue import OfflineActionQueue
from offline_sync.services.replay import HostedBackendClient, ReplayDispatcher, build_backend_dispatcher


@dataclass
class SyncRuntime:
    """One device's worth of sync components, owned by the app instance."""

    store: KeyValueStore
    monitor: ConnectivityMonitor
    dispatcher: ReplayDispatcher
    queue: OfflineActionQueue
    controller: OfflineModeController
    alerts: AlertStore
    backend: Optional[HostedBackendClient] = None


def build_runtime(
    db_path: Optional[str] = None,
    dispatcher: Optional[ReplayDispatcher] = None,
    backend: Optional[HostedBackendClient] = None,
    monitor: Optional[ConnectivityMonitor] = None,
) -> SyncRuntime:
    default_db = str(Path(__file__).resolve().parents[1] / "data" / "offline_sync.sqlite3")
    store = KeyValueStore(db_path=db_path or os.getenv("SYNC_DB_PATH", default_db))
    monitor = monitor or ConnectivityMonitor()
    if dispatcher is None:
        backend = backend or HostedBackendClient()
        dispatcher = build_backend_dispatcher(backend)
    queue = OfflineActionQueue(store=store, monitor=monitor, dispatcher=dispatcher)
    alerts = AlertStore()
    controller = OfflineModeController(queue=queue, monitor=monitor, store=store, alerts=alerts)
    controller.start()
    return SyncRuntime(
        store=store,
        monitor=monitor,
        dispatcher=dispatcher,
        queue=queue,
        controller=controller,
        alerts=alerts,
        backend=backend,
    )


def get_runtime(request: Request) -> SyncRuntime:
    return request.app.state.runtime
