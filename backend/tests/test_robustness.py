import asyncio
import importlib
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from offline_sync.models import ConnectivitySnapshot
from offline_sync.services.connectivity import ConnectivityMonitor
from offline_sync.services.kv_store import KeyValueStore, StorageError
from offline_sync.services.offline_mode import OfflineModeController
from offline_sync.services.offline_queue import OfflineActionQueue
from offline_sync.services.alert_store import AlertStore
from offline_sync.services.replay import ReplayDispatcher


def test_auth_ttl_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "not-a-number")
    sys.modules.pop("offline_sync.auth", None)
    auth = importlib.import_module("offline_sync.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_auth_ttl_non_positive_env_falls_back(monkeypatch):
    monkeypatch.setenv("AUTH_TOKEN_TTL_HOURS", "0")
    sys.modules.pop("offline_sync.auth", None)
    auth = importlib.import_module("offline_sync.auth")
    assert auth.TOKEN_TTL_HOURS == 24


def test_tampered_token_is_rejected():
    auth = importlib.import_module("offline_sync.auth")
    token, _ = auth.create_access_token("user_1")
    assert auth.verify_access_token(token) == "user_1"
    payload_part = token.split(".", 1)[0]
    assert auth.verify_access_token(f"{payload_part}.AAAA") is None
    assert auth.verify_access_token("garbage") is None


def test_invalid_env_values_use_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("OFFLINE_MAX_RETRIES", "-4")
    monkeypatch.setenv("REPLAY_TIMEOUT_SECONDS", "soon")
    queue = OfflineActionQueue(
        store=KeyValueStore(db_path=str(tmp_path / "kv.sqlite3")),
        monitor=ConnectivityMonitor(),
        dispatcher=ReplayDispatcher(),
    )
    assert queue.max_retries == 3
    assert queue.replay_timeout == 15.0


def test_failing_connectivity_listener_does_not_block_others():
    monitor = ConnectivityMonitor()
    seen = []

    def broken(previous, current):
        raise RuntimeError("listener bug")

    async def healthy(previous, current):
        seen.append((previous.online, current.online))

    monitor.subscribe(broken)
    monitor.subscribe(healthy)
    asyncio.run(monitor.update(ConnectivitySnapshot(is_connected=True, is_internet_reachable=True, interface_type="wifi")))
    assert seen == [(False, True)]


class FlakyStore(KeyValueStore):
    async def get(self, key):
        if key in {"offline_mode", "last_sync"}:
            raise StorageError("unreadable")
        return await super().get(key)


def test_controller_status_survives_unreadable_flags(tmp_path):
    store = FlakyStore(db_path=str(tmp_path / "kv.sqlite3"))
    monitor = ConnectivityMonitor()
    queue = OfflineActionQueue(store=store, monitor=monitor, dispatcher=ReplayDispatcher())
    controller = OfflineModeController(queue=queue, monitor=monitor, store=store, alerts=AlertStore())

    status = asyncio.run(controller.status())
    assert status.is_offline_mode is False
    assert status.last_sync_timestamp is None
    assert status.pending_actions == 0
