import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from offline_sync.models import DeadLetterRecord, FlushResult, QueuedAction
from offline_sync.services.connectivity import ConnectivityMonitor
from offline_sync.services.kv_store import KeyValueStore, StorageError
from offline_sync.services.replay import ReplayDispatcher

logger = logging.getLogger(__name__)

OFFLINE_ACTIONS_KEY = "offline_actions"
DEAD_LETTERS_KEY = "offline_dead_letters"
DEAD_LETTER_LIMIT = 100

OUTCOME_RETRIED = "retried"
OUTCOME_DROPPED = "dropped"
OUTCOME_GONE = "gone"


def _read_positive_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _read_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _now_ms() -> int:
    return int(time.time() * 1000)


class OfflineActionQueue:
    """Durable FIFO of mutations waiting for the backend.

    The list lives under a single key in the key-value store and every
    change rewrites it in full, so all read-modify-write cycles go through
    ``_state_lock``. Replay calls happen outside that lock; a second lock
    keeps two flushes from running at once.
    """

    def __init__(
        self,
        store: KeyValueStore,
        monitor: ConnectivityMonitor,
        dispatcher: ReplayDispatcher,
        max_retries: Optional[int] = None,
        replay_timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.monitor = monitor
        self.dispatcher = dispatcher
        if max_retries is None:
            max_retries = max(1, int(_read_positive_env("OFFLINE_MAX_RETRIES", 3)))
        if replay_timeout is None:
            replay_timeout = _read_positive_env("REPLAY_TIMEOUT_SECONDS", 15.0)
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if replay_timeout <= 0:
            raise ValueError("replay_timeout must be positive")
        self.max_retries = max_retries
        self.replay_timeout = replay_timeout
        self.telemetry_enabled = _read_bool_env("SYNC_TELEMETRY_ENABLED", True)
        self._state_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()
        self._last_enqueued_at = 0

    async def enqueue(self, kind: str, payload: Optional[Dict[str, Any]] = None) -> QueuedAction:
        async with self._state_lock:
            actions = await self._load_actions()
            known_ids = {action.id for action in actions}
            action_id = f"act_{uuid4().hex[:12]}"
            while action_id in known_ids:
                action_id = f"act_{uuid4().hex[:12]}"
            newest = max([self._last_enqueued_at] + [action.enqueued_at for action in actions])
            action = QueuedAction(
                id=action_id,
                kind=kind,
                payload=dict(payload or {}),
                enqueued_at=max(_now_ms(), newest),
                retry_count=0,
            )
            self._last_enqueued_at = action.enqueued_at
            actions.append(action)
            await self._save_actions(actions)
        logger.info("Queued offline action %s (%s)", action.id, action.kind)
        return action

    async def list_pending(self) -> List[QueuedAction]:
        async with self._state_lock:
            return await self._load_actions()

    async def remove(self, action_id: str) -> None:
        async with self._state_lock:
            actions = await self._load_actions()
            remaining = [action for action in actions if action.id != action_id]
            if len(remaining) != len(actions):
                await self._save_actions(remaining)

    async def clear(self) -> int:
        async with self._state_lock:
            count = len(await self._load_actions())
            try:
                await self.store.remove(OFFLINE_ACTIONS_KEY)
            except StorageError:
                logger.exception("Error clearing offline queue")
                return 0
        logger.info("Cleared offline queue (%d actions)", count)
        return count

    async def flush(self) -> FlushResult:
        async with self._flush_lock:
            if not self.monitor.is_online():
                result = FlushResult(skipped_offline=True)
                result.pending = len(await self.list_pending())
                return result

            result = FlushResult()
            errors: List[str] = []
            snapshot = await self._load_actions(errors)
            for action in snapshot:
                result.attempted += 1
                failure = await self._replay(action)
                if failure is None:
                    await self._mark_replayed(action.id, errors)
                    result.replayed += 1
                    continue
                outcome = await self._mark_failed(action.id, failure, errors)
                if outcome == OUTCOME_DROPPED:
                    result.dropped += 1
                elif outcome == OUTCOME_RETRIED:
                    result.retried += 1
            result.errors = errors
            result.pending = len(await self.list_pending())

        self._emit_telemetry(result)
        return result

    async def dead_letters(self) -> List[DeadLetterRecord]:
        try:
            raw = await self.store.get(DEAD_LETTERS_KEY)
        except StorageError:
            logger.exception("Error reading dead-letter record")
            return []
        records: List[DeadLetterRecord] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                records.append(DeadLetterRecord.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed dead-letter entry")
        return records

    async def clear_dead_letters(self) -> None:
        try:
            await self.store.remove(DEAD_LETTERS_KEY)
        except StorageError:
            logger.exception("Error clearing dead-letter record")

    async def _replay(self, action: QueuedAction) -> Optional[str]:
        try:
            await asyncio.wait_for(self.dispatcher.dispatch(action), timeout=self.replay_timeout)
        except asyncio.TimeoutError:
            logger.warning("Replay of %s timed out after %.1fs", action.id, self.replay_timeout)
            return f"timed out after {self.replay_timeout:g}s"
        except Exception as exc:
            logger.warning("Error processing action %s: %s", action.id, exc)
            return str(exc) or exc.__class__.__name__
        return None

    async def _mark_replayed(self, action_id: str, errors: List[str]) -> None:
        async with self._state_lock:
            actions = await self._load_actions(errors)
            await self._save_actions([a for a in actions if a.id != action_id], errors)

    async def _mark_failed(self, action_id: str, failure: str, errors: List[str]) -> str:
        async with self._state_lock:
            actions = await self._load_actions(errors)
            for idx, action in enumerate(actions):
                if action.id != action_id:
                    continue
                updated = action.model_copy(update={"retry_count": action.retry_count + 1, "last_error": failure})
                if updated.retry_count < self.max_retries:
                    actions[idx] = updated
                    await self._save_actions(actions, errors)
                    return OUTCOME_RETRIED
                del actions[idx]
                await self._save_actions(actions, errors)
                await self._append_dead_letter(updated, failure, errors)
                logger.warning(
                    "Dropped offline action %s (%s) after %d failed attempts",
                    updated.id,
                    updated.kind,
                    updated.retry_count,
                )
                return OUTCOME_DROPPED
        # Removed while its replay was in flight (e.g. clear()).
        return OUTCOME_GONE

    async def _append_dead_letter(self, action: QueuedAction, reason: str, errors: List[str]) -> None:
        record = DeadLetterRecord(action=action, dropped_at=_now_ms(), reason=reason)
        try:
            raw = await self.store.get(DEAD_LETTERS_KEY)
            rows = raw if isinstance(raw, list) else []
            rows.append(record.model_dump())
            await self.store.set(DEAD_LETTERS_KEY, rows[-DEAD_LETTER_LIMIT:])
        except StorageError as exc:
            logger.exception("Error recording dropped action %s", action.id)
            errors.append(f"dead-letter write failed: {exc}")

    async def _load_actions(self, errors: Optional[List[str]] = None) -> List[QueuedAction]:
        try:
            raw = await self.store.get(OFFLINE_ACTIONS_KEY)
        except StorageError as exc:
            logger.exception("Error getting offline actions")
            if errors is not None:
                errors.append(f"read failed: {exc}")
            return []
        actions: List[QueuedAction] = []
        for item in raw if isinstance(raw, list) else []:
            try:
                actions.append(QueuedAction.model_validate(item))
            except ValidationError:
                logger.warning("Skipping malformed offline action entry")
        return actions

    async def _save_actions(self, actions: List[QueuedAction], errors: Optional[List[str]] = None) -> None:
        try:
            await self.store.set(OFFLINE_ACTIONS_KEY, [action.model_dump() for action in actions])
        except StorageError as exc:
            logger.exception("Error storing offline actions")
            if errors is not None:
                errors.append(f"write failed: {exc}")

    def _emit_telemetry(self, result: FlushResult) -> None:
        if not self.telemetry_enabled:
            return
        payload = result.model_dump(exclude={"errors", "skipped_offline"})
        payload["error_count"] = len(result.errors)
        logger.info("sync_telemetry=%s", json.dumps(payload, sort_keys=True))
