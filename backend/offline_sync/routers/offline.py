from typing import Optional

from fastapi import APIRouter, Depends, Header

from offline_sync.auth import assert_actor_authorized, require_device_access
from offline_sync.models import (
    ConnectivitySnapshot,
    DeadLetterRecord,
    EnqueueActionRequest,
    FlushResult,
    OfflineStatus,
    QueuedAction,
    SyncResult,
)
from offline_sync.runtime import SyncRuntime, get_runtime

router = APIRouter(prefix="/offline", tags=["offline"], dependencies=[Depends(require_device_access)])


@router.post("/actions", response_model=QueuedAction)
async def enqueue_action(
    payload: EnqueueActionRequest,
    authorization: Optional[str] = Header(default=None),
    runtime: SyncRuntime = Depends(get_runtime),
):
    assert_actor_authorized(actor_user_id=payload.user_id, authorization=authorization)
    data = dict(payload.payload)
    if payload.user_id:
        data.setdefault("user_id", payload.user_id)
    return await runtime.controller.enqueue(payload.kind, data)


@router.get("/actions", response_model=list[QueuedAction])
async def list_actions(runtime: SyncRuntime = Depends(get_runtime)):
    return await runtime.queue.list_pending()


@router.delete("/actions/{action_id}", response_model=dict)
async def remove_action(action_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    await runtime.queue.remove(action_id)
    pending = await runtime.controller.refresh_pending_count()
    return {"status": "ok", "pending_actions": pending}


@router.delete("/actions", response_model=dict)
async def clear_actions(runtime: SyncRuntime = Depends(get_runtime)):
    cleared = await runtime.queue.clear()
    await runtime.controller.refresh_pending_count()
    return {"status": "ok", "cleared_actions": cleared}


@router.post("/flush", response_model=FlushResult)
async def flush(runtime: SyncRuntime = Depends(get_runtime)):
    result = await runtime.queue.flush()
    await runtime.controller.refresh_pending_count()
    return result


@router.post("/sync", response_model=SyncResult)
async def sync(runtime: SyncRuntime = Depends(get_runtime)):
    return await runtime.controller.sync_data()


@router.get("/status", response_model=OfflineStatus)
async def status(runtime: SyncRuntime = Depends(get_runtime)):
    return await runtime.controller.status()


@router.post("/mode/enable", response_model=OfflineStatus)
async def enable_offline_mode(runtime: SyncRuntime = Depends(get_runtime)):
    await runtime.controller.enable_offline_mode()
    return await runtime.controller.status()


@router.post("/mode/disable", response_model=OfflineStatus)
async def disable_offline_mode(runtime: SyncRuntime = Depends(get_runtime)):
    await runtime.controller.disable_offline_mode()
    return await runtime.controller.status()


@router.get("/connectivity", response_model=ConnectivitySnapshot)
def get_connectivity(runtime: SyncRuntime = Depends(get_runtime)):
    return runtime.monitor.current_state()


@router.put("/connectivity", response_model=OfflineStatus)
async def report_connectivity(snapshot: ConnectivitySnapshot, runtime: SyncRuntime = Depends(get_runtime)):
    await runtime.monitor.update(snapshot)
    return await runtime.controller.status()


@router.get("/dead-letters", response_model=list[DeadLetterRecord])
async def list_dead_letters(runtime: SyncRuntime = Depends(get_runtime)):
    return await runtime.queue.dead_letters()


@router.delete("/dead-letters", response_model=dict)
async def clear_dead_letters(runtime: SyncRuntime = Depends(get_runtime)):
    await runtime.queue.clear_dead_letters()
    return {"status": "ok"}
