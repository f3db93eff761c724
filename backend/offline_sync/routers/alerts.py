from fastapi import APIRouter, Depends, HTTPException, Query

from offline_sync.auth import require_device_access
from offline_sync.models import SyncAlert
from offline_sync.runtime import SyncRuntime, get_runtime

router = APIRouter(prefix="/alerts", tags=["alerts"], dependencies=[Depends(require_device_access)])


@router.get("", response_model=list[SyncAlert])
def list_alerts(
    unread_only: bool = Query(default=False),
    runtime: SyncRuntime = Depends(get_runtime),
):
    return runtime.alerts.list_alerts(unread_only=unread_only)


@router.post("/{alert_id}/read", response_model=SyncAlert)
def mark_alert_read(alert_id: str, runtime: SyncRuntime = Depends(get_runtime)):
    updated = runtime.alerts.mark_read(alert_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Alert not found")
    return updated
