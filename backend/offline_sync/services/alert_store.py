from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from offline_sync.models import SyncAlert

ALERT_LIST_LIMIT = 100
ALERT_RETENTION = 500


class AlertStore:
    """User-visible sync messages, newest first."""

    def __init__(self):
        self._lock = Lock()
        self._alerts: List[SyncAlert] = []

    def create(self, title: str, body: str, level: str = "info") -> SyncAlert:
        record = SyncAlert(
            id=f"alr_{uuid4().hex[:10]}",
            title=title,
            body=body,
            level=level,  # type: ignore[arg-type]
            read=False,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._alerts.insert(0, record)
            del self._alerts[ALERT_RETENTION:]
        return record

    def list_alerts(self, unread_only: bool = False) -> List[SyncAlert]:
        with self._lock:
            rows = list(self._alerts)
        if unread_only:
            rows = [a for a in rows if not a.read]
        return rows[:ALERT_LIST_LIMIT]

    def mark_read(self, alert_id: str) -> Optional[SyncAlert]:
        with self._lock:
            for idx, row in enumerate(self._alerts):
                if row.id == alert_id:
                    updated = row.model_copy(update={"read": True})
                    self._alerts[idx] = updated
                    return updated
        return None
