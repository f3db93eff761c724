from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

ActionKind = Literal["RSVP_EVENT", "ADD_REVIEW", "UPDATE_PROFILE", "FAVORITE_BUSINESS"]


class QueuedAction(BaseModel):
    id: str
    # Stored as plain text so entries written by older clients still load.
    kind: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    enqueued_at: int
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None


class DeadLetterRecord(BaseModel):
    action: QueuedAction
    dropped_at: int
    reason: str


class ConnectivitySnapshot(BaseModel):
    is_connected: bool = False
    is_internet_reachable: bool = False
    interface_type: str = "unknown"

    @property
    def online(self) -> bool:
        return self.is_connected and self.is_internet_reachable


class FlushResult(BaseModel):
    skipped_offline: bool = False
    attempted: int = 0
    replayed: int = 0
    retried: int = 0
    dropped: int = 0
    errors: list[str] = Field(default_factory=list)
    pending: int = 0


class SyncResult(BaseModel):
    ok: bool
    message: str
    flush: FlushResult
    last_sync_timestamp: Optional[int] = None


class OfflineStatus(BaseModel):
    is_online: bool
    is_offline_mode: bool
    pending_actions: int
    last_sync_timestamp: Optional[int] = None
    connectivity: ConnectivitySnapshot


class EnqueueActionRequest(BaseModel):
    kind: ActionKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    user_id: Optional[str] = None


class SyncAlert(BaseModel):
    id: str
    title: str
    body: str
    level: Literal["info", "success", "error"] = "info"
    read: bool = False
    created_at: str


class AuthLoginRequest(BaseModel):
    user_id: str
    password: str


class AuthLoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    user_id: str
    expires_at: str


class AuthMeResponse(BaseModel):
    user_id: str


class LogoutResponse(BaseModel):
    status: Literal["ok"] = "ok"
    cleared_actions: int = 0
