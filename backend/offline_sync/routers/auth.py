from fastapi import APIRouter, Depends, HTTPException

from offline_sync.auth import DEMO_PASSWORD, create_access_token, require_authenticated_user
from offline_sync.models import AuthLoginRequest, AuthLoginResponse, AuthMeResponse, LogoutResponse
from offline_sync.runtime import SyncRuntime, get_runtime

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    if payload.password != DEMO_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(user_id=user_id)
    return AuthLoginResponse(access_token=token, user_id=user_id, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(user_id: str = Depends(require_authenticated_user)):
    return AuthMeResponse(user_id=user_id)


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    user_id: str = Depends(require_authenticated_user),
    runtime: SyncRuntime = Depends(get_runtime),
):
    # Queued actions belong to the signed-in user; never replay them for the next one.
    cleared = await runtime.queue.clear()
    await runtime.controller.refresh_pending_count()
    return LogoutResponse(cleared_actions=cleared)
