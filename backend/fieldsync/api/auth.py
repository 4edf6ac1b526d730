"""Authentication endpoints: online login, logout and the cached identity."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..core.errors import InvalidCredentials, RemoteServerError, RemoteUnavailable
from ..services.coordinator import SyncCoordinator
from .deps import get_coordinator

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class SessionResponse(BaseModel):
    user: Dict[str, Any]
    offline_mode: bool
    expires_at: Optional[str] = None


@router.post("/login", response_model=SessionResponse)
async def login(req: LoginRequest, coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Online login. Caches the session for offline use."""
    try:
        session = await coordinator.login(req.username, req.password)
    except InvalidCredentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
        )
    except (RemoteUnavailable, RemoteServerError):
        raise HTTPException(status_code=503, detail="Login requires a connection to the server")
    return SessionResponse(
        user=session.user,
        offline_mode=coordinator.auth.is_offline_mode,
        expires_at=session.expires_at.isoformat(),
    )


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(coordinator: SyncCoordinator = Depends(get_coordinator)):
    coordinator.logout()


@router.get("/me", response_model=SessionResponse)
def get_me(coordinator: SyncCoordinator = Depends(get_coordinator)):
    """Current identity, online or offline-authenticated."""
    session = coordinator.auth.get_cached_session()
    if session is None or coordinator.auth_expired:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return SessionResponse(
        user=session.user,
        offline_mode=coordinator.auth.is_offline_mode,
        expires_at=session.expires_at.isoformat(),
    )
