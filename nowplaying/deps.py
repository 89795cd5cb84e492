from typing import Optional

from fastapi import Header, HTTPException

from nowplaying.services.playback import PlaybackSessionManager

_manager: Optional[PlaybackSessionManager] = None


def get_manager() -> PlaybackSessionManager:
    """Process-wide session manager, shared by routers and the sweep job."""
    global _manager
    if _manager is None:
        _manager = PlaybackSessionManager()
    return _manager


async def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, set by the authentication layer in front of this service."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id
