from nowplaying.routers.playback import router as playback_router
from nowplaying.routers.api import router as api_router
from nowplaying.routers.config import router as config_router

__all__ = ["playback_router", "api_router", "config_router"]
