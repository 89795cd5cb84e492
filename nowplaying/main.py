from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
import logging

from nowplaying.config import load_settings_from_db, settings
from nowplaying.database import init_db
from nowplaying.errors import PlaybackError, TransientStoreFailure
from nowplaying.routers import playback_router, api_router, config_router
from nowplaying.scheduler import start_scheduler, stop_scheduler, update_sweep_schedule

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()
    await load_settings_from_db()
    start_scheduler()
    update_sweep_schedule()
    yield
    # Shutdown
    stop_scheduler()


app = FastAPI(title="Now Playing", lifespan=lifespan)

# Include routers
app.include_router(playback_router, prefix="/api/playback", tags=["playback"])
app.include_router(api_router, prefix="/api", tags=["api"])
app.include_router(config_router, prefix="/config", tags=["config"])


@app.exception_handler(PlaybackError)
async def playback_error_handler(request: Request, exc: PlaybackError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"Store failure on {request.method} {request.url.path}: {exc}")
    error = TransientStoreFailure("Temporary storage failure, please retry")
    return JSONResponse(error.to_dict(), status_code=error.status_code)


@app.get("/health")
async def health():
    return {"status": "ok"}
