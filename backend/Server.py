import asyncio
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, Optional

# Project root on path so "loop_builder" imports when run as backend/Server.py
_ROOT = Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from loop_builder.builder import build_engine
from loop_builder.config import MAX_TOP_K, EngineConfig
from loop_builder.ephemeral_store import TTLStore
from loop_builder.errors import ConfigurationError, NoValidRouteError
from loop_builder.models import Coordinate
from loop_builder.utils import configure_logging, get_logger

_BACKEND_DIR = Path(__file__).resolve().parent
_ENV_PATH = _BACKEND_DIR / ".local.env"

configure_logging()
logger = get_logger("server")


def start_engine(application: FastAPI) -> None:
    """Build the engine once. A configuration error is kept and every request gets a 503."""
    application.state.engine_error = None
    if application.state.engine is not None:
        return
    try:
        config = EngineConfig.from_env(str(_ENV_PATH) if _ENV_PATH.is_file() else None)
        application.state.engine = build_engine(config, store=application.state.store)
    except ConfigurationError as e:
        logger.error("Engine not configured, serving 503: %s", e)
        application.state.engine_error = str(e)


@asynccontextmanager
async def lifespan(application: FastAPI):
    start_engine(application)
    yield
    logger.info("Server shutting down")


app = FastAPI(title="LoopRunner API", lifespan=lifespan)

# Owned by this module: engine, throttle store. Engine is built at startup.
app.state.engine = None
app.state.engine_error = None
app.state.store = TTLStore()


class GenerateRequest(BaseModel):
    startLat: float = Field(..., ge=-90, le=90)
    startLng: float = Field(..., ge=-180, le=180)
    targetDistanceKm: float = Field(..., gt=0, le=100)
    preferTrails: bool = False
    avoidHills: bool = False
    activityType: Literal["run", "walk", "hike"] = "run"
    maxAttempts: Optional[int] = Field(default=None, ge=1, le=100)
    topK: Optional[int] = Field(default=None, ge=1, le=MAX_TOP_K)


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.post("/routes/generate")
async def generate_routes(body: GenerateRequest):
    """Generate ranked loop routes. 400 bad input, 422 nothing found, 503 not configured."""
    engine = app.state.engine
    if engine is None:
        return JSONResponse({"error": app.state.engine_error or "engine not started"}, status_code=503)

    try:
        routes = await asyncio.to_thread(
            engine.generate,
            Coordinate(body.startLat, body.startLng),
            body.targetDistanceKm,
            prefer_trails=body.preferTrails,
            max_attempts=body.maxAttempts,
            avoid_hills=body.avoidHills,
            activity_type=body.activityType,
            top_k=body.topK,
        )
    except NoValidRouteError as e:
        return JSONResponse(
            {"error": e.suggestion, "attempts": e.attempts, "failureCounts": e.failure_counts},
            status_code=422,
        )
    except ValueError as e:
        return JSONResponse({"error": str(e)}, status_code=400)

    return {"routes": [r.to_dict() for r in routes]}


def main():
    uvicorn.run(app, host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
