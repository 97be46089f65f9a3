import logging
import os
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from downly.api import health, inspection, download
from downly.config.settings import config, CONFIG_PATH
from downly.core.errors import MediaError
from downly.core.logging import setup_logging, log_error, log_warning
from downly.core.state import state
from downly.infra.redis import init_redis, close_redis
from downly.services.artifacts import new_request_id

logger = logging.getLogger(__name__)

app = FastAPI(
    title=config.api.title,
    version=config.api.version,
    docs_url="/docs" if config.api.debug else None,
    redoc_url=None
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.api.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition", "X-Download-Response"],
)

@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request.state.request_id = request.headers.get("X-Request-ID") or new_request_id()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request.state.request_id
    return response

@app.exception_handler(MediaError)
async def media_error_handler(request: Request, exc: MediaError):
    if exc.status_code >= 500:
        log_error(request, f"{type(exc).__name__}: {exc}")
    else:
        log_warning(request, f"{type(exc).__name__}: {exc}")
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})

# Routes
app.include_router(health.router, tags=["Health"])
app.include_router(inspection.router, tags=["Inspect"])
app.include_router(download.router, tags=["Download"])

@app.on_event("startup")
async def startup_event():
    setup_logging()

    # Ensure config directory exists and file is created if missing
    config_dir = os.path.dirname(CONFIG_PATH)
    if config_dir and not os.path.exists(config_dir):
        os.makedirs(config_dir, exist_ok=True)

    if not os.path.exists(CONFIG_PATH):
        config.save_to_file(CONFIG_PATH)

    state.redis = await init_redis()

    # Leftovers from a previous run
    try:
        state.storage().sweep()
    except MediaError as e:
        logger.warning(f"Startup sweep skipped: {e}")

@app.on_event("shutdown")
async def shutdown_event():
    if state.artifacts is not None:
        await state.artifacts.aclose()
    await close_redis()
