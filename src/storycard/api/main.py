import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storycard.errors import StorycardError

from .auth import router as auth_router
from .middleware import LoggingMiddleware
from .settings import get_settings
from .story import router as story_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storycard API", version="0.1.0")
app.add_middleware(LoggingMiddleware)

# CORS middleware (allow all for now; adjust in prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorycardError)
async def storycard_error_handler(request: Request, exc: StorycardError) -> JSONResponse:
    logger.error(
        f"{type(exc).__name__} on {request.method} {request.url.path}: {exc.message}",
        extra={"context": exc.context},
    )
    return JSONResponse(status_code=exc.status_code, content={"error": exc.user_message})


app.include_router(auth_router)
app.include_router(story_router)


@app.get("/api/health", tags=["Utility"])
async def health() -> dict[str, str]:
    """Return basic service health status."""
    return {"status": "ok"}


@app.get("/api/v1/environment", tags=["Utility"])
async def get_environment() -> dict[str, str | dict[str, bool]]:
    """Get environment information and feature flags."""
    return {
        "environment": settings.env,
        "features": {
            "transcode_cache": settings.transcode_cache_enabled,
            "moderation": settings.moderation_enabled,
            "debug_mode": settings.env == "dev",
        },
    }
