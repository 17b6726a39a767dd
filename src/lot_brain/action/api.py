"""FastAPI application exposing the lot analysis engine."""

import logging
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lot_brain.action.routers.lots import router as lots_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(title="Lot Brain API", version=VERSION)

# ---------------------------------------------------------------------------
# Include modular routers
# ---------------------------------------------------------------------------

app.include_router(lots_router)


@app.exception_handler(Exception)
async def _analysis_error_handler(request: Request, exc: Exception):
    """Unhandled failures during an analysis run come back as a JSON failure report."""
    logger.exception("Lot analysis request %s %s failed", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "status": "failed",
            "endpoint": request.url.path,
            "error": str(exc)[:500],
            "error_type": type(exc).__name__,
        },
    )


# CORS: lock down in production via CORS_ORIGINS env var (comma-separated).
_cors_origins = os.environ.get("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "version": VERSION}
