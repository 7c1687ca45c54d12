"""
FILE: src/api/main.py
"""

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.observability import setup_observability
from src.api.persistence_profile import validate_persistence_profile_guardrails
from src.api.routers import commitments_lifecycle_routes  # noqa: F401
from src.api.routers import commitments_support_routes  # noqa: F401
from src.api.routers.commitments import router as commitment_lifecycle_router
from src.api.routers.public_links import router as public_links_router


@asynccontextmanager
async def _app_lifespan(_app: FastAPI):
    validate_persistence_profile_guardrails()
    yield


app = FastAPI(
    title="Commitment Lifecycle API",
    version="0.1.0",
    description=(
        "Commitment drafting, client approval, delivery, and acceptance service.\n\n"
        "Clients act through single-use secure links; accepted change requests create a new "
        "version of the commitment and freeze the previous one."
    ),
    openapi_tags=[
        {
            "name": "Commitment Lifecycle",
            "description": "Internal commitment workflow, change request, and support endpoints.",
        },
        {
            "name": "Commitment Public Links",
            "description": "Token-authorized client approval and acceptance endpoints.",
        },
        {
            "name": "Health",
            "description": "Liveness and readiness probes.",
        },
    ],
    lifespan=_app_lifespan,
)

logger = logging.getLogger(__name__)
setup_observability(app)

health_router = APIRouter(tags=["Health"])


@health_router.get("/health", summary="Health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@health_router.get("/health/live", summary="Liveness")
def health_live() -> dict[str, str]:
    return {"status": "live"}


@health_router.get("/health/ready", summary="Readiness")
def health_ready() -> dict[str, str]:
    return {"status": "ready"}


app.include_router(health_router)
app.include_router(health_router, prefix="/api/v1")
app.include_router(commitment_lifecycle_router)
app.include_router(public_links_router)


@app.exception_handler(Exception)
async def unhandled_exception_to_problem_details(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception while serving request", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        media_type="application/problem+json",
        content={
            "type": "about:blank",
            "title": "Internal Server Error",
            "status": 500,
            "detail": "An unexpected error occurred.",
            "instance": str(request.url.path),
        },
    )
