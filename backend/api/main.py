"""
AgriChain API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import WorkflowError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("AgriChain API starting up", version=settings.app_version)
    yield
    logger.info("AgriChain API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Agricultural marketplace: orders, fulfillment, complaints and crop insurance",
    lifespan=lifespan,
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    logger.warning(
        "api.request_rejected",
        path=request.url.path,
        method=request.method,
        error=exc.code,
        detail=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.code},
    )


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import (
    admin,
    auth,
    claims,
    complaints,
    fleet,
    insurance,
    orders,
    products,
    telemetry,
    users,
)

app.include_router(auth.router)
app.include_router(users.router)
app.include_router(products.router)
app.include_router(orders.router)
app.include_router(fleet.router)
app.include_router(telemetry.router)
app.include_router(complaints.router)
app.include_router(claims.router)
app.include_router(insurance.router)
app.include_router(admin.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
