# dispatch_elig/transport/http_app.py
"""
HTTP surface for the eligibility engine.

Thin routes over ``EligibleWorkersService`` and the plugin registry. The
app is built by ``create_app``; passing a ready ``DispatchEligSystem``
skips the database lifecycle (used by tests and embedding processes).

    uvicorn dispatch_elig.transport.http_app:app
"""
from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from dispatch_elig import __version__
from dispatch_elig.bootstrap import DispatchEligSystem, build_system, start_system
from dispatch_elig.config import settings
from dispatch_elig.core.errors import DispatchEligError
from dispatch_elig.core.models import EligibleWorkersFilters
from dispatch_elig.infra.db_async import close_pool, init_pool
from dispatch_elig.infra.logging_config import get_logger, setup_logging
from dispatch_elig.infra.metrics import get_metrics_collector
from dispatch_elig.transport.middleware import RequestIDMiddleware, RequestLoggingMiddleware

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_system(request: Request) -> DispatchEligSystem:
    return request.app.state.system


def get_filters(
    sirius_id: int | None = Query(default=None, alias="siriusId"),
    name: str | None = Query(default=None),
    exclude_with_dispatches: bool = Query(default=False, alias="excludeWithDispatches"),
) -> EligibleWorkersFilters:
    return EligibleWorkersFilters(
        sirius_id=sirius_id,
        name=name,
        exclude_with_dispatches=exclude_with_dispatches,
    )


def _limit_query():
    return Query(default=settings.elig_default_limit, ge=1, le=settings.elig_max_limit)


# ============================================================================
# LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    logger.info(f"Starting dispatch eligibility service: env={settings.app_env}")

    missing = settings.validate_required_for_production()
    if missing:
        logger.critical(f"Missing required production settings: {missing}")
        raise RuntimeError(f"Missing production config: {missing}")

    await init_pool()
    logger.info("Database pool initialized")

    fastapi_app.state.system = await start_system(build_system())
    logger.info("Application startup complete")

    yield

    logger.info("Shutting down application")
    await close_pool()
    logger.info("Application shutdown complete")


# ============================================================================
# CREATE APP
# ============================================================================

def create_app(system: DispatchEligSystem | None = None) -> FastAPI:
    setup_logging(level=settings.log_level, use_json=settings.log_json or settings.is_production)

    fastapi_app = FastAPI(
        title="Dispatch Eligibility",
        description="Eligible-worker queries for dispatch jobs",
        version=__version__,
        lifespan=lifespan if system is None else None,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        openapi_url=None if settings.is_production else "/openapi.json",
    )
    if system is not None:
        fastapi_app.state.system = system

    fastapi_app.add_middleware(RequestLoggingMiddleware)
    fastapi_app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(fastapi_app)
    _register_routes(fastapi_app)
    return fastapi_app


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _register_exception_handlers(fastapi_app: FastAPI) -> None:

    @fastapi_app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @fastapi_app.exception_handler(DispatchEligError)
    async def dispatch_elig_error_handler(request: Request, exc: DispatchEligError):
        logger.error(f"Eligibility engine error: {exc}", exc_info=True)
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @fastapi_app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            f"Unhandled exception: {exc.__class__.__name__}",
            exc_info=True,
            extra={"request_id": request_id},
        )
        message = "Internal server error" if settings.is_production else f"{exc.__class__.__name__}: {exc}"
        return JSONResponse(
            status_code=500,
            content={"error": message, "request_id": request_id},
        )


# ============================================================================
# ROUTES
# ============================================================================

def _register_routes(fastapi_app: FastAPI) -> None:

    @fastapi_app.get("/health")
    def health():
        return {"status": "healthy"}

    @fastapi_app.get("/metrics")
    def metrics():
        return get_metrics_collector().get_metrics()

    @fastapi_app.get("/dispatch-jobs/{job_id}/eligible-workers")
    async def eligible_workers(
        job_id: str,
        limit: int = _limit_query(),
        offset: int = Query(default=0, ge=0),
        filters: EligibleWorkersFilters = Depends(get_filters),
        system: DispatchEligSystem = Depends(get_system),
    ):
        result = await system.service.get_eligible_workers_for_job(job_id, limit, offset, filters)
        return result.model_dump(by_alias=True)

    @fastapi_app.get("/dispatch-jobs/{job_id}/eligible-workers/sql")
    async def eligible_workers_sql(
        job_id: str,
        limit: int = _limit_query(),
        offset: int = Query(default=0, ge=0),
        filters: EligibleWorkersFilters = Depends(get_filters),
        system: DispatchEligSystem = Depends(get_system),
    ):
        """Operator debug view of the compiled query. Hidden unless its component is on."""
        if not system.components.is_active(settings.elig_sql_debug_component):
            raise HTTPException(status_code=404, detail="Not found")

        result = await system.service.get_eligible_workers_for_job_sql(job_id, limit, offset, filters)
        if result is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return result.model_dump(by_alias=True)

    @fastapi_app.get("/dispatch-jobs/{job_id}/check-eligibility/{worker_id}")
    async def check_eligibility(
        job_id: str,
        worker_id: str,
        system: DispatchEligSystem = Depends(get_system),
    ):
        result = await system.service.check_worker_eligibility(job_id, worker_id)
        if result is None:
            raise HTTPException(status_code=404, detail="Job or worker not found")
        return result.model_dump(by_alias=True)

    @fastapi_app.get("/dispatch-elig-plugins")
    def list_plugins(system: DispatchEligSystem = Depends(get_system)):
        return system.registry.get_all_plugins_metadata()

    @fastapi_app.post("/workers/{worker_id}/dispatch-elig/recompute", status_code=202)
    async def recompute_worker(worker_id: str, system: DispatchEligSystem = Depends(get_system)):
        await system.registry.recompute_worker_for_all_plugins(worker_id)
        return {"ok": True}


app = create_app()
