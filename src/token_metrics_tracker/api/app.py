"""FastAPI application: manual trigger, chart series, summary and alert CRUD.

`create_app` attaches the service (and the summary cache) to ``app.state``;
route handlers resolve them through ``Depends``.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from token_metrics_tracker import __version__
from token_metrics_tracker.api.schemas import (
    AlertCreate,
    AlertDelete,
    AlertOut,
    AlertUpdate,
    HolderCountPoint,
    LiquidityLockOut,
    LiquidityPoint,
    MessageResponse,
    PricePoint,
    QueueJobsResponse,
    TopHolderOut,
)
from token_metrics_tracker.cache import TTLCache
from token_metrics_tracker.errors import DuplicateAlertError, UpstreamFetchError
from token_metrics_tracker.pipeline import TrackerService
from token_metrics_tracker.scheduler import TrackerScheduler
from token_metrics_tracker.storage.repos import (
    DEFAULT_HISTORY_LIMIT,
    AlertRuleRepository,
    HolderMovementRepository,
    LiquidityEventRepository,
    TokenMetricsRepository,
)

logger = logging.getLogger(__name__)

Limit = Annotated[int, Query(ge=1, le=1000)]
Offset = Annotated[int, Query(ge=0)]


def get_service(request: Request) -> TrackerService:
    """Resolve the tracker service from app.state."""
    return request.app.state.service


def get_summary_cache(request: Request) -> TTLCache[dict[str, Any]]:
    return request.app.state.summary_cache


ServiceDep = Annotated[TrackerService, Depends(get_service)]
CacheDep = Annotated[TTLCache[dict[str, Any]], Depends(get_summary_cache)]


def create_app(
    service: TrackerService,
    *,
    summary_cache: TTLCache[dict[str, Any]] | None = None,
    scheduler: TrackerScheduler | None = None,
) -> FastAPI:
    """Build the HTTP app around a service.

    The lifespan starts the service (if not already running) and the
    scheduler, and stops both on shutdown.
    """

    @asynccontextmanager
    async def lifespan(fastapi_app: FastAPI) -> AsyncIterator[None]:
        started_here = False
        if not service.is_running:
            await service.start()
            started_here = True
        if scheduler is not None:
            await scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            if started_here:
                await service.stop()

    app = FastAPI(
        title="Token Metrics Tracker",
        description="Risk snapshot history and threshold alerts for tracked token mints",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    if summary_cache is None:
        summary_cache = TTLCache(service.settings.api.summary_cache_ttl_seconds)
    app.state.summary_cache = summary_cache
    app.state.scheduler = scheduler

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    _register_core_routes(app)
    _register_visualization_routes(app)
    _register_alert_routes(app)
    return app


def _register_core_routes(app: FastAPI) -> None:
    @app.get("/", response_class=PlainTextResponse)
    async def health() -> str:
        return "Token metrics tracker is running"

    @app.post("/internal/queue-jobs", response_model=QueueJobsResponse)
    async def queue_jobs(service: ServiceDep, background: BackgroundTasks) -> Any:
        if not service.is_running:
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Service is not running"},
            )

        async def _dispatch() -> None:
            try:
                queued = await service.dispatch()
                logger.info("Manual trigger queued %d batches", queued)
            except Exception:
                logger.exception("Manual dispatch failed")

        background.add_task(_dispatch)
        return QueueJobsResponse(success=True, message="Token update jobs queued")

    @app.get("/tokens/{mint}/report/summary")
    async def report_summary(mint: str, service: ServiceDep, cache: CacheDep) -> dict[str, Any]:
        cached = cache.get(mint)
        if cached is not None:
            return cached
        try:
            summary = await service.client.fetch_report_summary(mint)
        except UpstreamFetchError as e:
            logger.error("Summary fetch failed for %s: %s", mint, e)
            raise HTTPException(status_code=502, detail=f"Failed to fetch report summary for {mint}") from e
        cache.set(mint, summary)
        return summary


def _register_visualization_routes(app: FastAPI) -> None:
    @app.get("/tokens/{mint}/visualizations/price", response_model=list[PricePoint])
    async def price_history(
        mint: str,
        service: ServiceDep,
        limit: Limit = DEFAULT_HISTORY_LIMIT,
        offset: Offset = 0,
    ) -> list[PricePoint]:
        async with service.db.get_async_session() as session:
            rows = await TokenMetricsRepository(session).list_history(mint, limit=limit, offset=offset)
        return [PricePoint(timestamp=r.timestamp, price=r.price) for r in rows]

    @app.get("/tokens/{mint}/visualizations/liquidity", response_model=list[LiquidityPoint])
    async def liquidity_history(
        mint: str,
        service: ServiceDep,
        limit: Limit = DEFAULT_HISTORY_LIMIT,
        offset: Offset = 0,
    ) -> list[LiquidityPoint]:
        async with service.db.get_async_session() as session:
            rows = await TokenMetricsRepository(session).list_history(mint, limit=limit, offset=offset)
        return [
            LiquidityPoint(timestamp=r.timestamp, total_market_liquidity=r.total_market_liquidity)
            for r in rows
        ]

    @app.get("/tokens/{mint}/visualizations/holders", response_model=list[HolderCountPoint])
    async def holder_history(
        mint: str,
        service: ServiceDep,
        limit: Limit = DEFAULT_HISTORY_LIMIT,
        offset: Offset = 0,
    ) -> list[HolderCountPoint]:
        async with service.db.get_async_session() as session:
            rows = await TokenMetricsRepository(session).list_history(mint, limit=limit, offset=offset)
        # Holder counts can exceed what JSON numbers carry exactly.
        return [HolderCountPoint(timestamp=r.timestamp, total_holders=str(r.total_holders)) for r in rows]

    @app.get("/tokens/{mint}/visualizations/top-holders", response_model=list[TopHolderOut])
    async def top_holders(mint: str, service: ServiceDep) -> list[TopHolderOut]:
        async with service.db.get_async_session() as session:
            holders = await HolderMovementRepository(session).get_top_holders(mint)
        return [
            TopHolderOut(address=h.address, amount=str(h.amount), pct=h.pct, insider=h.insider)
            for h in holders
        ]

    @app.get("/tokens/{mint}/visualizations/liquidity-lock", response_model=LiquidityLockOut)
    async def liquidity_lock(mint: str, service: ServiceDep) -> Any:
        async with service.db.get_async_session() as session:
            event = await LiquidityEventRepository(session).get_latest(mint)
        if event is None:
            return JSONResponse(
                status_code=404,
                content={"message": "No liquidity event data found for this mint."},
            )
        return LiquidityLockOut(
            timestamp=event.timestamp,
            market_pubkey=event.market_pubkey,
            lp_locked=str(event.lp_locked) if event.lp_locked is not None else None,
            lp_locked_pct=event.lp_locked_pct,
            usdc_locked=event.usdc_locked,
            unlock_date=str(event.unlock_date) if event.unlock_date is not None else None,
        )


def _register_alert_routes(app: FastAPI) -> None:
    @app.post("/alert/new", response_model=MessageResponse)
    async def create_alert(body: AlertCreate, service: ServiceDep) -> Any:
        try:
            async with service.db.get_async_session() as session:
                await AlertRuleRepository(session).create(
                    user_email=body.user_email,
                    mint=body.mint,
                    parameter=body.parameter,
                    comparison=body.comparison,
                    threshold=body.threshold,
                )
        except DuplicateAlertError:
            return JSONResponse(status_code=400, content={"error": "User already has an alert"})
        return MessageResponse(message="Alert created successfully")

    @app.get("/alert/get", response_model=list[AlertOut])
    async def list_alerts(service: ServiceDep) -> list[AlertOut]:
        async with service.db.get_async_session() as session:
            rules = await AlertRuleRepository(session).list_all()
        return [AlertOut.model_validate(r) for r in rules]

    @app.delete("/alert/delete", response_model=MessageResponse)
    async def delete_alert(body: AlertDelete, service: ServiceDep) -> MessageResponse:
        async with service.db.get_async_session() as session:
            deleted = await AlertRuleRepository(session).delete_by_user_email(body.user_email)
        if not deleted:
            raise HTTPException(status_code=404, detail="Alert not found")
        return MessageResponse(message="Alert deleted successfully")

    @app.put("/alert/update", response_model=MessageResponse)
    async def update_alert(body: AlertUpdate, service: ServiceDep) -> MessageResponse:
        async with service.db.get_async_session() as session:
            updated = await AlertRuleRepository(session).update_by_user_email(
                body.user_email,
                reset=body.reset,
                mint=body.mint,
                parameter=body.parameter,
                comparison=body.comparison,
                threshold=body.threshold,
                is_active=body.is_active,
            )
        if updated is None:
            raise HTTPException(status_code=404, detail="Alert not found")
        return MessageResponse(message="Alert updated successfully")

    @app.get("/alert/getbyuseremail", response_model=AlertOut | None)
    async def get_alert_by_user_email(
        service: ServiceDep,
        user_email: Annotated[str, Query(alias="userEmail")],
    ) -> AlertOut | None:
        async with service.db.get_async_session() as session:
            rule = await AlertRuleRepository(session).get_by_user_email(user_email)
        return AlertOut.model_validate(rule) if rule else None

    @app.get("/alert/getbymint", response_model=list[AlertOut])
    async def get_alerts_by_mint(service: ServiceDep, mint: Annotated[str, Query()]) -> list[AlertOut]:
        async with service.db.get_async_session() as session:
            rules = await AlertRuleRepository(session).list_by_mint(mint)
        return [AlertOut.model_validate(r) for r in rules]
