import logging
import json
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError as PydanticValidationError

from blockchain.utils import (
    format_hash, rank_validators, richlist_summary, slot_to_timestamp, transfer_amount
)
from dashboard.controller import ExplorerContext
from errors.exceptions import ApiError, StateConflict, ValidationError
from metrics.series import chart_points, filter_period, summarize
from middleware.error_handler import setup_error_handlers
from models.chain import TransactionRecord
from models.validation import (
    AddressFeedQuery, FeedPage, PflopsQuery, RichListQuery, SearchQuery,
    TrackingRequest, WebSocketSubscription, validate_address
)
from web.websocket_handlers import WebSocketEventHandlers, WebSocketManager

logger = logging.getLogger(__name__)


def get_context(request: Request) -> ExplorerContext:
    return request.app.state.context


def _tx_view(tx: TransactionRecord) -> dict:
    data = tx.model_dump(mode="json")
    data["transfer"] = transfer_amount(tx)
    data["short_hash"] = format_hash(tx.hash)
    return data


def _checked_address(address: str) -> str:
    try:
        return validate_address(address)
    except ValueError as e:
        raise ValidationError(str(e))


def create_app(context: Optional[ExplorerContext] = None, connect_stream: bool = True) -> FastAPI:
    """Build the explorer API around one ExplorerContext"""
    context = context or ExplorerContext()
    websocket_manager = WebSocketManager()
    ws_handlers = WebSocketEventHandlers(websocket_manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cancel_forwarding = ws_handlers.register_handlers(context.bus)
        logger.info("WebSocket event handlers registered")
        await context.startup(connect_stream=connect_stream)
        try:
            yield
        finally:
            cancel_forwarding()
            await context.shutdown()

    app = FastAPI(title="Amadeus Explorer API", version="1.0.0", lifespan=lifespan)
    app.state.context = context
    app.state.websocket_manager = websocket_manager
    app.state.ws_handlers = ws_handlers

    setup_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"]
    )

    @app.get("/api/stats")
    async def get_stats(ctx: ExplorerContext = Depends(get_context)):
        if ctx.view.stats is None:
            await ctx.view.refresh_stats()
        return {
            "stats": ctx.view.snapshot()["stats"],
            "stats_age": ctx.view.stats_age(),
            "connection": ctx.channel.state.value,
        }

    @app.get("/api/blocks")
    async def get_blocks(page: FeedPage = "home", ctx: ExplorerContext = Depends(get_context)):
        window = ctx.view.block_list if page == "list" else ctx.view.latest_blocks
        if len(window) < window.capacity:
            try:
                await ctx.view.refresh_latest_blocks(count=window.capacity)
            except ApiError as e:
                # Keep serving what is loaded; only an empty view is an error
                if len(window) == 0:
                    raise
                ctx.view.notify(f"Error loading blocks: {e.message}")
        return {"page": page, "blocks": [b.model_dump(mode="json") for b in ctx.view.blocks(page)]}

    @app.get("/api/transactions")
    async def get_transactions(page: FeedPage = "home", ctx: ExplorerContext = Depends(get_context)):
        window = ctx.view.transaction_list if page == "list" else ctx.view.latest_transactions
        if len(window) < window.capacity:
            try:
                await ctx.view.refresh_latest_transactions(limit=window.capacity)
            except ApiError as e:
                if len(window) == 0:
                    raise
                ctx.view.notify(f"Error loading transactions: {e.message}")
        return {"page": page, "transactions": [_tx_view(tx) for tx in ctx.view.transactions(page)]}

    @app.get("/api/blocks/{block_hash}")
    async def get_block(block_hash: str, ctx: ExplorerContext = Depends(get_context)):
        block = await ctx.gateway.get_entry(block_hash)
        transactions = await ctx.gateway.get_transactions_in_entry(block_hash)
        ctx.view.ingest_looked_up_block(block)
        return {
            "block": block.model_dump(mode="json"),
            "timestamp": slot_to_timestamp(block.slot).isoformat() if block.slot is not None else None,
            "transactions": [_tx_view(tx) for tx in transactions],
        }

    @app.get("/api/height/{height}")
    async def get_height(height: int, ctx: ExplorerContext = Depends(get_context)):
        if height < 0:
            raise ValidationError("height must not be negative")
        blocks = await ctx.gateway.get_entries_by_height(height)
        return {"height": height, "blocks": [b.model_dump(mode="json") for b in blocks]}

    @app.get("/api/tx/{tx_hash}")
    async def get_transaction(tx_hash: str, ctx: ExplorerContext = Depends(get_context)):
        tx = await ctx.gateway.get_transaction(tx_hash)
        ctx.view.apply_transaction_detail(tx)
        return {"transaction": _tx_view(tx)}

    @app.get("/api/address/{address}")
    async def get_address(address: str, query: AddressFeedQuery = Depends(),
                          refresh: bool = False, ctx: ExplorerContext = Depends(get_context)):
        address = _checked_address(address)
        feed = ctx.view.address_feed
        if refresh or feed.address != address or feed.filter != query.filter or feed.page_size != query.page_size:
            await ctx.open_address(address, query.filter, query.page_size)
        return {"feed": ctx.view.address_feed.to_dict(), "tracking": ctx.tracker.snapshot()}

    @app.post("/api/address/{address}/more")
    async def get_more_address_transactions(address: str, ctx: ExplorerContext = Depends(get_context)):
        address = _checked_address(address)
        if ctx.view.address_feed.address != address:
            raise StateConflict(f"Address {address} is not the displayed address")
        loaded = await ctx.view.continue_address_feed()
        return {"loaded": loaded, "feed": ctx.view.address_feed.to_dict()}

    @app.delete("/api/address")
    async def leave_address(ctx: ExplorerContext = Depends(get_context)):
        await ctx.leave_address()
        return {"feed": ctx.view.address_feed.to_dict(), "tracking": ctx.tracker.snapshot()}

    @app.get("/api/tracking")
    async def get_tracking(ctx: ExplorerContext = Depends(get_context)):
        return ctx.tracker.snapshot()

    @app.post("/api/tracking")
    async def start_tracking(payload: TrackingRequest, ctx: ExplorerContext = Depends(get_context)):
        if not await ctx.tracker.start_tracking(payload.address):
            raise HTTPException(status_code=503, detail="Realtime channel is not open")
        return ctx.tracker.snapshot()

    @app.delete("/api/tracking")
    async def stop_tracking(ctx: ExplorerContext = Depends(get_context)):
        await ctx.tracker.stop_tracking()
        return ctx.tracker.snapshot()

    @app.get("/api/search")
    async def search(query: SearchQuery = Depends(), ctx: ExplorerContext = Depends(get_context)):
        return await ctx.router.resolve(query.q)

    @app.get("/api/richlist")
    async def get_richlist(query: RichListQuery = Depends(), ctx: ExplorerContext = Depends(get_context)):
        entries = await ctx.gateway.get_richlist()
        ranked = sorted(entries, key=lambda e: e.balance, reverse=True)
        return {
            "summary": richlist_summary(ranked),
            "entries": [e.model_dump(mode="json") for e in ranked[:query.limit]],
        }

    @app.get("/api/validators")
    async def get_validators(ctx: ExplorerContext = Depends(get_context)):
        scores = await ctx.gateway.get_epoch_score()
        epoch = ctx.view.stats.epoch if ctx.view.stats is not None else None
        return {"epoch": epoch, "validators": rank_validators(scores)}

    @app.get("/api/pflops")
    async def get_pflops(query: PflopsQuery = Depends(), ctx: ExplorerContext = Depends(get_context)):
        samples = ctx.metric_store.load()
        now_ms = int(time.time() * 1000)
        period_samples = filter_period(samples, query.period, now_ms)
        return {
            "period": query.period,
            "summary": summarize(samples, now_ms),
            "points": chart_points(period_samples, now_ms),
        }

    @app.get("/health")
    async def health_check(ctx: ExplorerContext = Depends(get_context)):
        """Prometheus metrics endpoint"""
        try:
            await ctx.health_monitor.run_health_checks(ctx)
            metrics, content_type = ctx.health_monitor.generate_metrics()
            return Response(content=metrics, media_type=content_type)
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return JSONResponse(
                content={
                    "status": "unhealthy",
                    "message": "Health check system error",
                    "timestamp": time.time()
                },
                status_code=503
            )

    @app.get("/health/summary")
    async def health_summary(ctx: ExplorerContext = Depends(get_context)):
        await ctx.health_monitor.run_health_checks(ctx)
        return ctx.health_monitor.get_health_summary()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        ctx: ExplorerContext = websocket.app.state.context
        await websocket_manager.connect(websocket)
        try:
            await websocket.send_json({
                "type": "snapshot",
                "data": ctx.view.snapshot(),
                "tracking": ctx.tracker.snapshot(),
                "connection": ctx.channel.state.value,
            })
            while True:
                try:
                    data = await websocket.receive_json()
                except json.JSONDecodeError as e:
                    logger.warning(f"Invalid JSON received: {e}")
                    await websocket.send_json({"error": "Invalid JSON", "message": str(e)})
                    continue

                if not isinstance(data, dict):
                    await websocket.send_json({"error": "validation_error", "message": "Expected a JSON object"})
                    continue

                if data.get("type") == "ping":
                    await websocket.send_json({"type": "pong"})
                    continue

                try:
                    ws_request = WebSocketSubscription(**data)
                except PydanticValidationError as e:
                    await websocket.send_json({
                        "error": "validation_error",
                        "message": f"Invalid subscription request: {str(e)}"
                    })
                    continue

                websocket_manager.subscribe(websocket, ws_request.update_type)
                await websocket.send_json({
                    "type": "subscription_confirmed",
                    "update_type": ws_request.update_type,
                })
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected: {websocket.client}")
        finally:
            await websocket_manager.disconnect(websocket)

    return app
