"""
FastAPI main application for the Garden Stock Notifier.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import structlog
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import CycleResponse, DeltaResponse, ErrorResponse, HealthResponse, SnapshotResponse
from notifications.discord import DeferredReply, build_notifier, register_commands, verify_signature
from pipeline.dispatcher import Dispatcher
from pipeline.exceptions import FetchError, SendError
from pipeline.formatter import render
from pipeline.models import CycleResult
from scheduler.models import AlignmentPolicy, SchedulerConfig
from scheduler.scheduler_service import SchedulerService
from upstream.fetcher import StockFetcher
from utilities.config import config

API_VERSION = "1.0.0"
COMMAND_FAILURE_MESSAGE = "❌ Failed to fetch stock/weather data."

# Setup logging
logger = structlog.get_logger(__name__)

# Global services, created in the lifespan
fetcher: Optional[StockFetcher] = None
dispatcher: Optional[Dispatcher] = None
scheduler_service: Optional[SchedulerService] = None


def build_scheduler_config() -> SchedulerConfig:
    """Mirror the scheduling settings into a SchedulerConfig."""
    return SchedulerConfig(
        interval_minutes=config.poll_interval_minutes,
        alignment=AlignmentPolicy(config.schedule_alignment),
        settle_seconds=config.settle_seconds,
        run_on_startup=config.run_on_startup,
        timezone=config.timezone
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global fetcher, dispatcher, scheduler_service

    # Startup
    logger.info("Starting Garden Stock Notifier", port=config.port)

    fetcher = StockFetcher(config)
    dispatcher = Dispatcher(fetcher, build_notifier(config))
    scheduler_service = SchedulerService(build_scheduler_config(), dispatcher)
    scheduler_service.start()

    registration = asyncio.create_task(register_commands(config))

    yield

    # Shutdown
    logger.info("Shutting down Garden Stock Notifier")
    registration.cancel()
    await scheduler_service.stop()


# Create FastAPI application
app = FastAPI(
    title="Garden Stock Notifier",
    description="""
    Polls the Grow a Garden stock API, detects stock changes and posts them to Discord.

    ## Features

    * **On-demand updates**: run a cycle now and get the rendered update
    * **Upstream proxies**: raw stock, egg and weather data for the local frontend
    * **Slash command**: Discord interactions endpoint for `/stock`
    """,
    version=API_VERSION,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.detail,
            status_code=exc.status_code
        ).model_dump(),
        headers=exc.headers
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).model_dump()
    )


def _require_dispatcher() -> Dispatcher:
    if dispatcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dispatcher not available"
        )
    return dispatcher


def render_result(result: CycleResult) -> str:
    """Rendered content for a successful cycle."""
    return render(result.snapshot, result.reported_deltas or None)


# Health check endpoint
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    scheduler_status = None
    if scheduler_service:
        scheduler_status = await scheduler_service.get_scheduler_status()

    running = bool(scheduler_status and scheduler_status.get("running"))
    return HealthResponse(
        status="healthy" if running else "degraded",
        timestamp=datetime.utcnow(),
        version=API_VERSION,
        has_snapshot=bool(dispatcher and dispatcher.snapshot),
        scheduler=scheduler_status
    )


# On-demand cycle
@app.get("/api/send", response_model=CycleResponse, tags=["Updates"])
async def send_update():
    """
    Run one cycle now and return the rendered update.

    Always fetches fresh data. A notification is only sent when the stock
    changed since the last cycle.
    """
    result = await _require_dispatcher().run_cycle(trigger="http")

    if not result.success:
        logger.error("On-demand cycle failed", cycle_id=result.cycle_id, reason=result.reason)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Failed to fetch stock data: {result.reason}"
        )

    return CycleResponse(
        success=True,
        cycle_id=result.cycle_id,
        outcome=result.outcome,
        message=render_result(result),
        notified=result.notified,
        changes=[DeltaResponse(**delta.model_dump()) for delta in result.reported_deltas],
        send_error=result.send_error
    )


@app.get("/api/snapshot", response_model=SnapshotResponse, tags=["Updates"])
async def get_snapshot():
    """Get the last known snapshot."""
    snapshot = _require_dispatcher().snapshot
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No snapshot captured yet"
        )
    return SnapshotResponse(**snapshot.to_display_dict())


# Raw upstream proxies for the frontend
async def _proxy(source: str, label: str) -> JSONResponse:
    if fetcher is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Fetcher not available"
        )
    try:
        data = await fetcher.fetch(source)
    except FetchError as e:
        logger.error("Proxy fetch failed", source=source, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": f"Failed to fetch {label} data."}
        )
    return JSONResponse(content=data)


@app.get("/api/stock", tags=["Upstream"])
async def get_stock():
    """Raw gear and seed stock."""
    return await _proxy("stock", "stock")


@app.get("/api/egg", tags=["Upstream"])
async def get_egg():
    """Raw egg stock."""
    return await _proxy("egg", "egg")


@app.get("/api/weather", tags=["Upstream"])
async def get_weather():
    """Raw weather."""
    return await _proxy("weather", "weather")


# Discord interactions
async def answer_stock_command(reply: DeferredReply) -> None:
    """Run a cycle for /stock and complete the deferred reply once."""
    try:
        result = await _require_dispatcher().run_cycle(trigger="command")
        content = render_result(result) if result.success else COMMAND_FAILURE_MESSAGE
    except HTTPException:
        content = COMMAND_FAILURE_MESSAGE

    try:
        await reply.complete(content)
    except SendError as e:
        logger.error("Error during /stock", error=str(e))


@app.post("/interactions", tags=["Discord"])
async def interactions(request: Request, background_tasks: BackgroundTasks):
    """Discord interactions endpoint handling PING and the /stock command."""
    if not config.discord_public_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Interactions are not configured"
        )

    body = await request.body()
    signature = request.headers.get("X-Signature-Ed25519", "")
    timestamp = request.headers.get("X-Signature-Timestamp", "")
    if not verify_signature(config.discord_public_key, signature, timestamp, body):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid request signature"
        )

    try:
        interaction = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid interaction payload"
        )

    interaction_type = interaction.get("type")
    if interaction_type == 1:
        return {"type": 1}

    command = (interaction.get("data") or {}).get("name")
    if interaction_type == 2 and command == "stock":
        reply = DeferredReply(
            application_id=interaction.get("application_id") or config.discord_application_id or "",
            interaction_token=interaction.get("token", ""),
            api_base=config.discord_api_base,
            timeout=config.send_timeout
        )
        background_tasks.add_task(answer_stock_command, reply)
        logger.info("Deferred /stock reply", interaction_id=interaction.get("id"))
        return reply.acknowledge()

    logger.warning("Unsupported interaction", type=interaction_type, command=command)
    return {"type": 4, "data": {"content": "Unknown command."}}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower()
    )
