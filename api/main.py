"""
FastAPI Application — REST control surface for the broadcast queue.

Provides:
- Start (or preview) a broadcast
- Status, pause, resume, cancel
- Archived results per job
- Delivery sink health and engine flags

On startup the lifespan wires settings → checkpoint store → delivery sink
→ BroadcastQueue and resumes a job interrupted by the previous process.
On shutdown the processing loop is stopped without changing the job's
status, so the next start resumes it.
"""
from __future__ import annotations

import asyncio
import structlog
from datetime import datetime, timezone
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from config.logging_setup import configure_logging
from config.settings import Settings, get_settings
from channels.base import DeliverySink
from channels.factory import create_delivery_sink
from core.commands import BroadcastCommands, format_final_results
from database.store_base import BaseCheckpointStore
from database.store_factory import create_checkpoint_store
from job_queue.broadcast_queue import BroadcastQueue
from job_queue.errors import AlreadyRunningError, BroadcastError
from models.schemas import AudienceKind, BroadcastContext, BroadcastStats, RecipientSnapshot

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────

class BroadcastRequest(BaseModel):
    recipients: list[RecipientSnapshot] = Field(min_length=1)
    message: str
    context: BroadcastContext
    audience: AudienceKind = AudienceKind.MANAGED_LIST
    pacing: Optional[str] = None
    dry_run: bool = False


def _log_final_results(stats: BroadcastStats) -> None:
    logger.info("broadcast_results", job_id=stats.job_id, summary=format_final_results(stats))


# ──────────────────────────────────────────────────────────────
#  App factory
# ──────────────────────────────────────────────────────────────

def create_app(
    settings: Settings = None,
    store: BaseCheckpointStore = None,
    sink: DeliverySink = None,
    sleep=asyncio.sleep,
) -> FastAPI:
    """Build the API. Store and sink default to the configured backends."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or get_settings()
        configure_logging(cfg.log_level, cfg.log_dir, cfg.json_logs)

        checkpoint_store = store or create_checkpoint_store(cfg.storage)
        delivery_sink = sink or create_delivery_sink(cfg.delivery)
        queue = BroadcastQueue(checkpoint_store, delivery_sink, cfg.broadcast, sleep=sleep)

        app.state.queue = queue
        app.state.commands = BroadcastCommands(queue)
        app.state.sink = delivery_sink

        resumed = await queue.resume_interrupted(on_complete=_log_final_results)
        logger.info("safe_broadcast_started",
                    app=cfg.app_name,
                    sink=delivery_sink.channel,
                    resumed_job=resumed)
        yield

        await queue.shutdown()
        await delivery_sink.close()
        logger.info("safe_broadcast_stopped")

    app = FastAPI(
        title="SafeBroadcast API",
        description="Rate-governed, crash-safe broadcast message queue",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health(request: Request):
        queue: BroadcastQueue = request.app.state.queue
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sink": await request.app.state.sink.health_check(),
            "is_running": queue.is_running,
            "is_paused": queue.is_running and queue.is_paused,
        }

    # ══════════════════════════════════════════════════════════
    #  BROADCASTS
    # ══════════════════════════════════════════════════════════

    @app.post("/broadcasts")
    async def start_broadcast(req: BroadcastRequest, request: Request):
        queue: BroadcastQueue = request.app.state.queue
        try:
            result = await queue.start_broadcast(
                req.recipients, req.message, req.context,
                audience=req.audience,
                pacing=req.pacing,
                dry_run=req.dry_run,
                on_complete=_log_final_results,
            )
        except AlreadyRunningError as e:
            raise HTTPException(409, str(e))
        except ValueError as e:
            raise HTTPException(422, str(e))
        return {"dry_run": req.dry_run, **result.model_dump(mode="json")}

    @app.get("/broadcasts/status")
    async def broadcast_status(request: Request):
        queue: BroadcastQueue = request.app.state.queue
        commands: BroadcastCommands = request.app.state.commands
        return {**queue.get_status().model_dump(), "text": commands.status()}

    @app.post("/broadcasts/pause")
    async def pause_broadcast(request: Request):
        return _control(request.app.state.queue.pause, "paused")

    @app.post("/broadcasts/resume")
    async def resume_broadcast(request: Request):
        return _control(request.app.state.queue.resume, "running")

    @app.post("/broadcasts/cancel")
    async def cancel_broadcast(request: Request):
        return _control(request.app.state.queue.cancel, "cancelled")

    @app.get("/broadcasts/{job_id}/results")
    async def broadcast_results(job_id: str, request: Request):
        queue: BroadcastQueue = request.app.state.queue
        job = queue.store.load_archive(job_id)
        if not job:
            raise HTTPException(404, "Broadcast results not found")
        return job.model_dump(mode="json")


def _control(operation, state: str) -> dict[str, Any]:
    try:
        operation()
    except BroadcastError as e:
        raise HTTPException(409, str(e))
    return {"status": state, "message": f"Broadcast {state}."}


app = create_app()


# ══════════════════════════════════════════════════════════════
#  Entry Point
# ══════════════════════════════════════════════════════════════

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
