import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import redis
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func, select
from sqlalchemy.engine import Connection
from sqlalchemy.pool import QueuePool
from sse_starlette.sse import EventSourceResponse

from app import config
from app.campaigns import get_campaign_by_id
from app.database import Base, engine, get_connection
from app.deferred import select_deferred_executor
from app.entries import (
    delete_entry,
    get_entry,
    get_entry_by_referral_code,
    get_entry_summary,
    list_entries,
    record_conversion,
)
from app.exceptions import EntryNotFoundException, SweepstakesException, ValidationException
from app.integrations.beehiiv import BeehiivClient, subscribe_entry
from app.integrations.sheets import (
    SheetsClient,
    get_sync_metadata,
    sheets_configured,
    sync_entries_to_sheet,
)
from app.metrics import (
    MetricsMiddleware,
    db_pool_checked_out,
    db_pool_size,
    entries_submitted_total,
    get_metrics_response,
)
from app.models import Entry, ReferralConversion
from app.notifications import NotificationHub
from app.redis_client import (
    decrement_entry_count,
    get_entry_counts,
    increment_entry_count,
    publish_update,
    redis_client,
)
from app.referral import build_referral_link
from app.schemas import ConversionPostback, EntryRequest, SheetsSyncRequest
from app.submission import EntrySubmission, submit_entry

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    Base.metadata.create_all(bind=engine)
    app.state.executor = select_deferred_executor()
    app.state.notifications = NotificationHub(app.state.executor)
    yield
    app.state.executor.shutdown()


app = FastAPI(
    title="Sweepstakes Entries",
    description="Sweepstakes entry collection with referral attribution",
    lifespan=lifespan
)

app.add_middleware(MetricsMiddleware)


@app.exception_handler(SweepstakesException)
async def sweepstakes_exception_handler(request: Request, exc: SweepstakesException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message}
    )


def update_pool_metrics():
    pool = engine.pool
    if not isinstance(pool, QueuePool):
        return
    db_pool_size.set(pool.size())
    db_pool_checked_out.set(pool.checkedout())


def record_entry_event(event: str, campaign_slug: Optional[str], payload: dict):
    try:
        if event == "entry_created":
            increment_entry_count(campaign_slug)
        elif event == "entry_deleted":
            decrement_entry_count(campaign_slug)
        publish_update(event, payload)
    except redis.RedisError as e:
        logger.warning("Could not record %s in Redis: %s", event, e)


def campaign_slug_for(conn: Connection, campaign_id: Optional[str]) -> Optional[str]:
    if not campaign_id:
        return None
    campaign = get_campaign_by_id(conn, campaign_id)
    return campaign["slug"] if campaign else None


def referral_link_for(conn: Connection, entry: dict) -> str:
    campaign = get_campaign_by_id(conn, entry["campaign_id"]) if entry["campaign_id"] else None
    return build_referral_link(entry["referral_code"], campaign["source_id"] if campaign else None)


@app.post("/submit-entry")
def submit_entry_endpoint(
    payload: EntryRequest,
    request: Request,
    conn: Connection = Depends(get_connection),
):
    try:
        result = submit_entry(conn, EntrySubmission(**payload.model_dump()))
    except SweepstakesException:
        entries_submitted_total.labels(outcome="error").inc()
        raise
    finally:
        update_pool_metrics()

    entry = result.entry
    referral_link = referral_link_for(conn, entry)

    if result.is_existing:
        entries_submitted_total.labels(outcome="existing").inc()
        return {
            "success": True,
            "data": entry,
            "is_existing": True,
            "referral_link": referral_link,
            "message": "You've already entered! Share your referral link for more entries.",
        }

    entries_submitted_total.labels(outcome="created").inc()
    record_entry_event(
        "entry_created",
        result.campaign_slug,
        {"id": entry["id"], "campaign": result.campaign_slug},
    )
    request.app.state.notifications.success("New entry", entry["email"])
    request.app.state.executor.schedule(subscribe_entry, entry, result.campaign_slug)

    return {
        "success": True,
        "data": entry,
        "is_existing": False,
        "referral_link": referral_link,
        "message": "Entry submitted successfully",
    }


@app.get("/entries")
def list_entries_endpoint(
    campaign_id: Optional[str] = None,
    limit: int = 100,
    conn: Connection = Depends(get_connection),
):
    limit = max(1, min(limit, 1000))
    return {"success": True, "data": list_entries(conn, campaign_id, limit)}


@app.get("/entries/summary")
def entries_summary(
    campaign_id: Optional[str] = None,
    conn: Connection = Depends(get_connection),
):
    return {"success": True, "data": get_entry_summary(conn, campaign_id)}


@app.delete("/entries/{entry_id}")
def delete_entry_endpoint(
    entry_id: str,
    request: Request,
    conn: Connection = Depends(get_connection),
):
    entry = get_entry(conn, entry_id)
    if entry is None:
        raise EntryNotFoundException(f"Entry not found: {entry_id}")
    campaign_slug = campaign_slug_for(conn, entry["campaign_id"])

    deleted = delete_entry(conn, entry_id)

    record_entry_event("entry_deleted", campaign_slug, {"id": entry_id})
    request.app.state.notifications.info("Entry deleted", entry["email"])
    return {"success": True, "id": entry_id, "deleted": deleted}


@app.get("/referral-link/{referral_code}")
def referral_link(referral_code: str, conn: Connection = Depends(get_connection)):
    entry = get_entry_by_referral_code(conn, referral_code)
    if entry is None:
        raise EntryNotFoundException(f"Referral code not found: {referral_code}")
    return {
        "success": True,
        "referral_code": referral_code,
        "referral_link": referral_link_for(conn, entry),
    }


def process_postback(conn: Connection, referral_code: Optional[str], transaction_id: Optional[str]) -> dict:
    if not referral_code or not transaction_id:
        raise ValidationException(
            "Missing required parameters: referral_code (sub1) and transaction_id (tid) are required"
        )
    return record_conversion(conn, referral_code, transaction_id)


@app.get("/everflow-webhook")
def everflow_postback(
    request: Request,
    sub1: Optional[str] = None,
    tid: Optional[str] = None,
    transaction_id: Optional[str] = None,
    conn: Connection = Depends(get_connection),
):
    params = dict(request.query_params)
    logger.info("Received Everflow GET postback: %s", params)
    if "test_only" in params:
        return {
            "success": True,
            "message": "Test mode: GET webhook connectivity verified",
            "test_only": True,
            "params": params,
        }

    data = process_postback(conn, sub1, tid or transaction_id)
    if data["status"] == "credited":
        request.app.state.notifications.success("Referral conversion", sub1)
    return {"success": True, "message": "GET webhook processed successfully", "data": data}


@app.post("/everflow-webhook")
def everflow_postback_post(
    payload: ConversionPostback,
    request: Request,
    conn: Connection = Depends(get_connection),
):
    logger.info("Received Everflow POST postback: %s", payload.model_dump())
    if payload.test_only:
        return {
            "success": True,
            "message": "Test mode: POST webhook connectivity verified",
            "test_only": True,
            "payload": payload.model_dump(),
        }

    data = process_postback(conn, payload.referral_code, payload.transaction_id)
    if data["status"] == "credited":
        request.app.state.notifications.success("Referral conversion", payload.referral_code)
    return {"success": True, "message": "Webhook processed successfully", "data": data}


@app.post("/sync-to-sheets")
def sync_to_sheets(
    request: Request,
    payload: Optional[SheetsSyncRequest] = None,
    conn: Connection = Depends(get_connection),
):
    automated = payload.automated if payload else False
    try:
        result = sync_entries_to_sheet(conn, SheetsClient(), automated=automated)
    except SweepstakesException as e:
        request.app.state.notifications.error("Sheets sync failed", e.message)
        raise

    request.app.state.notifications.success("Sheets sync complete", result["message"])
    return {"success": True, **result}


@app.get("/beehiiv/subscriber")
def beehiiv_subscriber(email: str):
    subscriber = BeehiivClient().get_subscriber(email.strip().lower())
    return {"success": True, "exists": subscriber is not None, "data": subscriber}


@app.get("/admin/webhook-status")
def webhook_status(conn: Connection = Depends(get_connection)):
    conversions = conn.execute(
        select(func.count()).select_from(ReferralConversion.__table__)
    ).scalar_one()
    return {
        "success": True,
        "beehiiv_configured": bool(config.BEEHIIV_API_KEY),
        "sheets_configured": sheets_configured(),
        "referral_conversions": conversions,
        "last_sheets_sync": get_sync_metadata(conn),
    }


@app.get("/admin/stream")
async def admin_stream(request: Request):
    hub = request.app.state.notifications
    changed = asyncio.Event()
    loop = asyncio.get_running_loop()

    def on_change(_state):
        loop.call_soon_threadsafe(changed.set)

    def snapshot() -> str:
        return json.dumps(
            {
                "counts": get_entry_counts(),
                "notifications": [n.to_dict() for n in hub.notifications],
            }
        )

    async def event_generator():
        unsubscribe = hub.subscribe(on_change)
        try:
            last = snapshot()
            yield {"event": "state", "data": last}

            while True:
                if await request.is_disconnected():
                    break

                try:
                    await asyncio.wait_for(changed.wait(), timeout=1)
                except asyncio.TimeoutError:
                    pass
                changed.clear()

                current = snapshot()
                if current != last:
                    last = current
                    yield {"event": "state", "data": current}
        finally:
            unsubscribe()

    return EventSourceResponse(event_generator())


@app.get("/metrics")
async def metrics():
    update_pool_metrics()
    return get_metrics_response()


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    try:
        redis_client.ping()
    except Exception:
        raise HTTPException(status_code=503, detail="Redis not available")

    try:
        with engine.connect() as conn:
            conn.execute(Entry.__table__.select().limit(1))
    except Exception:
        raise HTTPException(status_code=503, detail="PostgreSQL not available")

    return {"status": "ready"}
