"""Host demo: FastAPI backend exposing the factsync telemetry API."""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from factsync import AnalyticsEvent, FeedbackEvent, RemoteSinkClient, SinkConfig, SyncConfig, TelemetryService
from factsync.adapters import SQLAlchemyKeyValueStore
from factsync.errors import ConfigurationError, QueueWriteError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DB_URL = "sqlite:///factsync-demo.db"

engine = create_engine(DB_URL)
store = SQLAlchemyKeyValueStore(sessionmaker(bind=engine))
store.ensure_schema()

try:
    sink: Optional[RemoteSinkClient] = RemoteSinkClient(SinkConfig.from_env())
except ConfigurationError as exc:
    logger.warning("Remote sink not configured, events will stay queued: %s", exc)
    sink = None

service = TelemetryService(store, SyncConfig.from_env(), sink=sink)
app = FastAPI(title="factsync host demo", version="0.1.0")


class FactCheckIn(BaseModel):
    domain: str = "unknown"
    text_length: int = 0
    query_length: int = 0
    model: str = "unknown"
    rating: Optional[int] = None
    search_used: bool = False
    is_credible_source: bool = False
    is_fact_check_source: bool = False


class FeedbackIn(BaseModel):
    rating: str
    analytics_id: Optional[str] = None
    domain: str = "unknown"


class ConsentIn(BaseModel):
    share_analytics: bool


@app.on_event("startup")
def startup() -> None:
    service.start()


@app.on_event("shutdown")
def shutdown() -> None:
    service.shutdown(timeout=30)


@app.get("/health")
def health() -> dict:
    return {"status": "ok", "demo": "factsync-host"}


@app.post("/api/fact-checks")
def record_fact_check(payload: FactCheckIn) -> dict:
    try:
        event = AnalyticsEvent(**payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    try:
        triggered = service.record_fact_check(event)
    except QueueWriteError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"success": True, "syncTriggered": triggered is not None}


@app.post("/api/feedback")
def record_feedback(payload: FeedbackIn) -> dict:
    try:
        event = FeedbackEvent(**payload.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    try:
        service.record_feedback(event)
    except QueueWriteError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return {"success": True}


@app.put("/api/settings/consent")
def set_consent(payload: ConsentIn) -> dict:
    store.set({"shareAnalytics": payload.share_analytics})
    return {"shareAnalytics": payload.share_analytics}


@app.post("/api/sync")
def force_sync() -> dict:
    return service.force_sync_now()


@app.get("/api/sync/status")
def sync_status() -> dict:
    return service.get_sync_status()


@app.get("/api/sync/connection")
def sync_connection() -> dict:
    return service.test_connection()


@app.get("/api/stats")
def stats() -> dict:
    return service.get_usage_summary()


@app.delete("/api/data")
def clear_data() -> dict:
    service.clear_stored_data()
    return {"success": True}
