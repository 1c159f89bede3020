"""Notification service lifecycle and internal enqueue/subscription endpoints.

The app lifespan runs one dequeue worker; scale delivery by running more
processes against the same database.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query

from cliq.common.config import QueueConfig, resolve_instance_id, settings
from cliq.common.db import SessionLocal
from cliq.common.logging import configure_logging
from cliq.common.metrics import metrics_response
from cliq.common.startup import log_startup_config
from cliq.common.tracing import instrument_app, setup_tracing
from cliq.services.notification.delivery import WebPushDeliveryClient
from cliq.services.notification.schemas import (
    BacklogResponse,
    BulkEnqueueRequest,
    EnqueueRequest,
    SubscriptionRequest,
)
from cliq.services.notification.service import QueueService
from cliq.services.notification.worker import DequeueWorker
from cliq.services.subscriptions.store import SubscriptionStore

configure_logging()
instance_id = resolve_instance_id(settings.instance_id)
queue_config = QueueConfig.from_settings(settings)
setup_tracing(settings.service_name, instance_id)
log_startup_config(
    settings.service_name,
    instance_id,
    queue_config,
    ["SERVICE_NAME", "POSTGRES_DSN", "VAPID_SUBJECT", "VAPID_PRIVATE_KEY"],
)
subscription_store = SubscriptionStore(SessionLocal, service_name=settings.service_name)
queue_service = QueueService(SessionLocal, queue_config, subscription_store, service_name=settings.service_name)
worker = DequeueWorker(
    queue_service,
    WebPushDeliveryClient.from_settings(settings),
    subscription_store,
    queue_config,
    instance_id,
    service_name=settings.service_name,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the dequeue worker with FastAPI application lifecycle."""

    worker_task = asyncio.create_task(worker.run())
    yield
    worker.request_stop()
    await worker_task


app = FastAPI(title="Cliq Notification Service", lifespan=lifespan)
instrument_app(app)


def get_queue() -> QueueService:
    return queue_service


def get_subscriptions() -> SubscriptionStore:
    return subscription_store


@app.post("/internal/notifications", status_code=202)
def enqueue_notification(req: EnqueueRequest, queue: QueueService = Depends(get_queue)):
    """Queue one notification for every device of `user_id`."""

    notification_id = queue.enqueue(req.user_id, req.payload)
    return {"notification_id": notification_id}


@app.post("/internal/notifications/bulk", status_code=202)
def enqueue_bulk(req: BulkEnqueueRequest, queue: QueueService = Depends(get_queue)):
    """Queue the same notification for many users in one transaction."""

    with queue.session_factory() as db:
        notification_ids = queue.enqueue_bulk(db, req.user_ids, req.payload)
        db.commit()
    return {"notification_ids": notification_ids}


@app.post("/internal/users/{user_id}/subscriptions", status_code=201)
def store_subscription(
    user_id: str,
    req: SubscriptionRequest,
    subscriptions: SubscriptionStore = Depends(get_subscriptions),
):
    """Register a browser push subscription for `user_id`."""

    subscription = subscriptions.store_subscription(user_id, req.endpoint, req.p256dh, req.auth)
    return {"subscription_id": subscription.id}


@app.delete("/internal/subscriptions", status_code=204)
def remove_subscription(
    endpoint: str = Query(min_length=1),
    subscriptions: SubscriptionStore = Depends(get_subscriptions),
):
    """Drop a subscription by endpoint (e.g. the user turned notifications off)."""

    if not subscriptions.remove_subscription(endpoint):
        raise HTTPException(status_code=404, detail="subscription not found")


@app.get("/internal/deliveries/stats", response_model=BacklogResponse)
def delivery_stats(queue: QueueService = Depends(get_queue)):
    """Delivery counts per status and the oldest unfinished delivery."""

    return BacklogResponse(**queue.backlog())


@app.get("/internal/push/vapid-public-key")
def vapid_public_key():
    """Application server key browsers need to create a push subscription."""

    if not settings.vapid_public_key:
        raise HTTPException(status_code=503, detail="push not configured")
    return {"public_key": settings.vapid_public_key}


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True, "instance_id": instance_id}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
