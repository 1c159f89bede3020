"""Durable push notification queue.

Owns the `notification` / `notification_delivery` tables: fan-out at enqueue
time, lease-based batch claims for workers, and outcome bookkeeping. Claims and
outcome writes are single conditional UPDATEs, so any number of worker
processes can share the tables without further coordination.
"""

from collections import defaultdict
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select

from cliq.common.config import QueueConfig
from cliq.common.leases import (
    claim_leased_batch,
    complete_leased,
    fail_leased,
    queue_backlog,
    read_status,
    update_backlog_metrics,
)
from cliq.common.logging import logger
from cliq.common.metrics import (
    deliveries_claimed_total,
    deliveries_dead_total,
    deliveries_enqueued_total,
    deliveries_sent_total,
    notifications_enqueued_total,
)
from cliq.common.state_machine import FAILED, PENDING
from cliq.services.notification.models import Notification, NotificationDelivery
from cliq.services.notification.schemas import ClaimedDelivery, NotificationPayload, SubscriptionDescriptor
from cliq.services.subscriptions.models import PushSubscription
from cliq.services.subscriptions.store import SubscriptionStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QueueService:
    """Enqueue, claim and settle push deliveries."""

    def __init__(
        self,
        session_factory,
        config: QueueConfig,
        subscriptions: SubscriptionStore,
        service_name: str = "notification",
        clock=utc_now,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.subscriptions = subscriptions
        self.service_name = service_name
        self.clock = clock

    def enqueue(self, user_id: str, payload: NotificationPayload) -> str:
        """Persist one notification for `user_id` and fan it out, all or nothing.

        Returns the notification id. A user without subscriptions still gets
        the notification row, just no deliveries. Storage errors propagate
        after the session rolls back.
        """

        with self.session_factory() as db:
            notification_ids = self.enqueue_bulk(db, [user_id], payload)
            db.commit()
        return notification_ids[0]

    def enqueue_bulk(self, db, user_ids: list[str], payload: NotificationPayload) -> list[str]:
        """Fan one payload out to many users on the caller's session.

        The caller owns the transaction: nothing here commits or rolls back,
        so the fan-out lands or disappears together with the caller's writes.
        """

        unique_user_ids = list(dict.fromkeys(user_ids))
        if not unique_user_ids:
            logger.debug("bulk enqueue skipped: no recipients")
            return []

        now = self.clock()
        subscriptions_by_user: dict[str, list[PushSubscription]] = defaultdict(list)
        for subscription in self.subscriptions.subscriptions_for_users(db, unique_user_ids):
            subscriptions_by_user[subscription.user_id].append(subscription)

        notifications = [
            Notification(
                id=str(uuid4()),
                user_id=user_id,
                title=payload.title,
                message=payload.body,
                meta=payload.metadata,
                navigate=payload.navigate_target,
                app_badge=payload.app_badge,
                created_at=now,
            )
            for user_id in unique_user_ids
        ]
        db.add_all(notifications)
        db.flush()

        deliveries = [
            NotificationDelivery(
                id=str(uuid4()),
                notification_id=notification.id,
                subscription_id=subscription.id,
                endpoint_snapshot=subscription.endpoint,
                status=PENDING,
                retries=0,
                created_at=now,
            )
            for notification in notifications
            for subscription in subscriptions_by_user[notification.user_id]
        ]
        db.add_all(deliveries)
        db.flush()

        notifications_enqueued_total.labels(service=self.service_name).inc(len(notifications))
        deliveries_enqueued_total.labels(service=self.service_name).inc(len(deliveries))
        logger.info(
            "notifications enqueued users=%s deliveries=%s",
            len(notifications),
            len(deliveries),
        )
        return [notification.id for notification in notifications]

    def claim(self, batch_size: int, instance_id: str) -> list[ClaimedDelivery]:
        """Lease up to `batch_size` deliveries to `instance_id`, oldest first.

        Returns an empty list when nothing is eligible.
        """

        now = self.clock()
        lease_until = now + self.config.lease_duration
        with self.session_factory() as db:
            claimed_ids = claim_leased_batch(
                db,
                NotificationDelivery,
                limit=batch_size,
                holder=instance_id,
                lease=self.config.lease_duration,
                now=now,
            )
            if not claimed_ids:
                update_backlog_metrics(db, NotificationDelivery, self.service_name)
                db.commit()
                return []
            rows = db.execute(
                select(NotificationDelivery, Notification, PushSubscription)
                .join(Notification, NotificationDelivery.notification_id == Notification.id)
                .outerjoin(PushSubscription, NotificationDelivery.subscription_id == PushSubscription.id)
                .where(NotificationDelivery.id.in_(claimed_ids))
                .order_by(NotificationDelivery.created_at, NotificationDelivery.id)
            ).all()
            update_backlog_metrics(db, NotificationDelivery, self.service_name)
            db.commit()

        deliveries_claimed_total.labels(service=self.service_name).inc(len(rows))
        return [
            self._snapshot(delivery, notification, subscription, instance_id, lease_until)
            for delivery, notification, subscription in rows
        ]

    def _snapshot(self, delivery, notification, subscription, instance_id: str, lease_until: datetime) -> ClaimedDelivery:
        descriptor = None
        if subscription is not None:
            descriptor = SubscriptionDescriptor(
                subscription_id=subscription.id,
                endpoint=subscription.endpoint,
                p256dh=subscription.p256dh,
                auth=subscription.auth,
                user_id=subscription.user_id,
            )
        return ClaimedDelivery(
            delivery_id=delivery.id,
            notification_id=notification.id,
            endpoint=delivery.endpoint_snapshot,
            retries=delivery.retries,
            created_at=delivery.created_at,
            locked_by=instance_id,
            locked_until=lease_until,
            user_id=notification.user_id,
            title=notification.title,
            body=notification.message,
            metadata=notification.meta,
            navigate_target=notification.navigate,
            app_badge=notification.app_badge,
            subscription=descriptor,
        )

    def mark_sent(self, delivery_id: str, holder: str | None = None) -> bool:
        """Record a successful send. Repeated calls are harmless no-ops.

        Pass `holder` (the claiming instance) so a report arriving after the
        lease moved to another worker is ignored.
        """

        with self.session_factory() as db:
            updated = complete_leased(db, NotificationDelivery, delivery_id, holder=holder)
            db.commit()
        if updated:
            deliveries_sent_total.labels(service=self.service_name).inc()
        return updated

    def mark_failed(self, delivery_id: str, permanent: bool = False, holder: str | None = None) -> bool:
        """Record a failed attempt.

        The delivery returns to pending until it has failed `max_retries`
        times, then becomes failed for good. `permanent=True` (dead endpoint)
        fails it immediately. `holder` works as in `mark_sent`.
        """

        with self.session_factory() as db:
            updated = fail_leased(
                db,
                NotificationDelivery,
                delivery_id,
                max_retries=self.config.max_retries,
                terminal=permanent,
                holder=holder,
            )
            status = read_status(db, NotificationDelivery, delivery_id) if updated else None
            db.commit()
        if status == FAILED:
            deliveries_dead_total.labels(service=self.service_name).inc()
            logger.warning("delivery failed permanently delivery_id=%s permanent=%s", delivery_id, permanent)
        return updated

    def backlog(self) -> dict:
        """Per-status delivery counts plus the oldest non-terminal creation time."""

        with self.session_factory() as db:
            return queue_backlog(db, NotificationDelivery)
