"""Subscription store: register, look up and drop device push endpoints."""

from urllib.parse import urlsplit

from sqlalchemy import delete, select

from cliq.common.logging import logger
from cliq.common.metrics import subscriptions_removed_total
from cliq.services.subscriptions.models import PushSubscription


class SubscriptionStore:
    """Thin data-access layer over `push_subscriptions`."""

    def __init__(self, session_factory, service_name: str = "notification") -> None:
        self.session_factory = session_factory
        self.service_name = service_name

    def store_subscription(self, user_id: str, endpoint: str, p256dh: str, auth: str) -> PushSubscription:
        """Register an endpoint for `user_id`.

        Endpoints are unique; re-registering one (new keys, or a device that
        changed hands) updates the existing row in place.
        """

        if not endpoint:
            raise ValueError("endpoint is required")
        with self.session_factory() as db:
            subscription = db.execute(
                select(PushSubscription).where(PushSubscription.endpoint == endpoint)
            ).scalar_one_or_none()
            if subscription is None:
                subscription = PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=p256dh, auth=auth)
                db.add(subscription)
            else:
                subscription.user_id = user_id
                subscription.p256dh = p256dh
                subscription.auth = auth
            db.commit()
            return subscription

    def subscriptions_for_users(self, db, user_ids: list[str]) -> list[PushSubscription]:
        """All subscriptions owned by any of `user_ids`, in one query, on the caller's session."""

        if not user_ids:
            return []
        return list(
            db.execute(
                select(PushSubscription)
                .where(PushSubscription.user_id.in_(user_ids))
                .order_by(PushSubscription.created_at, PushSubscription.id)
            ).scalars()
        )

    def remove_subscription(self, endpoint: str) -> bool:
        """Delete the subscription for `endpoint`; unknown endpoints are a no-op."""

        if not endpoint:
            raise ValueError("endpoint is required")
        with self.session_factory() as db:
            result = db.execute(delete(PushSubscription).where(PushSubscription.endpoint == endpoint))
            db.commit()
        removed = result.rowcount > 0
        if removed:
            subscriptions_removed_total.labels(service=self.service_name).inc()
            logger.info("push subscription removed endpoint_host=%s", _host(endpoint))
        return removed


def _host(endpoint: str) -> str:
    # Endpoint paths are capability URLs; only the push service host is logged.
    return urlsplit(endpoint).netloc or endpoint
