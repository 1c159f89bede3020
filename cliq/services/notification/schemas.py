"""Payload, claim and wire schemas for the notification queue."""

from datetime import datetime

from pydantic import BaseModel, Field


class NotificationPayload(BaseModel):
    """Flat notification content produced by the formatting layer."""

    title: str
    body: str
    metadata: str | None = None
    navigate_target: str | None = None
    app_badge: int | None = Field(default=None, ge=0)


class SubscriptionDescriptor(BaseModel):
    """Everything a push transport needs to address one device."""

    subscription_id: str
    endpoint: str
    p256dh: str
    auth: str
    user_id: str | None = None

    def as_subscription_info(self) -> dict:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


class ClaimedDelivery(BaseModel):
    """A leased delivery joined with its notification and subscription snapshot."""

    delivery_id: str
    notification_id: str
    endpoint: str
    retries: int
    created_at: datetime
    locked_by: str
    locked_until: datetime
    user_id: str | None
    title: str
    body: str
    metadata: str | None = None
    navigate_target: str | None = None
    app_badge: int | None = None
    # None when the subscription row was removed after enqueue.
    subscription: SubscriptionDescriptor | None = None


class PushNotificationData(BaseModel):
    url: str = "/"


class PushNotificationBody(BaseModel):
    title: str
    body: str
    data: PushNotificationData
    app_badge: int


class PushMessage(BaseModel):
    """Outbound JSON document handed to the push provider."""

    notification: PushNotificationBody


def build_push_message(item: ClaimedDelivery) -> PushMessage:
    """Render a claimed delivery into the provider wire shape."""

    return PushMessage(
        notification=PushNotificationBody(
            title=item.title,
            body=item.body,
            data=PushNotificationData(url=item.navigate_target or "/"),
            app_badge=item.app_badge if item.app_badge is not None else 1,
        )
    )


class EnqueueRequest(BaseModel):
    """Body of `POST /internal/notifications`."""

    user_id: str = Field(min_length=1)
    payload: NotificationPayload


class BulkEnqueueRequest(BaseModel):
    """Body of `POST /internal/notifications/bulk`."""

    user_ids: list[str]
    payload: NotificationPayload


class SubscriptionRequest(BaseModel):
    """Browser `PushSubscription` registration body."""

    endpoint: str = Field(min_length=1)
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class BacklogResponse(BaseModel):
    counts: dict[str, int]
    oldest_pending_created_at: datetime | None = None
