"""Push delivery clients and their failure taxonomy.

A client's `send` returns normally on success and raises
`TransientDeliveryError` or `PermanentDeliveryError` otherwise. Permanent means
the provider says the endpoint no longer exists.
"""

import asyncio
from typing import Protocol

import requests
from pywebpush import WebPushException, webpush

from cliq.common.config import CommonSettings
from cliq.services.notification.schemas import PushMessage, SubscriptionDescriptor


GONE_STATUS_CODES = frozenset({404, 410})


class DeliveryError(Exception):
    """Base class for failed push attempts."""


class TransientDeliveryError(DeliveryError):
    """Provider or network failure worth retrying."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PermanentDeliveryError(DeliveryError):
    """The push endpoint is gone; retrying against it is pointless."""

    def __init__(self, endpoint: str, status_code: int | None = None) -> None:
        super().__init__(f"push endpoint gone status_code={status_code}")
        self.endpoint = endpoint
        self.status_code = status_code


class DeliveryClient(Protocol):
    async def send(self, subscription: SubscriptionDescriptor, message: PushMessage) -> None: ...


class WebPushDeliveryClient:
    """VAPID-signed Web Push sender backed by pywebpush.

    pywebpush is blocking, so each send runs in a worker thread.
    """

    def __init__(
        self,
        vapid_private_key: str,
        vapid_subject: str,
        ttl_seconds: int = 86400,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.vapid_private_key = vapid_private_key
        self.vapid_subject = vapid_subject
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, source: CommonSettings) -> "WebPushDeliveryClient":
        return cls(
            vapid_private_key=source.vapid_private_key,
            vapid_subject=source.vapid_subject,
            ttl_seconds=source.push_ttl_seconds,
        )

    async def send(self, subscription: SubscriptionDescriptor, message: PushMessage) -> None:
        await asyncio.to_thread(self._send_blocking, subscription, message.model_dump_json())

    def _send_blocking(self, subscription: SubscriptionDescriptor, data: str) -> None:
        try:
            webpush(
                subscription_info=subscription.as_subscription_info(),
                data=data,
                vapid_private_key=self.vapid_private_key,
                # pywebpush fills in `aud`/`exp` on the dict it is given.
                vapid_claims={"sub": self.vapid_subject},
                ttl=self.ttl_seconds,
                timeout=self.timeout_seconds,
            )
        except WebPushException as exc:
            status_code = exc.response.status_code if exc.response is not None else None
            if status_code in GONE_STATUS_CODES:
                raise PermanentDeliveryError(subscription.endpoint, status_code) from exc
            raise TransientDeliveryError(str(exc), status_code) from exc
        except requests.RequestException as exc:
            raise TransientDeliveryError(str(exc)) from exc
