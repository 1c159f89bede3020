"""Dequeue worker: claims leased batches and drives them through a push client.

Any number of these loops may run against the same database. Items a worker
claimed but never settled (crash, shutdown) become claimable again once their
lease expires, so stopping never waits for a batch to finish.
"""

import asyncio
import time

from cliq.common.config import QueueConfig
from cliq.common.logging import delivery_context, instance_id_ctx, logger
from cliq.common.metrics import delivery_failures_total, push_send_seconds, worker_loop_errors_total
from cliq.common.tracing import delivery_span
from cliq.services.notification.delivery import DeliveryClient, PermanentDeliveryError
from cliq.services.notification.schemas import ClaimedDelivery, build_push_message
from cliq.services.notification.service import QueueService
from cliq.services.subscriptions.store import SubscriptionStore


class DequeueWorker:
    """One supervised claim/send/settle loop per process."""

    def __init__(
        self,
        queue: QueueService,
        client: DeliveryClient,
        subscriptions: SubscriptionStore,
        config: QueueConfig,
        instance_id: str,
        service_name: str = "notification",
    ) -> None:
        self.queue = queue
        self.client = client
        self.subscriptions = subscriptions
        self.config = config
        self.instance_id = instance_id
        self.service_name = service_name
        self.backoff_seconds = config.backoff_initial_seconds
        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        self._stop.set()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run(self) -> None:
        """Loop until `request_stop()`; storage failures back off instead of raising."""

        instance_id_ctx.set(self.instance_id)
        logger.info("dequeue worker started batch_size=%s", self.config.batch_size)
        while not self.stopping:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                worker_loop_errors_total.labels(service=self.service_name).inc()
                delay = self.backoff_seconds
                self.backoff_seconds = min(self.backoff_seconds * 2, self.config.backoff_max_seconds)
                logger.exception("dequeue loop error backoff_s=%s error=%s", delay, exc)
                await self._sleep(delay)
                continue
            self.backoff_seconds = self.config.backoff_initial_seconds
            await self._sleep(self.config.idle_delay_seconds)
        logger.info("dequeue worker stopped")

    async def run_once(self) -> int:
        """Claim one batch and process it item by item; returns the batch size.

        Exceptions from the claim itself propagate to the loop. Exceptions
        while settling one item are logged and do not touch the rest.
        """

        if self.stopping:
            return 0
        batch = self.queue.claim(self.config.batch_size, self.instance_id)
        for position, item in enumerate(batch):
            if self.stopping:
                logger.info("stop requested, leaving %s claimed items to lease expiry", len(batch) - position)
                break
            try:
                await self._deliver(item)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("delivery settle error delivery_id=%s error=%s", item.delivery_id, exc)
        return len(batch)

    async def _deliver(self, item: ClaimedDelivery) -> None:
        with delivery_context(item.delivery_id, item.notification_id):
            with delivery_span(item.delivery_id, item.notification_id, item.endpoint, item.retries):
                await self._attempt(item)

    async def _attempt(self, item: ClaimedDelivery) -> None:
        if item.subscription is None:
            delivery_failures_total.labels(service=self.service_name, kind="missing_subscription").inc()
            logger.info("subscription gone before send, failing delivery")
            self.queue.mark_failed(item.delivery_id, permanent=True, holder=item.locked_by)
            return

        started = time.perf_counter()
        try:
            await self.client.send(item.subscription, build_push_message(item))
        except PermanentDeliveryError as exc:
            delivery_failures_total.labels(service=self.service_name, kind="permanent").inc()
            logger.info("push endpoint gone status_code=%s", exc.status_code)
            self.subscriptions.remove_subscription(exc.endpoint or item.endpoint)
            self.queue.mark_failed(item.delivery_id, permanent=True, holder=item.locked_by)
            return
        except Exception as exc:
            delivery_failures_total.labels(service=self.service_name, kind="transient").inc()
            logger.warning("push send failed retries=%s error=%s", item.retries, exc)
            self.queue.mark_failed(item.delivery_id, holder=item.locked_by)
            return
        finally:
            push_send_seconds.labels(service=self.service_name).observe(time.perf_counter() - started)
        self.queue.mark_sent(item.delivery_id, holder=item.locked_by)

    async def _sleep(self, seconds: float) -> None:
        """Sleep up to `seconds`, returning early once a stop is requested."""

        if self.stopping:
            return
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
