"""Queue service behavior against a real (SQLite) database."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError

from conftest import as_utc, delivery_rows, notification_rows
from cliq.common.leases import claim_statement
from cliq.services.notification.models import Notification, NotificationDelivery
from cliq.services.subscriptions.models import PushSubscription


def test_enqueue_fans_out_to_every_subscription(queue, session_factory, add_subscription, payload):
    add_subscription("user-u")
    add_subscription("user-u")
    add_subscription("someone-else")

    notification_id = queue.enqueue("user-u", payload)

    notifications = notification_rows(session_factory)
    assert [n.id for n in notifications] == [notification_id]
    assert notifications[0].title == payload.title
    assert notifications[0].message == payload.body
    assert notifications[0].meta == payload.metadata
    assert notifications[0].navigate == "/friends"
    deliveries = delivery_rows(session_factory)
    assert len(deliveries) == 2
    assert {d.status for d in deliveries} == {"pending"}
    assert {d.retries for d in deliveries} == {0}
    assert all(d.notification_id == notification_id for d in deliveries)
    assert all(d.locked_by is None and d.locked_until is None for d in deliveries)


def test_enqueue_without_subscriptions_keeps_notification(queue, session_factory, payload):
    queue.enqueue("lonely-user", payload)

    assert len(notification_rows(session_factory)) == 1
    assert delivery_rows(session_factory) == []


def test_enqueue_rolls_back_everything_on_failure(queue, session_factory, add_subscription, payload, monkeypatch):
    add_subscription("user-u")

    def dangling_lookup(db, user_ids):
        # Delivery insert hits the subscription foreign key after the
        # notification row is already flushed.
        return [PushSubscription(id="ghost", user_id="user-u", endpoint="https://push.example.com/x", p256dh="k", auth="a")]

    monkeypatch.setattr(queue.subscriptions, "subscriptions_for_users", dangling_lookup)

    with pytest.raises(SQLAlchemyError):
        queue.enqueue("user-u", payload)

    assert notification_rows(session_factory) == []
    assert delivery_rows(session_factory) == []


def test_enqueue_bulk_one_notification_per_user(queue, session_factory, add_subscription, payload):
    user_ids = [f"user-{i}" for i in range(5)]
    for user_id in user_ids:
        add_subscription(user_id)

    with session_factory() as db:
        notification_ids = queue.enqueue_bulk(db, user_ids, payload)
        db.commit()

    notifications = notification_rows(session_factory)
    deliveries = delivery_rows(session_factory)
    assert len(notification_ids) == 5
    assert sorted(n.user_id for n in notifications) == sorted(user_ids)
    assert len(deliveries) == 5
    assert {d.status for d in deliveries} == {"pending"}
    by_notification = {n.id: n.user_id for n in notifications}
    with session_factory() as db:
        owners = dict(db.execute(select(Notification.id, Notification.user_id)).all())
    assert owners == by_notification


def test_enqueue_bulk_empty_is_noop(queue, session_factory, payload):
    with session_factory() as db:
        assert queue.enqueue_bulk(db, [], payload) == []
        assert not db.new
        db.commit()

    assert notification_rows(session_factory) == []


def test_enqueue_bulk_deduplicates_users(queue, session_factory, add_subscription, payload):
    add_subscription("user-a")

    with session_factory() as db:
        queue.enqueue_bulk(db, ["user-a", "user-a"], payload)
        db.commit()

    assert len(notification_rows(session_factory)) == 1
    assert len(delivery_rows(session_factory)) == 1


def test_enqueue_bulk_follows_caller_rollback(queue, session_factory, add_subscription, payload):
    add_subscription("user-a")
    add_subscription("user-b")

    with session_factory() as db:
        queue.enqueue_bulk(db, ["user-a", "user-b"], payload)
        db.rollback()

    assert notification_rows(session_factory) == []
    assert delivery_rows(session_factory) == []


def test_claim_leases_rows_to_instance(queue, clock, session_factory, add_subscription, payload):
    subscription = add_subscription("user-u")
    queue.enqueue("user-u", payload)

    claimed = queue.claim(10, "worker-a")

    assert len(claimed) == 1
    item = claimed[0]
    assert item.locked_by == "worker-a"
    assert item.title == payload.title
    assert item.body == payload.body
    assert item.endpoint == subscription.endpoint
    assert item.subscription is not None
    assert item.subscription.p256dh == subscription.p256dh
    [row] = delivery_rows(session_factory)
    assert row.status == "processing"
    assert row.locked_by == "worker-a"
    assert as_utc(row.locked_until) == clock.now + timedelta(seconds=60)


def test_claim_returns_empty_when_nothing_available(queue):
    assert queue.claim(10, "worker-a") == []


def test_leased_rows_are_invisible_to_other_workers(queue, clock, add_subscription, payload):
    add_subscription("user-u")
    queue.enqueue("user-u", payload)
    [first] = queue.claim(10, "worker-a")

    clock.advance(seconds=59)
    assert queue.claim(10, "worker-b") == []

    # Reclaimable only once now is strictly past locked_until.
    clock.advance(seconds=1)
    assert queue.claim(10, "worker-b") == []

    clock.advance(microseconds=1)
    [reclaimed] = queue.claim(10, "worker-b")
    assert reclaimed.delivery_id == first.delivery_id
    assert reclaimed.locked_by == "worker-b"


def test_late_report_from_expired_holder_is_ignored(queue, clock, session_factory, add_subscription, payload):
    add_subscription("user-u")
    queue.enqueue("user-u", payload)
    [stale] = queue.claim(10, "worker-a")
    clock.advance(seconds=61)
    [current] = queue.claim(10, "worker-b")

    assert queue.mark_failed(stale.delivery_id, holder=stale.locked_by) is False
    assert queue.mark_sent(stale.delivery_id, holder=stale.locked_by) is False

    [row] = delivery_rows(session_factory)
    assert (row.status, row.retries, row.locked_by) == ("processing", 0, "worker-b")
    clock.advance(seconds=1)
    assert queue.claim(10, "worker-c") == []

    assert queue.mark_sent(current.delivery_id, holder=current.locked_by) is True
    [row] = delivery_rows(session_factory)
    assert row.status == "sent"


def test_claim_statement_locks_with_skip_locked_on_postgres(clock):
    statement = claim_statement(NotificationDelivery, 10, "worker-a", timedelta(seconds=60), clock())

    sql = str(statement.compile(dialect=postgresql.dialect()))

    assert "FOR UPDATE SKIP LOCKED" in sql
    assert "RETURNING notification_delivery.id" in sql
    assert "ORDER BY claim_candidates.created_at, claim_candidates.id" in sql


def test_claim_respects_batch_size_and_age_order(queue, clock, session_factory, add_subscription, payload):
    add_subscription("user-u")
    for _ in range(4):
        queue.enqueue("user-u", payload)
        clock.advance(seconds=1)

    first_batch = queue.claim(3, "worker-a")
    second_batch = queue.claim(3, "worker-a")

    assert len(first_batch) == 3
    assert len(second_batch) == 1
    created = [as_utc(item.created_at) for item in first_batch]
    assert created == sorted(created)
    assert max(created) < as_utc(second_batch[0].created_at)


def test_mark_sent_is_idempotent(queue, session_factory, add_subscription, payload):
    add_subscription("user-u")
    queue.enqueue("user-u", payload)
    [item] = queue.claim(10, "worker-a")

    assert queue.mark_sent(item.delivery_id) is True
    assert queue.mark_sent(item.delivery_id) is False

    [row] = delivery_rows(session_factory)
    assert row.status == "sent"
    assert row.locked_by is None
    assert row.locked_until is None
    assert queue.claim(10, "worker-a") == []


def test_mark_unknown_delivery_is_noop(queue):
    assert queue.mark_sent("missing") is False
    assert queue.mark_failed("missing") is False


def test_retries_exhaust_into_terminal_failure(queue, session_factory, add_subscription, payload):
    add_subscription("user-u")
    queue.enqueue("user-u", payload)

    for attempt in range(1, 4):
        [item] = queue.claim(10, "worker-a")
        assert item.retries == attempt - 1
        queue.mark_failed(item.delivery_id)
        [row] = delivery_rows(session_factory)
        assert row.retries == attempt
        assert row.locked_by is None

    [row] = delivery_rows(session_factory)
    assert row.status == "failed"
    assert queue.claim(10, "worker-a") == []
    assert queue.mark_failed(row.id) is False


def test_permanent_failure_skips_retry_budget(queue, session_factory, add_subscription, payload):
    add_subscription("user-u")
    queue.enqueue("user-u", payload)
    [item] = queue.claim(10, "worker-a")

    queue.mark_failed(item.delivery_id, permanent=True)

    [row] = delivery_rows(session_factory)
    assert row.status == "failed"
    assert row.retries == 1
    assert queue.claim(10, "worker-a") == []


def test_removed_subscription_keeps_delivery_snapshot(queue, store, session_factory, add_subscription, payload):
    subscription = add_subscription("user-u")
    queue.enqueue("user-u", payload)

    assert store.remove_subscription(subscription.endpoint) is True

    [row] = delivery_rows(session_factory)
    assert row.subscription_id is None
    assert row.endpoint_snapshot == subscription.endpoint
    [item] = queue.claim(10, "worker-a")
    assert item.subscription is None
    assert item.endpoint == subscription.endpoint


def test_end_to_end_two_devices(queue, clock, session_factory, add_subscription, payload):
    add_subscription("user-u")
    add_subscription("user-u")
    queue.enqueue("user-u", payload)
    with session_factory() as db:
        assert db.execute(select(func.count()).select_from(Notification)).scalar_one() == 1

    claimed = queue.claim(10, "instance-1")
    assert len(claimed) == 2
    for row in delivery_rows(session_factory):
        assert row.status == "processing"
        assert row.locked_by == "instance-1"
        assert as_utc(row.locked_until) == clock.now + timedelta(seconds=60)

    ok, flaky = claimed
    queue.mark_sent(ok.delivery_id)
    queue.mark_failed(flaky.delivery_id)

    with session_factory() as db:
        assert db.get(NotificationDelivery, ok.delivery_id).status == "sent"
        flaky_row = db.get(NotificationDelivery, flaky.delivery_id)
        assert (flaky_row.status, flaky_row.retries) == ("pending", 1)

    for expected_retries in (2, 3):
        [again] = queue.claim(10, "instance-1")
        assert again.delivery_id == flaky.delivery_id
        queue.mark_failed(again.delivery_id)
        with session_factory() as db:
            assert db.get(NotificationDelivery, flaky.delivery_id).retries == expected_retries

    with session_factory() as db:
        assert db.get(NotificationDelivery, flaky.delivery_id).status == "failed"
    clock.advance(minutes=10)
    assert queue.claim(10, "instance-1") == []


def test_backlog_counts_by_status(queue, add_subscription, payload):
    add_subscription("user-u")
    add_subscription("user-u")
    queue.enqueue("user-u", payload)
    first, _ = queue.claim(10, "worker-a")
    queue.mark_sent(first.delivery_id)

    backlog = queue.backlog()

    assert backlog["counts"] == {"pending": 0, "processing": 1, "sent": 1, "failed": 0}
    assert backlog["oldest_pending_created_at"] is not None
