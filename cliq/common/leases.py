"""Lease-based claim/release primitives for queue tables.

These helpers only touch the shared queue columns (`id`, `status`, `retries`,
`created_at`, `locked_by`, `locked_until`) so any table carrying them can be
drained by several workers at once. Every write is a single conditional
UPDATE; no row is read and then written back.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, or_, select, update

from cliq.common.metrics import delivery_oldest_pending_age_seconds, delivery_pending_total
from cliq.common.state_machine import FAILED, PENDING, PROCESSING, SENT, TERMINAL_STATUSES, sources_for


def _claimable(table, now: datetime):
    return or_(
        table.c.status == PENDING,
        (table.c.status == PROCESSING) & (table.c.locked_until < now),
    )


def claim_statement(queue_model, limit: int, holder: str, lease: timedelta, now: datetime):
    """Build the single UPDATE ... RETURNING that leases up to `limit` rows.

    Eligible means pending, or processing with a lease that ran out strictly
    before `now`. The id subquery takes row locks with SKIP LOCKED so a
    concurrent claimer skips rows another transaction is already leasing.
    """

    table = queue_model.__table__
    # Aliased so the subquery is not correlated to the UPDATE target.
    candidates = table.alias("claim_candidates")
    claim_ids = (
        select(candidates.c.id)
        .where(_claimable(candidates, now))
        .order_by(candidates.c.created_at, candidates.c.id)
        .limit(limit)
        .with_for_update(skip_locked=True)
    )
    return (
        update(table)
        .where(table.c.id.in_(claim_ids), _claimable(table, now))
        .values(status=PROCESSING, locked_by=holder, locked_until=now + lease)
        .returning(table.c.id)
    )


def claim_leased_batch(
    db,
    queue_model,
    limit: int,
    holder: str,
    lease: timedelta,
    now: datetime,
) -> list[str]:
    """Lease up to `limit` eligible rows to `holder`, oldest first."""

    rows = db.execute(claim_statement(queue_model, limit, holder, lease, now)).all()
    return [row.id for row in rows]


def _settle_guard(table, row_id: str, new_status: str, holder: str | None):
    guard = [table.c.id == row_id, table.c.status.in_(sources_for(new_status))]
    if holder is not None:
        guard.append(table.c.locked_by == holder)
    return guard


def complete_leased(db, queue_model, row_id: str, holder: str | None = None) -> bool:
    """Mark one leased row as sent; a second call matches nothing.

    With `holder`, the write only applies while that holder still owns the
    lease, so a worker reporting after its lease was reclaimed changes nothing.
    """

    table = queue_model.__table__
    result = db.execute(
        update(table)
        .where(*_settle_guard(table, row_id, SENT, holder))
        .values(status=SENT, locked_by=None, locked_until=None)
    )
    return result.rowcount > 0


def fail_leased(
    db,
    queue_model,
    row_id: str,
    max_retries: int,
    terminal: bool = False,
    holder: str | None = None,
) -> bool:
    """Count one failed attempt and release the lease.

    The row goes back to pending until `retries` reaches `max_retries`, then
    becomes failed. `terminal=True` fails it regardless of the count. `holder`
    guards the write the same way as in `complete_leased`.
    """

    table = queue_model.__table__
    if terminal:
        next_status = FAILED
    else:
        next_status = case((table.c.retries + 1 >= max_retries, FAILED), else_=PENDING)
    result = db.execute(
        update(table)
        .where(*_settle_guard(table, row_id, FAILED, holder))
        .values(
            retries=table.c.retries + 1,
            status=next_status,
            locked_by=None,
            locked_until=None,
        )
    )
    return result.rowcount > 0


def read_status(db, queue_model, row_id: str) -> str | None:
    table = queue_model.__table__
    return db.execute(select(table.c.status).where(table.c.id == row_id)).scalar_one_or_none()


def queue_backlog(db, queue_model) -> dict:
    """Count rows per status and find the oldest non-terminal row."""

    table = queue_model.__table__
    counts = {status: 0 for status in (PENDING, PROCESSING, SENT, FAILED)}
    for status, count in db.execute(select(table.c.status, func.count()).group_by(table.c.status)).all():
        counts[status] = count
    oldest = db.execute(
        select(func.min(table.c.created_at)).where(table.c.status.not_in(sorted(TERMINAL_STATUSES)))
    ).scalar_one()
    return {"counts": counts, "oldest_pending_created_at": oldest}


def update_backlog_metrics(db, queue_model, service_name: str) -> None:
    """Update service-level gauges for queue depth and oldest pending age."""

    backlog = queue_backlog(db, queue_model)
    now = datetime.now(timezone.utc)
    oldest_pending = backlog["oldest_pending_created_at"]
    age_seconds = 0.0
    if oldest_pending is not None:
        if oldest_pending.tzinfo is None:
            oldest_pending = oldest_pending.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (now - oldest_pending).total_seconds())
    pending_count = backlog["counts"][PENDING] + backlog["counts"][PROCESSING]
    delivery_pending_total.labels(service=service_name).set(float(pending_count))
    delivery_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
