"""Database-backed scheduled tasks: the deferred-execution facility.

Producers insert a row with a `run_at`; the dispatcher's task runner claims
due rows, executes the registered handler and marks them done. Claiming uses
the same claim/requeue/mark shape as a transactional outbox, so several runner
processes can share the table safely.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, or_, select, update

from framecast.common.metrics import scheduled_tasks_oldest_due_age_seconds, scheduled_tasks_pending_total
from framecast.common.models import ScheduledTask


def schedule_task(db, kind: str, payload: dict, delay_seconds: int = 0) -> ScheduledTask:
    """Add one task row to the session; caller commits."""

    task = ScheduledTask(
        kind=kind,
        payload=payload,
        run_at=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
        status="PENDING",
        attempts=0,
    )
    db.add(task)
    return task


def claim_due_tasks(db, limit: int = 50, processing_timeout_seconds: int = 600) -> list[dict]:
    """Atomically claim due pending (or stale processing) tasks."""

    table = ScheduledTask.__table__
    now = datetime.now(timezone.utc)
    stale_before = now - timedelta(seconds=processing_timeout_seconds)
    claim_ids = (
        select(table.c.id)
        .where(
            or_(
                (table.c.status == "PENDING") & (table.c.run_at <= now),
                (table.c.status == "PROCESSING")
                & (table.c.started_at.is_not(None))
                & (table.c.started_at < stale_before),
            )
        )
        .order_by(table.c.run_at)
        .limit(limit)
        .with_for_update(skip_locked=True)
        .cte("claim_ids")
    )
    rows = db.execute(
        update(table)
        .where(table.c.id.in_(select(claim_ids.c.id)))
        .values(status="PROCESSING", started_at=now, attempts=table.c.attempts + 1)
        .returning(table.c.id, table.c.kind, table.c.payload, table.c.attempts)
    ).all()
    return [{"id": row.id, "kind": row.kind, "payload": row.payload, "attempts": row.attempts} for row in rows]


def mark_task_done(db, task_id: str) -> None:
    """Mark one claimed task as executed."""

    table = ScheduledTask.__table__
    db.execute(update(table).where(table.c.id == task_id, table.c.status == "PROCESSING").values(status="DONE"))


def requeue_task(db, task_id: str, delay_seconds: int = 0) -> None:
    """Return a claimed task to `PENDING`, due again after `delay_seconds`."""

    table = ScheduledTask.__table__
    db.execute(
        update(table)
        .where(table.c.id == task_id, table.c.status == "PROCESSING")
        .values(
            status="PENDING",
            started_at=None,
            run_at=datetime.now(timezone.utc) + timedelta(seconds=delay_seconds),
        )
    )


def mark_task_failed(db, task_id: str) -> None:
    """Park a claimed task whose payload can never run; it is not claimed again."""

    table = ScheduledTask.__table__
    db.execute(update(table).where(table.c.id == task_id, table.c.status == "PROCESSING").values(status="FAILED"))


def update_task_backlog_metrics(db, service_name: str) -> None:
    """Update gauges for pending task depth and how overdue the oldest one is."""

    table = ScheduledTask.__table__
    now = datetime.now(timezone.utc)
    pending_statuses = ("PENDING", "PROCESSING")
    pending_count = db.execute(
        select(func.count()).select_from(table).where(table.c.status.in_(pending_statuses))
    ).scalar_one()
    oldest_due = db.execute(
        select(func.min(table.c.run_at)).where(table.c.status == "PENDING", table.c.run_at <= now)
    ).scalar_one()
    age_seconds = 0.0
    if oldest_due is not None:
        if oldest_due.tzinfo is None:
            oldest_due = oldest_due.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (now - oldest_due).total_seconds())
    scheduled_tasks_pending_total.labels(service=service_name).set(float(pending_count))
    scheduled_tasks_oldest_due_age_seconds.labels(service=service_name).set(age_seconds)


class TaskScheduler:
    """Session-owning facade used by services that only need to enqueue work."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def schedule(self, kind: str, payload: dict, delay_seconds: int = 0) -> str:
        with self.session_factory() as db:
            task = schedule_task(db, kind, payload, delay_seconds)
            db.commit()
            return task.id
