# Overview: Service-layer operations for daily queue numbers.

from __future__ import annotations

from datetime import date

from sqlalchemy import update, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import QueueCounter


def _increment(queue_date: date) -> int | None:
    stmt = (
        update(QueueCounter)
        .where(QueueCounter.queue_date == queue_date)
        .values(last_number=QueueCounter.last_number + 1, updated_at=db.func.now())
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return db.session.execute(
        select(QueueCounter.last_number).where(QueueCounter.queue_date == queue_date)
    ).scalar_one()


def _ensure_counter_row(queue_date: date) -> None:
    """Insert the day's counter at zero if it is missing; tolerate a concurrent insert."""
    dialect = db.engine.dialect.name
    values = {"queue_date": queue_date, "last_number": 0}
    if dialect == "sqlite":
        db.session.execute(sqlite.insert(QueueCounter).values(**values).on_conflict_do_nothing())
    elif dialect == "postgresql":
        db.session.execute(postgresql.insert(QueueCounter).values(**values).on_conflict_do_nothing())
    else:
        try:
            with db.session.begin_nested():
                db.session.add(QueueCounter(**values))
        except IntegrityError:
            pass


def next_queue_number(queue_date: date) -> int:
    """
    Allocate the next queue number for a calendar day.

    Must run inside the caller's write transaction. The UPDATE takes the
    counter row lock and holds it until commit, which serializes checkouts
    for the day; a rollback gives the number back.
    """
    number = _increment(queue_date)
    if number is None:
        _ensure_counter_row(queue_date)
        number = _increment(queue_date)
        if number is None:
            raise RuntimeError(f"queue counter for {queue_date} could not be created")
    return number


def format_queue_number(number: int, width: int = 3) -> str:
    return str(number).zfill(width)


def current_queue_number(queue_date: date) -> int:
    counter = db.session.query(QueueCounter).filter_by(queue_date=queue_date).first()
    return counter.last_number if counter else 0


def purge_past_counters(today: date) -> int:
    """Housekeeping only. Never called on the assignment path."""
    deleted = (
        db.session.query(QueueCounter)
        .filter(QueueCounter.queue_date < today)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    return deleted
