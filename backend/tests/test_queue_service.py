"""Daily queue number allocation."""

from datetime import date

from orderdesk.extensions import db
from orderdesk.models import QueueCounter
from orderdesk.services import queue_service


def test_numbers_are_sequential_per_day(db_session):
    day = date(2026, 10, 19)

    numbers = [queue_service.next_queue_number(day) for _ in range(3)]
    db.session.commit()

    assert numbers == [1, 2, 3]
    assert queue_service.current_queue_number(day) == 3


def test_each_day_starts_at_one(db_session):
    queue_service.next_queue_number(date(2026, 10, 19))
    queue_service.next_queue_number(date(2026, 10, 19))
    first_of_next_day = queue_service.next_queue_number(date(2026, 10, 20))
    db.session.commit()

    assert first_of_next_day == 1


def test_rolled_back_allocation_is_not_consumed(db_session):
    day = date(2026, 10, 19)
    queue_service.next_queue_number(day)
    db.session.commit()

    queue_service.next_queue_number(day)
    db.session.rollback()

    assert queue_service.next_queue_number(day) == 2


def test_format_pads_to_width():
    assert queue_service.format_queue_number(7) == "007"
    assert queue_service.format_queue_number(42, width=4) == "0042"
    assert queue_service.format_queue_number(1234) == "1234"


def test_purge_removes_only_past_days(db_session):
    for day in (date(2026, 10, 17), date(2026, 10, 18), date(2026, 10, 19)):
        queue_service.next_queue_number(day)
    db.session.commit()

    deleted = queue_service.purge_past_counters(date(2026, 10, 19))

    assert deleted == 2
    remaining = [c.queue_date for c in db.session.query(QueueCounter).all()]
    assert remaining == [date(2026, 10, 19)]
