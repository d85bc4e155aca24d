"""
Scheduled job commands.
"""

from datetime import date

from orderdesk.extensions import db
from orderdesk.models import QueueCounter, Setting
from orderdesk.services import queue_service

from conftest import make_product, place_order


def test_sweep_expired_reports_counts(app, db_session):
    p = make_product()
    place_order(p.id, payment_method="gateway")

    result = app.test_cli_runner().invoke(args=["orders", "sweep-expired"])

    assert result.exit_code == 0
    assert "Examined 0, cancelled 0" in result.output


def test_check_pending(app, db_session, fake_gateway):
    p = make_product()
    order = place_order(p.id, payment_method="gateway").order
    fake_gateway.set_status(order.gateway_reference, "settlement")

    result = app.test_cli_runner().invoke(args=["payments", "check-pending", "--max-age-hours", "1"])

    assert result.exit_code == 0
    assert "Checked 1, updated 1, failed 0." in result.output


def test_purge_counters(app, db_session):
    queue_service.next_queue_number(date(2020, 1, 1))
    db.session.commit()

    result = app.test_cli_runner().invoke(args=["queue", "purge-counters"])

    assert result.exit_code == 0
    assert db.session.query(QueueCounter).count() == 0


def test_seed_settings(app, db_session):
    result = app.test_cli_runner().invoke(args=["system", "seed-settings"])

    assert result.exit_code == 0
    assert db.session.query(Setting).filter_by(key="tax_percentage").count() == 1
