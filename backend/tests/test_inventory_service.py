"""
Inventory ledger tests.

Verifies:
- Reservations are all-or-nothing and lock products in id order
- Stock never goes negative
- Alerts fire only on the decrement that crosses a threshold
- Restore and the read-only cart check
"""

import pytest

from orderdesk.errors import InsufficientStock
from orderdesk.extensions import db
from orderdesk.models import Product
from orderdesk.services import inventory_service
from orderdesk.services.inventory_service import CartItem, OUT_OF_STOCK, LOW_STOCK

from conftest import make_product


def stock_of(product_id):
    return db.session.get(Product, product_id).stock


class TestReserve:

    def test_decrements_every_line_and_collapses_duplicates(self, db_session):
        a = make_product("Es Teh", 5000, 10)
        b = make_product("Mie Ayam", 18000, 4)

        result = inventory_service.reserve([
            CartItem(b.id, 1),
            CartItem(a.id, 2),
            CartItem(a.id, 1),
        ])
        db.session.commit()

        assert [line.product.id for line in result.lines] == sorted([a.id, b.id])
        assert result.total_items == 4
        assert result.subtotal_cents == 3 * 5000 + 18000
        assert stock_of(a.id) == 7
        assert stock_of(b.id) == 3

    def test_one_short_line_aborts_the_whole_cart(self, db_session):
        a = make_product("Es Teh", 5000, 10)
        b = make_product("Mie Ayam", 18000, 1)

        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve([CartItem(a.id, 2), CartItem(b.id, 2)])
        db.session.rollback()

        assert exc.value.product_id == b.id
        assert exc.value.details["reason"] == "insufficient"
        assert exc.value.details["available"] == 1
        assert stock_of(a.id) == 10
        assert stock_of(b.id) == 1

    def test_closed_product_is_rejected(self, db_session):
        p = make_product("Sate", 25000, 10, closed=True)

        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve([CartItem(p.id, 1)])

        assert exc.value.reason == "closed"

    def test_unknown_product_is_rejected(self, db_session):
        with pytest.raises(InsufficientStock) as exc:
            inventory_service.reserve([CartItem(9999, 1)])

        assert exc.value.reason == "not_found"

    def test_exact_stock_can_be_sold_out(self, db_session):
        p = make_product("Bakso", 15000, 3)

        inventory_service.reserve([CartItem(p.id, 3)])
        db.session.commit()

        assert stock_of(p.id) == 0


class TestStockAlerts:

    def test_low_stock_only_when_threshold_is_crossed(self, db_session):
        p = make_product("Kopi", 8000, 21)

        first = inventory_service.reserve([CartItem(p.id, 1)])
        alerts = inventory_service.stock_alerts(first, low_stock_threshold=20)
        db.session.commit()
        assert [(a.kind, a.stock) for a in alerts] == [(LOW_STOCK, 20)]

        second = inventory_service.reserve([CartItem(p.id, 1)])
        assert inventory_service.stock_alerts(second, low_stock_threshold=20) == []

    def test_out_of_stock_replaces_low_stock(self, db_session):
        p = make_product("Kopi", 8000, 2)

        result = inventory_service.reserve([CartItem(p.id, 2)])
        alerts = inventory_service.stock_alerts(result, low_stock_threshold=20)

        assert [a.kind for a in alerts] == [OUT_OF_STOCK]


class TestRestore:

    def test_restore_adds_back_quantities(self, db_session):
        a = make_product("Es Teh", 5000, 1)
        b = make_product("Mie Ayam", 18000, 0)

        restored = inventory_service.restore([(a.id, 2), (b.id, 1), (a.id, 1)])
        db.session.commit()

        assert restored == 4
        assert stock_of(a.id) == 4
        assert stock_of(b.id) == 1

    def test_missing_products_are_skipped(self, db_session):
        a = make_product("Es Teh", 5000, 1)

        restored = inventory_service.restore([(a.id, 1), (424242, 5)])
        db.session.commit()

        assert restored == 1
        assert stock_of(a.id) == 2


class TestValidateCart:

    def test_reports_each_problem_without_touching_stock(self, db_session):
        ok = make_product("Es Teh", 5000, 10)
        short = make_product("Mie Ayam", 18000, 2)
        empty = make_product("Bakso", 15000, 0)
        closed = make_product("Sate", 25000, 5, closed=True)

        issues = inventory_service.validate_cart([
            CartItem(ok.id, 1),
            CartItem(short.id, 3),
            CartItem(empty.id, 1),
            CartItem(closed.id, 1),
            CartItem(777, 1),
        ])

        by_product = {i["product_id"]: i for i in issues}
        assert ok.id not in by_product
        assert by_product[short.id]["issue"] == "insufficient"
        assert by_product[short.id]["available"] == 2
        assert by_product[empty.id]["issue"] == "out_of_stock"
        assert by_product[closed.id]["issue"] == "closed"
        assert by_product[777]["issue"] == "not_found"
        assert stock_of(short.id) == 2
