import pytest

from tillpoint.errors import DrawerAlreadyOpen, InvalidInput, NoOpenDrawer
from tillpoint.extensions import db
from tillpoint.models import CashDrawer
from tillpoint.services import cancellation_service, checkout_service, drawer_service

from conftest import CASHIER_ID, MANAGER_ID


def test_reconciliation_example(product_a, open_drawer):
    checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 2}],
        payment_method="cash",
    )

    result = drawer_service.close_drawer(actor_id=CASHIER_ID, closing_balance_cents=12000)

    assert result["expected_balance_cents"] == 12200
    assert result["difference_cents"] == -200
    drawer = db.session.get(CashDrawer, open_drawer.id)
    assert drawer.status == "closed"
    assert drawer.closing_balance_cents == 12000
    assert drawer.expected_balance_cents == 12200
    assert drawer.closed_at is not None


def test_overage_is_reported_positive(open_drawer):
    result = drawer_service.close_drawer(actor_id=CASHIER_ID, closing_balance_cents=10050)
    assert result["difference_cents"] == 50


def test_only_one_open_drawer_per_owner(open_drawer):
    with pytest.raises(DrawerAlreadyOpen) as exc_info:
        drawer_service.open_drawer(actor_id=CASHIER_ID, opening_balance_cents=500)
    assert exc_info.value.details["drawer_id"] == open_drawer.id

    other = drawer_service.open_drawer(actor_id=MANAGER_ID, opening_balance_cents=500)
    assert other.owner_id == MANAGER_ID


def test_drawer_can_reopen_after_close(open_drawer):
    drawer_service.close_drawer(actor_id=CASHIER_ID, closing_balance_cents=10000)
    reopened = drawer_service.open_drawer(actor_id=CASHIER_ID, opening_balance_cents=2000)

    assert reopened.id != open_drawer.id
    assert reopened.expected_balance_cents == 2000


def test_close_without_open_drawer(db_session):
    with pytest.raises(NoOpenDrawer):
        drawer_service.close_drawer(actor_id=CASHIER_ID, closing_balance_cents=0)


def test_negative_amounts_are_rejected(db_session):
    with pytest.raises(InvalidInput):
        drawer_service.open_drawer(actor_id=CASHIER_ID, opening_balance_cents=-1)


def test_non_cash_sales_do_not_touch_drawer(product_a, open_drawer):
    checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="card",
    )
    assert db.session.get(CashDrawer, open_drawer.id).expected_balance_cents == 10000


def test_cancelled_cash_sale_leaves_expected_balance(product_a, open_drawer):
    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="cash",
    )
    cancellation_service.cancel_sale(actor_id=MANAGER_ID, sale_id=sale.id, reason="wrong item")

    assert db.session.get(CashDrawer, open_drawer.id).expected_balance_cents == 11100


def test_drawer_status(product_a, open_drawer):
    assert drawer_service.get_drawer_status(MANAGER_ID) == {"is_open": False, "drawer": None}

    checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 3}],
        payment_method="cash",
    )

    status = drawer_service.get_drawer_status(CASHIER_ID)
    assert status["is_open"] is True
    assert status["drawer"].id == open_drawer.id
    assert status["cash_sales_cents"] == 3300
    assert status["expected_balance_cents"] == 13300
    assert status["open_minutes"] >= 0


def test_drawer_status_reports_cancelled_cash_sales(product_a, open_drawer):
    kept = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 2}],
        payment_method="cash",
    )
    cancelled = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="cash",
    )
    cancellation_service.cancel_sale(actor_id=MANAGER_ID, sale_id=cancelled.id, reason="wrong item")

    status = drawer_service.get_drawer_status(CASHIER_ID)
    assert status["cash_sales_cents"] == kept.total_cents == 2200
    assert status["cancelled_cash_sales_cents"] == 1100
    assert status["expected_balance_cents"] == (
        status["opening_balance_cents"] + status["cash_sales_cents"] + status["cancelled_cash_sales_cents"]
    )
