import pytest
from sqlalchemy.exc import SQLAlchemyError

from tillpoint.errors import InsufficientStock, InvalidInput
from tillpoint.extensions import db
from tillpoint.models import AuditEvent, Sale
from tillpoint.services import audit_service, checkout_service, drawer_service, stock_ledger

from conftest import CASHIER_ID, MANAGER_ID


def _actions():
    return [e.action for e in db.session.query(AuditEvent).order_by(AuditEvent.id).all()]


def test_successful_checkout_is_audited(product_a):
    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="card",
    )

    event = audit_service.list_audit_events(action="SALE_CREATED")[0]
    assert event.actor_id == CASHIER_ID
    assert event.success is True
    assert event.details["sale_number"] == sale.sale_number
    assert event.details["total_cents"] == 1100


def test_failed_checkout_is_audited(product_a):
    with pytest.raises(InsufficientStock):
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 50}],
            payment_method="card",
        )

    event = audit_service.list_audit_events(action="SALE_CREATION_ERROR")[0]
    assert event.success is False
    assert event.details["stage"] == "validating"
    assert event.details["shortfall"] == 40


def test_failing_audit_sink_does_not_abort_checkout(product_a, monkeypatch):
    def broken_event(**kwargs):
        raise SQLAlchemyError("audit table unavailable")

    monkeypatch.setattr(audit_service, "AuditEvent", broken_event)

    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="card",
    )

    assert db.session.get(Sale, sale.id).status == "completed"
    assert db.session.query(AuditEvent).count() == 0


def test_drawer_close_with_difference_is_high_severity(open_drawer):
    drawer_service.close_drawer(actor_id=CASHIER_ID, closing_balance_cents=9000)

    event = audit_service.list_audit_events(action="CASH_DRAWER_CLOSED")[0]
    assert event.severity == "high"
    assert event.details["difference_cents"] == -1000


def test_list_filters_by_actor(product_a):
    drawer_service.open_drawer(actor_id=99, opening_balance_cents=0)

    assert [e.action for e in audit_service.list_audit_events(actor_id=99)] == ["CASH_DRAWER_OPENED"]
    assert "STOCK_MOVEMENT_RECORDED" not in _actions()


def test_unexpected_checkout_error_is_audited_and_reraised(product_a, monkeypatch):
    def broken_append(*args, **kwargs):
        raise RuntimeError("ledger write failed")

    monkeypatch.setattr(stock_ledger, "append_movement", broken_append)

    with pytest.raises(RuntimeError):
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="card",
        )

    event = audit_service.list_audit_events(action="SALE_CREATION_ERROR")[0]
    assert event.success is False
    assert event.details["error_type"] == "RuntimeError"
    assert event.details["stage"] == "committing"
    assert db.session.query(Sale).count() == 0


def test_rejected_transfer_is_audited(product_a):
    with pytest.raises(InsufficientStock):
        stock_ledger.transfer_stock(
            actor_id=MANAGER_ID, product_id=product_a.id, quantity=999, to_location="Front"
        )

    event = audit_service.list_audit_events(action="STOCK_TRANSFER_ERROR")[0]
    assert event.success is False
    assert event.actor_id == MANAGER_ID
    assert event.details["quantity"] == 999
    assert event.details["error_type"] == "InsufficientStock"
    assert "STOCK_TRANSFERRED" not in _actions()


def test_rejected_stock_count_is_audited(product_a):
    with pytest.raises(InvalidInput):
        stock_ledger.set_stock_level(actor_id=MANAGER_ID, product_id=product_a.id, counted_quantity=-1)

    event = audit_service.list_audit_events(action="STOCK_MOVEMENT_ERROR")[0]
    assert event.success is False
    assert event.details["counted_quantity"] == -1
