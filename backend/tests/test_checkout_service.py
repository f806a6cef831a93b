import pytest
from sqlalchemy.exc import OperationalError

from tillpoint.errors import ConcurrencyConflict, DrawerNotOpen, InsufficientStock, InvalidInput, NotFound
from tillpoint.extensions import db
from tillpoint.models import CashDrawer, Customer, InventoryMovement, Product, Sale
from tillpoint.services import checkout_service, stock_ledger
from tillpoint.time_utils import utcnow

from conftest import CASHIER_ID


def _sale_movements(sale_id):
    return db.session.query(InventoryMovement).filter_by(reference_id=sale_id, reference_type="sale").all()


def test_example_cart_totals_and_ledger(product_a):
    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 2}],
        payment_method="card",
    )

    assert sale.status == "completed"
    assert sale.subtotal_cents == 2000
    assert sale.tax_cents == 200
    assert sale.discount_cents == 0
    assert sale.total_cents == 2200
    assert sale.total_cents == sale.subtotal_cents + sale.tax_cents - sale.discount_cents

    assert db.session.get(Product, product_a.id).stock == 8

    movements = _sale_movements(sale.id)
    assert len(movements) == 1
    assert movements[0].movement_type == "sale"
    assert movements[0].quantity_delta == -2
    assert movements[0].previous_quantity == 10
    assert movements[0].new_quantity == 8


def test_line_snapshot_is_frozen(product_a):
    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="pix",
    )
    sale_id = sale.id

    product = db.session.get(Product, product_a.id)
    product.price_cents = 5000
    product.tax_rate_bps = 0
    db.session.commit()

    stored = db.session.get(Sale, sale_id)
    assert stored.items == [{
        "product_id": product_a.id,
        "sku": "PROD-A",
        "name": "Product A",
        "unit_price_cents": 1000,
        "quantity": 1,
        "tax_rate_bps": 1000,
        "subtotal_cents": 1000,
        "tax_cents": 100,
    }]
    assert stored.total_cents == 1100


def test_insufficient_stock_aborts_before_any_write(product_a, make_product):
    other = make_product(sku="PROD-B", initial_stock=1)

    with pytest.raises(InsufficientStock) as exc_info:
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[
                {"product_id": product_a.id, "quantity": 1},
                {"product_id": other.id, "quantity": 3},
            ],
            payment_method="card",
        )

    details = exc_info.value.details
    assert details["product_id"] == other.id
    assert details["sku"] == "PROD-B"
    assert details["shortfall"] == 2
    assert details["stage"] == "validating"
    assert db.session.query(Sale).count() == 0
    assert db.session.query(InventoryMovement).filter_by(movement_type="sale").count() == 0
    assert db.session.get(Product, product_a.id).stock == 10


def test_duplicate_lines_are_checked_on_aggregated_quantity(make_product):
    product = make_product(initial_stock=3)

    with pytest.raises(InsufficientStock):
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[
                {"product_id": product.id, "quantity": 2},
                {"product_id": product.id, "quantity": 2},
            ],
            payment_method="card",
        )
    assert db.session.get(Product, product.id).stock == 3


def test_failure_during_commit_rolls_back_everything(product_a, make_product, monkeypatch):
    other = make_product(sku="PROD-B")
    original_append = stock_ledger.append_movement
    calls = {"n": 0}

    def failing_append(session, **kwargs):
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("disk full")
        return original_append(session, **kwargs)

    monkeypatch.setattr(stock_ledger, "append_movement", failing_append)

    with pytest.raises(RuntimeError):
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[
                {"product_id": product_a.id, "quantity": 1},
                {"product_id": other.id, "quantity": 1},
            ],
            payment_method="card",
        )

    assert calls["n"] == 2
    assert db.session.query(Sale).count() == 0
    assert db.session.query(InventoryMovement).filter_by(movement_type="sale").count() == 0
    assert db.session.get(Product, product_a.id).stock == 10
    assert db.session.get(Product, other.id).stock == 10


def test_cash_sale_requires_open_drawer(product_a):
    with pytest.raises(DrawerNotOpen) as exc_info:
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="cash",
        )

    assert exc_info.value.details["stage"] == "committing"
    assert db.session.query(Sale).count() == 0
    assert db.session.get(Product, product_a.id).stock == 10


def test_cash_sale_feeds_drawer(product_a, open_drawer):
    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 2}],
        payment_method="cash",
    )

    drawer = db.session.get(CashDrawer, open_drawer.id)
    assert sale.cash_drawer_id == drawer.id
    assert drawer.expected_balance_cents == 10000 + 2200


def test_customer_aggregates_are_updated(product_a, customer):
    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="card",
        customer_id=customer.id,
    )

    refreshed = db.session.get(Customer, customer.id)
    assert sale.customer_id == customer.id
    assert refreshed.total_purchases_cents == 1100
    assert refreshed.last_purchase_at is not None


def test_unknown_customer_is_not_found(product_a):
    with pytest.raises(NotFound):
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="card",
            customer_id=424242,
        )
    assert db.session.get(Product, product_a.id).stock == 10


def test_unknown_product_is_not_found(db_session):
    with pytest.raises(NotFound) as exc_info:
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": 31337, "quantity": 1}],
            payment_method="card",
        )
    assert exc_info.value.details["product_id"] == 31337


def test_discontinued_product_cannot_be_sold(make_product):
    product = make_product(status="discontinued")

    with pytest.raises(InvalidInput):
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product.id, "quantity": 1}],
            payment_method="card",
        )


@pytest.mark.parametrize("kwargs", [
    {"items": [], "payment_method": "card"},
    {"items": [{"product_id": 1}], "payment_method": "card"},
    {"items": [{"product_id": 1, "quantity": 0}], "payment_method": "card"},
    {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "barter"},
    {"items": [{"product_id": 1, "quantity": 1}], "payment_method": "card", "discount_cents": -5},
])
def test_bad_requests_are_invalid_input(db_session, kwargs):
    with pytest.raises(InvalidInput) as exc_info:
        checkout_service.checkout(actor_id=CASHIER_ID, **kwargs)
    assert exc_info.value.details["stage"] == "validating"


def test_discount_above_gross_is_rejected(product_a):
    with pytest.raises(InvalidInput) as exc_info:
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="card",
            discount_cents=1101,
        )
    assert exc_info.value.details["stage"] == "pricing"
    assert db.session.query(Sale).count() == 0


def test_sale_numbers_are_sequential_per_day(product_a):
    numbers = [
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="card",
        ).sale_number
        for _ in range(3)
    ]

    day = utcnow().strftime("%Y%m%d")
    assert numbers == [f"V{day}-0001", f"V{day}-0002", f"V{day}-0003"]


def test_format_sale_number():
    assert checkout_service.format_sale_number("20260301", 7) == "V20260301-0007"


def test_transient_lock_error_is_retried(product_a, monkeypatch):
    original = checkout_service.next_sale_sequence
    calls = {"n": 0}

    def flaky(session, business_date):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("SELECT max(daily_sequence)", {}, Exception("database is locked"))
        return original(session, business_date)

    monkeypatch.setattr(checkout_service, "next_sale_sequence", flaky)

    sale = checkout_service.checkout(
        actor_id=CASHIER_ID,
        items=[{"product_id": product_a.id, "quantity": 1}],
        payment_method="card",
    )

    assert calls["n"] == 2
    assert sale.sale_number.endswith("-0001")
    assert db.session.get(Product, product_a.id).stock == 9
    assert len(_sale_movements(sale.id)) == 1


def test_exhausted_retries_surface_as_concurrency_conflict(product_a, monkeypatch):
    def always_locked(session, business_date):
        raise OperationalError("SELECT max(daily_sequence)", {}, Exception("database is locked"))

    monkeypatch.setattr(checkout_service, "next_sale_sequence", always_locked)

    with pytest.raises(ConcurrencyConflict) as exc_info:
        checkout_service.checkout(
            actor_id=CASHIER_ID,
            items=[{"product_id": product_a.id, "quantity": 1}],
            payment_method="card",
        )

    assert exc_info.value.details["attempts"] == 3
    assert exc_info.value.status_code == 503
    assert db.session.query(Sale).count() == 0
    assert db.session.get(Product, product_a.id).stock == 10
