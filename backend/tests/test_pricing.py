import pytest

from tillpoint.errors import InvalidInput
from tillpoint.services.pricing import PricingLine, calculate_totals, line_tax_cents


def test_single_line_with_tax():
    result = calculate_totals([PricingLine(1000, 2, 1000)])

    assert result.subtotal_cents == 2000
    assert result.tax_cents == 200
    assert result.discount_cents == 0
    assert result.total_cents == 2200


def test_tax_is_computed_per_line_at_each_rate():
    result = calculate_totals([
        PricingLine(1000, 1, 1000),
        PricingLine(500, 3, 0),
        PricingLine(250, 2, 1800),
    ])

    assert result.subtotal_cents == 1000 + 1500 + 500
    assert result.tax_cents == 100 + 0 + 90
    assert [line.tax_cents for line in result.lines] == [100, 0, 90]
    assert result.total_cents == result.subtotal_cents + result.tax_cents


def test_line_tax_rounds_half_up():
    assert line_tax_cents(5, 1000) == 1
    assert line_tax_cents(4, 1000) == 0
    assert line_tax_cents(333, 1250) == 42


def test_discount_is_subtracted():
    result = calculate_totals([PricingLine(1000, 2, 1000)], discount_cents=500)

    assert result.total_cents == 1700
    assert result.total_cents == result.subtotal_cents + result.tax_cents - result.discount_cents


def test_discount_may_cover_whole_amount():
    result = calculate_totals([PricingLine(1000, 1, 1000)], discount_cents=1100)
    assert result.total_cents == 0


def test_discount_larger_than_gross_is_rejected():
    with pytest.raises(InvalidInput) as exc_info:
        calculate_totals([PricingLine(1000, 1, 1000)], discount_cents=1101)
    assert exc_info.value.details["gross_cents"] == 1100


@pytest.mark.parametrize("quantity", [0, -1])
def test_non_positive_quantity_is_rejected(quantity):
    with pytest.raises(InvalidInput):
        calculate_totals([PricingLine(1000, quantity, 0)])


def test_negative_discount_is_rejected():
    with pytest.raises(InvalidInput):
        calculate_totals([PricingLine(1000, 1, 0)], discount_cents=-1)


def test_empty_cart_is_rejected():
    with pytest.raises(InvalidInput):
        calculate_totals([])
