"""
Unit tests for PricingCalculator.

WHAT: Subtotal, discounts, tax and rounding for proposal line items.

WHY: Pricing figures end up on a signed commercial document, so they must
be exact to the cent and every invalid input must be reported.
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from proposal_engine.schemas.proposal import ProposalItemInput
from proposal_engine.services.pricing import (
    PricingCalculator,
    line_total,
    round_money,
    to_decimal,
)


@pytest.fixture
def calculator():
    return PricingCalculator(tax_rate_percent=10, max_amount=1_000_000)


class TestCalculate:

    def test_basic_items_with_default_tax(self, calculator):
        result = calculator.calculate(
            [
                {"name": "Helpdesk", "quantity": 2, "unit_price": 100},
                {"name": "Backup", "quantity": 1, "unit_price": 50},
            ]
        )

        assert result.subtotal == Decimal("250.00")
        assert result.tax_amount == Decimal("25.00")
        assert result.discount_amount == Decimal("0.00")
        assert result.final_amount == Decimal("275.00")
        assert result.errors == []

    def test_item_and_global_discount(self, calculator):
        result = calculator.calculate(
            [{"name": "Consulting", "quantity": 1, "unit_price": 1000, "discount_percent": 10}],
            tax_rate_percent=20,
            global_discount_percent=5,
        )

        assert result.subtotal == Decimal("900.00")
        assert result.discount_amount == Decimal("45.00")
        assert result.tax_amount == Decimal("171.00")
        assert result.final_amount == Decimal("1026.00")

    def test_rounding_half_up(self, calculator):
        result = calculator.calculate(
            [{"name": "Licence", "quantity": 3, "unit_price": "0.335"}],
            tax_rate_percent=0,
        )

        # 1.005 rounds up, not to even
        assert result.subtotal == Decimal("1.01")
        assert result.final_amount == Decimal("1.01")

    def test_full_item_discount(self, calculator):
        result = calculator.calculate(
            [{"name": "Free onboarding", "quantity": 1, "unit_price": 500, "discount_percent": 100}]
        )

        assert result.subtotal == Decimal("0.00")
        assert result.final_amount == Decimal("0.00")
        assert result.errors == []

    def test_accepts_schema_items(self, calculator):
        result = calculator.calculate([ProposalItemInput(name="Firewall", quantity=Decimal("1.5"), unit_price=Decimal("80"))])

        assert result.subtotal == Decimal("120.00")

    def test_empty_items(self, calculator):
        result = calculator.calculate([])

        assert result.final_amount == Decimal("0.00")
        assert result.errors == ["No items to calculate"]

    def test_invalid_item_values_reported(self, calculator):
        result = calculator.calculate(
            [
                {"name": "A", "quantity": 0, "unit_price": 10},
                {"name": "B", "quantity": 1, "unit_price": -5},
                {"name": "C", "quantity": 1, "unit_price": 5, "discount_percent": 150},
            ]
        )

        assert result.errors == [
            'Item "A" has invalid quantity: 0',
            'Item "B" has invalid unit price: -5',
            'Item "C" has invalid discount: 150% (must be 0-100)',
        ]

    def test_unnamed_item_uses_position(self, calculator):
        result = calculator.calculate([{"quantity": -1, "unit_price": 10}])

        assert 'Item "#1" has invalid quantity: -1' in result.errors

    def test_invalid_global_discount_and_tax(self, calculator):
        result = calculator.calculate(
            [{"name": "A", "quantity": 1, "unit_price": 10}],
            tax_rate_percent=-1,
            global_discount_percent=101,
        )

        assert "Invalid global discount: 101% (must be 0-100)" in result.errors
        assert "Invalid tax rate: -1%" in result.errors

    def test_exceeds_maximum(self, calculator):
        result = calculator.calculate([{"name": "Datacenter", "quantity": 1, "unit_price": 1_000_000}])

        assert result.final_amount == Decimal("1100000.00")
        assert result.errors == ["Total amount exceeds maximum limit of $1,000,000"]

    def test_exactly_at_maximum_is_allowed(self):
        calculator = PricingCalculator(tax_rate_percent=0, max_amount=1000)

        result = calculator.calculate([{"name": "A", "quantity": 1, "unit_price": 1000}])

        assert result.errors == []

    def test_deterministic(self, calculator):
        items = [{"name": "A", "quantity": "1.3", "unit_price": "19.99", "discount_percent": "7.5"}]

        assert calculator.calculate(items) == calculator.calculate(items)

    def test_huge_figures_report_limit(self, calculator):
        result = calculator.calculate(
            [{"name": "Typo", "quantity": Decimal("1e20"), "unit_price": Decimal("1e10")}]
        )

        assert result.errors == ["Total amount exceeds maximum limit of $1,000,000"]
        assert result.subtotal == Decimal("1e30")
        assert result.subtotal.as_tuple().exponent == -2

    def test_non_finite_values_count_as_zero(self, calculator):
        result = calculator.calculate([{"name": "Broken", "quantity": "NaN", "unit_price": "Infinity"}])

        assert result.final_amount == Decimal("0.00")
        assert 'Item "Broken" has invalid quantity: 0' in result.errors


class TestHelpers:

    def test_line_total(self):
        assert line_total({"quantity": 2, "unit_price": "10.005", "discount_percent": 0}) == Decimal("20.01")
        assert line_total({"quantity": 4, "unit_price": 25, "discount_percent": 50}) == Decimal("50.00")

    @pytest.mark.parametrize(
        "value,expected",
        [(None, Decimal("0")), ("abc", Decimal("0")), (0.1, Decimal("0.1")), (3, Decimal("3"))],
    )
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    def test_round_money(self):
        assert round_money(Decimal("2.675")) == Decimal("2.68")


class TestItemSchemaLimits:

    @pytest.mark.parametrize("field", ["quantity", "unit_price"])
    def test_rejects_oversized_values(self, field):
        with pytest.raises(ValidationError):
            ProposalItemInput(name="Typo", **{field: Decimal("1e20")})

    def test_negative_values_still_parse(self):
        item = ProposalItemInput(name="Credit", quantity=-1, unit_price=-5)

        assert item.quantity == Decimal("-1")
