"""Unit tests for money helpers, tax category rules and tax bucketing."""

from decimal import Decimal

import pytest

from services.invoice.model import AllowanceCharge, CanonicalInvoice, LineItem, Totals
from services.invoice.monetary import (
    compute_tax,
    format_money,
    format_quantity,
    format_rate,
    money_equal,
    round_money,
    to_decimal,
)
from services.tax.categories import (
    compute_totals,
    document_amounts,
    effective_rate,
    get_category_rule,
    group_tax_buckets,
    line_net_amount,
    resolve_category,
)


def _line(total: str, rate: str | None, category: str | None = None) -> LineItem:
    return LineItem(
        description="Item",
        quantity=Decimal("1"),
        unit_price=Decimal(total),
        total_price=Decimal(total),
        tax_rate=Decimal(rate) if rate is not None else None,
        tax_category_code=category,
    )


class TestMonetary:
    """Test Decimal money helpers."""

    def test_round_half_up(self) -> None:
        """Should round 0.005 up, not to even."""
        assert round_money("2.675") == Decimal("2.68")
        assert round_money("0.125") == Decimal("0.13")

    def test_float_goes_through_str(self) -> None:
        """Should not carry binary float noise."""
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_is_zero(self) -> None:
        assert to_decimal(None) == Decimal(0)

    def test_rejects_garbage(self) -> None:
        """Should raise ValueError for non-numeric input."""
        with pytest.raises(ValueError, match="Not a monetary value"):
            to_decimal("abc")

    def test_compute_tax(self) -> None:
        assert compute_tax(Decimal("1100.00"), Decimal("19")) == Decimal("209.00")
        assert compute_tax(Decimal("10.05"), Decimal("7")) == Decimal("0.70")

    def test_formatting(self) -> None:
        """Should render amounts, quantities and rates for XML output."""
        assert format_money(Decimal("1190")) == "1190.00"
        assert format_quantity(Decimal("8.000")) == "8"
        assert format_quantity(Decimal("2.50")) == "2.5"
        assert format_rate(Decimal("19")) == "19.00"

    def test_money_equal_tolerance(self) -> None:
        assert money_equal(Decimal("100.00"), Decimal("100.01"))
        assert not money_equal(Decimal("100.00"), Decimal("100.02"))


class TestCategoryRules:
    """Test the VAT category table."""

    def test_lookup_is_case_insensitive(self) -> None:
        rule = get_category_rule("ae")
        assert rule.code == "AE"
        assert rule.requires_zero_rate is True
        assert rule.exemption_reason_code == "VATEX-EU-AE"

    def test_unknown_category_lists_available(self) -> None:
        """Should list known categories in the error."""
        with pytest.raises(ValueError, match="Available categories: S, Z, E"):
            get_category_rule("X")

    def test_resolve_category_defaults(self) -> None:
        """Should use S for positive rates and E for zero when no code is given."""
        assert resolve_category(Decimal("19"), None) == "S"
        assert resolve_category(Decimal("0"), None) == "E"
        assert resolve_category(Decimal("0"), "k") == "K"

    def test_zero_rate_category_forces_zero(self, invoice: CanonicalInvoice) -> None:
        """Should ignore a stated rate on zero-rate categories."""
        assert effective_rate(_line("100", "19", "E"), invoice) == Decimal(0)

    def test_invoice_rate_fallback(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should use the invoice-level rate for lines without one."""
        invoice = invoice_factory(tax_rate=Decimal("7"))
        assert effective_rate(_line("100", None), invoice) == Decimal("7")

    def test_line_net_derived_from_quantity(self) -> None:
        item = LineItem(description="x", quantity=Decimal("3"), unit_price=Decimal("9.99"))
        assert line_net_amount(item) == Decimal("29.97")


class TestTaxBuckets:
    """Test grouping by (rate, category)."""

    def test_mixed_rates_produce_one_bucket_per_rate(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should produce 19% and 7% buckets, highest rate first."""
        invoice = invoice_factory(
            line_items=[_line("100.00", "7"), _line("200.00", "19"), _line("50.00", "19")],
        )

        buckets = group_tax_buckets(invoice)

        assert [(b.rate, b.category) for b in buckets] == [
            (Decimal("19"), "S"),
            (Decimal("7"), "S"),
        ]
        assert buckets[0].basis_amount == Decimal("250.00")
        assert buckets[0].tax_amount == Decimal("47.50")
        assert buckets[0].line_indexes == [1, 2]
        assert buckets[1].tax_amount == Decimal("7.00")

    def test_exempt_bucket_carries_reason(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        invoice = invoice_factory(line_items=[_line("100.00", "0", "E")])

        (bucket,) = group_tax_buckets(invoice)

        assert bucket.tax_amount == Decimal("0.00")
        assert bucket.exemption_reason == "Exempt from VAT"
        assert bucket.exemption_reason_code == "VATEX-EU-132"

    def test_allowance_reduces_its_bucket(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should subtract document allowances from the bucket basis."""
        invoice = invoice_factory(
            line_items=[_line("1000.00", "19", "S")],
            allowance_charges=[
                AllowanceCharge(amount=Decimal("100.00"), tax_rate=Decimal("19"), tax_category_code="S")
            ],
        )

        (bucket,) = group_tax_buckets(invoice)
        totals = compute_totals(invoice)

        assert bucket.basis_amount == Decimal("900.00")
        assert totals.tax_amount == Decimal("171.00")
        assert totals.total_amount == Decimal("1071.00")

    def test_document_amounts_prefer_declared_totals(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should reproduce the declared totals in the summation block."""
        invoice = invoice_factory(
            totals=Totals(
                subtotal=Decimal("1100.00"),
                tax_amount=Decimal("209.01"),
                total_amount=Decimal("1309.01"),
            )
        )

        amounts = document_amounts(invoice)

        assert amounts.tax_total == Decimal("209.01")
        assert amounts.grand_total == Decimal("1309.01")
        assert amounts.due_payable == Decimal("1309.01")
