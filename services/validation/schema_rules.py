"""Tier 1: structural checks on the canonical invoice.

Required fields, numeric and date formats, and per-line arithmetic. Every check
runs; findings are returned, never raised.
"""

from decimal import Decimal

from services.format.xml_utils import is_iso_currency, parse_date
from services.invoice.model import CanonicalInvoice
from services.invoice.monetary import DEFAULT_TOLERANCE, money_equal, to_decimal
from services.validation.result import ValidationIssue, error


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_schema(
    invoice: CanonicalInvoice, tolerance: Decimal = DEFAULT_TOLERANCE
) -> list[ValidationIssue]:
    """Run all tier 1 checks.

    Args:
        invoice: Canonical invoice
        tolerance: Allowed deviation for line arithmetic

    Returns:
        Ordered list of findings (all error severity)
    """
    issues: list[ValidationIssue] = []

    if _blank(invoice.invoice_number):
        issues.append(
            error("SCHEMA-001", "Invoice number is required", "invoice.invoice_number")
        )

    if _blank(invoice.invoice_date):
        issues.append(error("SCHEMA-002", "Invoice date is required", "invoice.invoice_date"))
    elif parse_date(invoice.invoice_date) is None:
        issues.append(
            error(
                "SCHEMA-002",
                f"Invoice date '{invoice.invoice_date}' must be YYYY-MM-DD, DD.MM.YYYY or YYYYMMDD",
                "invoice.invoice_date",
            )
        )

    if _blank(invoice.seller.name):
        issues.append(error("SCHEMA-003", "Seller name is required", "invoice.seller.name"))

    if _blank(invoice.buyer.name):
        issues.append(error("SCHEMA-004", "Buyer name is required", "invoice.buyer.name"))

    total = invoice.totals.total_amount
    if total is None:
        issues.append(
            error("SCHEMA-005", "Total amount is required", "invoice.totals.total_amount")
        )
    elif not total.is_finite():
        issues.append(
            error("SCHEMA-005", "Total amount must be a finite number", "invoice.totals.total_amount")
        )
    elif total <= 0 and not invoice.is_credit_note:
        issues.append(
            error(
                "SCHEMA-005",
                "Total amount must be greater than zero (negative totals require document type 381)",
                "invoice.totals.total_amount",
            )
        )

    if not invoice.line_items:
        issues.append(error("SCHEMA-006", "At least one line item is required", "invoice.line_items"))

    for index, item in enumerate(invoice.line_items):
        if item.quantity is None or item.unit_price is None or item.total_price is None:
            continue
        expected = to_decimal(item.quantity) * to_decimal(item.unit_price)
        if not money_equal(expected, item.total_price, tolerance):
            issues.append(
                error(
                    "SCHEMA-007",
                    f"Line {index + 1}: quantity x unit price ({expected:.2f}) "
                    f"does not match line total ({item.total_price:.2f})",
                    f"invoice.line_items[{index}].total_price",
                )
            )

    if invoice.currency and not is_iso_currency(invoice.currency):
        issues.append(
            error(
                "SCHEMA-008",
                f"Currency '{invoice.currency}' is not an ISO 4217 code",
                "invoice.currency",
            )
        )

    return issues
