"""Tier 2: EN 16931 business rules.

Cross-field arithmetic (BR-CO-*), VAT category consistency (BR-<cat>-*), line
completeness and the PEPPOL endpoint presence rules.

Rule texts follow the CEN/TC 434 validation artefacts:
https://github.com/ConnectingEurope/eInvoicing-EN16931
"""

from decimal import Decimal

from services.invoice.model import CanonicalInvoice, TaxCategory
from services.invoice.monetary import money_equal, round_money, sum_money, to_decimal
from services.tax.categories import (
    TAX_CATEGORY_RULES,
    allowance_total,
    charge_total,
    group_tax_buckets,
    line_net_amount,
)
from services.validation.result import ValidationIssue, error

ARITHMETIC_TOLERANCE = Decimal("0.02")

ZERO_RATE_RULE_IDS = {
    "Z": "BR-Z-05",
    "E": "BR-E-05",
    "AE": "BR-AE-05",
    "K": "BR-IC-05",
    "G": "BR-G-05",
    "O": "BR-O-05",
    "L": "BR-IG-05",
}


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_monetary(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    """BR-CO-10, BR-CO-14, BR-CO-15 and BR-CO-16 cross-checks."""
    issues: list[ValidationIssue] = []
    totals = invoice.totals

    if invoice.line_items and totals.subtotal is not None:
        line_sum = sum_money(line_net_amount(item) for item in invoice.line_items)
        if not money_equal(line_sum, totals.subtotal, ARITHMETIC_TOLERANCE):
            issues.append(
                error(
                    "BR-CO-10",
                    f"Sum of line net amounts ({line_sum:.2f}) does not match "
                    f"invoice subtotal ({round_money(totals.subtotal):.2f})",
                    "invoice.totals.subtotal",
                )
            )

    buckets = group_tax_buckets(invoice)
    if buckets and totals.tax_amount is not None:
        bucket_tax = sum_money(bucket.tax_amount for bucket in buckets)
        if not money_equal(bucket_tax, totals.tax_amount, ARITHMETIC_TOLERANCE):
            breakdown = ", ".join(
                f"{bucket.category} {bucket.rate}%: {bucket.tax_amount:.2f}" for bucket in buckets
            )
            issues.append(
                error(
                    "BR-CO-14",
                    f"Invoice tax amount ({round_money(totals.tax_amount):.2f}) does not match "
                    f"the sum of the VAT breakdown ({bucket_tax:.2f}; {breakdown})",
                    "invoice.totals.tax_amount",
                )
            )

    if (
        totals.subtotal is not None
        and totals.tax_amount is not None
        and totals.total_amount is not None
        and totals.total_amount.is_finite()
    ):
        basis = to_decimal(totals.subtotal) - allowance_total(invoice) + charge_total(invoice)
        expected = round_money(basis + to_decimal(totals.tax_amount))
        if not money_equal(expected, totals.total_amount, ARITHMETIC_TOLERANCE):
            issues.append(
                error(
                    "BR-CO-15",
                    f"Invoice total ({round_money(totals.total_amount):.2f}) does not equal "
                    f"total without VAT plus VAT ({expected:.2f})",
                    "invoice.totals.total_amount",
                )
            )

    prepaid = invoice.payment.prepaid_amount
    if prepaid is not None and totals.total_amount is not None and not invoice.is_credit_note:
        if round_money(totals.total_amount) - round_money(prepaid) < 0:
            issues.append(
                error(
                    "BR-CO-16",
                    f"Prepaid amount ({round_money(prepaid):.2f}) exceeds the invoice total, "
                    "amount due would be negative",
                    "invoice.payment.prepaid_amount",
                )
            )

    return issues


def validate_line_items(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    """Per-line completeness (BR-22, BR-25, BR-26) and category rate rules."""
    issues: list[ValidationIssue] = []
    categories_used: set[str] = set()

    for index, item in enumerate(invoice.line_items):
        path = f"invoice.line_items[{index}]"
        label = f"Line {index + 1}"
        if _blank(item.description):
            issues.append(error("BR-25", f"{label}: item name is required", f"{path}.description"))
        if item.quantity is None:
            issues.append(error("BR-22", f"{label}: invoiced quantity is required", f"{path}.quantity"))
        if item.unit_price is None:
            issues.append(error("BR-26", f"{label}: item net price is required", f"{path}.unit_price"))

        code = item.tax_category_code.upper() if item.tax_category_code else None
        if code is None:
            continue
        categories_used.add(code)
        rule = TAX_CATEGORY_RULES.get(code)
        if rule is None:
            continue
        if code == TaxCategory.STANDARD.value:
            rate = item.tax_rate if item.tax_rate is not None else invoice.tax_rate
            if rate is None or to_decimal(rate) <= 0:
                issues.append(
                    error(
                        "BR-S-05",
                        f"{label}: standard rated lines need a VAT rate greater than zero",
                        f"{path}.tax_rate",
                    )
                )
        elif rule.requires_zero_rate and item.tax_rate is not None and item.tax_rate != 0:
            issues.append(
                error(
                    ZERO_RATE_RULE_IDS[code],
                    f"{label}: category {code} requires a VAT rate of 0 (got {item.tax_rate})",
                    f"{path}.tax_rate",
                )
            )

    if TaxCategory.REVERSE_CHARGE.value in categories_used:
        if _blank(invoice.seller.vat_id) and _blank(invoice.seller.tax_number):
            issues.append(
                error(
                    "BR-AE-02",
                    "Reverse charge requires the seller VAT identifier",
                    "invoice.seller.vat_id",
                )
            )
        if _blank(invoice.buyer.vat_id):
            issues.append(
                error(
                    "BR-AE-02",
                    "Reverse charge requires the buyer VAT identifier",
                    "invoice.buyer.vat_id",
                )
            )
    if TaxCategory.INTRA_COMMUNITY.value in categories_used and _blank(invoice.buyer.vat_id):
        issues.append(
            error(
                "BR-IC-02",
                "Intra-community supply requires the buyer VAT identifier",
                "invoice.buyer.vat_id",
            )
        )

    return issues


def validate_document_rules(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    """Document-level presence rules (BR-CO-25, BR-CO-26, BR-55)."""
    issues: list[ValidationIssue] = []

    if _blank(invoice.seller.vat_id) and _blank(invoice.seller.tax_number):
        issues.append(
            error(
                "BR-CO-26",
                "Seller VAT identifier or tax registration number is required",
                "invoice.seller.vat_id",
            )
        )

    total = invoice.totals.total_amount
    amount_due_positive = (
        total is not None
        and total.is_finite()
        and total - to_decimal(invoice.payment.prepaid_amount) > 0
    )
    if (
        amount_due_positive
        and _blank(invoice.payment.payment_terms)
        and _blank(invoice.payment.due_date)
    ):
        issues.append(
            error(
                "BR-CO-25",
                "Payment terms or a payment due date are required when an amount is due",
                "invoice.payment.payment_terms",
            )
        )

    if invoice.is_credit_note and _blank(invoice.preceding_invoice_reference):
        issues.append(
            error(
                "BR-55",
                "Credit notes must reference the preceding invoice",
                "invoice.preceding_invoice_reference",
            )
        )

    return issues


def validate_endpoints(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    """PEPPOL-EN16931-R010 / R020: buyer and seller electronic addresses."""
    issues: list[ValidationIssue] = []
    if _blank(invoice.buyer.electronic_address):
        issues.append(
            error(
                "PEPPOL-EN16931-R010",
                "Buyer electronic address (BT-49) is required",
                "invoice.buyer.electronic_address",
            )
        )
    if _blank(invoice.seller.electronic_address):
        issues.append(
            error(
                "PEPPOL-EN16931-R020",
                "Seller electronic address (BT-34) is required",
                "invoice.seller.electronic_address",
            )
        )
    return issues


def validate_en16931(
    invoice: CanonicalInvoice, require_endpoints: bool = True
) -> list[ValidationIssue]:
    """Run all tier 2 rules.

    Line rules only run when the invoice has line items; their absence is already
    reported by tier 1.

    Args:
        invoice: Canonical invoice
        require_endpoints: Apply the R010/R020 endpoint rules (network-routed formats)

    Returns:
        Ordered list of findings
    """
    issues = validate_monetary(invoice)
    if invoice.line_items:
        issues.extend(validate_line_items(invoice))
    issues.extend(validate_document_rules(invoice))
    if require_endpoints:
        issues.extend(validate_endpoints(invoice))
    return issues
