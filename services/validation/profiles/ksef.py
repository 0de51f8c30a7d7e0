"""KSeF FA(3) rules (Poland).

FA(3) is the structure accepted by KSeF 2.0:
https://www.podatki.gov.pl/ksef/
"""

import re
from decimal import Decimal

from services.invoice.model import CanonicalInvoice, Party
from services.validation.result import ValidationIssue, error, warning

POLISH_RATES = frozenset(Decimal(rate) for rate in ("23", "22", "8", "7", "5", "0"))
MAX_NUMBER_LENGTH = 256


def nip_digits(party: Party) -> str:
    """NIP digits from tax number or VAT id, PL prefix and separators removed."""
    raw = party.tax_number or party.vat_id or ""
    return re.sub(r"\D", "", re.sub(r"^PL", "", raw.strip(), flags=re.IGNORECASE))


def validate_ksef(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    seller_nip = nip_digits(invoice.seller)
    if len(seller_nip) != 10:
        issues.append(
            error(
                "KSEF-01",
                f"Seller NIP (10-digit Polish tax ID) is required, got '{seller_nip or '(empty)'}'",
                "invoice.seller.vat_id",
            )
        )

    if not nip_digits(invoice.buyer) and not (invoice.buyer.name or "").strip():
        issues.append(error("KSEF-02", "Buyer NIP or name is required", "invoice.buyer"))

    number = (invoice.invoice_number or "").strip()
    if not number:
        issues.append(error("KSEF-03", "Invoice number is required", "invoice.invoice_number"))
    elif len(number) > MAX_NUMBER_LENGTH:
        issues.append(
            error(
                "KSEF-03",
                f"Invoice number must not exceed {MAX_NUMBER_LENGTH} characters",
                "invoice.invoice_number",
            )
        )

    if not (invoice.invoice_date or "").strip():
        issues.append(error("KSEF-04", "Invoice issue date is required", "invoice.invoice_date"))
    if not (invoice.currency or "").strip():
        issues.append(error("KSEF-05", "Currency code is required", "invoice.currency"))
    if not invoice.line_items:
        issues.append(error("KSEF-06", "At least one line item is required", "invoice.line_items"))

    for index, item in enumerate(invoice.line_items):
        path = f"invoice.line_items[{index}]"
        label = f"Line {index + 1}"
        for value, name, field in (
            (item.description, "description", "description"),
            (item.quantity, "quantity", "quantity"),
            (item.unit_price, "unit price", "unit_price"),
            (item.tax_rate, "tax rate", "tax_rate"),
        ):
            if value is None or (isinstance(value, str) and not value.strip()):
                issues.append(error("KSEF-07", f"{label}: {name} is required", f"{path}.{field}"))
        if item.tax_rate is not None and item.tax_rate not in POLISH_RATES:
            issues.append(
                warning(
                    "KSEF-08",
                    f"{label}: non-standard Polish tax rate {item.tax_rate}% "
                    "(reported under P_13_11/P_14_11)",
                    f"{path}.tax_rate",
                )
            )

    if invoice.totals.total_amount is None:
        issues.append(error("KSEF-09", "Total amount is required", "invoice.totals.total_amount"))

    return issues
