"""Factur-X 1.0 rules for the BASIC and EN 16931 profiles.

Based on the FNFE-MPE / FeRD Factur-X specification:
https://fnfe-mpe.org/factur-x/
"""

import re

from services.invoice.model import CanonicalInvoice, DocumentTypeCode
from services.validation.result import ValidationIssue, error

COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")
CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")
ALLOWED_DOCUMENT_TYPES = {DocumentTypeCode.COMMERCIAL_INVOICE, DocumentTypeCode.CREDIT_NOTE}
ALLOWED_CATEGORIES = frozenset({"S", "Z", "E", "AE", "K", "G", "O", "L", "M"})


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_facturx_common(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    if invoice.document_type_code not in ALLOWED_DOCUMENT_TYPES:
        issues.append(
            error(
                "FX-COMMON-001",
                f"Document type {invoice.document_type_code} is not supported, use 380 or 381",
                "invoice.document_type_code",
            )
        )
    if not invoice.line_items:
        issues.append(error("FX-COMMON-002", "At least one line item is required", "invoice.line_items"))
    if _blank(invoice.seller.name):
        issues.append(error("FX-COMMON-003", "Seller name is required", "invoice.seller.name"))
    if _blank(invoice.seller.address):
        issues.append(error("FX-COMMON-004", "Seller address is required", "invoice.seller.address"))
    if _blank(invoice.buyer.name):
        issues.append(error("FX-COMMON-005", "Buyer name is required", "invoice.buyer.name"))

    for party, role, rule_id in (
        (invoice.seller, "seller", "FX-COMMON-006"),
        (invoice.buyer, "buyer", "FX-COMMON-007"),
    ):
        country = (party.country_code or "").strip()
        if not country:
            issues.append(
                error(rule_id, f"{role.capitalize()} country code is required", f"invoice.{role}.country_code")
            )
        elif not COUNTRY_CODE.match(country):
            issues.append(
                error(
                    f"{rule_id}a",
                    f"{role.capitalize()} country code '{country}' is not ISO 3166-1 alpha-2",
                    f"invoice.{role}.country_code",
                )
            )

    currency = (invoice.currency or "").strip().upper()
    if currency and not CURRENCY_CODE.match(currency):
        issues.append(
            error("FX-COMMON-008", f"Currency '{currency}' is not a valid ISO 4217 code", "invoice.currency")
        )

    for index, item in enumerate(invoice.line_items):
        category = (item.tax_category_code or "").strip().upper()
        if category and category not in ALLOWED_CATEGORIES:
            issues.append(
                error(
                    "FX-COMMON-009",
                    f"Line {index + 1}: tax category '{category}' is not in the EN 16931 set",
                    f"invoice.line_items[{index}].tax_category_code",
                )
            )

    if invoice.is_credit_note and _blank(invoice.preceding_invoice_reference):
        issues.append(
            error(
                "FX-COMMON-010",
                "Credit notes must include a preceding invoice reference (BT-25)",
                "invoice.preceding_invoice_reference",
            )
        )

    if _blank(invoice.seller.vat_id) and _blank(invoice.seller.tax_number):
        issues.append(
            error(
                "FX-COMMON-011",
                "At least one seller tax identifier is required (VAT ID or tax number)",
                "invoice.seller.vat_id",
            )
        )

    return issues


def validate_facturx_en16931(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues = validate_facturx_common(invoice)
    if _blank(invoice.payment.payment_terms) and _blank(invoice.payment.due_date):
        issues.append(
            error(
                "FX-EN16931-001",
                "Payment terms or payment due date is required for the EN 16931 profile",
                "invoice.payment",
            )
        )
    return issues
