"""CIUS-RO Romanian identifier rules, layered on PEPPOL."""

import re

from services.invoice.model import CanonicalInvoice
from services.validation.result import ValidationIssue, error

CUI = re.compile(r"^(RO)?\d{1,10}$")
RO_VAT = re.compile(r"^RO\d{2,10}$")


def validate_ciusro(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    for party, role in ((invoice.seller, "seller"), (invoice.buyer, "buyer")):
        tax_number = (party.tax_number or "").replace(" ", "").upper()
        if tax_number and not CUI.match(tax_number):
            issues.append(
                error(
                    "CIUS-RO-CUI-FORMAT",
                    f"{role.capitalize()} CUI '{party.tax_number}' must be up to 10 digits, "
                    "optionally prefixed with RO",
                    f"invoice.{role}.tax_number",
                )
            )

        vat_id = (party.vat_id or "").replace(" ", "").upper()
        if vat_id.startswith("RO") and not RO_VAT.match(vat_id):
            issues.append(
                error(
                    "CIUS-RO-VAT-FORMAT",
                    f"{role.capitalize()} VAT id '{party.vat_id}' must be RO followed by 2-10 digits",
                    f"invoice.{role}.vat_id",
                )
            )

    return issues
