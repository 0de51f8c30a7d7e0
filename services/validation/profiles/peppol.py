"""PEPPOL BIS Billing 3.0 rules, shared by NLCIUS and CIUS-RO.

Based on the OpenPEPPOL BIS Billing 3.0 rules and code lists:
https://docs.peppol.eu/poacc/billing/3.0/
"""

import re

from services.invoice.model import CanonicalInvoice, DocumentTypeCode, Party
from services.tax.categories import TAX_CATEGORY_RULES
from services.validation.result import ValidationIssue, error

# Electronic Address Scheme (EAS) code list, plus EM for e-mail endpoints.
EAS_CODES = frozenset(
    {
        "0002", "0007", "0009", "0037", "0060", "0088", "0096", "0097", "0106", "0130",
        "0135", "0142", "0147", "0151", "0170", "0183", "0184", "0188", "0190", "0191",
        "0192", "0193", "0194", "0195", "0196", "0198", "0199", "0200", "0201", "0202",
        "0203", "0204", "0205", "0208", "0209", "0210", "0211", "0212", "0213", "0215",
        "0216", "0217", "0218", "0219", "0220", "0221", "9901", "9910", "9913", "9914",
        "9915", "9918", "9919", "9920", "9922", "9923", "9924", "9925", "9926", "9927",
        "9928", "9929", "9930", "9931", "9932", "9933", "9934", "9935", "9936", "9937",
        "9938", "9939", "9940", "9941", "9942", "9943", "9944", "9945", "9946", "9947",
        "9948", "9949", "9950", "9951", "9952", "9953", "9957", "9959", "EM",
    }
)

COUNTRY_CODE = re.compile(r"^[A-Z]{2}$")
ALLOWED_CATEGORIES = frozenset(TAX_CATEGORY_RULES) | {"M"}


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _scheme_issue(party: Party, rule_id: str, role: str) -> ValidationIssue | None:
    if _blank(party.electronic_address) or _blank(party.electronic_address_scheme):
        return None
    scheme = party.electronic_address_scheme.strip().upper()
    if scheme in EAS_CODES:
        return None
    return error(
        rule_id,
        f"{role} electronic address scheme '{scheme}' is not in the EAS code list",
        f"invoice.{role.lower()}.electronic_address_scheme",
    )


def validate_peppol(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    for party, rule_id, role in (
        (invoice.buyer, "PEPPOL-EN16931-R010-SCHEME", "Buyer"),
        (invoice.seller, "PEPPOL-EN16931-R020-SCHEME", "Seller"),
    ):
        issue = _scheme_issue(party, rule_id, role)
        if issue:
            issues.append(issue)

    for index, item in enumerate(invoice.line_items):
        code = item.tax_category_code
        if code and code.upper() not in ALLOWED_CATEGORIES:
            issues.append(
                error(
                    "PEPPOL-EN16931-CL001",
                    f"Line {index + 1}: tax category '{code}' is not in the UNCL5305 subset",
                    f"invoice.line_items[{index}].tax_category_code",
                )
            )

    for party, role in ((invoice.seller, "seller"), (invoice.buyer, "buyer")):
        if party.country_code and not COUNTRY_CODE.match(party.country_code):
            issues.append(
                error(
                    "PEPPOL-EN16931-CL005",
                    f"{role.capitalize()} country code '{party.country_code}' is not ISO 3166-1 alpha-2",
                    f"invoice.{role}.country_code",
                )
            )

    if _blank(invoice.seller.vat_id) and _blank(invoice.seller.tax_number):
        issues.append(
            error(
                "PEPPOL-EN16931-R004",
                "Seller VAT identifier or tax registration is required",
                "invoice.seller.vat_id",
            )
        )

    if (
        invoice.document_type_code == DocumentTypeCode.CREDIT_NOTE
        and _blank(invoice.preceding_invoice_reference)
    ):
        issues.append(
            error(
                "PEPPOL-EN16931-R006",
                "Credit note must reference the preceding invoice",
                "invoice.preceding_invoice_reference",
            )
        )

    return issues
