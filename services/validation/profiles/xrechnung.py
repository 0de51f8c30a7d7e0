"""XRechnung 3.0 national rules (BR-DE-*).

Based on the KoSIT XRechnung specification:
https://xeinkauf.de/xrechnung/versionen-und-bundles/
"""

from services.invoice.model import CanonicalInvoice
from services.validation.result import ValidationIssue, error, warning


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def validate_xrechnung(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    seller = invoice.seller
    buyer = invoice.buyer

    if _blank(seller.address):
        issues.append(error("BR-DE-1", "Seller street address is required", "invoice.seller.address"))

    missing_contact = [
        label
        for label, value in (
            ("contact name", seller.contact_name or seller.name),
            ("phone", seller.phone),
            ("email", seller.email),
        )
        if _blank(value)
    ]
    if missing_contact:
        issues.append(
            error(
                "BR-DE-2",
                f"Seller contact is incomplete, missing: {', '.join(missing_contact)}",
                "invoice.seller.phone" if "phone" in missing_contact else "invoice.seller.contact_name",
            )
        )

    if _blank(seller.city):
        issues.append(error("BR-DE-3", "Seller city is required", "invoice.seller.city"))
    if _blank(seller.postal_code):
        issues.append(error("BR-DE-4", "Seller postal code is required", "invoice.seller.postal_code"))
    if _blank(seller.country_code):
        issues.append(error("BR-DE-5", "Seller country code is required", "invoice.seller.country_code"))

    if _blank(buyer.address):
        issues.append(error("BR-DE-6", "Buyer street address is required", "invoice.buyer.address"))
    if _blank(buyer.city):
        issues.append(error("BR-DE-7", "Buyer city is required", "invoice.buyer.city"))
    if _blank(buyer.postal_code):
        issues.append(error("BR-DE-8", "Buyer postal code is required", "invoice.buyer.postal_code"))
    if _blank(buyer.country_code):
        issues.append(error("BR-DE-11", "Buyer country code is required", "invoice.buyer.country_code"))

    # The invoice number doubles as buyer reference when no Leitweg-ID is given.
    if _blank(invoice.buyer_reference) and _blank(invoice.invoice_number):
        issues.append(
            warning(
                "BR-DE-15",
                "Buyer reference (Leitweg-ID) is recommended",
                "invoice.buyer_reference",
            )
        )

    if invoice.currency and invoice.currency.strip().upper() != "EUR":
        issues.append(
            error(
                "BR-DE-18",
                f"XRechnung requires currency EUR (got {invoice.currency})",
                "invoice.currency",
            )
        )

    if _blank(invoice.payment.iban):
        issues.append(
            error(
                "BR-DE-23-a",
                "Seller IBAN is required for credit transfer payment means",
                "invoice.payment.iban",
            )
        )

    return issues
