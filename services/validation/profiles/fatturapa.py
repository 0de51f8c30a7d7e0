"""FatturaPA 1.2 (Italy, SdI) rules."""

import re

from services.format.xml_utils import is_iso_currency
from services.invoice.model import CanonicalInvoice
from services.validation.result import ValidationIssue, error, warning

TIPO_DOCUMENTO = {380: "TD01", 381: "TD04", 384: "TD05", 389: "TD01"}
CODICE_DESTINATARIO = re.compile(r"^[A-Z0-9]{7}$")
REGIME_FISCALE = re.compile(r"^RF(0[1-9]|1[0-9])$")


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


def _validate_header(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    seller = invoice.seller

    if _blank(invoice.invoice_number):
        issues.append(error("FPA-001", "Invoice number (Numero) is required", "invoice.invoice_number"))
    if _blank(invoice.invoice_date):
        issues.append(error("FPA-002", "Invoice date (Data) is required", "invoice.invoice_date"))

    if _blank(invoice.currency):
        issues.append(error("FPA-003", "Currency code (Divisa) is required", "invoice.currency"))
    elif not is_iso_currency(invoice.currency):
        issues.append(
            error("FPA-003a", f"Currency '{invoice.currency}' is not a valid ISO 4217 code", "invoice.currency")
        )

    if invoice.document_type_code not in TIPO_DOCUMENTO:
        issues.append(
            error(
                "FPA-004",
                f"Document type code {invoice.document_type_code} has no TipoDocumento mapping",
                "invoice.document_type_code",
            )
        )

    vat_id = (seller.vat_id or "").strip()
    if not vat_id:
        issues.append(error("FPA-010", "Seller VAT ID (IdFiscaleIVA) is required", "invoice.seller.vat_id"))
    elif len(vat_id) < 4:
        issues.append(
            error(
                "FPA-010a",
                f"Seller VAT ID '{vat_id}' is too short, it must hold country code and number",
                "invoice.seller.vat_id",
            )
        )

    for rule_id, value, label, field in (
        ("FPA-011", seller.address, "address (Indirizzo)", "address"),
        ("FPA-012", seller.city, "city (Comune)", "city"),
        ("FPA-013", seller.postal_code, "postal code (CAP)", "postal_code"),
        ("FPA-014", seller.country_code, "country code (Nazione)", "country_code"),
    ):
        if _blank(value):
            issues.append(error(rule_id, f"Seller {label} is required", f"invoice.seller.{field}"))

    buyer = invoice.buyer
    if _blank(buyer.vat_id) and _blank(buyer.tax_number):
        issues.append(
            error(
                "FPA-020",
                "Buyer identification (VAT ID or fiscal code) is required",
                "invoice.buyer.vat_id",
            )
        )

    code = (buyer.electronic_address or "").strip()
    if code and code != "0000000" and not CODICE_DESTINATARIO.match(code):
        issues.append(
            warning(
                "FPA-021",
                f"CodiceDestinatario '{code}' should be exactly 7 alphanumeric characters, "
                "0000000 is used instead",
                "invoice.buyer.electronic_address",
            )
        )

    regime = (seller.tax_regime or "").strip()
    if regime and not REGIME_FISCALE.match(regime):
        issues.append(
            error(
                "FPA-036",
                f"RegimeFiscale '{regime}' is not valid, must be RF01 through RF19",
                "invoice.seller.tax_regime",
            )
        )

    return issues


def _validate_lines(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    if not invoice.line_items:
        issues.append(
            error("FPA-030", "At least one line item (DettaglioLinee) is required", "invoice.line_items")
        )

    for index, item in enumerate(invoice.line_items):
        path = f"invoice.line_items[{index}]"
        label = f"Line {index + 1}"
        if _blank(item.description):
            issues.append(error("FPA-031", f"{label}: description (Descrizione) is required", f"{path}.description"))
        if item.quantity is None or item.quantity <= 0:
            issues.append(
                error("FPA-032", f"{label}: quantity (Quantita) must be a positive number", f"{path}.quantity")
            )
        if item.unit_price is None:
            issues.append(error("FPA-033", f"{label}: unit price (PrezzoUnitario) is required", f"{path}.unit_price"))
        if item.tax_rate is None:
            issues.append(error("FPA-034", f"{label}: tax rate (AliquotaIVA) is required", f"{path}.tax_rate"))

        category = (item.tax_category_code or "").strip().upper()
        if category == "AE" and item.tax_rate is not None and item.tax_rate != 0:
            issues.append(
                error(
                    "FPA-035",
                    f"{label}: reverse charge (AE) tax rate must be 0%, got {item.tax_rate}%",
                    f"{path}.tax_rate",
                )
            )
        if item.tax_rate is not None and item.tax_rate == 0 and not category:
            issues.append(
                warning(
                    "FPA-035",
                    f"{label}: 0% VAT needs a tax category code to determine Natura",
                    f"{path}.tax_category_code",
                )
            )

    return issues


def validate_fatturapa(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    return _validate_header(invoice) + _validate_lines(invoice)
