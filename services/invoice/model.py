"""Canonical, format-neutral invoice model.

Every generator reads this representation; the extraction collaborator produces
it, possibly incomplete, which is why most fields are optional and presence is
enforced by validation rather than by the model.

Field semantics follow the EN 16931 semantic model:
https://ec.europa.eu/digital-building-blocks/sites/display/DIGITAL/Obtaining+a+copy+of+the+European+standard+on+eInvoicing
"""

from decimal import Decimal
from enum import Enum, IntEnum

from pydantic import BaseModel, Field


class OutputFormat(str, Enum):
    """Supported target e-invoice standards."""

    XRECHNUNG_CII = "xrechnung-cii"
    XRECHNUNG_UBL = "xrechnung-ubl"
    PEPPOL_BIS = "peppol-bis"
    FACTURX_EN16931 = "facturx-en16931"
    FACTURX_BASIC = "facturx-basic"
    FATTURAPA = "fatturapa"
    KSEF = "ksef"
    NLCIUS = "nlcius"
    CIUS_RO = "cius-ro"


class DocumentTypeCode(IntEnum):
    """UNTDID 1001 document type codes accepted by the engine."""

    COMMERCIAL_INVOICE = 380
    CREDIT_NOTE = 381
    CORRECTED_INVOICE = 384
    SELF_BILLED_INVOICE = 389


class TaxCategory(str, Enum):
    """UNTDID 5305 VAT category codes."""

    STANDARD = "S"
    ZERO_RATED = "Z"
    EXEMPT = "E"
    REVERSE_CHARGE = "AE"
    INTRA_COMMUNITY = "K"
    EXPORT = "G"
    NOT_SUBJECT = "O"
    CANARY_ISLANDS = "L"


class Party(BaseModel):
    """Seller or buyer."""

    name: str | None = None
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country_code: str | None = Field(None, description="ISO 3166-1 alpha-2")
    vat_id: str | None = None
    tax_number: str | None = Field(None, description="Local tax id (Steuernummer, CUI, NIP)")
    electronic_address: str | None = Field(None, description="Routing endpoint id")
    electronic_address_scheme: str | None = Field(
        None, description="EAS code, e.g. 0204 Leitweg-ID, 0190 OIN, 0106 KVK, EM e-mail"
    )
    contact_name: str | None = None
    phone: str | None = None
    email: str | None = None
    tax_regime: str | None = Field(None, description="FatturaPA RegimeFiscale, e.g. RF01")


class PaymentInfo(BaseModel):
    """Payment instructions."""

    iban: str | None = None
    bic: str | None = None
    bank_name: str | None = None
    payment_terms: str | None = None
    due_date: str | None = None
    prepaid_amount: Decimal | None = None


class LineItem(BaseModel):
    """Invoice line. tax_rate is a percentage (19 means 19%)."""

    description: str | None = None
    quantity: Decimal | None = None
    unit_code: str | None = None
    unit_price: Decimal | None = None
    total_price: Decimal | None = None
    tax_rate: Decimal | None = None
    tax_category_code: str | None = None


class AllowanceCharge(BaseModel):
    """Document-level discount (charge_indicator False) or surcharge (True)."""

    charge_indicator: bool = False
    amount: Decimal
    base_amount: Decimal | None = None
    percentage: Decimal | None = None
    reason: str | None = None
    reason_code: str | None = None
    tax_rate: Decimal | None = None
    tax_category_code: str | None = None


class Totals(BaseModel):
    """Document totals. subtotal is the sum of line net amounts."""

    subtotal: Decimal | None = None
    tax_amount: Decimal | None = None
    total_amount: Decimal | None = None


class CanonicalInvoice(BaseModel):
    """Format-neutral invoice consumed by every generator."""

    output_format: OutputFormat | None = None
    invoice_number: str | None = None
    invoice_date: str | None = Field(None, description="YYYY-MM-DD, DD.MM.YYYY or YYYYMMDD")
    document_type_code: int = DocumentTypeCode.COMMERCIAL_INVOICE.value
    currency: str | None = "EUR"
    buyer_reference: str | None = None
    notes: str | None = None
    preceding_invoice_reference: str | None = None
    billing_period_start: str | None = None
    billing_period_end: str | None = None

    seller: Party = Field(default_factory=Party)
    buyer: Party = Field(default_factory=Party)
    payment: PaymentInfo = Field(default_factory=PaymentInfo)

    line_items: list[LineItem] = Field(default_factory=list)
    allowance_charges: list[AllowanceCharge] = Field(default_factory=list)
    totals: Totals = Field(default_factory=Totals)

    tax_rate: Decimal | None = Field(
        None, description="Invoice-level rate used for lines that carry none"
    )
    confidence: float | None = Field(None, ge=0, le=1)
    processing_time_ms: int | None = None

    @property
    def is_credit_note(self) -> bool:
        return self.document_type_code == DocumentTypeCode.CREDIT_NOTE
