"""OASIS UBL 2.1 Invoice / CreditNote document builder.

Shared by XRechnung (UBL syntax), PEPPOL BIS Billing 3.0, NLCIUS and CIUS-RO,
which differ in CustomizationID and in their validation rules.

Element order follows the UBL 2.1 schema and PEPPOL BIS Billing 3.0 syntax binding:
https://docs.peppol.eu/poacc/billing/3.0/syntax/ubl-invoice/tree/
"""

import xml.etree.ElementTree as ET

from services.format.base import FormatGenerator
from services.format.xml_utils import amount, format_date_iso, normalize_currency, serialize, sub, sub_if
from services.invoice.model import CanonicalInvoice, DocumentTypeCode, Party
from services.invoice.monetary import format_quantity, format_rate
from services.tax.categories import document_amounts, effective_rate, line_net_amount, resolve_category

INVOICE_NS = "urn:oasis:names:specification:ubl:schema:xsd:Invoice-2"
CREDIT_NOTE_NS = "urn:oasis:names:specification:ubl:schema:xsd:CreditNote-2"
CAC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonAggregateComponents-2"
CBC_NS = "urn:oasis:names:specification:ubl:schema:xsd:CommonBasicComponents-2"

UBL_NAMESPACES = {"inv": INVOICE_NS, "cn": CREDIT_NOTE_NS, "cac": CAC_NS, "cbc": CBC_NS}

PEPPOL_PROFILE_ID = "urn:fdc:peppol.eu:2017:poacc:billing:01:1.0"


def _endpoint(party: Party) -> tuple[str, str] | None:
    value = (party.electronic_address or "").strip()
    if not value:
        return None
    scheme = (party.electronic_address_scheme or "").strip() or ("EM" if "@" in value else "")
    if scheme and value.startswith(f"{scheme}:"):
        value = value[len(scheme) + 1 :]
    return value, scheme or "EM"


def _party(parent: ET.Element, wrapper: str, party: Party, with_contact: bool) -> None:
    element = sub(sub(parent, wrapper), "cac:Party")

    endpoint = _endpoint(party)
    if endpoint:
        sub(element, "cbc:EndpointID", endpoint[0], {"schemeID": endpoint[1]})

    if party.name:
        sub(sub(element, "cac:PartyName"), "cbc:Name", party.name)

    address = sub(element, "cac:PostalAddress")
    sub_if(address, "cbc:StreetName", party.address)
    sub_if(address, "cbc:CityName", party.city)
    sub_if(address, "cbc:PostalZone", party.postal_code)
    sub(sub(address, "cac:Country"), "cbc:IdentificationCode", (party.country_code or "").upper())

    if party.vat_id:
        tax_scheme = sub(element, "cac:PartyTaxScheme")
        sub(tax_scheme, "cbc:CompanyID", party.vat_id)
        sub(sub(tax_scheme, "cac:TaxScheme"), "cbc:ID", "VAT")
    if party.tax_number:
        tax_scheme = sub(element, "cac:PartyTaxScheme")
        sub(tax_scheme, "cbc:CompanyID", party.tax_number)
        sub(sub(tax_scheme, "cac:TaxScheme"), "cbc:ID", "FC")

    legal = sub(element, "cac:PartyLegalEntity")
    sub(legal, "cbc:RegistrationName", party.name)

    if with_contact and (party.contact_name or party.phone or party.email):
        contact = sub(element, "cac:Contact")
        sub_if(contact, "cbc:Name", party.contact_name or party.name)
        sub_if(contact, "cbc:Telephone", party.phone)
        sub_if(contact, "cbc:ElectronicMail", party.email)


class UBLGenerator(FormatGenerator):
    """Base for UBL-syntax generators."""

    customization_id: str = ""
    profile_id: str = PEPPOL_PROFILE_ID

    namespaces = UBL_NAMESPACES

    def validate_xml(self, xml_content: str) -> list[str]:
        problems = super().validate_xml(xml_content)
        if problems:
            return problems
        root = ET.fromstring(xml_content)
        is_credit_note = root.tag == f"{{{CREDIT_NOTE_NS}}}CreditNote"
        if not is_credit_note and root.tag != f"{{{INVOICE_NS}}}Invoice":
            return [f"Unexpected root element {root.tag}"]
        line_tag = "cac:CreditNoteLine" if is_credit_note else "cac:InvoiceLine"
        for path in (
            "cbc:CustomizationID",
            "cbc:ID",
            "cbc:IssueDate",
            "cbc:DocumentCurrencyCode",
            "cac:AccountingSupplierParty/cac:Party",
            "cac:AccountingCustomerParty/cac:Party",
            "cac:TaxTotal/cbc:TaxAmount",
            "cac:LegalMonetaryTotal/cbc:PayableAmount",
            line_tag,
        ):
            if root.find(path, self.namespaces) is None:
                problems.append(f"Missing element {path}")
        return problems

    def build_xml(self, invoice: CanonicalInvoice) -> str:
        currency = normalize_currency(invoice.currency, self.pipeline.settings.default_currency)
        default_unit = self.pipeline.settings.default_unit_code
        amounts = document_amounts(invoice)
        credit_note = invoice.document_type_code == DocumentTypeCode.CREDIT_NOTE

        if credit_note:
            root = ET.Element(
                "CreditNote", {"xmlns": CREDIT_NOTE_NS, "xmlns:cac": CAC_NS, "xmlns:cbc": CBC_NS}
            )
        else:
            root = ET.Element(
                "Invoice", {"xmlns": INVOICE_NS, "xmlns:cac": CAC_NS, "xmlns:cbc": CBC_NS}
            )

        sub(root, "cbc:CustomizationID", self.customization_id)
        sub(root, "cbc:ProfileID", self.profile_id)
        sub(root, "cbc:ID", invoice.invoice_number)
        sub(root, "cbc:IssueDate", format_date_iso(invoice.invoice_date))
        if not credit_note and invoice.payment.due_date:
            sub_if(root, "cbc:DueDate", format_date_iso(invoice.payment.due_date))
        sub(
            root,
            "cbc:CreditNoteTypeCode" if credit_note else "cbc:InvoiceTypeCode",
            str(invoice.document_type_code),
        )
        sub_if(root, "cbc:Note", invoice.notes)
        sub(root, "cbc:DocumentCurrencyCode", currency)
        sub_if(root, "cbc:BuyerReference", invoice.buyer_reference or invoice.invoice_number)

        if invoice.billing_period_start or invoice.billing_period_end:
            period = sub(root, "cac:InvoicePeriod")
            sub_if(period, "cbc:StartDate", format_date_iso(invoice.billing_period_start))
            sub_if(period, "cbc:EndDate", format_date_iso(invoice.billing_period_end))

        if invoice.preceding_invoice_reference:
            reference = sub(sub(root, "cac:BillingReference"), "cac:InvoiceDocumentReference")
            sub(reference, "cbc:ID", invoice.preceding_invoice_reference)

        _party(root, "cac:AccountingSupplierParty", invoice.seller, with_contact=True)
        _party(root, "cac:AccountingCustomerParty", invoice.buyer, with_contact=False)

        payment = invoice.payment
        means = sub(root, "cac:PaymentMeans")
        if payment.iban:
            sub(means, "cbc:PaymentMeansCode", "58")
            account = sub(means, "cac:PayeeFinancialAccount")
            sub(account, "cbc:ID", payment.iban.replace(" ", "").upper())
            sub_if(account, "cbc:Name", payment.bank_name)
            if payment.bic:
                branch = sub(account, "cac:FinancialInstitutionBranch")
                sub(branch, "cbc:ID", payment.bic.strip().upper())
        else:
            sub(means, "cbc:PaymentMeansCode", "1")

        if payment.payment_terms:
            sub(sub(root, "cac:PaymentTerms"), "cbc:Note", payment.payment_terms)

        for ac in invoice.allowance_charges:
            element = sub(root, "cac:AllowanceCharge")
            sub(element, "cbc:ChargeIndicator", "true" if ac.charge_indicator else "false")
            sub_if(element, "cbc:AllowanceChargeReasonCode", ac.reason_code)
            sub_if(element, "cbc:AllowanceChargeReason", ac.reason)
            if ac.percentage is not None:
                sub(element, "cbc:MultiplierFactorNumeric", format_rate(ac.percentage))
            amount(element, "cbc:Amount", ac.amount, currency)
            if ac.base_amount is not None:
                amount(element, "cbc:BaseAmount", ac.base_amount, currency)
            rate = effective_rate(ac, invoice)
            category = sub(element, "cac:TaxCategory")
            sub(category, "cbc:ID", resolve_category(rate, ac.tax_category_code))
            sub(category, "cbc:Percent", format_rate(rate))
            sub(sub(category, "cac:TaxScheme"), "cbc:ID", "VAT")

        tax_total = sub(root, "cac:TaxTotal")
        amount(tax_total, "cbc:TaxAmount", amounts.tax_total, currency)
        for bucket in amounts.buckets:
            subtotal = sub(tax_total, "cac:TaxSubtotal")
            amount(subtotal, "cbc:TaxableAmount", bucket.basis_amount, currency)
            amount(subtotal, "cbc:TaxAmount", bucket.tax_amount, currency)
            category = sub(subtotal, "cac:TaxCategory")
            sub(category, "cbc:ID", bucket.category)
            sub(category, "cbc:Percent", format_rate(bucket.rate))
            sub_if(category, "cbc:TaxExemptionReasonCode", bucket.exemption_reason_code)
            sub_if(category, "cbc:TaxExemptionReason", bucket.exemption_reason)
            sub(sub(category, "cac:TaxScheme"), "cbc:ID", "VAT")

        monetary = sub(root, "cac:LegalMonetaryTotal")
        amount(monetary, "cbc:LineExtensionAmount", amounts.line_total, currency)
        amount(monetary, "cbc:TaxExclusiveAmount", amounts.tax_basis_total, currency)
        amount(monetary, "cbc:TaxInclusiveAmount", amounts.grand_total, currency)
        if invoice.allowance_charges:
            amount(monetary, "cbc:AllowanceTotalAmount", amounts.allowance_total, currency)
            amount(monetary, "cbc:ChargeTotalAmount", amounts.charge_total, currency)
        if amounts.prepaid:
            amount(monetary, "cbc:PrepaidAmount", amounts.prepaid, currency)
        amount(monetary, "cbc:PayableAmount", amounts.due_payable, currency)

        line_tag = "cac:CreditNoteLine" if credit_note else "cac:InvoiceLine"
        quantity_tag = "cbc:CreditedQuantity" if credit_note else "cbc:InvoicedQuantity"
        for index, item in enumerate(invoice.line_items, start=1):
            line = sub(root, line_tag)
            sub(line, "cbc:ID", str(index))
            sub(
                line,
                quantity_tag,
                format_quantity(item.quantity),
                {"unitCode": item.unit_code or default_unit},
            )
            amount(line, "cbc:LineExtensionAmount", line_net_amount(item), currency)
            product = sub(line, "cac:Item")
            sub(product, "cbc:Name", item.description)
            rate = effective_rate(item, invoice)
            category = sub(product, "cac:ClassifiedTaxCategory")
            sub(category, "cbc:ID", resolve_category(rate, item.tax_category_code))
            sub(category, "cbc:Percent", format_rate(rate))
            sub(sub(category, "cac:TaxScheme"), "cbc:ID", "VAT")
            price = sub(line, "cac:Price")
            amount(price, "cbc:PriceAmount", item.unit_price, currency)

        return serialize(root)

