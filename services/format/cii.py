"""UN/CEFACT Cross Industry Invoice (CII D16B) document builder.

Shared by XRechnung (CII syntax) and the Factur-X profiles, which differ only in
their guideline identifiers and business-process context.

Element order follows the CII D16B schema:
https://unece.org/trade/uncefact/xml-schemas
"""

import xml.etree.ElementTree as ET

from services.format.base import FormatGenerator
from services.format.xml_utils import (
    amount,
    format_date_102,
    normalize_currency,
    serialize,
    sub,
    sub_if,
)
from services.invoice.model import CanonicalInvoice, Party
from services.invoice.monetary import format_money, format_quantity, format_rate
from services.tax.categories import document_amounts, effective_rate, line_net_amount, resolve_category

RSM_NS = "urn:un:unece:uncefact:data:standard:CrossIndustryInvoice:100"
RAM_NS = "urn:un:unece:uncefact:data:standard:ReusableAggregateBusinessInformationEntity:100"
UDT_NS = "urn:un:unece:uncefact:data:standard:UnqualifiedDataType:100"
QDT_NS = "urn:un:unece:uncefact:data:standard:QualifiedDataType:100"

CII_NAMESPACES = {"rsm": RSM_NS, "ram": RAM_NS, "udt": UDT_NS}

PEPPOL_BUSINESS_PROCESS = "urn:fdc:peppol.eu:2017:poacc:billing:01:1.0"


def _date_element(parent: ET.Element, tag: str, value: str | None) -> None:
    formatted = format_date_102(value)
    if formatted:
        container = sub(parent, tag)
        sub(container, "udt:DateTimeString", formatted, {"format": "102"})


def _endpoint_value(party: Party) -> str:
    value = (party.electronic_address or "").strip()
    scheme = (party.electronic_address_scheme or "").strip()
    if scheme and value.startswith(f"{scheme}:"):
        return value[len(scheme) + 1 :]
    return value


def _trade_party(parent: ET.Element, tag: str, party: Party, with_contact: bool) -> None:
    element = sub(parent, tag)
    sub(element, "ram:Name", party.name)

    if with_contact and (party.contact_name or party.phone or party.email):
        contact = sub(element, "ram:DefinedTradeContact")
        sub_if(contact, "ram:PersonName", party.contact_name or party.name)
        if party.phone:
            sub(sub(contact, "ram:TelephoneUniversalCommunication"), "ram:CompleteNumber", party.phone)
        if party.email:
            sub(sub(contact, "ram:EmailURIUniversalCommunication"), "ram:URIID", party.email)

    address = sub(element, "ram:PostalTradeAddress")
    sub_if(address, "ram:PostcodeCode", party.postal_code)
    sub_if(address, "ram:LineOne", party.address)
    sub_if(address, "ram:CityName", party.city)
    sub_if(address, "ram:CountryID", (party.country_code or "").upper())

    endpoint = _endpoint_value(party)
    if endpoint:
        scheme = party.electronic_address_scheme or "EM"
        communication = sub(element, "ram:URIUniversalCommunication")
        sub(communication, "ram:URIID", endpoint, {"schemeID": scheme})

    if party.vat_id:
        sub(sub(element, "ram:SpecifiedTaxRegistration"), "ram:ID", party.vat_id, {"schemeID": "VA"})
    if party.tax_number:
        sub(
            sub(element, "ram:SpecifiedTaxRegistration"),
            "ram:ID",
            party.tax_number,
            {"schemeID": "FC"},
        )


class CIIGenerator(FormatGenerator):
    """Base for CII-syntax generators."""

    guideline_id: str = ""
    business_process_id: str | None = None

    root_tag = f"{{{RSM_NS}}}CrossIndustryInvoice"
    namespaces = CII_NAMESPACES
    required_paths = (
        "rsm:ExchangedDocumentContext/ram:GuidelineSpecifiedDocumentContextParameter/ram:ID",
        "rsm:ExchangedDocument/ram:ID",
        "rsm:ExchangedDocument/ram:TypeCode",
        "rsm:SupplyChainTradeTransaction/ram:ApplicableHeaderTradeAgreement/ram:SellerTradeParty",
        "rsm:SupplyChainTradeTransaction/ram:ApplicableHeaderTradeAgreement/ram:BuyerTradeParty",
        "rsm:SupplyChainTradeTransaction/ram:ApplicableHeaderTradeSettlement/"
        "ram:SpecifiedTradeSettlementHeaderMonetarySummation/ram:GrandTotalAmount",
    )

    def buyer_reference(self, invoice: CanonicalInvoice) -> str | None:
        return invoice.buyer_reference

    def build_xml(self, invoice: CanonicalInvoice) -> str:
        currency = normalize_currency(invoice.currency, self.pipeline.settings.default_currency)
        amounts = document_amounts(invoice)

        root = ET.Element(
            "rsm:CrossIndustryInvoice",
            {"xmlns:rsm": RSM_NS, "xmlns:qdt": QDT_NS, "xmlns:ram": RAM_NS, "xmlns:udt": UDT_NS},
        )

        context = sub(root, "rsm:ExchangedDocumentContext")
        if self.business_process_id:
            process = sub(context, "ram:BusinessProcessSpecifiedDocumentContextParameter")
            sub(process, "ram:ID", self.business_process_id)
        guideline = sub(context, "ram:GuidelineSpecifiedDocumentContextParameter")
        sub(guideline, "ram:ID", self.guideline_id)

        document = sub(root, "rsm:ExchangedDocument")
        sub(document, "ram:ID", invoice.invoice_number)
        sub(document, "ram:TypeCode", str(invoice.document_type_code))
        _date_element(document, "ram:IssueDateTime", invoice.invoice_date)
        if invoice.notes:
            sub(sub(document, "ram:IncludedNote"), "ram:Content", invoice.notes)

        transaction = sub(root, "rsm:SupplyChainTradeTransaction")
        self._build_lines(transaction, invoice)
        self._build_agreement(transaction, invoice)

        delivery = sub(transaction, "ram:ApplicableHeaderTradeDelivery")
        event = sub(delivery, "ram:ActualDeliverySupplyChainEvent")
        _date_element(event, "ram:OccurrenceDateTime", invoice.invoice_date)

        settlement = sub(transaction, "ram:ApplicableHeaderTradeSettlement")
        sub(settlement, "ram:InvoiceCurrencyCode", currency)
        self._build_payment_means(settlement, invoice)

        for bucket in amounts.buckets:
            tax = sub(settlement, "ram:ApplicableTradeTax")
            sub(tax, "ram:CalculatedAmount", format_money(bucket.tax_amount))
            sub(tax, "ram:TypeCode", "VAT")
            sub_if(tax, "ram:ExemptionReason", bucket.exemption_reason)
            sub(tax, "ram:BasisAmount", format_money(bucket.basis_amount))
            sub(tax, "ram:CategoryCode", bucket.category)
            sub_if(tax, "ram:ExemptionReasonCode", bucket.exemption_reason_code)
            sub(tax, "ram:RateApplicablePercent", format_rate(bucket.rate))

        if invoice.billing_period_start or invoice.billing_period_end:
            period = sub(settlement, "ram:BillingSpecifiedPeriod")
            _date_element(period, "ram:StartDateTime", invoice.billing_period_start)
            _date_element(period, "ram:EndDateTime", invoice.billing_period_end)

        for ac in invoice.allowance_charges:
            element = sub(settlement, "ram:SpecifiedTradeAllowanceCharge")
            indicator = sub(element, "ram:ChargeIndicator")
            sub(indicator, "udt:Indicator", "true" if ac.charge_indicator else "false")
            if ac.percentage is not None:
                sub(element, "ram:CalculationPercent", format_rate(ac.percentage))
            if ac.base_amount is not None:
                sub(element, "ram:BasisAmount", format_money(ac.base_amount))
            sub(element, "ram:ActualAmount", format_money(ac.amount))
            sub_if(element, "ram:ReasonCode", ac.reason_code)
            sub_if(element, "ram:Reason", ac.reason)
            rate = effective_rate(ac, invoice)
            category_tax = sub(element, "ram:CategoryTradeTax")
            sub(category_tax, "ram:TypeCode", "VAT")
            sub(category_tax, "ram:CategoryCode", resolve_category(rate, ac.tax_category_code))
            sub(category_tax, "ram:RateApplicablePercent", format_rate(rate))

        if invoice.payment.payment_terms or invoice.payment.due_date:
            terms = sub(settlement, "ram:SpecifiedTradePaymentTerms")
            sub_if(terms, "ram:Description", invoice.payment.payment_terms)
            _date_element(terms, "ram:DueDateDateTime", invoice.payment.due_date)

        summation = sub(settlement, "ram:SpecifiedTradeSettlementHeaderMonetarySummation")
        sub(summation, "ram:LineTotalAmount", format_money(amounts.line_total))
        if invoice.allowance_charges:
            sub(summation, "ram:ChargeTotalAmount", format_money(amounts.charge_total))
            sub(summation, "ram:AllowanceTotalAmount", format_money(amounts.allowance_total))
        sub(summation, "ram:TaxBasisTotalAmount", format_money(amounts.tax_basis_total))
        amount(summation, "ram:TaxTotalAmount", amounts.tax_total, currency)
        sub(summation, "ram:GrandTotalAmount", format_money(amounts.grand_total))
        if amounts.prepaid:
            sub(summation, "ram:TotalPrepaidAmount", format_money(amounts.prepaid))
        sub(summation, "ram:DuePayableAmount", format_money(amounts.due_payable))

        if invoice.preceding_invoice_reference:
            referenced = sub(settlement, "ram:InvoiceReferencedDocument")
            sub(referenced, "ram:IssuerAssignedID", invoice.preceding_invoice_reference)

        return serialize(root)

    def _build_lines(self, transaction: ET.Element, invoice: CanonicalInvoice) -> None:
        default_unit = self.pipeline.settings.default_unit_code
        for index, item in enumerate(invoice.line_items, start=1):
            line = sub(transaction, "ram:IncludedSupplyChainTradeLineItem")
            sub(sub(line, "ram:AssociatedDocumentLineDocument"), "ram:LineID", str(index))
            sub(sub(line, "ram:SpecifiedTradeProduct"), "ram:Name", item.description)

            agreement = sub(line, "ram:SpecifiedLineTradeAgreement")
            price = sub(agreement, "ram:NetPriceProductTradePrice")
            sub(price, "ram:ChargeAmount", format_money(item.unit_price))

            delivery = sub(line, "ram:SpecifiedLineTradeDelivery")
            sub(
                delivery,
                "ram:BilledQuantity",
                format_quantity(item.quantity),
                {"unitCode": item.unit_code or default_unit},
            )

            settlement = sub(line, "ram:SpecifiedLineTradeSettlement")
            rate = effective_rate(item, invoice)
            tax = sub(settlement, "ram:ApplicableTradeTax")
            sub(tax, "ram:TypeCode", "VAT")
            sub(tax, "ram:CategoryCode", resolve_category(rate, item.tax_category_code))
            sub(tax, "ram:RateApplicablePercent", format_rate(rate))
            summation = sub(settlement, "ram:SpecifiedTradeSettlementLineMonetarySummation")
            sub(summation, "ram:LineTotalAmount", format_money(line_net_amount(item)))

    def _build_agreement(self, transaction: ET.Element, invoice: CanonicalInvoice) -> None:
        agreement = sub(transaction, "ram:ApplicableHeaderTradeAgreement")
        sub_if(agreement, "ram:BuyerReference", self.buyer_reference(invoice))
        _trade_party(agreement, "ram:SellerTradeParty", invoice.seller, with_contact=True)
        _trade_party(agreement, "ram:BuyerTradeParty", invoice.buyer, with_contact=False)

    def _build_payment_means(self, settlement: ET.Element, invoice: CanonicalInvoice) -> None:
        payment = invoice.payment
        means = sub(settlement, "ram:SpecifiedTradeSettlementPaymentMeans")
        if payment.iban:
            sub(means, "ram:TypeCode", "58")
            account = sub(means, "ram:PayeePartyCreditorFinancialAccount")
            sub(account, "ram:IBANID", payment.iban.replace(" ", "").upper())
            if payment.bic:
                institution = sub(means, "ram:PayeeSpecifiedCreditorFinancialInstitution")
                sub(institution, "ram:BICID", payment.bic.strip().upper())
        else:
            sub(means, "ram:TypeCode", "1")
