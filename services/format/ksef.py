"""KSeF FA(3) generator (Poland, KSeF 2.0).

Element order follows the FA(3) logical structure schema:
https://crd.gov.pl/wzor/2025/06/25/13775/schemat.xsd
"""

import xml.etree.ElementTree as ET
from decimal import Decimal

from services.format.base import FormatGenerator
from services.format.xml_utils import format_date_iso, normalize_currency, serialize, sub, sub_if
from services.invoice.model import CanonicalInvoice, DocumentTypeCode, OutputFormat, Party
from services.invoice.monetary import format_money, format_quantity, sum_money
from services.tax.categories import (
    document_amounts,
    effective_rate,
    line_net_amount,
    resolve_category,
)
from services.validation.profiles.ksef import nip_digits

KSEF_NS = "http://crd.gov.pl/wzor/2025/06/25/13775/"
KSEF_NAMESPACES = {"fa": KSEF_NS}
SYSTEM_INFO = "invoice-transcoding-engine"

# (net field, tax field) per standard Polish rate
RATE_FIELDS: dict[Decimal, tuple[str, str | None]] = {
    Decimal("23"): ("P_13_1", "P_14_1"),
    Decimal("8"): ("P_13_2", "P_14_2"),
    Decimal("5"): ("P_13_3", "P_14_3"),
    Decimal("22"): ("P_13_4", "P_14_4"),
    Decimal("7"): ("P_13_5", "P_14_5"),
}
ZERO_RATE_FIELD: tuple[str, str | None] = ("P_13_6_1", None)
OTHER_RATE_FIELDS: tuple[str, str | None] = ("P_13_11", "P_14_11")
FIELD_ORDER = (
    "P_13_1", "P_14_1", "P_13_2", "P_14_2", "P_13_3", "P_14_3",
    "P_13_4", "P_14_4", "P_13_5", "P_14_5", "P_13_6_1", "P_13_11", "P_14_11",
)

ZERO_RATE_MARKERS = {"E": "zw", "O": "np", "K": "np", "G": "np", "AE": "oo", "Z": "0"}

RODZAJ_FAKTURY = {
    DocumentTypeCode.CREDIT_NOTE: "KOR",
    DocumentTypeCode.CORRECTED_INVOICE: "KOR",
    DocumentTypeCode.SELF_BILLED_INVOICE: "ZAL",
}


def p12_value(rate: Decimal, category: str) -> str:
    """FaWiersz P_12: the rate, or the zero-rate marker of the category."""
    if rate == 0:
        return ZERO_RATE_MARKERS.get(category, "0")
    return format_quantity(rate)


def _address(parent: ET.Element, party: Party) -> None:
    address = sub(parent, "Adres")
    sub(address, "KodKraju", (party.country_code or "PL").upper())
    sub(address, "AdresL1", party.address or "")
    sub_if(address, "AdresL2", " ".join(v for v in (party.postal_code, party.city) if v))


def _contact(parent: ET.Element, party: Party) -> None:
    if party.email or party.phone:
        contact = sub(parent, "DaneKontaktowe")
        sub_if(contact, "Email", party.email)
        sub_if(contact, "Telefon", party.phone)


class KSeFGenerator(FormatGenerator):
    format_id = OutputFormat.KSEF.value
    format_name = "KSeF FA(3) (Poland)"
    file_suffix = "ksef"
    version = "2.0.0"
    spec_version = "FA(3)"
    spec_date = "2024-11-20"

    root_tag = f"{{{KSEF_NS}}}Faktura"
    required_paths = (
        "fa:Naglowek",
        "fa:Podmiot1/fa:DaneIdentyfikacyjne/fa:NIP",
        "fa:Podmiot2/fa:JST",
        "fa:Fa/fa:P_15",
        "fa:Fa/fa:Adnotacje",
        "fa:Fa/fa:RodzajFaktury",
        "fa:Fa/fa:FaWiersz",
    )
    namespaces = KSEF_NAMESPACES

    def build_xml(self, invoice: CanonicalInvoice) -> str:
        amounts = document_amounts(invoice)
        issue_date = format_date_iso(invoice.invoice_date)

        root = ET.Element("Faktura", {"xmlns": KSEF_NS})

        header = sub(root, "Naglowek")
        sub(header, "KodFormularza", "FA", {"kodSystemowy": "FA (3)", "wersjaSchemy": "1-0E"})
        sub(header, "WariantFormularza", "3")
        # Derived from the issue date, never the wall clock
        sub(header, "DataWytworzeniaFa", f"{issue_date}T00:00:00Z")
        sub(header, "SystemInfo", SYSTEM_INFO)

        seller = sub(root, "Podmiot1")
        identification = sub(seller, "DaneIdentyfikacyjne")
        sub(identification, "NIP", nip_digits(invoice.seller)[:10])
        sub(identification, "Nazwa", invoice.seller.name)
        _address(seller, invoice.seller)
        _contact(seller, invoice.seller)

        buyer = sub(root, "Podmiot2")
        identification = sub(buyer, "DaneIdentyfikacyjne")
        buyer_nip = nip_digits(invoice.buyer)[:10]
        if buyer_nip:
            sub(identification, "NIP", buyer_nip)
        else:
            sub(identification, "BrakID", "1")
        sub(identification, "Nazwa", invoice.buyer.name)
        if invoice.buyer.address or invoice.buyer.city or invoice.buyer.country_code:
            _address(buyer, invoice.buyer)
        _contact(buyer, invoice.buyer)
        # JST and GV: 2 = no
        sub(buyer, "JST", "2")
        sub(buyer, "GV", "2")

        fa = sub(root, "Fa")
        sub(fa, "KodWaluty", normalize_currency(invoice.currency, self.pipeline.settings.default_currency))
        sub(fa, "P_1", issue_date)
        sub(fa, "P_2", invoice.invoice_number)
        if invoice.billing_period_start and invoice.billing_period_end:
            period = sub(fa, "OkresFa")
            sub(period, "P_6_Od", format_date_iso(invoice.billing_period_start))
            sub(period, "P_6_Do", format_date_iso(invoice.billing_period_end))

        totals: dict[str, list[Decimal]] = {}
        for bucket in amounts.buckets:
            if bucket.rate == 0:
                net_field, tax_field = ZERO_RATE_FIELD
            else:
                net_field, tax_field = RATE_FIELDS.get(bucket.rate.normalize(), OTHER_RATE_FIELDS)
            totals.setdefault(net_field, []).append(bucket.basis_amount)
            if tax_field:
                totals.setdefault(tax_field, []).append(bucket.tax_amount)
        for field in FIELD_ORDER:
            if field in totals:
                sub(fa, field, format_money(sum_money(totals[field])))
        sub(fa, "P_15", format_money(amounts.grand_total))

        annotations = sub(fa, "Adnotacje")
        sub(annotations, "P_16", "2")
        sub(annotations, "P_17", "2")
        reverse_charge = any(bucket.category == "AE" for bucket in amounts.buckets)
        sub(annotations, "P_18", "1" if reverse_charge else "2")
        sub(annotations, "P_18A", "2")
        sub(sub(annotations, "Zwolnienie"), "P_19N", "1")
        sub(sub(annotations, "NoweSrodkiTransportu"), "P_22N", "1")
        sub(annotations, "P_23", "2")
        sub(sub(annotations, "PMarzy"), "P_PMarzyN", "1")

        sub(fa, "RodzajFaktury", RODZAJ_FAKTURY.get(invoice.document_type_code, "VAT"))
        if invoice.preceding_invoice_reference and invoice.document_type_code in (
            DocumentTypeCode.CREDIT_NOTE,
            DocumentTypeCode.CORRECTED_INVOICE,
        ):
            corrected = sub(fa, "DaneFaKorygowanej")
            sub(corrected, "DataWystFaKorygowanej", issue_date)
            sub(corrected, "NrFaKorygowanej", invoice.preceding_invoice_reference)

        default_unit = self.pipeline.settings.default_unit_code
        for index, item in enumerate(invoice.line_items, start=1):
            rate = effective_rate(item, invoice)
            line = sub(fa, "FaWiersz")
            sub(line, "NrWierszaFa", str(index))
            sub(line, "P_7", item.description)
            sub(line, "P_8A", item.unit_code or default_unit)
            sub(line, "P_8B", format_quantity(item.quantity))
            sub(line, "P_9A", format_money(item.unit_price))
            sub(line, "P_11", format_money(line_net_amount(item)))
            sub(line, "P_12", p12_value(rate, resolve_category(rate, item.tax_category_code)))

        payment = invoice.payment
        if payment.due_date or payment.iban:
            platnosc = sub(fa, "Platnosc")
            sub_if(platnosc, "TerminPlatnosci", format_date_iso(payment.due_date))
            # 6 = bank transfer, 1 = cash
            sub(platnosc, "FormaPlatnosci", "6" if payment.iban else "1")
            if payment.iban:
                sub(sub(platnosc, "RachunekBankowy"), "NrRB", payment.iban.replace(" ", "").upper())

        return serialize(root)
