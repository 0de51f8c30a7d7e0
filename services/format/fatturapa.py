"""FatturaPA 1.2 (FatturaElettronica FPR12) generator for the Italian SdI.

Schema and technical rules:
https://www.fatturapa.gov.it/it/norme-e-regole/documentazione-fattura-elettronica/formato-fatturapa/
"""

import re
import xml.etree.ElementTree as ET

from services.format.base import FormatGenerator
from services.format.xml_utils import format_date_iso, normalize_currency, serialize, sub, sub_if
from services.invoice.model import CanonicalInvoice, OutputFormat, Party
from services.invoice.monetary import format_money, format_rate
from services.shared.errors import SchemaError
from services.tax.categories import document_amounts, effective_rate, line_net_amount, resolve_category
from services.validation.profiles.fatturapa import CODICE_DESTINATARIO, TIPO_DOCUMENTO

FATTURAPA_NS = "http://ivaservizi.agenziaentrate.gov.it/docs/xsd/fatture/v1.2"
FATTURAPA_NAMESPACES = {"p": FATTURAPA_NS}

# Natura applies to zero-rate lines and summaries only.
NATURA_CODES = {
    "E": "N4",
    "Z": "N2.1",
    "AE": "N6",
    "K": "N3.2",
    "G": "N3.1",
    "O": "N2.2",
    "L": "N2.2",
}
DEFAULT_NATURA = "N2.2"


def natura_code(category: str | None) -> str:
    return NATURA_CODES.get((category or "").strip().upper(), DEFAULT_NATURA)


def split_vat_id(vat_id: str | None, fallback_country: str | None) -> tuple[str, str] | None:
    """Split "IT12345678901" into ("IT", "12345678901").

    Identifiers without a country prefix take the party's country, defaulting to IT.
    """
    value = re.sub(r"\s", "", vat_id or "")
    if len(value) < 2:
        return None
    if re.match(r"^[A-Za-z]{2}", value):
        return value[:2].upper(), value[2:]
    return (fallback_country or "IT").upper(), value


def _id_fiscale(parent: ET.Element, tag: str, country: str, code: str) -> None:
    element = sub(parent, tag)
    sub(element, "IdPaese", country)
    sub(element, "IdCodice", code)


def _sede(parent: ET.Element, party: Party, fallback_country: str) -> None:
    sede = sub(parent, "Sede")
    sub(sede, "Indirizzo", party.address or "N/A")
    sub(sede, "CAP", party.postal_code or "00000")
    sub(sede, "Comune", party.city or "N/A")
    sub(sede, "Nazione", (party.country_code or fallback_country).upper())


class FatturaPAGenerator(FormatGenerator):
    format_id = OutputFormat.FATTURAPA.value
    format_name = "FatturaPA 1.2 (Italy)"
    file_suffix = "fatturapa"
    spec_version = "1.2.2"
    spec_date = "2022-09-29"

    root_tag = f"{{{FATTURAPA_NS}}}FatturaElettronica"
    required_paths = (
        "FatturaElettronicaHeader/DatiTrasmissione",
        "FatturaElettronicaHeader/CedentePrestatore",
        "FatturaElettronicaHeader/CessionarioCommittente",
        "FatturaElettronicaBody/DatiGenerali/DatiGeneraliDocumento",
        "FatturaElettronicaBody/DatiBeniServizi/DettaglioLinee",
        "FatturaElettronicaBody/DatiBeniServizi/DatiRiepilogo",
    )
    namespaces = FATTURAPA_NAMESPACES

    def build_xml(self, invoice: CanonicalInvoice) -> str:
        seller, buyer = invoice.seller, invoice.buyer
        seller_vat = split_vat_id(seller.vat_id or seller.tax_number, seller.country_code)
        if seller_vat is None:
            raise SchemaError("FatturaPA requires a seller VAT ID", "invoice.seller.vat_id")
        buyer_vat = split_vat_id(buyer.vat_id, buyer.country_code)
        amounts = document_amounts(invoice)
        tipo = TIPO_DOCUMENTO.get(invoice.document_type_code, "TD01")

        root = ET.Element("p:FatturaElettronica", {"xmlns:p": FATTURAPA_NS, "versione": "FPR12"})

        header = sub(root, "FatturaElettronicaHeader")
        transmission = sub(header, "DatiTrasmissione")
        _id_fiscale(transmission, "IdTrasmittente", *seller_vat)
        progressive = re.sub(r"[^A-Za-z0-9]", "", invoice.invoice_number or "")[:10].rjust(5, "0")
        sub(transmission, "ProgressivoInvio", progressive)
        sub(transmission, "FormatoTrasmissione", "FPR12")
        code = (buyer.electronic_address or "").strip()
        sub(transmission, "CodiceDestinatario", code if CODICE_DESTINATARIO.match(code) else "0000000")

        supplier = sub(header, "CedentePrestatore")
        registry = sub(supplier, "DatiAnagrafici")
        _id_fiscale(registry, "IdFiscaleIVA", *seller_vat)
        if seller.tax_number and seller.vat_id:
            sub(registry, "CodiceFiscale", seller.tax_number)
        sub(sub(registry, "Anagrafica"), "Denominazione", seller.name)
        sub(registry, "RegimeFiscale", (seller.tax_regime or "RF01").strip())
        _sede(supplier, seller, seller_vat[0])

        customer = sub(header, "CessionarioCommittente")
        registry = sub(customer, "DatiAnagrafici")
        if buyer_vat:
            _id_fiscale(registry, "IdFiscaleIVA", *buyer_vat)
        sub_if(registry, "CodiceFiscale", buyer.tax_number)
        sub(sub(registry, "Anagrafica"), "Denominazione", buyer.name)
        _sede(customer, buyer, buyer_vat[0] if buyer_vat else "IT")

        body = sub(root, "FatturaElettronicaBody")
        general = sub(body, "DatiGenerali")
        document = sub(general, "DatiGeneraliDocumento")
        sub(document, "TipoDocumento", tipo)
        sub(document, "Divisa", normalize_currency(invoice.currency, self.pipeline.settings.default_currency))
        sub(document, "Data", format_date_iso(invoice.invoice_date))
        sub(document, "Numero", invoice.invoice_number)
        for ac in invoice.allowance_charges:
            discount = sub(document, "ScontoMaggiorazione")
            sub(discount, "Tipo", "MG" if ac.charge_indicator else "SC")
            if ac.percentage is not None:
                sub(discount, "Percentuale", format_rate(ac.percentage))
            sub(discount, "Importo", format_money(ac.amount))
        sub(document, "ImportoTotaleDocumento", format_money(amounts.grand_total))
        if tipo == "TD04" and invoice.preceding_invoice_reference:
            linked = sub(general, "DatiFattureCollegate")
            sub(linked, "IdDocumento", invoice.preceding_invoice_reference)

        goods = sub(body, "DatiBeniServizi")
        for index, item in enumerate(invoice.line_items, start=1):
            line = sub(goods, "DettaglioLinee")
            sub(line, "NumeroLinea", str(index))
            sub(line, "Descrizione", item.description)
            sub(line, "Quantita", format_money(item.quantity))
            sub(line, "PrezzoUnitario", format_money(item.unit_price))
            sub(line, "PrezzoTotale", format_money(line_net_amount(item)))
            rate = effective_rate(item, invoice)
            sub(line, "AliquotaIVA", format_rate(rate))
            if rate == 0:
                sub(line, "Natura", natura_code(resolve_category(rate, item.tax_category_code)))

        for bucket in amounts.buckets:
            summary = sub(goods, "DatiRiepilogo")
            sub(summary, "AliquotaIVA", format_rate(bucket.rate))
            if bucket.rate == 0:
                sub(summary, "Natura", natura_code(bucket.category))
            sub(summary, "ImponibileImporto", format_money(bucket.basis_amount))
            sub(summary, "Imposta", format_money(bucket.tax_amount))
            if bucket.rate == 0:
                sub_if(summary, "RiferimentoNormativo", bucket.exemption_reason)

        payment = invoice.payment
        terms = sub(body, "DatiPagamento")
        # TP02: single full payment
        sub(terms, "CondizioniPagamento", "TP02")
        detail = sub(terms, "DettaglioPagamento")
        sub(detail, "ModalitaPagamento", "MP05" if payment.iban else "MP01")
        sub_if(detail, "DataScadenzaPagamento", format_date_iso(payment.due_date))
        sub(detail, "ImportoPagamento", format_money(amounts.due_payable))
        if payment.iban:
            sub(detail, "IBAN", payment.iban.replace(" ", "").upper())
        sub_if(detail, "BIC", (payment.bic or "").strip().upper())

        return serialize(root)
