"""Factur-X 1.0 hybrid generators (PDF with embedded CII XML).

The XML is a CII document carrying the profile's guideline id. It is embedded in a
generated A4 PDF as the associated file ``factur-x.xml`` (AFRelationship /Data),
and the XMP metadata declares the Factur-X conformance level. The container makes no
PDF/A conformance claim: it has no output intent and uses the unembedded standard
Helvetica font.

Based on the Factur-X 1.0.07 specification:
https://fnfe-mpe.org/factur-x/factur-x_en/
PDF objects are assembled with PyPDF2:
https://pypdf2.readthedocs.io/en/3.0.0/
"""

import io
import logging
from datetime import datetime, timezone

from PyPDF2 import PdfWriter
from PyPDF2.generic import (
    ArrayObject,
    DecodedStreamObject,
    DictionaryObject,
    IndirectObject,
    NameObject,
    NumberObject,
    PdfObject,
    TextStringObject,
)

from services.format.cii import CIIGenerator
from services.format.xml_utils import format_date_iso, normalize_currency
from services.invoice.model import CanonicalInvoice, DocumentTypeCode, OutputFormat
from services.invoice.monetary import format_money, format_quantity
from services.tax.categories import document_amounts, line_net_amount

logger = logging.getLogger(__name__)

ATTACHMENT_NAME = "factur-x.xml"
PAGE_WIDTH = 595
PAGE_HEIGHT = 842
MARGIN = 50
LINE_HEIGHT = 14
BOTTOM_LIMIT = 90

XMP_TEMPLATE = """<?xpacket begin="﻿" id="W5M0MpCehiHzreSzNTczkc9d"?>
<x:xmpmeta xmlns:x="adobe:ns:meta/">
 <rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#">
  <rdf:Description rdf:about="" xmlns:dc="http://purl.org/dc/elements/1.1/">
   <dc:title><rdf:Alt><rdf:li xml:lang="x-default">{title}</rdf:li></rdf:Alt></dc:title>
  </rdf:Description>
  <rdf:Description rdf:about="" xmlns:pdf="http://ns.adobe.com/pdf/1.3/">
   <pdf:Producer>{producer}</pdf:Producer>
  </rdf:Description>
  <rdf:Description rdf:about="" xmlns:xmp="http://ns.adobe.com/xap/1.0/">
   <xmp:CreateDate>{created}</xmp:CreateDate>
  </rdf:Description>
  <rdf:Description rdf:about="" xmlns:pdfaExtension="http://www.aiim.org/pdfa/ns/extension/"
    xmlns:pdfaSchema="http://www.aiim.org/pdfa/ns/schema#"
    xmlns:pdfaProperty="http://www.aiim.org/pdfa/ns/property#">
   <pdfaExtension:schemas>
    <rdf:Bag>
     <rdf:li rdf:parseType="Resource">
      <pdfaSchema:schema>Factur-X PDFA Extension Schema</pdfaSchema:schema>
      <pdfaSchema:namespaceURI>urn:factur-x:pdfa:CrossIndustryDocument:invoice:1p0#</pdfaSchema:namespaceURI>
      <pdfaSchema:prefix>fx</pdfaSchema:prefix>
      <pdfaSchema:property>
       <rdf:Seq>
        <rdf:li rdf:parseType="Resource"><pdfaProperty:name>DocumentFileName</pdfaProperty:name><pdfaProperty:valueType>Text</pdfaProperty:valueType><pdfaProperty:category>external</pdfaProperty:category><pdfaProperty:description>Name of the embedded XML invoice file</pdfaProperty:description></rdf:li>
        <rdf:li rdf:parseType="Resource"><pdfaProperty:name>DocumentType</pdfaProperty:name><pdfaProperty:valueType>Text</pdfaProperty:valueType><pdfaProperty:category>external</pdfaProperty:category><pdfaProperty:description>INVOICE</pdfaProperty:description></rdf:li>
        <rdf:li rdf:parseType="Resource"><pdfaProperty:name>Version</pdfaProperty:name><pdfaProperty:valueType>Text</pdfaProperty:valueType><pdfaProperty:category>external</pdfaProperty:category><pdfaProperty:description>Version of the Factur-X XML schema</pdfaProperty:description></rdf:li>
        <rdf:li rdf:parseType="Resource"><pdfaProperty:name>ConformanceLevel</pdfaProperty:name><pdfaProperty:valueType>Text</pdfaProperty:valueType><pdfaProperty:category>external</pdfaProperty:category><pdfaProperty:description>Conformance level of the embedded XML</pdfaProperty:description></rdf:li>
       </rdf:Seq>
      </pdfaSchema:property>
     </rdf:li>
    </rdf:Bag>
   </pdfaExtension:schemas>
  </rdf:Description>
  <rdf:Description rdf:about="" xmlns:fx="urn:factur-x:pdfa:CrossIndustryDocument:invoice:1p0#">
   <fx:DocumentType>INVOICE</fx:DocumentType>
   <fx:DocumentFileName>{attachment}</fx:DocumentFileName>
   <fx:Version>1.0</fx:Version>
   <fx:ConformanceLevel>{conformance}</fx:ConformanceLevel>
  </rdf:Description>
 </rdf:RDF>
</x:xmpmeta>
<?xpacket end="w"?>"""


def _pdf_string(text: object) -> str:
    """Escape text for a PDF literal string drawn with a WinAnsi Helvetica font."""
    value = str(text or "").encode("cp1252", errors="replace").decode("cp1252")
    return value.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def _xml_escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


# PyPDF2 3.x has no public API for registering indirect objects or reaching the
# catalog; these two helpers are the only places that touch writer internals.
def _indirect(writer: PdfWriter, obj: PdfObject) -> IndirectObject:
    return writer._add_object(obj)


def _catalog(writer: PdfWriter) -> DictionaryObject:
    return writer._root_object


class _PageCanvas:
    """Collects text operators for successive A4 pages."""

    def __init__(self) -> None:
        self.pages: list[list[str]] = [[]]
        self.y = PAGE_HEIGHT - MARGIN

    def text(self, x: float, size: int, value: object, advance: bool = True) -> None:
        if self.y < BOTTOM_LIMIT:
            self.pages.append([])
            self.y = PAGE_HEIGHT - MARGIN
        self.pages[-1].append(f"BT /F1 {size} Tf {x} {self.y} Td ({_pdf_string(value)}) Tj ET")
        if advance:
            self.y -= LINE_HEIGHT if size <= 10 else size + 6

    def gap(self, amount: int = LINE_HEIGHT) -> None:
        self.y -= amount


class FacturXGenerator(CIIGenerator):
    """Base for Factur-X profiles."""

    conformance_level: str = ""
    file_suffix = "facturx"
    spec_version = "1.0.07"
    spec_date = "2023-05-15"

    def build_pdf(self, invoice: CanonicalInvoice, xml_content: str) -> bytes:
        """Render a visual A4 invoice and embed the CII XML as factur-x.xml.

        Args:
            invoice: Canonical invoice
            xml_content: CII document produced by build_xml()

        Returns:
            PDF bytes
        """
        writer = PdfWriter()
        font = DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Font"),
                NameObject("/Subtype"): NameObject("/Type1"),
                NameObject("/BaseFont"): NameObject("/Helvetica"),
                NameObject("/Encoding"): NameObject("/WinAnsiEncoding"),
            }
        )
        font_ref = _indirect(writer, font)

        for operators in self._layout(invoice).pages:
            page = writer.add_blank_page(width=PAGE_WIDTH, height=PAGE_HEIGHT)
            content = DecodedStreamObject()
            content.set_data("\n".join(operators).encode("cp1252", errors="replace"))
            page[NameObject("/Contents")] = _indirect(writer, content)
            page[NameObject("/Resources")] = DictionaryObject(
                {NameObject("/Font"): DictionaryObject({NameObject("/F1"): font_ref})}
            )

        self._embed_xml(writer, invoice, xml_content.encode("utf-8"))

        buffer = io.BytesIO()
        writer.write(buffer)
        pdf_bytes = buffer.getvalue()
        logger.debug(f"Built Factur-X PDF for {invoice.invoice_number}: {len(pdf_bytes)} bytes")
        return pdf_bytes

    def _embed_xml(self, writer: PdfWriter, invoice: CanonicalInvoice, xml_bytes: bytes) -> None:
        now = datetime.now(timezone.utc)
        pdf_date = now.strftime("D:%Y%m%d%H%M%S+00'00'")

        embedded = DecodedStreamObject()
        embedded.set_data(xml_bytes)
        embedded.update(
            {
                NameObject("/Type"): NameObject("/EmbeddedFile"),
                NameObject("/Subtype"): NameObject("/text#2Fxml"),
                NameObject("/Params"): DictionaryObject(
                    {
                        NameObject("/Size"): NumberObject(len(xml_bytes)),
                        NameObject("/ModDate"): TextStringObject(pdf_date),
                    }
                ),
            }
        )
        embedded_ref = _indirect(writer, embedded)

        filespec = DictionaryObject(
            {
                NameObject("/Type"): NameObject("/Filespec"),
                NameObject("/F"): TextStringObject(ATTACHMENT_NAME),
                NameObject("/UF"): TextStringObject(ATTACHMENT_NAME),
                NameObject("/Desc"): TextStringObject("Factur-X invoice data"),
                NameObject("/AFRelationship"): NameObject("/Data"),
                NameObject("/EF"): DictionaryObject(
                    {NameObject("/F"): embedded_ref, NameObject("/UF"): embedded_ref}
                ),
            }
        )
        filespec_ref = _indirect(writer, filespec)

        title = f"Invoice {invoice.invoice_number or ''}".strip()
        producer = f"invoice-transcoding-engine {self.format_id}"
        xmp = XMP_TEMPLATE.format(
            title=_xml_escape(title),
            producer=_xml_escape(producer),
            created=now.strftime("%Y-%m-%dT%H:%M:%S+00:00"),
            attachment=ATTACHMENT_NAME,
            conformance=self.conformance_level,
        )
        metadata = DecodedStreamObject()
        metadata.set_data(xmp.encode("utf-8"))
        metadata.update(
            {NameObject("/Type"): NameObject("/Metadata"), NameObject("/Subtype"): NameObject("/XML")}
        )
        metadata_ref = _indirect(writer, metadata)

        _catalog(writer).update(
            {
                NameObject("/Names"): DictionaryObject(
                    {
                        NameObject("/EmbeddedFiles"): DictionaryObject(
                            {
                                NameObject("/Names"): ArrayObject(
                                    [TextStringObject(ATTACHMENT_NAME), filespec_ref]
                                )
                            }
                        )
                    }
                ),
                NameObject("/AF"): ArrayObject([filespec_ref]),
                NameObject("/Metadata"): metadata_ref,
                NameObject("/PageMode"): NameObject("/UseAttachments"),
            }
        )
        writer.add_metadata({"/Title": title, "/Producer": producer, "/CreationDate": pdf_date})

    def _layout(self, invoice: CanonicalInvoice) -> _PageCanvas:
        currency = normalize_currency(invoice.currency, self.pipeline.settings.default_currency)
        amounts = document_amounts(invoice)
        canvas = _PageCanvas()

        title = "CREDIT NOTE" if invoice.document_type_code == DocumentTypeCode.CREDIT_NOTE else "INVOICE"
        canvas.text(MARGIN, 18, title)
        canvas.text(MARGIN, 10, f"Invoice number: {invoice.invoice_number or ''}")
        canvas.text(MARGIN, 10, f"Invoice date: {format_date_iso(invoice.invoice_date)}")
        if invoice.preceding_invoice_reference:
            canvas.text(MARGIN, 10, f"Preceding invoice: {invoice.preceding_invoice_reference}")
        canvas.gap()

        top = canvas.y
        for x, label, party in ((MARGIN, "Seller", invoice.seller), (320, "Buyer", invoice.buyer)):
            canvas.y = top
            canvas.text(x, 11, label)
            for value in (
                party.name,
                party.address,
                " ".join(v for v in (party.postal_code, party.city) if v),
                party.country_code,
                f"VAT ID: {party.vat_id}" if party.vat_id else None,
            ):
                if value:
                    canvas.text(x, 10, value)
        canvas.gap()

        canvas.text(MARGIN, 10, "Description", advance=False)
        canvas.text(330, 10, "Qty", advance=False)
        canvas.text(390, 10, "Unit price", advance=False)
        canvas.text(480, 10, "Net amount")
        for item in invoice.line_items:
            canvas.text(MARGIN, 9, (item.description or "")[:55], advance=False)
            canvas.text(330, 9, format_quantity(item.quantity), advance=False)
            canvas.text(390, 9, format_money(item.unit_price), advance=False)
            canvas.text(480, 9, format_money(line_net_amount(item)))
        canvas.gap()

        for bucket in amounts.buckets:
            label = f"VAT {bucket.category} {bucket.rate}% on {format_money(bucket.basis_amount)}"
            canvas.text(320, 10, label, advance=False)
            canvas.text(480, 10, format_money(bucket.tax_amount))
        canvas.text(320, 10, "Total net", advance=False)
        canvas.text(480, 10, format_money(amounts.tax_basis_total))
        canvas.text(320, 10, "Total VAT", advance=False)
        canvas.text(480, 10, format_money(amounts.tax_total))
        canvas.text(320, 11, f"Total ({currency})", advance=False)
        canvas.text(480, 11, format_money(amounts.grand_total))
        canvas.gap()

        payment = invoice.payment
        if payment.iban:
            canvas.text(MARGIN, 10, f"IBAN: {payment.iban}" + (f"  BIC: {payment.bic}" if payment.bic else ""))
        if payment.payment_terms:
            canvas.text(MARGIN, 10, f"Payment terms: {payment.payment_terms}")
        if payment.due_date:
            canvas.text(MARGIN, 10, f"Due date: {format_date_iso(payment.due_date)}")
        canvas.gap()
        canvas.text(MARGIN, 8, f"Factur-X {self.conformance_level}: structured data embedded as {ATTACHMENT_NAME}")
        return canvas


class FacturXEN16931Generator(FacturXGenerator):
    format_id = OutputFormat.FACTURX_EN16931.value
    format_name = "Factur-X EN 16931"
    conformance_level = "EN 16931"
    guideline_id = "urn:cen.eu:en16931:2017#compliant#urn:factur-x.eu:1p0:en16931"


class FacturXBasicGenerator(FacturXGenerator):
    format_id = OutputFormat.FACTURX_BASIC.value
    format_name = "Factur-X BASIC"
    conformance_level = "BASIC"
    guideline_id = "urn:cen.eu:en16931:2017#compliant#urn:factur-x.eu:1p0:basic"
    file_suffix = "facturx_basic"
