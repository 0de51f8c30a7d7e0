"""XRechnung 3.0 generators (CII and UBL syntax).

Based on the KoSIT XRechnung 3.0 specification:
https://xeinkauf.de/xrechnung/versionen-und-bundles/
"""

from services.format.cii import PEPPOL_BUSINESS_PROCESS, CIIGenerator
from services.format.ubl import UBLGenerator
from services.invoice.model import CanonicalInvoice, OutputFormat

XRECHNUNG_CUSTOMIZATION_ID = "urn:cen.eu:en16931:2017#compliant#urn:xeinkauf.de:kosit:xrechnung_3.0"


class XRechnungCIIGenerator(CIIGenerator):
    format_id = OutputFormat.XRECHNUNG_CII.value
    format_name = "XRechnung 3.0 (CII)"
    file_suffix = "xrechnung"
    spec_version = "3.0.2"
    spec_date = "2023-07-07"

    guideline_id = XRECHNUNG_CUSTOMIZATION_ID
    business_process_id = PEPPOL_BUSINESS_PROCESS

    def buyer_reference(self, invoice: CanonicalInvoice) -> str | None:
        # BT-10 is mandatory in XRechnung; the invoice number stands in for a missing Leitweg-ID.
        return invoice.buyer_reference or invoice.invoice_number


class XRechnungUBLGenerator(UBLGenerator):
    format_id = OutputFormat.XRECHNUNG_UBL.value
    format_name = "XRechnung 3.0 (UBL)"
    file_suffix = "xrechnung_ubl"
    spec_version = "3.0.2"
    spec_date = "2023-07-07"

    customization_id = XRECHNUNG_CUSTOMIZATION_ID
