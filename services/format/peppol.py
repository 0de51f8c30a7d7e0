"""PEPPOL BIS Billing 3.0 and the national CIUS built on it (NLCIUS, CIUS-RO).

All three emit UBL 2.1; they differ in CustomizationID and validation rules.
"""

from services.format.ubl import UBLGenerator
from services.invoice.model import OutputFormat


class PeppolBISGenerator(UBLGenerator):
    format_id = OutputFormat.PEPPOL_BIS.value
    format_name = "PEPPOL BIS Billing 3.0"
    file_suffix = "peppol"
    spec_version = "3.0.20"
    spec_date = "2025-05-19"

    customization_id = "urn:cen.eu:en16931:2017#compliant#urn:fdc:peppol.eu:2017:poacc:billing:3.0"


class NLCIUSGenerator(UBLGenerator):
    format_id = OutputFormat.NLCIUS.value
    format_name = "NLCIUS / SI-UBL 2.0 (Netherlands)"
    file_suffix = "nlcius"
    spec_version = "1.0"
    spec_date = "2019-10-01"

    customization_id = "urn:cen.eu:en16931:2017#compliant#urn:fdc:nen.nl:nlcius:v1.0"


class CIUSROGenerator(UBLGenerator):
    format_id = OutputFormat.CIUS_RO.value
    format_name = "CIUS-RO (Romania)"
    file_suffix = "ciusro"
    spec_version = "1.0.1"
    spec_date = "2021-11-15"

    customization_id = "urn:cen.eu:en16931:2017#compliant#urn:efactura.mfinante.ro:CIUS-RO:1.0.1"
