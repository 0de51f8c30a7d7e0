"""NLCIUS (SI-UBL 2.0) Dutch identifier rules, layered on PEPPOL."""

import re

from services.invoice.model import CanonicalInvoice, Party
from services.validation.result import ValidationIssue, error

BTW_NUMBER = re.compile(r"^NL\d{9}B\d{2}$")
OIN = re.compile(r"^\d{20}$")
KVK = re.compile(r"^\d{8}$")


def _endpoint_id(party: Party) -> str:
    """Endpoint value without a leading '<scheme>:' prefix."""
    value = (party.electronic_address or "").strip()
    scheme = (party.electronic_address_scheme or "").strip()
    if scheme and value.startswith(f"{scheme}:"):
        return value[len(scheme) + 1 :]
    return value


def validate_nlcius(invoice: CanonicalInvoice) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []

    for party, role in ((invoice.seller, "seller"), (invoice.buyer, "buyer")):
        vat_id = (party.vat_id or "").replace(" ", "").upper()
        if vat_id.startswith("NL") and not BTW_NUMBER.match(vat_id):
            issues.append(
                error(
                    "NLCIUS-BTW-FORMAT",
                    f"{role.capitalize()} BTW number '{party.vat_id}' must match NL999999999B99",
                    f"invoice.{role}.vat_id",
                )
            )

        scheme = (party.electronic_address_scheme or "").strip()
        endpoint = _endpoint_id(party)
        if scheme == "0190" and not OIN.match(endpoint):
            issues.append(
                error(
                    "NLCIUS-OIN-FORMAT",
                    f"{role.capitalize()} OIN '{endpoint}' must be 20 digits",
                    f"invoice.{role}.electronic_address",
                )
            )
        if scheme == "0106" and not KVK.match(endpoint):
            issues.append(
                error(
                    "NLCIUS-KVK-FORMAT",
                    f"{role.capitalize()} KVK number '{endpoint}' must be 8 digits",
                    f"invoice.{role}.electronic_address",
                )
            )

    return issues
