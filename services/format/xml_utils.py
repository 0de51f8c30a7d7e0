"""XML building helpers shared by all generators.

Elements are created with prefixed tag names and explicit xmlns attributes so that
output never depends on ElementTree's global namespace registry and identical
input always serializes to identical bytes.
"""

import re
import xml.etree.ElementTree as ET
from datetime import date, datetime

from services.invoice.monetary import format_money

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F]")
_DATE_FORMATS = ("%Y-%m-%d", "%d.%m.%Y", "%Y%m%d")

ISO_4217_CURRENCIES = frozenset(
    {
        "EUR", "USD", "GBP", "CHF", "PLN", "CZK", "DKK", "SEK", "NOK", "HUF", "RON",
        "BGN", "ISK", "TRY", "JPY", "CNY", "CAD", "AUD", "NZD", "HKD", "SGD", "INR",
        "BRL", "MXN", "ZAR", "RUB", "UAH", "KRW", "AED", "SAR", "ILS", "RSD", "MKD",
        "ALL", "BAM", "MDL", "GEL",
    }
)


def clean_text(value: object) -> str:
    """Strip characters that are illegal in XML 1.0 and surrounding whitespace.

    Markup characters (& < > " ') are escaped by ElementTree at serialization.
    """
    if value is None:
        return ""
    return _CONTROL_CHARS.sub("", str(value)).strip()


def sub(
    parent: ET.Element,
    tag: str,
    text: object = None,
    attrib: dict[str, str] | None = None,
) -> ET.Element:
    """Append a child element with optional text and attributes."""
    element = ET.SubElement(parent, tag, attrib or {})
    if text is not None:
        element.text = clean_text(text)
    return element


def sub_if(
    parent: ET.Element,
    tag: str,
    text: object,
    attrib: dict[str, str] | None = None,
) -> ET.Element | None:
    """Append a child element only when text is non-empty."""
    if text is None or clean_text(text) == "":
        return None
    return sub(parent, tag, text, attrib)


def amount(parent: ET.Element, tag: str, value: object, currency: str | None = None) -> ET.Element:
    attrib = {"currencyID": currency} if currency else None
    return sub(parent, tag, format_money(value), attrib)


def serialize(root: ET.Element) -> str:
    """Serialize with declaration and two-space indentation."""
    ET.indent(root, space="  ")
    return XML_DECLARATION + ET.tostring(root, encoding="unicode") + "\n"


def parse_date(value: str | None) -> date | None:
    """Parse YYYY-MM-DD, DD.MM.YYYY or YYYYMMDD.

    Slash formats are rejected because DD/MM and MM/DD cannot be told apart.

    Returns:
        Parsed date, or None if the value is empty or not in a supported format
    """
    if not value:
        return None
    text = value.strip()
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def format_date_iso(value: str | None) -> str:
    parsed = parse_date(value)
    return parsed.isoformat() if parsed else ""


def format_date_102(value: str | None) -> str:
    """UN/CEFACT date format 102 (YYYYMMDD)."""
    parsed = parse_date(value)
    return parsed.strftime("%Y%m%d") if parsed else ""


def normalize_currency(value: str | None, default: str = "EUR") -> str:
    if not value:
        return default
    code = value.strip().upper()
    if code == "€":
        return "EUR"
    return code


def is_iso_currency(value: str | None) -> bool:
    return bool(value) and normalize_currency(value) in ISO_4217_CURRENCIES


def safe_file_stem(invoice_number: str | None) -> str:
    """File-system safe stem derived from the invoice number."""
    stem = re.sub(r"[^A-Za-z0-9._-]+", "_", clean_text(invoice_number))
    return stem.strip("._") or "invoice"
