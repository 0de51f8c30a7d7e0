"""Shared fixtures: settings and a canonical invoice that is valid for every format."""

import io
from decimal import Decimal

import pytest
from PyPDF2 import PdfWriter

from services.invoice.model import CanonicalInvoice, LineItem, Party, PaymentInfo, Totals
from services.shared.config import Settings


@pytest.fixture
def settings() -> Settings:
    """Create test settings with fast retries."""
    return Settings(
        extraction_max_retries=3,
        extraction_backoff_initial=0,
        extraction_backoff_max=0,
        batch_concurrency=2,
    )


def make_invoice(**overrides: object) -> CanonicalInvoice:
    """German seller, Dutch public-sector buyer, two 19% lines."""
    data: dict[str, object] = {
        "invoice_number": "INV-2024-001",
        "invoice_date": "2024-03-15",
        "currency": "EUR",
        "buyer_reference": "04011000-12345-03",
        "seller": Party(
            name="Muster GmbH",
            address="Hauptstrasse 1",
            city="Berlin",
            postal_code="10115",
            country_code="DE",
            vat_id="DE123456789",
            tax_number="1234567890",
            electronic_address="billing@muster.de",
            electronic_address_scheme="EM",
            contact_name="Anna Schmidt",
            phone="+49 30 123456",
            email="billing@muster.de",
        ),
        "buyer": Party(
            name="Gemeente Voorbeeld",
            address="Stationsplein 1",
            city="Utrecht",
            postal_code="3511 ED",
            country_code="NL",
            vat_id="NL123456789B01",
            electronic_address="00000001234567890000",
            electronic_address_scheme="0190",
        ),
        "payment": PaymentInfo(
            iban="DE89 3704 0044 0532 0130 00",
            bic="COBADEFFXXX",
            payment_terms="30 days net",
            due_date="2024-04-14",
        ),
        "line_items": [
            LineItem(
                description="Consulting",
                quantity=Decimal("10"),
                unit_code="HUR",
                unit_price=Decimal("100.00"),
                total_price=Decimal("1000.00"),
                tax_rate=Decimal("19"),
                tax_category_code="S",
            ),
            LineItem(
                description="Travel expenses",
                quantity=Decimal("2"),
                unit_price=Decimal("50.00"),
                total_price=Decimal("100.00"),
                tax_rate=Decimal("19"),
                tax_category_code="S",
            ),
        ],
        "totals": Totals(
            subtotal=Decimal("1100.00"),
            tax_amount=Decimal("209.00"),
            total_amount=Decimal("1309.00"),
        ),
    }
    data.update(overrides)
    return CanonicalInvoice.model_validate(data)


@pytest.fixture
def invoice() -> CanonicalInvoice:
    return make_invoice()


@pytest.fixture
def invoice_factory():  # type: ignore[no-untyped-def]
    """Build variants of the shared invoice: invoice_factory(currency="PLN")."""
    return make_invoice


def make_pdf(pages: int) -> bytes:
    """Blank A4 PDF with the given number of pages."""
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def pdf_factory():  # type: ignore[no-untyped-def]
    return make_pdf
