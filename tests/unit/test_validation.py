"""Unit tests for the validation tiers and pipeline."""

import subprocess
from decimal import Decimal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from services.invoice.model import CanonicalInvoice, LineItem, Totals
from services.invoice.model import DocumentTypeCode
from services.shared.config import Settings
from services.validation.external import ExternalValidationResult, ExternalValidator, parse_report
from services.validation.pipeline import EXTERNAL_WARNING_PREFIX, ValidationPipeline
from services.validation.result import ValidationIssue, ValidationReport
from services.validation.schema_rules import validate_schema


@pytest.fixture
def pipeline(settings: Settings) -> ValidationPipeline:
    return ValidationPipeline(settings)


class TestSchemaRules:
    """Test tier 1 structural checks."""

    def test_valid_invoice_has_no_findings(self, invoice: CanonicalInvoice) -> None:
        assert validate_schema(invoice) == []

    def test_empty_invoice_reports_every_missing_field(self) -> None:
        """Should report all missing fields together."""
        issues = validate_schema(CanonicalInvoice())

        rule_ids = [issue.rule_id for issue in issues]
        assert rule_ids == [
            "SCHEMA-001",
            "SCHEMA-002",
            "SCHEMA-003",
            "SCHEMA-004",
            "SCHEMA-005",
            "SCHEMA-006",
        ]

    def test_unparsable_date(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        issues = validate_schema(invoice_factory(invoice_date="15/03/2024"))
        assert [i.rule_id for i in issues] == ["SCHEMA-002"]

    def test_alternative_date_formats_accepted(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        assert validate_schema(invoice_factory(invoice_date="15.03.2024")) == []
        assert validate_schema(invoice_factory(invoice_date="20240315")) == []

    def test_negative_total_needs_credit_note(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should reject negative totals on commercial invoices."""
        totals = Totals(subtotal=Decimal("-10"), tax_amount=Decimal("0"), total_amount=Decimal("-10"))
        issues = validate_schema(invoice_factory(totals=totals))
        assert "SCHEMA-005" in [i.rule_id for i in issues]

        credit_note = invoice_factory(
            totals=totals,
            document_type_code=DocumentTypeCode.CREDIT_NOTE.value,
            preceding_invoice_reference="INV-2024-000",
        )
        assert "SCHEMA-005" not in [i.rule_id for i in validate_schema(credit_note)]

    def test_line_arithmetic(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should flag quantity x price mismatches beyond tolerance."""
        line = LineItem(
            description="Widget",
            quantity=Decimal("3"),
            unit_price=Decimal("10.00"),
            total_price=Decimal("31.00"),
            tax_rate=Decimal("19"),
        )
        issues = validate_schema(invoice_factory(line_items=[line]))
        assert [i.rule_id for i in issues] == ["SCHEMA-007"]
        assert issues[0].field == "invoice.line_items[0].total_price"

    def test_currency_code(self, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        issues = validate_schema(invoice_factory(currency="EURO"))
        assert [i.rule_id for i in issues] == ["SCHEMA-008"]


class TestBusinessRules:
    """Test tier 2 EN 16931 rules through the pipeline."""

    def test_valid_invoice(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        report = pipeline.validate(invoice, "peppol-bis")
        assert report.errors == []
        assert report.status == "valid"

    def test_subtotal_mismatch(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should report BR-CO-10 when line nets do not add up."""
        invoice = invoice_factory(
            totals=Totals(
                subtotal=Decimal("1000.00"),
                tax_amount=Decimal("190.00"),
                total_amount=Decimal("1190.00"),
            )
        )
        report = pipeline.validate(invoice, "peppol-bis")
        assert "BR-CO-10" in report.rule_ids()

    def test_tax_total_mismatch_names_buckets(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should report BR-CO-14 with the per-rate breakdown."""
        invoice = invoice_factory(
            totals=Totals(
                subtotal=Decimal("1100.00"),
                tax_amount=Decimal("200.00"),
                total_amount=Decimal("1300.00"),
            )
        )
        report = pipeline.validate(invoice, "peppol-bis")
        (issue,) = [e for e in report.errors if e.rule_id == "BR-CO-14"]
        assert "S 19" in issue.message

    def test_grand_total_mismatch(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        invoice = invoice_factory(
            totals=Totals(
                subtotal=Decimal("1100.00"),
                tax_amount=Decimal("209.00"),
                total_amount=Decimal("1400.00"),
            )
        )
        report = pipeline.validate(invoice, "peppol-bis")
        assert "BR-CO-15" in report.rule_ids()

    def test_zero_rate_category_with_rate(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        """Should reject a non-zero rate on an exempt line."""
        line = LineItem(
            description="Training",
            quantity=Decimal("1"),
            unit_price=Decimal("100.00"),
            total_price=Decimal("100.00"),
            tax_rate=Decimal("19"),
            tax_category_code="E",
        )
        invoice = invoice_factory(
            line_items=[line],
            totals=Totals(
                subtotal=Decimal("100.00"), tax_amount=Decimal("0.00"), total_amount=Decimal("100.00")
            ),
        )
        report = pipeline.validate(invoice, "peppol-bis")
        assert "BR-E-05" in report.rule_ids()

    def test_reverse_charge_needs_buyer_vat(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        line = LineItem(
            description="Machine",
            quantity=Decimal("1"),
            unit_price=Decimal("500.00"),
            total_price=Decimal("500.00"),
            tax_rate=Decimal("0"),
            tax_category_code="AE",
        )
        invoice = invoice_factory(
            line_items=[line],
            totals=Totals(
                subtotal=Decimal("500.00"), tax_amount=Decimal("0.00"), total_amount=Decimal("500.00")
            ),
        )
        invoice.buyer.vat_id = None
        report = pipeline.validate(invoice, "peppol-bis")
        assert "BR-AE-02" in report.rule_ids()

    def test_credit_note_needs_preceding_reference(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        invoice = invoice_factory(document_type_code=DocumentTypeCode.CREDIT_NOTE.value)
        report = pipeline.validate(invoice, "peppol-bis")
        assert "BR-55" in report.rule_ids()
        assert "PEPPOL-EN16931-R006" in report.rule_ids()

    def test_payment_terms_required_when_due(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.payment.payment_terms = None
        invoice.payment.due_date = None
        report = pipeline.validate(invoice, "peppol-bis")
        assert "BR-CO-25" in report.rule_ids()

    def test_endpoints_only_for_network_formats(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        """Should require R010/R020 for PEPPOL-routed formats only."""
        invoice.buyer.electronic_address = None
        invoice.seller.electronic_address = None

        peppol = pipeline.validate(invoice, "peppol-bis")
        facturx = pipeline.validate(invoice, "facturx-en16931")

        assert {"PEPPOL-EN16931-R010", "PEPPOL-EN16931-R020"} <= set(peppol.rule_ids())
        assert "PEPPOL-EN16931-R010" not in facturx.rule_ids()


class TestProfileRules:
    """Test tier 3 national profiles."""

    def test_xrechnung_requires_iban(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        """Should block XRechnung without IBAN under BR-DE-23-a."""
        invoice.payment.iban = None
        report = pipeline.validate(invoice, "xrechnung-cii")
        assert "BR-DE-23-a" in [e.rule_id for e in report.errors]

    def test_xrechnung_requires_eur(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        report = pipeline.validate(invoice_factory(currency="USD"), "xrechnung-ubl")
        assert "BR-DE-18" in report.rule_ids()

    def test_xrechnung_seller_contact(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.seller.phone = None
        report = pipeline.validate(invoice, "xrechnung-cii")
        (issue,) = [e for e in report.errors if e.rule_id == "BR-DE-2"]
        assert "phone" in issue.message

    def test_xrechnung_seller_name_stands_in_for_contact(
        self, pipeline: ValidationPipeline, invoice: CanonicalInvoice
    ) -> None:
        """Should accept a seller with phone and email but no separate contact name."""
        invoice.seller.contact_name = None
        report = pipeline.validate(invoice, "xrechnung-cii")
        assert "BR-DE-2" not in report.rule_ids()

    def test_peppol_unknown_scheme(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.buyer.electronic_address_scheme = "1234"
        report = pipeline.validate(invoice, "peppol-bis")
        assert "PEPPOL-EN16931-R010-SCHEME" in report.rule_ids()

    def test_nlcius_btw_format(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.buyer.vat_id = "NL12345"
        report = pipeline.validate(invoice, "nlcius")
        assert "NLCIUS-BTW-FORMAT" in report.rule_ids()

    def test_ciusro_cui_format(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.seller.tax_number = "RO-ABC"
        report = pipeline.validate(invoice, "cius-ro")
        assert "CIUS-RO-CUI-FORMAT" in report.rule_ids()

    def test_ksef_non_polish_rate_is_warning(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        """Should accept 19% for KSeF with a warning only."""
        report = pipeline.validate(invoice, "ksef")
        assert report.errors == []
        assert "KSEF-08" in [w.rule_id for w in report.warnings]
        assert report.status == "warnings"

    def test_ksef_requires_seller_nip(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.seller.tax_number = None
        invoice.seller.vat_id = "PL123"
        report = pipeline.validate(invoice, "ksef")
        assert "KSEF-01" in report.rule_ids()

    def test_fatturapa_requires_seller_vat(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.seller.vat_id = None
        report = pipeline.validate(invoice, "fatturapa")
        assert "FPA-010" in report.rule_ids()

    def test_fatturapa_regime(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        invoice.seller.tax_regime = "RF99"
        report = pipeline.validate(invoice, "fatturapa")
        assert "FPA-036" in report.rule_ids()

    def test_facturx_document_type(self, pipeline: ValidationPipeline, invoice_factory) -> None:  # type: ignore[no-untyped-def]
        invoice = invoice_factory(document_type_code=DocumentTypeCode.CORRECTED_INVOICE.value)
        report = pipeline.validate(invoice, "facturx-basic")
        assert "FX-COMMON-001" in report.rule_ids()

    def test_unknown_profile(self, pipeline: ValidationPipeline, invoice: CanonicalInvoice) -> None:
        with pytest.raises(ValueError, match="Unknown validation profile"):
            pipeline.validate(invoice, "edifact")


class TestExternalValidator:
    """Test the external CLI adapter."""

    @pytest.fixture
    def external_settings(self, tmp_path: Path) -> Settings:
        executable = tmp_path / "validator"
        executable.write_text("#!/bin/sh\n")
        scenarios = tmp_path / "scenarios.xml"
        scenarios.write_text("<scenarios/>")
        return Settings(
            external_validation_enabled=True,
            external_validator_path=str(executable),
            external_validator_scenarios=str(scenarios),
        )

    def test_disabled_does_not_run(self, settings: Settings) -> None:
        result = ExternalValidator(settings).validate("<Invoice/>", "INV-1")
        assert result.ran is False
        assert "disabled" in (result.error or "")

    def test_parse_report(self) -> None:
        errors, warnings = parse_report(
            "[BR-DE-15] Buyer reference missing\n"
            "noise line\n"
            "[PEPPOL-EN16931-R008] warning: empty element\n"
        )
        assert [e.rule_id for e in errors] == ["BR-DE-15"]
        assert [w.rule_id for w in warnings] == ["PEPPOL-EN16931-R008"]

    def test_findings_and_temp_file_cleanup(self, external_settings: Settings) -> None:
        """Should parse findings and delete the temporary XML file."""
        seen: dict[str, Path] = {}

        def fake_run(args: list[str], **kwargs: object) -> MagicMock:
            seen["input"] = Path(args[args.index("--input") + 1])
            assert seen["input"].exists()
            return MagicMock(returncode=1, stdout="[BR-CO-15] Total mismatch", stderr="")

        with patch("services.validation.external.subprocess.run", side_effect=fake_run):
            result = ExternalValidator(external_settings).validate("<Invoice/>", "INV/1")

        assert result.ran is True
        assert result.valid is False
        assert [e.rule_id for e in result.errors] == ["BR-CO-15"]
        assert not seen["input"].exists()

    def test_timeout_degrades(self, external_settings: Settings) -> None:
        with patch(
            "services.validation.external.subprocess.run",
            side_effect=subprocess.TimeoutExpired(cmd="validator", timeout=1),
        ):
            result = ExternalValidator(external_settings).validate("<Invoice/>")

        assert result.ran is False
        assert "timed out" in (result.error or "")

    def test_nonzero_exit_without_findings(self, external_settings: Settings) -> None:
        with patch(
            "services.validation.external.subprocess.run",
            return_value=MagicMock(returncode=2, stdout="", stderr="java not found"),
        ):
            result = ExternalValidator(external_settings).validate("<Invoice/>")

        assert result.ran is False
        assert "java not found" in (result.error or "")

    def test_merge_external_adds_warnings_only(self, pipeline: ValidationPipeline) -> None:
        """Should fold external errors into non-blocking warnings."""
        report = ValidationReport(format_id="xrechnung-cii")
        result = ExternalValidationResult(
            ran=True,
            valid=False,
            errors=[ValidationIssue(rule_id="BR-DE-1", message="Street missing")],
        )

        pipeline.merge_external(report, result)

        assert report.errors == []
        assert report.warnings[0].rule_id == "BR-DE-1"
        assert report.warnings[0].message.startswith(EXTERNAL_WARNING_PREFIX)
