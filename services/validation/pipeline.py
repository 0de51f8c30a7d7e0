"""Three-tier validation pipeline.

Tier 1 checks structure, tier 2 applies EN 16931 business rules and tier 3 adds
the rules of the target profile. Tiers never short-circuit: the report carries
every finding so that all problems surface together. External validation runs on
generated XML and only ever contributes warnings.
"""

import logging
from collections.abc import Callable

from services.invoice.model import CanonicalInvoice, OutputFormat
from services.shared.config import Settings
from services.validation.business_rules import validate_en16931
from services.validation.external import ExternalValidationResult, ExternalValidator
from services.validation.profiles.ciusro import validate_ciusro
from services.validation.profiles.facturx import validate_facturx_common, validate_facturx_en16931
from services.validation.profiles.fatturapa import validate_fatturapa
from services.validation.profiles.ksef import validate_ksef
from services.validation.profiles.nlcius import validate_nlcius
from services.validation.profiles.peppol import validate_peppol
from services.validation.profiles.xrechnung import validate_xrechnung
from services.validation.result import ValidationIssue, ValidationReport
from services.validation.schema_rules import validate_schema

logger = logging.getLogger(__name__)

ProfileRule = Callable[[CanonicalInvoice], list[ValidationIssue]]

PROFILE_RULES: dict[str, list[ProfileRule]] = {
    OutputFormat.XRECHNUNG_CII.value: [validate_xrechnung],
    OutputFormat.XRECHNUNG_UBL.value: [validate_xrechnung],
    OutputFormat.PEPPOL_BIS.value: [validate_peppol],
    OutputFormat.NLCIUS.value: [validate_peppol, validate_nlcius],
    OutputFormat.CIUS_RO.value: [validate_peppol, validate_ciusro],
    OutputFormat.FACTURX_EN16931.value: [validate_facturx_en16931],
    OutputFormat.FACTURX_BASIC.value: [validate_facturx_common],
    OutputFormat.FATTURAPA.value: [validate_fatturapa],
    OutputFormat.KSEF.value: [validate_ksef],
}

# Formats delivered over PEPPOL-style networks need routing endpoints on both parties.
ENDPOINT_FORMATS = frozenset(
    {
        OutputFormat.XRECHNUNG_CII.value,
        OutputFormat.XRECHNUNG_UBL.value,
        OutputFormat.PEPPOL_BIS.value,
        OutputFormat.NLCIUS.value,
        OutputFormat.CIUS_RO.value,
    }
)

EXTERNAL_WARNING_PREFIX = "[EXT-VALIDATOR]"


class ValidationPipeline:
    """Runs tiers 1 to 3 for a target format and optional external validation."""

    def __init__(self, settings: Settings, external: ExternalValidator | None = None) -> None:
        """Initialize pipeline.

        Args:
            settings: Application settings
            external: External validator adapter (created from settings if omitted)
        """
        self.settings = settings
        self.external = external or ExternalValidator(settings)

    def validate(self, invoice: CanonicalInvoice, format_id: str) -> ValidationReport:
        """Validate an invoice for a target format.

        Args:
            invoice: Canonical invoice
            format_id: Target format identifier

        Returns:
            ValidationReport with errors and warnings of all three tiers

        Raises:
            ValueError: If no profile rules exist for format_id
        """
        if format_id not in PROFILE_RULES:
            available = ", ".join(PROFILE_RULES)
            raise ValueError(f"Unknown validation profile: '{format_id}'. Available: {available}")

        report = ValidationReport(format_id=format_id)
        report.extend(validate_schema(invoice, self.settings.monetary_tolerance))
        report.extend(validate_en16931(invoice, require_endpoints=format_id in ENDPOINT_FORMATS))
        for rule in PROFILE_RULES[format_id]:
            report.extend(rule(invoice))

        logger.debug(
            f"Validated {invoice.invoice_number} for {format_id}: "
            f"{len(report.errors)} error(s), {len(report.warnings)} warning(s)"
        )
        return report

    def validate_external(self, xml_content: str, label: str) -> ExternalValidationResult:
        return self.external.validate(xml_content, label)

    def merge_external(
        self, report: ValidationReport, result: ExternalValidationResult
    ) -> ValidationReport:
        """Fold external findings into the report as non-blocking warnings."""
        if not result.ran:
            return report
        for finding in result.errors + result.warnings:
            report.warnings.append(
                ValidationIssue(
                    rule_id=finding.rule_id,
                    message=f"{EXTERNAL_WARNING_PREFIX} {finding.message}",
                    severity="warning",
                    field=finding.field,
                )
            )
        return report
