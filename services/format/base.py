"""Abstract base class for e-invoice format generators.

Every target standard implements one FormatGenerator. generate() validates the
canonical invoice for the format, refuses to emit a document when validation has
blocking errors, renders the document and attaches the validation outcome.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from services.format.xml_utils import safe_file_stem
from services.invoice.model import CanonicalInvoice
from services.shared.errors import InvoiceValidationError, SchemaError
from services.tax.categories import get_category_rule
from services.validation.external import ExternalValidationResult
from services.validation.pipeline import ValidationPipeline
from services.validation.result import ValidationIssue, ValidationReport, ValidationStatus

logger = logging.getLogger(__name__)

STRUCTURE_WARNING_PREFIX = "[XML-STRUCT]"


class GenerationResult(BaseModel):
    """Result of generating one document.

    Attributes:
        format_id: Generated format
        xml_content: Serialized XML document
        file_name: Deterministic name, {invoice_number}_{suffix}.xml
        file_size: Size of xml_content in bytes (UTF-8)
        pdf_content: Hybrid PDF with the XML as associated file (Factur-X only)
        pdf_file_name: File name of the PDF container
        validation_status: valid, warnings or invalid
        validation_errors: Blocking findings (empty on success)
        validation_warnings: Advisory findings
        external_validation: External validator outcome, if it was attempted
    """

    format_id: str
    xml_content: str
    file_name: str
    file_size: int
    pdf_content: bytes | None = None
    pdf_file_name: str | None = None
    validation_status: ValidationStatus
    validation_errors: list[ValidationIssue] = Field(default_factory=list)
    validation_warnings: list[ValidationIssue] = Field(default_factory=list)
    external_validation: ExternalValidationResult | None = None


class FormatGenerator(ABC):
    """Abstract base class for format generators.

    Subclasses declare their metadata as class attributes and implement
    build_xml(). Hybrid formats additionally override build_pdf().
    """

    format_id: str
    format_name: str
    file_suffix: str
    version: str = "1.0.0"
    spec_version: str = ""
    spec_date: str = ""
    deprecated: bool = False

    # Root element (Clark notation) and namespaced paths that must exist in output.
    root_tag: str = ""
    required_paths: tuple[str, ...] = ()
    namespaces: dict[str, str] = {}

    def __init__(self, pipeline: ValidationPipeline) -> None:
        """Initialize generator.

        Args:
            pipeline: Validation pipeline shared by all generators of a registry
        """
        self.pipeline = pipeline

    @abstractmethod
    def build_xml(self, invoice: CanonicalInvoice) -> str:
        """Render the invoice as XML without validating it.

        Args:
            invoice: Canonical invoice

        Returns:
            Serialized XML document
        """
        pass

    def build_pdf(self, invoice: CanonicalInvoice, xml_content: str) -> bytes | None:
        return None

    def file_name(self, invoice: CanonicalInvoice) -> str:
        return f"{safe_file_stem(invoice.invoice_number)}_{self.file_suffix}.xml"

    def validate(self, invoice: CanonicalInvoice) -> ValidationReport:
        return self.pipeline.validate(invoice, self.format_id)

    def check_input(self, invoice: CanonicalInvoice) -> None:
        """Reject values the renderers have no mapping for.

        Raises:
            SchemaError: If a line or allowance names an unknown tax category
        """
        for path, entries in (("line_items", invoice.line_items), ("allowance_charges", invoice.allowance_charges)):
            for index, entry in enumerate(entries):
                if not entry.tax_category_code:
                    continue
                try:
                    get_category_rule(entry.tax_category_code)
                except SchemaError as e:
                    raise SchemaError(f"{e} (in {path}[{index}])", f"invoice.{path}[{index}].tax_category_code") from e

    def validate_xml(self, xml_content: str) -> list[str]:
        """Structural self-check of generated XML.

        Returns:
            Problems found; empty if the document is well-formed and complete
        """
        try:
            root = ET.fromstring(xml_content)
        except ET.ParseError as e:
            return [f"XML is not well-formed: {e}"]

        problems: list[str] = []
        if self.root_tag and root.tag != self.root_tag:
            problems.append(f"Unexpected root element {root.tag}, expected {self.root_tag}")
        for path in self.required_paths:
            if root.find(path, self.namespaces) is None:
                problems.append(f"Missing element {path}")
        return problems

    def generate(self, invoice: CanonicalInvoice) -> GenerationResult:
        """Validate and render the invoice.

        Args:
            invoice: Canonical invoice

        Returns:
            GenerationResult with document content and validation outcome

        Raises:
            InvoiceValidationError: If any validation tier reported a blocking error
            SchemaError: If the invoice holds values no renderer can map
        """
        report = self.validate(invoice)
        if not report.is_valid:
            logger.info(
                f"Refusing to generate {self.format_id} for {invoice.invoice_number}: "
                f"{', '.join(e.rule_id for e in report.errors)}"
            )
            raise InvoiceValidationError(self.format_id, report)

        self.check_input(invoice)
        xml_content = self.build_xml(invoice)

        for problem in self.validate_xml(xml_content):
            report.warnings.append(
                ValidationIssue(
                    rule_id="XML-STRUCT",
                    message=f"{STRUCTURE_WARNING_PREFIX} {problem}",
                    severity="warning",
                )
            )

        external: ExternalValidationResult | None = None
        if self.pipeline.settings.external_validation_enabled:
            external = self.pipeline.validate_external(
                xml_content, invoice.invoice_number or self.format_id
            )
            self.pipeline.merge_external(report, external)

        pdf_content = self.build_pdf(invoice, xml_content)
        file_name = self.file_name(invoice)

        logger.info(
            f"Generated {self.format_id} document {file_name} "
            f"({len(report.warnings)} warning(s))"
        )
        return GenerationResult(
            format_id=self.format_id,
            xml_content=xml_content,
            file_name=file_name,
            file_size=len(xml_content.encode("utf-8")),
            pdf_content=pdf_content,
            pdf_file_name=file_name[: -len(".xml")] + ".pdf" if pdf_content else None,
            validation_status=report.status,
            validation_errors=report.errors,
            validation_warnings=report.warnings,
            external_validation=external,
        )
