"""Error taxonomy for generation, validation and batch processing.

Validation findings are accumulated into reports and never raised one by one;
only the aggregate blocking condition surfaces as InvoiceValidationError. A blocking
rule violation is a ValidationIssue with severity "error" and its stable rule id.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from services.validation.result import ValidationReport


class InvoiceEngineError(Exception):
    """Base class for all engine errors."""


class SchemaError(InvoiceEngineError, ValueError):
    """Malformed input that no format can render.

    Attributes:
        field: Dotted path of the offending field, if known
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvoiceValidationError(InvoiceEngineError):
    """Raised by generate() when validation produced blocking errors.

    Attributes:
        format_id: Target format that was being generated
        report: Full validation report (errors and warnings)
    """

    def __init__(self, format_id: str, report: "ValidationReport") -> None:
        rule_ids = ", ".join(e.rule_id for e in report.errors)
        super().__init__(
            f"Invoice failed {format_id} validation with {len(report.errors)} error(s): {rule_ids}"
        )
        self.format_id = format_id
        self.report = report


class UnsupportedFormatError(InvoiceEngineError):
    """Unknown output format identifier."""

    def __init__(self, format_id: str, available: list[str]) -> None:
        super().__init__(
            f"Unsupported format: '{format_id}'. Available formats: {', '.join(available)}"
        )
        self.format_id = format_id


class ExternalValidatorUnavailable(InvoiceEngineError):
    """External validator is disabled, missing or failed to run."""


class ExtractionFailure(InvoiceEngineError):
    """Extraction of one segment failed.

    Attributes:
        retryable: True for transient and rate-limit failures
    """

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class CreditInsufficient(InvoiceEngineError):
    """Owner balance does not cover the requested reservation."""

    def __init__(self, owner_id: str, required: int) -> None:
        super().__init__(f"Insufficient credits for {owner_id}: {required} required")
        self.owner_id = owner_id
        self.required = required


class JobNotFoundError(InvoiceEngineError):
    """Batch job or its owner could not be resolved."""
