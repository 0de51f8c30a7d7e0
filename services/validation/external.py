"""Adapter for an external command-line e-invoice validator (e.g. the KoSIT validator).

External validation is advisory: every failure mode, including a disabled flag,
missing files, non-zero exit without findings or a timeout, degrades to
``ran=False`` and never blocks generation.

Based on the KoSIT validator CLI:
https://github.com/itplr-kosit/validator
"""

import logging
import re
import subprocess
import tempfile
import time
from pathlib import Path

from pydantic import BaseModel, Field

from services.shared.config import Settings
from services.shared.errors import ExternalValidatorUnavailable
from services.validation.result import ValidationIssue

logger = logging.getLogger(__name__)

# Report lines look like "[BR-DE-15] Buyer reference is missing".
FINDING_LINE = re.compile(r"^\s*\[(?P<rule>[A-Za-z0-9_.\-]+)\]\s*(?P<message>.+?)\s*$")
WARNING_MARKERS = ("warning", "warn")


class ExternalValidationResult(BaseModel):
    """Outcome of one external validator run.

    Attributes:
        ran: Whether the validator actually executed and produced a verdict
        valid: Validator verdict (None when it did not run)
        errors: Error findings parsed from the report
        warnings: Warning findings parsed from the report
        error: Diagnostic when ran is False
        duration_ms: Wall time of the subprocess call
    """

    ran: bool
    valid: bool | None = None
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    error: str | None = None
    duration_ms: int | None = None


def parse_report(output: str) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
    """Parse ``[RULE-ID] message`` lines from validator output.

    Lines whose message mentions a warning are classified as warnings, everything
    else as errors.

    Returns:
        Tuple of (errors, warnings)
    """
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    for line in output.splitlines():
        match = FINDING_LINE.match(line)
        if not match:
            continue
        message = match.group("message")
        if message.lower().startswith(WARNING_MARKERS):
            warnings.append(
                ValidationIssue(rule_id=match.group("rule"), message=message, severity="warning")
            )
        else:
            errors.append(ValidationIssue(rule_id=match.group("rule"), message=message))
    return errors, warnings


class ExternalValidator:
    """Runs ``<executable> --scenarios <file> --input <xml>`` against generated XML."""

    def __init__(self, settings: Settings) -> None:
        """Initialize adapter with settings.

        Args:
            settings: Application settings (flag, executable, scenarios, timeout)
        """
        self.settings = settings
        self._executable = settings.external_validator_path
        self._scenarios = settings.external_validator_scenarios
        self._timeout = settings.external_validator_timeout

    def check_available(self) -> None:
        """Verify flag and configured paths.

        Raises:
            ExternalValidatorUnavailable: If disabled or a configured file is missing
        """
        if not self.settings.external_validation_enabled:
            raise ExternalValidatorUnavailable(
                "External validation is disabled (APP_EXTERNAL_VALIDATION_ENABLED=false)"
            )
        if not self._executable or not Path(self._executable).is_file():
            raise ExternalValidatorUnavailable(
                f"Validator executable not found: '{self._executable}' "
                "(set APP_EXTERNAL_VALIDATOR_PATH)"
            )
        if not self._scenarios or not Path(self._scenarios).is_file():
            raise ExternalValidatorUnavailable(
                f"Validator scenarios file not found: '{self._scenarios}' "
                "(set APP_EXTERNAL_VALIDATOR_SCENARIOS)"
            )

    def validate(self, xml_content: str, label: str = "invoice") -> ExternalValidationResult:
        """Validate XML with the external CLI.

        The XML is written to a temporary file that is removed on every exit path.

        Args:
            xml_content: Generated XML document
            label: Used in the temporary file name (typically the invoice number)

        Returns:
            ExternalValidationResult; ran=False with a diagnostic when unavailable
        """
        try:
            self.check_available()
        except ExternalValidatorUnavailable as e:
            logger.info(f"External validation skipped: {e}")
            return ExternalValidationResult(ran=False, error=str(e))

        safe_label = re.sub(r"[^A-Za-z0-9_-]+", "_", label)[:64] or "invoice"
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            delete=False,
            prefix=f"einvoice_{safe_label}_{int(time.time() * 1000)}_",
            suffix=".xml",
        ) as tmp:
            tmp.write(xml_content)
            tmp_path = Path(tmp.name)

        try:
            start = time.time()
            completed = subprocess.run(
                [self._executable, "--scenarios", self._scenarios, "--input", str(tmp_path)],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
            duration_ms = int((time.time() - start) * 1000)
        except subprocess.TimeoutExpired:
            logger.warning(f"External validator timed out after {self._timeout}s for {label}")
            return ExternalValidationResult(
                ran=False, error=f"Validator timed out after {self._timeout}s"
            )
        except OSError as e:
            logger.warning(f"External validator could not be started: {e}")
            return ExternalValidationResult(ran=False, error=f"Validator failed to start: {e}")
        finally:
            # Clean up temp file
            if tmp_path.exists():
                tmp_path.unlink()

        output = f"{completed.stdout}\n{completed.stderr}"
        errors, warnings = parse_report(output)

        if completed.returncode == 0:
            return ExternalValidationResult(
                ran=True, valid=True, warnings=warnings, duration_ms=duration_ms
            )

        if errors or warnings:
            return ExternalValidationResult(
                ran=True,
                valid=False,
                errors=errors,
                warnings=warnings,
                duration_ms=duration_ms,
            )

        logger.warning(
            f"External validator exited with code {completed.returncode} without findings"
        )
        return ExternalValidationResult(
            ran=False,
            error=f"Validator exited with code {completed.returncode}: "
            f"{completed.stderr.strip()[:500]}",
            duration_ms=duration_ms,
        )
