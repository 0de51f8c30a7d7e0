"""Validation findings and reports."""

from typing import Literal

from pydantic import BaseModel, Field

Severity = Literal["error", "warning"]
ValidationStatus = Literal["valid", "warnings", "invalid"]


class ValidationIssue(BaseModel):
    """One finding identified by a stable rule id (e.g. BR-DE-23-a)."""

    rule_id: str
    message: str
    severity: Severity = "error"
    field: str | None = None


class ValidationReport(BaseModel):
    """Ordered errors and warnings from all tiers. Errors are always blocking."""

    format_id: str | None = None
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def status(self) -> ValidationStatus:
        if self.errors:
            return "invalid"
        if self.warnings:
            return "warnings"
        return "valid"

    def rule_ids(self) -> list[str]:
        return [issue.rule_id for issue in self.errors + self.warnings]

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == "error":
            self.errors.append(issue)
        else:
            self.warnings.append(issue)

    def extend(self, issues: list[ValidationIssue]) -> None:
        for issue in issues:
            self.add(issue)


def error(rule_id: str, message: str, field: str | None = None) -> ValidationIssue:
    return ValidationIssue(rule_id=rule_id, message=message, severity="error", field=field)


def warning(rule_id: str, message: str, field: str | None = None) -> ValidationIssue:
    return ValidationIssue(rule_id=rule_id, message=message, severity="warning", field=field)
