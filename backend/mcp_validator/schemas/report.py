from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"

    @property
    def rank(self) -> int:
        """Higher is more severe."""
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.CRITICAL: 3, Severity.WARNING: 2, Severity.INFO: 1}


class RuleId(str, Enum):
    SEQUENTIAL_CALLS = "sequential-calls"
    DESCRIPTION_COMPLETENESS = "description-completeness"
    PARAMETER_DOCUMENTATION = "parameter-documentation"
    NAMING_CONVENTION = "naming-convention"
    ERROR_MESSAGE_QUALITY = "error-message-quality"
    SECRET_LITERALS = "secret-literals"
    RESOURCE_CONTEXT_GAP = "resource-context-gap"
    # Extraction notices, never listed as a check
    UNPARSED_DECLARATION = "unparsed-declaration"


# The seven checks in report order
CHECK_IDS: Tuple[RuleId, ...] = tuple(r for r in RuleId if r is not RuleId.UNPARSED_DECLARATION)


class Finding(BaseModel):
    """One rule violation or informational note against concrete subjects."""
    model_config = ConfigDict(frozen=True)

    rule_id: RuleId
    severity: Severity
    subjects: Tuple[str, ...] = Field(..., min_length=1)
    message: str
    suggestion: str = ""

    @field_validator("subjects")
    @classmethod
    def subjects_not_blank(cls, v: Tuple[str, ...]) -> Tuple[str, ...]:
        if any(not s for s in v):
            raise ValueError("Finding subjects must be non-empty names")
        return v

    @property
    def subject(self) -> str:
        return ", ".join(self.subjects)

    def sort_key(self) -> Tuple[int, str, str]:
        # Severity descending, then subject, then rule id
        return (-self.severity.rank, self.subject, self.rule_id.value)


class ToolStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    status: Literal["pass", "warning", "fail"]
    critical: int = 0
    warnings: int = 0
    info: int = 0


class ValidationReport(BaseModel):
    """
    Result of one validation run.
    Built fresh per run and immutable afterwards.
    """
    model_config = ConfigDict(frozen=True)

    server_name: str
    tool_count: int
    resource_count: int
    findings: Tuple[Finding, ...] = ()
    passed_checks: Tuple[RuleId, ...] = ()
    severity_counts: Dict[Severity, int] = Field(default_factory=dict)
    tool_statuses: Tuple[ToolStatus, ...] = ()
    recommendations: Tuple[str, ...] = ()

    @property
    def has_critical(self) -> bool:
        return self.severity_counts.get(Severity.CRITICAL, 0) > 0

    def findings_for(self, severity: Severity) -> List[Finding]:
        return [f for f in self.findings if f.severity is severity]


class RuleInfo(BaseModel):
    """Public description of a rule, served by the rule catalogue endpoint."""
    id: RuleId
    title: str
    check: str
    severity: Severity


class ValidateSourceRequest(BaseModel):
    source: str
    server_name: str = "unnamed-server"
    persist: bool = False


class ValidateRepoRequest(BaseModel):
    repo_url: str
    path: str = "server.py"
    ref: str = "HEAD"
    force: bool = False  # If True, bypass stored reports and re-validate


class ValidateResponse(BaseModel):
    status: Literal["success", "cached", "failed"]
    fingerprint: Optional[str] = None
    report: Optional[ValidationReport] = None
    markdown: Optional[str] = None
    error: Optional[str] = None


class StoredReportResponse(BaseModel):
    fingerprint: str
    server_name: str
    source: str
    report: Dict[str, Any]
    markdown: str
    critical_count: int
