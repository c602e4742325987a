import logging
from typing import Dict, Iterable, List, Sequence

from mcp_validator.schemas.descriptors import ServerDescriptor
from mcp_validator.schemas.report import (
    CHECK_IDS,
    Finding,
    RuleId,
    Severity,
    ToolStatus,
    ValidationReport,
)
from mcp_validator.services.rule_engine import sort_findings

logger = logging.getLogger(__name__)


def _tool_status(name: str, findings: Sequence[Finding]) -> ToolStatus:
    own = [f for f in findings if name in f.subjects]
    critical = sum(1 for f in own if f.severity is Severity.CRITICAL)
    warnings = sum(1 for f in own if f.severity is Severity.WARNING)
    info = sum(1 for f in own if f.severity is Severity.INFO)

    if critical:
        status = "fail"
    elif warnings:
        status = "warning"
    else:
        status = "pass"
    return ToolStatus(name=name, status=status, critical=critical, warnings=warnings, info=info)


def _recommendations(findings: Sequence[Finding]) -> List[str]:
    # Findings are already ranked, keep the first occurrence of each suggestion
    seen = set()
    ranked = []
    for finding in findings:
        if finding.suggestion and finding.suggestion not in seen:
            seen.add(finding.suggestion)
            ranked.append(finding.suggestion)
    return ranked


def build_report(
    server: ServerDescriptor,
    findings: Iterable[Finding],
    notices: Iterable[Finding] = (),
    checks: Sequence[RuleId] = CHECK_IDS,
) -> ValidationReport:
    """
    Aggregate rule findings and extraction notices into a ValidationReport.

    Does not run or re-validate any rule: `passed_checks` are simply the
    checks that contributed no finding at all.
    """
    ordered = sort_findings(list(findings) + list(notices))

    fired = {f.rule_id for f in ordered}
    passed = tuple(rule_id for rule_id in checks if rule_id not in fired)

    counts: Dict[Severity, int] = {severity: 0 for severity in Severity}
    for finding in ordered:
        counts[finding.severity] += 1

    report = ValidationReport(
        server_name=server.name,
        tool_count=len(server.tools),
        resource_count=len(server.resources),
        findings=tuple(ordered),
        passed_checks=passed,
        severity_counts=counts,
        tool_statuses=tuple(_tool_status(tool.name, ordered) for tool in server.tools),
        recommendations=tuple(_recommendations(ordered)),
    )

    logger.info(
        f"Report for '{server.name}': {counts[Severity.CRITICAL]} critical, "
        f"{counts[Severity.WARNING]} warning(s), {counts[Severity.INFO]} info, "
        f"{len(passed)}/{len(checks)} checks passed"
    )
    return report
