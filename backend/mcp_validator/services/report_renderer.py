"""
Markdown rendering of a ValidationReport.

Pure formatting: the same report always renders to the same text.
"""
from typing import List

from mcp_validator.schemas.report import Finding, RuleId, Severity, ValidationReport
from mcp_validator.services.rules import RULES_BY_ID

_STATUS_LABELS = {"pass": "PASS", "warning": "WARN", "fail": "FAIL"}

_SECTIONS = (
    (Severity.CRITICAL, "Critical Issues", "Issue"),
    (Severity.WARNING, "Warnings", "Warning"),
    (Severity.INFO, "Notes", "Note"),
)


def rule_title(rule_id: RuleId) -> str:
    rule = RULES_BY_ID.get(rule_id)
    if rule is None:
        return "Unparsed Declaration"
    return rule.title


def rule_check(rule_id: RuleId) -> str:
    rule = RULES_BY_ID.get(rule_id)
    return rule.check if rule else rule_id.value


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _render_finding(index: int, label: str, finding: Finding) -> List[str]:
    return [
        f"### {label} {index}: {rule_title(finding.rule_id)}",
        f"- **Location**: `{finding.subjects[0]}` ({finding.rule_id.value})",
        "- **Tools Affected**: " + ", ".join(f"`{s}`" for s in finding.subjects),
        f"- **Problem**: {finding.message}",
        f"- **Fix**: {finding.suggestion or 'No automatic suggestion.'}",
        "",
    ]


def render_markdown(report: ValidationReport) -> str:
    counts = report.severity_counts
    lines = [
        "# MCP Server Validation Report",
        "",
        "## Summary",
        f"- Server: {report.server_name}",
        f"- Tools: {report.tool_count}",
        f"- Resources: {report.resource_count}",
        "- Issues: "
        + ", ".join([
            f"{counts.get(Severity.CRITICAL, 0)} critical",
            _plural(counts.get(Severity.WARNING, 0), "warning"),
            f"{counts.get(Severity.INFO, 0)} info",
        ]),
        "",
    ]

    if report.tool_statuses:
        lines += [
            "## Tool Status",
            "| Tool | Status | Critical | Warnings | Info |",
            "| --- | --- | --- | --- | --- |",
        ]
        for status in report.tool_statuses:
            lines.append(
                f"| `{status.name}` | {_STATUS_LABELS[status.status]} | "
                f"{status.critical} | {status.warnings} | {status.info} |"
            )
        lines.append("")

    for severity, heading, label in _SECTIONS:
        findings = report.findings_for(severity)
        if severity is Severity.INFO and not findings:
            continue
        lines += [f"## {heading}", ""]
        if not findings:
            lines += ["None found.", ""]
            continue
        for index, finding in enumerate(findings, start=1):
            lines += _render_finding(index, label, finding)

    lines += ["## Passed Checks"]
    if report.passed_checks:
        lines += [f"- [x] {rule_check(rule_id)}" for rule_id in report.passed_checks]
    else:
        lines.append("None.")
    lines.append("")

    lines += ["## Recommendations"]
    if report.recommendations:
        lines += [f"{i}. {text}" for i, text in enumerate(report.recommendations, start=1)]
    else:
        lines.append("No changes recommended.")

    return "\n".join(lines) + "\n"
