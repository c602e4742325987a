"""
Rule Engine

Runs every rule over the same immutable ServerDescriptor and merges the
results. Rules never see each other's output: each one collects into its own
list and the lists are concatenated and sorted once all rules have finished.

A rule that raises never aborts the run. The exception is wrapped in a
RuleEvaluationError and reported as an Info finding naming the rule and the
tool it could not evaluate.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional, Sequence

from mcp_validator.core.errors import RuleEvaluationError
from mcp_validator.schemas.descriptors import ServerDescriptor
from mcp_validator.schemas.report import Finding, Severity
from mcp_validator.services.rules import DEFAULT_RULES, Rule, RuleConfig, RuleContext

logger = logging.getLogger(__name__)


def sort_findings(findings: Iterable[Finding]) -> List[Finding]:
    """Severity descending, then subject name, then rule id. Stable."""
    return sorted(findings, key=lambda f: f.sort_key())


class RuleEngine:
    """Applies a fixed, ordered set of independent rules to a server."""

    def __init__(self, rules: Sequence[Rule] = DEFAULT_RULES, config: Optional[RuleConfig] = None):
        self.rules = tuple(rules)
        self.config = config or RuleConfig.from_settings()

    def context_for(self, server: ServerDescriptor) -> RuleContext:
        return RuleContext(server=server, config=self.config)

    def _evaluation_notice(self, rule: Rule, error: RuleEvaluationError, server: ServerDescriptor) -> Finding:
        subject = error.subject or server.name
        return rule.finding(
            (subject,),
            f"Rule could not evaluate {'tool' if error.subject else 'server'} `{subject}`: "
            f"{type(error.cause).__name__}: {error.cause}",
            "Check that the declaration is complete; this check was skipped for it.",
            severity=Severity.INFO,
        )

    def run_rule(self, rule: Rule, context: RuleContext) -> List[Finding]:
        """Evaluate one rule against every tool and then the server as a whole."""
        findings: List[Finding] = []
        server = context.server

        for tool in server.tools:
            try:
                findings.extend(rule.check_tool(tool, context))
            except Exception as e:
                error = RuleEvaluationError(rule.rule_id.value, tool.name, e)
                logger.warning(str(error))
                findings.append(self._evaluation_notice(rule, error, server))

        try:
            findings.extend(rule.check_server(context))
        except Exception as e:
            error = RuleEvaluationError(rule.rule_id.value, None, e)
            logger.warning(str(error))
            findings.append(self._evaluation_notice(rule, error, server))

        logger.debug(f"Rule {rule.rule_id.value} produced {len(findings)} finding(s)")
        return findings

    def run(self, server: ServerDescriptor) -> List[Finding]:
        """Run all rules sequentially and return the sorted, merged findings."""
        context = self.context_for(server)
        logger.info(
            f"Validating server '{server.name}': {len(server.tools)} tool(s), "
            f"{len(server.resources)} resource(s), {len(self.rules)} rule(s)"
        )
        per_rule = [self.run_rule(rule, context) for rule in self.rules]
        return sort_findings(f for findings in per_rule for f in findings)

    def run_concurrently(self, server: ServerDescriptor, max_workers: Optional[int] = None) -> List[Finding]:
        """
        Same result as `run`, with the rules fanned out over a thread pool.
        Ordering is only established by the final sort after the merge.
        """
        context = self.context_for(server)
        with ThreadPoolExecutor(max_workers=max_workers or len(self.rules) or 1) as pool:
            per_rule = list(pool.map(lambda rule: self.run_rule(rule, context), self.rules))
        return sort_findings(f for findings in per_rule for f in findings)
