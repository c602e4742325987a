"""
Error types raised inside the validation pipeline.

None of these are fatal to a validation run: the extractor and the rule
engine catch them and turn them into Info-level findings so that a report is
always produced, even a degraded one.
"""
from typing import Optional


class UnparsableDeclaration(Exception):
    """A tool or resource declaration could not be turned into a descriptor."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"{location}: {reason}")


class RuleEvaluationError(Exception):
    """A rule predicate raised while evaluating a subject."""

    def __init__(self, rule_id: str, subject: Optional[str], cause: Exception):
        self.rule_id = rule_id
        self.subject = subject
        self.cause = cause
        target = f"tool '{subject}'" if subject else "server"
        super().__init__(f"Rule {rule_id} could not evaluate {target}: {cause}")


class SourceFetchError(Exception):
    """Server source could not be fetched from the remote repository."""
