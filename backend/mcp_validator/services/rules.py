"""
Tool Validation Rules

The fixed battery of checks applied to a server's declared tools and
resources. Every rule is a pure predicate plus message template: it reads the
immutable ServerDescriptor and returns Findings, never mutating anything.

Per-tool rules implement `check_tool`; the rule engine drives them tool by
tool so that a failure on one tool only costs coverage for that tool.
Rules that look at server-level data implement `check_server`.
"""

import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from mcp_validator.core.config import Settings, settings
from mcp_validator.schemas.descriptors import (
    LiteralDescriptor,
    ParameterDescriptor,
    ServerDescriptor,
    ToolDescriptor,
)
from mcp_validator.schemas.report import Finding, RuleId, RuleInfo, Severity
from mcp_validator.utils.naming import entity_stems, identifier_match_score, to_kebab_case

logger = logging.getLogger(__name__)


class RuleConfig(BaseModel):
    """Calibration constants for the rules, usually taken from Settings."""
    model_config = ConfigDict(frozen=True)

    min_description_length: int = 50
    usage_guidance_phrases: Tuple[str, ...] = ("use when", "use this", "returns")
    generic_error_messages: Tuple[str, ...] = ("error", "invalid input", "failed")
    min_error_message_length: int = 10
    secret_min_run_length: int = 20
    sequential_critical_confidence: float = 0.7
    sequential_warning_confidence: float = 0.5
    context_resource_schemes: Tuple[str, ...] = ("schema", "ref")

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "RuleConfig":
        return cls(
            min_description_length=source.MIN_DESCRIPTION_LENGTH,
            usage_guidance_phrases=tuple(p.lower() for p in source.USAGE_GUIDANCE_PHRASES),
            generic_error_messages=tuple(m.lower() for m in source.GENERIC_ERROR_MESSAGES),
            min_error_message_length=source.MIN_ERROR_MESSAGE_LENGTH,
            secret_min_run_length=source.SECRET_MIN_RUN_LENGTH,
            sequential_critical_confidence=source.SEQUENTIAL_CALL_CRITICAL_CONFIDENCE,
            sequential_warning_confidence=source.SEQUENTIAL_CALL_WARNING_CONFIDENCE,
            context_resource_schemes=tuple(s.lower() for s in source.CONTEXT_RESOURCE_SCHEMES),
        )


class RuleContext(BaseModel):
    """Read-only input shared by every rule in a run."""
    model_config = ConfigDict(frozen=True)

    server: ServerDescriptor
    config: RuleConfig = RuleConfig()


class Rule:
    """Base class for a validation rule."""

    rule_id: RuleId
    title: str
    # Wording used in the Passed Checks section
    check: str
    severity: Severity

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        return []

    def check_server(self, context: RuleContext) -> List[Finding]:
        return []

    def finding(
        self,
        subjects: Sequence[str],
        message: str,
        suggestion: str,
        severity: Optional[Severity] = None,
    ) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            severity=severity or self.severity,
            subjects=tuple(subjects),
            message=message,
            suggestion=suggestion,
        )

    def info(self) -> RuleInfo:
        return RuleInfo(id=self.rule_id, title=self.title, check=self.check, severity=self.severity)


# ---------------------------------------------------------------------------
# Rule 1: sequential calls
# ---------------------------------------------------------------------------

SHARED_ENTITY_BONUS = 0.3

_OPTIONAL_CONTEXT = re.compile(r"\boptional\b", re.IGNORECASE)


class SequentialCallRule(Rule):
    rule_id = RuleId.SEQUENTIAL_CALLS
    title = "Sequential Call Anti-Pattern"
    check = "No tool requires identifiers that another tool returns bare"
    severity = Severity.CRITICAL

    def pair_confidence(
        self, producer: ToolDescriptor, consumer: ToolDescriptor
    ) -> Tuple[float, Optional[ParameterDescriptor]]:
        """
        Confidence that `consumer` must be called with identifiers produced by
        `producer`, and the parameter that carries them.
        """
        best_score = 0.0
        best_param: Optional[ParameterDescriptor] = None
        producer_stems = entity_stems(producer.name)
        consumer_stems = entity_stems(consumer.name)

        for param in consumer.required_parameters:
            score = identifier_match_score(param.name)
            if score == 0.0:
                continue
            param_stems = entity_stems(param.name) | consumer_stems
            if producer_stems & param_stems:
                score += SHARED_ENTITY_BONUS
            if score > best_score:
                best_score, best_param = score, param

        if best_param is not None and producer.name in consumer.consumes_identifier_from:
            best_score = 1.0
        return min(best_score, 1.0), best_param

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        # `tool` is the consumer (B); every identifier-only producer is a candidate A
        if any(_OPTIONAL_CONTEXT.search(p.description or "") for p in tool.parameters):
            return []

        config = context.config
        findings: List[Finding] = []
        for producer in context.server.tools:
            if producer.name == tool.name or not producer.returns_identifiers_only:
                continue

            confidence, param = self.pair_confidence(producer, tool)
            if param is None or confidence < config.sequential_warning_confidence:
                continue

            if confidence >= config.sequential_critical_confidence:
                severity = Severity.CRITICAL
                message = (
                    f"`{tool.name}` requires `{param.name}`, an identifier that `{producer.name}` "
                    f"returns without details. Agents must call `{producer.name}` and then "
                    f"`{tool.name}` once per result."
                )
            else:
                severity = Severity.WARNING
                message = (
                    f"Possible sequential call: `{tool.name}` requires `{param.name}`, which looks "
                    f"like a reference returned by `{producer.name}` (confidence {confidence:.2f})."
                )

            logger.debug(f"Sequential pair {producer.name} -> {tool.name} scored {confidence:.2f}")
            findings.append(self.finding(
                (producer.name, tool.name),
                message,
                f"Merge `{tool.name}` into `{producer.name}` by adding an `include_details` "
                f"boolean parameter that returns full records in a single call.",
                severity=severity,
            ))
        return findings


# ---------------------------------------------------------------------------
# Rule 2: description completeness
# ---------------------------------------------------------------------------

class DescriptionCompletenessRule(Rule):
    rule_id = RuleId.DESCRIPTION_COMPLETENESS
    title = "Incomplete Tool Description"
    check = "Tool descriptions explain when to use them and what they return"
    severity = Severity.WARNING

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        config = context.config
        description = tool.description.strip()
        problems = []

        if len(description) < config.min_description_length:
            problems.append(
                f"is {len(description)} characters long (minimum {config.min_description_length})"
            )
        lowered = description.lower()
        if not any(phrase in lowered for phrase in config.usage_guidance_phrases):
            phrases = ", ".join(f'"{p}"' for p in config.usage_guidance_phrases)
            problems.append(f"gives no usage guidance or return value (expected one of {phrases})")

        if not problems:
            return []
        return [self.finding(
            (tool.name,),
            f"Description of `{tool.name}` " + " and ".join(problems) + ".",
            "Describe what the tool does, when to use it (\"Use when ...\") and what it returns.",
        )]


# ---------------------------------------------------------------------------
# Rule 3: parameter documentation
# ---------------------------------------------------------------------------

class ParameterDocumentationRule(Rule):
    rule_id = RuleId.PARAMETER_DOCUMENTATION
    title = "Undocumented Parameter"
    check = "All parameters are documented"
    severity = Severity.WARNING

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        return [
            self.finding(
                (tool.name,),
                f"Parameter `{param.name}` of `{tool.name}` has no description.",
                f"Document `{param.name}`: its expected format, valid values and an example.",
            )
            for param in tool.parameters
            if not param.description.strip()
        ]


# ---------------------------------------------------------------------------
# Rule 4: naming convention
# ---------------------------------------------------------------------------

KEBAB_CASE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


class NamingConventionRule(Rule):
    rule_id = RuleId.NAMING_CONVENTION
    title = "Naming Convention"
    check = "Tool names follow kebab-case"
    severity = Severity.WARNING

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        if KEBAB_CASE.match(tool.name):
            return []
        suggested = to_kebab_case(tool.name)
        return [self.finding(
            (tool.name,),
            f"Tool name `{tool.name}` is not kebab-case.",
            f"Rename the tool to `{suggested}`." if suggested else "Rename the tool using lowercase words joined by hyphens.",
        )]


# ---------------------------------------------------------------------------
# Rule 5: error message quality
# ---------------------------------------------------------------------------

_INTERPOLATION = re.compile(r"\{[^{}]*\}|%[sdrfi]|\$\{[^}]*\}")


def has_interpolation(message: str) -> bool:
    return bool(_INTERPOLATION.search(message))


class ErrorMessageQualityRule(Rule):
    rule_id = RuleId.ERROR_MESSAGE_QUALITY
    title = "Generic Error Message"
    check = "Error messages are structured and actionable"
    severity = Severity.WARNING

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        config = context.config
        findings = []
        for path in tool.error_paths:
            message = path.message_literal
            normalized = message.strip().lower().rstrip(".!")
            problems = []
            if not path.is_structured:
                problems.append("is a bare string instead of a structured error")
            if normalized in config.generic_error_messages:
                problems.append("is a generic message")
            elif len(message.strip()) < config.min_error_message_length and not has_interpolation(message):
                problems.append(
                    f"is shorter than {config.min_error_message_length} characters with no details"
                )
            if problems:
                findings.append(self.finding(
                    (tool.name,),
                    f"Error \"{message}\" in `{tool.name}` " + " and ".join(problems) + ".",
                    "Return a structured error such as {\"error\": \"<kind>\", \"message\": ..., "
                    "\"suggestion\": ...} that tells the agent how to recover.",
                ))
        return findings


# ---------------------------------------------------------------------------
# Rule 6: secret literals
# ---------------------------------------------------------------------------

SECRET_NAME = re.compile(r"api[_-]?key|secret|password|token", re.IGNORECASE)
PROVIDER_KEY = re.compile(
    r"(sk-ant-[A-Za-z0-9_-]{8,}"
    r"|sk-[A-Za-z0-9_-]{16,}"
    r"|gh[po]_[A-Za-z0-9]{20,}"
    r"|github_pat_[A-Za-z0-9_]{20,}"
    r"|xox[abprs]-[A-Za-z0-9-]{10,}"
    r"|AKIA[0-9A-Z]{16}"
    r"|AIza[0-9A-Za-z_-]{35})"
)
_PLACEHOLDER = re.compile(r"^(<.*>|\$\{.*\}|your[-_ ].*|x+|\*+|\.\.\.|none|null)$", re.IGNORECASE)
_ENV_VAR_NAME = re.compile(r"^[A-Z][A-Z0-9_]*$")


def mask_secret(value: str) -> str:
    return f"{value[:4]}****" if len(value) > 4 else "****"


def _has_key_shaped_run(value: str, min_length: int) -> bool:
    hex_run = re.compile(r"[0-9a-fA-F]{%d,}" % min_length)
    for match in hex_run.finditer(value):
        run = match.group(0)
        if re.search(r"[0-9]", run) and re.search(r"[a-fA-F]", run):
            return True
    # Runs stop at "/" so URL paths are judged segment by segment
    b64_run = re.compile(r"[A-Za-z0-9+]{%d,}={0,2}" % min_length)
    for match in b64_run.finditer(value):
        run = match.group(0)
        if re.search(r"[a-z]", run) and re.search(r"[A-Z]", run) and re.search(r"[0-9]", run):
            return True
    return False


def secret_reason(literal: LiteralDescriptor, min_run_length: int) -> Optional[str]:
    """Why a literal looks like a secret, or None."""
    value = literal.value.strip()
    if not value:
        return None
    if PROVIDER_KEY.search(value):
        return "matches a known provider key format"
    if (
        literal.target
        and SECRET_NAME.search(literal.target)
        and not _PLACEHOLDER.match(value)
        and not _ENV_VAR_NAME.match(value)
    ):
        return f"is assigned to `{literal.target}`"
    if _has_key_shaped_run(value, min_run_length):
        return f"contains a {min_run_length}+ character key-like run"
    return None


class SecretLiteralRule(Rule):
    rule_id = RuleId.SECRET_LITERALS
    title = "Suspected Hardcoded Secret"
    check = "No suspected secrets in literals"
    severity = Severity.CRITICAL

    suggestion = "Read the value from an environment variable or secret manager instead of embedding it."

    @staticmethod
    def tool_literals(tool: ToolDescriptor) -> Iterable[LiteralDescriptor]:
        for param in tool.parameters:
            if isinstance(param.default, str):
                yield LiteralDescriptor(target=param.name, value=param.default)
        for path in tool.error_paths:
            yield LiteralDescriptor(value=path.message_literal)
        yield from tool.literals

    def _scan(self, subject: str, literals: Iterable[LiteralDescriptor], context: RuleContext) -> List[Finding]:
        findings = []
        for literal in literals:
            reason = secret_reason(literal, context.config.secret_min_run_length)
            if reason is None:
                continue
            findings.append(self.finding(
                (subject,),
                f"Suspected secret in `{subject}`: literal {mask_secret(literal.value.strip())!r} {reason}.",
                self.suggestion,
            ))
        return findings

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        return self._scan(tool.name, self.tool_literals(tool), context)

    def check_server(self, context: RuleContext) -> List[Finding]:
        return self._scan(context.server.name, context.server.literals, context)


# ---------------------------------------------------------------------------
# Rule 7: resource context gap
# ---------------------------------------------------------------------------

_QUERY = re.compile(r"\bquer(y|ies)\b", re.IGNORECASE)
_DATA_STORE = re.compile(
    r"\b(database|db|table|tables|collection|collections|index|datastore|data store|"
    r"warehouse|sql|graphql|schema)\b",
    re.IGNORECASE,
)


class ResourceContextGapRule(Rule):
    rule_id = RuleId.RESOURCE_CONTEXT_GAP
    title = "Missing Context Resource"
    check = "Data-store queries are backed by a context resource"
    severity = Severity.INFO

    def has_context_resource(self, context: RuleContext) -> bool:
        schemes = context.config.context_resource_schemes
        return any(resource.scheme in schemes for resource in context.server.resources)

    def check_tool(self, tool: ToolDescriptor, context: RuleContext) -> List[Finding]:
        query_params = [
            p.name for p in tool.parameters
            if _QUERY.search(p.description) and _DATA_STORE.search(p.description)
        ]
        if not query_params or self.has_context_resource(context):
            return []
        names = ", ".join(f"`{n}`" for n in query_params)
        schemes = " or ".join(f"{s}://" for s in context.config.context_resource_schemes)
        return [self.finding(
            (tool.name,),
            f"{names} of `{tool.name}` query a data store whose structure agents cannot infer, "
            f"and the server exposes no {schemes} resource.",
            "Add a context resource (e.g. `schema://tables`) describing the available "
            "tables, fields and example queries.",
        )]


DEFAULT_RULES: Tuple[Rule, ...] = (
    SequentialCallRule(),
    DescriptionCompletenessRule(),
    ParameterDocumentationRule(),
    NamingConventionRule(),
    ErrorMessageQualityRule(),
    SecretLiteralRule(),
    ResourceContextGapRule(),
)

RULES_BY_ID = {rule.rule_id: rule for rule in DEFAULT_RULES}
