from mcp_validator.schemas.descriptors import (
    LiteralDescriptor,
    ParameterDescriptor,
    ServerDescriptor,
    ToolDescriptor,
)
from mcp_validator.schemas.report import RuleId, Severity
from mcp_validator.services.rule_engine import RuleEngine, sort_findings
from mcp_validator.services.rules import NamingConventionRule, RuleContext, SecretLiteralRule

DESCRIPTION = "Use when you need one record; returns every field of the stored record."


def _server(tools, literals=()):
    return ServerDescriptor(name="inventory", tools=tuple(tools), literals=literals)


def _mixed_tools():
    return [
        ToolDescriptor(name="listItems", description="Lists items", returns_identifiers_only=True),
        ToolDescriptor(
            name="get-item",
            description=DESCRIPTION,
            parameters=(ParameterDescriptor(name="item_id", required=True, description="Item id"),),
        ),
        ToolDescriptor(
            name="search-items",
            description=DESCRIPTION,
            parameters=(ParameterDescriptor(name="query", required=True),),
        ),
    ]


class ExplodingNamingRule(NamingConventionRule):
    """Fails on one tool and behaves normally on the rest."""

    def check_tool(self, tool, context):
        if tool.name == "broken":
            raise KeyError("schema")
        return super().check_tool(tool, context)


class ExplodingServerRule(SecretLiteralRule):
    def check_server(self, context: RuleContext):
        raise RuntimeError("literal table unavailable")


class TestRuleEngine:
    def test_findings_are_sorted_by_severity_subject_rule(self):
        findings = RuleEngine().run(_server(_mixed_tools()))
        keys = [f.sort_key() for f in findings]
        assert keys == sorted(keys)
        assert findings[0].severity is Severity.CRITICAL
        assert findings[0].subjects == ("listItems", "get-item")

    def test_ordering_is_independent_of_declaration_order(self):
        tools = _mixed_tools()
        forward = RuleEngine().run(_server(tools))
        backward = RuleEngine().run(_server(list(reversed(tools))))
        assert forward == backward

    def test_repeated_runs_are_identical(self):
        server = _server(_mixed_tools())
        engine = RuleEngine()
        assert engine.run(server) == engine.run(server)

    def test_concurrent_run_matches_sequential_run(self):
        server = _server(
            _mixed_tools(),
            literals=(LiteralDescriptor(target="api_key", value="sk-abc123def456ghijklmno"),),
        )
        engine = RuleEngine()
        assert engine.run_concurrently(server, max_workers=4) == engine.run(server)

    def test_rule_failure_on_one_tool_becomes_info_and_run_continues(self):
        tools = [
            ToolDescriptor(name="broken", description=DESCRIPTION),
            ToolDescriptor(name="Bad_Name", description=DESCRIPTION),
        ]
        findings = RuleEngine(rules=[ExplodingNamingRule()]).run(_server(tools))

        assert len(findings) == 2
        warning, notice = findings
        assert warning.severity is Severity.WARNING
        assert warning.subjects == ("Bad_Name",)
        assert notice.severity is Severity.INFO
        assert notice.rule_id is RuleId.NAMING_CONVENTION
        assert notice.subjects == ("broken",)
        assert "could not evaluate tool `broken`" in notice.message

    def test_rule_failure_outside_tools_names_the_server(self):
        findings = RuleEngine(rules=[ExplodingServerRule()]).run(_server([]))
        assert len(findings) == 1
        assert findings[0].severity is Severity.INFO
        assert findings[0].subjects == ("inventory",)
        assert "literal table unavailable" in findings[0].message

    def test_empty_server_has_no_findings(self):
        assert RuleEngine().run(_server([])) == []


def test_sort_findings_is_stable_for_equal_keys():
    server = _server([
        ToolDescriptor(
            name="search",
            description=DESCRIPTION,
            parameters=(
                ParameterDescriptor(name="query"),
                ParameterDescriptor(name="limit"),
                ParameterDescriptor(name="page"),
            ),
        ),
    ])
    findings = RuleEngine().run(server)
    assert [f.message.split("`")[1] for f in findings] == ["query", "limit", "page"]
    assert sort_findings(findings) == findings
