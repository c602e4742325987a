"""
Manifest Extractor

Turns an MCP `tools/list`-style JSON manifest into the descriptors the rule
engine consumes. Extraction is total: every declared tool either becomes
exactly one ToolDescriptor or is reported as an "unparsed declaration"
notice. Nothing is dropped silently.
"""

import hashlib
import json
import logging
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError

from mcp_validator.core.errors import UnparsableDeclaration
from mcp_validator.schemas.descriptors import (
    ErrorPathDescriptor,
    LiteralDescriptor,
    ParameterDescriptor,
    ParameterKind,
    ResourceDescriptor,
    ServerDescriptor,
    ToolDescriptor,
)
from mcp_validator.schemas.report import Finding, RuleId, Severity
from mcp_validator.utils.naming import is_identifier_name

logger = logging.getLogger(__name__)

_ID_ITEM_TYPES = ("string", "integer")


class ExtractionResult(BaseModel):
    """Descriptors for one server plus notices about what could not be read."""
    model_config = ConfigDict(frozen=True)

    server: ServerDescriptor
    notices: Tuple[Finding, ...] = ()

    def fingerprint(self) -> str:
        """
        Report-store key for this extraction.

        Equal to the server fingerprint when nothing was skipped; otherwise the
        notices are hashed in too, so a server that gains an unreadable
        declaration never maps onto a report that lacks the notice.
        """
        base = self.server.fingerprint()
        if not self.notices:
            return base
        notices = sorted(
            json.dumps(n.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
            for n in self.notices
        )
        canonical = json.dumps({"server": base, "notices": notices}, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def unparsed_notice(error: UnparsableDeclaration) -> Finding:
    return Finding(
        rule_id=RuleId.UNPARSED_DECLARATION,
        severity=Severity.INFO,
        subjects=(error.location,),
        message=f"Declaration `{error.location}` could not be parsed and was not checked: {error.reason}.",
        suggestion="Declare tools with a literal name, a description and an input schema.",
    )


def schema_returns_identifiers(schema: Any) -> bool:
    """
    True when an output schema describes bare identifiers: a string, an
    array of strings/ids, or an object whose only fields are identifier
    fields. Any nested object field means full records are returned.
    """
    if not isinstance(schema, dict):
        return False
    schema_type = schema.get("type")
    if schema_type == "string":
        return True
    if schema_type == "array":
        items = schema.get("items")
        return (
            isinstance(items, dict)
            and items.get("type") in _ID_ITEM_TYPES
            and not items.get("properties")
        )
    if schema_type == "object":
        properties = schema.get("properties")
        if not isinstance(properties, dict) or not properties:
            return False
        return all(
            is_identifier_name(name)
            and isinstance(prop, dict)
            and (prop.get("type") in _ID_ITEM_TYPES or schema_returns_identifiers(prop))
            for name, prop in properties.items()
        )
    return False


def sample_returns_identifiers(sample: Any) -> bool:
    """Same heuristic applied to an example output value."""
    if isinstance(sample, str):
        return True
    if isinstance(sample, list) and sample:
        return all(isinstance(item, (str, int)) and not isinstance(item, bool) for item in sample)
    return False


def derive_consumers(tools: Sequence[ToolDescriptor]) -> List[ToolDescriptor]:
    """
    Fill `consumes_identifier_from` for each tool: every other tool returning
    bare identifiers, when this tool has a required identifier parameter.
    Explicitly declared producers are kept.
    """
    producers = [t.name for t in tools if t.returns_identifiers_only]
    derived = []
    for tool in tools:
        consumed = set(tool.consumes_identifier_from)
        if any(is_identifier_name(p.name) for p in tool.required_parameters):
            consumed.update(name for name in producers if name != tool.name)
        if consumed != set(tool.consumes_identifier_from):
            tool = tool.model_copy(update={"consumes_identifier_from": frozenset(consumed)})
        derived.append(tool)
    return derived


def dedupe_tools(tools: Iterable[ToolDescriptor], notices: List[Finding]) -> List[ToolDescriptor]:
    """Keep the first declaration of each tool name; later ones become notices."""
    seen = set()
    unique = []
    for tool in tools:
        if tool.name in seen:
            error = UnparsableDeclaration(tool.name, "duplicate tool name, only the first declaration is checked")
            logger.warning(f"Skipping duplicate tool: {error}")
            notices.append(unparsed_notice(error))
            continue
        seen.add(tool.name)
        unique.append(tool)
    return unique


def _kind(schema: Dict[str, Any]) -> ParameterKind:
    if "enum" in schema:
        return ParameterKind.ENUM
    schema_type = schema.get("type")
    if isinstance(schema_type, list):
        schema_type = next((t for t in schema_type if t != "null"), None)
    try:
        return ParameterKind(schema_type)
    except ValueError:
        return ParameterKind.UNKNOWN


def _text(value: Any, field: str, location: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise UnparsableDeclaration(location, f"'{field}' must be a string, got {type(value).__name__}")
    return value


class ManifestExtractor:
    """Extracts descriptors from a JSON manifest (`tools`, `resources`, `literals`)."""

    def parse_parameters(self, raw: Dict[str, Any], location: str) -> Tuple[ParameterDescriptor, ...]:
        schema = raw.get("inputSchema", raw.get("input_schema", raw.get("parameters"))) or {}
        if not isinstance(schema, dict):
            raise UnparsableDeclaration(location, "input schema must be an object")

        properties = schema.get("properties") or {}
        required = schema.get("required") or []
        if not isinstance(properties, dict) or not isinstance(required, list):
            raise UnparsableDeclaration(location, "input schema 'properties'/'required' are malformed")

        parameters = []
        for name, prop in properties.items():
            prop = prop if isinstance(prop, dict) else {}
            parameters.append(ParameterDescriptor(
                name=name,
                required=name in required,
                description=_text(prop.get("description"), f"{name}.description", location),
                kind=_kind(prop),
                default=prop.get("default"),
            ))
        return tuple(parameters)

    def parse_error_paths(self, raw: Dict[str, Any], location: str) -> Tuple[ErrorPathDescriptor, ...]:
        entries = raw.get("errorPaths", raw.get("error_paths")) or []
        if not isinstance(entries, list):
            raise UnparsableDeclaration(location, "error paths must be a list")

        paths = []
        for entry in entries:
            if isinstance(entry, str):
                paths.append(ErrorPathDescriptor(message_literal=entry, is_structured=False))
            elif isinstance(entry, dict):
                message = entry.get("message", entry.get("messageLiteral", ""))
                paths.append(ErrorPathDescriptor(
                    message_literal=_text(message, "errorPaths.message", location),
                    is_structured=bool(entry.get("structured", entry.get("isStructured", False))),
                ))
            else:
                raise UnparsableDeclaration(location, "error paths must be strings or objects")
        return tuple(paths)

    def parse_literals(self, entries: Any, location: str) -> Tuple[LiteralDescriptor, ...]:
        if entries is not None and not isinstance(entries, list):
            raise UnparsableDeclaration(location, "literals must be a list")

        literals = []
        for entry in entries or []:
            if isinstance(entry, str):
                literals.append(LiteralDescriptor(value=entry))
            elif (
                isinstance(entry, dict)
                and isinstance(entry.get("value"), str)
                and isinstance(entry.get("target"), (str, type(None)))
            ):
                literals.append(LiteralDescriptor(target=entry.get("target"), value=entry["value"]))
            else:
                raise UnparsableDeclaration(location, "literals must be strings or {target, value} objects")
        return tuple(literals)

    def parse_tool(self, raw: Any, index: int) -> ToolDescriptor:
        location = f"tools[{index}]"
        if not isinstance(raw, dict):
            raise UnparsableDeclaration(location, "tool declaration is not an object")

        name = raw.get("name")
        if not isinstance(name, str) or not name.strip():
            raise UnparsableDeclaration(location, "tool has no name")
        location = name

        if "returnsIdentifiersOnly" in raw:
            returns_ids = bool(raw["returnsIdentifiersOnly"])
        elif "outputSchema" in raw:
            returns_ids = schema_returns_identifiers(raw["outputSchema"])
        else:
            returns_ids = sample_returns_identifiers(raw.get("returns"))

        consumes = raw.get("consumesIdentifierFrom") or []
        if not isinstance(consumes, list) or not all(isinstance(c, str) for c in consumes):
            raise UnparsableDeclaration(location, "'consumesIdentifierFrom' must be a list of tool names")

        try:
            return ToolDescriptor(
                name=name,
                description=_text(raw.get("description"), "description", location),
                parameters=self.parse_parameters(raw, location),
                returns_identifiers_only=returns_ids,
                consumes_identifier_from=frozenset(consumes),
                error_paths=self.parse_error_paths(raw, location),
                literals=self.parse_literals(raw.get("literals"), location),
            )
        except ValidationError as e:
            raise UnparsableDeclaration(location, f"invalid declaration ({e.error_count()} error(s))") from e

    def parse_resource(self, raw: Any, index: int) -> ResourceDescriptor:
        location = f"resources[{index}]"
        if not isinstance(raw, dict):
            raise UnparsableDeclaration(location, "resource declaration is not an object")
        uri = raw.get("uri")
        if not isinstance(uri, str) or not uri.strip():
            raise UnparsableDeclaration(location, "resource has no URI")
        return ResourceDescriptor(
            uri=uri,
            name=_text(raw.get("name"), "name", uri),
            description=_text(raw.get("description"), "description", uri),
        )

    def extract(self, payload: Dict[str, Any]) -> ExtractionResult:
        notices: List[Finding] = []

        if not isinstance(payload, dict):
            logger.warning(f"Manifest is a {type(payload).__name__}, not an object")
            notices.append(unparsed_notice(UnparsableDeclaration("manifest", "manifest must be a JSON object")))
            return ExtractionResult(server=ServerDescriptor(), notices=tuple(notices))

        server_name = payload.get("name")
        if not isinstance(server_name, str) or not server_name.strip():
            server_info = payload.get("serverInfo")
            server_name = server_info.get("name") if isinstance(server_info, dict) else None
        server_name = server_name if isinstance(server_name, str) and server_name.strip() else "unnamed-server"

        tools = self._collect(payload, "tools", self.parse_tool, notices)
        tools = dedupe_tools(tools, notices)
        resources = self._collect(payload, "resources", self.parse_resource, notices)

        try:
            literals = self.parse_literals(payload.get("literals"), "literals")
        except UnparsableDeclaration as e:
            logger.warning(f"Skipping server literals: {e}")
            notices.append(unparsed_notice(e))
            literals = ()

        server = ServerDescriptor(
            name=server_name,
            tools=tuple(derive_consumers(tools)),
            resources=tuple(resources),
            literals=literals,
        )
        logger.info(
            f"Extracted {len(server.tools)} tool(s) and {len(server.resources)} resource(s) "
            f"from manifest '{server_name}' ({len(notices)} unparsed)"
        )
        return ExtractionResult(server=server, notices=tuple(notices))

    def _collect(self, payload: Dict[str, Any], key: str, parse, notices: List[Finding]) -> list:
        entries = payload.get(key) or []
        if not isinstance(entries, list):
            error = UnparsableDeclaration(key, f"'{key}' must be a list")
            logger.warning(f"Skipping declarations: {error}")
            notices.append(unparsed_notice(error))
            return []

        parsed = []
        for index, raw in enumerate(entries):
            try:
                parsed.append(parse(raw, index))
            except UnparsableDeclaration as e:
                logger.warning(f"Skipping unparsable declaration: {e}")
                notices.append(unparsed_notice(e))
        return parsed
