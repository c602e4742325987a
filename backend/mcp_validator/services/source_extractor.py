"""
Source Extractor

Builds descriptors from Python MCP server source using the `ast` module.
Recognized declarations:

- functions decorated with `@<server>.tool(...)` / `@tool(...)`
- functions decorated with `@<server>.resource("<uri>")`
- `<server>.add_tool(func, name=..., description=...)` registrations
- low-level SDK `Tool(name=..., description=..., inputSchema={...})` objects

A declaration whose name, URI or schema is not a literal is reported as an
unparsed declaration. Source that does not parse at all still produces a
result: a notice plus the literals a regex scan can recover, so secret
detection keeps working on non-Python files.
"""

import ast
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

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
from mcp_validator.schemas.report import Finding
from mcp_validator.services.extractor import (
    ExtractionResult,
    ManifestExtractor,
    dedupe_tools,
    derive_consumers,
    unparsed_notice,
)

logger = logging.getLogger(__name__)

FunctionNode = (ast.FunctionDef, ast.AsyncFunctionDef)

_SKIPPED_PARAMS = {"self", "cls", "ctx", "context"}
_ANNOTATION_KINDS = {
    "str": ParameterKind.STRING,
    "int": ParameterKind.INTEGER,
    "float": ParameterKind.NUMBER,
    "bool": ParameterKind.BOOLEAN,
    "list": ParameterKind.ARRAY,
    "List": ParameterKind.ARRAY,
    "Sequence": ParameterKind.ARRAY,
    "tuple": ParameterKind.ARRAY,
    "Tuple": ParameterKind.ARRAY,
    "set": ParameterKind.ARRAY,
    "Set": ParameterKind.ARRAY,
    "dict": ParameterKind.OBJECT,
    "Dict": ParameterKind.OBJECT,
    "Mapping": ParameterKind.OBJECT,
    "Literal": ParameterKind.ENUM,
}
_COLLECTIONS = {"list", "List", "Sequence", "set", "Set", "tuple", "Tuple", "Iterable"}
_ID_TYPES = {"str", "int", "UUID"}
_STRUCTURED_ERROR_KEYS = {"error", "error_type", "error_code", "code", "kind", "type"}
_DOC_SECTION = re.compile(r"^(\s*)(Args|Arguments|Parameters|Params)\s*:\s*$")
_DOC_ENTRY = re.compile(r"^\s*\**(\w+)\s*(?:\([^)]*\))?\s*:\s*(.*)$")
_ASSIGNMENT_LITERAL = re.compile(
    r"""(?P<target>[A-Za-z_][\w.-]*)["']?\s*[:=]\s*(?P<quote>["'`])(?P<value>[^"'`\n]*)(?P=quote)"""
)


def _name_of(node: ast.AST) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _keyword(call: Optional[ast.Call], name: str) -> Optional[ast.AST]:
    if call is None:
        return None
    for keyword in call.keywords:
        if keyword.arg == name:
            return keyword.value
    return None


def _literal_string(node: Optional[ast.AST], field: str, location: str) -> Optional[str]:
    """The string value of `node`, None if absent, error if not a literal string."""
    if node is None:
        return None
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    raise UnparsableDeclaration(location, f"'{field}' is not a literal string")


def render_message(node: ast.AST) -> Optional[str]:
    """Text of a string or f-string node, with `{expr}` placeholders kept."""
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value
    if isinstance(node, ast.JoinedStr):
        parts = []
        for value in node.values:
            if isinstance(value, ast.Constant):
                parts.append(str(value.value))
            elif isinstance(value, ast.FormattedValue):
                parts.append("{" + ast.unparse(value.value) + "}")
        return "".join(parts)
    return None


def parse_docstring_args(docstring: str) -> Dict[str, str]:
    """
    Parameter descriptions from a Google-style `Args:` section.

    Examples:
        >>> parse_docstring_args("Search.\\n\\nArgs:\\n    query: Text to match\\n")
        {'query': 'Text to match'}
    """
    descriptions: Dict[str, str] = {}
    lines = docstring.splitlines()
    section_indent = None
    entry_indent = None
    current = None

    for line in lines:
        if section_indent is None:
            match = _DOC_SECTION.match(line)
            if match:
                section_indent = len(match.group(1))
            continue

        if not line.strip():
            continue
        indent = len(line) - len(line.lstrip())
        if indent <= section_indent:
            break

        entry = _DOC_ENTRY.match(line)
        if entry and (entry_indent is None or indent == entry_indent):
            entry_indent = indent
            current = entry.group(1)
            descriptions[current] = entry.group(2).strip()
        elif current is not None:
            descriptions[current] = (descriptions[current] + " " + line.strip()).strip()

    return descriptions


def _unwrap_optional(annotation: ast.AST) -> ast.AST:
    # Optional[X] -> X, X | None -> X
    if isinstance(annotation, ast.Subscript) and _name_of(annotation.value) == "Optional":
        return annotation.slice
    if isinstance(annotation, ast.BinOp) and isinstance(annotation.op, ast.BitOr):
        for side in (annotation.left, annotation.right):
            if not (isinstance(side, ast.Constant) and side.value is None):
                return side
    return annotation


def _annotated_parts(annotation: Optional[ast.AST]) -> Tuple[Optional[ast.AST], Optional[ast.Call]]:
    """Split `Annotated[X, Field(...)]` into X and the Field call."""
    if (
        isinstance(annotation, ast.Subscript)
        and _name_of(annotation.value) == "Annotated"
        and isinstance(annotation.slice, ast.Tuple)
        and annotation.slice.elts
    ):
        base, *extras = annotation.slice.elts
        field = next(
            (e for e in extras if isinstance(e, ast.Call) and _name_of(e.func) == "Field"),
            None,
        )
        return base, field
    return annotation, None


def annotation_kind(annotation: Optional[ast.AST]) -> ParameterKind:
    if annotation is None:
        return ParameterKind.UNKNOWN
    annotation = _unwrap_optional(annotation)
    if isinstance(annotation, ast.Subscript):
        annotation = annotation.value
    name = _name_of(annotation)
    return _ANNOTATION_KINDS.get(name or "", ParameterKind.UNKNOWN)


def returns_identifiers(annotation: Optional[ast.AST]) -> bool:
    """`str`, `list[str]`, `List[int]`... are bare identifiers; anything richer is not."""
    if annotation is None:
        return False
    annotation = _unwrap_optional(annotation)
    if _name_of(annotation) == "str":
        return True
    if isinstance(annotation, ast.Subscript) and _name_of(annotation.value) in _COLLECTIONS:
        inner = annotation.slice
        if isinstance(inner, ast.Tuple):
            return all(_name_of(e) in _ID_TYPES for e in inner.elts if not isinstance(e, ast.Constant))
        return _name_of(inner) in _ID_TYPES
    return False


def _field_default(field: ast.Call) -> Tuple[bool, Any]:
    """(has_default, default) of a pydantic `Field(...)` call."""
    node = _keyword(field, "default")
    if node is None and field.args:
        node = field.args[0]
    if node is None:
        return False, None
    if isinstance(node, ast.Constant) and node.value is Ellipsis:
        return False, None
    return True, _safe_literal(node)


def _safe_literal(node: ast.AST) -> Any:
    try:
        return ast.literal_eval(node)
    except (ValueError, SyntaxError, TypeError):
        return None


class _FunctionScan:
    """Error paths and literals found inside one function body."""

    def __init__(self, func: ast.AST):
        self.error_paths: List[ErrorPathDescriptor] = []
        self.literals: List[LiteralDescriptor] = []
        self._claimed: Set[int] = set()
        docstring = _docstring_node(func)
        if docstring is not None:
            self._claimed.add(id(docstring))
        # Names, descriptions and defaults are captured by the descriptor itself
        for node in list(getattr(func, "decorator_list", [])) + [func.args]:
            self._claim_strings(node)
        self._scan(func)

    def _claim_strings(self, node: ast.AST) -> None:
        for child in ast.walk(node):
            if isinstance(child, (ast.Constant, ast.JoinedStr)):
                self._claimed.add(id(child))

    def _error_from_mapping(self, mapping: ast.Dict, raised: bool = False) -> Optional[ErrorPathDescriptor]:
        keys = {}
        for key, value in zip(mapping.keys, mapping.values):
            if isinstance(key, ast.Constant) and isinstance(key.value, str):
                keys[key.value] = value
        kinds = _STRUCTURED_ERROR_KEYS & set(keys)
        # A returned mapping is only an error path when it says so
        if not raised and "error" not in keys and not (kinds and "message" in keys):
            return None
        message_node = keys.get("message", keys.get("error"))
        message = render_message(message_node) if message_node is not None else None
        self._claim_strings(mapping)
        return ErrorPathDescriptor(message_literal=message or "", is_structured=bool(kinds))

    def _error_from_raise(self, node: ast.Raise) -> Optional[ErrorPathDescriptor]:
        exc = node.exc
        if not isinstance(exc, ast.Call):
            # bare `raise` or re-raising a caught exception
            return None
        self._claim_strings(exc)
        if not exc.args:
            message_node = _keyword(exc, "message")
            message = render_message(message_node) if message_node is not None else ""
            return ErrorPathDescriptor(message_literal=message or "", is_structured=False)

        first = exc.args[0]
        if isinstance(first, ast.Dict):
            return self._error_from_mapping(first, raised=True)
        if isinstance(first, ast.Call):
            # e.g. McpError(ErrorData(code=..., message="..."))
            message_node = _keyword(first, "message")
            message = render_message(message_node) if message_node is not None else ""
            structured = _keyword(first, "code") is not None or _keyword(first, "type") is not None
            return ErrorPathDescriptor(message_literal=message or "", is_structured=structured)
        message = render_message(first)
        if message is None:
            message = "{" + ast.unparse(first) + "}"
        return ErrorPathDescriptor(message_literal=message)

    def _error_from_return(self, node: ast.Return) -> Optional[ErrorPathDescriptor]:
        value = node.value
        if isinstance(value, ast.Call) and value.args and isinstance(value.args[0], ast.Dict):
            # return json.dumps({...})
            value = value.args[0]
        if isinstance(value, ast.Dict):
            return self._error_from_mapping(value)
        message = render_message(value) if value is not None else None
        if message and message.strip().lower().startswith(("error", "failed", "invalid")):
            self._claim_strings(value)
            return ErrorPathDescriptor(message_literal=message, is_structured=False)
        return None

    def _scan(self, func: ast.AST) -> None:
        for node in ast.walk(func):
            if isinstance(node, ast.Raise):
                path = self._error_from_raise(node)
            elif isinstance(node, ast.Return):
                path = self._error_from_return(node)
            else:
                path = None
            if path is not None:
                self.error_paths.append(path)

        self.literals = collect_literals(func, self._claimed)


def _docstring_node(node: ast.AST) -> Optional[ast.AST]:
    body = getattr(node, "body", None)
    if body and isinstance(body[0], ast.Expr):
        value = body[0].value
        if isinstance(value, ast.Constant) and isinstance(value.value, str):
            return value
    return None


def collect_literals(root: ast.AST, claimed: Set[int], skip: Set[int] = frozenset()) -> List[LiteralDescriptor]:
    """
    Every string literal under `root`: assignment-like ones (variables,
    keyword arguments, dict entries) with their target name, the remaining
    ones without. Nodes in `claimed` are ignored, subtrees in `skip` too.
    """
    literals: List[LiteralDescriptor] = []
    seen = set(claimed)

    def add(target: Optional[str], node: ast.AST) -> None:
        if id(node) in seen:
            return
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            seen.add(id(node))
            literals.append(LiteralDescriptor(target=target, value=node.value))

    nodes = list(_walk_skipping(root, skip))
    for node in nodes:
        if isinstance(node, ast.Assign):
            for target in node.targets:
                name = _name_of(target)
                if name:
                    add(name, node.value)
        elif isinstance(node, ast.AnnAssign) and node.value is not None:
            name = _name_of(node.target)
            if name:
                add(name, node.value)
        elif isinstance(node, ast.keyword) and node.arg:
            add(node.arg, node.value)
        elif isinstance(node, ast.Dict):
            for key, value in zip(node.keys, node.values):
                if isinstance(key, ast.Constant) and isinstance(key.value, str):
                    add(key.value, value)

    for node in nodes:
        add(None, node)
    return literals


def _walk_skipping(root: ast.AST, skip: Set[int]) -> Iterable[ast.AST]:
    stack = [root]
    while stack:
        node = stack.pop()
        if id(node) in skip:
            continue
        yield node
        stack.extend(reversed(list(ast.iter_child_nodes(node))))


class SourceExtractor:
    """Extracts descriptors from Python MCP server source."""

    tool_decorators = ("tool",)
    resource_decorators = ("resource",)

    def __init__(self):
        self.manifest_extractor = ManifestExtractor()

    @staticmethod
    def _decorator(func: ast.AST, names: Tuple[str, ...]) -> Tuple[bool, Optional[ast.Call]]:
        for decorator in func.decorator_list:
            call = decorator if isinstance(decorator, ast.Call) else None
            target = call.func if call is not None else decorator
            if _name_of(target) in names:
                return True, call
        return False, None

    def parse_parameters(self, func: ast.AST, docstring: str) -> Tuple[ParameterDescriptor, ...]:
        args = func.args
        doc_args = parse_docstring_args(docstring)

        positional = list(args.posonlyargs) + list(args.args)
        defaults: List[Optional[ast.AST]] = [None] * (len(positional) - len(args.defaults)) + list(args.defaults)
        pairs = list(zip(positional, defaults)) + list(zip(args.kwonlyargs, args.kw_defaults))

        parameters = []
        for arg, default_node in pairs:
            if arg.arg in _SKIPPED_PARAMS or _name_of(arg.annotation) == "Context":
                continue

            base, field = _annotated_parts(arg.annotation)
            description = doc_args.get(arg.arg, "")
            has_default = default_node is not None
            default = _safe_literal(default_node) if default_node is not None else None

            if isinstance(default_node, ast.Call) and _name_of(default_node.func) == "Field":
                field = default_node
                has_default, default = _field_default(default_node)
            if field is not None:
                field_description = _keyword(field, "description")
                if isinstance(field_description, ast.Constant) and isinstance(field_description.value, str):
                    description = field_description.value

            parameters.append(ParameterDescriptor(
                name=arg.arg,
                required=not has_default,
                description=description,
                kind=annotation_kind(base),
                default=default,
            ))
        return tuple(parameters)

    def tool_from_function(
        self,
        func: ast.AST,
        call: Optional[ast.Call],
        name_override: Optional[str] = None,
        description_override: Optional[str] = None,
    ) -> ToolDescriptor:
        location = f"{func.name} (line {func.lineno})"
        name = name_override or _literal_string(_keyword(call, "name"), "name", location) or func.name
        docstring = ast.get_docstring(func) or ""
        description = (
            description_override
            or _literal_string(_keyword(call, "description"), "description", location)
            or docstring
        )
        scan = _FunctionScan(func)
        try:
            return ToolDescriptor(
                name=name,
                description=description,
                parameters=self.parse_parameters(func, docstring),
                returns_identifiers_only=returns_identifiers(func.returns),
                error_paths=tuple(scan.error_paths),
                literals=tuple(scan.literals),
            )
        except ValidationError as e:
            raise UnparsableDeclaration(location, f"invalid declaration ({e.error_count()} error(s))") from e

    def resource_from_function(self, func: ast.AST, call: Optional[ast.Call]) -> ResourceDescriptor:
        location = f"{func.name} (line {func.lineno})"
        uri_node = call.args[0] if call is not None and call.args else _keyword(call, "uri")
        uri = _literal_string(uri_node, "uri", location)
        if not uri:
            raise UnparsableDeclaration(location, "resource has no literal URI")
        return ResourceDescriptor(
            uri=uri,
            name=_literal_string(_keyword(call, "name"), "name", location) or func.name,
            description=(
                _literal_string(_keyword(call, "description"), "description", location)
                or ast.get_docstring(func)
                or ""
            ),
        )

    @staticmethod
    def registered_function(call: ast.Call, functions: Dict[str, ast.AST]) -> ast.AST:
        """The module function handed to `add_tool(...)`."""
        target = call.args[0] if call.args else _keyword(call, "fn")
        func = functions.get(_name_of(target) or "") if target is not None else None
        if func is None:
            raise UnparsableDeclaration(
                f"add_tool (line {call.lineno})", "registered handler is not a function defined in this module"
            )
        return func

    def tool_from_registration(self, call: ast.Call, func: ast.AST) -> ToolDescriptor:
        location = f"add_tool (line {call.lineno})"
        return self.tool_from_function(
            func,
            None,
            name_override=_literal_string(_keyword(call, "name"), "name", location),
            description_override=_literal_string(_keyword(call, "description"), "description", location),
        )

    def tool_from_sdk_object(self, call: ast.Call) -> ToolDescriptor:
        location = f"Tool (line {call.lineno})"
        raw: Dict[str, Any] = {}
        for keyword in call.keywords:
            if keyword.arg in ("name", "description"):
                raw[keyword.arg] = _literal_string(keyword.value, keyword.arg, location)
            elif keyword.arg in ("inputSchema", "input_schema", "outputSchema"):
                try:
                    raw[keyword.arg] = ast.literal_eval(keyword.value)
                except (ValueError, SyntaxError, TypeError):
                    raise UnparsableDeclaration(location, f"'{keyword.arg}' is not a literal mapping")
        return self.manifest_extractor.parse_tool(raw, call.lineno)

    def extract(self, source: str, server_name: str = "unnamed-server") -> ExtractionResult:
        notices: List[Finding] = []
        try:
            tree = ast.parse(source)
        except SyntaxError as e:
            logger.warning(f"Source for '{server_name}' is not valid Python: {e.msg} (line {e.lineno})")
            notices.append(unparsed_notice(UnparsableDeclaration(
                server_name, f"source is not valid Python ({e.msg} at line {e.lineno}); only literals were scanned"
            )))
            server = ServerDescriptor(name=server_name, literals=tuple(scan_text_literals(source)))
            return ExtractionResult(server=server, notices=tuple(notices))

        functions = {
            node.name: node for node in ast.walk(tree) if isinstance(node, FunctionNode)
        }
        tools: List[ToolDescriptor] = []
        resources: List[ResourceDescriptor] = []
        declaration_nodes: Set[int] = set()

        for node in ast.walk(tree):
            try:
                if isinstance(node, FunctionNode):
                    is_tool, call = self._decorator(node, self.tool_decorators)
                    if is_tool:
                        tools.append(self.tool_from_function(node, call))
                        declaration_nodes.add(id(node))
                        continue
                    is_resource, call = self._decorator(node, self.resource_decorators)
                    if is_resource:
                        resources.append(self.resource_from_function(node, call))
                        declaration_nodes.add(id(node))
                elif isinstance(node, ast.Call) and _name_of(node.func) == "add_tool":
                    func = self.registered_function(node, functions)
                    tools.append(self.tool_from_registration(node, func))
                    declaration_nodes.add(id(func))
                elif isinstance(node, ast.Call) and _name_of(node.func) == "Tool" and _keyword(node, "name") is not None:
                    tools.append(self.tool_from_sdk_object(node))
                    declaration_nodes.add(id(node))
            except UnparsableDeclaration as e:
                logger.warning(f"Skipping unparsable declaration: {e}")
                notices.append(unparsed_notice(e))

        claimed = set()
        module_doc = _docstring_node(tree)
        if module_doc is not None:
            claimed.add(id(module_doc))
        for node in ast.walk(tree):
            if isinstance(node, FunctionNode) and id(node) not in declaration_nodes:
                doc = _docstring_node(node)
                if doc is not None:
                    claimed.add(id(doc))

        server = ServerDescriptor(
            name=server_name,
            tools=tuple(derive_consumers(dedupe_tools(tools, notices))),
            resources=tuple(resources),
            literals=tuple(collect_literals(tree, claimed, skip=declaration_nodes)),
        )
        logger.info(
            f"Extracted {len(server.tools)} tool(s) and {len(server.resources)} resource(s) "
            f"from source '{server_name}' ({len(notices)} unparsed)"
        )
        return ExtractionResult(server=server, notices=tuple(notices))


def scan_text_literals(text: str) -> List[LiteralDescriptor]:
    """Assignment-like `name = "value"` / `name: "value"` literals found by regex."""
    return [
        LiteralDescriptor(target=match.group("target").split(".")[-1], value=match.group("value"))
        for match in _ASSIGNMENT_LITERAL.finditer(text)
    ]
