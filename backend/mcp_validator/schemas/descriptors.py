import hashlib
import json
from enum import Enum
from typing import Any, FrozenSet, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ParameterKind(str, Enum):
    """Semantic kind of a tool parameter. Informational only."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"
    UNKNOWN = "unknown"


class ParameterDescriptor(BaseModel):
    """
    A single declared input of a tool.
    An empty description is allowed; it is exactly what parameter
    documentation checks look for.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    required: bool = False
    description: str = ""
    kind: ParameterKind = ParameterKind.UNKNOWN
    default: Optional[Any] = None


class ErrorPathDescriptor(BaseModel):
    """An error-producing branch found in a tool handler."""
    model_config = ConfigDict(frozen=True)

    # Literal or templated text returned/raised on this path
    message_literal: str
    # True when the error is a mapping carrying at least an error-kind field
    is_structured: bool = False


class LiteralDescriptor(BaseModel):
    """
    A string literal reachable from a declaration.
    `target` is the variable or keyword the literal is assigned to, if any.
    """
    model_config = ConfigDict(frozen=True)

    target: Optional[str] = None
    value: str


class ToolDescriptor(BaseModel):
    """Normalized representation of one declared tool."""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    parameters: Tuple[ParameterDescriptor, ...] = ()
    # Output inferred to be bare identifiers rather than full records
    returns_identifiers_only: bool = False
    # Names of tools whose identifier output this tool accepts as input
    consumes_identifier_from: FrozenSet[str] = frozenset()
    error_paths: Tuple[ErrorPathDescriptor, ...] = ()
    literals: Tuple[LiteralDescriptor, ...] = ()

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Tool name must not be blank")
        return v

    @property
    def required_parameters(self) -> Tuple[ParameterDescriptor, ...]:
        return tuple(p for p in self.parameters if p.required)


class ResourceDescriptor(BaseModel):
    """Read-only contextual data exposed by a server through a URI."""
    model_config = ConfigDict(frozen=True)

    uri: str = Field(..., min_length=1)
    name: str = ""
    description: str = ""

    @property
    def scheme(self) -> str:
        return urlparse(self.uri).scheme.lower()


class ServerDescriptor(BaseModel):
    """
    Everything the rule engine looks at for one server: its tools, its
    resources, and literals declared at server level (module constants,
    configuration blocks).
    """
    model_config = ConfigDict(frozen=True)

    name: str = "unnamed-server"
    tools: Tuple[ToolDescriptor, ...] = ()
    resources: Tuple[ResourceDescriptor, ...] = ()
    literals: Tuple[LiteralDescriptor, ...] = ()

    def tool(self, name: str) -> Optional[ToolDescriptor]:
        for tool in self.tools:
            if tool.name == name:
                return tool
        return None

    def fingerprint(self) -> str:
        """
        Stable SHA-256 of the canonical JSON form.
        Identical descriptor sets always map to the same report-store key.
        """
        payload = self.model_dump(mode="json")
        for tool in payload["tools"]:
            tool["consumes_identifier_from"] = sorted(tool["consumes_identifier_from"])
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
