"""Internal datatypes for the type space and compiled operations."""

from __future__ import annotations

from collections.abc import Hashable
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional, TypeAlias, Union

from .json_types import JSONObject
from .settings import InterfaceStyle


@dataclass(frozen=True, order=True)
class TypeId:
    """Stable handle into a `TypeSpace` arena."""

    index: int

    def __str__(self) -> str:
        return f"#{self.index}"


class PrimitiveKind(StrEnum):
    """Scalar kinds with a fixed Rust rendering."""

    BOOL = "bool"
    I8 = "i8"
    I16 = "i16"
    I32 = "i32"
    I64 = "i64"
    U8 = "u8"
    U16 = "u16"
    U32 = "u32"
    U64 = "u64"
    F32 = "f32"
    F64 = "f64"
    STRING = "String"
    JSON_VALUE = "serde_json::Value"
    BYTES = "Vec<u8>"


@dataclass(frozen=True)
class Primitive:
    kind: PrimitiveKind


@dataclass(frozen=True)
class StringNewtype:
    """A string with a format or validation constraints."""

    format: Optional[str] = None
    pattern: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None

    @property
    def constrained(self) -> bool:
        return (
            self.pattern is not None or self.min_length is not None or self.max_length is not None
        )


@dataclass(frozen=True)
class StructField:
    """One struct field in schema insertion order."""

    name: str
    source_name: str
    type_id: TypeId
    required: bool
    boxed: bool = False
    flatten: bool = False
    description: Optional[str] = None


@dataclass(frozen=True)
class Struct:
    fields: tuple[StructField, ...]
    deny_unknown_fields: bool = False


@dataclass(frozen=True)
class EnumVariant:
    """Enum variant; `payload` is None for unit variants."""

    name: str
    rename: Optional[str] = None
    payload: Optional[TypeId] = None
    boxed: bool = False
    value: Optional[int] = None


@dataclass(frozen=True)
class Enum:
    variants: tuple[EnumVariant, ...]
    tag: Optional[str] = None
    untagged: bool = False
    integer: bool = False

    @property
    def all_unit(self) -> bool:
        return all(variant.payload is None for variant in self.variants)


@dataclass(frozen=True)
class Array:
    element: TypeId


@dataclass(frozen=True)
class Map:
    value: TypeId


@dataclass(frozen=True)
class OptionOf:
    inner: TypeId
    boxed: bool = False


@dataclass(frozen=True)
class Unit:
    pass


@dataclass(frozen=True)
class Unresolved:
    """Transient placeholder for a reference under construction."""

    ref: str


TypeDetails: TypeAlias = Union[
    Primitive, StringNewtype, Struct, Enum, Array, Map, OptionOf, Unit, Unresolved
]

Fingerprint: TypeAlias = tuple[Hashable, ...]


@dataclass(frozen=True)
class TypeEntry:
    """A finalized entry in the type space."""

    details: TypeDetails
    fingerprint: Fingerprint
    origin: str
    name: Optional[str] = None
    description: Optional[str] = None

    @property
    def declared(self) -> bool:
        """Whether the entry is emitted as a named declaration."""
        details = self.details
        if isinstance(details, (Struct, Enum)):
            return True
        return isinstance(details, StringNewtype) and details.constrained


class ParameterLocation(StrEnum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"


class BodyEncoding(StrEnum):
    JSON = "json"
    FORM = "form"
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class OperationSpec:
    """Normalized operation metadata extracted from OpenAPI paths."""

    path: str
    method: str
    method_name: str
    operation: JSONObject
    path_item: JSONObject

    @property
    def location(self) -> str:
        return f"paths.{self.path}.{self.method}"


@dataclass(frozen=True)
class ParameterBinding:
    """A compiled operation parameter."""

    name: str
    api_name: str
    location: ParameterLocation
    type_id: TypeId
    required: bool
    description: Optional[str] = None


@dataclass(frozen=True)
class BodyBinding:
    type_id: TypeId
    content_type: str
    encoding: BodyEncoding
    required: bool


@dataclass(frozen=True)
class ResponseBinding:
    """One declared status-code/content-type combination."""

    status: str
    content_type: Optional[str]
    type_id: TypeId
    is_error: bool


@dataclass(frozen=True)
class CompiledOperation:
    """Semantic form of an operation; independent of interface and tag style."""

    method_name: str
    http_method: str
    path: str
    parameters: tuple[ParameterBinding, ...]
    body: Optional[BodyBinding]
    responses: tuple[ResponseBinding, ...]
    success_type: TypeId
    error_type: TypeId
    tags: tuple[str, ...]
    summary: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class SignatureArgument:
    """One positional argument or builder setter."""

    name: str
    type_id: TypeId
    required: bool
    is_body: bool = False


@dataclass(frozen=True)
class MethodSignature:
    """Interface-style specific shape of a generated method."""

    style: InterfaceStyle
    arguments: tuple[SignatureArgument, ...]
    builder_name: Optional[str] = None


@dataclass(frozen=True)
class GeneratedMethod:
    """A compiled operation with its signature shape and client attachment points."""

    operation: CompiledOperation
    signature: MethodSignature
    groups: tuple[Optional[str], ...]

    @property
    def operation_id(self) -> str:
        return self.operation.method_name


@dataclass(frozen=True)
class Dependency:
    """A Cargo dependency required by emitted code."""

    name: str
    version: str
    features: tuple[str, ...] = ()

    def manifest_value(self) -> Union[str, dict[str, Union[str, list[str]]]]:
        if not self.features:
            return self.version
        return {"version": self.version, "features": list(self.features)}


@dataclass(frozen=True)
class GenerationOutput:
    """Rendered package text plus the dependency manifest it needs."""

    source_text: str
    dependencies: tuple[Dependency, ...]
    warnings: tuple[str, ...] = ()
