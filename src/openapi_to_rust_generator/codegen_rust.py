"""Render the frozen type space and compiled methods as Rust source text."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Optional

import jinja2

from .diagnostics import InternalConsistencyError
from .model_types import (
    Array,
    BodyEncoding,
    CompiledOperation,
    Dependency,
    Enum,
    GeneratedMethod,
    Map,
    OptionOf,
    ParameterLocation,
    Primitive,
    PrimitiveKind,
    ResponseBinding,
    SignatureArgument,
    StringNewtype,
    Struct,
    StructField,
    TypeEntry,
    TypeId,
    Unit,
)
from .naming import IdentifierCase, NameAllocator, pascal_case
from .operations import is_json_media_type, primary_responses
from .settings import GenerationSettings, InterfaceStyle
from .type_space import TypeSpace

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

SUPPORT_CRATE = "openapi-client-support"
SUPPORT_MODULE = "openapi_client_support"
SUPPORT_SOURCE_FILE = "client_support.rs"
DEFAULT_SUPPORT_VERSION = "0.1"

FORMAT_TYPES: dict[str, str] = {
    "date-time": "chrono::DateTime<chrono::offset::Utc>",
    "date": "chrono::NaiveDate",
    "uuid": "uuid::Uuid",
    "ipv4": "std::net::Ipv4Addr",
    "ipv6": "std::net::Ipv6Addr",
    "ip": "std::net::IpAddr",
}

_BASE_DEPENDENCIES: tuple[Dependency, ...] = (
    Dependency("reqwest", "0.11", ("json", "stream")),
    Dependency("serde", "1.0", ("derive",)),
    Dependency("serde_json", "1.0"),
)
_FORMAT_DEPENDENCIES: dict[str, Dependency] = {
    "date-time": Dependency("chrono", "0.4", ("serde",)),
    "date": Dependency("chrono", "0.4", ("serde",)),
    "uuid": Dependency("uuid", "1.0", ("serde",)),
}
_REGRESS = Dependency("regress", "0.5")
_SERDE_REPR = Dependency("serde_repr", "0.1")
_ASYNC_TRAIT = Dependency("async-trait", "0.1")
_PERCENT_ENCODING = Dependency("percent-encoding", "2.2")

_COPY_KINDS: frozenset[PrimitiveKind] = frozenset(
    {
        PrimitiveKind.BOOL,
        PrimitiveKind.I8,
        PrimitiveKind.I16,
        PrimitiveKind.I32,
        PrimitiveKind.I64,
        PrimitiveKind.U8,
        PrimitiveKind.U16,
        PrimitiveKind.U32,
        PrimitiveKind.U64,
        PrimitiveKind.F32,
        PrimitiveKind.F64,
    }
)

_RUST_ESCAPES: dict[str, str] = {
    "\\": "\\\\",
    '"': '\\"',
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\0": "\\0",
}


def rust_string(value: str) -> str:
    """Quote `value` as a Rust string literal."""
    escaped: list[str] = []
    for char in str(value):
        if char in _RUST_ESCAPES:
            escaped.append(_RUST_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"\\u{{{ord(char):x}}}")
        else:
            escaped.append(char)
    return f'"{"".join(escaped)}"'


def doc_lines(*texts: Optional[str]) -> list[str]:
    """Join documentation paragraphs into `///` comment lines."""
    lines: list[str] = []
    for text in texts:
        if not text:
            continue
        if lines:
            lines.append("")
        lines.extend(line.rstrip() for line in text.strip().splitlines())
    return lines


def load_support_code() -> str:
    """Return the fixed Rust support module shipped with the package."""
    return (TEMPLATES_DIR / SUPPORT_SOURCE_FILE).read_text(encoding="utf-8")


def build_environment() -> jinja2.Environment:
    environment = jinja2.Environment(
        loader=jinja2.FileSystemLoader(TEMPLATES_DIR),
        lstrip_blocks=True,
        trim_blocks=True,
        keep_trailing_newline=True,
        undefined=jinja2.StrictUndefined,
    )
    environment.filters["rust_string"] = rust_string
    return environment


class RustRenderer:
    """Emit one Rust module for a frozen type space and its compiled methods."""

    def __init__(self, type_space: TypeSpace, settings: GenerationSettings) -> None:
        if not type_space.frozen:
            raise InternalConsistencyError("Rendering requires a frozen type space")
        self._type_space = type_space
        self._settings = settings
        self._environment = build_environment()

    def type_expr(self, type_id: TypeId, *, prefix: str = "") -> str:
        """Rust type expression for `type_id`.

        Args:
            type_id (TypeId): Type to render.
            prefix (str): Module path put in front of declared type names.

        Returns:
            str: The type as written at a use site.
        """
        entry = self._type_space.entry(type_id)
        details = entry.details
        if entry.declared:
            return f"{prefix}{entry.name}"
        if isinstance(details, Primitive):
            return details.kind.value
        if isinstance(details, StringNewtype):
            if details.format is None:
                return PrimitiveKind.STRING.value
            return FORMAT_TYPES[details.format]
        if isinstance(details, Array):
            return f"Vec<{self.type_expr(details.element, prefix=prefix)}>"
        if isinstance(details, Map):
            value = self.type_expr(details.value, prefix=prefix)
            return f"std::collections::HashMap<String, {value}>"
        if isinstance(details, OptionOf):
            inner = self.type_expr(details.inner, prefix=prefix)
            return f"Option<Box<{inner}>>" if details.boxed else f"Option<{inner}>"
        if isinstance(details, Unit):
            return "()"
        raise InternalConsistencyError(f"Cannot render type {type_id} ({details!r})")

    def dependencies(self, methods: Iterable[GeneratedMethod]) -> tuple[Dependency, ...]:
        """Sorted, de-duplicated Cargo dependencies of the rendered text."""
        found = {dependency.name: dependency for dependency in _BASE_DEPENDENCIES}
        for _, entry in self._type_space.iter_types():
            details = entry.details
            if isinstance(details, StringNewtype):
                if details.format in _FORMAT_DEPENDENCIES:
                    dependency = _FORMAT_DEPENDENCIES[details.format]
                    found[dependency.name] = dependency
                if details.pattern is not None:
                    found[_REGRESS.name] = _REGRESS
            elif isinstance(details, Enum) and details.integer:
                found[_SERDE_REPR.name] = _SERDE_REPR

        uses_traits = any(group is not None for method in methods for group in method.groups)
        if uses_traits and self._settings.interface is InterfaceStyle.POSITIONAL:
            found[_ASYNC_TRAIT.name] = _ASYNC_TRAIT

        if self._settings.transclude_support_code:
            found[_PERCENT_ENCODING.name] = _PERCENT_ENCODING
        else:
            version = self._settings.client_version_constraint or DEFAULT_SUPPORT_VERSION
            found[SUPPORT_CRATE] = Dependency(SUPPORT_CRATE, version)
        return tuple(found[name] for name in sorted(found))

    def render(self, methods: list[GeneratedMethod]) -> str:
        """Render the complete module text."""
        declarations = [
            self._declaration(entry)
            for _, entry in self._type_space.iter_types()
            if entry.declared
        ]
        aliases = [
            {"name": name, "target": self.type_expr(type_id)}
            for name, type_id in self._type_space.aliases
        ]

        builder_style = self._settings.interface is InterfaceStyle.BUILDER
        trait_names = self._trait_names(methods)
        inherent_methods: list[str] = []
        traits: dict[str, dict[str, Any]] = {
            name: {
                "name": name,
                "async_trait": not builder_style,
                "declarations": [],
                "implementations": [],
            }
            for name in trait_names.values()
        }
        builders: list[str] = []

        for method in methods:
            owner = "Client" if method.groups[0] is None else trait_names[method.groups[0]]
            context = self._method_context(method, owner=owner)
            for group in method.groups:
                if group is None:
                    inherent_methods.append(self._render_method(context, visibility="pub "))
                    continue
                trait = traits[trait_names[group]]
                trait["declarations"].append(
                    self._render_method(context, visibility="", declaration_only=True)
                )
                trait["implementations"].append(self._render_method(context, visibility=""))
            if builder_style:
                builders.append(
                    self._environment.get_template("builder.rs.jinja2").render(m=context)
                )

        logger.debug(
            "Rendering %d declarations, %d aliases and %d methods",
            len(declarations),
            len(aliases),
            len(methods),
        )
        return self._environment.get_template("lib.rs.jinja2").render(
            support=SUPPORT_MODULE,
            declarations=declarations,
            aliases=aliases,
            inherent_methods=inherent_methods,
            traits=list(traits.values()),
            builders=builders,
        )

    def _trait_names(self, methods: list[GeneratedMethod]) -> dict[str, str]:
        allocator = NameAllocator(
            case=IdentifierCase.PASCAL,
            reserved=("Client", "Error", "ResponseValue"),
        )
        names: dict[str, str] = {}
        for method in methods:
            for group in method.groups:
                if group is not None and group not in names:
                    names[group] = allocator.allocate(f"Client{pascal_case(group)}Ext")
        return names

    def _render_method(
        self,
        context: dict[str, Any],
        *,
        visibility: str,
        declaration_only: bool = False,
    ) -> str:
        return self._environment.get_template("method.rs.jinja2").render(
            m=context,
            visibility=visibility,
            declaration_only=declaration_only,
        )

    def _declaration(self, entry: TypeEntry) -> str:
        details = entry.details
        docs = doc_lines(entry.description)
        if isinstance(details, Struct):
            return self._environment.get_template("struct.rs.jinja2").render(
                name=entry.name,
                docs=docs,
                deny_unknown_fields=details.deny_unknown_fields,
                fields=[self._field_context(field) for field in details.fields],
            )
        if isinstance(details, Enum):
            return self._environment.get_template("enum.rs.jinja2").render(
                name=entry.name,
                docs=docs,
                kind=_enum_kind(details),
                tag=details.tag,
                variants=[
                    {
                        "name": variant.name,
                        "rename": None if details.integer else variant.rename,
                        "wire": variant.rename or variant.name,
                        "value": variant.value,
                        "payload": self._payload(variant.payload, boxed=variant.boxed),
                    }
                    for variant in details.variants
                ],
            )
        if isinstance(details, StringNewtype):
            return self._environment.get_template("newtype.rs.jinja2").render(
                name=entry.name,
                docs=docs,
                pattern=details.pattern,
                min_length=details.min_length,
                max_length=details.max_length,
            )
        raise InternalConsistencyError(f"{entry.origin} is not a declaration")

    def _payload(self, payload: Optional[TypeId], *, boxed: bool) -> Optional[str]:
        if payload is None:
            return None
        rendered = self.type_expr(payload)
        return f"Box<{rendered}>" if boxed else rendered

    def _field_context(self, field: StructField) -> dict[str, Any]:
        rendered = self.type_expr(field.type_id)
        if field.boxed:
            rendered = f"Box<{rendered}>"
        attributes: list[str] = []
        if field.flatten:
            attributes.append("flatten")
        elif field.name != field.source_name:
            attributes.append(f"rename = {rust_string(field.source_name)}")
        if not field.required and not field.flatten:
            if not self._is_option(field.type_id):
                rendered = f"Option<{rendered}>"
            attributes.append('default, skip_serializing_if = "Option::is_none"')
        return {
            "name": field.name,
            "type": rendered,
            "docs": doc_lines(field.description),
            "attributes": attributes,
        }

    def _is_option(self, type_id: TypeId) -> bool:
        return isinstance(self._type_space.entry(type_id).details, OptionOf)

    def _is_unit(self, type_id: TypeId) -> bool:
        return isinstance(self._type_space.entry(type_id).details, Unit)

    def _is_copy(self, type_id: TypeId) -> bool:
        entry = self._type_space.entry(type_id)
        details = entry.details
        if isinstance(details, Primitive):
            return details.kind in _COPY_KINDS
        if isinstance(details, StringNewtype):
            return not entry.declared and details.format is not None
        return isinstance(details, Enum) and details.all_unit and details.tag is None

    def _value_type(self, argument: SignatureArgument) -> TypeId:
        if not argument.required:
            details = self._type_space.entry(argument.type_id).details
            if isinstance(details, OptionOf):
                return details.inner
        return argument.type_id

    def _positional_type(self, argument: SignatureArgument, operation: CompiledOperation) -> str:
        value_type = self._value_type(argument)
        owned = self.type_expr(value_type, prefix="types::")
        body = operation.body
        if argument.is_body and body is not None and body.encoding in (
            BodyEncoding.TEXT,
            BodyEncoding.BINARY,
        ):
            rendered = owned
        elif owned == PrimitiveKind.STRING.value:
            rendered = "&'a str"
        elif self._is_copy(value_type):
            rendered = owned
        else:
            rendered = f"&'a {owned}"
        return rendered if argument.required else f"Option<{rendered}>"

    def _method_context(self, method: GeneratedMethod, *, owner: str) -> dict[str, Any]:
        operation = method.operation
        signature = method.signature
        success_type = self.type_expr(operation.success_type, prefix="types::")
        error_type = self.type_expr(operation.error_type, prefix="types::")
        request_line = f"Sends a `{operation.http_method.upper()}` request to `{operation.path}`"
        context: dict[str, Any] = {
            "name": operation.method_name,
            "owner": owner,
            "builder": signature.builder_name,
            "success_type": success_type,
            "error_type": error_type,
            "arguments": [
                {"name": argument.name, "type": self._positional_type(argument, operation)}
                for argument in signature.arguments
            ],
            **self._request_context(operation),
        }
        if signature.style is InterfaceStyle.BUILDER:
            context["fields"] = [self._builder_field(argument) for argument in signature.arguments]
            context["docs"] = doc_lines(
                operation.summary,
                operation.description,
                request_line,
                _builder_example(operation.method_name, signature.arguments),
            )
            context["send_docs"] = doc_lines(request_line)
        else:
            context["docs"] = doc_lines(operation.summary, operation.description, request_line)
        return context

    def _builder_field(self, argument: SignatureArgument) -> dict[str, Any]:
        value_type = self.type_expr(self._value_type(argument), prefix="types::")
        return {
            "name": argument.name,
            "required": argument.required,
            "value_type": value_type,
            "type": value_type if argument.required else f"Option<{value_type}>",
            "conversion_error": f"conversion to `{value_type}` for {argument.name} failed",
        }

    def _request_context(self, operation: CompiledOperation) -> dict[str, Any]:
        url_format, url_args = self._url(operation)
        query: list[dict[str, Any]] = []
        headers: list[dict[str, Any]] = []
        cookies: list[dict[str, Any]] = []
        for binding in operation.parameters:
            param = {
                "api_name": binding.api_name,
                "ident": binding.name,
                "required": binding.required,
            }
            if binding.location is ParameterLocation.QUERY:
                param["style"] = self._query_style(binding.type_id, required=binding.required)
                query.append(param)
            elif binding.location is ParameterLocation.HEADER:
                headers.append(param)
            elif binding.location is ParameterLocation.COOKIE:
                cookies.append(param)

        body = None
        if operation.body is not None:
            body = {
                "encoding": operation.body.encoding.value,
                "required": operation.body.required,
                "content_type": operation.body.content_type,
            }

        primary = primary_responses(operation.responses)
        accept_json = any(
            binding.content_type is not None and is_json_media_type(binding.content_type)
            for binding in primary
        )
        arms = self._response_arms(primary, operation)
        return {
            "http_method": operation.http_method.upper(),
            "url_format": url_format,
            "url_args": url_args,
            "mutates": bool(query or headers or cookies or body is not None or accept_json),
            "accept_json": accept_json,
            "query": query,
            "headers": headers,
            "cookies": cookies,
            "body": body,
            "arms": arms,
            "fallback": not any(binding.status == "default" for binding in primary),
        }

    def _query_style(self, type_id: TypeId, *, required: bool) -> str:
        details = self._type_space.entry(type_id).details
        if isinstance(details, OptionOf) and not required:
            details = self._type_space.entry(details.inner).details
        if isinstance(details, Array):
            return "array"
        if isinstance(details, (Struct, Map)):
            return "object"
        return "scalar"

    def _url(self, operation: CompiledOperation) -> tuple[str, list[str]]:
        identifiers = {
            binding.api_name: binding.name
            for binding in operation.parameters
            if binding.location is ParameterLocation.PATH
        }
        format_parts = ["{}"]
        url_args: list[str] = []
        remainder = operation.path
        while "{" in remainder:
            literal, _, rest = remainder.partition("{")
            name, _, remainder = rest.partition("}")
            format_parts.append(literal.replace("}", "}}"))
            format_parts.append("{}")
            url_args.append(f"encode_path(&{identifiers[name]}.to_string())")
        format_parts.append(remainder.replace("}", "}}"))
        return "".join(format_parts), url_args

    def _response_arms(
        self,
        primary: list[ResponseBinding],
        operation: CompiledOperation,
    ) -> list[dict[str, str]]:
        exact = [binding for binding in primary if binding.status.isdigit()]
        ranges = [binding for binding in primary if binding.status.endswith("XX")]
        default = [binding for binding in primary if binding.status == "default"]
        arms: list[dict[str, str]] = []
        for binding in [*exact, *ranges, *default]:
            if binding.status == "default":
                pattern = "_"
            elif binding.status.endswith("XX"):
                digit = binding.status[0]
                pattern = f"{digit}00u16..={digit}99u16"
            else:
                pattern = f"{binding.status}u16"
            arms.append({"pattern": pattern, "result": self._arm_result(binding, operation)})
        return arms

    def _arm_result(self, binding: ResponseBinding, operation: CompiledOperation) -> str:
        if self._is_unit(binding.type_id):
            if not binding.is_error:
                return "Ok(ResponseValue::empty(response))"
            if self._is_unit(operation.error_type):
                return "Err(Error::ErrorResponse(ResponseValue::empty(response)))"
            return "Err(Error::UnexpectedResponse(response))"

        is_json = binding.content_type is not None and is_json_media_type(binding.content_type)
        decode = "from_response" if is_json else "from_bytes"
        if binding.is_error:
            return f"Err(Error::ErrorResponse(ResponseValue::{decode}(response).await?))"
        return f"ResponseValue::{decode}(response).await"


def _enum_kind(details: Enum) -> str:
    if details.tag is not None:
        return "tagged"
    if details.untagged:
        return "untagged"
    if details.integer:
        return "integer"
    return "unit"


def _builder_example(method_name: str, arguments: tuple[SignatureArgument, ...]) -> str:
    lines = ["```ignore", f"let response = client.{method_name}()"]
    lines.extend(f"    .{argument.name}({argument.name})" for argument in arguments)
    lines.extend(["    .send()", "    .await;", "```"])
    return "\n".join(lines)
