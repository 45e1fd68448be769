"""Compile OpenAPI operations into typed client methods."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import replace
from typing import Optional

from .diagnostics import UnsupportedInputError
from .json_types import JSONObject, JSONValue
from .model_types import (
    Array,
    BodyBinding,
    BodyEncoding,
    CompiledOperation,
    Enum,
    GeneratedMethod,
    Map,
    MethodSignature,
    OperationSpec,
    OptionOf,
    ParameterBinding,
    ParameterLocation,
    Primitive,
    PrimitiveKind,
    ResponseBinding,
    SignatureArgument,
    StringNewtype,
    Struct,
    TypeId,
    Unit,
)
from .naming import IdentifierCase, NameAllocator, NameHint, pascal_case
from .resolver import SchemaResolver
from .schema_utils import schema_description
from .settings import GenerationSettings, InterfaceStyle, TagStyle
from .type_space import TypeShape

logger = logging.getLogger(__name__)

# Inherent methods of the generated `Client`.
CLIENT_METHOD_NAMES: frozenset[str] = frozenset({"new", "new_with_client", "baseurl", "client"})

# Local bindings used by generated method bodies.
METHOD_LOCAL_NAMES: frozenset[str] = frozenset(
    {"self", "client", "request", "response", "url", "body", "cookies", "new", "send"}
)

# Names the generated `builder` module imports from its parent.
BUILDER_MODULE_NAMES: frozenset[str] = frozenset(
    {"Client", "Error", "ResponseValue", "encode_path", "types"}
)

_PREFERRED_MEDIA_TYPES: tuple[str, ...] = (
    "application/json",
    "application/*+json",
    "application/problem+json",
    "application/x-www-form-urlencoded",
    "text/plain",
)

_TEMPLATE_PARAM_RE = re.compile(r"\{([^{}]+)\}")
_STATUS_RE = re.compile(r"^[1-5](\d\d|XX)$")
_LOCATIONS = frozenset(item.value for item in ParameterLocation)


def media_type_essence(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def is_json_media_type(content_type: str) -> bool:
    essence = media_type_essence(content_type)
    return essence == "application/json" or essence.endswith("+json")


def body_encoding(content_type: str) -> BodyEncoding:
    """Map a request content type to the encoding used to send it."""
    essence = media_type_essence(content_type)
    if is_json_media_type(essence):
        return BodyEncoding.JSON
    if essence == "application/x-www-form-urlencoded":
        return BodyEncoding.FORM
    if essence == "text/plain":
        return BodyEncoding.TEXT
    return BodyEncoding.BINARY


def is_error_status(status: str) -> bool:
    """Whether a response key designates an error outcome."""
    if status == "default":
        return True
    return status[0] in "45"


def ordered_media_types(content: JSONObject) -> list[str]:
    """Content types with the preferred ones first, then in declaration order."""
    ordered = [media_type for media_type in _PREFERRED_MEDIA_TYPES if media_type in content]
    ordered.extend(media_type for media_type in content if media_type not in ordered)
    return ordered


class OperationCompiler:
    """Bind parameters, bodies and responses of operations to type-space entries.

    One compiler is used for the whole client so that generated method and
    builder names are unique across every operation.
    """

    def __init__(self, resolver: SchemaResolver, settings: GenerationSettings) -> None:
        self._resolver = resolver
        self._type_space = resolver.type_space
        self._settings = settings
        self._method_names = NameAllocator(
            case=IdentifierCase.SNAKE, reserved=CLIENT_METHOD_NAMES
        )
        self._builder_names = NameAllocator(
            case=IdentifierCase.PASCAL, reserved=BUILDER_MODULE_NAMES
        )
        self._unit: Optional[TypeId] = None

    def compile(self, spec: OperationSpec) -> GeneratedMethod:
        """Compile one operation for the configured interface and tag style.

        Args:
            spec (OperationSpec): Operation extracted from `paths`.

        Returns:
            GeneratedMethod: Semantic bindings, signature shape and client groups.
        """
        compiled = self.compile_operation(spec)
        method_name = self._method_names.allocate(spec.method_name)
        compiled = replace(compiled, method_name=method_name)
        signature = self._signature(compiled)
        groups = self._groups(compiled)
        logger.debug("Compiled %s as %s in groups %s", spec.location, method_name, groups)
        return GeneratedMethod(operation=compiled, signature=signature, groups=groups)

    def compile_operation(self, spec: OperationSpec) -> CompiledOperation:
        """Compile the style-independent part of an operation."""
        type_prefix = pascal_case(spec.method_name) or "Operation"
        parameters = self._parameters(spec, type_prefix)
        body = self._body(spec, type_prefix)
        responses = self._responses(spec, type_prefix)
        success_type = self._outcome_type(
            [binding for binding in responses if not binding.is_error],
            path=f"{spec.location}.responses",
            kind="success",
        )
        error_type = self._outcome_type(
            [binding for binding in responses if binding.is_error],
            path=f"{spec.location}.responses",
            kind="error",
        )
        return CompiledOperation(
            method_name=spec.method_name,
            http_method=spec.method,
            path=spec.path,
            parameters=parameters,
            body=body,
            responses=responses,
            success_type=success_type,
            error_type=error_type,
            tags=_string_list(spec.operation.get("tags")),
            summary=_string_or_none(spec.operation.get("summary")),
            description=_string_or_none(spec.operation.get("description")),
        )

    def _parameters(self, spec: OperationSpec, type_prefix: str) -> tuple[ParameterBinding, ...]:
        merged: dict[tuple[str, str], tuple[JSONObject, str]] = {}
        for owner, owner_path in (
            (spec.path_item, f"paths.{spec.path}"),
            (spec.operation, spec.location),
        ):
            raw_parameters = owner.get("parameters")
            if not isinstance(raw_parameters, list):
                continue
            for index, raw in enumerate(raw_parameters):
                parameter_path = f"{owner_path}.parameters[{index}]"
                parameter = self._resolver.deref(raw, path=parameter_path)
                name = parameter.get("name")
                placement = parameter.get("in")
                if not isinstance(name, str) or not name:
                    raise UnsupportedInputError(parameter_path, "parameter has no name")
                if placement not in _LOCATIONS:
                    raise UnsupportedInputError(
                        parameter_path, f"unsupported parameter location {placement!r}"
                    )
                merged[(name, placement)] = (parameter, parameter_path)

        template_names = _TEMPLATE_PARAM_RE.findall(spec.path)
        declared_path_names = [name for name, placement in merged if placement == "path"]
        for name in template_names:
            if name not in declared_path_names:
                raise UnsupportedInputError(
                    spec.location, f"path template parameter {name!r} is not declared"
                )

        identifiers = NameAllocator(case=IdentifierCase.SNAKE, reserved=METHOD_LOCAL_NAMES)
        bindings: list[ParameterBinding] = []
        for (name, placement), (parameter, parameter_path) in merged.items():
            location = ParameterLocation(placement)
            required = location is ParameterLocation.PATH or parameter.get("required") is True
            if location is ParameterLocation.PATH and name not in template_names:
                raise UnsupportedInputError(
                    parameter_path, f"path parameter {name!r} does not appear in {spec.path}"
                )
            type_id = self._resolver.resolve(
                _parameter_schema(parameter),
                hint=NameHint(position=f"{type_prefix}{pascal_case(name)}"),
                path=f"{parameter_path}.schema",
            )
            self._check_parameter_type(type_id, location, parameter_path, required=required)
            bindings.append(
                ParameterBinding(
                    name=identifiers.allocate(name),
                    api_name=name,
                    location=location,
                    type_id=type_id,
                    required=required,
                    description=schema_description(parameter),
                )
            )
        return tuple(bindings)

    def _check_parameter_type(
        self,
        type_id: TypeId,
        location: ParameterLocation,
        path: str,
        *,
        required: bool,
    ) -> None:
        details = self._type_space.entry(type_id).details
        if isinstance(details, OptionOf) and not required:
            type_id = details.inner
            details = self._type_space.entry(type_id).details
        if self._is_scalar(type_id):
            return
        if location is ParameterLocation.QUERY:
            if isinstance(details, Array) and self._is_scalar(details.element):
                return
            if isinstance(details, (Struct, Map)):
                return
        raise UnsupportedInputError(
            path, f"{location} parameters must have a scalar type, not {self._kind(type_id)}"
        )

    def _is_scalar(self, type_id: TypeId) -> bool:
        if self._type_space.is_pending(type_id):
            return False
        details = self._type_space.entry(type_id).details
        if isinstance(details, Primitive):
            return details.kind is not PrimitiveKind.BYTES
        if isinstance(details, StringNewtype):
            return True
        return (
            isinstance(details, Enum)
            and details.all_unit
            and details.tag is None
            and not details.untagged
        )

    def _kind(self, type_id: TypeId) -> str:
        return type(self._type_space.entry(type_id).details).__name__.lower()

    def _body(self, spec: OperationSpec, type_prefix: str) -> Optional[BodyBinding]:
        raw = spec.operation.get("requestBody")
        if raw is None:
            return None
        body_path = f"{spec.location}.requestBody"
        body = self._resolver.deref(raw, path=body_path)
        content = body.get("content")
        if not isinstance(content, dict) or not content:
            raise UnsupportedInputError(body_path, "request body declares no content types")

        content_type = ordered_media_types(content)[0]
        encoding = body_encoding(content_type)
        if encoding is BodyEncoding.TEXT:
            type_id = self._primitive(PrimitiveKind.STRING, body_path)
        elif encoding is BodyEncoding.BINARY:
            type_id = self._primitive(PrimitiveKind.BYTES, body_path)
        else:
            media = content[content_type]
            schema = media.get("schema", True) if isinstance(media, dict) else True
            type_id = self._resolver.resolve(
                schema,
                hint=NameHint(position=f"{type_prefix}Body"),
                path=f"{body_path}.content.{content_type}.schema",
            )
        return BodyBinding(
            type_id=type_id,
            content_type=content_type,
            encoding=encoding,
            required=body.get("required") is True,
        )

    def _responses(self, spec: OperationSpec, type_prefix: str) -> tuple[ResponseBinding, ...]:
        raw_responses = spec.operation.get("responses")
        if not isinstance(raw_responses, dict):
            return ()

        bindings: list[ResponseBinding] = []
        for raw_status, raw in raw_responses.items():
            status = str(raw_status)
            if status != "default":
                status = status.upper()
            response_path = f"{spec.location}.responses.{status}"
            if status != "default" and not _STATUS_RE.match(status):
                raise UnsupportedInputError(response_path, f"invalid response status {status!r}")
            is_error = is_error_status(status)
            response = self._resolver.deref(raw, path=response_path)
            content = response.get("content")
            if not isinstance(content, dict) or not content:
                bindings.append(
                    ResponseBinding(status, None, self._unit_type(response_path), is_error)
                )
                continue

            suffix = "Error" if is_error else "Response"
            for content_type in ordered_media_types(content):
                media = content[content_type]
                if is_json_media_type(content_type):
                    schema = media.get("schema", True) if isinstance(media, dict) else True
                    type_id = self._resolver.resolve(
                        schema,
                        hint=NameHint(position=f"{type_prefix}{suffix}"),
                        path=f"{response_path}.content.{content_type}.schema",
                    )
                else:
                    type_id = self._primitive(PrimitiveKind.BYTES, response_path)
                bindings.append(ResponseBinding(status, content_type, type_id, is_error))
        return tuple(bindings)

    def _outcome_type(self, bindings: list[ResponseBinding], *, path: str, kind: str) -> TypeId:
        primary = primary_responses(bindings)
        unit = self._unit_type(path)
        typed: list[TypeId] = []
        has_unit = False
        for binding in primary:
            type_id = self._type_space.canonical(binding.type_id)
            if type_id == unit:
                has_unit = True
            elif type_id not in typed:
                typed.append(type_id)

        if not typed:
            return unit
        if len(typed) == 1 and (kind == "error" or not has_unit):
            return typed[0]
        described = ", ".join(self._kind(type_id) for type_id in typed)
        raise UnsupportedInputError(
            path,
            f"{kind} responses have incompatible types ({described}"
            + (", no content" if has_unit else "")
            + ")",
        )

    def _signature(self, operation: CompiledOperation) -> MethodSignature:
        arguments = [
            SignatureArgument(name=binding.name, type_id=binding.type_id, required=binding.required)
            for binding in operation.parameters
        ]
        if operation.body is not None:
            arguments.append(
                SignatureArgument(
                    name="body",
                    type_id=operation.body.type_id,
                    required=operation.body.required,
                    is_body=True,
                )
            )
        if self._settings.interface is InterfaceStyle.BUILDER:
            builder_name = self._builder_names.allocate(operation.method_name)
            return MethodSignature(
                style=InterfaceStyle.BUILDER,
                arguments=tuple(arguments),
                builder_name=builder_name,
            )
        return MethodSignature(style=InterfaceStyle.POSITIONAL, arguments=tuple(arguments))

    def _groups(self, operation: CompiledOperation) -> tuple[Optional[str], ...]:
        if self._settings.tags is TagStyle.SEPARATE and operation.tags:
            return tuple(dict.fromkeys(operation.tags))
        return (None,)

    def _unit_type(self, path: str) -> TypeId:
        if self._unit is None:
            self._unit = self._type_space.get_or_create(
                TypeShape(Unit(), NameHint(position="Unit"), path)
            )
        return self._type_space.canonical(self._unit)

    def _primitive(self, kind: PrimitiveKind, path: str) -> TypeId:
        return self._type_space.get_or_create(
            TypeShape(Primitive(kind), NameHint(position=kind.value), path)
        )


def primary_responses(bindings: Iterable[ResponseBinding]) -> list[ResponseBinding]:
    """The first (preferred) binding of each status, in declaration order."""
    seen: set[str] = set()
    primary: list[ResponseBinding] = []
    for binding in bindings:
        if binding.status not in seen:
            seen.add(binding.status)
            primary.append(binding)
    return primary


def _parameter_schema(parameter: JSONObject) -> JSONValue:
    schema = parameter.get("schema")
    if schema is not None:
        return schema
    content = parameter.get("content")
    if isinstance(content, dict) and content:
        media = content[ordered_media_types(content)[0]]
        if isinstance(media, dict) and "schema" in media:
            return media["schema"]
    return {"type": "string"}


def _string_list(value: JSONValue) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item for item in value if isinstance(item, str) and item)


def _string_or_none(value: JSONValue) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
