"""Schema resolution into the type space."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, TypeAlias, Union

from .diagnostics import UnsupportedInputError
from .json_types import JSONObject, JSONValue, MutableJSONObject
from .model_types import (
    Array,
    Enum,
    EnumVariant,
    Map,
    OptionOf,
    Primitive,
    PrimitiveKind,
    StringNewtype,
    Struct,
    StructField,
    TypeId,
    Unit,
)
from .naming import IdentifierCase, NameAllocator, NameHint
from .schema_utils import (
    escape_pointer_token,
    is_null_schema,
    is_object_schema,
    merge_object_members,
    only_narrows_required,
    schema_description,
    schema_title,
    shape_keys,
    single_value,
    unescape_pointer_token,
)
from .type_space import TypeShape, TypeSpace

logger = logging.getLogger(__name__)

KNOWN_STRING_FORMATS: tuple[str, ...] = ("date-time", "date", "uuid", "ipv4", "ipv6", "ip")

_INTEGER_FORMATS: dict[str, PrimitiveKind] = {
    "int8": PrimitiveKind.I8,
    "int16": PrimitiveKind.I16,
    "int32": PrimitiveKind.I32,
    "int64": PrimitiveKind.I64,
    "uint8": PrimitiveKind.U8,
    "uint16": PrimitiveKind.U16,
    "uint32": PrimitiveKind.U32,
    "uint64": PrimitiveKind.U64,
}

_VARIANT_KIND_NAMES: dict[PrimitiveKind, str] = {
    PrimitiveKind.BOOL: "Boolean",
    PrimitiveKind.STRING: "String",
    PrimitiveKind.F32: "Number",
    PrimitiveKind.F64: "Number",
    PrimitiveKind.JSON_VALUE: "Value",
    PrimitiveKind.BYTES: "Bytes",
}

_Built: TypeAlias = Union[TypeShape, TypeId]


def component_schemas(document: JSONObject) -> dict[str, JSONValue]:
    """Return `components.schemas` in declaration order."""
    components = document.get("components")
    if not isinstance(components, dict):
        return {}
    schemas = components.get("schemas")
    return dict(schemas) if isinstance(schemas, dict) else {}


class SchemaResolver:
    """Turn schema nodes of one document into canonical `TypeId`s.

    Every named reference goes through `TypeSpace.get_or_create_reference`, so
    recursive schemas resolve to a placeholder on re-entry. Edges that point at
    a pending placeholder from a struct field, an enum payload or an `Option`
    are marked boxed; arrays and maps already provide indirection.
    """

    def __init__(self, document: JSONObject, type_space: TypeSpace) -> None:
        self._document = document
        self._type_space = type_space

    @property
    def type_space(self) -> TypeSpace:
        return self._type_space

    def resolve_component(self, name: str) -> TypeId:
        """Resolve `#/components/schemas/<name>` and make it reachable by name."""
        ref = f"#/components/schemas/{escape_pointer_token(name)}"
        type_id = self.resolve_reference(ref)
        self._type_space.register_component(name, type_id)
        logger.debug("Resolved component %s to %s", name, type_id)
        return type_id

    def resolve(self, schema: JSONValue, *, hint: NameHint, path: str) -> TypeId:
        """Resolve a schema node to a canonical id.

        Args:
            schema (JSONValue): Schema object or boolean schema.
            hint (NameHint): Naming inputs used if the schema needs a declaration.
            path (str): Document location reported in diagnostics.

        Returns:
            TypeId: Id of the resolved type.
        """
        built = self._build(schema, hint=hint, path=path)
        if isinstance(built, TypeId):
            return built
        return self._type_space.get_or_create(built)

    def resolve_reference(self, ref: str) -> TypeId:
        """Resolve a local `$ref` through a type-space placeholder."""
        if not ref.startswith("#/"):
            raise UnsupportedInputError(ref, "only local references are supported")
        name = unescape_pointer_token(ref.rsplit("/", 1)[-1])

        def build() -> _Built:
            target = self.lookup_pointer(ref)
            ref_hint = NameHint(position=name, title=schema_title(target), ref_name=name)
            return self._build(target, hint=ref_hint, path=_pointer_path(ref))

        return self._type_space.get_or_create_reference(ref, build)

    def lookup_pointer(self, ref: str) -> JSONValue:
        """Walk a local JSON pointer through the document."""
        if not ref.startswith("#/"):
            raise UnsupportedInputError(ref, "only local references are supported")
        current: JSONValue = self._document
        for token in ref[2:].split("/"):
            token = unescape_pointer_token(token)
            if isinstance(current, dict) and token in current:
                current = current[token]
            elif isinstance(current, list) and token.isdigit() and int(token) < len(current):
                current = current[int(token)]
            else:
                raise UnsupportedInputError(ref, "unresolvable reference")
        return current

    def deref(self, node: JSONValue, *, path: str) -> JSONObject:
        """Follow `$ref` chains of non-schema objects (parameters, bodies, responses)."""
        seen: list[str] = []
        while isinstance(node, dict) and isinstance(node.get("$ref"), str):
            ref = node["$ref"]
            if ref in seen:
                raise UnsupportedInputError(path, f"reference cycle through {ref}")
            seen.append(ref)
            node = self.lookup_pointer(ref)
        if not isinstance(node, dict):
            raise UnsupportedInputError(path, "expected an object")
        return node

    def _build(self, schema: JSONValue, *, hint: NameHint, path: str) -> _Built:
        if isinstance(schema, bool):
            if schema:
                return self._primitive(PrimitiveKind.JSON_VALUE, hint, path)
            raise UnsupportedInputError(path, "boolean schema `false` accepts no values")
        if not isinstance(schema, dict):
            raise UnsupportedInputError(path, "schema must be an object or a boolean")

        title = schema_title(schema)
        if title is not None and title != hint.title:
            hint = replace(hint, title=title)

        ref = schema.get("$ref")
        if isinstance(ref, str):
            return self._build_reference(schema, ref, hint=hint, path=path)

        if _is_nullable(schema):
            inner = self.resolve(_without_null(schema), hint=hint, path=path)
            return self._option(inner, hint=hint, path=path, schema=schema)

        if "enum" in schema:
            return self._build_enum(schema, hint=hint, path=path)
        if "const" in schema:
            return self._build_const(schema, hint=hint, path=path)
        if isinstance(schema.get("allOf"), list):
            return self._build_all_of(schema, hint=hint, path=path)
        for key in ("oneOf", "anyOf"):
            if isinstance(schema.get(key), list):
                return self._build_union(schema, key, hint=hint, path=path)

        schema_type = schema.get("type")
        if isinstance(schema_type, list):
            return self._build_type_list(schema, schema_type, hint=hint, path=path)
        if schema_type == "array":
            return self._build_array(schema, hint=hint, path=path)
        if schema_type == "object" or (schema_type is None and is_object_schema(schema)):
            return self._build_object(schema, hint=hint, path=path)
        if schema_type == "string":
            return self._build_string(schema, hint=hint, path=path)
        if schema_type == "integer":
            return self._primitive(_integer_kind(schema), hint, path, schema)
        if schema_type == "number":
            kind = PrimitiveKind.F32 if schema.get("format") == "float" else PrimitiveKind.F64
            return self._primitive(kind, hint, path, schema)
        if schema_type == "boolean":
            return self._primitive(PrimitiveKind.BOOL, hint, path, schema)
        if schema_type == "null":
            return TypeShape(Unit(), hint, path)
        if schema_type is None:
            return self._primitive(PrimitiveKind.JSON_VALUE, hint, path, schema)
        raise UnsupportedInputError(path, f"unknown schema type {schema_type!r}")

    def _build_reference(
        self,
        schema: JSONObject,
        ref: str,
        *,
        hint: NameHint,
        path: str,
    ) -> _Built:
        siblings = {key: value for key, value in shape_keys(schema).items() if key != "$ref"}
        nullable = siblings.pop("nullable", False) is True
        if siblings:
            composed: MutableJSONObject = {"allOf": [{"$ref": ref}, siblings]}
            if nullable:
                composed["nullable"] = True
            return self._build(composed, hint=hint, path=path)

        target = self.resolve_reference(ref)
        if nullable:
            return self._option(target, hint=hint, path=path, schema=schema)
        return target

    def _option(
        self,
        inner: TypeId,
        *,
        hint: NameHint,
        path: str,
        schema: Optional[JSONObject] = None,
    ) -> _Built:
        if self._type_space.is_pending(inner):
            return TypeShape(OptionOf(inner, boxed=True), hint, path, schema_description(schema))
        if isinstance(self._type_space.entry(inner).details, OptionOf):
            return inner
        return TypeShape(OptionOf(inner), hint, path, schema_description(schema))

    def _primitive(
        self,
        kind: PrimitiveKind,
        hint: NameHint,
        path: str,
        schema: Optional[JSONObject] = None,
    ) -> TypeShape:
        return TypeShape(Primitive(kind), hint, path, schema_description(schema))

    def _build_enum(self, schema: JSONObject, *, hint: NameHint, path: str) -> _Built:
        values = schema["enum"]
        if not isinstance(values, list) or not values:
            raise UnsupportedInputError(path, "enum must be a non-empty array")

        present = [value for value in values if value is not None]
        if len(present) != len(values):
            if not present:
                return TypeShape(Unit(), hint, path)
            narrowed: MutableJSONObject = {**schema, "enum": present}
            inner = self.resolve(narrowed, hint=hint, path=path)
            return self._option(inner, hint=hint, path=path, schema=schema)

        description = schema_description(schema)
        if all(isinstance(value, str) for value in present):
            return TypeShape(Enum(_unit_variants(present)), hint, path, description)
        if all(isinstance(value, int) and not isinstance(value, bool) for value in present):
            variants = _integer_variants(present)
            return TypeShape(Enum(variants, integer=True), hint, path, description)

        logger.debug("Enum at %s mixes value kinds; using the base type", path)
        base = {key: value for key, value in schema.items() if key != "enum"}
        return self._build(base, hint=hint, path=path)

    def _build_const(self, schema: JSONObject, *, hint: NameHint, path: str) -> _Built:
        value = schema["const"]
        if isinstance(value, str):
            return TypeShape(
                Enum(_unit_variants([value])), hint, path, schema_description(schema)
            )
        base = {key: item for key, item in schema.items() if key != "const"}
        return self._build(base, hint=hint, path=path)

    def _build_all_of(self, schema: JSONObject, *, hint: NameHint, path: str) -> _Built:
        members: list[JSONValue] = list(schema["allOf"])
        own = {key: value for key, value in shape_keys(schema).items() if key != "allOf"}
        if own and own != {"type": "object"}:
            members.append(own)
        if not members:
            raise UnsupportedInputError(path, "allOf must not be empty")
        if len(members) == 1:
            return self._build(members[0], hint=hint, path=f"{path}.allOf[0]")

        merged = self._merge_all_of(members, path=path, refs=())
        return self._build_object(merged, hint=hint, path=path)

    def _merge_all_of(
        self,
        members: list[JSONValue],
        *,
        path: str,
        refs: tuple[str, ...],
    ) -> MutableJSONObject:
        flattened: list[MutableJSONObject] = []
        for index, member in enumerate(members):
            member_path = f"{path}.allOf[{index}]"
            flattened.extend(self._flatten_all_of_member(member, path=member_path, refs=refs))

        def conflict(name: str) -> None:
            raise UnsupportedInputError(
                path, f"allOf members declare property {name!r} with different schemas"
            )

        return merge_object_members(flattened, on_conflict=conflict)

    def _flatten_all_of_member(
        self,
        member: JSONValue,
        *,
        path: str,
        refs: tuple[str, ...],
    ) -> list[MutableJSONObject]:
        if not isinstance(member, dict):
            raise UnsupportedInputError(path, "allOf member must be a schema object")

        ref = member.get("$ref")
        if isinstance(ref, str):
            if ref in refs:
                raise UnsupportedInputError(path, f"allOf refers back to itself through {ref}")
            target = self.lookup_pointer(ref)
            siblings = {key: value for key, value in shape_keys(member).items() if key != "$ref"}
            flattened = self._flatten_all_of_member(target, path=path, refs=(*refs, ref))
            if siblings:
                flattened.extend(self._flatten_all_of_member(siblings, path=path, refs=refs))
            return flattened

        nested = member.get("allOf")
        if isinstance(nested, list):
            own = {key: value for key, value in shape_keys(member).items() if key != "allOf"}
            flattened = []
            for index, child in enumerate(nested):
                flattened.extend(
                    self._flatten_all_of_member(child, path=f"{path}.allOf[{index}]", refs=refs)
                )
            if own:
                flattened.extend(self._flatten_all_of_member(own, path=path, refs=refs))
            return flattened

        if not is_object_schema(member) and not only_narrows_required(member):
            raise UnsupportedInputError(
                path, "allOf member is not an object schema and cannot be merged"
            )
        return [dict(member)]

    def _build_union(
        self,
        schema: JSONObject,
        key: str,
        *,
        hint: NameHint,
        path: str,
    ) -> _Built:
        members: list[JSONValue] = list(schema[key])
        if not members:
            raise UnsupportedInputError(path, f"{key} must not be empty")

        present = [member for member in members if not is_null_schema(member)]
        if len(present) != len(members):
            if not present:
                return TypeShape(Unit(), hint, path)
            narrowed: MutableJSONObject = {**schema, key: present}
            inner = self.resolve(narrowed, hint=hint, path=path)
            return self._option(inner, hint=hint, path=path, schema=schema)

        if len(members) == 1:
            return self._build(members[0], hint=hint, path=f"{path}.{key}[0]")

        discriminator = schema.get("discriminator")
        if isinstance(discriminator, dict) and isinstance(discriminator.get("propertyName"), str):
            tagged = self._build_tagged(schema, key, discriminator, hint=hint, path=path)
            if tagged is not None:
                return tagged
            logger.debug("Discriminator at %s does not fit every branch; untagged", path)

        allocator = NameAllocator(case=IdentifierCase.PASCAL, reserve_type_names=False)
        variants: list[EnumVariant] = []
        for index, member in enumerate(members):
            member_path = f"{path}.{key}[{index}]"
            payload = self.resolve(member, hint=hint.child(f"Variant{index}"), path=member_path)
            name = allocator.allocate(self._variant_name(member, payload, index))
            variants.append(
                EnumVariant(
                    name=name,
                    payload=payload,
                    boxed=self._type_space.is_pending(payload),
                )
            )
        return TypeShape(
            Enum(tuple(variants), untagged=True), hint, path, schema_description(schema)
        )

    def _build_tagged(
        self,
        schema: JSONObject,
        key: str,
        discriminator: JSONObject,
        *,
        hint: NameHint,
        path: str,
    ) -> Optional[TypeShape]:
        property_name = discriminator["propertyName"]
        mapping = discriminator.get("mapping")
        tags_by_ref: dict[str, str] = {}
        if isinstance(mapping, dict):
            for tag_value, target in mapping.items():
                if isinstance(target, str):
                    tags_by_ref.setdefault(_mapping_ref(target), tag_value)

        branches: list[tuple[str, MutableJSONObject, str]] = []
        for index, member in enumerate(schema[key]):
            member_path = f"{path}.{key}[{index}]"
            if not isinstance(member, dict):
                return None
            member_ref = member.get("$ref")
            view = self._object_view(member, path=member_path)
            if view is None:
                return None
            properties = view.get("properties")
            if not isinstance(properties, dict) or property_name not in properties:
                return None

            tag_value = single_value(properties[property_name])
            if isinstance(member_ref, str):
                tag_value = tags_by_ref.get(member_ref, tag_value)
                if tag_value is None and not tags_by_ref:
                    tag_value = unescape_pointer_token(member_ref.rsplit("/", 1)[-1])
            if tag_value is None:
                return None
            branches.append((tag_value, _strip_property(view, property_name), member_path))

        if len({tag_value for tag_value, _, _ in branches}) != len(branches):
            return None

        allocator = NameAllocator(case=IdentifierCase.PASCAL, reserve_type_names=False)
        variants: list[EnumVariant] = []
        for tag_value, payload_schema, member_path in branches:
            name = allocator.allocate(tag_value)
            rename = None if name == tag_value else tag_value
            if not payload_schema["properties"] and "additionalProperties" not in payload_schema:
                variants.append(EnumVariant(name=name, rename=rename))
                continue
            payload = self.resolve(payload_schema, hint=hint.child(name), path=member_path)
            variants.append(
                EnumVariant(
                    name=name,
                    rename=rename,
                    payload=payload,
                    boxed=self._type_space.is_pending(payload),
                )
            )
        return TypeShape(
            Enum(tuple(variants), tag=property_name), hint, path, schema_description(schema)
        )

    def _object_view(self, member: JSONObject, *, path: str) -> Optional[MutableJSONObject]:
        if isinstance(member.get("$ref"), str):
            target = self.lookup_pointer(member["$ref"])
            if not isinstance(target, dict):
                return None
            member = target
        if isinstance(member.get("allOf"), list):
            return self._merge_all_of([member], path=path, refs=())
        if not is_object_schema(member):
            return None
        return dict(member)

    def _variant_name(self, member: JSONValue, payload: TypeId, index: int) -> str:
        if isinstance(member, dict):
            ref = member.get("$ref")
            if isinstance(ref, str):
                return unescape_pointer_token(ref.rsplit("/", 1)[-1])
            title = schema_title(member)
            if title is not None:
                return title
        if self._type_space.is_pending(payload):
            return f"Variant{index}"

        entry = self._type_space.entry(payload)
        details = entry.details
        if entry.name is not None:
            return entry.name
        if isinstance(details, Primitive):
            return _VARIANT_KIND_NAMES.get(details.kind, "Integer")
        if isinstance(details, StringNewtype):
            return "String"
        if isinstance(details, Array):
            return "Array"
        if isinstance(details, Map):
            return "Object"
        return f"Variant{index}"

    def _build_type_list(
        self,
        schema: JSONObject,
        types: list[JSONValue],
        *,
        hint: NameHint,
        path: str,
    ) -> _Built:
        members = [item for item in types if item != "null"]
        if not members:
            return TypeShape(Unit(), hint, path)
        if len(members) == 1:
            return self._build({**schema, "type": members[0]}, hint=hint, path=path)
        alternatives: MutableJSONObject = {
            "anyOf": [{**schema, "type": member} for member in members]
        }
        return self._build(alternatives, hint=hint, path=path)

    def _build_array(self, schema: JSONObject, *, hint: NameHint, path: str) -> TypeShape:
        items = schema.get("items")
        if isinstance(items, (dict, bool)):
            element = self.resolve(items, hint=hint.child("Item"), path=f"{path}.items")
        else:
            element = self._type_space.get_or_create(
                self._primitive(PrimitiveKind.JSON_VALUE, hint, f"{path}.items")
            )
        return TypeShape(Array(element), hint, path, schema_description(schema))

    def _build_object(self, schema: JSONObject, *, hint: NameHint, path: str) -> TypeShape:
        description = schema_description(schema)
        properties = schema.get("properties")
        additional = schema.get("additionalProperties")
        typed_additional = isinstance(additional, dict) and bool(additional)
        if not isinstance(properties, dict) or not properties:
            if additional is False:
                return TypeShape(Struct((), deny_unknown_fields=True), hint, path, description)
            if typed_additional:
                value = self.resolve(
                    additional, hint=hint.child("Value"), path=f"{path}.additionalProperties"
                )
            else:
                value = self._type_space.get_or_create(
                    self._primitive(PrimitiveKind.JSON_VALUE, hint, path)
                )
            return TypeShape(Map(value), hint, path, description)

        required_raw = schema.get("required")
        required = set(required_raw) if isinstance(required_raw, list) else set()
        allocator = NameAllocator(case=IdentifierCase.SNAKE)
        fields: list[StructField] = []
        for source_name, prop in properties.items():
            field_type = self.resolve(
                prop,
                hint=hint.child(source_name),
                path=f"{path}.properties.{source_name}",
            )
            fields.append(
                StructField(
                    name=allocator.allocate(source_name),
                    source_name=source_name,
                    type_id=field_type,
                    required=source_name in required,
                    boxed=self._type_space.is_pending(field_type),
                    description=schema_description(prop),
                )
            )

        if typed_additional:
            value = self.resolve(
                additional, hint=hint.child("Extra"), path=f"{path}.additionalProperties"
            )
            extra = self._type_space.get_or_create(TypeShape(Map(value), hint, path))
            fields.append(
                StructField(
                    name=allocator.allocate("extra"),
                    source_name="",
                    type_id=extra,
                    required=True,
                    flatten=True,
                )
            )

        return TypeShape(
            Struct(tuple(fields), deny_unknown_fields=additional is False),
            hint,
            path,
            description,
        )

    def _build_string(self, schema: JSONObject, *, hint: NameHint, path: str) -> TypeShape:
        description = schema_description(schema)
        string_format = schema.get("format")
        pattern = schema.get("pattern")
        min_length = schema.get("minLength")
        max_length = schema.get("maxLength")
        newtype = StringNewtype(
            format=string_format if string_format in KNOWN_STRING_FORMATS else None,
            pattern=pattern if isinstance(pattern, str) else None,
            min_length=min_length if _is_count(min_length) else None,
            max_length=max_length if _is_count(max_length) else None,
        )
        if newtype.constrained:
            return TypeShape(replace(newtype, format=None), hint, path, description)
        if newtype.format is not None:
            return TypeShape(newtype, hint, path, description)
        return self._primitive(PrimitiveKind.STRING, hint, path, schema)


def _is_nullable(schema: JSONObject) -> bool:
    if schema.get("nullable") is True:
        return True
    schema_type = schema.get("type")
    return isinstance(schema_type, list) and "null" in schema_type and len(schema_type) > 1


def _without_null(schema: JSONObject) -> MutableJSONObject:
    stripped: MutableJSONObject = {key: value for key, value in schema.items() if key != "nullable"}
    schema_type = stripped.get("type")
    if isinstance(schema_type, list):
        remaining = [item for item in schema_type if item != "null"]
        stripped["type"] = remaining[0] if len(remaining) == 1 else remaining
    return stripped


def _integer_kind(schema: JSONObject) -> PrimitiveKind:
    integer_format = schema.get("format")
    if isinstance(integer_format, str) and integer_format in _INTEGER_FORMATS:
        return _INTEGER_FORMATS[integer_format]
    minimum = schema.get("minimum")
    if isinstance(minimum, (int, float)) and not isinstance(minimum, bool) and minimum >= 0:
        return PrimitiveKind.U64
    return PrimitiveKind.I64


def _is_count(value: JSONValue) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _unit_variants(values: list[str]) -> tuple[EnumVariant, ...]:
    allocator = NameAllocator(case=IdentifierCase.PASCAL, reserve_type_names=False)
    variants: list[EnumVariant] = []
    for value in dict.fromkeys(values):
        name = allocator.allocate(value or "Empty")
        variants.append(EnumVariant(name=name, rename=None if name == value else value))
    return tuple(variants)


def _integer_variants(values: list[int]) -> tuple[EnumVariant, ...]:
    variants: list[EnumVariant] = []
    for value in dict.fromkeys(values):
        name = f"Value{value}" if value >= 0 else f"ValueMinus{-value}"
        variants.append(EnumVariant(name=name, value=value))
    return tuple(variants)


def _strip_property(schema: JSONObject, property_name: str) -> MutableJSONObject:
    stripped: MutableJSONObject = dict(schema)
    properties = dict(schema.get("properties", {}))
    properties.pop(property_name, None)
    stripped["properties"] = properties
    required = schema.get("required")
    if isinstance(required, list):
        stripped["required"] = [name for name in required if name != property_name]
    stripped.pop("title", None)
    return stripped


def _mapping_ref(target: str) -> str:
    if target.startswith("#/"):
        return target
    return f"#/components/schemas/{escape_pointer_token(target)}"


def _pointer_path(ref: str) -> str:
    return ".".join(unescape_pointer_token(token) for token in ref[2:].split("/"))
