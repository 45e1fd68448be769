"""Shared helpers for JSON-Schema shape operations."""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from .json_types import JSONObject, JSONValue, MutableJSONObject

# Keys that never change the shape of the generated type.
DOCUMENTATION_KEYS: frozenset[str] = frozenset(
    {
        "$comment",
        "default",
        "deprecated",
        "description",
        "example",
        "examples",
        "externalDocs",
        "readOnly",
        "title",
        "writeOnly",
        "xml",
    }
)


def is_object_schema(schema: JSONObject) -> bool:
    """Return whether a schema behaves as an object schema.

    Args:
        schema (JSONObject): Schema node to inspect.

    Returns:
        bool: Whether object modeling rules should apply.
    """
    schema_type = schema.get("type")
    if schema_type == "object":
        return True
    if isinstance(schema.get("properties"), dict):
        return True
    if "additionalProperties" in schema:
        return True
    all_of = schema.get("allOf")
    if isinstance(all_of, list) and all_of:
        return all(isinstance(item, dict) and is_object_schema(item) for item in all_of)
    return False


def only_narrows_required(schema: JSONObject) -> bool:
    """Return whether a schema adds nothing but `required` names to an object."""
    keys = shape_keys(schema)
    if keys.get("type", "object") != "object":
        return False
    return set(keys) <= {"required", "type"}


def is_null_schema(schema: JSONValue) -> bool:
    """Return whether a schema only admits `null`."""
    if not isinstance(schema, dict):
        return False
    if schema.get("type") == "null":
        return True
    return schema.get("enum") == [None]


def shape_keys(schema: JSONObject) -> MutableJSONObject:
    """Return the schema without documentation-only keys."""
    return {key: value for key, value in schema.items() if key not in DOCUMENTATION_KEYS}


def schema_title(schema: JSONValue) -> Optional[str]:
    if isinstance(schema, dict):
        title = schema.get("title")
        if isinstance(title, str) and title.strip():
            return title.strip()
    return None


def schema_description(schema: JSONValue) -> Optional[str]:
    if isinstance(schema, dict):
        description = schema.get("description")
        if isinstance(description, str) and description.strip():
            return description.strip()
    return None


def unescape_pointer_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def escape_pointer_token(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def single_value(schema: JSONValue) -> Optional[str]:
    """Return the only string value a schema admits, if it has exactly one."""
    if not isinstance(schema, dict):
        return None
    const = schema.get("const")
    if isinstance(const, str):
        return const
    values = schema.get("enum")
    if isinstance(values, list) and len(values) == 1 and isinstance(values[0], str):
        return values[0]
    return None


def merge_object_members(
    members: list[MutableJSONObject],
    *,
    on_conflict: Callable[[str], None],
) -> MutableJSONObject:
    """Merge flattened object-only `allOf` members into one object schema.

    Args:
        members (list[MutableJSONObject]): Dereferenced object schemas in `allOf` order.
        on_conflict (Callable[[str], None]): Called with the property name when two members
            declare the same property differently; expected to raise.

    Returns:
        MutableJSONObject: Object schema with merged `properties` and `required`.
    """
    merged_properties: MutableJSONObject = {}
    merged_required: list[str] = []
    additional_properties: Optional[JSONValue] = None
    for member in members:
        member_properties = member.get("properties")
        if isinstance(member_properties, dict):
            for name, prop in member_properties.items():
                if name in merged_properties and merged_properties[name] != prop:
                    on_conflict(name)
                merged_properties.setdefault(name, prop)

        member_required = member.get("required")
        if isinstance(member_required, list):
            for required_name in member_required:
                if isinstance(required_name, str) and required_name not in merged_required:
                    merged_required.append(required_name)

        member_additional = member.get("additionalProperties")
        if member_additional is False:
            additional_properties = False
        elif isinstance(member_additional, dict) and additional_properties is None:
            additional_properties = member_additional

    merged: MutableJSONObject = {"type": "object", "properties": merged_properties}
    if merged_required:
        merged["required"] = merged_required
    if additional_properties is not None:
        merged["additionalProperties"] = additional_properties
    return merged

