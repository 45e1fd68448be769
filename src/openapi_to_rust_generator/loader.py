"""OpenAPI document loading and basic validation."""

from __future__ import annotations

import json
from pathlib import Path

import yaml

from .json_types import JSONObject, JSONValue


class OpenAPILoadError(RuntimeError):
    """Raised when a source OpenAPI document cannot be loaded."""


def load_openapi_document(path: Path) -> JSONObject:
    """Load an OpenAPI document from a JSON or YAML file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise OpenAPILoadError(f"Failed to read OpenAPI file {path}: {exc}") from exc
    return parse_openapi_text(text, source=str(path))


def is_json_text(text: str) -> bool:
    """JSON documents are recognized by their first non-whitespace character."""
    stripped = text.lstrip()
    return stripped.startswith("{")


def parse_openapi_text(text: str, *, source: str = "<string>") -> JSONObject:
    """Parse document text as JSON when it starts with `{`, otherwise as YAML.

    Args:
        text (str): Raw document text.
        source (str): Name used in error messages.

    Returns:
        JSONObject: The parsed document mapping.
    """
    payload: JSONValue
    if is_json_text(text):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise OpenAPILoadError(f"Failed to parse JSON in {source}: {exc}") from exc
    else:
        try:
            payload = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise OpenAPILoadError(f"Failed to parse YAML in {source}: {exc}") from exc

    if not isinstance(payload, dict):
        raise OpenAPILoadError(
            f"OpenAPI document must deserialize to a mapping, got {type(payload)!r}"
        )
    return payload


def get_openapi_version(document: JSONObject) -> str:
    """Return the declared OpenAPI version string."""
    version = document.get("openapi")
    if not isinstance(version, str) or not version.strip():
        raise OpenAPILoadError("Missing or invalid 'openapi' version field")
    return version.strip()


def ensure_supported_version(version: str) -> None:
    """Validate that the input version is OpenAPI v3."""
    major_text = version.split(".", maxsplit=1)[0]
    try:
        major = int(major_text)
    except ValueError as exc:
        raise OpenAPILoadError(f"Unable to parse OpenAPI version: {version}") from exc
    if major != 3:
        raise OpenAPILoadError(f"Unsupported OpenAPI version {version}; only v3 is supported")
