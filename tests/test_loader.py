"""Tests for OpenAPI document loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from openapi_to_rust_generator.loader import (
    OpenAPILoadError,
    ensure_supported_version,
    get_openapi_version,
    load_openapi_document,
    parse_openapi_text,
)
from .fixture_helpers import fixture_file


def test_json_is_detected_after_leading_whitespace() -> None:
    document = parse_openapi_text('\n   {"openapi": "3.0.0", "paths": {}}')
    assert document == {"openapi": "3.0.0", "paths": {}}


def test_yaml_document() -> None:
    document = parse_openapi_text("openapi: 3.1.0\npaths: {}\n")
    assert get_openapi_version(document) == "3.1.0"


def test_yaml_fixture_loads_from_disk() -> None:
    document = load_openapi_document(fixture_file("petstore.yaml"))
    assert "/pets" in document["paths"]


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ("- just\n- a list\n", "mapping"),
        ('{"openapi": ', "Failed to parse JSON"),
        ("openapi: [unclosed\n", "Failed to parse YAML"),
    ],
)
def test_invalid_documents_are_rejected(text: str, message: str) -> None:
    with pytest.raises(OpenAPILoadError, match=message):
        parse_openapi_text(text)


def test_version_checks() -> None:
    ensure_supported_version("3.0.3")
    with pytest.raises(OpenAPILoadError, match="only v3"):
        ensure_supported_version("2.0")
    with pytest.raises(OpenAPILoadError, match="Unable to parse"):
        ensure_supported_version("three")
    with pytest.raises(OpenAPILoadError, match="version field"):
        get_openapi_version({"swagger": "2.0"})


def test_missing_file(tmp_path: Path) -> None:
    with pytest.raises(OpenAPILoadError, match="Failed to read"):
        load_openapi_document(tmp_path / "missing.yaml")
