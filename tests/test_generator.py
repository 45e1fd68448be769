"""Integration tests for generator behavior."""

from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any, Optional

import pytest

from openapi_to_rust_generator.diagnostics import DiagnosticKind, GenerationError
from openapi_to_rust_generator.generator import Generator
from openapi_to_rust_generator.loader import load_openapi_document, parse_openapi_text
from openapi_to_rust_generator.naming import is_valid_identifier
from openapi_to_rust_generator.settings import GenerationSettings, InterfaceStyle, TagStyle
from .fixture_helpers import load_fixture, parametrize_fixtures

_ALL_SETTINGS = [
    GenerationSettings(interface=interface, tags=tags)
    for interface, tags in itertools.product(InterfaceStyle, TagStyle)
]

_INLINE_DEDUP_SPEC = """
openapi: 3.0.3
info:
  title: Inline dedup
  version: 1.0.0
paths:
  /a:
    get:
      operationId: getA
      responses:
        "200":
          description: ok
          content:
            application/json:
              schema:
                type: object
                properties:
                  id:
                    type: string
                  count:
                    type: integer
  /b:
    get:
      operationId: getB
      responses:
        "200":
          description: ok
          content:
            application/json:
              schema:
                type: object
                description: Same shape, different words.
                properties:
                  id:
                    type: string
                  count:
                    type: integer
"""

_FIVE_PARAMETER_SPEC = """
openapi: 3.0.3
info:
  title: Zoo
  version: 1.0.0
paths:
  /zoos/{zoo}/pens/{pen}:
    get:
      operationId: findAnimals
      parameters:
        - {name: zoo, in: path, required: true, schema: {type: string}}
        - {name: pen, in: path, required: true, schema: {type: integer}}
        - {name: kind, in: query, required: true, schema: {type: string}}
        - {name: awake, in: query, required: true, schema: {type: boolean}}
        - {name: X-Keeper, in: header, required: true, schema: {type: string}}
      responses:
        "204":
          description: done
"""


def _generate(document: Any, settings: Optional[GenerationSettings] = None) -> str:
    return Generator(settings).generate_text(document).source_text


def _in_order(text: str, *needles: str) -> bool:
    positions = [text.find(needle) for needle in needles]
    return -1 not in positions and positions == sorted(positions)


@parametrize_fixtures()
@pytest.mark.parametrize("settings", _ALL_SETTINGS, ids=lambda s: f"{s.interface}-{s.tags}")
def test_generation_smoke(fixture_path: Path, settings: GenerationSettings) -> None:
    """Each fixture generates under every interface and tag style."""
    output = Generator(settings).generate_text(load_openapi_document(fixture_path))

    assert "pub struct Client {" in output.source_text
    assert "pub mod types {" in output.source_text
    assert [dependency.name for dependency in output.dependencies] == sorted(
        dependency.name for dependency in output.dependencies
    )


@parametrize_fixtures()
def test_generation_is_deterministic(fixture_path: Path) -> None:
    """Two runs over the same document produce identical text and numbering."""
    runs = []
    for _ in range(2):
        generator = Generator(GenerationSettings(interface=InterfaceStyle.BUILDER))
        output = generator.generate_text(load_openapi_document(fixture_path))
        descriptions = [
            generator.type_space.describe(type_id) for type_id, _ in generator.type_space.iter_types()
        ]
        runs.append((output.source_text, output.dependencies, descriptions))

    assert runs[0] == runs[1]


@parametrize_fixtures()
@pytest.mark.parametrize("settings", _ALL_SETTINGS, ids=lambda s: f"{s.interface}-{s.tags}")
def test_generated_names_are_unique_and_valid(
    fixture_path: Path, settings: GenerationSettings
) -> None:
    generator = Generator(settings)
    generator.generate_text(load_openapi_document(fixture_path))
    type_space = generator.type_space

    type_names = [entry.name for _, entry in type_space.iter_types() if entry.declared]
    type_names.extend(name for name, _ in type_space.aliases)
    method_names = [method.operation.method_name for method in generator.methods]
    builder_names = [
        method.signature.builder_name
        for method in generator.methods
        if method.signature.builder_name is not None
    ]

    for names in (type_names, method_names, builder_names):
        assert len(names) == len(set(names)), names
        assert all(name is not None and is_valid_identifier(name) for name in names), names


def test_self_referencing_schema_compiles_to_boxed_optional_field() -> None:
    text = _generate(load_fixture("recursive.json"))

    assert "pub struct SelfType {" in text
    assert "pub a: Option<Box<SelfType>>," in text
    assert "pub children: Option<Vec<Node>>," in text
    assert "pub b: Option<B>," in text
    assert "pub a: Option<Box<A>>," in text
    assert "pub next: Option<Box<LinkedList>>," in text
    assert "pub type Self" not in text


def test_inline_objects_in_different_operations_share_one_struct() -> None:
    text = _generate(parse_openapi_text(_INLINE_DEDUP_SPEC))

    assert text.count("pub struct ") == 2  # GetAResponse and Client
    assert "pub struct GetAResponse {" in text
    assert "GetBResponse" not in text
    assert text.count("Result<ResponseValue<types::GetAResponse>, Error<()>>") == 2


def test_five_parameters_positional_signature() -> None:
    text = _generate(parse_openapi_text(_FIVE_PARAMETER_SPEC))

    assert "pub async fn find_animals<'a>(" in text
    assert _in_order(
        text,
        "&'a self,",
        "zoo: &'a str,",
        "pen: i64,",
        "kind: &'a str,",
        "awake: bool,",
        "x_keeper: &'a str,",
        ") -> Result<ResponseValue<()>, Error<()>> {",
    )
    assert 'request = request.header("X-Keeper", x_keeper.to_string());' in text
    assert "encode_path(&zoo.to_string())," in text
    assert "pub mod builder" not in text


def test_five_parameters_builder_signature() -> None:
    settings = GenerationSettings(interface=InterfaceStyle.BUILDER)
    text = _generate(parse_openapi_text(_FIVE_PARAMETER_SPEC), settings)

    assert "pub fn find_animals(&self) -> builder::FindAnimals<'_> {" in text
    assert "pub struct FindAnimals<'a> {" in text
    assert _in_order(
        text,
        "pub fn zoo<V>(mut self, value: V) -> Self",
        "pub fn pen<V>(mut self, value: V) -> Self",
        "pub fn kind<V>(mut self, value: V) -> Self",
        "pub fn awake<V>(mut self, value: V) -> Self",
        "pub fn x_keeper<V>(mut self, value: V) -> Self",
        "pub async fn send(self) -> Result<ResponseValue<()>, Error<()>> {",
    )
    assert text.count("<V>(mut self, value: V) -> Self") == 5
    assert "let zoo = zoo.map_err(Error::InvalidRequest)?;" in text
    assert "async fn find_animals" not in text


def test_multi_tag_operation_attaches_to_each_group() -> None:
    settings = GenerationSettings(tags=TagStyle.SEPARATE)
    generator = Generator(settings)
    output = generator.generate_text(load_fixture("petstore.yaml"))
    text = output.source_text

    assert "pub trait ClientPetsExt {" in text
    assert "impl ClientPetsExt for Client {" in text
    assert "pub trait ClientAdminExt {" in text
    assert "impl ClientAdminExt for Client {" in text
    assert text.count("async fn create_pet<'a>(") == 4
    assert "#[async_trait::async_trait]" in text
    assert "pub async fn get_health<'a>(" in text
    assert "pub use super::ClientAdminExt;" in text
    assert "async-trait" in [dependency.name for dependency in output.dependencies]

    create_pet = next(m for m in generator.methods if m.operation.method_name == "create_pet")
    assert create_pet.groups == ("pets", "admin")


def test_builder_traits_do_not_need_async_trait() -> None:
    settings = GenerationSettings(interface=InterfaceStyle.BUILDER, tags=TagStyle.SEPARATE)
    output = Generator(settings).generate_text(load_fixture("petstore.yaml"))

    assert "fn list_pets(&self) -> builder::ListPets<'_>;" in output.source_text
    assert "#[async_trait::async_trait]" not in output.source_text
    assert "async-trait" not in [dependency.name for dependency in output.dependencies]


def test_petstore_positional_methods() -> None:
    text = _generate(load_fixture("petstore.yaml"))

    assert "pub type Pets = Vec<Pet>;" in text
    assert ") -> Result<ResponseValue<Vec<types::Pet>>, Error<types::Error>> {" in text
    assert "limit: Option<i32>," in text
    assert "tags: Option<&'a Vec<String>>," in text
    assert "body: &'a types::NewPet," in text
    assert "request = request.json(&body);" in text
    assert "x_request_id: Option<uuid::Uuid>," in text
    assert "200u16 => ResponseValue::from_response(response).await," in text
    assert "404u16 => Err(Error::UnexpectedResponse(response))," in text
    assert "204u16 => Ok(ResponseValue::empty(response))," in text
    assert (
        "400u16..=499u16 => Err(Error::ErrorResponse(ResponseValue::from_response(response).await?)),"
        in text
    )
    assert "let request = self.client.request(reqwest::Method::GET, url);" in text
    assert "/// Sends a `DELETE` request to `/pets/{petId}`" in text


def test_petstore_types() -> None:
    text = _generate(load_fixture("petstore.yaml"))

    assert "pub struct Pet {" in text
    assert "pub born: Option<chrono::NaiveDate>," in text
    assert "pub enum PetStatus {" in text
    assert '#[serde(rename = "available")]' in text
    assert 'Self::Available => f.write_str("available"),' in text
    assert "/// Pet status in the store" in text
    assert "pub struct Error {" in text


def test_shapes_types() -> None:
    text = _generate(load_fixture("shapes.yaml"))

    assert '#[serde(tag = "kind")]' in text
    assert "Circle(ShapeCircle)," in text
    assert "Square(ShapeSquare)," in text
    assert "#[serde(deny_unknown_fields)]" in text
    assert _in_order(
        text,
        '#[serde(rename = "type")]',
        '#[serde(default, skip_serializing_if = "Option::is_none")]',
        "pub type_: Option<String>,",
    )
    assert "pub id: uuid::Uuid," in text
    assert "pub created: chrono::DateTime<chrono::offset::Utc>," in text
    assert "pub struct Code(String);" in text
    assert 'regress::Regex::new("^[A-Z]{3}$")' in text
    assert "#[serde(untagged)]" in text
    assert "Array(Vec<String>)," in text
    assert "#[repr(i64)]" in text
    assert "Value1 = 1," in text
    assert "#[serde(flatten)]" in text
    assert "pub extra: std::collections::HashMap<String, i64>," in text
    assert "pub type Labels = std::collections::HashMap<String, String>;" in text
    assert "pub type Anything = serde_json::Value;" in text


def test_shapes_operations() -> None:
    text = _generate(load_fixture("shapes.yaml"))

    assert "name: &'a types::Code," in text
    assert "body: Vec<u8>," in text
    assert "200u16 => ResponseValue::from_bytes(response).await," in text
    assert "body: Option<String>," in text
    assert "filter: Option<&'a types::SearchShapesFilter>," in text
    assert "priority: Option<types::Priority>," in text
    assert 'cookies.push(format!("{}={}", "session", v));' in text
    assert "500u16..=599u16 => Err(Error::ErrorResponse(ResponseValue::empty(response)))," in text


def test_dependencies() -> None:
    output = Generator().generate_text(load_fixture("shapes.yaml"))

    assert [dependency.name for dependency in output.dependencies] == [
        "chrono",
        "percent-encoding",
        "regress",
        "reqwest",
        "serde",
        "serde_json",
        "serde_repr",
        "uuid",
    ]


def test_dependencies_reference_support_crate_when_not_transcluded() -> None:
    settings = GenerationSettings(transclude_support_code=False, client_version_constraint="0.2")
    output = Generator(settings).generate_text(load_fixture("recursive.json"))

    assert [(dependency.name, dependency.version) for dependency in output.dependencies] == [
        ("openapi-client-support", "0.2"),
        ("reqwest", "0.11"),
        ("serde", "1.0"),
        ("serde_json", "1.0"),
    ]


def test_diagnostics_are_aggregated() -> None:
    document = {
        "openapi": "3.0.3",
        "paths": {"/items/{id}": {"get": {"responses": {"200": {"description": "ok"}}}}},
        "components": {
            "schemas": {
                "BadA": {"$ref": "a.yaml#/A"},
                "Good": {"type": "object", "properties": {"id": {"type": "string"}}},
                "BadB": {"$ref": "b.yaml#/B"},
            }
        },
    }

    with pytest.raises(GenerationError) as exc_info:
        Generator().generate_text(document)

    diagnostics = exc_info.value.diagnostics
    assert [diagnostic.path for diagnostic in diagnostics] == [
        "a.yaml#/A",
        "b.yaml#/B",
        "paths./items/{id}.get",
    ]
    assert {diagnostic.kind for diagnostic in diagnostics} == {DiagnosticKind.UNSUPPORTED_INPUT}


def test_type_space_requires_a_completed_run() -> None:
    with pytest.raises(RuntimeError):
        _ = Generator().type_space


def test_operation_id_conflicts_are_reported_as_warnings() -> None:
    document = {
        "openapi": "3.0.3",
        "paths": {
            "/a": {"get": {"operationId": "same", "responses": {"204": {"description": "ok"}}}},
            "/b": {"get": {"operationId": "same", "responses": {"204": {"description": "ok"}}}},
        },
    }

    output = Generator().generate_text(document)

    assert len(output.warnings) == 1
    assert "pub async fn get_a<'a>(" in output.source_text
    assert "pub async fn get_b<'a>(" in output.source_text


def test_reference_cycle_keeps_every_diagnostic() -> None:
    document = {
        "openapi": "3.0.3",
        "paths": {},
        "components": {
            "schemas": {
                "A": {"$ref": "#/components/schemas/B"},
                "B": {"$ref": "#/components/schemas/A"},
                "C": {"$ref": "#/components/schemas/Missing"},
            }
        },
    }

    with pytest.raises(GenerationError) as exc_info:
        Generator().generate_text(document)

    diagnostics = exc_info.value.diagnostics
    assert [diagnostic.path for diagnostic in diagnostics] == [
        "#/components/schemas/A",
        "#/components/schemas/B",
        "#/components/schemas/Missing",
    ]
    assert {diagnostic.kind for diagnostic in diagnostics} == {DiagnosticKind.UNSUPPORTED_INPUT}
    assert "reference cycle" in diagnostics[0].message


def test_recursive_enum_variants_are_boxed() -> None:
    document = {
        "openapi": "3.1.0",
        "components": {
            "schemas": {
                "Expr": {"oneOf": [{"type": "string"}, {"$ref": "#/components/schemas/Expr"}]},
                "Tree": {
                    "oneOf": [
                        {"$ref": "#/components/schemas/Leaf"},
                        {"$ref": "#/components/schemas/Fork"},
                    ],
                    "discriminator": {"propertyName": "kind"},
                },
                "Leaf": {
                    "type": "object",
                    "required": ["kind", "value"],
                    "properties": {"kind": {"type": "string"}, "value": {"type": "string"}},
                },
                "Fork": {
                    "type": "object",
                    "required": ["kind", "left"],
                    "properties": {
                        "kind": {"type": "string"},
                        "left": {"$ref": "#/components/schemas/Tree"},
                    },
                },
            }
        },
    }

    text = _generate(document)

    assert "String(String)," in text
    assert "Expr(Box<Expr>)," in text
    assert "Fork(TreeFork)," in text
    assert "pub left: Box<Tree>," in text


def test_component_named_after_a_prelude_trait_is_renamed() -> None:
    document = {
        "openapi": "3.0.3",
        "components": {"schemas": {"From": {"type": "string", "pattern": "^[a-z]+$"}}},
    }

    text = _generate(document)

    assert "pub struct FromType(String);" in text
    assert "impl std::convert::From<FromType> for String {" in text
