"""High-level generator orchestration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from .codegen_rust import RustRenderer
from .diagnostics import (
    DiagnosticCollector,
    GenerationError,
    InternalConsistencyError,
    NamingConflictError,
    UnsupportedInputError,
)
from .json_types import JSONObject
from .loader import (
    OpenAPILoadError,
    ensure_supported_version,
    get_openapi_version,
    load_openapi_document,
)
from .model_types import Dependency, GeneratedMethod, GenerationOutput
from .naming import resolve_operations
from .operations import OperationCompiler
from .resolver import SchemaResolver, component_schemas
from .settings import GenerationSettings
from .type_space import TypeSpace
from .writer import CrateOptions, WriteError, write_crate

logger = logging.getLogger(__name__)

__all__ = [
    "CrateOptions",
    "GenerationRun",
    "Generator",
    "OpenAPILoadError",
    "WriteError",
    "run_generation",
]


class Generator:
    """Drive one document through the type space, operation compiler and renderer.

    Each call to `generate_text` uses a fresh `TypeSpace`; the last one stays
    available for inspection (for example to print a type table).
    """

    def __init__(self, settings: Optional[GenerationSettings] = None) -> None:
        self._settings = settings or GenerationSettings()
        self._type_space: Optional[TypeSpace] = None
        self._methods: tuple[GeneratedMethod, ...] = ()
        self._dependencies: tuple[Dependency, ...] = ()

    @property
    def settings(self) -> GenerationSettings:
        return self._settings

    @property
    def type_space(self) -> TypeSpace:
        if self._type_space is None:
            raise RuntimeError("generate_text() has not completed yet")
        return self._type_space

    @property
    def methods(self) -> tuple[GeneratedMethod, ...]:
        return self._methods

    def dependencies(self) -> tuple[Dependency, ...]:
        """Dependencies required by the most recently generated text."""
        return self._dependencies

    def generate_text(self, document: JSONObject) -> GenerationOutput:
        """Generate the client module for a parsed OpenAPI document.

        Args:
            document (JSONObject): Parsed OpenAPI document.

        Returns:
            GenerationOutput: Rendered source text, dependencies and warnings.

        Raises:
            GenerationError: If any schema or operation could not be generated.
        """
        component_names = list(component_schemas(document))
        type_space = TypeSpace(preferred_names=component_names)
        resolver = SchemaResolver(document, type_space)
        compiler = OperationCompiler(resolver, self._settings)
        diagnostics = DiagnosticCollector()

        logger.debug("Resolving %d component schemas", len(component_names))
        for name in component_names:
            try:
                resolver.resolve_component(name)
            except (UnsupportedInputError, NamingConflictError) as exc:
                diagnostics.add(exc.diagnostic())

        operations, warnings = resolve_operations(_load_path_map(document))
        logger.debug("Compiling %d operations", len(operations))
        methods: list[GeneratedMethod] = []
        for spec in operations:
            try:
                methods.append(compiler.compile(spec))
            except (UnsupportedInputError, NamingConflictError) as exc:
                diagnostics.add(exc.diagnostic())

        diagnostics.raise_if_any()
        try:
            type_space.freeze()
        except InternalConsistencyError as exc:
            raise GenerationError((exc.diagnostic(),)) from exc

        renderer = RustRenderer(type_space, self._settings)
        source_text = renderer.render(methods)
        dependencies = renderer.dependencies(methods)

        self._type_space = type_space
        self._methods = tuple(methods)
        self._dependencies = dependencies
        logger.debug("Generated %d types and %d methods", len(type_space), len(methods))
        return GenerationOutput(
            source_text=source_text,
            dependencies=dependencies,
            warnings=tuple(warnings),
        )


@dataclass(frozen=True)
class GenerationRun:
    """Result of generating and writing one crate."""

    output: GenerationOutput
    written: tuple[Path, ...]
    type_space: TypeSpace


def run_generation(
    *,
    input_path: Path,
    output_dir: Path,
    settings: GenerationSettings,
    crate: CrateOptions,
) -> GenerationRun:
    """Generate a client crate from an OpenAPI document on disk.

    Nothing is written when loading or generation fails.

    Args:
        input_path (Path): Path to the input OpenAPI document (JSON or YAML).
        output_dir (Path): Crate root where files are written.
        settings (GenerationSettings): Generation settings.
        crate (CrateOptions): Manifest and formatting options.

    Returns:
        GenerationRun: Generated output, written files and the final type space.
    """
    document = load_openapi_document(input_path)
    ensure_supported_version(get_openapi_version(document))

    generator = Generator(settings)
    output = generator.generate_text(document)
    crate = replace(crate, transclude_support_code=settings.transclude_support_code)
    written = write_crate(output_dir=output_dir, output=output, crate=crate)
    return GenerationRun(
        output=output,
        written=tuple(written),
        type_space=generator.type_space,
    )


def _load_path_map(document: JSONObject) -> dict[str, JSONObject]:
    raw_paths = document.get("paths")
    if raw_paths is None:
        return {}
    if not isinstance(raw_paths, dict):
        raise OpenAPILoadError("OpenAPI document 'paths' must be an object")

    path_map: dict[str, JSONObject] = {}
    for path, path_item in raw_paths.items():
        if isinstance(path, str) and isinstance(path_item, dict):
            path_map[path] = path_item
    return path_map
