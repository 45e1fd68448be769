"""Command line interface for OpenAPI to Rust client generation."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from .diagnostics import GenerationError, InternalConsistencyError
from .generator import CrateOptions, OpenAPILoadError, WriteError, run_generation
from .settings import (
    GenerationSettings,
    InterfaceStyle,
    SettingsError,
    TagStyle,
    load_settings_file,
)
from .type_space import TypeSpace
from .writer import DEFAULT_CRATE_VERSION

_RULE = "-" * 53


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser."""
    parser = argparse.ArgumentParser(
        prog="openapi-to-rust-generator",
        description="Generate a Rust API client crate from an OpenAPI 3 document",
    )
    parser.add_argument(
        "-i", "--input", required=True, help="Path to an OpenAPI document (JSON or YAML)"
    )
    parser.add_argument(
        "-o", "--output", required=True, help="Output directory for the Rust crate"
    )
    parser.add_argument(
        "--output-cargo-toml",
        action="store_true",
        help="Also write Cargo.toml (requires --name)",
    )
    parser.add_argument("-n", "--name", help="Target Rust crate name")
    parser.add_argument(
        "-v",
        "--version",
        default=DEFAULT_CRATE_VERSION,
        help=f"Target Rust crate version (default: {DEFAULT_CRATE_VERSION})",
    )
    parser.add_argument(
        "--interface",
        choices=[style.value for style in InterfaceStyle],
        help="Generated method signature style",
    )
    parser.add_argument(
        "--tags",
        choices=[style.value for style in TagStyle],
        help="How methods are grouped by operation tags",
    )
    parser.add_argument(
        "--no-transclude",
        action="store_true",
        help="Depend on the support crate instead of writing the support module",
    )
    parser.add_argument(
        "--client-version",
        help="Version requirement for the support crate when it is not transcluded",
    )
    parser.add_argument("--config", help="TOML file with a [generator] settings table")
    parser.add_argument(
        "--format",
        action="store_true",
        help="Run rustfmt on the generated sources",
    )
    parser.add_argument(
        "--show-types",
        action="store_true",
        help="Print the generated type space",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def resolve_settings(args: argparse.Namespace) -> GenerationSettings:
    """Combine the optional settings file with command line overrides."""
    settings = GenerationSettings()
    if args.config:
        settings = load_settings_file(Path(args.config))
    if args.interface:
        settings = settings.with_interface(InterfaceStyle(args.interface))
    if args.tags:
        settings = settings.with_tags(TagStyle(args.tags))
    updates: dict[str, object] = {}
    if args.no_transclude:
        updates["transclude_support_code"] = False
    if args.client_version:
        updates["client_version_constraint"] = args.client_version
    if updates:
        settings = settings.model_copy(update=updates)
    return settings


def format_type_space(type_space: TypeSpace) -> str:
    """Render the type table printed by `--show-types`."""
    lines = [_RULE, " TYPE SPACE", _RULE]
    for index, (type_id, _) in enumerate(type_space.iter_types()):
        lines.append(f"{index:>4}  {type_space.describe(type_id)}")
    lines.append(_RULE)
    return "\n".join(lines)


def main(argv: list[str] | None = None) -> int:
    """Run CLI and return process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if args.output_cargo_toml and not args.name:
        parser.error("--output-cargo-toml requires --name")

    try:
        settings = resolve_settings(args)
    except SettingsError as exc:
        parser.error(str(exc))
        return 2

    crate = CrateOptions(
        name=args.name,
        version=args.version,
        write_manifest=bool(args.output_cargo_toml),
        format_with_rustfmt=bool(args.format),
    )
    try:
        run = run_generation(
            input_path=Path(args.input),
            output_dir=Path(args.output),
            settings=settings,
            crate=crate,
        )
    except GenerationError as exc:
        for diagnostic in exc.diagnostics:
            print(f"error: {diagnostic}")
        print(f"generation failed with {len(exc.diagnostics)} error(s)")
        return 1
    except InternalConsistencyError as exc:
        print(f"error: {exc.diagnostic()}")
        return 1
    except (OpenAPILoadError, WriteError) as exc:
        parser.error(str(exc))
        return 2

    for warning in run.output.warnings:
        print(f"Warning: {warning}")

    if args.show_types:
        print(format_type_space(run.type_space))

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
