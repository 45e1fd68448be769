"""Filesystem writers for generated client crates."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import toml

from .codegen_rust import SUPPORT_MODULE, load_support_code
from .model_types import GenerationOutput

logger = logging.getLogger(__name__)

DEFAULT_CRATE_VERSION = "0.1.0"
RUST_EDITION = "2021"


class WriteError(RuntimeError):
    """Raised when output files cannot be written."""


@dataclass(frozen=True)
class CrateOptions:
    """Where and how the generated crate is written."""

    name: Optional[str] = None
    version: str = DEFAULT_CRATE_VERSION
    write_manifest: bool = False
    transclude_support_code: bool = True
    format_with_rustfmt: bool = False


def render_manifest(output: GenerationOutput, crate: CrateOptions) -> str:
    """Render `Cargo.toml` for the generated crate.

    Args:
        output (GenerationOutput): Generated text and its dependencies.
        crate (CrateOptions): Crate name and version.

    Returns:
        str: TOML manifest text.
    """
    if not crate.name:
        raise WriteError("A crate name is required to write Cargo.toml")
    manifest = {
        "package": {
            "name": crate.name,
            "version": crate.version,
            "edition": RUST_EDITION,
        },
        "dependencies": {
            dependency.name: dependency.manifest_value() for dependency in output.dependencies
        },
    }
    return toml.dumps(manifest)


def render_lib(output: GenerationOutput, *, transclude_support_code: bool) -> str:
    if transclude_support_code:
        return f"mod {SUPPORT_MODULE};\n\n{output.source_text}"
    return output.source_text


def write_crate(*, output_dir: Path, output: GenerationOutput, crate: CrateOptions) -> list[Path]:
    """Write the generated crate below `output_dir`.

    Args:
        output_dir (Path): Crate root directory; created when missing.
        output (GenerationOutput): Generated text and its dependencies.
        crate (CrateOptions): Manifest and support-code options.

    Returns:
        list[Path]: Files written, in write order.
    """
    src_dir = output_dir / "src"
    try:
        src_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WriteError(f"Failed to create directory {src_dir}: {exc}") from exc

    written: list[Path] = []
    if crate.write_manifest:
        manifest_path = output_dir / "Cargo.toml"
        _write_file(manifest_path, render_manifest(output, crate))
        written.append(manifest_path)

    lib_path = src_dir / "lib.rs"
    lib_text = render_lib(output, transclude_support_code=crate.transclude_support_code)
    _write_file(lib_path, lib_text)
    written.append(lib_path)

    if crate.transclude_support_code:
        support_path = src_dir / f"{SUPPORT_MODULE}.rs"
        _write_file(support_path, load_support_code())
        written.append(support_path)

    if crate.format_with_rustfmt:
        _run_rustfmt(paths=[path for path in written if path.suffix == ".rs"])
    return written


def _run_rustfmt(*, paths: list[Path]) -> None:
    command = ["rustfmt", "--edition", RUST_EDITION, *(str(path) for path in paths)]
    command_desc = " ".join(str(path) for path in paths)
    try:
        subprocess.run(
            command,
            check=True,
            capture_output=True,
            text=True,
        )
    except OSError as exc:
        raise WriteError(f"Failed to execute rustfmt for {command_desc}: {exc}") from exc
    except subprocess.CalledProcessError as exc:
        error_text = exc.stderr.strip() or exc.stdout.strip() or str(exc)
        raise WriteError(f"rustfmt failed for {command_desc}: {error_text}") from exc


def _write_file(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise WriteError(f"Failed to write file {path}: {exc}") from exc
    logger.debug("Wrote %s", path)
