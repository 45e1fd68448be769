"""Tests for the command line entry point."""

from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest
import toml

from openapi_to_rust_generator.cli import build_parser, main, resolve_settings
from openapi_to_rust_generator.settings import InterfaceStyle, TagStyle
from .fixture_helpers import fixture_file

_SRC_DIR = Path(__file__).resolve().parents[1] / "src"


def test_cli_writes_crate(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    output_dir = tmp_path / "petstore"

    exit_code = main(
        [
            "-i",
            str(fixture_file("petstore.yaml")),
            "-o",
            str(output_dir),
            "--output-cargo-toml",
            "-n",
            "petstore-client",
            "--show-types",
        ]
    )

    assert exit_code == 0
    assert (output_dir / "src" / "lib.rs").is_file()
    assert (output_dir / "src" / "openapi_client_support.rs").is_file()
    manifest = toml.load(output_dir / "Cargo.toml")
    assert manifest["package"]["version"] == "0.1.0"
    assert "chrono" in manifest["dependencies"]
    stdout = capsys.readouterr().out
    assert " TYPE SPACE" in stdout
    assert "struct Pet {" in stdout


def test_cli_no_transclude(tmp_path: Path) -> None:
    exit_code = main(
        [
            "-i",
            str(fixture_file("recursive.json")),
            "-o",
            str(tmp_path),
            "--output-cargo-toml",
            "-n",
            "recursive",
            "--no-transclude",
            "--client-version",
            "0.4",
        ]
    )

    assert exit_code == 0
    assert not (tmp_path / "src" / "openapi_client_support.rs").exists()
    manifest = toml.load(tmp_path / "Cargo.toml")
    assert manifest["dependencies"]["openapi-client-support"] == "0.4"


def test_cargo_toml_requires_name(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["-i", str(fixture_file("petstore.yaml")), "-o", str(tmp_path), "--output-cargo-toml"])
    assert exc_info.value.code == 2


def test_missing_input_is_a_usage_error(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as exc_info:
        main(["-i", str(tmp_path / "missing.yaml"), "-o", str(tmp_path / "out")])
    assert exc_info.value.code == 2


def test_generation_errors_are_listed(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    document = tmp_path / "broken.yaml"
    document.write_text(
        "openapi: 3.0.3\n"
        "paths: {}\n"
        "components:\n"
        "  schemas:\n"
        "    Remote:\n"
        "      $ref: 'other.yaml#/Remote'\n"
        "    Never: false\n",
        encoding="utf-8",
    )
    output_dir = tmp_path / "out"

    exit_code = main(["-i", str(document), "-o", str(output_dir)])

    assert exit_code == 1
    stdout = capsys.readouterr().out
    assert stdout.count("error: ") == 2
    assert "generation failed with 2 error(s)" in stdout
    assert not output_dir.exists()


def test_config_file_with_command_line_override(tmp_path: Path) -> None:
    config = tmp_path / "generator.toml"
    config.write_text('[generator]\ninterface = "builder"\ntags = "separate"\n', encoding="utf-8")
    args = build_parser().parse_args(
        ["-i", "in.yaml", "-o", "out", "--config", str(config), "--tags", "merged"]
    )

    settings = resolve_settings(args)

    assert settings.interface is InterfaceStyle.BUILDER
    assert settings.tags is TagStyle.MERGED


def test_invalid_config_is_a_usage_error(tmp_path: Path) -> None:
    config = tmp_path / "generator.toml"
    config.write_text('[generator]\ninterface = "named"\n', encoding="utf-8")

    with pytest.raises(SystemExit) as exc_info:
        main(["-i", "in.yaml", "-o", str(tmp_path), "--config", str(config)])
    assert exc_info.value.code == 2


def test_cli_help_screen() -> None:
    """Running the CLI help should succeed and print usage information."""
    python_path = [str(_SRC_DIR), os.environ.get("PYTHONPATH", "")]
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(filter(None, python_path))}
    result = subprocess.run(
        [sys.executable, "-m", "openapi_to_rust_generator", "--help"],
        check=False,
        capture_output=True,
        text=True,
        env=env,
    )
    assert result.returncode == 0
    assert "usage:" in result.stdout.lower()
