"""Tests for generation settings."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from openapi_to_rust_generator.settings import (
    GenerationSettings,
    InterfaceStyle,
    SettingsError,
    TagStyle,
    load_settings_file,
)


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "generator.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults() -> None:
    settings = GenerationSettings()

    assert settings.interface is InterfaceStyle.POSITIONAL
    assert settings.tags is TagStyle.MERGED
    assert settings.transclude_support_code
    assert settings.client_version_constraint is None


def test_settings_are_immutable() -> None:
    settings = GenerationSettings()
    builder = settings.with_interface(InterfaceStyle.BUILDER)

    assert settings.interface is InterfaceStyle.POSITIONAL
    assert builder.interface is InterfaceStyle.BUILDER
    with pytest.raises(ValidationError):
        settings.tags = TagStyle.SEPARATE  # type: ignore[misc]


def test_with_tags_accepts_plain_strings() -> None:
    assert GenerationSettings().with_tags("separate").tags is TagStyle.SEPARATE  # type: ignore[arg-type]


def test_load_settings_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        '[generator]\ninterface = "builder"\ntransclude_support_code = false\n'
        'client_version_constraint = "0.3"\n',
    )

    settings = load_settings_file(path)

    assert settings.interface is InterfaceStyle.BUILDER
    assert settings.tags is TagStyle.MERGED
    assert not settings.transclude_support_code
    assert settings.client_version_constraint == "0.3"


def test_missing_table_keeps_defaults(tmp_path: Path) -> None:
    path = _write(tmp_path, '[package]\nname = "other"\n')
    assert load_settings_file(path) == GenerationSettings()


@pytest.mark.parametrize(
    ("text", "message"),
    [
        ('[generator]\ninterface = "keyword"\n', "Invalid settings"),
        ('[generator]\nunknown = true\n', "Invalid settings"),
        ('generator = "flat"\n', "must be a table"),
        ("[generator\n", "Failed to parse TOML"),
    ],
)
def test_invalid_settings_files(tmp_path: Path, text: str, message: str) -> None:
    with pytest.raises(SettingsError, match=message):
        load_settings_file(_write(tmp_path, text))


def test_unreadable_settings_file(tmp_path: Path) -> None:
    with pytest.raises(SettingsError, match="Failed to read"):
        load_settings_file(tmp_path / "absent.toml")
