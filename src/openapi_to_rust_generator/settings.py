"""Generation settings and configuration-file loading."""

from __future__ import annotations

from enum import StrEnum
from pathlib import Path
from typing import Optional

import toml
from pydantic import BaseModel, ConfigDict, ValidationError

SETTINGS_TABLE = "generator"


class SettingsError(RuntimeError):
    """Raised when a settings file cannot be read or validated."""


class InterfaceStyle(StrEnum):
    """Signature shape of generated methods."""

    POSITIONAL = "positional"
    BUILDER = "builder"


class TagStyle(StrEnum):
    """How generated methods are attached to client surfaces."""

    MERGED = "merged"
    SEPARATE = "separate"


class GenerationSettings(BaseModel):
    """Immutable configuration resolved once per generation run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    interface: InterfaceStyle = InterfaceStyle.POSITIONAL
    tags: TagStyle = TagStyle.MERGED
    transclude_support_code: bool = True
    client_version_constraint: Optional[str] = None

    def with_interface(self, interface: InterfaceStyle) -> GenerationSettings:
        return self.model_copy(update={"interface": InterfaceStyle(interface)})

    def with_tags(self, tags: TagStyle) -> GenerationSettings:
        return self.model_copy(update={"tags": TagStyle(tags)})


def load_settings_file(path: Path) -> GenerationSettings:
    """Load settings from the `[generator]` table of a TOML file.

    Args:
        path (Path): TOML file to read.

    Returns:
        GenerationSettings: Validated settings; missing keys keep their defaults.
    """
    try:
        payload = toml.load(path)
    except OSError as exc:
        raise SettingsError(f"Failed to read settings file {path}: {exc}") from exc
    except toml.TomlDecodeError as exc:
        raise SettingsError(f"Failed to parse TOML in {path}: {exc}") from exc

    table = payload.get(SETTINGS_TABLE, {})
    if not isinstance(table, dict):
        raise SettingsError(f"[{SETTINGS_TABLE}] in {path} must be a table")

    try:
        return GenerationSettings.model_validate(table)
    except ValidationError as exc:
        raise SettingsError(f"Invalid settings in {path}: {exc}") from exc
