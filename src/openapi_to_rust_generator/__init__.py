"""OpenAPI to Rust client generator package."""

from __future__ import annotations

from .cli import main
from .generator import GenerationRun, Generator, run_generation

__all__ = ["GenerationRun", "Generator", "main", "run_generation"]
