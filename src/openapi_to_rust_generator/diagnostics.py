"""Diagnostics and error taxonomy for one generation run."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class DiagnosticKind(StrEnum):
    """Category of a generation diagnostic."""

    UNSUPPORTED_INPUT = "unsupported-input"
    NAMING_CONFLICT = "naming-conflict"
    INTERNAL_CONSISTENCY = "internal-consistency"


@dataclass(frozen=True)
class Diagnostic:
    """One problem found while building the type space or compiling operations."""

    kind: DiagnosticKind
    path: str
    message: str

    def __str__(self) -> str:
        return f"[{self.kind}] {self.path}: {self.message}"


class UnsupportedInputError(RuntimeError):
    """Raised when a schema or operation cannot be modeled."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message

    def diagnostic(self) -> Diagnostic:
        """Return the diagnostic describing this error."""
        return Diagnostic(DiagnosticKind.UNSUPPORTED_INPUT, self.path, self.message)


class NamingConflictError(RuntimeError):
    """Raised when no well-formed fallback name remains for a candidate."""

    def __init__(self, candidate: str) -> None:
        super().__init__(f"Unable to allocate a unique name for {candidate!r}")
        self.candidate = candidate

    def diagnostic(self) -> Diagnostic:
        """Return the diagnostic describing this error."""
        return Diagnostic(DiagnosticKind.NAMING_CONFLICT, self.candidate, str(self))


class InternalConsistencyError(RuntimeError):
    """Raised when the type space violates its own invariants."""

    def diagnostic(self) -> Diagnostic:
        """Return the diagnostic describing this error."""
        return Diagnostic(DiagnosticKind.INTERNAL_CONSISTENCY, "<type space>", str(self))


class GenerationError(RuntimeError):
    """Raised when generation fails; carries every collected diagnostic."""

    def __init__(self, diagnostics: tuple[Diagnostic, ...]) -> None:
        self.diagnostics = diagnostics
        count = len(diagnostics)
        summary = "\n".join(f"  {diagnostic}" for diagnostic in diagnostics)
        super().__init__(f"Generation failed with {count} error(s):\n{summary}")


class DiagnosticCollector:
    """Accumulate diagnostics in first-seen order without duplicates."""

    def __init__(self) -> None:
        self._diagnostics: list[Diagnostic] = []

    def add(self, diagnostic: Diagnostic) -> None:
        if diagnostic not in self._diagnostics:
            self._diagnostics.append(diagnostic)

    def __bool__(self) -> bool:
        return bool(self._diagnostics)

    def __len__(self) -> int:
        return len(self._diagnostics)

    def raise_if_any(self) -> None:
        """Raise `GenerationError` when at least one diagnostic was collected."""
        if self._diagnostics:
            raise GenerationError(tuple(self._diagnostics))
