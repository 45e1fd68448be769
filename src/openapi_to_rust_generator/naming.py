"""Naming helpers and deterministic identifier allocation for emitted Rust code."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Optional

from .diagnostics import NamingConflictError
from .json_types import JSONObject
from .model_types import OperationSpec

HTTP_METHODS: tuple[str, ...] = (
    "get",
    "put",
    "post",
    "delete",
    "patch",
    "head",
    "options",
    "trace",
)

RUST_KEYWORDS: frozenset[str] = frozenset(
    {
        "abstract", "as", "async", "await", "become", "box", "break", "const",
        "continue", "crate", "do", "dyn", "else", "enum", "extern", "false",
        "final", "fn", "for", "gen", "if", "impl", "in", "let", "loop", "macro",
        "match", "mod", "move", "mut", "override", "priv", "pub", "ref",
        "return", "self", "Self", "static", "struct", "super", "trait", "true",
        "try", "type", "typeof", "unsafe", "unsized", "use", "virtual", "where",
        "while", "yield",
    }
)  # fmt: skip

# Names the emitted `types` module uses unqualified.
RESERVED_TYPE_NAMES: frozenset[str] = frozenset(
    {
        "Self", "Option", "Some", "None", "Result", "Ok", "Err", "Box", "Vec",
        "String", "ToString", "Default", "Clone", "Copy", "Debug", "Deserialize",
        "Serialize", "From",
    }
)  # fmt: skip

_MAX_SUFFIX = 10_000

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_WORD_SPLIT_RE = re.compile(r"[^0-9a-zA-Z]+")
_PATH_PARAM_RE = re.compile(r"^\{(?P<name>[^{}]+)\}$")


class IdentifierCase(StrEnum):
    SNAKE = "snake"
    PASCAL = "pascal"


def _words(raw: str) -> list[str]:
    text = _CAMEL_BOUNDARY_RE.sub("_", raw)
    return [word for word in _WORD_SPLIT_RE.split(text) if word]


def snake_case(raw: str) -> str:
    """Convert arbitrary text into snake_case words (no keyword handling)."""
    return "_".join(word.lower() for word in _words(raw))


def pascal_case(raw: str) -> str:
    """Convert arbitrary text into PascalCase words (no keyword handling)."""
    return "".join(word[:1].upper() + word[1:].lower() for word in _words(raw))


def sanitize_identifier(
    raw: str,
    *,
    case: IdentifierCase = IdentifierCase.SNAKE,
    reserve_type_names: bool = True,
) -> str:
    """Convert arbitrary text into a valid Rust identifier in the requested case.

    Enum variants live in their own namespace, so they pass
    `reserve_type_names=False` and only keywords are rewritten for them.
    """
    if case is IdentifierCase.SNAKE:
        text = snake_case(raw) or "value"
        if text[0].isdigit():
            text = f"x_{text}"
        if text in RUST_KEYWORDS:
            text = f"{text}_"
        return text

    text = pascal_case(raw) or "Value"
    if text[0].isdigit():
        text = f"Type{text}"
    if text in RUST_KEYWORDS or (reserve_type_names and text in RESERVED_TYPE_NAMES):
        text = f"{text}Type"
    return text


def is_valid_identifier(name: str) -> bool:
    """Return whether `name` is a usable, non-keyword Rust identifier."""
    return bool(re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name)) and name not in RUST_KEYWORDS


class NameAllocator:
    """Assign unique identifiers within one emission scope.

    Collisions are resolved by appending a numeric suffix in first-seen order.
    Preferred names are held back so that only an allocation that asks for them
    explicitly receives the unsuffixed form.
    """

    def __init__(
        self,
        *,
        case: IdentifierCase = IdentifierCase.PASCAL,
        reserved: Iterable[str] = (),
        preferred: Iterable[str] = (),
        reserve_type_names: bool = True,
    ) -> None:
        self._case = case
        self._reserve_type_names = reserve_type_names
        self._used: set[str] = set(reserved)
        self._preferred: set[str] = {
            sanitize_identifier(name, case=case, reserve_type_names=reserve_type_names)
            for name in preferred
        } - self._used

    def allocate(self, candidate: str, *, preferred: bool = False) -> str:
        base = sanitize_identifier(
            candidate, case=self._case, reserve_type_names=self._reserve_type_names
        )
        if preferred and base in self._preferred:
            self._preferred.discard(base)
            self._used.add(base)
            return base
        if base not in self._used and base not in self._preferred:
            self._used.add(base)
            return base

        separator = "_" if self._case is IdentifierCase.SNAKE else ""
        for suffix in range(2, _MAX_SUFFIX):
            name = f"{base}{separator}{suffix}"
            if name not in self._used and name not in self._preferred:
                self._used.add(name)
                return name
        raise NamingConflictError(candidate)

    def __contains__(self, name: str) -> bool:
        return name in self._used


@dataclass(frozen=True)
class NameHint:
    """Naming inputs for a schema, in preference order: title, `$ref` name, position."""

    position: str
    title: Optional[str] = None
    ref_name: Optional[str] = None

    def candidate(self) -> str:
        return self.title or self.ref_name or self.position

    @property
    def from_reference(self) -> bool:
        return self.title is None and self.ref_name is not None

    def child(self, suffix: str) -> NameHint:
        return NameHint(position=f"{pascal_case(self.candidate())}{pascal_case(suffix)}")


def path_to_method_name(method: str, path: str) -> str:
    """Create a method name from the HTTP method and path template."""
    segments = [segment for segment in path.split("/") if segment]
    normalized_segments: list[str] = [method]
    for segment in segments:
        match = _PATH_PARAM_RE.match(segment)
        if match:
            normalized_segments.append(f"by_{snake_case(match.group('name'))}")
            continue
        normalized_segments.append(snake_case(segment))
    return sanitize_identifier("_".join(segment for segment in normalized_segments if segment))


@dataclass(frozen=True)
class _OperationCandidate:
    path: str
    method: str
    operation: JSONObject
    path_item: JSONObject
    operation_id: Optional[str]


def _collect_operation_candidates(raw_paths: dict[str, JSONObject]) -> list[_OperationCandidate]:
    candidates: list[_OperationCandidate] = []
    for path, path_item in raw_paths.items():
        if not isinstance(path_item, dict):
            continue
        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not isinstance(operation, dict):
                continue
            candidates.append(
                _OperationCandidate(
                    path=path,
                    method=method,
                    operation=operation,
                    path_item=path_item,
                    operation_id=_normalize_operation_id(operation.get("operationId")),
                )
            )
    return candidates


def _normalize_operation_id(operation_id_raw: object) -> Optional[str]:
    if isinstance(operation_id_raw, str) and operation_id_raw.strip():
        return sanitize_identifier(operation_id_raw.strip())
    return None


def _conflicting_operation_ids(candidates: list[_OperationCandidate]) -> set[str]:
    counts = Counter(candidate.operation_id for candidate in candidates if candidate.operation_id)
    return {name for name, count in counts.items() if count > 1}


def resolve_operations(
    raw_paths: dict[str, JSONObject],
) -> tuple[list[OperationSpec], list[str]]:
    """Extract operations in document order and name them.

    Operations are named from `operationId`; missing or conflicting ids fall back
    to a name derived from the HTTP method and path.
    """
    candidates = _collect_operation_candidates(raw_paths)
    conflicting_ids = _conflicting_operation_ids(candidates)

    warnings: list[str] = []
    if conflicting_ids:
        joined = ", ".join(sorted(conflicting_ids))
        warnings.append(
            f"Conflicting operationId values detected; using path-based naming for: {joined}"
        )

    resolved: list[OperationSpec] = []
    for candidate in candidates:
        operation_id = candidate.operation_id
        if operation_id is not None and operation_id not in conflicting_ids:
            method_name = operation_id
        else:
            method_name = path_to_method_name(candidate.method, candidate.path)
        resolved.append(
            OperationSpec(
                path=candidate.path,
                method=candidate.method,
                method_name=method_name,
                operation=candidate.operation,
                path_item=candidate.path_item,
            )
        )
    return resolved, warnings
