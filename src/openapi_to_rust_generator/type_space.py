"""Deduplicated arena of every type emitted by one generation run."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, replace
from typing import Optional, TypeAlias, Union

from .diagnostics import InternalConsistencyError, NamingConflictError, UnsupportedInputError
from .model_types import (
    Array,
    Enum,
    EnumVariant,
    Fingerprint,
    Map,
    OptionOf,
    Primitive,
    StringNewtype,
    Struct,
    TypeDetails,
    TypeEntry,
    TypeId,
    Unit,
    Unresolved,
)
from .naming import IdentifierCase, NameAllocator, NameHint, sanitize_identifier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TypeShape:
    """A canonical schema shape ready to be registered in the type space."""

    details: TypeDetails
    hint: NameHint
    origin: str
    description: Optional[str] = None


@dataclass(frozen=True)
class _Forward:
    target: TypeId


@dataclass(frozen=True)
class _Poisoned:
    ref: str


_Slot: TypeAlias = Union[TypeEntry, Unresolved, _Forward, _Poisoned]


class TypeSpace:
    """Registry mapping schema shapes to unique, named `TypeId` handles.

    Two shapes with the same structural fingerprint always map to the same
    `TypeId`. References are guarded by an `Unresolved` placeholder while their
    target is being built, so recursive schemas terminate: re-entering a
    reference returns the placeholder, which is backfilled once the outer
    resolution completes. Indices are never invalidated.
    """

    def __init__(self, *, preferred_names: Iterable[str] = ()) -> None:
        self._slots: list[_Slot] = []
        self._by_fingerprint: dict[Fingerprint, TypeId] = {}
        self._by_ref: dict[str, TypeId] = {}
        self._pending: set[int] = set()
        self._names = NameAllocator(case=IdentifierCase.PASCAL, preferred=preferred_names)
        self._aliases: list[tuple[str, TypeId]] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def aliases(self) -> tuple[tuple[str, TypeId], ...]:
        return tuple((name, self.canonical(type_id)) for name, type_id in self._aliases)

    def __len__(self) -> int:
        return sum(1 for slot in self._slots if isinstance(slot, TypeEntry))

    def canonical(self, type_id: TypeId) -> TypeId:
        """Follow backfilled forwards to the id that owns the entry."""
        slot = self._slots[type_id.index]
        while isinstance(slot, _Forward):
            type_id = slot.target
            slot = self._slots[type_id.index]
        return type_id

    def entry(self, type_id: TypeId) -> TypeEntry:
        slot = self._slots[self.canonical(type_id).index]
        if not isinstance(slot, TypeEntry):
            raise InternalConsistencyError(f"Type {type_id} is not resolved ({slot!r})")
        return slot

    def is_pending(self, type_id: TypeId) -> bool:
        """Whether `type_id` is a placeholder whose resolution is still in progress."""
        return self.canonical(type_id).index in self._pending

    def lookup_fingerprint(self, fingerprint: Fingerprint) -> Optional[TypeId]:
        return self._by_fingerprint.get(fingerprint)

    def lookup_reference(self, ref: str) -> Optional[TypeId]:
        type_id = self._by_ref.get(ref)
        return None if type_id is None else self.canonical(type_id)

    def get_or_create(self, shape: TypeShape) -> TypeId:
        """Return the id for `shape`, creating and naming a new entry if needed."""
        self._ensure_mutable()
        fingerprint = self.fingerprint(shape.details)
        existing = self._by_fingerprint.get(fingerprint)
        if existing is not None:
            return existing

        type_id = TypeId(len(self._slots))
        self._slots.append(self._new_entry(shape, fingerprint))
        self._by_fingerprint[fingerprint] = type_id
        return type_id

    def get_or_create_reference(
        self,
        ref: str,
        build: Callable[[], Union[TypeShape, TypeId]],
    ) -> TypeId:
        """Resolve a reference through a placeholder so that cycles terminate.

        Args:
            ref (str): Reference path used as placeholder key.
            build (Callable[[], Union[TypeShape, TypeId]]): Builds the target shape,
                or returns an existing id when the target is itself an alias.

        Returns:
            TypeId: Id of the referenced type; the placeholder while it is pending.
        """
        self._ensure_mutable()
        existing = self._by_ref.get(ref)
        if existing is not None:
            target = self.canonical(existing)
            if isinstance(self._slots[target.index], _Poisoned):
                raise UnsupportedInputError(ref, "depends on a schema that could not be generated")
            return target

        placeholder = TypeId(len(self._slots))
        self._slots.append(Unresolved(ref))
        self._pending.add(placeholder.index)
        self._by_ref[ref] = placeholder
        logger.debug("Reserved placeholder %s for %s", placeholder, ref)
        try:
            built = build()
        except (UnsupportedInputError, NamingConflictError):
            self._slots[placeholder.index] = _Poisoned(ref)
            self._pending.discard(placeholder.index)
            raise
        return self._backfill(placeholder, ref, built)

    def register_component(self, name: str, type_id: TypeId) -> None:
        """Make sure a document component is reachable under its own name."""
        self._ensure_mutable()
        type_id = self.canonical(type_id)
        entry = self.entry(type_id)
        if entry.declared and entry.name == sanitize_identifier(name, case=IdentifierCase.PASCAL):
            return
        alias = self._names.allocate(name, preferred=True)
        self._aliases.append((alias, type_id))
        logger.debug("Component %s is emitted as alias %s of %s", name, alias, type_id)

    def freeze(self) -> None:
        """Make the space read-only; every placeholder must have been backfilled."""
        if self._pending:
            refs = sorted(
                slot.ref
                for slot in (self._slots[index] for index in self._pending)
                if isinstance(slot, Unresolved)
            )
            raise InternalConsistencyError(f"Placeholders left unresolved: {', '.join(refs)}")
        poisoned = [slot.ref for slot in self._slots if isinstance(slot, _Poisoned)]
        if poisoned:
            raise InternalConsistencyError(f"Failed references left in type space: {poisoned}")
        self._frozen = True

    def iter_types(self) -> Iterator[tuple[TypeId, TypeEntry]]:
        for index, slot in enumerate(self._slots):
            if isinstance(slot, TypeEntry):
                yield TypeId(index), slot

    def fingerprint(
        self, details: TypeDetails, *, self_id: Optional[TypeId] = None
    ) -> Fingerprint:
        """Structural equality key over a shape and its canonical children.

        Edges back to `self_id` are keyed as `"self"` instead of by index, so
        isomorphic self-recursive references share one entry.
        """
        if isinstance(details, Primitive):
            return ("primitive", details.kind.value)
        if isinstance(details, StringNewtype):
            return (
                "string",
                details.format,
                details.pattern,
                details.min_length,
                details.max_length,
            )
        if isinstance(details, Struct):
            fields = tuple(
                (
                    field.source_name,
                    self._key(field.type_id, self_id),
                    field.required,
                    field.boxed,
                    field.flatten,
                )
                for field in details.fields
            )
            return ("struct", fields, details.deny_unknown_fields)
        if isinstance(details, Enum):
            variants = tuple(
                self._variant_key(details, variant, self_id) for variant in details.variants
            )
            return ("enum", details.tag, details.untagged, details.integer, variants)
        if isinstance(details, Array):
            return ("array", self._key(details.element, self_id))
        if isinstance(details, Map):
            return ("map", self._key(details.value, self_id))
        if isinstance(details, OptionOf):
            return ("option", self._key(details.inner, self_id), details.boxed)
        if isinstance(details, Unit):
            return ("unit",)
        raise InternalConsistencyError(f"Cannot fingerprint placeholder {details!r}")

    def describe(self, type_id: TypeId) -> str:
        """One-line human readable description of an entry."""
        entry = self.entry(type_id)
        details = entry.details
        if isinstance(details, Primitive):
            return f"primitive {details.kind.value}"
        if isinstance(details, StringNewtype):
            if entry.name is not None:
                return f"string newtype {entry.name}"
            return f"string format {details.format}"
        if isinstance(details, Struct):
            fields = ", ".join(
                f"{field.name}: {self.canonical(field.type_id)}"
                + ("" if field.required else "?")
                + (" (boxed)" if field.boxed else "")
                for field in details.fields
            )
            return f"struct {entry.name} {{ {fields} }}"
        if isinstance(details, Enum):
            variants = ", ".join(variant.name for variant in details.variants)
            return f"enum {entry.name} [{variants}]"
        if isinstance(details, Array):
            return f"array of {self.canonical(details.element)}"
        if isinstance(details, Map):
            return f"map of {self.canonical(details.value)}"
        if isinstance(details, OptionOf):
            return f"option of {self.canonical(details.inner)}"
        return "unit"

    def _key(self, type_id: TypeId, self_id: Optional[TypeId] = None) -> Union[int, str]:
        canonical = self.canonical(type_id)
        if self_id is not None and canonical == self_id:
            return "self"
        return canonical.index

    def _variant_key(
        self, details: Enum, variant: EnumVariant, self_id: Optional[TypeId]
    ) -> tuple[object, ...]:
        payload = None if variant.payload is None else self._key(variant.payload, self_id)
        if details.untagged:
            return (payload, variant.boxed)
        return (variant.rename or variant.name, variant.value, payload, variant.boxed)

    def _new_entry(self, shape: TypeShape, fingerprint: Fingerprint) -> TypeEntry:
        entry = TypeEntry(
            details=shape.details,
            fingerprint=fingerprint,
            origin=shape.origin,
            description=shape.description,
        )
        if entry.declared:
            name = self._names.allocate(
                shape.hint.candidate(),
                preferred=shape.hint.from_reference,
            )
            entry = replace(entry, name=name)
            logger.debug("Created type %s from %s", name, shape.origin)
        return entry

    def _backfill(self, placeholder: TypeId, ref: str, built: Union[TypeShape, TypeId]) -> TypeId:
        self._pending.discard(placeholder.index)
        if isinstance(built, TypeId):
            target = self.canonical(built)
            if target == placeholder:
                self._slots[placeholder.index] = _Poisoned(ref)
                raise UnsupportedInputError(ref, "reference cycle without any structure")
            if isinstance(self._slots[target.index], _Poisoned):
                self._slots[placeholder.index] = _Poisoned(ref)
                raise UnsupportedInputError(ref, "depends on a schema that could not be generated")
            self._slots[placeholder.index] = _Forward(target)
            return target

        fingerprint = self.fingerprint(built.details, self_id=placeholder)
        existing = self._by_fingerprint.get(fingerprint)
        if existing is not None:
            self._slots[placeholder.index] = _Forward(existing)
            logger.debug("Placeholder %s for %s deduplicated onto %s", placeholder, ref, existing)
            return existing

        self._slots[placeholder.index] = self._new_entry(built, fingerprint)
        self._by_fingerprint[fingerprint] = placeholder
        logger.debug("Backfilled placeholder %s for %s", placeholder, ref)
        return placeholder

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise InternalConsistencyError("Type space is frozen")
