"""
Structural merge.

A Merger walks a destination (record or mapping) and a source (native value
or YAML node) in parallel:

- records and mappings merge field by field; a source key matches a
  destination field by serialized name, then by canonical name;
- each matched field is first offered to scalar assignment
  (canopy.assign); if that raises NotAssignableError the field is merged
  structurally as a map, list, fixed-size array or nested record;
- lists append source elements not already present (compared through
  Option values), fixed-size arrays fill empty slots index by index.

A Merger is a session over a sequence of documents. Each document may carry
a reserved ``config`` block:

    config:
      overwrite: [servers]   # replace these fields instead of merging them
      stop: true             # do not consult any further documents

After a document is merged, advance() moves its overwrite names into the
ignore list so later documents in the sequence cannot repopulate them.

Example:
    >>> merger = Merger("site.yaml")
    >>> dest = {}
    >>> merger.merge(dest, {"name": "x", "tags": ["a"]})
    True
    >>> dest
    {'name': 'x', 'tags': ['a']}
"""

from __future__ import annotations

import collections.abc as _abc
import logging as _logging
import typing as _typing

import pydantic as _pydantic

import canopy.assign as assign
import canopy.constants as constants
import canopy.errors as errors
import canopy.kinds as kinds
import canopy.naming as naming
import canopy.option as option
import canopy.records as records
import canopy.source as source
import canopy.synthesis as synthesis

_logger = _logging.getLogger(__name__)

Kind = kinds.Kind


class MergeDirectives(_pydantic.BaseModel):
    """Per-document control block read from the reserved ``config`` key."""

    model_config = _pydantic.ConfigDict(extra="ignore")

    overwrite: list[str] = _pydantic.Field(default_factory=list)
    stop: bool = False

    @classmethod
    def from_source(cls, src: source.MergeSource) -> MergeDirectives:
        """Read the directives of a document (empty when it has none).

        Raises:
            DecodeError: If the ``config`` block is malformed.
        """
        if not (src.is_map() or src.is_struct()):
            return cls()
        for name, field_src, _ in src.iter_fields():
            if name != constants.DIRECTIVES_KEY:
                continue
            value, coordinate = field_src.reflect()
            if value is None:
                return cls()
            try:
                if isinstance(value, _abc.Mapping):
                    return cls.model_validate(value)
                return cls.model_validate(value, from_attributes=True)
            except _pydantic.ValidationError as exc:
                raise errors.DecodeError(
                    f"invalid {constants.DIRECTIVES_KEY} block: {exc}",
                    line=coordinate.line if coordinate else None,
                    column=coordinate.column if coordinate else None,
                ) from exc
        return cls()


class _Slot(_typing.NamedTuple):
    """A destination field: the record that owns it and its descriptor."""

    owner: _typing.Any
    field: records.FieldDescriptor

    def get(self) -> _typing.Any:
        return getattr(self.owner, self.field.attribute)

    def set(self, value: _typing.Any) -> None:
        setattr(self.owner, self.field.attribute, value)


def record_to_map(record: _typing.Any) -> dict[str, _typing.Any]:
    """Serialized-name mapping of a record's fields, inline records flattened."""
    result: dict[str, _typing.Any] = {}
    for fd in kinds.record_fields(record):
        value = getattr(record, fd.attribute)
        if fd.inline and kinds.is_record(value):
            for key, nested in record_to_map(value).items():
                result.setdefault(key, nested)
            continue
        result[fd.serialized_name] = value
    return result


class Merger:
    """Merge session state.

    Attributes:
        source_name: Name of the document currently being merged.
        directives: Directives of the current document.
        ignore: Field names frozen by earlier overwrite directives.
        preserve_map: Keys kept as plain dicts by make_merge_struct().
        preserved_tags: Tag names carried onto synthesized fields.
        full_records: Decode ``{value, source, defined}`` mappings into Options.
    """

    def __init__(
        self,
        source_name: str = constants.MERGE_SOURCE,
        *,
        preserve_map: _typing.Iterable[str] = (),
        preserved_tags: _typing.Iterable[str] = constants.PRESERVED_TAGS,
        full_records: bool = False,
    ) -> None:
        self.source_name = source_name
        self.preserve_map = frozenset(preserve_map)
        self.preserved_tags = frozenset(preserved_tags)
        self.full_records = full_records
        self.directives = MergeDirectives()
        self.ignore: list[str] = []

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def read_directives(self, src: source.MergeSource) -> MergeDirectives:
        """Adopt the overwrite directives of the next document."""
        try:
            self.directives = MergeDirectives.from_source(src)
        except errors.CanopyError as exc:
            raise exc.annotate(self.source_name)
        return self.directives

    def advance(self) -> None:
        """Freeze the current document's overwritten fields for the rest of the session."""
        for name in self.directives.overwrite:
            if name not in self.ignore:
                _logger.debug("Field %s overwritten by %s; ignoring it from now on", name, self.source_name)
                self.ignore.append(name)
        self.directives = MergeDirectives()

    def must_overwrite(self, name: str) -> bool:
        return name in self.directives.overwrite

    def must_ignore(self, name: str) -> bool:
        return name in self.ignore

    def make_merge_struct(self, *inputs: _typing.Any, wrap_scalars: bool = False) -> records.DynamicRecord:
        return synthesis.make_merge_struct(
            *inputs,
            preserve_map=self.preserve_map,
            preserved_tags=self.preserved_tags,
            wrap_scalars=wrap_scalars,
        )

    def merge(self, dest: _typing.Any, src: _typing.Any, *, dest_type: _typing.Any = None) -> bool:
        """Merge src into dest in place.

        Args:
            dest: A record or a mutable mapping.
            src: A native value, a YAML node or a MergeSource.
            dest_type: Declared type of dest, for mappings whose values are
                typed (e.g. ``dict[str, StringOption]``).

        Returns:
            True if anything in dest changed.

        Raises:
            InvalidArgumentError: If dest cannot be merged into.
            CanopyError: Any merge failure, annotated with the document name.
        """
        if not (kinds.is_record(dest) or isinstance(dest, _abc.MutableMapping)):
            raise errors.InvalidArgumentError(
                f"cannot merge into {type(dest).__name__}; pass a record or a mutable mapping",
                source_name=self.source_name,
            )
        if not isinstance(src, source.MergeSource):
            src = source.MergeSource.from_native(src)
        _logger.debug("Merging %s into %s", self.source_name, type(dest).__name__)
        try:
            changed, _ = self.merge_structs(dest, dest_type or kinds.type_of(dest), src, False, top_level=True)
        except errors.CanopyError as exc:
            raise exc.annotate(self.source_name)
        return changed

    # -------------------------------------------------------------------------
    # Records
    # -------------------------------------------------------------------------

    def _field_index(self, record: _typing.Any) -> tuple[dict[str, _Slot], dict[str, _Slot]]:
        by_serialized: dict[str, _Slot] = {}
        by_canonical: dict[str, _Slot] = {}
        embedded: list[_Slot] = []
        for fd in kinds.record_fields(record):
            slot = _Slot(record, fd)
            by_serialized.setdefault(fd.serialized_name, slot)
            by_canonical.setdefault(fd.canonical_name, slot)
            if fd.inline:
                embedded.append(slot)
        for slot in embedded:
            inner_type = kinds.unwrap_optional(slot.field.type)[0]
            inner = slot.get()
            if inner is None and kinds.is_record_type(inner_type):
                inner = kinds.new_record(inner_type)
                slot.set(inner)
            if not kinds.is_record(inner):
                continue
            inner_serialized, inner_canonical = self._field_index(inner)
            for name, inner_slot in inner_serialized.items():
                by_serialized.setdefault(name, inner_slot)
            for name, inner_slot in inner_canonical.items():
                by_canonical.setdefault(name, inner_slot)
        return by_serialized, by_canonical

    def merge_structs(
        self,
        dest: _typing.Any,
        dest_type: _typing.Any,
        src: source.MergeSource,
        overwrite: bool,
        *,
        top_level: bool = False,
    ) -> tuple[bool, _typing.Any]:
        """Merge src into a record (or, for map types, a mapping).

        Returns:
            (changed, value): the destination's new value, which differs from
            dest only when dest had to be allocated.
        """
        dest_type = kinds.resolve(dest_type, dest)
        kind = kinds.kind_of(dest_type)
        if kind is Kind.MAP:
            return self.merge_maps(dest, dest_type, src, overwrite, top_level=top_level)
        if kind is not Kind.RECORD or not src.is_valid():
            return False, dest
        if not (src.is_map() or src.is_struct()):
            if src.is_null():
                return False, dest
            raise self._not_assignable(src, dest_type)

        allocated = dest is None
        if allocated:
            dest = kinds.new_record(dest_type)
        by_serialized, by_canonical = self._field_index(dest)
        changed = False
        for name, field_src, embedded in src.iter_fields():
            if self.must_ignore(name):
                _logger.debug("Skipping ignored field %s from %s", name, self.source_name)
                continue
            slot = by_serialized.get(name) or by_canonical.get(naming.camel_case(name))
            if slot is None:
                if embedded:
                    sub_changed, _ = self.merge_structs(
                        dest, dest_type, field_src, overwrite or self.must_overwrite(name)
                    )
                    changed = sub_changed or changed
                continue
            changed = self._merge_field(slot, name, field_src, overwrite) or changed
        if allocated and not changed:
            return False, None
        return changed, dest

    def _merge_field(self, slot: _Slot, name: str, field_src: source.MergeSource, overwrite: bool) -> bool:
        dest = slot.get()
        field_type = slot.field.type
        overwrite = overwrite or self.must_overwrite(name)
        value, _ = field_src.reflect()

        should_assign = (
            (kinds.is_zero(dest) and not field_src.is_zero())
            or (kinds.is_default_option(dest) and not kinds.is_default_option(value))
            or overwrite
        )
        assign_error: errors.NotAssignableError | None = None
        if should_assign and not kinds.same_value(dest, value):
            try:
                result = assign.assign_value(
                    dest, field_type, field_src, self._options(overwrite), source_name=self.source_name
                )
            except errors.NotAssignableError as exc:
                assign_error = exc
            else:
                if result.changed:
                    slot.set(result.value)
                    return True

        resolved = kinds.resolve(field_type, dest)
        kind = kinds.kind_of(resolved)
        if kind is Kind.MAP:
            changed, merged = self.merge_maps(dest, resolved, field_src, overwrite)
        elif kind in (Kind.LIST, Kind.ARRAY):
            changed, merged = self.merge_arrays(dest, resolved, field_src, overwrite)
        elif kind is Kind.RECORD:
            changed, merged = self.merge_structs(dest, resolved, field_src, overwrite)
        else:
            if assign_error is not None:
                raise assign_error
            return False
        if changed:
            slot.set(merged)
        return changed

    # -------------------------------------------------------------------------
    # Maps
    # -------------------------------------------------------------------------

    def merge_maps(
        self,
        dest: _typing.MutableMapping[_typing.Any, _typing.Any] | None,
        dest_type: _typing.Any,
        src: source.MergeSource,
        overwrite: bool,
        *,
        top_level: bool = False,
    ) -> tuple[bool, _typing.Any]:
        """Merge a mapping or record source into a mapping destination.

        Keys named by the current document's overwrite directive replace
        what is there. When the mapping is the session's destination, keys
        frozen by earlier directives are skipped.
        """
        if src.is_struct():
            src = source.MergeSource.from_native(record_to_map(src.value))
        if not src.is_map():
            if not src.is_valid() or src.is_null():
                return False, dest
            raise self._not_assignable(src, dest_type)

        original = dest
        if dest is None:
            dest = kinds.container_type(dest_type)()
        changed = False
        if overwrite and dest:
            dest.clear()
            changed = True
        elem_type = kinds.element_type(dest_type)

        for key, value_src in src.iter_keys():
            if top_level and self.must_ignore(str(key)):
                _logger.debug("Skipping ignored key %s from %s", key, self.source_name)
                continue
            key_overwrite = overwrite or self.must_overwrite(str(key))
            if key not in dest:
                fresh = kinds.zero_value(elem_type)
                try:
                    result = assign.assign_value(
                        fresh, elem_type, value_src, self._options(key_overwrite), source_name=self.source_name
                    )
                except errors.NotAssignableError:
                    # merged structurally below
                    dest[key] = fresh
                    changed = True
                else:
                    element = result.value
                    if isinstance(element, option.Option):
                        self._stamp_source(element, value_src)
                    dest[key] = element
                    changed = True
                    continue

            existing = dest[key]
            resolved = kinds.resolve(elem_type, existing)
            kind = kinds.kind_of(resolved)
            if kind is Kind.MAP:
                sub_changed, merged = self.merge_maps(existing, resolved, value_src, key_overwrite)
            elif kind is Kind.RECORD:
                sub_changed, merged = self.merge_structs(existing, resolved, value_src, key_overwrite)
            elif kind in (Kind.LIST, Kind.ARRAY):
                sub_changed, merged = self.merge_arrays(existing, resolved, value_src, key_overwrite)
            else:
                if not (key_overwrite or kinds.is_zero(existing) or kinds.is_default_option(existing)):
                    continue
                result = assign.assign_value(
                    existing, elem_type, value_src, self._options(key_overwrite), source_name=self.source_name
                )
                sub_changed, merged = result.changed, result.value
            if sub_changed:
                dest[key] = merged
                changed = True

        if original is None and not changed:
            return False, None
        return changed, dest

    def _stamp_source(self, element: option.Option, value_src: source.MergeSource) -> None:
        # fresh map entries record where they were written even when null
        location = element.get_source()
        coordinate = location.location or value_src.coordinate
        element.set_source(option.SourceLocation(location.name or self.source_name, coordinate))

    # -------------------------------------------------------------------------
    # Lists and fixed-size arrays
    # -------------------------------------------------------------------------

    def merge_arrays(
        self,
        dest: _typing.Any,
        dest_type: _typing.Any,
        src: source.MergeSource,
        overwrite: bool,
    ) -> tuple[bool, _typing.Any]:
        """Merge a list source into a list or fixed-size array destination.

        The destination is never mutated; a new container is returned when
        anything changed.
        """
        if not src.is_list():
            if not src.is_valid() or src.is_null():
                return False, dest
            raise self._not_assignable(src, dest_type)
        if kinds.kind_of(dest_type) is Kind.ARRAY:
            return self._merge_fixed(dest, dest_type, src, overwrite)

        elem_type = kinds.element_type(dest_type)
        current = [] if (overwrite or dest is None) else list(dest)
        changed = bool(overwrite and dest)
        skip_dedup = not current
        for _, item in src.iter_items():
            value, _ = item.reflect()
            compare = value
            if isinstance(value, option.Option):
                if not value.is_defined():
                    continue
                compare = value.get_value()
            if compare is None:
                continue
            if not skip_dedup and self._contains(current, item, compare):
                continue
            result = self._merge_element(kinds.zero_value(elem_type), elem_type, item, overwrite)
            current.append(result.value)
            changed = True
        if not changed:
            return False, dest
        return True, kinds.container_type(dest_type)(current)

    def _merge_fixed(
        self,
        dest: _typing.Any,
        dest_type: _typing.Any,
        src: source.MergeSource,
        overwrite: bool,
    ) -> tuple[bool, _typing.Any]:
        slot_types = kinds.array_types(dest_type)
        current = list(dest) if dest is not None else [kinds.zero_value(tp) for tp in slot_types]
        changed = False
        for index, item in src.iter_items():
            if index >= len(current):
                break
            element = current[index]
            if not (overwrite or kinds.is_zero(element) or kinds.is_default_option(element)):
                continue
            result = self._merge_element(element, slot_types[index], item, overwrite)
            if result.changed:
                current[index] = result.value
                changed = True
        if not changed:
            return False, dest
        return True, tuple(current)

    def _merge_element(
        self,
        element: _typing.Any,
        elem_type: _typing.Any,
        item: source.MergeSource,
        overwrite: bool,
    ) -> assign.Result:
        resolved = kinds.resolve(elem_type, element)
        kind = kinds.kind_of(resolved)
        if kind in (Kind.MAP, Kind.RECORD) and (item.is_map() or item.is_struct()):
            changed, merged = self.merge_structs(element, resolved, item, overwrite)
            return assign.Result(changed, merged)
        if kind in (Kind.LIST, Kind.ARRAY) and item.is_list():
            changed, merged = self.merge_arrays(element, resolved, item, overwrite)
            return assign.Result(changed, merged)
        return assign.assign_value(element, elem_type, item, self._options(overwrite), source_name=self.source_name)

    def _contains(self, current: list[_typing.Any], item: source.MergeSource, compare: _typing.Any) -> bool:
        """Whether an equal value is already in the list, converting item to each element's type."""
        for existing in current:
            existing_value = existing.get_value() if isinstance(existing, option.Option) else existing
            if existing_value is None:
                continue
            if kinds.same_value(existing_value, compare):
                return True
            value_type = kinds.type_of(existing_value)
            if kinds.kind_of(value_type) is not Kind.SCALAR:
                continue
            try:
                converted = assign.assign_value(
                    kinds.zero_value(value_type), value_type, item, assign.AssignOptions(overwrite=True)
                ).value
            except errors.CanopyError:
                continue
            if kinds.same_value(existing_value, converted):
                return True
        return False

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _options(self, overwrite: bool) -> assign.AssignOptions:
        return assign.AssignOptions(overwrite=overwrite, full_records=self.full_records)

    def _not_assignable(self, src: source.MergeSource, dest_type: _typing.Any) -> errors.NotAssignableError:
        value, coordinate = src.reflect()
        return errors.NotAssignableError(
            kinds.type_of(value),
            dest_type,
            line=coordinate.line if coordinate else None,
            column=coordinate.column if coordinate else None,
        )


def merge(dest: _typing.Any, src: _typing.Any, **kwargs: _typing.Any) -> bool:
    """Merge src into dest with a fresh Merger (see Merger for keyword options)."""
    dest_type = kwargs.pop("dest_type", None)
    return Merger(**kwargs).merge(dest, src, dest_type=dest_type)
