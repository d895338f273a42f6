"""
Dynamic record synthesis.

make_merge_struct() builds a record whose fields are the union of the
fields of several inputs: typed records, record types, plain mappings
(including decoded documents) and YAML mapping nodes. The result is a
DynamicRecord of a fresh RecordShape; merging every input into it gives one
well-typed view over sources that never agreed on a schema.

Fields unify by canonical name (falling back to serialized name), so the
record field ``foo_bar``, the tagged field ``yaml:"foo-bar"`` and the map
key ``foo-bar`` all become one field ``FooBar``. When two inputs disagree on
a field's type:

- two record types unify recursively into a new nested shape;
- two Option types resolve to the wrapper the other's value fits into;
- anything else keeps the first type seen.

Mapping values become nested shapes unless their key is preserved, in which
case the field stays a plain dict.
"""

from __future__ import annotations

import collections.abc as _abc
import logging as _logging
import typing as _typing

import yaml as _yaml

import canopy.constants as constants
import canopy.errors as errors
import canopy.kinds as kinds
import canopy.naming as naming
import canopy.option as option
import canopy.records as records
import canopy.source as source

_logger = _logging.getLogger(__name__)

_NUMERIC = (int, float)


def _fits(value_type: _typing.Any, into: _typing.Any) -> bool:
    if value_type is into or into in (object, _typing.Any):
        return True
    return value_type in _NUMERIC and into in _NUMERIC


def merge_option_types(first: _typing.Any, second: _typing.Any) -> _typing.Any:
    """Pick the Option type both fields can share."""
    first_value = option.option_value_type(first)
    second_value = option.option_value_type(second)
    if _fits(second_value, first_value):
        return first
    if _fits(first_value, second_value):
        return second
    return first


class _ShapeBuilder:
    """Accumulates unified fields for one level of a merged shape."""

    def __init__(
        self,
        preserve_map: _typing.AbstractSet[str],
        preserved_tags: _typing.Iterable[str],
        wrap_scalars: bool,
    ) -> None:
        self.preserve_map = preserve_map
        self.preserved_tags = tuple(preserved_tags)
        self.wrap_scalars = wrap_scalars
        self.fields: list[records.FieldDescriptor] = []

    def _find(self, fd: records.FieldDescriptor) -> int | None:
        for index, existing in enumerate(self.fields):
            if existing.canonical_name == fd.canonical_name:
                return index
        for index, existing in enumerate(self.fields):
            if existing.serialized_name == fd.serialized_name:
                return index
        return None

    def add(self, fd: records.FieldDescriptor) -> None:
        index = self._find(fd)
        if index is None:
            self.fields.append(_synthesized(fd.serialized_name, fd.type, fd.tags, fd.canonical_name))
            return
        existing = self.fields[index]
        tags = naming.merge_tags(existing.tags, fd.tags, self.preserved_tags)
        self.fields[index] = _synthesized(
            existing.serialized_name,
            self._unify(existing.type, fd.type),
            tags,
            naming.canonical_name(existing.serialized_name, tags) if tags.get("canopy") else existing.canonical_name,
        )

    def _unify(self, first: _typing.Any, second: _typing.Any) -> _typing.Any:
        if first is second or first == second:
            return first
        if option.is_option_type(first) and option.is_option_type(second):
            return merge_option_types(first, second)
        if kinds.is_record_type(first) and kinds.is_record_type(second):
            _logger.debug("Unifying record types %s and %s", first, second)
            return build_shape([first, second], self.preserve_map, self.preserved_tags, self.wrap_scalars)
        return first

    def add_mapping(self, mapping: _typing.Mapping[_typing.Any, _typing.Any]) -> None:
        for key, value in mapping.items():
            name = str(key)
            canonical = naming.camel_case(name)
            if not canonical:
                raise errors.InvalidArgumentError(f"cannot derive a field name from key {name!r}")
            tags = {"json": name, "yaml": name}
            self.add(_synthesized(name, self._value_type(name, value), tags, canonical))

    def _value_type(self, key: str, value: _typing.Any) -> _typing.Any:
        if isinstance(value, _abc.Mapping) and key not in self.preserve_map:
            return build_shape([value], self.preserve_map, self.preserved_tags, self.wrap_scalars)
        if self.wrap_scalars:
            if isinstance(value, (list, tuple)):
                return option.ListOption
            if not isinstance(value, _abc.Mapping) and not kinds.is_record(value):
                return option.Option
        if value is None:
            return _typing.Any
        return kinds.type_of(value)


def _synthesized(
    serialized: str,
    type_: _typing.Any,
    tags: _typing.Mapping[str, str],
    canonical: str,
) -> records.FieldDescriptor:
    return records.FieldDescriptor(
        attribute=canonical,
        canonical_name=canonical,
        serialized_name=serialized,
        type=type_,
        tags=dict(tags),
    )


def build_shape(
    inputs: _typing.Iterable[_typing.Any],
    preserve_map: _typing.AbstractSet[str] = frozenset(),
    preserved_tags: _typing.Iterable[str] = constants.PRESERVED_TAGS,
    wrap_scalars: bool = False,
) -> records.RecordShape:
    """Build the unified RecordShape of several inputs.

    Fields sharing a canonical or serialized name are unified into one, so
    two inputs that rename different fields to the same ``canopy:",name=X"``
    meet in a single field rather than clashing.

    Raises:
        InvalidArgumentError: An input is neither a record nor a mapping.
    """
    builder = _ShapeBuilder(preserve_map, preserved_tags, wrap_scalars)
    pending = list(inputs)
    index = 0
    while index < len(pending):
        item = pending[index]
        index += 1
        if isinstance(item, _yaml.Node):
            item = source.decode_node(item)
        if item is None:
            continue
        if kinds.is_record(item) or kinds.is_record_type(item):
            hoisted = 0
            for fd in kinds.record_fields(item):
                if fd.inline and kinds.is_record_type(kinds.unwrap_optional(fd.type)[0]):
                    # embedded fields are processed right after their owner
                    pending.insert(index + hoisted, kinds.unwrap_optional(fd.type)[0])
                    hoisted += 1
                    continue
                builder.add(fd)
        elif isinstance(item, _abc.Mapping):
            builder.add_mapping(item)
        else:
            raise errors.InvalidArgumentError(f"cannot build a record shape from {type(item).__name__}")
    builder.fields.sort(key=lambda fd: fd.canonical_name)
    return records.RecordShape(builder.fields)


def make_merge_struct(
    *inputs: _typing.Any,
    preserve_map: _typing.Iterable[str] = (),
    preserved_tags: _typing.Iterable[str] = constants.PRESERVED_TAGS,
    wrap_scalars: bool = False,
) -> records.DynamicRecord:
    """Create an empty DynamicRecord able to hold every field of every input.

    Args:
        *inputs: Records, record types, mappings or YAML mapping nodes.
        preserve_map: Keys whose mapping values stay plain dicts instead of
            becoming nested records.
        preserved_tags: Tag names copied onto the synthesized fields.
        wrap_scalars: Type scalar leaves of mappings as Options (and lists as
            ListOptions) so the merged record records provenance for them.

    Example:
        >>> record = make_merge_struct({"foo-bar": "x"}, {"foo_bar": "y", "baz": 1})
        >>> [fd.serialized_name for fd in record.shape]
        ['baz', 'foo-bar']
    """
    shape = build_shape(inputs, frozenset(preserve_map), preserved_tags, wrap_scalars)
    return kinds.new_record(shape)
