"""
Type classification and record introspection.

The merge engine works from declared types (annotations) rather than from
the runtime values alone, because a destination that is still empty says
nothing about what it may hold. Every declared type falls into one Kind;
``typing.Any`` destinations take the kind of whatever value they currently
hold.

Native records are dataclasses, pydantic models and DynamicRecords. Their
fields are described by FieldDescriptors so the merge never needs to know
which record flavour it is walking.
"""

from __future__ import annotations

import collections.abc as _abc
import copy as _copy
import dataclasses as _dataclasses
import enum as _enum
import functools as _functools
import types as _types
import typing as _typing

import pydantic as _pydantic
import yaml as _yaml

import canopy.option as option
import canopy.records as records

_TAG_KEYS = ("yaml", "json", "canopy")


class Kind(_enum.Enum):
    """How a type takes part in a merge."""

    ANY = "any"
    SCALAR = "scalar"
    OPTION = "option"
    NODE = "node"
    MAP = "map"
    LIST = "list"
    ARRAY = "array"
    RECORD = "record"


def field(
    *,
    yaml: str | None = None,
    json: str | None = None,
    canopy: str | None = None,
    **kwargs: _typing.Any,
) -> _typing.Any:
    """``dataclasses.field`` with yaml/json/canopy tags stored in its metadata.

    Example:
        >>> @dataclasses.dataclass
        ... class Options:
        ...     name: StringOption = field(yaml="name", default_factory=StringOption)
    """
    metadata = dict(kwargs.pop("metadata", None) or {})
    for key, value in (("yaml", yaml), ("json", json), ("canopy", canopy)):
        if value is not None:
            metadata[key] = value
    return _dataclasses.field(metadata=metadata, **kwargs)


def unwrap_optional(tp: _typing.Any) -> tuple[_typing.Any, bool]:
    """Split ``Optional[T]`` / ``T | None`` into (T, True); other types pass through."""
    origin = _typing.get_origin(tp)
    if origin is _typing.Union or origin is _types.UnionType:
        args = [arg for arg in _typing.get_args(tp) if arg is not type(None)]
        if len(args) == 1 and len(_typing.get_args(tp)) == 2:
            return args[0], True
    return tp, False


def is_record(value: _typing.Any) -> bool:
    """True for record instances (dataclass, pydantic model, DynamicRecord)."""
    if isinstance(value, (records.DynamicRecord, _pydantic.BaseModel)):
        return True
    return _dataclasses.is_dataclass(value) and not isinstance(value, type)


def is_record_type(tp: _typing.Any) -> bool:
    if isinstance(tp, records.RecordShape):
        return True
    if not isinstance(tp, type):
        return False
    return _dataclasses.is_dataclass(tp) or issubclass(tp, _pydantic.BaseModel)


def type_of(value: _typing.Any) -> _typing.Any:
    """The type used to merge into a value held by an untyped destination."""
    if isinstance(value, records.DynamicRecord):
        return value.shape
    if value is None:
        return _typing.Any
    return type(value)


def resolve(tp: _typing.Any, value: _typing.Any) -> _typing.Any:
    """Narrow an untyped declaration to the type of the value it holds."""
    tp, _ = unwrap_optional(tp)
    if (tp is _typing.Any or tp is object) and value is not None:
        return type_of(value)
    return tp


def kind_of(tp: _typing.Any) -> Kind:
    tp, _ = unwrap_optional(tp)
    if tp is _typing.Any or tp is object or tp is None:
        return Kind.ANY
    if option.is_option_type(tp):
        return Kind.OPTION
    if is_record_type(tp):
        return Kind.RECORD
    origin = _typing.get_origin(tp) or tp
    if not isinstance(origin, type):
        return Kind.SCALAR
    if issubclass(origin, _yaml.Node):
        return Kind.NODE
    if issubclass(origin, tuple):
        args = _typing.get_args(tp)
        if args and args[-1] is not Ellipsis:
            return Kind.ARRAY
        return Kind.LIST
    if issubclass(origin, (str, bytes)):
        return Kind.SCALAR
    if issubclass(origin, (list, _abc.Sequence)) and not issubclass(origin, _abc.Mapping):
        return Kind.LIST
    if issubclass(origin, (dict, _abc.Mapping)):
        return Kind.MAP
    return Kind.SCALAR


def element_type(tp: _typing.Any) -> _typing.Any:
    """Element type of a list or value type of a map."""
    tp, _ = unwrap_optional(tp)
    if isinstance(tp, type) and issubclass(tp, (option.ListOption, option.MapOption)):
        return tp.element_type
    args = _typing.get_args(tp)
    origin = _typing.get_origin(tp)
    if origin is not None and isinstance(origin, type) and issubclass(origin, _abc.Mapping):
        return args[1] if len(args) == 2 else _typing.Any
    if args:
        return args[0]
    return _typing.Any


def array_types(tp: _typing.Any) -> tuple[_typing.Any, ...]:
    """Per-slot types of a fixed-size ``tuple[...]`` array."""
    tp, _ = unwrap_optional(tp)
    return _typing.get_args(tp)


def container_type(tp: _typing.Any) -> type:
    """Concrete class used to build a fresh list or map of type tp."""
    tp, _ = unwrap_optional(tp)
    origin = _typing.get_origin(tp) or tp
    if isinstance(origin, type) and issubclass(origin, (option.ListOption, option.MapOption)):
        return origin
    if kind_of(tp) is Kind.MAP:
        return dict
    if isinstance(origin, type) and issubclass(origin, tuple):
        return tuple
    return list


def _type_hints(cls: type) -> dict[str, _typing.Any]:
    try:
        return _typing.get_type_hints(cls)
    except NameError:
        # annotations referring to names local to a function
        return {dc_field.name: dc_field.type for dc_field in _dataclasses.fields(cls)}


@_functools.cache
def _class_fields(cls: type) -> tuple[records.FieldDescriptor, ...]:
    descriptors: list[records.FieldDescriptor] = []
    if issubclass(cls, _pydantic.BaseModel):
        for name, info in cls.model_fields.items():
            if name.startswith("_"):
                continue
            extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
            tags = {key: str(extra[key]) for key in _TAG_KEYS if key in extra}
            if info.alias:
                tags.setdefault("yaml", info.alias)
                tags.setdefault("json", info.alias)
            descriptors.append(records.FieldDescriptor.build(name, info.annotation, tags))
        return tuple(descriptors)

    hints = _type_hints(cls)
    for dc_field in _dataclasses.fields(cls):
        if dc_field.name.startswith("_"):
            continue
        tags = {key: dc_field.metadata[key] for key in _TAG_KEYS if key in dc_field.metadata}
        descriptors.append(
            records.FieldDescriptor.build(dc_field.name, hints.get(dc_field.name, _typing.Any), tags)
        )
    return tuple(descriptors)


def record_fields(record_or_type: _typing.Any) -> tuple[records.FieldDescriptor, ...]:
    """Field descriptors of a record instance or record type, in declaration order."""
    if isinstance(record_or_type, records.DynamicRecord):
        return record_or_type.shape.fields
    if isinstance(record_or_type, records.RecordShape):
        return record_or_type.fields
    cls = record_or_type if isinstance(record_or_type, type) else type(record_or_type)
    return _class_fields(cls)


def new_record(tp: _typing.Any) -> _typing.Any:
    """Instantiate a record type; fields without a default get their zero value."""
    if isinstance(tp, records.RecordShape):
        return records.DynamicRecord(
            tp, {fd.attribute: zero_value(fd.type) for fd in tp.fields}
        )
    if issubclass(tp, _pydantic.BaseModel):
        missing = {
            name: zero_value(info.annotation)
            for name, info in tp.model_fields.items()
            if info.is_required()
        }
        return tp.model_construct(**missing)
    hints = _type_hints(tp)
    missing = {
        dc_field.name: zero_value(hints.get(dc_field.name, _typing.Any))
        for dc_field in _dataclasses.fields(tp)
        if dc_field.init
        and dc_field.default is _dataclasses.MISSING
        and dc_field.default_factory is _dataclasses.MISSING
    }
    return tp(**missing)


def zero_value(tp: _typing.Any) -> _typing.Any:
    """The empty value a fresh destination of type tp starts with.

    ``Optional[T]`` starts as None and is allocated on demand.
    """
    inner, optional = unwrap_optional(tp)
    if optional:
        return None
    kind = kind_of(inner)
    if kind is Kind.OPTION:
        return option.new_option(inner)
    if kind is Kind.RECORD:
        return new_record(inner)
    if kind is Kind.ARRAY:
        return tuple(zero_value(slot) for slot in array_types(inner))
    if kind in (Kind.LIST, Kind.MAP):
        return container_type(inner)()
    if kind is Kind.SCALAR:
        return option.zero_of(inner)
    return None


def is_zero(value: _typing.Any) -> bool:
    """Whether value is the empty value of its type."""
    if value is None:
        return True
    if isinstance(value, option.Option):
        return not value.is_defined()
    if isinstance(value, (bool, int, float, str, bytes)):
        return not value
    if isinstance(value, tuple):
        return all(is_zero(item) for item in value)
    if isinstance(value, (list, dict)):
        return len(value) == 0
    if is_record(value):
        return all(is_zero(getattr(value, fd.attribute)) for fd in record_fields(value))
    return False


def is_default_option(value: _typing.Any) -> bool:
    return isinstance(value, option.Option) and value.is_default()


def same_value(a: _typing.Any, b: _typing.Any) -> bool:
    """Strict equality: equal values of the same type (``1`` is not ``1.0``)."""
    if type(a) is not type(b):
        return False
    try:
        return bool(a == b)
    except (TypeError, ValueError):
        return a is b


def copy_value(value: _typing.Any) -> _typing.Any:
    """Copy collections so merged destinations never share mutable state."""
    if isinstance(value, (list, dict, tuple, set)) or is_record(value):
        return _copy.deepcopy(value)
    return value
