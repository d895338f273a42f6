"""
Dynamic records.

A RecordShape is an ordered set of FieldDescriptors; a DynamicRecord is an
instance of a shape holding one value per field. Together they stand in for
a record type built at runtime from several heterogeneous inputs (see
canopy.synthesis), and they merge, serialize and export exactly like
dataclass or pydantic records.

Fields are reachable by canonical name as attributes and by canonical or
serialized name as items:

    >>> shape = RecordShape([FieldDescriptor.build("FooBar", str, {"yaml": "foo-bar"})])
    >>> record = DynamicRecord(shape, {"FooBar": "x"})
    >>> record.FooBar, record["foo-bar"]
    ('x', 'x')
"""

from __future__ import annotations

import copy as _copy
import dataclasses as _dataclasses
import typing as _typing

import canopy.errors as errors
import canopy.naming as naming


@_dataclasses.dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One field of a record shape.

    Attributes:
        attribute: Python attribute used to get and set the value.
        canonical_name: Unification key (see canopy.naming).
        serialized_name: Key used in documents.
        type: Declared type annotation (a RecordShape for nested dynamic records).
        tags: The field's yaml/json/canopy tags.
        inline: Whether the field is an embedded record flattened into its parent.
    """

    attribute: str
    canonical_name: str
    serialized_name: str
    type: _typing.Any
    tags: _typing.Mapping[str, str] = _dataclasses.field(default_factory=dict)
    inline: bool = False

    @classmethod
    def build(
        cls,
        attribute: str,
        type_: _typing.Any,
        tags: _typing.Mapping[str, str] | None = None,
    ) -> FieldDescriptor:
        tags = dict(tags or {})
        return cls(
            attribute=attribute,
            canonical_name=naming.canonical_name(attribute, tags),
            serialized_name=naming.serialized_name(attribute, tags),
            type=type_,
            tags=tags,
            inline=naming.is_inline(tags),
        )


class RecordShape:
    """An ordered collection of field descriptors acting as a record type.

    Raises:
        DuplicateFieldError: Two fields share an attribute, canonical or
            serialized name.
    """

    def __init__(self, fields: _typing.Iterable[FieldDescriptor], name: str = "MergedRecord") -> None:
        self.name = name
        self.fields: tuple[FieldDescriptor, ...] = tuple(fields)
        for kind in ("attribute", "canonical_name", "serialized_name"):
            seen: set[str] = set()
            for field in self.fields:
                value = getattr(field, kind)
                if value in seen:
                    raise errors.DuplicateFieldError(value, kind.replace("_", " "))
                seen.add(value)
        self._by_attribute = {field.attribute: field for field in self.fields}
        self._by_key: dict[str, FieldDescriptor] = {}
        for field in self.fields:
            self._by_key.setdefault(field.serialized_name, field)
            self._by_key.setdefault(field.canonical_name, field)

    def __iter__(self) -> _typing.Iterator[FieldDescriptor]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def get(self, key: str) -> FieldDescriptor | None:
        """Look a field up by attribute, canonical or serialized name."""
        return self._by_attribute.get(key) or self._by_key.get(key)

    def __repr__(self) -> str:
        names = ", ".join(field.attribute for field in self.fields)
        return f"{self.name}({names})"

    __str__ = __repr__


class DynamicRecord:
    """An instance of a RecordShape."""

    __slots__ = ("_shape", "_values")

    def __init__(self, shape: RecordShape, values: _typing.Mapping[str, _typing.Any] | None = None) -> None:
        object.__setattr__(self, "_shape", shape)
        object.__setattr__(self, "_values", dict(values or {}))

    @property
    def shape(self) -> RecordShape:
        return self._shape

    def _field(self, key: str) -> FieldDescriptor:
        field = self._shape.get(key)
        if field is None:
            raise KeyError(key)
        return field

    def __getattr__(self, name: str) -> _typing.Any:
        if name.startswith("_"):
            raise AttributeError(name)
        field = self._shape.get(name)
        if field is None:
            raise AttributeError(f"{self._shape.name} has no field {name!r}")
        return self._values.get(field.attribute)

    def __setattr__(self, name: str, value: _typing.Any) -> None:
        field = self._shape.get(name)
        if field is None:
            raise AttributeError(f"{self._shape.name} has no field {name!r}")
        self._values[field.attribute] = value

    def __getitem__(self, key: str) -> _typing.Any:
        return self._values.get(self._field(key).attribute)

    def __setitem__(self, key: str, value: _typing.Any) -> None:
        self._values[self._field(key).attribute] = value

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self._shape.get(key) is not None

    def __iter__(self) -> _typing.Iterator[str]:
        return (field.serialized_name for field in self._shape)

    def items(self) -> _typing.Iterator[tuple[str, _typing.Any]]:
        """Serialized name and value pairs in field order."""
        for field in self._shape:
            yield field.serialized_name, self._values.get(field.attribute)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DynamicRecord):
            return NotImplemented
        return list(self.items()) == list(other.items())

    __hash__ = None  # type: ignore[assignment]

    def __deepcopy__(self, memo: dict[int, _typing.Any]) -> DynamicRecord:
        return DynamicRecord(self._shape, _copy.deepcopy(self._values, memo))

    def __repr__(self) -> str:
        body = ", ".join(f"{field.attribute}={self._values.get(field.attribute)!r}" for field in self._shape)
        return f"{self._shape.name}({body})"
