"""
Merge sources.

A MergeSource presents one value being merged, whether it is a native
Python value (dict, list, scalar, record, Option) or a node composed from a
YAML document. Node-backed sources carry line/column coordinates and decode
their value lazily; native sources never have coordinates of their own.

A value read from a document is never "zero": ``enabled: false`` is an
explicit setting, not an absent one, so it may replace a default.

YAML merge keys (``<<``) are expanded while iterating a mapping node:
explicit keys come first, then keys from the merged mappings in order, each
key yielded once. Merged values keep the coordinates of the anchored node
they were written in.
"""

from __future__ import annotations

import collections.abc as _abc
import copy as _copy
import typing as _typing

import yaml as _yaml

import canopy.errors as errors
import canopy.kinds as kinds
import canopy.option as option

_MERGE_TAG = "tag:yaml.org,2002:merge"

_MISSING = object()


def node_coordinate(node: _yaml.Node) -> option.FileCoordinate:
    """1-indexed position of a node."""
    return option.FileCoordinate(node.start_mark.line + 1, node.start_mark.column + 1)


def decode_node(node: _yaml.Node) -> _typing.Any:
    """Construct the Python value of a composed node without altering it.

    Raises:
        DecodeError: If the node cannot be constructed (e.g. an unknown tag).
    """
    loader = _yaml.SafeLoader("")
    try:
        # SafeLoader flattens merge keys in place; keep the composed tree intact
        return loader.construct_object(_copy.deepcopy(node), deep=True)
    except _yaml.YAMLError as exc:
        coordinate = node_coordinate(node)
        raise errors.DecodeError(
            f"cannot decode {node.tag}: {exc}",
            line=coordinate.line,
            column=coordinate.column,
        ) from exc
    finally:
        loader.dispose()


def encode_node(value: _typing.Any) -> _yaml.Node:
    """Represent a native value as a composed YAML node."""
    return _yaml.compose(_yaml.safe_dump(value))


def node_key(key_node: _yaml.Node) -> _typing.Any:
    """Mapping keys keep their literal token; complex keys are decoded."""
    if isinstance(key_node, _yaml.ScalarNode):
        return key_node.value
    return decode_node(key_node)


def mapping_pairs(node: _yaml.MappingNode) -> _typing.Iterator[tuple[_typing.Any, _yaml.Node]]:
    """Yield (key, value node) pairs of a mapping node with merge keys expanded."""
    seen: set[_typing.Any] = set()
    merged: list[_yaml.Node] = []
    for key_node, value_node in node.value:
        if key_node.tag == _MERGE_TAG:
            merged.append(value_node)
            continue
        key = node_key(key_node)
        seen.add(key)
        yield key, value_node
    for merge_node in merged:
        targets = merge_node.value if isinstance(merge_node, _yaml.SequenceNode) else [merge_node]
        for target in targets:
            if not isinstance(target, _yaml.MappingNode):
                coordinate = node_coordinate(target)
                raise errors.DecodeError(
                    "merge key expects a mapping or a list of mappings",
                    line=coordinate.line,
                    column=coordinate.column,
                )
            for key, value_node in mapping_pairs(target):
                if key not in seen:
                    seen.add(key)
                    yield key, value_node


class MergeSource:
    """A native value or a document node, viewed uniformly.

    Construct with from_native() or from_node(); instances are never
    mutated after construction apart from caching the decoded value.
    """

    __slots__ = ("_native", "_node", "_value", "_coordinate")

    def __init__(self, native: _typing.Any = None, node: _yaml.Node | None = None) -> None:
        self._native = native
        self._node = node
        self._value: _typing.Any = _MISSING
        self._coordinate: option.FileCoordinate | None = None

    @classmethod
    def from_native(cls, value: _typing.Any) -> MergeSource:
        if isinstance(value, _yaml.Node):
            return cls(node=value)
        return cls(native=value)

    @classmethod
    def from_node(cls, node: _yaml.Node) -> MergeSource:
        return cls(node=node)

    @property
    def node(self) -> _yaml.Node | None:
        return self._node

    @property
    def is_node(self) -> bool:
        return self._node is not None

    def is_valid(self) -> bool:
        return self._node is not None or self._native is not None

    def is_map(self) -> bool:
        if self._node is not None:
            return isinstance(self._node, _yaml.MappingNode)
        return isinstance(self._native, _abc.Mapping)

    def is_struct(self) -> bool:
        return self._node is None and kinds.is_record(self._native)

    def is_list(self) -> bool:
        if self._node is not None:
            return isinstance(self._node, _yaml.SequenceNode)
        return isinstance(self._native, (list, tuple))

    def is_zero(self) -> bool:
        """Native zero values are zero; document values never are."""
        if self._node is not None:
            return False
        return kinds.is_zero(self._native)

    def reflect(self) -> tuple[_typing.Any, option.FileCoordinate | None]:
        """Materialize the value and its coordinate (cached)."""
        if self._value is _MISSING:
            if self._node is not None:
                self._value = decode_node(self._node)
                self._coordinate = node_coordinate(self._node)
            else:
                self._value = self._native
        return self._value, self._coordinate

    @property
    def value(self) -> _typing.Any:
        return self.reflect()[0]

    @property
    def coordinate(self) -> option.FileCoordinate | None:
        if self._node is not None:
            return node_coordinate(self._node)
        return None

    def token(self) -> str | None:
        """The literal text of a scalar node, if this source is one."""
        if isinstance(self._node, _yaml.ScalarNode):
            return self._node.value
        return None

    def is_null(self) -> bool:
        return self.value is None

    def iter_fields(self) -> _typing.Iterator[tuple[str, MergeSource, bool]]:
        """Yield (serialized name, source, embedded) for each field or key."""
        if self._node is not None:
            if isinstance(self._node, _yaml.MappingNode):
                for key, value_node in mapping_pairs(self._node):
                    yield str(key), MergeSource.from_node(value_node), False
            return
        if isinstance(self._native, _abc.Mapping):
            for key, value in self._native.items():
                yield str(key), MergeSource.from_native(value), False
        elif kinds.is_record(self._native):
            for fd in kinds.record_fields(self._native):
                yield fd.serialized_name, MergeSource.from_native(getattr(self._native, fd.attribute)), fd.inline

    def iter_keys(self) -> _typing.Iterator[tuple[_typing.Any, MergeSource]]:
        """Yield (key, source) pairs of a map source."""
        if self._node is not None:
            if isinstance(self._node, _yaml.MappingNode):
                for key, value_node in mapping_pairs(self._node):
                    yield key, MergeSource.from_node(value_node)
            return
        if isinstance(self._native, _abc.Mapping):
            for key, value in self._native.items():
                yield key, MergeSource.from_native(value)

    def iter_items(self) -> _typing.Iterator[tuple[int, MergeSource]]:
        """Yield (index, source) pairs of a list source."""
        if self._node is not None:
            if isinstance(self._node, _yaml.SequenceNode):
                for index, item in enumerate(self._node.value):
                    yield index, MergeSource.from_node(item)
            return
        if isinstance(self._native, (list, tuple)):
            for index, item in enumerate(self._native):
                yield index, MergeSource.from_native(item)

    def __repr__(self) -> str:
        if self._node is not None:
            return f"MergeSource(node={self._node.tag}@{node_coordinate(self._node)})"
        return f"MergeSource(native={self._native!r})"
