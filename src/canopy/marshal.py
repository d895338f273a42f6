"""
Serialization of merged records.

Options serialize in one of two modes, chosen per call:

- SerializationMode.BARE: just the inner value; undefined options are left
  out of their record or mapping.
- SerializationMode.FULL: ``{value, source, defined}`` for every option.

Decoding goes through the merge engine, so a document decoded into a
destination obeys the same coercion rules as a document loaded from disk.
In FULL mode the three-key records are turned back into Options with their
original provenance.

Example:
    >>> port = IntOption(8080, source=SourceLocation("site.yaml", FileCoordinate(3, 7)))
    >>> to_builtins({"port": port}, SerializationMode.FULL)
    {'port': {'value': 8080, 'source': 'site.yaml:3:7', 'defined': True}}
"""

import collections.abc as _abc
import enum as _enum
import json as _json
import typing as _typing

import pydantic_core as _pydantic_core
import yaml as _yaml

import canopy.constants as constants
import canopy.errors as errors
import canopy.kinds as kinds
import canopy.merger as merger
import canopy.option as option
import canopy.source as source


class SerializationMode(_enum.Enum):
    """How Options are written out."""

    BARE = "bare"
    FULL = "full"


def _option_to_builtins(value: option.Option, mode: SerializationMode) -> _typing.Any:
    if mode is SerializationMode.BARE:
        return to_builtins(value.get_value(), mode)
    return {
        "value": to_builtins(value.get_value(), mode),
        "source": str(value.get_source()),
        "defined": value.is_defined(),
    }


def _omitted(value: _typing.Any, mode: SerializationMode) -> bool:
    return mode is SerializationMode.BARE and isinstance(value, option.Option) and not value.is_defined()


def to_builtins(value: _typing.Any, mode: SerializationMode = SerializationMode.BARE) -> _typing.Any:
    """Convert a merged value to plain dicts, lists and scalars."""
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, option.Option):
        return _option_to_builtins(value, mode)
    if isinstance(value, _yaml.Node):
        return to_builtins(source.decode_node(value), mode)
    if kinds.is_record(value):
        result: dict[str, _typing.Any] = {}
        for key, item in merger.record_to_map(value).items():
            if not _omitted(item, mode):
                result[key] = to_builtins(item, mode)
        return result
    if isinstance(value, _abc.Mapping):
        return {key: to_builtins(item, mode) for key, item in value.items() if not _omitted(item, mode)}
    if isinstance(value, (list, tuple)):
        return [to_builtins(item, mode) for item in value]
    return _pydantic_core.to_jsonable_python(value)


def dump_yaml(value: _typing.Any, mode: SerializationMode = SerializationMode.BARE) -> str:
    return _yaml.safe_dump(
        to_builtins(value, mode),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


def dump_json(
    value: _typing.Any,
    mode: SerializationMode = SerializationMode.BARE,
    *,
    indent: int | None = None,
) -> str:
    return _json.dumps(to_builtins(value, mode), indent=indent)


def load_yaml(
    text: str,
    dest: _typing.Any,
    mode: SerializationMode = SerializationMode.BARE,
    *,
    name: str = constants.YAML_SOURCE,
    dest_type: _typing.Any = None,
) -> _typing.Any:
    """Decode a YAML document into dest and return dest.

    Raises:
        DecodeError: If the text is not valid YAML.
    """
    try:
        node = _yaml.compose(text, Loader=_yaml.SafeLoader)
    except _yaml.YAMLError as exc:
        raise _decode_error(exc, name) from exc
    if node is not None:
        session = merger.Merger(name, full_records=mode is SerializationMode.FULL)
        session.merge(dest, node, dest_type=dest_type)
    return dest


def load_json(
    text: str,
    dest: _typing.Any,
    mode: SerializationMode = SerializationMode.BARE,
    *,
    name: str = constants.JSON_SOURCE,
    dest_type: _typing.Any = None,
) -> _typing.Any:
    """Decode a JSON document into dest and return dest.

    Raises:
        DecodeError: If the text is not valid JSON.
    """
    try:
        data = _json.loads(text)
    except _json.JSONDecodeError as exc:
        raise errors.DecodeError(exc.msg, source_name=name, line=exc.lineno, column=exc.colno) from exc
    if data is not None:
        session = merger.Merger(name, full_records=mode is SerializationMode.FULL)
        session.merge(dest, data, dest_type=dest_type)
    return dest


def _decode_error(exc: _yaml.YAMLError, name: str) -> errors.DecodeError:
    mark = getattr(exc, "problem_mark", None)
    if mark is None:
        return errors.DecodeError(str(exc), source_name=name)
    return errors.DecodeError(
        getattr(exc, "problem", None) or str(exc),
        source_name=name,
        line=mark.line + 1,
        column=mark.column + 1,
    )
