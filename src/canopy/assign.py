"""
Scalar assignment.

assign_value() decides whether a single source value may be written to a
destination and converts it on the way. It is a fixed, ordered list of
rules; the first rule that applies produces the result:

1. null source                  (Optional destinations clear only under overwrite)
2. source Option                (unwrap, carrying its provenance along)
3. destination Option           (assign the inner value, then record provenance)
4. raw YAML node destination    (keep the original node verbatim)
5. collection destination       (rejected; the structural merge handles these)
6. numeric widening             (int -> float, integral float -> int)
7. direct type match
8. string literal -> bool
9. scalar -> string             (prefers the literal document token)
10. decode hook                 (``from_document`` classmethod or pydantic TypeAdapter)

If no rule applies a NotAssignableError is raised. The structural merge
treats that error as "try merging this as a map, list or record instead".

Every rule that produces a new value applies the same write policy: write
when overwriting, when the destination is zero, or when the destination
holds a default and the source does not.
"""

from __future__ import annotations

import dataclasses as _dataclasses
import typing as _typing

import pydantic as _pydantic
import yaml as _yaml

import canopy.constants as constants
import canopy.errors as errors
import canopy.kinds as kinds
import canopy.option as option
import canopy.source as source

_BUILTIN_SCALARS = (str, int, float, bool)

_RECORD_KEYS = frozenset({"value", "source", "defined"})


class Result(_typing.NamedTuple):
    """Outcome of an assignment: whether it changed, and the destination's new value."""

    changed: bool
    value: _typing.Any


@_dataclasses.dataclass(slots=True)
class AssignOptions:
    """Policy inputs for one assignment.

    Attributes:
        overwrite: Replace the destination regardless of its current value.
        src_is_default: The source value is itself a code default.
        dest_is_default: The destination currently holds a code default.
        source_location: Provenance carried from an unwrapped source Option.
        full_records: Accept ``{value, source, defined}`` mappings for Options.
    """

    overwrite: bool = False
    src_is_default: bool = False
    dest_is_default: bool = False
    source_location: option.SourceLocation | None = None
    full_records: bool = False


@_dataclasses.dataclass(slots=True)
class Assignment:
    """One pending assignment, as seen by the rules."""

    dest: _typing.Any
    dest_type: _typing.Any
    src: source.MergeSource
    opts: AssignOptions
    source_name: str

    @property
    def value(self) -> _typing.Any:
        return self.src.value

    @property
    def coordinate(self) -> option.FileCoordinate | None:
        return self.src.reflect()[1]

    @property
    def kind(self) -> kinds.Kind:
        return kinds.kind_of(self.dest_type)

    def should_write(self) -> bool:
        opts = self.opts
        return (
            opts.overwrite
            or kinds.is_zero(self.dest)
            or (opts.dest_is_default and not opts.src_is_default)
        )

    def write(self, value: _typing.Any) -> Result:
        if self.should_write():
            return Result(True, kinds.copy_value(value))
        return Result(False, self.dest)

    def resolved_location(self) -> option.SourceLocation:
        """Provenance for the value being assigned."""
        location = self.opts.source_location or option.SourceLocation(self.source_name)
        if not location.name:
            location = option.SourceLocation(self.source_name, location.location)
        coordinate = self.coordinate
        if coordinate is not None:
            location = option.SourceLocation(location.name, coordinate)
        return location

    def not_assignable(self) -> errors.NotAssignableError:
        coordinate = self.coordinate
        return errors.NotAssignableError(
            kinds.type_of(self.value),
            self.dest_type,
            line=coordinate.line if coordinate else None,
            column=coordinate.column if coordinate else None,
        )

    def nested(
        self,
        dest: _typing.Any,
        dest_type: _typing.Any,
        src: source.MergeSource | None = None,
        **changes: _typing.Any,
    ) -> Result:
        opts = _dataclasses.replace(self.opts, **changes)
        return assign_value(
            dest,
            dest_type,
            src if src is not None else self.src,
            opts,
            source_name=self.source_name,
        )


Rule = _typing.Callable[[Assignment], Result | None]


def _null_source(ctx: Assignment) -> Result | None:
    if ctx.value is not None:
        return None
    _, optional = kinds.unwrap_optional(ctx.dest_type)
    if optional and ctx.opts.overwrite:
        return Result(ctx.dest is not None, None)
    return Result(False, ctx.dest)


def _source_option(ctx: Assignment) -> Result | None:
    value = ctx.value
    if not isinstance(value, option.Option):
        return None
    if not value.is_defined():
        return Result(False, ctx.dest)
    return ctx.nested(
        ctx.dest,
        ctx.dest_type,
        source.MergeSource.from_native(value.get_value()),
        source_location=value.get_source(),
        src_is_default=value.is_default(),
    )


def _destination_option(ctx: Assignment) -> Result | None:
    if ctx.kind is not kinds.Kind.OPTION:
        return None
    dest = ctx.dest
    if dest is None:
        dest = kinds.zero_value(kinds.unwrap_optional(ctx.dest_type)[0])
    value = ctx.value
    if ctx.opts.full_records and isinstance(value, _typing.Mapping) and set(value) == _RECORD_KEYS:
        return _restore_record(ctx, dest, value)
    if dest.is_defined() and not dest.is_default() and not ctx.opts.overwrite:
        return Result(False, ctx.dest)
    inner = ctx.nested(dest.get_value(), dest.value_type, dest_is_default=dest.is_default())
    if not inner.changed:
        return Result(False, ctx.dest)
    dest.set_value(inner.value)
    dest.set_source(ctx.resolved_location())
    return Result(True, dest)


def _restore_record(ctx: Assignment, dest: option.Option, record: _typing.Mapping[str, _typing.Any]) -> Result:
    if not (ctx.opts.overwrite or not dest.is_defined() or dest.is_default()):
        return Result(False, ctx.dest)
    restored = dest.copy()
    inner = ctx.nested(
        option.zero_of(dest.value_type),
        dest.value_type,
        source.MergeSource.from_native(record["value"]),
        overwrite=True,
    )
    if record["value"] is not None:
        restored.set_value(inner.value)
    restored.defined = bool(record["defined"])
    restored.set_source(option.SourceLocation.parse(str(record["source"] or "")))
    return Result(True, restored)


def _raw_node(ctx: Assignment) -> Result | None:
    if ctx.kind is not kinds.Kind.NODE:
        return None
    if ctx.src.node is not None:
        return Result(True, ctx.src.node)
    # imported lazily: marshal builds on the merge machinery
    import canopy.marshal as marshal

    return Result(True, source.encode_node(marshal.to_builtins(ctx.value, marshal.SerializationMode.BARE)))


def _collection(ctx: Assignment) -> Result | None:
    if ctx.kind in (kinds.Kind.MAP, kinds.Kind.LIST, kinds.Kind.ARRAY, kinds.Kind.RECORD):
        raise ctx.not_assignable()
    return None


def _numeric_widening(ctx: Assignment) -> Result | None:
    dest_type = kinds.unwrap_optional(ctx.dest_type)[0]
    value = ctx.value
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if dest_type is float and isinstance(value, int):
        return ctx.write(float(value))
    if dest_type is int and isinstance(value, float) and value.is_integer():
        return ctx.write(int(value))
    return None


def _matches(value: _typing.Any, dest_type: _typing.Any) -> bool:
    if dest_type is _typing.Any or dest_type is object:
        return True
    if dest_type in (int, float) and isinstance(value, bool):
        return False
    return isinstance(dest_type, type) and isinstance(value, dest_type)


def _direct_match(ctx: Assignment) -> Result | None:
    if _matches(ctx.value, kinds.unwrap_optional(ctx.dest_type)[0]):
        return ctx.write(ctx.value)
    return None


def _string_to_bool(ctx: Assignment) -> Result | None:
    if kinds.unwrap_optional(ctx.dest_type)[0] is not bool or not isinstance(ctx.value, str):
        return None
    try:
        parsed = option.parse_bool(ctx.value)
    except ValueError as exc:
        coordinate = ctx.coordinate
        raise errors.DecodeError(
            str(exc),
            line=coordinate.line if coordinate else None,
            column=coordinate.column if coordinate else None,
        ) from exc
    return ctx.write(parsed)


def _scalar_to_string(ctx: Assignment) -> Result | None:
    if kinds.unwrap_optional(ctx.dest_type)[0] is not str:
        return None
    value = ctx.value
    if isinstance(value, (list, tuple, dict, set, _yaml.Node)) or kinds.is_record(value):
        return None
    token = ctx.src.token()
    return ctx.write(token if token is not None else option.format_scalar(value))


def _decode_hook(ctx: Assignment) -> Result | None:
    dest_type = kinds.unwrap_optional(ctx.dest_type)[0]
    if dest_type in _BUILTIN_SCALARS or ctx.kind is not kinds.Kind.SCALAR:
        return None
    hook = getattr(dest_type, "from_document", None)
    if callable(hook):
        try:
            return ctx.write(hook(ctx.value))
        except (TypeError, ValueError) as exc:
            coordinate = ctx.coordinate
            raise errors.DecodeError(
                f"cannot decode {dest_type!r}: {exc}",
                line=coordinate.line if coordinate else None,
                column=coordinate.column if coordinate else None,
            ) from exc
    try:
        adapter = _pydantic.TypeAdapter(dest_type)
    except _pydantic.PydanticSchemaGenerationError:
        return None
    try:
        return ctx.write(adapter.validate_python(ctx.value))
    except _pydantic.ValidationError as exc:
        raise ctx.not_assignable() from exc


RULES: tuple[Rule, ...] = (
    _null_source,
    _source_option,
    _destination_option,
    _raw_node,
    _collection,
    _numeric_widening,
    _direct_match,
    _string_to_bool,
    _scalar_to_string,
    _decode_hook,
)


def assign_value(
    dest: _typing.Any,
    dest_type: _typing.Any,
    src: source.MergeSource,
    opts: AssignOptions | None = None,
    *,
    source_name: str = constants.MERGE_SOURCE,
) -> Result:
    """Assign src to a destination currently holding dest.

    Args:
        dest: Current destination value.
        dest_type: Declared destination type (``typing.Any`` when untyped).
        src: The value being merged.
        opts: Write policy; defaults to a plain non-overwriting assignment.
        source_name: Name of the document being merged, used for provenance.

    Returns:
        Result(changed, value). When changed is False, value is dest.

    Raises:
        NotAssignableError: No rule can place the value.
        DecodeError: A coercion applied but the value was malformed.
    """
    ctx = Assignment(dest, dest_type, src, opts or AssignOptions(), source_name)
    for rule in RULES:
        result = rule(ctx)
        if result is not None:
            return result
    raise ctx.not_assignable()
