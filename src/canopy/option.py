"""
Provenance-tracked values.

An Option wraps a single value together with where it came from (a
SourceLocation) and whether it was ever defined. Merging only ever replaces
an Option that is undefined, or one whose value came from a code default.

Variants:
- Option: holds any value (``Option[T]`` annotations restrict the type).
- StringOption, IntOption, FloatOption, BoolOption: typed scalars.
- MapOption / ListOption families: containers of options that accept
  repeated command line tokens.

Example:
    >>> port = IntOption.new(8080)
    >>> port.is_default()
    True
    >>> port.set("9090")
    >>> port.get_value(), str(port.get_source())
    (9090, 'override')
"""

from __future__ import annotations

import dataclasses as _dataclasses
import re as _re
import typing as _typing

import canopy.constants as constants
import canopy.errors as errors

T = _typing.TypeVar("T")

_TRUE_LITERALS = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_LITERALS = frozenset({"0", "f", "F", "FALSE", "false", "False"})

# KEY=VALUE or KEY:VALUE, split on the first separator only
_MAP_TOKEN_SEPARATOR = _re.compile("[:=]")


@_dataclasses.dataclass(frozen=True, slots=True)
class FileCoordinate:
    """1-indexed line and column inside a document."""

    line: int
    column: int

    def __str__(self) -> str:
        return f"{self.line}:{self.column}"


@_dataclasses.dataclass(frozen=True, slots=True)
class SourceLocation:
    """Where a value came from: a symbolic or file name plus optional coordinate."""

    name: str = ""
    location: FileCoordinate | None = None

    def __str__(self) -> str:
        if self.location is None:
            return self.name
        return f"{self.name}:{self.location}"

    def __bool__(self) -> bool:
        return bool(self.name) or self.location is not None

    @classmethod
    def parse(cls, text: str) -> SourceLocation:
        """Parse the ``name`` or ``name:line:col`` rendering back into a location.

        Names may themselves contain colons; only a trailing pair of integers
        is treated as a coordinate.
        """
        parts = text.rsplit(":", 2)
        if len(parts) == 3 and parts[1].isdigit() and parts[2].isdigit():
            return cls(parts[0], FileCoordinate(int(parts[1]), int(parts[2])))
        return cls(text)


def parse_bool(text: str) -> bool:
    """Parse the boolean literals accepted on the command line and in coercions.

    Raises:
        ValueError: If text is not one of the recognized literals.
    """
    if text in _TRUE_LITERALS:
        return True
    if text in _FALSE_LITERALS:
        return False
    raise ValueError(f"invalid boolean literal {text!r}")


def format_scalar(value: _typing.Any) -> str:
    """Render a scalar the way it would be written in a document.

    Booleans are lower-case and integral floats drop their fraction, so
    ``True`` renders as ``true`` and ``42.0`` as ``42``.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer() and abs(value) < 1e21:
            return str(int(value))
        return repr(value)
    return str(value)


def zero_of(value_type: _typing.Any) -> _typing.Any:
    """Zero value for the scalar types an Option can hold."""
    if value_type is str:
        return ""
    if value_type is bool:
        return False
    if value_type is int:
        return 0
    if value_type is float:
        return 0.0
    return None


def check_value(value: _typing.Any, value_type: _typing.Any) -> _typing.Any:
    """Return value converted for value_type, or raise NotAssignableError.

    Integers widen to float and any scalar becomes a string; everything else
    must already be an instance of value_type. Booleans are never numbers.
    """
    if value_type is object or value_type is _typing.Any:
        return value
    if value_type is float:
        if isinstance(value, float):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return float(value)
    elif value_type is int:
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    elif value_type is str:
        if isinstance(value, str):
            return value
        if isinstance(value, (bool, int, float)):
            return format_scalar(value)
    elif isinstance(value_type, type) and isinstance(value, value_type):
        return value
    raise errors.NotAssignableError(type(value), value_type)


def _parse_token(token: str, value_type: _typing.Any) -> _typing.Any:
    if value_type is bool:
        return parse_bool(token)
    if value_type is int:
        return int(token)
    if value_type is float:
        return float(token)
    return token


class Option(_typing.Generic[T]):
    """A value plus its provenance.

    Attributes:
        value: The wrapped value (the type's zero value when undefined).
        source: Where the value came from.
        defined: False until a value has been set by any source.
    """

    value_type: _typing.ClassVar[_typing.Any] = object

    def __init__(
        self,
        value: _typing.Any = None,
        *,
        source: SourceLocation | None = None,
        defined: bool | None = None,
        value_type: _typing.Any = None,
    ) -> None:
        if value_type is not None:
            self.value_type = value_type
        if value is None:
            self.value = zero_of(self.value_type)
        else:
            self.value = check_value(value, self.value_type)
        self.source = source if source is not None else SourceLocation()
        self.defined = (value is not None) if defined is None else defined

    @classmethod
    def new(cls, default: _typing.Any, **kwargs: _typing.Any) -> _typing.Self:
        """Create a defined option whose value is a code default."""
        return cls(
            default,
            source=SourceLocation(constants.DEFAULT_SOURCE),
            defined=True,
            **kwargs,
        )

    def is_defined(self) -> bool:
        return self.defined

    def get_value(self) -> _typing.Any:
        return self.value

    def set_value(self, value: _typing.Any) -> None:
        """Set the value, converting where a lossless coercion exists.

        Raises:
            NotAssignableError: If value cannot be held by this option.
        """
        self.value = check_value(value, self.value_type)
        self.defined = True

    def get_source(self) -> SourceLocation:
        return self.source

    def set_source(self, source: SourceLocation) -> None:
        self.source = source

    def is_default(self) -> bool:
        return self.source.name == constants.DEFAULT_SOURCE

    def is_override(self) -> bool:
        return self.source.name == constants.OVERRIDE_SOURCE

    def is_cumulative(self) -> bool:
        return False

    def set(self, token: str) -> None:
        """Set the value from a command line token.

        Raises:
            ValueError: If the token does not parse as the value type.
        """
        self.value = _parse_token(token, self.value_type)
        self.source = SourceLocation(constants.OVERRIDE_SOURCE)
        self.defined = True

    def write_answer(self, value: _typing.Any) -> None:
        """Record an interactively answered value."""
        self.set_value(value)
        self.source = SourceLocation(constants.PROMPT_SOURCE)

    def copy(self) -> _typing.Self:
        clone = type(self).__new__(type(self))
        clone.__dict__.update(self.__dict__)
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Option):
            return NotImplemented
        return (
            self.defined == other.defined
            and self.source == other.source
            and type(self.value) is type(other.value)
            and self.value == other.value
        )

    __hash__ = None  # type: ignore[assignment]

    def __str__(self) -> str:
        return format_scalar(self.value)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(value={self.value!r}, "
            f"source={str(self.source)!r}, defined={self.defined})"
        )


class StringOption(Option[str]):
    value_type = str


class IntOption(Option[int]):
    value_type = int


class FloatOption(Option[float]):
    value_type = float


class BoolOption(Option[bool]):
    value_type = bool


class MapOption(dict):
    """A mapping of option values that accepts repeated ``KEY=VALUE`` tokens."""

    element_type: _typing.ClassVar[type[Option]] = Option

    def set(self, token: str) -> None:
        parts = _MAP_TOKEN_SEPARATOR.split(token, maxsplit=1)
        if len(parts) != 2:
            raise ValueError(f"expected KEY=VALUE got '{token}'")
        value = self.element_type()
        value.set(parts[1])
        self[parts[0]] = value

    def write_answer(self, name: str, value: _typing.Any) -> None:
        answer = self.element_type()
        answer.write_answer(value)
        self[name] = answer

    def is_cumulative(self) -> bool:
        return True

    def is_defined(self) -> bool:
        return len(self) > 0

    def values_map(self) -> dict[str, _typing.Any]:
        """Plain mapping of the inner values."""
        return {key: option.get_value() for key, option in self.items()}


class MapStringOption(MapOption):
    element_type = StringOption


class MapIntOption(MapOption):
    element_type = IntOption


class MapFloatOption(MapOption):
    element_type = FloatOption


class MapBoolOption(MapOption):
    element_type = BoolOption


class ListOption(list):
    """A list of option values that accepts repeated tokens."""

    element_type: _typing.ClassVar[type[Option]] = Option

    def set(self, token: str) -> None:
        value = self.element_type()
        value.set(token)
        self.append(value)

    def write_answer(self, value: _typing.Any) -> None:
        answer = self.element_type()
        answer.write_answer(value)
        self.append(answer)

    def is_cumulative(self) -> bool:
        return True

    def is_defined(self) -> bool:
        return len(self) > 0

    def append_values(self, *values: _typing.Any) -> _typing.Self:
        """Return a new list with each value appended as a default option."""
        result = type(self)(self)
        result.extend(self.element_type.new(value) for value in values)
        return result

    def values(self) -> list[_typing.Any]:
        """Plain list of the inner values."""
        return [option.get_value() for option in self]


class ListStringOption(ListOption):
    element_type = StringOption


class ListIntOption(ListOption):
    element_type = IntOption


class ListFloatOption(ListOption):
    element_type = FloatOption


class ListBoolOption(ListOption):
    element_type = BoolOption


def is_option_type(tp: _typing.Any) -> bool:
    """True for Option classes and ``Option[T]`` aliases."""
    origin = _typing.get_origin(tp) or tp
    return isinstance(origin, type) and issubclass(origin, Option)


def new_option(tp: _typing.Any) -> Option:
    """Allocate an undefined option for an Option class or ``Option[T]`` alias."""
    origin = _typing.get_origin(tp)
    if origin is None:
        return tp()
    args = _typing.get_args(tp)
    if origin.value_type is object and args:
        return origin(value_type=args[0])
    return origin()


def option_value_type(tp: _typing.Any) -> _typing.Any:
    """The value type held by an Option class or ``Option[T]`` alias."""
    origin = _typing.get_origin(tp)
    if origin is None:
        return tp.value_type
    args = _typing.get_args(tp)
    if origin.value_type is object and args:
        return args[0]
    return origin.value_type
