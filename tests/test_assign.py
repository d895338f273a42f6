"""Tests for scalar assignment rules."""

import datetime as _datetime
import typing as _typing

import pytest as _pytest
import yaml as _yaml

import canopy.assign as assign
import canopy.errors as errors
import canopy.option as option
import canopy.source as source

Compose = _typing.Callable[[str], _yaml.Node]


def _native(value: _typing.Any) -> source.MergeSource:
    return source.MergeSource.from_native(value)


class Color:
    """A value type decoded through the from_document hook."""

    def __init__(self, name: str) -> None:
        self.name = name

    @classmethod
    def from_document(cls, value: _typing.Any) -> "Color":
        if not isinstance(value, str):
            raise TypeError("color must be a string")
        return cls(value)


class TestWritePolicy:
    """Tests for when an assignment writes."""

    def test_zero_destination_is_written(self) -> None:
        """An empty destination takes the source value."""
        assert assign.assign_value("", str, _native("x")) == assign.Result(True, "x")

    def test_set_destination_is_kept(self) -> None:
        """A non-zero destination is not replaced without overwrite."""
        assert assign.assign_value("x", str, _native("y")) == assign.Result(False, "x")

    def test_overwrite_replaces(self) -> None:
        """Overwrite replaces a set destination."""
        result = assign.assign_value("x", str, _native("y"), assign.AssignOptions(overwrite=True))
        assert result == assign.Result(True, "y")

    def test_default_destination_yields_to_non_default(self) -> None:
        """A destination holding a code default is replaced."""
        opts = assign.AssignOptions(dest_is_default=True)
        assert assign.assign_value(1, int, _native(2), opts) == assign.Result(True, 2)

    def test_collections_are_copied(self) -> None:
        """Written collections never alias the source."""
        items = [1, 2]
        result = assign.assign_value(None, _typing.Any, _native(items))
        items.append(3)
        assert result.value == [1, 2]


class TestNullSource:
    """Tests for null sources."""

    def test_null_keeps_destination(self) -> None:
        """A null source changes nothing by default."""
        assert assign.assign_value("x", str, _native(None)) == assign.Result(False, "x")

    def test_null_clears_optional_under_overwrite(self) -> None:
        """Optional destinations are cleared only when overwriting."""
        opts = assign.AssignOptions(overwrite=True)
        assert assign.assign_value("x", str | None, _native(None), opts) == assign.Result(True, None)


class TestCoercions:
    """Tests for the conversions between scalar types."""

    def test_int_widens_to_float(self) -> None:
        """Integers become floats."""
        result = assign.assign_value(0.0, float, _native(3))
        assert result.value == 3.0
        assert isinstance(result.value, float)

    def test_integral_float_narrows_to_int(self) -> None:
        """Integral floats become ints."""
        result = assign.assign_value(0, int, _native(2.0))
        assert result.value == 2
        assert isinstance(result.value, int)

    def test_string_literal_to_bool(self) -> None:
        """Boolean literals in strings are parsed."""
        assert assign.assign_value(False, bool, _native("true")).value is True

    def test_bad_bool_literal_is_decode_error(self) -> None:
        """A string that is not a boolean literal cannot be decoded."""
        with _pytest.raises(errors.DecodeError):
            assign.assign_value(False, bool, _native("yes"))

    def test_scalar_to_string(self) -> None:
        """Native scalars render in document form."""
        assert assign.assign_value("", str, _native(12)).value == "12"
        assert assign.assign_value("", str, _native(False)).value == "false"

    def test_scalar_to_string_prefers_token(self, compose: Compose) -> None:
        """Document scalars keep their literal text."""
        node = compose("a: 011\nb: 11.10\n")
        tokens = [
            assign.assign_value("", str, source.MergeSource.from_node(value)).value
            for _, value in node.value
        ]
        assert tokens == ["011", "11.10"]

    def test_string_to_int_is_not_assignable(self) -> None:
        """Strings are never parsed into numbers."""
        with _pytest.raises(errors.NotAssignableError) as exc_info:
            assign.assign_value(0, int, _native("x"))
        assert str(exc_info.value) == "str is not assignable to int"


class TestOptionDestinations:
    """Tests for assignments into Options."""

    def test_records_source_location(self, compose: Compose) -> None:
        """The option records document name and coordinate."""
        node = compose("name: web\n")
        _, value_node = node.value[0]
        result = assign.assign_value(
            option.StringOption(),
            option.StringOption,
            source.MergeSource.from_node(value_node),
            source_name="site.yaml",
        )
        assert result.changed
        assert result.value.get_value() == "web"
        assert str(result.value.get_source()) == "site.yaml:1:7"

    def test_native_source_uses_session_name(self) -> None:
        """Native values are attributed to the merge session."""
        result = assign.assign_value(option.BoolOption(), option.BoolOption, _native("true"))
        assert result.value.get_value() is True
        assert str(result.value.get_source()) == "merge"

    def test_defined_option_is_kept(self) -> None:
        """A defined, non-default option is not replaced."""
        dest = option.StringOption("kept", source=option.SourceLocation("first"))
        result = assign.assign_value(dest, option.StringOption, _native("new"))
        assert not result.changed
        assert dest.get_value() == "kept"

    def test_default_option_is_replaced(self) -> None:
        """A default option takes a real value."""
        dest = option.IntOption.new(1)
        result = assign.assign_value(dest, option.IntOption, _native(5))
        assert result.value.get_value() == 5
        assert not result.value.is_default()

    def test_default_does_not_replace_default(self) -> None:
        """A default source leaves a default destination alone."""
        dest = option.IntOption.new(1)
        result = assign.assign_value(dest, option.IntOption, _native(option.IntOption.new(2)))
        assert not result.changed
        assert dest.get_value() == 1

    def test_source_option_provenance_is_carried(self) -> None:
        """Unwrapped source options keep their own provenance."""
        src = option.StringOption("x", source=option.SourceLocation("a.yaml", option.FileCoordinate(2, 3)))
        result = assign.assign_value(option.StringOption(), option.StringOption, _native(src))
        assert str(result.value.get_source()) == "a.yaml:2:3"

    def test_undefined_source_option_is_ignored(self) -> None:
        """Undefined source options carry no value."""
        result = assign.assign_value("x", str, _native(option.StringOption()))
        assert result == assign.Result(False, "x")

    def test_any_option_keeps_native_types(self, compose: Compose) -> None:
        """An untyped Option keeps the document's resolved type."""
        node = compose("a: foo\nb: 12\nc: 12.2\nd: 12.2.2\n")
        values = [
            assign.assign_value(option.Option(), option.Option, source.MergeSource.from_node(value)).value.get_value()
            for _, value in node.value
        ]
        assert values == ["foo", 12, 12.2, "12.2.2"]

    def test_restores_full_record(self) -> None:
        """Full records restore value, source and defined flag."""
        record = {"value": 3, "source": "site.yaml:4:5", "defined": True}
        result = assign.assign_value(
            option.IntOption(),
            option.IntOption,
            _native(record),
            assign.AssignOptions(full_records=True),
        )
        assert result.value == option.IntOption(
            3, source=option.SourceLocation("site.yaml", option.FileCoordinate(4, 5))
        )


class TestSpecialDestinations:
    """Tests for raw nodes, collections and decode hooks."""

    def test_raw_node_keeps_node(self, compose: Compose) -> None:
        """A yaml.Node destination receives the composed node verbatim."""
        node = compose("a: [1, 2]\n")
        result = assign.assign_value(None, _yaml.Node, source.MergeSource.from_node(node))
        assert result.value is node

    def test_raw_node_from_native(self) -> None:
        """Native values are encoded into a node."""
        result = assign.assign_value(None, _yaml.Node, _native({"a": 1}))
        assert isinstance(result.value, _yaml.MappingNode)
        assert source.decode_node(result.value) == {"a": 1}

    def test_collection_destination_is_not_assignable(self) -> None:
        """Collections are left to the structural merge."""
        with _pytest.raises(errors.NotAssignableError):
            assign.assign_value([], list[str], _native(["a"]))

    def test_from_document_hook(self) -> None:
        """Types with a from_document classmethod decode themselves."""
        result = assign.assign_value(None, Color | None, _native("red"))
        assert isinstance(result.value, Color)
        assert result.value.name == "red"

    def test_from_document_failure_is_decode_error(self) -> None:
        """Hook failures become DecodeError."""
        with _pytest.raises(errors.DecodeError):
            assign.assign_value(None, Color | None, _native(3))

    def test_pydantic_type_adapter(self) -> None:
        """Other types are validated with pydantic."""
        result = assign.assign_value(None, _datetime.date | None, _native("2024-01-02"))
        assert result.value == _datetime.date(2024, 1, 2)

    def test_pydantic_validation_failure_is_not_assignable(self) -> None:
        """Values pydantic rejects are not assignable."""
        with _pytest.raises(errors.NotAssignableError):
            assign.assign_value(None, _datetime.date | None, _native("not a date"))
