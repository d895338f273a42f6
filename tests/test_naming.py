"""Tests for field naming rules."""

import pytest as _pytest

import canopy.naming as naming


class TestWordSplitting:
    """Tests for split_words and the case converters."""

    @_pytest.mark.parametrize(
        ("identifier", "words"),
        [
            ("HTTPServer_port2", ["HTTP", "Server", "port", "2"]),
            ("server_port", ["server", "port"]),
            ("FooBar", ["Foo", "Bar"]),
            ("string1", ["string", "1"]),
        ],
    )
    def test_split_words(self, identifier: str, words: list[str]) -> None:
        """Identifiers split on case boundaries, digits and underscores."""
        assert naming.split_words(identifier) == words

    def test_kebab_case(self) -> None:
        """Words are lower-cased and joined with dashes."""
        assert naming.kebab_case("FooBar") == "foo-bar"
        assert naming.kebab_case("struct_field") == "struct-field"
        assert naming.kebab_case("Float32") == "float-32"

    def test_camel_case(self) -> None:
        """Alphanumeric runs are title-cased and joined."""
        assert naming.camel_case("foo-bar") == "FooBar"
        assert naming.camel_case("foo_bar") == "FooBar"
        assert naming.camel_case("fooBar") == "FooBar"


class TestTags:
    """Tests for tag parsing."""

    def test_tag_name_and_options(self) -> None:
        """The name is before the first comma; options follow."""
        assert naming.tag_name("port,omitempty") == "port"
        assert naming.tag_options("port,omitempty,inline") == ["omitempty", "inline"]
        assert naming.tag_name(None) == ""
        assert naming.tag_options("") == []

    def test_yaml_dash_means_no_name(self) -> None:
        """A yaml tag of '-' does not rename the field."""
        assert naming.yaml_tag_name({"yaml": "-"}) == ""


class TestFieldNames:
    """Tests for serialized and canonical names."""

    def test_serialized_name_defaults_to_kebab_case(self) -> None:
        """Without a yaml tag the attribute is kebab-cased."""
        assert naming.serialized_name("server_port", {}) == "server-port"

    def test_serialized_name_uses_yaml_tag(self) -> None:
        """The yaml tag name wins."""
        assert naming.serialized_name("server_port", {"yaml": "port,omitempty"}) == "port"

    def test_canonical_name_from_serialized(self) -> None:
        """Spellings of the same key meet at one canonical name."""
        assert naming.canonical_name("foo_bar", {}) == "FooBar"
        assert naming.canonical_name("x", {"yaml": "foo-bar"}) == "FooBar"

    def test_canonical_name_explicit(self) -> None:
        """An explicit name= option overrides the derived name."""
        assert naming.canonical_name("x", {"canopy": ",name=Custom"}) == "Custom"

    def test_is_inline(self) -> None:
        """Either tag may mark an embedded record as inline."""
        assert naming.is_inline({"yaml": ",inline"})
        assert naming.is_inline({"canopy": ",inline"})
        assert not naming.is_inline({"yaml": "inner"})

    def test_merge_tags_first_wins(self) -> None:
        """Only preserved tags are kept and the first field's tag wins."""
        merged = naming.merge_tags(
            {"yaml": "a"},
            {"yaml": "b", "json": "c", "toml": "d"},
            ("yaml", "json"),
        )
        assert merged == {"json": "c", "yaml": "a"}
