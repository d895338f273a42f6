"""
Field naming rules.

A record field has three names:
- its attribute name (``struct_field``), used to get and set it;
- its serialized name (``struct-field``), the key used in documents;
- its canonical name (``StructField``), used to unify fields across
  records and map trees that spell the same key differently.

Tags follow the ``name,opt1,opt2`` convention under the keys ``yaml``,
``json`` and ``canopy``. The canopy tag may rename the canonical name
(``,name=MyName``), flatten an embedded record (``,inline``) and control
environment export (see canopy.env).
"""

import re as _re
import typing as _typing

# Words inside an identifier: acronyms, capitalized or lower words, digit runs
_IDENTIFIER_WORD = _re.compile(r"[A-Z]+(?![a-z])|[A-Z]?[a-z]+|[0-9]+")

# Alphanumeric runs, as used when camel-casing serialized names
_ALNUM_RUN = _re.compile(r"[0-9A-Za-z]+")

Tags: _typing.TypeAlias = _typing.Mapping[str, str]


def split_words(identifier: str) -> list[str]:
    """Split an identifier on case boundaries, digits and separators.

    Example:
        >>> split_words("HTTPServer_port2")
        ['HTTP', 'Server', 'port', '2']
    """
    return _IDENTIFIER_WORD.findall(identifier)


def kebab_case(identifier: str) -> str:
    """``FooBar`` / ``foo_bar`` -> ``foo-bar``; ``Float32`` -> ``float-32``."""
    return "-".join(word.lower() for word in split_words(identifier))


def camel_case(name: str) -> str:
    """Title-case every alphanumeric run and join them: ``foo-bar`` -> ``FooBar``."""
    return "".join(word[:1].upper() + word[1:] for word in _ALNUM_RUN.findall(name))


def tag_name(tag: str | None) -> str:
    """The name part of a tag (everything before the first comma)."""
    if not tag:
        return ""
    return tag.split(",", 1)[0]


def tag_options(tag: str | None) -> list[str]:
    """The option parts of a tag (everything after the first comma)."""
    if not tag:
        return []
    return tag.split(",")[1:]


def yaml_tag_name(tags: Tags) -> str:
    """The yaml tag name, or empty when absent or ``-``."""
    name = tag_name(tags.get("yaml"))
    if name in ("", "-"):
        return ""
    return name


def serialized_name(attribute: str, tags: Tags) -> str:
    """The document key for a field: its yaml tag name, else its kebab-cased name."""
    return yaml_tag_name(tags) or kebab_case(attribute)


def canonical_name(attribute: str, tags: Tags) -> str:
    """The unification key for a field.

    An explicit ``canopy:",name=X"`` wins; otherwise the serialized name is
    camel-cased so ``foo-bar``, ``foo_bar`` and ``fooBar`` all meet at
    ``FooBar``.
    """
    for part in (tags.get("canopy") or "").split(","):
        if part.startswith("name="):
            return part[len("name=") :]
    return camel_case(serialized_name(attribute, tags))


def is_inline(tags: Tags) -> bool:
    """True when the canopy tag (or, lacking one, the yaml tag) flattens the field."""
    tag = tags.get("canopy") or tags.get("yaml") or ""
    return tag.endswith(",inline")


def merge_tags(first: Tags, second: Tags, preserved: _typing.Iterable[str]) -> dict[str, str]:
    """Combine the preserved tags of two fields; the first field's tag wins."""
    merged: dict[str, str] = {}
    for key in sorted(preserved):
        value = first.get(key) or second.get(key)
        if value:
            merged[key] = value
    return merged
