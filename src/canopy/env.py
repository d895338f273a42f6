"""
Environment change-sets.

populate_env() turns a merged record or mapping into ``{NAME: value}``
pairs, where a value of None means "unset this variable". Names are the
field (or key) split into words, joined with ``_``, upper-cased and
prefixed: with prefix ``CANOPY`` the field ``server_port`` becomes
``CANOPY_SERVER_PORT`` and the key ``log-level`` becomes
``CANOPY_LOG_LEVEL``.

A record field's canopy tag can change this:

- ``canopy:"-"``            never export the field
- ``canopy:"NAME"``         export under NAME (still prefixed)
- ``canopy:"A;B"``          export under several names
- ``canopy:"NAME,raw"``     export under NAME exactly, without prefix
- ``canopy:",inline"``      export the embedded record's fields directly

Values: strings verbatim, numbers and booleans in their document form
(``true``, ``42``), undefined Options and None unset the variable, and
anything else becomes compact JSON.
"""

import collections.abc as _abc
import json as _json
import logging as _logging
import os as _os
import re as _re
import typing as _typing

import canopy.constants as constants
import canopy.kinds as kinds
import canopy.marshal as marshal
import canopy.naming as naming
import canopy.option as option

_logger = _logging.getLogger(__name__)

_NON_ALNUM = _re.compile(r"[^0-9A-Za-z]+")

ChangeSet: _typing.TypeAlias = dict[str, str | None]


def format_env_name(prefix: str, name: str) -> str:
    """``{PREFIX}_{NAME}`` upper-cased, with non-alphanumerics replaced by ``_``."""
    return _NON_ALNUM.sub("_", f"{prefix}_{name}".upper())


def format_env_value(value: _typing.Any) -> str | None:
    """Render a value for the environment; None means unset."""
    if isinstance(value, option.Option):
        if not value.is_defined():
            return None
        value = value.get_value()
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (bool, int, float)):
        return option.format_scalar(value)
    encoded = _json.dumps(
        marshal.to_builtins(value, marshal.SerializationMode.BARE),
        separators=(",", ":"),
        sort_keys=True,
    )
    return "" if encoded == "null" else encoded


def _key_name(key: str) -> str:
    words: list[str] = []
    for chunk in _NON_ALNUM.split(key):
        words.extend(naming.split_words(chunk))
    return "_".join(words)


def _field_names(attribute: str, tags: _typing.Mapping[str, str]) -> tuple[list[str], bool] | None:
    """Env names for a field and whether they get the prefix; None to skip it."""
    names = ["_".join(naming.split_words(attribute))]
    tag = tags.get("canopy")
    if not tag:
        return names, True
    parts = tag.split(",")
    if parts[0] == "-":
        return None
    for part in parts:
        if part.startswith("name="):
            continue
        if part:
            names = part.split(";")
        break
    return names, "raw" not in parts[1:]


def populate_env(data: _typing.Any, prefix: str = constants.DEFAULT_ENV_PREFIX) -> ChangeSet:
    """Build the environment change-set for a merged record or mapping."""
    changes: ChangeSet = {}
    if isinstance(data, _abc.Mapping):
        for key, value in data.items():
            if not isinstance(key, str):
                continue
            changes[format_env_name(prefix, _key_name(key))] = format_env_value(value)
    elif kinds.is_record(data):
        for fd in kinds.record_fields(data):
            value = getattr(data, fd.attribute)
            if "inline" in naming.tag_options(fd.tags.get("canopy")):
                changes.update(populate_env(value, prefix))
                continue
            resolved = _field_names(fd.attribute, fd.tags)
            if resolved is None:
                continue
            names, prefixed = resolved
            formatted = format_env_value(value)
            for name in names:
                changes[format_env_name(prefix, name) if prefixed else name] = formatted
    return changes


def apply_change_set(changes: _typing.Mapping[str, str | None]) -> None:
    """Set or unset process environment variables."""
    for name, value in changes.items():
        if value is None:
            _os.environ.pop(name, None)
        else:
            _os.environ[name] = value
    _logger.debug("Applied %d environment changes", len(changes))
