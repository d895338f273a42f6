"""
Canopy - layered configuration with provenance.

Merges YAML documents found up a directory tree (and native Python records)
into typed destinations, recording for every value the document, line and
column it came from.
"""

import importlib.metadata as _metadata

# Version is defined in pyproject.toml - read it and parse into tuple (primary representation)
_raw_version = _metadata.version("canopy")
__version_info__: tuple[int, int, int] = tuple(int(x) for x in _raw_version.split(".")[:3])  # type: ignore[assignment]
__version__: str = ".".join(str(x) for x in __version_info__)

from canopy.errors import (  # noqa: E402
    CanopyError,
    ConfigFileError,
    DecodeError,
    DuplicateFieldError,
    InvalidArgumentError,
    NotAssignableError,
    SubprocessError,
)
from canopy.kinds import field  # noqa: E402
from canopy.loader import ConfigLoader, ConfigSource, find_parent_paths  # noqa: E402
from canopy.marshal import SerializationMode  # noqa: E402
from canopy.merger import Merger, merge  # noqa: E402
from canopy.option import (  # noqa: E402
    BoolOption,
    FileCoordinate,
    FloatOption,
    IntOption,
    ListBoolOption,
    ListFloatOption,
    ListIntOption,
    ListOption,
    ListStringOption,
    MapBoolOption,
    MapFloatOption,
    MapIntOption,
    MapOption,
    MapStringOption,
    Option,
    SourceLocation,
    StringOption,
)
from canopy.synthesis import make_merge_struct  # noqa: E402

__all__ = [
    "__version__",
    "__version_info__",
    "BoolOption",
    "CanopyError",
    "ConfigFileError",
    "ConfigLoader",
    "ConfigSource",
    "DecodeError",
    "DuplicateFieldError",
    "FileCoordinate",
    "FloatOption",
    "IntOption",
    "InvalidArgumentError",
    "ListBoolOption",
    "ListFloatOption",
    "ListIntOption",
    "ListOption",
    "ListStringOption",
    "MapBoolOption",
    "MapFloatOption",
    "MapIntOption",
    "MapOption",
    "MapStringOption",
    "Merger",
    "NotAssignableError",
    "Option",
    "SerializationMode",
    "SourceLocation",
    "StringOption",
    "SubprocessError",
    "field",
    "find_parent_paths",
    "make_merge_struct",
    "merge",
]
