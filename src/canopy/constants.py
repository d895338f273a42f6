"""
Shared constants for canopy.

Source names are the symbolic origins recorded on provenance-tracked
values. A value whose source is DEFAULT_SOURCE was never set by a real
document and may be replaced by any other source.
"""

DEFAULT_SOURCE = "default"
"""Value came from a code default (``Option.new``)."""

OVERRIDE_SOURCE = "override"
"""Value came from a command line flag."""

PROMPT_SOURCE = "prompt"
"""Value was answered interactively."""

YAML_SOURCE = "yaml"
"""Value was decoded from an anonymous YAML document."""

JSON_SOURCE = "json"
"""Value was decoded from an anonymous JSON document."""

MERGE_SOURCE = "merge"
"""Value was merged from a native value with no better origin."""

DEFAULT_ENV_PREFIX = "CANOPY"
"""Prefix for synthesized environment variable names."""

ENV_CONFIG_DIR = "CANOPY_CONFIG_DIR"
"""Environment variable overriding the loader's config_dir option."""

DIRECTIVES_KEY = "config"
"""Reserved document key holding the merge directives."""

STDOUT_SUFFIX = "[stdout]"
"""Suffix appended to the name of an executed config source."""

SYSTEM_CONFIG_DIR = "/etc"
"""Directory holding the most general config file."""

PRESERVED_TAGS = ("canopy", "json", "yaml")
"""Tag names carried over onto synthesized record fields."""
