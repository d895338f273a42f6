"""Pydantic-settings integration.

LayeredYamlSettingsSource plugs layered config discovery into a
``pydantic_settings.BaseSettings`` class:

    class AppSettings(pydantic_settings.BaseSettings):
        model_config = pydantic_settings.SettingsConfigDict(env_prefix="APP_")

        name: str = "app"
        port: int = 8080

        @classmethod
        def settings_customise_sources(cls, settings_cls, init_settings, env_settings,
                                       dotenv_settings, file_secret_settings):
            return (
                init_settings,
                env_settings,
                settings.LayeredYamlSettingsSource(settings_cls, "app.yaml"),
                file_secret_settings,
            )

Architecture:
    The loader merges every discovered ``app.yaml`` (cwd, its parents, home,
    /etc) into a plain dict, honoring stop and overwrite directives. The
    merged dict is then handed to pydantic, which validates and converts it.
    The reserved ``config`` block never reaches the settings model.
"""

import collections.abc as _abc
import copy as _copy
import logging as _logging
import os as _os
import typing as _typing

import pydantic.fields as _pydantic_fields
import pydantic_settings as _pydantic_settings

import canopy.constants as constants
import canopy.loader as config_loader

_logger = _logging.getLogger(__name__)


class LayeredYamlSettingsSource(_pydantic_settings.PydanticBaseSettingsSource):
    """Settings source backed by ConfigLoader.load_all_configs()."""

    def __init__(
        self,
        settings_cls: type[_pydantic_settings.BaseSettings],
        filename: str | _os.PathLike[str],
        loader: config_loader.ConfigLoader | None = None,
    ) -> None:
        """
        Initialize the settings source.

        Args:
            settings_cls: The Settings class being populated.
            filename: Config file name to discover (e.g. ``app.yaml``).
            loader: Loader to use; defaults to one that does not export the
                merged values to the environment.
        """
        super().__init__(settings_cls)
        self._filename = filename
        self._loader = loader if loader is not None else config_loader.ConfigLoader(apply_change_set=None)
        self._data: dict[str, _typing.Any] = {}
        self._sources = self._loader.load_all_configs(filename, self._data)
        self._data.pop(constants.DIRECTIVES_KEY, None)
        _logger.debug("Settings for %s loaded from %d documents", filename, len(self._sources))

    def get_loaded_sources(self) -> list[str]:
        """Names of the documents read, most specific first."""
        return [config_source.filename for config_source in self._sources]

    def get_field_value(
        self,
        field: _pydantic_fields.FieldInfo,
        field_name: str,
    ) -> tuple[_typing.Any, str, bool]:
        key = field.alias or field_name
        value = self._data.get(key)
        if value is None:
            return None, key, False
        return value, key, isinstance(value, (_abc.Mapping, list))

    def __call__(self) -> dict[str, _typing.Any]:
        """Return the merged documents as a plain dict for validation."""
        return _copy.deepcopy(self._data)
