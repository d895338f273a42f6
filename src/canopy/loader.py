"""
Layered config loading.

ConfigLoader finds every copy of a config file between the filesystem root
and the working directory, reads (or executes) each one and merges them
into a single destination.

Discovery for ``load_all_configs("app.yaml")`` run in ``/home/me/src/proj``:

1. ``/home/me/src/proj/app.yaml``   (most specific, merged first)
2. ``/home/me/src/app.yaml``
3. ``/home/me/app.yaml``
4. ``/app.yaml``                     (and ``$HOME/app.yaml`` when cwd is outside home)
5. ``/etc/app.yaml``                 (most general, merged last)

The first document to set a value wins; later documents only fill values
that are still empty or code defaults. A document can stop the sequence
with ``config: {stop: true}`` or replace fields wholesale with
``config: {overwrite: [...]}``.

Executable config files are run and their stdout is parsed instead; the
document name becomes ``<path>[stdout]``.

After each document is merged the destination is exported to the
environment (see canopy.env). Every file is read (and every executable run)
before the first merge.

Environment variables:
- CANOPY_CONFIG_DIR: Default for the config_dir option.
"""

from __future__ import annotations

import collections.abc as _abc
import dataclasses as _dataclasses
import logging as _logging
import os as _os
import pathlib as _pathlib
import subprocess as _subprocess
import typing as _typing

import yaml as _yaml

import canopy.constants as constants
import canopy.env as env
import canopy.errors as errors
import canopy.kinds as kinds
import canopy.merger as merger
import canopy.option as option
import canopy.source as source

_logger = _logging.getLogger(__name__)

PreProcessor: _typing.TypeAlias = _typing.Callable[[_yaml.Node], None]
FilterOut: _typing.TypeAlias = _typing.Callable[[_yaml.Node], bool]
ChangeSetApplier: _typing.TypeAlias = _typing.Callable[[env.ChangeSet], None]


class ConfigSource(_typing.NamedTuple):
    """A composed document and the name used for its provenance."""

    config: _yaml.Node | None
    filename: str


def find_parent_paths(
    home: str | _os.PathLike[str] | None,
    cwd: str | _os.PathLike[str],
    filename: str | _os.PathLike[str],
    *,
    include_missing: bool = False,
) -> list[_pathlib.Path]:
    """Candidate copies of filename, from the most general to the most specific.

    An absolute filename is returned on its own. Otherwise the home
    directory copy comes first when cwd is not inside home, followed by each
    directory from the filesystem root down to cwd.
    """
    name = _pathlib.Path(filename)
    if name.is_absolute():
        return [name] if include_missing or name.exists() else []

    candidates: list[_pathlib.Path] = []
    cwd_path = _pathlib.Path(cwd)
    if home:
        home_path = _pathlib.Path(home)
        if not cwd_path.is_relative_to(home_path):
            candidates.append(home_path / name)
    for directory in [*reversed(cwd_path.parents), cwd_path]:
        candidates.append(directory / name)
    if include_missing:
        return candidates
    return [path for path in candidates if path.exists()]


def stop_filter() -> FilterOut:
    """Filter that drops every document after one declaring ``config: {stop: true}``."""
    stopped = False

    def _filter(node: _yaml.Node) -> bool:
        nonlocal stopped
        if stopped:
            return True
        stopped = _declares_stop(node)
        # the stopping document itself is still merged
        return False

    return _filter


def _declares_stop(node: _yaml.Node) -> bool:
    if not isinstance(node, _yaml.MappingNode):
        return False
    for key, value in source.mapping_pairs(node):
        if key != constants.DIRECTIVES_KEY or not isinstance(value, _yaml.MappingNode):
            continue
        for directive, setting in source.mapping_pairs(value):
            if directive == "stop" and isinstance(setting, _yaml.ScalarNode):
                try:
                    return option.parse_bool(setting.value)
                except ValueError:
                    return False
    return False


def _is_executable(path: _pathlib.Path) -> bool:
    return path.is_file() and path.stat().st_mode & 0o111 != 0


@_dataclasses.dataclass
class ConfigLoader:
    """Finds, reads and merges layered config documents.

    Attributes:
        home: Home directory (defaults to ``$HOME``).
        cwd: Directory discovery starts from; also the base for document names.
        config_dir: Subdirectory joined onto the filename (e.g. ``.config/app``).
        env_prefix: Prefix for exported environment variables.
        pre_processor: Called with each composed document before it is merged.
        filter_out: Returns True for documents to skip; defaults to stop_filter().
        apply_change_set: Receives the environment change-set after each
            document; None disables environment export.
        allow_exec: Run executable config files instead of parsing them.
    """

    home: str | None = None
    cwd: str | None = None
    config_dir: str | None = None
    env_prefix: str = constants.DEFAULT_ENV_PREFIX
    pre_processor: PreProcessor | None = None
    filter_out: FilterOut | None = None
    apply_change_set: ChangeSetApplier | None = env.apply_change_set
    allow_exec: bool = True

    def __post_init__(self) -> None:
        if self.home is None:
            self.home = _os.environ.get("HOME") or str(_pathlib.Path.home())
        if self.cwd is None:
            self.cwd = _os.getcwd()
        if self.config_dir is None:
            self.config_dir = _os.environ.get(constants.ENV_CONFIG_DIR, "")

    def copy(self, **changes: _typing.Any) -> ConfigLoader:
        """A new loader with some options replaced."""
        return _dataclasses.replace(self, **changes)

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    def _config_name(self, filename: str | _os.PathLike[str]) -> str:
        if self.config_dir:
            return _os.path.join(self.config_dir, filename)
        return _os.fspath(filename)

    def find_parent_paths(self, filename: str | _os.PathLike[str]) -> list[_pathlib.Path]:
        return find_parent_paths(self.home, self.cwd or _os.getcwd(), filename)

    def candidate_paths(
        self,
        filename: str | _os.PathLike[str],
        *,
        include_missing: bool = False,
    ) -> list[_pathlib.Path]:
        """Every path load_all_configs() consults, in processing order (most specific first)."""
        name = self._config_name(filename)
        paths: list[_pathlib.Path] = []
        if not _os.path.isabs(name):
            paths.append(_pathlib.Path(constants.SYSTEM_CONFIG_DIR) / name)
        paths.extend(find_parent_paths(self.home, self.cwd or _os.getcwd(), name, include_missing=include_missing))
        paths.reverse()
        if include_missing:
            return paths
        return [path for path in paths if path.exists()]

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _relative_name(self, path: _pathlib.Path) -> str:
        try:
            return _os.path.relpath(path, self.cwd)
        except ValueError:
            return str(path)

    def read_file(self, path: str | _os.PathLike[str]) -> ConfigSource | None:
        """Read (or execute) one config file.

        Returns:
            The composed document, or None when the file does not exist.

        Raises:
            SubprocessError: An executable config exited unsuccessfully.
            ConfigFileError: The file could not be read.
            DecodeError: The content is not valid YAML.
        """
        file_path = _pathlib.Path(path)
        if not file_path.is_absolute():
            file_path = _pathlib.Path(_os.path.normpath(_pathlib.Path(self.cwd or _os.getcwd()) / file_path))
        if not file_path.exists():
            return None
        name = self._relative_name(file_path)

        if self.allow_exec and _is_executable(file_path):
            _logger.debug("Found executable config file: %s", file_path)
            try:
                completed = _subprocess.run(
                    [str(file_path)],
                    capture_output=True,
                    text=True,
                    check=False,
                )
            except OSError as exc:
                raise errors.SubprocessError(str(path), str(exc), -1) from exc
            if completed.returncode != 0:
                raise errors.SubprocessError(str(path), completed.stderr, completed.returncode)
            name += constants.STDOUT_SUFFIX
            content = completed.stdout
        else:
            _logger.debug("Reading config %s", file_path)
            try:
                content = file_path.read_text()
            except OSError as exc:
                raise errors.ConfigFileError(name, str(exc)) from exc

        try:
            node = _yaml.compose(content, Loader=_yaml.SafeLoader)
        except _yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            raise errors.DecodeError(
                getattr(exc, "problem", None) or str(exc),
                source_name=name,
                line=mark.line + 1 if mark else None,
                column=mark.column + 1 if mark else None,
            ) from exc
        return ConfigSource(node, name)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load_config(
        self,
        path: str | _os.PathLike[str],
        dest: _typing.Any,
        *,
        dest_type: _typing.Any = None,
    ) -> None:
        """Merge a single file into dest (a missing file is not an error)."""
        config_source = self.read_file(path)
        if config_source is None or config_source.config is None:
            return
        self.load_config_source(config_source.config, config_source.filename, dest, dest_type=dest_type)

    def load_config_source(
        self,
        node: _yaml.Node,
        name: str,
        dest: _typing.Any,
        *,
        dest_type: _typing.Any = None,
    ) -> None:
        """Merge one composed document into dest with its own session."""
        self._load_source(merger.Merger(name), node, dest, dest_type)

    def load_all_config_sources(
        self,
        sources: _typing.Iterable[ConfigSource],
        dest: _typing.Any,
        *,
        dest_type: _typing.Any = None,
    ) -> None:
        """Merge documents in order, the first taking precedence.

        Empty documents are skipped, as is every document the filter rejects.
        Overwrite directives of each document freeze the named fields for the
        documents after it.
        """
        session = merger.Merger()
        filter_out = self.filter_out or stop_filter()
        for config_source in sources:
            if config_source.config is None:
                continue
            if filter_out(config_source.config):
                _logger.debug("Skipping config %s", config_source.filename)
                continue
            session.source_name = config_source.filename
            self._load_source(session, config_source.config, dest, dest_type)
            session.advance()

    def load_all_configs(
        self,
        filename: str | _os.PathLike[str],
        dest: _typing.Any,
        *,
        dest_type: _typing.Any = None,
    ) -> list[ConfigSource]:
        """Discover, read and merge every layer of filename into dest.

        Returns:
            The documents that were read, in processing order.
        """
        sources: list[ConfigSource] = []
        for path in self.candidate_paths(filename):
            config_source = self.read_file(path)
            if config_source is not None:
                sources.append(config_source)
        _logger.debug("Loading %d config sources for %s", len(sources), filename)
        self.load_all_config_sources(sources, dest, dest_type=dest_type)
        return sources

    def _load_source(
        self,
        session: merger.Merger,
        node: _yaml.Node,
        dest: _typing.Any,
        dest_type: _typing.Any,
    ) -> None:
        if not (kinds.is_record(dest) or isinstance(dest, _abc.MutableMapping)):
            raise errors.InvalidArgumentError(f"options argument [{dest!r}] is not valid")
        if self.pre_processor is not None:
            try:
                self.pre_processor(node)
            except Exception as exc:
                location = source.node_coordinate(node)
                raise errors.DecodeError(
                    f"failed to process config file: {exc}",
                    source_name=session.source_name,
                    line=location.line,
                    column=location.column,
                ) from exc
        src = source.MergeSource.from_node(node)
        session.read_directives(src)
        session.merge(dest, src, dest_type=dest_type)
        if self.apply_change_set is not None:
            self.apply_change_set(self.populate_env(dest))

    def populate_env(self, data: _typing.Any) -> env.ChangeSet:
        return env.populate_env(data, self.env_prefix)
