"""Tests for layered config discovery and loading."""

import dataclasses as _dataclasses
import pathlib as _pathlib
import typing as _typing

import pytest as _pytest
import yaml as _yaml

import canopy.errors as errors
import canopy.kinds as kinds
import canopy.loader as loader
import canopy.option as option
import tests.conftest as conftest


@_dataclasses.dataclass
class AppOptions:
    name: option.StringOption = kinds.field(default_factory=option.StringOption)
    port: option.IntOption = kinds.field(default_factory=lambda: option.IntOption.new(8080))
    tags: option.ListStringOption = kinds.field(default_factory=option.ListStringOption)


def _load(tree: conftest.LayeredTree, **kwargs: _typing.Any) -> tuple[AppOptions, list[loader.ConfigSource]]:
    kwargs.setdefault("apply_change_set", None)
    opts = AppOptions()
    sources = loader.ConfigLoader(**kwargs).load_all_configs("app.yaml", opts)
    return opts, sources


class TestFindParentPaths:
    """Tests for find_parent_paths()."""

    def test_candidates_run_root_to_cwd(self, config_tree: conftest.LayeredTree) -> None:
        """Every ancestor of cwd is a candidate, most general first."""
        paths = loader.find_parent_paths(config_tree.home, config_tree.cwd, "app.yaml", include_missing=True)
        assert paths[0] == _pathlib.Path("/app.yaml")
        assert paths[-3:] == [
            config_tree.home / "app.yaml",
            config_tree.project / "app.yaml",
            config_tree.cwd / "app.yaml",
        ]

    def test_home_first_when_outside(self, config_tree: conftest.LayeredTree) -> None:
        """A home directory that is not an ancestor of cwd is consulted first."""
        elsewhere = config_tree.root / "elsewhere"
        paths = loader.find_parent_paths(elsewhere, config_tree.cwd, "app.yaml", include_missing=True)
        assert paths[0] == elsewhere / "app.yaml"
        assert paths[1] == _pathlib.Path("/app.yaml")

    def test_only_existing_files(self, config_tree: conftest.LayeredTree) -> None:
        """Without include_missing only files that exist are returned."""
        config_tree.write(config_tree.project, "name: p\n")
        config_tree.write(config_tree.cwd, "name: c\n")
        paths = loader.find_parent_paths(config_tree.home, config_tree.cwd, "app.yaml")
        assert paths == [config_tree.project / "app.yaml", config_tree.cwd / "app.yaml"]

    def test_absolute_filename(self, config_tree: conftest.LayeredTree) -> None:
        """An absolute filename is its own only candidate."""
        path = config_tree.write(config_tree.root, "name: x\n", name="abs.yaml")
        assert loader.find_parent_paths(config_tree.home, config_tree.cwd, path) == [path]
        missing = config_tree.root / "missing.yaml"
        assert loader.find_parent_paths(config_tree.home, config_tree.cwd, missing) == []


class TestCandidatePaths:
    """Tests for ConfigLoader discovery options."""

    def test_most_specific_first(self, config_tree: conftest.LayeredTree) -> None:
        """Documents are processed from cwd outwards."""
        for directory in (config_tree.home, config_tree.project, config_tree.cwd):
            config_tree.write(directory, "name: x\n")
        paths = loader.ConfigLoader().candidate_paths("app.yaml")
        assert paths == [
            config_tree.cwd / "app.yaml",
            config_tree.project / "app.yaml",
            config_tree.home / "app.yaml",
        ]

    def test_system_directory_is_last(self, config_tree: conftest.LayeredTree) -> None:
        """/etc is the most general location."""
        paths = loader.ConfigLoader().candidate_paths("app.yaml", include_missing=True)
        assert paths[0] == config_tree.cwd / "app.yaml"
        assert paths[-1] == _pathlib.Path("/etc/app.yaml")

    def test_absolute_filename_listed_once(self, config_tree: conftest.LayeredTree) -> None:
        """An absolute filename is not repeated as a system path."""
        path = config_tree.write(config_tree.root, "name: x\n", name="abs.yaml")
        config = loader.ConfigLoader()
        assert config.candidate_paths(str(path)) == [path]
        assert config.candidate_paths(str(path), include_missing=True) == [path]

    def test_absolute_filename_loaded_once(self, config_tree: conftest.LayeredTree) -> None:
        """A document named by absolute path is read and merged a single time."""
        path = config_tree.write(config_tree.root, "tags: [a, b]\n", name="abs.yaml")
        opts = AppOptions()
        sources = loader.ConfigLoader(apply_change_set=None).load_all_configs(str(path), opts)
        assert len(sources) == 1
        assert opts.tags.values() == ["a", "b"]

    def test_config_dir(self, config_tree: conftest.LayeredTree) -> None:
        """config_dir is joined onto the filename at every level."""
        config_tree.write(config_tree.home / ".config" / "app", "name: x\n")
        paths = loader.ConfigLoader(config_dir=".config/app").candidate_paths("app.yaml")
        assert paths == [config_tree.home / ".config" / "app" / "app.yaml"]

    def test_config_dir_from_environment(
        self,
        config_tree: conftest.LayeredTree,
        monkeypatch: _pytest.MonkeyPatch,
    ) -> None:
        """CANOPY_CONFIG_DIR provides the default config_dir."""
        monkeypatch.setenv("CANOPY_CONFIG_DIR", ".settings")
        assert loader.ConfigLoader().config_dir == ".settings"

    def test_defaults_follow_environment(self, config_tree: conftest.LayeredTree) -> None:
        """home and cwd default to $HOME and the working directory."""
        config = loader.ConfigLoader()
        assert config.home == str(config_tree.home)
        assert config.cwd == str(config_tree.cwd)

    def test_copy(self, config_tree: conftest.LayeredTree) -> None:
        """copy() replaces options without touching the original."""
        original = loader.ConfigLoader(env_prefix="APP")
        changed = original.copy(allow_exec=False)
        assert changed.env_prefix == "APP"
        assert not changed.allow_exec
        assert original.allow_exec


class TestReadFile:
    """Tests for ConfigLoader.read_file()."""

    def test_missing_file(self, config_tree: conftest.LayeredTree) -> None:
        """A missing file reads as None."""
        assert loader.ConfigLoader().read_file("app.yaml") is None

    def test_empty_file(self, config_tree: conftest.LayeredTree) -> None:
        """An empty file has no document."""
        config_tree.write(config_tree.cwd, "")
        assert loader.ConfigLoader().read_file("app.yaml") == loader.ConfigSource(None, "app.yaml")

    def test_name_is_relative_to_cwd(self, config_tree: conftest.LayeredTree) -> None:
        """Document names are relative to the working directory."""
        path = config_tree.write(config_tree.project, "name: x\n")
        config_source = loader.ConfigLoader().read_file(path)
        assert config_source is not None
        assert config_source.filename == "../app.yaml"
        assert isinstance(config_source.config, _yaml.MappingNode)

    def test_invalid_yaml(self, config_tree: conftest.LayeredTree) -> None:
        """Malformed YAML is a DecodeError naming the file."""
        config_tree.write(config_tree.cwd, "name: [x\n")
        with _pytest.raises(errors.DecodeError) as exc_info:
            loader.ConfigLoader().read_file("app.yaml")
        assert exc_info.value.source_name == "app.yaml"

    @_pytest.mark.slow
    def test_executable_config(self, config_tree: conftest.LayeredTree) -> None:
        """Executable configs are run and their stdout is parsed."""
        config_tree.write(config_tree.cwd, "#!/bin/sh\necho 'name: script'\n", executable=True)
        config_source = loader.ConfigLoader().read_file("app.yaml")
        assert config_source is not None
        assert config_source.filename == "app.yaml[stdout]"
        opts = AppOptions()
        loader.ConfigLoader(apply_change_set=None).load_config_source(
            config_source.config, config_source.filename, opts
        )
        assert opts.name.get_value() == "script"
        assert str(opts.name.get_source()) == "app.yaml[stdout]:1:7"

    @_pytest.mark.slow
    def test_failing_executable(self, config_tree: conftest.LayeredTree) -> None:
        """A non-zero exit raises SubprocessError with the captured stderr."""
        config_tree.write(config_tree.cwd, "#!/bin/sh\necho boom >&2\nexit 3\n", executable=True)
        with _pytest.raises(errors.SubprocessError) as exc_info:
            loader.ConfigLoader().read_file("app.yaml")
        assert exc_info.value.returncode == 3
        assert exc_info.value.stderr == "boom\n"
        assert "is executable, but it failed to execute" in str(exc_info.value)

    def test_exec_disabled(self, config_tree: conftest.LayeredTree) -> None:
        """With allow_exec off executable files are parsed as YAML."""
        config_tree.write(config_tree.cwd, "name: plain\n", executable=True)
        config_source = loader.ConfigLoader(allow_exec=False).read_file("app.yaml")
        assert config_source is not None
        assert config_source.filename == "app.yaml"


class TestLoadAllConfigs:
    """Tests for layered loading."""

    def test_specific_document_wins(self, config_tree: conftest.LayeredTree) -> None:
        """Values from cwd win; parents fill the rest."""
        config_tree.write(config_tree.cwd, "name: specific\ntags: [a]\n")
        config_tree.write(config_tree.project, "name: general\nport: 1\ntags: [a, b]\n")
        opts, sources = _load(config_tree)
        assert [config_source.filename for config_source in sources] == ["app.yaml", "../app.yaml"]
        assert opts.name.get_value() == "specific"
        assert str(opts.name.get_source()) == "app.yaml:1:7"
        assert opts.port.get_value() == 1
        assert str(opts.port.get_source()) == "../app.yaml:2:7"
        assert opts.tags.values() == ["a", "b"]

    def test_defaults_survive_without_documents(self, config_tree: conftest.LayeredTree) -> None:
        """Nothing to load leaves defaults in place."""
        opts, sources = _load(config_tree)
        assert sources == []
        assert opts.port.is_default()

    def test_stop_directive(self, config_tree: conftest.LayeredTree) -> None:
        """A stopping document is merged and the more general ones are skipped."""
        config_tree.write(config_tree.cwd, "config:\n  stop: true\nname: specific\n")
        config_tree.write(config_tree.project, "port: 1\n")
        opts, _ = _load(config_tree)
        assert opts.name.get_value() == "specific"
        assert opts.port.get_value() == 8080

    def test_overwrite_directive(self, config_tree: conftest.LayeredTree) -> None:
        """A general document may overwrite what a specific one set."""
        config_tree.write(config_tree.cwd, "tags: [a]\n")
        config_tree.write(config_tree.project, "config:\n  overwrite: [tags]\ntags: [b]\n")
        config_tree.write(config_tree.home, "tags: [c]\n")
        opts, _ = _load(config_tree)
        assert opts.tags.values() == ["b"]

    def test_custom_filter(self, config_tree: conftest.LayeredTree) -> None:
        """filter_out replaces the stop filter."""
        config_tree.write(config_tree.cwd, "name: specific\n")
        config_tree.write(config_tree.project, "port: 1\n")

        def _skip_port(node: _yaml.Node) -> bool:
            return any(key.value == "port" for key, _ in node.value)

        opts, _ = _load(config_tree, filter_out=_skip_port)
        assert opts.name.get_value() == "specific"
        assert opts.port.is_default()

    def test_pre_processor(self, config_tree: conftest.LayeredTree) -> None:
        """The pre-processor may rewrite documents before they merge."""
        config_tree.write(config_tree.cwd, "title: renamed\n")

        def _rename(node: _yaml.Node) -> None:
            for key, _ in node.value:
                if key.value == "title":
                    key.value = "name"

        opts, _ = _load(config_tree, pre_processor=_rename)
        assert opts.name.get_value() == "renamed"

    def test_pre_processor_failure(self, config_tree: conftest.LayeredTree) -> None:
        """Pre-processor exceptions become DecodeError."""
        config_tree.write(config_tree.cwd, "name: x\n")

        def _fail(node: _yaml.Node) -> None:
            raise RuntimeError("nope")

        with _pytest.raises(errors.DecodeError) as exc_info:
            _load(config_tree, pre_processor=_fail)
        assert exc_info.value.source_name == "app.yaml"
        assert "failed to process config file: nope" in str(exc_info.value)

    def test_change_set_after_each_document(
        self,
        config_tree: conftest.LayeredTree,
        env_collector: list[dict[str, str | None]],
    ) -> None:
        """The environment change-set is applied after every document."""
        config_tree.write(config_tree.cwd, "name: specific\n")
        config_tree.write(config_tree.project, "port: 1\n")
        _load(config_tree, apply_change_set=env_collector.append)
        assert len(env_collector) == 2
        assert env_collector[0]["CANOPY_NAME"] == "specific"
        assert env_collector[0]["CANOPY_PORT"] == "8080"
        assert env_collector[1]["CANOPY_PORT"] == "1"

    def test_env_prefix(
        self,
        config_tree: conftest.LayeredTree,
        env_collector: list[dict[str, str | None]],
    ) -> None:
        """env_prefix changes the exported names."""
        config_tree.write(config_tree.cwd, "name: specific\n")
        _load(config_tree, apply_change_set=env_collector.append, env_prefix="APP")
        assert env_collector[0]["APP_NAME"] == "specific"

    def test_invalid_destination(self, config_tree: conftest.LayeredTree) -> None:
        """Destinations must be records or mutable mappings."""
        config_tree.write(config_tree.cwd, "name: x\n")
        with _pytest.raises(errors.InvalidArgumentError):
            loader.ConfigLoader(apply_change_set=None).load_all_configs("app.yaml", [])

    def test_load_config_single_file(self, config_tree: conftest.LayeredTree) -> None:
        """load_config() merges one file with its own session."""
        path = config_tree.write(config_tree.project, "name: single\n")
        opts = AppOptions()
        loader.ConfigLoader(apply_change_set=None).load_config(path, opts)
        assert opts.name.get_value() == "single"
        assert str(opts.name.get_source()) == "../app.yaml:1:7"

    def test_mapping_destination(self, config_tree: conftest.LayeredTree) -> None:
        """Plain dicts collect the merged documents."""
        config_tree.write(config_tree.cwd, "name: specific\n")
        config_tree.write(config_tree.project, "name: general\nport: 1\n")
        data: dict[str, _typing.Any] = {}
        loader.ConfigLoader(apply_change_set=None).load_all_configs("app.yaml", data)
        assert data == {"name": "specific", "port": 1}


class TestStopFilter:
    """Tests for stop_filter()."""

    def test_stops_after_declaring_document(self, compose: _typing.Callable[[str], _yaml.Node]) -> None:
        """Documents after the stopping one are filtered out."""
        filter_out = loader.stop_filter()
        assert not filter_out(compose("a: 1\n"))
        assert not filter_out(compose("config:\n  stop: true\n"))
        assert filter_out(compose("b: 2\n"))

    def test_stop_false_does_not_stop(self, compose: _typing.Callable[[str], _yaml.Node]) -> None:
        """stop: false keeps the sequence going."""
        filter_out = loader.stop_filter()
        assert not filter_out(compose("config:\n  stop: false\n"))
        assert not filter_out(compose("b: 2\n"))
