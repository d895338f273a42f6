"""
Shared pytest fixtures for canopy tests.

This file is automatically loaded by pytest. Fixtures defined here are
available to all test files without explicit imports.
"""

import dataclasses as _dataclasses
import os as _os
import pathlib as _pathlib
import typing as _typing

import pytest as _pytest
import yaml as _yaml

# Environment keys that should be cleared for isolated tests
ENV_KEYS_TO_CLEAR = [
    "CANOPY_CONFIG_DIR",
    "NO_COLOR",
]


@_dataclasses.dataclass
class LayeredTree:
    """A home directory with a project nested two levels inside it.

    Layout::

        <root>/home/               HOME
        <root>/home/proj/
        <root>/home/proj/sub/      current working directory
    """

    root: _pathlib.Path
    home: _pathlib.Path
    project: _pathlib.Path
    cwd: _pathlib.Path

    def write(
        self,
        directory: _pathlib.Path,
        text: str,
        *,
        name: str = "app.yaml",
        executable: bool = False,
    ) -> _pathlib.Path:
        """Write a config file into directory and return its path."""
        path = directory / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        if executable:
            path.chmod(0o755)
        return path


@_pytest.fixture
def clean_env(monkeypatch: _pytest.MonkeyPatch) -> None:
    """Remove canopy-related environment variables for the test."""
    for key in ENV_KEYS_TO_CLEAR:
        monkeypatch.delenv(key, raising=False)


@_pytest.fixture
def config_tree(
    tmp_path: _pathlib.Path,
    monkeypatch: _pytest.MonkeyPatch,
    clean_env: None,
) -> LayeredTree:
    """
    A directory tree for layered config discovery.

    HOME points at the tree's home directory and the working directory is
    the innermost project directory. Paths are resolved so they compare
    equal to os.getcwd().
    """
    root = tmp_path.resolve()
    home = root / "home"
    project = home / "proj"
    cwd = project / "sub"
    cwd.mkdir(parents=True)
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(cwd)
    return LayeredTree(root=root, home=home, project=project, cwd=cwd)


@_pytest.fixture
def compose() -> _typing.Callable[[str], _yaml.Node]:
    """
    Compose YAML text into a node tree.

    Usage:
        def test_something(compose):
            node = compose("name: x\\n")
    """

    def _compose(text: str) -> _yaml.Node:
        return _yaml.compose(text, Loader=_yaml.SafeLoader)

    return _compose


@_pytest.fixture
def env_collector() -> list[dict[str, str | None]]:
    """
    A list that records every environment change-set applied.

    Pass ``env_collector.append`` as a loader's apply_change_set.
    """
    return []


@_pytest.fixture
def restore_environ() -> _typing.Iterator[None]:
    """Snapshot os.environ and restore it after the test."""
    saved = dict(_os.environ)
    yield
    _os.environ.clear()
    _os.environ.update(saved)
