"""
Command line interface for canopy.

Inspects layered config files the way an application using canopy would
see them:

    canopy show app.yaml --provenance   # merged view, each value with its origin
    canopy paths app.yaml --all         # every location consulted, in order
    canopy env app.yaml                 # environment an app would export
"""

import json as _json
import logging as _logging
import os as _os
import shlex as _shlex
import sys as _sys
import typing as _typing

import click as _click
import rich.console as _rich_console
import rich.syntax as _rich_syntax

import canopy
import canopy.constants as constants
import canopy.env as env
import canopy.errors as errors
import canopy.kinds as kinds
import canopy.loader as config_loader
import canopy.marshal as marshal
import canopy.merger as merger
import canopy.option as option
import canopy.records as records
import canopy.synthesis as synthesis

_logger = _logging.getLogger(__name__)

CONTEXT_SETTINGS: dict[str, _typing.Any] = {
    "help_option_names": ["-h", "--help"],
    "max_content_width": 100,
}


def _load_merged(
    filename: str,
    *,
    config_dir: str | None,
    allow_exec: bool,
) -> tuple[records.DynamicRecord, list[config_loader.ConfigSource]]:
    """Discover and merge every layer of filename into a synthesized record."""
    loader = config_loader.ConfigLoader(
        config_dir=config_dir,
        allow_exec=allow_exec,
        apply_change_set=None,
    )
    sources: list[config_loader.ConfigSource] = []
    for path in loader.candidate_paths(filename):
        config_source = loader.read_file(path)
        if config_source is not None:
            sources.append(config_source)
    documents = [config_source.config for config_source in sources if config_source.config is not None]
    record = synthesis.make_merge_struct(*documents, wrap_scalars=True)
    loader.load_all_config_sources(sources, record)
    return record, sources


def _without_directives(data: _typing.Any) -> _typing.Any:
    if isinstance(data, dict):
        data.pop(constants.DIRECTIVES_KEY, None)
    return data


def _should_use_color(cli_flag: bool | None) -> tuple[bool, bool]:
    """Determine whether to use color output.

    Priority:
    1. CLI flag (--color / --no-color) if specified
    2. NO_COLOR env var (if set, disable color)
    3. Auto-detect: color if stdout is a TTY

    Returns:
        Tuple of (color_enabled, force_color).
    """
    if cli_flag is not None:
        return (cli_flag, cli_flag)
    if _os.environ.get("NO_COLOR") is not None:
        return (False, False)
    return (_sys.stdout.isatty(), False)


def _print_yaml(yaml_text: str, *, color: bool = True, force_color: bool = False) -> None:
    """Print YAML text, optionally with syntax highlighting."""
    if not color:
        _click.echo(yaml_text, nl=not yaml_text.endswith("\n"))
        return
    # force_terminal keeps color when piped with an explicit --color
    console = _rich_console.Console(
        force_terminal=force_color,
        no_color=False if force_color else None,
        color_system="truecolor" if force_color else "auto",
    )
    console.print(
        _rich_syntax.Syntax(
            yaml_text.rstrip("\n"),
            "yaml",
            theme="monokai",
            background_color="default",
        )
    )


def _format_scalar(value: _typing.Any) -> str:
    return _json.dumps(marshal.to_builtins(value), ensure_ascii=False)


def _collect_lines(
    data: _typing.Any,
    lines: list[tuple[str, str]],
    depth: int = 0,
) -> None:
    """Flatten a merged record into (yaml line, provenance) pairs."""
    indent = "  " * depth
    items = merger.record_to_map(data).items() if kinds.is_record(data) else data.items()
    for key, value in items:
        if depth == 0 and key == constants.DIRECTIVES_KEY:
            continue
        if isinstance(value, option.Option):
            if value.is_defined():
                lines.append((f"{indent}{key}: {_format_scalar(value.get_value())}", str(value.get_source())))
        elif isinstance(value, (list, tuple)):
            if not value:
                continue
            lines.append((f"{indent}{key}:", ""))
            for element in value:
                if isinstance(element, option.Option):
                    lines.append((f"{indent}  - {_format_scalar(element.get_value())}", str(element.get_source())))
                else:
                    lines.append((f"{indent}  - {_format_scalar(element)}", ""))
        elif kinds.is_record(value) or isinstance(value, dict):
            if kinds.is_zero(value):
                continue
            lines.append((f"{indent}{key}:", ""))
            _collect_lines(value, lines, depth + 1)
        elif value is not None:
            lines.append((f"{indent}{key}: {_format_scalar(value)}", ""))


def _render_provenance(record: records.DynamicRecord) -> str:
    lines: list[tuple[str, str]] = []
    _collect_lines(record, lines)
    if not lines:
        return "{}\n"
    width = max(len(content) for content, _ in lines)
    rendered = []
    for content, provenance in lines:
        if provenance:
            rendered.append(f"{content.ljust(width)}  # [{provenance}]")
        else:
            rendered.append(content)
    return "\n".join(rendered) + "\n"


@_click.group(context_settings=CONTEXT_SETTINGS)
@_click.version_option(canopy.__version__, "-V", "--version", prog_name="canopy")
@_click.option("--verbose", is_flag=True, help="Log discovery and merge decisions to stderr")
def cli(verbose: bool) -> None:
    """Inspect layered configuration files."""
    if verbose:
        _logging.basicConfig(level=_logging.DEBUG, format="%(name)s: %(message)s")


@cli.command(name="show")
@_click.argument("filename")
@_click.option(
    "--format",
    "output_format",
    type=_click.Choice(["yaml", "json"]),
    default="yaml",
    show_default=True,
    help="Output format",
)
@_click.option("--full", is_flag=True, help="Show every value as {value, source, defined}")
@_click.option("--provenance", is_flag=True, help="Annotate each value with where it came from")
@_click.option("--no-exec", is_flag=True, help="Parse executable config files instead of running them")
@_click.option("--config-dir", type=str, default=None, help="Subdirectory holding the config file")
@_click.option(
    "--color/--no-color",
    "use_color",
    default=None,
    help="Enable/disable syntax highlighting (default: auto-detect TTY)",
)
def show(
    filename: str,
    output_format: str,
    full: bool,
    provenance: bool,
    no_exec: bool,
    config_dir: str | None,
    use_color: bool | None,
) -> None:
    """Show the merged configuration from every layer of FILENAME.

    Layers are merged most specific first: the copy in the current directory
    wins over its parents, home and /etc.

    Examples:
        canopy show app.yaml                # merged YAML
        canopy show app.yaml --provenance   # with source:line:col per value
        canopy show app.yaml --format json --full
    """
    try:
        record, sources = _load_merged(filename, config_dir=config_dir, allow_exec=not no_exec)
    except errors.CanopyError as e:
        raise _click.ClickException(str(e)) from e
    _logger.debug("Merged %d documents", len(sources))

    mode = marshal.SerializationMode.FULL if full else marshal.SerializationMode.BARE
    if output_format == "json":
        if provenance:
            mode = marshal.SerializationMode.FULL
        data = _without_directives(marshal.to_builtins(record, mode))
        _click.echo(_json.dumps(data, indent=2))
        return

    color_enabled, force_color = _should_use_color(use_color)
    if provenance and not full:
        yaml_text = _render_provenance(record)
    else:
        data = _without_directives(marshal.to_builtins(record, mode))
        yaml_text = marshal.dump_yaml(data)
    _print_yaml(yaml_text, color=color_enabled, force_color=force_color)


@cli.command(name="paths")
@_click.argument("filename")
@_click.option("--all", "show_all", is_flag=True, help="Include locations that do not exist")
@_click.option("--config-dir", type=str, default=None, help="Subdirectory holding the config file")
def paths(filename: str, show_all: bool, config_dir: str | None) -> None:
    """List the locations consulted for FILENAME, in merge order."""
    loader = config_loader.ConfigLoader(config_dir=config_dir)
    for path in loader.candidate_paths(filename, include_missing=True):
        exists = path.exists()
        if not exists and not show_all:
            continue
        marker = "✓" if exists else "✗"
        _click.echo(f"{marker} {path}")


@cli.command(name="env")
@_click.argument("filename")
@_click.option(
    "--prefix",
    type=str,
    default=constants.DEFAULT_ENV_PREFIX,
    show_default=True,
    help="Environment variable prefix",
)
@_click.option("--no-exec", is_flag=True, help="Parse executable config files instead of running them")
@_click.option("--config-dir", type=str, default=None, help="Subdirectory holding the config file")
def env_cmd(filename: str, prefix: str, no_exec: bool, config_dir: str | None) -> None:
    """Print the environment FILENAME's merged values would export."""
    try:
        record, _ = _load_merged(filename, config_dir=config_dir, allow_exec=not no_exec)
    except errors.CanopyError as e:
        raise _click.ClickException(str(e)) from e
    changes = env.populate_env(record, prefix)
    changes.pop(env.format_env_name(prefix, constants.DIRECTIVES_KEY), None)
    for name in sorted(changes):
        value = changes[name]
        if value is None:
            _click.echo(f"unset {name}")
        else:
            _click.echo(f"{name}={_shlex.quote(value)}")


def main() -> None:
    """Main entry point with correct program name."""
    cli(prog_name="canopy")


if __name__ == "__main__":
    main()
