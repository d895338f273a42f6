"""
Command line binding for Options.

option_flag() returns a ``click.option`` decorator that writes each token
straight into an Option held by a record or mapping, so flags take part in
provenance like any document: a flag value is recorded with source
``override`` and always wins over merged documents.

Map and list options are cumulative: the flag may be repeated and every
token is added (``--label a=1 --label b=2``).

Example:
    >>> opts = AppOptions()
    >>> @click.command()
    ... @option_flag(opts, "port")
    ... def run() -> None:
    ...     print(opts.port.get_value(), opts.port.get_source())
"""

import collections.abc as _abc
import logging as _logging
import typing as _typing

import click as _click
import click.core as _click_core

import canopy.kinds as kinds
import canopy.naming as naming
import canopy.option as option

_logger = _logging.getLogger(__name__)

OptionLike: _typing.TypeAlias = option.Option | option.MapOption | option.ListOption


class OptionParamType(_click.ParamType):
    """Validates a token against the option it will be written to.

    The token itself is passed through unchanged; the parameter callback
    hands it to ``Option.set``.
    """

    name = "option"

    def __init__(self, option_type: type[OptionLike], value_type: _typing.Any = None) -> None:
        self.option_type = option_type
        self.value_type = value_type

    def _probe(self) -> OptionLike:
        if self.value_type is not None and issubclass(self.option_type, option.Option):
            return self.option_type(value_type=self.value_type)
        return self.option_type()

    def convert(self, value: _typing.Any, param: _click.Parameter | None, ctx: _click.Context | None) -> _typing.Any:
        if not isinstance(value, str):
            return value
        try:
            self._probe().set(value)
        except ValueError as exc:
            self.fail(str(exc), param, ctx)
        return value

    def get_metavar(self, param: _click.Parameter, ctx: _click.Context | None = None) -> str | None:
        if issubclass(self.option_type, option.MapOption):
            return "KEY=VALUE"
        value_type = self.value_type
        if value_type is None:
            value_type = getattr(self.option_type, "value_type", None) or getattr(
                self.option_type.element_type, "value_type", object
            )
        return {bool: "BOOL", int: "INTEGER", float: "FLOAT"}.get(value_type, "TEXT")


def _read(target: _typing.Any, attribute: str) -> _typing.Any:
    if isinstance(target, _abc.Mapping):
        return target.get(attribute)
    return getattr(target, attribute)


def _write(target: _typing.Any, attribute: str, value: _typing.Any) -> None:
    if isinstance(target, _abc.MutableMapping):
        target[attribute] = value
    else:
        setattr(target, attribute, value)


def _declared_type(target: _typing.Any, attribute: str) -> _typing.Any:
    if kinds.is_record(target):
        for fd in kinds.record_fields(target):
            if attribute in (fd.attribute, fd.serialized_name):
                return kinds.unwrap_optional(fd.type)[0]
    current = _read(target, attribute)
    if current is None:
        raise TypeError(f"cannot bind a flag to {attribute!r}: no option type is known")
    return type(current)


def _ensure_option(target: _typing.Any, attribute: str, declared: _typing.Any) -> OptionLike:
    current = _read(target, attribute)
    if current is None:
        current = kinds.zero_value(declared)
        _write(target, attribute, current)
    if not isinstance(current, (option.Option, option.MapOption, option.ListOption)):
        raise TypeError(f"{attribute!r} does not hold an option (got {type(current).__name__})")
    return current


def option_flag(
    target: _typing.Any,
    attribute: str,
    *param_decls: str,
    **attrs: _typing.Any,
) -> _typing.Callable[[_typing.Callable[..., _typing.Any]], _typing.Callable[..., _typing.Any]]:
    """Bind a click option to the Option stored at ``target.attribute``.

    Args:
        target: A record or mutable mapping holding the option.
        attribute: Attribute (or key) of the option.
        *param_decls: Click parameter declarations; defaults to
            ``--<attribute in kebab-case>``.
        **attrs: Extra ``click.option`` keyword arguments (help, hidden, ...).

    Returns:
        A ``click.option`` decorator. The option value is not passed to the
        command function; it is written into target instead.
    """
    declared = _declared_type(target, attribute)
    origin = _typing.get_origin(declared) or declared
    scalar = kinds.kind_of(declared) is kinds.Kind.OPTION
    cumulative = isinstance(origin, type) and issubclass(origin, (option.MapOption, option.ListOption))
    if not (scalar or cumulative):
        raise TypeError(f"cannot bind a flag to {attribute!r} of type {declared!r}")
    value_type = option.option_value_type(declared) if scalar else None
    if not param_decls:
        param_decls = (f"--{naming.kebab_case(attribute)}",)

    def _callback(ctx: _click.Context, param: _click.Parameter, value: _typing.Any) -> None:
        if ctx.get_parameter_source(param.name) in (None, _click_core.ParameterSource.DEFAULT):
            return
        bound = _ensure_option(target, attribute, declared)
        tokens = value if cumulative else (value,)
        for token in tokens:
            if isinstance(token, bool):
                token = option.format_scalar(token)
            _logger.debug("Flag %s sets %s to %r", param.name, attribute, token)
            try:
                bound.set(token)
            except ValueError as exc:
                raise _click.BadParameter(str(exc), ctx=ctx, param=param) from exc

    attrs.setdefault("expose_value", False)
    attrs.setdefault("callback", _callback)
    if value_type is bool and not cumulative:
        attrs.setdefault("is_flag", True)
    else:
        attrs.setdefault("type", OptionParamType(origin, value_type))
        attrs.setdefault("multiple", cumulative)
    return _click.option(*param_decls, **attrs)
