"""
Error taxonomy for canopy.

All errors derive from CanopyError and can be annotated with the name of
the document being merged plus a line/column coordinate. Annotation happens
once, as the error crosses the document boundary; inner layers leave the
fields they do not know empty.

- NotAssignableError: a value cannot be placed by scalar assignment. The
  structural merge catches it and tries map/list/record handling before
  letting it escape.
- DecodeError: a document (or part of one) could not be decoded.
- SubprocessError: an executable config source exited unsuccessfully.
- InvalidArgumentError: the caller passed a destination that cannot be
  merged into.
- DuplicateFieldError: a record shape was given two fields with the same name.
- ConfigFileError: a whole config file could not be read.
"""

import pathlib as _pathlib
import typing as _typing


class CanopyError(Exception):
    """Base class for canopy errors."""

    def __init__(
        self,
        message: str,
        *,
        source_name: str | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        self.message = message
        self.source_name = source_name
        self.line = line
        self.column = column
        super().__init__(message)

    def annotate(
        self,
        source_name: str | None,
        line: int | None = None,
        column: int | None = None,
    ) -> "CanopyError":
        """Fill in location fields that are still empty and return self."""
        if self.source_name is None:
            self.source_name = source_name
        if self.line is None and line is not None:
            self.line = line
            self.column = column
        return self

    @property
    def location(self) -> str:
        """Render ``name:line:col`` (or the parts that are known)."""
        if self.source_name is None:
            return ""
        if self.line is None:
            return self.source_name
        return f"{self.source_name}:{self.line}:{self.column}"

    def __str__(self) -> str:
        location = self.location
        if location:
            return f"{location}: {self.message}"
        return self.message


class NotAssignableError(CanopyError):
    """A source value's type cannot be assigned to the destination type."""

    def __init__(
        self,
        src_type: _typing.Any,
        dst_type: _typing.Any,
        *,
        source_name: str | None = None,
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        self.src_type = src_type
        self.dst_type = dst_type
        super().__init__(
            f"{_type_name(src_type)} is not assignable to {_type_name(dst_type)}",
            source_name=source_name,
            line=line,
            column=column,
        )


class DecodeError(CanopyError):
    """A document or value could not be decoded."""

    pass


class SubprocessError(CanopyError):
    """An executable config source failed."""

    def __init__(self, path: str, stderr: str, returncode: int) -> None:
        self.path = path
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(f"{path} is executable, but it failed to execute:\n{stderr}")


class InvalidArgumentError(CanopyError):
    """The merge destination is not something values can be merged into."""

    pass


class DuplicateFieldError(CanopyError):
    """Record synthesis produced two fields with the same name."""

    def __init__(self, field_name: str, kind: str) -> None:
        self.field_name = field_name
        self.kind = kind
        super().__init__(f"duplicate {kind} name {field_name!r} in merged record")


class ConfigFileError(CanopyError):
    """Error loading or parsing a configuration file."""

    def __init__(self, path: _pathlib.Path | str, message: str) -> None:
        self.path = path
        super().__init__(f"Error in config file {path}: {message}")


def _type_name(tp: _typing.Any) -> str:
    if tp is None:
        return "None"
    if isinstance(tp, type):
        return tp.__qualname__
    return str(tp)
