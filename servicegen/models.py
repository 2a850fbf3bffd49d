"""Intermediate model produced by the declaration parser."""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Tuple

from servicegen.exceptions import InvalidLogLevelError


class LogLevel(str, Enum):
    """Log levels accepted by the ``log_level`` transformer option."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: str) -> "LogLevel":
        """Case-insensitive lookup; raises :class:`InvalidLogLevelError`."""

        if not isinstance(value, str):
            raise InvalidLogLevelError(f"log level must be a string, got {type(value).__name__}")
        normalized = value.strip().upper()
        for level in cls:
            if level.value == normalized:
                return level
        allowed = ", ".join(level.value for level in cls)
        raise InvalidLogLevelError(f"Invalid log level {value!r} (allowed: {allowed})")

    @property
    def severity(self) -> int:
        return _SEVERITY[self]

    def clamped(self) -> "LogLevel":
        """Raise levels below DEBUG to DEBUG."""

        if self.severity < LogLevel.DEBUG.severity:
            return LogLevel.DEBUG
        return self


_SEVERITY = {
    LogLevel.TRACE: 5,
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARN: 30,
    LogLevel.ERROR: 40,
}

DEFAULT_LOG_LEVEL = LogLevel.DEBUG


@dataclass(frozen=True)
class BuilderOption:
    """One ``name=value`` setter call on a resource builder."""

    name: str
    value: ast.expr = field(compare=False, repr=False)
    source: str = ""

    def __post_init__(self) -> None:
        if not self.source:
            object.__setattr__(self, "source", ast.unparse(self.value))

    @property
    def is_string_literal(self) -> bool:
        return isinstance(self.value, ast.Constant) and isinstance(self.value.value, str)

    def to_source(self) -> str:
        return f"{self.name}={self.source}"


@dataclass(frozen=True)
class BuilderOptions:
    """Ordered, possibly empty, option list attached to a builder annotation."""

    options: Tuple[BuilderOption, ...] = ()

    def __iter__(self) -> Iterator[BuilderOption]:
        return iter(self.options)

    def __len__(self) -> int:
        return len(self.options)

    def names(self) -> List[str]:
        return [option.name for option in self.options]

    @property
    def has_string_literal(self) -> bool:
        return any(option.is_string_literal for option in self.options)

    def to_source(self) -> str:
        """Re-serialize as ``(name=value, ...)``; empty options give ``""``."""

        if not self.options:
            return ""
        return "(" + ", ".join(option.to_source() for option in self.options) + ")"


@dataclass(frozen=True)
class Builder:
    """Reference to a resource builder type plus the options to apply to it."""

    path: str
    options: BuilderOptions = field(default_factory=BuilderOptions)


@dataclass(frozen=True)
class Input:
    """A single resource dependency of the entry point."""

    ident: str
    builder: Builder
    keyword_only: bool = False


@dataclass(frozen=True)
class Loader:
    """Everything the generator needs to render the bootstrap routine."""

    entry_ident: str
    inputs: Tuple[Input, ...] = ()
    return_type: str = ""
    log_level: LogLevel = DEFAULT_LOG_LEVEL
    is_async: bool = True

    @property
    def needs_secrets(self) -> bool:
        """True when any option value is a string literal needing substitution."""

        return any(item.builder.options.has_string_literal for item in self.inputs)

    @property
    def effective_log_level(self) -> LogLevel:
        return self.log_level.clamped()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_ident": self.entry_ident,
            "inputs": [
                {
                    "ident": item.ident,
                    "keyword_only": item.keyword_only,
                    "builder": {
                        "path": item.builder.path,
                        "options": [
                            {"name": option.name, "value": option.source}
                            for option in item.builder.options
                        ],
                    },
                }
                for item in self.inputs
            ],
            "return_type": self.return_type,
            "log_level": self.log_level.value,
            "effective_log_level": self.effective_log_level.value,
            "is_async": self.is_async,
            "needs_secrets": self.needs_secrets,
        }


__all__ = [
    "Builder",
    "BuilderOption",
    "BuilderOptions",
    "DEFAULT_LOG_LEVEL",
    "Input",
    "Loader",
    "LogLevel",
]
