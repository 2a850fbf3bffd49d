"""
Build-time diagnostics for entry-point transformations.

Structural problems found while parsing an entry point are not raised one at a
time. They are collected into a :class:`Diagnostics` value that is threaded
through the parameter walk, so a single run surfaces every problem in the
declaration. Each :class:`Diagnostic` keeps the offending source span, a
remediation hint and an optional documentation link, and renders in the usual
compiler layout::

    app.py:4:5: error[missing-resource-annotation]: resource needs an annotation configuration
      |
    4 |     pool: PgPool,
      |     ^^^^^^^^^^^^
      = hint: Try adding a config like `Annotated[asyncpg.Pool, shared_db.Postgres]`
"""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover - typing only
    from servicegen.exceptions import ServicegenError


class Severity(str, Enum):
    """Diagnostic severities."""

    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Span:
    """
    Source region using ``ast`` coordinates.

    Lines are 1-based; columns are 0-based UTF-8 byte offsets, exactly as
    reported on ``ast`` nodes.
    """

    lineno: int
    col_offset: int
    end_lineno: int
    end_col_offset: int

    @classmethod
    def from_node(cls, node: ast.AST) -> "Span":
        lineno = getattr(node, "lineno", 1)
        col = getattr(node, "col_offset", 0)
        end_lineno = getattr(node, "end_lineno", None) or lineno
        end_col = getattr(node, "end_col_offset", None)
        if end_col is None:
            end_col = col
        return cls(lineno, col, end_lineno, end_col)


def _char_column(line: str, byte_col: int) -> int:
    return len(line.encode("utf-8")[:byte_col].decode("utf-8", errors="ignore"))


@dataclass(frozen=True)
class Diagnostic:
    """A single reportable problem."""

    code: str
    message: str
    severity: Severity = Severity.ERROR
    span: Optional[Span] = None
    hint: Optional[str] = None
    doc: Optional[str] = None
    filename: Optional[str] = None

    @classmethod
    def from_error(
        cls,
        error: "ServicegenError",
        *,
        severity: Severity = Severity.ERROR,
        filename: Optional[str] = None,
    ) -> "Diagnostic":
        return cls(
            code=error.code,
            message=error.message,
            severity=severity,
            span=error.span,
            hint=error.hint,
            doc=error.doc,
            filename=filename,
        )

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def location(self, lines: Sequence[str] | None = None) -> str:
        name = self.filename or "<unknown>"
        if self.span is None:
            return name
        column = self.span.col_offset
        if lines is not None and 0 < self.span.lineno <= len(lines):
            column = _char_column(lines[self.span.lineno - 1], column)
        return f"{name}:{self.span.lineno}:{column + 1}"

    def render(self, source: Optional[str] = None) -> str:
        lines = source.splitlines() if source is not None else None
        out = [f"{self.location(lines)}: {self.severity.value}[{self.code}]: {self.message}"]

        if lines is not None and self.span is not None and 0 < self.span.lineno <= len(lines):
            text = lines[self.span.lineno - 1]
            start = _char_column(text, self.span.col_offset)
            if self.span.end_lineno == self.span.lineno:
                end = _char_column(text, self.span.end_col_offset)
            else:
                end = len(text)
            gutter = " " * len(str(self.span.lineno))
            out.append(f"{gutter} |")
            out.append(f"{self.span.lineno} | {text}")
            out.append(f"{gutter} | {' ' * start}{'^' * max(1, end - start)}")

        if self.hint:
            out.append(f"  = hint: {self.hint}")
        if self.doc:
            out.append(f"  = doc: {self.doc}")
        return "\n".join(out)


@dataclass
class Diagnostics:
    """Ordered collector of diagnostics for one transformation run."""

    filename: Optional[str] = None
    source: Optional[str] = None
    items: List[Diagnostic] = field(default_factory=list)

    def emit(self, error: "ServicegenError", *, severity: Severity = Severity.ERROR) -> Diagnostic:
        diagnostic = Diagnostic.from_error(error, severity=severity, filename=self.filename)
        self.items.append(diagnostic)
        return diagnostic

    def warn(self, error: "ServicegenError") -> Diagnostic:
        return self.emit(error, severity=Severity.WARNING)

    @property
    def errors(self) -> List[Diagnostic]:
        return [item for item in self.items if item.is_error]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [item for item in self.items if not item.is_error]

    @property
    def has_errors(self) -> bool:
        return any(item.is_error for item in self.items)

    def codes(self) -> List[str]:
        return [item.code for item in self.items]

    def render(self) -> str:
        return "\n\n".join(item.render(self.source) for item in self.items)

    def __iter__(self) -> Iterator[Diagnostic]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)


__all__ = ["Diagnostic", "Diagnostics", "Severity", "Span"]
