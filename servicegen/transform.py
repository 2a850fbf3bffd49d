"""
Entry-point transformation.

:class:`EntryPointTransformer` is the outer driver. It finds the decorated
entry point in a module, parses it into a :class:`~servicegen.models.Loader`,
renders the bootstrap routine and splices the result back into the module
text in place of the original function. Everything outside the entry point is
kept verbatim.
"""

from __future__ import annotations

import ast
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from servicegen.config import ServicegenConfig
from servicegen.diagnostics import Diagnostics, Span
from servicegen.exceptions import (
    DuplicateEntryPointError,
    EntryPointNotFoundError,
    ServicegenError,
    SourceSyntaxError,
    TransformError,
)
from servicegen.generators.loader import LoaderGenerator
from servicegen.models import DEFAULT_LOG_LEVEL, Loader, LogLevel
from servicegen.observability.logging import bind_source_file, get_logger
from servicegen.parser import DeclarationParser, EntryPoint, EntryPointFinder

logger = get_logger(__name__)

_LINE = re.compile(r".*?(?:\r\n|\r|\n)|.+$", re.DOTALL)


@dataclass
class TransformResult:
    """Outcome of transforming one module."""

    filename: str
    loader: Optional[Loader]
    diagnostics: Diagnostics
    code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.code is not None and not self.diagnostics.has_errors


class _SourceIndex:
    """Map ``ast`` (line, byte column) positions to string offsets."""

    def __init__(self, source: str):
        self.lines: List[str] = _LINE.findall(source)
        self.starts: List[int] = []
        offset = 0
        for line in self.lines:
            self.starts.append(offset)
            offset += len(line)
        self.length = offset

    def offset(self, lineno: int, byte_col: int) -> int:
        if lineno > len(self.lines):
            return self.length
        line = self.lines[lineno - 1]
        return self.starts[lineno - 1] + len(line.encode("utf-8")[:byte_col].decode("utf-8", errors="ignore"))

    def line_start(self, lineno: int) -> int:
        if lineno > len(self.lines):
            return self.length
        return self.starts[lineno - 1]

    def line_end(self, lineno: int) -> int:
        """Offset of the end of ``lineno`` excluding its line break."""

        if lineno > len(self.lines):
            return self.length
        line = self.lines[lineno - 1]
        return self.starts[lineno - 1] + len(line.rstrip("\r\n"))


class EntryPointTransformer:
    """Turn a module with a decorated entry point into a runnable service module."""

    def __init__(self, config: Optional[ServicegenConfig] = None) -> None:
        self.config = config or ServicegenConfig()
        self.generator = LoaderGenerator(self.config)

    # Public API --------------------------------------------------------

    def transform_source(
        self,
        source: str,
        *,
        filename: str = "<unknown>",
        log_level: Union[str, LogLevel, None] = None,
    ) -> TransformResult:
        """
        Transform ``source`` and report diagnostics.

        Raises:
            InvalidLogLevelError: when the effective log level is unknown or
                the decorator's ``log_level`` is not a string literal.
        """

        with bind_source_file(filename):
            diagnostics = Diagnostics(filename=filename, source=source)
            result = self._transform(source, filename, log_level, diagnostics)
            for diagnostic in diagnostics:
                logger.warning(
                    "diagnostic_reported",
                    code=diagnostic.code,
                    severity=diagnostic.severity.value,
                    message=diagnostic.message,
                    line=diagnostic.span.lineno if diagnostic.span else None,
                )
            return result

    def transform_file(
        self,
        path: Union[str, Path],
        *,
        log_level: Union[str, LogLevel, None] = None,
    ) -> TransformResult:
        path = Path(path)
        source = path.read_text(encoding="utf-8")
        return self.transform_source(source, filename=str(path), log_level=log_level)

    def transform_many(
        self,
        paths: Iterable[Union[str, Path]],
        *,
        log_level: Union[str, LogLevel, None] = None,
    ) -> List[TransformResult]:
        """
        Transform each file independently.

        A fatal error in one file (such as an invalid log level) is recorded
        as an error diagnostic on that file's result and processing carries on
        with the next file.
        """

        results: List[TransformResult] = []
        for path in paths:
            try:
                results.append(self.transform_file(path, log_level=log_level))
            except ServicegenError as exc:
                results.append(self._failed(path, exc))
            except OSError as exc:
                results.append(self._failed(path, ServicegenError(f"cannot read {path}: {exc.strerror or exc}")))
        return results

    @staticmethod
    def _failed(path: Union[str, Path], error: ServicegenError) -> TransformResult:
        diagnostics = Diagnostics(filename=str(path))
        diagnostics.emit(error)
        logger.error("transform_aborted", source_file=str(path), code=error.code, message=error.message)
        return TransformResult(filename=str(path), loader=None, diagnostics=diagnostics)

    # Internals ---------------------------------------------------------

    def _transform(
        self,
        source: str,
        filename: str,
        log_level: Union[str, LogLevel, None],
        diagnostics: Diagnostics,
    ) -> TransformResult:
        try:
            tree = ast.parse(source, filename=filename)
        except SyntaxError as exc:
            lineno = exc.lineno or 1
            diagnostics.emit(
                SourceSyntaxError(
                    f"invalid Python syntax: {exc.msg}",
                    span=_syntax_error_span(exc, source),
                )
            )
            logger.debug("source_unparseable", line=lineno)
            return TransformResult(filename=filename, loader=None, diagnostics=diagnostics)

        finder = EntryPointFinder(
            runtime_module=self.config.runtime_module,
            entry_decorator=self.config.entry_decorator,
            diagnostics=diagnostics,
        )
        entries = finder.find(tree)
        if not entries:
            diagnostics.emit(
                EntryPointNotFoundError(
                    "no entry point found",
                    hint=(
                        f"Decorate the service function with "
                        f"`@{self.config.runtime_module}.{self.config.entry_decorator}`"
                    ),
                )
            )
            return TransformResult(filename=filename, loader=None, diagnostics=diagnostics)

        for extra in entries[1:]:
            diagnostics.emit(
                DuplicateEntryPointError(
                    f"only one entry point is allowed per module, `{extra.node.name}` is a second one",
                    span=Span.from_node(extra.decorator),
                    hint=f"`{entries[0].node.name}` is already the entry point",
                )
            )

        entry = entries[0]
        logger.debug("entry_point_found", function=entry.node.name, line=entry.node.lineno)

        level = self._resolve_log_level(log_level, entry)
        parser = DeclarationParser(source, filename, runtime_module=self.config.runtime_module)
        parsed = parser.parse(entry.node, level, diagnostics=diagnostics)
        if not parsed.ok or parsed.loader is None:
            return TransformResult(filename=filename, loader=parsed.loader, diagnostics=diagnostics)

        index = _SourceIndex(source)
        start, end = self._function_region(entry, index)
        function_source = self._strip_function(source, index, entry, parsed.stripped, start, end)
        program = self.generator.render_program(parsed.loader, function_source)

        code = source[:start] + program.rstrip("\n") + source[end:]
        if self.config.emit_main_guard and not _has_main_guard(tree):
            code = code.rstrip("\n") + "\n\n\n" + self.generator.render_main_guard()
        elif not code.endswith("\n"):
            code += "\n"

        logger.info(
            "loader_generated",
            entry=parsed.loader.entry_ident,
            inputs=[item.ident for item in parsed.loader.inputs],
            needs_secrets=parsed.loader.needs_secrets,
            log_level=parsed.loader.log_level.value,
        )
        return TransformResult(
            filename=filename,
            loader=parsed.loader,
            diagnostics=diagnostics,
            code=code,
        )

    def _resolve_log_level(
        self,
        explicit: Union[str, LogLevel, None],
        entry: EntryPoint,
    ) -> Union[str, LogLevel]:
        if explicit is not None:
            return explicit
        if entry.log_level is not None:
            return entry.log_level
        if self.config.log_level is not None:
            return self.config.log_level
        return DEFAULT_LOG_LEVEL

    @staticmethod
    def _function_region(entry: EntryPoint, index: _SourceIndex) -> Tuple[int, int]:
        node = entry.node
        first_line = min([node.lineno] + [dec.lineno for dec in node.decorator_list])
        last_line = node.end_lineno or node.lineno
        return index.line_start(first_line), index.line_end(last_line)

    @staticmethod
    def _strip_function(
        source: str,
        index: _SourceIndex,
        entry: EntryPoint,
        stripped: Sequence[Tuple[ast.expr, ast.expr]],
        start: int,
        end: int,
    ) -> str:
        """Re-emit the entry function without its entry decorator and resource metadata."""

        edits: List[Tuple[int, int, str]] = []

        decorator = entry.decorator
        edits.append(
            (
                index.line_start(decorator.lineno),
                index.line_start((decorator.end_lineno or decorator.lineno) + 1),
                "",
            )
        )

        for annotated, base in stripped:
            replacement = ast.get_source_segment(source, base) or ast.unparse(base)
            edits.append(
                (
                    index.offset(annotated.lineno, annotated.col_offset),
                    index.offset(annotated.end_lineno or annotated.lineno, annotated.end_col_offset or 0),
                    replacement,
                )
            )

        text = source[start:end]
        for edit_start, edit_end, replacement in sorted(edits, key=lambda edit: edit[0], reverse=True):
            lo = max(edit_start - start, 0)
            hi = min(edit_end - start, len(text))
            text = text[:lo] + replacement + text[hi:]
        return text


def _syntax_error_span(exc: SyntaxError, source: str) -> Span:
    lineno = exc.lineno or 1
    lines = source.splitlines()
    line = lines[lineno - 1] if 0 < lineno <= len(lines) else ""
    col = max((exc.offset or 1) - 1, 0)
    byte_col = len(line[:col].encode("utf-8"))
    return Span(lineno, byte_col, lineno, byte_col + 1)


def _has_main_guard(tree: ast.Module) -> bool:
    for node in tree.body:
        if not isinstance(node, ast.If) or not isinstance(node.test, ast.Compare):
            continue
        test = node.test
        operands = [test.left, *test.comparators]
        names = [op for op in operands if isinstance(op, ast.Name) and op.id == "__name__"]
        consts = [op for op in operands if isinstance(op, ast.Constant) and op.value == "__main__"]
        if names and consts:
            return True
    return False


def expand(
    source: str,
    *,
    filename: str = "<unknown>",
    log_level: Union[str, LogLevel, None] = None,
    config: Optional[ServicegenConfig] = None,
) -> str:
    """Transform ``source`` and return the code, raising :class:`TransformError` on diagnostics."""

    result = EntryPointTransformer(config).transform_source(source, filename=filename, log_level=log_level)
    if not result.ok or result.code is None:
        raise TransformError(f"failed to transform {filename}", result.diagnostics)
    return result.code


__all__ = ["EntryPointTransformer", "TransformResult", "expand"]
