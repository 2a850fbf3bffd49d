"""AST-driven parsing of entry-point declarations into a :class:`Loader`."""

from __future__ import annotations

import ast
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Set, Tuple, Union

from servicegen.diagnostics import Diagnostics, Span
from servicegen.exceptions import (
    DOCS_URL,
    DeclarationError,
    InvalidLogLevelError,
    MissingResourceAnnotationError,
    MissingReturnTypeError,
    OptionSyntaxError,
    ReservedNameError,
    UnsupportedReturnTypeError,
)
from servicegen.models import DEFAULT_LOG_LEVEL, Builder, BuilderOptions, Input, Loader, LogLevel
from servicegen.observability.logging import get_logger
from servicegen.options import options_from_call
from servicegen.templates.loader_template import LOADER_BUILTINS, LOADER_LOCALS, LOADER_NAME

logger = get_logger(__name__)

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]

RESERVED_ENTRY_NAME = "main"
RESERVED_ENTRY_NAMES = frozenset({RESERVED_ENTRY_NAME, LOADER_NAME})
RESERVED_PARAM_NAMES = LOADER_LOCALS | RESERVED_ENTRY_NAMES
RECEIVER_NAMES = {"self", "cls"}
RESOURCE_HINT = "Try adding a config like `Annotated[asyncpg.Pool, shared_db.Postgres]`"
RETURN_HINT = "See the docs for services with first class support"
RETURN_DOC = f"{DOCS_URL}#supported-services"

_ANNOTATED_NAMES = {"Annotated", "typing.Annotated", "typing_extensions.Annotated"}
_NON_PATH_GENERICS = {
    "tuple",
    "Tuple",
    "typing.Tuple",
    "Callable",
    "typing.Callable",
    "collections.abc.Callable",
}


def dotted_name(node: ast.AST) -> Optional[str]:
    """Return ``a.b.c`` for a Name/Attribute chain, otherwise None."""

    parts: List[str] = []
    while isinstance(node, ast.Attribute):
        parts.append(node.attr)
        node = node.value
    if not isinstance(node, ast.Name):
        return None
    parts.append(node.id)
    return ".".join(reversed(parts))


def _source_text(source: Optional[str], node: ast.AST) -> str:
    if source is not None:
        text = ast.get_source_segment(source, node)
        if text is not None:
            return text
    return ast.unparse(node)


def _split_annotated(annotation: ast.expr) -> Optional[Tuple[ast.expr, List[ast.expr]]]:
    if not isinstance(annotation, ast.Subscript):
        return None
    if dotted_name(annotation.value) not in _ANNOTATED_NAMES:
        return None
    if not isinstance(annotation.slice, ast.Tuple) or len(annotation.slice.elts) < 2:
        return None
    base, *metadata = annotation.slice.elts
    return base, metadata


# Entry point discovery -------------------------------------------------


@dataclass
class EntryPoint:
    """A decorated entry-point function found in a module."""

    node: FunctionNode
    decorator: ast.expr
    log_level: Optional[str] = None


class EntryPointFinder(ast.NodeVisitor):
    """Find top-level functions carrying the runtime's entry decorator."""

    def __init__(
        self,
        runtime_module: str = "service_runtime",
        entry_decorator: str = "main",
        diagnostics: Optional[Diagnostics] = None,
    ):
        self.decorator_names = {f"{runtime_module}.{entry_decorator}", entry_decorator}
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self._found: List[EntryPoint] = []

    def find(self, tree: ast.Module) -> List[EntryPoint]:
        self._found = []
        for node in tree.body:
            self.visit(node)
        return list(self._found)

    # Visitor overrides -------------------------------------------------

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._record(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._record(node)

    def generic_visit(self, node: ast.AST) -> None:
        # only module-level functions can be entry points
        return None

    # Helpers -----------------------------------------------------------

    def _record(self, node: FunctionNode) -> None:
        for decorator in node.decorator_list:
            target = decorator.func if isinstance(decorator, ast.Call) else decorator
            if dotted_name(target) in self.decorator_names:
                log_level = self._decorator_log_level(decorator) if isinstance(decorator, ast.Call) else None
                self._found.append(EntryPoint(node=node, decorator=decorator, log_level=log_level))
                return

    def _decorator_log_level(self, call: ast.Call) -> Optional[str]:
        log_level: Optional[str] = None
        for arg in call.args:
            self.diagnostics.warn(
                DeclarationError(
                    "unexpected positional argument (allowed: log_level)",
                    span=Span.from_node(arg),
                )
            )
        for keyword in call.keywords:
            if keyword.arg == "log_level":
                value = keyword.value
                if not (isinstance(value, ast.Constant) and isinstance(value.value, str)):
                    raise InvalidLogLevelError(
                        "invalid argument (allowed: log_level)",
                        span=Span.from_node(keyword),
                    )
                log_level = value.value
            else:
                name = keyword.arg if keyword.arg is not None else "**"
                self.diagnostics.warn(
                    DeclarationError(
                        f"unknown argument `{name}` (allowed: log_level)",
                        span=Span.from_node(keyword),
                    )
                )
        return log_level


# Declaration parsing ---------------------------------------------------


@dataclass
class ParseResult:
    """Outcome of parsing one entry point."""

    loader: Optional[Loader]
    diagnostics: Diagnostics
    stripped: Tuple[Tuple[ast.expr, ast.expr], ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.loader is not None and not self.diagnostics.has_errors


def resolve_builder(arg: ast.arg, source: Optional[str] = None) -> Builder:
    """
    Interpret the first ``Annotated`` metadata item of ``arg`` as a builder.

    The ``Annotated`` wrapper is removed from ``arg`` before interpretation,
    so the parameter is left with its plain type even when the builder
    reference turns out to be malformed.
    """

    annotation = arg.annotation
    if annotation is None:
        raise MissingResourceAnnotationError(
            "resource needs an annotation configuration",
            span=Span.from_node(arg),
            hint=RESOURCE_HINT,
        )

    split = _split_annotated(annotation)
    if split is None:
        raise MissingResourceAnnotationError(
            "resource needs an annotation configuration",
            span=Span.from_node(arg),
            hint=RESOURCE_HINT,
        )

    base, metadata = split
    arg.annotation = base

    reference = metadata[0]
    if isinstance(reference, ast.Call):
        path = dotted_name(reference.func)
        if path is not None:
            try:
                options = options_from_call(reference, source)
            except OptionSyntaxError as exc:
                exc.hint = RESOURCE_HINT
                raise
            return Builder(path=path, options=options)
    else:
        path = dotted_name(reference)
        if path is not None:
            return Builder(path=path, options=BuilderOptions())

    text = _source_text(source, reference)
    raise OptionSyntaxError(
        f"expected a builder path optionally followed by `(name = value, ...)`, found `{text}`",
        token=text,
        span=Span.from_node(reference),
        hint=RESOURCE_HINT,
    )


def check_return_type(func: FunctionNode, source: Optional[str] = None) -> str:
    """Return the source text of a supported return annotation."""

    returns = func.returns
    if returns is None:
        keyword = "async def " if isinstance(func, ast.AsyncFunctionDef) else "def "
        raise MissingReturnTypeError(
            f"`{func.name}` needs to return a service",
            span=Span(func.lineno, func.col_offset, func.lineno, func.col_offset + len(keyword) + len(func.name)),
            hint=RETURN_HINT,
            doc=RETURN_DOC,
        )

    if dotted_name(returns) is not None:
        return _source_text(source, returns)

    if isinstance(returns, ast.Subscript):
        base = dotted_name(returns.value)
        if base is not None and base not in _NON_PATH_GENERICS:
            return _source_text(source, returns)

    raise UnsupportedReturnTypeError(
        f"`{func.name}` needs to return a first class service or `Result[Service]`, "
        f"found `{_source_text(source, returns)}`",
        span=Span.from_node(returns),
        hint=RETURN_HINT,
        doc=RETURN_DOC,
    )


class DeclarationParser:
    """Build a :class:`Loader` from an entry-point function node."""

    def __init__(
        self,
        source: Optional[str] = None,
        filename: Optional[str] = None,
        runtime_module: str = "service_runtime",
    ):
        self.source = source
        self.filename = filename
        self.runtime_module = runtime_module

    def parse(
        self,
        func: FunctionNode,
        log_level: Union[str, LogLevel] = DEFAULT_LOG_LEVEL,
        *,
        diagnostics: Optional[Diagnostics] = None,
    ) -> ParseResult:
        if diagnostics is None:
            diagnostics = Diagnostics(filename=self.filename, source=self.source)

        if func.name in RESERVED_ENTRY_NAMES:
            diagnostics.emit(
                ReservedNameError(
                    f"entry point functions cannot be named `{func.name}`",
                    span=Span.from_node(func),
                    hint="Rename the function, e.g. to `app`",
                )
            )
            return ParseResult(loader=None, diagnostics=diagnostics)

        resolved, stripped = self._walk_parameters(func, diagnostics)
        inputs = self._reject_shadowing(func, resolved, diagnostics)

        try:
            return_type = check_return_type(func, self.source)
        except DeclarationError as exc:
            diagnostics.emit(exc)
            return ParseResult(loader=None, diagnostics=diagnostics, stripped=stripped)

        level = log_level if isinstance(log_level, LogLevel) else LogLevel.parse(log_level)

        loader = Loader(
            entry_ident=func.name,
            inputs=tuple(inputs),
            return_type=return_type,
            log_level=level,
            is_async=isinstance(func, ast.AsyncFunctionDef),
        )
        return ParseResult(loader=loader, diagnostics=diagnostics, stripped=stripped)

    def _walk_parameters(
        self,
        func: FunctionNode,
        diagnostics: Diagnostics,
    ) -> Tuple[List[Tuple[ast.arg, Input]], Tuple[Tuple[ast.expr, ast.expr], ...]]:
        resolved: List[Tuple[ast.arg, Input]] = []
        stripped: List[Tuple[ast.expr, ast.expr]] = []

        positional = list(func.args.posonlyargs) + list(func.args.args)
        if positional and positional[0].arg in RECEIVER_NAMES:
            positional = positional[1:]

        params = [(arg, False) for arg in positional] + [(arg, True) for arg in func.args.kwonlyargs]

        for arg, keyword_only in params:
            original = arg.annotation
            try:
                builder = resolve_builder(arg, self.source)
            except DeclarationError as exc:
                diagnostics.emit(exc)
                continue
            finally:
                if original is not None and arg.annotation is not original:
                    stripped.append((original, arg.annotation))

            if arg.arg in RESERVED_PARAM_NAMES:
                diagnostics.emit(
                    ReservedNameError(
                        f"resource parameters cannot be named `{arg.arg}`; "
                        "the name is used by the generated loader",
                        span=Span.from_node(arg),
                        hint=f"Rename the parameter, e.g. to `{arg.arg}_resource`",
                    )
                )
                continue

            logger.debug(
                "resource_resolved",
                param=arg.arg,
                builder=builder.path,
                options=builder.options.names(),
            )
            resolved.append((arg, Input(ident=arg.arg, builder=builder, keyword_only=keyword_only)))

        return resolved, tuple(stripped)

    def _reject_shadowing(
        self,
        func: FunctionNode,
        resolved: List[Tuple[ast.arg, Input]],
        diagnostics: Diagnostics,
    ) -> List[Input]:
        """
        Drop resources whose name the loader also reads.

        Every resource becomes a local of the loader, so a parameter named
        like the runtime module, the entry point, a builder's root module or
        a name used in an option value would make that name local for the
        whole loader body.
        """

        read = loader_read_names(func.name, [item for _, item in resolved], self.runtime_module)
        inputs: List[Input] = []
        for arg, item in resolved:
            if item.ident in read:
                diagnostics.emit(
                    ReservedNameError(
                        f"resource parameter `{item.ident}` shadows a name the generated loader reads",
                        span=Span.from_node(arg),
                        hint=f"Rename the parameter, e.g. to `{item.ident}_resource`",
                    )
                )
                continue
            inputs.append(item)
        return inputs


def loader_read_names(entry_ident: str, inputs: Sequence[Input], runtime_module: str) -> Set[str]:
    """Global names the generated loader reads for this declaration."""

    names = {runtime_module.split(".")[0], entry_ident} | LOADER_BUILTINS
    for item in inputs:
        names.add(item.builder.path.split(".")[0])
        for option in item.builder.options:
            names.update(node.id for node in ast.walk(option.value) if isinstance(node, ast.Name))
    return names


__all__ = [
    "DeclarationParser",
    "EntryPoint",
    "EntryPointFinder",
    "ParseResult",
    "RESERVED_ENTRY_NAME",
    "RESERVED_ENTRY_NAMES",
    "RESERVED_PARAM_NAMES",
    "check_return_type",
    "dotted_name",
    "loader_read_names",
    "resolve_builder",
]
