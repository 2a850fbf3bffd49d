"""
Parsing of builder option lists.

A resource annotation may carry a parenthesized list of ``name = value``
pairs, e.g. ``shared_db.Postgres(size="10Gb", public=False)``. This module
turns such a list into an ordered :class:`~servicegen.models.BuilderOptions`.
Values are never evaluated: each one is kept as an ``ast.expr`` together with
its exact source text so the generator can re-emit it verbatim.
"""

from __future__ import annotations

import ast
import io
import tokenize
from typing import Callable, List, Optional, Tuple

from servicegen.diagnostics import Span
from servicegen.exceptions import OptionSyntaxError
from servicegen.models import BuilderOption, BuilderOptions

_CALLEE = "_options"
_IGNORED_TOKENS = {
    tokenize.NEWLINE,
    tokenize.NL,
    tokenize.COMMENT,
    tokenize.ENDMARKER,
    tokenize.INDENT,
    tokenize.DEDENT,
    tokenize.ENCODING,
}

SpanOf = Callable[[ast.AST], Span]


def _segment(source: Optional[str], node: ast.AST) -> str:
    if source is not None:
        text = ast.get_source_segment(source, node)
        if text is not None:
            return text
    return ast.unparse(node)


def _keyword_text(source: Optional[str], keyword: ast.keyword) -> str:
    if source is not None:
        text = ast.get_source_segment(source, keyword)
        if text is not None:
            return text
    return "**" + ast.unparse(keyword.value)


def options_from_call(
    call: ast.Call,
    source: Optional[str] = None,
    *,
    span_of: SpanOf = Span.from_node,
) -> BuilderOptions:
    """
    Extract the ``name=value`` pairs of an already-parsed call.

    Raises :class:`OptionSyntaxError` for the first (in source order)
    positional value, ``*`` unpacking or ``**`` unpacking found.
    """

    offenders: List[Tuple[ast.AST, str, str]] = []
    for arg in call.args:
        text = _segment(source, arg)
        if isinstance(arg, ast.Starred):
            offenders.append((arg, text, f"`*` unpacking is not allowed in option lists, found `{text}`"))
        else:
            offenders.append((arg, text, f"expected `name = value`, found `{text}`"))
    for keyword in call.keywords:
        if keyword.arg is None:
            text = _keyword_text(source, keyword)
            offenders.append((keyword, text, f"`**` unpacking is not allowed in option lists, found `{text}`"))

    if offenders:
        node, text, message = min(
            offenders,
            key=lambda item: (getattr(item[0], "lineno", 0), getattr(item[0], "col_offset", 0)),
        )
        raise OptionSyntaxError(
            message,
            token=text,
            span=span_of(node),
            hint="Options are written as `name = value`, separated by commas",
        )

    return BuilderOptions(
        tuple(
            BuilderOption(name=keyword.arg, value=keyword.value, source=_segment(source, keyword.value))
            for keyword in call.keywords
            if keyword.arg is not None
        )
    )


def parse_builder_options(text: str) -> BuilderOptions:
    """
    Parse ``( ident = expr , ... )`` into ordered options.

    Blank text is the "no options" shortcut and returns empty options without
    parsing. Spans on raised errors are relative to the stripped ``text``.
    """

    stripped = text.strip()
    if not stripped:
        return BuilderOptions()

    _check_single_group(stripped)

    wrapped = _CALLEE + stripped
    try:
        expr = ast.parse(wrapped, mode="eval")
    except SyntaxError as exc:
        raise _from_python_syntax_error(exc, stripped) from exc

    body = expr.body
    if not (isinstance(body, ast.Call) and isinstance(body.func, ast.Name) and body.func.id == _CALLEE):
        # _check_single_group rejects trailing tokens before this point
        raise OptionSyntaxError(
            "expected a single parenthesized option list",
            token=stripped,
            span=Span(1, 0, 1, len(stripped.encode("utf-8"))),
        )

    def span_of(node: ast.AST) -> Span:
        return _unwrap_span(Span.from_node(node))

    return options_from_call(body, wrapped, span_of=span_of)


def _unwrap_span(span: Span) -> Span:
    shift = len(_CALLEE)
    col = span.col_offset - shift if span.lineno == 1 else span.col_offset
    end_col = span.end_col_offset - shift if span.end_lineno == 1 else span.end_col_offset
    return Span(span.lineno, max(col, 0), span.end_lineno, max(end_col, 0))


def _check_single_group(text: str) -> None:
    """Require exactly one balanced ``(...)`` group and nothing after it."""

    try:
        tokens = list(tokenize.generate_tokens(io.StringIO(text).readline))
    except tokenize.TokenError as exc:
        raise OptionSyntaxError(
            "malformed option list: unexpected end of input (unclosed `(`?)",
            token=text,
            span=Span(1, 0, 1, 1),
        ) from exc
    except SyntaxError as exc:
        raise _from_python_syntax_error(exc, text, wrapped=False) from exc

    significant = [tok for tok in tokens if tok.type not in _IGNORED_TOKENS]
    if not significant or significant[0].string != "(":
        first = significant[0] if significant else None
        token = first.string if first else text
        raise OptionSyntaxError(
            f"expected `(` to open the option list, found `{token}`",
            token=token,
            span=_token_span(first) if first else Span(1, 0, 1, 1),
        )

    depth = 0
    for index, tok in enumerate(significant):
        if tok.type == tokenize.OP and tok.string in "([{":
            depth += 1
        elif tok.type == tokenize.OP and tok.string in ")]}":
            depth -= 1
        if depth == 0:
            trailing = significant[index + 1 :]
            if trailing:
                raise OptionSyntaxError(
                    "unexpected tokens after the option list: "
                    f"`{' '.join(t.string for t in trailing)}`",
                    token=trailing[0].string,
                    span=Span(
                        trailing[0].start[0],
                        _byte_col(trailing[0].line, trailing[0].start[1]),
                        trailing[-1].end[0],
                        _byte_col(trailing[-1].line, trailing[-1].end[1]),
                    ),
                )
            return


def _byte_col(line: str, char_col: int) -> int:
    return len(line[:char_col].encode("utf-8"))


def _token_span(tok: tokenize.TokenInfo) -> Span:
    return Span(
        tok.start[0],
        _byte_col(tok.line, tok.start[1]),
        tok.end[0],
        _byte_col(tok.line, tok.end[1]),
    )


def _from_python_syntax_error(exc: SyntaxError, text: str, *, wrapped: bool = True) -> OptionSyntaxError:
    lineno = exc.lineno or 1
    offset = (exc.offset or 1) - 1
    end_offset = (getattr(exc, "end_offset", None) or exc.offset or 1) - 1
    if wrapped and lineno == 1:
        offset = max(offset - len(_CALLEE), 0)
        end_offset = max(end_offset - len(_CALLEE), offset)
    lines = text.splitlines() or [text]
    line = lines[min(lineno, len(lines)) - 1]
    token = line[offset:end_offset] or line[offset : offset + 1]
    return OptionSyntaxError(
        f"malformed option list: {exc.msg}",
        token=token or None,
        span=Span(lineno, _byte_col(line, offset), lineno, _byte_col(line, max(end_offset, offset + 1))),
        hint="Options are written as `name = value`, separated by commas",
    )


__all__ = ["options_from_call", "parse_builder_options"]
