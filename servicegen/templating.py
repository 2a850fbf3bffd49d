"""
Secret substitution for string-valued builder options.

Generated loaders call :func:`strfmt` on every string-literal option value,
passing the secrets lookup (keys prefixed with ``secrets.``)::

    >>> strfmt("postgres://user:{secrets.password}@db", {"secrets.password": "hunter2"})
    'postgres://user:hunter2@db'

``str.format_map`` is not usable here because it treats dots in field names
as attribute access.
"""

from __future__ import annotations

from typing import Any, List, Mapping

from servicegen.exceptions import TemplateKeyError, TemplateSyntaxError


def strfmt(template: str, variables: Mapping[str, Any]) -> str:
    """
    Replace ``{key}`` and ``{key:spec}`` placeholders using ``variables``.

    ``{{`` and ``}}`` produce literal braces. The first unknown key raises
    :class:`TemplateKeyError`; unbalanced braces or an invalid format spec
    raise :class:`TemplateSyntaxError`.
    """

    out: List[str] = []
    i = 0
    length = len(template)

    while i < length:
        char = template[i]

        if char == "{":
            if template.startswith("{{", i):
                out.append("{")
                i += 2
                continue
            close = template.find("}", i + 1)
            if close == -1:
                raise TemplateSyntaxError(f"unclosed '{{' at position {i} in template")
            field = template[i + 1 : close]
            if "{" in field:
                raise TemplateSyntaxError(f"nested '{{' at position {i} in template")
            out.append(_render_field(field, variables))
            i = close + 1
            continue

        if char == "}":
            if template.startswith("}}", i):
                out.append("}")
                i += 2
                continue
            raise TemplateSyntaxError(f"single '}}' at position {i} in template")

        out.append(char)
        i += 1

    return "".join(out)


def _render_field(field: str, variables: Mapping[str, Any]) -> str:
    key, sep, spec = field.partition(":")
    key = key.strip()
    if not key:
        raise TemplateSyntaxError("empty placeholder '{}' in template")
    if key not in variables:
        raise TemplateKeyError(key)

    value = variables[key]
    if not sep:
        return str(value)
    try:
        return format(value, spec)
    except (TypeError, ValueError) as exc:
        raise TemplateSyntaxError(f"invalid format spec {spec!r} for key {key!r}: {exc}") from exc


__all__ = ["strfmt"]
