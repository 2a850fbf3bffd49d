"""Domain-specific exceptions for the entry-point transformer."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover - typing only
    from servicegen.diagnostics import Diagnostics, Span


DOCS_URL = "https://servicegen.readthedocs.io/en/latest/entry-point.html"


class ServicegenError(Exception):
    """
    Base exception for all transformer errors.

    Carries enough context to be rendered as a build-time diagnostic:
    the source span it refers to, an optional remediation hint and an
    optional documentation link.
    """

    code = "servicegen-error"

    def __init__(
        self,
        message: str,
        *,
        span: Optional["Span"] = None,
        hint: Optional[str] = None,
        doc: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.span = span
        self.hint = hint
        self.doc = doc


class DeclarationError(ServicegenError):
    """Raised for structural problems in the entry-point declaration."""

    code = "declaration-error"


class ReservedNameError(DeclarationError):
    """The entry point uses the name reserved for the process entry point."""

    code = "reserved-name"


class MissingReturnTypeError(DeclarationError):
    """The entry point declares no return annotation."""

    code = "missing-return-type"


class UnsupportedReturnTypeError(DeclarationError):
    """The return annotation is not a plain named type."""

    code = "unsupported-return-type"


class MissingResourceAnnotationError(DeclarationError):
    """A parameter carries no resource annotation."""

    code = "missing-resource-annotation"


class OptionSyntaxError(DeclarationError):
    """
    Malformed builder annotation or option list.

    Attributes:
        token: Source text of the offending token(s), when known.
    """

    code = "option-syntax"

    def __init__(
        self,
        message: str,
        *,
        token: Optional[str] = None,
        span: Optional["Span"] = None,
        hint: Optional[str] = None,
        doc: Optional[str] = None,
    ):
        super().__init__(message, span=span, hint=hint, doc=doc)
        self.token = token


class SourceSyntaxError(DeclarationError):
    """The module being transformed is not valid Python."""

    code = "source-syntax"


class EntryPointNotFoundError(DeclarationError):
    """No decorated entry point was found in the module."""

    code = "entry-point-not-found"


class DuplicateEntryPointError(DeclarationError):
    """More than one decorated entry point was found in the module."""

    code = "duplicate-entry-point"


class InvalidLogLevelError(ServicegenError):
    """The configured log level cannot be mapped to a known level."""

    code = "invalid-log-level"


class TransformError(ServicegenError):
    """Raised when a transformation finished with error diagnostics."""

    code = "transform-failed"

    def __init__(self, message: str, diagnostics: "Diagnostics"):
        super().__init__(message)
        self.diagnostics = diagnostics

    def __str__(self) -> str:
        return f"{self.message}\n{self.diagnostics.render()}"


class TemplateError(ServicegenError):
    """Base class for secret template substitution failures."""

    code = "template-error"


class TemplateKeyError(TemplateError):
    """A template placeholder names a key missing from the lookup."""

    code = "template-key"

    def __init__(self, key: str):
        super().__init__(f"unknown template key: {key!r}")
        self.key = key


class TemplateSyntaxError(TemplateError):
    """A template string has unbalanced braces or a bad format spec."""

    code = "template-syntax"


class ConfigError(ServicegenError):
    """Raised when configuration cannot be loaded or validated."""

    code = "config-error"


__all__ = [
    "ConfigError",
    "DeclarationError",
    "DOCS_URL",
    "DuplicateEntryPointError",
    "EntryPointNotFoundError",
    "InvalidLogLevelError",
    "MissingResourceAnnotationError",
    "MissingReturnTypeError",
    "OptionSyntaxError",
    "ReservedNameError",
    "ServicegenError",
    "SourceSyntaxError",
    "TemplateError",
    "TemplateKeyError",
    "TemplateSyntaxError",
    "TransformError",
    "UnsupportedReturnTypeError",
]
