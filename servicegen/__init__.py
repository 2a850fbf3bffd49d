"""
servicegen

Build-time generator for service bootstrap loaders.

A service module declares its entry point as an ordinary function whose
parameters name the resources it needs::

    @service_runtime.main(log_level="INFO")
    async def app(
        pool: Annotated[asyncpg.Pool, shared_db.Postgres(size="10Gb")],
    ) -> ServiceApp:
        ...

servicegen rewrites that module. The output provisions every resource through
the runtime, installs logging, substitutes secrets into string options and
calls the original function.

Components:
- Option and declaration parsing (``options``, ``parser``)
- Loader model (``models``)
- Code generation (``generators``, ``templates``)
- Diagnostics and the transformation driver (``diagnostics``, ``transform``)
"""

from servicegen.config import ServicegenConfig, load_config
from servicegen.diagnostics import Diagnostic, Diagnostics, Severity, Span
from servicegen.exceptions import (
    ConfigError,
    DeclarationError,
    DuplicateEntryPointError,
    EntryPointNotFoundError,
    InvalidLogLevelError,
    MissingResourceAnnotationError,
    MissingReturnTypeError,
    OptionSyntaxError,
    ReservedNameError,
    ServicegenError,
    SourceSyntaxError,
    TemplateError,
    TemplateKeyError,
    TemplateSyntaxError,
    TransformError,
    UnsupportedReturnTypeError,
)
from servicegen.generators import LoaderGenerator
from servicegen.models import Builder, BuilderOption, BuilderOptions, Input, Loader, LogLevel
from servicegen.options import options_from_call, parse_builder_options
from servicegen.parser import DeclarationParser, EntryPointFinder, ParseResult
from servicegen.templating import strfmt
from servicegen.transform import EntryPointTransformer, TransformResult, expand

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # models
    "Builder",
    "BuilderOption",
    "BuilderOptions",
    "Input",
    "Loader",
    "LogLevel",
    # parsing
    "DeclarationParser",
    "EntryPointFinder",
    "ParseResult",
    "options_from_call",
    "parse_builder_options",
    # generation
    "EntryPointTransformer",
    "LoaderGenerator",
    "TransformResult",
    "expand",
    "strfmt",
    # diagnostics
    "Diagnostic",
    "Diagnostics",
    "Severity",
    "Span",
    # config
    "ServicegenConfig",
    "load_config",
    # errors
    "ConfigError",
    "DeclarationError",
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
