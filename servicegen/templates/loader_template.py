"""Text templates for the generated bootstrap routine."""

from __future__ import annotations

import ast
from textwrap import indent
from typing import Iterable, List

from servicegen.models import Builder, Input, Loader

INDENT = " " * 4
LOADER_NAME = "loader"
SECRETS_NAME = "secret_vars"
STRFMT_IMPORT = "from servicegen.templating import strfmt"

# Names bound inside the generated loader; resource parameters may not reuse them.
LOADER_LOCALS = frozenset(
    {
        "factory",
        "resource_tracker",
        "logger",
        "log_level",
        "filter_layer",
        SECRETS_NAME,
        "get_resource",
        "strfmt",
        "exc",
    }
)

# Builtins read by the generated loader.
LOADER_BUILTINS = frozenset({"Exception", "RuntimeError"})


def render_signature(loader: Loader, runtime: str) -> str:
    """Render the ``async def loader(...)`` header."""

    prefix = "_" if not loader.inputs else ""
    return (
        f"async def {LOADER_NAME}(\n"
        f"{INDENT}{prefix}factory: {runtime}.ProvisionerFactory,\n"
        f"{INDENT}{prefix}resource_tracker: {runtime}.ResourceTracker,\n"
        f"{INDENT}logger: {runtime}.Logger,\n"
        f") -> {loader.return_type}:"
    )


def render_imports(loader: Loader, runtime: str) -> List[str]:
    """Provisioning imports, only needed when there is something to provision."""

    if not loader.inputs:
        return []
    lines = [f"from {runtime} import get_resource"]
    if loader.needs_secrets:
        lines.append(STRFMT_IMPORT)
    return lines


def render_logging_setup(loader: Loader, runtime: str) -> List[str]:
    """Clamp the configured level to DEBUG and install the process-wide filter."""

    level = f"{runtime}.Level"
    return [
        f"log_level = {level}.{loader.log_level.value}",
        f"if log_level < {level}.DEBUG:",
        f"{INDENT}log_level = {level}.DEBUG",
        "",
        f"filter_layer = {runtime}.EnvFilter.from_default_env().add_directive(log_level)",
        f"{runtime}.install_logging(filter_layer, logger)",
    ]


def render_secrets_statement() -> str:
    """Fetch all secrets once and key them as ``secrets.<name>``."""

    return (
        f'{SECRETS_NAME} = {{f"secrets.{{key}}": value '
        "for key, value in (await factory.get_secrets()).items()}"
    )


def render_builder_expression(builder: Builder) -> str:
    """Render ``path()`` followed by one chained setter call per option."""

    chain = []
    for option in builder.options:
        # multi-line sources are re-rendered on one line so indenting the body cannot alter them
        source = option.source if "\n" not in option.source else ast.unparse(option.value)
        if option.is_string_literal:
            value = f"strfmt({source}, {SECRETS_NAME})"
        else:
            value = source
        chain.append(f".{option.name}({value})")
    return f"{builder.path}(){''.join(chain)}"


def render_provisioning(item: Input) -> List[str]:
    """Provision one resource and bind it to the parameter name."""

    label = repr(f"failed to provision {item.builder.path}")
    return [
        "try:",
        f"{INDENT}{item.ident} = await get_resource(",
        f"{INDENT * 2}{render_builder_expression(item.builder)},",
        f"{INDENT * 2}factory,",
        f"{INDENT * 2}resource_tracker,",
        f"{INDENT})",
        "except Exception as exc:",
        f"{INDENT}raise RuntimeError({label}) from exc",
    ]


def render_entry_call(loader: Loader) -> str:
    """Call the original entry point with every provisioned resource."""

    args = [item.ident for item in loader.inputs if not item.keyword_only]
    args.extend(f"{item.ident}={item.ident}" for item in loader.inputs if item.keyword_only)
    call = f"{loader.entry_ident}({', '.join(args)})"
    if loader.is_async:
        return f"return await {call}"
    return f"return {call}"


def _body(blocks: Iterable[List[str]]) -> str:
    rendered = ["\n".join(block) for block in blocks if block]
    return indent("\n\n".join(rendered), INDENT, lambda line: bool(line.strip()))


def render_loader(loader: Loader, runtime: str) -> str:
    """Assemble the complete bootstrap routine."""

    blocks: List[List[str]] = [
        render_imports(loader, runtime),
        render_logging_setup(loader, runtime),
    ]
    if loader.needs_secrets:
        blocks.append([render_secrets_statement()])
    blocks.extend(render_provisioning(item) for item in loader.inputs)
    blocks.append([render_entry_call(loader)])

    return f"{render_signature(loader, runtime)}\n{_body(blocks)}\n"


def render_main_wrapper(runtime: str) -> str:
    """Process entry point that runs the loader under the runtime."""

    return (
        "def main() -> None:\n"
        f"{INDENT}asyncio.run({runtime}.start({LOADER_NAME}))\n"
    )


def render_main_guard() -> str:
    return 'if __name__ == "__main__":\n' f"{INDENT}main()\n"


def assemble_program(loader_source: str, function_source: str, runtime: str) -> str:
    """Join imports, the main wrapper, the loader and the original function."""

    parts = [
        f"import asyncio\n\nimport {runtime}\n",
        render_main_wrapper(runtime),
        loader_source,
        function_source.rstrip("\n") + "\n",
    ]
    return "\n\n\n".join(part.rstrip("\n") for part in parts) + "\n"


__all__ = [
    "LOADER_BUILTINS",
    "LOADER_LOCALS",
    "LOADER_NAME",
    "assemble_program",
    "render_builder_expression",
    "render_entry_call",
    "render_imports",
    "render_loader",
    "render_logging_setup",
    "render_main_guard",
    "render_main_wrapper",
    "render_provisioning",
    "render_secrets_statement",
    "render_signature",
]
