"""Render bootstrap loaders from a parsed :class:`Loader` model."""

from __future__ import annotations

from typing import Optional

from servicegen.config import ServicegenConfig
from servicegen.models import Loader
from servicegen.observability.logging import get_logger
from servicegen.templates import loader_template as template

logger = get_logger(__name__)


class LoaderGenerator:
    """Generate the ``loader`` coroutine and the program around it."""

    def __init__(self, config: Optional[ServicegenConfig] = None) -> None:
        self.config = config or ServicegenConfig()

    @property
    def runtime(self) -> str:
        return self.config.runtime_module

    def render(self, loader: Loader) -> str:
        """Return the source of ``async def loader(...)`` for ``loader``."""

        source = template.render_loader(loader, self.runtime)
        logger.debug(
            "loader_rendered",
            entry=loader.entry_ident,
            inputs=len(loader.inputs),
            needs_secrets=loader.needs_secrets,
            log_level=loader.log_level.value,
            effective_log_level=loader.effective_log_level.value,
        )
        return source

    def render_program(self, loader: Loader, function_source: str) -> str:
        """
        Return the full replacement for the entry point.

        This is the ``main`` wrapper, the loader and the original
        (annotation-stripped) function, in that order.
        """

        return template.assemble_program(
            loader_source=self.render(loader),
            function_source=function_source,
            runtime=self.runtime,
        )

    def render_main_guard(self) -> str:
        return template.render_main_guard()


__all__ = ["LoaderGenerator"]
