"""
Application context shared by the CLI command tree.

The context is stored on the root ``click.Context`` as ``obj`` so every
subcommand sees the same settings and service factory.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, Optional
import logging

from .config import Settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_service(app_ctx: 'AppContext') -> AsyncIterator[Any]:
    """Create a MetricsService wired to the configured subgraphs and cache.

    The HTTP session and the cache connection are closed on exit.
    """
    from ..data.api_client import SubgraphClient, SubgraphClientConfig
    from ..data.service import MetricsService

    settings = app_ctx.settings
    cache = app_ctx.cache() if app_ctx.use_cache else None

    try:
        async with SubgraphClient(SubgraphClientConfig.from_settings(settings)) as client:
            yield MetricsService(client, cache, settings)
    finally:
        if cache:
            await cache.close()


@dataclass
class AppContext:
    """
    Application state passed down the command hierarchy.

    ``service_factory`` returns an async context manager yielding a
    MetricsService; tests replace it to avoid network access.
    """
    settings: Optional[Settings] = None
    config: Dict[str, Any] = field(default_factory=dict)
    debug: bool = False
    verbose: bool = False
    use_cache: bool = True
    service_factory: Callable[['AppContext'], Any] = open_service
    cache_factory: Optional[Callable[[Settings], Any]] = None

    def service(self):
        """Open a service for the duration of an ``async with`` block."""
        if self.settings is None:
            self.settings = Settings()
        return self.service_factory(self)

    def cache(self):
        """Create a CacheLayer for the configured store."""
        if self.settings is None:
            self.settings = Settings()

        if self.cache_factory is not None:
            return self.cache_factory(self.settings)

        from ..data.cache import CacheLayer
        return CacheLayer.from_settings(self.settings)
