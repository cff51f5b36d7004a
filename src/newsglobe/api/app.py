"""FastAPI application factory."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from newsglobe.api.routes import router
from newsglobe.config import NewsGlobeConfig, ServiceContext, create_from_config
from newsglobe.geo import GeocodeCache

logger = logging.getLogger(__name__)


async def _purge_periodically(cache: GeocodeCache, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await cache.purge_expired()


def create_app(
    config: NewsGlobeConfig | None = None,
    *,
    context: ServiceContext | None = None,
) -> FastAPI:
    """Create the NewsGlobe API.

    Args:
        config: Root configuration, used to build the service context at
            start-up. Defaults to the built-in defaults.
        context: Prebuilt service context; takes precedence over ``config``
            and is not closed on shutdown.
    """
    config = context.config if context is not None else (config or NewsGlobeConfig())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = getattr(app.state, "context", None) is None
        if owned:
            app.state.context = create_from_config(config)
        ctx: ServiceContext = app.state.context

        purge = asyncio.create_task(
            _purge_periodically(ctx.resolver.cache, config.geocoding.cache_purge_interval_seconds)
        )
        logger.info("NewsGlobe API started")
        try:
            yield
        finally:
            purge.cancel()
            for task in list(app.state.stream_tasks):
                task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await purge
            if owned:
                ctx.close()
                app.state.context = None
            logger.info("NewsGlobe API stopped")

    app = FastAPI(title="NewsGlobe API", lifespan=lifespan)
    app.state.context = context
    app.state.stream_tasks = set()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app
