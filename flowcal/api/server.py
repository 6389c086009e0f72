"""aiohttp application factory and server entrypoint for flowcal."""

from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web

from flowcal.core.config_manager import AppSettings
from flowcal.core.dependencies import AppDependencies, DependencyContainer
from flowcal.core.http_client import close_all_clients

from .middleware import correlation_id_middleware
from .routes import register_calendar_routes, register_subscription_routes
from .routes.calendar_routes import UserResolver

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


def header_user_resolver(default_user_id: Optional[str] = None) -> UserResolver:
    """Resolve the caller from the ``X-User-Id`` header set by the fronting auth layer.

    Args:
        default_user_id: Used when the header is absent (single-user deployments)
    """

    def resolve(request: web.Request) -> Optional[str]:
        user_id = request.headers.get(USER_ID_HEADER, "").strip()
        return user_id or default_user_id

    return resolve


def make_app(deps: AppDependencies, user_resolver: Optional[UserResolver] = None) -> web.Application:
    """Create aiohttp web application with routes wired to the dependencies.

    Args:
        deps: Built application dependencies
        user_resolver: Caller identity resolver; defaults to the header resolver

    Returns:
        Configured application
    """
    resolver = user_resolver or header_user_resolver(deps.settings.default_user_id)

    app = web.Application(middlewares=[correlation_id_middleware])
    app["deps"] = deps

    register_calendar_routes(
        app=app,
        aggregator=deps.aggregator,
        feed_generator=deps.feed_generator,
        feed_cache=deps.feed_cache,
        user_resolver=resolver,
        time_provider=deps.time_provider,
        display_timezone=deps.settings.display_timezone,
    )
    register_subscription_routes(
        app=app,
        store=deps.store,
        ingestion=deps.ingestion,
        user_resolver=resolver,
    )

    async def _cleanup(_app: web.Application) -> None:
        logger.info("Application shutdown requested")
        await close_all_clients()

    app.on_cleanup.append(_cleanup)
    return app


def start_server(settings: AppSettings) -> None:
    """Build dependencies and run the HTTP server until interrupted.

    Args:
        settings: Validated application settings
    """
    deps = DependencyContainer.build_dependencies(settings)
    app = make_app(deps)

    logger.info(
        "Starting flowcal server on %s:%d (display timezone %s)",
        settings.server_bind,
        settings.server_port,
        settings.display_timezone,
    )
    try:
        web.run_app(app, host=settings.server_bind, port=settings.server_port, print=None)
    except OSError:
        logger.exception("Server could not bind %s:%d", settings.server_bind, settings.server_port)
        raise
