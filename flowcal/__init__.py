"""flowcal - calendar aggregation and recurrence engine for a task and habit manager.

Imports are kept light here; the server stack is loaded by ``run_server``.
"""

from typing import Optional

__version__ = "0.1.0"


def run_server(args: Optional[object] = None) -> None:
    """Start the flowcal HTTP server.

    Args:
        args: Optional command line arguments namespace (--port, --host,
            --data-file, --debug, --env-file)

    Behavior:
    - Initialize console logging early so configuration warnings are visible.
    - Load ``.env`` defaults and FLOWCAL_* environment variables.
    - Apply command line overrides, then delegate to ``api.server.start_server``.
    """
    import logging
    from pathlib import Path

    from .core.config_manager import ConfigManager
    from .core.logging_setup import configure_logging

    debug = bool(getattr(args, "debug", False))
    configure_logging(debug_mode=debug)
    logger = logging.getLogger(__name__)

    env_file = getattr(args, "env_file", None)
    manager = ConfigManager(Path(env_file) if env_file else None)

    overrides = {
        "server_port": getattr(args, "port", None),
        "server_bind": getattr(args, "host", None),
        "data_file": getattr(args, "data_file", None),
    }
    settings = manager.load_settings(overrides)
    if not debug:
        configure_logging(level_name=settings.log_level)
    logger.debug("Resolved settings: %s", settings.model_dump(exclude={"calendar_secret"}))

    from .api.server import start_server

    start_server(settings)
