import os
import atexit
import logging

from flask import Flask

from .config import Config

logger = logging.getLogger(__name__)


def _shutdown(registry):
    """Close the registry's Redis client on the bridge loop, then stop the loop."""
    from .services.async_helper import run_async, shutdown_loop

    try:
        run_async(registry.close())
    except Exception as e:
        logger.warning(f"Error closing services at shutdown: {e}")
    finally:
        shutdown_loop()


def create_app(config_object=None):
    from .services import ServiceRegistry, settings_from_object

    app = Flask(__name__, static_folder=None, static_url_path=None)
    app.config.from_object(Config)
    if config_object is not None:
        app.config.from_object(config_object)

    # Configure Python logging level from LOG_LEVEL (default ERROR)
    log_level_name = str(app.config.get('LOG_LEVEL') or os.getenv('LOG_LEVEL', 'ERROR')).upper()
    log_level = getattr(logging, log_level_name, logging.ERROR)
    logging.getLogger().setLevel(log_level)
    app.logger.setLevel(log_level)

    # Suppress asyncio debug logging unless explicitly needed
    logging.getLogger('asyncio').setLevel(logging.INFO)

    app.secret_key = app.config['SECRET_KEY']

    registry = ServiceRegistry(
        settings_from_object(app.config),
        redis_client=app.config.get('REDIS_CLIENT'),
    )
    app.extensions['bookshelf'] = registry
    atexit.register(_shutdown, registry)

    from .api import register_api
    register_api(app)

    logger.info("Bookshelf application created")
    return app
