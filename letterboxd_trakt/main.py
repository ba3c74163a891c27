"""
Main entry point for Letterboxd Trakt Sync.

Starts the Flask web API and the background pass runner.
"""

import atexit
from datetime import datetime
from typing import Optional

from flask import Flask

from letterboxd_trakt.config import SyncConfig, get_config_from_env, is_configured
from letterboxd_trakt.db.database import init_db, close_db
from letterboxd_trakt.sync.runner import PassRunner
from letterboxd_trakt.utils.logging import get_logger, setup_logging, init_db_logging

logger = get_logger(__name__)


def create_app(config: Optional[SyncConfig] = None, runner: Optional[PassRunner] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Configuration, loaded from the environment if omitted
        runner: Pass runner, created from config if omitted

    Returns:
        Configured Flask app
    """
    config = config or get_config_from_env()

    app = Flask(__name__)
    app.secret_key = config.secret_key
    app.extensions['pass_runner'] = runner or PassRunner(config)

    # Register blueprints
    from letterboxd_trakt.web.routes.api import api_bp

    app.register_blueprint(api_bp)

    # Health check
    @app.route('/health')
    def health():
        return {'status': 'ok', 'timestamp': datetime.utcnow().isoformat()}

    return app


def main():
    """Main entry point."""
    config = get_config_from_env()

    # Setup logging
    setup_logging(config.log_level)

    # Initialize database
    init_db(config.database_url)

    # Initialize database logging (must be after init_db)
    init_db_logging()

    if not is_configured(config):
        logger.warning("TRAKT_CLIENT_ID is not set, Trakt calls will be rejected")

    logger.info(
        "Starting Letterboxd Trakt Sync",
        version="0.1.0",
        port=config.port,
        min_request_interval_ms=config.min_request_interval_ms,
    )

    runner = PassRunner(config)
    app = create_app(config, runner)

    runner.start()

    # Register shutdown handler
    atexit.register(close_db)
    atexit.register(runner.shutdown)

    # Run Flask app with waitress
    from waitress import serve
    serve(app, host="0.0.0.0", port=config.port)


if __name__ == "__main__":
    main()
