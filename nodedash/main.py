"""
nodedash - app runtime control plane
Process entry point: configuration, logging and background runtime startup
"""
import logging
import os

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from nodedash import create_app  # noqa: E402
from nodedash.config import DevelopmentConfig, ProductionConfig  # noqa: E402
from nodedash.db import ensure_data_dir, init_db  # noqa: E402
from nodedash.services.background_jobs import register_background_jobs  # noqa: E402

logging.basicConfig(
    level=getattr(logging, ProductionConfig.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def init_runtime(app):
    """Prepare storage and start everything that runs outside of requests."""
    services = app.extensions['nodedash']
    cfg = app.config

    ensure_data_dir()
    init_db()

    services.connection_manager.bootstrap()

    if cfg['INSTALL_DEFAULT_APPS']:
        services.app_service.ensure_default_apps()

    if cfg['SCHEDULER_ENABLED']:
        register_background_jobs(
            services.scheduler,
            services.lifecycle,
            services.dispatcher,
            health_interval_seconds=cfg['HEALTH_CHECK_INTERVAL_SECONDS'],
            cleanup_interval_hours=cfg['WEBHOOK_LOG_CLEANUP_INTERVAL_HOURS'],
        )
        if not services.scheduler.running:
            services.scheduler.start()

    if cfg['EVENT_STREAM_ENABLED']:
        services.event_stream.start()

    logger.info("nodedash runtime initialized")


def shutdown_runtime(app):
    services = app.extensions['nodedash']
    services.event_stream.stop()
    if services.scheduler.running:
        services.scheduler.shutdown(wait=False)
    services.dispatcher.shutdown()


config_class = DevelopmentConfig if os.getenv('FLASK_ENV') == 'development' else ProductionConfig
app = create_app(config_class)
