"""Application package for nodedash."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Flask

from nodedash.config import Config
from nodedash.db import get_db
from nodedash.extensions import limiter
from nodedash.repositories import (
    AppRepository,
    ConnectionRepository,
    NodeInfoRepository,
    SettingsRepository,
    WebhookLogRepository,
)
from nodedash.routes import (
    create_apps_blueprint,
    create_connections_blueprint,
    create_gateway_blueprint,
    create_health_blueprint,
)
from nodedash.services import (
    AppGateway,
    AppLifecycleService,
    AppService,
    ConnectionManager,
    ContainerRuntime,
    DockerContainerRuntime,
    EventStreamSubscriber,
    NodeClientConfig,
    PhoenixdClient,
    WebhookDispatcher,
)

VERSION = "0.3.0"

logger = logging.getLogger(__name__)


@dataclass
class Services:
    runtime: ContainerRuntime
    scheduler: BackgroundScheduler
    node_config: NodeClientConfig
    node_client: PhoenixdClient
    lifecycle: AppLifecycleService
    dispatcher: WebhookDispatcher
    event_stream: EventStreamSubscriber
    connection_manager: ConnectionManager
    app_service: AppService
    gateway: AppGateway


def create_app(
    config_class: type[Config] = Config,
    *,
    runtime: Optional[ContainerRuntime] = None,
    node_client: Optional[PhoenixdClient] = None,
    scheduler: Optional[BackgroundScheduler] = None,
    db_factory: Callable = get_db,
) -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_class)
    limiter.init_app(app)
    cfg = app.config

    if node_client is None:
        node_config = NodeClientConfig(cfg['PHOENIXD_URL'], cfg['PHOENIXD_PASSWORD'])
        node_client = PhoenixdClient(node_config, timeout=cfg['NODE_REQUEST_TIMEOUT_SECONDS'])
    else:
        node_config = node_client.config
    if runtime is None:
        runtime = DockerContainerRuntime(cfg['DOCKER_HOST_URL'], timeout=cfg['DOCKER_OPERATION_TIMEOUT_SECONDS'])
    if scheduler is None:
        scheduler = BackgroundScheduler()

    app_repo = AppRepository(db_factory)
    webhook_log_repo = WebhookLogRepository(db_factory)
    connection_repo = ConnectionRepository(db_factory)
    node_info_repo = NodeInfoRepository(db_factory)
    settings_repo = SettingsRepository(db_factory)

    lifecycle = AppLifecycleService(
        runtime,
        app_repo,
        node_info_repo,
        node_config,
        dashboard_url=cfg['DASHBOARD_URL'],
        network=cfg['APP_NETWORK'],
        memory_limit=cfg['APP_MEMORY_LIMIT'],
        nano_cpus=cfg['APP_NANO_CPUS'],
        stop_grace_seconds=cfg['CONTAINER_STOP_GRACE_SECONDS'],
        health_timeout=cfg['HEALTH_CHECK_TIMEOUT_SECONDS'],
        max_workers=cfg['WEBHOOK_MAX_WORKERS'],
    )
    dispatcher = WebhookDispatcher(
        app_repo,
        webhook_log_repo,
        lifecycle,
        timeout=cfg['WEBHOOK_TIMEOUT_SECONDS'],
        max_workers=cfg['WEBHOOK_MAX_WORKERS'],
        retention_days=cfg['WEBHOOK_LOG_RETENTION_DAYS'],
    )
    event_stream = EventStreamSubscriber(
        node_config,
        dispatcher,
        reconnect_seconds=cfg['EVENT_STREAM_RECONNECT_SECONDS'],
    )
    connection_manager = ConnectionManager(
        connection_repo,
        node_info_repo,
        settings_repo,
        node_client,
        node_config,
        event_stream,
        default_url=cfg['PHOENIXD_URL'],
        default_password=cfg['PHOENIXD_PASSWORD'],
    )
    app_service = AppService(app_repo, webhook_log_repo, lifecycle, dispatcher)
    gateway = AppGateway(app_repo)

    app.register_blueprint(create_apps_blueprint(app_service=app_service, limiter=limiter, logger=logger))
    app.register_blueprint(create_connections_blueprint(
        connection_manager=connection_manager,
        limiter=limiter,
        logger=logger,
    ))
    app.register_blueprint(create_gateway_blueprint(
        gateway=gateway,
        node_client=node_client,
        limiter=limiter,
        logger=logger,
        rate_limit=f"{cfg['RATE_LIMIT_PER_MINUTE']} per minute",
    ))
    app.register_blueprint(create_health_blueprint(
        runtime=runtime,
        scheduler=scheduler,
        event_stream=event_stream,
        db_factory=db_factory,
        version=VERSION,
        scheduler_enabled=cfg['SCHEDULER_ENABLED'],
    ))

    app.extensions['nodedash'] = Services(
        runtime=runtime,
        scheduler=scheduler,
        node_config=node_config,
        node_client=node_client,
        lifecycle=lifecycle,
        dispatcher=dispatcher,
        event_stream=event_stream,
        connection_manager=connection_manager,
        app_service=app_service,
        gateway=gateway,
    )
    return app
