"""Centralized configuration for nodedash."""
from __future__ import annotations

import os


class Config:
    """Base configuration loaded from environment variables."""
    SECRET_KEY = os.getenv('SECRET_KEY')
    DATABASE_PATH = os.getenv('DATABASE_PATH', '/data/nodedash.db')
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    PORT = int(os.getenv('PORT', '4000'))
    TESTING = False

    # Per-app request limit on the app gateway
    RATE_LIMIT_PER_MINUTE = int(os.getenv('RATE_LIMIT_PER_MINUTE', '100'))

    # Injected into app containers
    DASHBOARD_URL = os.getenv('DASHBOARD_URL', 'http://nodedash-backend:4000')

    # Local/default node backend
    PHOENIXD_URL = os.getenv('PHOENIXD_URL', 'http://phoenixd:9740')
    PHOENIXD_PASSWORD = os.getenv('PHOENIXD_PASSWORD', '')
    NODE_REQUEST_TIMEOUT_SECONDS = int(os.getenv('NODE_REQUEST_TIMEOUT_SECONDS', '10'))

    # Container runtime
    DOCKER_HOST_URL = os.getenv('DOCKER_HOST_URL', 'unix://var/run/docker.sock')
    DOCKER_OPERATION_TIMEOUT_SECONDS = int(os.getenv('DOCKER_OPERATION_TIMEOUT_SECONDS', '30'))
    CONTAINER_STOP_GRACE_SECONDS = int(os.getenv('CONTAINER_STOP_GRACE_SECONDS', '10'))
    APP_NETWORK = os.getenv('APP_NETWORK', 'nodedash_apps')
    APP_MEMORY_LIMIT = os.getenv('APP_MEMORY_LIMIT', '512m')
    APP_NANO_CPUS = int(os.getenv('APP_NANO_CPUS', '1000000000'))

    # Health checks and webhooks
    HEALTH_CHECK_TIMEOUT_SECONDS = int(os.getenv('HEALTH_CHECK_TIMEOUT_SECONDS', '5'))
    HEALTH_CHECK_INTERVAL_SECONDS = int(os.getenv('HEALTH_CHECK_INTERVAL_SECONDS', '300'))
    WEBHOOK_TIMEOUT_SECONDS = int(os.getenv('WEBHOOK_TIMEOUT_SECONDS', '10'))
    WEBHOOK_MAX_WORKERS = int(os.getenv('WEBHOOK_MAX_WORKERS', '64'))
    WEBHOOK_LOG_RETENTION_DAYS = int(os.getenv('WEBHOOK_LOG_RETENTION_DAYS', '30'))
    WEBHOOK_LOG_CLEANUP_INTERVAL_HOURS = int(os.getenv('WEBHOOK_LOG_CLEANUP_INTERVAL_HOURS', '24'))

    EVENT_STREAM_RECONNECT_SECONDS = int(os.getenv('EVENT_STREAM_RECONNECT_SECONDS', '5'))

    SCHEDULER_ENABLED = os.getenv('SCHEDULER_ENABLED', 'true').lower() == 'true'
    EVENT_STREAM_ENABLED = os.getenv('EVENT_STREAM_ENABLED', 'true').lower() == 'true'
    INSTALL_DEFAULT_APPS = os.getenv('INSTALL_DEFAULT_APPS', 'true').lower() == 'true'


class DevelopmentConfig(Config):
    DEBUG = True


class ProductionConfig(Config):
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret-key-for-testing'
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    EVENT_STREAM_ENABLED = False
    INSTALL_DEFAULT_APPS = False
