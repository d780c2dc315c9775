from __future__ import annotations

import json
import logging
import secrets
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from nodedash.models import (
    App,
    CONTAINER_ERROR,
    CONTAINER_RUNNING,
    CONTAINER_STOPPED,
    ContainerStatus,
    HEALTH_UNHEALTHY,
    HEALTH_UNKNOWN,
    WebhookLog,
)
from nodedash.repositories import AppRepository, WebhookLogRepository
from nodedash.services.app_lifecycle import AppLifecycleService, container_name_for
from nodedash.services.base import NotFoundError, ValidationError
from nodedash.services.container_runtime import ContainerNotFound
from nodedash.services.webhook_dispatcher import EVENT_PAYMENT_RECEIVED, WEBHOOK_EVENT_IDS, WebhookDispatcher
from nodedash.utils.validators import (
    generate_slug,
    sanitize_string,
    validate_choices,
    validate_env_vars,
    validate_image_reference,
    validate_port,
)

logger = logging.getLogger(__name__)

SOURCE_TYPES = ['docker_image', 'github', 'marketplace']

API_PERMISSIONS = [
    {'id': 'read:balance', 'name': 'Read Balance', 'description': 'View node balance'},
    {'id': 'read:payments', 'name': 'Read Payments', 'description': 'View payment history'},
    {'id': 'read:channels', 'name': 'Read Channels', 'description': 'View channel information'},
    {'id': 'read:node', 'name': 'Read Node', 'description': 'View node information'},
    {'id': 'write:invoices', 'name': 'Create Invoices', 'description': 'Create Lightning invoices'},
    {'id': 'write:payments', 'name': 'Send Payments', 'description': 'Send Lightning payments'},
]
API_PERMISSION_IDS = [permission['id'] for permission in API_PERMISSIONS]
DEFAULT_API_PERMISSIONS = ['read:balance', 'read:payments']

API_KEY_PREFIX = 'phxapp_'

DEFAULT_APPS = [
    {
        'name': 'Donations Page',
        'slug': 'donations',
        'description': 'Donation page to accept Lightning payments with customizable branding',
        'icon': '\U0001f49c',
        'source_type': 'docker_image',
        'source_url': 'phoenixd-donations:latest',
        'webhook_events': [EVENT_PAYMENT_RECEIVED],
        'api_permissions': ['write:invoices', 'read:node'],
        'env_vars': {
            'DONATIONS_TITLE': 'Support Our Project',
            'DONATIONS_SUBTITLE': 'Your contribution helps us keep building amazing things',
            'DONATIONS_THEME': 'dark',
            'DONATIONS_AMOUNTS': '1000,5000,10000,50000',
        },
    },
]


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def generate_webhook_secret() -> str:
    return secrets.token_hex(32)


def _decode_json_field(value: Any) -> Any:
    if value is None or value == '':
        return None
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError as exc:
            raise ValidationError('Invalid JSON value') from exc
    return value


class AppService:
    """Administrative operations on installed apps."""

    def __init__(
        self,
        app_repo: AppRepository,
        log_repo: WebhookLogRepository,
        lifecycle: AppLifecycleService,
        dispatcher: WebhookDispatcher,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._app_repo = app_repo
        self._log_repo = log_repo
        self._lifecycle = lifecycle
        self._dispatcher = dispatcher
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_apps(self) -> List[App]:
        return self._app_repo.list_all()

    def list_app_containers(self) -> List[dict]:
        return self._lifecycle.list_app_containers()

    def get_app(self, app_id: int) -> App:
        app = self._app_repo.get_by_id(app_id)
        if not app:
            raise NotFoundError('App not found')
        return app

    # Validation

    def _validated_events(self, value: Any) -> Optional[str]:
        events = _decode_json_field(value)
        if events is None:
            return None
        is_valid, error = validate_choices(events, WEBHOOK_EVENT_IDS, 'Webhook events')
        if not is_valid:
            raise ValidationError(error)
        return json.dumps(events)

    def _validated_permissions(self, value: Any) -> Optional[str]:
        permissions = _decode_json_field(value)
        if permissions is None:
            return None
        is_valid, error = validate_choices(permissions, API_PERMISSION_IDS, 'API permissions')
        if not is_valid:
            raise ValidationError(error)
        return json.dumps(permissions)

    def _validated_env_vars(self, value: Any) -> Optional[str]:
        env_vars = _decode_json_field(value)
        if env_vars is None:
            return None
        is_valid, error = validate_env_vars(env_vars)
        if not is_valid:
            raise ValidationError(error)
        return json.dumps(env_vars)

    @staticmethod
    def _validated_port(value: Any) -> int:
        is_valid, error = validate_port(value)
        if not is_valid:
            raise ValidationError(error)
        return int(value)

    # Install / update / uninstall

    def install_app(self, data: Dict[str, Any]) -> App:
        name = sanitize_string(data.get('name') or '')
        if not name:
            raise ValidationError('Name is required')
        source_type = data.get('sourceType')
        if source_type not in SOURCE_TYPES:
            raise ValidationError(f"Invalid source type. Valid: {', '.join(SOURCE_TYPES)}")
        source_url = (data.get('sourceUrl') or '').strip()
        if not source_url:
            raise ValidationError('Source URL is required')
        if source_type != 'github':
            is_valid, error = validate_image_reference(source_url)
            if not is_valid:
                raise ValidationError(error)

        webhook_events = self._validated_events(data.get('webhookEvents'))
        permissions = data.get('apiPermissions')
        api_permissions = (
            self._validated_permissions(permissions) if permissions else json.dumps(DEFAULT_API_PERMISSIONS)
        )
        env_vars = self._validated_env_vars(data.get('envVars'))
        internal_port = self._validated_port(data.get('internalPort') or 3000)
        version = sanitize_string(data.get('version') or '', 128) or 'latest'

        slug = generate_slug(name)
        if not slug:
            raise ValidationError('Name must contain letters or numbers')
        if self._app_repo.get_by_slug(slug):
            slug = f"{slug}-{int(time.time() * 1000)}"

        app_id = self._app_repo.create(
            name=name,
            slug=slug,
            description=sanitize_string(data.get('description') or '', 1000) or None,
            icon=data.get('icon') or None,
            source_type=source_type,
            source_url=source_url,
            version=version,
            container_name=container_name_for(slug),
            internal_port=internal_port,
            env_vars=env_vars,
            webhook_events=webhook_events,
            webhook_secret=generate_webhook_secret(),
            webhook_path=data.get('webhookPath') or '/webhook',
            api_key=generate_api_key(),
            api_permissions=api_permissions,
        )
        logger.info("Installed app %s (id %s)", slug, app_id)

        try:
            self._lifecycle.pull_image(source_type, source_url, version)
        except Exception as e:
            logger.error("Error pulling image for %s: %s", slug, e)
            self._app_repo.set_status(app_id, CONTAINER_ERROR, HEALTH_UNHEALTHY)

        return self._app_repo.get_by_id(app_id)

    def update_app(self, app_id: int, data: Dict[str, Any]) -> App:
        existing = self.get_app(app_id)
        fields: Dict[str, Any] = {}

        if 'name' in data:
            name = sanitize_string(data['name'] or '')
            if not name:
                raise ValidationError('Name is required')
            fields['name'] = name
        if 'description' in data:
            fields['description'] = sanitize_string(data['description'] or '', 1000) or None
        if 'icon' in data:
            fields['icon'] = data['icon'] or None
        if 'internalPort' in data:
            fields['internal_port'] = self._validated_port(data['internalPort'])
        if 'envVars' in data:
            fields['env_vars'] = self._validated_env_vars(data['envVars'])
        if 'webhookEvents' in data:
            fields['webhook_events'] = self._validated_events(data['webhookEvents'])
        if 'webhookPath' in data:
            fields['webhook_path'] = data['webhookPath'] or '/webhook'
        if 'apiPermissions' in data:
            fields['api_permissions'] = self._validated_permissions(data['apiPermissions'])
        if 'isEnabled' in data:
            fields['is_enabled'] = bool(data['isEnabled'])

        self._app_repo.update_fields(app_id, fields)
        app = self._app_repo.get_by_id(app_id)

        if existing.container_status == CONTAINER_RUNNING and ('env_vars' in fields or 'internal_port' in fields):
            try:
                self._lifecycle.restart_app(app)
            except Exception as e:
                logger.error("Error restarting %s after config change: %s", app.slug, e)

        return app

    def uninstall_app(self, app_id: int) -> None:
        app = self.get_app(app_id)
        if app.container_name:
            self._lifecycle.remove_container(app.container_name)
        self._app_repo.delete(app_id)
        logger.info("Uninstalled app %s", app.slug)

    # Lifecycle

    def start_app(self, app_id: int) -> App:
        app = self.get_app(app_id)
        if not app.is_enabled:
            raise ValidationError('App is disabled')
        if app.container_status == CONTAINER_RUNNING:
            return app
        try:
            self._lifecycle.start_app(app)
        except Exception:
            self._app_repo.set_status(app_id, CONTAINER_ERROR, HEALTH_UNHEALTHY)
            raise
        self._app_repo.set_status(app_id, CONTAINER_RUNNING, HEALTH_UNKNOWN)
        return self._app_repo.get_by_id(app_id)

    def stop_app(self, app_id: int) -> App:
        app = self.get_app(app_id)
        if app.container_status == CONTAINER_STOPPED:
            return app
        self._lifecycle.stop_app(app)
        self._app_repo.set_status(app_id, CONTAINER_STOPPED)
        return self._app_repo.get_by_id(app_id)

    def restart_app(self, app_id: int) -> App:
        app = self.get_app(app_id)
        if not app.is_enabled:
            raise ValidationError('App is disabled')
        try:
            self._lifecycle.restart_app(app)
        except Exception:
            self._app_repo.set_status(app_id, CONTAINER_ERROR, HEALTH_UNHEALTHY)
            raise
        self._app_repo.set_status(app_id, CONTAINER_RUNNING, HEALTH_UNKNOWN)
        return self._app_repo.get_by_id(app_id)

    def refresh_status(self, app_id: int) -> ContainerStatus:
        app = self.get_app(app_id)
        if not app.container_name:
            return ContainerStatus(CONTAINER_STOPPED, HEALTH_UNKNOWN)
        status = self._lifecycle.get_container_status(app.container_name)
        if status.container_status != app.container_status or status.health_status != app.health_status:
            self._app_repo.set_status(app_id, status.container_status, status.health_status, self._clock())
        return status

    # Logs and webhooks

    def get_logs(self, app_id: int, tail: int = 100) -> str:
        app = self.get_app(app_id)
        if not app.container_name:
            raise ValidationError('App has no container')
        try:
            return self._lifecycle.get_logs(app.container_name, tail=tail)
        except ContainerNotFound:
            return 'Container not found'

    def list_webhook_logs(self, app_id: int, limit: int = 50, offset: int = 0) -> List[WebhookLog]:
        self.get_app(app_id)
        return self._log_repo.list_for_app(app_id, limit=limit, offset=offset)

    def get_webhook_stats(self, app_id: int) -> Dict[str, Any]:
        self.get_app(app_id)
        return self._dispatcher.get_webhook_stats(app_id)

    def test_webhook(self, app_id: int) -> Dict[str, Any]:
        return self._dispatcher.test_webhook(app_id)

    # Credentials

    def regenerate_api_key(self, app_id: int) -> str:
        api_key = generate_api_key()
        self._rotate_credential(app_id, 'api_key', api_key)
        return api_key

    def regenerate_webhook_secret(self, app_id: int) -> str:
        secret = generate_webhook_secret()
        self._rotate_credential(app_id, 'webhook_secret', secret)
        return secret

    def _rotate_credential(self, app_id: int, field: str, value: str) -> None:
        self.get_app(app_id)
        self._app_repo.update_fields(app_id, {field: value})
        app = self._app_repo.get_by_id(app_id)
        logger.info("Rotated %s for %s", field, app.slug)
        if app.container_status == CONTAINER_RUNNING:
            try:
                self._lifecycle.restart_app(app)
            except Exception as e:
                logger.error("Error restarting %s after credential rotation: %s", app.slug, e)

    # Defaults

    def ensure_default_apps(self) -> List[str]:
        """Install bundled apps that are missing; return the slugs installed."""
        installed = []
        for config in DEFAULT_APPS:
            try:
                if self._app_repo.get_by_slug(config['slug']):
                    logger.info("Default app %s already installed", config['name'])
                    continue
                app_id = self._app_repo.create(
                    name=config['name'],
                    slug=config['slug'],
                    description=config['description'],
                    icon=config['icon'],
                    source_type=config['source_type'],
                    source_url=config['source_url'],
                    version='latest',
                    container_name=container_name_for(config['slug']),
                    internal_port=3000,
                    env_vars=json.dumps(config['env_vars']),
                    webhook_events=json.dumps(config['webhook_events']),
                    webhook_secret=generate_webhook_secret(),
                    webhook_path='/webhook',
                    api_key=generate_api_key(),
                    api_permissions=json.dumps(config['api_permissions']),
                )
                installed.append(config['slug'])
                logger.info("Default app %s installed (id %s)", config['name'], app_id)
            except Exception as e:
                logger.error("Failed to install default app %s: %s", config['name'], e)
        return installed
