from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from nodedash.models import Connection
from nodedash.repositories import ConnectionRepository, NodeInfoRepository, SettingsRepository
from nodedash.services.base import NotFoundError, UpstreamError, ValidationError
from nodedash.services.node_client import NodeClientConfig, PhoenixdClient
from nodedash.utils.validators import sanitize_string, validate_url

logger = logging.getLogger(__name__)

DOCKER_CONNECTION_NAME = 'Docker (Local)'
MIGRATED_CONNECTION_NAME = 'External Phoenixd (Migrated)'


class ConnectionManager:
    """Own the node backend connections and the single active one.

    Every mutation runs under one lock, so activations never interleave and
    exactly one connection is active between calls.
    """

    def __init__(
        self,
        connection_repo: ConnectionRepository,
        node_info_repo: NodeInfoRepository,
        settings_repo: SettingsRepository,
        node_client: PhoenixdClient,
        node_config: NodeClientConfig,
        event_stream=None,
        *,
        default_url: str,
        default_password: str = '',
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._connection_repo = connection_repo
        self._node_info_repo = node_info_repo
        self._settings_repo = settings_repo
        self._node_client = node_client
        self._node_config = node_config
        self._event_stream = event_stream
        self._default_url = default_url
        self._default_password = default_password
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()

    # Bootstrap

    def bootstrap(self) -> Connection:
        """Ensure the local connection exists, migrate legacy settings and push the live config."""
        with self._lock:
            if self._connection_repo.get_docker() is None:
                is_active = self._connection_repo.count() == 0
                self._connection_repo.create(
                    DOCKER_CONNECTION_NAME,
                    self._default_url,
                    self._default_password,
                    is_docker=True,
                    is_active=is_active,
                )
                logger.info("Created default Docker connection for %s", self._default_url)

            self._migrate_legacy_settings_locked()
            active = self._normalize_active_locked()
            self._node_config.update(active.url, active.password, is_external=not active.is_docker)
            logger.info("Active node connection: %s (%s)", active.name, active.url)
            return active

    def _migrate_legacy_settings_locked(self) -> None:
        if self._settings_repo.get('use_external_phoenixd') != 'true':
            return
        url = self._settings_repo.get('phoenixd_url')
        if not url:
            return
        if self._connection_repo.find_by_url(url) is not None:
            return
        password = self._settings_repo.get('phoenixd_password')
        self._connection_repo.create_active(MIGRATED_CONNECTION_NAME, url, password)
        logger.info("Migrated legacy external connection %s", url)

    def _normalize_active_locked(self) -> Connection:
        active = self._connection_repo.list_active()
        if len(active) == 1:
            return active[0]
        if active:
            target = active[0]
            logger.warning("Found %s active connections; keeping %s", len(active), target.name)
        else:
            target = self._connection_repo.get_docker()
            logger.info("No active connection; activating %s", target.name)
        self._connection_repo.activate_exclusive(target.id)
        return self._connection_repo.get_by_id(target.id)

    # Queries

    def list_connections(self) -> List[Connection]:
        return self._connection_repo.list_all()

    def get_connection(self, connection_id: int) -> Connection:
        connection = self._connection_repo.get_by_id(connection_id)
        if not connection:
            raise NotFoundError('Connection not found')
        return connection

    def get_active(self) -> Optional[Connection]:
        active = self._connection_repo.list_active()
        return active[0] if active else None

    def get_active_status(self) -> Dict[str, Any]:
        connection = self.get_active()
        status = {'connected': False, 'node_id': None, 'error': None}
        try:
            info = self._node_client.get_info()
            status['connected'] = True
            status['node_id'] = info['node_id']
            self._cache_node_info(info, self._clock())
        except UpstreamError as e:
            status['error'] = e.message
        return {'connection': connection, 'status': status}

    # Probes

    def test_connection(self, url: str, password: Optional[str]) -> Dict[str, Optional[str]]:
        is_valid, error = validate_url(url)
        if not is_valid:
            raise ValidationError(error)
        return self._node_client.test_connection(url, password)

    def test_saved_connection(self, connection_id: int) -> Dict[str, Optional[str]]:
        connection = self.get_connection(connection_id)
        info = self._node_client.test_connection(connection.url, connection.password)
        self._connection_repo.update_probe(connection.id, info['node_id'], info.get('chain'), self._clock())
        return info

    def _probe_or_reject(self, url: str, password: Optional[str]) -> Dict[str, Optional[str]]:
        try:
            return self._node_client.test_connection(url, password)
        except UpstreamError as e:
            raise ValidationError(e.message) from e

    def _cache_node_info(self, info: Dict[str, Optional[str]], when: datetime) -> None:
        try:
            self._node_info_repo.upsert(info['node_id'], info.get('chain'), info.get('version'), when)
        except Exception as e:
            logger.warning("Failed to cache node info: %s", e)

    # Mutations

    def create_connection(self, name: str, url: str, password: Optional[str] = None) -> Connection:
        name = sanitize_string(name)
        if not name:
            raise ValidationError('Name is required')
        if not url:
            raise ValidationError('URL is required')
        is_valid, error = validate_url(url)
        if not is_valid:
            raise ValidationError(error)

        with self._lock:
            info = self._probe_or_reject(url, password)
            connection_id = self._connection_repo.create(
                name,
                url,
                password,
                node_id=info['node_id'],
                chain=info.get('chain'),
                last_connected_at=self._clock(),
            )
            logger.info("Created connection %s (%s)", name, url)
            return self._connection_repo.get_by_id(connection_id)

    def update_connection(
        self,
        connection_id: int,
        name: Optional[str] = None,
        url: Optional[str] = None,
        password: Optional[str] = None,
    ) -> Connection:
        with self._lock:
            connection = self.get_connection(connection_id)
            url_changed = url is not None and url != connection.url
            password_changed = password is not None and password != (connection.password or '')

            if connection.is_docker and (url_changed or password_changed):
                raise ValidationError('Cannot modify Docker connection URL or password')

            new_name = sanitize_string(name) if name is not None else connection.name
            if not new_name:
                raise ValidationError('Name is required')
            new_url = url if url_changed else connection.url
            new_password = password if password_changed else connection.password

            if url_changed:
                is_valid, error = validate_url(new_url)
                if not is_valid:
                    raise ValidationError(error)

            info = None
            if url_changed or password_changed:
                info = self._probe_or_reject(new_url, new_password)

            self._connection_repo.update(connection.id, new_name, new_url, new_password)
            if info is not None:
                self._connection_repo.update_probe(connection.id, info['node_id'], info.get('chain'), self._clock())

            if connection.is_active and info is not None:
                self._node_config.update(new_url, new_password, is_external=not connection.is_docker)
                self._reconnect_event_stream()

            return self._connection_repo.get_by_id(connection.id)

    def activate_connection(self, connection_id: int) -> Connection:
        """Probe, flip, reconfigure and reconnect, in that order."""
        with self._lock:
            connection = self.get_connection(connection_id)
            try:
                info = self._node_client.test_connection(connection.url, connection.password)
            except UpstreamError as e:
                logger.warning("Activation of %s aborted: %s", connection.name, e.message)
                raise ValidationError(f"Cannot activate: {e.message}") from e

            now = self._clock()
            self._connection_repo.update_probe(connection.id, info['node_id'], info.get('chain'), now)
            self._cache_node_info(info, now)

            if not self._connection_repo.activate_exclusive(connection.id):
                raise NotFoundError('Connection not found')

            self._node_config.update(connection.url, connection.password, is_external=not connection.is_docker)
            self._reconnect_event_stream()
            logger.info("Switched node connection to %s", connection.name)
            return self._connection_repo.get_by_id(connection.id)

    def delete_connection(self, connection_id: int) -> None:
        with self._lock:
            connection = self.get_connection(connection_id)
            if connection.is_docker:
                raise ValidationError('Cannot delete the Docker connection')
            if connection.is_active:
                raise ValidationError('Cannot delete the active connection. Switch to another connection first.')
            self._connection_repo.delete(connection.id)
            logger.info("Deleted connection %s", connection.name)

    def _reconnect_event_stream(self) -> None:
        if self._event_stream is None:
            return
        try:
            self._event_stream.reconnect()
        except Exception as e:
            logger.error("Failed to reconnect event stream: %s", e)
