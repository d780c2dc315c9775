from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import requests

from nodedash.models import (
    App,
    CONTAINER_ERROR,
    CONTAINER_NOT_FOUND,
    CONTAINER_RUNNING,
    CONTAINER_STOPPED,
    ContainerStatus,
    HEALTH_HEALTHY,
    HEALTH_UNHEALTHY,
    HEALTH_UNKNOWN,
)
from nodedash.repositories import AppRepository, NodeInfoRepository
from nodedash.services.base import NotSupportedError, ValidationError
from nodedash.services.container_runtime import ContainerNotFound, ContainerRuntime, ContainerSpec
from nodedash.services.node_client import NodeClientConfig
from nodedash.utils.log_demux import demultiplex

logger = logging.getLogger(__name__)

APP_LABEL = 'nodedash-app'
CONTAINER_NAME_PREFIX = 'nodedash-app-'

PULLABLE_SOURCE_TYPES = ('docker_image', 'marketplace')

_NANOSECONDS = 1_000_000_000


def container_name_for(slug: str) -> str:
    return f"{CONTAINER_NAME_PREFIX}{slug}"


def resolve_image(source_url: str, version: Optional[str]) -> str:
    """Use ``source_url`` verbatim when it already carries a tag."""
    if ':' in source_url:
        return source_url
    return f"{source_url}:{version or 'latest'}"


class ContainerLocks:
    """Name-keyed lock registry serializing lifecycle calls per container."""

    def __init__(self):
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def for_name(self, name: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.RLock()
                self._locks[name] = lock
            return lock


class AppLifecycleService:
    """Reconcile app records with their containers and probe app health."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        app_repo: AppRepository,
        node_info_repo: NodeInfoRepository,
        node_config: NodeClientConfig,
        *,
        dashboard_url: str,
        network: Optional[str],
        memory_limit: Optional[str] = '512m',
        nano_cpus: Optional[int] = _NANOSECONDS,
        stop_grace_seconds: int = 10,
        health_timeout: int = 5,
        max_workers: int = 64,
        clock: Optional[Callable[[], datetime]] = None,
        locks: Optional[ContainerLocks] = None,
    ):
        self._runtime = runtime
        self._app_repo = app_repo
        self._node_info_repo = node_info_repo
        self._node_config = node_config
        self._dashboard_url = dashboard_url
        self._network = network
        self._memory_limit = memory_limit
        self._nano_cpus = nano_cpus
        self._stop_grace_seconds = stop_grace_seconds
        self._health_timeout = health_timeout
        self._max_workers = max_workers
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._locks = locks or ContainerLocks()
        self._sweep_lock = threading.Lock()

    # Images

    def pull_image(self, source_type: str, source_url: str, version: Optional[str] = 'latest', on_progress=None) -> str:
        if source_type == 'github':
            raise NotSupportedError('Building apps from GitHub source is not supported yet')
        if source_type not in PULLABLE_SOURCE_TYPES:
            raise ValidationError(f"Unknown source type: {source_type}")
        image = resolve_image(source_url, version)
        logger.info("Pulling image %s", image)
        self._runtime.pull(image, on_progress=on_progress)
        logger.info("Pulled image %s", image)
        return image

    # Container lifecycle

    def _require_container_name(self, app: App) -> str:
        if not app.container_name:
            raise ValueError(f"App {app.slug} has no container name")
        return app.container_name

    def _inspect_or_none(self, name: str) -> Optional[dict]:
        try:
            return self._runtime.inspect(name)
        except ContainerNotFound:
            return None

    @staticmethod
    def _is_running(info: dict) -> bool:
        return bool((info.get('State') or {}).get('Running'))

    def build_container_spec(self, app: App) -> ContainerSpec:
        name = self._require_container_name(app)
        port = app.internal_port
        return ContainerSpec(
            name=name,
            image=resolve_image(app.source_url, app.version),
            environment=self.get_app_env_vars(app),
            labels={
                APP_LABEL: 'true',
                f'{APP_LABEL}.id': str(app.id),
                f'{APP_LABEL}.slug': app.slug,
            },
            network=self._network,
            restart_policy={'Name': 'unless-stopped'},
            mem_limit=self._memory_limit,
            nano_cpus=self._nano_cpus,
            healthcheck={
                'test': ['CMD-SHELL', f'curl -f http://localhost:{port}/health || exit 1'],
                'interval': 30 * _NANOSECONDS,
                'timeout': 10 * _NANOSECONDS,
                'retries': 3,
                'start_period': 30 * _NANOSECONDS,
            },
        )

    def _create_and_start(self, app: App) -> None:
        spec = self.build_container_spec(app)
        logger.info("Creating container %s from %s", spec.name, spec.image)
        self._runtime.create(spec)
        self._runtime.start(spec.name)
        logger.info("Started container %s", spec.name)

    def start_app(self, app: App) -> str:
        """Bring the app's container to running; return what was done.

        ``'noop'`` when already running, ``'started'`` for an existing stopped
        container and ``'created'`` when the container had to be built.
        """
        name = self._require_container_name(app)
        with self._locks.for_name(name):
            info = self._inspect_or_none(name)
            if info is not None and self._is_running(info):
                logger.info("Container %s is already running", name)
                return 'noop'
            if info is not None:
                self._runtime.start(name)
                logger.info("Started existing container %s", name)
                return 'started'
            self._create_and_start(app)
            return 'created'

    def stop_app(self, app: App) -> bool:
        """Stop the app's container; absent or stopped containers are left alone."""
        name = self._require_container_name(app)
        with self._locks.for_name(name):
            info = self._inspect_or_none(name)
            if info is None or not self._is_running(info):
                logger.info("Container %s is not running", name)
                return False
            self._runtime.stop(name, grace_seconds=self._stop_grace_seconds)
            logger.info("Stopped container %s", name)
            return True

    def remove_container(self, name: str) -> bool:
        with self._locks.for_name(name):
            info = self._inspect_or_none(name)
            if info is None:
                logger.info("Container %s already absent", name)
                return False
            try:
                if self._is_running(info):
                    self._runtime.stop(name, grace_seconds=self._stop_grace_seconds)
                self._runtime.remove(name, force=True)
            except ContainerNotFound:
                logger.info("Container %s disappeared during removal", name)
                return False
            logger.info("Removed container %s", name)
            return True

    def restart_app(self, app: App) -> None:
        """Recreate the container so env and image changes take effect."""
        name = self._require_container_name(app)
        with self._locks.for_name(name):
            self.remove_container(name)
            self._create_and_start(app)

    # Environment

    def get_app_env_vars(self, app: App) -> List[str]:
        """Build the container environment.

        Infra variables come first and user variables last; the runtime keeps
        the last occurrence of a key, so a user entry overrides an infra one.
        """
        env = [
            f'PHOENIXD_DASHBOARD_URL={self._dashboard_url}',
            f'PHOENIXD_APP_API_KEY={app.api_key or ""}',
            f'PHOENIXD_WEBHOOK_SECRET={app.webhook_secret or ""}',
        ]

        try:
            node_info = self._node_info_repo.get()
            if node_info:
                env.append(f'PHOENIXD_NODE_ID={node_info.node_id}')
                env.append(f'PHOENIXD_CHAIN={node_info.chain or ""}')
            else:
                logger.info("No cached node info yet; starting %s without node identity", app.slug)
        except Exception as e:
            logger.warning("Could not read cached node info for %s: %s", app.slug, e)

        is_external = self._node_config.snapshot().is_external
        env.append(f'PHOENIXD_IS_EXTERNAL={"true" if is_external else "false"}')

        if app.env_vars:
            try:
                user_vars = json.loads(app.env_vars)
                if not isinstance(user_vars, dict):
                    raise ValueError('env vars must be a JSON object')
                for key, value in user_vars.items():
                    env.append(f'{key}={value}')
            except ValueError as e:
                logger.warning("Ignoring malformed env vars for %s: %s", app.slug, e)

        return env

    def get_app_internal_url(self, app: App) -> str:
        name = self._require_container_name(app)
        return f"http://{name}:{app.internal_port}"

    # Status and health

    def get_container_status(self, name: str) -> ContainerStatus:
        try:
            info = self._runtime.inspect(name)
        except ContainerNotFound:
            return ContainerStatus(CONTAINER_NOT_FOUND, HEALTH_UNKNOWN)
        except Exception as e:
            logger.warning("Failed to inspect container %s: %s", name, e)
            return ContainerStatus(CONTAINER_ERROR, HEALTH_UNHEALTHY)

        state = info.get('State') or {}
        container_status = CONTAINER_RUNNING if state.get('Running') else CONTAINER_STOPPED
        health = state.get('Health')
        if not health or not health.get('Status'):
            health_status = HEALTH_UNKNOWN
        elif health.get('Status') == 'healthy':
            health_status = HEALTH_HEALTHY
        else:
            health_status = HEALTH_UNHEALTHY
        return ContainerStatus(container_status, health_status)

    def health_check(self, app: App) -> str:
        if app.container_status != CONTAINER_RUNNING or not app.container_name:
            return HEALTH_UNHEALTHY
        try:
            response = requests.get(
                f"{self.get_app_internal_url(app)}/health",
                timeout=self._health_timeout,
                stream=True,
            )
            # Only the status line matters; the body is never read.
            response.close()
            return HEALTH_HEALTHY if response.ok else HEALTH_UNHEALTHY
        except Exception as e:
            logger.debug("Health check failed for %s: %s", app.slug, e)
            return HEALTH_UNHEALTHY

    def update_all_health_statuses(self) -> Optional[Dict[int, str]]:
        """Probe every running app concurrently and persist each result.

        Returns ``None`` when a previous sweep is still in progress.
        """
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Health sweep already running; skipping")
            return None
        try:
            apps = self._app_repo.list_running()
            if not apps:
                return {}
            results: Dict[int, str] = {}
            with ThreadPoolExecutor(max_workers=max(1, min(self._max_workers, len(apps)))) as executor:
                futures = {executor.submit(self._check_and_record, app): app for app in apps}
                for future in as_completed(futures):
                    app = futures[future]
                    try:
                        results[app.id] = future.result()
                    except Exception as e:
                        logger.error("Health check for %s failed: %s", app.slug, e)
            logger.info("Health sweep checked %s apps", len(results))
            return results
        finally:
            self._sweep_lock.release()

    def _check_and_record(self, app: App) -> str:
        status = self.health_check(app)
        self._app_repo.set_health(app.id, status, self._clock())
        return status

    # Logs and listing

    def get_logs(self, name: str, tail: int = 100) -> str:
        return demultiplex(self._runtime.logs(name, tail=tail, follow=False))

    def list_app_containers(self) -> List[dict]:
        containers = self._runtime.list(filters={'label': f'{APP_LABEL}=true'})
        result = []
        for container in containers:
            names = container.get('Names') or []
            labels = container.get('Labels') or {}
            result.append({
                'id': (container.get('Id') or '')[:12],
                'name': names[0].lstrip('/') if names else '',
                'status': container.get('State') or container.get('Status'),
                'app_id': labels.get(f'{APP_LABEL}.id', ''),
            })
        return result
