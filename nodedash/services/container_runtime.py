from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Union
from urllib.parse import quote

import docker
import requests

from nodedash.services.base import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)


class ContainerNotFound(NotFoundError):
    """Raised when the runtime has no container with the requested name."""


@dataclass
class ContainerSpec:
    name: str
    image: str
    environment: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    network: Optional[str] = None
    restart_policy: Dict[str, Any] = field(default_factory=lambda: {'Name': 'unless-stopped'})
    mem_limit: Optional[Union[int, str]] = None
    nano_cpus: Optional[int] = None
    healthcheck: Optional[Dict[str, Any]] = None


@dataclass
class ExecResult:
    exit_code: Optional[int]
    output: bytes


class ContainerRuntime:
    """Capability surface the control plane needs from a container runtime.

    ``inspect`` (and any call naming a missing container) raises
    ``ContainerNotFound``; every other runtime failure raises ``UpstreamError``.
    """

    def ping(self) -> bool:
        raise NotImplementedError

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def inspect(self, name: str) -> Dict[str, Any]:
        raise NotImplementedError

    def create(self, spec: ContainerSpec) -> str:
        raise NotImplementedError

    def start(self, name: str) -> None:
        raise NotImplementedError

    def stop(self, name: str, grace_seconds: int = 10) -> None:
        raise NotImplementedError

    def remove(self, name: str, force: bool = False) -> None:
        raise NotImplementedError

    def pull(self, image: str, on_progress: Optional[Callable[[Dict[str, Any]], None]] = None) -> None:
        raise NotImplementedError

    def logs(self, name: str, tail: int = 100, follow: bool = False) -> Union[bytes, Iterator[bytes]]:
        raise NotImplementedError

    def exec(self, name: str, cmd: Union[str, List[str]]) -> ExecResult:
        raise NotImplementedError


class DockerContainerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the Docker Engine API."""

    def __init__(self, base_url: str, timeout: int = 30):
        self._base_url = base_url
        self._timeout = timeout
        self._client = None
        self._client_lock = threading.Lock()

    def _get_client(self) -> docker.DockerClient:
        with self._client_lock:
            if self._client is not None:
                return self._client
            try:
                client = docker.DockerClient(base_url=self._base_url, timeout=self._timeout)
                client.ping()
            except Exception as exc:
                logger.error("Failed to connect to Docker at %s: %s", self._base_url, exc)
                raise UpstreamError(f"Cannot connect to Docker at {self._base_url}: {exc}") from exc
            logger.info("Connected to Docker at %s", self._base_url)
            self._client = client
            return client

    def clear_cache(self) -> None:
        with self._client_lock:
            self._client = None

    @contextmanager
    def _docker_call(self, action: str, name: Optional[str] = None):
        try:
            yield
        except docker.errors.NotFound as exc:
            raise ContainerNotFound(f"No such container: {name}") from exc
        except docker.errors.DockerException as exc:
            raise UpstreamError(f"Docker {action} failed for {name or 'runtime'}: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            self.clear_cache()
            raise UpstreamError(f"Docker {action} failed for {name or 'runtime'}: {exc}") from exc

    def ping(self) -> bool:
        with self._docker_call('ping'):
            return bool(self._get_client().ping())

    def list(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._docker_call('list'):
            return self._get_client().api.containers(all=True, filters=filters or None)

    def inspect(self, name: str) -> Dict[str, Any]:
        with self._docker_call('inspect', name):
            return self._get_client().api.inspect_container(name)

    def create(self, spec: ContainerSpec) -> str:
        with self._docker_call('create', spec.name):
            api = self._get_client().api
            host_config = api.create_host_config(
                network_mode=spec.network,
                restart_policy=spec.restart_policy,
                mem_limit=spec.mem_limit,
                nano_cpus=spec.nano_cpus,
            )
            created = api.create_container(
                image=spec.image,
                name=spec.name,
                environment=spec.environment,
                labels=spec.labels,
                host_config=host_config,
                healthcheck=spec.healthcheck,
            )
            return created.get('Id')

    def start(self, name: str) -> None:
        with self._docker_call('start', name):
            self._get_client().api.start(name)

    def stop(self, name: str, grace_seconds: int = 10) -> None:
        with self._docker_call('stop', name):
            self._get_client().api.stop(name, timeout=grace_seconds)

    def remove(self, name: str, force: bool = False) -> None:
        with self._docker_call('remove', name):
            self._get_client().api.remove_container(name, force=force)

    def pull(self, image: str, on_progress: Optional[Callable[[Dict[str, Any]], None]] = None) -> None:
        with self._docker_call('pull', image):
            try:
                events = self._get_client().api.pull(image, stream=True, decode=True)
            except docker.errors.NotFound as exc:
                raise UpstreamError(f"Image not found: {image}") from exc
            for event in events:
                if 'error' in event:
                    raise UpstreamError(f"Failed to pull {image}: {event['error']}")
                if on_progress is not None:
                    on_progress(event)

    def logs(self, name: str, tail: int = 100, follow: bool = False) -> Union[bytes, Iterator[bytes]]:
        """Return the raw multiplexed log stream (see ``nodedash.utils.log_demux``)."""
        with self._docker_call('logs', name):
            api = self._get_client().api
            url = f"{api.base_url}/v{api.api_version}/containers/{quote(name, safe='')}/logs"
            params = {'stdout': 1, 'stderr': 1, 'timestamps': 1, 'tail': tail, 'follow': 1 if follow else 0}
            timeout = (self._timeout, None) if follow else self._timeout
            response = api.get(url, params=params, stream=follow, timeout=timeout)
            if response.status_code == 404:
                raise ContainerNotFound(f"No such container: {name}")
            if response.status_code >= 400:
                raise UpstreamError(f"Docker logs failed for {name}: {response.status_code} {response.text[:200]}")
            if follow:
                return response.iter_content(chunk_size=None)
            return response.content

    def exec(self, name: str, cmd: Union[str, List[str]]) -> ExecResult:
        with self._docker_call('exec', name):
            api = self._get_client().api
            exec_id = api.exec_create(name, cmd, stdout=True, stderr=True)['Id']
            output = api.exec_start(exec_id)
            exit_code = api.exec_inspect(exec_id).get('ExitCode')
            return ExecResult(exit_code=exit_code, output=output or b'')
