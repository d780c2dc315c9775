from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

CONTAINER_RUNNING = 'running'
CONTAINER_STOPPED = 'stopped'
CONTAINER_ERROR = 'error'
CONTAINER_NOT_FOUND = 'not_found'
CONTAINER_STATUSES = (CONTAINER_NOT_FOUND, CONTAINER_STOPPED, CONTAINER_RUNNING, CONTAINER_ERROR)

HEALTH_HEALTHY = 'healthy'
HEALTH_UNHEALTHY = 'unhealthy'
HEALTH_UNKNOWN = 'unknown'
HEALTH_STATUSES = (HEALTH_HEALTHY, HEALTH_UNHEALTHY, HEALTH_UNKNOWN)


@dataclass
class App:
    id: int
    name: str
    slug: str
    source_type: str
    source_url: str
    container_name: Optional[str]
    internal_port: int = 3000
    version: str = 'latest'
    description: Optional[str] = None
    icon: Optional[str] = None
    container_status: str = CONTAINER_STOPPED
    health_status: str = HEALTH_UNKNOWN
    last_health_check: Optional[str] = None
    env_vars: Optional[str] = None
    webhook_events: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_path: Optional[str] = '/webhook'
    api_key: Optional[str] = None
    api_permissions: Optional[str] = None
    is_enabled: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class WebhookLog:
    id: int
    app_id: int
    event_type: str
    payload: Optional[str]
    status_code: Optional[int]
    response: Optional[str]
    success: bool
    latency_ms: int
    created_at: str


@dataclass
class Connection:
    id: int
    name: str
    url: str
    password: Optional[str] = None
    is_docker: bool = False
    is_active: bool = False
    node_id: Optional[str] = None
    chain: Optional[str] = None
    last_connected_at: Optional[str] = None
    created_at: Optional[str] = None


@dataclass
class NodeInfo:
    node_id: str
    chain: Optional[str] = None
    version: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class ContainerStatus:
    container_status: str
    health_status: str

    @property
    def running(self) -> bool:
        return self.container_status == CONTAINER_RUNNING

    def to_dict(self) -> dict:
        return {
            'containerStatus': self.container_status,
            'healthStatus': self.health_status,
            'running': self.running,
        }
