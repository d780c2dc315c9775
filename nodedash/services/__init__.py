"""services package."""
from .app_gateway import AppGateway
from .app_lifecycle import AppLifecycleService, ContainerLocks
from .app_service import AppService
from .base import NotFoundError, NotSupportedError, ServiceError, UpstreamError, ValidationError, WebhookDeliveryError
from .connection_manager import ConnectionManager
from .container_runtime import ContainerNotFound, ContainerRuntime, ContainerSpec, DockerContainerRuntime
from .event_stream import EventStreamSubscriber
from .node_client import NodeClientConfig, NodeConfig, PhoenixdClient
from .webhook_dispatcher import WebhookDispatcher

__all__ = [
    'AppGateway',
    'AppLifecycleService',
    'AppService',
    'ConnectionManager',
    'ContainerLocks',
    'ContainerNotFound',
    'ContainerRuntime',
    'ContainerSpec',
    'DockerContainerRuntime',
    'EventStreamSubscriber',
    'NodeClientConfig',
    'NodeConfig',
    'NotFoundError',
    'NotSupportedError',
    'PhoenixdClient',
    'ServiceError',
    'UpstreamError',
    'ValidationError',
    'WebhookDeliveryError',
    'WebhookDispatcher',
]
