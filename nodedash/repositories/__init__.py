"""repositories package."""
from .apps import AppRepository
from .connections import ConnectionRepository
from .node_info import NodeInfoRepository
from .settings import SettingsRepository
from .webhook_logs import WebhookLogRepository

__all__ = [
    'AppRepository',
    'ConnectionRepository',
    'NodeInfoRepository',
    'SettingsRepository',
    'WebhookLogRepository',
]
