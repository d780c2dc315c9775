"""Routes package."""
from .app_gateway import create_gateway_blueprint
from .apps import create_apps_blueprint
from .connections import create_connections_blueprint
from .health import create_health_blueprint

__all__ = [
    'create_apps_blueprint',
    'create_connections_blueprint',
    'create_gateway_blueprint',
    'create_health_blueprint',
]
