from __future__ import annotations

import json
from typing import Any, Dict, Optional

from nodedash.models import App, Connection, WebhookLog


def _json_or_none(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def mask_api_key(api_key: Optional[str]) -> Optional[str]:
    return f"{api_key[:12]}..." if api_key else None


def app_to_dict(app: App, reveal_credentials: bool = False) -> Dict[str, Any]:
    return {
        'id': app.id,
        'name': app.name,
        'slug': app.slug,
        'description': app.description,
        'icon': app.icon,
        'sourceType': app.source_type,
        'sourceUrl': app.source_url,
        'version': app.version,
        'containerName': app.container_name,
        'containerStatus': app.container_status,
        'healthStatus': app.health_status,
        'lastHealthCheck': app.last_health_check,
        'internalPort': app.internal_port,
        'envVars': _json_or_none(app.env_vars),
        'webhookEvents': _json_or_none(app.webhook_events),
        'webhookPath': app.webhook_path,
        'webhookSecret': app.webhook_secret if reveal_credentials else ('***' if app.webhook_secret else None),
        'apiKey': app.api_key if reveal_credentials else mask_api_key(app.api_key),
        'apiPermissions': _json_or_none(app.api_permissions),
        'isEnabled': app.is_enabled,
        'createdAt': app.created_at,
        'updatedAt': app.updated_at,
    }


def webhook_log_to_dict(log: WebhookLog) -> Dict[str, Any]:
    return {
        'id': log.id,
        'appId': log.app_id,
        'eventType': log.event_type,
        'payload': log.payload,
        'statusCode': log.status_code,
        'response': log.response,
        'success': log.success,
        'latencyMs': log.latency_ms,
        'createdAt': log.created_at,
    }


def connection_to_dict(connection: Optional[Connection]) -> Optional[Dict[str, Any]]:
    if connection is None:
        return None
    return {
        'id': connection.id,
        'name': connection.name,
        'url': connection.url,
        'hasPassword': bool(connection.password),
        'isDocker': connection.is_docker,
        'isActive': connection.is_active,
        'nodeId': connection.node_id,
        'chain': connection.chain,
        'lastConnectedAt': connection.last_connected_at,
        'createdAt': connection.created_at,
    }
