from __future__ import annotations

import hmac
import json
import logging
from typing import List, Optional

from nodedash.models import App
from nodedash.repositories import AppRepository
from nodedash.services.app_service import API_KEY_PREFIX
from nodedash.services.base import AuthenticationError, PermissionDeniedError

logger = logging.getLogger(__name__)


def parse_permissions(raw: Optional[str]) -> List[str]:
    """Decode an app's granted scopes; malformed values grant nothing."""
    if not raw:
        return []
    try:
        permissions = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(permissions, list):
        return []
    return [permission for permission in permissions if isinstance(permission, str)]


class AppGateway:
    """Authenticate companion apps by API key and check their scopes."""

    def __init__(self, app_repo: AppRepository):
        self._app_repo = app_repo

    def authenticate(self, api_key: Optional[str]) -> App:
        if not api_key:
            raise AuthenticationError('Missing or invalid Authorization header')
        if not api_key.startswith(API_KEY_PREFIX):
            raise AuthenticationError('Invalid API key')

        app = self._app_repo.get_by_api_key(api_key)
        if not app or not hmac.compare_digest(app.api_key or '', api_key):
            raise AuthenticationError('Invalid API key')
        if not app.is_enabled:
            logger.info("Rejected gateway request from disabled app %s", app.slug)
            raise PermissionDeniedError('App is disabled')
        return app

    def permissions_for(self, app: App) -> List[str]:
        return parse_permissions(app.api_permissions)

    def require_permission(self, app: App, permission: str) -> None:
        if permission not in self.permissions_for(app):
            logger.info("App %s lacks permission %s", app.slug, permission)
            raise PermissionDeniedError(f"Missing required permission: {permission}")
