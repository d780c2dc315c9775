from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from nodedash.models import App, CONTAINER_RUNNING
from nodedash.repositories.base import BaseRepository, format_timestamp

_COLUMNS = (
    'id, name, slug, description, icon, source_type, source_url, version, container_name, '
    'container_status, health_status, last_health_check, internal_port, env_vars, webhook_events, '
    'webhook_secret, webhook_path, api_key, api_permissions, is_enabled, created_at, updated_at'
)

_UPDATABLE = {
    'name', 'description', 'icon', 'version', 'internal_port', 'env_vars', 'webhook_events',
    'webhook_path', 'api_permissions', 'is_enabled', 'api_key', 'webhook_secret',
}


def _row_to_app(row) -> App:
    return App(
        id=row['id'],
        name=row['name'],
        slug=row['slug'],
        description=row['description'],
        icon=row['icon'],
        source_type=row['source_type'],
        source_url=row['source_url'],
        version=row['version'],
        container_name=row['container_name'],
        container_status=row['container_status'],
        health_status=row['health_status'],
        last_health_check=row['last_health_check'],
        internal_port=row['internal_port'],
        env_vars=row['env_vars'],
        webhook_events=row['webhook_events'],
        webhook_secret=row['webhook_secret'],
        webhook_path=row['webhook_path'],
        api_key=row['api_key'],
        api_permissions=row['api_permissions'],
        is_enabled=bool(row['is_enabled']),
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


class AppRepository(BaseRepository):
    """Repository for installed apps."""

    def get_by_id(self, app_id: int) -> Optional[App]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM apps WHERE id = ?', (app_id,))
            row = cursor.fetchone()
            return _row_to_app(row) if row else None
        finally:
            conn.close()

    def get_by_slug(self, slug: str) -> Optional[App]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM apps WHERE slug = ?', (slug,))
            row = cursor.fetchone()
            return _row_to_app(row) if row else None
        finally:
            conn.close()

    def get_by_api_key(self, api_key: str) -> Optional[App]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM apps WHERE api_key = ?', (api_key,))
            row = cursor.fetchone()
            return _row_to_app(row) if row else None
        finally:
            conn.close()

    def list_all(self) -> List[App]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM apps ORDER BY created_at DESC, id DESC')
            return [_row_to_app(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_running(self) -> List[App]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f'SELECT {_COLUMNS} FROM apps WHERE container_status = ? ORDER BY id',
                (CONTAINER_RUNNING,),
            )
            return [_row_to_app(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_enabled_running(self) -> List[App]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f'SELECT {_COLUMNS} FROM apps WHERE is_enabled = 1 AND container_status = ? ORDER BY id',
                (CONTAINER_RUNNING,),
            )
            return [_row_to_app(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def create(
        self,
        *,
        name: str,
        slug: str,
        source_type: str,
        source_url: str,
        version: str,
        container_name: str,
        internal_port: int,
        webhook_secret: str,
        webhook_path: str,
        api_key: str,
        api_permissions: str,
        description: Optional[str] = None,
        icon: Optional[str] = None,
        env_vars: Optional[str] = None,
        webhook_events: Optional[str] = None,
        is_enabled: bool = True,
        container_status: str = 'stopped',
        health_status: str = 'unknown',
    ) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                '''
                INSERT INTO apps (
                    name, slug, description, icon, source_type, source_url, version, container_name,
                    container_status, health_status, internal_port, env_vars, webhook_events,
                    webhook_secret, webhook_path, api_key, api_permissions, is_enabled
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    name, slug, description, icon, source_type, source_url, version, container_name,
                    container_status, health_status, internal_port, env_vars, webhook_events,
                    webhook_secret, webhook_path, api_key, api_permissions, 1 if is_enabled else 0,
                ),
            )
            app_id = cursor.lastrowid
            conn.commit()
            return app_id
        finally:
            conn.close()

    def update_fields(self, app_id: int, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unsupported app fields: {', '.join(sorted(unknown))}")
        if not fields:
            return
        assignments = ', '.join(f'{column} = ?' for column in fields)
        params = [int(value) if isinstance(value, bool) else value for value in fields.values()]
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                f'UPDATE apps SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
                (*params, app_id),
            )
            conn.commit()
        finally:
            conn.close()

    def set_status(
        self,
        app_id: int,
        container_status: str,
        health_status: Optional[str] = None,
        checked_at: Optional[datetime] = None,
    ) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            if health_status is None:
                cursor.execute(
                    'UPDATE apps SET container_status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?',
                    (container_status, app_id),
                )
            else:
                cursor.execute(
                    '''
                    UPDATE apps
                    SET container_status = ?, health_status = ?,
                        last_health_check = COALESCE(?, last_health_check),
                        updated_at = CURRENT_TIMESTAMP
                    WHERE id = ?
                    ''',
                    (container_status, health_status, format_timestamp(checked_at), app_id),
                )
            conn.commit()
        finally:
            conn.close()

    def set_health(self, app_id: int, health_status: str, checked_at: datetime) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                'UPDATE apps SET health_status = ?, last_health_check = ? WHERE id = ?',
                (health_status, format_timestamp(checked_at), app_id),
            )
            conn.commit()
        finally:
            conn.close()

    def delete(self, app_id: int) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM apps WHERE id = ?', (app_id,))
            conn.commit()
        finally:
            conn.close()
