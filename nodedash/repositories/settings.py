from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from nodedash.repositories.base import BaseRepository, format_timestamp


class SettingsRepository(BaseRepository):
    """Repository for key/value dashboard settings."""

    def get(self, key: str) -> Optional[str]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('SELECT value FROM settings WHERE key = ?', (key,))
            result = cursor.fetchone()
            return result[0] if result else None
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                'INSERT OR REPLACE INTO settings (key, value, updated_at) VALUES (?, ?, ?)',
                (key, value, format_timestamp(datetime.now(timezone.utc)))
            )
            conn.commit()
        finally:
            conn.close()
