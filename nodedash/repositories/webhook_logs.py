from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from nodedash.models import WebhookLog
from nodedash.repositories.base import BaseRepository, format_timestamp


def _row_to_log(row) -> WebhookLog:
    return WebhookLog(
        id=row['id'],
        app_id=row['app_id'],
        event_type=row['event_type'],
        payload=row['payload'],
        status_code=row['status_code'],
        response=row['response'],
        success=bool(row['success']),
        latency_ms=row['latency_ms'] or 0,
        created_at=row['created_at'],
    )


class WebhookLogRepository(BaseRepository):
    """Append-only repository for webhook delivery attempts."""

    def insert(
        self,
        app_id: int,
        event_type: str,
        payload: Optional[str],
        status_code: Optional[int],
        response: Optional[str],
        success: bool,
        latency_ms: int,
        created_at: datetime,
    ) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                '''
                INSERT INTO webhook_logs
                    (app_id, event_type, payload, status_code, response, success, latency_ms, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    app_id, event_type, payload, status_code, response,
                    1 if success else 0, latency_ms, format_timestamp(created_at),
                ),
            )
            log_id = cursor.lastrowid
            conn.commit()
            return log_id
        finally:
            conn.close()

    def list_for_app(self, app_id: int, limit: int = 50, offset: int = 0) -> List[WebhookLog]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                '''
                SELECT id, app_id, event_type, payload, status_code, response, success, latency_ms, created_at
                FROM webhook_logs
                WHERE app_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                ''',
                (app_id, limit, offset),
            )
            return [_row_to_log(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def count_for_app(self, app_id: int) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('SELECT COUNT(*) FROM webhook_logs WHERE app_id = ?', (app_id,))
            return cursor.fetchone()[0]
        finally:
            conn.close()

    def delete_older_than(self, cutoff: datetime) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM webhook_logs WHERE created_at < ?', (format_timestamp(cutoff),))
            deleted = cursor.rowcount
            conn.commit()
            return deleted
        finally:
            conn.close()
