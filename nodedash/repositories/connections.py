from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from nodedash.models import Connection
from nodedash.repositories.base import BaseRepository, format_timestamp

_COLUMNS = 'id, name, url, password, is_docker, is_active, node_id, chain, last_connected_at, created_at'


def _row_to_connection(row) -> Connection:
    return Connection(
        id=row['id'],
        name=row['name'],
        url=row['url'],
        password=row['password'],
        is_docker=bool(row['is_docker']),
        is_active=bool(row['is_active']),
        node_id=row['node_id'],
        chain=row['chain'],
        last_connected_at=row['last_connected_at'],
        created_at=row['created_at'],
    )


class ConnectionRepository(BaseRepository):
    """Repository for node backend connections."""

    def get_by_id(self, connection_id: int) -> Optional[Connection]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM connections WHERE id = ?', (connection_id,))
            row = cursor.fetchone()
            return _row_to_connection(row) if row else None
        finally:
            conn.close()

    def get_docker(self) -> Optional[Connection]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM connections WHERE is_docker = 1 ORDER BY id LIMIT 1')
            row = cursor.fetchone()
            return _row_to_connection(row) if row else None
        finally:
            conn.close()

    def find_by_url(self, url: str) -> Optional[Connection]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM connections WHERE url = ? ORDER BY id LIMIT 1', (url,))
            row = cursor.fetchone()
            return _row_to_connection(row) if row else None
        finally:
            conn.close()

    def list_active(self) -> List[Connection]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM connections WHERE is_active = 1 ORDER BY id')
            return [_row_to_connection(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def list_all(self) -> List[Connection]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(f'SELECT {_COLUMNS} FROM connections ORDER BY is_docker DESC, created_at ASC, id ASC')
            return [_row_to_connection(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def count(self) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('SELECT COUNT(*) FROM connections')
            return cursor.fetchone()[0]
        finally:
            conn.close()

    def create(
        self,
        name: str,
        url: str,
        password: Optional[str],
        *,
        is_docker: bool = False,
        is_active: bool = False,
        node_id: Optional[str] = None,
        chain: Optional[str] = None,
        last_connected_at: Optional[datetime] = None,
    ) -> int:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                '''
                INSERT INTO connections (name, url, password, is_docker, is_active, node_id, chain, last_connected_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    name, url, password, 1 if is_docker else 0, 1 if is_active else 0,
                    node_id, chain, format_timestamp(last_connected_at),
                ),
            )
            connection_id = cursor.lastrowid
            conn.commit()
            return connection_id
        finally:
            conn.close()

    def create_active(self, name: str, url: str, password: Optional[str]) -> int:
        """Insert a connection and make it the only active one, in one transaction."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('UPDATE connections SET is_active = 0 WHERE is_active = 1')
            cursor.execute(
                'INSERT INTO connections (name, url, password, is_docker, is_active) VALUES (?, ?, ?, 0, 1)',
                (name, url, password),
            )
            connection_id = cursor.lastrowid
            conn.commit()
            return connection_id
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def update(self, connection_id: int, name: str, url: str, password: Optional[str]) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                'UPDATE connections SET name = ?, url = ?, password = ? WHERE id = ?',
                (name, url, password, connection_id),
            )
            conn.commit()
        finally:
            conn.close()

    def update_probe(
        self,
        connection_id: int,
        node_id: Optional[str],
        chain: Optional[str],
        last_connected_at: datetime,
    ) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                'UPDATE connections SET node_id = ?, chain = ?, last_connected_at = ? WHERE id = ?',
                (node_id, chain, format_timestamp(last_connected_at), connection_id),
            )
            conn.commit()
        finally:
            conn.close()

    def activate_exclusive(self, connection_id: int) -> bool:
        """Deactivate every connection and activate exactly one, atomically."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('SELECT 1 FROM connections WHERE id = ?', (connection_id,))
            if cursor.fetchone() is None:
                return False
            cursor.execute(
                'UPDATE connections SET is_active = CASE WHEN id = ? THEN 1 ELSE 0 END',
                (connection_id,),
            )
            conn.commit()
            return True
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete(self, connection_id: int) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('DELETE FROM connections WHERE id = ?', (connection_id,))
            conn.commit()
        finally:
            conn.close()
