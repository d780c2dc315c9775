from __future__ import annotations

from datetime import datetime
from typing import Optional

from nodedash.models import NodeInfo
from nodedash.repositories.base import BaseRepository, format_timestamp


class NodeInfoRepository(BaseRepository):
    """Repository for the cached node identity singleton."""

    def get(self) -> Optional[NodeInfo]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute('SELECT node_id, chain, version, updated_at FROM node_info WHERE id = 1')
            row = cursor.fetchone()
            if not row:
                return None
            return NodeInfo(
                node_id=row['node_id'],
                chain=row['chain'],
                version=row['version'],
                updated_at=row['updated_at'],
            )
        finally:
            conn.close()

    def upsert(self, node_id: str, chain: Optional[str], version: Optional[str], updated_at: datetime) -> None:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(
                'INSERT OR REPLACE INTO node_info (id, node_id, chain, version, updated_at) VALUES (1, ?, ?, ?, ?)',
                (node_id, chain, version, format_timestamp(updated_at)),
            )
            conn.commit()
        finally:
            conn.close()
