from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Callable, Optional

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S.%f'


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Render a datetime as sortable UTC text."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(TIMESTAMP_FORMAT)


class BaseRepository:
    """Base repository holding the connection factory."""
    def __init__(self, db_factory: Callable[[], sqlite3.Connection]):
        self._db_factory = db_factory

    def _connect(self) -> sqlite3.Connection:
        conn = self._db_factory()
        conn.row_factory = sqlite3.Row
        return conn
