from __future__ import annotations

import logging
import os
import sqlite3

from nodedash.config import Config

logger = logging.getLogger(__name__)

DATABASE_PATH = Config.DATABASE_PATH


def _get_database_path() -> str:
    """Resolve database path at runtime (supports tests overriding env)."""
    return os.getenv('DATABASE_PATH', DATABASE_PATH)


def get_db() -> sqlite3.Connection:
    """Get database connection."""
    conn = sqlite3.connect(_get_database_path(), timeout=10)
    conn.row_factory = sqlite3.Row
    return conn


def init_db() -> None:
    """Initialize SQLite database."""
    conn = sqlite3.connect(_get_database_path())
    cursor = conn.cursor()

    # Installed apps
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS apps (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            slug TEXT NOT NULL UNIQUE,
            description TEXT,
            icon TEXT,
            source_type TEXT NOT NULL,
            source_url TEXT NOT NULL,
            version TEXT DEFAULT 'latest',
            container_name TEXT UNIQUE,
            container_status TEXT NOT NULL DEFAULT 'stopped',
            health_status TEXT NOT NULL DEFAULT 'unknown',
            last_health_check TIMESTAMP,
            internal_port INTEGER NOT NULL DEFAULT 3000,
            env_vars TEXT,
            webhook_events TEXT,
            webhook_secret TEXT,
            webhook_path TEXT DEFAULT '/webhook',
            api_key TEXT UNIQUE,
            api_permissions TEXT,
            is_enabled INTEGER DEFAULT 1,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Webhook delivery attempts (no FK: rows outlive uninstalled apps)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS webhook_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            app_id INTEGER NOT NULL,
            event_type TEXT NOT NULL,
            payload TEXT,
            status_code INTEGER,
            response TEXT,
            success INTEGER NOT NULL DEFAULT 0,
            latency_ms INTEGER,
            created_at TIMESTAMP NOT NULL
        )
    ''')

    # Node backend connections
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS connections (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            url TEXT NOT NULL,
            password TEXT,
            is_docker INTEGER DEFAULT 0,
            is_active INTEGER DEFAULT 0,
            node_id TEXT,
            chain TEXT,
            last_connected_at TIMESTAMP,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    # Cached node identity (singleton row)
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS node_info (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            node_id TEXT NOT NULL,
            chain TEXT,
            version TEXT,
            updated_at TIMESTAMP
        )
    ''')

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    ''')

    cursor.execute('CREATE INDEX IF NOT EXISTS idx_apps_container_status ON apps(container_status)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_webhook_logs_app_id ON webhook_logs(app_id, created_at DESC)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_webhook_logs_created_at ON webhook_logs(created_at)')
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_connections_active ON connections(is_active)')

    conn.commit()
    conn.close()
    logger.info('Database initialized')


def ensure_data_dir() -> None:
    data_dir = os.path.dirname(_get_database_path()) or '.'
    os.makedirs(data_dir, exist_ok=True)
