from __future__ import annotations

import sys
from typing import Callable

from flask import Blueprint, jsonify


def create_health_blueprint(*, runtime, scheduler, event_stream, db_factory: Callable[[], object], version: str, scheduler_enabled: bool = True):
    """Create health and version routes with injected dependencies."""
    blueprint = Blueprint('health', __name__)

    @blueprint.route('/health')
    def health_check():
        """Health check endpoint for container orchestration and monitoring."""
        health = {
            'status': 'healthy',
            'version': version,
            'checks': {},
        }

        # Check database connectivity
        try:
            conn = db_factory()
            cursor = conn.cursor()
            cursor.execute('SELECT 1')
            conn.close()
            health['checks']['database'] = {'status': 'ok'}
        except Exception as e:
            health['status'] = 'unhealthy'
            health['checks']['database'] = {'status': 'error', 'message': str(e)}

        # Check scheduler status
        if scheduler_enabled:
            try:
                if scheduler.running:
                    health['checks']['scheduler'] = {'status': 'ok', 'jobs': len(scheduler.get_jobs())}
                else:
                    health['status'] = 'unhealthy'
                    health['checks']['scheduler'] = {'status': 'error', 'message': 'Scheduler not running'}
            except Exception as e:
                health['status'] = 'degraded'
                health['checks']['scheduler'] = {'status': 'error', 'message': str(e)}
        else:
            health['checks']['scheduler'] = {'status': 'disabled'}

        # Check the container runtime is reachable
        try:
            runtime.ping()
            health['checks']['docker'] = {'status': 'ok'}
        except Exception as e:
            if health['status'] == 'healthy':
                health['status'] = 'degraded'
            health['checks']['docker'] = {'status': 'error', 'message': str(e)}

        health['checks']['event_stream'] = {'status': 'ok' if event_stream.running else 'stopped'}

        status_code = 503 if health['status'] == 'unhealthy' else 200
        return jsonify(health), status_code

    @blueprint.route('/api/version')
    def get_version():
        """Get application version and build info."""
        return jsonify({
            'version': version,
            'python_version': sys.version.split()[0],
            'api_version': 'v1',
        })

    return blueprint
