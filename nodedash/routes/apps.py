from __future__ import annotations

from flask import Blueprint, jsonify, request

from nodedash.routes.serializers import app_to_dict, webhook_log_to_dict
from nodedash.services.app_service import API_PERMISSIONS
from nodedash.services.base import ServiceError
from nodedash.services.webhook_dispatcher import WEBHOOK_EVENTS


def create_apps_blueprint(*, app_service, limiter, logger):
    """Create app management routes with injected dependencies."""
    blueprint = Blueprint('apps', __name__)

    @blueprint.route('/api/apps', methods=['GET'])
    def list_apps():
        try:
            return jsonify([app_to_dict(app) for app in app_service.list_apps()])
        except Exception as e:
            logger.error(f"Error listing apps: {e}")
            return jsonify({'error': 'Failed to list apps'}), 500

    @blueprint.route('/api/apps/containers', methods=['GET'])
    def list_app_containers():
        try:
            return jsonify(app_service.list_app_containers())
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error listing app containers: {e}")
            return jsonify({'error': 'Failed to list app containers'}), 500

    @blueprint.route('/api/apps/<int:app_id>', methods=['GET'])
    def get_app(app_id):
        try:
            return jsonify(app_to_dict(app_service.get_app(app_id)))
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error getting app {app_id}: {e}")
            return jsonify({'error': 'Failed to get app'}), 500

    @blueprint.route('/api/apps', methods=['POST'])
    def install_app():
        """Install an app; the only response that reveals the full API key."""
        try:
            data = request.get_json(silent=True) or {}
            app = app_service.install_app(data)
            return jsonify(app_to_dict(app, reveal_credentials=True)), 201
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error installing app: {e}")
            return jsonify({'error': 'Failed to install app'}), 500

    @blueprint.route('/api/apps/<int:app_id>', methods=['PUT'])
    def update_app(app_id):
        try:
            data = request.get_json(silent=True) or {}
            return jsonify(app_to_dict(app_service.update_app(app_id, data)))
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error updating app {app_id}: {e}")
            return jsonify({'error': 'Failed to update app'}), 500

    @blueprint.route('/api/apps/<int:app_id>', methods=['DELETE'])
    def uninstall_app(app_id):
        try:
            app_service.uninstall_app(app_id)
            return jsonify({'success': True, 'message': 'App uninstalled'})
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error uninstalling app {app_id}: {e}")
            return jsonify({'error': 'Failed to uninstall app'}), 500

    def _lifecycle_action(app_id, action, verb):
        try:
            app = action(app_id)
            return jsonify({'success': True, 'message': f'App {verb}', 'app': app_to_dict(app)})
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error handling app {app_id} ({verb}): {e}")
            return jsonify({'error': str(e)}), 500

    @blueprint.route('/api/apps/<int:app_id>/start', methods=['POST'])
    def start_app(app_id):
        return _lifecycle_action(app_id, app_service.start_app, 'started')

    @blueprint.route('/api/apps/<int:app_id>/stop', methods=['POST'])
    def stop_app(app_id):
        return _lifecycle_action(app_id, app_service.stop_app, 'stopped')

    @blueprint.route('/api/apps/<int:app_id>/restart', methods=['POST'])
    def restart_app(app_id):
        return _lifecycle_action(app_id, app_service.restart_app, 'restarted')

    @blueprint.route('/api/apps/<int:app_id>/logs', methods=['GET'])
    def get_logs(app_id):
        try:
            tail = request.args.get('tail', default=100, type=int) or 100
            tail = max(1, min(tail, 10000))
            return jsonify({'logs': app_service.get_logs(app_id, tail=tail)})
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error getting logs for app {app_id}: {e}")
            return jsonify({'error': 'Failed to get logs'}), 500

    @blueprint.route('/api/apps/<int:app_id>/webhooks', methods=['GET'])
    def list_webhook_logs(app_id):
        try:
            limit = max(1, min(request.args.get('limit', default=50, type=int) or 50, 500))
            offset = max(0, request.args.get('offset', default=0, type=int) or 0)
            logs = app_service.list_webhook_logs(app_id, limit=limit, offset=offset)
            return jsonify([webhook_log_to_dict(log) for log in logs])
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error getting webhook logs for app {app_id}: {e}")
            return jsonify({'error': 'Failed to get webhook logs'}), 500

    @blueprint.route('/api/apps/<int:app_id>/webhook-stats', methods=['GET'])
    def get_webhook_stats(app_id):
        try:
            return jsonify(app_service.get_webhook_stats(app_id))
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error getting webhook stats for app {app_id}: {e}")
            return jsonify({'error': 'Failed to get webhook stats'}), 500

    @blueprint.route('/api/apps/<int:app_id>/test-webhook', methods=['POST'])
    @limiter.limit("10 per minute")
    def test_webhook(app_id):
        try:
            return jsonify(app_service.test_webhook(app_id))
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error sending test webhook to app {app_id}: {e}")
            return jsonify({'error': 'Failed to send test webhook'}), 500

    @blueprint.route('/api/apps/<int:app_id>/regenerate-key', methods=['POST'])
    def regenerate_key(app_id):
        try:
            api_key = app_service.regenerate_api_key(app_id)
            return jsonify({'success': True, 'apiKey': api_key})
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error regenerating API key for app {app_id}: {e}")
            return jsonify({'error': 'Failed to regenerate API key'}), 500

    @blueprint.route('/api/apps/<int:app_id>/regenerate-secret', methods=['POST'])
    def regenerate_secret(app_id):
        try:
            secret = app_service.regenerate_webhook_secret(app_id)
            return jsonify({'success': True, 'webhookSecret': secret})
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error regenerating webhook secret for app {app_id}: {e}")
            return jsonify({'error': 'Failed to regenerate webhook secret'}), 500

    @blueprint.route('/api/apps/<int:app_id>/status', methods=['GET'])
    def get_status(app_id):
        try:
            return jsonify(app_service.refresh_status(app_id).to_dict())
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error getting status for app {app_id}: {e}")
            return jsonify({'error': 'Failed to get app status'}), 500

    @blueprint.route('/api/apps/meta/webhook-events', methods=['GET'])
    def list_webhook_events():
        return jsonify(WEBHOOK_EVENTS)

    @blueprint.route('/api/apps/meta/api-permissions', methods=['GET'])
    def list_api_permissions():
        return jsonify(API_PERMISSIONS)

    return blueprint
