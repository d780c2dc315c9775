from __future__ import annotations

from flask import Blueprint, jsonify, request

from nodedash.routes.serializers import connection_to_dict
from nodedash.services.base import ServiceError, UpstreamError


def create_connections_blueprint(*, connection_manager, limiter, logger):
    """Create node connection routes with injected dependencies."""
    blueprint = Blueprint('connections', __name__)

    @blueprint.route('/api/connections', methods=['GET'])
    def list_connections():
        try:
            return jsonify([connection_to_dict(c) for c in connection_manager.list_connections()])
        except Exception as e:
            logger.error(f"Error listing connections: {e}")
            return jsonify({'error': 'Failed to list connections'}), 500

    @blueprint.route('/api/connections/active', methods=['GET'])
    def get_active_connection():
        try:
            result = connection_manager.get_active_status()
            status = result['status']
            return jsonify({
                'connection': connection_to_dict(result['connection']),
                'status': {
                    'connected': status['connected'],
                    'nodeId': status['node_id'],
                    'error': status['error'],
                },
            })
        except Exception as e:
            logger.error(f"Error getting active connection: {e}")
            return jsonify({'error': 'Failed to get active connection'}), 500

    @blueprint.route('/api/connections', methods=['POST'])
    def create_connection():
        try:
            data = request.get_json(silent=True) or {}
            connection = connection_manager.create_connection(
                data.get('name'),
                data.get('url'),
                data.get('password'),
            )
            return jsonify(connection_to_dict(connection)), 201
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error creating connection: {e}")
            return jsonify({'error': 'Failed to create connection'}), 500

    @blueprint.route('/api/connections/test', methods=['POST'])
    @limiter.limit("20 per minute")
    def test_connection():
        """Probe an unsaved url/password pair."""
        try:
            data = request.get_json(silent=True) or {}
            info = connection_manager.test_connection(data.get('url'), data.get('password'))
            return jsonify({'success': True, 'nodeId': info['node_id'], 'chain': info.get('chain'), 'version': info.get('version')})
        except UpstreamError as e:
            return jsonify({'success': False, 'error': e.message}), 400
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error testing connection: {e}")
            return jsonify({'error': 'Failed to test connection'}), 500

    @blueprint.route('/api/connections/<int:connection_id>', methods=['PUT'])
    def update_connection(connection_id):
        try:
            data = request.get_json(silent=True) or {}
            connection = connection_manager.update_connection(
                connection_id,
                name=data.get('name'),
                url=data.get('url'),
                password=data.get('password'),
            )
            return jsonify(connection_to_dict(connection))
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error updating connection {connection_id}: {e}")
            return jsonify({'error': 'Failed to update connection'}), 500

    @blueprint.route('/api/connections/<int:connection_id>', methods=['DELETE'])
    def delete_connection(connection_id):
        try:
            connection_manager.delete_connection(connection_id)
            return jsonify({'success': True, 'message': 'Connection deleted'})
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error deleting connection {connection_id}: {e}")
            return jsonify({'error': 'Failed to delete connection'}), 500

    @blueprint.route('/api/connections/<int:connection_id>/activate', methods=['POST'])
    def activate_connection(connection_id):
        try:
            connection = connection_manager.activate_connection(connection_id)
            return jsonify({
                'success': True,
                'message': f'Switched to {connection.name}',
                'connection': connection_to_dict(connection),
            })
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error activating connection {connection_id}: {e}")
            return jsonify({'error': 'Failed to activate connection'}), 500

    @blueprint.route('/api/connections/<int:connection_id>/test', methods=['POST'])
    def test_saved_connection(connection_id):
        try:
            info = connection_manager.test_saved_connection(connection_id)
            return jsonify({'success': True, 'nodeId': info['node_id'], 'chain': info.get('chain'), 'version': info.get('version')})
        except UpstreamError as e:
            return jsonify({'success': False, 'error': e.message}), 400
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error testing connection {connection_id}: {e}")
            return jsonify({'error': 'Failed to test connection'}), 500

    return blueprint
