from __future__ import annotations

import hashlib
from functools import wraps

from flask import Blueprint, g, jsonify, request
from flask_limiter.util import get_remote_address

from nodedash.services.base import ServiceError

GATEWAY_RATE_LIMIT_SCOPE = 'app-gateway'


def bearer_token():
    header = request.headers.get('Authorization', '')
    if not header.startswith('Bearer '):
        return None
    return header[len('Bearer '):].strip() or None


def gateway_rate_key():
    """One rate-limit bucket per presented API key, else per client address."""
    token = bearer_token()
    if token:
        return f"app-key:{hashlib.sha256(token.encode()).hexdigest()}"
    return get_remote_address()


def create_gateway_blueprint(*, gateway, node_client, limiter, logger, rate_limit):
    """Create the API surface companion apps call with their API key."""
    blueprint = Blueprint('app_gateway', __name__)
    per_app_limit = limiter.shared_limit(rate_limit, scope=GATEWAY_RATE_LIMIT_SCOPE, key_func=gateway_rate_key)

    def app_key_required(permission=None):
        def decorator(f):
            @wraps(f)
            def decorated_function(*args, **kwargs):
                try:
                    app = gateway.authenticate(bearer_token())
                    if permission:
                        gateway.require_permission(app, permission)
                except ServiceError as e:
                    return jsonify({'error': e.message}), e.status_code
                g.gateway_app = app
                return f(*args, **kwargs)
            return decorated_function
        return decorator

    def _node_call(call, what):
        try:
            return jsonify(call())
        except ServiceError as e:
            return jsonify({'error': e.message}), e.status_code
        except Exception as e:
            logger.error(f"Error getting {what} for app {g.gateway_app.slug}: {e}")
            return jsonify({'error': f'Failed to get {what}'}), 500

    @blueprint.route('/api/apps-gateway/info', methods=['GET'])
    @per_app_limit
    @app_key_required()
    def app_info():
        app = g.gateway_app
        return jsonify({
            'id': app.id,
            'slug': app.slug,
            'name': app.name,
            'permissions': gateway.permissions_for(app),
        })

    @blueprint.route('/api/apps-gateway/node', methods=['GET'])
    @per_app_limit
    @app_key_required('read:node')
    def node_info():
        return _node_call(node_client.get_node_summary, 'node info')

    @blueprint.route('/api/apps-gateway/balance', methods=['GET'])
    @per_app_limit
    @app_key_required('read:balance')
    def balance():
        return _node_call(node_client.get_balance, 'balance')

    @blueprint.route('/api/apps-gateway/channels', methods=['GET'])
    @per_app_limit
    @app_key_required('read:channels')
    def channels():
        return _node_call(node_client.list_channels, 'channels')

    return blueprint
