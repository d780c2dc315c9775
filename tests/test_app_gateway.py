"""Tests for the API-key gateway companion apps call."""
import pytest
import requests

from conftest import DEFAULT_NODE_URL, FakeNodeClient, FakeResponse, FakeRuntime
from nodedash.config import TestingConfig
from nodedash.services.app_gateway import parse_permissions
from nodedash.services.base import UpstreamError
from nodedash.services.node_client import NodeClientConfig, PhoenixdClient


def bearer(key):
    return {'Authorization': f'Bearer {key}'}


@pytest.fixture
def node_calls(node_client, monkeypatch):
    """Answer node reads from a table keyed by path."""
    answers = {
        '/getinfo': {'nodeId': '02abc', 'channels': [{'id': 'c1'}, {'id': 'c2'}]},
        '/getbalance': {'balanceSat': 21000, 'feeCreditSat': 0},
        '/listchannels': [{'channelId': 'c1'}],
    }
    seen = []

    def fake_get(path):
        seen.append(path)
        answer = answers[path]
        if isinstance(answer, Exception):
            raise answer
        return answer

    monkeypatch.setattr(node_client, '_get', fake_get)
    return answers, seen


class TestAuthentication:
    def test_missing_header(self, client):
        response = client.get('/api/apps-gateway/info')
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Missing or invalid Authorization header'}

    def test_non_bearer_header(self, client, make_app_record):
        make_app_record()
        response = client.get('/api/apps-gateway/info', headers={'Authorization': 'Basic phxapp_donations'})
        assert response.status_code == 401

    def test_unknown_key(self, client, make_app_record):
        make_app_record()
        response = client.get('/api/apps-gateway/info', headers=bearer('phxapp_nobody'))
        assert response.status_code == 401
        assert response.get_json() == {'error': 'Invalid API key'}

    def test_key_without_prefix(self, client):
        response = client.get('/api/apps-gateway/info', headers=bearer('sk_live_123'))
        assert response.status_code == 401

    def test_disabled_app(self, client, make_app_record):
        make_app_record(is_enabled=False)
        response = client.get('/api/apps-gateway/info', headers=bearer('phxapp_donations'))
        assert response.status_code == 403
        assert response.get_json() == {'error': 'App is disabled'}

    def test_info(self, client, make_app_record):
        app = make_app_record()
        response = client.get('/api/apps-gateway/info', headers=bearer('phxapp_donations'))
        assert response.status_code == 200
        assert response.get_json() == {
            'id': app.id,
            'slug': 'donations',
            'name': 'Donations',
            'permissions': ['read:balance', 'read:payments'],
        }

    def test_regenerated_key_replaces_old_one(self, client, make_app_record):
        app = make_app_record()
        new_key = client.post(f'/api/apps/{app.id}/regenerate-key').get_json()['apiKey']

        assert client.get('/api/apps-gateway/info', headers=bearer('phxapp_donations')).status_code == 401
        assert client.get('/api/apps-gateway/info', headers=bearer(new_key)).status_code == 200


class TestPermissions:
    def test_missing_scope_is_forbidden(self, client, make_app_record, node_calls):
        make_app_record()
        _, seen = node_calls

        response = client.get('/api/apps-gateway/node', headers=bearer('phxapp_donations'))

        assert response.status_code == 403
        assert response.get_json() == {'error': 'Missing required permission: read:node'}
        assert seen == []

    def test_node_summary(self, client, make_app_record, node_calls):
        make_app_record(api_permissions='["read:node"]')

        response = client.get('/api/apps-gateway/node', headers=bearer('phxapp_donations'))

        assert response.status_code == 200
        assert response.get_json() == {'nodeId': '02abc', 'channelCount': 2}

    def test_balance_and_channels(self, client, make_app_record, node_calls):
        make_app_record(api_permissions='["read:balance", "read:channels"]')

        assert client.get('/api/apps-gateway/balance', headers=bearer('phxapp_donations')).get_json() == {
            'balanceSat': 21000,
            'feeCreditSat': 0,
        }
        assert client.get('/api/apps-gateway/channels', headers=bearer('phxapp_donations')).get_json() == [
            {'channelId': 'c1'},
        ]

    def test_node_failure_is_a_bad_gateway(self, client, make_app_record, node_calls):
        make_app_record(api_permissions='["read:balance"]')
        answers, _ = node_calls
        answers['/getbalance'] = UpstreamError('Node request failed: 503 - unavailable')

        response = client.get('/api/apps-gateway/balance', headers=bearer('phxapp_donations'))

        assert response.status_code == 502
        assert 'unavailable' in response.get_json()['error']

    def test_malformed_permissions_grant_nothing(self, client, make_app_record):
        make_app_record(api_permissions='read:node')
        response = client.get('/api/apps-gateway/node', headers=bearer('phxapp_donations'))
        assert response.status_code == 403

    def test_parse_permissions(self):
        assert parse_permissions('["read:node", 5]') == ['read:node']
        assert parse_permissions(None) == []
        assert parse_permissions('{"read:node": true}') == []


class RateLimitedConfig(TestingConfig):
    RATELIMIT_ENABLED = True
    RATE_LIMIT_PER_MINUTE = 2


def test_rate_limit_is_per_app(app, make_app_record):
    from nodedash import create_app

    make_app_record('limited')
    make_app_record('other')
    node_client = FakeNodeClient(NodeClientConfig(DEFAULT_NODE_URL, 'docker-password'))
    limited_app = create_app(RateLimitedConfig, runtime=FakeRuntime(), node_client=node_client)
    client = limited_app.test_client()

    assert client.get('/api/apps-gateway/info', headers=bearer('phxapp_limited')).status_code == 200
    assert client.get('/api/apps-gateway/info', headers=bearer('phxapp_limited')).status_code == 200
    assert client.get('/api/apps-gateway/balance', headers=bearer('phxapp_limited')).status_code == 429
    assert client.get('/api/apps-gateway/info', headers=bearer('phxapp_other')).status_code == 200


class TestNodeClientReads:
    def test_get_node_summary(self, monkeypatch):
        seen = {}

        def fake_get(url, auth=None, timeout=None):
            seen.update(url=url, auth=auth, timeout=timeout)
            return FakeResponse(200, payload={'nodeId': '02abc', 'channels': []})

        monkeypatch.setattr('nodedash.services.node_client.requests.get', fake_get)
        client = PhoenixdClient(NodeClientConfig('http://phoenixd:9740/', 'pw'), timeout=3)

        assert client.get_node_summary() == {'nodeId': '02abc', 'channelCount': 0}
        assert seen == {'url': 'http://phoenixd:9740/getinfo', 'auth': ('', 'pw'), 'timeout': 3}

    def test_errors_become_upstream_errors(self, monkeypatch):
        client = PhoenixdClient(NodeClientConfig('http://phoenixd:9740', 'pw'))

        monkeypatch.setattr(
            'nodedash.services.node_client.requests.get',
            lambda url, auth=None, timeout=None: FakeResponse(401, 'Unauthorized'),
        )
        with pytest.raises(UpstreamError, match='401 - Unauthorized'):
            client.get_balance()

        def refused(url, auth=None, timeout=None):
            raise requests.exceptions.ConnectionError('refused')

        monkeypatch.setattr('nodedash.services.node_client.requests.get', refused)
        with pytest.raises(UpstreamError, match='refused'):
            client.list_channels()

        monkeypatch.setattr(
            'nodedash.services.node_client.requests.get',
            lambda url, auth=None, timeout=None: FakeResponse(200, 'not json'),
        )
        with pytest.raises(UpstreamError, match='invalid response'):
            client.get_balance()
