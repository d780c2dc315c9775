"""Tests for model helpers and serializers"""
from nodedash.models import App, Connection, ContainerStatus
from nodedash.routes.serializers import app_to_dict, connection_to_dict, mask_api_key


def make_app(**overrides):
    fields = dict(
        id=1,
        name='Donations',
        slug='donations',
        source_type='docker_image',
        source_url='example/donations',
        container_name='nodedash-app-donations',
        api_key='phxapp_0123456789abcdef',
        webhook_secret='s3cret',
        env_vars='{"A": "1"}',
        webhook_events='not json',
    )
    fields.update(overrides)
    return App(**fields)


def test_container_status_running():
    assert ContainerStatus('running', 'healthy').running is True
    assert ContainerStatus('not_found', 'unknown').to_dict() == {
        'containerStatus': 'not_found',
        'healthStatus': 'unknown',
        'running': False,
    }


def test_app_to_dict_masks_credentials():
    data = app_to_dict(make_app())

    assert data['apiKey'] == 'phxapp_01234...'
    assert data['webhookSecret'] == '***'
    assert data['envVars'] == {'A': '1'}
    assert data['webhookEvents'] is None


def test_app_to_dict_reveal():
    data = app_to_dict(make_app(), reveal_credentials=True)
    assert data['apiKey'] == 'phxapp_0123456789abcdef'
    assert data['webhookSecret'] == 's3cret'


def test_mask_api_key_empty():
    assert mask_api_key(None) is None
    assert app_to_dict(make_app(webhook_secret=None))['webhookSecret'] is None


def test_connection_to_dict_hides_password():
    data = connection_to_dict(Connection(id=2, name='Remote', url='http://r:9740', password='pw'))
    assert data['hasPassword'] is True
    assert 'password' not in data
    assert connection_to_dict(None) is None
