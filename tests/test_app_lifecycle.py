"""Tests for container reconciliation, env building and health checks."""
import time
from datetime import datetime

import pytest
import requests

from conftest import FakeResponse
from nodedash.db import get_db
from nodedash.repositories import AppRepository, NodeInfoRepository
from nodedash.services.app_lifecycle import ContainerLocks, resolve_image
from nodedash.services.base import NotSupportedError, UpstreamError, ValidationError
from nodedash.services.container_runtime import ContainerNotFound


class TestStartStop:
    def test_start_absent_creates_and_starts(self, services, runtime, make_app_record):
        app = make_app_record(container_status='stopped', version='1.2.0')

        assert services.lifecycle.start_app(app) == 'created'

        assert runtime.mutations == [('create', 'nodedash-app-donations'), ('start', 'nodedash-app-donations')]
        spec = runtime.containers['nodedash-app-donations']['spec']
        assert spec.image == 'example/donations:1.2.0'
        assert spec.network == 'nodedash_apps'
        assert spec.restart_policy == {'Name': 'unless-stopped'}
        assert spec.mem_limit == '512m'
        assert spec.nano_cpus == 1_000_000_000
        assert spec.labels == {
            'nodedash-app': 'true',
            'nodedash-app.id': str(app.id),
            'nodedash-app.slug': 'donations',
        }
        assert spec.healthcheck['test'] == ['CMD-SHELL', 'curl -f http://localhost:3000/health || exit 1']
        assert spec.healthcheck['retries'] == 3
        assert runtime.containers['nodedash-app-donations']['running'] is True

    def test_start_running_is_a_noop(self, services, runtime, make_app_record):
        app = make_app_record()
        runtime.add_container(app.container_name, running=True)

        assert services.lifecycle.start_app(app) == 'noop'
        assert runtime.mutations == []

    def test_start_stopped_container_starts_in_place(self, services, runtime, make_app_record):
        app = make_app_record()
        runtime.add_container(app.container_name, running=False)

        assert services.lifecycle.start_app(app) == 'started'
        assert runtime.mutations == [('start', app.container_name)]

    def test_stop_stopped_is_a_noop(self, services, runtime, make_app_record):
        app = make_app_record()
        runtime.add_container(app.container_name, running=False)

        assert services.lifecycle.stop_app(app) is False
        assert runtime.mutations == []

    def test_stop_absent_is_a_noop(self, services, runtime, make_app_record):
        app = make_app_record()

        assert services.lifecycle.stop_app(app) is False
        assert runtime.mutations == []

    def test_stop_running(self, services, runtime, make_app_record):
        app = make_app_record()
        runtime.add_container(app.container_name, running=True)

        assert services.lifecycle.stop_app(app) is True
        assert runtime.mutations == [('stop', app.container_name)]

    def test_remove_missing_container_does_not_raise(self, services, runtime):
        assert services.lifecycle.remove_container('nodedash-app-ghost') is False
        assert runtime.mutations == []

    def test_remove_running_container_stops_first(self, services, runtime):
        runtime.add_container('nodedash-app-x', running=True)

        assert services.lifecycle.remove_container('nodedash-app-x') is True
        assert runtime.mutations == [('stop', 'nodedash-app-x'), ('remove', 'nodedash-app-x')]
        assert 'nodedash-app-x' not in runtime.containers

    def test_remove_tolerates_container_vanishing_before_stop(self, services, runtime):
        runtime.add_container('nodedash-app-x', running=True)
        runtime.stop_error = ContainerNotFound('No such container: nodedash-app-x')

        assert services.lifecycle.remove_container('nodedash-app-x') is False
        assert ('remove', 'nodedash-app-x') not in runtime.calls

    def test_restart_recreates_with_new_environment(self, services, runtime, make_app_record):
        app = make_app_record(env_vars='{"GREETING": "hello"}')
        services.lifecycle.start_app(app)
        runtime.calls.clear()

        repo = AppRepository(get_db)
        repo.update_fields(app.id, {'env_vars': '{"GREETING": "bonjour"}'})
        services.lifecycle.restart_app(repo.get_by_id(app.id))

        assert [call[0] for call in runtime.mutations] == ['stop', 'remove', 'create', 'start']
        spec = runtime.containers[app.container_name]['spec']
        assert 'GREETING=bonjour' in spec.environment

    def test_create_failure_propagates(self, services, runtime, make_app_record):
        app = make_app_record(container_status='stopped')
        runtime.create_error = UpstreamError('no such image')

        with pytest.raises(UpstreamError):
            services.lifecycle.start_app(app)


class TestEnvironment:
    def test_infra_variables_come_first(self, services, make_app_record):
        NodeInfoRepository(get_db).upsert('02abc', 'mainnet', '0.5.1', datetime.utcnow())
        app = make_app_record(env_vars='{"THEME": "dark"}')

        env = services.lifecycle.get_app_env_vars(app)

        assert env == [
            'PHOENIXD_DASHBOARD_URL=http://nodedash-backend:4000',
            'PHOENIXD_APP_API_KEY=phxapp_donations',
            'PHOENIXD_WEBHOOK_SECRET=donations-secret',
            'PHOENIXD_NODE_ID=02abc',
            'PHOENIXD_CHAIN=mainnet',
            'PHOENIXD_IS_EXTERNAL=false',
            'THEME=dark',
        ]

    def test_missing_node_info_is_omitted(self, services, make_app_record):
        env = services.lifecycle.get_app_env_vars(make_app_record())

        assert not any(entry.startswith('PHOENIXD_NODE_ID=') for entry in env)
        assert 'PHOENIXD_IS_EXTERNAL=false' in env

    def test_external_flag_follows_live_config(self, services, make_app_record):
        services.node_config.update('https://node.example.com', 'pw', is_external=True)

        env = services.lifecycle.get_app_env_vars(make_app_record())

        assert 'PHOENIXD_IS_EXTERNAL=true' in env

    def test_user_override_is_appended_after_infra_entry(self, services, make_app_record):
        app = make_app_record(env_vars='{"PHOENIXD_DASHBOARD_URL": "http://custom:9000"}')

        env = services.lifecycle.get_app_env_vars(app)

        infra = env.index('PHOENIXD_DASHBOARD_URL=http://nodedash-backend:4000')
        override = env.index('PHOENIXD_DASHBOARD_URL=http://custom:9000')
        assert override > infra
        assert override == len(env) - 1

    def test_malformed_user_env_is_ignored(self, services, runtime, make_app_record):
        app = make_app_record(env_vars='{not json', container_status='stopped')

        env = services.lifecycle.get_app_env_vars(app)
        assert len(env) == 4

        assert services.lifecycle.start_app(app) == 'created'

    def test_internal_url(self, services, make_app_record):
        app = make_app_record(internal_port=8080)
        assert services.lifecycle.get_app_internal_url(app) == 'http://nodedash-app-donations:8080'

    def test_internal_url_requires_container_name(self, services, make_app_record):
        app = make_app_record()
        app.container_name = None
        with pytest.raises(ValueError):
            services.lifecycle.get_app_internal_url(app)


class TestContainerStatus:
    @pytest.mark.parametrize('running,health,expected', [
        (True, 'healthy', ('running', 'healthy')),
        (True, 'starting', ('running', 'unhealthy')),
        (True, None, ('running', 'unknown')),
        (False, None, ('stopped', 'unknown')),
    ])
    def test_status_mapping(self, services, runtime, running, health, expected):
        runtime.add_container('c1', running=running, health=health)
        status = services.lifecycle.get_container_status('c1')
        assert (status.container_status, status.health_status) == expected

    def test_absent_container(self, services):
        status = services.lifecycle.get_container_status('missing')
        assert status.container_status == 'not_found'
        assert status.health_status == 'unknown'

    def test_runtime_error_is_swallowed(self, services, runtime):
        runtime.inspect_error = UpstreamError('daemon unreachable')
        status = services.lifecycle.get_container_status('c1')
        assert status.container_status == 'error'
        assert status.health_status == 'unhealthy'


class TestHealth:
    def test_not_running_app_is_unhealthy_without_request(self, services, make_app_record, monkeypatch):
        def fail_get(*args, **kwargs):
            raise AssertionError('should not be called')

        monkeypatch.setattr('nodedash.services.app_lifecycle.requests.get', fail_get)
        app = make_app_record(container_status='stopped')
        assert services.lifecycle.health_check(app) == 'unhealthy'

    def test_healthy_response(self, services, make_app_record, monkeypatch):
        seen = {}

        def fake_get(url, timeout=None, stream=False):
            seen['url'] = url
            seen['timeout'] = timeout
            return FakeResponse(200)

        monkeypatch.setattr('nodedash.services.app_lifecycle.requests.get', fake_get)
        assert services.lifecycle.health_check(make_app_record()) == 'healthy'
        assert seen == {'url': 'http://nodedash-app-donations:3000/health', 'timeout': 5}

    def test_error_status_and_timeout_are_unhealthy(self, services, make_app_record, monkeypatch):
        app = make_app_record()
        monkeypatch.setattr('nodedash.services.app_lifecycle.requests.get', lambda url, timeout=None, stream=False: FakeResponse(503))
        assert services.lifecycle.health_check(app) == 'unhealthy'

        def timeout_get(url, timeout=None, stream=False):
            raise requests.exceptions.Timeout('timed out')

        monkeypatch.setattr('nodedash.services.app_lifecycle.requests.get', timeout_get)
        assert services.lifecycle.health_check(app) == 'unhealthy'

    def test_sweep_isolates_failures(self, services, make_app_record, monkeypatch):
        good = make_app_record('good')
        broken = make_app_record('broken')
        slow = make_app_record('slow')
        make_app_record('idle', container_status='stopped')

        def fake_get(url, timeout=None, stream=False):
            if 'broken' in url:
                raise requests.exceptions.ConnectionError('refused')
            if 'slow' in url:
                raise requests.exceptions.Timeout('timed out')
            return FakeResponse(200)

        monkeypatch.setattr('nodedash.services.app_lifecycle.requests.get', fake_get)

        results = services.lifecycle.update_all_health_statuses()

        assert results == {good.id: 'healthy', broken.id: 'unhealthy', slow.id: 'unhealthy'}
        repo = AppRepository(get_db)
        assert repo.get_by_id(good.id).health_status == 'healthy'
        assert repo.get_by_id(good.id).last_health_check is not None
        assert repo.get_by_id(broken.id).health_status == 'unhealthy'

    def test_slow_body_does_not_hold_the_check(self, services, make_app_record, trickle_server, monkeypatch):
        monkeypatch.setattr(services.lifecycle, 'get_app_internal_url', lambda target: trickle_server)
        monkeypatch.setattr(services.lifecycle, '_health_timeout', 1)

        started = time.monotonic()
        assert services.lifecycle.health_check(make_app_record()) == 'healthy'
        assert time.monotonic() - started < 1

    def test_sweep_probes_every_app_at_once(self, services, make_app_record, monkeypatch):
        for i in range(10):
            make_app_record(f'app{i}')

        def slow_get(url, timeout=None, stream=False):
            time.sleep(0.5)
            return FakeResponse(200)

        monkeypatch.setattr('nodedash.services.app_lifecycle.requests.get', slow_get)

        started = time.monotonic()
        results = services.lifecycle.update_all_health_statuses()
        assert len(results) == 10
        assert time.monotonic() - started < 0.9

    def test_sweep_skips_while_previous_run_active(self, services, make_app_record):
        make_app_record()
        lock = services.lifecycle._sweep_lock
        lock.acquire()
        try:
            assert services.lifecycle.update_all_health_statuses() is None
        finally:
            lock.release()


class TestImagesAndLogs:
    def test_resolve_image(self):
        assert resolve_image('example/app', '2.0') == 'example/app:2.0'
        assert resolve_image('example/app:edge', '2.0') == 'example/app:edge'
        assert resolve_image('example/app', None) == 'example/app:latest'

    def test_pull_docker_image(self, services, runtime):
        assert services.lifecycle.pull_image('docker_image', 'example/app', '1.0') == 'example/app:1.0'
        assert ('pull', 'example/app:1.0') in runtime.calls

    def test_pull_github_is_not_supported(self, services, runtime):
        with pytest.raises(NotSupportedError):
            services.lifecycle.pull_image('github', 'https://github.com/org/app', 'main')
        assert not any(call[0] == 'pull' for call in runtime.calls)

    def test_pull_unknown_source_type(self, services):
        with pytest.raises(ValidationError):
            services.lifecycle.pull_image('ftp', 'example/app')

    def test_get_logs_demultiplexes(self, services, runtime):
        runtime.add_container('c1')
        runtime.log_buffers['c1'] = b'\x01\x00\x00\x00\x00\x00\x00\x03hi\n'
        assert services.lifecycle.get_logs('c1') == 'hi\n'

    def test_list_app_containers(self, services, runtime):
        runtime.add_container('nodedash-app-donations', labels={'nodedash-app': 'true', 'nodedash-app.id': '7'})

        containers = services.lifecycle.list_app_containers()

        assert containers == [{
            'id': 'nodedash-app',
            'name': 'nodedash-app-donations',
            'status': 'running',
            'app_id': '7',
        }]
        assert runtime.calls[-1] == ('list', {'label': 'nodedash-app=true'})


def test_container_locks_are_per_name():
    locks = ContainerLocks()
    assert locks.for_name('a') is locks.for_name('a')
    assert locks.for_name('a') is not locks.for_name('b')
