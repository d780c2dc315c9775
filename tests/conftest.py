"""
Pytest fixtures for nodedash tests
"""
import os
import tempfile
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

from nodedash.services.base import UpstreamError
from nodedash.services.container_runtime import ContainerNotFound, ContainerRuntime, ExecResult
from nodedash.services.node_client import NodeClientConfig, PhoenixdClient

DEFAULT_NODE_URL = 'http://phoenixd:9740'


class FakeRuntime(ContainerRuntime):
    """In-memory container runtime recording every call."""

    def __init__(self):
        self.containers = {}
        self.calls = []
        self.log_buffers = {}
        self.inspect_error = None
        self.create_error = None
        self.stop_error = None

    @property
    def mutations(self):
        return [call for call in self.calls if call[0] in ('create', 'start', 'stop', 'remove')]

    def add_container(self, name, running=True, health=None, labels=None):
        self.containers[name] = {'running': running, 'health': health, 'labels': labels or {}, 'spec': None}

    def _require(self, name):
        if name not in self.containers:
            raise ContainerNotFound(f"No such container: {name}")
        return self.containers[name]

    def ping(self):
        return True

    def list(self, filters=None):
        self.calls.append(('list', filters))
        result = []
        for name, container in self.containers.items():
            result.append({
                'Id': f'{name}-0123456789abcdef',
                'Names': [f'/{name}'],
                'State': 'running' if container['running'] else 'exited',
                'Labels': container['labels'],
            })
        return result

    def inspect(self, name):
        self.calls.append(('inspect', name))
        if self.inspect_error is not None:
            raise self.inspect_error
        container = self._require(name)
        state = {'Running': container['running']}
        if container['health']:
            state['Health'] = {'Status': container['health']}
        return {'Name': f'/{name}', 'State': state}

    def create(self, spec):
        self.calls.append(('create', spec.name))
        if self.create_error is not None:
            raise self.create_error
        self.containers[spec.name] = {'running': False, 'health': None, 'labels': spec.labels, 'spec': spec}
        return f'{spec.name}-id'

    def start(self, name):
        self.calls.append(('start', name))
        self._require(name)['running'] = True

    def stop(self, name, grace_seconds=10):
        self.calls.append(('stop', name))
        if self.stop_error is not None:
            raise self.stop_error
        self._require(name)['running'] = False

    def remove(self, name, force=False):
        self.calls.append(('remove', name))
        self._require(name)
        del self.containers[name]

    def pull(self, image, on_progress=None):
        self.calls.append(('pull', image))
        if on_progress is not None:
            on_progress({'status': 'Downloaded newer image'})

    def logs(self, name, tail=100, follow=False):
        self.calls.append(('logs', name))
        self._require(name)
        return self.log_buffers.get(name, b'')

    def exec(self, name, cmd):
        self.calls.append(('exec', name))
        self._require(name)
        return ExecResult(exit_code=0, output=b'')


class FakeNodeClient(PhoenixdClient):
    """Node client whose probe answers from a table instead of HTTP."""

    def __init__(self, config):
        super().__init__(config, timeout=1)
        self.failing_urls = set()
        self.node_ids = {}
        self.probes = []

    def test_connection(self, url, password):
        self.probes.append(url)
        if url in self.failing_urls:
            raise UpstreamError("Connection failed: 401 - Unauthorized")
        return {
            'node_id': self.node_ids.get(url, f'node-{url.rsplit(":", 1)[-1]}'),
            'chain': 'mainnet',
            'version': '0.5.1',
        }


class FakeResponse:
    def __init__(self, status_code=200, text='ok', payload=None):
        self.status_code = status_code
        self.text = text
        self._payload = payload

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def iter_content(self, chunk_size=1):
        content = self.text.encode('utf-8')
        for start in range(0, len(content), chunk_size):
            yield content[start:start + chunk_size]

    def close(self):
        self.closed = True

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON')
        return self._payload


@pytest.fixture
def app():
    """Create application for testing"""
    # Use a temporary database for tests
    db_fd, db_path = tempfile.mkstemp(suffix='.db')
    previous_path = os.environ.get('DATABASE_PATH')
    os.environ['DATABASE_PATH'] = db_path

    from nodedash import create_app
    from nodedash.config import TestingConfig
    from nodedash.db import init_db

    init_db()

    runtime = FakeRuntime()
    node_client = FakeNodeClient(NodeClientConfig(DEFAULT_NODE_URL, 'docker-password'))
    flask_app = create_app(TestingConfig, runtime=runtime, node_client=node_client)

    yield flask_app

    # Cleanup
    flask_app.extensions['nodedash'].dispatcher.shutdown(wait=True)
    if previous_path is None:
        os.environ.pop('DATABASE_PATH', None)
    else:
        os.environ['DATABASE_PATH'] = previous_path
    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """Create a test client"""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['nodedash']


@pytest.fixture
def runtime(services):
    return services.runtime


@pytest.fixture
def node_client(services):
    return services.node_client


@pytest.fixture
def make_app_record(app):
    """Insert an app row and return the stored App."""
    from nodedash.db import get_db
    from nodedash.repositories import AppRepository

    repo = AppRepository(get_db)

    def _make(slug='donations', **overrides):
        fields = {
            'name': slug.title(),
            'slug': slug,
            'source_type': 'docker_image',
            'source_url': f'example/{slug}',
            'version': 'latest',
            'container_name': f'nodedash-app-{slug}',
            'internal_port': 3000,
            'webhook_secret': f'{slug}-secret',
            'webhook_path': '/webhook',
            'api_key': f'phxapp_{slug}',
            'api_permissions': '["read:balance", "read:payments"]',
            'webhook_events': '["payment_received"]',
            'container_status': 'running',
        }
        fields.update(overrides)
        app_id = repo.create(**fields)
        return repo.get_by_id(app_id)

    return _make


class TrickleHandler(BaseHTTPRequestHandler):
    """Answers 200 with headers at once, then one body byte per interval."""

    body_bytes = 10
    interval = 0.3

    def _trickle(self):
        self.send_response(200)
        self.send_header('Content-Type', 'text/plain')
        self.send_header('Content-Length', str(self.body_bytes))
        self.end_headers()
        try:
            for _ in range(self.body_bytes):
                time.sleep(self.interval)
                self.wfile.write(b'x')
                self.wfile.flush()
        except OSError:
            # client hung up
            pass

    def do_GET(self):
        self._trickle()

    def do_POST(self):
        self.rfile.read(int(self.headers.get('Content-Length') or 0))
        self._trickle()

    def log_message(self, format, *args):
        pass


@pytest.fixture
def trickle_server(monkeypatch):
    """Base URL of a local server that sends its response body slowly."""
    monkeypatch.setenv('NO_PROXY', '127.0.0.1')
    monkeypatch.setenv('no_proxy', '127.0.0.1')
    server = ThreadingHTTPServer(('127.0.0.1', 0), TrickleHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    yield f"http://127.0.0.1:{server.server_address[1]}"

    server.shutdown()
    server.server_close()
