from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from nodedash.services.base import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeConfig:
    url: str
    password: str
    is_external: bool = False


class NodeClientConfig:
    """Live backend configuration shared by the node client and event stream.

    Only the connection manager mutates it; everyone else reads snapshots.
    """

    def __init__(self, default_url: str, default_password: str = ''):
        self._default_url = default_url
        self._default_password = default_password or ''
        self._lock = threading.Lock()
        self._config = NodeConfig(url=default_url, password=self._default_password, is_external=False)

    def snapshot(self) -> NodeConfig:
        with self._lock:
            return self._config

    def update(self, url: Optional[str], password: Optional[str], is_external: bool) -> NodeConfig:
        config = NodeConfig(
            url=url or self._default_url,
            password=password or self._default_password,
            is_external=bool(is_external),
        )
        with self._lock:
            self._config = config
        logger.info("Node backend configuration updated: %s (%s)", config.url, 'external' if config.is_external else 'docker')
        return config

    def public_view(self) -> Dict[str, object]:
        config = self.snapshot()
        return {
            'url': config.url,
            'has_password': bool(config.password),
            'is_external': config.is_external,
        }


class PhoenixdClient:
    """Minimal HTTP client for the Lightning node backend."""

    def __init__(self, config: NodeClientConfig, timeout: int = 10):
        self._config = config
        self._timeout = timeout

    @property
    def config(self) -> NodeClientConfig:
        return self._config

    def test_connection(self, url: str, password: Optional[str]) -> Dict[str, Optional[str]]:
        """Probe ``url`` for the node identity; raise UpstreamError on any failure."""
        try:
            response = requests.get(
                f"{url.rstrip('/')}/getinfo",
                auth=('', password or ''),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(f"Connection failed: {exc}") from exc

        if not response.ok:
            raise UpstreamError(f"Connection failed: {response.status_code} - {response.text}")

        try:
            info = response.json()
        except ValueError as exc:
            raise UpstreamError("Connection failed: invalid response from node") from exc

        node_id = info.get('nodeId') if isinstance(info, dict) else None
        if not node_id:
            raise UpstreamError("Connection failed: response did not include a node id")

        return {
            'node_id': node_id,
            'chain': info.get('chain'),
            'version': info.get('version'),
        }

    def get_info(self) -> Dict[str, Optional[str]]:
        config = self._config.snapshot()
        return self.test_connection(config.url, config.password)

    def _get(self, path: str) -> Any:
        config = self._config.snapshot()
        try:
            response = requests.get(
                f"{config.url.rstrip('/')}{path}",
                auth=('', config.password or ''),
                timeout=self._timeout,
            )
        except requests.exceptions.RequestException as exc:
            raise UpstreamError(f"Node request failed: {exc}") from exc

        if not response.ok:
            raise UpstreamError(f"Node request failed: {response.status_code} - {response.text}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("Node returned an invalid response") from exc

    def get_node_summary(self) -> Dict[str, Any]:
        info = self._get('/getinfo')
        if not isinstance(info, dict):
            raise UpstreamError("Node returned an invalid response")
        return {
            'nodeId': info.get('nodeId'),
            'channelCount': len(info.get('channels') or []),
        }

    def get_balance(self) -> Any:
        return self._get('/getbalance')

    def list_channels(self) -> Any:
        return self._get('/listchannels')
