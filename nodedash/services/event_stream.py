from __future__ import annotations

import base64
import json
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

import websocket

from nodedash.services.node_client import NodeClientConfig
from nodedash.services.webhook_dispatcher import EVENT_PAYMENT_RECEIVED, WebhookDispatcher

logger = logging.getLogger(__name__)


def websocket_url(http_url: str) -> str:
    """Map the backend's HTTP base URL onto its event websocket."""
    base = http_url.rstrip('/')
    if base.startswith('https://'):
        base = 'wss://' + base[len('https://'):]
    elif base.startswith('http://'):
        base = 'ws://' + base[len('http://'):]
    return f"{base}/websocket"


def basic_auth_header(password: str) -> str:
    token = base64.b64encode(f":{password or ''}".encode('utf-8')).decode('ascii')
    return f"Authorization: Basic {token}"


def payment_received_payload(event: Dict[str, Any], received_at: Optional[int] = None) -> Dict[str, Any]:
    return {
        'paymentHash': event.get('paymentHash') or '',
        'amountSat': event.get('amountSat') or 0,
        'description': event.get('description'),
        'externalId': event.get('externalId'),
        'receivedAt': received_at if received_at is not None else int(time.time() * 1000),
        'payerKey': event.get('payerKey'),
        'payerNote': event.get('payerNote'),
    }


class EventStreamSubscriber:
    """Follow the node's payment websocket and turn events into webhooks.

    The socket runs on a daemon thread. A closed socket is reopened after
    ``reconnect_seconds`` unless the subscriber was stopped or a newer
    connection superseded it.
    """

    def __init__(
        self,
        config: NodeClientConfig,
        dispatcher: WebhookDispatcher,
        reconnect_seconds: int = 5,
        ws_factory: Callable[..., Any] = websocket.WebSocketApp,
    ):
        self._config = config
        self._dispatcher = dispatcher
        self._reconnect_seconds = reconnect_seconds
        self._ws_factory = ws_factory
        self._lock = threading.RLock()
        self._ws = None
        self._generation = 0
        self._started = False
        self._timer: Optional[threading.Timer] = None

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._started = True
            self._connect_locked()

    def stop(self) -> None:
        with self._lock:
            self._started = False
            self._generation += 1
            self._cancel_timer_locked()
            ws, self._ws = self._ws, None
        if ws is not None:
            ws.close()

    def reconnect(self) -> None:
        """Drop the current socket and connect with the current configuration."""
        with self._lock:
            if not self._started:
                logger.debug("Event stream not started; nothing to reconnect")
                return
            logger.info("Forcing event stream reconnection")
            self._cancel_timer_locked()
            old = self._ws
            self._connect_locked()
        if old is not None:
            old.close()

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _connect_locked(self) -> None:
        self._generation += 1
        generation = self._generation
        snapshot = self._config.snapshot()
        url = websocket_url(snapshot.url)
        logger.info(
            "Connecting to node event stream at %s (%s)",
            url, 'external' if snapshot.is_external else 'docker',
        )
        ws = self._ws_factory(
            url,
            header=[basic_auth_header(snapshot.password)],
            on_open=lambda _ws: logger.info("Connected to node event stream"),
            on_message=lambda _ws, message: self.handle_message(message),
            on_error=lambda _ws, error: logger.error("Event stream error: %s", error),
        )
        self._ws = ws
        thread = threading.Thread(
            target=self._run,
            args=(ws, generation),
            name=f'event-stream-{generation}',
            daemon=True,
        )
        thread.start()

    def _run(self, ws, generation: int) -> None:
        try:
            ws.run_forever()
        except Exception as e:
            logger.error("Event stream connection failed: %s", e)
        logger.info("Disconnected from node event stream")
        self._schedule_reconnect(generation)

    def _schedule_reconnect(self, generation: int) -> None:
        with self._lock:
            if not self._started or generation != self._generation:
                return
            logger.info("Reconnecting event stream in %ss", self._reconnect_seconds)
            timer = threading.Timer(self._reconnect_seconds, self._reconnect_if_current, args=(generation,))
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _reconnect_if_current(self, generation: int) -> None:
        with self._lock:
            if not self._started or generation != self._generation:
                return
            self._timer = None
            self._connect_locked()

    def handle_message(self, message) -> None:
        try:
            if isinstance(message, bytes):
                message = message.decode('utf-8')
            event = json.loads(message)
            if not isinstance(event, dict):
                return
            if event.get('type') == EVENT_PAYMENT_RECEIVED:
                self._dispatcher.emit(EVENT_PAYMENT_RECEIVED, payment_received_payload(event))
        except Exception as e:
            logger.error("Error processing node event: %s", e)
