from __future__ import annotations

import hashlib
import hmac
import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import requests

from nodedash.models import App, CONTAINER_RUNNING
from nodedash.repositories import AppRepository, WebhookLogRepository
from nodedash.services.app_lifecycle import AppLifecycleService
from nodedash.services.base import NotFoundError, WebhookDeliveryError
from nodedash.utils.http import read_within_deadline

logger = logging.getLogger(__name__)

EVENT_PAYMENT_RECEIVED = 'payment_received'
EVENT_PAYMENT_SENT = 'payment_sent'
EVENT_CHANNEL_OPENED = 'channel_opened'
EVENT_CHANNEL_CLOSED = 'channel_closed'

WEBHOOK_EVENTS = [
    {'id': EVENT_PAYMENT_RECEIVED, 'name': 'Payment Received', 'description': 'Triggered when a payment is received'},
    {'id': EVENT_PAYMENT_SENT, 'name': 'Payment Sent', 'description': 'Triggered when a payment is sent'},
    {'id': EVENT_CHANNEL_OPENED, 'name': 'Channel Opened', 'description': 'Triggered when a channel is opened'},
    {'id': EVENT_CHANNEL_CLOSED, 'name': 'Channel Closed', 'description': 'Triggered when a channel is closed'},
]
WEBHOOK_EVENT_IDS = [event['id'] for event in WEBHOOK_EVENTS]

RESPONSE_MAX_LENGTH = 500
STATS_WINDOW = 100
DEFAULT_WEBHOOK_PATH = '/webhook'


def sign_payload(body: Union[str, bytes], secret: str) -> str:
    """Hex HMAC-SHA256 of the exact request body."""
    if isinstance(body, str):
        body = body.encode('utf-8')
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def parse_event_list(raw: Optional[str]) -> Optional[List[str]]:
    """Decode an app's subscribed events; ``None`` when the value is unusable."""
    if not raw:
        return []
    try:
        events = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(events, list) or not all(isinstance(event, str) for event in events):
        return None
    return events


@dataclass
class DeliveryResult:
    success: bool
    status_code: Optional[int]
    response: Optional[str]
    latency_ms: int
    error: Optional[str] = None


class WebhookDispatcher:
    """Sign and deliver domain events to subscribed apps.

    Delivery is at most once per dispatch: a failed attempt is logged and
    reported but never retried.
    """

    def __init__(
        self,
        app_repo: AppRepository,
        log_repo: WebhookLogRepository,
        lifecycle: AppLifecycleService,
        *,
        timeout: int = 10,
        max_workers: int = 64,
        retention_days: int = 30,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._app_repo = app_repo
        self._log_repo = log_repo
        self._lifecycle = lifecycle
        self._timeout = timeout
        self._max_workers = max_workers
        self._retention_days = retention_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._emit_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix='webhook-emit')
        self._cleanup_lock = threading.Lock()

    def shutdown(self, wait: bool = False) -> None:
        self._emit_executor.shutdown(wait=wait)

    # Fan-out

    def _subscribers(self, event_type: str) -> List[App]:
        subscribers = []
        for app in self._app_repo.list_enabled_running():
            events = parse_event_list(app.webhook_events)
            if events is None:
                logger.warning("Skipping %s: webhook events are malformed", app.slug)
                continue
            if event_type in events:
                subscribers.append(app)
        return subscribers

    def dispatch_webhook(self, event_type: str, data: Dict[str, Any]) -> int:
        """Deliver ``event_type`` to every subscriber and wait for all attempts.

        Returns the number of attempts made. Individual failures are logged and
        never raised.
        """
        apps = self._subscribers(event_type)
        if not apps:
            logger.debug("No apps subscribed to %s", event_type)
            return 0

        logger.info("Dispatching %s to %s app(s)", event_type, len(apps))
        with ThreadPoolExecutor(max_workers=max(1, min(self._max_workers, len(apps)))) as executor:
            futures = {executor.submit(self.send_webhook_to_app, app, event_type, data): app for app in apps}
            for future in as_completed(futures):
                app = futures[future]
                try:
                    future.result()
                except WebhookDeliveryError as e:
                    logger.warning("Webhook %s to %s failed: %s", event_type, app.slug, e)
                except Exception as e:
                    logger.error("Webhook %s to %s errored: %s", event_type, app.slug, e)
        return len(apps)

    def emit(self, event_type: str, data: Dict[str, Any]) -> Future:
        """Queue a dispatch and return immediately."""
        return self._emit_executor.submit(self._dispatch_quietly, event_type, data)

    def _dispatch_quietly(self, event_type: str, data: Dict[str, Any]) -> int:
        try:
            return self.dispatch_webhook(event_type, data)
        except Exception:
            logger.exception("Error dispatching %s webhooks", event_type)
            return 0

    def dispatch_payment_received(self, data: Dict[str, Any]) -> int:
        return self.dispatch_webhook(EVENT_PAYMENT_RECEIVED, data)

    def dispatch_payment_sent(self, data: Dict[str, Any]) -> int:
        return self.dispatch_webhook(EVENT_PAYMENT_SENT, data)

    def dispatch_channel_opened(self, data: Dict[str, Any]) -> int:
        return self.dispatch_webhook(EVENT_CHANNEL_OPENED, data)

    def dispatch_channel_closed(self, data: Dict[str, Any]) -> int:
        return self.dispatch_webhook(EVENT_CHANNEL_CLOSED, data)

    # Single delivery

    def send_webhook_to_app(self, app: App, event_type: str, data: Dict[str, Any]) -> DeliveryResult:
        result = self._deliver(app, event_type, data)
        if not result.success:
            raise WebhookDeliveryError(result.error or 'Webhook delivery failed', result.status_code)
        return result

    def _deliver(self, app: App, event_type: str, data: Dict[str, Any]) -> DeliveryResult:
        timestamp = int(self._clock().timestamp() * 1000)
        body = json.dumps({'event': event_type, 'timestamp': timestamp, 'data': data}, separators=(',', ':'))
        headers = {
            'Content-Type': 'application/json',
            'X-Webhook-Event': event_type,
            'X-Webhook-Timestamp': str(timestamp),
            'X-App-Id': app.slug,
        }
        if app.webhook_secret:
            headers['X-Webhook-Signature'] = sign_payload(body, app.webhook_secret)

        status_code = None
        response_text = None
        error = None
        started = time.monotonic()
        try:
            url = self._lifecycle.get_app_internal_url(app) + (app.webhook_path or DEFAULT_WEBHOOK_PATH)
            response = requests.post(
                url,
                data=body.encode('utf-8'),
                headers=headers,
                timeout=self._timeout,
                stream=True,
            )
            try:
                content = read_within_deadline(response, started + self._timeout, RESPONSE_MAX_LENGTH)
            finally:
                response.close()
            status_code = response.status_code
            response_text = content.decode('utf-8', errors='replace')[:RESPONSE_MAX_LENGTH]
        except Exception as e:
            error = str(e)
            response_text = error[:RESPONSE_MAX_LENGTH]
        latency_ms = int((time.monotonic() - started) * 1000)
        success = status_code is not None and 200 <= status_code < 300
        if not success and error is None:
            error = f"Webhook failed with status {status_code}: {response_text}"

        try:
            self._log_repo.insert(
                app_id=app.id,
                event_type=event_type,
                payload=json.dumps(data),
                status_code=status_code,
                response=response_text,
                success=success,
                latency_ms=latency_ms,
                created_at=self._clock(),
            )
        except Exception as e:
            logger.error("Failed to log webhook for %s: %s", app.slug, e)

        return DeliveryResult(success, status_code, response_text, latency_ms, None if success else error)

    # Reporting

    def get_webhook_stats(self, app_id: int) -> Dict[str, Any]:
        logs = self._log_repo.list_for_app(app_id, limit=STATS_WINDOW)
        if not logs:
            return {'total': 0, 'successful': 0, 'failed': 0, 'avgLatencyMs': 0, 'lastWebhook': None}
        successful = sum(1 for log in logs if log.success)
        avg_latency = sum(log.latency_ms or 0 for log in logs) / len(logs)
        return {
            'total': len(logs),
            'successful': successful,
            'failed': len(logs) - successful,
            'avgLatencyMs': int(avg_latency + 0.5),
            'lastWebhook': logs[0].created_at,
        }

    def test_webhook(self, app_id: int) -> Dict[str, Any]:
        app = self._app_repo.get_by_id(app_id)
        if not app:
            raise NotFoundError('App not found')
        if app.container_status != CONTAINER_RUNNING:
            return {'success': False, 'status_code': None, 'latency_ms': 0, 'error': 'App is not running'}

        result = self._deliver(app, 'test', {'message': 'This is a test webhook from nodedash'})
        outcome = {'success': result.success, 'status_code': result.status_code, 'latency_ms': result.latency_ms}
        if not result.success:
            outcome['error'] = result.error
        return outcome

    def cleanup_old_webhook_logs(self) -> Optional[int]:
        """Delete logs past the retention window; ``None`` if a cleanup is in progress."""
        if not self._cleanup_lock.acquire(blocking=False):
            logger.info("Webhook log cleanup already running; skipping")
            return None
        try:
            cutoff = self._clock() - timedelta(days=self._retention_days)
            deleted = self._log_repo.delete_older_than(cutoff)
            logger.info("Cleaned up %s old webhook logs", deleted)
            return deleted
        finally:
            self._cleanup_lock.release()
