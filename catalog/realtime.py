"""Realtime delivery of new notifications.

``NotificationBroadcaster`` keeps one bounded queue per open
``/api/notifications/stream`` connection, grouped by recipient. The database
layer calls :meth:`NotificationBroadcaster.publish` after every committed
notification; each open stream turns the queued payloads into Server-Sent
Events.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

from brpir import send_webhook

logger = logging.getLogger('brpir.realtime')

HEARTBEAT_SECONDS = 25
QUEUE_SIZE = 64

# Queued after a subscriber is dropped; ends its stream
_CLOSED = object()


def format_sse(event: str, data: Any) -> str:
    """Encode one Server-Sent Event frame."""
    payload = data if isinstance(data, str) else json.dumps(data)
    return f"event: {event}\ndata: {payload}\n\n"


class NotificationBroadcaster:
    """Fan-out of notification dicts to per-user subscriber queues."""

    def __init__(self, heartbeat: float = HEARTBEAT_SECONDS,
                 queue_size: int = QUEUE_SIZE) -> None:
        self._heartbeat = heartbeat
        self._queue_size = queue_size
        self._subscribers: Dict[str, List[queue.Queue]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str) -> queue.Queue:
        sub_queue: queue.Queue = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(sub_queue)
        return sub_queue

    def unsubscribe(self, user_id: str, sub_queue: queue.Queue) -> None:
        with self._lock:
            queues = self._subscribers.get(user_id, [])
            if sub_queue in queues:
                queues.remove(sub_queue)
            if not queues:
                self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    @staticmethod
    def _close_queue(sub_queue: queue.Queue) -> None:
        # Make room for the end-of-stream marker
        try:
            sub_queue.get_nowait()
        except queue.Empty:
            pass
        sub_queue.put_nowait(_CLOSED)

    def publish(self, notification: Dict[str, Any]) -> None:
        """Push *notification* to every stream open for its recipient.

        A subscriber whose queue is full is dropped and its stream ends, so
        the client reconnects and receives a fresh snapshot.
        """
        payload = json.dumps(notification)
        with self._lock:
            queues = self._subscribers.get(notification.get('user_id'), [])
            dead = []
            for sub_queue in queues:
                try:
                    sub_queue.put_nowait(payload)
                except queue.Full:
                    dead.append(sub_queue)
            for sub_queue in dead:
                queues.remove(sub_queue)
                self._close_queue(sub_queue)
                logger.warning("Dropped slow notification subscriber for %s",
                               notification.get('user_id'))

    def stream(self, user_id: str, sub_queue: queue.Queue,
               initial: Optional[Dict[str, Any]] = None) -> Iterator[str]:
        """Yield SSE frames for *sub_queue* until the client disconnects or
        the subscriber is dropped."""
        try:
            yield format_sse('snapshot', initial or {})
            while True:
                try:
                    payload = sub_queue.get(timeout=self._heartbeat)
                    if payload is _CLOSED:
                        return
                    yield format_sse('notification', payload)
                except queue.Empty:
                    yield format_sse('heartbeat', {})
        finally:
            self.unsubscribe(user_id, sub_queue)


def make_webhook_listener(url: str,
                          describe: Callable[[Dict[str, Any]], str]) -> Callable[[Dict[str, Any]], None]:
    """Build a notification listener forwarding a one-line message to *url*.

    Delivery runs on a daemon thread so the request that caused the
    notification is not delayed.
    """
    def _listener(notification: Dict[str, Any]) -> None:
        text = describe(notification)
        payload = {'content': text, 'text': text, 'notification': notification}
        threading.Thread(target=send_webhook, args=(url, payload), daemon=True).start()
    return _listener
