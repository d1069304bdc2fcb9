"""
Notification dispatcher.

The workflow hands every committed transition to a ``Notifier``. Emitting is
fire-and-forget: ``emit`` only schedules the work on the notifier's own
thread and returns, so a slow or hung Redis never holds the event loop or
the HTTP response. Whatever goes wrong later is logged and swallowed.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Mapping, Protocol

import redis
from fastapi import Request
from rq import Queue

from app.core.config import Settings

log = logging.getLogger(__name__)

HANDLER_PATH = "app.workers.rq_worker.handle_event"


class Notifier(Protocol):
    def emit(self, event_type: str, payload: Mapping[str, Any]) -> None: ...


class _BackgroundNotifier:
    # one worker thread keeps events in commit order
    def __init__(self, thread_name: str):
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=thread_name)

    def emit(self, event_type: str, payload: Mapping[str, Any]) -> None:
        self._executor.submit(self._dispatch, event_type, dict(payload))

    def _dispatch(self, event_type: str, payload: dict) -> None:
        raise NotImplementedError

    def close(self, wait: bool = True) -> None:
        """Stop accepting events; with ``wait`` drain what is already queued."""
        self._executor.shutdown(wait=wait)


class QueueNotifier(_BackgroundNotifier):
    """Puts events on the RQ queue consumed by ``app.workers.rq_worker``."""

    def __init__(self, redis_url: str, queue_name: str = "notifications"):
        super().__init__("notify-rq")
        self.redis_url = redis_url
        self.queue_name = queue_name
        self._queue: Queue | None = None

    def _get_queue(self) -> Queue:
        if self._queue is None:
            conn = redis.from_url(self.redis_url, socket_connect_timeout=2, socket_timeout=2)
            self._queue = Queue(self.queue_name, connection=conn)
        return self._queue

    def _dispatch(self, event_type: str, payload: dict) -> None:
        try:
            job = self._get_queue().enqueue(
                HANDLER_PATH,
                event_type,
                payload,
                job_timeout=60,
            )
            log.info("event_enqueued", extra={"event_type": event_type, "job_id": getattr(job, "id", None)})
        except Exception:
            log.exception("Failed to enqueue event '%s'", event_type)


class InlineNotifier(_BackgroundNotifier):
    """Runs the worker handler in-process (no Redis needed)."""

    def __init__(self):
        super().__init__("notify-inline")

    def _dispatch(self, event_type: str, payload: dict) -> None:
        _run_handler(event_type, payload)


class NullNotifier:
    def emit(self, event_type: str, payload: Mapping[str, Any]) -> None:
        log.info("event_dropped", extra={"event_type": event_type})


def _run_handler(event_type: str, payload: dict) -> None:
    from app.workers.rq_worker import handle_event

    try:
        handle_event(event_type, payload)
    except Exception:
        log.exception("Notification handler failed for '%s'", event_type)


def build_notifier(settings: Settings) -> Notifier:
    backend = (settings.notifications_backend or "").lower()
    if backend == "rq":
        return QueueNotifier(settings.redis_url, settings.notifications_queue)
    if backend == "inline":
        return InlineNotifier()
    return NullNotifier()


def close_notifier(notifier: Notifier) -> None:
    close = getattr(notifier, "close", None)
    if close is not None:
        close()


def get_notifier(request: Request) -> Notifier:
    return request.app.state.notifier
