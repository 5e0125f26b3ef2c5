# Digital Totem Outbox
# Outbound sheet updates: queued, dispatched once, never retried

import itertools
import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field

from .config import SYNC_WORKERS
from .sheet import post_payload

logger = logging.getLogger(__name__)

QUEUED = 'queued'
IN_FLIGHT = 'in_flight'
SENT = 'sent'
LOST = 'lost'

_ids = itertools.count(1)


@dataclass
class OutboundUpdate:
    kind: str
    url: str
    payload: dict
    id: int = field(default_factory=lambda: next(_ids))
    state: str = QUEUED
    created_at: float = field(default_factory=time.time)
    settled_at: float = None


class Outbox:
    """Fire-and-forget delivery of sheet updates.

    Every update is popped from the queue before it is posted, so it is
    delivered at most once. Updates may be in flight concurrently; the
    pending count only reaches zero once all of them have settled.
    on_change(update) is called after an update starts and after it settles.
    """

    def __init__(self, client=None, max_workers=SYNC_WORKERS, on_change=None, settled_limit=50):
        self.client = client
        self.on_change = on_change
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='totem-sync')
        self._lock = threading.Lock()
        self._queue = deque()
        self._futures = set()
        self._pending = 0
        self.settled = deque(maxlen=settled_limit)

    @property
    def pending(self):
        with self._lock:
            return self._pending

    def send(self, kind, url, payload):
        """Queue an update and dispatch it right away. Returns its future."""
        update = OutboundUpdate(kind=kind, url=url, payload=payload)
        with self._lock:
            self._queue.append(update)
        return self._dispatch_next()

    def _dispatch_next(self):
        with self._lock:
            if not self._queue:
                return None
            update = self._queue.popleft()
            update.state = IN_FLIGHT
            self._pending += 1

        self._notify(update)

        try:
            future = self._executor.submit(self._deliver, update)
        except RuntimeError:
            # Executor already shut down
            self._settle(update, False)
            raise
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return future

    def _deliver(self, update):
        delivered = False
        try:
            delivered = post_payload(update.url, update.payload, client=self.client)
        finally:
            self._settle(update, delivered)
        return update

    def _settle(self, update, delivered):
        with self._lock:
            self._pending -= 1
            update.state = SENT if delivered else LOST
            update.settled_at = time.time()
            self.settled.append(update)

        if delivered:
            logger.info(f"Sent {update.kind} update #{update.id}")
        else:
            logger.warning(f"Lost {update.kind} update #{update.id}")

        self._notify(update)

    def _forget(self, future):
        with self._lock:
            self._futures.discard(future)

    def _notify(self, update):
        if self.on_change is None:
            return
        try:
            self.on_change(update)
        except Exception:
            logger.exception(f"Outbox listener failed for update #{update.id}")

    def wait(self, timeout=None):
        """Block until everything currently in flight has settled"""
        with self._lock:
            futures = list(self._futures)
        done, not_done = wait_futures(futures, timeout=timeout)
        return not not_done

    def shutdown(self, wait=True):
        self._executor.shutdown(wait=wait)
