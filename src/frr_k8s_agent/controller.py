"""Drive the session-state reconciler from watch events."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import List, Optional

from frr_k8s.reconciler import ReconcileRequest, SessionStateReconciler
from frr_k8s.resources import NODE_LABEL

from .events import NODE_STATE_KIND, SESSION_STATE_KIND, WatchEvent
from .workqueue import WorkQueue

LOG = logging.getLogger(__name__)


class StatusController:
    """Queue reconcile requests for the local node and run them on workers.

    Every event maps to one of two requests, both keyed by the node name:
    status record events to ``(node, namespace)`` and events of the node's
    ``FRRNodeState`` to ``(node, "")``.  The latter is what makes the
    reconciler schedule its periodic resync.
    """

    def __init__(
        self,
        reconciler: SessionStateReconciler,
        stop_event: Event,
        workers: int = 1,
        queue: Optional[WorkQueue[ReconcileRequest]] = None,
    ) -> None:
        if workers < 1:
            raise ValueError("at least one worker is required")
        self._reconciler = reconciler
        self._stop_event = stop_event
        self._workers = workers
        self._queue: WorkQueue[ReconcileRequest] = (
            queue if queue is not None else WorkQueue()
        )
        self._threads: List[Thread] = []

    @property
    def queue(self) -> WorkQueue[ReconcileRequest]:
        return self._queue

    def accepts(self, event: WatchEvent) -> bool:
        node_name = self._reconciler.node_name
        if event.kind == SESSION_STATE_KIND:
            return bool(event.labels) and event.labels.get(NODE_LABEL) == node_name
        if event.kind == NODE_STATE_KIND:
            return event.name == node_name
        return False

    def request_for(self, event: WatchEvent) -> ReconcileRequest:
        if event.kind == NODE_STATE_KIND:
            return ReconcileRequest(name=event.name)
        return ReconcileRequest(
            name=self._reconciler.node_name, namespace=self._reconciler.namespace
        )

    def handle(self, event: WatchEvent) -> None:
        if not self.accepts(event):
            return
        LOG.debug("%s %s %s", event.type, event.kind, event.name)
        self._queue.add(self.request_for(event))

    def start(self) -> None:
        self._queue.add(
            ReconcileRequest(
                name=self._reconciler.node_name, namespace=self._reconciler.namespace
            )
        )
        for index in range(self._workers):
            thread = Thread(
                target=self._run_worker, name=f"status-worker-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)

    def stop(self) -> None:
        self._queue.shutdown()
        for thread in self._threads:
            thread.join()

    def _run_worker(self) -> None:
        while not self._stop_event.is_set():
            if not self.process_next(timeout=1.0) and self._queue.shutting_down:
                return

    def process_next(self, timeout: Optional[float] = None) -> bool:
        """Process one request; return ``False`` if none was available."""

        request = self._queue.get(timeout=timeout)
        if request is None:
            return False
        try:
            result = self._reconciler.reconcile(request)
        except Exception:
            LOG.exception(
                "reconcile %s failed (attempt %d), requeueing",
                request,
                self._queue.num_requeues(request) + 1,
            )
            self._queue.add_rate_limited(request)
        else:
            self._queue.forget(request)
            if result.requeue_after:
                self._queue.add_after(request, result.requeue_after)
        finally:
            self._queue.done(request)
        return True
