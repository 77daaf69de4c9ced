"""List/watch loop feeding Kubernetes resource events to a handler."""

from __future__ import annotations

import logging
from threading import Event, Thread
from typing import Callable, Dict, Mapping, Optional

from frr_k8s.exceptions import FRRK8sError
from frr_k8s.resources import NODE_LABEL
from frr_k8s.selector import format_selector

from ..events import ADDED, NODE_STATE_KIND, SESSION_STATE_KIND, WatchEvent
from ..kube import FRR_NODE_STATES_PATH, KubeClient, session_states_path

LOG = logging.getLogger(__name__)

EventHandler = Callable[[WatchEvent], None]


class ResourceWatcher(Thread):
    """Watch one collection and publish every change to ``handler``.

    The collection is listed first so that objects created while we were not
    watching still produce an event, then watched from the list's resource
    version.  Any error restarts the cycle after ``retry_interval``.
    """

    def __init__(
        self,
        client: KubeClient,
        path: str,
        kind: str,
        handler: EventHandler,
        stop_event: Event,
        params: Optional[Mapping[str, str]] = None,
        retry_interval: float = 5.0,
        watch_timeout: int = 300,
    ) -> None:
        super().__init__(daemon=True, name=f"watch-{kind}")
        self._client = client
        self._path = path
        self._kind = kind
        self._handler = handler
        self._stop_event = stop_event
        self._params: Dict[str, str] = dict(params or {})
        self._retry_interval = retry_interval
        self._watch_timeout = watch_timeout

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.poll()
            except FRRK8sError as exc:
                LOG.warning("%s watch failed: %s", self._kind, exc)
                self._stop_event.wait(self._retry_interval)
            except Exception:
                LOG.exception("%s watcher encountered an error", self._kind)
                self._stop_event.wait(self._retry_interval)

    def poll(self) -> None:
        """Run a single list + watch cycle."""

        listing = self._client.get(self._path, self._params)
        for item in listing.get("items") or []:
            self._handler(WatchEvent.from_object(ADDED, self._kind, item))

        params = dict(self._params)
        version = (listing.get("metadata") or {}).get("resourceVersion")
        if version:
            params["resourceVersion"] = str(version)
        for event in self._client.watch(self._path, params, self._watch_timeout):
            if self._stop_event.is_set():
                return
            event_type = str(event.get("type", ""))
            obj = event.get("object") or {}
            if event_type == "ERROR":
                LOG.info("%s watch expired: %s", self._kind, obj.get("message", obj))
                return
            if event_type == "BOOKMARK":
                continue
            self._handler(WatchEvent.from_object(event_type, self._kind, obj))


def session_state_watcher(
    client: KubeClient,
    namespace: str,
    node_name: str,
    handler: EventHandler,
    stop_event: Event,
) -> ResourceWatcher:
    return ResourceWatcher(
        client,
        session_states_path(namespace),
        SESSION_STATE_KIND,
        handler,
        stop_event,
        params={"labelSelector": format_selector({NODE_LABEL: node_name})},
    )


def node_state_watcher(
    client: KubeClient,
    node_name: str,
    handler: EventHandler,
    stop_event: Event,
) -> ResourceWatcher:
    return ResourceWatcher(
        client,
        FRR_NODE_STATES_PATH,
        NODE_STATE_KIND,
        handler,
        stop_event,
        params={"fieldSelector": f"metadata.name={node_name}"},
    )
