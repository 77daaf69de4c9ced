"""Minimal Kubernetes REST client and the accessors built on top of it.

Only the handful of calls the agent needs are implemented: listing nodes and
``FRRConfiguration`` fragments for the admission validator, and
list/create/patch/delete of ``BGPSessionState`` records for the status
reconciler.  Every request carries the configured timeout, so a stuck API
server surfaces as an error instead of blocking a worker forever.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Iterator, List, Mapping, Optional

import httpx

from frr_k8s.exceptions import ApiError, InventoryUnavailable, NotFound
from frr_k8s.interfaces import Inventory, StatusStore
from frr_k8s.resources import (
    ConfigFragment,
    Node,
    OwnerReference,
    SessionStatusRecord,
)
from frr_k8s.selector import format_selector

from .config import KubeConfig

LOG = logging.getLogger(__name__)

GROUP_VERSION = "frrk8s.metallb.io/v1beta1"
API_PREFIX = f"/apis/{GROUP_VERSION}"

NODES_PATH = "/api/v1/nodes"
FRR_CONFIGURATIONS_PATH = f"{API_PREFIX}/frrconfigurations"
FRR_NODE_STATES_PATH = f"{API_PREFIX}/frrnodestates"

MERGE_PATCH = "application/merge-patch+json"


def session_states_path(namespace: str) -> str:
    return f"{API_PREFIX}/namespaces/{namespace}/bgpsessionstates"


def _error_reason(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("reason") or body)
    return str(body)


class KubeClient:
    """Thin JSON wrapper around :class:`httpx.Client`."""

    def __init__(self, client: httpx.Client) -> None:
        self._client = client

    @classmethod
    def from_config(cls, config: KubeConfig) -> "KubeClient":
        base_url = config.api_server
        if not base_url:
            host = os.environ.get("KUBERNETES_SERVICE_HOST")
            port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
            if not host:
                raise ValueError(
                    "no API server configured and not running inside a cluster"
                )
            if ":" in host:
                host = f"[{host}]"
            base_url = f"https://{host}:{port}"

        headers = {"Accept": "application/json"}
        if config.token_file and config.token_file.exists():
            token = config.token_file.read_text().strip()
            headers["Authorization"] = f"Bearer {token}"

        verify: Any = config.verify
        if config.verify and config.ca_file and config.ca_file.exists():
            verify = str(config.ca_file)

        client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=config.timeout,
            verify=verify,
        )
        return cls(client)

    def close(self) -> None:
        self._client.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, str]] = None,
        body: Optional[Mapping[str, Any]] = None,
        content_type: str = "application/json",
    ) -> Dict[str, Any]:
        content = None
        headers = {}
        if body is not None:
            content = json.dumps(body)
            headers["Content-Type"] = content_type
        try:
            response = self._client.request(
                method, path, params=params, content=content, headers=headers
            )
        except httpx.HTTPError as exc:
            raise ApiError(0, f"{method} {path}: {exc}") from exc

        if response.status_code == 404:
            raise NotFound(f"{method} {path}: {_error_reason(response)}")
        if response.status_code >= 400:
            raise ApiError(response.status_code, _error_reason(response))
        if not response.content:
            return {}
        return response.json()

    def get(self, path: str, params: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        return self.request("GET", path, params=params)

    def list(self, path: str, params: Optional[Mapping[str, str]] = None) -> List[Dict[str, Any]]:
        return list(self.get(path, params).get("items") or [])

    def watch(
        self,
        path: str,
        params: Optional[Mapping[str, str]] = None,
        timeout_seconds: int = 300,
    ) -> Iterator[Dict[str, Any]]:
        """Yield watch events (``{"type": ..., "object": ...}``) for ``path``.

        The server ends the stream after ``timeout_seconds``; callers are
        expected to list again and restart the watch.
        """

        query = dict(params or {})
        query["watch"] = "true"
        query["timeoutSeconds"] = str(timeout_seconds)
        timeout = httpx.Timeout(self._client.timeout.connect, read=timeout_seconds + 30)
        try:
            with self._client.stream("GET", path, params=query, timeout=timeout) as response:
                if response.status_code >= 400:
                    response.read()
                    raise ApiError(response.status_code, _error_reason(response))
                for line in response.iter_lines():
                    if not line.strip():
                        continue
                    yield json.loads(line)
        except httpx.HTTPError as exc:
            raise ApiError(0, f"watch {path}: {exc}") from exc


def get_pod(client: KubeClient, namespace: str, name: str) -> Dict[str, Any]:
    return client.get(f"/api/v1/namespaces/{namespace}/pods/{name}")


class KubeInventory(Inventory):
    """Nodes and ``FRRConfiguration`` fragments read from the API."""

    def __init__(self, client: KubeClient) -> None:
        self._client = client

    def list_nodes(self) -> List[Node]:
        try:
            items = self._client.list(NODES_PATH)
        except (ApiError, NotFound) as exc:
            raise InventoryUnavailable(
                f"failed to get existing Node objects: {exc}"
            ) from exc
        return [Node.from_dict(item) for item in items]

    def list_fragments(self) -> List[ConfigFragment]:
        try:
            items = self._client.list(FRR_CONFIGURATIONS_PATH)
        except (ApiError, NotFound) as exc:
            raise InventoryUnavailable(
                f"failed to get existing FRRConfiguration objects: {exc}"
            ) from exc
        return [ConfigFragment.from_dict(item) for item in items]


class KubeStatusStore(StatusStore):
    """``BGPSessionState`` records of one namespace."""

    def __init__(self, client: KubeClient, namespace: str) -> None:
        self._client = client
        self._namespace = namespace
        self._path = session_states_path(namespace)

    def list(self, labels: Mapping[str, str]) -> List[SessionStatusRecord]:
        params = {"labelSelector": format_selector(labels)} if labels else None
        return [
            SessionStatusRecord.from_dict(item)
            for item in self._client.list(self._path, params)
        ]

    def delete(self, record: SessionStatusRecord) -> None:
        self._client.request("DELETE", f"{self._path}/{record.name}")

    def apply(
        self, record: SessionStatusRecord, owner: OwnerReference
    ) -> SessionStatusRecord:
        current = None
        if record.name:
            try:
                current = SessionStatusRecord.from_dict(
                    self._client.get(f"{self._path}/{record.name}")
                )
            except NotFound:
                LOG.debug("BGPSessionState %s vanished, recreating", record.name)

        desired = record.copy()
        if current is None:
            desired.resource_version = ""
            desired.uid = ""
            desired.set_owner(owner)
            body = desired.to_dict()
            # status is a subresource and ignored on create
            body.pop("status", None)
            created = SessionStatusRecord.from_dict(
                self._client.request("POST", self._path, body=body)
            )
            name = created.name
        else:
            current.set_owner(owner)
            patch = {
                "metadata": {
                    "labels": self._labels_patch(current.labels, desired.labels),
                    "ownerReferences": [
                        ref.to_dict() for ref in current.owner_references
                    ],
                }
            }
            self._client.request(
                "PATCH",
                f"{self._path}/{current.name}",
                body=patch,
                content_type=MERGE_PATCH,
            )
            name = current.name

        updated = self._client.request(
            "PATCH",
            f"{self._path}/{name}/status",
            body={"status": desired.status.to_dict()},
            content_type=MERGE_PATCH,
        )
        return SessionStatusRecord.from_dict(updated)

    @staticmethod
    def _labels_patch(
        current: Mapping[str, str], desired: Mapping[str, str]
    ) -> Dict[str, Optional[str]]:
        patch: Dict[str, Optional[str]] = dict(desired)
        for key in current:
            if key not in desired:
                patch[key] = None
        return patch
