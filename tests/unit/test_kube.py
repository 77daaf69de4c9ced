import json
from pathlib import Path
from typing import Dict

import httpx
import pytest

from frr_k8s.exceptions import ApiError, InventoryUnavailable, NotFound
from frr_k8s.interfaces import PeerStateFetcher
from frr_k8s.reconciler import ReconcileRequest, SessionStateReconciler
from frr_k8s.resources import (
    NODE_LABEL,
    OwnerReference,
    PeerObservation,
    SessionStatusRecord,
)
from frr_k8s_agent.config import KubeConfig
from frr_k8s_agent.kube import (
    KubeClient,
    KubeInventory,
    KubeStatusStore,
    get_pod,
    session_states_path,
)

NAMESPACE = "frr-k8s-system"
STATES = session_states_path(NAMESPACE)
OWNER = OwnerReference(api_version="v1", kind="Pod", name="frr-k8s-abc", uid="pod-uid")


def merge(target: dict, patch: dict) -> dict:
    for key, value in patch.items():
        if value is None:
            target.pop(key, None)
        elif isinstance(value, dict) and isinstance(target.get(key), dict):
            merge(target[key], value)
        else:
            target[key] = value
    return target


class FakeAPIServer:
    """Serves the few endpoints the agent talks to."""

    def __init__(self):
        self.nodes = []
        self.configurations = []
        self.states: Dict[str, dict] = {}
        self.requests = []
        self.counter = 0
        self.fail = False

    def client(self) -> KubeClient:
        return KubeClient(
            httpx.Client(base_url="https://api", transport=httpx.MockTransport(self.handle))
        )

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        if self.fail:
            return httpx.Response(500, json={"message": "etcd unavailable"})
        path = request.url.path
        if path == "/api/v1/nodes":
            return httpx.Response(200, json={"items": self.nodes})
        if path == "/apis/frrk8s.metallb.io/v1beta1/frrconfigurations":
            return httpx.Response(200, json={"items": self.configurations})
        if path == f"/api/v1/namespaces/{NAMESPACE}/pods/frr-k8s-abc":
            return httpx.Response(
                200, json={"metadata": {"name": "frr-k8s-abc", "uid": "pod-uid"}}
            )
        if path == STATES and request.method == "GET":
            return httpx.Response(200, json={"items": self._select(request)})
        if path == STATES and request.method == "POST":
            body = json.loads(request.content)
            self.counter += 1
            name = f"{body['metadata']['generateName']}{self.counter}"
            body["metadata"]["name"] = name
            self.states[name] = body
            return httpx.Response(201, json=body)
        if path.startswith(STATES + "/"):
            return self._item(request, path[len(STATES) + 1:])
        return httpx.Response(404, json={"message": "not found"})

    def _select(self, request):
        selector = request.url.params.get("labelSelector", "")
        wanted = dict(term.split("=", 1) for term in selector.split(",") if term)
        return [
            state
            for state in self.states.values()
            if all(state["metadata"]["labels"].get(k) == v for k, v in wanted.items())
        ]

    def _item(self, request, rest):
        name, _, sub = rest.partition("/")
        if name not in self.states:
            return httpx.Response(404, json={"message": f"{name} not found"})
        state = self.states[name]
        if request.method == "GET":
            return httpx.Response(200, json=state)
        if request.method == "DELETE":
            del self.states[name]
            return httpx.Response(200, json={"status": "Success"})
        if request.method == "PATCH":
            assert request.headers["Content-Type"] == "application/merge-patch+json"
            patch = json.loads(request.content)
            if sub == "status":
                merge(state, {"status": patch["status"]})
            else:
                merge(state, {"metadata": patch["metadata"]})
            return httpx.Response(200, json=state)
        return httpx.Response(405)


def state(name, peer, vrf="", node="worker-1", bgp="Active"):
    return {
        "metadata": {
            "name": name,
            "namespace": NAMESPACE,
            "labels": {
                NODE_LABEL: node,
                "frrk8s.metallb.io/peer": peer,
                "frrk8s.metallb.io/vrf": vrf,
            },
        },
        "status": {"node": node, "peer": peer, "vrf": vrf, "bgpStatus": bgp, "bfdStatus": "N/A"},
    }


def test_inventory_lists_nodes_and_fragments():
    server = FakeAPIServer()
    server.nodes = [{"metadata": {"name": "worker-1", "labels": {"zone": "a"}}}]
    server.configurations = [
        {
            "metadata": {"name": "cfg", "namespace": NAMESPACE},
            "spec": {
                "nodeSelector": {"matchLabels": {"zone": "a"}},
                "bgp": {"routers": [{"asn": 65000}]},
            },
        }
    ]
    inventory = KubeInventory(server.client())

    [node] = inventory.list_nodes()
    [fragment] = inventory.list_fragments()

    assert node.name == "worker-1"
    assert node.labels == {"zone": "a"}
    assert fragment.identity == (NAMESPACE, "cfg")
    assert fragment.node_selector.match_labels == {"zone": "a"}
    assert fragment.config == {"bgp": {"routers": [{"asn": 65000}]}}


def test_inventory_errors_are_unavailable():
    server = FakeAPIServer()
    server.fail = True
    inventory = KubeInventory(server.client())

    with pytest.raises(InventoryUnavailable) as excinfo:
        inventory.list_nodes()
    assert "etcd unavailable" in str(excinfo.value)

    with pytest.raises(InventoryUnavailable):
        inventory.list_fragments()


def test_transport_errors_become_api_errors():
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = KubeClient(httpx.Client(base_url="https://api", transport=httpx.MockTransport(broken)))

    with pytest.raises(ApiError) as excinfo:
        client.get("/api/v1/nodes")
    assert excinfo.value.status == 0


def test_store_lists_by_label():
    server = FakeAPIServer()
    server.states = {
        "a": state("a", "p1"),
        "b": state("b", "p1", node="worker-2"),
    }
    store = KubeStatusStore(server.client(), NAMESPACE)

    records = store.list({NODE_LABEL: "worker-1"})

    assert [r.name for r in records] == ["a"]
    assert records[0].status.bgp_status == "Active"


def test_store_delete_missing_raises_not_found():
    server = FakeAPIServer()
    store = KubeStatusStore(server.client(), NAMESPACE)

    with pytest.raises(NotFound):
        store.delete(SessionStatusRecord(namespace=NAMESPACE, name="missing"))


def test_get_pod_builds_owner_reference():
    server = FakeAPIServer()

    owner = OwnerReference.for_pod(get_pod(server.client(), NAMESPACE, "frr-k8s-abc"))

    assert owner == OWNER


class StaticFetcher(PeerStateFetcher):
    def __init__(self, peers):
        self.peers = peers

    def fetch(self):
        return self.peers


def test_reconciler_against_api():
    server = FakeAPIServer()
    server.states = {
        "worker-1-old": state("worker-1-old", "10.0.0.9"),
        "worker-1-p1": state("worker-1-p1", "10.0.0.1", bgp="Idle"),
        "worker-1-p1b": state("worker-1-p1b", "10.0.0.1", bgp="Idle"),
    }
    fetcher = StaticFetcher(
        {
            "default": [PeerObservation("10.0.0.1", "Established", "Up")],
            "red": [PeerObservation("fc00::1", "Active")],
        }
    )
    reconciler = SessionStateReconciler(
        KubeStatusStore(server.client(), NAMESPACE),
        fetcher,
        "worker-1",
        NAMESPACE,
        OWNER,
    )

    reconciler.reconcile(ReconcileRequest(name="worker-1", namespace=NAMESPACE))

    assert sorted(server.states) == ["worker-1-1", "worker-1-p1"]
    updated = server.states["worker-1-p1"]
    assert updated["status"]["bgpStatus"] == "Established"
    assert updated["status"]["bfdStatus"] == "Up"
    assert updated["metadata"]["ownerReferences"] == [OWNER.to_dict()]
    created = server.states["worker-1-1"]
    assert created["metadata"]["labels"]["frrk8s.metallb.io/vrf"] == "red"
    assert created["metadata"]["labels"]["frrk8s.metallb.io/peer"] == (
        "fc00-0000-0000-0000-0000-0000-0000-0001"
    )
    assert created["status"]["peer"] == "fc00-0000-0000-0000-0000-0000-0000-0001"
    assert created["metadata"]["ownerReferences"] == [OWNER.to_dict()]

    server.requests.clear()
    reconciler.reconcile(ReconcileRequest(name="worker-1", namespace=NAMESPACE))
    assert [m for m, _ in server.requests] == ["GET"]


def test_from_config_uses_in_cluster_environment(tmp_path: Path, monkeypatch):
    token = tmp_path / "token"
    token.write_text("secret-token\n")
    monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.96.0.1")
    monkeypatch.setenv("KUBERNETES_SERVICE_PORT", "6443")

    client = KubeClient.from_config(
        KubeConfig(token_file=token, ca_file=tmp_path / "missing.crt", verify=False)
    )

    assert str(client._client.base_url).rstrip("/") == "https://10.96.0.1:6443"
    assert client._client.headers["Authorization"] == "Bearer secret-token"
    client.close()


def test_from_config_requires_an_api_server(monkeypatch):
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)

    with pytest.raises(ValueError):
        KubeClient.from_config(KubeConfig(token_file=None, ca_file=None))
