from typing import Dict, List

import pytest

from frr_k8s.exceptions import ApiError, NotFound, PeerFetchError, WriteFailure
from frr_k8s.interfaces import PeerStateFetcher
from frr_k8s.reconciler import (
    ReconcileRequest,
    SessionStateReconciler,
    group_by_vrf,
)
from frr_k8s.resources import (
    NODE_LABEL,
    PEER_LABEL,
    VRF_LABEL,
    OwnerReference,
    PeerObservation,
    SessionStatus,
    SessionStatusRecord,
)

from fakes import MemoryStatusStore

NODE = "testnode"
NAMESPACE = "testnamespace"
OWNER = OwnerReference(api_version="v1", kind="Pod", name="frr-k8s-abc", uid="pod-uid")


class FakeFetcher(PeerStateFetcher):
    def __init__(self, peers: Dict[str, List[PeerObservation]]):
        self.peers = peers
        self.error = None

    def fetch(self):
        if self.error is not None:
            raise self.error
        return self.peers


def record(peer, vrf="", node=NODE, name="", bgp="Active", bfd="N/A"):
    return SessionStatusRecord(
        namespace=NAMESPACE,
        name=name,
        generate_name=f"{node}-",
        labels={NODE_LABEL: node, PEER_LABEL: peer, VRF_LABEL: vrf},
        status=SessionStatus(node=node, peer=peer, vrf=vrf, bgp_status=bgp, bfd_status=bfd),
    )


def build(peers, records=()):
    store = MemoryStatusStore(records)
    fetcher = FakeFetcher(peers)
    reconciler = SessionStateReconciler(
        store, fetcher, NODE, NAMESPACE, OWNER, resync_period=30.0
    )
    return reconciler, store, fetcher


def published(store):
    return {
        (r.vrf, r.peer): (r.status.bgp_status, r.status.bfd_status)
        for r in store.list({NODE_LABEL: NODE})
    }


def request():
    return ReconcileRequest(name=NODE, namespace=NAMESPACE)


def test_first_pass_creates_records_and_renames_default_vrf():
    reconciler, store, _ = build(
        {
            "default": [PeerObservation("192.168.1.1", "Established")],
            "red": [PeerObservation("192.168.1.2", "Active", "Down")],
        }
    )

    reconciler.reconcile(request())

    records = store.all()
    assert len(records) == 2
    assert published(store) == {
        ("", "192.168.1.1"): ("Established", "N/A"),
        ("red", "192.168.1.2"): ("Active", "Down"),
    }
    for r in records:
        assert r.name.startswith(f"{NODE}-")
        assert r.namespace == NAMESPACE
        assert r.status.node == NODE
        assert r.status.vrf == r.vrf
        assert r.owner_references == [OWNER]


def test_second_pass_without_changes_writes_nothing():
    reconciler, store, _ = build(
        {
            "default": [
                PeerObservation("192.168.1.1", "Active", "down"),
                PeerObservation("fc00:f853:ccd:e899::", "Active"),
                PeerObservation("eth0", "Active"),
            ],
            "red": [PeerObservation("192.168.1.1", "Active", "down")],
        }
    )

    reconciler.reconcile(request())
    writes = len(store.writes)
    reconciler.reconcile(request())

    assert writes == 4
    assert len(store.writes) == writes


def test_status_change_updates_in_place():
    reconciler, store, fetcher = build(
        {"default": [PeerObservation("192.168.1.1", "Active", "Down")]}
    )
    reconciler.reconcile(request())
    [before] = store.all()

    fetcher.peers = {"default": [PeerObservation("192.168.1.1", "Established", "Up")]}
    reconciler.reconcile(request())

    [after] = store.all()
    assert after.name == before.name
    assert after.uid == before.uid
    assert after.status.bgp_status == "Established"
    assert after.status.bfd_status == "Up"
    assert [w.action for w in store.writes] == ["create", "patch"]


def test_ipv6_peers_are_label_encoded():
    reconciler, store, _ = build({"default": [PeerObservation("fc00::1", "Idle")]})

    reconciler.reconcile(request())

    [r] = store.all()
    assert r.peer == "fc00-0000-0000-0000-0000-0000-0000-0001"
    assert r.status.peer == r.peer


def test_duplicates_are_repaired():
    existing = [
        record("p1", name="testnode-bbbbb", bgp="Idle"),
        record("p1", name="testnode-aaaaa", bgp="Idle"),
    ]
    reconciler, store, _ = build(
        {"default": [PeerObservation("p1", "Established")]}, existing
    )

    reconciler.reconcile(request())

    [r] = store.all()
    assert r.name == "testnode-aaaaa"
    assert r.status.bgp_status == "Established"
    assert [(w.action, w.name) for w in store.writes] == [
        ("delete", "testnode-bbbbb"),
        ("patch", "testnode-aaaaa"),
    ]


def test_stale_records_are_removed():
    reconciler, store, _ = build(
        {"default": [PeerObservation("p2", "Active")]},
        [record("p1", name="testnode-stale")],
    )

    reconciler.reconcile(request())

    assert store.get("testnode-stale") is None
    assert set(published(store)) == {("", "p2")}
    assert store.writes[0].action == "delete"


def test_vrf_without_peers_drops_its_records():
    reconciler, store, _ = build(
        {"default": [PeerObservation("p1", "Active")], "red": []},
        [record("p1", name="testnode-a"), record("p9", vrf="red", name="testnode-b")],
    )

    reconciler.reconcile(request())

    assert set(published(store)) == {("", "p1")}
    assert [(w.action, w.name) for w in store.writes] == [("delete", "testnode-b")]


def test_records_of_other_nodes_are_untouched():
    other = record("p1", node="othernode", name="othernode-a")
    reconciler, store, _ = build({}, [other])

    reconciler.reconcile(request())

    assert store.get("othernode-a") is not None
    assert store.writes == []


def test_already_deleted_records_are_not_errors():
    reconciler, store, _ = build({}, [record("p1", name="testnode-gone")])
    store.fail_on["testnode-gone"] = NotFound("gone")

    reconciler.reconcile(request())


def test_write_errors_are_aggregated_and_retry_converges():
    reconciler, store, fetcher = build(
        {"default": [PeerObservation("p1", "Active"), PeerObservation("p2", "Active")]},
        [record("p1", name="testnode-p1", bgp="Idle"), record("old", name="testnode-old")],
    )
    store.fail_on["testnode-p1"] = ApiError(500, "boom")
    store.fail_on["testnode-old"] = ApiError(500, "boom")

    with pytest.raises(WriteFailure) as excinfo:
        reconciler.reconcile(request())

    assert len(excinfo.value.errors) == 2
    # the healthy write went through
    assert ("", "p2") in published(store)

    store.fail_on.clear()
    reconciler.reconcile(request())

    assert published(store) == {
        ("", "p1"): ("Active", "N/A"),
        ("", "p2"): ("Active", "N/A"),
    }
    writes = len(store.writes)
    reconciler.reconcile(request())
    assert len(store.writes) == writes


def test_fetch_errors_propagate():
    reconciler, store, fetcher = build({})
    fetcher.error = PeerFetchError("vtysh not running")

    with pytest.raises(PeerFetchError):
        reconciler.reconcile(request())

    assert store.writes == []


def test_resync_marker_requests_requeue():
    reconciler, _, _ = build({})

    assert reconciler.reconcile(ReconcileRequest(name=NODE)).requeue_after == 30.0
    assert reconciler.reconcile(request()).requeue_after is None
    assert reconciler.reconcile(ReconcileRequest(name="other")).requeue_after is None


def test_group_by_vrf_keeps_lowest_name():
    records = [
        record("p1", name="n-c"),
        record("p1", name="n-a"),
        record("p1", vrf="red", name="n-b"),
        record("p1", name="n-b2"),
    ]

    existing, duplicates = group_by_vrf(records)

    assert existing[""]["p1"].name == "n-a"
    assert existing["red"]["p1"].name == "n-b"
    assert sorted(d.name for d in duplicates) == ["n-b2", "n-c"]
