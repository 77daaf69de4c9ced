"""Publish the local routing daemon's session state as status records.

Every reconcile pass compares the peers currently reported by the daemon
with the ``BGPSessionState`` records labeled for this node and converges the
latter: stale and duplicate records are deleted first, then missing or
outdated ones are created or updated in place.  A pass only depends on the
observed state and the listed records, so repeating it after a partial
failure is always safe.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .exceptions import NotFound, WriteFailure
from .interfaces import PeerStateFetcher, StatusStore
from .labels import encode_peer, rename_default_vrf
from .resources import (
    NODE_LABEL,
    NO_BFD_CONFIGURED,
    PEER_LABEL,
    VRF_LABEL,
    OwnerReference,
    PeerObservation,
    SessionStatus,
    SessionStatusRecord,
)

LOG = logging.getLogger(__name__)

DEFAULT_RESYNC_PERIOD = 120.0

# vrf -> label-encoded peer -> record
PeersPerVRF = Dict[str, Dict[str, SessionStatusRecord]]


@dataclass(frozen=True)
class ReconcileRequest:
    """Identifies the object whose event triggered a pass.

    The node's periodic-resync marker is cluster scoped, hence it is the
    only trigger with an empty namespace.
    """

    name: str
    namespace: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}" if self.namespace else self.name


@dataclass(frozen=True)
class ReconcileResult:
    requeue_after: Optional[float] = None


def group_by_vrf(
    records: Sequence[SessionStatusRecord],
) -> Tuple[PeersPerVRF, List[SessionStatusRecord]]:
    """Index ``records`` by VRF and peer label.

    Records are considered in name order; for a (vrf, peer) pair seen more
    than once, the first record is kept and the others are returned as
    duplicates.
    """

    existing: PeersPerVRF = {}
    duplicates: List[SessionStatusRecord] = []
    for record in sorted(records, key=lambda r: r.name):
        peers = existing.setdefault(record.vrf, {})
        if record.peer in peers:
            duplicates.append(record)
            continue
        peers[record.peer] = record
    return existing, duplicates


class SessionStateReconciler:
    """Converge this node's ``BGPSessionState`` records with the daemon."""

    def __init__(
        self,
        store: StatusStore,
        fetcher: PeerStateFetcher,
        node_name: str,
        namespace: str,
        owner: OwnerReference,
        resync_period: float = DEFAULT_RESYNC_PERIOD,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._node_name = node_name
        self._namespace = namespace
        self._owner = owner
        self._resync_period = resync_period
        self._lock = Lock()

    @property
    def node_name(self) -> str:
        return self._node_name

    @property
    def namespace(self) -> str:
        return self._namespace

    def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """Run one pass; raise to have the request retried."""

        LOG.info("start reconcile %s", request)
        try:
            with self._lock:
                self._reconcile()
        finally:
            LOG.info("end reconcile %s", request)

        if request.name == self._node_name and request.namespace == "":
            return ReconcileResult(requeue_after=self._resync_period)
        return ReconcileResult()

    def _reconcile(self) -> None:
        records = self._store.list({NODE_LABEL: self._node_name})
        existing, duplicates = group_by_vrf(records)

        observed = rename_default_vrf(self._fetcher.fetch())
        to_apply, stale = self.plan(observed, existing)
        to_remove = duplicates + stale
        LOG.debug(
            "node %s: %d record(s) to apply, %d to remove (%d duplicate(s))",
            self._node_name,
            len(to_apply),
            len(to_remove),
            len(duplicates),
        )

        errors: List[Exception] = []
        for record in to_remove:
            try:
                self._store.delete(record)
            except NotFound:
                LOG.debug("BGPSessionState %s already deleted", record.name)
            except Exception as exc:
                LOG.warning("failed to delete BGPSessionState %s: %s", record.name, exc)
                errors.append(exc)

        for record in to_apply:
            try:
                self._store.apply(record, self._owner)
            except Exception as exc:
                LOG.warning(
                    "failed to apply BGPSessionState for peer %s vrf %r: %s",
                    record.peer,
                    record.vrf,
                    exc,
                )
                errors.append(exc)

        if errors:
            raise WriteFailure(errors)

    def plan(
        self,
        observed: Mapping[str, Sequence[PeerObservation]],
        existing: PeersPerVRF,
    ) -> Tuple[List[SessionStatusRecord], List[SessionStatusRecord]]:
        """Return the records to apply and the stale records to delete.

        ``observed`` must already use ``""`` for the default VRF.  A record
        whose labels and status already match the observation is left out.
        """

        remaining = {vrf: dict(peers) for vrf, peers in existing.items()}
        to_apply: List[SessionStatusRecord] = []

        for vrf, peers in observed.items():
            for peer in peers or ():
                current = remaining.get(vrf, {}).pop(encode_peer(peer.peer), None)
                desired = self.desired_record(peer, vrf, current)
                if (
                    current is not None
                    and desired.labels == current.labels
                    and desired.status == current.status
                ):
                    continue
                to_apply.append(desired)

        stale = [record for peers in remaining.values() for record in peers.values()]
        return to_apply, stale

    def desired_record(
        self,
        peer: PeerObservation,
        vrf: str,
        current: Optional[SessionStatusRecord] = None,
    ) -> SessionStatusRecord:
        if current is not None:
            record = current.copy()
        else:
            record = SessionStatusRecord(
                namespace=self._namespace,
                generate_name=f"{self._node_name}-",
            )
        peer_label = encode_peer(peer.peer)
        record.labels = {
            NODE_LABEL: self._node_name,
            PEER_LABEL: peer_label,
            VRF_LABEL: vrf,
        }
        record.status = SessionStatus(
            node=self._node_name,
            peer=peer_label,
            vrf=vrf,
            bgp_status=peer.bgp_state,
            bfd_status=peer.bfd_status or NO_BFD_CONFIGURED,
        )
        return record
