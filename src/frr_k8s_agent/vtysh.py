"""Peer state fetcher backed by FRR's ``vtysh``."""

from __future__ import annotations

import json
import logging
import subprocess
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from frr_k8s.exceptions import PeerFetchError
from frr_k8s.interfaces import PeerStateFetcher
from frr_k8s.resources import PeerObservation

LOG = logging.getLogger(__name__)

NEIGHBORS_COMMAND = "show bgp vrf all neighbors json"


def run(cmd: Iterable[str], timeout: float) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        list(cmd), capture_output=True, text=True, check=False, timeout=timeout
    )


def parse_neighbors(payload: Mapping[str, Any]) -> Dict[str, List[PeerObservation]]:
    """Extract per-VRF peers from ``show bgp vrf all neighbors json``.

    Each VRF object mixes neighbour entries (keyed by address or interface
    name) with scalar VRF attributes such as ``vrfId``; only the mapping
    entries carrying a ``bgpState`` are peers.
    """

    result: Dict[str, List[PeerObservation]] = {}
    for vrf_key, vrf_data in payload.items():
        if not isinstance(vrf_data, dict):
            continue
        vrf = str(vrf_data.get("vrfName", vrf_key))
        peers = result.setdefault(vrf, [])
        for peer_id, data in vrf_data.items():
            if not isinstance(data, dict) or "bgpState" not in data:
                continue
            bfd = data.get("peerBfdInfo") or {}
            peers.append(
                PeerObservation(
                    peer=str(peer_id),
                    bgp_state=str(data["bgpState"]),
                    bfd_status=str(bfd.get("status", "")),
                )
            )
    return result


class VtyshPeerFetcher(PeerStateFetcher):
    """Run ``vtysh`` and parse the neighbour list of every VRF."""

    def __init__(self, command: Sequence[str] = ("vtysh",), timeout: float = 30.0) -> None:
        self._command = tuple(command)
        self._timeout = timeout

    def fetch(self) -> Dict[str, List[PeerObservation]]:
        cmd = [*self._command, "-c", NEIGHBORS_COMMAND]
        try:
            result = run(cmd, self._timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PeerFetchError(f"failed to run {' '.join(cmd)}: {exc}") from exc
        if result.returncode != 0:
            raise PeerFetchError(
                f"{' '.join(cmd)} failed: {result.stderr.strip()}"
            )
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise PeerFetchError(f"unexpected vtysh output: {exc}") from exc
        if not isinstance(payload, dict):
            raise PeerFetchError("unexpected vtysh output: not a JSON object")

        neighbors = parse_neighbors(payload)
        LOG.debug(
            "vtysh reported %d peer(s) across %d VRF(s)",
            sum(len(p) for p in neighbors.values()),
            len(neighbors),
        )
        return neighbors
