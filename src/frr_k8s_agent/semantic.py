"""Default semantic validator used by the admission webhook.

Fragments applying to one node are merged router by router; two routers
for the same VRF, or two neighbours of the same router, may only be merged
when the settings they both carry agree.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Sequence, Tuple

from frr_k8s.interfaces import SemanticValidator
from frr_k8s.resources import ConfigFragment

DEFAULT_BGP_PORT = 179

# neighbour field -> (error label, value assumed when unset)
_NEIGHBOR_FIELDS: Tuple[Tuple[str, str, Any], ...] = (
    ("asn", "asns", None),
    ("port", "ports", DEFAULT_BGP_PORT),
    ("sourceaddress", "source addresses", ""),
    ("password", "passwords", ""),
    ("bfdProfile", "bfd profiles", ""),
    ("holdTime", "hold times", ""),
    ("keepaliveTime", "keepalive times", ""),
    ("connectTime", "connect times", ""),
)


def _routers(fragment: ConfigFragment) -> Sequence[Mapping[str, Any]]:
    bgp = fragment.config.get("bgp") or {}
    if not isinstance(bgp, Mapping):
        raise ValueError(f"invalid bgp section in {fragment.name}")
    return bgp.get("routers") or []


def _neighbor_id(neighbor: Mapping[str, Any], vrf: str) -> str:
    peer = neighbor.get("address") or neighbor.get("interface")
    if not peer:
        raise ValueError(
            f"neighbor with ASN {neighbor.get('asn')} has no address and no interface"
        )
    if neighbor.get("address") and neighbor.get("interface"):
        raise ValueError(f"neighbor {peer} has both Address and Interface specified")
    return f"{peer}-{vrf}" if vrf else str(peer)


def _check_neighbors(
    seen: Dict[str, Mapping[str, Any]], router: Mapping[str, Any], vrf: str
) -> None:
    for neighbor in router.get("neighbors") or []:
        key = _neighbor_id(neighbor, vrf)
        current = seen.setdefault(key, neighbor)
        if current is neighbor:
            continue
        for field, label, default in _NEIGHBOR_FIELDS:
            if current.get(field, default) != neighbor.get(field, default):
                raise ValueError(f"multiple {label} specified for {key}")
        if bool(current.get("ebgpMultiHop")) != bool(neighbor.get("ebgpMultiHop")):
            raise ValueError(f"conflicting ebgp-multihop specified for {key}")


class RouterMergeValidator(SemanticValidator):
    """Reject fragments whose routers or neighbours cannot be merged."""

    def validate(self, fragments: Sequence[ConfigFragment]) -> None:
        routers: Dict[str, Mapping[str, Any]] = {}
        neighbors: Dict[str, Dict[str, Mapping[str, Any]]] = {}
        for fragment in fragments:
            for router in _routers(fragment):
                vrf = str(router.get("vrf") or "")
                current = routers.setdefault(vrf, router)
                if current is not router:
                    if current.get("asn") != router.get("asn"):
                        raise ValueError(
                            f"different asns ({current.get('asn')} != {router.get('asn')}) "
                            f"specified for same vrf: {vrf}"
                        )
                    first_id, second_id = current.get("id"), router.get("id")
                    if first_id and second_id and first_id != second_id:
                        raise ValueError(
                            f"different router ids ({first_id} != {second_id}) "
                            f"specified for same vrf: {vrf}"
                        )
                _check_neighbors(neighbors.setdefault(vrf, {}), router, vrf)
