"""Data structures describing the cluster resources this package handles.

The classes mirror the subset of the Kubernetes objects we actually read or
write: nodes, ``FRRConfiguration`` fragments and ``BGPSessionState`` status
records.  Each type knows how to convert itself from (and, where we write it
back, to) the JSON representation served by the API so that accessors never
have to deal with raw dictionaries.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

NODE_LABEL = "frrk8s.metallb.io/node"
PEER_LABEL = "frrk8s.metallb.io/peer"
VRF_LABEL = "frrk8s.metallb.io/vrf"

NO_BFD_CONFIGURED = "N/A"


@dataclass(frozen=True)
class SelectorRequirement:
    """A set-based selector term (``key <operator> values``)."""

    key: str
    operator: str
    values: Sequence[str] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SelectorRequirement":
        return cls(
            key=str(data.get("key", "")),
            operator=str(data.get("operator", "")),
            values=tuple(str(v) for v in data.get("values") or ()),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"key": self.key, "operator": self.operator}
        if self.values:
            result["values"] = list(self.values)
        return result


@dataclass(frozen=True)
class LabelSelector:
    """Label selector as carried by ``spec.nodeSelector``.

    An empty selector (no labels and no expressions) selects every node.
    """

    match_labels: Mapping[str, str] = field(default_factory=dict)
    match_expressions: Sequence[SelectorRequirement] = ()

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "LabelSelector":
        if not data:
            return cls()
        labels = data.get("matchLabels") or {}
        expressions = data.get("matchExpressions") or []
        return cls(
            match_labels={str(k): str(v) for k, v in labels.items()},
            match_expressions=tuple(
                SelectorRequirement.from_dict(expr) for expr in expressions
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.match_labels:
            result["matchLabels"] = dict(self.match_labels)
        if self.match_expressions:
            result["matchExpressions"] = [e.to_dict() for e in self.match_expressions]
        return result


@dataclass(frozen=True)
class Node:
    name: str
    labels: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Node":
        metadata = data.get("metadata") or {}
        return cls(
            name=str(metadata.get("name", "")),
            labels=dict(metadata.get("labels") or {}),
        )


@dataclass
class ConfigFragment:
    """A user authored ``FRRConfiguration``.

    Attributes
    ----------
    name, namespace:
        Identity of the fragment.  Two fragments are the same resource when
        both match, regardless of their content.
    node_selector:
        Nodes the fragment applies to.
    config:
        The remainder of the spec (``bgp``, ``raw``, ...).  It is opaque to
        this package and only interpreted by the semantic validator.
    """

    name: str
    namespace: str
    node_selector: LabelSelector = field(default_factory=LabelSelector)
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def identity(self) -> tuple[str, str]:
        return self.namespace, self.name

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ConfigFragment":
        metadata = data.get("metadata") or {}
        spec = dict(data.get("spec") or {})
        selector = spec.pop("nodeSelector", None)
        return cls(
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace", "")),
            node_selector=LabelSelector.from_dict(selector),
            config=spec,
        )

    def to_dict(self) -> Dict[str, Any]:
        spec = copy.deepcopy(self.config)
        selector = self.node_selector.to_dict()
        if selector:
            spec["nodeSelector"] = selector
        return {
            "metadata": {"name": self.name, "namespace": self.namespace},
            "spec": spec,
        }

    def copy(self) -> "ConfigFragment":
        return copy.deepcopy(self)


@dataclass(frozen=True)
class PeerObservation:
    """A BGP neighbour as currently reported by the routing daemon."""

    peer: str
    bgp_state: str
    bfd_status: str = ""


@dataclass(frozen=True)
class SessionStatus:
    node: str = ""
    peer: str = ""
    vrf: str = ""
    bgp_status: str = ""
    bfd_status: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "SessionStatus":
        data = data or {}
        return cls(
            node=str(data.get("node", "")),
            peer=str(data.get("peer", "")),
            vrf=str(data.get("vrf", "")),
            bgp_status=str(data.get("bgpStatus", "")),
            bfd_status=str(data.get("bfdStatus", "")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "node": self.node,
            "peer": self.peer,
            "vrf": self.vrf,
            "bgpStatus": self.bgp_status,
            "bfdStatus": self.bfd_status,
        }


@dataclass(frozen=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OwnerReference":
        return cls(
            api_version=str(data.get("apiVersion", "")),
            kind=str(data.get("kind", "")),
            name=str(data.get("name", "")),
            uid=str(data.get("uid", "")),
        )

    @classmethod
    def for_pod(cls, pod: Mapping[str, Any]) -> "OwnerReference":
        metadata = pod.get("metadata") or {}
        return cls(
            api_version="v1",
            kind="Pod",
            name=str(metadata.get("name", "")),
            uid=str(metadata.get("uid", "")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
        }


@dataclass
class SessionStatusRecord:
    """A published ``BGPSessionState``.

    The record is identified by its (node, peer, vrf) labels; ``name`` is
    generated by the store on creation and stays empty until then.
    """

    namespace: str
    labels: Dict[str, str] = field(default_factory=dict)
    status: SessionStatus = field(default_factory=SessionStatus)
    name: str = ""
    generate_name: str = ""
    resource_version: str = ""
    uid: str = ""
    owner_references: List[OwnerReference] = field(default_factory=list)

    @property
    def node(self) -> str:
        return self.labels.get(NODE_LABEL, "")

    @property
    def peer(self) -> str:
        return self.labels.get(PEER_LABEL, "")

    @property
    def vrf(self) -> str:
        return self.labels.get(VRF_LABEL, "")

    def set_owner(self, owner: OwnerReference) -> None:
        """Add ``owner`` to the owner references, replacing a stale entry."""

        self.owner_references = [
            ref for ref in self.owner_references if ref.uid != owner.uid
        ]
        self.owner_references.append(owner)

    def copy(self) -> "SessionStatusRecord":
        return copy.deepcopy(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SessionStatusRecord":
        metadata = data.get("metadata") or {}
        return cls(
            namespace=str(metadata.get("namespace", "")),
            labels=dict(metadata.get("labels") or {}),
            status=SessionStatus.from_dict(data.get("status")),
            name=str(metadata.get("name", "")),
            generate_name=str(metadata.get("generateName", "")),
            resource_version=str(metadata.get("resourceVersion", "")),
            uid=str(metadata.get("uid", "")),
            owner_references=[
                OwnerReference.from_dict(ref)
                for ref in metadata.get("ownerReferences") or []
            ],
        )

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "namespace": self.namespace,
            "labels": dict(self.labels),
        }
        if self.name:
            metadata["name"] = self.name
        if self.generate_name:
            metadata["generateName"] = self.generate_name
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.uid:
            metadata["uid"] = self.uid
        if self.owner_references:
            metadata["ownerReferences"] = [
                ref.to_dict() for ref in self.owner_references
            ]
        return {"metadata": metadata, "status": self.status.to_dict()}


@dataclass
class NodeFragmentSet:
    """Fragments applying to ``node``, the one under validation last."""

    node: Node
    fragments: List[ConfigFragment] = field(default_factory=list)
