"""Event primitives produced by the watchers and consumed by the controller."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

SESSION_STATE_KIND = "BGPSessionState"
NODE_STATE_KIND = "FRRNodeState"

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


@dataclass(frozen=True)
class WatchEvent:
    """A change observed on a watched resource."""

    type: str
    kind: str
    name: str
    namespace: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_object(cls, event_type: str, kind: str, obj: Mapping[str, Any]) -> "WatchEvent":
        metadata = obj.get("metadata") or {}
        return cls(
            type=event_type,
            kind=kind,
            name=str(metadata.get("name", "")),
            namespace=str(metadata.get("namespace", "")),
            labels=dict(metadata.get("labels") or {}),
        )
