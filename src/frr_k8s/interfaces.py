"""Abstract interfaces for the collaborators of the validator and reconciler."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Mapping, Sequence

from .resources import (
    ConfigFragment,
    Node,
    OwnerReference,
    PeerObservation,
    SessionStatusRecord,
)


class Inventory(ABC):
    """Read access to the cluster nodes and configuration fragments."""

    @abstractmethod
    def list_nodes(self) -> List[Node]:
        """Return every node; raise ``InventoryUnavailable`` on failure."""

    @abstractmethod
    def list_fragments(self) -> List[ConfigFragment]:
        """Return every fragment; raise ``InventoryUnavailable`` on failure."""


class SemanticValidator(ABC):
    """Judge whether the fragments applying to one node can be combined."""

    @abstractmethod
    def validate(self, fragments: Sequence[ConfigFragment]) -> None:
        """Raise ``ValueError`` describing the first conflict found."""


class PeerStateFetcher(ABC):
    """Query the local routing daemon for its peers."""

    @abstractmethod
    def fetch(self) -> Mapping[str, Sequence[PeerObservation]]:
        """Return the observed peers keyed by VRF name as the daemon reports it."""


class StatusStore(ABC):
    """Persistence for ``BGPSessionState`` records."""

    @abstractmethod
    def list(self, labels: Mapping[str, str]) -> List[SessionStatusRecord]:
        """Return the records carrying all of ``labels``."""

    @abstractmethod
    def delete(self, record: SessionStatusRecord) -> None:
        """Delete ``record``; raise ``NotFound`` if it is already gone."""

    @abstractmethod
    def apply(
        self, record: SessionStatusRecord, owner: OwnerReference
    ) -> SessionStatusRecord:
        """Create ``record`` or update it in place, owned by ``owner``.

        Records without a name are created under a generated name.  Labels
        and status of an existing record are replaced.
        """
