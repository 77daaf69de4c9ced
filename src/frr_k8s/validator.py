"""Admission-time conflict detection for configuration fragments.

A fragment is only admitted if, for every node its selector matches, the
full list of fragments applying to that node (existing siblings plus the
candidate) is accepted by the semantic validator.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .exceptions import InvalidSelector, SemanticConflict
from .interfaces import Inventory, SemanticValidator
from .resources import ConfigFragment, NodeFragmentSet
from .selector import Selector, SelectorCache

LOG = logging.getLogger(__name__)


class Operation(Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ConflictValidator:
    """Check a fragment against its siblings on every node it targets.

    Parameters
    ----------
    inventory:
        Source of the current nodes and fragments.
    semantic_validator:
        Judges one node's composed configuration.
    selector_cache:
        Parsed selector memo, usually shared by all admission requests.
    """

    def __init__(
        self,
        inventory: Inventory,
        semantic_validator: SemanticValidator,
        selector_cache: Optional[SelectorCache] = None,
    ) -> None:
        self._inventory = inventory
        self._semantic_validator = semantic_validator
        self._selectors = (
            selector_cache if selector_cache is not None else SelectorCache()
        )

    @property
    def selector_cache(self) -> SelectorCache:
        return self._selectors

    def validate(self, fragment: ConfigFragment, operation: Operation) -> None:
        """Raise if admitting ``fragment`` would produce a conflict."""

        if operation is Operation.DELETE:
            return

        action = operation.value.lower()
        LOG.debug(
            "validating %s of FRRConfiguration %s/%s",
            action,
            fragment.namespace,
            fragment.name,
        )
        try:
            for node_set in self.fragment_sets(fragment):
                try:
                    self._semantic_validator.validate(node_set.fragments)
                except ValueError as exc:
                    raise SemanticConflict(node_set.node.name, str(exc)) from exc
        finally:
            LOG.debug(
                "end %s of FRRConfiguration %s/%s",
                action,
                fragment.namespace,
                fragment.name,
            )

    def fragment_sets(self, fragment: ConfigFragment) -> List[NodeFragmentSet]:
        """Return the fragment set of every node ``fragment`` selects.

        The sets are ordered by node name.  Each one holds the sibling
        fragments matching the node in inventory order, followed by a copy of
        ``fragment``.  A previous revision of ``fragment`` is never included.
        """

        try:
            selector = self._selectors.get(fragment.node_selector)
        except InvalidSelector as exc:
            raise InvalidSelector(
                f"resource contains an invalid NodeSelector: {exc}"
            ) from exc

        nodes = self._inventory.list_nodes()
        # keyed by identity so a fragment is counted at most once per node
        siblings = {
            sibling.identity: sibling
            for sibling in self._inventory.list_fragments()
            if sibling.identity != fragment.identity
        }.values()

        matched = sorted(
            (node for node in nodes if selector.matches(node.labels)),
            key=lambda node: node.name,
        )

        memo: Dict[Tuple[str, str], Optional[Selector]] = {}
        result = []
        for node in matched:
            node_set = NodeFragmentSet(node=node)
            for sibling in siblings:
                sibling_selector = self._sibling_selector(sibling, memo)
                if sibling_selector is not None and sibling_selector.matches(
                    node.labels
                ):
                    node_set.fragments.append(sibling.copy())
            node_set.fragments.append(fragment.copy())
            result.append(node_set)
        return result

    def _sibling_selector(
        self,
        sibling: ConfigFragment,
        memo: Dict[Tuple[str, str], Optional[Selector]],
    ) -> Optional[Selector]:
        if sibling.identity in memo:
            return memo[sibling.identity]
        try:
            selector: Optional[Selector] = self._selectors.get(sibling.node_selector)
        except InvalidSelector:
            # would have been rejected at its own admission
            LOG.warning(
                "skipping FRRConfiguration %s/%s with invalid node selector",
                sibling.namespace,
                sibling.name,
            )
            selector = None
        memo[sibling.identity] = selector
        return selector
