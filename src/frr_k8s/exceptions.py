"""Error types shared by the validator, the reconciler and the accessors."""

from __future__ import annotations

from typing import Sequence


class FRRK8sError(Exception):
    """Base class for all errors raised by this package."""


class InvalidSelector(FRRK8sError, ValueError):
    """A label selector could not be parsed."""


class InventoryUnavailable(FRRK8sError):
    """Listing nodes or configuration fragments failed."""


class SemanticConflict(FRRK8sError):
    """The composed configuration for a node is inconsistent."""

    def __init__(self, node: str, reason: str) -> None:
        super().__init__(f"resource is invalid for node {node}: {reason}")
        self.node = node
        self.reason = reason


class NotFound(FRRK8sError):
    """The targeted resource does not exist (anymore)."""


class ApiError(FRRK8sError):
    """The cluster API answered with an unexpected status code."""

    def __init__(self, status: int, reason: str) -> None:
        super().__init__(f"API request failed with status {status}: {reason}")
        self.status = status
        self.reason = reason


class WriteFailure(FRRK8sError):
    """One or more status-store writes failed during a reconcile pass."""

    def __init__(self, errors: Sequence[BaseException]) -> None:
        self.errors = list(errors)
        details = "; ".join(str(err) for err in self.errors)
        super().__init__(f"{len(self.errors)} status write(s) failed: {details}")


class PeerFetchError(FRRK8sError):
    """The routing daemon could not be queried for its peers."""
