"""Core logic for distributing FRR configuration and reporting session state.

Two pieces live here:

* :class:`frr_k8s.validator.ConflictValidator` decides, at admission time,
  whether a ``FRRConfiguration`` fragment can be combined with the fragments
  already targeting the same nodes; and
* :class:`frr_k8s.reconciler.SessionStateReconciler` publishes the BGP/BFD
  session state observed on the local node as ``BGPSessionState`` records.

Both talk to the outside world exclusively through the small interfaces in
:mod:`frr_k8s.interfaces`.
"""

from .reconciler import ReconcileRequest, ReconcileResult, SessionStateReconciler  # noqa: F401
from .validator import ConflictValidator, Operation  # noqa: F401

__all__ = [
    "ConflictValidator",
    "Operation",
    "ReconcileRequest",
    "ReconcileResult",
    "SessionStateReconciler",
]
