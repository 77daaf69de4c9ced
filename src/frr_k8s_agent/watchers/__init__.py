"""Watcher implementations used by the frr-k8s agent."""

from .kube import ResourceWatcher, node_state_watcher, session_state_watcher  # noqa: F401

__all__ = ["ResourceWatcher", "node_state_watcher", "session_state_watcher"]
