"""YAML configuration loader for the frr-k8s agent."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from frr_k8s.reconciler import DEFAULT_RESYNC_PERIOD
from frr_k8s.selector import DEFAULT_CACHE_SIZE

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)?$")
_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: Any) -> float:
    """Convert ``value`` (seconds, or a string like ``2m``) to seconds."""

    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION_RE.match(str(value).strip())
        if not match:
            raise ValueError(f"invalid duration {value!r}")
        seconds = float(match.group(1)) * _UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"duration must be positive, got {value!r}")
    return seconds


@dataclass
class KubeConfig:
    api_server: Optional[str] = None
    token_file: Optional[Path] = SERVICE_ACCOUNT_DIR / "token"
    ca_file: Optional[Path] = SERVICE_ACCOUNT_DIR / "ca.crt"
    verify: bool = True
    timeout: float = 10.0


@dataclass
class StatusConfig:
    node_name: str
    namespace: str
    pod_name: str = ""
    poll_interval: float = DEFAULT_RESYNC_PERIOD
    workers: int = 1


@dataclass
class WebhookConfig:
    selector_cache_size: int = DEFAULT_CACHE_SIZE
    host: str = "0.0.0.0"
    port: int = 9443
    cert_file: Optional[Path] = None
    key_file: Optional[Path] = None


@dataclass
class AgentConfig:
    status: StatusConfig
    kube: KubeConfig = field(default_factory=KubeConfig)
    webhook: WebhookConfig = field(default_factory=WebhookConfig)


def _optional_path(value: Any) -> Optional[Path]:
    if value in (None, ""):
        return None
    return Path(value)


def _parse_kube(section: dict) -> KubeConfig:
    defaults = KubeConfig()
    return KubeConfig(
        api_server=section.get("api_server") or None,
        token_file=_optional_path(section.get("token_file", defaults.token_file)),
        ca_file=_optional_path(section.get("ca_file", defaults.ca_file)),
        verify=bool(section.get("verify", True)),
        timeout=parse_duration(section.get("timeout", defaults.timeout)),
    )


def _parse_status(data: dict) -> StatusConfig:
    workers = int(data.get("workers", 1))
    if workers < 1:
        raise ValueError("'workers' must be at least 1")
    return StatusConfig(
        node_name=str(data.get("node_name", "")),
        namespace=str(data.get("namespace", "")),
        pod_name=str(data.get("pod_name", "")),
        poll_interval=parse_duration(data.get("poll_interval", DEFAULT_RESYNC_PERIOD)),
        workers=workers,
    )


def _parse_webhook(section: dict) -> WebhookConfig:
    size = int(section.get("selector_cache_size", DEFAULT_CACHE_SIZE))
    if size < 1:
        raise ValueError("'selector_cache_size' must be at least 1")
    port = int(section.get("port", 9443))
    if not 0 < port < 65536:
        raise ValueError(f"invalid webhook port {port}")
    cert_file = _optional_path(section.get("cert_file"))
    key_file = _optional_path(section.get("key_file"))
    if (cert_file is None) != (key_file is None):
        raise ValueError("'cert_file' and 'key_file' must be set together")
    return WebhookConfig(
        selector_cache_size=size,
        host=str(section.get("host", "0.0.0.0")),
        port=port,
        cert_file=cert_file,
        key_file=key_file,
    )


def _section(data: dict, name: str) -> dict:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' section must be a mapping")
    return section


def load_config(path: Path) -> AgentConfig:
    data = yaml.safe_load(path.read_text())
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("Agent configuration must be a mapping")

    return AgentConfig(
        status=_parse_status(data),
        kube=_parse_kube(_section(data, "kube")),
        webhook=_parse_webhook(_section(data, "webhook")),
    )
