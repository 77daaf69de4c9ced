"""Helpers translating daemon identifiers into label-safe values."""

from __future__ import annotations

import ipaddress
from typing import Dict, Mapping, TypeVar

DEFAULT_VRF = "default"

T = TypeVar("T")


def encode_peer(peer: str) -> str:
    """Return ``peer`` in a form usable as a label value.

    IPv4 addresses and interface names are returned untouched.  IPv6
    addresses are exploded and ``:`` is replaced by ``-`` since a label value
    can't contain ``:`` and must end with an alphanumeric character.
    """

    try:
        addr = ipaddress.ip_address(peer)
    except ValueError:  # interface name
        return peer
    if addr.version == 4:
        return peer
    return addr.exploded.replace(":", "-")


def decode_peer(label: str) -> str:
    """Reverse :func:`encode_peer`, returning IPv6 peers in compressed form."""

    if "-" not in label:
        return label
    try:
        addr = ipaddress.IPv6Address(label.replace("-", ":"))
    except ValueError:
        return label
    if addr.exploded.replace(":", "-") != label:
        # an interface name that happens to look like hex groups
        return label
    return addr.compressed


def rename_default_vrf(mapping: Mapping[str, T]) -> Dict[str, T]:
    """Return a copy of ``mapping`` with the ``"default"`` key renamed to ``""``.

    FRR reports peers of the default VRF under ``"default"`` while status
    records use the empty string.  If both keys are present the
    ``"default"`` entry wins.
    """

    result = {key: value for key, value in mapping.items() if key != DEFAULT_VRF}
    if DEFAULT_VRF in mapping:
        result[""] = mapping[DEFAULT_VRF]
    return result
