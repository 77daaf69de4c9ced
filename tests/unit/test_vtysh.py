import json
import subprocess

import pytest

from frr_k8s.exceptions import PeerFetchError
from frr_k8s.resources import PeerObservation
from frr_k8s_agent import vtysh
from frr_k8s_agent.vtysh import VtyshPeerFetcher, parse_neighbors

NEIGHBORS = {
    "default": {
        "vrfId": 0,
        "vrfName": "default",
        "192.168.1.1": {
            "remoteAs": 65001,
            "bgpState": "Established",
            "peerBfdInfo": {"type": "single hop", "status": "Up"},
        },
        "eth0": {"bgpState": "Active"},
    },
    "red": {
        "vrfId": 5,
        "vrfName": "red",
        "fc00:f853:ccd:e899::": {"bgpState": "Idle"},
    },
}


def test_parse_neighbors():
    assert parse_neighbors(NEIGHBORS) == {
        "default": [
            PeerObservation("192.168.1.1", "Established", "Up"),
            PeerObservation("eth0", "Active", ""),
        ],
        "red": [PeerObservation("fc00:f853:ccd:e899::", "Idle", "")],
    }


def test_parse_neighbors_keeps_empty_vrfs():
    assert parse_neighbors({"blue": {"vrfId": 7, "vrfName": "blue"}}) == {"blue": []}


def fake_run(stdout="", returncode=0, stderr=""):
    calls = []

    def run(cmd, timeout):
        calls.append(list(cmd))
        return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=stderr)

    return run, calls


def test_fetcher_runs_vtysh(monkeypatch):
    run, calls = fake_run(stdout=json.dumps(NEIGHBORS))
    monkeypatch.setattr(vtysh, "run", run)

    peers = VtyshPeerFetcher().fetch()

    assert calls == [["vtysh", "-c", "show bgp vrf all neighbors json"]]
    assert set(peers) == {"default", "red"}


def test_fetcher_reports_failures(monkeypatch):
    run, _ = fake_run(returncode=1, stderr="vtysh: failed to connect to any daemons")
    monkeypatch.setattr(vtysh, "run", run)

    with pytest.raises(PeerFetchError) as excinfo:
        VtyshPeerFetcher().fetch()

    assert "failed to connect" in str(excinfo.value)


def test_fetcher_rejects_garbage(monkeypatch):
    run, _ = fake_run(stdout="% Unknown command")
    monkeypatch.setattr(vtysh, "run", run)

    with pytest.raises(PeerFetchError):
        VtyshPeerFetcher().fetch()


def test_fetcher_handles_timeouts(monkeypatch):
    def run(cmd, timeout):
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(vtysh, "run", run)

    with pytest.raises(PeerFetchError):
        VtyshPeerFetcher(timeout=0.1).fetch()
