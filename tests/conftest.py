"""Shared fixtures: an in-memory stand-in for ProxmoxClient."""

import threading

import pytest

from proxmox_exporter.document import from_json


class FakeClient:
    """Serves {"data": ...} envelopes from a path -> payload mapping.

    Paths missing from the mapping, or mapped to None, fail like an
    unreachable endpoint.
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, path):
        with self._lock:
            self.calls.append(path)
        payload = self.responses.get(path)
        if payload is None:
            return None
        return from_json({"data": payload})

    def fetch_data(self, path):
        document = self.fetch(path)
        if document is None:
            return None
        return document.get("data")

    def close(self):
        pass


@pytest.fixture
def cluster_responses():
    return {
        "/nodes": [
            {"node": "pve1", "id": "node/pve1", "status": "online"},
            {"node": "pve2", "id": "node/pve2", "status": "online"},
        ],
        "/cluster/status": [
            {"type": "cluster", "name": "lab", "id": "cluster", "nodes": 2, "quorate": 1, "version": 4},
            {"type": "node", "name": "pve1", "id": "node/pve1", "nodeid": 1, "online": 1, "ip": "10.0.0.1"},
            {"type": "node", "name": "pve2", "id": "node/pve2", "nodeid": 2, "online": 1, "ip": "10.0.0.2"},
        ],
        "/storage": [
            {"storage": "local", "type": "dir", "content": "iso,vztmpl"},
            {"storage": "backup", "type": "nfs", "shared": 1},
            {"storage": "scratch", "type": "dir", "shared": 0},
        ],
        "/nodes/pve1/status": {
            "cpu": 0.25,
            "uptime": 3600,
            "loadavg": ["0.10", "0.20", "0.30"],
            "memory": {"total": 68719476736, "free": 34359738368, "used": 34359738368},
            "cpuinfo": {"cpus": 16, "model": "Xeon", "mhz": "2400.000"},
        },
        "/nodes/pve2/status": {
            "cpu": 0.5,
            "memory": {"total": 1024, "free": 512, "used": 512},
        },
        "/nodes/pve1/storage": [
            {"storage": "local", "type": "dir", "total": 1000, "used": 250, "avail": 750, "active": 1},
        ],
        "/nodes/pve2/storage": [
            {"storage": "local", "type": "dir", "total": 2000, "used": 500, "avail": 1500, "active": 1},
        ],
        "/nodes/pve1/qemu": [{"vmid": 100, "name": "web1", "status": "running"}],
        "/nodes/pve2/qemu": [{"vmid": 200, "name": "db1", "status": "stopped"}],
        "/nodes/pve1/qemu/100/status/current": {
            "vmid": 100, "name": "web1", "cpu": "0.05", "status": "running", "mem": 536870912,
        },
        "/nodes/pve2/qemu/200/status/current": {
            "vmid": 200, "name": "db1", "cpu": 0, "status": "stopped", "mem": 0,
        },
    }


@pytest.fixture
def fake_client(cluster_responses):
    return FakeClient(cluster_responses)
