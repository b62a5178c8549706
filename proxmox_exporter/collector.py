"""
Per-scrape collection of Proxmox cluster, node, storage and VM metrics.

Every scrape reads the current topology, fans the API calls out over a bounded
thread pool and flattens whatever came back. A failed or timed out call only
removes its own subtree from the output.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from urllib.parse import quote

from prometheus_client.core import GaugeMetricFamily

from proxmox_exporter.document import NULL
from proxmox_exporter.flatten import (
    Observation,
    flag_field,
    flatten_info,
    flatten_nested,
    flatten_numeric,
    text_field,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 8
DEFAULT_SCRAPE_TIMEOUT = 30.0

CLUSTER_STATUS_PATH = "/cluster/status"
STORAGE_PATH = "/storage"

DOCUMENTATION = {
    "proxmox_cluster_": "Proxmox cluster metric",
    "proxmox_node_": "Proxmox node metric",
    "proxmox_node_cpu_usage": "Proxmox node CPU usage",
    "proxmox_node_memory_": "Proxmox node memory in bytes",
    "proxmox_node_swap_": "Proxmox node swap in bytes",
    "proxmox_node_rootfs_": "Proxmox node root filesystem in bytes",
    "proxmox_storage_": "Proxmox storage metric",
    "proxmox_storage_info": "Information about Proxmox storages",
    "proxmox_storage_type_count": "Count of storages by type",
    "proxmox_vm_": "Proxmox VM metric",
    "proxmox_exporter_scrape_duration_seconds": "Time spent collecting metrics from the Proxmox API",
    "proxmox_exporter_fetch_errors": "Proxmox API calls that failed during the last scrape",
    "proxmox_exporter_topology_nodes": "Nodes in the topology snapshot used by the last scrape",
}


def documentation(name):
    """Exact match first, then the longest matching prefix"""
    if name in DOCUMENTATION:
        return DOCUMENTATION[name]
    prefixes = [p for p in DOCUMENTATION if p.endswith("_") and name.startswith(p)]
    if prefixes:
        return DOCUMENTATION[max(prefixes, key=len)]
    return "Proxmox metric"


def node_path(node_name, *parts):
    return "/".join(["/nodes", quote(node_name, safe="")] + [quote(str(p), safe="") for p in parts])


# Endpoint rules

def cluster_status_observations(data):
    for item in data:
        labels = {"type": item.get("type").as_text(), "name": item.get("name").as_text()}
        yield from flatten_numeric(item, "proxmox_cluster", labels)


def node_status_observations(node_name, data):
    labels = {"node": node_name}
    yield from flatten_numeric(data, "proxmox_node", labels)

    cpu = data.get("cpu").as_float()
    if cpu is not None:
        yield Observation("proxmox_node_cpu_usage", dict(labels), cpu)

    for key in ("memory", "swap", "rootfs"):
        yield from flatten_nested(data, "proxmox_node", key, labels, suffix="_bytes")
    yield from flatten_nested(data, "proxmox_node", "cpuinfo", labels)


def cluster_storage_observations(data):
    fields = {
        "storage": text_field("storage"),
        "type": text_field("type"),
        "shared": flag_field("shared"),
    }
    return flatten_info(data, "proxmox_storage", fields, {"node": "cluster"}, count_by="type")


def node_storage_observations(node_name, data):
    for item in data:
        labels = {"storage": item.get("storage").as_text(), "node": node_name}
        yield from flatten_numeric(item, "proxmox_storage", labels)


def vm_observations(node_name, vmid, vmname, data):
    labels = {"vmid": vmid, "vmname": vmname, "proxmox_node": node_name}
    return flatten_numeric(data, "proxmox_vm", labels)


class MetricSet:
    """Observation sink that keeps the first observation per (name, labels)"""

    def __init__(self):
        self._seen = set()
        self._families = {}
        self.duplicates = 0

    def add(self, observation):
        identity = observation.identity
        if identity in self._seen:
            self.duplicates += 1
            logger.debug("Dropping duplicate observation %s%s", observation.name, observation.labels)
            return False
        self._seen.add(identity)

        family = self._families.get(observation.name)
        if family is None:
            family = GaugeMetricFamily(observation.name, documentation(observation.name))
            self._families[observation.name] = family
        family.add_sample(observation.name, observation.labels, observation.value)
        return True

    def extend(self, observations):
        for observation in observations:
            self.add(observation)

    def __len__(self):
        return len(self._seen)

    def families(self):
        return list(self._families.values())


class _FanOut:
    """Issues fetches on a bounded pool under one scrape-wide deadline"""

    def __init__(self, client, max_workers, timeout):
        self.client = client
        self.deadline = time.monotonic() + timeout
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="proxmox-scrape")
        self.failures = 0

    def _fetch(self, path):
        try:
            return self.client.fetch_data(path)
        except Exception:
            logger.exception("Unexpected error fetching %s", path)
            return None

    def fetch_all(self, calls):
        """Map of key -> data node for every request that succeeded"""
        if not calls:
            return {}
        futures = {self.executor.submit(self._fetch, path): key for key, path in calls.items()}
        done, pending = wait(futures, timeout=max(0.0, self.deadline - time.monotonic()))
        for future in pending:
            future.cancel()
        if pending:
            logger.warning("Scrape deadline reached, abandoning %d Proxmox API call(s)", len(pending))
            self.failures += len(pending)

        results = {}
        for future in done:
            data = future.result()
            if data is None:
                self.failures += 1
            else:
                results[futures[future]] = data
        return results

    def close(self):
        self.executor.shutdown(wait=False, cancel_futures=True)


class ProxmoxCollector:
    """prometheus_client custom collector running one collection per scrape"""

    def __init__(self, client, topology, max_workers=DEFAULT_MAX_WORKERS, scrape_timeout=DEFAULT_SCRAPE_TIMEOUT):
        self.client = client
        self.topology = topology
        self.max_workers = max_workers
        self.scrape_timeout = scrape_timeout

    @classmethod
    def from_config(cls, config, client, topology):
        return cls(client, topology, max_workers=config.max_workers, scrape_timeout=config.scrape_timeout)

    def observations(self):
        started = time.monotonic()
        nodes = self.topology.snapshot()

        fan_out = _FanOut(self.client, self.max_workers, self.scrape_timeout)
        try:
            calls = {
                ("cluster_status",): CLUSTER_STATUS_PATH,
                ("cluster_storage",): STORAGE_PATH,
            }
            for node in nodes:
                calls[("status", node.name)] = node_path(node.name, "status")
                calls[("storage", node.name)] = node_path(node.name, "storage")
                calls[("qemu", node.name)] = node_path(node.name, "qemu")
            results = fan_out.fetch_all(calls)

            vms = {}
            for node in nodes:
                for vm in results.get(("qemu", node.name), NULL):
                    vmid = vm.get("vmid").as_text()
                    if vmid:
                        vms[(node.name, vmid)] = vm.get("name").as_text()
            vm_results = fan_out.fetch_all({
                key: node_path(key[0], "qemu", key[1], "status", "current") for key in vms
            })
        finally:
            fan_out.close()

        observations = list(cluster_status_observations(results.get(("cluster_status",), NULL)))
        for node in nodes:
            observations.extend(node_status_observations(node.name, results.get(("status", node.name), NULL)))
        observations.extend(cluster_storage_observations(results.get(("cluster_storage",), NULL)))
        for node in nodes:
            observations.extend(node_storage_observations(node.name, results.get(("storage", node.name), NULL)))
        for (node_name, vmid), vmname in vms.items():
            data = vm_results.get((node_name, vmid))
            if data is not None:
                observations.extend(vm_observations(node_name, vmid, vmname, data))

        observations.extend([
            Observation("proxmox_exporter_scrape_duration_seconds", {}, time.monotonic() - started),
            Observation("proxmox_exporter_fetch_errors", {}, float(fan_out.failures)),
            Observation("proxmox_exporter_topology_nodes", {}, float(len(nodes))),
        ])
        logger.debug("Collected %d observations from %d node(s), %d failed call(s)",
                     len(observations), len(nodes), fan_out.failures)
        return observations

    def collect(self):
        metrics = MetricSet()
        metrics.extend(self.observations())
        return metrics.families()

    def describe(self):
        return []
