"""
Cluster node discovery.

The cache holds an immutable tuple of ClusterNode. A refresh builds a complete
new tuple and swaps the reference, so scrapes reading snapshot() see either the
old topology or the new one, never a mix.
"""

import logging
import threading
from typing import NamedTuple

from proxmox_exporter.document import Kind

logger = logging.getLogger(__name__)

NODES_PATH = "/nodes"
DEFAULT_REFRESH_INTERVAL = 300


class ClusterNode(NamedTuple):
    name: str
    id: str


def parse_nodes(data):
    """ClusterNode entries from a /nodes listing, in listing order"""
    nodes = []
    for item in data:
        if not item.is_mapping:
            continue
        name = item.get("node").as_text()
        if not name:
            continue
        nodes.append(ClusterNode(name=name, id=item.get("id").as_text()))
    return tuple(nodes)


class TopologyCache:
    def __init__(self, client, interval=DEFAULT_REFRESH_INTERVAL):
        self.client = client
        self.interval = interval
        self._nodes = ()
        self._populated = False
        self._refresh_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread = None

    @property
    def populated(self):
        return self._populated

    def snapshot(self):
        return self._nodes

    def refresh(self):
        """Rediscover the nodes; on failure the previous snapshot stays in place"""
        with self._refresh_lock:
            data = self.client.fetch_data(NODES_PATH)
            if data is None or data.kind is not Kind.SEQUENCE:
                logger.error("Node discovery failed, keeping %d known node(s)", len(self._nodes))
                return False

            nodes = parse_nodes(data)
            if nodes != self._nodes:
                logger.info("Discovered %d node(s): %s", len(nodes), ", ".join(n.name for n in nodes))
            self._nodes = nodes
            self._populated = True
            return True

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                self.refresh()
            except Exception:
                # keep the refresher alive for the process lifetime
                logger.exception("Unexpected error during node discovery")

    def start(self):
        """Discover once synchronously, then keep refreshing in the background"""
        if self._thread is not None:
            return
        self.refresh()
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="topology-refresh", daemon=True)
        self._thread.start()

    def stop(self, timeout=None):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc_info):
        self.stop()
