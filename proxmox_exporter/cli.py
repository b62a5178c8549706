import logging
import sys

from prometheus_client import CollectorRegistry

from proxmox_exporter.client import ProxmoxClient
from proxmox_exporter.collector import ProxmoxCollector
from proxmox_exporter.config import ConfigError, load_config
from proxmox_exporter.server import create_app, serve
from proxmox_exporter.topology import TopologyCache

logger = logging.getLogger(__name__)


def setup_logging(level):
    if level is None:
        # log.level=none: keep the exporter silent
        logging.getLogger("proxmox_exporter").addHandler(logging.NullHandler())
        logging.getLogger("proxmox_exporter").propagate = False
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - [%(name)s] %(message)s",
    )


def build(config):
    """Client, topology cache and registry wired together, nothing started yet"""
    client = ProxmoxClient.from_config(config)
    topology = TopologyCache(client, interval=config.refresh_interval)
    registry = CollectorRegistry(auto_describe=False)
    registry.register(ProxmoxCollector.from_config(config, client, topology))
    return client, topology, registry


def main(argv=None):
    try:
        config = load_config(argv)
    except ConfigError as e:
        print(f"proxmox-exporter: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging_level)
    logger.info("Exporting metrics for Proxmox API at %s", config.base_url)
    if not config.verify_ssl:
        logger.info("TLS certificate verification for the Proxmox API is disabled")

    client, topology, registry = build(config)
    try:
        topology.start()
        serve(create_app(registry), config)
    except KeyboardInterrupt:
        pass
    finally:
        topology.stop(timeout=5)
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
