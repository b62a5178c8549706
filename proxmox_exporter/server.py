import logging

from flask import Flask, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

logger = logging.getLogger(__name__)

LANDING_PAGE = (
    "<html><head><title>Proxmox Exporter</title></head>"
    "<body><h1>Proxmox Exporter</h1><a href=\"/metrics\">Metrics</a></body></html>"
)


def create_app(registry):
    app = Flask(__name__)

    @app.route("/")
    def index():
        return Response(LANDING_PAGE, mimetype="text/html")

    @app.route("/metrics")
    def metrics():
        # upstream failures only shrink the body, the scrape itself always succeeds
        return Response(generate_latest(registry), status=200, headers={"Content-Type": CONTENT_TYPE_LATEST})

    @app.route("/health")
    def health_check():
        return Response("OK\n", mimetype="text/plain")

    return app


def serve(app, config):
    # Suppress Flask logs
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
    logging.getLogger("flask").setLevel(logging.WARNING)

    logger.info("Server is handling requests on address %s", config.listen_address)
    app.run(host=config.listen_host, port=config.listen_port, threaded=True)
