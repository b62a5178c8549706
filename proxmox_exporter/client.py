"""
Proxmox API client
- Token authenticated GET requests against /api2/json
- Numbers decoded as text, failures logged once per endpoint and returned as None
"""

import logging
from threading import Lock

import requests
import urllib3

from proxmox_exporter.document import DECODE_HOOKS, from_json

logger = logging.getLogger(__name__)


class ErrorLog:
    """Log an upstream error once until the same operation succeeds again"""

    def __init__(self):
        self._logged = set()
        self._lock = Lock()

    def failed(self, error_key, message):
        with self._lock:
            first = error_key not in self._logged
            self._logged.add(error_key)
        if first:
            logger.error(message)
        else:
            logger.debug(message)
        return first

    def succeeded(self, error_key):
        with self._lock:
            recovered = error_key in self._logged
            self._logged.discard(error_key)
        if recovered:
            logger.info("Proxmox API call %s recovered", error_key)
        return recovered


class ProxmoxClient:
    def __init__(self, base_url, token, verify_ssl=False, timeout=10.0, pool_size=8):
        self.base_url = base_url.rstrip("/")
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self.errors = ErrorLog()

        if not verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.session = requests.Session()
        self.session.headers.update({
            "Connection": "keep-alive",
            "Accept": "application/json",
            "Authorization": token,
        })
        adapter = requests.adapters.HTTPAdapter(
            pool_connections=pool_size,
            pool_maxsize=pool_size,
            max_retries=1,
            pool_block=False,
        )
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    @classmethod
    def from_config(cls, config):
        return cls(
            config.base_url,
            config.auth_header,
            verify_ssl=config.verify_ssl,
            timeout=config.request_timeout,
            pool_size=config.max_workers,
        )

    def fetch(self, path):
        """GET a path and return the decoded document, or None on any failure"""
        url = self.base_url + path
        try:
            resp = self.session.get(url, verify=self.verify_ssl, timeout=self.timeout)
        except requests.RequestException as e:
            self.errors.failed(path, f"Proxmox API request {path} failed: {e}")
            return None

        if not resp.ok:
            self.errors.failed(path, f"Proxmox API request {path} failed: {resp.status_code} {resp.reason}")
            return None

        try:
            document = from_json(resp.json(**DECODE_HOOKS))
        except ValueError as e:
            self.errors.failed(path, f"Proxmox API response for {path} is not valid JSON: {e}")
            return None

        self.errors.succeeded(path)
        return document

    def fetch_data(self, path):
        """The "data" member of the response envelope, or None on failure"""
        document = self.fetch(path)
        if document is None:
            return None
        return document.get("data")

    def close(self):
        self.session.close()
