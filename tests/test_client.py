"""Tests for ProxmoxClient."""

import logging
from unittest.mock import patch

import pytest
import requests

from proxmox_exporter.client import ErrorLog, ProxmoxClient
from proxmox_exporter.config import Config
from proxmox_exporter.document import Kind

BASE_URL = "https://pve.example:8006/api2/json"


def make_response(body, status=200, reason="OK"):
    resp = requests.Response()
    resp.status_code = status
    resp.reason = reason
    resp._content = body.encode("utf-8")
    resp.encoding = "utf-8"
    return resp


@pytest.fixture
def client():
    client = ProxmoxClient(BASE_URL, "PVEAPIToken=root@pam!mon=secret", timeout=2.5)
    yield client
    client.close()


class TestRequest:
    def test_sets_token_header(self, client):
        assert client.session.headers["Authorization"] == "PVEAPIToken=root@pam!mon=secret"

    def test_get_uses_base_url_timeout_and_verify(self, client):
        with patch.object(client.session, "get", return_value=make_response('{"data": []}')) as get:
            client.fetch("/nodes")

        get.assert_called_once_with(BASE_URL + "/nodes", verify=False, timeout=2.5)

    def test_verify_ssl_is_passed_through(self):
        client = ProxmoxClient(BASE_URL, "token", verify_ssl=True)
        with patch.object(client.session, "get", return_value=make_response('{"data": []}')) as get:
            client.fetch("/nodes")

        assert get.call_args.kwargs["verify"] is True

    def test_from_config(self):
        config = Config(proxmox_address="pve.example", username="root@pam!mon", token="secret",
                        request_timeout=4.0, verify_ssl=True)
        client = ProxmoxClient.from_config(config)

        assert client.base_url == BASE_URL
        assert client.timeout == 4.0
        assert client.verify_ssl is True
        assert client.session.headers["Authorization"] == "PVEAPIToken=root@pam!mon=secret"


class TestDecoding:
    def test_numbers_are_preserved_as_text(self, client):
        body = '{"data": {"maxdisk": 18446744073709551615, "cpu": 0.10}}'
        with patch.object(client.session, "get", return_value=make_response(body)):
            doc = client.fetch("/nodes/pve1/status")

        data = doc.get("data")
        assert data.get("maxdisk").kind is Kind.NUMBER
        assert data.get("maxdisk").value == "18446744073709551615"
        assert data.get("cpu").value == "0.10"

    def test_fetch_data_unwraps_envelope(self, client):
        with patch.object(client.session, "get", return_value=make_response('{"data": [{"node": "pve1"}]}')):
            data = client.fetch_data("/nodes")

        assert data.kind is Kind.SEQUENCE
        assert [item.get("node").as_text() for item in data] == ["pve1"]


class TestFailures:
    def test_transport_error_returns_none(self, client):
        with patch.object(client.session, "get", side_effect=requests.ConnectionError("refused")):
            assert client.fetch("/nodes") is None
            assert client.fetch_data("/nodes") is None

    def test_timeout_returns_none(self, client):
        with patch.object(client.session, "get", side_effect=requests.Timeout("slow")):
            assert client.fetch("/nodes") is None

    def test_http_error_returns_none(self, client):
        with patch.object(client.session, "get", return_value=make_response("{}", 401, "Unauthorized")):
            assert client.fetch("/nodes") is None

    def test_malformed_body_returns_none(self, client):
        with patch.object(client.session, "get", return_value=make_response("<html>")):
            assert client.fetch("/nodes") is None

    def test_failure_is_logged_with_path(self, client, caplog):
        caplog.set_level(logging.DEBUG, logger="proxmox_exporter.client")
        with patch.object(client.session, "get", side_effect=requests.ConnectionError("refused")):
            client.fetch("/nodes/pve1/qemu")

        errors = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert len(errors) == 1
        assert "/nodes/pve1/qemu" in errors[0].getMessage()


class TestErrorLog:
    def test_repeated_errors_are_logged_once(self, caplog):
        caplog.set_level(logging.DEBUG, logger="proxmox_exporter.client")
        log = ErrorLog()

        assert log.failed("/nodes", "boom") is True
        assert log.failed("/nodes", "boom") is False

        assert [r.levelno for r in caplog.records] == [logging.ERROR, logging.DEBUG]

    def test_success_rearms_error(self, caplog):
        log = ErrorLog()
        log.failed("/nodes", "boom")

        assert log.succeeded("/nodes") is True
        assert log.succeeded("/nodes") is False
        assert log.failed("/nodes", "boom") is True

    def test_keys_are_independent(self):
        log = ErrorLog()
        log.failed("/nodes/pve1/status", "boom")
        assert log.failed("/nodes/pve2/status", "boom") is True
