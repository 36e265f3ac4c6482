"""Unit tests for the identity exchange endpoint."""

import json
import urllib.error
import urllib.request

import pytest

from dpf_histograms.errors import ConfigError
from dpf_histograms.query import HelperSharedInfo, read_helper_shared_info
from dpf_histograms.service import serve_shared_info


@pytest.fixture
def server():
    info = HelperSharedInfo("helper0", "gs://bucket/helper0/shared")
    srv = serve_shared_info(info, port=0)
    yield srv
    srv.shutdown()
    srv.server_close()


def _url(server, path: str) -> str:
    host, port = server.server_address[:2]
    return f"http://{host}:{port}{path}"


def test_get_returns_shared_info(server) -> None:
    with urllib.request.urlopen(_url(server, "/shared_info"), timeout=5) as resp:
        assert resp.headers["Content-Type"] == "application/json"
        body = resp.read()
    assert HelperSharedInfo.from_json(body) == HelperSharedInfo("helper0", "gs://bucket/helper0/shared")
    assert json.loads(body) == {"origin": "helper0", "shared_dir": "gs://bucket/helper0/shared"}


def test_unknown_path_is_404(server) -> None:
    with pytest.raises(urllib.error.HTTPError) as info:
        urllib.request.urlopen(_url(server, "/other"), timeout=5)
    assert info.value.code == 404


def test_document_is_read_only(server) -> None:
    request = urllib.request.Request(_url(server, "/shared_info"), data=b"{}", method="POST")
    with pytest.raises(urllib.error.HTTPError) as info:
        urllib.request.urlopen(request, timeout=5)
    assert info.value.code == 501


def test_partner_reads_served_info(server) -> None:
    info = read_helper_shared_info(_url(server, "/shared_info"), timeout=5)
    assert info == HelperSharedInfo("helper0", "gs://bucket/helper0/shared")


def test_missing_document_is_config_error(server) -> None:
    with pytest.raises(ConfigError):
        read_helper_shared_info(_url(server, "/other"), timeout=5)


def test_unreachable_partner_is_config_error(server) -> None:
    url = _url(server, "/shared_info")
    server.shutdown()
    server.server_close()
    with pytest.raises(ConfigError):
        read_helper_shared_info(url, timeout=5)
