"""Read-only HTTP endpoint exposing this helper's shared identity.

The partner fetches the document once and copies it into the
``partner_shared_info`` of the QuerySteps it sends.
"""

from __future__ import annotations

import logging
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from dpf_histograms.query import HelperSharedInfo

logger = logging.getLogger(__name__)

SHARED_INFO_PATHS = ("/", "/shared_info")


def make_shared_info_handler(info: HelperSharedInfo) -> type[BaseHTTPRequestHandler]:
    """Build a request handler class that serves ``info`` as JSON on GET."""
    body = info.to_json()

    class SharedInfoHandler(BaseHTTPRequestHandler):
        def do_GET(self) -> None:  # noqa: N802
            if self.path.split("?", 1)[0] not in SHARED_INFO_PATHS:
                self.send_error(HTTPStatus.NOT_FOUND)
                return
            self.send_response(HTTPStatus.OK)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def log_message(self, format: str, *args) -> None:  # noqa: A002
            logger.debug("%s - %s", self.address_string(), format % args)

    return SharedInfoHandler


def serve_shared_info(
    info: HelperSharedInfo,
    host: str = "127.0.0.1",
    port: int = 0,
) -> ThreadingHTTPServer:
    """Start serving ``info`` on a daemon thread.

    Port 0 picks a free port; read it back from ``server.server_address``.
    Call ``shutdown()`` and ``server_close()`` on the returned server to stop.
    """
    server = ThreadingHTTPServer((host, port), make_shared_info_handler(info))
    thread = threading.Thread(target=server.serve_forever, name="shared-info", daemon=True)
    thread.start()
    logger.info("serving shared info of %s on %s:%d", info.origin, *server.server_address[:2])
    return server
