from __future__ import annotations

import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest

_ENV_VARS = (
    "TR_CONFIG_PATH",
    "TR_BUCKET",
    "TR_PROJECT_ID",
    "TR_DATA_DIR",
    "TR_SCRATCH_DIR",
    "TR_DB_URL",
    "TR_LOG_FILE",
    "TR_LOG_LEVELS",
    "TR_UMASK",
    "http_proxy",
    "HTTP_PROXY",
    "https_proxy",
    "HTTPS_PROXY",
    "all_proxy",
    "ALL_PROXY",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class _VideoHandler(BaseHTTPRequestHandler):
    payload = b"\x00\x00\x00\x18ftypmp42" * 400

    def do_GET(self):
        if self.path.startswith("/ok/"):
            self.send_response(200)
            self.send_header("Content-Type", "video/mp4")
            self.send_header("Content-Length", str(len(self.payload)))
            self.end_headers()
            self.wfile.write(self.payload)
        elif self.path.startswith("/truncated/"):
            self.send_response(200)
            self.send_header("Content-Type", "video/mp4")
            self.send_header("Content-Length", "100000")
            self.end_headers()
            self.wfile.write(self.payload[:10])
            self.close_connection = True
        else:
            self.send_error(404, "Not Found")

    def log_message(self, format, *args):
        pass


@pytest.fixture
def video_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), _VideoHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)


@pytest.fixture
def closed_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return port
