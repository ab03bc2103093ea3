"""Tests for the HTTP executor against a local server."""

import http.server
import json
import threading

import pytest
from requests.cookies import RequestsCookieJar

from reqflow.executor import execute_request


class _Handler(http.server.BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def _reply(self, status, payload, headers=()):
        data = payload.encode() if isinstance(payload, str) else json.dumps(payload).encode()
        self.send_response(status)
        for name, value in headers:
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def do_GET(self):
        if self.path == "/login":
            self._reply(200, {"ok": True}, [("Set-Cookie", "sid=abc; Path=/")])
        elif self.path == "/whoami":
            self._reply(200, {"cookie": self.headers.get("Cookie", "")})
        elif self.path == "/text":
            self._reply(404, "not here", [("Content-Type", "text/plain")])
        else:
            self._reply(500, {"error": "unknown"})

    def do_POST(self):
        length = int(self.headers.get("Content-Length", 0))
        body = self.rfile.read(length).decode()
        self._reply(
            200,
            {"body": body, "ctype": self.headers.get("Content-Type", "")},
            [("X-Request-Id", "r-1")],
        )


@pytest.fixture(scope="module")
def server():
    httpd = http.server.HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


class TestExecuteRequest:
    def test_json_response(self, server):
        result = execute_request("POST", f"{server}/echo", {"Content-Type": "text/plain"}, "hi")
        assert result.error is None
        assert result.status_code == 200
        assert result.body == {"body": "hi", "ctype": "text/plain"}
        assert result.headers["X-Request-Id"] == "r-1"
        assert result.send_time <= result.recv_time

    def test_text_response_and_error_status(self, server):
        result = execute_request("get", f"{server}/text")
        assert result.error is None
        assert result.status_code == 404
        assert result.body == "not here"
        assert result.snapshot()["body"] == "not here"

    def test_cookie_jar_updated_in_place_and_resent(self, server):
        jar = RequestsCookieJar()
        execute_request("GET", f"{server}/login", cookie_jar=jar)
        assert jar.get("sid") == "abc"

        result = execute_request("GET", f"{server}/whoami", cookie_jar=jar)
        assert result.body == {"cookie": "sid=abc"}

    def test_unencodable_header_is_reported_not_raised(self, server):
        result = execute_request("GET", f"{server}/whoami", headers={"X-Name": "caf€"})
        assert result.error is not None
        assert result.error.startswith("Unexpected error")
        assert result.status_code == 0
        assert result.recv_time is not None

    def test_connection_error_never_raises(self):
        result = execute_request("GET", "http://127.0.0.1:1/", timeout=2)
        assert result.error is not None
        assert result.error.startswith("Connection error")
        assert result.status_code == 0
        assert result.recv_time is not None
