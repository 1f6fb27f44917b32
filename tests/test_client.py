import base64
import hashlib
import json
import os
import queue
import shutil
import socketserver
import struct
import tempfile
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlsplit

import pytest
from websocket import WebSocketBadStatusException

from amssdk.api import ResponseType, StatusCode
from amssdk.client import Client, ClientError, api_path, new_client

_WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"


class _State:
    def __init__(self):
        self.routes = {}
        self.requests = []
        self.events = []
        self.release = threading.Event()
        self.ws_enabled = True
        self.ws_connections = 0
        self.url = ""


def _frame(opcode, payload):
    head = bytes([0x80 | opcode])
    if len(payload) < 126:
        head += bytes([len(payload)])
    else:
        head += bytes([126]) + struct.pack("!H", len(payload))
    return head + payload


class _Handler(BaseHTTPRequestHandler):
    protocol_version = "HTTP/1.1"

    def log_message(self, format, *args):
        pass

    def do_GET(self):
        self._handle()

    def do_POST(self):
        self._handle()

    def do_DELETE(self):
        self._handle()

    def _handle(self):
        state = self.server.state
        length = int(self.headers.get("Content-Length") or 0)
        body = self.rfile.read(length) if length else b""
        state.requests.append(
            {"method": self.command, "path": self.path, "headers": self.headers, "body": body}
        )
        if self.headers.get("Upgrade", "").lower() == "websocket" and state.ws_enabled:
            self._websocket(state)
            return
        status, headers, payload, delay = state.routes.get(
            (self.command, self.path.split("?")[0]), (404, {}, b"not json", 0)
        )
        if delay:
            time.sleep(delay)
        try:
            self.send_response(status)
            for key, value in headers.items():
                self.send_header(key, value)
            self.send_header("Content-Length", str(len(payload)))
            self.send_header("Connection", "close")
            self.end_headers()
            self.wfile.write(payload)
        except OSError:
            pass
        self.close_connection = True

    def _websocket(self, state):
        state.ws_connections += 1
        key = self.headers["Sec-WebSocket-Key"]
        accept = base64.b64encode(hashlib.sha1((key + _WS_GUID).encode()).digest()).decode()
        self.send_response(101)
        self.send_header("Upgrade", "websocket")
        self.send_header("Connection", "Upgrade")
        self.send_header("Sec-WebSocket-Accept", accept)
        self.end_headers()
        state.release.wait(5)
        try:
            for message in state.events:
                self.wfile.write(_frame(0x1, message.encode()))
            self.wfile.write(_frame(0x8, struct.pack("!H", 1000)))
            self.connection.settimeout(1)
            self.rfile.read(2)
        except OSError:
            pass
        self.close_connection = True


def _start(httpd, state):
    httpd.state = state
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    return thread


@pytest.fixture
def server():
    state = _State()
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.daemon_threads = True
    _start(httpd, state)
    state.url = f"http://127.0.0.1:{httpd.server_address[1]}"
    yield state
    state.release.set()
    httpd.shutdown()
    httpd.server_close()


def _route(state, method, path, status, payload, headers=None, delay=0):
    state.routes[(method, path)] = (status, headers or {}, payload, delay)


def _sync(metadata):
    return json.dumps(
        {"type": "sync", "status": "Success", "status_code": 200, "metadata": metadata}
    ).encode()


def test_api_path_prefixes_version():
    assert api_path("certificates") == "/1.0/certificates"
    assert api_path("operations", "abc", "wait") == "/1.0/operations/abc/wait"
    assert api_path() == "/1.0"
    assert api_path("a/../b") == "/1.0/b"


def test_new_client_rejects_missing_address():
    with pytest.raises(ValueError):
        new_client(None)


def test_new_client_rejects_unknown_address_type():
    with pytest.raises(TypeError):
        new_client(42)


def test_new_client_from_url_keeps_service_url():
    client = new_client(urlsplit("https://example.com:8443"))
    assert client.service_url() == "https://example.com:8443"


def test_new_client_from_path_uses_unix_service_url():
    assert new_client("/run/ams.socket").service_url() == "http://unix"


def test_client_rejects_unsupported_scheme():
    with pytest.raises(ValueError):
        Client("ftp://example.com")


def test_compose_websocket_path_follows_scheme():
    secure = Client("https://example.com:8443")
    plain = Client("http://example.com")
    assert secure.compose_websocket_path("/1.0/events") == "wss://example.com:8443/1.0/events"
    assert plain.compose_websocket_path("/1.0/events") == "ws://example.com/1.0/events"


def test_call_api_returns_response_and_etag(server):
    _route(server, "GET", "/1.0/info", 200, _sync({"a": 1}), {"ETag": "abc"})
    response, etag = Client(server.url).call_api("GET", "/1.0/info")
    assert response.type == ResponseType.SYNC
    assert response.metadata == {"a": 1}
    assert etag == "abc"


def test_query_struct_returns_metadata(server):
    _route(server, "GET", "/1.0/operations", 200, _sync(["/1.0/operations/x"]), {"ETag": "e1"})
    data, etag = Client(server.url).query_struct("GET", api_path("operations"))
    assert data == ["/1.0/operations/x"]
    assert etag == "e1"


def test_error_response_raises_with_message(server):
    payload = json.dumps({"type": "error", "error": "thing not found", "error_code": 404})
    _route(server, "GET", "/1.0/thing", 404, payload.encode())
    with pytest.raises(ClientError, match="thing not found") as info:
        Client(server.url).call_api("GET", "/1.0/thing")
    assert info.value.status_code == 404


def test_error_response_without_message_uses_status_text(server):
    _route(server, "GET", "/1.0/thing", 403, json.dumps({"type": "error"}).encode())
    with pytest.raises(ClientError) as info:
        Client(server.url).call_api("GET", "/1.0/thing")
    assert str(info.value) == "Forbidden"


def test_non_json_response_uses_status_text(server):
    _route(server, "GET", "/1.0/broken", 500, b"<html>")
    with pytest.raises(ClientError) as info:
        Client(server.url).call_api("GET", "/1.0/broken")
    assert str(info.value) == "Internal Server Error"


def test_params_and_headers_are_sent(server):
    _route(server, "GET", "/1.0/x", 200, _sync({}))
    client = Client(server.url)
    client.http_user_agent = "ams-test"
    client.call_api("GET", "/1.0/x", {"recursion": "1", "b": "2"}, {"X-Test": ["one", "two"]})
    recorded = server.requests[-1]
    assert recorded["path"] == "/1.0/x?b=2&recursion=1"
    assert recorded["headers"].get_all("X-Test") == ["one", "two"]
    assert recorded["headers"]["User-Agent"] == "ams-test"


def test_post_sends_body(server):
    _route(server, "POST", "/1.0/certificates", 200, _sync({}))
    payload = json.dumps({"certificate": "abc"}).encode()
    Client(server.url).call_api("POST", "/1.0/certificates", None, None, payload, "")
    recorded = server.requests[-1]
    assert recorded["method"] == "POST"
    assert recorded["body"] == payload
    assert recorded["headers"]["Content-Length"] == str(len(payload))


def test_download_file_hands_body_to_downloader(server):
    _route(server, "GET", "/1.0/files/f", 200, b"file-content", {"X-Name": "f"})
    result = Client(server.url).download_file(
        "/1.0/files/f", None, None, lambda headers, body: (headers["X-Name"], body.read())
    )
    assert result == ("f", b"file-content")


def test_download_file_error_raises(server):
    payload = json.dumps({"type": "error", "error": "no such file", "error_code": 404})
    _route(server, "GET", "/1.0/files/f", 404, payload.encode())
    with pytest.raises(ClientError, match="no such file"):
        Client(server.url).download_file("/1.0/files/f", None, None, lambda h, b: b.read())


def test_download_file_non_ok_sync_skips_downloader(server):
    _route(server, "GET", "/1.0/files/f", 202, _sync({}))
    called = []
    result = Client(server.url).download_file(
        "/1.0/files/f", None, None, lambda h, b: called.append(b)
    )
    assert result is None
    assert called == []


def test_timeout_is_applied(server):
    _route(server, "GET", "/1.0/slow", 200, _sync({}), delay=1.0)
    client = Client(server.url)
    client.set_transport_timeout(0.2)
    with pytest.raises(TimeoutError):
        client.call_api("GET", "/1.0/slow")


def test_query_operation_without_events(server):
    server.ws_enabled = False
    operation = {
        "id": "op-1",
        "class": "task",
        "status": "Running",
        "status_code": 103,
        "created_at": "2018-04-02T16:49:36.341463206+02:00",
        "updated_at": "2018-04-02T16:49:36.341463206+02:00",
        "may_cancel": False,
    }
    payload = json.dumps(
        {
            "type": "async",
            "status": "Operation created",
            "status_code": 100,
            "operation": "/1.0/operations/op-1",
            "metadata": operation,
        }
    ).encode()
    _route(server, "DELETE", "/1.0/certificates/abc", 202, payload, {"ETag": "e2"})
    op, etag = Client(server.url).query_operation("DELETE", api_path("certificates", "abc"))
    assert op.get().id == "op-1"
    assert op.get().status_code == StatusCode.RUNNING
    assert etag == "e2"
    assert [r["path"] for r in server.requests] == ["/1.0/events", "/1.0/certificates/abc"]


def test_query_operation_error_raises(server):
    server.ws_enabled = False
    payload = json.dumps({"type": "error", "error": "denied", "error_code": 403})
    _route(server, "DELETE", "/1.0/certificates/abc", 403, payload.encode())
    with pytest.raises(ClientError, match="denied"):
        Client(server.url).query_operation("DELETE", api_path("certificates", "abc"))


def test_get_events_dispatches_matching_events(server):
    op_event = {"type": "operation", "metadata": {"id": "op-1"}}
    server.events = [json.dumps({"type": "logging", "metadata": {}}), json.dumps(op_event)]
    listener = Client(server.url).get_events()
    received = queue.Queue()
    listener.add_handler(["operation"], received.put)
    server.release.set()
    assert received.get(timeout=5) == op_event
    with pytest.raises(ConnectionError):
        listener.wait(timeout=5)
    assert received.empty()
    assert not listener.is_active()


def test_get_events_shares_one_connection(server):
    client = Client(server.url)
    first = client.get_events()
    second = client.get_events()
    server.release.set()
    for listener in (first, second):
        with pytest.raises(ConnectionError):
            listener.wait(timeout=5)
    assert server.ws_connections == 1


def test_get_events_fails_when_stream_is_refused(server):
    server.ws_enabled = False
    with pytest.raises(WebSocketBadStatusException):
        Client(server.url).get_events()


def test_websocket_receives_messages(server):
    server.events = ['{"type": "ping"}']
    conn = Client(server.url).websocket(api_path("events"))
    try:
        server.release.set()
        assert conn.recv() == '{"type": "ping"}'
    finally:
        conn.close()


class _UnixServer(socketserver.ThreadingUnixStreamServer):
    daemon_threads = True


def test_unix_socket_client_reaches_server():
    directory = tempfile.mkdtemp(prefix="ams")
    path = os.path.join(directory, "s")
    state = _State()
    httpd = _UnixServer(path, _Handler)
    _start(httpd, state)
    try:
        _route(state, "GET", "/1.0/info", 200, _sync({"ok": True}))
        response, _ = new_client(path).call_api("GET", "/1.0/info")
        assert response.metadata == {"ok": True}
        assert state.requests[-1]["headers"]["Host"] == "unix"
    finally:
        httpd.shutdown()
        httpd.server_close()
        shutil.rmtree(directory, ignore_errors=True)