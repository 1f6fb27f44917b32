"""REST client for the service, reachable over TCP (optionally TLS) or a unix socket."""

from __future__ import annotations

import http.client
import json
import posixpath
import socket
import ssl
import threading
from http import HTTPStatus
from typing import IO, Any, Callable, Mapping, Sequence, Union
from urllib.parse import ParseResult, SplitResult, quote, urlencode, urlsplit

import websocket as websocket_lib

from amssdk.api import VERSION, Response, ResponseType
from amssdk.event_listener import EventListener
from amssdk.operations import OperationsClient, RemoteOperation

__all__ = [
    "DEFAULT_TRANSPORT_TIMEOUT",
    "ClientError",
    "Client",
    "new_client",
    "api_path",
]

DEFAULT_TRANSPORT_TIMEOUT = 60.0

_UNIX_SERVICE_URL = "http://unix"
_PATH_SAFE = "/:@!$&'()*+,;="

Body = Union[bytes, bytearray, memoryview, str, IO[bytes], None]
Headers = Mapping[str, Union[str, Sequence[str]]]


class ClientError(Exception):
    """The service answered a request with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def api_path(*args: str) -> str:
    """Prefix the API version to the given path elements, e.g. "/1.0/certificates"."""
    elements = [VERSION, *(arg for arg in args if arg)]
    return posixpath.normpath("/" + "/".join(elements))


def _status_text(code: int) -> str:
    try:
        return HTTPStatus(code).phrase
    except ValueError:
        return ""


def _body_bytes(body: Body) -> bytes | None:
    if body is None:
        return None
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if isinstance(body, str):
        return body.encode("utf-8")
    data = body.read()
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


def _close_quietly(conn: Any) -> None:
    try:
        conn.close()
    except Exception:  # noqa: BLE001 - closing a broken connection may fail in any way
        pass


class _UnixHTTPConnection(http.client.HTTPConnection):
    """HTTP connection going through a unix domain socket."""

    def __init__(self, path: str, timeout: float | None) -> None:
        super().__init__("unix", timeout=timeout)
        self._path = path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(self._path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class Client:
    """Client of the REST API.

    With unix_socket set, requests go through that socket and service_url is
    ignored. For https without an ssl_context, the server is not verified.
    """

    def __init__(
        self,
        service_url: str = _UNIX_SERVICE_URL,
        ssl_context: ssl.SSLContext | None = None,
        unix_socket: str | None = None,
    ) -> None:
        if unix_socket is not None:
            service_url = _UNIX_SERVICE_URL
        parts = urlsplit(service_url)
        if unix_socket is None:
            if parts.scheme not in ("http", "https") or not parts.hostname:
                raise ValueError("Invalid URL given")
            if ssl_context is None:
                ssl_context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE
        self._url = parts
        self._ssl_context = ssl_context
        self._unix_socket = unix_socket
        self._timeout = DEFAULT_TRANSPORT_TIMEOUT
        self.http_user_agent = ""
        self._event_listeners: list[EventListener] | None = None
        self._listeners_lock = threading.RLock()

    def service_url(self) -> str:
        """Return the URL of the service the client talks to."""
        return self._url.geturl()

    def set_transport_timeout(self, timeout: float) -> None:
        """Replace the timeout, in seconds, applied to requests."""
        self._timeout = timeout

    def _connection(self) -> http.client.HTTPConnection:
        if self._unix_socket is not None:
            return _UnixHTTPConnection(self._unix_socket, self._timeout)
        host, port = self._url.hostname, self._url.port
        if self._url.scheme == "https":
            return http.client.HTTPSConnection(
                host, port, timeout=self._timeout, context=self._ssl_context
            )
        return http.client.HTTPConnection(host, port, timeout=self._timeout)

    def _perform_request(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None,
        header: Headers | None,
        body: Body,
    ) -> tuple[http.client.HTTPConnection, http.client.HTTPResponse]:
        target = quote(path or "/", safe=_PATH_SAFE)
        if params:
            target += "?" + urlencode(sorted(params.items()))
        data = _body_bytes(body)

        conn = self._connection()
        try:
            conn.putrequest(method, target)
            if self.http_user_agent:
                conn.putheader("User-Agent", self.http_user_agent)
            for key, values in (header or {}).items():
                for value in [values] if isinstance(values, str) else values:
                    conn.putheader(key, value)
            if data is not None or method in ("POST", "PUT", "PATCH"):
                conn.putheader("Content-Length", str(len(data or b"")))
            conn.endheaders(data)
            response = conn.getresponse()
        except BaseException:
            conn.close()
            raise
        return conn, response

    @staticmethod
    def _parse_response(resp: http.client.HTTPResponse) -> tuple[Response, str]:
        etag = resp.getheader("ETag", "") or ""
        raw = resp.read()
        try:
            response = Response.from_dict(json.loads(raw))
        except ValueError:
            raise ClientError(_status_text(resp.status), resp.status) from None

        if response.type == ResponseType.ERROR:
            raise ClientError(response.error or _status_text(resp.status), resp.status)
        return response, etag

    def call_api(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        header: Headers | None = None,
        body: Body = None,
        etag: str = "",
    ) -> tuple[Response, str]:
        """Send a request and return the parsed response with its ETag.

        Raises ClientError when the service reports an error.
        """
        conn, resp = self._perform_request(method, path, params, header, body)
        try:
            return self._parse_response(resp)
        finally:
            conn.close()

    def query_struct(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        header: Headers | None = None,
        body: Body = None,
        etag: str = "",
    ) -> tuple[Any, str]:
        """Send a request and return the decoded metadata of the response with its ETag."""
        response, response_etag = self.call_api(method, path, params, header, body, etag)
        return response.metadata, response_etag

    def query_operation(
        self,
        method: str,
        path: str,
        params: Mapping[str, str] | None = None,
        header: Headers | None = None,
        body: Body = None,
        etag: str = "",
    ) -> tuple[RemoteOperation, str]:
        """Send a request answered by a background operation and return a handle on it."""
        try:
            listener: EventListener | None = self.get_events()
        except Exception:  # noqa: BLE001 - events are optional, the operation can be polled
            listener = None

        try:
            response, response_etag = self.call_api(method, path, params, header, body, etag)
            operation = response.metadata_as_operation()
        except BaseException:
            if listener is not None:
                listener.disconnect()
            raise

        return RemoteOperation(operation, OperationsClient(self), listener), response_etag

    def download_file(
        self,
        path: str,
        params: Mapping[str, str] | None,
        header: Headers | None,
        downloader: Callable[[Any, IO[bytes]], Any],
    ) -> Any:
        """GET a file and hand its headers and body stream to downloader.

        Returns what downloader returns. On a status other than 200 the
        response is parsed instead, raising ClientError if it is an error.
        """
        conn, resp = self._perform_request("GET", path, params, header, None)
        try:
            if resp.status != HTTPStatus.OK:
                self._parse_response(resp)
                return None
            return downloader(resp.headers, resp)
        finally:
            conn.close()

    def compose_websocket_path(self, path: str) -> str:
        """Return the websocket URL for the given resource path."""
        scheme = "wss" if self._url.scheme == "https" else "ws"
        host = self._url.netloc.rpartition("@")[2]
        return f"{scheme}://{host}{path}"

    def _dial_websocket(self, url: str) -> websocket_lib.WebSocket:
        options: dict[str, Any] = {"timeout": self._timeout}
        if self.http_user_agent:
            options["header"] = [f"User-Agent: {self.http_user_agent}"]

        sock = None
        if self._unix_socket is not None:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
            sock.settimeout(self._timeout)
            try:
                sock.connect(self._unix_socket)
            except OSError:
                sock.close()
                raise
            options["socket"] = sock
        elif url.startswith("wss://") and self._ssl_context is not None:
            options["sslopt"] = {
                "context": self._ssl_context,
                "cert_reqs": self._ssl_context.verify_mode,
                "check_hostname": self._ssl_context.check_hostname,
            }

        try:
            conn = websocket_lib.create_connection(url, **options)
        except BaseException:
            if sock is not None:
                sock.close()
            raise
        conn.settimeout(None)
        return conn

    def websocket(self, resource: str) -> websocket_lib.WebSocket:
        """Open a websocket connection to the given resource path."""
        return self._dial_websocket(self.compose_websocket_path(resource))

    def get_events(self) -> EventListener:
        """Subscribe to the event stream; all listeners share one connection."""
        with self._listeners_lock:
            listener = EventListener(on_disconnect=self._remove_listener)
            if self._event_listeners is not None:
                self._event_listeners.append(listener)
                return listener

            conn = self._dial_websocket(self.compose_websocket_path(api_path("events")))
            self._event_listeners = [listener]

        threading.Thread(target=self._read_events, args=(conn,), daemon=True).start()
        return listener

    def _remove_listener(self, listener: EventListener) -> None:
        with self._listeners_lock:
            if self._event_listeners is not None:
                self._event_listeners = [
                    entry for entry in self._event_listeners if entry is not listener
                ]

    def _read_events(self, conn: websocket_lib.WebSocket) -> None:
        while True:
            with self._listeners_lock:
                if not self._event_listeners:
                    self._event_listeners = None
                    _close_quietly(conn)
                    return

            try:
                opcode, data = conn.recv_data()
                if opcode == websocket_lib.ABNF.OPCODE_CLOSE:
                    raise ConnectionError("event stream closed by the server")
            except Exception as exc:  # noqa: BLE001 - any failure ends the stream
                err = (
                    exc
                    if isinstance(exc, ConnectionError)
                    else ConnectionError(f"event stream failed: {exc}")
                )
                with self._listeners_lock:
                    for listener in self._event_listeners or []:
                        listener.fail(err)
                    self._event_listeners = None
                _close_quietly(conn)
                return

            try:
                message = json.loads(data)
            except ValueError:
                continue
            if not isinstance(message, dict) or not isinstance(message.get("type"), str):
                continue

            with self._listeners_lock:
                for listener in list(self._event_listeners or []):
                    listener.dispatch(message)


def new_client(
    addr: SplitResult | ParseResult | str | None, ssl_context: ssl.SSLContext | None = None
) -> Client:
    """Create a client for a parsed URL, or for a unix socket when addr is a path string."""
    if addr is None:
        raise ValueError("Empty address given")
    if isinstance(addr, (SplitResult, ParseResult)):
        return Client(addr.geturl(), ssl_context)
    if isinstance(addr, str):
        return Client(unix_socket=addr)
    raise TypeError("Invalid address type given")