"""Client access to background operations and a handle on a single running operation."""

from __future__ import annotations

import threading
from typing import Any, Callable
from urllib.parse import quote_plus

from amssdk.api import VERSION, Operation
from amssdk.errors import AmsError
from amssdk.event_listener import EventListener, EventTarget

__all__ = ["OperationsClient", "RemoteOperation"]

_MONITOR_INTERVAL = 0.05


def _api_path(*parts: str) -> str:
    segments = [VERSION, *(p.strip("/") for p in parts)]
    return "/" + "/".join(s for s in segments if s)


def _fraction(value: int, unit: int, width: int) -> str:
    whole, frac = divmod(value, unit)
    if frac == 0:
        return str(whole)
    return f"{whole}.{frac:0{width}d}".rstrip("0")


def _format_duration(seconds: float) -> str:
    """Format a duration in seconds the way the service expects, e.g. "1m30s"."""
    total = round(seconds * 1_000_000_000)
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    if total < 1_000:
        return f"{sign}{total}ns"
    if total < 1_000_000:
        return f"{sign}{_fraction(total, 1_000, 3)}µs"
    if total < 1_000_000_000:
        return f"{sign}{_fraction(total, 1_000_000, 6)}ms"
    hours, rest = divmod(total, 3600 * 1_000_000_000)
    minutes, rest = divmod(rest, 60 * 1_000_000_000)
    secs = _fraction(rest, 1_000_000_000, 9) + "s"
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}"
    if minutes:
        return f"{sign}{minutes}m{secs}"
    return sign + secs


class OperationsClient:
    """Operation related calls on top of a REST client.

    The client must offer query_struct (returning metadata and ETag), call_api,
    websocket and get_events.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    def list_operation_uuids(self) -> list[str]:
        """Return the URLs of all operations."""
        data, _ = self.client.query_struct("GET", _api_path("operations"), None, None, None, "")
        if data is None:
            return []
        if not isinstance(data, list) or not all(isinstance(v, str) for v in data):
            raise ValueError("operations listing is not a list of strings")
        return list(data)

    def list_operations(self) -> list[Operation]:
        """Return all operations, whatever their state."""
        params = {"recursion": "1"}
        data, _ = self.client.query_struct(
            "GET", _api_path("operations"), params, None, None, ""
        )
        if data is None:
            return []
        if not isinstance(data, dict):
            raise ValueError("operations listing is not an object")
        return [Operation.from_dict(entry) for group in data.values() for entry in group or []]

    def retrieve_operation_by_id(self, uuid: str) -> tuple[Operation, str]:
        """Return the operation with the given id together with its ETag."""
        resource = _api_path("operations", quote_plus(uuid))
        data, etag = self.client.query_struct("GET", resource, None, None, None, "")
        return Operation.from_dict(data), etag

    def wait_for_operation_to_finish(self, uuid: str, timeout: float = 0) -> Operation:
        """Block on the server until the operation finished or timeout seconds passed."""
        resource = _api_path("operations", quote_plus(uuid), "wait")
        params = {"timeout": _format_duration(timeout)} if timeout > 0 else None
        data, _ = self.client.query_struct("GET", resource, params, None, None, "")
        return Operation.from_dict(data)

    def get_operation_websocket(self, uuid: str, secret: str = "") -> Any:
        """Open the websocket attached to an operation."""
        resource = _api_path("operations", quote_plus(uuid), "websocket")
        if secret:
            resource = f"{resource}?secret={quote_plus(secret)}"
        return self.client.websocket(resource)

    def delete_operation(self, uuid: str) -> None:
        """Cancel a running operation."""
        resource = _api_path("operations", quote_plus(uuid))
        self.client.call_api("DELETE", resource, None, None, None, "")


class RemoteOperation:
    """A running operation that can be waited for, watched or cancelled."""

    def __init__(
        self,
        operation: Operation,
        operations: OperationsClient,
        listener: EventListener | None = None,
    ) -> None:
        self.operation = operation
        self._operations = operations
        self._listener = listener
        self._handler_ready = False
        self._lock = threading.Lock()
        self._done = threading.Event()

    @property
    def id(self) -> str:
        """Identifier of the operation."""
        return self.operation.id

    def add_handler(self, function: Callable[[Operation], object]) -> EventTarget | None:
        """Call function with every update of this operation; None if already final."""
        self._setup_listener()
        with self._lock:
            if self.operation.status_code.is_final() or self._listener is None:
                return None

            def wrapped(data: Any) -> None:
                updated = self._extract_operation(data)
                if updated is not None:
                    function(updated)

            return self._listener.add_handler(["operation"], wrapped)

    def cancel(self) -> None:
        """Ask the server to cancel the operation."""
        self._operations.delete_operation(self.operation.id)

    def get(self) -> Operation:
        """Return the current state of the operation."""
        return self.operation

    def remove_handler(self, target: EventTarget) -> None:
        """Remove a handler added with add_handler."""
        with self._lock:
            if self._listener is None:
                return
            self._listener.remove_handler(target)

    def refresh(self) -> None:
        """Fetch the current state from the server unless events keep it current."""
        if self._handler_ready:
            return
        self.operation, _ = self._operations.retrieve_operation_by_id(self.operation.id)

    def wait(self, timeout: float | None = None) -> None:
        """Wait until the operation reached a final state.

        Raises AmsError with the operation's error if it failed, and cancels the
        operation and raises TimeoutError if timeout seconds pass first.
        """
        if self.operation.status_code.is_final():
            if self.operation.err:
                raise AmsError(self.operation.err)
            return

        self._setup_listener()

        if not self._done.wait(timeout):
            try:
                self.cancel()
            except Exception as exc:
                raise AmsError(f"Cannot cancel operation {self.operation.id}: {exc}") from exc
            raise TimeoutError("Operation timeout")

        if self.operation.err:
            raise AmsError(self.operation.err)

    def _abort_setup(self, ready: threading.Event) -> None:
        if self._listener is not None:
            self._listener.disconnect()
        self._listener = None
        self._done.set()
        ready.set()

    def _setup_listener(self) -> None:
        with self._lock:
            if self._handler_ready:
                return

            if self._listener is None:
                self._listener = self._operations.client.get_events()

            ready = threading.Event()

            def on_event(data: Any) -> None:
                ready.wait()
                updated = self._extract_operation(data)
                if updated is None:
                    return
                with self._lock:
                    if self._listener is None:
                        return
                    self.operation = updated
                    if self.operation.status_code.is_final():
                        self._listener.disconnect()
                        self._listener = None
                        self._done.set()

            try:
                self._listener.add_handler(["operation"], on_event)
            except Exception:
                self._abort_setup(ready)
                raise

            threading.Thread(target=self._monitor, args=(ready,), daemon=True).start()

            try:
                self.refresh()
            except Exception:
                self._abort_setup(ready)
                raise

            if self.operation.status_code.is_final():
                self._listener.disconnect()
                self._listener = None
                self._done.set()
                self._handler_ready = True
                ready.set()
                if self.operation.err:
                    raise AmsError(self.operation.err)
                return

            self._handler_ready = True
            ready.set()

    def _monitor(self, ready: threading.Event) -> None:
        ready.wait()
        with self._lock:
            listener = self._listener
        if listener is None:
            return
        while not self._done.is_set():
            if not listener.is_active():
                with self._lock:
                    if self._listener is not None:
                        err = listener.err
                        self.operation.err = (
                            str(err) if err is not None else "event listener disconnected"
                        )
                        self._done.set()
                return
            self._done.wait(_MONITOR_INTERVAL)

    def _extract_operation(self, data: Any) -> Operation | None:
        if not isinstance(data, dict) or "metadata" not in data:
            return None
        try:
            updated = Operation.from_dict(data["metadata"])
        except ValueError:
            return None
        if updated.id != self.operation.id:
            return None
        return updated