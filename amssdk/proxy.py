"""Proxy selection from explicit settings or the environment."""

from __future__ import annotations

import ipaddress
import os
import threading
from typing import Callable
from urllib.parse import urlsplit

__all__ = ["proxy_from_environment", "proxy_from_config", "has_port", "use_proxy"]


class _EnvOnce:
    """Value of the first set environment variable, read on first use only."""

    def __init__(self, *names: str) -> None:
        self._names = names
        self._lock = threading.Lock()
        self._loaded = False
        self._value = ""

    def get(self) -> str:
        with self._lock:
            if not self._loaded:
                for name in self._names:
                    self._value = os.environ.get(name, "")
                    if self._value:
                        break
                self._loaded = True
            return self._value


_HTTP_PROXY_ENV = _EnvOnce("HTTP_PROXY", "http_proxy")
_HTTPS_PROXY_ENV = _EnvOnce("HTTPS_PROXY", "https_proxy")
_NO_PROXY_ENV = _EnvOnce("NO_PROXY", "no_proxy")


def proxy_from_environment(url: str) -> str | None:
    """Return the proxy URL to use for url according to the environment, or None.

    Unlike common behaviour, https requests never fall back to HTTP_PROXY.
    """
    return proxy_from_config("", "", "")(url)


def proxy_from_config(
    https_proxy: str = "", http_proxy: str = "", no_proxy: str = ""
) -> Callable[[str], str | None]:
    """Build a function choosing the proxy for a URL; empty values fall back to the environment."""

    def select(url: str) -> str | None:
        parts = urlsplit(url)
        if parts.scheme == "https":
            proxy = https_proxy or _HTTPS_PROXY_ENV.get()
            port = ":443"
        elif parts.scheme == "http":
            proxy = http_proxy or _HTTP_PROXY_ENV.get()
            port = ":80"
        else:
            raise ValueError(f"unknown scheme {parts.scheme}")

        if not proxy:
            return None

        addr = parts.netloc.rpartition("@")[2]
        if not has_port(addr):
            addr += port
        if not use_proxy(addr, no_proxy):
            return None

        try:
            parsed = urlsplit(proxy)
            error: ValueError | None = None
        except ValueError as exc:
            parsed = None
            error = exc
        if parsed is None or not parsed.scheme.startswith("http"):
            try:
                return urlsplit("http://" + proxy).geturl()
            except ValueError:
                pass
        if parsed is None:
            raise ValueError(f"invalid proxy address {proxy!r}: {error}")
        return parsed.geturl()

    return select


def has_port(value: str) -> bool:
    """Tell whether a host string ends with a port."""
    colon = value.rfind(":")
    if colon < 0:
        return False
    bracket = value.rfind("]")
    if bracket < 0:
        if len(value) > colon + 1:
            return value[colon + 1] != "/"
        return False
    return colon > bracket


def _split_host_port(hostport: str) -> tuple[str, str]:
    colon = hostport.rfind(":")
    if colon < 0:
        raise ValueError(f"missing port in address {hostport}")
    if hostport.startswith("["):
        end = hostport.find("]")
        if end < 0:
            raise ValueError(f"missing ']' in address {hostport}")
        if end + 1 == len(hostport):
            raise ValueError(f"missing port in address {hostport}")
        if end + 1 != colon:
            raise ValueError(f"malformed address {hostport}")
        host = hostport[1:end]
        if "[" in hostport[1:end] or "]" in hostport[end + 1 :]:
            raise ValueError(f"unexpected bracket in address {hostport}")
    else:
        host = hostport[:colon]
        if ":" in host:
            raise ValueError(f"too many colons in address {hostport}")
        if "[" in host or "]" in host:
            raise ValueError(f"unexpected bracket in address {hostport}")
    port = hostport[colon + 1 :]
    if "[" in port or "]" in port:
        raise ValueError(f"unexpected bracket in address {hostport}")
    return host, port


def _is_loopback(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped.is_loopback
    return address.is_loopback


def use_proxy(addr: str, no_proxy: str = "") -> bool:
    """Tell whether a proxy should be used to reach addr ("host:port").

    An empty no_proxy falls back to NO_PROXY from the environment.
    """
    if not no_proxy:
        no_proxy = _NO_PROXY_ENV.get()

    if not addr:
        return True
    try:
        host, _ = _split_host_port(addr)
    except ValueError:
        return False
    if host == "localhost" or _is_loopback(host):
        return False

    if no_proxy == "*":
        return False

    addr = addr.strip().lower()
    if has_port(addr):
        addr = addr[: addr.rfind(":")]

    for entry in no_proxy.split(","):
        entry = entry.strip().lower()
        if not entry:
            continue
        if has_port(entry):
            entry = entry[: entry.rfind(":")]
        if addr == entry:
            return False
        if entry.startswith(".") and (addr.endswith(entry) or addr == entry[1:]):
            return False
        if (
            not entry.startswith(".")
            and addr.endswith(entry)
            and addr[len(addr) - len(entry) - 1] == "."
        ):
            return False
    return True