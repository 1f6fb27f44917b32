"""Certificate fingerprints, remote certificate retrieval and free port allocation."""

from __future__ import annotations

import base64
import binascii
import contextlib
import hashlib
import re
import socket
import ssl
from urllib.parse import urlsplit

from cryptography import x509

__all__ = [
    "DEFAULT_TRANSPORT_TIMEOUT",
    "cert_fingerprint",
    "cert_fingerprint_str",
    "get_remote_certificate",
    "get_remote_certificate_with_context",
    "allocate_ports",
    "allocate_port",
]

DEFAULT_TRANSPORT_TIMEOUT = 30.0

_PEM_RE = re.compile(
    r"-----BEGIN ([^-\r\n]+)-----\r?\n(.*?)-----END \1-----", re.DOTALL
)


def cert_fingerprint(der_bytes: bytes) -> str:
    """Return the SHA-256 fingerprint of a DER encoded certificate as hex."""
    return hashlib.sha256(der_bytes).hexdigest()


def cert_fingerprint_str(pem_text: str) -> str:
    """Return the SHA-256 fingerprint of the first PEM certificate in the text.

    Raises ValueError if no PEM block is found or it is not a certificate.
    """
    match = _PEM_RE.search(pem_text)
    if match is None:
        raise ValueError("invalid certificate")
    body = "".join(
        line.strip() for line in match.group(2).splitlines() if line.strip() and ":" not in line
    )
    try:
        der = base64.b64decode(body, validate=True)
    except (binascii.Error, ValueError):
        raise ValueError("invalid certificate") from None
    cert = x509.load_der_x509_certificate(der)
    return cert_fingerprint(cert.public_bytes(_der_encoding()))


def _der_encoding():
    from cryptography.hazmat.primitives.serialization import Encoding

    return Encoding.DER


def get_remote_certificate(address: str) -> x509.Certificate:
    """Connect to the server at the given URL and return its certificate."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.minimum_version = ssl.TLSVersion.TLSv1_3
    return get_remote_certificate_with_context(address, context)


def get_remote_certificate_with_context(
    address: str, ssl_context: ssl.SSLContext
) -> x509.Certificate:
    """Connect to the server with the given context, without verifying it, and return its certificate."""
    parts = urlsplit(address)
    if parts.scheme not in ("http", "https"):
        raise ValueError(f"unsupported protocol scheme {parts.scheme!r}")
    host = parts.hostname
    if not host:
        raise ValueError(f"no host in address {address!r}")

    if parts.scheme == "http":
        with socket.create_connection((host, parts.port or 80), DEFAULT_TRANSPORT_TIMEOUT):
            pass
        raise ConnectionError("unable to read remote TLS certificate")

    ssl_context.check_hostname = False
    ssl_context.verify_mode = ssl.CERT_NONE

    with socket.create_connection((host, parts.port or 443), DEFAULT_TRANSPORT_TIMEOUT) as raw:
        with ssl_context.wrap_socket(raw, server_hostname=host) as tls:
            der = tls.getpeercert(binary_form=True)

    if not der:
        raise ConnectionError("unable to read remote TLS certificate")
    return x509.load_der_x509_certificate(der)


def _listen_local() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("127.0.0.1", 0))
        sock.listen(1)
    except OSError:
        sock.close()
        raise
    return sock


def allocate_ports(num: int) -> list[int]:
    """Return num distinct free TCP ports on the loopback interface.

    The ports may be taken by someone else before they are used.
    """
    with contextlib.ExitStack() as stack:
        return [stack.enter_context(_listen_local()).getsockname()[1] for _ in range(num)]


def allocate_port() -> int:
    """Return one free TCP port on the loopback interface."""
    with _listen_local() as sock:
        return sock.getsockname()[1]