"""Client certificate management on top of a REST client."""

from __future__ import annotations

import json
from typing import Any

from amssdk.api import VERSION, Certificate, CertificatesPost

__all__ = ["CertificatesClient"]


def _api_path(*parts: str) -> str:
    segments = [VERSION, *(p.strip("/") for p in parts)]
    return "/" + "/".join(s for s in segments if s)


class CertificatesClient:
    """Certificate related calls; the client must offer query_struct, call_api and query_operation."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def list_certificates(self) -> list[Certificate]:
        """Return all registered client certificates."""
        data, _ = self.client.query_struct("GET", _api_path("certificates"), None, None, None, "")
        if data is None:
            return []
        if not isinstance(data, list):
            raise ValueError("certificate listing is not a list")
        return [Certificate.from_dict(entry) for entry in data]

    def add_certificate(self, base64_public_key: str, trust_password: str = "") -> None:
        """Register a base64 encoded certificate, optionally using the trust password."""
        request = CertificatesPost(certificate=base64_public_key, trust_password=trust_password)
        body = json.dumps(request.to_dict()).encode("utf-8")
        self.client.call_api("POST", _api_path("certificates"), None, None, body, "")

    def retrieve_certificate(self, fingerprint: str) -> Certificate:
        """Return the certificate with the given fingerprint."""
        data, _ = self.client.query_struct(
            "GET", _api_path("certificates", fingerprint), None, None, None, ""
        )
        return Certificate.from_dict(data)

    def delete_certificate(self, fingerprint: str) -> Any:
        """Remove a certificate and return the operation doing it."""
        operation, _ = self.client.query_operation(
            "DELETE", _api_path("certificates", fingerprint), None, None, None, ""
        )
        return operation