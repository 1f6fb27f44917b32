import json

from amssdk.api import Certificate
from amssdk.certificates import CertificatesClient


class FakeClient:
    def __init__(self):
        self.structs = {}
        self.calls = []
        self.operation = object()

    def query_struct(self, method, path, params, header, body, etag):
        self.calls.append((method, path, body))
        return self.structs[(method, path)], ""

    def call_api(self, method, path, params, header, body, etag):
        self.calls.append((method, path, body))
        return None, ""

    def query_operation(self, method, path, params, header, body, etag):
        self.calls.append((method, path, body))
        return self.operation, ""


def test_list_certificates():
    fake = FakeClient()
    fake.structs[("GET", "/1.0/certificates")] = [{"certificate": "abc", "fingerprint": "f1"}]
    result = CertificatesClient(fake).list_certificates()
    assert result == [Certificate(certificate="abc", fingerprint="f1")]


def test_list_certificates_empty():
    fake = FakeClient()
    fake.structs[("GET", "/1.0/certificates")] = None
    assert CertificatesClient(fake).list_certificates() == []


def test_add_certificate_sends_trust_password():
    fake = FakeClient()
    trust_password = "password"
    CertificatesClient(fake).add_certificate("abc", trust_password)
    method, path, body = fake.calls[0]
    assert (method, path) == ("POST", "/1.0/certificates")
    assert json.loads(body) == {"certificate": "abc", "trust-password": "password"}


def test_add_certificate_without_password_omits_field():
    fake = FakeClient()
    CertificatesClient(fake).add_certificate("abc")
    assert json.loads(fake.calls[0][2]) == {"certificate": "abc"}


def test_retrieve_certificate():
    fake = FakeClient()
    fake.structs[("GET", "/1.0/certificates/f1")] = {"certificate": "abc", "fingerprint": "f1"}
    cert = CertificatesClient(fake).retrieve_certificate("f1")
    assert cert.fingerprint == "f1"
    assert cert.certificate == "abc"


def test_delete_certificate_returns_operation():
    fake = FakeClient()
    result = CertificatesClient(fake).delete_certificate("f1")
    assert result is fake.operation
    assert fake.calls == [("DELETE", "/1.0/certificates/f1", None)]