import os
import unittest

from fastapi.testclient import TestClient
from starlette.requests import Request

os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

from app.main import app
from app.core.http_hardening import request_origin


def _request(headers: list[tuple[bytes, bytes]], client=("127.0.0.1", 12345)) -> Request:
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "POST",
        "scheme": "http",
        "path": "/api/realms/acme/sms/verification-code",
        "raw_path": b"/api/realms/acme/sms/verification-code",
        "query_string": b"",
        "headers": headers,
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


class HttpHardeningTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()

    def test_health_has_security_headers_and_request_id(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)

        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertEqual(response.headers.get("x-frame-options"), "DENY")
        self.assertEqual(response.headers.get("referrer-policy"), "no-referrer")
        self.assertEqual(response.headers.get("cache-control"), "no-store")

        request_id = response.headers.get("x-request-id")
        self.assertIsNotNone(request_id)
        self.assertRegex(str(request_id), r"^[A-Za-z0-9._-]{1,128}$")

    def test_valid_request_id_is_preserved(self):
        external_request_id = "release-check-2026_10_18"
        response = self.client.get("/health", headers={"X-Request-ID": external_request_id})
        self.assertEqual(response.headers.get("x-request-id"), external_request_id)

    def test_invalid_request_id_is_replaced(self):
        bad_request_id = "bad id with spaces"
        response = self.client.get("/health", headers={"X-Request-ID": bad_request_id})
        response_request_id = response.headers.get("x-request-id")
        self.assertNotEqual(response_request_id, bad_request_id)
        self.assertRegex(str(response_request_id), r"^[A-Za-z0-9._-]{1,128}$")

    def test_error_response_keeps_security_headers_and_request_id(self):
        # No bearer token => 401 from dependency, middleware headers must still be present.
        response = self.client.post(
            "/api/realms/acme/sms/verification-code/verify",
            json={"phone_number": "+15551230000", "code": "123456"},
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.headers.get("x-content-type-options"), "nosniff")
        self.assertTrue(bool(response.headers.get("x-request-id")))

    def test_origin_prefers_forwarded_address(self):
        origin = request_origin(
            _request([(b"x-forwarded-for", b"198.51.100.4, 10.0.0.2"), (b"host", b"auth.example.com")])
        )
        self.assertEqual(origin.ip, "198.51.100.4")
        self.assertEqual(origin.port, 12345)
        self.assertEqual(origin.host, "auth.example.com")

    def test_origin_falls_back_to_client(self):
        origin = request_origin(_request([]))
        self.assertEqual(origin.ip, "127.0.0.1")
        self.assertIsNone(origin.host)
