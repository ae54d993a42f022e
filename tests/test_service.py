"""End-to-end tests for the demo service HTTP API."""

from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import List

from fastapi.testclient import TestClient

from apm_demo.config import ServiceConfig
from apm_demo.database import Database
from apm_demo.metrics import MetricsRecorder
from apm_demo.service import create_app


class _FixedRandom:
    def __init__(self, value: float) -> None:
        self.value = value

    def __call__(self) -> float:
        return self.value


class DemoServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tempdir = tempfile.TemporaryDirectory()
        db_path = Path(self._tempdir.name) / "app.db"
        self.config = ServiceConfig(
            database_path=db_path,
            default_slow_delay_ms=3000,
            max_delay_ms=50,
            default_allocation_size=10,
            max_allocation_size=100,
            external_call_delay_ms=0,
            complex_step_delay_ms=0,
        )
        self.database = Database(db_path)
        self.database.initialize()
        self.metrics = MetricsRecorder()
        self.random = _FixedRandom(0.9)
        self.sleeps: List[float] = []

    def tearDown(self) -> None:
        self.database.close()
        self._tempdir.cleanup()

    async def _record_sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    def _client(self, *, config: ServiceConfig | None = None) -> TestClient:
        app = create_app(
            database=self.database,
            config=config or self.config,
            metrics=self.metrics,
            random_source=self.random,
            sleep=self._record_sleep,
        )
        return TestClient(app)

    def test_health_reports_status(self) -> None:
        with self._client() as client:
            response = client.get("/api/health")
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["status"], "healthy")
        self.assertIn("timestamp", payload)
        self.assertGreaterEqual(payload["uptime"], 0)

    def test_list_users_returns_seeded_users(self) -> None:
        with self._client() as client:
            response = client.get("/api/users")
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(len(payload["data"]), 5)
        self.assertEqual(
            {user["email"] for user in payload["data"]},
            {
                "alice@example.com",
                "bob@example.com",
                "charlie@example.com",
                "diana@example.com",
                "eve@example.com",
            },
        )
        self.assertEqual(set(payload["data"][0]), {"id", "name", "email", "created_at"})

    def test_create_and_fetch_user(self) -> None:
        with self._client() as client:
            created = client.post("/api/users", json={"name": "Frank", "email": "frank@example.com"})
            self.assertEqual(created.status_code, 201, created.text)
            user = created.json()["data"]
            self.assertEqual(user["name"], "Frank")

            fetched = client.get(f"/api/users/{user['id']}")
            self.assertEqual(fetched.status_code, 200, fetched.text)
            self.assertEqual(fetched.json(), {"success": True, "data": user})

            listing = client.get("/api/users").json()["data"]
            self.assertEqual(len(listing), 6)
            self.assertEqual(listing[0]["id"], user["id"])

    def test_create_user_trims_whitespace(self) -> None:
        with self._client() as client:
            created = client.post("/api/users", json={"name": "  Grace ", "email": " grace@example.com "})
        self.assertEqual(created.status_code, 201, created.text)
        self.assertEqual(created.json()["data"]["email"], "grace@example.com")

    def test_create_user_requires_name_and_email(self) -> None:
        with self._client() as client:
            for body in ({"name": "Only Name"}, {"email": "only@example.com"}, {"name": " ", "email": "x@example.com"}):
                response = client.post("/api/users", json=body)
                self.assertEqual(response.status_code, 400, response.text)
                self.assertEqual(
                    response.json(),
                    {"success": False, "error": "Name and email are required"},
                )

            missing_body = client.post("/api/users")
            self.assertEqual(missing_body.status_code, 400, missing_body.text)

        self.assertEqual(self.database.count_users(), 5)

    def test_duplicate_email_returns_conflict(self) -> None:
        with self._client() as client:
            response = client.post("/api/users", json={"name": "Dup", "email": "alice@example.com"})
            self.assertEqual(response.status_code, 409, response.text)
            payload = response.json()
            self.assertFalse(payload["success"])
            self.assertIn("already exists", payload["error"])

            listing = client.get("/api/users").json()["data"]
        self.assertEqual(len(listing), 5)

    def test_get_missing_user_returns_not_found(self) -> None:
        with self._client() as client:
            response = client.get("/api/users/9999")
        self.assertEqual(response.status_code, 404, response.text)
        self.assertEqual(response.json(), {"success": False, "error": "User not found"})

    def test_get_user_beyond_integer_range_returns_not_found(self) -> None:
        with self._client() as client:
            response = client.get("/api/users/99999999999999999999")
            negative = client.get("/api/users/-99999999999999999999")
        self.assertEqual(response.status_code, 404, response.text)
        self.assertEqual(response.json(), {"success": False, "error": "User not found"})
        self.assertEqual(negative.status_code, 404, negative.text)

    def test_get_user_with_invalid_id_returns_bad_request(self) -> None:
        with self._client() as client:
            response = client.get("/api/users/not-a-number")
        self.assertEqual(response.status_code, 400, response.text)
        self.assertFalse(response.json()["success"])

    def test_unknown_route_returns_envelope(self) -> None:
        with self._client() as client:
            response = client.get("/api/does-not-exist")
        self.assertEqual(response.status_code, 404, response.text)
        self.assertEqual(response.json(), {"success": False, "error": "Route not found"})

    def test_slow_query_uses_requested_delay(self) -> None:
        with self._client() as client:
            response = client.get("/api/slow-query", params={"delay": "20"})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["message"], "Intentionally slow response (20ms)")
        self.assertEqual(len(payload["data"]), 5)
        self.assertEqual(self.sleeps, [0.02])

    def test_slow_query_clamps_and_defaults_delay(self) -> None:
        with self._client() as client:
            clamped = client.get("/api/slow-query", params={"delay": "100000"})
            invalid = client.get("/api/slow-query", params={"delay": "soon"})
        self.assertEqual(clamped.json()["message"], "Intentionally slow response (50ms)")
        # The configured default (3000ms) is also capped by max_delay_ms.
        self.assertEqual(invalid.json()["message"], "Intentionally slow response (50ms)")
        self.assertEqual(self.sleeps, [0.05, 0.05])

    def test_memory_intensive_allocates_requested_size(self) -> None:
        with self._client() as client:
            response = client.get("/api/memory-intensive", params={"size": "25"})
            default = client.get("/api/memory-intensive")
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["message"], "Created array with 25 elements")
        self.assertIn("maxRss", payload["memoryUsage"])
        self.assertEqual(default.json()["message"], "Created array with 10 elements")

    def test_random_error_success_branch(self) -> None:
        self.random.value = 0.95
        with self._client() as client:
            response = client.get("/api/random-error")
        self.assertEqual(response.status_code, 200, response.text)
        self.assertEqual(response.json(), {"success": True, "message": "No error this time!"})

    def test_random_error_not_found_branch(self) -> None:
        self.random.value = 0.4
        with self._client() as client:
            response = client.get("/api/random-error")
        self.assertEqual(response.status_code, 404, response.text)
        self.assertEqual(response.json(), {"success": False, "error": "Resource not found"})

    def test_random_error_server_error_branch(self) -> None:
        self.random.value = 0.6
        with self._client() as client:
            response = client.get("/api/random-error")
        self.assertEqual(response.status_code, 500, response.text)
        self.assertEqual(response.json(), {"success": False, "error": "Internal server error"})

    def test_random_error_simulated_failure_is_reported(self) -> None:
        self.random.value = 0.1
        with self._client() as client:
            response = client.get("/api/random-error", headers={"Origin": "http://example.com"})
        self.assertEqual(response.status_code, 500, response.text)
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertIn("Random error occurred!", payload["error"])
        self.assertNotIn("stack", payload)
        self.assertEqual(response.headers.get("access-control-allow-origin"), "*")
        self.assertEqual(self.metrics.snapshot()["errors"]["SimulatedFailure"]["count"], 1)

    def test_unhandled_exception_includes_stack_in_development(self) -> None:
        self.random.value = 0.1
        config = ServiceConfig(
            database_path=self.config.database_path,
            environment="development",
            external_call_delay_ms=0,
            complex_step_delay_ms=0,
        )
        with self._client(config=config) as client:
            response = client.get("/api/random-error")
        self.assertEqual(response.status_code, 500, response.text)
        self.assertIn("SimulatedFailure", response.json()["stack"])

    def test_external_call_returns_simulated_payload(self) -> None:
        with self._client() as client:
            response = client.get("/api/external-call")
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()["data"]
        self.assertEqual(data["service"], "external-api")
        self.assertEqual(data["responseTime"], 0)

    def test_custom_metrics_are_recorded(self) -> None:
        self.random.value = 0.5
        with self._client() as client:
            response = client.get("/api/custom-metrics")
            client.get("/api/custom-metrics")
        self.assertEqual(response.status_code, 200, response.text)
        self.assertTrue(response.json()["success"])

        snapshot = self.metrics.snapshot()
        self.assertEqual(snapshot["metrics"]["Custom/BusinessMetric"]["last"], 50.0)
        self.assertEqual(snapshot["metrics"]["Custom/UserActions"]["count"], 2)
        self.assertEqual(snapshot["attributes"], {"customerId": "12345", "planType": "premium"})

    def test_metrics_endpoint_returns_snapshot(self) -> None:
        self.random.value = 0.25
        with self._client() as client:
            empty = client.get("/api/metrics")
            client.get("/api/custom-metrics")
            response = client.get("/api/metrics")
        self.assertEqual(empty.status_code, 200, empty.text)
        self.assertEqual(empty.json(), {"success": True, "data": {"metrics": {}, "attributes": {}, "errors": {}}})

        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["data"], self.metrics.snapshot())
        self.assertEqual(payload["data"]["metrics"]["Custom/UserActions"]["count"], 1)
        self.assertEqual(payload["data"]["metrics"]["Custom/BusinessMetric"]["last"], 25.0)
        self.assertEqual(payload["data"]["attributes"], {"customerId": "12345", "planType": "premium"})

    def test_complex_operation_summarises_users(self) -> None:
        with self._client() as client:
            response = client.get("/api/complex-operation")
        self.assertEqual(response.status_code, 200, response.text)
        data = response.json()["data"]
        self.assertEqual(data["totalUsers"], 5)
        self.assertEqual(len(data["sampleUsers"]), 3)
        self.assertEqual(self.sleeps, [0.0, 0.0])

    def test_storage_failure_returns_server_error(self) -> None:
        with self._client() as client:
            self.database.close()
            response = client.get("/api/users")
        self.assertEqual(response.status_code, 500, response.text)
        self.assertFalse(response.json()["success"])
        self.assertIn("StorageError", self.metrics.snapshot()["errors"])

    def test_cors_headers_are_present(self) -> None:
        with self._client() as client:
            response = client.get("/api/health", headers={"Origin": "http://example.com"})
        self.assertEqual(response.headers.get("access-control-allow-origin"), "*")

    def test_app_exposes_collaborators_on_state(self) -> None:
        app = create_app(database=self.database, config=self.config, metrics=self.metrics)
        self.assertIs(app.state.database, self.database)
        self.assertIs(app.state.metrics, self.metrics)
        self.assertIs(app.state.config, self.config)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
