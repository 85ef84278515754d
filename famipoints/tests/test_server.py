import unittest

from fastapi.testclient import TestClient

from famipoints.config import Settings
from famipoints.db import DatabaseClient
from famipoints.errors import ConfigurationError
from famipoints.server.app import create_app
from famipoints.server.security import create_access_token, decode_access_token

DB_URL = "sqlite+pysqlite:///:memory:"
TEST_SECRET = "test-secret-0123456789abcdef0123456789"


class AppTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(_env_file=None, jwt_secret=TEST_SECRET)
        self.database = DatabaseClient(DB_URL)
        self.client = TestClient(create_app(self.settings, database=self.database))

    def _token(self):
        response = self.client.post(
            "/auth/signup",
            json={"email": "alice@example.com", "password": "secret1", "displayName": "Alice", "role": "parent"},
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        return body["data"]["token"], body["data"]["user"]

    def test_signup_returns_user_and_token(self):
        token, user = self._token()
        self.assertEqual(decode_access_token(token, self.settings), user["id"])
        self.assertEqual(user["role"], "parent")
        self.assertEqual(user["family_id"], user["id"])

    def test_bad_credentials_are_unauthorized(self):
        self._token()
        resp = self.client.post("/auth/signin", json={"email": "alice@example.com", "password": "wrong-pass"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["message"], "Invalid login credentials")

        resp = self.client.post(
            "/auth/signup",
            json={"email": "alice@example.com", "password": "secret1", "displayName": "Alice", "role": "parent"},
        )
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "User already registered")

    def test_requires_bearer_token(self):
        resp = self.client.get("/families/f1/activities")
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json(), {"data": None, "error": "Not authenticated", "message": "Not authenticated"})

        resp = self.client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["message"], "Invalid token")

    def test_token_for_deleted_user_is_rejected(self):
        token = create_access_token("ghost", self.settings)
        resp = self.client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.json()["message"], "Unknown user")

    def test_dashboard_stats_use_camel_case(self):
        token, user = self._token()
        resp = self.client.get(
            f"/families/{user['family_id']}/dashboard-stats",
            headers={"Authorization": f"Bearer {token}"},
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(
            resp.json()["data"],
            {"totalKids": 0, "totalActivities": 0, "totalRewards": 0, "pendingApprovals": 0},
        )

    def test_backend_errors_map_to_status_codes(self):
        token, user = self._token()
        headers = {"Authorization": f"Bearer {token}"}

        resp = self.client.put("/activities/missing", json={"points": 1}, headers=headers)
        self.assertEqual(resp.status_code, 404)
        self.assertIn("not found", resp.json()["message"])

        resp = self.client.get("/families/other/rewards", headers=headers)
        self.assertEqual(resp.status_code, 403)
        self.assertIsNone(resp.json()["data"])

        resp = self.client.post("/rewards", json={"name": "Movie"}, headers=headers)
        self.assertEqual(resp.status_code, 422)
        self.assertIn("family_id", resp.json()["error"])

    def test_list_envelope_has_count(self):
        token, user = self._token()
        headers = {"Authorization": f"Bearer {token}"}
        created = self.client.post(
            "/rewards",
            json={"family_id": user["family_id"], "name": "Movie", "point_cost": 30, "created_by": user["id"]},
            headers=headers,
        )
        self.assertEqual(created.status_code, 201)

        resp = self.client.get(f"/families/{user['family_id']}/rewards", headers=headers)
        body = resp.json()
        self.assertEqual(body["count"], 1)
        self.assertIsNone(body["error"])
        self.assertEqual(body["data"][0]["name"], "Movie")

    def test_api_prefix(self):
        settings = Settings(_env_file=None, jwt_secret=TEST_SECRET, api_prefix="/api")
        client = TestClient(create_app(settings, database=self.database))
        self.assertEqual(client.post("/api/auth/signout").status_code, 200)
        self.assertEqual(client.post("/auth/signout").status_code, 404)

    def test_create_app_requires_database_url(self):
        with self.assertRaises(ConfigurationError):
            create_app(Settings(_env_file=None, database_url="your-database-url-here"))


class SecurityTests(unittest.TestCase):
    def setUp(self):
        self.settings = Settings(_env_file=None, jwt_secret=TEST_SECRET)

    def test_round_trip(self):
        token = create_access_token("user-1", self.settings)
        self.assertEqual(decode_access_token(token, self.settings), "user-1")

    def test_expired_or_foreign_tokens_are_invalid(self):
        expired = create_access_token("user-1", self.settings, minutes=-5)
        self.assertIsNone(decode_access_token(expired, self.settings))

        other = Settings(_env_file=None, jwt_secret="another-secret-0123456789abcdef01234")
        self.assertIsNone(decode_access_token(create_access_token("user-1", other), self.settings))


if __name__ == "__main__":
    unittest.main()
