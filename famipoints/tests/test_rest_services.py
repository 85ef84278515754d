import unittest

from fastapi.testclient import TestClient

from famipoints.auth_service import RestApiAuthService
from famipoints.config import Settings
from famipoints.data_service import RestApiDataService
from famipoints.db import DatabaseClient
from famipoints.http_client import InMemoryTokenStore, RestApiClient
from famipoints.server.app import create_app
from famipoints.types import ActivityCategory, AuthEvent, DashboardStats, EntryStatus, UserRole

DB_URL = "sqlite+pysqlite:///:memory:"
TEST_SECRET = "test-secret-0123456789abcdef0123456789"


class RestServicesEndToEndTests(unittest.TestCase):
    """REST variants driven against the in-process FastAPI server."""

    def setUp(self):
        self.database = DatabaseClient(DB_URL)
        settings = Settings(_env_file=None, jwt_secret=TEST_SECRET)
        self.http = TestClient(create_app(settings, database=self.database))
        self.auth, self.data = self._services()

    def _services(self):
        api = RestApiClient(
            "http://testserver", "anon-key", token_store=InMemoryTokenStore(), http=self.http
        )
        return RestApiAuthService(api), RestApiDataService(api)

    def _sign_up_parent(self):
        result = self.auth.sign_up("alice@example.com", "secret1", "Alice", UserRole.PARENT)
        self.assertIsNone(result.error)
        return result.data

    def test_sign_up_stores_token_and_session(self):
        events = []
        self.auth.on_auth_state_change(lambda event, session: events.append((event, session)))

        self.assertIsNone(self.auth.get_session().user)
        parent = self._sign_up_parent()
        self.assertEqual(parent.role, UserRole.PARENT)
        self.assertEqual(parent.family_id, parent.id)
        self.assertTrue(self.auth.api.token_store.get())

        session = self.auth.get_session()
        self.assertEqual(session.user.id, parent.id)
        self.assertEqual(session.user.display_name, "Alice")
        self.assertEqual(events[0][0], AuthEvent.SIGNED_UP)
        self.assertEqual(events[0][1].user.id, parent.id)

    def test_sign_out_clears_token(self):
        self._sign_up_parent()
        events = []
        self.auth.on_auth_state_change(lambda event, session: events.append((event, session)))

        result = self.auth.sign_out()
        self.assertIsNone(result.error)
        self.assertIsNone(self.auth.api.token_store.get())
        self.assertIsNone(self.auth.get_session().user)
        self.assertEqual(events, [(AuthEvent.SIGNED_OUT, None)])

    def test_auth_errors_surface_server_message(self):
        self._sign_up_parent()
        self.auth.sign_out()

        failed = self.auth.sign_in("alice@example.com", "wrong-pass")
        self.assertIsNone(failed.data)
        self.assertEqual(failed.error, "Invalid login credentials")

        duplicate = self.auth.sign_up("alice@example.com", "secret1", "Alice", "parent")
        self.assertEqual(duplicate.error, "User already registered")

        signed_in = self.auth.sign_in("alice@example.com", "secret1")
        self.assertIsNone(signed_in.error)
        self.assertEqual(signed_in.data.display_name, "Alice")

    def test_invalid_role_is_rejected(self):
        result = self.auth.sign_up("bob@example.com", "secret1", "Bob", "wizard")
        self.assertIsNone(result.data)
        self.assertIn("role", result.error)

    def test_fetch_user_profile(self):
        parent = self._sign_up_parent()
        own = self.auth.fetch_user_profile(parent.id)
        self.assertEqual(own.data.email, "alice@example.com")

        missing = self.auth.fetch_user_profile("missing-id")
        self.assertIsNone(missing.data)
        self.assertEqual(missing.error, "Profile not found")

    def test_activity_and_dashboard(self):
        parent = self._sign_up_parent()
        created = self.data.create_activity(
            {
                "family_id": parent.family_id,
                "name": "Homework",
                "category": ActivityCategory.OBLIGATION,
                "points": 20,
                "created_by": parent.id,
                "requires_approval": True,
            }
        )
        self.assertIsNone(created.error)
        self.assertEqual(created.data.category, ActivityCategory.OBLIGATION)
        self.assertTrue(created.data.requires_approval)

        updated = self.data.update_activity(created.data.id, {"points": 25})
        self.assertEqual(updated.data.points, 25)

        listed = self.data.fetch_activities(parent.family_id)
        self.assertEqual(listed.count, 1)
        self.assertEqual(listed.data[0].points, 25)

        stats = self.data.fetch_dashboard_stats(parent.family_id)
        self.assertIsInstance(stats.data, DashboardStats)
        self.assertEqual(stats.data.total_activities, 1)
        self.assertEqual(stats.data.total_kids, 0)

        self.assertIsNone(self.data.delete_activity(created.data.id).error)
        self.assertEqual(self.data.fetch_activities(parent.family_id).data, [])

    def test_rewards_and_redemptions(self):
        parent = self._sign_up_parent()
        reward = self.data.create_reward(
            {"family_id": parent.family_id, "name": "Movie", "point_cost": 30, "created_by": parent.id}
        ).data
        self.assertEqual(self.data.update_reward(reward.id, {"point_cost": 40}).data.point_cost, 40)

        negative = self.data.update_reward(reward.id, {"point_cost": -5})
        self.assertIsNone(negative.data)
        self.assertTrue(negative.error)

        redemption = self.data.create_reward_redemption(
            {
                "family_id": parent.family_id,
                "user_id": parent.id,
                "reward_id": reward.id,
                "points_spent": 40,
            }
        ).data
        self.assertEqual(redemption.status, EntryStatus.PENDING)

        approved = self.data.approve_reward_redemption(redemption.id, True, parent.id)
        self.assertEqual(approved.data.status, EntryStatus.APPROVED)
        self.assertEqual(approved.data.approved_by, parent.id)

        listed = self.data.fetch_reward_redemptions(parent.family_id, user_id=parent.id)
        self.assertEqual([r.id for r in listed.data], [redemption.id])
        self.assertIsNone(self.data.delete_reward("missing").error)

    def test_kid_flow_across_two_clients(self):
        parent = self._sign_up_parent()
        kid_auth, kid_data = self._services()
        kid = kid_auth.sign_up("bob@example.com", "secret1", "Bob", UserRole.KID).data
        self.assertIsNone(kid.family_id)

        denied = kid_data.fetch_activities(parent.family_id)
        self.assertIsNone(denied.data)
        self.assertIn("permission denied", denied.error)

        with self.database.Session() as session:
            self.database._profile_row(session, kid.id).family_id = parent.family_id
            session.commit()

        entry = kid_data.create_point_entry(
            {"family_id": parent.family_id, "user_id": kid.id, "points": 8, "status": "pending"}
        ).data
        self.assertEqual(entry.status, EntryStatus.PENDING)

        pending = self.data.fetch_pending_activities(parent.family_id)
        self.assertEqual(pending.count, 1)
        self.assertEqual(pending.data[0].kid_name, "Bob")

        self.assertTrue(kid_data.approve_point_entry(entry.id, True, kid.id).error)
        approved = self.data.approve_point_entry(entry.id, True, parent.id)
        self.assertEqual(approved.data.status, EntryStatus.APPROVED)

        kids = self.data.fetch_kids_with_points(parent.family_id)
        self.assertEqual([(k.display_name, k.total_points) for k in kids.data], [("Bob", 8)])

        own = kid_data.fetch_point_entries(parent.family_id, user_id=kid.id)
        self.assertEqual(own.count, 1)
        self.assertEqual(kid_auth.fetch_user_profile(parent.id).data.display_name, "Alice")

    def test_status_cannot_be_set_through_update(self):
        parent = self._sign_up_parent()
        entry = self.data.create_point_entry(
            {"family_id": parent.family_id, "user_id": parent.id, "points": 1, "status": "pending"}
        ).data
        result = self.data.update_point_entry(entry.id, {"status": "approved"})
        self.assertIsNone(result.data)
        self.assertTrue(result.error)

        noted = self.data.update_point_entry(entry.id, {"notes": "checked"})
        self.assertEqual(noted.data.notes, "checked")
        self.assertEqual(noted.data.status, EntryStatus.PENDING)


if __name__ == "__main__":
    unittest.main()
