import asyncio
import unittest
from unittest.mock import Mock, patch

from fastapi.testclient import TestClient

from teamboard.app import create_app
from teamboard.config import Settings, get_settings
from teamboard.db import InMemoryStore
from teamboard.dependencies import get_hub, get_store
from teamboard.errors import StoreOperationFailed
from teamboard.realtime import InMemoryConnection, RoomHub
from teamboard.repository import messages
from teamboard.sockets import RealtimeHandlers


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryStore()
        self.hub = RoomHub()
        self.settings = Settings(use_in_memory_backends=True)
        self.app = create_app()
        self.app.dependency_overrides[get_store] = lambda: self.store
        self.app.dependency_overrides[get_hub] = lambda: self.hub
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(self.app)

    def tearDown(self):
        self.hub.reset()

    def _signup(self, name, password="p1"):
        response = self.client.post(
            "/api/signup", json={"name": name, "email": "", "password": password}
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"], payload)
        return payload["user"]

    def _create_team(self, user_id, name="Eng"):
        response = self.client.post(
            "/api/create-team", json={"teamName": name, "userId": user_id}
        )
        payload = response.json()
        self.assertTrue(payload["success"], payload)
        return payload["team"]

    def _listen(self, team_id, sid="listener"):
        connection = InMemoryConnection(sid)
        self.hub.subscribe(connection, f"team-{team_id}")
        return connection

    def test_health_reports_store_mode(self):
        response = self.client.get("/")
        self.assertEqual(response.json()["store"], "memory")

    def test_signup_then_login(self):
        self._signup("alice", "p1")

        response = self.client.post(
            "/api/login", json={"name": "alice", "password": "p1"}
        )
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["user"]["name"], "alice")
        self.assertIsNone(payload["user"]["teamId"])
        self.assertNotIn("password", payload["user"])

    def test_signup_rejects_duplicate_name(self):
        self._signup("alice")
        response = self.client.post(
            "/api/signup", json={"name": "alice", "password": "other"}
        )
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertIn("already exists", payload["message"])

    def test_login_failures(self):
        self._signup("alice", "p1")

        unknown = self.client.post("/api/login", json={"name": "bob", "password": "x"})
        self.assertFalse(unknown.json()["success"])
        self.assertIn("not found", unknown.json()["message"])

        wrong = self.client.post("/api/login", json={"name": "alice", "password": "x"})
        self.assertFalse(wrong.json()["success"])
        self.assertEqual(wrong.json()["message"], "Invalid password")

    def test_malformed_body_is_reported_as_failure(self):
        response = self.client.post("/api/signup", json={"name": "alice"})
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["success"])

    def test_create_and_join_team(self):
        u1 = self._signup("u1")
        u2 = self._signup("u2")
        team = self._create_team(u1["id"])
        self.assertEqual(team["members"], [u1["id"]])
        self.assertEqual(team["leaderId"], u1["id"])
        self.assertEqual(len(team["code"]), 6)

        listener = self._listen(team["id"])
        response = self.client.post(
            "/api/join-team", json={"teamCode": team["code"], "userId": u2["id"]}
        )
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["team"]["members"], [u1["id"], u2["id"]])

        details = self.client.get(f"/api/team/{team['id']}").json()
        self.assertTrue(details["success"])
        by_id = {m["id"]: m for m in details["members"]}
        self.assertEqual(by_id[u2["id"]]["teamId"], team["id"])

        joined = listener.events("team-updated")
        self.assertEqual(joined[0]["type"], "member-joined")
        self.assertEqual(joined[0]["userId"], u2["id"])

    def test_join_team_with_unknown_code(self):
        user = self._signup("u1")
        response = self.client.post(
            "/api/join-team", json={"teamCode": "NOPE00", "userId": user["id"]}
        )
        self.assertFalse(response.json()["success"])
        self.assertEqual(response.json()["message"], "Invalid team code")

    def test_get_missing_team(self):
        response = self.client.get("/api/team/missing")
        self.assertFalse(response.json()["success"])

    def test_leave_team(self):
        u1 = self._signup("u1")
        u2 = self._signup("u2")
        team = self._create_team(u1["id"])
        self.client.post(
            "/api/join-team", json={"teamCode": team["code"], "userId": u2["id"]}
        )

        response = self.client.post("/api/leave-team", json={"userId": u2["id"]})
        self.assertTrue(response.json()["success"])

        details = self.client.get(f"/api/team/{team['id']}").json()
        self.assertEqual(details["team"]["members"], [u1["id"]])
        self.assertIsNone(self.store.users.find_one({"id": u2["id"]}).team_id)

    def test_leave_team_without_team_is_noop(self):
        user = self._signup("u1")
        response = self.client.post("/api/leave-team", json={"userId": user["id"]})
        self.assertTrue(response.json()["success"])

    def test_rename_team_broadcasts(self):
        user = self._signup("u1")
        team = self._create_team(user["id"])
        listener = self._listen(team["id"])

        response = self.client.put(f"/api/team/{team['id']}", json={"name": "Ops"})
        self.assertEqual(response.json()["team"]["name"], "Ops")
        self.assertEqual(listener.events("team-updated")[0]["type"], "renamed")

    def test_delete_team_cascades(self):
        user = self._signup("u1")
        team = self._create_team(user["id"])
        self.client.post(
            "/api/tasks",
            json={"title": "T1", "userId": user["id"], "teamId": team["id"]},
        )
        messages.save_message(self.store, "hi", user["id"], "u1", team["id"])

        response = self.client.delete(f"/api/team/{team['id']}")
        self.assertTrue(response.json()["success"])

        tasks = self.client.get(f"/api/tasks/team/{team['id']}").json()["tasks"]
        self.assertEqual(tasks, [])
        self.assertEqual(messages.list_messages(self.store, team["id"]), [])
        self.assertIsNone(self.store.users.find_one({"id": user["id"]}).team_id)
        self.assertFalse(self.client.get(f"/api/team/{team['id']}").json()["success"])

    def test_create_task_broadcasts_to_team_room(self):
        user = self._signup("u1")
        listener = self._listen("T")

        response = self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"], "teamId": "T"}
        )
        payload = response.json()
        self.assertTrue(payload["success"])
        task = payload["task"]
        self.assertEqual(task["status"], "todo")
        self.assertEqual(task["priority"], "easy")
        self.assertEqual(task["timeUnit"], "minutes")

        updates = listener.events("task-updated")
        self.assertEqual(len(updates), 1)
        self.assertEqual(updates[0]["type"], "added")
        self.assertEqual(updates[0]["task"]["id"], task["id"])

    def test_personal_task_is_not_broadcast(self):
        user = self._signup("u1")
        listener = self._listen("None")
        self.client.post("/api/tasks", json={"title": "T1", "userId": user["id"]})
        self.assertEqual(listener.received, [])

    def test_update_task_status(self):
        user = self._signup("u1")
        task = self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"], "teamId": "T"}
        ).json()["task"]
        listener = self._listen("T")

        response = self.client.put(
            f"/api/tasks/{task['id']}", json={"status": "completed"}
        )
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["task"]["status"], "completed")
        self.assertEqual(payload["task"]["title"], "T1")

        updates = listener.events("task-updated")
        self.assertEqual(updates[0]["type"], "updated")
        self.assertEqual(updates[0]["task"]["status"], "completed")

    def test_update_missing_task_does_not_broadcast(self):
        listener = self._listen("T")
        response = self.client.put("/api/tasks/nope", json={"status": "completed"})
        self.assertFalse(response.json()["success"])
        self.assertEqual(listener.received, [])

    def test_update_task_rejects_unknown_status(self):
        user = self._signup("u1")
        task = self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"]}
        ).json()["task"]

        response = self.client.put(f"/api/tasks/{task['id']}", json={"status": "done"})
        self.assertFalse(response.json()["success"])
        self.assertIn("status", response.json()["message"])

    def test_legacy_mode_accepts_any_status(self):
        self.settings = Settings(
            use_in_memory_backends=True, validate_task_fields=False
        )
        user = self._signup("u1")
        task = self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"]}
        ).json()["task"]

        response = self.client.put(f"/api/tasks/{task['id']}", json={"status": "done"})
        self.assertTrue(response.json()["success"])
        self.assertEqual(response.json()["task"]["status"], "done")

    def test_list_tasks_by_user_and_team(self):
        u1 = self._signup("u1")
        u2 = self._signup("u2")
        self.client.post("/api/tasks", json={"title": "A", "userId": u1["id"], "teamId": "T"})
        self.client.post("/api/tasks", json={"title": "B", "userId": u2["id"], "teamId": "T"})
        self.client.post("/api/tasks", json={"title": "C", "userId": u1["id"]})

        mine = self.client.get(f"/api/tasks/{u1['id']}").json()["tasks"]
        self.assertEqual(sorted(t["title"] for t in mine), ["A", "C"])

        team = self.client.get("/api/tasks/team/T").json()["tasks"]
        self.assertEqual(sorted(t["title"] for t in team), ["A", "B"])

    def test_delete_task(self):
        user = self._signup("u1")
        task = self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"], "teamId": "T"}
        ).json()["task"]
        listener = self._listen("T")

        response = self.client.delete(f"/api/tasks/{task['id']}")
        self.assertTrue(response.json()["success"])
        self.assertEqual(listener.events("task-updated")[0]["taskId"], task["id"])
        self.assertFalse(self.client.delete(f"/api/tasks/{task['id']}").json()["success"])

    def test_task_added_reaches_client_joined_via_sync(self):
        handlers = RealtimeHandlers(
            Mock(),
            self.hub,
            lambda: self.store,
            connection_factory=lambda server, sid: InMemoryConnection(sid),
        )
        asyncio.run(handlers.connect("board", {}))
        asyncio.run(handlers.join_team_sync("board", "T"))
        client = handlers.connections["board"]
        user = self._signup("u1")

        self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"], "teamId": "T"}
        )

        updates = client.events("task-updated")
        self.assertEqual(len(updates), 1)
        self.assertEqual(updates[0]["type"], "added")
        self.assertEqual(updates[0]["task"]["title"], "T1")

    def test_storage_failure_is_reported_without_broadcast(self):
        user = self._signup("u1")
        task = self.client.post(
            "/api/tasks", json={"title": "T1", "userId": user["id"], "teamId": "T"}
        ).json()["task"]
        listener = self._listen("T")

        with patch.object(
            self.store.tasks, "update_by_id", side_effect=StoreOperationFailed()
        ):
            with self.assertLogs("teamboard.routes", level="ERROR"):
                response = self.client.put(
                    f"/api/tasks/{task['id']}", json={"status": "completed"}
                )

        payload = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertFalse(payload["success"])
        self.assertEqual(payload["message"], "Storage operation failed")
        self.assertIsNone(payload["task"])
        self.assertEqual(listener.received, [])

    def test_unexpected_error_becomes_failure_body(self):
        client = TestClient(self.app, raise_server_exceptions=False)
        user = self._signup("u1")
        listener = self._listen("T")

        with patch.object(
            self.store.tasks, "create", side_effect=RuntimeError("disk full")
        ):
            with self.assertLogs("teamboard.app", level="ERROR"):
                response = client.post(
                    "/api/tasks",
                    json={"title": "T1", "userId": user["id"], "teamId": "T"},
                )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"success": False, "message": "Request failed"}
        )
        self.assertEqual(listener.received, [])


if __name__ == "__main__":
    unittest.main()
