"""
Tests for the REST routes and the end-to-end notification flow.

The caller identity travels in the ``X-User-ID`` header.
"""

from bson import ObjectId
from fastapi.testclient import TestClient

from review_notify.app.core.components import NotificationComponents
from review_notify.config.settings import Settings
from review_notify.main import create_application
from tests.doubles import InMemoryCollection

ALICE = {"X-User-ID": "alice"}
BOB = {"X-User-ID": "bob"}


def seed(client, components, count=1, recipient="alice"):
    return [
        client.portal.call(components.dispatcher.review_liked, recipient, f"sender{i}", f"rev{i}")
        for i in range(count)
    ]


class TestEndToEnd:
    """A like reaches the open channel and reading it resets the badge."""

    def test_like_then_read(self, client, components):
        with client.websocket_connect("/ws/notifications/alice") as websocket:
            assert websocket.receive_json() == {"type": "unread_count_update", "count": 0}

            client.portal.call(
                components.dispatcher.review_liked, "alice", "bob", "rev1", "Corner Grill", "Best brisket"
            )

            pushed = websocket.receive_json()
            assert pushed["type"] == "new_notification"
            notification = pushed["notification"]
            assert notification["recipient"] == "alice"
            assert notification["type"] == "review_like"
            assert notification["read"] is False
            assert notification["sender"] == {"id": "bob", "display_name": "Bob", "avatar_ref": "avatars/bob.jpg"}
            assert notification["target"]["place"] == "Corner Grill"

            assert client.get("/api/v1/notifications/unread-count", headers=ALICE).json() == {"count": 1}

            response = client.put(f"/api/v1/notifications/{notification['id']}/read", headers=ALICE)
            assert response.status_code == 200
            assert response.json()["read"] is True

            assert websocket.receive_json() == {"type": "unread_count_update", "count": 0}

        assert client.get("/api/v1/notifications/unread-count", headers=ALICE).json() == {"count": 0}

    def test_test_notification_reaches_every_channel(self, client):
        with client.websocket_connect("/ws/notifications/alice") as first, \
                client.websocket_connect("/ws/notifications/alice") as second:
            first.receive_json()
            second.receive_json()

            response = client.post("/api/v1/notifications/test", headers=ALICE, json={"message": "Hello"})

            assert response.status_code == 201
            body = response.json()
            assert body["type"] == "test"
            assert body["target"]["preview"] == "Hello"
            assert body["metadata"] == {"test": True}
            for websocket in (first, second):
                assert websocket.receive_json()["notification"]["id"] == body["id"]


class TestInbox:
    """Listing and counting."""

    def test_list_notifications(self, client, components):
        seed(client, components, count=3)
        seed(client, components, count=1, recipient="bob")

        response = client.get("/api/v1/notifications/", headers=ALICE, params={"limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert len(body["notifications"]) == 2
        assert body["unread_count"] == 3
        assert body["pagination"] == {"total": 3, "page": 1, "pages": 2, "limit": 2}

    def test_limit_is_capped(self, client, components):
        response = client.get("/api/v1/notifications/", headers=ALICE, params={"limit": 500})

        assert response.json()["pagination"]["limit"] == components.settings.notifications.max_page_size

    def test_invalid_page_rejected(self, client):
        response = client.get("/api/v1/notifications/", headers=ALICE, params={"page": 0})

        assert response.status_code == 422
        assert response.json()["success"] is False

    def test_missing_identity(self, client):
        response = client.get("/api/v1/notifications/unread-count")

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "8003"

    def test_unread_listing(self, client, components):
        notifications = seed(client, components, count=2)
        client.put(f"/api/v1/notifications/{notifications[0].id}/read", headers=ALICE)

        response = client.get("/api/v1/notifications/unread", headers=ALICE)

        assert [n["id"] for n in response.json()] == [notifications[1].id]

    def test_types(self, client):
        response = client.get("/api/v1/notifications/types")

        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == [
            "review_like", "comment_like", "review_comment", "comment_reply", "news_like"
        ]

    def test_filtered(self, client, components):
        seed(client, components, count=2)
        client.portal.call(components.dispatcher.news_liked, "alice", "bob", "news1")

        news = client.get("/api/v1/notifications/filtered", headers=ALICE, params={"type": "news_like"}).json()
        everything = client.get("/api/v1/notifications/filtered", headers=ALICE).json()

        assert news["pagination"]["total"] == 1
        assert news["notifications"][0]["type"] == "news_like"
        assert everything["pagination"]["total"] == 3

    def test_filtered_unknown_type(self, client):
        response = client.get("/api/v1/notifications/filtered", headers=ALICE, params={"type": "birthday"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "3001"

    def test_admin_summary(self, client, components):
        seed(client, components, count=2)
        seed(client, components, count=1, recipient="bob")

        response = client.get("/api/v1/notifications/admin/summary", headers=ALICE)

        assert response.json() == {"total": 3, "unread": 3, "type_counts": {"review_like": 3}}


class TestMutations:
    """Read, delete and clear operations."""

    def test_mark_read_unknown(self, client):
        response = client.put(f"/api/v1/notifications/{ObjectId()}/read", headers=ALICE)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "2003"

    def test_mark_read_malformed_id(self, client):
        response = client.put("/api/v1/notifications/not-an-id/read", headers=ALICE)

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "3003"

    def test_cannot_read_someone_elses_notification(self, client, components):
        notification = seed(client, components)[0]

        response = client.put(f"/api/v1/notifications/{notification.id}/read", headers=BOB)

        assert response.status_code == 404

    def test_mark_all_read(self, client, components):
        seed(client, components, count=3)

        response = client.put("/api/v1/notifications/mark-all-read", headers=ALICE)

        assert response.json()["modified_count"] == 3
        assert client.get("/api/v1/notifications/unread-count", headers=ALICE).json()["count"] == 0

    def test_delete(self, client, components):
        notification = seed(client, components)[0]

        assert client.delete(f"/api/v1/notifications/{notification.id}", headers=ALICE).status_code == 200
        assert client.delete(f"/api/v1/notifications/{notification.id}", headers=ALICE).status_code == 404

    def test_clear_all_pushes_zero(self, client, components):
        seed(client, components, count=2)

        with client.websocket_connect("/ws/notifications/alice") as websocket:
            assert websocket.receive_json()["count"] == 2

            response = client.delete("/api/v1/notifications/clear-all", headers=ALICE)

            assert response.json()["deleted_count"] == 2
            assert websocket.receive_json() == {"type": "unread_count_update", "count": 0}


class TestTestNotifications:
    """The test notification endpoint."""

    def test_defaults_to_caller(self, client):
        response = client.post("/api/v1/notifications/test", headers=ALICE)

        assert response.status_code == 201
        body = response.json()
        assert body["recipient"] == "alice"
        assert body["target"]["preview"] == "This is a test notification"

    def test_explicit_recipient(self, client):
        response = client.post("/api/v1/notifications/test", headers=ALICE, json={"recipient_id": "bob"})

        assert response.json()["recipient"] == "bob"
        assert client.get("/api/v1/notifications/unread-count", headers=BOB).json()["count"] == 1

    def test_disabled_in_production(self, user_directory):
        settings = Settings(_env_file=None, environment="production")
        components = NotificationComponents(
            notifications=InMemoryCollection("notifications"),
            device_tokens=InMemoryCollection("devicetokens"),
            user_directory=user_directory,
            settings=settings
        )

        with TestClient(create_application(settings=settings, components=components)) as client:
            response = client.post("/api/v1/notifications/test", headers=ALICE)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "9001"


class TestDeviceTokens:
    """Device token registration routes."""

    def test_register(self, client):
        response = client.post(
            "/api/v1/device-tokens/",
            json={"user_id": "alice", "token": "fcm:abc", "platform": "Android"}
        )

        assert response.status_code == 201
        assert response.json()["platform"] == "android"

    def test_register_moves_token(self, client, components):
        client.post("/api/v1/device-tokens/", json={"user_id": "alice", "token": "fcm:abc", "platform": "android"})
        client.post("/api/v1/device-tokens/", json={"user_id": "bob", "token": "fcm:abc", "platform": "android"})

        assert client.portal.call(components.device_token_store.tokens_for_user, "alice") == []

    def test_unsupported_platform(self, client):
        response = client.post(
            "/api/v1/device-tokens/",
            json={"user_id": "alice", "token": "tok", "platform": "windows"}
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "3004"

    def test_missing_fields(self, client):
        response = client.post("/api/v1/device-tokens/", json={"user_id": "alice"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "3001"

    def test_remove(self, client):
        client.post("/api/v1/device-tokens/", json={"user_id": "alice", "token": "fcm:abc", "platform": "android"})

        assert client.delete("/api/v1/device-tokens/fcm:abc").status_code == 200
        assert client.delete("/api/v1/device-tokens/fcm:abc").status_code == 404


class TestSystemRoutes:
    """Health and request context."""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["registry"]["running"] is True
        assert body["heartbeat"]["running"] is True

    def test_correlation_id_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})

        assert response.headers["X-Correlation-ID"] == "abc-123"

    def test_health_before_startup(self, components, settings):
        client = TestClient(create_application(settings=settings, components=components))

        response = client.get("/health")

        assert response.status_code == 503
