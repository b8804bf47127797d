"""HTTP-level tests: envelopes, status mapping and auth wiring"""

from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from conftest import ALICE
from vidtube import auth_utils, blob_storage, crud
from vidtube.errors import ConflictError


VIDEO_ROW = {
    "id": 10,
    "owner_id": 2,
    "title": "Tea party",
    "description": None,
    "video_file": "https://cdn.example.com/v/10.mp4",
    "thumbnail": None,
    "views": 4,
    "created_at": datetime(2024, 3, 1, 9, 30),
    "updated_at": datetime(2024, 3, 1, 9, 30),
}


class TestEnvelope:
    """Every response uses the same envelope"""

    def test_error_envelope(self, client):
        response = client.get("/dashboard/stats/abc")

        assert response.status_code == 400
        assert response.json() == {
            "status_code": 400,
            "data": None,
            "message": "Invalid channel ID",
            "success": False,
        }

    def test_validation_errors_are_400(self, client):
        response = client.get("/dashboard/videos/3", params={"page": "first"})

        body = response.json()
        assert response.status_code == 400
        assert body["success"] is False
        assert body["data"]

    def test_unknown_route_uses_envelope(self, client):
        response = client.get("/no-such-route")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestDashboard:
    """/dashboard endpoints"""

    def test_stats(self, client, fake_conn, fake_db):
        fake_conn.on("COUNT(*) AS total FROM videos", [{"total": 1}])
        fake_conn.on("COUNT(*) AS total FROM subscriptions", [{"total": 2}])
        fake_conn.on("SELECT DISTINCT id FROM videos", [{"id": 10}])
        fake_conn.on("FROM likes", [{"total": 3}])
        fake_conn.on("SUM(views)", [{"total_views": 40}])

        response = client.get("/dashboard/stats/2")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Channel stats fetched successfully"
        assert body["data"] == {"total_videos": 1, "total_subscribers": 2, "total_likes": 3, "total_views": 40}
        assert fake_db.checkouts == 4

    def test_stats_for_empty_channel(self, client):
        response = client.get("/dashboard/stats/2")

        assert response.json()["data"] == {
            "total_videos": 0, "total_subscribers": 0, "total_likes": 0, "total_views": 0
        }

    def test_videos_page(self, client, fake_conn):
        fake_conn.on("FROM videos", [VIDEO_ROW])

        response = client.get("/dashboard/videos/2", params={"page": 3, "limit": 4})

        assert response.status_code == 200
        assert [video["id"] for video in response.json()["data"]] == [10]
        assert fake_conn.executed[0][1] == (2, 4, 8)

    @pytest.mark.parametrize("params", [{"page": 0}, {"limit": 0}, {"page": -2}])
    def test_videos_rejects_bad_paging(self, client, params):
        response = client.get("/dashboard/videos/2", params=params)
        assert response.status_code == 400

    @pytest.mark.parametrize("params", [{"page": 10 ** 18, "limit": 100}, {"limit": 101}])
    def test_videos_rejects_out_of_range_paging(self, client, fake_conn, params):
        response = client.get("/dashboard/videos/3", params=params)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert fake_conn.executed == []

    def test_videos_rejects_bad_channel(self, client):
        assert client.get("/dashboard/videos/xyz").status_code == 400


class TestChannelProfile:
    """/users/c/{username}"""

    PROFILE = {
        "full_name": "Bob Builder",
        "username": "bob",
        "avatar": "https://cdn.example.com/bob.png",
        "cover_image": "https://cdn.example.com/bob-cover.png",
        "email": "bob@example.com",
        "subscribers_count": 1,
        "channels_subscribed_to_count": 0,
        "is_subscribed": True,
    }

    def test_anonymous_viewer(self, client, fake_conn):
        fake_conn.on("FROM users u", [dict(self.PROFILE, is_subscribed=False)])

        response = client.get("/users/c/Bob")

        assert response.status_code == 200
        assert response.json()["data"]["is_subscribed"] is False
        assert fake_conn.executed[0][1] == {"viewer_id": None, "username": "bob"}

    def test_signed_in_viewer(self, logged_in, fake_conn):
        fake_conn.on("FROM users u", [self.PROFILE])

        response = logged_in.get("/users/c/bob")

        data = response.json()["data"]
        assert data["is_subscribed"] is True
        assert data["subscribers_count"] == 1
        assert "hashed_password" not in data
        assert fake_conn.executed[0][1]["viewer_id"] == ALICE["id"]

    def test_invalid_token_is_anonymous(self, client, fake_conn):
        fake_conn.on("FROM users u", [dict(self.PROFILE, is_subscribed=False)])

        response = client.get("/users/c/bob", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 200
        assert fake_conn.executed[-1][1]["viewer_id"] is None

    def test_missing_channel(self, client):
        response = client.get("/users/c/ghost")

        assert response.status_code == 404
        assert response.json()["message"] == "Channel not found"

    def test_blank_username(self, client, fake_conn):
        response = client.get("/users/c/%20%20")

        assert response.status_code == 400
        assert fake_conn.executed == []


class TestWatchHistory:
    """/users/history"""

    def test_requires_authentication(self, client):
        response = client.get("/users/history")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_history_in_stored_order(self, logged_in, fake_conn):
        owner = {"full_name": "Bob Builder", "username": "bob", "avatar": "https://cdn.example.com/bob.png"}
        fake_conn.on("unnest(u.watch_history)", [
            dict(VIDEO_ROW, id=3, owner=owner),
            dict(VIDEO_ROW, id=1, owner=None),
        ])

        response = logged_in.get("/users/history")

        data = response.json()["data"]
        assert [video["id"] for video in data] == [3, 1]
        assert data[0]["owner"] == owner
        assert data[1]["owner"] is None

    def test_empty_history(self, logged_in):
        assert logged_in.get("/users/history").json()["data"] == []


class TestSubscriptions:
    """/subscriptions/c/{channel_id}"""

    def test_cannot_subscribe_to_self(self, logged_in):
        response = logged_in.post(f"/subscriptions/c/{ALICE['id']}")
        assert response.status_code == 400

    def test_unknown_channel(self, logged_in):
        assert logged_in.post("/subscriptions/c/99").status_code == 404

    def test_subscribe(self, logged_in, fake_conn):
        fake_conn.on("FROM users WHERE id", [dict(ALICE, id=2, username="bob", email="bob@example.com")])

        response = logged_in.post("/subscriptions/c/2")

        assert response.status_code == 200
        assert response.json()["data"] == {"channel_id": 2, "subscribed": True}
        assert fake_conn.queries_with("INSERT INTO subscriptions")

    def test_unsubscribe(self, logged_in, fake_conn):
        fake_conn.on("FROM users WHERE id", [dict(ALICE, id=2, username="bob", email="bob@example.com")])
        fake_conn.on("DELETE FROM subscriptions", [{"id": 5}])

        response = logged_in.post("/subscriptions/c/2")

        assert response.json()["data"] == {"channel_id": 2, "subscribed": False}
        assert fake_conn.queries_with("INSERT INTO subscriptions") == []


class TestWatchVideo:
    """/videos/{video_id}"""

    def test_counts_view_and_records_history(self, logged_in, fake_conn):
        fake_conn.on("UPDATE videos SET views", [dict(VIDEO_ROW, views=5)])

        response = logged_in.get("/videos/10")

        assert response.json()["data"]["views"] == 5
        (_, params), = fake_conn.queries_with("array_prepend")
        assert params == (10, 10, ALICE["id"])

    def test_missing_video(self, logged_in, fake_conn):
        assert logged_in.get("/videos/10").status_code == 404
        assert fake_conn.queries_with("array_prepend") == []


class TestAccount:
    """Registration, login and token refresh"""

    def test_register_requires_all_fields(self, client):
        response = client.post("/users/register", data={"full_name": "A", "email": "", "username": "a", "password": "x"})
        assert response.status_code == 400
        assert response.json()["message"] == "All fields are required"

    def test_register_rejects_existing_user(self, client, fake_conn):
        fake_conn.on("SELECT 1 FROM users", [(1,)])

        response = client.post(
            "/users/register",
            data={"full_name": "Alice", "email": "alice@example.com", "username": "alice", "password": "pw"},
            files={"avatar": ("a.png", b"png", "image/png")},
        )

        assert response.status_code == 409

    def test_register_requires_avatar(self, client):
        response = client.post(
            "/users/register",
            data={"full_name": "Alice", "email": "alice@example.com", "username": "alice", "password": "pw"},
        )
        assert response.status_code == 400
        assert response.json()["message"] == "Avatar file is required"

    def test_register(self, client, fake_conn, monkeypatch):
        upload = AsyncMock(return_value="https://vidtube.blob.core.windows.net/media/avatar/new.png")
        monkeypatch.setattr(blob_storage, "upload_file_to_blob", upload)
        fake_conn.on("INSERT INTO users", [dict(ALICE, avatar=upload.return_value)])

        response = client.post(
            "/users/register",
            data={"full_name": "Alice Liddell", "email": "alice@example.com", "username": "Alice", "password": "pw"},
            files={"avatar": ("a.png", b"png", "image/png")},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["status_code"] == 201
        assert body["data"]["username"] == "alice"
        assert "hashed_password" not in body["data"]
        upload.assert_awaited_once()
        (_, params), = fake_conn.queries_with("INSERT INTO users")
        assert params[0] == "alice"

    def test_login_requires_username_or_email(self, client):
        response = client.post("/users/login", json={"password": "pw"})
        assert response.status_code == 400

    def test_login_unknown_user(self, client):
        response = client.post("/users/login", json={"username": "ghost", "password": "pw"})
        assert response.status_code == 404

    def test_login(self, client, fake_conn):
        fake_conn.on("SELECT * FROM users", [dict(ALICE, hashed_password=auth_utils.get_password_hash("pw"))])

        wrong = client.post("/users/login", json={"username": "alice", "password": "nope"})
        response = client.post("/users/login", json={"username": "alice", "password": "pw"})

        assert wrong.status_code == 401
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["user"]["id"] == ALICE["id"]
        assert auth_utils.decode_user_id(data["access_token"], auth_utils.ACCESS_TOKEN_SECRET) == ALICE["id"]
        assert "accessToken" in response.headers.get("set-cookie", "")
        (_, params), = fake_conn.queries_with("SET refresh_token")
        assert params == (data["refresh_token"], ALICE["id"])

    def test_refresh_without_token(self, client):
        assert client.post("/users/refresh-token").status_code == 401

    def test_refresh_with_stale_token(self, client, fake_conn):
        token = auth_utils.create_refresh_token(ALICE["id"])
        fake_conn.on("SELECT * FROM users WHERE id", [dict(ALICE, refresh_token="something-else")])

        response = client.post("/users/refresh-token", json={"refresh_token": token})

        assert response.status_code == 401
        assert response.json()["message"] == "Refresh token is expired or used"

    def test_refresh(self, client, fake_conn):
        token = auth_utils.create_refresh_token(ALICE["id"])
        fake_conn.on("SELECT * FROM users WHERE id", [dict(ALICE, refresh_token=token)])

        response = client.post("/users/refresh-token", json={"refresh_token": token})

        assert response.status_code == 200
        data = response.json()["data"]
        assert auth_utils.decode_user_id(data["refresh_token"], auth_utils.REFRESH_TOKEN_SECRET) == ALICE["id"]

    def test_update_account_needs_a_field(self, logged_in):
        response = logged_in.patch("/users/update-account", json={})
        assert response.status_code == 400

    def test_current_user(self, logged_in):
        data = logged_in.get("/users/current-user").json()["data"]
        assert data["username"] == "alice"
        assert "refresh_token" not in data


class TestUploadCleanup:
    """Uploaded blobs do not outlive a failed database write"""

    NEW_AVATAR = "https://vidtube.blob.core.windows.net/media/avatar/new.png"
    NEW_COVER = "https://vidtube.blob.core.windows.net/media/cover-image/new.png"

    @pytest.fixture
    def storage(self, monkeypatch):
        upload = AsyncMock(side_effect=[self.NEW_AVATAR, self.NEW_COVER])
        delete = AsyncMock()
        monkeypatch.setattr(blob_storage, "upload_file_to_blob", upload)
        monkeypatch.setattr(blob_storage, "delete_blob", delete)
        return upload, delete

    def test_register_conflict_removes_uploads(self, client, storage, monkeypatch):
        upload, delete = storage
        monkeypatch.setattr(crud, "create_user", AsyncMock(side_effect=ConflictError("Username already exists")))

        response = client.post(
            "/users/register",
            data={"full_name": "Alice", "email": "alice@example.com", "username": "alice", "password": "pw"},
            files={
                "avatar": ("a.png", b"png", "image/png"),
                "cover_image": ("c.png", b"png", "image/png"),
            },
        )

        assert response.status_code == 409
        assert upload.await_count == 2
        assert [call.args[0] for call in delete.await_args_list] == [self.NEW_AVATAR, self.NEW_COVER]

    def test_avatar_replaced_and_old_blob_removed(self, logged_in, fake_conn, storage):
        _, delete = storage
        fake_conn.on("UPDATE users SET avatar", [dict(ALICE, avatar=self.NEW_AVATAR)])

        response = logged_in.patch("/users/avatar", files={"avatar": ("a.png", b"png", "image/png")})

        assert response.status_code == 200
        assert response.json()["data"]["avatar"] == self.NEW_AVATAR
        delete.assert_awaited_once_with(ALICE["avatar"])

    def test_avatar_for_vanished_user_is_404(self, logged_in, storage):
        _, delete = storage

        response = logged_in.patch("/users/avatar", files={"avatar": ("a.png", b"png", "image/png")})

        assert response.status_code == 404
        delete.assert_awaited_once_with(self.NEW_AVATAR)

    def test_failed_cover_update_removes_new_blob(self, logged_in, storage, monkeypatch):
        upload, delete = storage
        upload.side_effect = [self.NEW_COVER]
        monkeypatch.setattr(crud, "update_user_image", AsyncMock(side_effect=RuntimeError("connection lost")))

        with pytest.raises(RuntimeError):
            logged_in.patch("/users/cover-image", files={"cover_image": ("c.png", b"png", "image/png")})

        delete.assert_awaited_once_with(self.NEW_COVER)
