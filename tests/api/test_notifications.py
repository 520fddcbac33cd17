import pytest

from noteclub.http_api import notifications
from noteclub.http_api.notifications import create_notification


def test_list_and_mark_read(client, post_album, ids):
    post_album(ids["bob"])

    params = {"token": ids["token"], "user_id": ids["alice"]}
    body = client.get("/api/v1/notifications", params=params).json()
    assert body["unread_count"] == 2
    assert {n["type"] for n in body["notifications"]} == {"new_album", "turn_reminder"}
    assert all(not n["is_delivered"] for n in body["notifications"])

    first = body["notifications"][0]["id"]
    response = client.patch("/api/v1/notifications", json={
        "token": ids["token"], "user_id": ids["alice"], "action": "mark_read", "notification_ids": [first],
    })
    assert response.json() == {"success": True, "updated": 1}

    unread = client.get("/api/v1/notifications", params={**params, "unread_only": True}).json()
    assert unread["unread_count"] == 1
    assert [n["id"] for n in unread["notifications"]] != [first]

    client.patch("/api/v1/notifications", json={"token": ids["token"], "user_id": ids["alice"], "action": "mark_read"})
    assert client.get("/api/v1/notifications", params=params).json()["unread_count"] == 0


def test_mark_read_only_touches_own_notifications(client, post_album, ids, db):
    post_album(ids["bob"])
    carol_note = db.notifications.find_one({"user": ids["carol"]})["id"]

    response = client.patch("/api/v1/notifications", json={
        "token": ids["token"], "user_id": ids["alice"], "action": "mark_read", "notification_ids": [carol_note],
    })
    assert response.json()["updated"] == 0
    assert db.notifications.find_one({"id": carol_note})["is_read"] is False


def test_invalid_action(client, ids):
    response = client.patch("/api/v1/notifications", json={"token": ids["token"], "user_id": ids["alice"], "action": "delete"})
    assert response.status_code == 400


def test_notifications_require_token(client, ids):
    assert client.get("/api/v1/notifications", params={"token": "bad", "user_id": ids["alice"]}).status_code == 401


def test_create_notification_respects_settings(db, ids):
    db.users.update_one({"id": ids["bob"]}, {"$set": {"notification_settings": {"likes": False}}})
    assert create_notification(db, ids["bob"], "like", "t", "m") is None
    stored = create_notification(db, ids["bob"], "comment", "t" * 150, "m")
    assert len(stored["title"]) == 100
    assert "_id" not in stored


def test_unknown_notification_type(db, ids):
    with pytest.raises(ValueError):
        create_notification(db, ids["bob"], "spam", "t", "m")


def test_malformed_settings_fall_back_to_defaults(db, ids, post_album):
    db.users.update_one({"id": ids["alice"]}, {"$set": {"notification_settings": None}})

    response = post_album(ids["bob"])
    assert response.status_code == 201
    alice_types = sorted(n["type"] for n in db.notifications.find({"user": ids["alice"]}))
    assert alice_types == ["new_album", "turn_reminder"]


def test_failed_notification_does_not_fail_the_post(db, ids, post_album, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("push failed")

    monkeypatch.setattr(notifications, "create_notification", broken)
    response = post_album(ids["bob"])
    assert response.status_code == 201
    assert db.groups.find_one({"id": ids["group"]})["current_turn_index"] == 1
    assert db.notifications.count_documents({}) == 0
