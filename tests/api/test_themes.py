from datetime import datetime, timedelta, timezone


def iso(days):
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


def create_theme(client, ids, user_id, start=-1, end=6, **extra):
    body = {
        "token": ids["token"],
        "user_id": user_id,
        "title": "Debut albums",
        "description": "Share a band's first record",
        "start_date": iso(start),
        "end_date": iso(end),
    }
    body.update(extra)
    return client.post("/api/v1/themes", json=body)


def test_create_active_theme_notifies_members(client, ids, db):
    response = create_theme(client, ids, ids["alice"], examples=["Unknown Pleasures"])
    assert response.status_code == 201
    theme = response.json()["theme"]
    assert theme["is_active"] is True
    assert theme["created_by"]["username"] == "alice"
    assert theme["examples"] == ["Unknown Pleasures"]
    assert theme["start_date"].endswith("+00:00")

    recipients = sorted(n["user"] for n in db.notifications.find({"type": "theme_change"}))
    assert recipients == sorted([ids["alice"], ids["bob"]])


def test_upcoming_theme_is_inactive_and_silent(client, ids, db):
    theme = create_theme(client, ids, ids["alice"], start=10, end=17).json()["theme"]
    assert theme["is_active"] is False
    assert db.notifications.count_documents({}) == 0


def test_create_theme_permissions_and_validation(client, ids, db):
    assert create_theme(client, ids, ids["bob"]).status_code == 403

    db.users.update_one({"id": ids["bob"]}, {"$set": {"role": "moderator"}})
    assert create_theme(client, ids, ids["bob"]).status_code == 201

    assert create_theme(client, ids, ids["alice"], title="").status_code == 400
    assert create_theme(client, ids, ids["alice"], start=20, end=19).status_code == 400
    assert create_theme(client, ids, ids["alice"], start_date="next tuesday").status_code == 400
    overlap = create_theme(client, ids, ids["alice"], start=2, end=4)
    assert overlap.status_code == 400
    assert "overlap" in overlap.json()["detail"]


def test_list_themes_by_status(client, ids):
    create_theme(client, ids, ids["alice"], title="Now")
    create_theme(client, ids, ids["alice"], title="Later", start=10, end=17)
    create_theme(client, ids, ids["alice"], title="Much later", start=30, end=37)

    params = {"token": ids["token"]}
    everything = client.get("/api/v1/themes", params=params).json()
    assert [t["title"] for t in everything["themes"]] == ["Much later", "Later", "Now"]
    assert everything["pagination"]["total"] == 3
    assert everything["themes"][0]["created_by"]["username"] == "alice"

    active = client.get("/api/v1/themes", params={**params, "status": "active"}).json()
    assert [t["title"] for t in active["themes"]] == ["Now"]
    assert active["themes"][0]["status"] == "active"

    upcoming = client.get("/api/v1/themes", params={**params, "status": "upcoming"}).json()
    assert upcoming["pagination"]["total"] == 2

    assert client.get("/api/v1/themes", params={**params, "status": "past"}).json()["themes"] == []
    assert client.get("/api/v1/themes", params={**params, "status": "someday"}).status_code == 400


def test_past_theme_status(client, ids, db):
    db.themes.insert_one({
        "schema_version": 1, "id": "old", "title": "Old", "description": "d",
        "start_date": iso(-30), "end_date": iso(-20), "is_active": False, "created_by": ids["alice"],
    })
    past = client.get("/api/v1/themes", params={"token": ids["token"], "status": "past"}).json()
    assert [t["id"] for t in past["themes"]] == ["old"]
