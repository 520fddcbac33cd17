def turn_status(client, ids, user_id, **params):
    return client.get("/api/v1/turn-status", params={"token": ids["token"], "user_id": user_id, **params})


def test_turn_status_for_current_member(client, ids):
    response = turn_status(client, ids, ids["bob"])
    assert response.status_code == 200
    status = response.json()
    assert status["group_name"] == "Note Club"
    assert status["is_my_turn"] is True
    assert status["current_turn_user"]["id"] == ids["bob"]
    assert status["next_turn_user"]["id"] == ids["alice"]
    assert status["last_poster"]["id"] == ids["alice"]
    assert status["total_members"] == 3
    assert status["active_members"] == 2

    roster = {m["username"]: m for m in status["turn_order"]}
    assert [m["position"] for m in status["turn_order"]] == [0, 1, 2]
    assert roster["carol"]["is_active"] is False
    assert roster["bob"]["is_current_turn"] is True


def test_turn_status_for_waiting_member(client, ids):
    assert turn_status(client, ids, ids["alice"]).json()["is_my_turn"] is False


def test_turn_status_falls_back_to_default_group(client, ids, register):
    newcomer = register("frank").json()["user_id"]
    status = turn_status(client, ids, newcomer).json()
    assert status["group_id"] == ids["group"]
    assert status["is_my_turn"] is False


def test_turn_status_unknown_group(client, ids):
    assert turn_status(client, ids, ids["bob"], group_id="ffffffffffffffffffffffff").status_code == 404


def test_admin_advance_turn(client, ids):
    body = {"token": ids["token"], "user_id": ids["bob"], "group_id": ids["group"]}
    assert client.post("/api/v1/admin/turn/advance", json=body).status_code == 403

    body["user_id"] = ids["alice"]
    response = client.post("/api/v1/admin/turn/advance", json=body)
    assert response.status_code == 200
    result = response.json()
    assert result["previous_index"] == 0
    assert result["current_turn_index"] == 1
    # carol is inactive, so the turn wraps back to alice
    assert result["current_turn_user"]["id"] == ids["alice"]


def test_admin_set_turn(client, ids, register):
    body = {"token": ids["token"], "user_id": ids["alice"], "group_id": ids["group"], "target_user_id": ids["carol"]}
    response = client.post("/api/v1/admin/turn/set", json=body)
    assert response.status_code == 200
    assert response.json()["current_turn_index"] == 2
    assert response.json()["current_turn_user"]["id"] == ids["alice"]

    outsider = register("gina").json()["user_id"]
    assert client.post("/api/v1/admin/turn/set", json={**body, "target_user_id": outsider}).status_code == 400
    assert client.post("/api/v1/admin/turn/set", json={
        **body, "target_user_id": "ffffffffffffffffffffffff",
    }).status_code == 404
    assert client.post("/api/v1/admin/turn/set", json={**body, "target_user_id": None}).status_code == 400


def test_admin_turn_state(client, ids, db):
    params = {"token": ids["token"], "user_id": ids["alice"], "group_id": ids["group"]}
    state = client.get("/api/v1/admin/turn/state", params=params).json()
    assert state["index_in_range"] is True
    assert state["current_turn_user_id"] == ids["bob"]
    assert state["next_turn_user_id"] == ids["alice"]
    assert state["turn_order"][0]["is_last_poster"] is True

    db.groups.update_one({"id": ids["group"]}, {"$push": {"turn_order": "ffffffffffffffffffffffff"}})
    state = client.get("/api/v1/admin/turn/state", params=params).json()
    assert state["turn_order"][3]["missing"] is True


def test_admin_lists(client, ids):
    params = {"token": ids["token"], "user_id": ids["bob"]}
    assert client.get("/api/v1/admin/users", params=params).status_code == 403
    assert client.get("/api/v1/admin/groups", params=params).status_code == 403

    params["user_id"] = ids["alice"]
    users = client.get("/api/v1/admin/users", params=params).json()
    assert users["count"] == 3
    assert [u["username"] for u in users["users"]] == ["alice", "bob", "carol"]
    assert "password_hash" not in users["users"][0]

    groups = client.get("/api/v1/admin/groups", params=params).json()
    assert groups["count"] == 1
    assert groups["groups"][0]["current_turn_user"]["id"] == ids["bob"]


def test_reactivated_member_rejoins_rotation(client, ids):
    body = {"token": ids["token"], "user_id": ids["alice"], "target_user_id": ids["carol"], "is_active": True}
    response = client.post("/api/v1/admin/users/toggle-active", json=body)
    assert response.status_code == 200
    assert response.json()["user"]["is_active"] is True

    status = turn_status(client, ids, ids["bob"]).json()
    assert status["active_members"] == 3
    assert status["next_turn_user"]["id"] == ids["carol"]


def test_toggle_active_validation(client, ids):
    body = {"token": ids["token"], "user_id": ids["alice"], "target_user_id": ids["carol"]}
    assert client.post("/api/v1/admin/users/toggle-active", json={**body, "is_active": "yes"}).status_code == 400
    assert client.post("/api/v1/admin/users/toggle-active", json={
        **body, "target_user_id": "ffffffffffffffffffffffff", "is_active": True,
    }).status_code == 404
    assert client.post("/api/v1/admin/users/toggle-active", json={
        **body, "user_id": ids["bob"], "is_active": True,
    }).status_code == 403


def test_admin_replaces_group_members(client, ids, register, db):
    dave = register("dave").json()["user_id"]
    url = f"/api/v1/admin/groups/{ids['group']}"
    body = {"token": ids["token"], "user_id": ids["alice"]}

    assert client.patch(url, json={**body, "user_id": ids["bob"], "name": "x"}).status_code == 403
    assert client.patch(url, json={**body, "member_ids": ["ffffffffffffffffffffffff"]}).status_code == 404
    assert client.patch(url, json={**body, "member_ids": "nope"}).status_code == 400
    assert client.patch(url, json=body).status_code == 400

    response = client.patch(url, json={**body, "name": "Renamed", "member_ids": [dave, ids["bob"], ids["alice"]]})
    assert response.status_code == 200
    group = db.groups.find_one({"id": ids["group"]})
    assert group["name"] == "Renamed"
    assert group["members"] == [dave, ids["bob"], ids["alice"]]
    assert group["turn_order"] == [ids["alice"], ids["bob"], dave]
    assert group["current_turn_index"] == 0
    assert group["admins"] == [ids["alice"]]

    assert ids["group"] in db.users.find_one({"id": dave})["groups"]
    assert ids["group"] not in db.users.find_one({"id": ids["carol"]})["groups"]
    assert turn_status(client, ids, dave).json()["next_turn_user"]["id"] == dave
