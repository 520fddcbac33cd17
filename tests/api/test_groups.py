def create_group(client, ids, user_id, name="Vinyl Friends", **extra):
    return client.post("/api/v1/groups", json={"token": ids["token"], "user_id": user_id, "name": name, **extra})


def test_list_my_groups(client, ids):
    response = client.get("/api/v1/groups", params={"token": ids["token"], "user_id": ids["bob"]})
    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    assert body["groups"][0]["name"] == "Note Club"
    assert body["groups"][0]["member_count"] == 3
    assert body["groups"][0]["is_admin"] is False


def test_create_group(client, ids, db):
    response = create_group(client, ids, ids["bob"], description="Records only")
    assert response.status_code == 201
    group = response.json()["group"]
    assert group["members"][0]["id"] == ids["bob"]
    assert group["admins"] == [ids["bob"]]
    assert group["turn_order"] == [ids["bob"]]
    assert len(group["invite_code"]) == 6
    assert group["invite_code"] == group["invite_code"].upper()
    assert group["turn"]["is_my_turn"] is True
    assert group["id"] in db.users.find_one({"id": ids["bob"]})["groups"]


def test_create_group_requires_name(client, ids):
    assert create_group(client, ids, ids["bob"], name="  ").status_code == 400
    assert create_group(client, ids, ids["bob"], max_members=500).status_code == 400


def test_join_group_inserts_alphabetically(client, ids, register, db):
    group = create_group(client, ids, ids["bob"]).json()["group"]
    dave = register("dave").json()["user_id"]

    alice_join = client.post("/api/v1/groups/join", json={
        "token": ids["token"], "user_id": ids["alice"], "invite_code": group["invite_code"].lower(),
    })
    assert alice_join.status_code == 200
    client.post("/api/v1/groups/join", json={
        "token": ids["token"], "user_id": dave, "invite_code": group["invite_code"],
    })

    stored = db.groups.find_one({"id": group["id"]}, {"_id": 0})
    assert stored["turn_order"] == [ids["alice"], ids["bob"], dave]
    # bob created the group and is still the last poster
    assert stored["current_turn_index"] == 1

    notifications = list(db.notifications.find({"user": ids["bob"], "type": "group_invite"}))
    assert len(notifications) == 2


def test_join_errors(client, ids):
    body = {"token": ids["token"], "user_id": ids["bob"]}
    assert client.post("/api/v1/groups/join", json={**body, "invite_code": ""}).status_code == 400
    assert client.post("/api/v1/groups/join", json={**body, "invite_code": "NOPE42"}).status_code == 404
    already = client.post("/api/v1/groups/join", json={**body, "invite_code": "DEFAULT"})
    assert already.status_code == 400
    assert "already a member" in already.json()["detail"]


def test_private_group_hidden_from_outsiders(client, ids, register):
    group = create_group(client, ids, ids["bob"], is_private=True).json()["group"]
    outsider = register("eve").json()["user_id"]

    params = {"token": ids["token"], "user_id": outsider}
    assert client.get(f"/api/v1/groups/{group['id']}", params=params).status_code == 403
    params["user_id"] = ids["bob"]
    assert client.get(f"/api/v1/groups/{group['id']}", params=params).status_code == 200
    params["user_id"] = ids["alice"]
    assert client.get(f"/api/v1/groups/{group['id']}", params=params).status_code == 200


def test_update_group_requires_group_admin(client, ids):
    url = f"/api/v1/groups/{ids['group']}"
    denied = client.put(url, json={"token": ids["token"], "user_id": ids["bob"], "name": "Mine"})
    assert denied.status_code == 403

    response = client.put(url, json={"token": ids["token"], "user_id": ids["alice"], "turn_duration_days": 3})
    assert response.status_code == 200
    assert response.json()["turn_duration_days"] == 3

    too_small = client.put(url, json={"token": ids["token"], "user_id": ids["alice"], "max_members": 2})
    assert too_small.status_code == 400


def test_leave_group_keeps_rotation_consistent(client, ids, db):
    # bob posted last; carol is inactive so alice is up
    db.groups.update_one({"id": ids["group"]}, {"$set": {"current_turn_index": 1}})

    response = client.post(f"/api/v1/groups/{ids['group']}/leave", json={"token": ids["token"], "user_id": ids["alice"]})
    assert response.status_code == 200

    group = db.groups.find_one({"id": ids["group"]}, {"_id": 0})
    assert group["turn_order"] == [ids["bob"], ids["carol"]]
    assert group["current_turn_index"] == 0
    assert group["admins"] == []
    assert ids["group"] not in db.users.find_one({"id": ids["alice"]})["groups"]


def test_remove_member(client, ids, db):
    params = {"token": ids["token"], "user_id": ids["bob"]}
    url = f"/api/v1/groups/{ids['group']}/members/{ids['carol']}"
    assert client.delete(url, params=params).status_code == 403

    params["user_id"] = ids["alice"]
    response = client.delete(url, params=params)
    assert response.status_code == 200
    assert db.groups.find_one({"id": ids["group"]})["turn_order"] == [ids["alice"], ids["bob"]]

    creator = client.delete(f"/api/v1/groups/{ids['group']}/members/{ids['alice']}", params=params)
    assert creator.status_code == 400


def test_delete_group_creator_only(client, ids, db):
    params = {"token": ids["token"], "user_id": ids["bob"]}
    assert client.delete(f"/api/v1/groups/{ids['group']}", params=params).status_code == 403

    params["user_id"] = ids["alice"]
    assert client.delete(f"/api/v1/groups/{ids['group']}", params=params).status_code == 200
    assert db.groups.count_documents({}) == 0
    assert db.users.count_documents({"groups": ids["group"]}) == 0


def test_unknown_group(client, ids):
    params = {"token": ids["token"], "user_id": ids["bob"]}
    assert client.get("/api/v1/groups/ffffffffffffffffffffffff", params=params).status_code == 404
