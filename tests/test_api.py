def test_health(client):
    res = client.get("/healthz")
    assert res.status_code == 200
    assert res.json()["ok"] is True


def test_register_login_me(client, signup):
    signup("Dana", email="dana@example.com")

    res = client.post("/auth/register", json={"email": "DANA@example.com", "password": "secret123", "display_name": "D"})
    assert res.status_code == 409
    assert res.json()["error"]["kind"] == "conflict"

    res = client.post("/auth/login", json={"email": "dana@example.com", "password": "wrong-pass"})
    assert res.status_code == 401

    res = client.post("/auth/login", json={"email": "dana@example.com", "password": "secret123"})
    assert res.status_code == 200
    headers = {"Authorization": f"Bearer {res.json()['token']}"}

    me = client.get("/auth/me", headers=headers).json()
    assert me["display_name"] == "Dana"
    assert me["is_online"] is True
    assert "password_hash" not in me

    assert client.post("/auth/logout", headers=headers).status_code == 200
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_requires_auth(client):
    assert client.get("/messages/conversations").status_code == 401
    res = client.get("/messages/conversations", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401


def test_update_profile_and_visibility(client, signup):
    viewer = signup("Viewer")
    owner = signup("Owner")
    res = client.put("/auth/me", headers=owner["headers"], json={
        "bio": "hello",
        "interests": ["Sleep", " sleep ", "Art"],
        "profile_visibility": {"show_bio": False},
    })
    assert res.status_code == 200
    assert res.json()["interests"] == ["Sleep", "Art"]

    profile = client.get(f"/users/{owner['id']}", headers=viewer["headers"]).json()
    assert profile["bio"] is None
    assert profile["interests"] == ["Sleep", "Art"]
    assert profile["is_blocked_by_me"] is False


def test_change_password(client, signup):
    user = signup("Pat", email="pat@example.com")
    res = client.put("/auth/change-password", headers=user["headers"],
                     json={"current_password": "bad", "new_password": "newsecret1"})
    assert res.status_code == 400
    res = client.put("/auth/change-password", headers=user["headers"],
                     json={"current_password": "secret123", "new_password": "newsecret1"})
    assert res.status_code == 200
    assert client.post("/auth/login", json={"email": "pat@example.com", "password": "newsecret1"}).status_code == 200


def test_messaging_flow(client, signup):
    alice = signup("Alice")
    bob = signup("Bob")

    res = client.post(f"/messages/send/{bob['id']}", headers=alice["headers"], json={"content": "   "})
    assert res.status_code == 400
    assert res.json()["error"]["kind"] == "validation_error"

    res = client.post(f"/messages/send/{bob['id']}", headers=alice["headers"], json={"content": "hi bob"})
    assert res.status_code == 200
    sent = res.json()
    assert sent["sender"]["display_name"] == "Alice"

    assert client.get("/messages/unread/count", headers=bob["headers"]).json() == {"count": 1}

    convos = client.get("/messages/conversations", headers=bob["headers"]).json()
    assert len(convos) == 1
    assert convos[0]["other_user"]["id"] == alice["id"]
    assert convos[0]["unread_count"] == 1

    thread = client.get(f"/messages/conversation/{alice['id']}", headers=bob["headers"]).json()
    assert [m["content"] for m in thread] == ["hi bob"]
    assert client.get("/messages/unread/count", headers=bob["headers"]).json() == {"count": 0}

    notes = client.get("/notifications", headers=bob["headers"]).json()
    assert notes[0]["meta"]["action_type"] == "new_message"

    res = client.delete(f"/messages/{sent['id']}", headers=bob["headers"])
    assert res.status_code == 403
    res = client.delete(f"/messages/{sent['id']}", headers=alice["headers"])
    assert res.status_code == 200
    assert client.get(f"/messages/conversation/{bob['id']}", headers=alice["headers"]).json() == []


def test_block_via_api(client, signup):
    alice = signup("Alice")
    bob = signup("Bob")

    res = client.post(f"/users/{bob['id']}/block", headers=alice["headers"], json={"reason": "rude"})
    assert res.status_code == 200
    res = client.post(f"/users/{bob['id']}/block", headers=alice["headers"], json={})
    assert res.status_code == 409

    res = client.post(f"/messages/send/{alice['id']}", headers=bob["headers"], json={"content": "hey"})
    assert res.status_code == 403
    assert res.json()["error"]["kind"] == "forbidden"
    assert client.get(f"/users/{alice['id']}", headers=bob["headers"]).status_code == 403
    assert [u["id"] for u in client.get("/users", headers=bob["headers"]).json()] == []

    blocked = client.get("/users/blocked/list", headers=alice["headers"]).json()
    assert blocked[0]["id"] == bob["id"]
    assert blocked[0]["reason"] == "rude"

    assert client.post(f"/users/{bob['id']}/unblock", headers=alice["headers"]).status_code == 200
    assert client.post(f"/users/{bob['id']}/unblock", headers=alice["headers"]).status_code == 200
    res = client.post(f"/messages/send/{alice['id']}", headers=bob["headers"], json={"content": "hey"})
    assert res.status_code == 200


def test_invalid_id_is_validation_error(client, signup):
    alice = signup("Alice")
    res = client.delete("/messages/not-an-id", headers=alice["headers"])
    assert res.status_code == 400
    assert res.json() == {"error": {"kind": "validation_error", "message": "Invalid ID"}}


def test_recommendations_endpoint(client, signup):
    owner = signup("Owner")
    reader = signup("Reader")
    client.put("/auth/me", headers=reader["headers"], json={"interests": ["Anxiety"]})

    y = client.post("/circles", headers=owner["headers"], json={"title": "Y", "tags": ["Anxiety Support"]}).json()
    x = client.post("/circles", headers=owner["headers"], json={"title": "X", "tags": ["Anxiety"]}).json()

    recs = client.get("/circles/recommendations", headers=reader["headers"]).json()
    assert [c["id"] for c in recs] == [x["id"], y["id"]]

    client.post(f"/circles/{x['id']}/join", headers=reader["headers"])
    recs = client.get("/circles/recommendations", headers=reader["headers"]).json()
    assert [c["id"] for c in recs] == [y["id"]]


def test_circle_private_join_flow(client, signup):
    owner = signup("Owner")
    joiner = signup("Joiner")
    circle = client.post("/circles", headers=owner["headers"],
                         json={"title": "Quiet Room", "visibility": "private"}).json()

    client.post(f"/circles/{circle['id']}/join", headers=joiner["headers"])
    notes = client.get("/notifications", headers=owner["headers"]).json()
    assert notes[0]["meta"]["circle_id"] == circle["id"]
    assert notes[0]["meta"]["requester_id"] == joiner["id"]

    res = client.post(f"/circles/{circle['id']}/requests/{joiner['id']}/approve", headers=joiner["headers"])
    assert res.status_code == 403
    res = client.post(f"/circles/{circle['id']}/requests/{joiner['id']}/approve", headers=owner["headers"])
    assert res.status_code == 200
    detail = res.json()
    assert [m["display_name"] for m in detail["members"]] == ["Owner", "Joiner"]

    res = client.post(f"/circles/{circle['id']}/members/{owner['id']}/demote", headers=owner["headers"])
    assert res.status_code == 400


def test_posts_and_comments(client, signup):
    owner = signup("Owner")
    member = signup("Member")
    outsider = signup("Outsider")
    circle = client.post("/circles", headers=owner["headers"], json={"title": "Runners"}).json()
    client.post(f"/circles/{circle['id']}/join", headers=member["headers"])

    res = client.post("/posts", headers=outsider["headers"], json={"circle": circle["id"], "body": "hi"})
    assert res.status_code == 403

    post = client.post("/posts", headers=member["headers"], json={"circle": circle["id"], "title": "5k", "body": "done"}).json()
    assert post["circle"]["title"] == "Runners"
    owner_notes = client.get("/notifications", headers=owner["headers"]).json()
    assert owner_notes[0]["meta"] == {"action_type": "new_post", "circle_id": circle["id"], "post_id": post["id"]}

    liked = client.post(f"/posts/{post['id']}/like", headers=owner["headers"]).json()
    liked = client.post(f"/posts/{post['id']}/like", headers=owner["headers"]).json()
    assert liked["likes"] == [owner["id"]]
    unliked = client.post(f"/posts/{post['id']}/unlike", headers=owner["headers"]).json()
    assert unliked["likes"] == []

    commented = client.post(f"/posts/{post['id']}/comments", headers=owner["headers"], json={"body": "nice"}).json()
    comment = commented["comments"][0]
    assert comment["author"]["display_name"] == "Owner"
    member_notes = client.get("/notifications", headers=member["headers"]).json()
    assert member_notes[0]["meta"]["action_type"] == "new_comment"
    assert member_notes[0]["message"] == 'Owner commented on your post in "Runners"'

    res = client.put(f"/posts/{post['id']}/comments/{comment['id']}", headers=member["headers"], json={"body": "x"})
    assert res.status_code == 403
    edited = client.put(f"/posts/{post['id']}/comments/{comment['id']}", headers=owner["headers"], json={"body": "great"})
    assert edited.json()["comments"][0]["body"] == "great"

    # post author may delete comments on their post
    cleared = client.delete(f"/posts/{post['id']}/comments/{comment['id']}", headers=member["headers"]).json()
    assert cleared["comments"] == []

    assert client.delete(f"/posts/{post['id']}", headers=outsider["headers"]).status_code == 403
    # circle admin may delete any post in the circle
    assert client.delete(f"/posts/{post['id']}", headers=owner["headers"]).status_code == 200
    assert client.get(f"/posts/circle/{circle['id']}", headers=owner["headers"]).json() == []


def test_my_posts(client, signup):
    owner = signup("Owner")
    circle = client.post("/circles", headers=owner["headers"], json={"title": "Writers"}).json()
    post = client.post("/posts", headers=owner["headers"], json={"circle": circle["id"], "body": "draft"}).json()

    mine = client.get("/posts/me", headers=owner["headers"]).json()
    assert [p["id"] for p in mine] == [post["id"]]
    assert client.get("/posts/me", headers=signup("Reader")["headers"]).json() == []


def test_notifications_read(client, signup):
    alice = signup("Alice")
    bob = signup("Bob")
    client.post(f"/messages/send/{bob['id']}", headers=alice["headers"], json={"content": "one"})
    client.post(f"/messages/send/{bob['id']}", headers=alice["headers"], json={"content": "two"})
    notes = client.get("/notifications", headers=bob["headers"]).json()

    assert client.post(f"/notifications/read/{notes[0]['id']}", headers=alice["headers"]).status_code == 404
    assert client.post(f"/notifications/read/{notes[0]['id']}", headers=bob["headers"]).status_code == 200
    assert [n["read"] for n in client.get("/notifications", headers=bob["headers"]).json()] == [True, False]
    assert client.post("/notifications/read-all", headers=bob["headers"]).json() == {"updated": 1}


def test_mood_and_journals(client, signup):
    user = signup("Jo")
    assert client.get("/mood/today", headers=user["headers"]).json()["mood"] == "not_added"
    assert client.post("/mood", headers=user["headers"], json={"mood": "ecstatic"}).status_code == 400
    client.post("/mood", headers=user["headers"], json={"mood": "bad"})
    today = client.post("/mood", headers=user["headers"], json={"mood": "good"}).json()
    assert today["mood"] == "good"
    assert len(client.get("/mood", headers=user["headers"]).json()) == 1

    year, month, day = (int(part) for part in today["day"].split("-"))
    history = client.get(f"/mood/history?year={year}&month={month}", headers=user["headers"]).json()
    assert history == {str(day): "good"}
    assert client.get("/mood/history?year=0&month=1", headers=user["headers"]).status_code == 400
    assert client.get(f"/mood/history?year={year}&month=13", headers=user["headers"]).status_code == 400

    res = client.post("/journals", headers=user["headers"], json={"title": "Day one", "body": "ok"})
    assert res.json()["visibility"] == "private"
    assert [j["title"] for j in client.get("/journals", headers=user["headers"]).json()] == ["Day one"]


def test_admin_endpoints(client, signup, db):
    admin = signup("Admin")
    user = signup("Someone")
    assert client.get("/admin/stats", headers=admin["headers"]).status_code == 403

    db["user"].update_one({"display_name": "Admin"}, {"$set": {"is_admin": True}})
    stats = client.get("/admin/stats", headers=admin["headers"]).json()
    assert stats["user"] == 2

    assert client.post(f"/admin/suspend/{user['id']}", headers=admin["headers"]).status_code == 200
    assert client.get("/auth/me", headers=user["headers"]).status_code == 401
    assert client.post(f"/admin/activate/{user['id']}", headers=admin["headers"]).status_code == 200


def test_admin_listings(client, signup, db):
    admin = signup("Admin", email="admin@example.com")
    member = signup("Member", email="member@example.com")
    db["user"].update_one({"display_name": "Admin"}, {"$set": {"is_admin": True}})

    circle = client.post("/circles", headers=admin["headers"], json={"title": "Calm"}).json()
    client.post(f"/circles/{circle['id']}/join", headers=member["headers"])
    client.post("/posts", headers=admin["headers"], json={"circle": circle["id"], "title": "Welcome"})
    client.post("/journals", headers=member["headers"], json={"title": "Notes"})
    client.post("/mood", headers=member["headers"], json={"mood": "good"})

    for path in ("/admin/circles", "/admin/posts", "/admin/journals", "/admin/moods", "/admin/notifications"):
        assert client.get(path, headers=member["headers"]).status_code == 403

    listed = client.get("/admin/circles", headers=admin["headers"]).json()
    assert [c["title"] for c in listed] == ["Calm"]
    assert [m["display_name"] for m in listed[0]["members"]] == ["Admin", "Member"]

    listed = client.get("/admin/posts", headers=admin["headers"]).json()
    assert listed[0]["author"]["display_name"] == "Admin"
    assert listed[0]["circle"]["title"] == "Calm"

    owner = {"id": member["id"], "display_name": "Member", "email": "member@example.com"}
    journals = client.get("/admin/journals", headers=admin["headers"]).json()
    assert [(j["title"], j["user"]) for j in journals] == [("Notes", owner)]
    moods = client.get("/admin/moods", headers=admin["headers"]).json()
    assert [(m["mood"], m["user"]) for m in moods] == [("good", owner)]
    notes = client.get("/admin/notifications", headers=admin["headers"]).json()
    assert [(n["meta"]["action_type"], n["user"]) for n in notes] == [("new_post", owner)]
