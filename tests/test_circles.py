import pytest

import circles
from errors import ForbiddenError, NotFoundError, ValidationError


@pytest.fixture
def people(make_user):
    return make_user("Owner"), make_user("Joiner"), make_user("Other")


def test_create_makes_creator_sole_member_and_admin(db, people):
    owner, _, _ = people
    circle = circles.create_circle(db, owner, "  Calm  ", tags=["Sleep", " sleep ", "Rest"])
    assert circle["title"] == "Calm"
    assert circle["members"] == [owner]
    assert circle["admins"] == [owner]
    assert circle["tags"] == ["Sleep", "Rest"]


def test_create_validates_title_and_tags(db, people):
    owner, _, _ = people
    with pytest.raises(ValidationError):
        circles.create_circle(db, owner, "   ")
    with pytest.raises(ValidationError):
        circles.create_circle(db, owner, "Too many", tags=["a", "b", "c", "d", "e", "f"])


def test_join_public_is_idempotent(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    circles.join_circle(db, joiner, cid)
    circle = circles.join_circle(db, joiner, cid)
    assert circle["members"] == [owner, joiner]


def test_private_join_request_notifies_admins_once(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Private", visibility="private")["_id"])
    circles.join_circle(db, joiner, cid)
    circle = circles.join_circle(db, joiner, cid)

    assert circle["join_requests"] == [joiner]
    assert joiner not in circle["members"]
    notes = list(db["notification"].find({"user_id": owner}))
    assert len(notes) == 1
    assert notes[0]["meta"]["action_type"] == "join_request"
    assert notes[0]["meta"]["requester_id"] == joiner
    assert notes[0]["message"] == 'Joiner requested to join "Private"'


def test_approve_and_reject(db, people):
    owner, joiner, other = people
    cid = str(circles.create_circle(db, owner, "Private", visibility="private")["_id"])
    circles.join_circle(db, joiner, cid)
    circles.join_circle(db, other, cid)

    with pytest.raises(ForbiddenError):
        circles.approve_request(db, joiner, cid, joiner)

    circle = circles.approve_request(db, owner, cid, joiner)
    assert joiner in circle["members"]
    assert circle["join_requests"] == [other]

    circle = circles.reject_request(db, owner, cid, other)
    assert circle["join_requests"] == []
    assert other not in circle["members"]

    kinds = {n["meta"]["action_type"] for n in db["notification"].find({"user_id": {"$in": [joiner, other]}})}
    assert kinds == {"request_approved", "request_rejected"}

    with pytest.raises(NotFoundError):
        circles.approve_request(db, owner, cid, other)


def test_last_admin_rules(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    circles.join_circle(db, joiner, cid)

    with pytest.raises(ValidationError):
        circles.demote_admin(db, owner, cid, owner)
    with pytest.raises(ValidationError):
        circles.remove_member(db, owner, cid, owner)
    with pytest.raises(ValidationError):
        circles.leave_circle(db, owner, cid)

    circle = circles.promote_member(db, owner, cid, joiner)
    assert circle["admins"] == [owner, joiner]

    circle = circles.demote_admin(db, joiner, cid, owner)
    assert circle["admins"] == [joiner]
    assert owner in circle["members"]


def test_promote_requires_membership(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    with pytest.raises(ValidationError):
        circles.promote_member(db, owner, cid, joiner)


def test_remove_member_pulls_from_admins_and_notifies(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    circles.join_circle(db, joiner, cid)
    circles.promote_member(db, owner, cid, joiner)

    circle = circles.remove_member(db, owner, cid, joiner)
    assert circle["members"] == [owner]
    assert circle["admins"] == [owner]
    actions = [n["meta"]["action_type"] for n in db["notification"].find({"user_id": joiner})]
    assert sorted(actions) == ["promoted_to_admin", "removed_from_circle"]


def test_sole_member_can_leave(db, people):
    owner, _, _ = people
    cid = str(circles.create_circle(db, owner, "Solo")["_id"])
    circle = circles.leave_circle(db, owner, cid)
    assert circle["members"] == []
    assert circle["admins"] == []


def test_update_is_admin_only(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    with pytest.raises(ForbiddenError):
        circles.update_circle(db, joiner, cid, {"title": "Mine"})
    circle = circles.update_circle(db, owner, cid, {"title": "Renamed", "tags": ["calm"]})
    assert circle["title"] == "Renamed"
    assert circle["tags"] == ["calm"]


def test_list_circles_filters(db, people):
    owner, _, _ = people
    circles.create_circle(db, owner, "Morning Walks", tags=["walking"])
    circles.create_circle(db, owner, "Evening Reads", tags=["books"])
    assert [c["title"] for c in circles.list_circles(db, q="morning")] == ["Morning Walks"]
    assert [c["title"] for c in circles.list_circles(db, tag="books")] == ["Evening Reads"]
    with pytest.raises(NotFoundError):
        circles.get_circle_or_404(db, "64b7f0c2a1b2c3d4e5f60718")


def test_ordinary_member_can_leave(db, people):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    circles.join_circle(db, joiner, cid)
    circle = circles.leave_circle(db, joiner, cid)
    assert circle["members"] == [owner]
    assert circle["admins"] == [owner]


@pytest.fixture
def two_admins(db, people):
    owner, joiner, other = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    circles.join_circle(db, joiner, cid)
    circles.join_circle(db, other, cid)
    circles.promote_member(db, owner, cid, joiner)
    return owner, joiner, cid


def stale_reads(monkeypatch, db, cid):
    # every later lookup sees the circle as it is now
    snapshot = circles.get_circle_or_404(db, cid)
    monkeypatch.setattr(circles, "get_circle_or_404", lambda _db, _cid: snapshot)


def test_concurrent_demotes_keep_one_admin(db, two_admins, monkeypatch):
    owner, joiner, cid = two_admins
    stale_reads(monkeypatch, db, cid)

    circles.demote_admin(db, owner, cid, joiner)
    with pytest.raises(ValidationError):
        circles.demote_admin(db, joiner, cid, owner)
    assert db["circle"].find_one()["admins"] == [owner]


def test_concurrent_leaves_keep_one_admin(db, two_admins, monkeypatch):
    owner, joiner, cid = two_admins
    stale_reads(monkeypatch, db, cid)

    circles.leave_circle(db, owner, cid)
    with pytest.raises(ValidationError):
        circles.leave_circle(db, joiner, cid)
    assert db["circle"].find_one()["admins"] == [joiner]


def test_concurrent_removals_keep_one_admin(db, two_admins, monkeypatch):
    owner, joiner, cid = two_admins
    stale_reads(monkeypatch, db, cid)

    circles.remove_member(db, owner, cid, joiner)
    with pytest.raises(ValidationError):
        circles.remove_member(db, joiner, cid, owner)
    assert db["circle"].find_one()["admins"] == [owner]


def test_promote_fails_when_member_left_meanwhile(db, people, monkeypatch):
    owner, joiner, _ = people
    cid = str(circles.create_circle(db, owner, "Open")["_id"])
    circles.join_circle(db, joiner, cid)
    stale_reads(monkeypatch, db, cid)
    circles.leave_circle(db, joiner, cid)

    with pytest.raises(ValidationError):
        circles.promote_member(db, owner, cid, joiner)
    assert db["circle"].find_one()["admins"] == [owner]
    assert db["notification"].count_documents({"user_id": joiner}) == 0
