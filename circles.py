"""
Circle management.

Membership changes go through $addToSet / $pull so concurrent joins or
removals cannot double-insert or lose a member. Admins are always a subset
of members, and a circle that still has members keeps at least one admin.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from config import MAX_CIRCLE_TAGS
from database import create_document, now_utc, oid
from errors import AppError, ForbiddenError, NotFoundError, ValidationError
from notifications import (
    notify_join_request,
    notify_promoted,
    notify_removed,
    notify_request_approved,
    notify_request_rejected,
)
from schemas import Circle as CircleSchema
from users import find_user, summaries

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "visibility", "tags", "cover_image")


def clean_tags(tags: Optional[List[str]]) -> List[str]:
    result = []
    for tag in tags or []:
        value = (tag or "").strip()
        if value and value.lower() not in [t.lower() for t in result]:
            result.append(value)
    if len(result) > MAX_CIRCLE_TAGS:
        raise ValidationError(f"A circle can have at most {MAX_CIRCLE_TAGS} tags")
    return result


def public_circle(c: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(c["_id"]),
        "title": c.get("title"),
        "description": c.get("description"),
        "tags": c.get("tags", []),
        "visibility": c.get("visibility", "public"),
        "cover_image": c.get("cover_image"),
        "members": c.get("members", []),
        "admins": c.get("admins", []),
        "join_requests": c.get("join_requests", []),
        "created_at": c.get("created_at"),
    }


def circle_detail(db: Database, c: Dict[str, Any]) -> Dict[str, Any]:
    """Circle with members, admins and join requests resolved to user summaries."""
    detail = public_circle(c)
    detail["members"] = summaries(db, c.get("members", []))
    detail["admins"] = summaries(db, c.get("admins", []))
    detail["join_requests"] = summaries(db, c.get("join_requests", []))
    return detail


def get_circle_or_404(db: Database, circle_id: str) -> Dict[str, Any]:
    c = db["circle"].find_one({"_id": oid(circle_id)})
    if not c:
        raise NotFoundError("Circle not found")
    return c


def require_admin(circle: Dict[str, Any], user_id: str) -> None:
    if str(user_id) not in circle.get("admins", []):
        raise ForbiddenError("Only circle admins can do this")


def _update(db: Database, circle_id, update: Dict[str, Any], extra_filter: Optional[Dict[str, Any]] = None,
            miss_error: Optional[AppError] = None) -> Dict[str, Any]:
    """Apply `update` atomically; `extra_filter` guards it and `miss_error` is raised when the guard fails."""
    update.setdefault("$set", {})["updated_at"] = now_utc()
    query = {"_id": oid(circle_id)}
    query.update(extra_filter or {})
    circle = db["circle"].find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    if circle is None:
        raise miss_error or NotFoundError("Circle not found")
    return circle


def _not_sole_admin(uid: str) -> Dict[str, Any]:
    # matches unless uid is the one remaining admin at write time
    return {"admins": {"$ne": [uid]}}


def create_circle(db: Database, user_id: str, title: str, description: Optional[str] = None, tags: Optional[List[str]] = None,
                  visibility: str = "public", cover_image: Optional[str] = None) -> Dict[str, Any]:
    if not (title or "").strip():
        raise ValidationError("Title is required")
    circle = CircleSchema(
        title=title.strip(),
        description=description,
        tags=clean_tags(tags),
        visibility=visibility,
        cover_image=cover_image,
        members=[str(user_id)],
        admins=[str(user_id)],
    )
    cid = create_document("circle", circle, database=db)
    logger.info("circle %s created by %s", cid, user_id)
    return get_circle_or_404(db, cid)


def list_circles(db: Database, q: Optional[str] = None, tag: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if q:
        query["title"] = {"$regex": re.escape(q), "$options": "i"}
    if tag:
        query["tags"] = tag
    return list(db["circle"].find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]))


def update_circle(db: Database, user_id: str, circle_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    require_admin(circle, user_id)
    updates = {k: changes[k] for k in EDITABLE_FIELDS if changes.get(k) is not None}
    if "title" in updates:
        if not updates["title"].strip():
            raise ValidationError("Title is required")
        updates["title"] = updates["title"].strip()
    if "tags" in updates:
        updates["tags"] = clean_tags(updates["tags"])
    if not updates:
        return circle
    return _update(db, circle["_id"], {"$set": updates})


def join_circle(db: Database, user_id: str, circle_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    uid = str(user_id)
    if uid in circle.get("members", []):
        return circle
    if circle.get("visibility", "public") == "public":
        logger.info("user %s joined circle %s", uid, circle_id)
        return _update(db, circle["_id"], {"$addToSet": {"members": uid}})

    updated = _update(db, circle["_id"], {"$addToSet": {"join_requests": uid}})
    if uid not in circle.get("join_requests", []):
        requester = find_user(db, uid)
        notify_join_request(db, circle, uid, requester.get("display_name") if requester else None)
    logger.info("user %s requested to join circle %s", uid, circle_id)
    return updated


def leave_circle(db: Database, user_id: str, circle_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    uid = str(user_id)
    admins = circle.get("admins", [])
    others = [m for m in circle.get("members", []) if m != uid]
    if admins == [uid] and others:
        raise ValidationError("Promote another admin before leaving")
    updated = _update(
        db, circle["_id"], {"$pull": {"members": uid, "admins": uid}},
        {"$or": [_not_sole_admin(uid), {"members": [uid]}]},
        ValidationError("Promote another admin before leaving"),
    )
    logger.info("user %s left circle %s", uid, circle_id)
    return updated


def approve_request(db: Database, admin_id: str, circle_id: str, user_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    require_admin(circle, admin_id)
    uid = str(user_id)
    if uid not in circle.get("join_requests", []):
        raise NotFoundError("Join request not found")
    updated = _update(db, circle["_id"], {"$pull": {"join_requests": uid}, "$addToSet": {"members": uid}})
    notify_request_approved(db, circle, uid)
    logger.info("join request of %s to circle %s approved by %s", uid, circle_id, admin_id)
    return updated


def reject_request(db: Database, admin_id: str, circle_id: str, user_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    require_admin(circle, admin_id)
    uid = str(user_id)
    if uid not in circle.get("join_requests", []):
        raise NotFoundError("Join request not found")
    updated = _update(db, circle["_id"], {"$pull": {"join_requests": uid}})
    notify_request_rejected(db, circle, uid)
    return updated


def remove_member(db: Database, admin_id: str, circle_id: str, user_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    require_admin(circle, admin_id)
    uid = str(user_id)
    if uid not in circle.get("members", []):
        raise NotFoundError("User is not a member")
    if circle.get("admins", []) == [uid]:
        raise ValidationError("Cannot remove the last admin")
    updated = _update(db, circle["_id"], {"$pull": {"members": uid, "admins": uid}}, _not_sole_admin(uid),
                      ValidationError("Cannot remove the last admin"))
    notify_removed(db, circle, uid)
    logger.info("user %s removed from circle %s by %s", uid, circle_id, admin_id)
    return updated


def promote_member(db: Database, admin_id: str, circle_id: str, user_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    require_admin(circle, admin_id)
    uid = str(user_id)
    if uid not in circle.get("members", []):
        raise ValidationError("User is not a member")
    if uid in circle.get("admins", []):
        return circle
    updated = _update(db, circle["_id"], {"$addToSet": {"admins": uid}}, {"members": uid},
                      ValidationError("User is not a member"))
    notify_promoted(db, circle, uid)
    return updated


def demote_admin(db: Database, admin_id: str, circle_id: str, user_id: str) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    require_admin(circle, admin_id)
    uid = str(user_id)
    if uid not in circle.get("admins", []):
        return circle
    if len(circle.get("admins", [])) == 1:
        raise ValidationError("Cannot demote the last admin")
    return _update(db, circle["_id"], {"$pull": {"admins": uid}}, _not_sole_admin(uid),
                   ValidationError("Cannot demote the last admin"))


def is_member(circle: Dict[str, Any], user_id: str) -> bool:
    return str(user_id) in circle.get("members", [])
