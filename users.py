"""User lookups, public projections, profile visibility and block predicates."""
import logging
import re
from typing import Any, Dict, List, Optional, Set

from pymongo.database import Database

from database import now_utc, oid
from errors import ForbiddenError, NotFoundError, ValidationError
from schemas import ProfileVisibility

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("display_name", "bio", "avatar", "interests")


def visibility_of(u: Dict[str, Any]) -> Dict[str, bool]:
    stored = u.get("profile_visibility") or {}
    return ProfileVisibility(**stored).model_dump()


def public_user(u: Dict[str, Any]) -> Dict[str, Any]:
    """Full view of a user, for the account owner."""
    return {
        "id": str(u.get("_id")),
        "email": u.get("email"),
        "display_name": u.get("display_name"),
        "bio": u.get("bio"),
        "interests": u.get("interests", []),
        "avatar": u.get("avatar"),
        "profile_visibility": visibility_of(u),
        "is_online": u.get("is_online", False),
        "last_seen": u.get("last_seen"),
        "is_active": u.get("is_active", True),
        "is_admin": u.get("is_admin", False),
        "created_at": u.get("created_at"),
    }


def user_summary(u: Optional[Dict[str, Any]], user_id: Optional[str] = None) -> Dict[str, Any]:
    if not u:
        return {"id": user_id, "display_name": None, "avatar": None}
    return {"id": str(u["_id"]), "display_name": u.get("display_name"), "avatar": u.get("avatar")}


def find_user(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    try:
        return db["user"].find_one({"_id": oid(user_id)})
    except ValidationError:
        return None


def get_user_or_404(db: Database, user_id: str) -> Dict[str, Any]:
    u = db["user"].find_one({"_id": oid(user_id)})
    if not u:
        raise NotFoundError("User not found")
    return u


def summaries(db: Database, user_ids: List[str]) -> List[Dict[str, Any]]:
    """Resolve ids to display summaries, preserving order."""
    valid = [oid(uid) for uid in user_ids if uid]
    found = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": valid}})}
    return [user_summary(found.get(uid), uid) for uid in user_ids]


def is_blocked_either_way(db: Database, user_a: str, user_b: str) -> bool:
    return db["block"].find_one({"$or": [
        {"blocker_id": str(user_a), "blocked_id": str(user_b)},
        {"blocker_id": str(user_b), "blocked_id": str(user_a)},
    ]}) is not None


def blocked_counterparts(db: Database, user_id: str) -> Set[str]:
    """Ids of every user with a block row touching user_id, in either direction."""
    uid = str(user_id)
    result = set()
    for b in db["block"].find({"$or": [{"blocker_id": uid}, {"blocked_id": uid}]}):
        result.add(b["blocked_id"] if b["blocker_id"] == uid else b["blocker_id"])
    return result


def search_users(db: Database, user_id: str, q: Optional[str] = None, limit: int = 50) -> List[Dict[str, Any]]:
    excluded = [oid(user_id)] + [oid(x) for x in blocked_counterparts(db, user_id)]
    query: Dict[str, Any] = {"_id": {"$nin": excluded}, "is_active": {"$ne": False}}
    if q:
        pattern = re.escape(q)
        query["$or"] = [
            {"display_name": {"$regex": pattern, "$options": "i"}},
            {"bio": {"$regex": pattern, "$options": "i"}},
            {"interests": {"$regex": pattern, "$options": "i"}},
        ]
    result = []
    for u in db["user"].find(query).limit(limit):
        vis = visibility_of(u)
        result.append({
            "id": str(u["_id"]),
            "display_name": u.get("display_name"),
            "bio": u.get("bio") if vis["show_bio"] else None,
            "interests": u.get("interests", []) if vis["show_interests"] else [],
            "avatar": u.get("avatar"),
            "is_online": u.get("is_online", False),
            "last_seen": u.get("last_seen"),
            "allow_messages": vis["allow_messages"],
        })
    return result


def get_profile(db: Database, viewer_id: str, user_id: str) -> Dict[str, Any]:
    if is_blocked_either_way(db, viewer_id, user_id):
        raise ForbiddenError("Cannot view this profile")
    u = get_user_or_404(db, user_id)
    vis = visibility_of(u)
    circles = []
    if vis["show_circles"]:
        for c in db["circle"].find({"members": str(u["_id"]), "visibility": "public"}):
            circles.append({
                "id": str(c["_id"]),
                "title": c.get("title"),
                "description": c.get("description"),
                "tags": c.get("tags", []),
                "cover_image": c.get("cover_image"),
                "member_count": len(c.get("members", [])),
            })
    blocked_by_me = db["block"].find_one({"blocker_id": str(viewer_id), "blocked_id": str(u["_id"])}) is not None
    return {
        "id": str(u["_id"]),
        "display_name": u.get("display_name"),
        "avatar": u.get("avatar"),
        "last_seen": u.get("last_seen"),
        "is_online": u.get("is_online", False),
        "created_at": u.get("created_at"),
        "email": u.get("email") if vis["show_email"] else None,
        "bio": u.get("bio") if vis["show_bio"] else None,
        "interests": u.get("interests", []) if vis["show_interests"] else [],
        "circles": circles,
        "allow_messages": vis["allow_messages"],
        "is_blocked_by_me": blocked_by_me,
    }


def clean_interests(interests: List[str]) -> List[str]:
    """Trim, drop blanks and case-insensitive duplicates; first spelling wins."""
    seen = set()
    result = []
    for item in interests:
        value = (item or "").strip()
        key = value.lower()
        if not value or key in seen:
            continue
        seen.add(key)
        result.append(value)
    return result


def update_profile(db: Database, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    updates: Dict[str, Any] = {}
    for field in PROFILE_FIELDS:
        if changes.get(field) is not None:
            updates[field] = changes[field]
    if "display_name" in updates and not updates["display_name"].strip():
        raise ValidationError("Display name cannot be empty")
    if "interests" in updates:
        updates["interests"] = clean_interests(updates["interests"])
    visibility = changes.get("profile_visibility")
    if visibility:
        for key, value in visibility.items():
            if value is not None:
                updates[f"profile_visibility.{key}"] = bool(value)
    if updates:
        updates["updated_at"] = now_utc()
        db["user"].update_one({"_id": oid(user_id)}, {"$set": updates})
        logger.info("profile updated for %s: %s", user_id, sorted(updates))
    return public_user(get_user_or_404(db, user_id))


def touch_presence(db: Database, user_id, online: bool = True) -> None:
    db["user"].update_one({"_id": oid(user_id)}, {"$set": {"is_online": online, "last_seen": now_utc()}})
