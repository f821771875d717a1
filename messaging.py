"""
Direct messages between two users.

Every message carries a conversation_id derived from the two participants,
so a whole thread is a single equality query. A Block row in either
direction between two users stops sending, thread reads and inbox listing.

Two behaviors are kept on purpose:

* opening any page of a thread marks the *whole* thread read for the reader;
* unread_count() counts every unread message, blocked counterparts included.
"""
import logging
from typing import Any, Dict, List, Optional

from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from database import create_document, oid
from errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from notifications import notify_new_message
from schemas import Block as BlockSchema, Message as MessageSchema
from users import (
    blocked_counterparts,
    find_user,
    get_user_or_404,
    is_blocked_either_way,
    summaries,
    user_summary,
    visibility_of,
)

logger = logging.getLogger(__name__)

CONVERSATION_SEPARATOR = "_"
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def conversation_id(user_a: str, user_b: str) -> str:
    return CONVERSATION_SEPARATOR.join(sorted((str(user_a), str(user_b))))


def counterpart_of(conv_id: str, user_id: str) -> Optional[str]:
    parts = conv_id.split(CONVERSATION_SEPARATOR)
    others = [p for p in parts if p != str(user_id)]
    return others[0] if others else None


def format_message(m: Dict[str, Any], sender: Optional[Dict[str, Any]] = None, receiver: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {
        "id": str(m["_id"]),
        "conversation_id": m.get("conversation_id"),
        "sender": sender or {"id": m.get("sender_id")},
        "receiver": receiver or {"id": m.get("receiver_id")},
        "content": m.get("content"),
        "read": m.get("read", False),
        "created_at": m.get("created_at"),
    }


def send_message(db: Database, sender_id: str, receiver_id: str, content: str) -> Dict[str, Any]:
    sender_id, receiver_id = str(sender_id), str(receiver_id)
    text = (content or "").strip()
    if not text:
        raise ValidationError("Message content is required")
    if sender_id == receiver_id:
        raise ValidationError("Cannot message yourself")
    if is_blocked_either_way(db, sender_id, receiver_id):
        raise ForbiddenError("Cannot send message to this user")

    receiver = get_user_or_404(db, receiver_id)
    if not visibility_of(receiver)["allow_messages"]:
        raise ForbiddenError("This user has disabled messages")
    sender = get_user_or_404(db, sender_id)

    msg = MessageSchema(
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=text,
        read=False,
        conversation_id=conversation_id(sender_id, receiver_id),
    )
    mid = create_document("message", msg, database=db)
    doc = db["message"].find_one({"_id": oid(mid)})

    notify_new_message(db, receiver_id, sender_id, sender.get("display_name") or "Someone", text)
    logger.info("message %s sent %s -> %s", mid, sender_id, receiver_id)
    return format_message(doc, user_summary(sender), user_summary(receiver))


def list_conversations(db: Database, user_id: str) -> List[Dict[str, Any]]:
    uid = str(user_id)
    hidden = blocked_counterparts(db, uid)
    msgs = db["message"].find({"$or": [{"sender_id": uid}, {"receiver_id": uid}]}).sort(NEWEST_FIRST)

    # messages arrive newest first, so the first one seen per conversation is the last message
    groups: Dict[str, Dict[str, Any]] = {}
    order: List[str] = []
    for m in msgs:
        cid = m["conversation_id"]
        entry = groups.get(cid)
        if entry is None:
            entry = groups[cid] = {"last": m, "unread": 0}
            order.append(cid)
        if m["receiver_id"] == uid and not m.get("read", False):
            entry["unread"] += 1

    convos = []
    for cid in order:
        other_id = counterpart_of(cid, uid)
        if other_id is None or other_id in hidden:
            continue
        other = find_user(db, other_id)
        if not other:
            continue
        last = groups[cid]["last"]
        convos.append({
            "conversation_id": cid,
            "other_user": {
                "id": str(other["_id"]),
                "display_name": other.get("display_name"),
                "avatar": other.get("avatar"),
                "is_online": other.get("is_online", False),
                "last_seen": other.get("last_seen"),
                "allow_messages": visibility_of(other)["allow_messages"],
            },
            "last_message": {
                "content": last.get("content"),
                "created_at": last.get("created_at"),
                "sender": last.get("sender_id"),
                "read": last.get("read", False),
            },
            "unread_count": groups[cid]["unread"],
        })
    return convos


def get_thread(db: Database, user_id: str, other_id: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> List[Dict[str, Any]]:
    """Return one page of a thread, oldest first; page 1 holds the newest messages."""
    uid, other = str(user_id), str(other_id)
    if page < 1 or page_size < 1:
        raise ValidationError("page and page_size must be positive")
    page_size = min(page_size, MAX_PAGE_SIZE)
    if is_blocked_either_way(db, uid, other):
        raise ForbiddenError("Cannot view messages with this user")

    cid = conversation_id(uid, other)
    window = list(
        db["message"].find({"conversation_id": cid}).sort(NEWEST_FIRST).skip((page - 1) * page_size).limit(page_size)
    )
    people = {s["id"]: s for s in summaries(db, [uid, other])}

    # the whole conversation is marked read, not just the returned window
    mark_conversation_read(db, uid, other)

    window.reverse()
    return [format_message(m, people.get(m["sender_id"]), people.get(m["receiver_id"])) for m in window]


def mark_conversation_read(db: Database, user_id: str, other_id: str) -> int:
    result = db["message"].update_many(
        {"conversation_id": conversation_id(user_id, other_id), "receiver_id": str(user_id), "read": False},
        {"$set": {"read": True}},
    )
    return result.modified_count


def unread_count(db: Database, user_id: str) -> int:
    return db["message"].count_documents({"receiver_id": str(user_id), "read": False})


def delete_message(db: Database, requester_id: str, message_id: str) -> None:
    msg = db["message"].find_one({"_id": oid(message_id)})
    if not msg:
        raise NotFoundError("Message not found")
    if msg["sender_id"] != str(requester_id):
        raise ForbiddenError("Can only delete your own messages")
    db["message"].delete_one({"_id": msg["_id"]})
    logger.info("message %s deleted by %s", message_id, requester_id)


def block_user(db: Database, requester_id: str, target_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
    requester_id, target_id = str(requester_id), str(target_id)
    if requester_id == target_id:
        raise ValidationError("Cannot block yourself")
    get_user_or_404(db, target_id)
    if db["block"].find_one({"blocker_id": requester_id, "blocked_id": target_id}):
        raise ConflictError("User already blocked")
    reason = (reason or "").strip() or None
    try:
        bid = create_document("block", BlockSchema(blocker_id=requester_id, blocked_id=target_id, reason=reason), database=db)
    except DuplicateKeyError:
        raise ConflictError("User already blocked")
    logger.info("user %s blocked %s", requester_id, target_id)
    return {"id": bid, "blocker_id": requester_id, "blocked_id": target_id, "reason": reason}


def unblock_user(db: Database, requester_id: str, target_id: str) -> bool:
    result = db["block"].delete_one({"blocker_id": str(requester_id), "blocked_id": str(target_id)})
    if result.deleted_count:
        logger.info("user %s unblocked %s", requester_id, target_id)
    return bool(result.deleted_count)


def list_blocked(db: Database, user_id: str) -> List[Dict[str, Any]]:
    blocks = list(db["block"].find({"blocker_id": str(user_id)}).sort("created_at", DESCENDING))
    people = summaries(db, [b["blocked_id"] for b in blocks])
    return [
        {**person, "blocked_at": b.get("created_at"), "reason": b.get("reason")}
        for b, person in zip(blocks, people)
    ]
