"""
Notification emitter.

Circle, post and message handlers call the helpers below to leave a
notification row for the affected user. Rows are only ever flipped to read.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING
from pymongo.database import Database

from config import MESSAGE_PREVIEW_LENGTH
from database import create_document
from errors import NotFoundError
from schemas import (
    JoinRequestMeta,
    NewCommentMeta,
    NewMessageMeta,
    NewPostMeta,
    Notification as NotificationSchema,
    PromotedToAdminMeta,
    RemovedFromCircleMeta,
    RequestApprovedMeta,
    RequestRejectedMeta,
)

logger = logging.getLogger(__name__)


def notify(db: Database, user_id: str, type_: str, message: str, meta) -> str:
    doc = NotificationSchema(user_id=str(user_id), type=type_, message=message, meta=meta)
    nid = create_document("notification", doc, database=db)
    logger.debug("notification %s (%s) -> %s", nid, meta.action_type, user_id)
    return nid


def notify_new_message(db: Database, receiver_id: str, sender_id: str, sender_name: str, content: str) -> str:
    return notify(
        db, receiver_id, "New Message", f"{sender_name} sent you a message",
        NewMessageMeta(sender_id=str(sender_id), sender_name=sender_name,
                       message_preview=content[:MESSAGE_PREVIEW_LENGTH]),
    )


def notify_join_request(db: Database, circle: Dict[str, Any], requester_id: str, requester_name: Optional[str] = None) -> List[str]:
    ids = []
    for admin_id in circle.get("admins", []):
        ids.append(notify(
            db, admin_id, "Join Request",
            f'{requester_name or "Someone"} requested to join "{circle["title"]}"',
            JoinRequestMeta(circle_id=str(circle["_id"]), circle_name=circle["title"],
                            requester_id=str(requester_id), requester_name=requester_name),
        ))
    return ids


def notify_request_approved(db: Database, circle: Dict[str, Any], user_id: str) -> str:
    return notify(
        db, user_id, "Request Approved",
        f'Your request to join "{circle["title"]}" has been approved! You are now a member.',
        RequestApprovedMeta(circle_id=str(circle["_id"]), circle_name=circle["title"]),
    )


def notify_request_rejected(db: Database, circle: Dict[str, Any], user_id: str) -> str:
    return notify(
        db, user_id, "Request Declined",
        f'Your request to join "{circle["title"]}" was not approved.',
        RequestRejectedMeta(circle_id=str(circle["_id"]), circle_name=circle["title"]),
    )


def notify_removed(db: Database, circle: Dict[str, Any], user_id: str) -> str:
    return notify(
        db, user_id, "Removed from Circle",
        f'You have been removed from "{circle["title"]}".',
        RemovedFromCircleMeta(circle_id=str(circle["_id"]), circle_name=circle["title"]),
    )


def notify_promoted(db: Database, circle: Dict[str, Any], user_id: str) -> str:
    return notify(
        db, user_id, "Promoted to Admin",
        f'You are now an admin of "{circle["title"]}"!',
        PromotedToAdminMeta(circle_id=str(circle["_id"]), circle_name=circle["title"]),
    )


def notify_new_post(db: Database, circle: Dict[str, Any], post_id: str, author_id: str, author_name: Optional[str] = None) -> int:
    count = 0
    for member_id in circle.get("members", []):
        if member_id == str(author_id):
            continue
        notify(
            db, member_id, "new_post",
            f'{author_name or "Someone"} posted in "{circle["title"]}"',
            NewPostMeta(circle_id=str(circle["_id"]), post_id=str(post_id)),
        )
        count += 1
    return count


def notify_new_comment(db: Database, post: Dict[str, Any], commenter_name: Optional[str] = None, circle_title: Optional[str] = None) -> str:
    where = f' in "{circle_title}"' if circle_title else ""
    return notify(
        db, post["author_id"], "new_comment",
        f'{commenter_name or "Someone"} commented on your post{where}',
        NewCommentMeta(circle_id=post["circle_id"], post_id=str(post["_id"])),
    )


def public_notification(n: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(n["_id"]),
        "type": n.get("type"),
        "message": n.get("message"),
        "read": n.get("read", False),
        "meta": n.get("meta") or {},
        "created_at": n.get("created_at"),
    }


def list_notifications(db: Database, user_id: str) -> List[Dict[str, Any]]:
    cursor = db["notification"].find({"user_id": str(user_id)}).sort([("created_at", DESCENDING), ("_id", DESCENDING)])
    return [public_notification(n) for n in cursor]


def mark_read(db: Database, user_id: str, notification_id: ObjectId) -> None:
    result = db["notification"].update_one(
        {"_id": notification_id, "user_id": str(user_id)},
        {"$set": {"read": True}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Notification not found")


def mark_all_read(db: Database, user_id: str) -> int:
    result = db["notification"].update_many({"user_id": str(user_id), "read": False}, {"$set": {"read": True}})
    return result.modified_count
