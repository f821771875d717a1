"""Circle posts with embedded comments and likes."""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from circles import get_circle_or_404, is_member
from database import create_document, now_utc, oid
from errors import ForbiddenError, NotFoundError, ValidationError
from notifications import notify_new_comment, notify_new_post
from schemas import Comment as CommentSchema, Post as PostSchema
from users import find_user, summaries

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def render_posts(db: Database, posts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    ids = set()
    for p in posts:
        ids.add(p["author_id"])
        ids.update(c["author_id"] for c in p.get("comments", []))
    people = {s["id"]: s for s in summaries(db, sorted(ids))}
    circle_ids = list({oid(p["circle_id"]) for p in posts})
    titles = {str(c["_id"]): c.get("title") for c in db["circle"].find({"_id": {"$in": circle_ids}})}

    result = []
    for p in posts:
        result.append({
            "id": str(p["_id"]),
            "circle": {"id": p["circle_id"], "title": titles.get(p["circle_id"])},
            "author": people.get(p["author_id"]),
            "title": p.get("title"),
            "body": p.get("body"),
            "attachment_url": p.get("attachment_url"),
            "likes": p.get("likes", []),
            "comments": [
                {
                    "id": c["id"],
                    "author": people.get(c["author_id"]),
                    "body": c["body"],
                    "created_at": c.get("created_at"),
                    "updated_at": c.get("updated_at"),
                }
                for c in p.get("comments", [])
            ],
            "created_at": p.get("created_at"),
            "updated_at": p.get("updated_at"),
        })
    return result


def render_post(db: Database, post: Dict[str, Any]) -> Dict[str, Any]:
    return render_posts(db, [post])[0]


def get_post_or_404(db: Database, post_id: str) -> Dict[str, Any]:
    post = db["post"].find_one({"_id": oid(post_id)})
    if not post:
        raise NotFoundError("Post not found")
    return post


def _circle_admins(db: Database, post: Dict[str, Any]) -> List[str]:
    circle = db["circle"].find_one({"_id": oid(post["circle_id"])})
    return circle.get("admins", []) if circle else []


def create_post(db: Database, user_id: str, circle_id: str, title: Optional[str] = None, body: Optional[str] = None,
                attachment_url: Optional[str] = None) -> Dict[str, Any]:
    circle = get_circle_or_404(db, circle_id)
    if not is_member(circle, user_id):
        raise ForbiddenError("Join the circle before posting")
    if not (title or "").strip() and not (body or "").strip():
        raise ValidationError("Post needs a title or a body")
    post = PostSchema(circle_id=str(circle["_id"]), author_id=str(user_id), title=title, body=body,
                      attachment_url=attachment_url)
    pid = create_document("post", post, database=db)
    author = find_user(db, user_id)
    notified = notify_new_post(db, circle, pid, str(user_id), author.get("display_name") if author else None)
    logger.info("post %s created in circle %s (%d notified)", pid, circle_id, notified)
    return render_post(db, get_post_or_404(db, pid))


def list_circle_posts(db: Database, circle_id: str) -> List[Dict[str, Any]]:
    get_circle_or_404(db, circle_id)
    return render_posts(db, list(db["post"].find({"circle_id": str(circle_id)}).sort(NEWEST_FIRST)))


def list_user_posts(db: Database, user_id: str) -> List[Dict[str, Any]]:
    return render_posts(db, list(db["post"].find({"author_id": str(user_id)}).sort(NEWEST_FIRST)))


def _apply(db: Database, post_id: str, update: Dict[str, Any]) -> Dict[str, Any]:
    post = db["post"].find_one_and_update({"_id": oid(post_id)}, update, return_document=ReturnDocument.AFTER)
    if not post:
        raise NotFoundError("Post not found")
    return render_post(db, post)


def like_post(db: Database, user_id: str, post_id: str) -> Dict[str, Any]:
    return _apply(db, post_id, {"$addToSet": {"likes": str(user_id)}})


def unlike_post(db: Database, user_id: str, post_id: str) -> Dict[str, Any]:
    return _apply(db, post_id, {"$pull": {"likes": str(user_id)}})


def update_post(db: Database, user_id: str, post_id: str, title: Optional[str] = None, body: Optional[str] = None) -> Dict[str, Any]:
    post = get_post_or_404(db, post_id)
    if post["author_id"] != str(user_id):
        raise ForbiddenError("Only the author can edit this post")
    updates: Dict[str, Any] = {"updated_at": now_utc()}
    if title is not None:
        updates["title"] = title
    if body is not None:
        updates["body"] = body
    return _apply(db, post_id, {"$set": updates})


def add_comment(db: Database, user_id: str, post_id: str, body: str) -> Dict[str, Any]:
    text = (body or "").strip()
    if not text:
        raise ValidationError("Comment cannot be empty")
    post = get_post_or_404(db, post_id)
    stamp = now_utc()
    comment = CommentSchema(id=str(ObjectId()), author_id=str(user_id), body=text, created_at=stamp, updated_at=stamp)
    rendered = _apply(db, post_id, {"$push": {"comments": comment.model_dump()}})

    if post["author_id"] != str(user_id):
        commenter = find_user(db, user_id)
        circle = db["circle"].find_one({"_id": oid(post["circle_id"])})
        notify_new_comment(db, post, commenter.get("display_name") if commenter else None,
                           circle.get("title") if circle else None)
    return rendered


def _find_comment(post: Dict[str, Any], comment_id: str) -> Dict[str, Any]:
    for c in post.get("comments", []):
        if c["id"] == comment_id:
            return c
    raise NotFoundError("Comment not found")


def update_comment(db: Database, user_id: str, post_id: str, comment_id: str, body: str) -> Dict[str, Any]:
    post = get_post_or_404(db, post_id)
    comment = _find_comment(post, comment_id)
    if comment["author_id"] != str(user_id):
        raise ForbiddenError("Only the comment author can edit it")
    text = (body or "").strip()
    if not text:
        raise ValidationError("Comment cannot be empty")
    updated = db["post"].find_one_and_update(
        {"_id": post["_id"], "comments.id": comment_id},
        {"$set": {"comments.$.body": text, "comments.$.updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise NotFoundError("Comment not found")
    return render_post(db, updated)


def delete_comment(db: Database, user_id: str, post_id: str, comment_id: str) -> Dict[str, Any]:
    post = get_post_or_404(db, post_id)
    comment = _find_comment(post, comment_id)
    uid = str(user_id)
    if uid not in (comment["author_id"], post["author_id"]) and uid not in _circle_admins(db, post):
        raise ForbiddenError("Not allowed to delete this comment")
    return _apply(db, post_id, {"$pull": {"comments": {"id": comment_id}}})


def delete_post(db: Database, user_id: str, post_id: str) -> None:
    post = get_post_or_404(db, post_id)
    uid = str(user_id)
    if uid != post["author_id"] and uid not in _circle_admins(db, post):
        raise ForbiddenError("Not allowed to delete this post")
    db["post"].delete_one({"_id": post["_id"]})
    logger.info("post %s deleted by %s", post_id, uid)
