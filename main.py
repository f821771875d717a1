import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo import DESCENDING
from pymongo.database import Database
from pymongo.errors import PyMongoError

import auth
import circles
import messaging
import notifications
import posts
import recommendations
import users
import wellbeing
from config import CORS_ORIGINS, DEFAULT_PAGE_SIZE, PORT, configure_logging
from database import ensure_indexes, get_db, now_utc, oid
from errors import AppError, ValidationError

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_db())
    except PyMongoError:
        # the API still starts; requests fail individually until the database is reachable
        logger.exception("Could not ensure database indexes")
    yield


app = FastAPI(title="MindBridge API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": {"kind": "server_error", "message": "Internal server error"}})


class RegisterPayload(BaseModel):
    email: str
    password: str
    display_name: str


class LoginPayload(BaseModel):
    email: str
    password: str


class VisibilityPayload(BaseModel):
    show_email: Optional[bool] = None
    show_bio: Optional[bool] = None
    show_interests: Optional[bool] = None
    show_circles: Optional[bool] = None
    allow_messages: Optional[bool] = None


class UpdateProfilePayload(BaseModel):
    display_name: Optional[str] = None
    bio: Optional[str] = None
    avatar: Optional[str] = None
    interests: Optional[List[str]] = None
    profile_visibility: Optional[VisibilityPayload] = None


class ChangePasswordPayload(BaseModel):
    current_password: str
    new_password: str


class BlockPayload(BaseModel):
    reason: Optional[str] = None


class CirclePayload(BaseModel):
    title: str
    description: Optional[str] = None
    tags: List[str] = []
    visibility: Literal["public", "private"] = "public"
    cover_image: Optional[str] = None


class UpdateCirclePayload(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    visibility: Optional[Literal["public", "private"]] = None
    cover_image: Optional[str] = None


class PostPayload(BaseModel):
    circle: str
    title: Optional[str] = None
    body: Optional[str] = None
    attachment_url: Optional[str] = None


class UpdatePostPayload(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None


class CommentPayload(BaseModel):
    body: str


class MoodPayload(BaseModel):
    mood: str


class JournalPayload(BaseModel):
    title: str
    body: Optional[str] = None
    visibility: Literal["private", "circle", "public"] = "private"
    circles: List[str] = []


class SendMessagePayload(BaseModel):
    content: str


def client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@app.get("/")
def read_root():
    return {"message": "MindBridge API running"}


@app.get("/healthz")
def healthz():
    return {"ok": True, "time": now_utc().isoformat()}


# Auth

@app.post("/auth/register")
def register(payload: RegisterPayload, request: Request, db: Database = Depends(get_db)):
    result = auth.register(db, payload.email, payload.password, payload.display_name, ip=client_ip(request))
    return {"token": result["token"], "role": result["role"], "user": users.public_user(result["user"])}


@app.post("/auth/login")
def login(payload: LoginPayload, request: Request, db: Database = Depends(get_db)):
    result = auth.login(db, payload.email, payload.password, ip=client_ip(request))
    return {"token": result["token"], "role": result["role"], "user": users.public_user(result["user"])}


@app.post("/auth/logout")
def logout(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    auth.logout(db, ctx["session"])
    return {"ok": True}


@app.get("/auth/me")
def get_me(ctx=Depends(auth.get_current_session)):
    return users.public_user(ctx["user"])


@app.put("/auth/me")
def update_me(payload: UpdateProfilePayload, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return users.update_profile(db, ctx["user_id"], payload.model_dump(exclude_none=True))


@app.put("/auth/change-password")
def change_password(payload: ChangePasswordPayload, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    auth.change_password(db, ctx["user"], payload.current_password, payload.new_password)
    return {"message": "Password changed successfully"}


# Users & blocking

@app.get("/users")
def search_users(q: Optional[str] = None, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return users.search_users(db, ctx["user_id"], q)


@app.get("/users/blocked/list")
def blocked_list(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return messaging.list_blocked(db, ctx["user_id"])


@app.get("/users/{user_id}")
def get_profile(user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return users.get_profile(db, ctx["user_id"], user_id)


@app.post("/users/{user_id}/block")
def block_user(user_id: str, payload: Optional[BlockPayload] = None, ctx=Depends(auth.get_current_session),
               db: Database = Depends(get_db)):
    messaging.block_user(db, ctx["user_id"], user_id, payload.reason if payload else None)
    return {"success": True, "message": "User blocked successfully"}


@app.post("/users/{user_id}/unblock")
def unblock_user(user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    messaging.unblock_user(db, ctx["user_id"], user_id)
    return {"success": True, "message": "User unblocked successfully"}


# Circles

@app.post("/circles")
def create_circle(payload: CirclePayload, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    circle = circles.create_circle(db, ctx["user_id"], **payload.model_dump())
    return circles.public_circle(circle)


@app.get("/circles")
def list_circles(q: Optional[str] = None, tag: Optional[str] = None, ctx=Depends(auth.get_current_session),
                 db: Database = Depends(get_db)):
    return [circles.public_circle(c) for c in circles.list_circles(db, q, tag)]


@app.get("/circles/recommendations")
def recommended_circles(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return [circles.public_circle(c) for c in recommendations.recommend_circles(db, ctx["user_id"])]


@app.get("/circles/{circle_id}")
def get_circle(circle_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.get_circle_or_404(db, circle_id))


@app.put("/circles/{circle_id}")
def update_circle(circle_id: str, payload: UpdateCirclePayload, ctx=Depends(auth.get_current_session),
                  db: Database = Depends(get_db)):
    circle = circles.update_circle(db, ctx["user_id"], circle_id, payload.model_dump(exclude_none=True))
    return circles.circle_detail(db, circle)


@app.post("/circles/{circle_id}/join")
def join_circle(circle_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.public_circle(circles.join_circle(db, ctx["user_id"], circle_id))


@app.post("/circles/{circle_id}/leave")
def leave_circle(circle_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.leave_circle(db, ctx["user_id"], circle_id))


@app.post("/circles/{circle_id}/requests/{user_id}/approve")
def approve_request(circle_id: str, user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.approve_request(db, ctx["user_id"], circle_id, user_id))


@app.post("/circles/{circle_id}/requests/{user_id}/reject")
def reject_request(circle_id: str, user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.reject_request(db, ctx["user_id"], circle_id, user_id))


@app.post("/circles/{circle_id}/members/{user_id}/remove")
def remove_member(circle_id: str, user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.remove_member(db, ctx["user_id"], circle_id, user_id))


@app.post("/circles/{circle_id}/members/{user_id}/promote")
def promote_member(circle_id: str, user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.promote_member(db, ctx["user_id"], circle_id, user_id))


@app.post("/circles/{circle_id}/members/{user_id}/demote")
def demote_admin(circle_id: str, user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return circles.circle_detail(db, circles.demote_admin(db, ctx["user_id"], circle_id, user_id))


# Posts

@app.post("/posts")
def create_post(payload: PostPayload, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return posts.create_post(db, ctx["user_id"], payload.circle, payload.title, payload.body, payload.attachment_url)


@app.get("/posts/me")
def my_posts(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return posts.list_user_posts(db, ctx["user_id"])


@app.get("/posts/circle/{circle_id}")
def circle_posts(circle_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return posts.list_circle_posts(db, circle_id)


@app.post("/posts/{post_id}/like")
def like_post(post_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return posts.like_post(db, ctx["user_id"], post_id)


@app.post("/posts/{post_id}/unlike")
def unlike_post(post_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return posts.unlike_post(db, ctx["user_id"], post_id)


@app.put("/posts/{post_id}")
def update_post(post_id: str, payload: UpdatePostPayload, ctx=Depends(auth.get_current_session),
                db: Database = Depends(get_db)):
    return posts.update_post(db, ctx["user_id"], post_id, payload.title, payload.body)


@app.delete("/posts/{post_id}")
def delete_post(post_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    posts.delete_post(db, ctx["user_id"], post_id)
    return {"ok": True}


@app.post("/posts/{post_id}/comments")
def add_comment(post_id: str, payload: CommentPayload, ctx=Depends(auth.get_current_session),
                db: Database = Depends(get_db)):
    return posts.add_comment(db, ctx["user_id"], post_id, payload.body)


@app.put("/posts/{post_id}/comments/{comment_id}")
def update_comment(post_id: str, comment_id: str, payload: CommentPayload, ctx=Depends(auth.get_current_session),
                   db: Database = Depends(get_db)):
    return posts.update_comment(db, ctx["user_id"], post_id, comment_id, payload.body)


@app.delete("/posts/{post_id}/comments/{comment_id}")
def delete_comment(post_id: str, comment_id: str, ctx=Depends(auth.get_current_session),
                   db: Database = Depends(get_db)):
    return posts.delete_comment(db, ctx["user_id"], post_id, comment_id)


# Mood & journals

@app.post("/mood")
def set_mood(payload: MoodPayload, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return wellbeing.set_today_mood(db, ctx["user_id"], payload.mood)


@app.get("/mood")
def recent_moods(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return wellbeing.recent_moods(db, ctx["user_id"])


@app.get("/mood/today")
def today_mood(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return wellbeing.get_today_mood(db, ctx["user_id"])


@app.get("/mood/history")
def mood_history(year: int, month: int, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return wellbeing.month_history(db, ctx["user_id"], year, month)


@app.post("/journals")
def create_journal(payload: JournalPayload, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return wellbeing.create_journal(db, ctx["user_id"], **payload.model_dump())


@app.get("/journals")
def list_journals(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return wellbeing.list_journals(db, ctx["user_id"])


# Notifications

@app.get("/notifications")
def list_notifications(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return notifications.list_notifications(db, ctx["user_id"])


@app.post("/notifications/read-all")
def read_all_notifications(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return {"updated": notifications.mark_all_read(db, ctx["user_id"])}


@app.post("/notifications/read/{notification_id}")
def read_notification(notification_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    notifications.mark_read(db, ctx["user_id"], oid(notification_id))
    return {"ok": True}


# Messages

@app.get("/messages/conversations")
def conversations(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return messaging.list_conversations(db, ctx["user_id"])


@app.get("/messages/conversation/{user_id}")
def get_thread(user_id: str, page: int = Query(1, ge=1), limit: int = Query(DEFAULT_PAGE_SIZE, ge=1),
               ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return messaging.get_thread(db, ctx["user_id"], user_id, page, limit)


@app.post("/messages/conversation/{user_id}/read")
def mark_thread_read(user_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return {"success": True, "updated": messaging.mark_conversation_read(db, ctx["user_id"], user_id)}


@app.post("/messages/send/{user_id}")
def send_message(user_id: str, payload: SendMessagePayload, ctx=Depends(auth.get_current_session),
                 db: Database = Depends(get_db)):
    return messaging.send_message(db, ctx["user_id"], user_id, payload.content)


@app.get("/messages/unread/count")
def unread_count(ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    return {"count": messaging.unread_count(db, ctx["user_id"])}


@app.delete("/messages/{message_id}")
def delete_message(message_id: str, ctx=Depends(auth.get_current_session), db: Database = Depends(get_db)):
    messaging.delete_message(db, ctx["user_id"], message_id)
    return {"success": True}


# Admin endpoints

ADMIN_COUNTED = ("user", "circle", "post", "journal", "moodentry", "notification", "message")
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def with_owners(db: Database, rendered: List[dict], docs: List[dict]) -> List[dict]:
    """Attach the owning user (name and email) to each rendered row."""
    ids = {d["user_id"] for d in docs}
    people = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": [oid(i) for i in ids]}})}
    for item, doc in zip(rendered, docs):
        owner = people.get(doc["user_id"]) or {}
        item["user"] = {"id": doc["user_id"], "display_name": owner.get("display_name"), "email": owner.get("email")}
    return rendered


@app.get("/admin/stats")
def admin_stats(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)) -> Dict[str, int]:
    return {name: db[name].count_documents({}) for name in ADMIN_COUNTED}


@app.get("/admin/users")
def admin_list_users(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    return [users.public_user(u) for u in db["user"].find({}).sort(NEWEST_FIRST)]


@app.post("/admin/suspend/{user_id}")
def admin_suspend(user_id: str, ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    target = users.get_user_or_404(db, user_id)
    if str(target["_id"]) == ctx["user_id"]:
        raise ValidationError("Cannot suspend yourself")
    auth.suspend(db, target["_id"])
    logger.info("admin %s suspended %s", ctx["user_id"], user_id)
    return {"ok": True}


@app.post("/admin/activate/{user_id}")
def admin_activate(user_id: str, ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    target = users.get_user_or_404(db, user_id)
    db["user"].update_one({"_id": target["_id"]}, {"$set": {"is_active": True}})
    logger.info("admin %s activated %s", ctx["user_id"], user_id)
    return {"ok": True}


@app.get("/admin/circles")
def admin_list_circles(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    return [circles.circle_detail(db, c) for c in db["circle"].find({}).sort(NEWEST_FIRST)]


@app.get("/admin/posts")
def admin_list_posts(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    return posts.render_posts(db, list(db["post"].find({}).sort(NEWEST_FIRST)))


@app.get("/admin/journals")
def admin_list_journals(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    docs = list(db["journal"].find({}).sort(NEWEST_FIRST))
    return with_owners(db, [wellbeing.public_journal(j) for j in docs], docs)


@app.get("/admin/moods")
def admin_list_moods(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    docs = list(db["moodentry"].find({}).sort([("day", DESCENDING), ("_id", DESCENDING)]))
    return with_owners(db, [wellbeing.public_mood(m) for m in docs], docs)


@app.get("/admin/notifications")
def admin_list_notifications(ctx=Depends(auth.require_admin), db: Database = Depends(get_db)):
    docs = list(db["notification"].find({}).sort(NEWEST_FIRST))
    return with_owners(db, [notifications.public_notification(n) for n in docs], docs)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
