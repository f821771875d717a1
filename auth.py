"""
Accounts and sessions.

A session is an opaque uuid4 bearer token stored in the `session`
collection; every request looks it up and loads the user it belongs to.
"""
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerifyMismatchError
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import ADMIN_EMAILS
from database import create_document, get_db, now_utc, oid
from errors import ConflictError, ValidationError
from schemas import Session as SessionSchema, User as UserSchema
from users import touch_presence

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
hasher = PasswordHasher()

MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    return hasher.hash(password)


def verify_password(password_hash: str, password: str) -> bool:
    try:
        return hasher.verify(password_hash, password)
    except (VerifyMismatchError, InvalidHashError):
        return False


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def open_session(db: Database, user: Dict[str, Any], ip: Optional[str] = None) -> Dict[str, Any]:
    token = str(uuid4())
    role = "admin" if user.get("is_admin") else "user"
    sess = SessionSchema(user_id=str(user["_id"]), token=token, role=role, ip=ip, valid=True)
    create_document("session", sess, database=db)
    touch_presence(db, user["_id"], online=True)
    return {"token": token, "role": role}


def register(db: Database, email: str, password: str, display_name: str, ip: Optional[str] = None) -> Dict[str, Any]:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email is required")
    if not (display_name or "").strip():
        raise ValidationError("Display name is required")
    _check_password(password)
    if db["user"].find_one({"email": email}):
        raise ConflictError("Email in use")
    user = UserSchema(
        email=email,
        password_hash=hash_password(password),
        display_name=display_name.strip(),
        is_admin=email in ADMIN_EMAILS,
    )
    try:
        uid = create_document("user", user, database=db)
    except DuplicateKeyError:
        raise ConflictError("Email in use")
    doc = db["user"].find_one({"_id": oid(uid)})
    logger.info("registered user %s", uid)
    return {"user": doc, **open_session(db, doc, ip)}


def login(db: Database, email: str, password: str, ip: Optional[str] = None) -> Dict[str, Any]:
    user = db["user"].find_one({"email": (email or "").strip().lower()})
    if not user or not verify_password(user.get("password_hash", ""), password or ""):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is suspended")
    if hasher.check_needs_rehash(user["password_hash"]):
        db["user"].update_one({"_id": user["_id"]}, {"$set": {"password_hash": hash_password(password)}})
    return {"user": user, **open_session(db, user, ip)}


def logout(db: Database, session: Dict[str, Any]) -> None:
    db["session"].update_one({"_id": session["_id"]}, {"$set": {"valid": False}})
    touch_presence(db, session["user_id"], online=False)


def change_password(db: Database, user: Dict[str, Any], current_password: str, new_password: str) -> None:
    if not verify_password(user.get("password_hash", ""), current_password or ""):
        raise ValidationError("Current password is incorrect")
    _check_password(new_password)
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now_utc()}},
    )
    logger.info("password changed for %s", user["_id"])


def suspend(db: Database, user_id) -> None:
    db["user"].update_one({"_id": oid(user_id)}, {"$set": {"is_active": False, "is_online": False}})
    db["session"].update_many({"user_id": str(user_id)}, {"$set": {"valid": False}})


async def get_current_session(request: Request, creds: Optional[HTTPAuthorizationCredentials] = Depends(security),
                              db: Database = Depends(get_db)):
    if creds is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    sess = db["session"].find_one({"token": creds.credentials, "valid": True})
    if not sess:
        raise HTTPException(status_code=401, detail="Invalid session")
    user = db["user"].find_one({"_id": oid(sess["user_id"])})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.get("is_active", True):
        # invalidate every session of a suspended account
        db["session"].update_many({"user_id": sess["user_id"]}, {"$set": {"valid": False}})
        raise HTTPException(status_code=403, detail="Account is suspended")
    touch_presence(db, user["_id"], online=True)
    return {"session": sess, "user": user, "user_id": str(user["_id"])}


def require_admin(ctx=Depends(get_current_session)):
    if not ctx["user"].get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin only")
    return ctx
