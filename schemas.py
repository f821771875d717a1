"""
Database Schemas for MindBridge

Each Pydantic model represents a MongoDB collection (collection name is the lowercase class name).
References between documents are stored as string ids.
"""
from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field


MoodValue = Literal["good", "neutral", "bad", "not_added"]


class ProfileVisibility(BaseModel):
    show_email: bool = False
    show_bio: bool = True
    show_interests: bool = True
    show_circles: bool = True
    allow_messages: bool = True


class User(BaseModel):
    email: str = Field(..., description="Unique login email (lowercase)")
    password_hash: str = Field(..., description="Argon2 password hash")
    display_name: str = Field(..., description="Name shown to other members")
    bio: Optional[str] = Field(None, description="Short bio")
    interests: List[str] = Field(default_factory=list, description="Self-declared topics, order preserved")
    avatar: Optional[str] = Field(None, description="Avatar URL or data URI")
    profile_visibility: ProfileVisibility = Field(default_factory=ProfileVisibility)
    is_online: bool = False
    last_seen: Optional[datetime] = None
    is_active: bool = Field(True, description="Account active (not suspended)")
    is_admin: bool = Field(False, description="Admin role flag")


class Session(BaseModel):
    user_id: str
    token: str
    role: Literal["user", "admin"] = "user"
    ip: Optional[str] = None
    valid: bool = True


class Circle(BaseModel):
    title: str
    description: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    visibility: Literal["public", "private"] = "public"
    cover_image: Optional[str] = None
    members: List[str] = Field(default_factory=list)
    admins: List[str] = Field(default_factory=list, description="Always a subset of members")
    join_requests: List[str] = Field(default_factory=list)


class Comment(BaseModel):
    id: str
    author_id: str
    body: str
    created_at: datetime
    updated_at: datetime


class Post(BaseModel):
    circle_id: str
    author_id: str
    title: Optional[str] = None
    body: Optional[str] = None
    attachment_url: Optional[str] = None
    likes: List[str] = Field(default_factory=list)
    comments: List[Comment] = Field(default_factory=list)


class Journal(BaseModel):
    user_id: str
    title: str
    body: Optional[str] = None
    visibility: Literal["private", "circle", "public"] = "private"
    circles: List[str] = Field(default_factory=list)


class Moodentry(BaseModel):
    user_id: str
    day: str = Field(..., description="yyyy-mm-dd")
    mood: MoodValue


class NewMessageMeta(BaseModel):
    action_type: Literal["new_message"] = "new_message"
    sender_id: str
    sender_name: str
    message_preview: str


class JoinRequestMeta(BaseModel):
    action_type: Literal["join_request"] = "join_request"
    circle_id: str
    circle_name: str
    requester_id: str
    requester_name: Optional[str] = None


class RequestApprovedMeta(BaseModel):
    action_type: Literal["request_approved"] = "request_approved"
    circle_id: str
    circle_name: str


class RequestRejectedMeta(BaseModel):
    action_type: Literal["request_rejected"] = "request_rejected"
    circle_id: str
    circle_name: str


class RemovedFromCircleMeta(BaseModel):
    action_type: Literal["removed_from_circle"] = "removed_from_circle"
    circle_id: str
    circle_name: str


class PromotedToAdminMeta(BaseModel):
    action_type: Literal["promoted_to_admin"] = "promoted_to_admin"
    circle_id: str
    circle_name: str


class NewPostMeta(BaseModel):
    action_type: Literal["new_post"] = "new_post"
    circle_id: str
    post_id: str


class NewCommentMeta(BaseModel):
    action_type: Literal["new_comment"] = "new_comment"
    circle_id: str
    post_id: str


# Notification.meta is keyed by action_type; each kind carries only its own fields.
NotificationMeta = Annotated[
    Union[
        NewMessageMeta,
        JoinRequestMeta,
        RequestApprovedMeta,
        RequestRejectedMeta,
        RemovedFromCircleMeta,
        PromotedToAdminMeta,
        NewPostMeta,
        NewCommentMeta,
    ],
    Field(discriminator="action_type"),
]


class Notification(BaseModel):
    user_id: str = Field(..., description="Recipient")
    type: str
    message: str
    read: bool = False
    meta: NotificationMeta


class Message(BaseModel):
    sender_id: str
    receiver_id: str
    content: str
    read: bool = False
    conversation_id: str


class Block(BaseModel):
    blocker_id: str
    blocked_id: str
    reason: Optional[str] = None
