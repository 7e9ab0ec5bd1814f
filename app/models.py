from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    # camelCase on the wire, snake_case in Python; either is accepted on input.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Requests
# -----------------------------
class CommentCreateReq(ApiModel):
    content: Optional[str] = None
    image: Optional[str] = None


class PostCreateReq(ApiModel):
    content: Optional[str] = None
    image: Optional[str] = None


class SyncUserReq(ApiModel):
    email: str
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_picture: Optional[str] = None


class ProfileUpdateReq(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    first_name: Optional[str] = Field(default=None, max_length=80)
    last_name: Optional[str] = Field(default=None, max_length=80)
    bio: Optional[str] = Field(default=None, max_length=160)
    location: Optional[str] = Field(default=None, max_length=120)
    profile_picture: Optional[str] = Field(default=None, max_length=2048)
    banner_image: Optional[str] = Field(default=None, max_length=2048)


# -----------------------------
# Responses
# -----------------------------
class UserSummary(ApiModel):
    id: str
    username: str
    first_name: str = ""
    last_name: str = ""
    profile_picture: str = ""


class UserProfileOut(UserSummary):
    email: Optional[str] = None
    bio: str = ""
    location: str = ""
    banner_image: str = ""
    followers: List[str] = Field(default_factory=list)
    following: List[str] = Field(default_factory=list)
    created_at: Optional[str] = None


class UserResp(ApiModel):
    user: UserProfileOut
    message: Optional[str] = None


class UsersResp(ApiModel):
    users: List[UserProfileOut]


class FollowResp(ApiModel):
    message: str
    following: bool


class CommentOut(ApiModel):
    id: str
    post_id: str
    parent_comment_id: Optional[str] = None
    user: Optional[UserSummary] = None
    content: str = ""
    image: Optional[str] = None
    likes: List[str] = Field(default_factory=list)
    replies: List["CommentOut"] = Field(default_factory=list)
    created_at: str
    updated_at: Optional[str] = None


class CommentPageResp(ApiModel):
    comments: List[CommentOut]
    page: int
    total_pages: int
    has_more: bool


class CommentResp(ApiModel):
    comment: CommentOut


class ReplyResp(ApiModel):
    reply: CommentOut


class LikeResp(ApiModel):
    likes: List[str]
    liked: bool


class MessageResp(ApiModel):
    message: str


class NotificationPost(ApiModel):
    id: str
    content: str = ""
    image: Optional[str] = None


class NotificationComment(ApiModel):
    id: str
    content: str = ""


class NotificationOut(ApiModel):
    id: str
    from_user: Optional[UserSummary] = Field(default=None, alias="from")
    to: str
    type: str
    post: Optional[NotificationPost] = None
    comment: Optional[NotificationComment] = None
    is_read: bool = False
    created_at: str


class NotificationPageResp(ApiModel):
    notifications: List[NotificationOut]
    page: int
    total_pages: int
    total: int


class UnreadCountResp(ApiModel):
    count: int


class PostOut(ApiModel):
    id: str
    user: Optional[UserSummary] = None
    content: str = ""
    image: Optional[str] = None
    likes: List[str] = Field(default_factory=list)
    comments: List[str] = Field(default_factory=list)
    comment_count: int = 0
    created_at: str
    updated_at: Optional[str] = None


class PostResp(ApiModel):
    post: PostOut


class PostPageResp(ApiModel):
    posts: List[PostOut]
    page: int
    total_pages: int
    has_more: bool


class SearchUserOut(UserSummary):
    bio: str = ""


class SearchResp(ApiModel):
    users: List[SearchUserOut]
    posts: List[PostOut]
    page: int
    has_more: bool
