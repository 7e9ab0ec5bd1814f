from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .aws import ddb
from .settings import S

# Secondary indexes (all sorted by created_at)
USERNAME_INDEX = "username-index"
FEED_INDEX = "feed-index"
USER_POSTS_INDEX = "user-index"
THREAD_INDEX = "thread-index"
POST_COMMENTS_INDEX = "post-index"
RECIPIENT_INDEX = "recipient-index"

FEED_PARTITION = "ALL"

@dataclass(frozen=True)
class Tables:
    users: Any
    posts: Any
    comments: Any
    notifications: Any

T = Tables(
    users=ddb.Table(S.users_table_name),
    posts=ddb.Table(S.posts_table_name),
    comments=ddb.Table(S.comments_table_name),
    notifications=ddb.Table(S.notifications_table_name),
)
