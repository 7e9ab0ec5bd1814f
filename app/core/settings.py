from __future__ import annotations

import os
from dataclasses import dataclass


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False")


@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # Identity provider (JWT bearer tokens verified against its JWKS)
    auth_issuer: str = os.environ.get("AUTH_ISSUER", "").rstrip("/")
    auth_jwks_url: str = os.environ.get("AUTH_JWKS_URL", "")
    auth_audience: str = os.environ.get("AUTH_AUDIENCE", "")

    # DynamoDB tables
    users_table_name: str = os.environ.get("USERS_TABLE_NAME", "users")
    posts_table_name: str = os.environ.get("POSTS_TABLE_NAME", "posts")
    comments_table_name: str = os.environ.get("COMMENTS_TABLE_NAME", "comments")
    notifications_table_name: str = os.environ.get("NOTIFICATIONS_TABLE_NAME", "notifications")

    # Pagination
    default_comments_limit: int = int(os.environ.get("DEFAULT_COMMENTS_LIMIT", "20"))
    default_notifications_limit: int = int(os.environ.get("DEFAULT_NOTIFICATIONS_LIMIT", "10"))
    default_posts_limit: int = int(os.environ.get("DEFAULT_POSTS_LIMIT", "10"))
    default_search_limit: int = int(os.environ.get("DEFAULT_SEARCH_LIMIT", "30"))
    max_page_limit: int = int(os.environ.get("MAX_PAGE_LIMIT", "100"))

    # Content
    max_content_len: int = int(os.environ.get("MAX_CONTENT_LEN", "280"))

    # Notification policy
    notify_on_follow: bool = _flag("NOTIFY_ON_FOLLOW", "1")
    notify_on_comment: bool = _flag("NOTIFY_ON_COMMENT", "1")
    notify_on_post_like: bool = _flag("NOTIFY_ON_POST_LIKE", "1")
    notify_on_reply: bool = _flag("NOTIFY_ON_REPLY", "0")
    notify_on_comment_like: bool = _flag("NOTIFY_ON_COMMENT_LIKE", "0")

    # Deleting a comment/post also deletes its replies/comments
    cascade_deletes: bool = _flag("CASCADE_DELETES", "0")

    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO").upper()
    cors_allow_origins: str = os.environ.get("CORS_ALLOW_ORIGINS", "*")


S = Settings()
