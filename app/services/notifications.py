"""Notification fan-out.

Notifications are written at event time (fan-out on write), one document per
event with no dedup, so badge polling is a single indexed count.
Which events notify is decided by ``NotificationPolicy``; self-actions never do.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.core import store
from app.core.errors import NotFoundError
from app.core.pagination import PageRequest, page_meta
from app.core.settings import S, Settings
from app.core.tables import RECIPIENT_INDEX, T
from app.core.time import new_id, now_iso
from app.metrics import NOTIFICATIONS_CREATED
from app.services import users

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = ("follow", "like", "comment")


@dataclass(frozen=True)
class NotificationPolicy:
    follow: bool = True
    comment: bool = True
    post_like: bool = True
    reply: bool = False
    comment_like: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "NotificationPolicy":
        return cls(
            follow=settings.notify_on_follow,
            comment=settings.notify_on_comment,
            post_like=settings.notify_on_post_like,
            reply=settings.notify_on_reply,
            comment_like=settings.notify_on_comment_like,
        )


POLICY = NotificationPolicy.from_settings(S)


def create_notification(
    *,
    from_id: str,
    to_id: str,
    notif_type: str,
    post_id: Optional[str] = None,
    comment_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    if notif_type not in NOTIFICATION_TYPES:
        raise ValueError(f"unknown notification type {notif_type!r}")
    if not from_id or not to_id or from_id == to_id:
        return None

    item: Dict[str, Any] = {
        "notification_id": new_id(),
        "from_user_id": from_id,
        "to_user_id": to_id,
        "type": notif_type,
        "is_read": False,
        "created_at": now_iso(),
    }
    if post_id:
        item["post_id"] = post_id
    if comment_id:
        item["comment_id"] = comment_id
    store.put_item(T.notifications, item)
    NOTIFICATIONS_CREATED.labels(type=notif_type).inc()
    logger.debug("notification %s: %s -> %s (%s)", item["notification_id"], from_id, to_id, notif_type)
    return item


def notify_on_follow(from_id: str, to_id: str) -> Optional[Dict[str, Any]]:
    if not POLICY.follow:
        return None
    return create_notification(from_id=from_id, to_id=to_id, notif_type="follow")


def notify_on_comment(from_id: str, to_id: str, post_id: str, comment_id: str) -> Optional[Dict[str, Any]]:
    if not POLICY.comment:
        return None
    return create_notification(
        from_id=from_id, to_id=to_id, notif_type="comment", post_id=post_id, comment_id=comment_id
    )


def notify_on_reply(from_id: str, to_id: str, post_id: str, comment_id: str) -> Optional[Dict[str, Any]]:
    if not POLICY.reply:
        return None
    return create_notification(
        from_id=from_id, to_id=to_id, notif_type="comment", post_id=post_id, comment_id=comment_id
    )


def notify_on_like(
    from_id: str,
    to_id: str,
    *,
    post_id: Optional[str] = None,
    comment_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    allowed = POLICY.comment_like if comment_id else POLICY.post_like
    if not allowed:
        return None
    return create_notification(
        from_id=from_id, to_id=to_id, notif_type="like", post_id=post_id, comment_id=comment_id
    )


def _present(
    item: Dict[str, Any],
    actors: Dict[str, Dict[str, Any]],
    posts: Dict[str, Dict[str, Any]],
    comments: Dict[str, Dict[str, Any]],
) -> Dict[str, Any]:
    post = posts.get(item.get("post_id") or "")
    comment = comments.get(item.get("comment_id") or "")
    return {
        "id": item["notification_id"],
        "from_user": actors.get(item["from_user_id"]),
        "to": item["to_user_id"],
        "type": item["type"],
        "post": {"id": post["post_id"], "content": post.get("content", ""), "image": post.get("image")} if post else None,
        "comment": {"id": comment["comment_id"], "content": comment.get("content", "")} if comment else None,
        "is_read": bool(item.get("is_read")),
        "created_at": item["created_at"],
    }


def list_notifications(user_id: str, req: PageRequest) -> Dict[str, Any]:
    partition = ("to_user_id", user_id)
    total = store.count_items(T.notifications, index=RECIPIENT_INDEX, partition=partition)
    items = store.query_page(
        T.notifications, index=RECIPIENT_INDEX, partition=partition, skip=req.skip, limit=req.limit
    )
    actors = users.summaries(it["from_user_id"] for it in items)
    posts = store.batch_get(T.posts, "post_id", (it.get("post_id") for it in items))
    comments = store.batch_get(T.comments, "comment_id", (it.get("comment_id") for it in items))

    meta = page_meta(req, total)
    return {
        "notifications": [_present(it, actors, posts, comments) for it in items],
        "page": meta["page"],
        "total_pages": meta["total_pages"],
        "total": total,
    }


def unread_count(user_id: str) -> int:
    return store.count_items(
        T.notifications,
        index=RECIPIENT_INDEX,
        partition=("to_user_id", user_id),
        where={"is_read": False},
    )


def mark_all_read(user_id: str) -> Dict[str, str]:
    unread = store.query_all(
        T.notifications,
        index=RECIPIENT_INDEX,
        partition=("to_user_id", user_id),
        where={"is_read": False},
    )
    for item in unread:
        try:
            store.update_fields(T.notifications, {"notification_id": item["notification_id"]}, {"is_read": True})
        except store.ConditionFailed:
            continue  # deleted by its recipient meanwhile
    return {"message": "All notifications marked as read"}


def delete_notification(notification_id: str, requester_id: str) -> Dict[str, str]:
    deleted = store.delete_item(
        T.notifications,
        {"notification_id": notification_id},
        expect={"to_user_id": requester_id},
    )
    if not deleted:
        raise NotFoundError("Notification not found")
    return {"message": "Notification deleted successfully"}
