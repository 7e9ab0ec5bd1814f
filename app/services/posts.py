from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from app.core import store
from app.core.errors import ForbiddenError, NotFoundError
from app.core.normalize import clean_body, search_shadow
from app.core.pagination import PageRequest, page_meta
from app.core.settings import S
from app.core.tables import FEED_INDEX, FEED_PARTITION, T, USER_POSTS_INDEX
from app.core.time import new_id, now_iso
from app.metrics import LIKE_TOGGLES
from app.services import comments, notifications, users

logger = logging.getLogger(__name__)


def _key(post_id: str) -> Dict[str, str]:
    return {"post_id": post_id}


def present(item: Dict[str, Any], authors: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    comment_ids = list(item.get("comments") or [])
    return {
        "id": item["post_id"],
        "user": authors.get(item["user_id"]),
        "content": item.get("content", ""),
        "image": item.get("image"),
        "likes": sorted(item.get("likes") or []),
        "comments": comment_ids,
        "comment_count": len(comment_ids),
        "created_at": item["created_at"],
        "updated_at": item.get("updated_at"),
    }


def present_many(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    authors = users.summaries(it["user_id"] for it in items)
    return [present(it, authors) for it in items]


def get_post(post_id: str) -> Optional[Dict[str, Any]]:
    return store.get_item(T.posts, _key(post_id))


def require_post(post_id: str) -> Dict[str, Any]:
    post = get_post(post_id)
    if not post:
        raise NotFoundError("Post not found")
    return post


def create_post(author_id: str, content: Optional[str], image: Optional[str] = None) -> Dict[str, Any]:
    text, img = clean_body(content, image, what="Post", max_len=S.max_content_len)
    author = users.require_user(author_id)

    now = now_iso()
    item: Dict[str, Any] = {
        "post_id": new_id(),
        "user_id": author_id,
        "content": text,
        "content_lc": search_shadow(text),
        "image": img,
        "comments": [],
        "feed": FEED_PARTITION,
        "created_at": now,
        "updated_at": now,
    }
    store.put_item(T.posts, item)
    return present(item, {author_id: users.user_summary(author)})


def post_detail(post_id: str) -> Dict[str, Any]:
    post = require_post(post_id)
    return present_many([post])[0]


def _page(partition, index: str, req: PageRequest) -> Dict[str, Any]:
    total = store.count_items(T.posts, index=index, partition=partition)
    items = store.query_page(T.posts, index=index, partition=partition, skip=req.skip, limit=req.limit)
    meta = page_meta(req, total)
    return {
        "posts": present_many(items),
        "page": meta["page"],
        "total_pages": meta["total_pages"],
        "has_more": meta["has_more"],
    }


def list_posts(req: PageRequest) -> Dict[str, Any]:
    """Global feed, newest first."""
    return _page(("feed", FEED_PARTITION), FEED_INDEX, req)


def list_user_posts(username: str, req: PageRequest) -> Dict[str, Any]:
    user = users.require_user_by_username(username)
    return _page(("user_id", user["user_id"]), USER_POSTS_INDEX, req)


def toggle_like_post(post_id: str, user_id: str) -> Dict[str, Any]:
    post = require_post(post_id)

    had_liked = user_id in set(post.get("likes") or [])
    try:
        if had_liked:
            updated = store.remove_from_set(T.posts, _key(post_id), "likes", [user_id])
        else:
            updated = store.add_to_set(T.posts, _key(post_id), "likes", [user_id])
    except store.ConditionFailed as exc:
        raise NotFoundError("Post not found") from exc
    LIKE_TOGGLES.labels(target="post", action="unlike" if had_liked else "like").inc()

    if not had_liked:
        notifications.notify_on_like(user_id, post["user_id"], post_id=post_id)

    return {"likes": sorted(updated.get("likes") or []), "liked": not had_liked}


def delete_post(post_id: str, requester_id: str) -> Dict[str, str]:
    post = require_post(post_id)
    if post["user_id"] != requester_id:
        raise ForbiddenError("You can only delete your own posts")

    store.delete_item(T.posts, _key(post_id))
    if S.cascade_deletes:
        removed = comments.delete_post_comments(post_id)
        logger.info("post %s deleted with %d comments", post_id, removed)

    return {"message": "Post deleted successfully"}
