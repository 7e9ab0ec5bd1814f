"""Comment engine: comments on posts and one level of replies.

Top-level comments carry ``thread_post_id`` (sparse ``thread-index``) and are
referenced from ``Post.comments``. Replies carry ``parent_comment_id`` and are
referenced from the parent's ``replies``. Every comment keeps the ``post_id``
it was created under.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from app.core import store
from app.core.errors import ForbiddenError, NotFoundError
from app.core.normalize import clean_body
from app.core.pagination import PageRequest, page_meta
from app.core.settings import S
from app.core.tables import POST_COMMENTS_INDEX, T, THREAD_INDEX
from app.core.time import new_id, now_iso
from app.metrics import COMMENTS_CREATED, LIKE_TOGGLES
from app.services import notifications, users


def _key(comment_id: str) -> Dict[str, str]:
    return {"comment_id": comment_id}


def _post_key(post_id: str) -> Dict[str, str]:
    return {"post_id": post_id}


def present(
    item: Dict[str, Any],
    authors: Dict[str, Dict[str, Any]],
    replies: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    return {
        "id": item["comment_id"],
        "post_id": item["post_id"],
        "parent_comment_id": item.get("parent_comment_id"),
        "user": authors.get(item["user_id"]),
        "content": item.get("content", ""),
        "image": item.get("image"),
        "likes": sorted(item.get("likes") or []),
        "replies": replies or [],
        "created_at": item["created_at"],
        "updated_at": item.get("updated_at"),
    }


def _new_comment(
    author_id: str,
    post_id: str,
    content: str,
    image: Optional[str],
    *,
    parent_id: Optional[str] = None,
) -> Dict[str, Any]:
    now = now_iso()
    item: Dict[str, Any] = {
        "comment_id": new_id(),
        "post_id": post_id,
        "user_id": author_id,
        "content": content,
        "image": image,
        "replies": [],
        "created_at": now,
        "updated_at": now,
    }
    if parent_id:
        item["parent_comment_id"] = parent_id
    else:
        item["thread_post_id"] = post_id
    return item


def get_comment(comment_id: str) -> Optional[Dict[str, Any]]:
    return store.get_item(T.comments, _key(comment_id))


def list_comments(post_id: str, req: PageRequest) -> Dict[str, Any]:
    """Newest-first page of a post's top-level comments with replies populated."""
    partition = ("thread_post_id", post_id)
    total = store.count_items(T.comments, index=THREAD_INDEX, partition=partition)
    items = store.query_page(T.comments, index=THREAD_INDEX, partition=partition, skip=req.skip, limit=req.limit)

    reply_ids = [rid for it in items for rid in (it.get("replies") or [])]
    replies = store.batch_get(T.comments, "comment_id", reply_ids)
    authors = users.summaries([it["user_id"] for it in items] + [r["user_id"] for r in replies.values()])

    out = []
    for it in items:
        nested = [present(replies[rid], authors) for rid in (it.get("replies") or []) if rid in replies]
        out.append(present(it, authors, nested))

    meta = page_meta(req, total)
    return {
        "comments": out,
        "page": meta["page"],
        "total_pages": meta["total_pages"],
        "has_more": meta["has_more"],
    }


def create_comment(post_id: str, author_id: str, content: Optional[str], image: Optional[str] = None) -> Dict[str, Any]:
    text, img = clean_body(content, image, what="Comment", max_len=S.max_content_len)

    author = users.get_user(author_id)
    post = store.get_item(T.posts, _post_key(post_id))
    if not author or not post:
        raise NotFoundError("User or post not found")

    item = _new_comment(author_id, post_id, text, img)
    comment_id = item["comment_id"]
    store.put_item(T.comments, item)
    try:
        store.paired_write(
            lambda: store.append_to_list(T.posts, _post_key(post_id), "comments", comment_id),
            lambda: store.delete_item(T.comments, _key(comment_id)),
            what="post_comment",
        )
    except store.ConditionFailed as exc:
        raise NotFoundError("User or post not found") from exc
    COMMENTS_CREATED.labels(kind="comment").inc()

    owner_id = post.get("user_id")
    if owner_id and owner_id != author_id:
        notifications.notify_on_comment(author_id, owner_id, post_id, comment_id)

    return present(item, {author_id: users.user_summary(author)})


def reply_to_comment(
    parent_comment_id: str,
    author_id: str,
    content: Optional[str],
    image: Optional[str] = None,
) -> Dict[str, Any]:
    """Reply under a top-level comment.

    Replying to a reply attaches to that reply's top-level comment, so threads
    stay one level deep.
    """
    text, img = clean_body(content, image, what="Reply", max_len=S.max_content_len)

    parent = get_comment(parent_comment_id)
    if not parent:
        raise NotFoundError("Parent comment not found")
    author = users.get_user(author_id)
    if not author:
        raise NotFoundError("User not found")

    root = parent
    if parent.get("parent_comment_id"):
        root = get_comment(parent["parent_comment_id"])
        if not root:
            raise NotFoundError("Parent comment not found")

    item = _new_comment(author_id, root["post_id"], text, img, parent_id=root["comment_id"])
    reply_id = item["comment_id"]
    store.put_item(T.comments, item)
    try:
        store.paired_write(
            lambda: store.append_to_list(T.comments, _key(root["comment_id"]), "replies", reply_id),
            lambda: store.delete_item(T.comments, _key(reply_id)),
            what="comment_reply",
        )
    except store.ConditionFailed as exc:
        raise NotFoundError("Parent comment not found") from exc
    COMMENTS_CREATED.labels(kind="reply").inc()

    notifications.notify_on_reply(author_id, parent["user_id"], root["post_id"], reply_id)

    return present(item, {author_id: users.user_summary(author)})


def _delete_replies(comment: Dict[str, Any]) -> None:
    for reply_id in comment.get("replies") or []:
        reply = store.delete_item(T.comments, _key(reply_id))
        if reply:
            _delete_replies(reply)


def delete_comment(comment_id: str, requester_id: str) -> Dict[str, str]:
    comment = get_comment(comment_id)
    if not comment:
        raise NotFoundError("Comment not found")
    if comment["user_id"] != requester_id:
        raise ForbiddenError("You can only delete your own comments")

    parent_id = comment.get("parent_comment_id")
    if parent_id:
        table, key, attr = T.comments, _key(parent_id), "replies"
    else:
        table, key, attr = T.posts, _post_key(comment["post_id"]), "comments"

    store.remove_from_list(table, key, attr, comment_id)
    store.paired_write(
        lambda: store.delete_item(T.comments, _key(comment_id)),
        lambda: store.append_to_list(table, key, attr, comment_id),
        what="comment_delete",
    )

    if S.cascade_deletes:
        _delete_replies(comment)

    return {"message": "Comment deleted successfully"}


def delete_post_comments(post_id: str) -> int:
    """Delete every comment and reply created under a post."""
    items = store.query_all(T.comments, index=POST_COMMENTS_INDEX, partition=("post_id", post_id))
    for it in items:
        store.delete_item(T.comments, _key(it["comment_id"]))
    return len(items)


def toggle_like_comment(comment_id: str, user_id: str) -> Dict[str, Any]:
    comment = get_comment(comment_id)
    if not comment:
        raise NotFoundError("Comment not found")

    had_liked = user_id in set(comment.get("likes") or [])
    try:
        if had_liked:
            updated = store.remove_from_set(T.comments, _key(comment_id), "likes", [user_id])
        else:
            updated = store.add_to_set(T.comments, _key(comment_id), "likes", [user_id])
    except store.ConditionFailed as exc:
        raise NotFoundError("Comment not found") from exc
    LIKE_TOGGLES.labels(target="comment", action="unlike" if had_liked else "like").inc()

    if not had_liked:
        notifications.notify_on_like(user_id, comment["user_id"], post_id=comment["post_id"], comment_id=comment_id)

    return {"likes": sorted(updated.get("likes") or []), "liked": not had_liked}
