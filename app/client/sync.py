"""Optimistic mutations over the local query cache.

Every user action goes through ``SyncEngine.mutate``: the local entry changes
at once, the request is sent, and the outcome either reconciles the entry with
the server response or rolls it back. Calls are never coalesced. Each one
takes a per-key sequence number, and only the newest call for a key may write
its outcome into that key.
"""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional

from app.client.api import ApiClient, ApiClientError
from app.client.cache import (
    ME_KEY,
    UNREAD_COUNT_KEY,
    CacheKey,
    QueryCache,
    comments_key,
    feed_key,
    notifications_key,
    post_key,
    user_key,
)

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[str, ApiClientError], None]


def _log_error(action: str, exc: ApiClientError) -> None:
    logger.warning("%s failed (%s): %s", action, exc.status, exc.message)


def _flip(members: Optional[List[str]], user_id: str) -> List[str]:
    members = list(members or [])
    if user_id in members:
        members.remove(user_id)
    else:
        members.append(user_id)
    return members


def _set_member(members: Optional[List[str]], user_id: str, present: bool) -> List[str]:
    members = [m for m in (members or []) if m != user_id]
    if present:
        members.append(user_id)
    return members


def _map_comment(page: Dict[str, Any], comment_id: str, fn: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
    out = []
    for c in page.get("comments", []):
        if c.get("id") == comment_id:
            c = fn(c)
        else:
            c["replies"] = [fn(r) if r.get("id") == comment_id else r for r in c.get("replies", [])]
        out.append(c)
    page["comments"] = out
    return page


def _drop_comment(page: Dict[str, Any], comment_id: str) -> Dict[str, Any]:
    kept = []
    for c in page.get("comments", []):
        if c.get("id") == comment_id:
            continue
        c["replies"] = [r for r in c.get("replies", []) if r.get("id") != comment_id]
        kept.append(c)
    page["comments"] = kept
    return page


class SyncEngine:
    def __init__(
        self,
        api: ApiClient,
        viewer_id: str,
        cache: Optional[QueryCache] = None,
        *,
        on_error: Optional[ErrorHandler] = None,
    ) -> None:
        self.api = api
        self.viewer_id = viewer_id
        self.cache = cache or QueryCache()
        self.on_error = on_error or _log_error
        self._seq: Dict[CacheKey, int] = {}
        self._lock = threading.Lock()

    def _next_seq(self, key: CacheKey) -> int:
        with self._lock:
            seq = self._seq.get(key, 0) + 1
            self._seq[key] = seq
            return seq

    def _is_latest(self, key: CacheKey, seq: int) -> bool:
        with self._lock:
            return self._seq.get(key) == seq

    def mutate(
        self,
        key: CacheKey,
        *,
        action: str,
        apply: Callable[[Any], Any],
        request: Callable[[], Any],
        reconcile: Optional[Callable[[Any, Any], Any]] = None,
        invalidate: Iterable[CacheKey] = (),
    ) -> Optional[Any]:
        """Apply ``apply`` to the cached entry, then send ``request``.

        Returns the server response, or None when the request failed. Failures
        go to ``on_error`` and are not raised.
        """
        seq = self._next_seq(key)
        snap = self.cache.snapshot(key)
        self.cache.update(key, apply)

        try:
            response = request()
        except ApiClientError as exc:
            if self._is_latest(key, seq):
                self.cache.restore(key, snap)
            else:
                # A newer call owns the entry; let the next fetch settle it.
                self.cache.invalidate(key)
            self.on_error(action, exc)
            return None

        if not self._is_latest(key, seq):
            # The newer call reconciles its own view; reload to pick up this one too.
            self.cache.invalidate(key)
        elif reconcile is not None:
            self.cache.update(key, lambda local: reconcile(local, response))
        for prefix in invalidate:
            self.cache.invalidate(prefix)
        return response

    # -----------------------------
    # Reads
    # -----------------------------
    def post(self, post_id: str) -> Dict[str, Any]:
        return self.cache.fetch(post_key(post_id), lambda: self.api.get_post(post_id))

    def feed(self, page: int = 1) -> Dict[str, Any]:
        return self.cache.fetch(feed_key(page), lambda: self.api.list_posts(page))

    def me(self) -> Dict[str, Any]:
        return self.cache.fetch(ME_KEY, self.api.me)

    def comments(self, post_id: str, page: int = 1) -> Dict[str, Any]:
        return self.cache.fetch(comments_key(post_id, page), lambda: self.api.list_comments(post_id, page))

    def profile(self, username: str) -> Dict[str, Any]:
        return self.cache.fetch(user_key(username), lambda: self.api.get_profile(username))

    def notifications(self, page: int = 1) -> Dict[str, Any]:
        return self.cache.fetch(notifications_key(page), lambda: self.api.list_notifications(page))

    def unread_count(self) -> int:
        return self.cache.fetch(UNREAD_COUNT_KEY, lambda: {"count": self.api.unread_count()})["count"]

    def refresh_unread_count(self) -> Optional[int]:
        """Poll the badge count; a mutation issued meanwhile keeps its own value."""
        seq = self._next_seq(UNREAD_COUNT_KEY)
        try:
            count = self.api.unread_count()
        except ApiClientError as exc:
            self.on_error("refresh_unread_count", exc)
            return None
        if self._is_latest(UNREAD_COUNT_KEY, seq):
            self.cache.set(UNREAD_COUNT_KEY, {"count": count})
        return count

    # -----------------------------
    # Mutations
    # -----------------------------
    def toggle_post_like(self, post_id: str) -> Optional[Dict[str, Any]]:
        def apply(post):
            post["likes"] = _flip(post.get("likes"), self.viewer_id)
            return post

        def reconcile(post, resp):
            post["likes"] = list(resp["likes"])
            return post

        return self.mutate(
            post_key(post_id),
            action="toggle_post_like",
            apply=apply,
            request=lambda: self.api.like_post(post_id),
            reconcile=reconcile,
            invalidate=[("posts",)],
        )

    def toggle_comment_like(self, post_id: str, comment_id: str, page: int = 1) -> Optional[Dict[str, Any]]:
        def flip(comment):
            comment["likes"] = _flip(comment.get("likes"), self.viewer_id)
            return comment

        def reconcile(local, resp):
            def settle(comment):
                comment["likes"] = list(resp["likes"])
                return comment
            return _map_comment(local, comment_id, settle)

        return self.mutate(
            comments_key(post_id, page),
            action="toggle_comment_like",
            apply=lambda local: _map_comment(local, comment_id, flip),
            request=lambda: self.api.like_comment(comment_id),
            reconcile=reconcile,
        )

    def toggle_follow(self, username: str, target_user_id: str) -> Optional[Dict[str, Any]]:
        def apply(profile):
            profile["followers"] = _flip(profile.get("followers"), self.viewer_id)
            return profile

        def reconcile(profile, resp):
            profile["followers"] = _set_member(profile.get("followers"), self.viewer_id, bool(resp["following"]))
            return profile

        return self.mutate(
            user_key(username),
            action="toggle_follow",
            apply=apply,
            request=lambda: self.api.follow(target_user_id),
            reconcile=reconcile,
            invalidate=[ME_KEY],
        )

    def add_comment(self, post_id: str, content: str, image: Optional[str] = None) -> Optional[Dict[str, Any]]:
        pending_id = f"pending-{uuid.uuid4().hex}"

        def apply(page):
            placeholder = {
                "id": pending_id,
                "postId": post_id,
                "parentCommentId": None,
                "user": {"id": self.viewer_id},
                "content": content,
                "image": image,
                "likes": [],
                "replies": [],
                "pending": True,
            }
            page["comments"] = [placeholder] + list(page.get("comments", []))
            return page

        def reconcile(page, created):
            page["comments"] = [created if c.get("id") == pending_id else c for c in page.get("comments", [])]
            return page

        return self.mutate(
            comments_key(post_id),
            action="add_comment",
            apply=apply,
            request=lambda: self.api.create_comment(post_id, content, image),
            reconcile=reconcile,
            invalidate=[post_key(post_id), ("posts",)],
        )

    def delete_comment(self, post_id: str, comment_id: str, page: int = 1) -> Optional[Dict[str, Any]]:
        return self.mutate(
            comments_key(post_id, page),
            action="delete_comment",
            apply=lambda local: _drop_comment(local, comment_id),
            request=lambda: self.api.delete_comment(comment_id),
            invalidate=[post_key(post_id), ("posts",)],
        )

    def reply_to_comment(
        self,
        post_id: str,
        comment_id: str,
        content: str,
        image: Optional[str] = None,
        page: int = 1,
    ) -> Optional[Dict[str, Any]]:
        """Reply under ``comment_id``; a reply to a reply lands in its top-level thread."""
        pending_id = f"pending-{uuid.uuid4().hex}"

        def apply(local):
            for c in local.get("comments", []):
                replies = list(c.get("replies", []))
                if c.get("id") == comment_id or any(r.get("id") == comment_id for r in replies):
                    replies.append({
                        "id": pending_id,
                        "postId": post_id,
                        "parentCommentId": c.get("id"),
                        "user": {"id": self.viewer_id},
                        "content": content,
                        "image": image,
                        "likes": [],
                        "replies": [],
                        "pending": True,
                    })
                    c["replies"] = replies
                    break
            return local

        def reconcile(local, created):
            for c in local.get("comments", []):
                c["replies"] = [created if r.get("id") == pending_id else r for r in c.get("replies", [])]
            return local

        return self.mutate(
            comments_key(post_id, page),
            action="reply_to_comment",
            apply=apply,
            request=lambda: self.api.reply_to_comment(comment_id, content, image),
            reconcile=reconcile,
        )

    def delete_notification(self, notification_id: str, page: int = 1) -> Optional[Dict[str, Any]]:
        def apply(local):
            local["notifications"] = [n for n in local.get("notifications", []) if n.get("id") != notification_id]
            return local

        return self.mutate(
            notifications_key(page),
            action="delete_notification",
            apply=apply,
            request=lambda: self.api.delete_notification(notification_id),
            invalidate=[UNREAD_COUNT_KEY, ("notifications",)],
        )

    def mark_all_read(self) -> Optional[Dict[str, Any]]:
        def apply(_):
            return {"count": 0}

        return self.mutate(
            UNREAD_COUNT_KEY,
            action="mark_all_read",
            apply=apply,
            request=self.api.mark_all_read,
            invalidate=[("notifications",)],
        )
