"""Case-insensitive substring search over users and posts.

Matches run against the lower-cased ``*_lc`` shadow attributes, so the query
is a literal substring and never a pattern.
"""
from __future__ import annotations

from typing import Any, Dict, List

from app.core import store
from app.core.normalize import search_shadow
from app.core.pagination import PageRequest, has_more
from app.core.tables import T
from app.services import posts, users

USER_SEARCH_FIELDS = ("username_lc", "first_name_lc", "last_name_lc")
POST_SEARCH_FIELDS = ("content_lc",)


def _newest_first(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(items, key=lambda it: it.get("created_at", ""), reverse=True)


def search(query: str, req: PageRequest) -> Dict[str, Any]:
    needle = search_shadow(query)
    if not needle:
        return {"users": [], "posts": [], "page": req.page, "has_more": False}

    found_users = sorted(
        store.scan_matching(T.users, USER_SEARCH_FIELDS, needle),
        key=lambda u: u.get("username", ""),
    )
    found_posts = _newest_first(store.scan_matching(T.posts, POST_SEARCH_FIELDS, needle))

    user_page = found_users[req.skip:req.skip + req.limit]
    post_page = found_posts[req.skip:req.skip + req.limit]
    out_users = []
    for u in user_page:
        summary = users.user_summary(u)
        summary["bio"] = u.get("bio", "")
        out_users.append(summary)

    more = has_more(req.page, req.limit, max(len(found_users), len(found_posts)))
    return {
        "users": out_users,
        "posts": posts.present_many(post_page),
        "page": req.page,
        "has_more": more,
    }
