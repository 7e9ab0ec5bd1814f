from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple

from app.core import store
from app.core.errors import NotFoundError, ValidationError
from app.core.normalize import clean_str, normalize_email, normalize_username, search_shadow
from app.core.tables import T, USERNAME_INDEX
from app.core.time import new_id, now_iso
from app.metrics import FOLLOW_TOGGLES
from app.services import notifications

# Only these fields may be changed through a profile update.
PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "bio",
    "location",
    "profile_picture",
    "banner_image",
)

_SHADOWED = ("username", "first_name", "last_name")

MAX_NAME_LEN = 80


def _key(user_id: str) -> Dict[str, str]:
    return {"user_id": user_id}


def get_user(user_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not user_id:
        return None
    return store.get_item(T.users, _key(user_id))


def require_user(user_id: Optional[str]) -> Dict[str, Any]:
    user = get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    return user


def get_user_by_username(username: str) -> Optional[Dict[str, Any]]:
    items = store.query_all(T.users, index=USERNAME_INDEX, partition=("username", username))
    return items[0] if items else None


def require_user_by_username(username: str) -> Dict[str, Any]:
    user = get_user_by_username(username)
    if not user:
        raise NotFoundError("User not found")
    return user


def user_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["user_id"],
        "username": user.get("username", ""),
        "first_name": user.get("first_name", ""),
        "last_name": user.get("last_name", ""),
        "profile_picture": user.get("profile_picture", ""),
    }


def user_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    out = user_summary(user)
    out.update({
        "email": user.get("email"),
        "bio": user.get("bio", ""),
        "location": user.get("location", ""),
        "banner_image": user.get("banner_image", ""),
        "followers": sorted(user.get("followers") or []),
        "following": sorted(user.get("following") or []),
        "created_at": user.get("created_at"),
    })
    return out


def summaries(user_ids: Iterable[Optional[str]]) -> Dict[str, Dict[str, Any]]:
    found = store.batch_get(T.users, "user_id", user_ids)
    return {uid: user_summary(u) for uid, u in found.items()}


def _with_shadows(fields: Dict[str, Any]) -> Dict[str, Any]:
    for name in _SHADOWED:
        if name in fields:
            fields[f"{name}_lc"] = search_shadow(fields[name])
    return fields


def _available_username(base: str) -> str:
    if not get_user_by_username(base):
        return base
    return f"{base}_{new_id()[:6]}"


def sync_user(user_id: str, claims: Dict[str, Any]) -> Tuple[Dict[str, Any], bool]:
    """Create the caller's user document from identity-provider profile claims.

    Returns ``(user, created)``; an existing document is returned untouched.
    """
    existing = get_user(user_id)
    if existing:
        return existing, False

    email = normalize_email(claims.get("email", ""))
    base = normalize_username(claims.get("username") or email.split("@")[0])
    now = now_iso()
    item = _with_shadows({
        "user_id": user_id,
        "email": email,
        "username": _available_username(base),
        "first_name": clean_str(claims.get("first_name"), max_len=MAX_NAME_LEN) or "",
        "last_name": clean_str(claims.get("last_name"), max_len=MAX_NAME_LEN) or "",
        "profile_picture": clean_str(claims.get("profile_picture")) or "",
        "bio": "",
        "location": "",
        "banner_image": "",
        "created_at": now,
        "updated_at": now,
    })
    try:
        store.put_item(T.users, item, if_absent="user_id")
    except store.ConditionFailed:
        # Concurrent sync from a second device won the race.
        return require_user(user_id), False
    return item, True


def update_profile(user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    require_user(user_id)
    fields: Dict[str, Any] = {}
    for name in PROFILE_FIELDS:
        if name in updates:
            fields[name] = clean_str(updates[name]) or ""
    if not fields:
        raise ValidationError("No profile fields to update")
    fields["updated_at"] = now_iso()
    try:
        updated = store.update_fields(T.users, _key(user_id), _with_shadows(fields))
    except store.ConditionFailed as exc:
        raise NotFoundError("User not found") from exc
    return user_profile(updated)


def toggle_follow(current_id: str, target_id: str) -> Dict[str, Any]:
    """Follow ``target_id``, or unfollow when already following.

    ``current.following`` is written first and ``target.followers`` second; a
    failure of the second write undoes the first.
    """
    if current_id == target_id:
        raise ValidationError("You cannot follow yourself")

    current = get_user(current_id)
    target = get_user(target_id)
    if not current or not target:
        raise NotFoundError("User not found")

    was_following = target_id in set(current.get("following") or [])
    try:
        if was_following:
            store.remove_from_set(T.users, _key(current_id), "following", [target_id])
            store.paired_write(
                lambda: store.remove_from_set(T.users, _key(target_id), "followers", [current_id]),
                lambda: store.add_to_set(T.users, _key(current_id), "following", [target_id]),
                what="unfollow",
            )
        else:
            store.add_to_set(T.users, _key(current_id), "following", [target_id])
            store.paired_write(
                lambda: store.add_to_set(T.users, _key(target_id), "followers", [current_id]),
                lambda: store.remove_from_set(T.users, _key(current_id), "following", [target_id]),
                what="follow",
            )
    except store.ConditionFailed as exc:
        raise NotFoundError("User not found") from exc

    if was_following:
        FOLLOW_TOGGLES.labels(action="unfollow").inc()
        return {"message": "User unfollowed successfully", "following": False}

    FOLLOW_TOGGLES.labels(action="follow").inc()
    notifications.notify_on_follow(current_id, target_id)
    return {"message": "User followed successfully", "following": True}


def _profiles(user_ids: Iterable[str]) -> List[Dict[str, Any]]:
    found = store.batch_get(T.users, "user_id", user_ids)
    return [user_profile(found[uid]) for uid in sorted(found)]


def list_followers(username: str) -> List[Dict[str, Any]]:
    user = require_user_by_username(username)
    return _profiles(user.get("followers") or [])


def list_following(username: str) -> List[Dict[str, Any]]:
    user = require_user_by_username(username)
    return _profiles(user.get("following") or [])
