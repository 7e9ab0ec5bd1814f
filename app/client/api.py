"""HTTP client for the REST surface, used by the client synchronization layer."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ApiClientError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(f"{status}: {message}")
        self.status = status
        self.message = message


def _error_message(resp: requests.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason or "Request failed"
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or data)
    return str(data)


class ApiClient:
    def __init__(
        self,
        base_url: str,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise ApiClientError(0, str(exc)) from exc
        if r.status_code >= 400:
            raise ApiClientError(r.status_code, _error_message(r))
        if not r.content:
            return {}
        return r.json()

    # -----------------------------
    # Posts
    # -----------------------------
    def list_posts(self, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        return self.request("GET", "/posts", params=_page_params(page, limit))

    def get_post(self, post_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/posts/{post_id}")["post"]

    def like_post(self, post_id: str) -> Dict[str, Any]:
        return self.request("POST", f"/posts/{post_id}/like")

    # -----------------------------
    # Comments
    # -----------------------------
    def list_comments(self, post_id: str, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        return self.request("GET", f"/comments/post/{post_id}", params=_page_params(page, limit))

    def create_comment(self, post_id: str, content: str, image: Optional[str] = None) -> Dict[str, Any]:
        return self.request("POST", f"/comments/post/{post_id}", json={"content": content, "image": image})["comment"]

    def reply_to_comment(self, comment_id: str, content: str, image: Optional[str] = None) -> Dict[str, Any]:
        return self.request("POST", f"/comments/{comment_id}/reply", json={"content": content, "image": image})["reply"]

    def delete_comment(self, comment_id: str) -> Dict[str, Any]:
        return self.request("DELETE", f"/comments/{comment_id}")

    def like_comment(self, comment_id: str) -> Dict[str, Any]:
        return self.request("POST", f"/comments/{comment_id}/like")

    # -----------------------------
    # Users
    # -----------------------------
    def me(self) -> Dict[str, Any]:
        return self.request("GET", "/users/me")["user"]

    def get_profile(self, username: str) -> Dict[str, Any]:
        return self.request("GET", f"/users/profile/{username}")["user"]

    def follow(self, target_user_id: str) -> Dict[str, Any]:
        return self.request("POST", f"/users/follow/{target_user_id}")

    # -----------------------------
    # Notifications
    # -----------------------------
    def list_notifications(self, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        return self.request("GET", "/notifications", params=_page_params(page, limit))

    def unread_count(self) -> int:
        return int(self.request("GET", "/notifications/unread-count").get("count", 0))

    def mark_all_read(self) -> Dict[str, Any]:
        return self.request("PUT", "/notifications/mark-read")

    def delete_notification(self, notification_id: str) -> Dict[str, Any]:
        return self.request("DELETE", f"/notifications/{notification_id}")

    def search(self, query: str, page: int = 1, limit: Optional[int] = None) -> Dict[str, Any]:
        params = _page_params(page, limit)
        params["query"] = query
        return self.request("GET", "/search", params=params)


def _page_params(page: int, limit: Optional[int]) -> Dict[str, Any]:
    params: Dict[str, Any] = {"page": page}
    if limit is not None:
        params["limit"] = limit
    return params
