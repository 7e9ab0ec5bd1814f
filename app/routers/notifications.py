from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.auth.deps import get_authenticated_user_sub
from app.core.pagination import page_request
from app.core.settings import S
from app.models import MessageResp, NotificationPageResp, UnreadCountResp
from app.services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPageResp)
def list_notifications(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    user_id: str = Depends(get_authenticated_user_sub),
):
    req = page_request(page, limit, default_limit=S.default_notifications_limit)
    return notifications.list_notifications(user_id, req)


# Fixed paths are registered before /{notification_id}.
@router.get("/unread-count", response_model=UnreadCountResp)
def unread_count(user_id: str = Depends(get_authenticated_user_sub)):
    return {"count": notifications.unread_count(user_id)}


@router.put("/mark-read", response_model=MessageResp)
def mark_all_read(user_id: str = Depends(get_authenticated_user_sub)):
    return notifications.mark_all_read(user_id)


@router.delete("/{notification_id}", response_model=MessageResp)
def delete_notification(notification_id: str, user_id: str = Depends(get_authenticated_user_sub)):
    return notifications.delete_notification(notification_id, user_id)
