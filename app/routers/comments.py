from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.auth.deps import get_authenticated_user_sub
from app.core.pagination import page_request
from app.core.settings import S
from app.models import CommentCreateReq, CommentPageResp, CommentResp, LikeResp, MessageResp, ReplyResp
from app.services import comments

router = APIRouter(prefix="/comments", tags=["comments"])


@router.get("/post/{post_id}", response_model=CommentPageResp)
def list_post_comments(post_id: str, page: Optional[str] = None, limit: Optional[str] = None):
    req = page_request(page, limit, default_limit=S.default_comments_limit)
    return comments.list_comments(post_id, req)


@router.post("/post/{post_id}", status_code=201, response_model=CommentResp)
def create_comment(post_id: str, body: CommentCreateReq, user_id: str = Depends(get_authenticated_user_sub)):
    return {"comment": comments.create_comment(post_id, user_id, body.content, body.image)}


@router.delete("/{comment_id}", response_model=MessageResp)
def delete_comment(comment_id: str, user_id: str = Depends(get_authenticated_user_sub)):
    return comments.delete_comment(comment_id, user_id)


@router.post("/{comment_id}/like", response_model=LikeResp)
def like_comment(comment_id: str, user_id: str = Depends(get_authenticated_user_sub)):
    return comments.toggle_like_comment(comment_id, user_id)


@router.post("/{comment_id}/reply", status_code=201, response_model=ReplyResp)
def reply_to_comment(comment_id: str, body: CommentCreateReq, user_id: str = Depends(get_authenticated_user_sub)):
    return {"reply": comments.reply_to_comment(comment_id, user_id, body.content, body.image)}
