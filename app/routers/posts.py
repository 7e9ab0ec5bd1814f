from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from app.auth.deps import get_authenticated_user_sub
from app.core.pagination import page_request
from app.core.settings import S
from app.models import LikeResp, MessageResp, PostCreateReq, PostPageResp, PostResp
from app.services import posts

router = APIRouter(prefix="/posts", tags=["posts"])


@router.get("", response_model=PostPageResp)
def list_posts(page: Optional[str] = None, limit: Optional[str] = None):
    return posts.list_posts(page_request(page, limit, default_limit=S.default_posts_limit))


@router.get("/user/{username}", response_model=PostPageResp)
def list_user_posts(username: str, page: Optional[str] = None, limit: Optional[str] = None):
    req = page_request(page, limit, default_limit=S.default_posts_limit)
    return posts.list_user_posts(username, req)


@router.get("/{post_id}", response_model=PostResp)
def get_post(post_id: str):
    return {"post": posts.post_detail(post_id)}


@router.post("", status_code=201, response_model=PostResp)
def create_post(body: PostCreateReq, user_id: str = Depends(get_authenticated_user_sub)):
    return {"post": posts.create_post(user_id, body.content, body.image)}


@router.post("/{post_id}/like", response_model=LikeResp)
def like_post(post_id: str, user_id: str = Depends(get_authenticated_user_sub)):
    return posts.toggle_like_post(post_id, user_id)


@router.delete("/{post_id}", response_model=MessageResp)
def delete_post(post_id: str, user_id: str = Depends(get_authenticated_user_sub)):
    return posts.delete_post(post_id, user_id)
