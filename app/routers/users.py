from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from app.auth.deps import get_authenticated_user_sub
from app.models import FollowResp, ProfileUpdateReq, SyncUserReq, UserResp, UsersResp
from app.services import users

router = APIRouter(prefix="/users", tags=["users"])


@router.post("/sync", response_model=UserResp)
def sync_user(body: SyncUserReq, response: Response, user_id: str = Depends(get_authenticated_user_sub)):
    user, created = users.sync_user(user_id, body.model_dump())
    if not created:
        return {"user": users.user_profile(user), "message": "User already exists"}
    response.status_code = 201
    return {"user": users.user_profile(user), "message": "User created successfully"}


@router.get("/me", response_model=UserResp)
def current_user(user_id: str = Depends(get_authenticated_user_sub)):
    return {"user": users.user_profile(users.require_user(user_id))}


@router.put("/profile", response_model=UserResp)
def update_profile(body: ProfileUpdateReq, user_id: str = Depends(get_authenticated_user_sub)):
    updates = body.model_dump(exclude_unset=True)
    return {"user": users.update_profile(user_id, updates)}


@router.get("/profile/{username}", response_model=UserResp)
def get_profile(username: str):
    return {"user": users.user_profile(users.require_user_by_username(username))}


@router.post("/follow/{target_user_id}", response_model=FollowResp)
def follow(target_user_id: str, user_id: str = Depends(get_authenticated_user_sub)):
    return users.toggle_follow(user_id, target_user_id)


@router.get("/{username}/followers", response_model=UsersResp)
def followers(username: str):
    return {"users": users.list_followers(username)}


@router.get("/{username}/following", response_model=UsersResp)
def following(username: str):
    return {"users": users.list_following(username)}
