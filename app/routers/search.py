from __future__ import annotations

from typing import Optional

from fastapi import APIRouter

from app.core.pagination import page_request
from app.core.settings import S
from app.models import SearchResp
from app.services import search as search_service

router = APIRouter(tags=["search"])


@router.get("/search", response_model=SearchResp)
def search(query: str = "", page: Optional[str] = None, limit: Optional[str] = None):
    req = page_request(page, limit, default_limit=S.default_search_limit)
    return search_service.search(query, req)
