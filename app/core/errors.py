from __future__ import annotations

from fastapi import HTTPException


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Invalid request") -> None:
        super().__init__(status_code=400, detail=detail)


class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Unauthorized") -> None:
        super().__init__(status_code=401, detail=detail)


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(status_code=403, detail=detail)


class NotFoundError(HTTPException):
    def __init__(self, detail: str = "Not found") -> None:
        super().__init__(status_code=404, detail=detail)


class StoreError(HTTPException):
    def __init__(self, detail: str = "Database error") -> None:
        super().__init__(status_code=500, detail=detail)


def error_body(detail) -> dict:
    if isinstance(detail, str):
        return {"error": detail}
    return {"error": str(detail)}
