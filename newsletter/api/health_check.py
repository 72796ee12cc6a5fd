from __future__ import annotations

from fastapi import APIRouter, Response

router = APIRouter(tags=["health"])


@router.get("/health_check")
async def health_check() -> Response:
    return Response(status_code=200)
