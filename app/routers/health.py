from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from typing import Any

router = APIRouter()


@router.get("/redis")
async def redis_health(request: Request) -> Any:
    """Return Redis connection health. If `REDIS_URL` is not configured, returns status `not_configured`.

    The API keeps working without Redis (no response cache, no cross-instance events).
    """
    cache = request.app.state.cache
    if cache.client is None:
        return JSONResponse({"status": "not_configured", "details": "REDIS_URL not set"}, status_code=200)

    if await cache.ping():
        return {"status": "ok", "redis": "connected"}
    return JSONResponse({"status": "error", "redis": "ping_failed"}, status_code=503)
