from fastapi import APIRouter
from ...config import get_settings

router = APIRouter(prefix="/health", tags=["health"])
S = get_settings()


async def _dependencies() -> dict[str, bool]:
    deps: dict[str, bool] = {}
    if S.REGISTRATION_STORE == "postgres":
        from ...db import db_health
        deps["postgres"] = await db_health()
    if S.RATE_LIMIT_BACKEND == "redis":
        from ...redis_client import redis_health
        deps["redis"] = await redis_health()
    return deps


@router.get("")
async def health():
    deps = await _dependencies()
    return {"status": "ok" if all(deps.values()) else "degraded", "dependencies": deps}


@router.get("/readiness")
async def readiness():
    # a dead redis only degrades rate limiting, so readiness tracks postgres
    deps = await _dependencies()
    return {"ready": deps.get("postgres", True), **deps}


@router.get("/liveness")
async def liveness():
    return {"alive": True}
