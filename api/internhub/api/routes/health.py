from fastapi import APIRouter, Request

from internhub.core.config import get_settings

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok", "service": get_settings().app_name}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(request: Request) -> dict[str, object]:
    registry = getattr(request.app.state, "connection_registry", None)
    if registry is None:
        return {"status": "starting", "realtime_connections": 0}
    return {"status": "ok", "realtime_connections": len(registry)}
