from fastapi import APIRouter, HTTPException, Request
from fastapi.routing import APIRoute

from src.server.settings.config import settings

router = APIRouter(tags=["system"])


@router.get("/health")
def health():
    return {"status": "ok", "app": settings.app_name, "environment": settings.environment}


@router.get("/__debug/routes")
def list_routes(request: Request):
    # Bara i debug-läge
    if not settings.debug:
        raise HTTPException(status_code=404, detail="Not Found")

    out = []
    for r in request.app.routes:
        if isinstance(r, APIRoute):
            fn = r.endpoint
            out.append({
                "path": r.path,
                "methods": sorted(list(r.methods or [])),
                "endpoint": f"{getattr(fn, '__module__', '?')}.{getattr(fn, '__name__', '?')}",
            })
    return out
