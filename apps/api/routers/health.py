# apps/api/routers/health.py
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    return {"status": "ok"}


@router.get("/readyz")
def readyz(request: Request):
    """{store: bool, broker: bool, ok: bool}; 503 unless both subsystems are up."""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        return JSONResponse(status_code=503, content={"store": False, "broker": False, "ok": False})
    body = pipeline.health()
    return JSONResponse(status_code=200 if body["ok"] else 503, content=body)
