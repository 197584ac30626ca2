import logging
import os
import random
import secrets
from contextlib import asynccontextmanager
from datetime import date
from typing import Callable, List, Optional

from fastapi import FastAPI, Depends, Header, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import aggregates, ledger
from .config import settings, configure_logging
from .db import Base, engine, get_db, store_guard
from .errors import EngineError, Forbidden, StoreUnavailable
from .models import Tenant
from .schemas import (
    ActionsOut, Customer, DailyStat, ParticipationOut, PlatformAction, PlayRequest,
    PlayResponse, RedeemRequest, RedeemResponse, VerifyRequest, WheelOut,
)
from .security import require_operator, verify_tenant_token
from .utils import utcnow
from .wheel import build_segments, segments_version

logger = logging.getLogger(__name__)


def get_clock() -> Callable:
    return utcnow


def get_rng() -> random.Random:
    # fresh OS-seeded generator per request, never a shared fixed seed
    return secrets.SystemRandom()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # Dev convenience: create tables if they don't exist
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="ReviewSpin Engine API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,           # exact list
    allow_origin_regex=settings.allowed_origin_regex, # regex (e.g. r"^https://.*\.vercel\.app$")
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_exc_handler(request: Request, exc: EngineError):
    headers = None
    if isinstance(exc, StoreUnavailable):
        headers = {"Retry-After": str(exc.retry_after_seconds)}
    return JSONResponse(status_code=int(exc.status_code), content=exc.to_dict(), headers=headers)

@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request: Request, exc: StarletteHTTPException):
  return JSONResponse(status_code=exc.status_code, content={"message": str(exc.detail), "code": "HTTP_ERROR"})

@app.exception_handler(RequestValidationError)
async def validation_exc_handler(request: Request, exc: RequestValidationError):
  return JSONResponse(status_code=422, content={"message": "Validation error", "code": "VALIDATION_ERROR", "errors": jsonable_encoder(exc.errors())})

@app.exception_handler(Exception)
async def unexpected_exc_handler(request: Request, exc: Exception):
    logger.exception("unexpected error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal error", "code": "INTERNAL_ERROR"})


def require_tenant(
    tenant_id: int,
    x_tenant_token: str | None = Header(default=None, alias="X-Tenant-Token"),
    db: Session = Depends(get_db),
) -> Tenant:
    tenant = ledger.load_tenant(db, tenant_id)
    if not verify_tenant_token(x_tenant_token, tenant.admin_token_hash):
        raise Forbidden("Invalid venue token.")
    return tenant


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/api/play", response_model=PlayResponse)
def play(
    payload: PlayRequest,
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
    rng: random.Random = Depends(get_rng),
):
    config = ledger.load_tenant_config(db, payload.tenant_id)
    customer = Customer(name=payload.customer_name, email=payload.customer_email)
    result = ledger.record_play(db, config, customer, payload.platform_action, now=clock(), rng=rng)
    p = result.participation
    return PlayResponse(
        participation=ParticipationOut.model_validate(p),
        reward_id=p.reward_id,
        wedge_index=result.wedge_index,
        wedges_count=len(result.segments),
        segments_version=result.segments_version,
        wheel_in_sync=payload.segments_version in (None, result.segments_version),
    )


@app.get("/api/participations/{key}", response_model=ParticipationOut)
def participation_detail(key: str, db: Session = Depends(get_db)):
    return ledger.get_participation(db, key)


@app.post("/api/participations/{participation_id}/verify", response_model=ParticipationOut)
def verify(
    participation_id: str,
    payload: VerifyRequest,
    db: Session = Depends(get_db),
    clock: Callable = Depends(get_clock),
):
    return ledger.verify(db, participation_id, payload.token, now=clock())


@app.post("/api/redeem", response_model=RedeemResponse)
def redeem(payload: RedeemRequest, db: Session = Depends(get_db), clock: Callable = Depends(get_clock)):
    result = ledger.redeem(db, payload.key, now=clock())
    if result.status == "redeemed":
        message = "Reward redeemed. Enjoy!"
    else:
        message = f"This reward was already used at {result.redeemed_at.isoformat()}."
    return RedeemResponse(
        status=result.status,
        participation_id=result.participation.id,
        redeemed_at=result.redeemed_at,
        message=message,
    )


@app.get("/api/tenants/{tenant_id}/wheel", response_model=WheelOut)
def wheel(tenant_id: int, db: Session = Depends(get_db)):
    config = ledger.load_tenant_config(db, tenant_id)
    segments = build_segments(config.active_rewards)
    return WheelOut(segments=segments, segments_version=segments_version(segments))


@app.get("/api/tenants/{tenant_id}/actions", response_model=ActionsOut)
def actions(tenant_id: int, email: Optional[str] = None, db: Session = Depends(get_db)):
    ledger.load_tenant(db, tenant_id)
    return ActionsOut(
        available=list(PlatformAction),
        completed=ledger.completed_actions(db, tenant_id, email),
    )


@app.get("/api/tenants/{tenant_id}/stats", response_model=List[DailyStat])
def daily_stats(
    start: date = Query(...),
    end: date = Query(...),
    tenant: Tenant = Depends(require_tenant),
    db: Session = Depends(get_db),
):
    with store_guard(db):
        return aggregates.daily_stats(db, tenant.id, start, end)


@app.post("/api/admin/tenants/{tenant_id}/reconcile", response_model=List[DailyStat])
def reconcile(
    tenant_id: int,
    start: date = Query(...),
    end: date = Query(...),
    db: Session = Depends(get_db),
    _=Depends(require_operator),
):
    ledger.load_tenant(db, tenant_id)
    with store_guard(db):
        return aggregates.rebuild(db, tenant_id, start, end)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "reviewspin.main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", 8080)),
        reload=False,
    )
