# coffee_backend/fastapi/coffee_api.py
from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict, Optional

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pymongo import MongoClient

from coffee_backend.app_config import verification_defaults
from coffee_backend.models.batch.disclosure_models import Role
from coffee_backend.models.redemption.redemption_models import (
    RedemptionAdvanceModel,
    RedemptionCreateModel,
    RedemptionStatus,
)
from coffee_backend.services.disclosure.disclosure_service import resolve_disclosure
from coffee_backend.services.engine import CoffeeEngine, build_engine
from coffee_backend.services.errors import CoffeeEngineError
from coffee_backend.services.inventory.status_service import derive_status, inventory_stats
from coffee_backend.services.redemption.redemption_service import RedemptionPolicy

# ------------ Mongo / JWT (must match Flask) ------------
MONGO_URI      = os.environ.get("MONGO_URI", "mongodb://localhost:27017/coffee_traceability_db")
JWT_SECRET_KEY = os.environ.get("JWT_SECRET_KEY", "change-me")

router = APIRouter(prefix="/api/v1/coffee", tags=["coffee"])

# --- one HTTPBearer scheme for this router (docs will show a lock) ---
bearer = HTTPBearer(scheme_name="AccessToken", bearerFormat="JWT", auto_error=False)

_engine: Optional[CoffeeEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> CoffeeEngine:
    """Process-wide engine; tests swap it with app.dependency_overrides."""
    global _engine
    with _engine_lock:
        if _engine is None:
            db = None
            if os.getenv("DISABLE_MONGO", "0") != "1":
                db = MongoClient(MONGO_URI).get_database()
            _engine = build_engine(db=db, defaults=verification_defaults(), policy=RedemptionPolicy.from_env())
        return _engine


# ------------ JWT helpers ------------
def _jwt_decode(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=["HS256"], options={"verify_sub": False})
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def auth_identity(credentials: HTTPAuthorizationCredentials = Security(bearer)) -> Dict[str, Any]:
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")

    payload = _jwt_decode(credentials.credentials.strip())
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Not an access token")

    # identity in 'user'; fall back to a bare string sub
    identity = payload.get("user")
    if not identity and isinstance(payload.get("sub"), str):
        identity = {"userId": payload["sub"], "role": payload.get("role")}

    if not identity:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return identity


def _role(identity: Dict[str, Any]) -> Role:
    return Role.parse(identity.get("role"))


def _require_user(identity: Dict[str, Any]) -> str:
    uid = identity.get("userId")
    if not uid:
        raise HTTPException(status_code=401, detail="Missing userId in token")
    return str(uid)


def _fail(e: CoffeeEngineError):
    raise HTTPException(status_code=e.http_status, detail=e.code)


# ------------ Batches ------------
@router.get("/batches/{batch_id}")
def get_batch(batch_id: int, identity=Depends(auth_identity), engine: CoffeeEngine = Depends(get_engine)):
    try:
        batch = engine.batches.get_batch(batch_id)
    except CoffeeEngineError as e:
        _fail(e)
    return {"ok": True, "batch": resolve_disclosure(batch, _role(identity)).to_dict()}


@router.get("/batches/{batch_id}/status")
def get_batch_status(batch_id: int, identity=Depends(auth_identity), engine: CoffeeEngine = Depends(get_engine)):
    try:
        report = derive_status(engine.batches.get_batch(batch_id), engine.config)
    except CoffeeEngineError as e:
        _fail(e)
    return {"ok": True, **report.to_dict()}


@router.get("/inventory")
def get_inventory(identity=Depends(auth_identity), engine: CoffeeEngine = Depends(get_engine)):
    try:
        config = engine.config
        now = int(time.time())
        batches = engine.batches.list_batches()
        reports = [derive_status(b, config, now).to_dict() for b in batches]
        stats = inventory_stats(batches, config, now)
    except CoffeeEngineError as e:
        _fail(e)
    return {"ok": True, "stats": stats.to_dict(), "batches": reports}


# ------------ Balances ------------
@router.get("/balances")
def list_balances(holder: Optional[str] = Query(None), identity=Depends(auth_identity),
                  engine: CoffeeEngine = Depends(get_engine)):
    if holder and _role(identity) in (Role.ADMIN, Role.DISTRIBUTOR):
        owner = holder
    else:
        owner = _require_user(identity)
    return {"ok": True, "holder": owner, "balances": engine.balances.list_balances(owner)}


# ------------ Redemptions ------------
@router.post("/redemptions", status_code=201)
def create_redemption(body: RedemptionCreateModel, identity=Depends(auth_identity),
                      engine: CoffeeEngine = Depends(get_engine)):
    consumer = _require_user(identity)
    if body.consumer and _role(identity) is Role.ADMIN:
        consumer = body.consumer
    try:
        req = engine.redemption_service.create_redemption(
            body.batchId, consumer, body.quantity, body.deliveryInfo,
        )
    except CoffeeEngineError as e:
        _fail(e)
    return {"ok": True, "redemption": req.to_doc()}


@router.get("/redemptions")
def list_redemptions(status: Optional[RedemptionStatus] = Query(None), identity=Depends(auth_identity),
                     engine: CoffeeEngine = Depends(get_engine)):
    consumer = None if _role(identity) in (Role.ADMIN, Role.DISTRIBUTOR) else _require_user(identity)
    items = engine.redemption_service.list_redemptions(consumer=consumer, status=status)
    return {"ok": True, "redemptions": [r.to_doc() for r in items]}


@router.put("/redemptions/{request_id}")
def advance_redemption(request_id: int, body: RedemptionAdvanceModel, identity=Depends(auth_identity),
                       engine: CoffeeEngine = Depends(get_engine)):
    role = _role(identity)
    uid = identity.get("userId")
    service = engine.redemption_service
    try:
        if role not in (Role.ADMIN, Role.DISTRIBUTOR):
            req = service.get_redemption(request_id)
            if req.consumer != uid or body.status is not RedemptionStatus.CANCELLED:
                raise HTTPException(status_code=403, detail="Only fulfilment staff can advance this request")
        req = service.advance_redemption(
            request_id, body.status, actor=uid, tracking_number=body.trackingNumber,
        )
    except CoffeeEngineError as e:
        _fail(e)
    return {"ok": True, "redemption": req.to_doc()}
