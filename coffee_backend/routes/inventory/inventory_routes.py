# coffee_backend/routes/inventory/inventory_routes.py
import time

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from coffee_backend.models.batch.batch_models import VerificationConfigUpdate
from coffee_backend.models.batch.disclosure_models import Role
from coffee_backend.routes.identity import current_identity, error_response, forbidden, unauthorized
from coffee_backend.services.engine import get_engine
from coffee_backend.services.errors import CoffeeEngineError, InvalidInput, LedgerUnavailable
from coffee_backend.services.inventory.audit_service import record_verification, run_audit_cycle
from coffee_backend.services.inventory.status_service import (
    critical_batches,
    derive_status,
    inventory_stats,
)
from coffee_backend.services.redemption.token_service import mint_tokens

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _admin_only():
    role, _ = current_identity()
    return role is Role.ADMIN


def _int_field(body, name):
    value = body.get(name)
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidInput(f"{name} must be an integer")
    return value


def _holder_field(body):
    holder = body.get("holder")
    if not isinstance(holder, str) or not holder.strip():
        raise InvalidInput("holder is required")
    return holder.strip()


# -----------------------------
# STATUS
# -----------------------------
@inventory_bp.get("/batches")
def list_batch_status():
    engine = get_engine()
    try:
        config = engine.config
        now = int(time.time())
        reports = [derive_status(b, config, now).to_dict() for b in engine.batches.list_batches()]
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, "batches": reports})


@inventory_bp.get("/batches/<int:batch_id>/status")
def batch_status(batch_id):
    engine = get_engine()
    try:
        report = derive_status(engine.batches.get_batch(batch_id), engine.config)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, **report.to_dict()})


@inventory_bp.get("/stats")
def stats():
    engine = get_engine()
    try:
        out = inventory_stats(engine.batches.list_batches(), engine.config)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, "stats": out.to_dict()})


@inventory_bp.get("/critical")
def critical():
    engine = get_engine()
    try:
        out = critical_batches(engine.batches.list_batches(), engine.config)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, "critical": out.to_dict()})


# -----------------------------
# THRESHOLDS
# -----------------------------
@inventory_bp.get("/config")
def get_config():
    try:
        cfg = get_engine().config
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, "config": cfg.model_dump()})


@inventory_bp.put("/config")
def update_config():
    if not _admin_only():
        return forbidden()

    body = request.get_json(silent=True) or {}
    try:
        partial = VerificationConfigUpdate(**body)
    except ValidationError as e:
        return error_response(InvalidInput(e.errors()[0].get("msg", "invalid config")))

    try:
        cfg = get_engine().configs.update_verification_config(partial)
    except CoffeeEngineError as e:
        return error_response(e)

    current_app.logger.info("verification config updated: %s", partial.changes())
    return jsonify({"ok": True, "config": cfg.model_dump()})


# -----------------------------
# ADMIN ACTIONS
# -----------------------------
@inventory_bp.post("/verify")
def verify_batch():
    if not _admin_only():
        return forbidden()

    body = request.get_json(silent=True) or {}
    batch_id = body.get("batchId")
    if not isinstance(batch_id, int) or isinstance(batch_id, bool):
        return error_response(InvalidInput("batchId must be an integer"))

    engine = get_engine()
    try:
        batch = record_verification(engine.batches, batch_id)
        report = derive_status(batch, engine.config)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, **report.to_dict()})


@inventory_bp.post("/audit-cycle")
def audit_cycle():
    if not _admin_only():
        return forbidden()

    body = request.get_json(silent=True) or {}
    cursor = body.get("cursor")
    if cursor is not None and (not isinstance(cursor, int) or isinstance(cursor, bool)):
        return error_response(InvalidInput("cursor must be an integer"))

    engine = get_engine()
    try:
        result = run_audit_cycle(engine.batches, engine.config, cursor=cursor)
    except CoffeeEngineError as e:
        return error_response(e)

    current_app.logger.info("audit cycle: %s processed, %s alerting",
                            result.processed, len(result.alerting))
    return jsonify({"ok": True, **result.to_dict()})


# -----------------------------
# LEDGER + TOKENS
# -----------------------------
@inventory_bp.post("/sync")
def sync_from_ledger():
    if not _admin_only():
        return forbidden()

    body = request.get_json(silent=True) or {}
    ledger = get_engine().ledger
    try:
        if body.get("batchId") is None:
            synced = ledger.sync_active_batches()
        else:
            batch_id = _int_field(body, "batchId")
            batch = ledger.sync_batch(batch_id)
            if batch is None:
                raise LedgerUnavailable(f"batch {batch_id} could not be read from the ledger", batchId=batch_id)
            synced = [batch]
    except CoffeeEngineError as e:
        return error_response(e)

    current_app.logger.info("ledger sync stored %s batches", len(synced))
    return jsonify({"ok": True, "synced": [b.batchId for b in synced]})


@inventory_bp.post("/balances/sync")
def sync_balance():
    if not _admin_only():
        return forbidden()

    body = request.get_json(silent=True) or {}
    try:
        batch_id = _int_field(body, "batchId")
        holder = _holder_field(body)
        balance = get_engine().ledger.sync_balance(batch_id, holder)
        if balance is None:
            raise LedgerUnavailable(f"balance of {holder} could not be read from the ledger",
                                    batchId=batch_id, holder=holder)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, "batchId": batch_id, "holder": holder, "balance": balance})


@inventory_bp.post("/mint")
def mint():
    if not _admin_only():
        return forbidden()

    body = request.get_json(silent=True) or {}
    engine = get_engine()
    try:
        batch_id = _int_field(body, "batchId")
        holder = _holder_field(body)
        amount = _int_field(body, "amount")
        balance = mint_tokens(engine.batches, engine.balances, batch_id, holder, amount)
        batch = engine.batches.get_batch(batch_id)
    except CoffeeEngineError as e:
        return error_response(e)

    current_app.logger.info("minted %s of batch %s to %s", amount, batch_id, holder)
    return jsonify({
        "ok": True,
        "batchId": batch_id,
        "holder": holder,
        "balance": balance,
        "mintedQuantity": batch.mintedQuantity,
        "availableQuantity": batch.availableQuantity,
    })


@inventory_bp.get("/balances")
def list_balances():
    role, user_id = current_identity()
    if role in (Role.ADMIN, Role.DISTRIBUTOR) and request.args.get("holder"):
        holder = request.args["holder"]
    elif user_id:
        holder = user_id
    else:
        return unauthorized()
    return jsonify({"ok": True, "holder": holder, "balances": get_engine().balances.list_balances(holder)})
