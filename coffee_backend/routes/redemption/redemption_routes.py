# coffee_backend/routes/redemption/redemption_routes.py
from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from coffee_backend.models.batch.disclosure_models import Role
from coffee_backend.models.redemption.redemption_models import (
    RedemptionAdvanceModel,
    RedemptionCreateModel,
    RedemptionStatus,
)
from coffee_backend.routes.identity import current_identity, error_response, forbidden, unauthorized
from coffee_backend.services.engine import get_engine
from coffee_backend.services.errors import CoffeeEngineError, InvalidInput

redemption_bp = Blueprint("redemptions", __name__, url_prefix="/api/redemptions")

# roles allowed to move requests along (consumers can only cancel their own)
_FULFILMENT_ROLES = (Role.ADMIN, Role.DISTRIBUTOR)


def _bad_body(e: ValidationError):
    err = e.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return error_response(InvalidInput(f"{loc}: {err.get('msg')}" if loc else err.get("msg", "invalid body")))


@redemption_bp.post("")
def create_redemption():
    role, user_id = current_identity()
    body = request.get_json(silent=True) or {}
    try:
        payload = RedemptionCreateModel(**body)
    except ValidationError as e:
        return _bad_body(e)

    consumer = user_id
    if payload.consumer and role is Role.ADMIN:
        consumer = payload.consumer
    if not consumer:
        return unauthorized()

    try:
        req = get_engine().redemption_service.create_redemption(
            payload.batchId, consumer, payload.quantity, payload.deliveryInfo,
        )
    except CoffeeEngineError as e:
        current_app.logger.info("redemption rejected for %s: %s", consumer, e.code)
        return error_response(e)

    return jsonify({"ok": True, "redemption": req.to_doc()}), 201


@redemption_bp.get("")
def list_redemptions():
    role, user_id = current_identity()
    status = request.args.get("status")
    try:
        status = RedemptionStatus(status) if status else None
    except ValueError:
        return error_response(InvalidInput(f"unknown status: {status}"))

    if role in _FULFILMENT_ROLES:
        consumer = request.args.get("consumer")
    elif user_id:
        consumer = user_id
    else:
        return unauthorized()

    items = get_engine().redemption_service.list_redemptions(consumer=consumer, status=status)
    return jsonify({"ok": True, "redemptions": [r.to_doc() for r in items]})


@redemption_bp.get("/<int:request_id>")
def get_redemption(request_id):
    role, user_id = current_identity()
    try:
        req = get_engine().redemption_service.get_redemption(request_id)
    except CoffeeEngineError as e:
        return error_response(e)
    if role not in _FULFILMENT_ROLES and req.consumer != user_id:
        return forbidden()
    return jsonify({"ok": True, "redemption": req.to_doc()})


@redemption_bp.put("/<int:request_id>")
def advance_redemption(request_id):
    role, user_id = current_identity()
    if role not in _FULFILMENT_ROLES and not user_id:
        return unauthorized()

    body = request.get_json(silent=True) or {}
    try:
        payload = RedemptionAdvanceModel(**body)
    except ValidationError as e:
        return _bad_body(e)

    service = get_engine().redemption_service
    try:
        if role not in _FULFILMENT_ROLES:
            req = service.get_redemption(request_id)
            if req.consumer != user_id or payload.status is not RedemptionStatus.CANCELLED:
                return forbidden()
        req = service.advance_redemption(
            request_id, payload.status, actor=user_id, tracking_number=payload.trackingNumber,
        )
    except CoffeeEngineError as e:
        return error_response(e)

    current_app.logger.info("redemption %s -> %s by %s", request_id, req.status.value, user_id or role.value)
    return jsonify({"ok": True, "redemption": req.to_doc()})
