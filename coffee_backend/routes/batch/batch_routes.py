# coffee_backend/routes/batch/batch_routes.py
from flask import Blueprint, jsonify, request

from coffee_backend.routes.identity import current_identity, error_response
from coffee_backend.services.disclosure.disclosure_service import resolve_disclosure
from coffee_backend.services.engine import get_engine
from coffee_backend.services.errors import CoffeeEngineError

batch_bp = Blueprint("batches", __name__, url_prefix="/api/batches")


@batch_bp.get("")
def list_batches():
    role, _ = current_identity()
    after = request.args.get("after", type=int)
    limit = request.args.get("limit", type=int)
    try:
        batches = get_engine().batches.list_batches(after=after, limit=limit)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({
        "ok": True,
        "role": role.value,
        "batches": [resolve_disclosure(b, role).to_dict() for b in batches],
    })


@batch_bp.get("/<int:batch_id>")
def get_batch(batch_id):
    role, _ = current_identity()
    try:
        batch = get_engine().batches.get_batch(batch_id)
    except CoffeeEngineError as e:
        return error_response(e)
    return jsonify({"ok": True, "batch": resolve_disclosure(batch, role).to_dict()})
