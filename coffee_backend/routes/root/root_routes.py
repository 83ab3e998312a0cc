# coffee_backend/routes/root/root_routes.py

import time

from flask import Blueprint, jsonify

from coffee_backend.services.engine import get_engine

# Root blueprint
root_bp = Blueprint("root", __name__)


@root_bp.get("/_health")
def health():
    return jsonify({
        "ok": True,
        "service": "coffee-engine",
        "stores": get_engine().backend,
        "ts": int(time.time()),
    })
