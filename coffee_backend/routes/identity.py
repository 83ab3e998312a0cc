# coffee_backend/routes/identity.py
"""
Who is calling: the web session first (set at login), then a bearer JWT.

JWT identities come in two shapes: the mobile API puts the user dict under
the "user" claim, Flask-JWT-Extended tokens carry a string sub plus a "role"
claim. Anything unrecognised is Public with no user id.
"""
from __future__ import annotations

from typing import Optional, Tuple

from flask import jsonify, session
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt import PyJWTError

from coffee_backend.models.batch.disclosure_models import Role


def _from_jwt() -> Tuple[Optional[str], Optional[str]]:
    try:
        if not verify_jwt_in_request(optional=True):
            return None, None
    except (JWTExtendedException, PyJWTError):
        # bad/expired token on a public endpoint: treat as anonymous
        return None, None

    claims = get_jwt() or {}
    user = claims.get("user")
    if isinstance(user, dict):
        return user.get("role"), user.get("userId")
    return claims.get("role"), get_jwt_identity()


def current_identity() -> Tuple[Role, Optional[str]]:
    role = session.get("role") or session.get("user_role")
    user_id = session.get("user_id")
    if not role:
        role, jwt_user = _from_jwt()
        user_id = user_id or jwt_user
    return Role.parse(role), (str(user_id) if user_id else None)


def error_response(err):
    return jsonify(err.to_dict()), err.http_status


def unauthorized():
    return jsonify({"ok": False, "err": "unauthorized"}), 401


def forbidden():
    return jsonify({"ok": False, "err": "forbidden"}), 403
