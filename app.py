# app.py (Render + Local working)

from flask import Flask
from flask_cors import CORS
from datetime import timedelta
import logging
import os

from flask_jwt_extended import JWTManager

from coffee_backend.app_config import load_config
from coffee_backend.blockchain import init_blockchain
from coffee_backend.mongo import init_mongo
from coffee_backend.mongo_safe import get_db
from coffee_backend.register_blueprints import register_all_blueprints
from coffee_backend.services.engine import init_engine


def create_app():
    app = Flask(__name__)

    # -------------------------
    # Config & security
    # -------------------------
    load_config(app)
    app.secret_key = app.config["SECRET_KEY"]
    app.permanent_session_lifetime = timedelta(days=7)
    app.logger.setLevel(logging.INFO)

    CORS(app, resources={r"/*": {"origins": "*"}})

    # -------------------------
    # Mongo
    # -------------------------
    DISABLE_MONGO = os.getenv("DISABLE_MONGO", "0") == "1"
    if DISABLE_MONGO:
        print("⚠️ Mongo disabled by DISABLE_MONGO=1")
    else:
        init_mongo(app)
        print("✅ Mongo init attempted")

    # -------------------------
    # JWT
    # -------------------------
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=6)
    app.config["JWT_REFRESH_TOKEN_EXPIRES"] = timedelta(days=14)
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]
    app.config["JWT_HEADER_TYPE"] = "Bearer"
    JWTManager(app)

    # -------------------------
    # Ledger + engine
    # -------------------------
    init_blockchain(app)
    with app.app_context():
        init_engine(app, db=None if DISABLE_MONGO else get_db())

    # -------------------------
    # Blueprints
    # -------------------------
    register_all_blueprints(app)

    return app


# gunicorn entry point (gunicorn app:app)
app = create_app()


# Local run only
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=5000, debug=True)
