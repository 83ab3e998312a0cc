# server.py (mobile API)
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coffee_backend.fastapi.coffee_api import auth_identity, router as coffee_router

app = FastAPI(title="Coffee Batch Mobile API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- include routers ---
app.include_router(coffee_router)


# --- diagnostics ---
@app.get("/_health")
def _health():
    return {"ok": True, "service": "fastapi-mobile", "ts": int(datetime.now(timezone.utc).timestamp())}


@app.get("/_whoami")
def _whoami(identity=Depends(auth_identity)):
    return {"ok": True, "identity": identity}
