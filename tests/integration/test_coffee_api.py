"""
FastAPI mobile router with bearer JWTs and an in-process engine.
"""

import time

import jwt
import pytest
from fastapi.testclient import TestClient

from coffee_backend.fastapi import coffee_api
from coffee_backend.models.batch.batch_models import DAY, Batch, VerificationConfig
from coffee_backend.services.engine import build_engine
from server import app


def token(role, user_id="U1", kind="access", ttl=3600):
    now = int(time.time())
    payload = {"sub": user_id, "user": {"userId": user_id, "role": role}, "type": kind,
               "iat": now, "exp": now + ttl}
    return jwt.encode(payload, coffee_api.JWT_SECRET_KEY, algorithm="HS256")


def auth(role, user_id="U1"):
    return {"Authorization": f"Bearer {token(role, user_id)}"}


@pytest.fixture
def engine():
    now = int(time.time())
    eng = build_engine(defaults=VerificationConfig())
    eng.batches.upsert_batch(Batch(
        batchId=1, quantity=50, productionDate=now - 10 * DAY, expiryDate=now + 100 * DAY,
        lastVerifiedTimestamp=now - DAY, pricePerUnit=12.0, qualityScore=88,
        privacyConfig={"pricing": {"level": "private"}, "quality": {"level": "public"}},
    ))
    eng.balances.set_balance(1, "U1", 4)
    return eng


@pytest.fixture
def client(engine):
    app.dependency_overrides[coffee_api.get_engine] = lambda: engine
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuth:

    def test_missing_token(self, client):
        assert client.get("/api/v1/coffee/batches/1").status_code == 401

    def test_refresh_token_rejected(self, client):
        r = client.get("/api/v1/coffee/batches/1",
                       headers={"Authorization": f"Bearer {token('admin', kind='refresh')}"})
        assert r.status_code == 401

    def test_expired_token(self, client):
        r = client.get("/api/v1/coffee/batches/1",
                       headers={"Authorization": f"Bearer {token('admin', ttl=-10)}"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Token expired"


class TestCoffeeApi:

    def test_projection_by_role(self, client):
        pub = client.get("/api/v1/coffee/batches/1", headers=auth("consumer")).json()["batch"]
        assert pub["pricing"]["outcome"] == "hidden"
        assert pub["quality"]["value"] == 88

        admin = client.get("/api/v1/coffee/batches/1", headers=auth("admin")).json()["batch"]
        assert admin["pricing"]["value"] == 12.0

    def test_status_and_inventory(self, client):
        assert client.get("/api/v1/coffee/batches/1/status", headers=auth("admin")).json()["status"] == "Verified"
        inv = client.get("/api/v1/coffee/inventory", headers=auth("admin")).json()
        assert inv["stats"]["totalBatches"] == 1

    def test_not_found(self, client):
        r = client.get("/api/v1/coffee/batches/2", headers=auth("admin"))
        assert r.status_code == 404
        assert r.json()["detail"] == "batch_not_found"

    def test_redemption_flow(self, client, engine):
        r = client.post("/api/v1/coffee/redemptions", headers=auth("consumer"),
                        json={"batchId": 1, "quantity": 4, "deliveryInfo": {"address": "9 Bean Ave"}})
        assert r.status_code == 201
        rid = r.json()["redemption"]["id"]

        r = client.post("/api/v1/coffee/redemptions", headers=auth("consumer"),
                        json={"batchId": 1, "quantity": 1, "deliveryInfo": {"address": "9 Bean Ave"}})
        assert r.status_code == 409
        assert r.json()["detail"] == "insufficient_balance"

        staff = auth("distributor", "D1")
        assert client.put(f"/api/v1/coffee/redemptions/{rid}", headers=staff,
                          json={"status": "Processing"}).status_code == 200
        r = client.put(f"/api/v1/coffee/redemptions/{rid}", headers=staff, json={"status": "Fulfilled"})
        assert r.json()["redemption"]["status"] == "Fulfilled"
        assert engine.balances.get_balance(1, "U1") == 0

    def test_consumer_can_cancel_own(self, client, engine):
        rid = client.post("/api/v1/coffee/redemptions", headers=auth("consumer"),
                          json={"batchId": 1, "quantity": 2, "deliveryInfo": {"address": "9 Bean Ave"}}
                          ).json()["redemption"]["id"]
        other = auth("consumer", "U2")
        assert client.put(f"/api/v1/coffee/redemptions/{rid}", headers=other,
                          json={"status": "Cancelled"}).status_code == 403
        r = client.put(f"/api/v1/coffee/redemptions/{rid}", headers=auth("consumer"), json={"status": "Cancelled"})
        assert r.status_code == 200
        assert engine.balances.get_reserved(1, "U1") == 0

    def test_invalid_body(self, client):
        r = client.post("/api/v1/coffee/redemptions", headers=auth("consumer"),
                        json={"batchId": 1, "quantity": 0, "deliveryInfo": {"address": "x"}})
        assert r.status_code == 422

    def test_balances(self, client, engine):
        engine.balances.credit(1, "U2", 3)
        mine = client.get("/api/v1/coffee/balances", headers=auth("consumer")).json()
        assert mine["balances"] == [{"batchId": 1, "holder": "U1", "balance": 4, "reserved": 0}]

        # consumers cannot peek at other holders
        other = client.get("/api/v1/coffee/balances?holder=U2", headers=auth("consumer")).json()
        assert other["holder"] == "U1"

        staff = client.get("/api/v1/coffee/balances?holder=U2", headers=auth("distributor", "D1")).json()
        assert staff["balances"][0]["balance"] == 3
