# coffee_backend/services/errors.py
from __future__ import annotations

from typing import Any, Dict


class CoffeeEngineError(Exception):
    """
    Base error for the batch engine.
    `code` is the stable string the HTTP layers return as `err`.
    """

    code = "engine_error"
    http_status = 400

    def __init__(self, message: str = "", **context: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context: Dict[str, Any] = context

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": False, "err": self.code, "message": self.message}
        if self.context:
            out["context"] = self.context
        return out


class InvalidInput(CoffeeEngineError):
    code = "invalid_input"
    http_status = 400


class BatchNotRedeemable(InvalidInput):
    code = "batch_not_redeemable"
    http_status = 409


class InsufficientBalance(CoffeeEngineError):
    code = "insufficient_balance"
    http_status = 409


class InvalidTransition(CoffeeEngineError):
    code = "invalid_transition"
    http_status = 409


class BatchNotFound(CoffeeEngineError):
    code = "batch_not_found"
    http_status = 404


class RedemptionNotFound(CoffeeEngineError):
    code = "redemption_not_found"
    http_status = 404


class ConfigMissing(CoffeeEngineError):
    code = "config_missing"
    http_status = 503



class LedgerUnavailable(CoffeeEngineError):
    code = "ledger_unavailable"
    http_status = 502
