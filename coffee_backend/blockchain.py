# coffee_backend/blockchain.py
"""
Read-only helpers around the coffee batch token contract (ERC-1155).

The web3 client and contract are built lazily from env so importing this
module never needs a node:

    LEDGER_RPC_URL        e.g. https://rpc-amoy.polygon.technology
    COFFEE_TOKEN_ADDRESS  deployed contract address

Every helper logs and returns None / [] when the ledger can't be read;
callers decide whether a missing answer matters.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Dict, List, Optional

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

logger = logging.getLogger(__name__)

COFFEE_TOKEN_ABI: List[Dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "account", "type": "address"},
            {"name": "id", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "s_batchInfo",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "", "type": "uint256"}],
        "outputs": [
            {"name": "productionDate", "type": "uint256"},
            {"name": "expiryDate", "type": "uint256"},
            {"name": "isVerified", "type": "bool"},
            {"name": "currentQuantity", "type": "uint256"},
            {"name": "pricePerUnit", "type": "uint256"},
            {"name": "packagingInfo", "type": "string"},
            {"name": "metadataHash", "type": "string"},
            {"name": "isMetadataVerified", "type": "bool"},
            {"name": "lastVerifiedTimestamp", "type": "uint256"},
        ],
    },
    {
        "name": "getActiveBatchIds",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256[]"}],
    },
]

BATCH_INFO_FIELDS = (
    "productionDate",
    "expiryDate",
    "isVerified",
    "currentQuantity",
    "pricePerUnit",
    "packagingInfo",
    "metadataHash",
    "isMetadataVerified",
    "lastVerifiedTimestamp",
)

_lock = threading.Lock()
_web3: Optional[Web3] = None
_contract = None


def get_web3() -> Optional[Web3]:
    global _web3
    rpc = (os.getenv("LEDGER_RPC_URL") or "").strip()
    if not rpc:
        return None
    with _lock:
        if _web3 is None:
            w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": 30}))
            w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            _web3 = w3
        return _web3


def get_contract():
    """Coffee token contract, or None when the ledger isn't configured."""
    global _contract
    if _contract is not None:
        return _contract
    addr = (os.getenv("COFFEE_TOKEN_ADDRESS") or "").strip()
    w3 = get_web3()
    if not addr or w3 is None:
        return None
    with _lock:
        if _contract is None:
            _contract = w3.eth.contract(address=Web3.to_checksum_address(addr), abi=COFFEE_TOKEN_ABI)
        return _contract


def reset() -> None:
    """Drop cached client/contract (env changed, tests)."""
    global _web3, _contract
    with _lock:
        _web3 = None
        _contract = None


# -------------------------------------------------------------------
# Read helpers
# -------------------------------------------------------------------
def get_batch_info(batch_id: int, contract=None) -> Optional[Dict[str, Any]]:
    c = contract or get_contract()
    if c is None:
        return None
    try:
        raw = c.functions.s_batchInfo(int(batch_id)).call()
    except Exception as e:
        logger.error("s_batchInfo(%s) failed: %s", batch_id, e)
        return None
    return dict(zip(BATCH_INFO_FIELDS, raw))


def get_token_balance(batch_id: int, holder: str, contract=None) -> Optional[int]:
    c = contract or get_contract()
    if c is None:
        return None
    try:
        owner = Web3.to_checksum_address(holder)
        return int(c.functions.balanceOf(owner, int(batch_id)).call())
    except Exception as e:
        logger.error("balanceOf(%s, %s) failed: %s", holder, batch_id, e)
        return None


def get_active_batch_ids(contract=None) -> List[int]:
    c = contract or get_contract()
    if c is None:
        return []
    try:
        return [int(i) for i in c.functions.getActiveBatchIds().call()]
    except Exception as e:
        logger.error("getActiveBatchIds() failed: %s", e)
        return []


def init_blockchain(app: Any) -> None:
    """Report ledger wiring at startup; nothing connects until first use."""
    print("⧉ Initializing Blockchain…")
    app.config["LEDGER_RPC_URL"] = os.getenv("LEDGER_RPC_URL") or None
    app.config["COFFEE_TOKEN_ADDRESS"] = os.getenv("COFFEE_TOKEN_ADDRESS") or None
    if app.config["LEDGER_RPC_URL"] and app.config["COFFEE_TOKEN_ADDRESS"]:
        print("✓ Ledger configured")
        print(f"  • RPC: {app.config['LEDGER_RPC_URL']}")
        print(f"  • Coffee token: {app.config['COFFEE_TOKEN_ADDRESS']}")
    else:
        print("⚠️ Ledger not configured (LEDGER_RPC_URL / COFFEE_TOKEN_ADDRESS); sync disabled")
