#!/usr/bin/env python3
"""
Local development ledger.

Hosts a savings token and the reward token, configures the ledger the way
the production deployment is configured (token allowed at 5% yield, ledger as
reward minter, fee policy in the savings token) and serves the JSON RPC on
HTTP. Keys for the administrator and a funded owner are printed on start.

Usage:
    SAVINGS_RELAYER_KEY=0x... python scripts/serve_ledger.py --port 8545
"""

import argparse
import os
import sys
from pathlib import Path

import uvicorn

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from savings_app.auth.signing import AccountKey
from savings_app.config.loader import ConfigLoader
from savings_app.engine import RELAYER_KEY_ENV
from savings_app.ledger import (
    FungibleToken,
    LedgerNode,
    LedgerRpcHandler,
    PlanLedger,
    TokenRegistry,
    create_rpc_app,
)
from savings_app.logging.config import configure_from_params

SAVINGS_TOKEN = "0x00000000000000000000000000000000000051a5"
OWNER_FUNDING = 1_000_000 * 10 ** 18


def main():
    parser = argparse.ArgumentParser(description="Serve a local savings ledger")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8545)
    parser.add_argument("--config-dir", type=Path, default=None)
    args = parser.parse_args()

    config = ConfigLoader.create(args.config_dir).load()
    configure_from_params(config.logging)

    admin = AccountKey.generate()
    owner = AccountKey.generate()

    reward = FungibleToken(config.ledger.reward_token, "SaveReward", admin=admin.address)
    savings_token = FungibleToken(SAVINGS_TOKEN, "SaveUSD", admin=admin.address,
                                  minter=admin.address)
    savings_token.mint(admin.address, owner.address, OWNER_FUNDING)

    ledger = PlanLedger(admin.address, TokenRegistry([reward, savings_token]), config.ledger)
    reward.set_minter(admin.address, ledger.address)
    ledger.set_token_policy(admin.address, SAVINGS_TOKEN, 500, True)
    ledger.set_fee_policy(admin.address, SAVINGS_TOKEN, 0, 100, True)

    relayer_hex = os.environ.get(RELAYER_KEY_ENV)
    if relayer_hex:
        relayer = AccountKey.from_private_hex(relayer_hex)
        ledger.set_relayer_role(admin.address, relayer.address, True)
        print(f"Relayer role granted to {relayer.address}")

    app = create_rpc_app(LedgerRpcHandler(LedgerNode(ledger)))
    print(f"Admin key:  {admin.private_hex()} ({admin.address})")
    print(f"Owner key:  {owner.private_hex()} ({owner.address})")
    print(f"Savings token: {SAVINGS_TOKEN}")
    print(f"Serving ledger {ledger.address} at http://{args.host}:{args.port}/")

    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=config.logging.level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
