#!/usr/bin/env python3
"""
System readiness check.

Reports, for the configured ledger, whether a token is allowed for savings
plans (and its yield rate), whether the ledger can mint the reward token, and
whether the relayer key holds the relayer role.

Usage:
    SAVINGS_RELAYER_KEY=0x... python scripts/check_system.py --token 0x...
"""

import argparse
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from savings_app.config.loader import ConfigLoader
from savings_app.engine import load_relayer_key
from savings_app.errors import ConfigurationError, LedgerError, SystemFailureError
from savings_app.relayer.client import HttpLedgerClient
from savings_app.rewards.yield_calc import annual_rate_percent


def main():
    parser = argparse.ArgumentParser(description="Check savings ledger readiness")
    parser.add_argument("--token", help="Token to check (default: reward token)")
    parser.add_argument("--config-dir", type=Path, default=None)
    args = parser.parse_args()

    config = ConfigLoader.create(args.config_dir).load()
    token = args.token or config.ledger.reward_token

    try:
        key = load_relayer_key()
    except ConfigurationError as e:
        print(f"❌ {e}")
        sys.exit(1)

    client = HttpLedgerClient(config.relayer.rpc_url, key,
                              timeout_seconds=config.relayer.request_timeout_seconds)

    print("Checking system configuration...")
    print(f"  Ledger:  {config.ledger.address}")
    print(f"  RPC:     {config.relayer.rpc_url}")
    print(f"  Relayer: {client.address}")

    try:
        policy = client.token_policy(token)
        minter_ok = client.is_reward_minter()
        relayer_ok = client.is_relayer()
    except (LedgerError, SystemFailureError) as e:
        print(f"❌ Error checking system: {e}")
        sys.exit(1)

    token_ok = bool(policy and policy.allowed)
    if policy:
        print(f"Token configuration: Yield Rate = {annual_rate_percent(policy.yield_rate_bps)}%, "
              f"Allowed = {policy.allowed}")
    else:
        print(f"Token configuration: none for {token}")
    print(f"Ledger is reward minter: {minter_ok}")
    print(f"Relayer role granted: {relayer_ok}")

    if token_ok and minter_ok and relayer_ok:
        print("\n✅ System ready")
        sys.exit(0)
    print("\n❌ System not ready")
    sys.exit(1)


if __name__ == "__main__":
    main()
