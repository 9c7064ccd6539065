#!/usr/bin/env python3
"""
Basic Usage Example - Daily Savings Ledger and Relayer

This script runs a ledger node and a relayer engine in one process with a
simulated clock. It shows how to:
- Host tokens and configure the ledger (token policy, fee policy, relayer role)
- Create a plan from an owner-signed subscription submitted by the relayer
- Let the relayer discover and execute the plan day after day
- Withdraw the relayer's accrued fee credit

Run: python examples/basic_usage.py
"""

import tempfile
from dataclasses import replace
from pathlib import Path

from savings_app.auth import AccountKey, SubscriptionAuthorization, authorization_to_dict
from savings_app.config.defaults import get_default_config
from savings_app.engine import SavingsRelayerEngine
from savings_app.ledger import FungibleToken, LedgerNode, PlanLedger, TokenRegistry
from savings_app.relayer import LocalLedgerClient

DAY = 86400
SAVINGS_TOKEN = "0x00000000000000000000000000000000000051a5"


class SimulatedClock:
    """Ledger time that only moves when the example says so."""

    def __init__(self, start: int = 1_700_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now


def main():
    print("Daily Savings - Basic Usage Example")
    print("=" * 50)

    config = get_default_config()
    clock = SimulatedClock()
    admin, owner, relayer = AccountKey.generate(), AccountKey.generate(), AccountKey.generate()

    # 1. Host tokens and configure the ledger
    token = FungibleToken(SAVINGS_TOKEN, "SaveUSD", admin=admin.address, minter=admin.address)
    reward = FungibleToken(config.ledger.reward_token, "SaveReward", admin=admin.address)
    token.mint(admin.address, owner.address, 1_000_000)

    ledger = PlanLedger(admin.address, TokenRegistry([token, reward]), config.ledger,
                        clock=clock)
    reward.set_minter(admin.address, ledger.address)
    ledger.set_token_policy(admin.address, SAVINGS_TOKEN, 500, True)
    ledger.set_fee_policy(admin.address, SAVINGS_TOKEN, 10, 100, True)
    ledger.set_relayer_role(admin.address, relayer.address, True)
    node = LedgerNode(ledger)
    client = LocalLedgerClient(node, relayer)
    print(f"Ledger {ledger.address} at height {ledger.height}")

    # 2. Owner approves the ledger and signs a subscription; relayer submits it
    token.approve(owner.address, ledger.address, 100_000)
    subscription = SubscriptionAuthorization.create(
        owner, ledger.domain, SAVINGS_TOKEN, 10_000, DAY,
        ledger.authorization_nonce(owner.address), clock.now + 3600,
    )
    receipt = client.send("create_plan", {
        "owner": owner.address,
        "token": SAVINGS_TOKEN,
        "amount_per_interval": "10000",
        "interval": str(DAY),
        "authorization": authorization_to_dict(subscription),
    })
    print(f"Plan created: {receipt.result} (cost {receipt.cost_paid})")

    # 3. Relayer discovers and executes the plan each simulated day
    with tempfile.TemporaryDirectory() as temp_dir:
        engine_config = replace(config, store=replace(config.store,
                                                      db_path=str(Path(temp_dir) / "relayer.db")))
        engine = SavingsRelayerEngine(engine_config, client=client)
        engine.executor.clock = clock

        for day in range(1, 6):
            clock.now += DAY
            summary = engine.run_once()
            outcomes = [e["outcome"] for e in summary["executions"]]
            print(f"Day {day}: executions={outcomes}")

        stats = engine.get_runtime_stats()
        engine.stop()
        print(f"Relayer stats: {stats}")

    # 4. Balances and fee credit
    print(f"Owner savings: {ledger.savings_balance(owner.address, SAVINGS_TOKEN)}")
    print(f"Owner rewards: {reward.balance_of(owner.address)}")
    print(f"Relayer credit: {client.relayer_credit()}")
    withdrawal = client.withdraw_relayer_credit()
    print(f"Credit withdrawn: {withdrawal.result}")
    print(f"Relayer token balance: {token.balance_of(relayer.address)}")


if __name__ == "__main__":
    main()
