"""Pytest configuration and shared fixtures."""

import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Optional

import pytest

from savings_app.auth.artifacts import PermitAuthorization, SubscriptionAuthorization
from savings_app.auth.signing import AccountKey
from savings_app.config.defaults import LedgerParams
from savings_app.ledger.machine import PlanLedger
from savings_app.ledger.node import LedgerNode
from savings_app.ledger.tokens import FungibleToken, TokenRegistry
from savings_app.relayer.client import LocalLedgerClient

DAY = 86400
START_TIME = 1_700_000_000
SAVINGS_TOKEN = "0x00000000000000000000000000000000000051a5"
OTHER_TOKEN = "0x000000000000000000000000000000000000beef"
OWNER_FUNDING = 10_000_000


class FakeClock:
    """Ledger clock under test control."""

    def __init__(self, start: int = START_TIME):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@dataclass
class LedgerHarness:
    """A configured ledger with its tokens and the accounts that use it."""
    ledger: PlanLedger
    clock: FakeClock
    admin: AccountKey
    owner: AccountKey
    relayer: AccountKey
    token: FungibleToken
    other_token: FungibleToken
    reward: FungibleToken

    def subscription(
        self,
        amount: int = 100,
        interval: int = DAY,
        key: Optional[AccountKey] = None,
        nonce: Optional[int] = None,
        deadline: Optional[int] = None,
        token: Optional[str] = None
    ) -> SubscriptionAuthorization:
        key = key or self.owner
        return SubscriptionAuthorization.create(
            key,
            self.ledger.domain,
            token or self.token.address,
            amount,
            interval,
            self.ledger.authorization_nonce(key.address) if nonce is None else nonce,
            self.clock.now + 3600 if deadline is None else deadline,
        )

    def permit(self, value: int, key: Optional[AccountKey] = None,
               deadline: Optional[int] = None) -> PermitAuthorization:
        key = key or self.owner
        return PermitAuthorization.create(
            key,
            self.token.domain(self.ledger.params.chain_id),
            self.ledger.address,
            value,
            self.token.nonce_of(key.address),
            self.clock.now + 3600 if deadline is None else deadline,
        )

    def create_plan(self, amount: int = 100, interval: int = DAY,
                    key: Optional[AccountKey] = None) -> str:
        key = key or self.owner
        self.token.approve(key.address, self.ledger.address, amount * 1000)
        return self.ledger.create_plan(
            self.relayer.address, key.address, self.token.address, amount, interval,
            self.subscription(amount, interval, key=key),
        )

    def set_fee(self, base_fee: int = 0, percent_fee_bps: int = 0, active: bool = True,
                fee_token: Optional[str] = None) -> None:
        self.ledger.set_fee_policy(self.admin.address, fee_token or self.token.address,
                                   base_fee, percent_fee_bps, active)


def build_harness(clock: Optional[FakeClock] = None, yield_rate_bps: int = 500) -> LedgerHarness:
    clock = clock or FakeClock()
    admin = AccountKey.generate()
    owner = AccountKey.generate()
    relayer = AccountKey.generate()
    params = LedgerParams()

    token = FungibleToken(SAVINGS_TOKEN, "SaveUSD", admin=admin.address, minter=admin.address)
    other_token = FungibleToken(OTHER_TOKEN, "Other", admin=admin.address, minter=admin.address)
    reward = FungibleToken(params.reward_token, "SaveReward", admin=admin.address)
    token.mint(admin.address, owner.address, OWNER_FUNDING)
    other_token.mint(admin.address, owner.address, OWNER_FUNDING)

    ledger = PlanLedger(admin.address, TokenRegistry([token, other_token, reward]), params,
                        clock=clock)
    reward.set_minter(admin.address, ledger.address)
    ledger.set_token_policy(admin.address, token.address, yield_rate_bps, True)
    ledger.set_relayer_role(admin.address, relayer.address, True)

    return LedgerHarness(ledger=ledger, clock=clock, admin=admin, owner=owner,
                         relayer=relayer, token=token, other_token=other_token, reward=reward)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def harness(clock) -> LedgerHarness:
    """Ledger with the savings token allowed at 5% and one relayer."""
    return build_harness(clock)


@pytest.fixture
def node(harness) -> LedgerNode:
    return LedgerNode(harness.ledger)


@pytest.fixture
def relayer_client(harness, node) -> LocalLedgerClient:
    return LocalLedgerClient(node, harness.relayer, receipt_timeout=1.0,
                             sleep=lambda seconds: None)


@pytest.fixture
def temp_db():
    """Path to a throwaway SQLite database."""
    temp_dir = tempfile.mkdtemp()
    yield os.path.join(temp_dir, "relayer.db")
    shutil.rmtree(temp_dir)
