"""Tests for transaction authentication, ordering and receipts."""

from dataclasses import replace

import pytest

from savings_app.auth.artifacts import authorization_to_dict
from savings_app.auth.signing import AccountKey
from savings_app.errors import InvalidTransaction
from savings_app.ledger.node import METHOD_COSTS, ReceiptStatus, SignedTransaction, TxReceipt

DAY = 86400


def create_params(harness, amount: int = 100, interval: int = DAY) -> dict:
    return {
        "owner": harness.owner.address,
        "token": harness.token.address,
        "amount_per_interval": str(amount),
        "interval": str(interval),
    }


class TestSignedTransaction:
    """Test transaction envelopes."""

    def test_hash_covers_params(self, harness):
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": "0x01"}, "t1")
        other = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": "0x02"}, "t1")
        assert tx.tx_hash != other.tx_hash

    def test_sender_case_does_not_change_digest(self, harness):
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": "0x01"}, "t1")
        shouted = replace(tx, sender=tx.sender.upper().replace("0X", "0x"))
        assert shouted.digest() == tx.digest()

    def test_from_dict_rejects_non_string_envelope(self, harness):
        data = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": "0x01"}).to_dict()
        data["tx_id"] = 7
        with pytest.raises(InvalidTransaction):
            SignedTransaction.from_dict(data)


class TestSubmission:
    """Test inclusion of signed transactions."""

    def test_owner_creates_plan_directly(self, harness, node):
        harness.token.approve(harness.owner.address, harness.ledger.address, 10_000)
        tx = SignedTransaction.create(harness.owner, "create_plan", create_params(harness))

        receipt = node.submit(tx)

        assert receipt.succeeded
        assert receipt.cost_paid == METHOD_COSTS["create_plan"]
        assert receipt.height == harness.ledger.height
        plan = harness.ledger.get_plan(receipt.result)
        assert plan.owner == harness.owner.address
        assert plan.amount_per_interval == 100

    def test_relayer_creates_plan_with_subscription(self, harness, node):
        harness.token.approve(harness.owner.address, harness.ledger.address, 10_000)
        params = create_params(harness)
        params["authorization"] = authorization_to_dict(harness.subscription())
        tx = SignedTransaction.create(harness.relayer, "create_plan", params)

        receipt = node.submit(tx)

        assert receipt.succeeded
        assert harness.ledger.authorization_nonce(harness.owner.address) == 1

    def test_rule_violation_yields_failed_receipt_with_cost(self, harness, node):
        plan_id = harness.create_plan(amount=100)
        height = harness.ledger.height
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": plan_id})

        receipt = node.submit(tx)

        assert receipt.status == ReceiptStatus.FAILED
        assert receipt.error_code == "too_soon"
        assert receipt.cost_paid == METHOD_COSTS["execute_plan"]
        assert harness.ledger.height == height
        assert node.get_receipt(receipt.tx_hash) == receipt

    def test_execute_returns_quote(self, harness, node):
        plan_id = harness.create_plan(amount=100_000)
        harness.clock.advance(DAY)
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": plan_id})

        receipt = node.submit(tx)

        assert receipt.succeeded
        assert receipt.result["amount_saved"] == "100000"
        assert receipt.result["yield_amount"] == "13"
        assert receipt.result["fee_collected"] is False

    def test_malformed_authorization_fails_receipt(self, harness, node):
        params = create_params(harness)
        params["authorization"] = {"kind": "blank_cheque"}
        tx = SignedTransaction.create(harness.relayer, "create_plan", params)

        receipt = node.submit(tx)

        assert receipt.status == ReceiptStatus.FAILED
        assert receipt.error_code == "invalid_transaction"
        assert harness.ledger.plans_of(harness.owner.address) == []


class TestDeduplication:
    """Resubmitting a transaction id never re-executes it."""

    def test_same_tx_id_returns_original_receipt(self, harness, node):
        plan_id = harness.create_plan(amount=100)
        harness.clock.advance(DAY)
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": plan_id},
                                      tx_id="attempt-1")

        first = node.submit(tx)
        height = harness.ledger.height
        second = node.submit(tx)

        assert first.succeeded
        assert second == first
        assert harness.ledger.height == height
        assert harness.ledger.savings_balance(harness.owner.address, harness.token.address) == 100

    def test_same_tx_id_from_other_sender_is_separate(self, harness, node):
        second_relayer = AccountKey.generate()
        harness.ledger.set_relayer_role(harness.admin.address, second_relayer.address, True)
        plan_id = harness.create_plan(amount=100)
        harness.clock.advance(DAY)

        first = node.submit(SignedTransaction.create(
            harness.relayer, "execute_plan", {"plan_id": plan_id}, tx_id="shared"))
        second = node.submit(SignedTransaction.create(
            second_relayer, "execute_plan", {"plan_id": plan_id}, tx_id="shared"))

        assert first.succeeded
        assert not second.succeeded
        assert second.error_code == "too_soon"

    def test_failed_receipt_is_also_final(self, harness, node):
        plan_id = harness.create_plan(amount=100)
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": plan_id},
                                      tx_id="early")
        failed = node.submit(tx)

        harness.clock.advance(DAY)
        assert node.submit(tx) == failed
        assert harness.ledger.get_plan(plan_id).last_executed == harness.clock.now - DAY


class TestAuthentication:
    """Envelope problems are refused before anything is recorded."""

    def test_tampered_params_rejected(self, harness, node):
        plan_id = harness.create_plan(amount=100)
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {"plan_id": plan_id})
        tampered = replace(tx, params={"plan_id": "0x" + "00" * 32})

        with pytest.raises(InvalidTransaction):
            node.submit(tampered)
        assert node.get_receipt(tampered.tx_hash) is None

    def test_sender_must_match_public_key(self, harness, node):
        tx = SignedTransaction.create(harness.owner, "cancel_for",
                                      {"owner": harness.owner.address})
        spoofed = replace(tx, sender=harness.admin.address)

        with pytest.raises(InvalidTransaction):
            node.submit(spoofed)

    def test_unsigned_transaction_rejected(self, harness, node):
        tx = replace(SignedTransaction.create(harness.relayer, "withdraw_relayer_credit", {}),
                     signature="")
        with pytest.raises(InvalidTransaction):
            node.submit(tx)

    def test_unknown_method_rejected(self, harness, node):
        tx = SignedTransaction.create(harness.relayer, "mint_everything", {})
        with pytest.raises(InvalidTransaction) as exc_info:
            node.submit(tx)
        assert exc_info.value.tx_id == tx.tx_id

    def test_missing_params_rejected(self, harness, node):
        tx = SignedTransaction.create(harness.relayer, "execute_plan", {})
        with pytest.raises(InvalidTransaction, match="plan_id"):
            node.submit(tx)

    def test_malformed_quantity_rejected(self, harness, node):
        params = create_params(harness)
        params["amount_per_interval"] = "one hundred"
        tx = SignedTransaction.create(harness.owner, "create_plan", params)
        with pytest.raises(InvalidTransaction):
            node.submit(tx)

    def test_rejected_envelope_can_be_resubmitted_correctly(self, harness, node):
        harness.set_fee(base_fee=5)
        plan_id = harness.create_plan(amount=100)
        harness.clock.advance(DAY)
        harness.ledger.execute_plan(harness.relayer.address, plan_id)

        good = SignedTransaction.create(harness.relayer, "withdraw_relayer_credit", {},
                                        tx_id="withdraw-1")
        with pytest.raises(InvalidTransaction):
            node.submit(replace(good, signature=""))

        receipt = node.submit(good)
        assert receipt.succeeded
        assert receipt.result == "5"


class TestReceiptWireForm:
    """Test receipt dictionaries."""

    def test_failed_receipt_survives_wire(self, harness, node):
        tx = SignedTransaction.create(harness.relayer, "cancel_plan", {"plan_id": "0x" + "ab" * 32})
        receipt = node.submit(tx)

        data = receipt.to_dict()
        assert data["cost_paid"] == str(METHOD_COSTS["cancel_plan"])
        assert data["status"] == "failed"
        assert TxReceipt.from_dict(data) == receipt
