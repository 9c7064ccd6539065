"""Tests for the relayer's ledger clients."""

import socket
from unittest.mock import MagicMock, patch
from urllib.error import HTTPError, URLError

import orjson
import pytest

from savings_app.auth.signing import AccountKey
from savings_app.errors import (
    LedgerUnavailableError,
    NothingToWithdraw,
    ReceiptTimeoutError,
    TooSoon,
)
from savings_app.relayer.client import HttpLedgerClient, LocalLedgerClient

DAY = 86400


def http_response(body: dict) -> MagicMock:
    response = MagicMock()
    response.read.return_value = orjson.dumps(body)
    response.__enter__.return_value = response
    return response


class TestHttpLedgerClient:
    """Test the HTTP transport against a patched urlopen."""

    def setup_method(self):
        self.client = HttpLedgerClient("http://ledger.local:8545/", AccountKey.generate(),
                                       timeout_seconds=3.0)

    def test_rejects_relative_url(self):
        with pytest.raises(ValueError):
            HttpLedgerClient("ledger.local", AccountKey.generate())

    @patch("savings_app.relayer.client.urlopen")
    def test_request_shape(self, mock_urlopen):
        mock_urlopen.return_value = http_response({"id": 1, "result": "12"})

        assert self.client.current_height() == 12

        request = mock_urlopen.call_args.args[0]
        assert request.get_method() == "POST"
        assert request.full_url == "http://ledger.local:8545/"
        assert orjson.loads(request.data)["method"] == "head_height"
        assert mock_urlopen.call_args.kwargs["timeout"] == 3.0

    @patch("savings_app.relayer.client.urlopen")
    def test_ledger_error_is_rebuilt(self, mock_urlopen):
        mock_urlopen.return_value = http_response(
            {"id": 1, "error": {"code": "too_soon", "message": "wait"}})

        with pytest.raises(TooSoon, match="wait"):
            self.client.current_time()

    @patch("savings_app.relayer.client.urlopen")
    def test_malformed_response(self, mock_urlopen):
        response = MagicMock()
        response.read.return_value = b"<html>bad gateway</html>"
        response.__enter__.return_value = response
        mock_urlopen.return_value = response

        with pytest.raises(LedgerUnavailableError):
            self.client.current_height()

    @pytest.mark.parametrize("error", [
        HTTPError("http://ledger.local:8545/", 502, "Bad Gateway", {}, None),
        URLError("connection refused"),
        socket.timeout("timed out"),
    ])
    def test_transport_failures_are_unavailable(self, error):
        with patch("savings_app.relayer.client.urlopen", side_effect=error):
            with pytest.raises(LedgerUnavailableError) as exc_info:
                self.client.current_height()

        assert exc_info.value.recoverable
        assert exc_info.value.method == "head_height"


class TestLocalLedgerClient:
    """Test the in-process client against a live node."""

    def test_address_is_key_address(self, harness, relayer_client):
        assert relayer_client.address == harness.relayer.address

    def test_notifications_round_trip(self, harness, relayer_client):
        plan_id = harness.create_plan(amount=100)
        notifications = relayer_client.get_notifications(0, harness.ledger.height)
        created = [n for n in notifications if n.plan_id == plan_id]
        assert created[0].payload["amount_per_interval"] == 100

    def test_receipt_timeout(self, node, harness):
        client = LocalLedgerClient(node, harness.relayer, receipt_timeout=0.0,
                                   sleep=lambda seconds: None)
        with pytest.raises(ReceiptTimeoutError) as exc_info:
            client.wait_for_receipt("0x" + "00" * 32)
        assert exc_info.value.tx_hash == "0x" + "00" * 32

    def test_polls_until_receipt(self, node, harness):
        plan_id = harness.create_plan(amount=100)
        harness.clock.advance(DAY)
        polls = []
        client = LocalLedgerClient(node, harness.relayer, receipt_poll_interval=0.5,
                                   sleep=polls.append)
        tx_hash = client.submit_execute(plan_id)
        real_get_receipt = client.get_receipt
        calls = []

        def delayed(tx):
            calls.append(tx)
            return None if len(calls) <= 2 else real_get_receipt(tx)

        client.get_receipt = delayed
        receipt = client.wait_for_receipt(tx_hash)

        assert receipt.succeeded
        assert polls == [0.5, 0.5]

    def test_resubmission_with_same_id_is_not_reexecuted(self, harness, relayer_client):
        plan_id = harness.create_plan(amount=100)
        harness.clock.advance(DAY)

        first = relayer_client.execute_plan(plan_id, tx_id="tick-1")
        second = relayer_client.execute_plan(plan_id, tx_id="tick-1")

        assert first == second
        assert harness.ledger.savings_balance(harness.owner.address,
                                              harness.token.address) == 100

    def test_withdraw_credit(self, harness, relayer_client):
        harness.set_fee(base_fee=3)
        plan_id = harness.create_plan(amount=100)
        harness.clock.advance(DAY)
        relayer_client.execute_plan(plan_id)

        assert relayer_client.relayer_credit() == 3
        receipt = relayer_client.withdraw_relayer_credit()
        assert receipt.succeeded
        assert relayer_client.relayer_credit() == 0

        again = relayer_client.withdraw_relayer_credit()
        assert again.error_code == NothingToWithdraw.code
