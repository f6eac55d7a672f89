# tests/test_chain.py
"""
Tests for ChainClient: call routing, the transaction recipe, revert replay.

The node is a MagicMock behind a real Web3 (see conftest); signing is real.
"""

from __future__ import annotations

import threading

import pytest
import requests
from eth_utils import encode_hex
from hexbytes import HexBytes
from web3.exceptions import ContractLogicError, TimeExhausted

from receiv3.abi import INVOICE_NFT_ABI
from receiv3.chain import ChainClient
from receiv3.errors import (
    ConfigurationError,
    ContractRevertError,
    TransportError,
)

from conftest import CHAIN_ID, HARDHAT_ADDRESS, NFT_ADDRESS, TX_HASH, calldata, make_receipt

CALLDATA = calldata(INVOICE_NFT_ABI, "verifyShipment", 1)


@pytest.fixture
def verify_fn(nft):
    """contract.functions.verifyShipment(1) on the bound InvoiceNFT."""
    return nft.contract.functions.verifyShipment(1)


# =============================================================================
# Tests: construction
# =============================================================================


class TestConstruction:
    def test_signer_from_key(self, client):
        assert client.address == HARDHAT_ADDRESS
        assert client.can_sign

    def test_read_only(self, read_only_client):
        assert read_only_client.address is None
        assert not read_only_client.can_sign

    def test_invalid_key(self, w3):
        with pytest.raises(ConfigurationError, match="Invalid PRIVATE_KEY"):
            ChainClient(w3, private_key="0x1234")

    def test_invalid_key_is_not_echoed(self, w3):
        with pytest.raises(ConfigurationError) as exc_info:
            ChainClient(w3, private_key="0xnot-a-key")
        assert "not-a-key" not in str(exc_info.value)

    def test_chain_id_from_node_when_unset(self, w3):
        assert ChainClient(w3).chain_id == CHAIN_ID

    def test_configured_chain_id_wins(self, w3):
        assert ChainClient(w3, chain_id=4202).chain_id == 4202
        assert ChainClient(w3, chain_id=4202).node_chain_id() == CHAIN_ID

    def test_contract_is_web3_contract(self, client):
        contract = client.contract(NFT_ADDRESS, INVOICE_NFT_ABI.abi)
        assert contract.address == NFT_ADDRESS
        assert contract.functions.verifyShipment(1).abi["name"] == "verifyShipment"


# =============================================================================
# Tests: reads
# =============================================================================


class TestReads:
    def test_call_sends_signer_as_from(self, client, node, verify_fn):
        client.call(verify_fn)
        tx, block = node.calls[-1]
        assert tx["from"] == HARDHAT_ADDRESS
        assert tx["to"] == NFT_ADDRESS
        assert tx["data"] == CALLDATA
        assert block == "latest"

    def test_read_only_call_has_no_from(self, read_only_client, node, verify_fn):
        read_only_client.call(verify_fn, "pending")
        tx, block = node.calls[-1]
        assert "from" not in tx
        assert block == "pending"

    def test_call_connection_error_is_transport(self, client, w3, verify_fn):
        w3.eth.call.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(TransportError):
            client.call(verify_fn)

    def test_call_revert_is_revert(self, client, node, verify_fn):
        node.fail(INVOICE_NFT_ABI, "verifyShipment", ContractLogicError("execution reverted: Already verified"))
        with pytest.raises(ContractRevertError, match="Already verified"):
            client.call(verify_fn)

    def test_block_number(self, client):
        assert client.block_number() == 100

    @pytest.mark.parametrize("tag,expected", [(17, 17), ("latest", 100), ("earliest", 0)])
    def test_resolve_block_without_lookup(self, client, w3, tag, expected):
        assert client.resolve_block(tag) == expected
        w3.eth.get_block.assert_not_called()

    @pytest.mark.parametrize("tag", ["finalized", "safe", "pending"])
    def test_resolve_block_tag_from_node(self, client, w3, tag):
        w3.eth.get_block.return_value = {"number": 95}
        assert client.resolve_block(tag) == 95
        w3.eth.get_block.assert_called_once_with(tag)

    def test_resolve_block_transport_error(self, client, w3):
        w3.eth.get_block.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(TransportError):
            client.resolve_block("finalized")

    def test_code_at(self, client, w3):
        w3.eth.get_code.return_value = HexBytes("0x6080")
        assert client.code_at(NFT_ADDRESS) == b"\x60\x80"

    def test_get_logs_passes_params(self, client, w3):
        params = {"address": NFT_ADDRESS, "fromBlock": 1, "toBlock": 2}
        assert client.get_logs(params) == []
        w3.eth.get_logs.assert_called_once_with(params)


# =============================================================================
# Tests: transaction recipe
# =============================================================================


class TestSendTransaction:
    def test_builds_legacy_transaction(self, client, w3, verify_fn):
        tx, receipt = client.send_transaction(verify_fn)
        assert tx["from"] == HARDHAT_ADDRESS
        assert tx["to"] == NFT_ADDRESS
        assert tx["data"] == CALLDATA
        assert tx["nonce"] == 7
        assert tx["gasPrice"] == 10**9
        assert tx["chainId"] == CHAIN_ID
        assert tx["gas"] == int(100_000 * 1.2)
        assert receipt["status"] == 1
        w3.eth.get_transaction_count.assert_called_once_with(HARDHAT_ADDRESS, "pending")
        w3.eth.send_raw_transaction.assert_called_once()
        w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=120)

    def test_estimate_failure_falls_back_to_gas_limit(self, w3, nft):
        w3.eth.estimate_gas.side_effect = ValueError("estimation unsupported")
        client = ChainClient(w3, private_key="0x" + "11" * 32, chain_id=CHAIN_ID, gas_limit=321_000)
        tx, _ = client.send_transaction(nft.contract.functions.verifyShipment(1))
        assert tx["gas"] == 321_000

    def test_estimate_revert_sends_nothing(self, client, w3, verify_fn):
        w3.eth.estimate_gas.side_effect = ContractLogicError("execution reverted: Not authorized")
        with pytest.raises(ContractRevertError, match="Not authorized"):
            client.send_transaction(verify_fn)
        w3.eth.send_raw_transaction.assert_not_called()
        assert "Not authorized" in client.get_status()["last_error"]

    def test_read_only_refuses(self, read_only_client, w3, verify_fn):
        with pytest.raises(ConfigurationError):
            read_only_client.send_transaction(verify_fn)
        w3.eth.send_raw_transaction.assert_not_called()

    def test_receipt_timeout_is_transport(self, client, w3, verify_fn):
        w3.eth.wait_for_transaction_receipt.side_effect = TimeExhausted("not mined")
        with pytest.raises(TransportError):
            client.send_transaction(verify_fn)
        assert client.get_status()["last_error"].startswith(encode_hex(TX_HASH))

    def test_mined_revert_receipt_is_returned(self, client, w3, verify_fn):
        w3.eth.wait_for_transaction_receipt.return_value = make_receipt(status=0)
        _, receipt = client.send_transaction(verify_fn)
        assert receipt["status"] == 0

    def test_status_counts_transactions(self, client, verify_fn):
        client.send_transaction(verify_fn)
        client.send_transaction(verify_fn)
        status = client.get_status()
        assert status["tx_count"] == 2
        assert status["last_tx_at"] > 0
        assert status["signer"].startswith(HARDHAT_ADDRESS[:10])
        assert status["read_only"] is False


class TestNonces:
    def test_back_to_back_sends_do_not_reuse_nonce(self, client, w3, verify_fn):
        # the node keeps answering 7 because it has not seen the first tx yet
        first, _ = client.send_transaction(verify_fn)
        second, _ = client.send_transaction(verify_fn)
        assert (first["nonce"], second["nonce"]) == (7, 8)

    def test_concurrent_sends_get_distinct_nonces(self, client, verify_fn):
        nonces = []
        barrier = threading.Barrier(4)

        def send():
            barrier.wait()
            tx, _ = client.send_transaction(verify_fn)
            nonces.append(tx["nonce"])

        threads = [threading.Thread(target=send) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert sorted(nonces) == [7, 8, 9, 10]

    def test_node_count_ahead_wins(self, client, w3, verify_fn):
        client.send_transaction(verify_fn)
        w3.eth.get_transaction_count.return_value = 20
        tx, _ = client.send_transaction(verify_fn)
        assert tx["nonce"] == 20

    def test_failed_send_does_not_consume_nonce(self, client, w3, verify_fn):
        w3.eth.send_raw_transaction.side_effect = [requests.exceptions.ConnectionError("refused"), TX_HASH]
        with pytest.raises(TransportError):
            client.send_transaction(verify_fn)
        tx, _ = client.send_transaction(verify_fn)
        assert tx["nonce"] == 7


# =============================================================================
# Tests: replay
# =============================================================================


class TestReplay:
    def test_replays_at_the_receipt_block(self, client, node, verify_fn):
        node.fail(INVOICE_NFT_ABI, "verifyShipment", ContractLogicError("execution reverted: Already verified"))
        tx = {"from": HARDHAT_ADDRESS, "to": NFT_ADDRESS, "data": CALLDATA, "value": 0, "nonce": 7}
        err = client.replay(verify_fn, tx, 42)
        assert isinstance(err, ContractRevertError)
        assert err.reason == "Already verified"
        call_tx, block = node.calls[-1]
        assert block == 42
        assert call_tx["from"] == HARDHAT_ADDRESS
        assert call_tx["data"] == CALLDATA
        assert "nonce" not in call_tx

    def test_replay_without_revert_has_no_reason(self, client, verify_fn):
        tx = {"from": HARDHAT_ADDRESS, "to": NFT_ADDRESS, "data": CALLDATA, "value": 0}
        err = client.replay(verify_fn, tx, 42)
        assert err.reason == ""
        assert str(err) == "reverted without reason"

    def test_replay_transport_failure_still_reports_revert(self, client, w3, verify_fn):
        w3.eth.call.side_effect = requests.exceptions.ConnectionError("refused")
        tx = {"to": NFT_ADDRESS, "data": CALLDATA}
        assert isinstance(client.replay(verify_fn, tx, 0), ContractRevertError)
