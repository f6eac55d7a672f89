# tests/conftest.py
"""
Shared fixtures.

The node is faked: a real Web3 whose eth module is a MagicMock. eth.call
answers by 4-byte selector with eth_abi-encoded return data and the send
path returns a canned receipt. w3.eth.contract stays the real factory, so
web3 encodes calls and decodes results, receipts and logs. Signing is real
(eth_account with the first hardhat key), so the transaction recipe is
exercised end to end up to the wire.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from eth_abi import encode
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3._utils.empty import empty

from receiv3.abi import ContractABI, canonical_type
from receiv3.chain import ChainClient
from receiv3.contracts.invoice_nft import InvoiceNFT
from receiv3.contracts.invoice_pool import InvoicePool

# =============================================================================
# Constants
# =============================================================================

HARDHAT_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
HARDHAT_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

NFT_ADDRESS = to_checksum_address("0x5fbdb2315678afecb367f032d93f642f64180aa3")
POOL_ADDRESS = to_checksum_address("0xe7f1725e7734ce288f8367e1bb143e90bb3f0512")
EXPORTER = to_checksum_address("0x70997970c51812dc3a010c7d01b50e0d17dc79c8")
INVESTOR = to_checksum_address("0x3c44cdddb6a900fa2b585dd299e03d12fa4293bc")

TX_HASH = HexBytes("0x" + "ab" * 32)
BLOCK_HASH = HexBytes("0x" + "cd" * 32)
CHAIN_ID = 31337


# =============================================================================
# Fake node
# =============================================================================


class FakeNode:
    """Answers eth_call by (address, selector) with pre-encoded return data."""

    def __init__(self):
        self.returns: dict = {}
        self.errors: dict = {}
        self.calls: list = []

    def _key(self, to, selector):
        return (to.lower() if to else None, selector)

    def set(self, abi: ContractABI, fn: str, *values, to: str | None = None):
        entry = abi.function(fn)
        types = [canonical_type(o) for o in entry.get("outputs", [])]
        self.returns[self._key(to, abi.selector(fn))] = encode(types, list(values))

    def fail(self, abi: ContractABI, fn: str, exc: Exception, to: str | None = None):
        self.errors[self._key(to, abi.selector(fn))] = exc

    def call(self, tx, block_identifier="latest", **_):
        self.calls.append((tx, block_identifier))
        selector = tx["data"][:10]
        for key in (self._key(tx.get("to"), selector), self._key(None, selector)):
            if key in self.errors:
                raise self.errors[key]
            if key in self.returns:
                return HexBytes(self.returns[key])
        return HexBytes(b"")


def calldata(abi: ContractABI, fn: str, *args) -> str:
    """Expected calldata for fn(*args), encoded independently of web3."""
    entry = abi.function(fn)
    types = [canonical_type(p) for p in entry.get("inputs", [])]
    return abi.selector(fn) + encode(types, list(args)).hex()


def make_receipt(status: int = 1, logs: list | None = None, block: int = 42) -> dict:
    return {
        "transactionHash": TX_HASH,
        "blockNumber": block,
        "status": status,
        "gasUsed": 90_000,
        "effectiveGasPrice": 10**9,
        "logs": logs or [],
    }


def make_log(abi: ContractABI, address: str, event: str, block: int = 42, log_index: int = 0, **args) -> dict:
    """Encode a raw log for `event` from keyword args keyed by ABI argument name."""
    entry = abi.event(event)
    topics = [HexBytes(abi.event_topic(event))]
    plain_types, plain_values = [], []
    for param in entry["inputs"]:
        t = canonical_type(param)
        if param.get("indexed"):
            topics.append(HexBytes(encode([t], [args[param["name"]]])))
        else:
            plain_types.append(t)
            plain_values.append(args[param["name"]])
    return {
        "address": address,
        "topics": topics,
        "data": HexBytes(encode(plain_types, plain_values)),
        "blockNumber": block,
        "transactionHash": TX_HASH,
        "transactionIndex": 0,
        "blockHash": BLOCK_HASH,
        "logIndex": log_index,
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def node() -> FakeNode:
    return FakeNode()


@pytest.fixture
def w3(node):
    fake = Web3(Web3.HTTPProvider("http://127.0.0.1:8545"))
    eth = MagicMock()
    eth.contract.side_effect = fake.eth.contract
    eth.default_account = empty
    eth.generate_gas_price.return_value = None
    eth.call.side_effect = node.call
    eth.get_transaction_count.return_value = 7
    eth.gas_price = 10**9
    eth.estimate_gas.return_value = 100_000
    eth.send_raw_transaction.return_value = TX_HASH
    eth.wait_for_transaction_receipt.return_value = make_receipt()
    eth.block_number = 100
    eth.chain_id = CHAIN_ID
    eth.get_logs.return_value = []
    fake.eth = eth
    return fake


@pytest.fixture
def client(w3) -> ChainClient:
    return ChainClient(w3, private_key=HARDHAT_KEY, chain_id=CHAIN_ID)


@pytest.fixture
def read_only_client(w3) -> ChainClient:
    return ChainClient(w3, chain_id=CHAIN_ID)


@pytest.fixture
def nft(client) -> InvoiceNFT:
    return InvoiceNFT(client, NFT_ADDRESS, log_block_range=50)


@pytest.fixture
def pool(client) -> InvoicePool:
    return InvoicePool(client, POOL_ADDRESS, log_block_range=50)


INVOICE_VALUES = (
    "INV-2024-001",     # invoiceNumber
    10_000,             # amount
    8_000,              # advanceAmount
    1_200,              # interestRate (bps)
    1_704_067_200,      # issueDate 2024-01-01
    1_711_929_600,      # dueDate 2024-04-01
    EXPORTER,           # exporter
    "DE",               # buyerCountry
    "QmDocHash",        # documentHash
    1,                  # status FUNDED
    True,               # shipmentVerified
)

POOL_VALUES = (
    1,                  # tokenId
    8_000,              # targetAmount
    5_000,              # fundedAmount
    2,                  # investorCount
    1_200,              # interestRate
    1_711_929_600,      # dueDate
    EXPORTER,           # exporter
    0,                  # status OPEN
    1_704_100_000,      # openedAt
    0, 0, 0,            # filledAt, disbursedAt, closedAt
)
