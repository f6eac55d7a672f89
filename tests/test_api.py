# tests/test_api.py
"""
Tests for the read-only FastAPI app, served over the faked node.

These tests verify:
1. Routes return the on-chain structs as JSON
2. ChainError kinds map to HTTP status codes
3. Address parameters are validated before touching the chain
"""

from __future__ import annotations

import pytest
import requests
from eth_abi import encode
from eth_utils import encode_hex, keccak
from fastapi.testclient import TestClient
from web3.exceptions import ContractCustomError, ContractLogicError

from api.server import create_app
from receiv3.abi import INVOICE_NFT_ABI, INVOICE_POOL_ABI
from receiv3.config import Settings
from receiv3.service import InvoiceFinanceService

from conftest import EXPORTER, INVESTOR, INVOICE_VALUES, NFT_ADDRESS, POOL_VALUES


@pytest.fixture
def service(client, nft, pool) -> InvoiceFinanceService:
    return InvoiceFinanceService(client, nft, pool, Settings(network="hardhat"))


@pytest.fixture
def api(service) -> TestClient:
    return TestClient(create_app(service))


# =============================================================================
# Tests: routes
# =============================================================================


class TestRoutes:
    def test_health(self, api):
        response = api.get("/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "network": "hardhat"}

    def test_status(self, api):
        body = api.get("/status").json()
        assert body["invoice_nft"] == NFT_ADDRESS
        assert body["client"]["read_only"] is False

    def test_invoice(self, api, node):
        node.set(INVOICE_NFT_ABI, "getInvoice", INVOICE_VALUES)
        node.set(INVOICE_NFT_ABI, "isFundable", False)
        body = api.get("/invoices/1").json()
        assert body["token_id"] == 1
        assert body["invoice_number"] == "INV-2024-001"
        assert body["status"] == 1
        assert body["status_name"] == "funded"
        assert body["fundable"] is False

    def test_invoice_by_number(self, api, node):
        node.set(INVOICE_NFT_ABI, "getTokenIdByInvoiceNumber", 4)
        node.set(INVOICE_NFT_ABI, "getInvoice", INVOICE_VALUES)
        body = api.get("/invoices/by-number/INV-2024-001").json()
        assert body["token_id"] == 4

    def test_invoice_metadata(self, api, node):
        node.set(INVOICE_NFT_ABI, "getInvoice", INVOICE_VALUES)
        body = api.get("/invoices/1/metadata", params={"currency": "EUR"}).json()
        assert body["name"] == "Invoice #INV-2024-001"
        assert {"trait_type": "Currency", "value": "EUR"} in body["attributes"]
        assert body["properties"]["token_id"] == 1

    def test_exporter_invoices(self, api, node):
        node.set(INVOICE_NFT_ABI, "getExporterInvoices", [1, 2])
        body = api.get(f"/exporters/{EXPORTER}/invoices").json()
        assert body == {"exporter": EXPORTER, "token_ids": [1, 2]}

    def test_pool(self, api, node):
        node.set(INVOICE_POOL_ABI, "getPool", POOL_VALUES)
        node.set(INVOICE_POOL_ABI, "getRemainingCapacity", 3_000)
        body = api.get("/pools/1").json()
        assert body["funded_amount"] == 5_000
        assert body["status_name"] == "open"
        assert body["remaining_capacity"] == 3_000

    def test_missing_pool(self, api, node):
        node.set(INVOICE_POOL_ABI, "getPool", (0, 0, 0, 0, 0, 0, "0x" + "00" * 20, 0, 0, 0, 0, 0))
        assert api.get("/pools/9").status_code == 404

    def test_pool_investments(self, api, node):
        node.set(INVOICE_POOL_ABI, "getPoolInvestments", [(INVESTOR, 3_000, 3_360, 0, False, 1_704_200_000)])
        body = api.get("/pools/1/investments").json()
        assert body == [{
            "investor": INVESTOR,
            "amount": 3_000,
            "expected_return": 3_360,
            "actual_return": 0,
            "claimed": False,
            "invested_at": 1_704_200_000,
        }]

    def test_investor_pools(self, api, node):
        node.set(INVOICE_POOL_ABI, "getInvestorPools", [1])
        assert api.get(f"/investors/{INVESTOR}/pools").json()["token_ids"] == [1]

    def test_platform(self, api, node):
        node.set(INVOICE_POOL_ABI, "platformFeeBps", 200)
        node.set(INVOICE_POOL_ABI, "platformWallet", EXPORTER)
        node.set(INVOICE_POOL_ABI, "invoiceNFT", INVESTOR)
        body = api.get("/platform").json()
        assert body["platform_fee_bps"] == 200
        assert body["nft_linked"] is False


# =============================================================================
# Tests: error mapping
# =============================================================================


class TestErrorMapping:
    def test_revert_is_conflict(self, api, node):
        node.fail(INVOICE_NFT_ABI, "getInvoice", ContractLogicError("execution reverted: Invoice does not exist"))
        response = api.get("/invoices/5")
        assert response.status_code == 409
        body = response.json()
        assert body["kind"] == "revert"
        assert body["reason"] == "Invoice does not exist"

    def test_nonexistent_token_is_not_found(self, api, node):
        data = encode_hex(keccak(text="ERC721NonexistentToken(uint256)")[:4] + encode(["uint256"], [5]))
        node.fail(INVOICE_NFT_ABI, "getInvoice", ContractCustomError(data, data=data))
        response = api.get("/invoices/5")
        assert response.status_code == 404
        assert response.json()["error_name"] == "ERC721NonexistentToken"

    def test_undecodable_return_is_bad_gateway(self, api):
        # nothing registered: the node answers 0x
        response = api.get("/invoices/5")
        assert response.status_code == 502
        assert response.json()["kind"] == "abi"

    def test_transport_is_unavailable(self, api, w3):
        w3.eth.call.side_effect = requests.exceptions.ConnectionError("refused")
        response = api.get("/pools/1")
        assert response.status_code == 503
        assert response.json()["kind"] == "transport"

    @pytest.mark.parametrize("path", ["/exporters/0x1234/invoices", "/investors/nobody/pools"])
    def test_bad_address(self, api, node, path):
        assert api.get(path).status_code == 400
        assert node.calls == []
