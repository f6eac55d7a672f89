"""
receiv3 API Server - FastAPI read-only view of the invoice contracts

Endpoints:
- GET /health                          Heartbeat
- GET /status                          Network, addresses, signer, last tx / error
- GET /invoices/{token_id}             On-chain invoice struct
- GET /invoices/{token_id}/metadata    ERC-721 metadata document
- GET /invoices/by-number/{number}     Invoice by its off-chain number
- GET /exporters/{address}/invoices    Token ids minted to an exporter
- GET /pools/{token_id}                Funding pool of an invoice
- GET /pools/{token_id}/investments    Recorded investments of a pool
- GET /investors/{address}/pools       Pools an investor is in
- GET /platform                        Fee, fee wallet, linked NFT

Writes are not exposed here; the backend calls InvoiceFinanceService directly.

Errors: revert -> 409 (404 for a token that does not exist), ABI mismatch
-> 502, transport -> 503, invalid address -> 400.
"""

import os
import logging
from typing import Optional

from eth_utils import is_address
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from receiv3.errors import (
    AbiMismatchError,
    ChainError,
    ContractRevertError,
    TransportError,
)
from receiv3.metadata import build_invoice_metadata

logger = logging.getLogger("receiv3.api")

NOT_FOUND_ERRORS = {"ERC721NonexistentToken"}


# ============================================================
# MODELS
# ============================================================

class InvoiceResponse(BaseModel):
    token_id: Optional[int] = None
    invoice_number: str
    amount: int
    advance_amount: int
    interest_rate: int
    issue_date: int
    due_date: int
    exporter: str
    buyer_country: str
    document_hash: str
    status: int
    status_name: str
    shipment_verified: bool
    fundable: Optional[bool] = None


class PoolResponse(BaseModel):
    token_id: int
    target_amount: int
    funded_amount: int
    investor_count: int
    interest_rate: int
    due_date: int
    exporter: str
    status: int
    status_name: str
    opened_at: int
    filled_at: int
    disbursed_at: int
    closed_at: int
    remaining_capacity: Optional[int] = None


class InvestmentResponse(BaseModel):
    investor: str
    amount: int
    expected_return: int
    actual_return: int
    claimed: bool
    invested_at: int


class PlatformResponse(BaseModel):
    platform_fee_bps: int
    platform_wallet: str
    invoice_nft: str
    nft_linked: bool


def _status_code(exc: ChainError) -> int:
    if isinstance(exc, ContractRevertError):
        return 404 if exc.error_name in NOT_FOUND_ERRORS else 409
    if isinstance(exc, AbiMismatchError):
        return 502
    if isinstance(exc, TransportError):
        return 503
    return 500


def _require_address(address: str) -> str:
    if not is_address(address):
        raise HTTPException(400, f"Invalid address: {address}")
    return address


def create_app(service) -> FastAPI:
    """
    Create FastAPI app over an InvoiceFinanceService (or anything with the
    same async read methods).
    """
    app = FastAPI(
        title="receiv3",
        description="Read-only view of the Receiv3 InvoiceNFT and InvoicePool contracts.",
        version="0.1.0",
    )

    # CORS: allow all in dev, restrict in production via CORS_ORIGINS env var
    cors_origins = os.getenv("CORS_ORIGINS", "*").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChainError)
    async def chain_error_handler(request: Request, exc: ChainError):
        code = _status_code(exc)
        logger.warning(f"{request.method} {request.url.path} -> {code}: {exc}")
        body = {"detail": str(exc), "kind": exc.kind}
        if isinstance(exc, ContractRevertError):
            body["reason"] = exc.reason
            body["error_name"] = exc.error_name
            body["selector"] = exc.selector
        return JSONResponse(status_code=code, content=body)

    # ============================================================
    # SERVICE ROUTES
    # ============================================================

    @app.get("/health")
    async def health():
        """Heartbeat endpoint."""
        return {"ok": True, "network": service.get_status().get("network", "")}

    @app.get("/status")
    async def status():
        return service.get_status()

    @app.get("/platform", response_model=PlatformResponse)
    async def platform():
        return PlatformResponse(**await service.get_platform_info())

    # ============================================================
    # INVOICE ROUTES
    # ============================================================

    @app.get("/invoices/by-number/{number}", response_model=InvoiceResponse)
    async def invoice_by_number(number: str):
        invoice = await service.get_invoice_by_number(number)
        return InvoiceResponse(**invoice.to_dict())

    @app.get("/invoices/{token_id}", response_model=InvoiceResponse)
    async def invoice(token_id: int):
        inv = await service.get_invoice(token_id)
        fundable = await service.is_fundable(token_id)
        return InvoiceResponse(**inv.to_dict(), fundable=fundable)

    @app.get("/invoices/{token_id}/metadata")
    async def invoice_metadata(token_id: int, currency: str = "USD"):
        inv = await service.get_invoice(token_id)
        return build_invoice_metadata(inv, token_id, currency=currency)

    @app.get("/exporters/{address}/invoices")
    async def exporter_invoices(address: str):
        token_ids = await service.get_exporter_invoices(_require_address(address))
        return {"exporter": address, "token_ids": token_ids}

    # ============================================================
    # POOL ROUTES
    # ============================================================

    @app.get("/pools/{token_id}", response_model=PoolResponse)
    async def pool(token_id: int):
        p = await service.get_pool(token_id)
        if not p.exists:
            raise HTTPException(404, f"No pool for token {token_id}")
        remaining = await service.get_remaining_capacity(token_id)
        return PoolResponse(**p.to_dict(), remaining_capacity=remaining)

    @app.get("/pools/{token_id}/investments", response_model=list[InvestmentResponse])
    async def pool_investments(token_id: int):
        return [InvestmentResponse(**i.to_dict()) for i in await service.get_pool_investments(token_id)]

    @app.get("/investors/{address}/pools")
    async def investor_pools(address: str):
        token_ids = await service.get_investor_pools(_require_address(address))
        return {"investor": address, "token_ids": token_ids}

    logger.info("receiv3 API app created")
    return app
