"""
InvoiceNFT client - one ERC-721 token per tokenized export invoice.

Reads return python values (Invoice dataclass for the struct getters);
writes return a TransactionResult once mined. The contract enforces roles,
pause state and status transitions; this client only reports what it says.
"""

import logging
from typing import Any, Optional, Union

from receiv3.abi import INVOICE_NFT_ABI
from receiv3.chain import ChainClient
from receiv3.contracts.bound import AccessControlMixin, BoundContract, PausableMixin
from receiv3.models import Invoice, InvoiceStatus, MintResult, TransactionResult

logger = logging.getLogger("receiv3.contracts.nft")

ERC165_INTERFACE_ID = "0x01ffc9a7"
ERC721_INTERFACE_ID = "0x80ac58cd"
ERC721_METADATA_INTERFACE_ID = "0x5b5e139f"
ERC4906_INTERFACE_ID = "0x49064906"
ACCESS_CONTROL_INTERFACE_ID = "0x7965db0b"


class InvoiceNFT(AccessControlMixin, PausableMixin, BoundContract):

    def __init__(self, client: ChainClient, address: str, log_block_range: int = 5_000):
        super().__init__(client, address, INVOICE_NFT_ABI, log_block_range)

    # ============================================================
    # ROLES
    # ============================================================

    def minter_role(self) -> bytes:
        return self._call("MINTER_ROLE")

    def oracle_role(self) -> bytes:
        return self._call("ORACLE_ROLE")

    # ============================================================
    # INVOICES (reads)
    # ============================================================

    def get_invoice(self, token_id: int) -> Invoice:
        return Invoice.from_tuple(self._call("getInvoice", token_id), token_id=token_id)

    def invoices(self, token_id: int) -> Invoice:
        """Public mapping getter; same data as get_invoice() without the existence check."""
        return Invoice.from_tuple(self._call("invoices", token_id), token_id=token_id)

    def get_token_id_by_invoice_number(self, invoice_number: str) -> int:
        return self._call("getTokenIdByInvoiceNumber", invoice_number)

    def invoice_number_to_token_id(self, invoice_number: str) -> int:
        return self._call("invoiceNumberToTokenId", invoice_number)

    def get_exporter_invoices(self, exporter: str) -> list[int]:
        return list(self._call("getExporterInvoices", exporter))

    def exporter_invoices(self, exporter: str, index: int) -> int:
        return self._call("exporterInvoices", exporter, index)

    def is_fundable(self, token_id: int) -> bool:
        return self._call("isFundable", token_id)

    def total_minted(self) -> int:
        return self._call("totalMinted")

    # ============================================================
    # ERC-721 (reads)
    # ============================================================

    def name(self) -> str:
        return self._call("name")

    def symbol(self) -> str:
        return self._call("symbol")

    def token_uri(self, token_id: int) -> str:
        return self._call("tokenURI", token_id)

    def balance_of(self, owner: str) -> int:
        return self._call("balanceOf", owner)

    def owner_of(self, token_id: int) -> str:
        return self._call("ownerOf", token_id)

    def get_approved(self, token_id: int) -> str:
        return self._call("getApproved", token_id)

    def is_approved_for_all(self, owner: str, operator: str) -> bool:
        return self._call("isApprovedForAll", owner, operator)

    # ============================================================
    # INVOICE LIFECYCLE (writes)
    # ============================================================

    def mint_invoice(
        self,
        to: str,
        invoice_number: str,
        amount: int,
        advance_amount: int,
        interest_rate: int,
        issue_date: int,
        due_date: int,
        buyer_country: str,
        document_hash: str,
        uri: str,
    ) -> MintResult:
        """
        Mint an invoice NFT to the exporter.

        interest_rate is in basis points, dates are unix seconds. The new
        token id is taken from the InvoiceMinted event in the receipt.
        """
        tx = self._transact(
            "mintInvoice",
            to, invoice_number, amount, advance_amount, interest_rate,
            issue_date, due_date, buyer_country, document_hash, uri,
        )
        minted = tx.find_event("InvoiceMinted")
        token_id: Optional[int] = minted.token_id if minted is not None else None
        if token_id is None:
            logger.warning(f"mintInvoice {invoice_number} mined without InvoiceMinted event ({tx.tx_hash})")
        else:
            logger.info(f"Invoice {invoice_number} minted as token #{token_id}")
        return MintResult(token_id=token_id, transaction=tx)

    def preview_mint_invoice(
        self,
        to: str,
        invoice_number: str,
        amount: int,
        advance_amount: int,
        interest_rate: int,
        issue_date: int,
        due_date: int,
        buyer_country: str,
        document_hash: str,
        uri: str,
    ) -> int:
        """Token id mintInvoice would return right now, without sending anything."""
        return self._simulate(
            "mintInvoice",
            to, invoice_number, amount, advance_amount, interest_rate,
            issue_date, due_date, buyer_country, document_hash, uri,
        )

    def verify_shipment(self, token_id: int) -> TransactionResult:
        return self._transact("verifyShipment", token_id)

    def update_status(self, token_id: int, new_status: Union[InvoiceStatus, int]) -> TransactionResult:
        return self._transact("updateStatus", token_id, int(new_status))

    def burn_invoice(self, token_id: int, reason: str) -> TransactionResult:
        return self._transact("burnInvoice", token_id, reason)

    def burn(self, token_id: int) -> TransactionResult:
        return self._transact("burn", token_id)

    # ============================================================
    # ERC-721 (writes)
    # ============================================================

    def approve(self, to: str, token_id: int) -> TransactionResult:
        return self._transact("approve", to, token_id)

    def set_approval_for_all(self, operator: str, approved: bool) -> TransactionResult:
        return self._transact("setApprovalForAll", operator, approved)

    def transfer_from(self, from_: str, to: str, token_id: int) -> TransactionResult:
        return self._transact("transferFrom", from_, to, token_id)

    def safe_transfer_from(
        self, from_: str, to: str, token_id: int, data: Optional[Any] = None
    ) -> TransactionResult:
        """Picks the overload: 3 arguments without data, 4 with."""
        if data is None:
            return self._transact("safeTransferFrom(address,address,uint256)", from_, to, token_id)
        return self._transact("safeTransferFrom(address,address,uint256,bytes)", from_, to, token_id, data)
