"""
Invoice Finance Service - operator workflows over both contracts

What the off-chain backend calls after its own business decisions:
tokenize an approved invoice, verify its shipment, open a funding pool,
record investments, disbursement and repayment.

Design:
- Sync web3 calls wrapped in asyncio.run_in_executor()
- Writes are non-fatal: every failure becomes ChainTxResult(success=False)
  with error_kind transport | abi | revert | configuration, logged WARNING
- Reads raise the ChainError taxonomy; the API maps it to HTTP codes
- Human amounts (Decimal / str / int) are scaled to contract base units
  with AMOUNT_DECIMALS; nothing is ever rounded silently
"""

import asyncio
import functools
import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional, Union

from receiv3.abi import DEFAULT_ADMIN_ROLE, MINTER_ROLE, OPERATOR_ROLE, ORACLE_ROLE
from receiv3.chain import ChainClient
from receiv3.config import Settings
from receiv3.contracts.invoice_nft import InvoiceNFT
from receiv3.contracts.invoice_pool import InvoicePool
from receiv3.errors import AbiMismatchError, ChainError
from receiv3.models import (
    ChainTxResult,
    Investment,
    Invoice,
    InvoiceStatus,
    MintResult,
    Pool,
    TransactionResult,
)

logger = logging.getLogger("receiv3.service")

Amount = Union[Decimal, int, str, float]
DateLike = Union[datetime, date, int]


# ============================================================
# CONVERSIONS
# ============================================================

def to_base_units(amount: Amount, decimals: int) -> int:
    """
    Human amount -> integer base units. '1500.25' with decimals=2 -> 150025.

    Floats go through str() first so 0.1 stays 0.1. A value that needs more
    precision than `decimals`, or is negative, cannot be a uint256 amount.
    """
    try:
        value = Decimal(str(amount)) if isinstance(amount, float) else Decimal(amount)
    except (InvalidOperation, TypeError, ValueError):
        raise AbiMismatchError(f"Not a number: {amount!r}") from None
    if not value.is_finite():
        raise AbiMismatchError(f"Not a finite amount: {amount!r}")

    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise AbiMismatchError(f"{amount} has more than {decimals} decimal places")
    if scaled < 0:
        raise AbiMismatchError(f"Amount must not be negative: {amount}")
    return int(scaled)


def from_base_units(raw: int, decimals: int) -> Decimal:
    return Decimal(raw).scaleb(-decimals)


def percent_to_bps(pct: Amount) -> int:
    """Interest rate in percent -> basis points (12.5 -> 1250)."""
    return to_base_units(pct, 2)


def to_unix(value: DateLike) -> int:
    """datetime / date / unix seconds -> unix seconds. Naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, date):
        return int(datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp())
    if isinstance(value, bool):
        raise AbiMismatchError(f"Not a date or unix timestamp: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise AbiMismatchError(f"Not a date or unix timestamp: {value!r}") from None


# ============================================================
# SERVICE
# ============================================================

class InvoiceFinanceService:
    """
    Usage:
        service = InvoiceFinanceService.from_settings(Settings.from_env())
        result = await service.tokenize_invoice(exporter, "INV-001", "10000", ...)
        if result.success:
            await service.create_pool(result.token_id)
    """

    def __init__(
        self,
        client: ChainClient,
        nft: InvoiceNFT,
        pool: InvoicePool,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.nft = nft
        self.pool = pool
        self.settings = settings or Settings()

    @classmethod
    def from_settings(cls, settings: Settings) -> "InvoiceFinanceService":
        settings.require_valid()
        client = ChainClient.from_settings(settings)
        nft = InvoiceNFT(client, settings.invoice_nft_address, settings.log_block_range)
        pool = InvoicePool(client, settings.invoice_pool_address, settings.log_block_range)
        logger.info(f"Invoice service ready: nft={nft.address[:10]}... pool={pool.address[:10]}...")
        return cls(client, nft, pool, settings)

    @property
    def decimals(self) -> int:
        return self.settings.amount_decimals

    def units(self, amount: Amount) -> int:
        return to_base_units(amount, self.decimals)

    async def _run(self, fn: Callable, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, functools.partial(fn, *args))

    async def _write(self, action: str, execute: Callable[[], Any], token_id: Optional[int] = None) -> ChainTxResult:
        """
        Run a write in the executor and report it as ChainTxResult.

        execute() does its own argument conversion so bad input fails the
        same non-fatal way as a revert.
        """
        if not self.client.can_sign:
            error = "No PRIVATE_KEY configured - service is read-only"
            logger.warning(f"TX SKIPPED [{action}]: {error}")
            return ChainTxResult(success=False, action=action, error=error,
                                 error_kind="configuration", token_id=token_id)

        try:
            outcome = await self._run(execute)
        except ChainError as e:
            logger.warning(f"TX ERROR [{action}]: {e.kind}: {e}")
            self.client.note_error(f"{action}: {e}")
            return ChainTxResult(
                success=False,
                action=action,
                tx_hash=getattr(e, "tx_hash", None) or "",
                error=str(e),
                error_kind=e.kind,
                token_id=token_id,
            )

        if isinstance(outcome, MintResult):
            token_id = outcome.token_id
            tx: TransactionResult = outcome.transaction
        else:
            tx = outcome

        return ChainTxResult(
            success=True,
            action=action,
            tx_hash=tx.tx_hash,
            token_id=token_id,
            block_number=tx.block_number,
            gas_used=tx.gas_used,
            gas_cost_native=tx.gas_cost_native,
        )

    # ============================================================
    # INVOICE NFT WORKFLOWS
    # ============================================================

    async def tokenize_invoice(
        self,
        exporter: str,
        invoice_number: str,
        amount: Amount,
        advance_amount: Amount,
        interest_rate_pct: Amount,
        issue_date: DateLike,
        due_date: DateLike,
        buyer_country: str,
        document_hash: str = "",
        metadata_uri: str = "",
    ) -> ChainTxResult:
        """Mint the invoice NFT to the exporter's wallet; token_id comes from the receipt."""
        def _execute() -> MintResult:
            return self.nft.mint_invoice(
                exporter,
                invoice_number,
                self.units(amount),
                self.units(advance_amount),
                percent_to_bps(interest_rate_pct),
                to_unix(issue_date),
                to_unix(due_date),
                buyer_country,
                document_hash or "",
                metadata_uri,
            )

        result = await self._write("invoice_tokenized", _execute)
        if result.success:
            logger.info(f"Invoice {invoice_number} tokenized: token #{result.token_id} tx={result.tx_hash[:18]}...")
        return result

    async def verify_shipment(self, token_id: int) -> ChainTxResult:
        return await self._write("shipment_verified", lambda: self.nft.verify_shipment(token_id), token_id)

    async def update_invoice_status(self, token_id: int, status: Union[InvoiceStatus, int]) -> ChainTxResult:
        return await self._write("invoice_status_updated", lambda: self.nft.update_status(token_id, status), token_id)

    async def burn_invoice(self, token_id: int, reason: str) -> ChainTxResult:
        return await self._write("invoice_burned", lambda: self.nft.burn_invoice(token_id, reason), token_id)

    # ============================================================
    # POOL WORKFLOWS
    # ============================================================

    async def create_pool(self, token_id: int) -> ChainTxResult:
        return await self._write("pool_created", lambda: self.pool.create_pool(token_id), token_id)

    async def record_investment(self, token_id: int, investor: str, amount: Amount) -> ChainTxResult:
        return await self._write(
            "investment_recorded",
            lambda: self.pool.record_investment(token_id, investor, self.units(amount)),
            token_id,
        )

    async def record_disbursement(self, token_id: int) -> ChainTxResult:
        return await self._write("disbursement_recorded", lambda: self.pool.record_disbursement(token_id), token_id)

    async def record_repayment(
        self, token_id: int, total_amount: Amount, investor_returns: Iterable[Amount]
    ) -> ChainTxResult:
        """investor_returns in the same order as get_pool_investments()."""
        returns = list(investor_returns)
        return await self._write(
            "repayment_recorded",
            lambda: self.pool.record_repayment(
                token_id, self.units(total_amount), [self.units(r) for r in returns]
            ),
            token_id,
        )

    async def record_excess_repayment(self, token_id: int, recipient: str, amount: Amount) -> ChainTxResult:
        return await self._write(
            "excess_repayment_recorded",
            lambda: self.pool.record_excess_repayment(token_id, recipient, self.units(amount)),
            token_id,
        )

    async def mark_defaulted(self, token_id: int) -> ChainTxResult:
        return await self._write("pool_defaulted", lambda: self.pool.mark_defaulted(token_id), token_id)

    # ============================================================
    # READS
    # ============================================================

    async def get_invoice(self, token_id: int) -> Invoice:
        return await self._run(self.nft.get_invoice, token_id)

    async def get_invoice_by_number(self, invoice_number: str) -> Invoice:
        token_id = await self._run(self.nft.get_token_id_by_invoice_number, invoice_number)
        return await self.get_invoice(token_id)

    async def get_exporter_invoices(self, exporter: str) -> list[int]:
        return await self._run(self.nft.get_exporter_invoices, exporter)

    async def is_fundable(self, token_id: int) -> bool:
        return await self._run(self.nft.is_fundable, token_id)

    async def get_pool(self, token_id: int) -> Pool:
        return await self._run(self.pool.get_pool, token_id)

    async def get_pool_investments(self, token_id: int) -> list[Investment]:
        return await self._run(self.pool.get_pool_investments, token_id)

    async def get_remaining_capacity(self, token_id: int) -> int:
        return await self._run(self.pool.get_remaining_capacity, token_id)

    async def get_investor_pools(self, investor: str) -> list[int]:
        return await self._run(self.pool.get_investor_pools, investor)

    async def get_platform_fee(self) -> int:
        """Platform fee in basis points."""
        return await self._run(self.pool.platform_fee_bps)

    async def get_platform_info(self) -> dict:
        fee = await self.get_platform_fee()
        wallet = await self._run(self.pool.platform_wallet)
        linked_nft = await self._run(self.pool.invoice_nft)
        return {
            "platform_fee_bps": fee,
            "platform_wallet": wallet,
            "invoice_nft": linked_nft,
            "nft_linked": linked_nft == self.nft.address,
        }

    async def signer_roles(self) -> dict[str, bool]:
        """Which roles the configured signer holds. All False in read-only mode."""
        names = ("nft_admin", "minter", "oracle", "pool_admin", "operator")
        signer = self.client.address
        if not signer:
            return {n: False for n in names}

        checks = (
            (self.nft, DEFAULT_ADMIN_ROLE),
            (self.nft, MINTER_ROLE),
            (self.nft, ORACLE_ROLE),
            (self.pool, DEFAULT_ADMIN_ROLE),
            (self.pool, OPERATOR_ROLE),
        )
        roles = {}
        for name, (contract, role) in zip(names, checks):
            roles[name] = await self._run(contract.has_role, role, signer)
        return roles

    # ============================================================
    # STATUS
    # ============================================================

    def explorer_url(self, tx_hash: str) -> str:
        return self.settings.explorer_tx_url(tx_hash)

    def get_status(self) -> dict:
        """Status for dashboard / debugging."""
        return {
            "network": self.settings.network,
            "chain_id": self.settings.chain_id,
            "invoice_nft": self.nft.address,
            "invoice_pool": self.pool.address,
            "amount_decimals": self.decimals,
            "client": self.client.get_status(),
        }
