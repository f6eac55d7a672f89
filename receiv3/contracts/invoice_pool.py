"""
InvoicePool client - bookkeeping of investor funding per invoice token.

Funds move off-chain; the pool records investments, the disbursement to the
exporter, repayment and per-investor returns. Fee and return arithmetic
happen in the contract, never here.
"""

from typing import Iterable

from receiv3.abi import INVOICE_POOL_ABI
from receiv3.chain import ChainClient
from receiv3.contracts.bound import AccessControlMixin, BoundContract, PausableMixin
from receiv3.models import Investment, Pool, TransactionResult


class InvoicePool(AccessControlMixin, PausableMixin, BoundContract):

    def __init__(self, client: ChainClient, address: str, log_block_range: int = 5_000):
        super().__init__(client, address, INVOICE_POOL_ABI, log_block_range)

    def operator_role(self) -> bytes:
        return self._call("OPERATOR_ROLE")

    # ============================================================
    # READS
    # ============================================================

    def get_pool(self, token_id: int) -> Pool:
        return Pool.from_tuple(self._call("getPool", token_id))

    def pools(self, token_id: int) -> Pool:
        return Pool.from_tuple(self._call("pools", token_id))

    def get_pool_investments(self, token_id: int) -> list[Investment]:
        return [Investment.from_tuple(row) for row in self._call("getPoolInvestments", token_id)]

    def pool_investments(self, token_id: int, index: int) -> Investment:
        return Investment.from_tuple(self._call("poolInvestments", token_id, index))

    def get_remaining_capacity(self, token_id: int) -> int:
        return self._call("getRemainingCapacity", token_id)

    def get_investor_pools(self, investor: str) -> list[int]:
        return list(self._call("getInvestorPools", investor))

    def investor_pools(self, investor: str, index: int) -> int:
        return self._call("investorPools", investor, index)

    def invoice_nft(self) -> str:
        return self._call("invoiceNFT")

    def platform_fee_bps(self) -> int:
        return self._call("platformFeeBps")

    def platform_wallet(self) -> str:
        return self._call("platformWallet")

    # ============================================================
    # WRITES (OPERATOR_ROLE)
    # ============================================================

    def create_pool(self, token_id: int) -> TransactionResult:
        return self._transact("createPool", token_id)

    def record_investment(self, token_id: int, investor: str, amount: int) -> TransactionResult:
        return self._transact("recordInvestment", token_id, investor, amount)

    def record_disbursement(self, token_id: int) -> TransactionResult:
        return self._transact("recordDisbursement", token_id)

    def record_repayment(
        self, token_id: int, total_amount: int, investor_returns: Iterable[int]
    ) -> TransactionResult:
        """investor_returns is ordered like getPoolInvestments()."""
        return self._transact("recordRepayment", token_id, total_amount, list(investor_returns))

    def record_excess_repayment(self, token_id: int, recipient: str, amount: int) -> TransactionResult:
        return self._transact("recordExcessRepayment", token_id, recipient, amount)

    def mark_defaulted(self, token_id: int) -> TransactionResult:
        return self._transact("markDefaulted", token_id)

    # ============================================================
    # ADMIN (DEFAULT_ADMIN_ROLE)
    # ============================================================

    def set_platform_fee(self, new_fee_bps: int) -> TransactionResult:
        return self._transact("setPlatformFee", new_fee_bps)

    def set_platform_wallet(self, new_wallet: str) -> TransactionResult:
        return self._transact("setPlatformWallet", new_wallet)
