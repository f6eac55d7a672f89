"""
Python mirrors of the on-chain structs, plus result types.

Amounts, rates and timestamps are kept exactly as the contracts store them
(integers in base units / basis points / unix seconds). Status codes map to
IntEnums; a code the enum does not know is kept as a plain int rather than
rejected, so a contract upgrade that adds a status never breaks decoding.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, Union


class InvoiceStatus(IntEnum):
    ACTIVE = 0
    FUNDED = 1
    DISBURSED = 2
    REPAID = 3
    DEFAULTED = 4


class PoolStatus(IntEnum):
    OPEN = 0
    FILLED = 1
    DISBURSED = 2
    CLOSED = 3
    DEFAULTED = 4


def coerce_status(enum_cls, value: int) -> Union[IntEnum, int]:
    try:
        return enum_cls(value)
    except ValueError:
        return int(value)


def _status_name(value: Union[IntEnum, int]) -> str:
    return value.name.lower() if isinstance(value, IntEnum) else f"unknown({value})"


def _utc(ts: int) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts else None


# ============================================================
# INVOICE NFT
# ============================================================

@dataclass
class Invoice:
    """InvoiceNFT.Invoice struct (getInvoice / invoices)."""
    invoice_number: str
    amount: int
    advance_amount: int
    interest_rate: int            # basis points
    issue_date: int               # unix seconds
    due_date: int                 # unix seconds
    exporter: str
    buyer_country: str
    document_hash: str
    status: Union[InvoiceStatus, int]
    shipment_verified: bool
    token_id: Optional[int] = None

    @classmethod
    def from_tuple(cls, values: tuple, token_id: Optional[int] = None) -> "Invoice":
        (number, amount, advance, rate, issued, due, exporter,
         country, doc_hash, status, verified) = values
        return cls(
            invoice_number=number,
            amount=amount,
            advance_amount=advance,
            interest_rate=rate,
            issue_date=issued,
            due_date=due,
            exporter=exporter,
            buyer_country=country,
            document_hash=doc_hash,
            status=coerce_status(InvoiceStatus, status),
            shipment_verified=verified,
            token_id=token_id,
        )

    @property
    def issue_datetime(self) -> Optional[datetime]:
        return _utc(self.issue_date)

    @property
    def due_datetime(self) -> Optional[datetime]:
        return _utc(self.due_date)

    @property
    def status_name(self) -> str:
        return _status_name(self.status)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = int(self.status)
        d["status_name"] = self.status_name
        return d


# ============================================================
# INVOICE POOL
# ============================================================

@dataclass
class Pool:
    """InvoicePool.Pool struct (getPool / pools)."""
    token_id: int
    target_amount: int
    funded_amount: int
    investor_count: int
    interest_rate: int
    due_date: int
    exporter: str
    status: Union[PoolStatus, int]
    opened_at: int
    filled_at: int
    disbursed_at: int
    closed_at: int

    @classmethod
    def from_tuple(cls, values: tuple) -> "Pool":
        (token_id, target, funded, investors, rate, due, exporter,
         status, opened, filled, disbursed, closed) = values
        return cls(
            token_id=token_id,
            target_amount=target,
            funded_amount=funded,
            investor_count=investors,
            interest_rate=rate,
            due_date=due,
            exporter=exporter,
            status=coerce_status(PoolStatus, status),
            opened_at=opened,
            filled_at=filled,
            disbursed_at=disbursed,
            closed_at=closed,
        )

    @property
    def exists(self) -> bool:
        # unset mapping slots decode as all zeros
        return self.token_id != 0 or self.target_amount != 0

    @property
    def is_full(self) -> bool:
        return self.target_amount > 0 and self.funded_amount >= self.target_amount

    @property
    def status_name(self) -> str:
        return _status_name(self.status)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = int(self.status)
        d["status_name"] = self.status_name
        return d


@dataclass
class Investment:
    """InvoicePool.Investment struct (getPoolInvestments / poolInvestments)."""
    investor: str
    amount: int
    expected_return: int
    actual_return: int
    claimed: bool
    invested_at: int

    @classmethod
    def from_tuple(cls, values: tuple) -> "Investment":
        investor, amount, expected, actual, claimed, invested_at = values
        return cls(investor, amount, expected, actual, claimed, invested_at)

    def to_dict(self) -> dict:
        return asdict(self)


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class TransactionResult:
    """A mined, successful transaction and the events it emitted on the bound contract."""
    tx_hash: str
    block_number: int
    gas_used: int
    effective_gas_price: int = 0
    status: int = 1
    events: list = field(default_factory=list)

    @property
    def gas_cost_native(self) -> float:
        return (self.gas_used * self.effective_gas_price) / 1e18 if self.effective_gas_price else 0.0

    def find_event(self, name: str) -> Optional[Any]:
        for ev in self.events:
            if ev.event_name == name:
                return ev
        return None

    def find_events(self, name: str) -> list:
        return [ev for ev in self.events if ev.event_name == name]


@dataclass
class MintResult:
    token_id: Optional[int]
    transaction: TransactionResult


@dataclass
class ChainTxResult:
    """Outcome of a service-level write. Never raised, always returned."""
    success: bool
    action: str = ""
    tx_hash: str = ""
    error: str = ""
    error_kind: str = ""          # transport | abi | revert | configuration
    token_id: Optional[int] = None
    block_number: int = 0
    gas_used: int = 0
    gas_cost_native: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)
