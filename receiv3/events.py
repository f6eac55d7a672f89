"""
Typed event records and log streaming.

Every event of both contracts has a frozen dataclass here, with the ABI
argument names in snake_case (tokenId -> token_id, from -> from_). Records
carry a LogMeta with the log's position on chain.

Streaming replaces the generated Filter*/Watch* pairs:
- LogCursor: remembers the next block to scan and fetches new logs
- LogWatcher: background thread that polls a cursor and calls a handler
- stream_logs(): async iterator over the same cursor
"""

import asyncio
import logging
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, ClassVar, Iterable, Optional

from eth_utils import encode_hex
from hexbytes import HexBytes

from receiv3.abi import snake_case
from receiv3.errors import ChainError
from receiv3.models import InvoiceStatus, coerce_status

logger = logging.getLogger("receiv3.events")


@dataclass(frozen=True)
class LogMeta:
    address: str = ""
    block_number: int = 0
    tx_hash: str = ""
    log_index: int = 0
    topic: str = ""

    @classmethod
    def from_log(cls, log: dict, topic: Optional[str] = None) -> "LogMeta":
        """Raw log or web3 EventData (which drops the topics; pass topic then)."""
        tx_hash = log.get("transactionHash")
        topics = log.get("topics") or []
        if topic is None:
            topic = encode_hex(HexBytes(topics[0])) if topics else ""
        return cls(
            address=log.get("address", "") or "",
            block_number=int(log.get("blockNumber") or 0),
            tx_hash=encode_hex(HexBytes(tx_hash)) if tx_hash is not None else "",
            log_index=int(log.get("logIndex") or 0),
            topic=topic,
        )


@dataclass(frozen=True)
class EventRecord:
    event_name: ClassVar[str] = ""
    meta: LogMeta

    @classmethod
    def coerce(cls, kwargs: dict) -> dict:
        return kwargs

    def to_dict(self) -> dict:
        d = asdict(self)
        d["event"] = self.event_name
        for k, v in d.items():
            if isinstance(v, bytes):
                d[k] = encode_hex(v)
        return d


EVENT_TYPES: dict[str, type] = {}


def _event(name: str):
    def register(cls):
        cls.event_name = name
        EVENT_TYPES[name] = cls
        return cls
    return register


@dataclass(frozen=True)
class GenericEvent(EventRecord):
    """
    Record for an ABI event with no dedicated dataclass.

    A binding built over a newer ABI JSON (ContractABI(...) with events added
    after this module) still decodes those logs; they arrive here with the
    ABI argument names as keys of args.
    """
    name: str = ""
    args: dict = field(default_factory=dict)

    @property
    def event_name(self) -> str:  # type: ignore[override]
        return self.name


# ============================================================
# InvoiceNFT
# ============================================================

@_event("InvoiceMinted")
@dataclass(frozen=True)
class InvoiceMinted(EventRecord):
    token_id: int
    exporter: str
    invoice_number: str
    amount: int
    due_date: int


@_event("InvoiceStatusChanged")
@dataclass(frozen=True)
class InvoiceStatusChanged(EventRecord):
    token_id: int
    old_status: Any
    new_status: Any

    @classmethod
    def coerce(cls, kwargs: dict) -> dict:
        kwargs["old_status"] = coerce_status(InvoiceStatus, kwargs["old_status"])
        kwargs["new_status"] = coerce_status(InvoiceStatus, kwargs["new_status"])
        return kwargs


@_event("ShipmentVerified")
@dataclass(frozen=True)
class ShipmentVerified(EventRecord):
    token_id: int
    verifier: str


@_event("InvoiceBurned")
@dataclass(frozen=True)
class InvoiceBurned(EventRecord):
    token_id: int
    reason: str


@_event("Transfer")
@dataclass(frozen=True)
class Transfer(EventRecord):
    from_: str
    to: str
    token_id: int


@_event("Approval")
@dataclass(frozen=True)
class Approval(EventRecord):
    owner: str
    approved: str
    token_id: int


@_event("ApprovalForAll")
@dataclass(frozen=True)
class ApprovalForAll(EventRecord):
    owner: str
    operator: str
    approved: bool


@_event("MetadataUpdate")
@dataclass(frozen=True)
class MetadataUpdate(EventRecord):
    token_id: int


@_event("BatchMetadataUpdate")
@dataclass(frozen=True)
class BatchMetadataUpdate(EventRecord):
    from_token_id: int
    to_token_id: int


# ============================================================
# Shared: AccessControl / Pausable
# ============================================================

@_event("RoleGranted")
@dataclass(frozen=True)
class RoleGranted(EventRecord):
    role: bytes
    account: str
    sender: str


@_event("RoleRevoked")
@dataclass(frozen=True)
class RoleRevoked(EventRecord):
    role: bytes
    account: str
    sender: str


@_event("RoleAdminChanged")
@dataclass(frozen=True)
class RoleAdminChanged(EventRecord):
    role: bytes
    previous_admin_role: bytes
    new_admin_role: bytes


@_event("Paused")
@dataclass(frozen=True)
class Paused(EventRecord):
    account: str


@_event("Unpaused")
@dataclass(frozen=True)
class Unpaused(EventRecord):
    account: str


# ============================================================
# InvoicePool
# ============================================================

@_event("PoolCreated")
@dataclass(frozen=True)
class PoolCreated(EventRecord):
    token_id: int
    target_amount: int
    interest_rate: int


@_event("PoolFilled")
@dataclass(frozen=True)
class PoolFilled(EventRecord):
    token_id: int
    total_amount: int
    investor_count: int


@_event("PoolClosed")
@dataclass(frozen=True)
class PoolClosed(EventRecord):
    token_id: int


@_event("PoolDefaulted")
@dataclass(frozen=True)
class PoolDefaulted(EventRecord):
    token_id: int


@_event("InvestmentRecorded")
@dataclass(frozen=True)
class InvestmentRecorded(EventRecord):
    token_id: int
    investor: str
    amount: int
    expected_return: int


@_event("DisbursementRecorded")
@dataclass(frozen=True)
class DisbursementRecorded(EventRecord):
    token_id: int
    exporter: str
    amount: int


@_event("RepaymentRecorded")
@dataclass(frozen=True)
class RepaymentRecorded(EventRecord):
    token_id: int
    amount: int


@_event("ExcessRepaymentRecorded")
@dataclass(frozen=True)
class ExcessRepaymentRecorded(EventRecord):
    token_id: int
    recipient: str
    amount: int


@_event("InvestorReturnRecorded")
@dataclass(frozen=True)
class InvestorReturnRecorded(EventRecord):
    token_id: int
    investor: str
    amount: int


def build_event(name: str, args: dict, meta: LogMeta) -> EventRecord:
    """Decoded (name, args) -> typed record, GenericEvent when the name is not registered."""
    cls = EVENT_TYPES.get(name)
    if cls is None:
        return GenericEvent(meta=meta, name=name, args=dict(args))
    kwargs = cls.coerce({snake_case(k): v for k, v in args.items()})
    return cls(meta=meta, **kwargs)


# ============================================================
# STREAMING
# ============================================================

class LogCursor:
    """
    Remembers where the last scan ended and fetches everything new.

    contract is a BoundContract (anything with .client.block_number() and
    .fetch_range(event_names, from_block, to_block)). With start_block=None
    the first poll only pins the cursor at the current head.
    """

    def __init__(
        self,
        contract,
        event_names: Optional[Iterable[str]] = None,
        start_block: Optional[int] = None,
        confirmations: int = 0,
    ):
        self.contract = contract
        self.event_names = list(event_names) if event_names else None
        self.next_block = start_block
        self.confirmations = max(0, confirmations)

    def poll(self) -> list:
        head = self.contract.client.block_number() - self.confirmations
        if self.next_block is None:
            self.next_block = head + 1
            return []
        if head < self.next_block:
            return []

        records = self.contract.fetch_range(self.event_names, self.next_block, head)
        self.next_block = head + 1
        return records


class LogWatcher(threading.Thread):
    """Polls a LogCursor and hands each new record to handler(record)."""

    def __init__(
        self,
        contract,
        handler: Callable[[EventRecord], None],
        event_names: Optional[Iterable[str]] = None,
        start_block: Optional[int] = None,
        poll_interval: float = 15.0,
        confirmations: int = 0,
    ):
        super().__init__(daemon=True, name=f"{contract.abi.name}-log-watcher")
        self.cursor = LogCursor(contract, event_names, start_block, confirmations)
        self.handler = handler
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def poll_once(self) -> int:
        records = self.cursor.poll()
        for record in records:
            try:
                self.handler(record)
            except Exception as e:
                logger.exception(f"Event handler failed for {record.event_name} @ {record.meta.tx_hash}: {e}")
        return len(records)

    def run(self) -> None:
        logger.info(f"Log watcher {self.name} started (events={self.cursor.event_names or 'all'})")
        while not self._stop_event.is_set():
            try:
                count = self.poll_once()
                if count:
                    logger.debug(f"Log watcher {self.name}: {count} new events, next block {self.cursor.next_block}")
            except ChainError as e:
                # cursor is unchanged, the same range is retried next poll
                logger.warning(f"Log watcher {self.name} poll failed: {e}")
            self._stop_event.wait(self.poll_interval)
        logger.info(f"Log watcher {self.name} stopped")


async def stream_logs(
    contract,
    event_names: Optional[Iterable[str]] = None,
    *,
    start_block: Optional[int] = None,
    poll_interval: float = 15.0,
    confirmations: int = 0,
):
    """
    Async iterator of new event records.

    Polling runs in the default executor (web3 calls are sync). Transport
    errors propagate to the consumer.
    """
    cursor = LogCursor(contract, event_names, start_block, confirmations)
    loop = asyncio.get_running_loop()
    while True:
        records = await loop.run_in_executor(None, cursor.poll)
        for record in records:
            yield record
        await asyncio.sleep(poll_interval)
