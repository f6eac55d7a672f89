"""
Generic bound contract: caller + transactor + filterer over one address.

Every typed method on InvoiceNFT / InvoicePool is one line on top of
_call() or _transact(). Both go through the web3 Contract built from the
contract's ABI JSON; receipts and getLogs results are decoded by its
events and come back as typed records from events.py.
"""

import logging
from typing import Any, Iterable, Iterator, Optional, Union

from eth_abi.exceptions import DecodingError, EncodingError
from eth_utils import encode_hex, is_hex, to_checksum_address
from hexbytes import HexBytes
from web3.exceptions import Web3Exception
from web3.logs import DISCARD

from receiv3.abi import ContractABI, prepare_value, role_id, signature, snake_case
from receiv3.chain import BlockTag, ChainClient
from receiv3.errors import AbiMismatchError, ConfigurationError
from receiv3.events import EventRecord, LogMeta, LogWatcher, build_event, stream_logs
from receiv3.models import TransactionResult

logger = logging.getLogger("receiv3.contracts")

EventNames = Optional[Union[str, Iterable[str]]]


def _as_role(role: Union[bytes, str]) -> bytes:
    """bytes32 role: raw bytes, 0x-hex, or a role name like 'MINTER_ROLE'."""
    if isinstance(role, (bytes, bytearray)):
        return bytes(role)
    if is_hex(role) and role.startswith("0x"):
        return bytes(HexBytes(role))
    return role_id(role)


class BoundContract:
    """One deployed contract reached through a ChainClient."""

    def __init__(self, client: ChainClient, address: str, abi: ContractABI, log_block_range: int = 5_000):
        try:
            self.address = to_checksum_address(address)
        except (ValueError, TypeError):
            raise ConfigurationError(f"Invalid {abi.name} address: {address!r}") from None
        self.client = client
        self.abi = abi
        self.log_block_range = max(1, log_block_range)
        self.contract = client.contract(self.address, abi.abi)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.address})"

    def _function(self, fn: str, args: tuple):
        """contract.functions.<fn>(*args), with the arguments checked against the ABI first."""
        entry = self.abi.function(fn)
        inputs = entry.get("inputs", [])
        sig = signature(entry)
        if len(args) != len(inputs):
            raise AbiMismatchError(f"{sig} takes {len(inputs)} arguments, got {len(args)}")

        values = [prepare_value(p, a) for p, a in zip(inputs, args)]
        try:
            self.contract.encode_abi(entry["name"], args=values)
            return self.contract.get_function_by_signature(sig)(*values)
        except (Web3Exception, EncodingError, ValueError, TypeError) as e:
            raise AbiMismatchError(f"Cannot encode arguments for {sig}: {e}") from e

    # ============================================================
    # CALLER
    # ============================================================

    def _call(self, fn: str, *args: Any, block_identifier: BlockTag = "latest") -> Any:
        return self.client.call(self._function(fn, args), block_identifier, abi=self.abi)

    def _simulate(self, fn: str, *args: Any) -> Any:
        """Run a state-changing method as eth_call from the signer and return its output."""
        return self._call(fn, *args, block_identifier="pending")

    # ============================================================
    # TRANSACTOR
    # ============================================================

    def _transact(self, fn: str, *args: Any, value: int = 0) -> TransactionResult:
        function = self._function(fn, args)
        tx, receipt = self.client.send_transaction(function, value=value, abi=self.abi)

        tx_hash = encode_hex(HexBytes(receipt["transactionHash"]))
        block = int(receipt.get("blockNumber") or 0)

        if receipt.get("status", 1) != 1:
            err = self.client.replay(function, tx, block, abi=self.abi).attach_tx(tx_hash)
            logger.warning(f"TX FAILED [{self.abi.name}.{fn}]: {err}")
            self.client.note_error(str(err))
            raise err

        result = TransactionResult(
            tx_hash=tx_hash,
            block_number=block,
            gas_used=int(receipt.get("gasUsed") or 0),
            effective_gas_price=int(receipt.get("effectiveGasPrice") or 0),
            status=1,
            events=self.parse_receipt(receipt),
        )
        logger.info(
            f"TX SUCCESS [{self.abi.name}.{fn}]: {tx_hash[:18]}... | "
            f"gas={result.gas_used} | events={[e.event_name for e in result.events]}"
        )
        return result

    # ============================================================
    # FILTERER
    # ============================================================

    def _record(self, decoded) -> EventRecord:
        """web3 EventData -> typed record."""
        name = decoded["event"]
        meta = LogMeta.from_log(decoded, topic=self.abi.event_topic(name))
        return build_event(name, dict(decoded["args"]), meta)

    def parse_log(self, log: dict) -> EventRecord:
        topics = log.get("topics") or []
        name = self.abi.event_for_topic(topics[0]) if topics else None
        if name is None:
            raise AbiMismatchError(f"Log does not match any {self.abi.name} event")
        try:
            decoded = self.contract.events[name]().process_log(log)
        except (Web3Exception, DecodingError, TypeError) as e:
            raise AbiMismatchError(f"Cannot decode {name} log: {e}") from e
        return self._record(decoded)

    def parse_receipt(self, receipt: dict) -> list[EventRecord]:
        """Decode the logs this contract emitted in a receipt; other contracts' logs are skipped."""
        mine = [
            log for log in receipt.get("logs", []) or []
            if str(log.get("address", "")).lower() == self.address.lower()
        ]
        names = {self.abi.event_for_topic((log.get("topics") or [b""])[0]) for log in mine}
        names.discard(None)

        own_receipt = dict(receipt, logs=mine)
        records = []
        for name in sorted(names):
            for decoded in self.contract.events[name]().process_receipt(own_receipt, errors=DISCARD):
                records.append(self._record(decoded))
        records.sort(key=lambda r: r.meta.log_index)
        return records

    def _event_names(self, event_names: EventNames, filters: dict) -> Optional[list[str]]:
        if event_names is None:
            names = None
        elif isinstance(event_names, str):
            names = [event_names]
        else:
            names = list(event_names)
        if filters and (names is None or len(names) != 1):
            raise AbiMismatchError("Argument filters need exactly one event name")
        for name in names or []:
            self.abi.event(name)
        return names

    def _argument_filters(self, event_name: str, filters: dict) -> dict:
        """snake_case or ABI-named filters on indexed arguments -> web3 argument_filters."""
        indexed = {}
        for param in self.abi.event(event_name).get("inputs", []):
            if param.get("indexed"):
                indexed[param["name"]] = param
                indexed[snake_case(param["name"])] = param

        argument_filters = {}
        unknown = sorted(k for k in filters if k not in indexed)
        if unknown:
            raise AbiMismatchError(f"{event_name} cannot filter on {unknown} (not indexed or unknown)")
        for key, value in filters.items():
            if value is None:
                continue
            param = indexed[key]
            if isinstance(value, (list, tuple)):
                argument_filters[param["name"]] = [prepare_value(param, v) for v in value]
            else:
                argument_filters[param["name"]] = prepare_value(param, value)
        return argument_filters

    def _raw_logs(self, topics: Optional[list], start: int, end: int) -> list[EventRecord]:
        params: dict = {"address": self.address, "fromBlock": start, "toBlock": end}
        if topics:
            params["topics"] = topics
        records = []
        for log in self.client.get_logs(params):
            log_topics = log.get("topics") or []
            if not log_topics or self.abi.event_for_topic(log_topics[0]) is None:
                logger.debug(f"Skipping log with unknown topic from {self.abi.name} @ block {log.get('blockNumber')}")
                continue
            records.append(self.parse_log(log))
        return records

    def iter_logs(
        self,
        event_names: EventNames = None,
        from_block: BlockTag = 0,
        to_block: BlockTag = "latest",
        **filters: Any,
    ) -> Iterator[EventRecord]:
        """
        Lazily yield decoded events in [from_block, to_block].

        Both ends take a block number or a tag ('latest', 'finalized', ...).
        The range is walked in log_block_range chunks so public RPCs with a
        getLogs span limit still answer. Indexed arguments can be filtered by
        snake_case name (token_id=1, investor="0x...") for a single event.
        """
        names = self._event_names(event_names, filters)
        start = self.client.resolve_block(from_block)
        last = self.client.resolve_block(to_block)

        if names is not None and len(names) == 1:
            event = self.contract.events[names[0]]
            argument_filters = self._argument_filters(names[0], filters)

            def fetch(lo: int, hi: int) -> list[EventRecord]:
                return [self._record(ev) for ev in self.client.event_logs(event, argument_filters, lo, hi)]
        else:
            topics = [[self.abi.event_topic(n) for n in names]] if names else None

            def fetch(lo: int, hi: int) -> list[EventRecord]:
                return self._raw_logs(topics, lo, hi)

        while start <= last:
            end = min(start + self.log_block_range - 1, last)
            yield from fetch(start, end)
            start = end + 1

    def get_logs(
        self,
        event_names: EventNames = None,
        from_block: BlockTag = 0,
        to_block: BlockTag = "latest",
        **filters: Any,
    ) -> list[EventRecord]:
        return list(self.iter_logs(event_names, from_block, to_block, **filters))

    def fetch_range(self, event_names: EventNames, from_block: int, to_block: int) -> list[EventRecord]:
        return self.get_logs(event_names, from_block, to_block)

    def watch(
        self,
        handler,
        event_names: EventNames = None,
        start_block: Optional[int] = None,
        poll_interval: float = 15.0,
        confirmations: int = 0,
        start: bool = True,
    ) -> LogWatcher:
        """Start a background thread that calls handler(record) for each new event."""
        if isinstance(event_names, str):
            event_names = [event_names]
        watcher = LogWatcher(self, handler, event_names, start_block, poll_interval, confirmations)
        if start:
            watcher.start()
        return watcher

    def stream(
        self,
        event_names: EventNames = None,
        start_block: Optional[int] = None,
        poll_interval: float = 15.0,
        confirmations: int = 0,
    ):
        """Async iterator of new events: `async for ev in nft.stream("InvoiceMinted")`."""
        if isinstance(event_names, str):
            event_names = [event_names]
        return stream_logs(
            self, event_names,
            start_block=start_block, poll_interval=poll_interval, confirmations=confirmations,
        )


# ============================================================
# SHARED SURFACES
# ============================================================

class AccessControlMixin:
    """OpenZeppelin AccessControl (+ ERC165), identical on both contracts."""

    def default_admin_role(self) -> bytes:
        return self._call("DEFAULT_ADMIN_ROLE")

    def get_role_admin(self, role: Union[bytes, str]) -> bytes:
        return self._call("getRoleAdmin", _as_role(role))

    def has_role(self, role: Union[bytes, str], account: str) -> bool:
        return self._call("hasRole", _as_role(role), account)

    def grant_role(self, role: Union[bytes, str], account: str) -> TransactionResult:
        return self._transact("grantRole", _as_role(role), account)

    def revoke_role(self, role: Union[bytes, str], account: str) -> TransactionResult:
        return self._transact("revokeRole", _as_role(role), account)

    def renounce_role(self, role: Union[bytes, str], caller_confirmation: str) -> TransactionResult:
        return self._transact("renounceRole", _as_role(role), caller_confirmation)

    def supports_interface(self, interface_id: Union[bytes, str]) -> bool:
        return self._call("supportsInterface", interface_id)


class PausableMixin:

    def paused(self) -> bool:
        return self._call("paused")

    def pause(self) -> TransactionResult:
        return self._transact("pause")

    def unpause(self) -> TransactionResult:
        return self._transact("unpause")
