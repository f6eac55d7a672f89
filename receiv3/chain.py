"""
Chain Client - transport and signer

Thin layer over a Web3 connection that every bound contract shares:
- web3 Contract objects for the bindings (w3.eth.contract)
- contract function calls with the signer as `from` (so role-gated views
  and previews work)
- build / sign / send / wait for a transaction
- eth_getLogs, block tags and block number for the event filterer

Transaction recipe:
- nonce from the pending count, never below the last nonce this client
  sent; gas price from the node, chain id pinned
- gas estimation + 20% buffer; an estimation revert is raised right away
  (nothing is submitted), any other estimation failure falls back to the
  configured gas limit
- build_transaction, sign locally with eth_account, send raw, wait for
  the receipt
- nonce -> send is serialized with a lock so concurrent writers from one
  process never reuse a nonce

All failures leave as ChainError subclasses (see errors.translate_error).
"""

import logging
import threading
import time
from typing import Any, Optional, Union

from eth_account import Account
from eth_utils import encode_hex, to_checksum_address
from web3 import Web3
from web3.exceptions import ContractLogicError

from receiv3.config import Settings
from receiv3.errors import (
    ConfigurationError,
    ContractRevertError,
    TransportError,
    translate_error,
)

logger = logging.getLogger("receiv3.chain")

BlockTag = Union[int, str]


class ChainClient:
    """
    Shared transport for InvoiceNFT / InvoicePool bindings.

    Usage:
        client = ChainClient.from_settings(Settings.from_env())
        nft = InvoiceNFT(client, settings.invoice_nft_address)
        invoice = nft.get_invoice(1)
    """

    def __init__(
        self,
        w3: Web3,
        private_key: str = "",
        chain_id: Optional[int] = None,
        gas_limit: int = 500_000,
        gas_buffer: float = 1.2,
        receipt_timeout: int = 120,
    ):
        self.w3 = w3
        self.gas_limit = gas_limit
        self.gas_buffer = gas_buffer
        self.receipt_timeout = receipt_timeout
        self._chain_id = chain_id or None
        self._account = None
        if private_key:
            try:
                self._account = Account.from_key(private_key)
            except Exception as e:
                raise ConfigurationError(f"Invalid PRIVATE_KEY: {type(e).__name__}") from None

        self._tx_lock = threading.Lock()
        self._next_nonce = 0
        self._tx_count = 0
        self._last_error = ""
        self._last_tx_at = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChainClient":
        if not settings.rpc_url:
            raise ConfigurationError("BLOCKCHAIN_RPC_URL is not set")

        w3 = Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": settings.request_timeout}))
        if not w3.is_connected():
            raise TransportError(f"Cannot connect to {settings.network} RPC ({settings.rpc_url})")

        client = cls(
            w3,
            private_key=settings.private_key,
            chain_id=settings.chain_id,
            gas_limit=settings.gas_limit,
            gas_buffer=settings.gas_buffer,
            receipt_timeout=settings.receipt_timeout,
        )
        signer = f"signer={client.address[:10]}..." if client.address else "read-only"
        logger.info(f"Chain client connected: {settings.network} (chain_id={settings.chain_id}) | {signer}")
        return client

    # ============================================================
    # IDENTITY
    # ============================================================

    @property
    def address(self) -> Optional[str]:
        return self._account.address if self._account else None

    @property
    def can_sign(self) -> bool:
        return self._account is not None

    @property
    def chain_id(self) -> int:
        if self._chain_id is None:
            try:
                self._chain_id = int(self.w3.eth.chain_id)
            except Exception as e:
                raise translate_error(e) from e
        return self._chain_id

    def contract(self, address: str, abi: list):
        """web3 Contract for a checksummed address."""
        return self.w3.eth.contract(address=address, abi=abi)

    # ============================================================
    # READS
    # ============================================================

    def call(self, fn, block_identifier: BlockTag = "latest", abi=None) -> Any:
        """Run a bound contract function (contract.functions.X(...)) as eth_call."""
        tx = {"from": self.address} if self.address else {}
        try:
            return fn.call(tx, block_identifier=block_identifier)
        except Exception as e:
            raise translate_error(e, abi) from e

    def event_logs(self, event, argument_filters: Optional[dict], from_block: int, to_block: int) -> list:
        """ContractEvent.get_logs for one block range, decoded by web3."""
        try:
            return list(event.get_logs(
                argument_filters=argument_filters or None,
                from_block=from_block,
                to_block=to_block,
            ))
        except Exception as e:
            raise translate_error(e) from e

    def get_logs(self, params: dict) -> list:
        try:
            return list(self.w3.eth.get_logs(params))
        except Exception as e:
            raise translate_error(e) from e

    def block_number(self) -> int:
        try:
            return int(self.w3.eth.block_number)
        except Exception as e:
            raise translate_error(e) from e

    def resolve_block(self, block: BlockTag) -> int:
        """Block number or tag ('latest', 'earliest', 'safe', 'finalized', 'pending') -> block number."""
        if isinstance(block, int):
            return block
        if block == "latest":
            return self.block_number()
        if block == "earliest":
            return 0
        try:
            return int(self.w3.eth.get_block(block)["number"])
        except Exception as e:
            raise translate_error(e) from e

    def node_chain_id(self) -> int:
        """Chain id reported by the node, ignoring the configured one."""
        try:
            return int(self.w3.eth.chain_id)
        except Exception as e:
            raise translate_error(e) from e

    def code_at(self, address: str) -> bytes:
        try:
            return bytes(self.w3.eth.get_code(to_checksum_address(address)))
        except Exception as e:
            raise translate_error(e) from e

    def balance_of(self, address: str) -> int:
        """Native balance in wei."""
        try:
            return int(self.w3.eth.get_balance(to_checksum_address(address)))
        except Exception as e:
            raise translate_error(e) from e

    # ============================================================
    # WRITES
    # ============================================================

    def _estimate_gas(self, fn, tx: dict) -> int:
        try:
            estimate = fn.estimate_gas(tx)
        except ContractLogicError:
            # the node already told us it reverts; do not pay for it
            raise
        except Exception as gas_err:
            logger.warning(f"Gas estimation failed, using default {self.gas_limit}: {gas_err}")
            return self.gas_limit
        return int(estimate * self.gas_buffer)

    def _nonce(self, sender: str) -> int:
        # the pending count can lag right after a send on load-balanced RPCs
        pending = self.w3.eth.get_transaction_count(sender, "pending")
        return max(int(pending), self._next_nonce)

    def send_transaction(self, fn, value: int = 0, abi=None) -> tuple[dict, Any]:
        """
        Build, sign and send a bound contract function, then wait for its receipt.

        Returns (tx, receipt). The receipt may carry status 0; the caller
        decides how to report a mined revert (see replay()).
        """
        if self._account is None:
            raise ConfigurationError("No PRIVATE_KEY configured - client is read-only")

        sender = self._account.address
        with self._tx_lock:
            try:
                nonce = self._nonce(sender)
                gas = self._estimate_gas(fn, {"from": sender, "value": value})
                tx = fn.build_transaction({
                    "from": sender,
                    "value": value,
                    "nonce": nonce,
                    "gasPrice": self.w3.eth.gas_price,
                    "chainId": self.chain_id,
                    "gas": gas,
                })
                signed = self._account.sign_transaction(tx)
                tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            except Exception as e:
                err = translate_error(e, abi)
                self._last_error = str(err)
                raise err from e
            self._next_nonce = nonce + 1

        tx_hash_hex = encode_hex(tx_hash)
        logger.info(
            f"TX submitted: {tx_hash_hex[:18]}... -> {str(tx['to'])[:10]}... (nonce={tx['nonce']}, gas={tx['gas']})"
        )

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except Exception as e:
            err = translate_error(e, abi)
            self._last_error = f"{tx_hash_hex}: {err}"
            raise err from e

        self._tx_count += 1
        self._last_tx_at = time.time()
        return tx, receipt

    def replay(self, fn, tx: dict, block_number: int, abi=None) -> ContractRevertError:
        """
        Re-run a mined-but-reverted transaction as eth_call at its block to
        recover the revert reason.
        """
        call_tx = {k: tx[k] for k in ("from", "value") if k in tx}
        try:
            fn.call(call_tx, block_identifier=block_number)
        except Exception as e:
            err = translate_error(e, abi)
            if isinstance(err, ContractRevertError):
                return err
            logger.debug(f"Replay for revert reason failed: {err}")
        return ContractRevertError("")

    def note_error(self, message: str) -> None:
        self._last_error = message

    # ============================================================
    # STATUS
    # ============================================================

    def get_status(self) -> dict:
        """Status for dashboard / debugging."""
        return {
            "signer": self.address[:10] + "..." if self.address else "",
            "read_only": not self.can_sign,
            "chain_id": self._chain_id,
            "tx_count": self._tx_count,
            "last_tx_at": self._last_tx_at,
            "last_error": self._last_error,
        }
