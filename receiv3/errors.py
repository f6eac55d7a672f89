"""
Error taxonomy for contract calls.

Every failure that leaves the binding layer is one of three kinds:
- TransportError: the node could not be reached, timed out, or answered
  with an RPC-level error
- AbiMismatchError: arguments did not encode, or return data did not decode,
  against the contract ABI
- ContractRevertError: the EVM reverted; carries the revert reason or the
  decoded custom error when the node returns revert data

translate_error() maps the exceptions raised by web3 / eth_abi / requests
onto these types. Binding code wraps transport calls with it, so callers
only ever need to catch ChainError.
"""

import logging
from typing import Any, Optional

from eth_abi.exceptions import DecodingError, EncodingError, ParseError
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractCustomError,
    ContractLogicError,
    ContractPanicError,
    MismatchedABI,
    Web3ValidationError,
)

logger = logging.getLogger("receiv3.errors")

REVERT_PREFIX = "execution reverted"


class ChainError(Exception):
    """Base class for everything the client raises."""

    kind = "chain"


class TransportError(ChainError):
    """Connection refused, timeout, RPC error, receipt never arrived."""

    kind = "transport"


class AbiMismatchError(ChainError):
    """Arguments or return data do not match the ABI."""

    kind = "abi"


class ConfigurationError(ChainError):
    """Missing key, missing contract address, malformed setting."""

    kind = "configuration"


class ContractRevertError(ChainError):
    """The contract reverted the call or the mined transaction."""

    kind = "revert"

    def __init__(
        self,
        reason: str = "",
        *,
        error_name: Optional[str] = None,
        error_args: tuple = (),
        selector: Optional[str] = None,
        tx_hash: Optional[str] = None,
        data: Optional[str] = None,
    ):
        self.reason = reason
        self.error_name = error_name
        self.error_args = tuple(error_args)
        self.selector = selector
        self.tx_hash = tx_hash
        self.data = data
        super().__init__(self._render())

    def attach_tx(self, tx_hash: str) -> "ContractRevertError":
        self.tx_hash = tx_hash
        self.args = (self._render(),)
        return self

    def _render(self) -> str:
        if self.error_name and self.error_name not in ("Error", "Panic"):
            args = ", ".join(repr(a) for a in self.error_args)
            text = f"reverted with {self.error_name}({args})"
        elif self.reason:
            text = f"reverted: {self.reason}"
        elif self.selector:
            text = f"reverted with unknown error {self.selector}"
        else:
            text = "reverted without reason"
        if self.tx_hash:
            text += f" [tx {self.tx_hash}]"
        return text


def parse_revert_message(message: Any) -> str:
    """'execution reverted: Invoice already exists' -> 'Invoice already exists'."""
    if not message:
        return ""
    text = str(message).strip()
    if text.startswith(REVERT_PREFIX):
        text = text[len(REVERT_PREFIX):].lstrip(":").strip()
    if text.startswith("0x") and all(c in "0123456789abcdefABCDEF" for c in text[2:]):
        # raw revert data echoed as the message carries no readable reason
        return ""
    return text


def _revert_from_logic_error(exc: ContractLogicError, abi) -> ContractRevertError:
    data = getattr(exc, "data", None)
    if isinstance(data, dict):
        # some nodes wrap revert data in {"data": "0x..."}
        data = data.get("data")
    message = getattr(exc, "message", None) or (exc.args[0] if exc.args else "")

    if data:
        # local import: abi imports this module
        from receiv3.abi import decode_revert_data

        decoded = decode_revert_data(data, abi)
        if decoded is not None:
            name, args, selector = decoded
            if name == "Error":
                reason = str(args[0]) if args else ""
            elif name == "Panic":
                reason = f"panic code 0x{args[0]:02x}" if args else "panic"
            elif name is not None:
                reason = name
            else:
                reason = parse_revert_message(message)
            return ContractRevertError(
                reason,
                error_name=name,
                error_args=args,
                selector=selector,
                data=data if isinstance(data, str) else None,
            )

    return ContractRevertError(parse_revert_message(message))


def translate_error(exc: BaseException, abi=None) -> ChainError:
    """Map a low-level exception onto the ChainError taxonomy."""
    if isinstance(exc, ChainError):
        return exc

    if isinstance(exc, (ContractCustomError, ContractPanicError, ContractLogicError)):
        return _revert_from_logic_error(exc, abi)

    if isinstance(
        exc,
        (
            BadFunctionCallOutput,
            MismatchedABI,
            Web3ValidationError,
            EncodingError,
            DecodingError,
            ParseError,
        ),
    ):
        return AbiMismatchError(f"{type(exc).__name__}: {exc}")

    # Anything else came from the provider stack: requests/aiohttp connection
    # errors, timeouts, Web3RPCError, TimeExhausted, ProviderConnectionError.
    return TransportError(f"{type(exc).__name__}: {exc}")
