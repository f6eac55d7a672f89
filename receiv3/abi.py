"""
ABI artifacts for the Receiv3 contracts.

The deployed ABIs ship as JSON next to this module (abis/InvoiceNFT.json,
abis/InvoicePool.json). Encoding and decoding of calls, return data and
logs is web3's job (w3.eth.contract over the same JSON); ContractABI is
the lookup side:

- function / event entries by name or signature, overloads resolved
- selectors and topics for the `selectors` table
- decode_error(): custom errors, Error(string), Panic(uint256) from
  revert data, which web3 leaves as raw bytes

Addresses are always returned checksummed. uint256 values stay Python ints.
"""

import json
import keyword
import logging
import re
from pathlib import Path
from typing import Any, Optional

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import encode_hex, keccak, to_checksum_address
from hexbytes import HexBytes

from receiv3.errors import AbiMismatchError

logger = logging.getLogger("receiv3.abi")

ABI_DIR = Path(__file__).resolve().parent / "abis"

ERROR_STRING_SELECTOR = "0x08c379a0"   # Error(string)
PANIC_SELECTOR = "0x4e487b71"          # Panic(uint256)

DEFAULT_ADMIN_ROLE = b"\x00" * 32


# ============================================================
# SIGNATURES
# ============================================================

def canonical_type(param: dict) -> str:
    """ABI param -> canonical type string, collapsing tuples: '(string,uint256)[]'."""
    t = param["type"]
    if t.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param["components"])
        return f"({inner}){t[len('tuple'):]}"
    return t


def signature(entry: dict) -> str:
    types = ",".join(canonical_type(p) for p in entry.get("inputs", []))
    return f"{entry['name']}({types})"


def selector_of(sig: str) -> str:
    return encode_hex(keccak(text=sig)[:4])


def topic_of(sig: str) -> str:
    return encode_hex(keccak(text=sig))


def role_id(name: str) -> bytes:
    """bytes32 access-control role id: keccak256(name)."""
    if name == "DEFAULT_ADMIN_ROLE":
        return DEFAULT_ADMIN_ROLE
    return keccak(text=name)


MINTER_ROLE = role_id("MINTER_ROLE")
ORACLE_ROLE = role_id("ORACLE_ROLE")
OPERATOR_ROLE = role_id("OPERATOR_ROLE")


_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def snake_case(name: str) -> str:
    """ABI argument name -> python field name. tokenId -> token_id, from -> from_."""
    name = _CAMEL_BOUNDARY.sub("_", name.strip("_")).lower()
    if keyword.iskeyword(name):
        name += "_"
    return name


# ============================================================
# VALUE NORMALIZATION
# ============================================================

def _element(param: dict) -> dict:
    t = param["type"]
    return dict(param, type=t[: t.rindex("[")])


def _normalize(param: dict, value: Any) -> Any:
    """Decoded eth_abi value -> python value (checksummed addresses, lists for arrays)."""
    t = param["type"]
    if t.endswith("]"):
        item = _element(param)
        return [_normalize(item, v) for v in value]
    if t == "tuple":
        return tuple(_normalize(c, v) for c, v in zip(param["components"], value))
    if t == "address":
        return to_checksum_address(value)
    return value


def prepare_value(param: dict, value: Any) -> Any:
    """
    Python argument -> value web3 accepts for `param`.

    web3 only takes checksummed addresses and raw bytes for bytesN under
    strict checking; callers may hand in any-case addresses and 0x-hex.
    """
    t = param["type"]
    if t.endswith("]") and isinstance(value, (list, tuple)):
        item = _element(param)
        return [prepare_value(item, v) for v in value]
    if t == "tuple":
        if isinstance(value, dict):
            value = [value[c["name"]] for c in param["components"]]
        return tuple(prepare_value(c, v) for c, v in zip(param["components"], value))
    if t == "address" and isinstance(value, str):
        try:
            return to_checksum_address(value)
        except ValueError:
            raise AbiMismatchError(f"Not an address: {value!r}") from None
    if t.startswith("bytes") and isinstance(value, str):
        try:
            return bytes(HexBytes(value))
        except ValueError:
            raise AbiMismatchError(f"Not hex bytes: {value!r}") from None
    return value


def _to_bytes(data: Any) -> bytes:
    if data is None:
        return b""
    return bytes(HexBytes(data))


# ============================================================
# REVERT DATA
# ============================================================

def decode_revert_data(data: Any, abi: Optional["ContractABI"] = None) -> Optional[tuple]:
    """
    Decode revert data into (name, args, selector).

    Returns None when there is no selector to look at. name is None when the
    selector is not Error/Panic and not declared in the ABI.
    """
    try:
        raw = _to_bytes(data)
    except (ValueError, TypeError):
        return None
    if len(raw) < 4:
        return None

    sel = encode_hex(raw[:4])
    body = raw[4:]
    entry = None
    if sel == ERROR_STRING_SELECTOR:
        name, params = "Error", [{"type": "string", "name": "reason"}]
    elif sel == PANIC_SELECTOR:
        name, params = "Panic", [{"type": "uint256", "name": "code"}]
    elif abi is not None and sel in abi.errors:
        entry = abi.errors[sel]
        name, params = entry["name"], entry.get("inputs", [])
    else:
        return None, (), sel

    try:
        values = decode([canonical_type(p) for p in params], body)
    except DecodingError:
        logger.debug(f"Could not decode arguments of {name} ({sel})")
        return name, (), sel
    return name, tuple(_normalize(p, v) for p, v in zip(params, values)), sel


# ============================================================
# CONTRACT ABI
# ============================================================

class ContractABI:
    """Indexed view over one contract's ABI JSON."""

    def __init__(self, abi: list[dict], name: str = ""):
        self.abi = abi
        self.name = name or "contract"
        self.functions: dict[str, dict] = {}
        self.events: dict[str, dict] = {}
        self.errors: dict[str, dict] = {}
        self._by_name: dict[str, list[dict]] = {}
        self._events_by_topic: dict[bytes, str] = {}

        for entry in abi:
            kind = entry.get("type")
            if kind == "function":
                self.functions[signature(entry)] = entry
                self._by_name.setdefault(entry["name"], []).append(entry)
            elif kind == "event":
                self.events[entry["name"]] = entry
                self._events_by_topic[keccak(text=signature(entry))] = entry["name"]
            elif kind == "error":
                self.errors[selector_of(signature(entry))] = entry

    @classmethod
    def load(cls, name: str) -> "ContractABI":
        path = ABI_DIR / f"{name}.json"
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f), name=name)

    def __repr__(self) -> str:
        return f"ContractABI({self.name}: {len(self.functions)} functions, {len(self.events)} events)"

    # ---------- lookup ----------

    def function(self, name_or_signature: str) -> dict:
        """Find a function by full signature, or by name when it is not overloaded."""
        if "(" in name_or_signature:
            entry = self.functions.get(name_or_signature)
            if entry is None:
                raise AbiMismatchError(f"{self.name} has no function {name_or_signature}")
            return entry

        overloads = self._by_name.get(name_or_signature, [])
        if not overloads:
            raise AbiMismatchError(f"{self.name} has no function {name_or_signature}")
        if len(overloads) > 1:
            sigs = ", ".join(signature(e) for e in overloads)
            raise AbiMismatchError(
                f"{self.name}.{name_or_signature} is overloaded, use a signature: {sigs}"
            )
        return overloads[0]

    def event(self, name: str) -> dict:
        entry = self.events.get(name)
        if entry is None:
            raise AbiMismatchError(f"{self.name} has no event {name}")
        return entry

    def selector(self, name_or_signature: str) -> str:
        return selector_of(signature(self.function(name_or_signature)))

    def event_topic(self, name: str) -> str:
        return topic_of(signature(self.event(name)))

    def event_for_topic(self, topic: Any) -> Optional[str]:
        """Event name whose topic0 is `topic`, None for logs this ABI does not declare."""
        try:
            return self._events_by_topic.get(_to_bytes(topic))
        except (ValueError, TypeError):
            return None

    def is_read_only(self, name_or_signature: str) -> bool:
        return self.function(name_or_signature).get("stateMutability") in ("view", "pure")

    def decode_error(self, data: Any) -> Optional[tuple]:
        return decode_revert_data(data, self)

    # ---------- introspection ----------

    def surface(self) -> list[dict]:
        """Flat table of functions and events with their selectors/topics."""
        rows = []
        for sig, entry in sorted(self.functions.items()):
            rows.append({
                "contract": self.name,
                "kind": "function",
                "signature": sig,
                "id": selector_of(sig),
                "mutability": entry.get("stateMutability", ""),
            })
        for name, entry in sorted(self.events.items()):
            sig = signature(entry)
            rows.append({
                "contract": self.name,
                "kind": "event",
                "signature": sig,
                "id": topic_of(sig),
                "mutability": "",
            })
        return rows


INVOICE_NFT_ABI = ContractABI.load("InvoiceNFT")
INVOICE_POOL_ABI = ContractABI.load("InvoicePool")
