#!/usr/bin/env python3
"""
Deployment Preflight
====================
Checks a Receiv3 deployment before a backend is pointed at it.

Usage:
    python scripts/preflight.py              # Print selector / topic matrix
    python scripts/preflight.py --rpc        # + live checks against the configured RPC
    python scripts/preflight.py --json       # Output as JSON

Live checks (settings from .env / environment, see receiv3/config.py):
- contract code exists at both addresses
- chain id of the node matches CHAIN_ID
- InvoiceNFT answers supportsInterface(ERC-721)
- InvoicePool.invoiceNFT() is the configured NFT address
- pause state of both contracts
- roles held by the signer (MINTER / ORACLE on the NFT, OPERATOR on the pool)

Exit code 1 when any error-level check fails.
"""

import json
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

# allow `python scripts/preflight.py` from the repo root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from dotenv import load_dotenv

from receiv3.abi import INVOICE_NFT_ABI, INVOICE_POOL_ABI, MINTER_ROLE, OPERATOR_ROLE, ORACLE_ROLE
from receiv3.chain import ChainClient
from receiv3.config import Settings
from receiv3.contracts.invoice_nft import ERC721_INTERFACE_ID, InvoiceNFT
from receiv3.contracts.invoice_pool import InvoicePool
from receiv3.errors import ChainError


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str = ""
    level: str = "error"    # error | warning

    @property
    def symbol(self) -> str:
        if self.ok:
            return "[+]"
        return "[X]" if self.level == "error" else "[!]"


def _check(results: list, name: str, fn, level: str = "error"):
    """
    Run one live check. fn() returns (ok, detail, value); a ChainError fails
    the check instead of aborting the run. Returns value, None on error.
    """
    try:
        ok, detail, value = fn()
    except ChainError as e:
        results.append(CheckResult(name, False, f"{e.kind}: {e}", level))
        return None
    results.append(CheckResult(name, ok, detail, level))
    return value


def run_checks(client: ChainClient, nft: InvoiceNFT, pool: InvoicePool, settings: Settings) -> list[CheckResult]:
    results: list[CheckResult] = []

    def code(contract):
        found = client.code_at(contract.address)
        return bool(found), f"{len(found)} bytes at {contract.address}", found

    def chain_id():
        node_id = client.node_chain_id()
        return node_id == settings.chain_id, f"node={node_id} configured={settings.chain_id}", node_id

    def erc721():
        ok = nft.supports_interface(ERC721_INTERFACE_ID)
        return ok, f"supportsInterface({ERC721_INTERFACE_ID}) = {ok}", ok

    def linked():
        target = pool.invoice_nft()
        return target == nft.address, f"invoiceNFT() = {target}", target

    def active(contract):
        paused = contract.paused()
        return not paused, "paused" if paused else "active", paused

    nft_code = _check(results, "InvoiceNFT code", lambda: code(nft))
    pool_code = _check(results, "InvoicePool code", lambda: code(pool))
    _check(results, "Chain id", chain_id)

    if nft_code:
        _check(results, "InvoiceNFT is ERC-721", erc721)
        _check(results, "InvoiceNFT not paused", lambda: active(nft), level="warning")
    if pool_code:
        _check(results, "InvoicePool linked to InvoiceNFT", linked)
        _check(results, "InvoicePool not paused", lambda: active(pool), level="warning")

    signer = client.address
    if not signer:
        results.append(CheckResult("Signer", False, "no PRIVATE_KEY - read-only", "warning"))
        return results

    roles = []
    if nft_code:
        roles += [("MINTER_ROLE", nft, MINTER_ROLE), ("ORACLE_ROLE", nft, ORACLE_ROLE)]
    if pool_code:
        roles += [("OPERATOR_ROLE", pool, OPERATOR_ROLE)]

    for label, contract, role in roles:
        def holds(contract=contract, role=role):
            held = contract.has_role(role, signer)
            return held, f"{signer[:10]}... {'holds' if held else 'lacks'} role", held

        _check(results, f"Signer has {label} on {contract.abi.name}", holds, level="warning")

    return results


def print_matrix() -> None:
    print("=" * 110)
    print(f"  {'Contract':<13} {'Kind':<9} {'Signature':<60} {'Selector / topic'}")
    print("=" * 110)
    for abi in (INVOICE_NFT_ABI, INVOICE_POOL_ABI):
        for row in abi.surface():
            print(f"  {row['contract']:<13} {row['kind']:<9} {row['signature']:<60} {row['id']}")
    print("=" * 110)


def print_results(results: list[CheckResult]) -> None:
    print()
    print("-" * 64)
    print("  Live checks")
    print("-" * 64)
    for r in results:
        print(f"  {r.symbol} {r.name:<40} {r.detail}")


def main(argv: Optional[list[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    live = "--rpc" in argv
    as_json = "--json" in argv

    results: list[CheckResult] = []
    if live:
        load_dotenv()
        try:
            settings = Settings.from_env()
            settings.require_valid()
            client = ChainClient.from_settings(settings)
            nft = InvoiceNFT(client, settings.invoice_nft_address)
            pool = InvoicePool(client, settings.invoice_pool_address)
        except ChainError as e:
            results = [CheckResult("Connect", False, f"{e.kind}: {e}")]
        else:
            results = run_checks(client, nft, pool, settings)

    failed = [r for r in results if not r.ok and r.level == "error"]

    if as_json:
        output = {
            "surface": INVOICE_NFT_ABI.surface() + INVOICE_POOL_ABI.surface(),
            "checks": [asdict(r) for r in results],
            "ok": not failed,
        }
        print(json.dumps(output, indent=2))
        return 1 if failed else 0

    print()
    print("=" * 64)
    print("   RECEIV3 -- DEPLOYMENT PREFLIGHT")
    print("=" * 64)
    print()
    print_matrix()

    if live:
        print_results(results)
        warnings = [r for r in results if not r.ok and r.level == "warning"]
        print(f"\n  Summary: {len(results)} checks, {len(failed)} failed, {len(warnings)} warnings")
        print(f"  Status: {'FAILED' if failed else 'OK'}")
    else:
        print("\n  Run with --rpc for live checks against the configured deployment")
    print()
    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
