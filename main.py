"""
receiv3 - main entry point

Loads .env, configures logging, then runs one command against the
configured deployment.

Usage:
    python main.py serve                              # read-only HTTP API
    python main.py invoice 1                          # on-chain invoice as JSON
    python main.py pool 1                             # pool + investments as JSON
    python main.py events nft InvoiceMinted --from-block 100
    python main.py watch pool InvestmentRecorded RepaymentRecorded
    python main.py selectors                          # selector / topic table
"""

import os
import re
import sys
import json
import time
import asyncio
import logging
import argparse
from typing import Optional

import uvicorn
from dotenv import load_dotenv

logger = logging.getLogger("receiv3.main")


class _SecretMaskingFilter(logging.Filter):
    """Redact 64-char hex strings (private keys) from all log output."""
    _PATTERN = re.compile(r'(?<![0-9a-fA-F])([0-9a-fA-F]{64})(?![0-9a-fA-F])')

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if isinstance(record.msg, str):
            record.msg = self._PATTERN.sub('[REDACTED]', record.msg)
        if record.args:
            try:
                formatted = record.getMessage()
            except (TypeError, ValueError):
                # malformed args: leave the record for logging's own error report
                return True
            if self._PATTERN.search(formatted):
                record.msg = self._PATTERN.sub('[REDACTED]', formatted)
                record.args = None
        return True


def _log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


def bootstrap() -> None:
    load_dotenv()
    level = _log_level()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    mask_filter = _SecretMaskingFilter()
    for handler in logging.root.handlers:
        handler.addFilter(mask_filter)


# ============================================================
# MODULE IMPORTS
# ============================================================

from api.server import create_app
from receiv3.abi import INVOICE_NFT_ABI, INVOICE_POOL_ABI
from receiv3.config import Settings
from receiv3.errors import ChainError
from receiv3.service import InvoiceFinanceService

BLOCK_TAGS = ("latest", "earliest", "safe", "finalized", "pending")


def _block(value: str):
    """--from-block / --to-block: a number or a tag like finalized."""
    if value.isdigit():
        return int(value)
    if value not in BLOCK_TAGS:
        raise argparse.ArgumentTypeError(f"not a block number or one of {', '.join(BLOCK_TAGS)}: {value}")
    return value


def _dump(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def _service(settings: Settings) -> InvoiceFinanceService:
    return InvoiceFinanceService.from_settings(settings)


def _contract(service: InvoiceFinanceService, which: str):
    return service.nft if which == "nft" else service.pool


# ============================================================
# COMMANDS
# ============================================================

def cmd_serve(args, settings: Settings) -> int:
    app = create_app(_service(settings))
    host = args.host or os.getenv("HOST", "0.0.0.0")
    port = args.port or int(os.getenv("PORT", "8000"))
    logger.info(f"Starting server on {host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level=_log_level().lower())
    return 0


def cmd_invoice(args, settings: Settings) -> int:
    service = _service(settings)
    invoice = asyncio.run(service.get_invoice(args.token_id))
    data = invoice.to_dict()
    data["fundable"] = asyncio.run(service.is_fundable(args.token_id))
    _dump(data)
    return 0


def cmd_pool(args, settings: Settings) -> int:
    service = _service(settings)
    pool = asyncio.run(service.get_pool(args.token_id))
    if not pool.exists:
        print(f"No pool for token {args.token_id}", file=sys.stderr)
        return 1
    data = pool.to_dict()
    data["investments"] = [i.to_dict() for i in asyncio.run(service.get_pool_investments(args.token_id))]
    _dump(data)
    return 0


def cmd_events(args, settings: Settings) -> int:
    service = _service(settings)
    contract = _contract(service, args.contract)
    from_block = args.from_block if args.from_block is not None else settings.start_block
    to_block = args.to_block if args.to_block is not None else "latest"
    count = 0
    for record in contract.iter_logs(args.event, from_block, to_block):
        _dump(record.to_dict())
        count += 1
    logger.info(f"{count} {args.event} events from {contract.abi.name}")
    return 0


def cmd_watch(args, settings: Settings) -> int:
    service = _service(settings)
    contract = _contract(service, args.contract)
    watcher = contract.watch(
        lambda record: _dump(record.to_dict()),
        event_names=args.events or None,
        start_block=args.from_block,
        poll_interval=settings.poll_interval,
        confirmations=settings.confirmations,
    )
    try:
        while watcher.is_alive():
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping watcher")
    finally:
        watcher.stop()
        watcher.join(timeout=settings.poll_interval + 5)
    return 0


def cmd_selectors(args, settings: Settings) -> int:
    rows = INVOICE_NFT_ABI.surface() + INVOICE_POOL_ABI.surface()
    if args.json:
        _dump(rows)
        return 0
    for row in rows:
        print(f"{row['contract']:<13} {row['kind']:<9} {row['id']:<68} {row['signature']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="receiv3", description="Receiv3 invoice contract client")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="run the read-only HTTP API")
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("invoice", help="print an invoice")
    p.add_argument("token_id", type=int)
    p.set_defaults(func=cmd_invoice)

    p = sub.add_parser("pool", help="print a funding pool and its investments")
    p.add_argument("token_id", type=int)
    p.set_defaults(func=cmd_pool)

    p = sub.add_parser("events", help="print past events")
    p.add_argument("contract", choices=["nft", "pool"])
    p.add_argument("event")
    p.add_argument("--from-block", type=_block, default=None)
    p.add_argument("--to-block", type=_block, default=None)
    p.set_defaults(func=cmd_events)

    p = sub.add_parser("watch", help="print new events as they are mined")
    p.add_argument("contract", choices=["nft", "pool"])
    p.add_argument("events", nargs="*")
    p.add_argument("--from-block", type=int, default=None)
    p.set_defaults(func=cmd_watch)

    p = sub.add_parser("selectors", help="print function selectors and event topics")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_selectors)

    return parser


# ============================================================
# ENTRY POINT
# ============================================================

def main(argv: Optional[list[str]] = None) -> int:
    bootstrap()
    args = build_parser().parse_args(argv)
    try:
        settings = Settings.from_env()
        return args.func(args, settings)
    except ChainError as e:
        logger.error(f"{args.command} failed ({e.kind}): {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
