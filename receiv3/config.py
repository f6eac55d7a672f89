"""
Runtime configuration.

Values come from the process environment. main.py calls load_dotenv() first,
so a .env file in the working directory works the same way.

    NETWORK=lisk_sepolia
    BLOCKCHAIN_RPC_URL=https://rpc.sepolia-api.lisk.com
    PRIVATE_KEY=...                           # omit for read-only use
    INVOICE_NFT_CONTRACT_ADDRESS=0x...
    INVOICE_POOL_CONTRACT_ADDRESS=0x...
"""

import os
import logging
from dataclasses import dataclass, field
from typing import Optional

from eth_utils import is_address

from receiv3.errors import ConfigurationError

logger = logging.getLogger("receiv3.config")


# ============================================================
# CHAIN DEFAULTS (networks the contracts are deployed on)
# ============================================================

CHAIN_DEFAULTS = {
    "lisk_sepolia": {
        "rpc": "https://rpc.sepolia-api.lisk.com",
        "chain_id": 4202,
        "explorer": "https://sepolia-blockscout.lisk.com",
        "native_symbol": "ETH",
    },
    "lisk": {
        "rpc": "https://rpc.api.lisk.com",
        "chain_id": 1135,
        "explorer": "https://blockscout.lisk.com",
        "native_symbol": "ETH",
    },
    "hardhat": {
        "rpc": "http://127.0.0.1:8545",
        "chain_id": 31337,
        "explorer": "",
        "native_symbol": "ETH",
    },
}

DEFAULT_NETWORK = "lisk_sepolia"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}")


@dataclass
class Settings:
    network: str = DEFAULT_NETWORK
    rpc_url: str = ""
    chain_id: int = 0
    private_key: str = field(default="", repr=False)
    invoice_nft_address: str = ""
    invoice_pool_address: str = ""

    gas_limit: int = 500_000        # used when estimation fails for a non-revert reason
    gas_buffer: float = 1.2         # estimate * buffer
    receipt_timeout: int = 120
    request_timeout: int = 30

    log_block_range: int = 5_000    # max blocks per eth_getLogs request
    poll_interval: float = 15.0
    confirmations: int = 0
    start_block: int = 0

    amount_decimals: int = 0        # base-unit scaling applied by the service layer

    def __post_init__(self):
        defaults = CHAIN_DEFAULTS.get(self.network, {})
        if not self.rpc_url:
            self.rpc_url = defaults.get("rpc", "")
        if not self.chain_id:
            self.chain_id = defaults.get("chain_id", 0)

    @classmethod
    def from_env(cls) -> "Settings":
        network = os.getenv("NETWORK", DEFAULT_NETWORK).lower()
        if network not in CHAIN_DEFAULTS:
            logger.warning(f"Unknown network '{network}' - set BLOCKCHAIN_RPC_URL and CHAIN_ID explicitly")

        rpc_url = os.getenv("BLOCKCHAIN_RPC_URL", "") or os.getenv(f"{network.upper()}_RPC_URL", "")

        return cls(
            network=network,
            rpc_url=rpc_url,
            chain_id=_env_int("CHAIN_ID", 0),
            private_key=os.getenv("PRIVATE_KEY", "").strip(),
            invoice_nft_address=os.getenv("INVOICE_NFT_CONTRACT_ADDRESS", "").strip(),
            invoice_pool_address=os.getenv("INVOICE_POOL_CONTRACT_ADDRESS", "").strip(),
            gas_limit=_env_int("GAS_LIMIT", 500_000),
            gas_buffer=_env_float("GAS_BUFFER", 1.2),
            receipt_timeout=_env_int("RECEIPT_TIMEOUT", 120),
            request_timeout=_env_int("RPC_TIMEOUT", 30),
            log_block_range=_env_int("LOG_BLOCK_RANGE", 5_000),
            poll_interval=_env_float("POLL_INTERVAL", 15.0),
            confirmations=_env_int("CONFIRMATIONS", 0),
            start_block=_env_int("START_BLOCK", 0),
            amount_decimals=_env_int("AMOUNT_DECIMALS", 0),
        )

    @property
    def read_only(self) -> bool:
        return not self.private_key

    @property
    def explorer(self) -> str:
        return CHAIN_DEFAULTS.get(self.network, {}).get("explorer", "")

    def explorer_tx_url(self, tx_hash: str) -> str:
        if not self.explorer:
            return ""
        return f"{self.explorer}/tx/{tx_hash}"

    def problems(self) -> list[str]:
        """Everything that would stop the client from working, as readable strings."""
        issues = []
        if not self.rpc_url:
            issues.append("BLOCKCHAIN_RPC_URL is not set")
        if self.chain_id <= 0:
            issues.append("CHAIN_ID is not set")
        for label, addr in (
            ("INVOICE_NFT_CONTRACT_ADDRESS", self.invoice_nft_address),
            ("INVOICE_POOL_CONTRACT_ADDRESS", self.invoice_pool_address),
        ):
            if not addr:
                issues.append(f"{label} is not set")
            elif not is_address(addr):
                issues.append(f"{label} is not a valid address: {addr}")
        if self.gas_buffer < 1.0:
            issues.append("GAS_BUFFER must be >= 1.0")
        if self.log_block_range <= 0:
            issues.append("LOG_BLOCK_RANGE must be positive")
        if self.amount_decimals < 0:
            issues.append("AMOUNT_DECIMALS must be >= 0")
        return issues

    def require_valid(self) -> None:
        issues = self.problems()
        if issues:
            raise ConfigurationError("; ".join(issues))
