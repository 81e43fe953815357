"""
Per-chain configuration for the EVM networks the engine knows how to trace.
RPC endpoints and explorer keys come from the environment.
"""
import os
from dataclasses import dataclass
from typing import Dict, Optional

from chaintrace.errors import UnsupportedChainError


@dataclass(frozen=True)
class ChainConfig:
    key: str
    name: str
    symbol: str
    decimals: int
    chain_id: int
    rpc_url: Optional[str]
    explorer_api_url: str
    explorer_api_key: Optional[str]


def _chain(key: str, name: str, symbol: str, chain_id: int, explorer_api_url: str) -> ChainConfig:
    env_prefix = key.upper()
    return ChainConfig(
        key=key,
        name=name,
        symbol=symbol,
        decimals=18,
        chain_id=chain_id,
        rpc_url=os.getenv(f"{env_prefix}_RPC_URL"),
        explorer_api_url=os.getenv(f"{env_prefix}_EXPLORER_API_URL", explorer_api_url),
        explorer_api_key=os.getenv(f"{env_prefix}_EXPLORER_API_KEY"),
    )


CHAINS: Dict[str, ChainConfig] = {
    "ethereum": _chain("ethereum", "Ethereum", "ETH", 1, "https://api.etherscan.io/api"),
    "bsc": _chain("bsc", "Binance Smart Chain", "BNB", 56, "https://api.bscscan.com/api"),
    "polygon": _chain("polygon", "Polygon", "MATIC", 137, "https://api.polygonscan.com/api"),
    "arbitrum": _chain("arbitrum", "Arbitrum", "ETH", 42161, "https://api.arbiscan.io/api"),
}

# Short names accepted from callers
ALIASES = {
    "eth": "ethereum",
    "bnb": "bsc",
    "binance": "bsc",
    "matic": "polygon",
    "poly": "polygon",
    "arb": "arbitrum",
}


def normalize_chain(chain: str) -> str:
    key = (chain or "").strip().lower()
    return ALIASES.get(key, key)


def get_chain(chain: str) -> ChainConfig:
    key = normalize_chain(chain)
    if key not in CHAINS:
        raise UnsupportedChainError(f"Unsupported chain: {chain}")
    return CHAINS[key]
