"""
Protocol definition for chain data sources.
Allows the JSON-RPC client and the in-memory source to be used interchangeably.
"""
from typing import List, Optional, Protocol, runtime_checkable

from chaintrace.models import Receipt, TokenTransfer, Transaction


@runtime_checkable
class ChainDataSource(Protocol):
    """Protocol for per-chain data source implementations."""

    chain: str
    chain_name: str
    symbol: str

    async def get_transaction(self, tx_hash: str) -> Optional[Transaction]:
        """Get a transaction by hash, or None if the node does not know it."""
        ...

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Get the receipt for a mined transaction."""
        ...

    async def get_address_activity(
        self,
        address: str,
        limit: int,
        before_block: Optional[int] = None
    ) -> List[Transaction]:
        """Get recent transactions touching an address, most recent first."""
        ...

    async def get_token_transfers(
        self,
        address: str,
        limit: int,
        before_block: Optional[int] = None
    ) -> List[TokenTransfer]:
        """Get recent token transfers touching an address."""
        ...

    async def get_nft_transfers(
        self,
        address: str,
        limit: int,
        before_block: Optional[int] = None
    ) -> List[TokenTransfer]:
        """Get recent ERC-721 transfers touching an address."""
        ...

    def format_native_amount(self, raw_value: int) -> str:
        """Convert a raw native value to a decimal string in whole units."""
        ...
