from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from chaintrace.models import Receipt, TokenTransfer, Transaction


class StaticChainDataSource:
    """In-memory ChainDataSource backed by fixed transaction lists."""

    def __init__(
        self,
        transactions: Optional[Iterable[Transaction]] = None,
        receipts: Optional[Iterable[Receipt]] = None,
        token_transfers: Optional[Iterable[TokenTransfer]] = None,
        nft_transfers: Optional[Iterable[TokenTransfer]] = None,
        chain: str = "ethereum",
        chain_name: str = "Ethereum",
        symbol: str = "ETH",
        decimals: int = 18,
    ):
        self.chain = chain
        self.chain_name = chain_name
        self.symbol = symbol
        self.decimals = decimals

        self._txs: Dict[str, Transaction] = {t.hash: t for t in (transactions or [])}
        self._receipts: Dict[str, Receipt] = {r.transaction_hash: r for r in (receipts or [])}
        self._token_transfers: List[TokenTransfer] = list(token_transfers or [])
        self._nft_transfers: List[TokenTransfer] = list(nft_transfers or [])

        # Call counters, handy for asserting cache behaviour
        self.calls: Dict[str, int] = {}

    def _count(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def get_transaction(self, tx_hash: str) -> Optional[Transaction]:
        self._count("get_transaction")
        return self._txs.get(tx_hash.lower())

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        self._count("get_receipt")
        return self._receipts.get(tx_hash.lower())

    async def get_address_activity(
        self, address: str, limit: int, before_block: Optional[int] = None
    ) -> List[Transaction]:
        self._count("get_address_activity")
        ad = address.lower()
        items = [
            t for t in self._txs.values()
            if (t.from_address == ad or t.to_address == ad)
            and (before_block is None or t.block_number is None or t.block_number <= before_block)
        ]
        items.sort(key=lambda x: (x.block_number or 0, x.timestamp or 0), reverse=True)
        return items[:limit]

    async def get_token_transfers(
        self, address: str, limit: int, before_block: Optional[int] = None
    ) -> List[TokenTransfer]:
        self._count("get_token_transfers")
        return self._transfers_for(self._token_transfers, address, limit, before_block)

    async def get_nft_transfers(
        self, address: str, limit: int, before_block: Optional[int] = None
    ) -> List[TokenTransfer]:
        self._count("get_nft_transfers")
        return self._transfers_for(self._nft_transfers, address, limit, before_block)

    @staticmethod
    def _transfers_for(
        transfers: List[TokenTransfer], address: str, limit: int, before_block: Optional[int]
    ) -> List[TokenTransfer]:
        ad = address.lower()
        items = [
            t for t in transfers
            if (t.from_address == ad or t.to_address == ad)
            and (before_block is None or t.block_number is None or t.block_number <= before_block)
        ]
        items.sort(key=lambda x: x.block_number or 0, reverse=True)
        return items[:limit]

    def format_native_amount(self, raw_value: int) -> str:
        amount = Decimal(int(raw_value or 0)) / (Decimal(10) ** self.decimals)
        return format(amount.normalize(), "f")
