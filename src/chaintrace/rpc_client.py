"""
HTTP data source for EVM chains.
Transactions and receipts come from the node's JSON-RPC endpoint; address
activity and token transfers come from the Etherscan-family explorer API.
"""
import asyncio
import logging
import random
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from chaintrace.chains import ChainConfig, get_chain
from chaintrace.config import EngineConfig
from chaintrace.errors import DataSourceError, RateLimitError
from chaintrace.models import Receipt, TokenTransfer, Transaction

logger = logging.getLogger(__name__)


def _hex_to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    try:
        text = str(value)
        return int(text, 16) if text.startswith("0x") else int(text)
    except ValueError:
        return None


def backoff_delay(attempt: int, base: float = 0.5, cap: float = 8.0) -> float:
    delay = min(cap, base * (2 ** attempt))
    return delay * (0.7 + random.random() * 0.6)


class EvmRpcDataSource:
    """ChainDataSource over JSON-RPC plus an explorer API. Compatible with ChainDataSource."""

    def __init__(
        self,
        chain: str,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
    ):
        self.config: ChainConfig = get_chain(chain)
        if not self.config.rpc_url:
            raise DataSourceError(f"No RPC URL configured for {self.config.key}")

        self.chain = self.config.key
        self.chain_name = self.config.name
        self.symbol = self.config.symbol
        self.max_retries = max_retries if max_retries is not None else EngineConfig.HTTP_MAX_RETRIES
        self.client = client or httpx.AsyncClient(timeout=EngineConfig.HTTP_TIMEOUT)
        self._rpc_id = 0

    # ─── Transport ────────────────────────────────────────────────────────────

    async def _with_retries(self, label: str, request) -> Any:
        """Run request, retrying rate limits, transport errors and 5xx responses."""
        last_err: Optional[Exception] = None

        for attempt in range(self.max_retries):
            try:
                return await request()
            except RateLimitError as e:
                last_err = e
            except httpx.HTTPStatusError as e:
                if e.response.status_code < 500:
                    raise DataSourceError(f"{label} failed: HTTP {e.response.status_code}") from e
                last_err = e
            except httpx.TransportError as e:
                last_err = e
            logger.debug(f"{label} failed (attempt {attempt + 1}/{self.max_retries}): {last_err}")
            if attempt + 1 < self.max_retries:
                await asyncio.sleep(backoff_delay(attempt))

        if isinstance(last_err, RateLimitError):
            raise last_err
        raise DataSourceError(f"{label} failed after retries: {last_err}")

    async def call_rpc(self, method: str, params: List[Any]) -> Any:
        """Call a JSON-RPC method on the chain's node."""

        async def request():
            self._rpc_id += 1
            response = await self.client.post(
                self.config.rpc_url,
                json={"jsonrpc": "2.0", "method": method, "params": params, "id": self._rpc_id},
                headers={"Content-Type": "application/json"},
            )
            if response.status_code == 429:
                raise RateLimitError(f"{method}: HTTP 429")
            response.raise_for_status()
            data = response.json()
            if data.get("error"):
                message = data["error"].get("message", "Unknown error")
                if "rate" in message.lower():
                    raise RateLimitError(message)
                raise DataSourceError(f"RPC Error: {message}")
            return data.get("result")

        return await self._with_retries(method, request)

    async def call_explorer(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Call the explorer API and return its result rows."""
        query = dict(params)
        if self.config.explorer_api_key:
            query["apikey"] = self.config.explorer_api_key

        async def request():
            response = await self.client.get(self.config.explorer_api_url, params=query)
            if response.status_code == 429:
                raise RateLimitError("explorer: HTTP 429")
            response.raise_for_status()
            data = response.json()
            status = str(data.get("status", "1"))
            message = str(data.get("message", "OK"))
            result = data.get("result")
            if status == "0" and isinstance(result, str) and "rate" in result.lower():
                raise RateLimitError(result)
            if status == "0" and "no transactions" not in message.lower():
                raise DataSourceError(f"Explorer error: {message}")
            return result if isinstance(result, list) else []

        return await self._with_retries(f"explorer:{params.get('action')}", request)

    # ─── ChainDataSource ──────────────────────────────────────────────────────

    async def get_transaction(self, tx_hash: str) -> Optional[Transaction]:
        raw = await self.call_rpc("eth_getTransactionByHash", [tx_hash])
        if not raw:
            return None
        return Transaction(
            hash=raw.get("hash") or tx_hash,
            from_address=raw.get("from") or "",
            to_address=raw.get("to"),
            value=_hex_to_int(raw.get("value")) or 0,
            input=raw.get("input") or "0x",
            block_number=_hex_to_int(raw.get("blockNumber")),
        )

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        raw = await self.call_rpc("eth_getTransactionReceipt", [tx_hash])
        if not raw:
            return None
        return Receipt(
            transaction_hash=raw.get("transactionHash") or tx_hash,
            gas_used=_hex_to_int(raw.get("gasUsed")),
            contract_address=raw.get("contractAddress"),
            to_address=raw.get("to"),
            status=_hex_to_int(raw.get("status")),
        )

    async def get_address_activity(
        self, address: str, limit: int, before_block: Optional[int] = None
    ) -> List[Transaction]:
        params: Dict[str, Any] = {
            "module": "account",
            "action": "txlist",
            "address": address,
            "startblock": 0,
            "page": 1,
            "offset": limit,
            "sort": "desc",
        }
        if before_block is not None:
            params["endblock"] = before_block

        rows = await self.call_explorer(params)
        return [
            Transaction(
                hash=r.get("hash", ""),
                from_address=r.get("from") or "",
                to_address=r.get("to") or None,
                value=_hex_to_int(r.get("value")) or 0,
                input=r.get("input") or "0x",
                block_number=_hex_to_int(r.get("blockNumber")),
                timestamp=_hex_to_int(r.get("timeStamp")),
            )
            for r in rows[:limit]
            if r.get("hash")
        ]

    async def get_token_transfers(
        self, address: str, limit: int, before_block: Optional[int] = None
    ) -> List[TokenTransfer]:
        return await self._transfers("tokentx", address, limit, before_block)

    async def get_nft_transfers(
        self, address: str, limit: int, before_block: Optional[int] = None
    ) -> List[TokenTransfer]:
        return await self._transfers("tokennfttx", address, limit, before_block)

    async def _transfers(
        self, action: str, address: str, limit: int, before_block: Optional[int]
    ) -> List[TokenTransfer]:
        params: Dict[str, Any] = {
            "module": "account",
            "action": action,
            "address": address,
            "startblock": 0,
            "page": 1,
            "offset": limit,
            "sort": "desc",
        }
        if before_block is not None:
            params["endblock"] = before_block

        rows = await self.call_explorer(params)
        return [
            TokenTransfer(
                transaction_hash=r.get("hash", ""),
                token_address=r.get("contractAddress") or "",
                token_symbol=r.get("tokenSymbol"),
                from_address=r.get("from") or "",
                to_address=r.get("to") or None,
                value=_hex_to_int(r.get("value")) or 0,
                token_decimals=_hex_to_int(r.get("tokenDecimal")),
                token_id=_hex_to_int(r.get("tokenID")),
                block_number=_hex_to_int(r.get("blockNumber")),
            )
            for r in rows[:limit]
            if r.get("hash")
        ]

    def format_native_amount(self, raw_value: int) -> str:
        amount = Decimal(int(raw_value or 0)) / (Decimal(10) ** self.config.decimals)
        return format(amount.normalize(), "f")

    async def aclose(self):
        """Close the HTTP client."""
        await self.client.aclose()
