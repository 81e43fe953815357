"""
Transaction graph walker.

Starting from a seed transaction (or the recent activity of a seed address),
the orchestrator follows each edge's destination forward and its source
backward, one hop at a time, until the depth cap is reached. Every visited
transaction becomes an Edge in the run's flat list and a node in the tree.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, List, Optional, Set, Tuple

from chaintrace.cache import ResultCache, make_key
from chaintrace.classification import RiskAnnotator
from chaintrace.client_protocol import ChainDataSource
from chaintrace.config import EngineConfig
from chaintrace.models import (
    Edge, Receipt, SkippedNode, TokenTransfer, TraceNode, TraceResult, TraceStats, Transaction
)

# Setup logger for tracer
logger = logging.getLogger("tracer")
logger.setLevel(EngineConfig.LOG_LEVEL)
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('[TRACE] %(message)s'))
    logger.addHandler(handler)

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")
ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def detect_seed_kind(seed: str) -> Optional[str]:
    """Return "transaction", "address" or None for an unrecognised seed."""
    seed = (seed or "").strip()
    if TX_HASH_RE.match(seed):
        return "transaction"
    if ADDRESS_RE.match(seed):
        return "address"
    return None


@dataclass
class TraceContext:
    """State owned by a single trace run. Never shared between runs."""

    chain: str
    max_depth: int
    cache: ResultCache
    visited_transactions: Set[str] = field(default_factory=set)
    visited_addresses: Set[str] = field(default_factory=set)
    flat: List[Edge] = field(default_factory=list)
    skipped: List[SkippedNode] = field(default_factory=list)
    started_at: float = field(default_factory=time.monotonic)


class TraceOrchestrator:
    def __init__(
        self,
        source: ChainDataSource,
        annotator: Optional[RiskAnnotator] = None,
        activity_limit: Optional[int] = None,
        token_transfer_limit: Optional[int] = None,
        token_sample_limit: Optional[int] = None,
        batch_size: Optional[int] = None,
        cache_factory: Optional[Callable[[], ResultCache]] = None,
    ):
        self.source = source
        self.annotator = annotator or RiskAnnotator(decimals=getattr(source, "decimals", 18))
        self.activity_limit = activity_limit if activity_limit is not None else EngineConfig.ACTIVITY_LIMIT
        self.token_transfer_limit = token_transfer_limit if token_transfer_limit is not None else EngineConfig.TOKEN_TRANSFER_LIMIT
        self.token_sample_limit = token_sample_limit if token_sample_limit is not None else EngineConfig.TOKEN_SAMPLE_LIMIT
        self.batch_size = batch_size if batch_size is not None else EngineConfig.BATCH_SIZE
        if self.batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        if min(self.activity_limit, self.token_transfer_limit, self.token_sample_limit) < 0:
            raise ValueError("activity and token limits must be >= 0")
        self.cache_factory = cache_factory or ResultCache

    def new_context(self, max_depth: int) -> TraceContext:
        return TraceContext(chain=self.source.chain, max_depth=max_depth, cache=self.cache_factory())

    # ─── Entry points ─────────────────────────────────────────────────────────

    async def trace(self, seed: str, max_depth: int) -> TraceResult:
        """Trace from a transaction hash or an address, whichever the seed is."""
        if detect_seed_kind(seed) == "transaction":
            return await self.trace_transaction(seed, max_depth)
        return await self.trace_address(seed, max_depth)

    async def trace_transaction(self, tx_hash: str, max_depth: int) -> TraceResult:
        ctx = self.new_context(max_depth)
        seed = tx_hash.strip().lower()
        logger.info(f"Tracing tx {seed[:18]} on {ctx.chain} (max depth {max_depth})")

        root = await self._trace_node(seed, 0, "out", ctx)
        return self._build_result(seed, ctx, [root] if root else [])

    async def trace_address(self, address: str, max_depth: int) -> TraceResult:
        ctx = self.new_context(max_depth)
        seed = address.strip().lower()
        logger.info(f"Tracing address {seed} on {ctx.chain} (max depth {max_depth})")

        ctx.visited_addresses.add(seed)
        roots: List[TraceNode] = []
        if max_depth > 0:
            activity = await self._fetch_activity(seed, None, 0, ctx)
            items = [(t.hash, "out" if t.from_address == seed else "in") for t in activity]
            roots = await self._expand(items, 0, ctx)

        return self._build_result(seed, ctx, roots)

    # ─── Traversal ────────────────────────────────────────────────────────────

    async def _trace_node(self, tx_hash: str, depth: int, direction: str, ctx: TraceContext) -> Optional[TraceNode]:
        if depth >= ctx.max_depth or tx_hash in ctx.visited_transactions:
            return None
        # Must happen before the first await so concurrent branches never expand the same hash
        ctx.visited_transactions.add(tx_hash)

        try:
            tx: Optional[Transaction] = await self._cached(
                ctx, "tx", (tx_hash,), lambda: self.source.get_transaction(tx_hash)
            )
            receipt: Optional[Receipt] = await self._cached(
                ctx, "receipt", (tx_hash,), lambda: self.source.get_receipt(tx_hash)
            )
        except Exception as e:
            self._skip(ctx, depth, f"{type(e).__name__}: {e}", tx_hash=tx_hash)
            return None

        if tx is None:
            self._skip(ctx, depth, "transaction not found", tx_hash=tx_hash)
            return None

        assessment = self.annotator.classify(tx, receipt)
        bridge_name = self.annotator.bridge_name(tx.to_address)
        token_transfers, nft_transfers = await self._token_sample(tx, ctx)

        edge = Edge(
            hash=tx.hash,
            from_address=tx.from_address or "",
            to_address=tx.to_address,
            amount=Decimal(self.source.format_native_amount(tx.value)),
            token=self.source.symbol,
            chain=ctx.chain,
            chain_name=getattr(self.source, "chain_name", None),
            block_number=tx.block_number,
            timestamp=tx.timestamp,
            direction=direction,
            depth=depth,
            risk_tags=sorted(assessment.tags, key=lambda t: t.value),
            risk_score=assessment.score,
            is_cross_chain=bridge_name is not None,
            bridge_name=bridge_name,
            via_contract=bool(tx.to_address) and tx.to_address != tx.from_address,
            contract_interaction=receipt.to_address if receipt else None,
            token_transfers=token_transfers,
            nft_transfers=nft_transfers,
            gas_used=receipt.gas_used if receipt else None,
        )
        ctx.flat.append(edge)

        children: List[TraceNode] = []
        if depth + 1 < ctx.max_depth:
            # Where the funds went next
            if tx.to_address and tx.to_address not in ctx.visited_addresses:
                ctx.visited_addresses.add(tx.to_address)
                outgoing = await self._fetch_activity(tx.to_address, None, depth, ctx)
                children.extend(await self._expand(
                    [(t.hash, "out") for t in outgoing if t.hash != tx_hash], depth + 1, ctx
                ))

            # Where the funds came from, up to this edge's block
            if tx.from_address and tx.from_address not in ctx.visited_addresses:
                ctx.visited_addresses.add(tx.from_address)
                incoming = await self._fetch_activity(tx.from_address, tx.block_number, depth, ctx)
                children.extend(await self._expand(
                    [(t.hash, "in") for t in incoming if t.hash != tx_hash], depth + 1, ctx
                ))

        return TraceNode(edge=edge, children=children)

    async def _expand(self, items: Iterable[Tuple[str, str]], depth: int, ctx: TraceContext) -> List[TraceNode]:
        """Trace (hash, direction) pairs in sequential batches of concurrent branches."""
        pending = [(h, d) for h, d in items if h not in ctx.visited_transactions]
        children: List[TraceNode] = []

        for i in range(0, len(pending), self.batch_size):
            batch = pending[i:i + self.batch_size]
            results = await asyncio.gather(*(self._trace_node(h, depth, d, ctx) for h, d in batch))
            children.extend(node for node in results if node is not None)

        return children

    # ─── Data access ──────────────────────────────────────────────────────────

    async def _cached(self, ctx: TraceContext, operation: str, args: tuple, producer: Callable[[], Awaitable]):
        return await ctx.cache.get_or_compute(make_key(ctx.chain, operation, *args), producer)

    async def _fetch_activity(
        self, address: str, before_block: Optional[int], depth: int, ctx: TraceContext
    ) -> List[Transaction]:
        if self.activity_limit <= 0:
            return []
        try:
            activity = await self._cached(
                ctx, "activity", (address, self.activity_limit, before_block),
                lambda: self.source.get_address_activity(address, self.activity_limit, before_block),
            )
        except Exception as e:
            self._skip(ctx, depth, f"activity lookup failed: {type(e).__name__}: {e}", address=address)
            return []
        return list(activity or [])[:self.activity_limit]

    async def _token_sample(self, tx: Transaction, ctx: TraceContext) -> Tuple[List[TokenTransfer], List[TokenTransfer]]:
        """Sample ERC-20 and ERC-721 transfers around the edge's destination."""
        address = tx.to_address or tx.from_address
        if not address or self.token_sample_limit <= 0 or self.token_transfer_limit <= 0:
            return [], []
        erc20 = await self._transfer_sample(
            ctx, "token_transfers", address, tx.block_number,
            lambda: self.source.get_token_transfers(address, self.token_transfer_limit, tx.block_number),
        )
        erc721 = await self._transfer_sample(
            ctx, "nft_transfers", address, tx.block_number,
            lambda: self.source.get_nft_transfers(address, self.token_transfer_limit, tx.block_number),
        )
        return erc20, erc721

    async def _transfer_sample(
        self, ctx: TraceContext, operation: str, address: str, before_block: Optional[int],
        producer: Callable[[], Awaitable],
    ) -> List[TokenTransfer]:
        try:
            transfers = await self._cached(ctx, operation, (address, self.token_transfer_limit, before_block), producer)
        except Exception as e:
            logger.debug(f"  {operation} lookup failed for {address}: {type(e).__name__}: {e}")
            return []
        return list(transfers or [])[:self.token_sample_limit]

    # ─── Helpers ──────────────────────────────────────────────────────────────

    def _skip(
        self, ctx: TraceContext, depth: int, reason: str,
        tx_hash: Optional[str] = None, address: Optional[str] = None,
    ) -> None:
        logger.debug(f"  Skipped {tx_hash or address} at depth {depth}: {reason}")
        ctx.skipped.append(SkippedNode(hash=tx_hash, address=address, depth=depth, reason=reason))

    def _build_result(self, seed: str, ctx: TraceContext, roots: List[TraceNode]) -> TraceResult:
        duration = time.monotonic() - ctx.started_at
        logger.info(
            f"Trace {seed[:18]} done: {len(ctx.flat)} txs, "
            f"{len(ctx.visited_addresses)} addresses, {len(ctx.skipped)} skipped in {duration:.2f}s"
        )
        return TraceResult(
            seed=seed,
            chain=ctx.chain,
            max_depth=ctx.max_depth,
            tree=roots[0] if roots else None,
            roots=roots,
            flat=list(ctx.flat),
            skipped=list(ctx.skipped),
            stats=TraceStats(
                total_transactions=len(ctx.flat),
                visited_addresses=len(ctx.visited_addresses),
                skipped_count=len(ctx.skipped),
                duration_seconds=round(duration, 3),
            ),
        )
