import asyncio
import unittest
from decimal import Decimal

from chaintrace.errors import DataSourceError
from chaintrace.models import Receipt, RiskTag, TokenTransfer, Transaction
from chaintrace.static_source import StaticChainDataSource
from chaintrace.tracer import TraceOrchestrator, detect_seed_kind

ETH = 10**18
A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40
D = "0x" + "d" * 40
CBRIDGE = "0x22d63a26c730d49e5eab461e4f5de1d42fd774b0"


def _hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def _addr(n: int) -> str:
    return "0x" + f"{n + 0x1000:040x}"


def _tx(n: int, from_address: str, to_address: str, value: int = ETH, block: int = None) -> Transaction:
    return Transaction(
        hash=_hash(n),
        from_address=from_address,
        to_address=to_address,
        value=value,
        block_number=block if block is not None else n,
        timestamp=1_700_000_000 + n,
    )


class _ConcurrencyTracker(StaticChainDataSource):
    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.in_flight = 0
        self.peak = 0

    async def get_transaction(self, tx_hash: str):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        return await super().get_transaction(tx_hash)


class _BrokenSource(StaticChainDataSource):
    def __init__(self, *args, broken=(), broken_activity=(), **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.broken = set(broken)
        self.broken_activity = set(broken_activity)

    async def get_transaction(self, tx_hash: str):
        if tx_hash in self.broken:
            raise DataSourceError("node unavailable")
        return await super().get_transaction(tx_hash)

    async def get_address_activity(self, address, limit, before_block=None):
        if address in self.broken_activity:
            raise DataSourceError("explorer unavailable")
        return await super().get_address_activity(address, limit, before_block)


class DetectSeedKindTests(unittest.TestCase):
    def test_kinds(self) -> None:
        self.assertEqual(detect_seed_kind(_hash(1)), "transaction")
        self.assertEqual(detect_seed_kind(A), "address")
        self.assertEqual(detect_seed_kind(" " + A.upper().replace("0X", "0x") + " "), "address")
        self.assertIsNone(detect_seed_kind("0x1234"))
        self.assertIsNone(detect_seed_kind(""))
        self.assertIsNone(detect_seed_kind("a" * 42))


class TraceOrchestratorTests(unittest.IsolatedAsyncioTestCase):
    def _h1_h2_source(self) -> StaticChainDataSource:
        return StaticChainDataSource(transactions=[
            _tx(1, A, B, value=5 * ETH, block=100),
            _tx(2, B, C, value=200 * ETH, block=101),
        ])

    async def test_depth_one_traces_only_the_seed(self) -> None:
        tracer = TraceOrchestrator(self._h1_h2_source())
        result = await tracer.trace(_hash(1), 1)

        self.assertEqual([e.hash for e in result.flat], [_hash(1)])
        self.assertEqual(result.tree.edge.hash, _hash(1))
        self.assertEqual(result.tree.children, [])

    async def test_depth_two_follows_destination(self) -> None:
        tracer = TraceOrchestrator(self._h1_h2_source())
        result = await tracer.trace(_hash(1), 2)

        by_hash = {e.hash: e for e in result.flat}
        self.assertEqual(set(by_hash), {_hash(1), _hash(2)})

        h1, h2 = by_hash[_hash(1)], by_hash[_hash(2)]
        self.assertEqual((h1.depth, h1.direction), (0, "out"))
        self.assertEqual((h2.depth, h2.direction), (1, "out"))
        self.assertEqual(h1.amount, Decimal("5"))
        self.assertEqual(h2.amount, Decimal("200"))
        self.assertEqual(h1.risk_score, 0)
        self.assertEqual(h2.risk_score, 50)
        self.assertEqual([c.edge.hash for c in result.tree.children], [_hash(2)])

    async def test_two_node_cycle_terminates(self) -> None:
        source = StaticChainDataSource(transactions=[_tx(1, A, B), _tx(2, B, A)])
        tracer = TraceOrchestrator(source)

        for depth in (2, 5, 10):
            result = await tracer.trace(_hash(1), depth)
            hashes = [e.hash for e in result.flat]
            self.assertEqual(sorted(hashes), [_hash(1), _hash(2)])

    async def test_no_duplicate_hash_when_branches_converge(self) -> None:
        # Both roots lead to the same transaction X -> Y
        x, y = _addr(1), _addr(2)
        source = StaticChainDataSource(transactions=[
            _tx(1, A, x, block=10),
            _tx(2, A, y, block=11),
            _tx(3, x, y, block=12),
            _tx(4, y, D, block=13),
        ])
        result = await TraceOrchestrator(source).trace(A, 4)

        hashes = [e.hash for e in result.flat]
        self.assertEqual(len(hashes), len(set(hashes)))
        self.assertEqual(set(hashes), {_hash(1), _hash(2), _hash(3), _hash(4)})
        self.assertEqual(len(result.roots), 2)

    async def test_depths_within_bounds(self) -> None:
        chain = [_addr(i) for i in range(8)]
        txs = [_tx(i + 1, chain[i], chain[i + 1]) for i in range(7)]
        source = StaticChainDataSource(transactions=txs)

        for max_depth in (1, 3, 5):
            result = await TraceOrchestrator(source).trace(_hash(1), max_depth)
            depths = [e.depth for e in result.flat]
            self.assertTrue(all(0 <= d < max_depth for d in depths))
            self.assertEqual(len(result.flat), min(max_depth, 7))

    async def test_tree_and_flat_agree(self) -> None:
        source = StaticChainDataSource(transactions=[
            _tx(1, A, B, block=10),
            _tx(2, B, C, block=11),
            _tx(3, B, D, block=12),
            _tx(4, C, D, block=13),
        ])
        result = await TraceOrchestrator(source).trace(_hash(1), 3)

        tree_hashes = sorted(e.hash for root in result.roots for e in root.iter_edges())
        self.assertEqual(tree_hashes, sorted(e.hash for e in result.flat))

    async def test_inbound_expansion_respects_block(self) -> None:
        # Funding of A before the seed is followed, later activity is not
        source = StaticChainDataSource(transactions=[
            _tx(1, C, A, block=5),
            _tx(2, A, B, block=10),
            _tx(3, D, A, block=20),
        ])
        result = await TraceOrchestrator(source).trace(_hash(2), 2)

        by_hash = {e.hash: e for e in result.flat}
        self.assertIn(_hash(1), by_hash)
        self.assertEqual(by_hash[_hash(1)].direction, "in")
        self.assertNotIn(_hash(3), by_hash)

    async def test_address_seed(self) -> None:
        source = StaticChainDataSource(transactions=[
            _tx(1, C, A, block=5),
            _tx(2, A, B, block=10),
        ])
        result = await TraceOrchestrator(source).trace(A.upper().replace("0X", "0x"), 1)

        directions = {e.hash: e.direction for e in result.flat}
        self.assertEqual(directions, {_hash(1): "in", _hash(2): "out"})
        self.assertEqual(result.seed, A)
        self.assertTrue(all(e.depth == 0 for e in result.flat))

    async def test_missing_seed_is_skipped(self) -> None:
        result = await TraceOrchestrator(StaticChainDataSource()).trace(_hash(99), 3)

        self.assertIsNone(result.tree)
        self.assertEqual(result.flat, [])
        self.assertEqual(len(result.skipped), 1)
        self.assertEqual(result.skipped[0].hash, _hash(99))

    async def test_failing_node_is_recorded_and_siblings_continue(self) -> None:
        source = _BrokenSource(
            transactions=[_tx(1, A, B, block=10), _tx(2, B, C, block=11), _tx(3, B, D, block=12)],
            broken={_hash(2)},
        )
        result = await TraceOrchestrator(source).trace(_hash(1), 2)

        self.assertEqual({e.hash for e in result.flat}, {_hash(1), _hash(3)})
        self.assertEqual([s.hash for s in result.skipped], [_hash(2)])
        self.assertIn("node unavailable", result.skipped[0].reason)

    async def test_activity_failure_is_recorded(self) -> None:
        source = _BrokenSource(
            transactions=[_tx(1, A, B, block=10), _tx(2, B, C, block=11)],
            broken_activity={B},
        )
        result = await TraceOrchestrator(source).trace(_hash(1), 3)

        self.assertEqual([e.hash for e in result.flat], [_hash(1)])
        self.assertEqual([s.address for s in result.skipped], [B])

    async def test_fan_out_is_batched(self) -> None:
        txs = [_tx(i, A, _addr(i)) for i in range(1, 13)]
        source = _ConcurrencyTracker(transactions=txs)
        result = await TraceOrchestrator(source, batch_size=5).trace(A, 1)

        self.assertEqual(len(result.roots), 12)
        self.assertEqual(source.peak, 5)

    async def test_activity_limit_caps_roots(self) -> None:
        txs = [_tx(i, A, _addr(i)) for i in range(1, 21)]
        result = await TraceOrchestrator(StaticChainDataSource(transactions=txs), activity_limit=15).trace(A, 1)
        self.assertEqual(len(result.flat), 15)

    async def test_each_hash_fetched_once(self) -> None:
        source = StaticChainDataSource(transactions=[_tx(1, A, B), _tx(2, B, A)])
        await TraceOrchestrator(source).trace(_hash(1), 5)
        self.assertEqual(source.calls["get_transaction"], 2)

    async def test_bridge_edge_and_receipt_fields(self) -> None:
        tx = _tx(1, A, CBRIDGE, value=20 * ETH)
        receipt = Receipt(transaction_hash=tx.hash, gas_used=150_000, to_address=CBRIDGE)
        transfers = [
            TokenTransfer(
                transaction_hash=_hash(50 + i), token_address=_addr(90), token_symbol="USDC",
                from_address=A, to_address=CBRIDGE, value=1000, block_number=1,
            )
            for i in range(5)
        ]
        source = StaticChainDataSource(transactions=[tx], receipts=[receipt], token_transfers=transfers)
        result = await TraceOrchestrator(source).trace(tx.hash, 1)

        edge = result.flat[0]
        self.assertTrue(edge.is_cross_chain)
        self.assertEqual(edge.bridge_name, "cBridge")
        self.assertEqual(edge.gas_used, 150_000)
        self.assertEqual(edge.contract_interaction, CBRIDGE)
        self.assertEqual(edge.risk_tags, [RiskTag.BRIDGE, RiskTag.HIGH_GAS_USAGE])
        self.assertEqual(edge.risk_score, 20 + 30 + 25 + 20)
        self.assertEqual(len(edge.token_transfers), 3)
        self.assertEqual(edge.chain, "ethereum")
        self.assertEqual(edge.token, "ETH")

    async def test_runs_do_not_share_state(self) -> None:
        tracer = TraceOrchestrator(self._h1_h2_source())
        first = await tracer.trace(_hash(1), 2)
        second = await tracer.trace(_hash(1), 2)
        self.assertEqual(len(first.flat), len(second.flat))

    async def test_nft_transfers_sampled_separately(self) -> None:
        tx = _tx(1, A, B, block=10)
        erc20 = [
            TokenTransfer(transaction_hash=_hash(60), token_address=_addr(90), token_symbol="USDC",
                          from_address=A, to_address=B, value=1000, block_number=9)
        ]
        erc721 = [
            TokenTransfer(transaction_hash=_hash(70 + i), token_address=_addr(91), token_symbol="PUNK",
                          from_address=C, to_address=B, token_id=i, block_number=5 + i)
            for i in range(6)
        ]
        source = StaticChainDataSource(transactions=[tx], token_transfers=erc20, nft_transfers=erc721)
        edge = (await TraceOrchestrator(source).trace(tx.hash, 1)).flat[0]

        self.assertEqual([t.token_symbol for t in edge.token_transfers], ["USDC"])
        # Newest first, capped at the sample limit, nothing after the edge's block
        self.assertEqual([t.token_id for t in edge.nft_transfers], [5, 4, 3])
        self.assertEqual(source.calls["get_nft_transfers"], 1)

    async def test_zero_limits_are_honoured(self) -> None:
        source = self._h1_h2_source()
        result = await TraceOrchestrator(source, activity_limit=0, token_transfer_limit=0).trace(_hash(1), 3)

        self.assertEqual([e.hash for e in result.flat], [_hash(1)])
        self.assertNotIn("get_address_activity", source.calls)
        self.assertNotIn("get_token_transfers", source.calls)
        self.assertEqual(result.skipped, [])

    def test_invalid_batch_size(self) -> None:
        for size in (0, -1):
            with self.assertRaises(ValueError):
                TraceOrchestrator(StaticChainDataSource(), batch_size=size)

    def test_negative_limits_rejected(self) -> None:
        with self.assertRaises(ValueError):
            TraceOrchestrator(StaticChainDataSource(), activity_limit=-1)
        with self.assertRaises(ValueError):
            TraceOrchestrator(StaticChainDataSource(), token_sample_limit=-1)


if __name__ == "__main__":
    unittest.main()
