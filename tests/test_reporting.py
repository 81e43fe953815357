import unittest

from chaintrace.models import Transaction
from chaintrace.reporting import build_graph, build_report, build_summary_text, build_tree_text
from chaintrace.static_source import StaticChainDataSource
from chaintrace.trace_postprocess import postprocess_trace_result
from chaintrace.tracer import TraceOrchestrator

ETH = 10**18
A = "0x" + "a" * 40
B = "0x" + "b" * 40
C = "0x" + "c" * 40
TORNADO = "0x722122df12d4e14e13ac3b6895a86e84145b6967"


def _hash(n: int) -> str:
    return "0x" + f"{n:064x}"


class ReportingTests(unittest.IsolatedAsyncioTestCase):
    async def _trace(self, seed: str, depth: int = 3):
        source = StaticChainDataSource(transactions=[
            Transaction(hash=_hash(1), from_address=A, to_address=B, value=5 * ETH, block_number=10),
            Transaction(hash=_hash(2), from_address=B, to_address=C, value=200 * ETH, block_number=11),
            Transaction(hash=_hash(3), from_address=B, to_address=TORNADO, value=0, block_number=12),
        ])
        result = await TraceOrchestrator(source).trace(seed, depth)
        return postprocess_trace_result(result)

    async def test_summary_text(self) -> None:
        result = await self._trace(_hash(1))
        text = build_summary_text(result)

        self.assertIn(f"Trace of {_hash(1)} on ethereum", text)
        self.assertIn("- Transactions: 3", text)
        self.assertIn("MIXER", text)
        self.assertIn("Suspicious Addresses:", text)
        self.assertIn(TORNADO, text)

    async def test_tree_text_has_one_line_per_edge(self) -> None:
        result = await self._trace(_hash(1))
        lines = build_tree_text(result).splitlines()

        self.assertEqual(len(lines), len(result.flat))
        self.assertTrue(lines[0].startswith("└── "))
        self.assertTrue(all("    " in line or "│" in line for line in lines[1:]))

    async def test_graph_nodes_are_unique(self) -> None:
        result = await self._trace(_hash(1))
        graph = build_graph(result)

        ids = [n["id"] for n in graph["nodes"]]
        self.assertEqual(len(ids), len(set(ids)))
        self.assertEqual(len(ids), 4)
        self.assertEqual(len(graph["edges"]), 3)
        tornado = next(n for n in graph["nodes"] if n["address"] == TORNADO)
        self.assertTrue(tornado["suspicious"])

    async def test_empty_trace(self) -> None:
        result = await self._trace(_hash(99))
        report = build_report(result)

        self.assertIn("No transactions found.", report["summary_text"])
        self.assertEqual(report["graph"]["edges"], [])
        self.assertEqual(len(report["graph"]["skipped"]), 1)


if __name__ == "__main__":
    unittest.main()
