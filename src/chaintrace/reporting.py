from typing import List

from chaintrace.models import Edge, TraceNode, TraceResult


def _short(address) -> str:
    if not address:
        return "(contract creation)"
    return f"{address[:8]}...{address[-6:]}"


def _edge_line(edge: Edge) -> str:
    line = f"{edge.hash[:12]}... {_short(edge.from_address)} -> {_short(edge.to_address)} "
    line += f"{edge.amount} {edge.token} [{edge.direction}, risk {edge.risk_score}]"
    if edge.risk_tags:
        line += f" {','.join(t.value for t in edge.risk_tags)}"
    if edge.bridge_name:
        line += f" via {edge.bridge_name}"
    return line


def build_tree_text(trace_result: TraceResult) -> str:
    """
    Render the trace tree as indented ASCII, one edge per line.
    """
    lines: List[str] = []

    def walk(node: TraceNode, prefix: str, last: bool):
        connector = "└── " if last else "├── "
        lines.append(prefix + connector + _edge_line(node.edge))
        child_prefix = prefix + ("    " if last else "│   ")
        for i, child in enumerate(node.children):
            walk(child, child_prefix, i == len(node.children) - 1)

    for i, root in enumerate(trace_result.roots):
        walk(root, "", i == len(trace_result.roots) - 1)

    return "\n".join(lines)


def build_summary_text(trace_result: TraceResult) -> str:
    """
    Generate a human-readable summary of the trace.
    """
    risk = trace_result.summary
    stats = trace_result.stats

    summary = f"Trace of {trace_result.seed} on {trace_result.chain} (max depth {trace_result.max_depth}).\n"

    summary += f"\nTrace Stats:\n- Transactions: {stats.total_transactions}\n"
    summary += f"- Addresses visited: {stats.visited_addresses}\n"
    summary += f"- Max depth reached: {stats.max_depth_reached}\n"
    summary += f"- Skipped: {stats.skipped_count}\n"
    summary += f"- Duration: {stats.duration_seconds:.2f}s\n"

    if not trace_result.flat:
        summary += "\nNo transactions found."
        return summary

    summary += "\nRisk:\n"
    summary += f"- Overall risk level: {risk.overall_risk_level}/100\n"
    dist = risk.risk_distribution
    summary += f"- Distribution: low {dist.get('low', 0)}, medium {dist.get('medium', 0)}, high {dist.get('high', 0)}\n"
    summary += f"- High risk transactions: {risk.high_risk_transactions}\n"
    summary += f"- Bridge / mixer / DEX interactions: {risk.bridge_interactions} / "
    summary += f"{risk.mixer_interactions} / {risk.dex_interactions}\n"
    summary += f"- Total volume: {risk.total_volume}\n"

    if risk.suspicious_addresses:
        summary += "\nSuspicious Addresses:\n"
        for address in risk.suspicious_addresses:
            summary += f"- {address}\n"

    summary += "\nFlow:\n"
    summary += build_tree_text(trace_result) + "\n"

    if trace_result.skipped:
        summary += "\nSkipped:\n"
        for node in trace_result.skipped:
            summary += f"- {node.hash or node.address} (depth {node.depth}): {node.reason}\n"

    return summary


def build_graph(trace_result: TraceResult) -> dict:
    """
    Build a graph JSON object for visualization.
    """
    nodes = {}
    edges = []
    suspicious = set(trace_result.summary.suspicious_addresses)

    for edge in trace_result.flat:
        for address in edge.addresses():
            node_id = f"{address}-{edge.chain}"
            if node_id not in nodes:
                nodes[node_id] = {
                    "id": node_id,
                    "type": "address",
                    "address": address,
                    "chain": edge.chain,
                    "suspicious": address in suspicious,
                }

        edges.append({
            "id": f"edge-{edge.hash}",
            "from": f"{edge.from_address}-{edge.chain}",
            "to": f"{edge.to_address}-{edge.chain}" if edge.to_address else None,
            "tx_hash": edge.hash,
            "relation": "flow",
            "chain": edge.chain,
            "asset": edge.token,
            "amount": str(edge.amount),
            "direction": edge.direction,
            "depth": edge.depth,
            "risk_score": edge.risk_score,
            "risk_tags": [t.value for t in edge.risk_tags],
            "bridge_name": edge.bridge_name,
        })

    return {
        "seed": trace_result.seed,
        "chain": trace_result.chain,
        "nodes": list(nodes.values()),
        "edges": edges,
        "summary": trace_result.summary.model_dump(mode="json"),
        "skipped": [s.model_dump() for s in trace_result.skipped],
    }


def build_report(trace_result: TraceResult) -> dict:
    return {
        "summary_text": build_summary_text(trace_result),
        "graph": build_graph(trace_result)
    }
