import logging
from decimal import Decimal
from typing import Iterable, List, Set

from chaintrace.config import EngineConfig
from chaintrace.models import Edge, RiskSummary, RiskTag, TraceResult

logger = logging.getLogger("trace_postprocess")

LOW_RISK_CEILING = 30
HIGH_RISK_FLOOR = 70


def risk_bucket(score: int) -> str:
    if score < LOW_RISK_CEILING:
        return "low"
    if score <= HIGH_RISK_FLOOR:
        return "medium"
    return "high"


def _coerce_amount(value) -> Decimal:
    try:
        if value is None:
            return Decimal("0")
        return Decimal(str(value))
    except Exception:
        return Decimal("0")


def summarize_risk(edges: Iterable[Edge], suspicious_threshold: int = None) -> RiskSummary:
    """
    Reduce a flat edge list into summary risk metrics.
    Order-independent; an empty list gives an all-zero summary.
    """
    threshold = suspicious_threshold if suspicious_threshold is not None else EngineConfig.SUSPICIOUS_THRESHOLD
    edges = list(edges)
    if not edges:
        return RiskSummary()

    distribution = {"low": 0, "medium": 0, "high": 0}
    suspicious: Set[str] = set()
    total_score = 0
    total_volume = Decimal("0")
    high_risk = bridges = mixers = dexes = 0

    for edge in edges:
        total_score += edge.risk_score
        distribution[risk_bucket(edge.risk_score)] += 1
        if edge.risk_score > HIGH_RISK_FLOOR:
            high_risk += 1

        total_volume += _coerce_amount(edge.amount)

        if RiskTag.BRIDGE in edge.risk_tags:
            bridges += 1
        if RiskTag.MIXER in edge.risk_tags:
            mixers += 1
        if RiskTag.DEX_INTERACTION in edge.risk_tags:
            dexes += 1

        if edge.risk_score > threshold:
            suspicious.update(edge.addresses())

    return RiskSummary(
        overall_risk_level=round(total_score / len(edges)),
        risk_distribution=distribution,
        high_risk_transactions=high_risk,
        bridge_interactions=bridges,
        mixer_interactions=mixers,
        dex_interactions=dexes,
        total_volume=total_volume.quantize(Decimal("0.01")),
        suspicious_addresses=sorted(suspicious),
    )


class RiskAggregator:
    """Post-processing step that turns a trace's flat edge list into a RiskSummary."""

    def __init__(self, suspicious_threshold: int = None):
        self.suspicious_threshold = suspicious_threshold

    def summarize(self, edges: Iterable[Edge]) -> RiskSummary:
        return summarize_risk(edges, self.suspicious_threshold)


def postprocess_trace_result(trace_result: TraceResult, aggregator: RiskAggregator = None) -> TraceResult:
    """
    Finalize a TraceResult:
    - Recompute the risk summary from the flat list.
    - Fill in stats derived from the edges (depth reached, chains, skips).
    """
    aggregator = aggregator or RiskAggregator()
    flat: List[Edge] = trace_result.flat

    trace_result.summary = aggregator.summarize(flat)

    stats = trace_result.stats
    stats.total_transactions = len(flat)
    stats.max_depth_reached = max((e.depth for e in flat), default=0)
    stats.chains = sorted({e.chain for e in flat} or {trace_result.chain})
    stats.skipped_count = len(trace_result.skipped)

    if trace_result.skipped:
        logger.debug(f"Trace {trace_result.seed}: {len(trace_result.skipped)} nodes skipped")

    return trace_result
