from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Optional, Set

from chaintrace.models import Receipt, RiskTag, Transaction

# Known cross-chain bridge contracts (Ethereum mainnet)
BRIDGE_ADDRESSES: Dict[str, str] = {
    "0x22d63a26c730d49e5eab461e4f5de1d42fd774b0": "cBridge",
    "0x0e3a2a1f2146d86a604adc220b4967a898d7fe07": "Hop",
    "0x5a58505a96d1dbf8eaa9e6e2942c6cfd3e5f237b": "Stargate",
    "0x98a5737749490856b401db5dc27f522fc314a4e1": "Synapse",
    "0x0b306bf915c4d645ff596e518faf3f9669b97016": "Multichain",
}

MIXER_ADDRESSES: Set[str] = {
    "0x722122df12d4e14e13ac3b6895a86e84145b6967",  # Tornado Cash
    "0xdd4c48c0b24039969fc16d1cdf626eab821d3384",  # Tornado Cash
    "0xd90e2f925da726b50c4ed8d0fb90ad053324f31b",  # Tornado Cash
    "0x47ce0c6ed5b0ce3d3a51fdb1c52dc66a7c3c2b0d",  # Tornado Cash
    "0x910cbd523d972eb0a6f4cae4618ad62622b39dbf",  # Tornado Cash
}

DEX_ADDRESSES: Set[str] = {
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # Uniswap V2 Router
    "0xe592427a0aece92de3edee1f18e0157c05861564",  # Uniswap V3 Router
    "0x1111111254fb6c44bac0bed2854e76f90643097d",  # 1inch
    "0xdef1c0ded9bec7f1a1670819833240f027b25eff",  # 0x Protocol
}

RISKY_ADDRESSES: Set[str] = {
    "0x1111111254fb6c44bac0bed2854e76f90643097d",  # 1inch
    "0x000000000000000000000000000000000000dead",  # Burn
    "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # Uniswap V2 Router
    "0xe592427a0aece92de3edee1f18e0157c05861564",  # Uniswap V3 Router
    "0x7d2768de32b0b80b7a3454c06bdac94a69ddc7a9",  # Aave Lending Pool
}

# Zero and zero-like addresses
SUSPICIOUS_ADDRESSES: Set[str] = {
    "0x0000000000000000000000000000000000000000",
    "0x0000000000000000000000000000000000000001",
}

HIGH_GAS_THRESHOLD = 100_000

TAG_BONUS: Dict[RiskTag, int] = {
    RiskTag.MIXER: 50,
    RiskTag.BRIDGE: 30,
    RiskTag.SUSPICIOUS_PATTERN: 40,
    RiskTag.DEX_INTERACTION: 20,
    RiskTag.CONTRACT_INTERACTION: 15,
    RiskTag.HIGH_GAS_USAGE: 25,
}

PER_TAG_SCORE = 10
HIGH_VALUE = Decimal("10")
VERY_HIGH_VALUE = Decimal("100")
MAX_SCORE = 100


@dataclass(frozen=True)
class RiskAssessment:
    tags: FrozenSet[RiskTag]
    score: int


def _lower_set(addresses: Optional[Iterable[str]]) -> Set[str]:
    return {a.lower() for a in (addresses or [])}


class RiskAnnotator:
    """
    Deterministic edge classifier over static reference address sets.
    No network or database access; same input always gives the same output.
    """

    def __init__(
        self,
        decimals: int = 18,
        extra_bridges: Optional[Dict[str, str]] = None,
        extra_mixers: Optional[Iterable[str]] = None,
        extra_dexes: Optional[Iterable[str]] = None,
        extra_risky: Optional[Iterable[str]] = None,
    ):
        self.unit = Decimal(10) ** decimals
        self.bridges = dict(BRIDGE_ADDRESSES)
        self.bridges.update({k.lower(): v for k, v in (extra_bridges or {}).items()})
        self.mixers = MIXER_ADDRESSES | _lower_set(extra_mixers)
        self.dexes = DEX_ADDRESSES | _lower_set(extra_dexes)
        self.risky = RISKY_ADDRESSES | _lower_set(extra_risky)

    def is_bridge_address(self, address: Optional[str]) -> bool:
        return bool(address) and address.lower() in self.bridges

    def bridge_name(self, address: Optional[str]) -> Optional[str]:
        if not address:
            return None
        return self.bridges.get(address.lower())

    def get_tags(self, tx: Transaction, receipt: Optional[Receipt]) -> FrozenSet[RiskTag]:
        sender = (tx.from_address or "").lower()
        recipient = (tx.to_address or "").lower()
        ends = {sender, recipient}
        tags: Set[RiskTag] = set()

        if recipient in self.bridges:
            tags.add(RiskTag.BRIDGE)
        if ends & self.risky:
            tags.add(RiskTag.RISKY_ADDRESS)
        if ends & self.mixers:
            tags.add(RiskTag.MIXER)
        if ends & self.dexes:
            tags.add(RiskTag.DEX_INTERACTION)
        if tx.input and len(tx.input) > 10:
            tags.add(RiskTag.CONTRACT_INTERACTION)
        if not tx.value:
            tags.add(RiskTag.ZERO_VALUE)
        if receipt and receipt.gas_used is not None and receipt.gas_used > HIGH_GAS_THRESHOLD:
            tags.add(RiskTag.HIGH_GAS_USAGE)
        if ends & SUSPICIOUS_ADDRESSES:
            tags.add(RiskTag.SUSPICIOUS_PATTERN)
        if sender == recipient:
            tags.add(RiskTag.SELF_TRANSACTION)
        if receipt and receipt.contract_address:
            tags.add(RiskTag.CONTRACT_CREATION)

        return frozenset(tags)

    def score(self, tags: FrozenSet[RiskTag], tx: Transaction) -> int:
        score = PER_TAG_SCORE * len(tags)
        score += sum(TAG_BONUS.get(tag, 0) for tag in tags)

        if tx.value:
            value = Decimal(tx.value) / self.unit
            if value > HIGH_VALUE:
                score += 20
            if value > VERY_HIGH_VALUE:
                score += 30

        return max(0, min(score, MAX_SCORE))

    def classify(self, tx: Transaction, receipt: Optional[Receipt] = None) -> RiskAssessment:
        tags = self.get_tags(tx, receipt)
        return RiskAssessment(tags=tags, score=self.score(tags, tx))
