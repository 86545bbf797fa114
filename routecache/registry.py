"""
Static configuration of the route caching strategies.

Strategies are keyed by the string form of a :class:`PairKey`. A key with a wildcard
tokenOut applies to every EXACT_INPUT trade of its tokenIn that has no entry of its own.
"""
import logging
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple

from routecache.keys import PairKey
from routecache.models import CacheMode, ChainId, TradeType
from routecache.strategy import Bucket, CachingStrategy

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """Read-only lookup table from pair key to caching strategy"""

    def __init__(self, strategies: Mapping[str, CachingStrategy]):
        self._strategies: Mapping[str, CachingStrategy] = MappingProxyType(dict(strategies))

    @classmethod
    def from_entries(cls, entries: Iterable[Tuple[PairKey, CachingStrategy]]) -> "StrategyRegistry":
        strategies = {}
        for pair_key, strategy in entries:
            key = str(pair_key)
            if key in strategies:
                raise ValueError(f"duplicate caching strategy for {key}")
            if pair_key.trade_type != strategy.trade_type or pair_key.chain_id != strategy.chain_id:
                raise ValueError(f"caching strategy {strategy.pair} does not match key {key}")
            strategies[key] = strategy
        return cls(strategies)

    def resolve(
            self,
            token_in: str,
            token_out: str,
            trade_type: TradeType,
            chain_id: ChainId
    ) -> Optional[CachingStrategy]:
        """
        Find the strategy for a pair, falling back to the wildcard entry of tokenIn
        for EXACT_INPUT trades.
        """
        pair_key = PairKey(token_in, token_out, trade_type, chain_id)
        strategy = self._strategies.get(str(pair_key))
        if strategy is not None or trade_type != TradeType.EXACT_INPUT:
            return strategy

        # Only ExactIn supports the wildcard, ExactOut quotes don't have enough requests
        wildcard_key = PairKey.wildcard(token_in, chain_id)
        logger.debug(f"No caching strategy for {pair_key}, trying {wildcard_key}")
        return self._strategies.get(str(wildcard_key))

    def strategies(self) -> Iterator[Tuple[str, CachingStrategy]]:
        return iter(self._strategies.items())

    def __contains__(self, key: object) -> bool:
        return str(key) in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)


WETH_MAINNET = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
USDC_MAINNET = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"


def _tapcompare_buckets(*thresholds: int) -> Tuple[Bucket, ...]:
    return tuple(
        Bucket(threshold=threshold, blocks_to_live=1, cache_mode=CacheMode.TAPCOMPARE)
        for threshold in thresholds
    )


DEFAULT_REGISTRY = StrategyRegistry.from_entries([
    (
        PairKey(WETH_MAINNET, USDC_MAINNET, TradeType.EXACT_INPUT, ChainId.MAINNET),
        CachingStrategy(
            pair="WETH/USDC",
            trade_type=TradeType.EXACT_INPUT,
            chain_id=ChainId.MAINNET,
            buckets=_tapcompare_buckets(1, 2, 3, 5, 8, 13, 21, 34, 55),
        ),
    ),
    (
        PairKey(USDC_MAINNET, WETH_MAINNET, TradeType.EXACT_INPUT, ChainId.MAINNET),
        CachingStrategy(
            pair="USDC/WETH",
            trade_type=TradeType.EXACT_INPUT,
            chain_id=ChainId.MAINNET,
            buckets=_tapcompare_buckets(
                1000, 2000, 3000, 8000, 13000, 21000, 34000, 55000,
                89000, 144000, 233000, 377000, 610000,
            ),
        ),
    ),
    (
        PairKey.wildcard(WETH_MAINNET, ChainId.MAINNET),
        CachingStrategy(
            pair="WETH/*",
            trade_type=TradeType.EXACT_INPUT,
            chain_id=ChainId.MAINNET,
            buckets=_tapcompare_buckets(1, 2, 3, 5),
        ),
    ),
])
