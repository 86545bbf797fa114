from decimal import Decimal
from fractions import Fraction
from typing import List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator

from routecache.models import CacheMode, ChainId, CurrencyAmount, TradeType


class Bucket(BaseModel):
    """
    Caching parameters for trades of at least ``threshold`` whole units of the traded
    currency, e.g. threshold = 1 with WETH means 1 WETH.
    """
    model_config = ConfigDict(frozen=True)

    threshold: Decimal = Field(gt=0)
    # How many blocks a cached route for this bucket stays valid
    blocks_to_live: int = Field(gt=0)
    cache_mode: CacheMode


class CachingStrategy(BaseModel):
    """Groups the trades of a pair into buckets by amount traded"""
    model_config = ConfigDict(frozen=True)

    pair: str
    trade_type: TradeType
    chain_id: ChainId
    buckets: Tuple[Bucket, ...] = Field(min_length=1)

    @field_validator("buckets")
    @classmethod
    def _sort_buckets(cls, buckets: Tuple[Bucket, ...]) -> Tuple[Bucket, ...]:
        ordered = tuple(sorted(buckets, key=lambda bucket: bucket.threshold))
        for lower, upper in zip(ordered, ordered[1:]):
            if lower.threshold == upper.threshold:
                raise ValueError(f"duplicate bucket threshold {lower.threshold}")
        return ordered

    @property
    def will_tapcompare(self) -> bool:
        return any(bucket.cache_mode == CacheMode.TAPCOMPARE for bucket in self.buckets)

    @property
    def trade_type_label(self) -> str:
        return "ExactIn" if self.trade_type == TradeType.EXACT_INPUT else "ExactOut"

    def readable_pair_trade_type_chain_id(self) -> str:
        return f"{self.pair.upper()}/{self.trade_type_label}/{self.chain_id.value}"

    def bucket_pairs(self) -> List[Tuple[Decimal, Optional[Decimal]]]:
        """Half-open ranges covered by each bucket; the last one has no upper bound"""
        thresholds = [bucket.threshold for bucket in self.buckets]
        uppers: List[Optional[Decimal]] = list(thresholds[1:])
        uppers.append(None)
        return list(zip(thresholds, uppers))

    def get_caching_bucket(self, amount: CurrencyAmount) -> Optional[Bucket]:
        """
        Find the bucket for an amount, comparing in whole currency units.

        Each threshold opens the range [B_i, B_i+1) and the top bucket extends upward
        without limit. Amounts below the smallest threshold are not cached.
        e.g. buckets = [1, 2, 3, 5]
            amount = 0.5 -> None
            amount = 3   -> 3
            amount = 4   -> 3
            amount = 500 -> 5
        """
        exact = amount.to_exact()
        selected = None
        for bucket in self.buckets:
            if exact < Fraction(bucket.threshold):
                break
            selected = bucket
        return selected
