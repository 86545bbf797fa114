import logging
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import strawberry
from strawberry.types import Info
from routecache.models import CacheMode as CacheModeModel
from routecache.models import ChainId, CurrencyAmount, Protocol as ProtocolModel, Token
from routecache.models import TradeType as TradeTypeModel
from routecache.strategy import CachingStrategy as CachingStrategyModel

logger = logging.getLogger(__name__)

TradeType = strawberry.enum(TradeTypeModel)
CacheMode = strawberry.enum(CacheModeModel)


@strawberry.type
class CachingBucket:
    """One amount range of a caching strategy, in whole units of the traded token"""
    threshold: str
    upper_bound: Optional[str] = strawberry.field(name="upperBound")
    blocks_to_live: int = strawberry.field(name="blocksToLive")
    cache_mode: CacheMode = strawberry.field(name="cacheMode")


@strawberry.type
class CachingStrategy:
    """GraphQL view of a configured caching strategy"""
    key: str
    pair: str
    readable_key: str = strawberry.field(name="readableKey")
    trade_type: TradeType = strawberry.field(name="tradeType")
    chain_id: int = strawberry.field(name="chainId")
    will_tapcompare: bool = strawberry.field(name="willTapcompare")
    buckets: List[CachingBucket]

    @classmethod
    def from_model(cls, key: str, strategy: CachingStrategyModel) -> "CachingStrategy":
        buckets = [
            CachingBucket(
                threshold=str(lower),
                upper_bound=str(upper) if upper is not None else None,
                blocks_to_live=bucket.blocks_to_live,
                cache_mode=bucket.cache_mode,
            )
            for bucket, (lower, upper) in zip(strategy.buckets, strategy.bucket_pairs())
        ]
        return cls(
            key=key,
            pair=strategy.pair,
            readable_key=strategy.readable_pair_trade_type_chain_id(),
            trade_type=strategy.trade_type,
            chain_id=strategy.chain_id.value,
            will_tapcompare=strategy.will_tapcompare,
            buckets=buckets,
        )


@strawberry.type
class Query:
    @strawberry.field
    async def caching_strategies(
            self,
            info: Info,
            chain_id: Optional[int] = None
    ) -> List[CachingStrategy]:
        registry = info.context["registry"]
        return [
            CachingStrategy.from_model(key, strategy)
            for key, strategy in registry.strategies()
            if chain_id is None or strategy.chain_id == chain_id
        ]

    @strawberry.field
    async def cache_mode(
            self,
            info: Info,
            chain_id: int,
            token_in: str,
            token_out: str,
            trade_type: TradeType,
            amount: str,
            decimals: int
    ) -> Optional[CacheMode]:
        """
        Resolve the cache mode of a trade. ``amount`` is in whole units of the traded
        token (tokenIn for EXACT_INPUT, tokenOut for EXACT_OUTPUT) and ``decimals`` are
        that token's decimals.
        """
        try:
            provider = info.context["route_caching_provider"]
            chain = ChainId(chain_id)
            traded_address, quote_address = (
                (token_in, token_out) if trade_type == TradeTypeModel.EXACT_INPUT else (token_out, token_in)
            )
            traded_token = Token(chain_id=chain, address=traded_address, decimals=decimals)
            # Only the quote token address matters for strategy lookup
            quote_token = Token(chain_id=chain, address=quote_address, decimals=0)
            return await provider.get_cache_mode(
                chain,
                CurrencyAmount.from_exact(traded_token, Decimal(amount)),
                quote_token,
                TradeTypeModel(trade_type),
                [ProtocolModel.V2, ProtocolModel.V3, ProtocolModel.MIXED],
            )
        except (ValueError, InvalidOperation) as e:
            logger.error(f"Error in cache_mode: {str(e)}")
            return None


# Create the schema
schema = strawberry.Schema(query=Query)
