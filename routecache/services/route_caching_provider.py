import json
import time
import asyncio
import logging
from typing import Iterable, Optional, Tuple
import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ConstantBackoff
from redis.exceptions import RedisError
from routecache.config import Settings, settings
from routecache.keys import PairKey, TimelineKey
from routecache.marshalling import marshal_cached_routes, unmarshal_cached_routes
from routecache.models import CacheMode, CachedRoutes, ChainId, CurrencyAmount, Protocol, Token, TradeType
from routecache.registry import StrategyRegistry
from routecache.strategy import Bucket, CachingStrategy

logger = logging.getLogger(__name__)


def create_redis_client(config: Settings = settings) -> redis.Redis:
    """Redis client tuned to fail fast: a slow cache must never slow down a quote"""
    timeout = config.CACHE_TIMEOUT_MS / 1000
    return redis.from_url(
        config.REDIS_URL,
        socket_timeout=timeout,
        socket_connect_timeout=timeout,
        retry=Retry(ConstantBackoff(config.CACHE_RETRY_BACKOFF_MS / 1000), config.CACHE_MAX_RETRIES),
    )


def determine_token_in_out(
        amount: CurrencyAmount,
        quote_token: Token,
        trade_type: TradeType
) -> Tuple[Token, Token]:
    """The traded amount is denominated in tokenIn for ExactIn and in tokenOut for ExactOut"""
    if trade_type == TradeType.EXACT_INPUT:
        return amount.currency, quote_token
    return quote_token, amount.currency


class RouteCachingProvider:
    """
    Reads and writes cached routes in Redis, bucketed by the caching strategies of a
    StrategyRegistry.

    Items are stored as hashes under ``{prefix}:item:{pairKey}:{timelineKey}`` and
    indexed per pair key in a sorted set whose members all have score 0, so the index
    is ordered lexicographically by timeline key and can be scanned by prefix. A second
    sorted set per pair key scores the same members by their expiry time, and every
    write prunes the members of both sets whose items have expired.
    Storage errors never escape: reads turn into misses and writes into ``False``.
    """

    def __init__(
            self,
            registry: StrategyRegistry,
            redis_client: Optional[redis.Redis] = None,
            config: Settings = settings
    ):
        self.registry = registry
        self.redis = redis_client
        self.config = config
        self.key_prefix = config.CACHED_ROUTES_KEY_PREFIX
        self.ttl_minutes = config.CACHED_ROUTES_TTL_MINUTES

    async def initialize(self):
        """Initialize Redis connection"""
        if self.redis is None:
            self.redis = create_redis_client(self.config)
        try:
            logger.info("Initializing route cache Redis connection")
            await self.redis.ping()
            logger.info("Route cache Redis connection established successfully")
        except (RedisError, OSError) as e:
            # The cache is optional, quoting keeps working and every lookup is a miss
            logger.error(f"Route cache Redis is unreachable: {str(e)}")

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None

    def _client(self) -> redis.Redis:
        if self.redis is None:
            self.redis = create_redis_client(self.config)
        return self.redis

    def _item_key(self, partition_key: PairKey, sort_key: str) -> str:
        return f"{self.key_prefix}:item:{partition_key}:{sort_key}"

    def _index_key(self, partition_key: PairKey) -> str:
        return f"{self.key_prefix}:index:{partition_key}"

    def _expiry_key(self, partition_key: PairKey) -> str:
        return f"{self.key_prefix}:expiry:{partition_key}"

    def get_caching_strategy(
            self,
            token_in: Token,
            token_out: Token,
            trade_type: TradeType,
            chain_id: ChainId
    ) -> Optional[CachingStrategy]:
        return self.registry.resolve(token_in.address, token_out.address, trade_type, chain_id)

    def _get_caching_bucket(
            self,
            token_in: Token,
            token_out: Token,
            trade_type: TradeType,
            chain_id: ChainId,
            amount: CurrencyAmount
    ) -> Optional[Bucket]:
        strategy = self.get_caching_strategy(token_in, token_out, trade_type, chain_id)
        if strategy is None:
            return None
        return strategy.get_caching_bucket(amount)

    def _get_caching_bucket_for_cached_routes(
            self,
            cached_routes: CachedRoutes,
            amount: CurrencyAmount
    ) -> Optional[Bucket]:
        return self._get_caching_bucket(
            cached_routes.token_in,
            cached_routes.token_out,
            cached_routes.trade_type,
            cached_routes.chain_id,
            amount
        )

    async def get_cache_mode(
            self,
            chain_id: ChainId,
            amount: CurrencyAmount,
            quote_token: Token,
            trade_type: TradeType,
            protocols: Iterable[Protocol]
    ) -> CacheMode:
        """Cache mode of the bucket matching the trade, Darkmode when there is none"""
        token_in, token_out = determine_token_in_out(amount, quote_token, trade_type)
        bucket = self._get_caching_bucket(token_in, token_out, trade_type, chain_id, amount)
        pair = f"{token_in.symbol}/{token_out.symbol}/{trade_type.value}/{chain_id.value}"

        if bucket is None:
            logger.info(f"Didn't find caching bucket for {amount.to_exact()} in {pair}")
            return CacheMode.DARKMODE

        logger.info(
            f"Got caching bucket {bucket.threshold} ({bucket.cache_mode.value}) "
            f"for {amount.to_exact()} in {pair}"
        )
        return bucket.cache_mode

    async def get_blocks_to_live(self, cached_routes: CachedRoutes, amount: CurrencyAmount) -> int:
        bucket = self._get_caching_bucket_for_cached_routes(cached_routes, amount)
        return bucket.blocks_to_live if bucket is not None else 0

    async def get_cached_route(
            self,
            chain_id: ChainId,
            amount: CurrencyAmount,
            quote_token: Token,
            trade_type: TradeType,
            protocols: Iterable[Protocol]
    ) -> Optional[CachedRoutes]:
        """Fetch the most recent cached routes for the pair, protocols and bucket"""
        token_in, token_out = determine_token_in_out(amount, quote_token, trade_type)
        bucket = self._get_caching_bucket(token_in, token_out, trade_type, chain_id, amount)
        if bucket is None:
            return None

        partition_key = PairKey(token_in.address, token_out.address, trade_type, chain_id)
        index_key = self._index_key(partition_key)

        try:
            partial_sort_key = TimelineKey(protocols, bucket.threshold).partial_key().encode("utf-8")
            logger.info(f"Attempting to get route from cache for {partition_key} {partial_sort_key!r}")
            redis_client = self._client()
            # The latest cached block is unknown, so scan the partial key from the top
            members = await redis_client.zrevrangebylex(
                index_key,
                b"[" + partial_sort_key + b"\xff",
                b"[" + partial_sort_key,
                start=0,
                num=1
            )
            if not members:
                logger.info(f"No cached routes found for {partition_key}")
                return None

            sort_key = members[0].decode("utf-8")
            payload = await redis_client.hget(self._item_key(partition_key, sort_key), "item")
            if payload is None:
                # The item expired before its index entry did
                await redis_client.zrem(index_key, sort_key)
                await redis_client.zrem(self._expiry_key(partition_key), sort_key)
                logger.info(f"Cached routes {partition_key} {sort_key} already expired")
                return None

            cached_routes = unmarshal_cached_routes(json.loads(payload.decode("utf-8")))
            logger.info(f"Returning cached routes {partition_key} {sort_key}")
            return cached_routes
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Error while fetching route from cache for {partition_key}: {str(e)}")
        except ValueError as e:
            logger.error(f"Unusable cached routes for {partition_key}: {str(e)}")
        return None

    async def set_cached_route(self, cached_routes: CachedRoutes, amount: CurrencyAmount) -> bool:
        """
        Insert the cached routes if their pair and amount have a caching bucket.

        Returns False without writing when there is no bucket, or when the write fails.
        """
        bucket = self._get_caching_bucket_for_cached_routes(cached_routes, amount)
        if bucket is None:
            return False

        # Storage TTL is wall-clock minutes from now, expressed in epoch seconds
        now = int(time.time())
        ttl = now + 60 * self.ttl_minutes
        stored_routes = cached_routes.model_copy(update={"blocks_to_live": bucket.blocks_to_live})
        binary_cached_routes = json.dumps(marshal_cached_routes(stored_routes)).encode("utf-8")

        partition_key = PairKey.from_cached_routes(cached_routes)
        index_key = self._index_key(partition_key)
        expiry_key = self._expiry_key(partition_key)

        try:
            sort_key = TimelineKey(
                cached_routes.protocols_covered,
                bucket.threshold,
                cached_routes.block_number
            ).full_key()
            item_key = self._item_key(partition_key, sort_key)
            logger.info(f"Attempting to insert route to cache for {partition_key} {sort_key}")

            redis_client = self._client()
            expired = await redis_client.zrangebyscore(expiry_key, "-inf", now)
            async with redis_client.pipeline(transaction=True) as pipe:
                if expired:
                    pipe.zrem(index_key, *expired)
                pipe.zremrangebyscore(expiry_key, "-inf", now)
                pipe.delete(item_key)
                pipe.hset(item_key, mapping={"item": binary_cached_routes, "ttl": ttl})
                pipe.expireat(item_key, ttl)
                pipe.zadd(index_key, {sort_key: 0})
                pipe.zadd(expiry_key, {sort_key: ttl})
                # Every member expires no later than the newest one
                pipe.expireat(index_key, ttl)
                pipe.expireat(expiry_key, ttl)
                await pipe.execute()
            if expired:
                logger.info(f"Pruned {len(expired)} expired index entries for {partition_key}")
            logger.info(f"Cached route inserted to cache for {partition_key} {sort_key}")
            return True
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"Cached route failed to insert for {partition_key}: {str(e)}")
        except ValueError as e:
            logger.error(f"Unusable cached routes for {partition_key}: {str(e)}")
        return False
