import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from routecache.models import (
    CachedRoute,
    CachedRoutes,
    ChainId,
    CurrencyAmount,
    FeeAmount,
    MixedRoute,
    Pair,
    Pool,
    Protocol,
    Token,
    TradeType,
    V2Route,
    V3Route,
)

# Sorted by address: DAI < USDC < WETH < USDT
DAI = Token(chain_id=ChainId.MAINNET, address="0x6B175474E89094C44Da98b954EedeAC495271d0F",
            decimals=18, symbol="DAI", name="Dai Stablecoin")
USDC = Token(chain_id=ChainId.MAINNET, address="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
             decimals=6, symbol="USDC", name="USD//C")
WETH = Token(chain_id=ChainId.MAINNET, address="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
             decimals=18, symbol="WETH", name="Wrapped Ether")
USDT = Token(chain_id=ChainId.MAINNET, address="0xdAC17F958D2ee523a2206206994597C13D831ec7",
             decimals=6, symbol="USDT")


def make_pool(token0: Token, token1: Token, fee: FeeAmount = FeeAmount.LOW) -> Pool:
    return Pool(
        token0=token0,
        token1=token1,
        fee=fee,
        sqrt_ratio_x96=1829744519839346421980733417405734,
        liquidity=25907780149642327045,
        tick_current=200451,
    )


def make_pair(token0: Token, token1: Token) -> Pair:
    return Pair(
        reserve0=CurrencyAmount.from_raw_amount(token0, 10_000_000 * 10 ** token0.decimals),
        reserve1=CurrencyAmount.from_raw_amount(token1, 5_000 * 10 ** token1.decimals),
    )


def v3_route() -> V3Route:
    return V3Route(input=WETH, output=USDC, pools=(make_pool(USDC, WETH),))


def v2_route() -> V2Route:
    return V2Route(input=WETH, output=USDC, pairs=(make_pair(DAI, WETH), make_pair(DAI, USDC)))


def mixed_route() -> MixedRoute:
    return MixedRoute(
        input=WETH,
        output=USDC,
        hops=(make_pair(DAI, WETH), make_pool(DAI, USDC, FeeAmount.LOWEST)),
    )


def make_cached_routes(
        token_in: Token = WETH,
        token_out: Token = USDC,
        block_number: int = 17_000_000,
        trade_type: TradeType = TradeType.EXACT_INPUT,
        blocks_to_live: int = 1,
        routes: Optional[Tuple[CachedRoute, ...]] = None
) -> CachedRoutes:
    if routes is None:
        if token_in.is_same(WETH):
            routes = (
                CachedRoute(route=v3_route(), percent=50),
                CachedRoute(route=v2_route(), percent=30),
                CachedRoute(route=mixed_route(), percent=20),
            )
        else:
            routes = (
                CachedRoute(route=V3Route(input=token_in, output=token_out,
                                          pools=(make_pool(USDC, WETH),)), percent=100),
            )
    return CachedRoutes(
        routes=routes,
        chain_id=ChainId.MAINNET,
        token_in=token_in,
        token_out=token_out,
        protocols_covered=frozenset({Protocol.V2, Protocol.V3, Protocol.MIXED}),
        block_number=block_number,
        trade_type=trade_type,
        blocks_to_live=blocks_to_live,
    )


def _to_bytes(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def _lex_above(member: bytes, bound: bytes) -> bool:
    if bound == b"-":
        return True
    if bound == b"+":
        return False
    return member >= bound[1:] if bound[:1] == b"[" else member > bound[1:]


def _lex_below(member: bytes, bound: bytes) -> bool:
    if bound == b"+":
        return True
    if bound == b"-":
        return False
    return member <= bound[1:] if bound[:1] == b"[" else member < bound[1:]


class InMemoryPipeline:
    def __init__(self, redis: "InMemoryRedis"):
        self.redis = redis
        self.commands: List[Tuple[Callable, tuple, dict]] = []

    async def __aenter__(self) -> "InMemoryPipeline":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.commands.clear()

    def __getattr__(self, name: str):
        command = getattr(self.redis, name)

        def queue(*args, **kwargs):
            self.commands.append((command, args, kwargs))
            return self
        return queue

    async def execute(self) -> List[Any]:
        self.redis.maybe_fail("execute")
        results = [await command(*args, **kwargs) for command, args, kwargs in self.commands]
        self.commands.clear()
        return results


class InMemoryRedis:
    """Async stand-in for the Redis commands used by the route cache, with key expiry"""

    def __init__(self):
        self.hashes: Dict[str, Dict[str, bytes]] = {}
        self.sorted_sets: Dict[str, Dict[bytes, float]] = {}
        self.expirations: Dict[str, int] = {}
        self.failures: Dict[str, Exception] = {}
        self.clock: Callable[[], float] = time.time

    def fail_on(self, command: str, error: Exception) -> None:
        self.failures[command] = error

    def maybe_fail(self, command: str) -> None:
        if command in self.failures:
            raise self.failures[command]

    def _expire(self) -> None:
        now = self.clock()
        for key, expire_at in list(self.expirations.items()):
            if expire_at <= now:
                self.hashes.pop(key, None)
                self.sorted_sets.pop(key, None)
                del self.expirations[key]

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass

    def pipeline(self, transaction: bool = True) -> InMemoryPipeline:
        return InMemoryPipeline(self)

    async def delete(self, *names: str) -> int:
        self.maybe_fail("delete")
        deleted = 0
        for name in names:
            found = self.hashes.pop(name, None) is not None or self.sorted_sets.pop(name, None) is not None
            self.expirations.pop(name, None)
            deleted += int(found)
        return deleted

    async def hset(self, name: str, mapping: Dict[str, Any]) -> int:
        self.maybe_fail("hset")
        fields = self.hashes.setdefault(name, {})
        added = len(set(mapping) - set(fields))
        fields.update({field: _to_bytes(value) for field, value in mapping.items()})
        return added

    async def hget(self, name: str, key: str) -> Optional[bytes]:
        self.maybe_fail("hget")
        self._expire()
        return self.hashes.get(name, {}).get(key)

    async def expireat(self, name: str, when: int) -> bool:
        if name not in self.hashes and name not in self.sorted_sets:
            return False
        self.expirations[name] = when
        return True

    async def zadd(self, name: str, mapping: Dict[Any, float]) -> int:
        self.maybe_fail("zadd")
        members = self.sorted_sets.setdefault(name, {})
        added = 0
        for member, score in mapping.items():
            member = _to_bytes(member)
            added += int(member not in members)
            members[member] = score
        return added

    async def zrem(self, name: str, *values: Any) -> int:
        members = self.sorted_sets.get(name, {})
        return sum(members.pop(_to_bytes(value), None) is not None for value in values)

    async def zcard(self, name: str) -> int:
        self._expire()
        return len(self.sorted_sets.get(name, {}))

    async def zrangebyscore(self, name: str, min: Any, max: Any) -> List[bytes]:
        self.maybe_fail("zrangebyscore")
        self._expire()
        members = self.sorted_sets.get(name, {})
        return [
            member for member, score in sorted(members.items(), key=lambda entry: (entry[1], entry[0]))
            if float(min) <= score <= float(max)
        ]

    async def zremrangebyscore(self, name: str, min: Any, max: Any) -> int:
        doomed = await self.zrangebyscore(name, min, max)
        return await self.zrem(name, *doomed)

    async def zrevrangebylex(
            self,
            name: str,
            max: Any,
            min: Any,
            start: Optional[int] = None,
            num: Optional[int] = None
    ) -> List[bytes]:
        self.maybe_fail("zrevrangebylex")
        self._expire()
        upper, lower = _to_bytes(max), _to_bytes(min)
        matching = [
            member for member in sorted(self.sorted_sets.get(name, {}), reverse=True)
            if _lex_above(member, lower) and _lex_below(member, upper)
        ]
        if start is not None and num is not None:
            matching = matching[start:start + num]
        return matching


@pytest.fixture
def fake_redis() -> InMemoryRedis:
    return InMemoryRedis()
