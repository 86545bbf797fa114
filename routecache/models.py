from decimal import Decimal
from enum import Enum, IntEnum
from fractions import Fraction
from typing import ClassVar, FrozenSet, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ChainId(IntEnum):
    MAINNET = 1
    GOERLI = 5
    OPTIMISM = 10
    POLYGON = 137
    MANTA = 169
    BASE = 8453
    ARBITRUM_ONE = 42161
    SEPOLIA = 11155111
    MANTA_TESTNET = 3441005


class TradeType(IntEnum):
    EXACT_INPUT = 0
    EXACT_OUTPUT = 1


class Protocol(str, Enum):
    V2 = "V2"
    V3 = "V3"
    MIXED = "MIXED"


class FeeAmount(IntEnum):
    LOWEST = 100
    LOW = 500
    MEDIUM = 3000
    HIGH = 10000


class CacheMode(str, Enum):
    """How the router interacts with the cache for a given bucket"""
    DARKMODE = "darkmode"
    LIVEMODE = "livemode"
    TAPCOMPARE = "tapcompare"


class Token(BaseModel):
    model_config = ConfigDict(frozen=True)

    chain_id: ChainId
    address: str
    decimals: int = Field(ge=0, le=255)
    symbol: Optional[str] = None
    name: Optional[str] = None

    @field_validator("address")
    @classmethod
    def _normalize_address(cls, value: str) -> str:
        if not value:
            raise ValueError("token address must not be empty")
        return value.lower()

    def is_same(self, other: "Token") -> bool:
        """Identity comparison, ignoring symbol and name"""
        return self.chain_id == other.chain_id and self.address == other.address

    def sorts_before(self, other: "Token") -> bool:
        return self.address < other.address


class RationalAmount(BaseModel):
    model_config = ConfigDict(frozen=True)

    numerator: int
    denominator: int = 1

    @field_validator("denominator")
    @classmethod
    def _check_denominator(cls, value: int) -> int:
        if value == 0:
            raise ValueError("denominator must not be zero")
        return value

    @property
    def value(self) -> Fraction:
        return Fraction(self.numerator, self.denominator)


class CurrencyAmount(RationalAmount):
    """An exact amount expressed in the raw (smallest) units of a token"""
    currency: Token

    @classmethod
    def from_raw_amount(cls, currency: Token, raw_amount: int) -> "CurrencyAmount":
        return cls(currency=currency, numerator=raw_amount, denominator=1)

    @classmethod
    def from_exact(cls, currency: Token, amount: Union[Decimal, str, int]) -> "CurrencyAmount":
        """Build an amount from a value in whole currency units, e.g. Decimal("1.5") WETH"""
        raw = Fraction(Decimal(amount)) * 10 ** currency.decimals
        return cls(currency=currency, numerator=raw.numerator, denominator=raw.denominator)

    def to_exact(self) -> Fraction:
        """Value in whole currency units"""
        return self.value / 10 ** self.currency.decimals


class Pool(BaseModel):
    """A concentrated liquidity (V3) pool"""
    model_config = ConfigDict(frozen=True)

    token0: Token
    token1: Token
    fee: FeeAmount
    sqrt_ratio_x96: int = Field(ge=0)
    liquidity: int = Field(ge=0)
    tick_current: int

    @model_validator(mode="after")
    def _check_tokens(self) -> "Pool":
        if self.token0.chain_id != self.token1.chain_id:
            raise ValueError("pool tokens must be on the same chain")
        if not self.token0.sorts_before(self.token1):
            raise ValueError("token0 must sort before token1")
        return self

    def involves_token(self, token: Token) -> bool:
        return token.is_same(self.token0) or token.is_same(self.token1)


class Pair(BaseModel):
    """A constant product (V2) pair, described by its reserves"""
    model_config = ConfigDict(frozen=True)

    reserve0: CurrencyAmount
    reserve1: CurrencyAmount

    @model_validator(mode="after")
    def _check_tokens(self) -> "Pair":
        if self.token0.chain_id != self.token1.chain_id:
            raise ValueError("pair tokens must be on the same chain")
        if not self.token0.sorts_before(self.token1):
            raise ValueError("reserve0 token must sort before reserve1 token")
        return self

    @property
    def token0(self) -> Token:
        return self.reserve0.currency

    @property
    def token1(self) -> Token:
        return self.reserve1.currency

    def involves_token(self, token: Token) -> bool:
        return token.is_same(self.token0) or token.is_same(self.token1)


Hop = Union[Pool, Pair]


def _token_path(input_token: Token, output_token: Token, hops: Tuple[Hop, ...]) -> Tuple[Token, ...]:
    if not hops:
        raise ValueError("a route needs at least one pool or pair")

    path = [input_token]
    current = input_token
    for hop in hops:
        if not hop.involves_token(current):
            raise ValueError(f"route is disconnected at token {current.address}")
        current = hop.token1 if current.is_same(hop.token0) else hop.token0
        path.append(current)

    if not current.is_same(output_token):
        raise ValueError("route does not end in its output token")
    return tuple(path)


class _RouteBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    protocol: ClassVar[Protocol]

    input: Token
    output: Token

    def hop_list(self) -> Tuple[Hop, ...]:
        raise NotImplementedError

    @property
    def path(self) -> Tuple[Token, ...]:
        """Tokens visited by the route, from input to output"""
        return _token_path(self.input, self.output, self.hop_list())

    @model_validator(mode="after")
    def _check_path(self):
        _token_path(self.input, self.output, self.hop_list())
        return self


class V2Route(_RouteBase):
    protocol: ClassVar[Protocol] = Protocol.V2

    pairs: Tuple[Pair, ...]

    def hop_list(self) -> Tuple[Hop, ...]:
        return self.pairs


class V3Route(_RouteBase):
    protocol: ClassVar[Protocol] = Protocol.V3

    pools: Tuple[Pool, ...]

    def hop_list(self) -> Tuple[Hop, ...]:
        return self.pools


class MixedRoute(_RouteBase):
    protocol: ClassVar[Protocol] = Protocol.MIXED

    hops: Tuple[Union[Pool, Pair], ...]

    def hop_list(self) -> Tuple[Hop, ...]:
        return self.hops


Route = Union[V2Route, V3Route, MixedRoute]


class CachedRoute(BaseModel):
    """A route and the percentage of the trade it carries"""
    model_config = ConfigDict(frozen=True)

    route: Route
    percent: int = Field(gt=0, le=100)

    @property
    def protocol(self) -> Protocol:
        return self.route.protocol


class CachedRoutes(BaseModel):
    """
    The cacheable result of one route computation for a pair, trade type and chain,
    as of a given block.
    """
    model_config = ConfigDict(frozen=True)

    routes: Tuple[CachedRoute, ...] = Field(min_length=1)
    chain_id: ChainId
    token_in: Token
    token_out: Token
    protocols_covered: FrozenSet[Protocol] = Field(min_length=1)
    block_number: int = Field(ge=0)
    trade_type: TradeType
    blocks_to_live: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_routes(self) -> "CachedRoutes":
        total = sum(cached_route.percent for cached_route in self.routes)
        if total != 100:
            raise ValueError(f"route percentages must add up to 100, got {total}")
        if self.token_in.chain_id != self.chain_id or self.token_out.chain_id != self.chain_id:
            raise ValueError("tokens must belong to the cached routes chain")
        return self

    def not_expired(self, current_block_number: int) -> bool:
        """Whether the routes are still fresh at the given block"""
        return current_block_number - self.block_number < self.blocks_to_live
