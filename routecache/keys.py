from decimal import Decimal
from typing import FrozenSet, Iterable, Optional, Union

from routecache.models import CachedRoutes, ChainId, Protocol, TradeType

WILDCARD = "*"
SEPARATOR = "/"
# uint64 block numbers fit in 20 digits, padding keeps string order equal to numeric order
BLOCK_NUMBER_WIDTH = 20


def _normalize_address(address: str, field: str) -> str:
    if not address:
        raise ValueError(f"{field} must not be empty")
    if SEPARATOR in address:
        raise ValueError(f"{field} must not contain '{SEPARATOR}'")
    return address.lower()


class PairKey:
    """
    Partition key of the cached routes store, also used to look up a caching strategy.

    Serializes as ``tokenIn/tokenOut/tradeType/chainId`` with lowercase addresses,
    so two keys that only differ by address case are equal.
    """

    __slots__ = ("token_in", "token_out", "trade_type", "chain_id")

    def __init__(self, token_in: str, token_out: str, trade_type: TradeType, chain_id: ChainId):
        self.token_in = _normalize_address(token_in, "token_in")
        self.token_out = _normalize_address(token_out, "token_out")
        self.trade_type = TradeType(trade_type)
        self.chain_id = ChainId(chain_id)

        if self.token_in == WILDCARD:
            raise ValueError("token_in can not be a wildcard")
        if self.token_out == WILDCARD and self.trade_type != TradeType.EXACT_INPUT:
            raise ValueError("a wildcard token_out is only supported for EXACT_INPUT")

    @classmethod
    def wildcard(cls, token_in: str, chain_id: ChainId) -> "PairKey":
        """Key matching any output token for an EXACT_INPUT trade of token_in"""
        return cls(token_in, WILDCARD, TradeType.EXACT_INPUT, chain_id)

    @classmethod
    def from_cached_routes(cls, cached_routes: CachedRoutes) -> "PairKey":
        return cls(
            token_in=cached_routes.token_in.address,
            token_out=cached_routes.token_out.address,
            trade_type=cached_routes.trade_type,
            chain_id=cached_routes.chain_id,
        )

    @property
    def is_wildcard(self) -> bool:
        return self.token_out == WILDCARD

    def __str__(self) -> str:
        return SEPARATOR.join(
            (self.token_in, self.token_out, str(self.trade_type.value), str(self.chain_id.value))
        )

    def __repr__(self) -> str:
        return f"PairKey({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PairKey):
            return NotImplemented
        return str(self) == str(other)

    def __hash__(self) -> int:
        return hash(str(self))


def format_bucket(bucket: Union[Decimal, int]) -> str:
    """Canonical text for a bucket threshold: 1000 and Decimal("1E+3") both give "1000" """
    return f"{Decimal(bucket).normalize():f}"


class TimelineKey:
    """
    Sort key of the cached routes store: ``protocols/bucket/blockNumber``.

    The partial form leaves out the block number and is a literal prefix of every full
    key with the same protocols and bucket, so the newest entry can be found with a
    descending prefix scan.
    """

    __slots__ = ("protocols", "bucket", "block_number")

    def __init__(
            self,
            protocols: Iterable[Protocol],
            bucket: Union[Decimal, int],
            block_number: Optional[int] = None
    ):
        self.protocols: FrozenSet[Protocol] = frozenset(Protocol(p) for p in protocols)
        if not self.protocols:
            raise ValueError("at least one protocol is required")
        if Decimal(bucket) <= 0:
            raise ValueError("bucket must be positive")
        if block_number is not None and block_number < 0:
            raise ValueError("block_number must not be negative")
        self.bucket = Decimal(bucket)
        self.block_number = block_number

    def partial_key(self) -> str:
        protocols = ",".join(sorted(protocol.value for protocol in self.protocols))
        return f"{protocols}{SEPARATOR}{format_bucket(self.bucket)}{SEPARATOR}"

    def full_key(self) -> str:
        if self.block_number is None:
            raise ValueError("full_key requires a block number")
        return f"{self.partial_key()}{self.block_number:0{BLOCK_NUMBER_WIDTH}d}"

    def __repr__(self) -> str:
        return (
            f"TimelineKey(protocols={sorted(p.value for p in self.protocols)}, "
            f"bucket={format_bucket(self.bucket)}, block_number={self.block_number})"
        )
