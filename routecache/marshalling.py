"""
Lossless conversion of cached routes to and from JSON-safe dicts.

Every big integer (amounts, sqrtRatioX96, liquidity) is written as a decimal string and
read back with ``int()``, so values never pass through a float. Routes and hops carry a
``protocol`` tag that drives unmarshalling.
"""
from typing import Any, Dict, List, Optional, assert_never

from pydantic import ValidationError

from routecache.models import (
    CachedRoute,
    CachedRoutes,
    CurrencyAmount,
    Hop,
    MixedRoute,
    Pair,
    Pool,
    Protocol,
    Route,
    Token,
    V2Route,
    V3Route,
)

MarshalledData = Dict[str, Any]


class MarshallingError(ValueError):
    """Raised when a stored payload can not be turned back into cached routes"""


def _int_from_str(data: MarshalledData, field: str) -> int:
    value = data[field]
    if not isinstance(value, str):
        raise MarshallingError(f"{field} must be a decimal string, got {type(value).__name__}")
    return int(value)


def _optional_str(data: MarshalledData, field: str) -> Optional[str]:
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        raise MarshallingError(f"{field} must be a string")
    return value


def marshal_token(token: Token) -> MarshalledData:
    return {
        "chainId": token.chain_id.value,
        "address": token.address,
        "decimals": token.decimals,
        "symbol": token.symbol,
        "name": token.name,
    }


def unmarshal_token(data: MarshalledData) -> Token:
    return Token(
        chain_id=data["chainId"],
        address=data["address"],
        decimals=data["decimals"],
        symbol=_optional_str(data, "symbol"),
        name=_optional_str(data, "name"),
    )


def marshal_currency_amount(amount: CurrencyAmount) -> MarshalledData:
    return {
        "currency": marshal_token(amount.currency),
        "numerator": str(amount.numerator),
        "denominator": str(amount.denominator),
    }


def unmarshal_currency_amount(data: MarshalledData) -> CurrencyAmount:
    return CurrencyAmount(
        currency=unmarshal_token(data["currency"]),
        numerator=_int_from_str(data, "numerator"),
        denominator=_int_from_str(data, "denominator"),
    )


def marshal_pool(pool: Pool) -> MarshalledData:
    return {
        "protocol": Protocol.V3.value,
        "token0": marshal_token(pool.token0),
        "token1": marshal_token(pool.token1),
        "fee": pool.fee.value,
        "sqrtRatioX96": str(pool.sqrt_ratio_x96),
        "liquidity": str(pool.liquidity),
        "tickCurrent": pool.tick_current,
    }


def unmarshal_pool(data: MarshalledData) -> Pool:
    return Pool(
        token0=unmarshal_token(data["token0"]),
        token1=unmarshal_token(data["token1"]),
        fee=data["fee"],
        sqrt_ratio_x96=_int_from_str(data, "sqrtRatioX96"),
        liquidity=_int_from_str(data, "liquidity"),
        tick_current=data["tickCurrent"],
    )


def marshal_pair(pair: Pair) -> MarshalledData:
    return {
        "protocol": Protocol.V2.value,
        "currencyAmountA": marshal_currency_amount(pair.reserve0),
        "tokenAmountB": marshal_currency_amount(pair.reserve1),
    }


def unmarshal_pair(data: MarshalledData) -> Pair:
    return Pair(
        reserve0=unmarshal_currency_amount(data["currencyAmountA"]),
        reserve1=unmarshal_currency_amount(data["tokenAmountB"]),
    )


def marshal_hop(hop: Hop) -> MarshalledData:
    match hop:
        case Pool():
            return marshal_pool(hop)
        case Pair():
            return marshal_pair(hop)
        case _:
            assert_never(hop)


def unmarshal_hop(data: MarshalledData) -> Hop:
    match data["protocol"]:
        case Protocol.V3.value:
            return unmarshal_pool(data)
        case Protocol.V2.value:
            return unmarshal_pair(data)
        case other:
            raise MarshallingError(f"unknown hop protocol {other!r}")


def marshal_route(route: Route) -> MarshalledData:
    marshalled: MarshalledData = {
        "protocol": route.protocol.value,
        "input": marshal_token(route.input),
        "output": marshal_token(route.output),
    }
    match route:
        case V2Route():
            marshalled["pairs"] = [marshal_pair(pair) for pair in route.pairs]
        case V3Route():
            marshalled["pools"] = [marshal_pool(pool) for pool in route.pools]
        case MixedRoute():
            marshalled["pools"] = [marshal_hop(hop) for hop in route.hops]
        case _:
            assert_never(route)
    return marshalled


def _hops(data: MarshalledData, field: str) -> List[MarshalledData]:
    hops = data[field]
    if not isinstance(hops, list):
        raise MarshallingError(f"{field} must be a list")
    return hops


def unmarshal_route(data: MarshalledData) -> Route:
    input_token = unmarshal_token(data["input"])
    output_token = unmarshal_token(data["output"])

    match data["protocol"]:
        case Protocol.V2.value:
            return V2Route(
                input=input_token,
                output=output_token,
                pairs=tuple(unmarshal_pair(pair) for pair in _hops(data, "pairs")),
            )
        case Protocol.V3.value:
            return V3Route(
                input=input_token,
                output=output_token,
                pools=tuple(unmarshal_pool(pool) for pool in _hops(data, "pools")),
            )
        case Protocol.MIXED.value:
            return MixedRoute(
                input=input_token,
                output=output_token,
                hops=tuple(unmarshal_hop(hop) for hop in _hops(data, "pools")),
            )
        case other:
            raise MarshallingError(f"unknown route protocol {other!r}")


def marshal_cached_route(cached_route: CachedRoute) -> MarshalledData:
    return {
        "route": marshal_route(cached_route.route),
        "percent": cached_route.percent,
    }


def unmarshal_cached_route(data: MarshalledData) -> CachedRoute:
    return CachedRoute(
        route=unmarshal_route(data["route"]),
        percent=data["percent"],
    )


def marshal_cached_routes(cached_routes: CachedRoutes) -> MarshalledData:
    return {
        "routes": [marshal_cached_route(route) for route in cached_routes.routes],
        "chainId": cached_routes.chain_id.value,
        "tokenIn": marshal_token(cached_routes.token_in),
        "tokenOut": marshal_token(cached_routes.token_out),
        "protocolsCovered": sorted(protocol.value for protocol in cached_routes.protocols_covered),
        "blockNumber": cached_routes.block_number,
        "tradeType": cached_routes.trade_type.value,
        "blocksToLive": cached_routes.blocks_to_live,
    }


def unmarshal_cached_routes(data: MarshalledData) -> CachedRoutes:
    """
    Rebuild cached routes from their marshalled form.

    Raises MarshallingError for any payload that is truncated, mistyped or describes
    routes that fail validation.
    """
    try:
        if not isinstance(data, dict):
            raise MarshallingError("cached routes payload must be an object")
        return CachedRoutes(
            routes=tuple(unmarshal_cached_route(route) for route in _hops(data, "routes")),
            chain_id=data["chainId"],
            token_in=unmarshal_token(data["tokenIn"]),
            token_out=unmarshal_token(data["tokenOut"]),
            protocols_covered=frozenset(data["protocolsCovered"]),
            block_number=data["blockNumber"],
            trade_type=data["tradeType"],
            blocks_to_live=data["blocksToLive"],
        )
    except MarshallingError:
        raise
    except (KeyError, TypeError, ValueError, ValidationError) as e:
        raise MarshallingError(f"Malformed cached routes payload: {str(e)}") from e
