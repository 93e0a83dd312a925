"""Typed views over 0x Swap API payloads.

Every response is validated once, at the network boundary. Optional fields the
API may omit become ``None`` so the pipeline never reads raw dicts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


class ResponseError(Exception):
    pass


def _require_dict(value: Any, *, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ResponseError(f"Field '{field_name}' must be an object.")
    return value


def _optional_dict(value: Any, *, field_name: str) -> dict[str, Any] | None:
    if value is None:
        return None
    return _require_dict(value, field_name=field_name)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_bps(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool):
        raise ResponseError(f"Field '{field_name}' must be numeric, not bool.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ResponseError(f"Field '{field_name}' was not numeric: {value}") from exc
    raise ResponseError(f"Field '{field_name}' was not numeric: {value}")


@dataclass
class AllowanceIssue:
    spender: str
    actual: str | None = None


@dataclass
class TokenTax:
    buy_tax_bps: int = 0
    sell_tax_bps: int = 0

    @classmethod
    def from_dict(cls, payload: dict[str, Any], *, field_name: str) -> "TokenTax":
        return cls(
            buy_tax_bps=parse_bps(payload.get("buyTaxBps", 0), field_name=f"{field_name}.buyTaxBps"),
            sell_tax_bps=parse_bps(payload.get("sellTaxBps", 0), field_name=f"{field_name}.sellTaxBps"),
        )


@dataclass
class TokenMetadata:
    buy_token: TokenTax | None = None
    sell_token: TokenTax | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "TokenMetadata":
        buy = _optional_dict(payload.get("buyToken"), field_name="tokenMetadata.buyToken")
        sell = _optional_dict(payload.get("sellToken"), field_name="tokenMetadata.sellToken")
        return cls(
            buy_token=TokenTax.from_dict(buy, field_name="tokenMetadata.buyToken") if buy else None,
            sell_token=TokenTax.from_dict(sell, field_name="tokenMetadata.sellToken") if sell else None,
        )


@dataclass
class Fill:
    source: str
    proportion_bps: int


@dataclass
class Route:
    fills: list[Fill] = field(default_factory=list)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Route":
        raw_fills = payload.get("fills", [])
        if not isinstance(raw_fills, list):
            raise ResponseError("Field 'route.fills' must be an array.")
        fills: list[Fill] = []
        for index, raw in enumerate(raw_fills):
            item = _require_dict(raw, field_name=f"route.fills[{index}]")
            fills.append(
                Fill(
                    source=str(item.get("source", "")),
                    proportion_bps=parse_bps(
                        item.get("proportionBps", 0),
                        field_name=f"route.fills[{index}].proportionBps",
                    ),
                )
            )
        return cls(fills=fills)


@dataclass
class SwapTransaction:
    to: str
    data: str | None = None
    gas: str | None = None
    gas_price: str | None = None
    value: str | None = None

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SwapTransaction":
        to = _optional_str(payload.get("to"))
        if to is None:
            raise ResponseError("Field 'transaction.to' is required.")
        return cls(
            to=to,
            data=_optional_str(payload.get("data")),
            gas=_optional_str(payload.get("gas")),
            gas_price=_optional_str(payload.get("gasPrice")),
            value=_optional_str(payload.get("value")),
        )


@dataclass
class PriceResponse:
    allowance: AllowanceIssue | None
    raw: dict[str, Any]

    @classmethod
    def from_dict(cls, payload: Any) -> "PriceResponse":
        body = _require_dict(payload, field_name="price")
        issues = body.get("issues")
        if not isinstance(issues, dict):
            message = body.get("message") or body.get("name") or "missing 'issues' object"
            raise ResponseError(f"Unexpected price response: {message}")

        allowance: AllowanceIssue | None = None
        raw_allowance = issues.get("allowance")
        if raw_allowance is not None:
            allowance_body = _require_dict(raw_allowance, field_name="issues.allowance")
            spender = _optional_str(allowance_body.get("spender"))
            if spender is None:
                raise ResponseError("Field 'issues.allowance.spender' is required.")
            allowance = AllowanceIssue(spender=spender, actual=_optional_str(allowance_body.get("actual")))

        return cls(allowance=allowance, raw=body)


@dataclass
class QuoteResponse:
    route: Route | None
    token_metadata: TokenMetadata | None
    transaction: SwapTransaction | None
    permit2_eip712: dict[str, Any] | None
    affiliate_fee_bps: int | None
    trade_surplus: str | None
    raw: dict[str, Any]

    @classmethod
    def from_dict(cls, payload: Any) -> "QuoteResponse":
        body = _require_dict(payload, field_name="quote")

        route = _optional_dict(body.get("route"), field_name="route")
        metadata = _optional_dict(body.get("tokenMetadata"), field_name="tokenMetadata")
        transaction = _optional_dict(body.get("transaction"), field_name="transaction")
        permit2 = _optional_dict(body.get("permit2"), field_name="permit2")
        eip712 = None
        if permit2 is not None:
            eip712 = _optional_dict(permit2.get("eip712"), field_name="permit2.eip712")

        fee = body.get("affiliateFeeBps")
        return cls(
            route=Route.from_dict(route) if route else None,
            token_metadata=TokenMetadata.from_dict(metadata) if metadata else None,
            transaction=SwapTransaction.from_dict(transaction) if transaction else None,
            permit2_eip712=eip712,
            affiliate_fee_bps=parse_bps(fee, field_name="affiliateFeeBps") if fee not in (None, "") else None,
            trade_surplus=_optional_str(body.get("tradeSurplus")),
            raw=body,
        )


def parse_sources(payload: Any) -> list[str]:
    body = _require_dict(payload, field_name="sources response")
    sources = body.get("sources")
    if isinstance(sources, dict):
        return [str(name) for name in sources.keys()]
    if isinstance(sources, list):
        return [str(name) for name in sources]
    raise ResponseError("Field 'sources' must be an object or an array.")
