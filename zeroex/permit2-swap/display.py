"""Console formatting for quote breakdowns."""

from __future__ import annotations

from models import QuoteResponse, Route, TokenMetadata


def format_bps(bps: int) -> str:
    return f"{bps / 100:.2f}"


def bps_to_percent(bps: int) -> str:
    return f"{format_bps(bps)}%"


def display_liquidity_sources(route: Route) -> int:
    """Print the per-source split of a route and return the summed bps."""
    total_bps = sum(fill.proportion_bps for fill in route.fills)

    print(f"{len(route.fills)} Sources")
    for fill in route.fills:
        print(f"{fill.source}: {bps_to_percent(fill.proportion_bps)}")
    return total_bps


def display_token_taxes(metadata: TokenMetadata) -> None:
    if metadata.buy_token is not None:
        print(f"Buy Token Buy Tax: {bps_to_percent(metadata.buy_token.buy_tax_bps)}")
        print(f"Buy Token Sell Tax: {bps_to_percent(metadata.buy_token.sell_tax_bps)}")

    if metadata.sell_token is not None:
        print(f"Sell Token Buy Tax: {bps_to_percent(metadata.sell_token.buy_tax_bps)}")
        print(f"Sell Token Sell Tax: {bps_to_percent(metadata.sell_token.sell_tax_bps)}")


def _surplus_value(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        return 0.0


def display_monetization(quote: QuoteResponse) -> None:
    if quote.affiliate_fee_bps is not None:
        print(f"Affiliate Fee: {bps_to_percent(quote.affiliate_fee_bps)}")

    if quote.trade_surplus and _surplus_value(quote.trade_surplus) > 0:
        print(f"Trade Surplus Collected: {quote.trade_surplus}")


def display_quote_breakdown(quote: QuoteResponse) -> None:
    if quote.route is not None:
        display_liquidity_sources(quote.route)
    if quote.token_metadata is not None:
        display_token_taxes(quote.token_metadata)
    display_monetization(quote)
