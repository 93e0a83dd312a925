"""Ordered steps of a single 0x Permit2 swap run.

Each step receives a ``SwapContext`` holding the clients it needs, so any of
them can be replaced with a test double. ``run_swap`` composes the steps.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any

import requests
from eth_utils import to_checksum_address

from chain_client import DEFAULT_RECEIPT_TIMEOUT_SECONDS, MAX_UINT256, ChainClient, ChainError, TokenHandle, parse_rpc_int
from display import display_quote_breakdown
from logger import SwapLogger
from models import PriceResponse, QuoteResponse, parse_sources
from permit2 import hex_byte_length, splice_signature
from zeroex_client import ZeroExClient, build_swap_params


class SwapError(Exception):
    pass


@dataclass
class SwapSettings:
    chain_key: str
    chain_name: str
    chain_id: int
    explorer_url: str
    sell_amount: str = "0.1"
    affiliate_fee_bps: int = 100
    surplus_collection: bool = True
    receipt_timeout_seconds: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS
    dry_run: bool = False


@dataclass
class SwapContext:
    zeroex: ZeroExClient
    chain: ChainClient
    sell_token: TokenHandle
    buy_token: TokenHandle
    settings: SwapSettings
    logger: SwapLogger


@dataclass
class ApprovalOutcome:
    status: str
    spender: str | None = None
    tx_hash: str | None = None
    error: str | None = None


@dataclass
class SignedQuote:
    signature: bytes
    data: str


@dataclass
class SubmissionResult:
    status: str
    tx_hash: str | None = None
    explorer_url: str | None = None
    nonce: int | None = None
    data_bytes: int | None = None


def parse_units(amount: str, decimals: int) -> int:
    scaled = Decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


def _swap_label(ctx: SwapContext) -> str:
    return f"{ctx.settings.sell_amount} {ctx.sell_token.symbol} for {ctx.buy_token.symbol}"


def report_liquidity_sources(ctx: SwapContext) -> list[str]:
    sources = parse_sources(ctx.zeroex.get_sources(ctx.settings.chain_id))
    print(f"Liquidity sources for {ctx.settings.chain_name} chain:")
    print(", ".join(sources))
    ctx.logger.log_sources(ctx.settings.chain_id, sources)
    return sources


def resolve_swap_params(ctx: SwapContext) -> dict[str, str]:
    decimals = ctx.chain.read_decimals(ctx.sell_token)
    sell_amount = parse_units(ctx.settings.sell_amount, decimals)
    return build_swap_params(
        chain_id=ctx.settings.chain_id,
        sell_token=ctx.sell_token.address,
        buy_token=ctx.buy_token.address,
        sell_amount=sell_amount,
        taker=ctx.chain.address,
        affiliate_fee_bps=ctx.settings.affiliate_fee_bps,
        surplus_collection=ctx.settings.surplus_collection,
    )


def fetch_price(ctx: SwapContext, params: dict[str, str]) -> PriceResponse:
    price = PriceResponse.from_dict(ctx.zeroex.get_price(params))
    print(f"Fetching price to swap {_swap_label(ctx)}")
    print(f"Price Response: {_dump(price.raw)}")
    ctx.logger.log_price(params, price.allowance.spender if price.allowance else None)
    return price


def ensure_allowance(ctx: SwapContext, price: PriceResponse) -> ApprovalOutcome:
    """Approve Permit2 for the sell token when the price flags an allowance issue.

    Approval failures are reported and swallowed; the run carries on to the
    quote, where the swap will revert on-chain if the allowance is still short.
    """
    symbol = ctx.sell_token.symbol
    if price.allowance is None:
        print(f"{symbol} already approved for Permit2")
        ctx.logger.log_approval(ctx.sell_token.address, None, "skipped")
        return ApprovalOutcome(status="skipped")

    spender = price.allowance.spender
    try:
        request = ctx.chain.simulate_approve(ctx.sell_token, spender, MAX_UINT256)
        print(f"Approving Permit2 to spend {symbol}... {request['args']}")
        tx_hash = ctx.chain.send_approve(request)
        receipt = ctx.chain.wait_for_receipt(tx_hash, timeout=ctx.settings.receipt_timeout_seconds)
    except (ChainError, requests.RequestException) as exc:
        print(f"Error approving Permit2: {exc}")
        ctx.logger.log_approval(ctx.sell_token.address, spender, "error")
        ctx.logger.log_error("approve", type(exc).__name__, str(exc), {"spender": spender})
        return ApprovalOutcome(status="error", spender=spender, error=str(exc))

    receipt_status = receipt.get("status")
    print(
        f"Approved Permit2 to spend {symbol}. "
        f"status={receipt_status} block={receipt.get('blockNumber')}"
    )
    ctx.logger.log_approval(
        ctx.sell_token.address,
        spender,
        "confirmed",
        tx_hash=tx_hash,
        receipt_status=str(receipt_status),
    )
    return ApprovalOutcome(status="confirmed", spender=spender, tx_hash=tx_hash)


def fetch_quote(ctx: SwapContext, params: dict[str, str]) -> QuoteResponse:
    quote = QuoteResponse.from_dict(ctx.zeroex.get_quote(params))
    print(f"Fetching quote to swap {_swap_label(ctx)}")
    print(f"Quote Response: {_dump(quote.raw)}")
    display_quote_breakdown(quote)
    ctx.logger.log_quote(
        params,
        [fill.source for fill in quote.route.fills] if quote.route else [],
        quote.permit2_eip712 is not None,
    )
    return quote


def sign_quote(ctx: SwapContext, quote: QuoteResponse) -> SignedQuote | None:
    """Sign the quote's Permit2 payload and splice it into the call-data.

    Returns None when the quote carries no Permit2 payload.
    """
    if quote.permit2_eip712 is None:
        ctx.logger.log_signature("skipped")
        return None

    signature: bytes | None = None
    try:
        signature = ctx.chain.sign_typed_data(quote.permit2_eip712)
        print("Signed permit2 message from quote response")
    # eth-account raises ValueError, TypeError or its own ValidationError here
    except Exception as exc:
        print(f"Error signing permit2 coupon: {exc}", file=sys.stderr)
        ctx.logger.log_signature("error", error=str(exc))
        ctx.logger.log_error("sign_permit2", type(exc).__name__, str(exc))

    data = quote.transaction.data if quote.transaction else None
    if not signature or not data:
        raise SwapError("Failed to obtain signature or transaction data")

    ctx.logger.log_signature("signed", signature_bytes=len(signature))
    return SignedQuote(signature=signature, data=splice_signature(data, signature))


def submit_swap(
    ctx: SwapContext,
    quote: QuoteResponse,
    signed: SignedQuote | None,
) -> SubmissionResult:
    if signed is None or quote.transaction is None:
        print("Failed to obtain a signature, transaction not sent.", file=sys.stderr)
        ctx.logger.log_submission("not_sent", to=None)
        return SubmissionResult(status="not_sent")

    tx = quote.transaction
    value = parse_rpc_int(tx.value, field="transaction.value") if tx.value else 0
    nonce = ctx.chain.get_transaction_count("latest")
    unsigned_tx = {
        "chainId": ctx.settings.chain_id,
        "nonce": nonce,
        "to": to_checksum_address(tx.to),
        "data": signed.data,
        "value": value,
        "gas": (
            parse_rpc_int(tx.gas, field="transaction.gas")
            if tx.gas
            else ctx.chain.estimate_gas(tx.to, signed.data, value)
        ),
        "gasPrice": (
            parse_rpc_int(tx.gas_price, field="transaction.gasPrice")
            if tx.gas_price
            else ctx.chain.gas_price()
        ),
    }
    raw_tx = ctx.chain.sign_transaction(unsigned_tx)
    data_bytes = hex_byte_length(signed.data)

    if ctx.settings.dry_run:
        print("Dry run: signed swap transaction was not broadcast.")
        print(f"Spliced transaction data ({data_bytes} bytes): {signed.data}")
        ctx.logger.log_submission("dry_run", to=tx.to, nonce=nonce, data_bytes=data_bytes)
        return SubmissionResult(status="dry_run", nonce=nonce, data_bytes=data_bytes)

    tx_hash = ctx.chain.send_raw_transaction(raw_tx)
    explorer_url = f"{ctx.settings.explorer_url}/tx/{tx_hash}"
    print(f"Transaction hash: {tx_hash}")
    print(f"See tx details at {explorer_url}")
    ctx.logger.log_submission("sent", to=tx.to, nonce=nonce, tx_hash=tx_hash, data_bytes=data_bytes)
    return SubmissionResult(
        status="sent",
        tx_hash=tx_hash,
        explorer_url=explorer_url,
        nonce=nonce,
        data_bytes=data_bytes,
    )


def run_swap(ctx: SwapContext) -> dict[str, Any]:
    report_liquidity_sources(ctx)
    params = resolve_swap_params(ctx)
    price = fetch_price(ctx, params)
    approval = ensure_allowance(ctx, price)
    quote = fetch_quote(ctx, params)
    signed = sign_quote(ctx, quote)
    submission = submit_swap(ctx, quote, signed)

    return {
        "status": "ok",
        "mode": "dry-run" if ctx.settings.dry_run else "live",
        "chain": ctx.settings.chain_key,
        "taker": ctx.chain.address,
        "sell_amount": params["sellAmount"],
        "approval": approval.status,
        "signed": signed is not None,
        "submission": submission.status,
        "tx_hash": submission.tx_hash,
        "explorer_url": submission.explorer_url,
    }
