#!/usr/bin/env python3
"""
0x Permit2 Swap - Swap WETH for wstETH through the 0x Swap API

Usage:
    python agent.py
    python agent.py --config config.json
    python agent.py --config config.json --dry-run

Secrets are read from the environment (or a local .env file):
    PRIVATE_KEY, ZERO_EX_API_KEY, ALCHEMY_HTTP_TRANSPORT_URL
"""

from __future__ import annotations

import argparse
import json
import os
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import requests
from dotenv import load_dotenv

from chain_client import DEFAULT_RECEIPT_TIMEOUT_SECONDS, ChainClient, ChainError, TokenHandle
from logger import SwapLogger
from models import ResponseError
from swap_pipeline import SwapContext, SwapError, SwapSettings, run_swap
from zeroex_client import DEFAULT_BASE_URL, ZeroExClient

REQUIRED_ENV = ("PRIVATE_KEY", "ZERO_EX_API_KEY", "ALCHEMY_HTTP_TRANSPORT_URL")
HEX_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
DEFAULT_CHAIN = "scroll"
DEFAULT_SELL_TOKEN = "WETH"
DEFAULT_BUY_TOKEN = "wstETH"
DEFAULT_SELL_AMOUNT = "0.1"
DEFAULT_AFFILIATE_FEE_BPS = 100
DEFAULT_LOGS_DIR = "logs"

CHAINS: dict[str, dict[str, Any]] = {
    "scroll": {
        "name": "Scroll",
        "chain_id": 534352,
        "explorer_url": "https://scrollscan.com",
        "tokens": {
            "WETH": "0x5300000000000000000000000000000000000004",
            "wstETH": "0xf610A9dfB7C89644979b4A0f27063E9e7d7Cda32",
        },
    },
    "ethereum": {
        "name": "Ethereum",
        "chain_id": 1,
        "explorer_url": "https://etherscan.io",
        "tokens": {
            "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            "wstETH": "0x7f39C581F595B53c5cb19bD0b3f8dA6c935E2Ca0",
        },
    },
    "arbitrum": {
        "name": "Arbitrum",
        "chain_id": 42161,
        "explorer_url": "https://arbiscan.io",
        "tokens": {
            "WETH": "0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
            "wstETH": "0x5979D7b546E38E414F7E9822514be443A4800529",
        },
    },
    "base": {
        "name": "Base",
        "chain_id": 8453,
        "explorer_url": "https://basescan.org",
        "tokens": {
            "WETH": "0x4200000000000000000000000000000000000006",
            "wstETH": "0xc1CBa3fCea344f92D9239c08C0568f6F2F0ee452",
        },
    },
    "optimism": {
        "name": "Optimism",
        "chain_id": 10,
        "explorer_url": "https://optimistic.etherscan.io",
        "tokens": {
            "WETH": "0x4200000000000000000000000000000000000006",
            "wstETH": "0x1F32b1c2345538c0c6f582fCB022739c4A194Ebb",
        },
    },
}


class ConfigError(Exception):
    pass


@dataclass
class Secrets:
    signing_key: str
    api_key: str
    rpc_url: str


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Swap tokens through the 0x Permit2 API."
    )
    parser.add_argument("--config", default="config.json", help="Path to runtime config JSON.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Sign everything but do not broadcast the swap transaction.",
    )
    return parser.parse_args(argv)


def load_config(path: str) -> dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        return {}
    try:
        parsed = json.loads(config_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Invalid JSON config: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ConfigError("Config must be a JSON object.")
    return parsed


def load_secrets(environ: dict[str, str] | None = None) -> Secrets:
    env = os.environ if environ is None else environ
    values: dict[str, str] = {}
    for name in REQUIRED_ENV:
        value = str(env.get(name, "")).strip()
        if not value:
            raise ConfigError(f"missing {name}.")
        values[name] = value

    signing_key = values["PRIVATE_KEY"]
    if not signing_key.startswith(("0x", "0X")):
        signing_key = f"0x{signing_key}"
    return Secrets(
        signing_key=signing_key,
        api_key=values["ZERO_EX_API_KEY"],
        rpc_url=values["ALCHEMY_HTTP_TRANSPORT_URL"],
    )


def _resolve_token(chain: dict[str, Any], value: str, field: str) -> TokenHandle:
    text = value.strip()
    tokens: dict[str, str] = chain["tokens"]
    if text in tokens:
        return TokenHandle(symbol=text, address=tokens[text])
    if HEX_ADDRESS_RE.match(text):
        symbol = next((name for name, addr in tokens.items() if addr.lower() == text.lower()), text)
        return TokenHandle(symbol=symbol, address=text)
    raise ConfigError(
        f"{field} must be one of {sorted(tokens)} on {chain['name']} or a 0x-prefixed 20-byte address."
    )


def _resolve_sell_amount(value: Any) -> str:
    text = str(value).strip()
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        raise ConfigError(f"sell_amount must be a decimal number: {value}") from exc
    if not amount.is_finite() or amount <= 0:
        raise ConfigError("sell_amount must be > 0.")
    return text


def resolve_inputs(config: dict[str, Any], *, dry_run_flag: bool = False) -> dict[str, Any]:
    chain_key = str(config.get("chain", DEFAULT_CHAIN)).strip().lower()
    if chain_key not in CHAINS:
        raise ConfigError(f"Unsupported chain '{chain_key}'. Supported: {', '.join(sorted(CHAINS))}.")
    chain = CHAINS[chain_key]

    sell_token = _resolve_token(chain, str(config.get("sell_token", DEFAULT_SELL_TOKEN)), "sell_token")
    buy_token = _resolve_token(chain, str(config.get("buy_token", DEFAULT_BUY_TOKEN)), "buy_token")
    if sell_token.address.lower() == buy_token.address.lower():
        raise ConfigError("sell_token and buy_token must differ.")

    fee = config.get("affiliate_fee_bps", DEFAULT_AFFILIATE_FEE_BPS)
    if isinstance(fee, bool) or not isinstance(fee, int) or not 0 <= fee <= 10_000:
        raise ConfigError("affiliate_fee_bps must be an integer between 0 and 10000.")

    surplus = config.get("surplus_collection", True)
    if not isinstance(surplus, bool):
        raise ConfigError("surplus_collection must be true or false.")

    timeout = config.get("receipt_timeout_seconds", DEFAULT_RECEIPT_TIMEOUT_SECONDS)
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError("receipt_timeout_seconds must be > 0.")

    api = config.get("api", {})
    if api is None:
        api = {}
    if not isinstance(api, dict):
        raise ConfigError("Config field 'api' must be an object when provided.")

    return {
        "chain_key": chain_key,
        "chain": chain,
        "sell_token": sell_token,
        "buy_token": buy_token,
        "sell_amount": _resolve_sell_amount(config.get("sell_amount", DEFAULT_SELL_AMOUNT)),
        "affiliate_fee_bps": fee,
        "surplus_collection": surplus,
        "receipt_timeout_seconds": float(timeout),
        "base_url": str(api.get("base_url") or DEFAULT_BASE_URL),
        "logs_dir": str(config.get("logs_dir", DEFAULT_LOGS_DIR)),
        "dry_run": dry_run_flag or bool(config.get("dry_run", False)),
    }


def build_context(secrets: Secrets, inputs: dict[str, Any]) -> SwapContext:
    chain = inputs["chain"]
    settings = SwapSettings(
        chain_key=inputs["chain_key"],
        chain_name=chain["name"],
        chain_id=int(chain["chain_id"]),
        explorer_url=chain["explorer_url"],
        sell_amount=inputs["sell_amount"],
        affiliate_fee_bps=inputs["affiliate_fee_bps"],
        surplus_collection=inputs["surplus_collection"],
        receipt_timeout_seconds=inputs["receipt_timeout_seconds"],
        dry_run=inputs["dry_run"],
    )
    try:
        chain_client = ChainClient(
            private_key=secrets.signing_key,
            rpc_url=secrets.rpc_url,
            chain_id=settings.chain_id,
        )
    except ValueError as exc:
        raise ConfigError(f"PRIVATE_KEY is not a valid private key: {exc}") from exc

    return SwapContext(
        zeroex=ZeroExClient(api_key=secrets.api_key, base_url=inputs["base_url"]),
        chain=chain_client,
        sell_token=inputs["sell_token"],
        buy_token=inputs["buy_token"],
        settings=settings,
        logger=SwapLogger(logs_dir=inputs["logs_dir"]),
    )


def run_once(config: dict[str, Any], *, dry_run: bool = False) -> dict[str, Any]:
    secrets = load_secrets()
    inputs = resolve_inputs(config, dry_run_flag=dry_run)
    ctx = build_context(secrets, inputs)
    return run_swap(ctx)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv()

    try:
        config = load_config(args.config)
        result = run_once(config, dry_run=bool(args.dry_run))
    except (ConfigError, ResponseError, ChainError, SwapError, requests.RequestException) as exc:
        print(json.dumps({"status": "error", "error": str(exc)}))
        return 1

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
