"""Signing account bound to one EVM chain over a JSON-RPC HTTP endpoint."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

import requests
from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError, EncodingError
from eth_account import Account
from eth_utils import keccak, to_bytes, to_checksum_address

MAX_UINT256 = (1 << 256) - 1
DEFAULT_RECEIPT_TIMEOUT_SECONDS = 180.0
DEFAULT_RECEIPT_POLL_SECONDS = 2.0


class ChainError(Exception):
    pass


@dataclass
class TokenHandle:
    symbol: str
    address: str
    decimals: int | None = None


def _preview(value: Any) -> str:
    if isinstance(value, str):
        return value[:220]
    try:
        return json.dumps(value)[:220]
    except TypeError:
        return str(value)[:220]


def parse_rpc_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise ChainError(f"RPC field '{field}' was not numeric: {value}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if text.startswith(("0x", "0X")):
                return int(text, 16)
            return int(text)
        except ValueError as exc:
            raise ChainError(f"RPC field '{field}' was not numeric: {value}") from exc
    raise ChainError(f"RPC field '{field}' was not numeric: {value}")


def encode_function_call(signature: str, arg_types: list[str], args: list[Any]) -> str:
    selector = keccak(text=signature)[:4]
    encoded_args = abi_encode(arg_types, args)
    return "0x" + (selector + encoded_args).hex()


class ChainClient:
    def __init__(
        self,
        *,
        private_key: str,
        rpc_url: str,
        chain_id: int,
        timeout: int = 30,
    ):
        self._account = Account.from_key(private_key)
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout = timeout
        self._request_id = 0

    @property
    def address(self) -> str:
        return str(self._account.address)

    def rpc(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "id": self._request_id,
                    "method": method,
                    "params": params,
                },
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            raise ChainError(f"RPC {method} failed: {exc}") from exc
        except ValueError as exc:
            raise ChainError(f"RPC {method} returned invalid JSON.") from exc

        if not isinstance(payload, dict):
            raise ChainError(f"RPC {method} returned non-object payload.")
        if payload.get("error") not in (None, {}):
            raise ChainError(f"RPC method {method} failed: {_preview(payload.get('error'))}")
        if "result" not in payload:
            raise ChainError(f"RPC method {method} missing result.")
        return payload["result"]

    # ---- reads ----

    def call(self, to: str, data: str, *, sender: str | None = None) -> bytes:
        call_obj: dict[str, Any] = {"to": to, "data": data}
        if sender:
            call_obj["from"] = sender
        result = self.rpc("eth_call", [call_obj, "latest"])
        if not isinstance(result, str):
            raise ChainError(f"eth_call returned non-hex result: {_preview(result)}")
        return to_bytes(hexstr=result)

    def read_decimals(self, token: TokenHandle) -> int:
        raw = self.call(token.address, encode_function_call("decimals()", [], []))
        try:
            (decimals,) = abi_decode(["uint8"], raw)
        except DecodingError as exc:
            raise ChainError(f"Could not decode decimals() for {token.symbol}: {exc}") from exc
        token.decimals = int(decimals)
        return token.decimals

    def get_transaction_count(self, block: str = "pending") -> int:
        result = self.rpc("eth_getTransactionCount", [self.address, block])
        return parse_rpc_int(result, field="eth_getTransactionCount")

    def gas_price(self) -> int:
        return parse_rpc_int(self.rpc("eth_gasPrice", []), field="eth_gasPrice")

    def estimate_gas(self, to: str, data: str, value: int = 0) -> int:
        result = self.rpc(
            "eth_estimateGas",
            [{"from": self.address, "to": to, "data": data, "value": hex(value)}],
        )
        return parse_rpc_int(result, field="eth_estimateGas")

    # ---- approvals ----

    def simulate_approve(self, token: TokenHandle, spender: str, amount: int = MAX_UINT256) -> dict[str, Any]:
        """Dry-run ``approve`` as the account; returns the request to submit.

        Raises ChainError when the arguments cannot be encoded or the node
        reverts the call.
        """
        try:
            spender_cs = to_checksum_address(spender)
            data = encode_function_call("approve(address,uint256)", ["address", "uint256"], [spender_cs, amount])
        except (ValueError, EncodingError) as exc:
            raise ChainError(f"Invalid approve({spender}) arguments: {exc}") from exc
        raw = self.call(token.address, data, sender=self.address)
        if raw:
            try:
                (approved,) = abi_decode(["bool"], raw)
            except DecodingError as exc:
                raise ChainError(f"Could not decode approve() result: {exc}") from exc
            if not approved:
                raise ChainError(f"approve({spender_cs}) simulation returned false.")
        return {"to": token.address, "data": data, "args": [spender_cs, amount]}

    def send_approve(self, request: dict[str, Any]) -> str:
        to = str(request["to"])
        data = str(request["data"])
        unsigned_tx = {
            "chainId": self.chain_id,
            "nonce": self.get_transaction_count(),
            "to": to_checksum_address(to),
            "value": 0,
            "data": data,
            "gas": self.estimate_gas(to, data),
            "gasPrice": self.gas_price(),
        }
        return self.send_raw_transaction(self.sign_transaction(unsigned_tx))

    def wait_for_receipt(
        self,
        tx_hash: str,
        *,
        timeout: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
        poll_interval: float = DEFAULT_RECEIPT_POLL_SECONDS,
    ) -> dict[str, Any]:
        deadline = time.monotonic() + timeout
        while True:
            receipt = self.rpc("eth_getTransactionReceipt", [tx_hash])
            if isinstance(receipt, dict):
                return receipt
            if time.monotonic() >= deadline:
                raise ChainError(f"Timed out after {timeout:g}s waiting for receipt of {tx_hash}.")
            time.sleep(poll_interval)

    # ---- signing ----

    def sign_typed_data(self, typed_data: dict[str, Any]) -> bytes:
        signed = self._account.sign_typed_data(full_message=typed_data)
        return bytes(signed.signature)

    def sign_transaction(self, unsigned_tx: dict[str, Any]) -> str:
        try:
            signed = self._account.sign_transaction(unsigned_tx)
        except (TypeError, ValueError) as exc:
            raise ChainError(f"Could not sign transaction to {unsigned_tx.get('to')}: {exc}") from exc
        return "0x" + bytes(signed.raw_transaction).hex()

    def send_raw_transaction(self, raw_tx_hex: str) -> str:
        return str(self.rpc("eth_sendRawTransaction", [raw_tx_hex]))
