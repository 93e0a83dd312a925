"""
0x Swap API Client - Permit2 price/quote endpoints and liquidity sources

All calls are plain GETs against api.0x.org with the API key and version headers.
"""

from typing import Dict, Any

import requests

DEFAULT_BASE_URL = 'https://api.0x.org'
API_VERSION = 'v2'


class ZeroExClient:
    """Wrapper for the 0x Swap API"""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, timeout: int = 30):
        """
        Initialize 0x client

        Args:
            api_key: 0x dashboard API key
            base_url: API base URL
            timeout: Per-request timeout in seconds
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    @property
    def headers(self) -> Dict[str, str]:
        return {
            'Content-Type': 'application/json',
            '0x-api-key': self.api_key,
            '0x-version': API_VERSION,
        }

    def _get(self, path: str, params: Dict[str, Any]) -> Any:
        """
        GET a 0x endpoint and return the decoded JSON body

        Raises:
            requests.HTTPError: On non-2xx responses
            ValueError: If the body is not JSON
        """
        response = requests.get(
            f"{self.base_url}{path}",
            headers=self.headers,
            params=params,
            timeout=self.timeout
        )
        response.raise_for_status()
        return response.json()

    def get_sources(self, chain_id: int) -> Any:
        """
        List liquidity sources available on a chain

        Args:
            chain_id: EVM chain id

        Returns:
            Raw response with a 'sources' field
        """
        return self._get('/swap/v1/sources', {'chainId': chain_id})

    def get_price(self, params: Dict[str, str]) -> Any:
        """Indicative Permit2 price for the given swap parameters"""
        return self._get('/swap/permit2/price', params)

    def get_quote(self, params: Dict[str, str]) -> Any:
        """Firm Permit2 quote for the given swap parameters"""
        return self._get('/swap/permit2/quote', params)


def build_swap_params(
    chain_id: int,
    sell_token: str,
    buy_token: str,
    sell_amount: int,
    taker: str,
    affiliate_fee_bps: int = 100,
    surplus_collection: bool = True
) -> Dict[str, str]:
    """
    Build the query shared by the price and quote endpoints

    Args:
        chain_id: EVM chain id
        sell_token: Address of the token being sold
        buy_token: Address of the token being bought
        sell_amount: Amount in the sell token's smallest unit
        taker: Address that will execute the swap
        affiliate_fee_bps: Affiliate fee in basis points (100 = 1%)
        surplus_collection: Whether 0x may collect trade surplus

    Returns:
        Query parameters with every value stringified
    """
    return {
        'chainId': str(chain_id),
        'sellToken': sell_token,
        'buyToken': buy_token,
        'sellAmount': str(sell_amount),
        'taker': taker,
        'affiliateFee': str(affiliate_fee_bps),
        'surplusCollection': 'true' if surplus_collection else 'false',
    }
