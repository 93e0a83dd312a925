"""
Unit tests for the swap pipeline steps and the run_swap orchestrator.

The 0x client and chain client are mocked; the logger writes to a temp dir.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests
from eth_utils import to_checksum_address

sys.path.insert(0, str(Path(__file__).parent))
from chain_client import MAX_UINT256, ChainClient, ChainError, TokenHandle
from logger import SwapLogger
from models import PriceResponse, QuoteResponse
from permit2 import hex_byte_length, splice_signature
from swap_pipeline import (
    SignedQuote,
    SwapContext,
    SwapError,
    SwapSettings,
    ensure_allowance,
    parse_units,
    run_swap,
    sign_quote,
    submit_swap,
)


TEST_KEY = '0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318'
TAKER = '0x2c7536E3605D9C16a7a3D7b1898e529396a65c23'
PERMIT2 = '0x000000000022D473030F116dDEE9F6B43aC78BA3'
SETTLER = '0x0d0E364aa7852291883C162B22D6D81f6355428F'
SIGNATURE = b'\x11' * 65


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_ctx(tmp_path, **settings) -> SwapContext:
    chain = MagicMock()
    chain.address = TAKER
    chain.read_decimals.return_value = 18
    chain.simulate_approve.return_value = {'to': '0xweth', 'data': '0x095ea7b3', 'args': [PERMIT2, MAX_UINT256]}
    chain.send_approve.return_value = '0xapprove'
    chain.wait_for_receipt.return_value = {'status': '0x1', 'blockNumber': '0x10'}
    chain.sign_typed_data.return_value = SIGNATURE
    chain.get_transaction_count.return_value = 7
    chain.sign_transaction.return_value = '0xf86c'
    chain.send_raw_transaction.return_value = '0x' + 'aa' * 32

    base = {
        'chain_key': 'scroll',
        'chain_name': 'Scroll',
        'chain_id': 534352,
        'explorer_url': 'https://scrollscan.com',
    }
    base.update(settings)
    return SwapContext(
        zeroex=MagicMock(),
        chain=chain,
        sell_token=TokenHandle(symbol='WETH', address='0x5300000000000000000000000000000000000004'),
        buy_token=TokenHandle(symbol='wstETH', address='0xf610A9dfB7C89644979b4A0f27063E9e7d7Cda32'),
        settings=SwapSettings(**base),
        logger=SwapLogger(logs_dir=str(tmp_path / 'logs')),
    )


def _price(allowance=None) -> dict:
    return {'issues': {'allowance': allowance}, 'sellAmount': '100000000000000000'}


def _quote(**overrides) -> dict:
    quote = {
        'route': {'fills': [
            {'source': 'Uniswap_V3', 'proportionBps': '7000'},
            {'source': 'Curve', 'proportionBps': '3000'},
        ]},
        'transaction': {
            'to': SETTLER,
            'data': '0xabc123',
            'gas': '300000',
            'gasPrice': '1000000',
            'value': '0',
        },
        'permit2': {'eip712': {'primaryType': 'PermitTransferFrom', 'types': {}, 'domain': {}, 'message': {}}},
    }
    quote.update(overrides)
    return quote


# ---------------------------------------------------------------------------
# parse_units
# ---------------------------------------------------------------------------

class TestParseUnits:
    def test_tenth_of_18_decimal_token(self):
        assert parse_units('0.1', 18) == 100000000000000000

    def test_six_decimals(self):
        assert parse_units('12.5', 6) == 12500000

    def test_excess_precision_truncates(self):
        assert parse_units('0.0000001', 6) == 0


# ---------------------------------------------------------------------------
# ensure_allowance
# ---------------------------------------------------------------------------

class TestEnsureAllowance:
    def test_null_allowance_makes_no_contract_calls(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        outcome = ensure_allowance(ctx, PriceResponse.from_dict(_price()))

        assert outcome.status == 'skipped'
        ctx.chain.simulate_approve.assert_not_called()
        ctx.chain.send_approve.assert_not_called()
        assert 'WETH already approved for Permit2' in capsys.readouterr().out

    def test_spender_triggers_one_simulate_and_one_write_then_waits(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        order = MagicMock()
        order.attach_mock(ctx.chain.simulate_approve, 'simulate')
        order.attach_mock(ctx.chain.send_approve, 'write')
        order.attach_mock(ctx.chain.wait_for_receipt, 'wait')

        outcome = ensure_allowance(ctx, PriceResponse.from_dict(_price({'spender': PERMIT2, 'actual': '0'})))

        assert outcome.status == 'confirmed'
        assert outcome.tx_hash == '0xapprove'
        ctx.chain.simulate_approve.assert_called_once_with(ctx.sell_token, PERMIT2, MAX_UINT256)
        ctx.chain.send_approve.assert_called_once_with(ctx.chain.simulate_approve.return_value)
        ctx.chain.wait_for_receipt.assert_called_once_with('0xapprove', timeout=180.0)
        assert [name for name, _, _ in order.mock_calls] == ['simulate', 'write', 'wait']

    def test_failed_simulation_is_logged_and_not_fatal(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        ctx.chain.simulate_approve.side_effect = ChainError('execution reverted')

        outcome = ensure_allowance(ctx, PriceResponse.from_dict(_price({'spender': PERMIT2})))

        assert outcome.status == 'error'
        ctx.chain.send_approve.assert_not_called()
        assert 'Error approving Permit2: execution reverted' in capsys.readouterr().out
        errors = ctx.logger.get_recent_logs('errors')
        assert errors[-1]['operation'] == 'approve'

    def test_network_failure_during_write_is_not_fatal(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        ctx.chain.send_approve.side_effect = requests.ConnectionError('rpc down')

        outcome = ensure_allowance(ctx, PriceResponse.from_dict(_price({'spender': PERMIT2})))

        assert outcome.status == 'error'
        ctx.chain.wait_for_receipt.assert_not_called()

    def test_malformed_spender_is_logged_and_not_fatal(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        ctx.chain = ChainClient(private_key=TEST_KEY, rpc_url='https://rpc.example', chain_id=534352)
        ctx.chain.rpc = MagicMock()

        outcome = ensure_allowance(ctx, PriceResponse.from_dict(_price({'spender': '0x1234'})))

        assert outcome.status == 'error'
        assert outcome.spender == '0x1234'
        ctx.chain.rpc.assert_not_called()
        assert 'Error approving Permit2: Invalid approve(0x1234)' in capsys.readouterr().out
        assert ctx.logger.get_recent_logs('errors')[-1]['context'] == {'spender': '0x1234'}


# ---------------------------------------------------------------------------
# sign_quote
# ---------------------------------------------------------------------------

class TestSignQuote:
    def test_splices_signature_into_data(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        signed = sign_quote(ctx, QuoteResponse.from_dict(_quote()))

        assert signed.signature == SIGNATURE
        assert signed.data == splice_signature('0xabc123', SIGNATURE)
        assert hex_byte_length(signed.data) == 3 + 32 + 65

    def test_no_permit2_payload_skips_signing(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        quote = _quote()
        del quote['permit2']

        assert sign_quote(ctx, QuoteResponse.from_dict(quote)) is None
        ctx.chain.sign_typed_data.assert_not_called()

    def test_empty_permit2_payload_is_still_signed(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        ctx.chain.sign_typed_data.side_effect = KeyError('types')

        with pytest.raises(SwapError, match='Failed to obtain signature or transaction data'):
            sign_quote(ctx, QuoteResponse.from_dict(_quote(permit2={'eip712': {}})))
        ctx.chain.sign_typed_data.assert_called_once_with({})

    def test_missing_transaction_data_is_fatal(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        quote = _quote(transaction={'to': SETTLER})

        with pytest.raises(SwapError, match='Failed to obtain signature or transaction data'):
            sign_quote(ctx, QuoteResponse.from_dict(quote))

    def test_signing_error_is_logged_then_fatal(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        ctx.chain.sign_typed_data.side_effect = ValueError('bad typed data')

        with pytest.raises(SwapError):
            sign_quote(ctx, QuoteResponse.from_dict(_quote()))

        assert 'Error signing permit2 coupon: bad typed data' in capsys.readouterr().err
        assert ctx.logger.get_recent_logs('signatures')[-1]['status'] == 'error'


# ---------------------------------------------------------------------------
# submit_swap
# ---------------------------------------------------------------------------

class TestSubmitSwap:
    def test_without_signature_nothing_is_sent(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        result = submit_swap(ctx, QuoteResponse.from_dict(_quote()), None)

        assert result.status == 'not_sent'
        ctx.chain.send_raw_transaction.assert_not_called()
        assert 'transaction not sent' in capsys.readouterr().err

    def test_builds_transaction_from_quote_fields(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        signed = SignedQuote(signature=SIGNATURE, data=splice_signature('0xabc123', SIGNATURE))

        result = submit_swap(ctx, QuoteResponse.from_dict(_quote()), signed)

        ctx.chain.get_transaction_count.assert_called_once_with('latest')
        unsigned = ctx.chain.sign_transaction.call_args.args[0]
        assert unsigned == {
            'chainId': 534352,
            'nonce': 7,
            'to': to_checksum_address(SETTLER),
            'data': signed.data,
            'value': 0,
            'gas': 300000,
            'gasPrice': 1000000,
        }
        ctx.chain.send_raw_transaction.assert_called_once_with('0xf86c')
        assert result.explorer_url == 'https://scrollscan.com/tx/0x' + 'aa' * 32
        out = capsys.readouterr().out
        assert 'Transaction hash: 0x' + 'aa' * 32 in out
        assert 'See tx details at https://scrollscan.com/tx/' in out

    def test_missing_gas_fields_are_filled_from_node(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        ctx.chain.estimate_gas.return_value = 250000
        ctx.chain.gas_price.return_value = 42
        signed = SignedQuote(signature=SIGNATURE, data='0x01')
        quote = _quote(transaction={'to': SETTLER, 'data': '0xabc123'})

        submit_swap(ctx, QuoteResponse.from_dict(quote), signed)

        unsigned = ctx.chain.sign_transaction.call_args.args[0]
        assert unsigned['gas'] == 250000
        assert unsigned['gasPrice'] == 42
        assert unsigned['value'] == 0

    def test_dry_run_signs_but_does_not_broadcast(self, tmp_path):
        ctx = _make_ctx(tmp_path, dry_run=True)
        signed = SignedQuote(signature=SIGNATURE, data=splice_signature('0xabc123', SIGNATURE))

        result = submit_swap(ctx, QuoteResponse.from_dict(_quote()), signed)

        assert result.status == 'dry_run'
        assert result.data_bytes == 100
        ctx.chain.sign_transaction.assert_called_once()
        ctx.chain.send_raw_transaction.assert_not_called()


# ---------------------------------------------------------------------------
# run_swap end to end
# ---------------------------------------------------------------------------

class TestRunSwap:
    def test_two_fill_route_signs_splices_and_broadcasts_once(self, tmp_path, capsys):
        ctx = _make_ctx(tmp_path)
        ctx.zeroex.get_sources.return_value = {'sources': {'Uniswap_V3': {}, 'Curve': {}}}
        ctx.zeroex.get_price.return_value = _price()
        ctx.zeroex.get_quote.return_value = _quote()

        result = run_swap(ctx)

        lines = capsys.readouterr().out.splitlines()
        assert 'Liquidity sources for Scroll chain:' in lines
        assert 'Uniswap_V3, Curve' in lines
        assert '2 Sources' in lines
        assert 'Uniswap_V3: 70.00%' in lines
        assert 'Curve: 30.00%' in lines

        ctx.chain.sign_typed_data.assert_called_once()
        ctx.chain.simulate_approve.assert_not_called()
        ctx.chain.send_raw_transaction.assert_called_once()
        sent_data = ctx.chain.sign_transaction.call_args.args[0]['data']
        assert hex_byte_length(sent_data) == hex_byte_length('0xabc123') + 32 + len(SIGNATURE)

        assert result['status'] == 'ok'
        assert result['approval'] == 'skipped'
        assert result['signed'] is True
        assert result['submission'] == 'sent'
        assert result['sell_amount'] == '100000000000000000'

    def test_price_and_quote_use_same_params(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        ctx.zeroex.get_sources.return_value = {'sources': {}}
        ctx.zeroex.get_price.return_value = _price()
        ctx.zeroex.get_quote.return_value = _quote()

        run_swap(ctx)

        price_params = ctx.zeroex.get_price.call_args.args[0]
        assert price_params == ctx.zeroex.get_quote.call_args.args[0]
        assert price_params['taker'] == TAKER
        assert price_params['affiliateFee'] == '100'
        assert price_params['surplusCollection'] == 'true'

    def test_quote_without_permit2_skips_submission(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        quote = _quote()
        del quote['permit2']
        ctx.zeroex.get_sources.return_value = {'sources': {}}
        ctx.zeroex.get_price.return_value = _price()
        ctx.zeroex.get_quote.return_value = quote

        result = run_swap(ctx)

        assert result['signed'] is False
        assert result['submission'] == 'not_sent'
        ctx.chain.send_raw_transaction.assert_not_called()

    def test_missing_transaction_data_aborts_before_broadcast(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        ctx.zeroex.get_sources.return_value = {'sources': {}}
        ctx.zeroex.get_price.return_value = _price()
        ctx.zeroex.get_quote.return_value = _quote(transaction={'to': SETTLER})

        with pytest.raises(SwapError):
            run_swap(ctx)

        ctx.chain.sign_transaction.assert_not_called()
        ctx.chain.send_raw_transaction.assert_not_called()

    def test_failed_approval_still_reaches_submission(self, tmp_path):
        ctx = _make_ctx(tmp_path)
        ctx.chain.send_approve.side_effect = ChainError('insufficient funds for gas')
        ctx.zeroex.get_sources.return_value = {'sources': {}}
        ctx.zeroex.get_price.return_value = _price({'spender': PERMIT2})
        ctx.zeroex.get_quote.return_value = _quote()

        result = run_swap(ctx)

        assert result['approval'] == 'error'
        assert result['submission'] == 'sent'
