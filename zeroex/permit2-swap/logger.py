"""
Permit2 Swap Logger - Logs every phase of a swap run

Maintains JSONL log files:
1. sources.jsonl - Liquidity source listings
2. prices.jsonl - Indicative price responses
3. approvals.jsonl - Permit2 allowance decisions and approval transactions
4. quotes.jsonl - Firm quote responses
5. signatures.jsonl - Permit2 signing outcomes
6. submissions.jsonl - Broadcast (or dry-run) swap transactions
7. errors.jsonl - Errors and warnings
"""

import json
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional
from pathlib import Path


class SwapLogger:
    """Logs all swap activity to JSONL files"""

    def __init__(self, logs_dir: str = 'logs'):
        """
        Initialize swap logger

        Args:
            logs_dir: Directory for log files
        """
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(exist_ok=True, parents=True)

    def _append_jsonl(self, filename: str, data: Dict[str, Any]):
        if 'timestamp' not in data:
            data['timestamp'] = datetime.now(tz=timezone.utc).isoformat()

        filepath = self.logs_dir / filename
        with open(filepath, 'a') as f:
            f.write(json.dumps(data, default=str) + '\n')

    def log_sources(self, chain_id: int, sources: List[str]):
        self._append_jsonl('sources.jsonl', {
            'phase': 'sources',
            'chain_id': chain_id,
            'count': len(sources),
            'sources': sources
        })

    def log_price(self, params: Dict[str, str], allowance_spender: Optional[str]):
        """
        Log an indicative price fetch

        Args:
            params: Query parameters sent to /swap/permit2/price
            allowance_spender: Spender needing approval, or None
        """
        self._append_jsonl('prices.jsonl', {
            'phase': 'price',
            'params': params,
            'allowance_spender': allowance_spender
        })

    def log_approval(
        self,
        token: str,
        spender: Optional[str],
        status: str,
        tx_hash: Optional[str] = None,
        receipt_status: Optional[str] = None
    ):
        """
        Log a Permit2 allowance decision

        Args:
            token: Sell token address
            spender: Spender address (None when no approval was needed)
            status: 'skipped', 'confirmed', or 'error'
            tx_hash: Approval transaction hash
            receipt_status: Receipt status field once mined
        """
        self._append_jsonl('approvals.jsonl', {
            'phase': 'approval',
            'token': token,
            'spender': spender,
            'status': status,
            'tx_hash': tx_hash,
            'receipt_status': receipt_status
        })

    def log_quote(self, params: Dict[str, str], sources: List[str], has_permit2: bool):
        self._append_jsonl('quotes.jsonl', {
            'phase': 'quote',
            'params': params,
            'route_sources': sources,
            'has_permit2': has_permit2
        })

    def log_signature(self, status: str, signature_bytes: int = 0, error: Optional[str] = None):
        """
        Log a Permit2 signing outcome

        Args:
            status: 'signed', 'skipped', or 'error'
            signature_bytes: Length of the produced signature
            error: Error message (if signing failed)
        """
        self._append_jsonl('signatures.jsonl', {
            'phase': 'signature',
            'status': status,
            'signature_bytes': signature_bytes,
            'error': error
        })

    def log_submission(
        self,
        status: str,
        to: Optional[str],
        nonce: Optional[int] = None,
        tx_hash: Optional[str] = None,
        data_bytes: Optional[int] = None
    ):
        self._append_jsonl('submissions.jsonl', {
            'phase': 'submission',
            'status': status,
            'to': to,
            'nonce': nonce,
            'tx_hash': tx_hash,
            'data_bytes': data_bytes
        })

    def log_error(
        self,
        operation: str,
        error_type: str,
        error_message: str,
        context: Optional[Dict] = None
    ):
        """
        Log error or warning

        Args:
            operation: What operation failed
            error_type: Error category
            error_message: Error details
            context: Additional context
        """
        self._append_jsonl('errors.jsonl', {
            'phase': 'error',
            'operation': operation,
            'error_type': error_type,
            'error_message': error_message,
            'context': context or {}
        })

    def get_recent_logs(self, log_type: str, limit: int = 10) -> list:
        """
        Get recent log entries

        Args:
            log_type: Log type (matches filename without .jsonl)
            limit: Max entries to return

        Returns:
            List of recent log entries
        """
        filepath = self.logs_dir / f"{log_type}.jsonl"
        if not filepath.exists():
            return []

        logs = []
        with open(filepath, 'r') as f:
            for line in f:
                logs.append(json.loads(line))

        return logs[-limit:]
