"""Thin RPC layer over solana-py used by the uploader."""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from solana.rpc.api import Client
from solana.rpc.commitment import Commitment
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from .constants import (
    DEFAULT_COMMITMENT,
    DEFAULT_CONFIRM_TIMEOUT,
    DEFAULT_MAX_WORKERS,
    DEFAULT_POLL_INTERVAL,
    MAX_STATUS_BATCH,
)

logger = logging.getLogger(__name__)

_CONFIRMATION_ORDER = (
    TransactionConfirmationStatus.Processed,
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)
_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class TransactionFailed(Exception):
    """A transaction landed but the cluster reported an execution error."""


class ConfirmationTimeout(Exception):
    """A sent transaction was not confirmed before its deadline; it may still land."""


@dataclass
class Confirmation:
    signature: Optional[Signature]
    error: Optional[str] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


def _meets_commitment(status, commitment: str) -> bool:
    if status is None or status.confirmation_status is None:
        return False
    wanted = _COMMITMENT_RANK.get(commitment, 1)
    for rank, level in enumerate(_CONFIRMATION_ORDER):
        if status.confirmation_status == level:
            return rank >= wanted
    return False


class RpcNetwork:
    """Remote cluster calls needed by the upload lifecycle."""

    def __init__(self, client: Client, commitment: str = DEFAULT_COMMITMENT) -> None:
        self.client = client
        self.commitment = commitment

    def get_version(self) -> str:
        return self.client.get_version().value.solana_core

    def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return self.client.get_minimum_balance_for_rent_exemption(size).value

    def get_latest_blockhash(self) -> Hash:
        return self.client.get_latest_blockhash().value.blockhash

    def get_account_size(self, address: Pubkey) -> Optional[int]:
        """Data length of ``address``, or ``None`` when the account does not exist."""
        info = self.client.get_account_info(address).value
        if info is None:
            return None
        return len(info.data)

    def send_and_confirm(
        self,
        tx: Transaction,
        timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> Signature:
        sig = self.client.send_raw_transaction(
            bytes(tx),
            opts=TxOpts(
                skip_preflight=False,
                skip_confirmation=True,
                preflight_commitment=Commitment(self.commitment),
            ),
        ).value
        result = self.wait_for_signatures([sig], timeout=timeout, poll_interval=poll_interval)[sig]
        if result.timed_out:
            raise ConfirmationTimeout(f"transaction {sig} {result.error}")
        if not result.ok:
            raise TransactionFailed(f"transaction {sig} failed: {result.error}")
        return sig

    def send_transaction(self, tx: Transaction) -> Signature:
        return self.client.send_raw_transaction(
            bytes(tx),
            opts=TxOpts(skip_preflight=True, skip_confirmation=True),
        ).value

    def signature_statuses(self, signatures: Sequence[Signature]) -> list:
        statuses: list = []
        for start in range(0, len(signatures), MAX_STATUS_BATCH):
            batch = list(signatures[start : start + MAX_STATUS_BATCH])
            statuses.extend(self.client.get_signature_statuses(batch).value)
        return statuses

    def wait_for_signatures(
        self,
        signatures: Sequence[Signature],
        timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> Dict[Signature, Confirmation]:
        """Poll until every signature is confirmed or rejected, or ``timeout`` elapses."""
        results: Dict[Signature, Confirmation] = {}
        pending = list(dict.fromkeys(signatures))
        deadline = time.monotonic() + timeout
        last_poll_error: Optional[str] = None
        while pending:
            try:
                statuses = self.signature_statuses(pending)
            except Exception as exc:  # a failed poll leaves everything pending
                last_poll_error = str(exc)
                logger.warning("signature status poll failed: %s", exc)
                statuses = [None] * len(pending)
            still_pending: List[Signature] = []
            for sig, status in zip(pending, statuses):
                if status is not None and status.err is not None:
                    results[sig] = Confirmation(sig, error=str(status.err))
                elif _meets_commitment(status, self.commitment):
                    results[sig] = Confirmation(sig)
                else:
                    still_pending.append(sig)
            pending = still_pending
            if not pending or time.monotonic() >= deadline:
                break
            time.sleep(poll_interval)
        reason = f"not confirmed within {timeout:g}s"
        if last_poll_error is not None:
            reason += f" (last status poll failed: {last_poll_error})"
        for sig in pending:
            results[sig] = Confirmation(sig, error=reason, timed_out=True)
        return results

    def send_and_confirm_many(
        self,
        transactions: Sequence[Transaction],
        timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        max_workers: int = DEFAULT_MAX_WORKERS,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> List[Confirmation]:
        """Submit without waiting, then wait for the whole batch under one deadline.

        Results line up with ``transactions``. Submission errors are reported
        per transaction and never stop the rest of the batch.
        """
        submitted: List[Optional[Signature]] = [None] * len(transactions)
        errors: List[Optional[str]] = [None] * len(transactions)

        def submit(index: int) -> None:
            try:
                submitted[index] = self.send_transaction(transactions[index])
            except Exception as exc:  # recorded against this transaction
                errors[index] = f"send failed: {exc}"

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            list(pool.map(submit, range(len(transactions))))

        landed = [sig for sig in submitted if sig is not None]
        logger.debug("submitted %d/%d transactions", len(landed), len(transactions))
        confirmed = self.wait_for_signatures(landed, timeout=timeout, poll_interval=poll_interval)

        results: List[Confirmation] = []
        for sig, error in zip(submitted, errors):
            if sig is None:
                results.append(Confirmation(None, error=error))
            else:
                results.append(confirmed[sig])
        return results


def establish_connection(rpc_url: str, commitment: str = DEFAULT_COMMITMENT) -> RpcNetwork:
    return RpcNetwork(Client(rpc_url, commitment=Commitment(commitment)), commitment=commitment)
