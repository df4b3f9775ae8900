"""Signing and delivery of chunk write transactions."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.transaction import Transaction

from .chunk import MessageFactory, WriteUnit
from .constants import (
    DEFAULT_CONFIRM_TIMEOUT,
    DEFAULT_DISPATCH_MODE,
    DEFAULT_MAX_WORKERS,
    DEFAULT_POLL_INTERVAL,
    DISPATCH_MODES,
)
from .errors import ConfigError
from .network import ConfirmationTimeout, RpcNetwork

logger = logging.getLogger(__name__)


@dataclass
class WriteFailure:
    unit: WriteUnit
    reason: str
    # Set when the write was sent but never confirmed; it may still have landed.
    timed_out: bool = False


@dataclass
class DispatchOutcome:
    total: int
    failures: List[WriteFailure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def succeeded(self) -> int:
        return self.total - self.failed

    @property
    def ok(self) -> bool:
        return not self.failures


def sign_message(message: Message, signers: Sequence[Keypair], blockhash: Optional[Hash] = None) -> Transaction:
    """Sign ``message``; a missing or foreign signer raises ``SignerError``."""
    tx = Transaction.new_unsigned(message)
    tx.sign(list(signers), blockhash or message.recent_blockhash)
    return tx


def sign_unit(
    unit: WriteUnit,
    create_message: MessageFactory,
    signers: Sequence[Keypair],
    blockhash: Optional[Hash] = None,
) -> Transaction:
    return sign_message(create_message(unit.offset, unit.data), signers, blockhash)


def _record(failures: List[WriteFailure], unit: WriteUnit, reason: str, timed_out: bool = False) -> None:
    logger.warning("write at offset %d (%d bytes) failed: %s", unit.offset, len(unit.data), reason)
    failures.append(WriteFailure(unit=unit, reason=reason, timed_out=timed_out))


class Dispatcher(ABC):
    """Delivers every unit of a chunk plan and aggregates the failures."""

    @abstractmethod
    def dispatch(
        self,
        plan: Sequence[WriteUnit],
        create_message: MessageFactory,
        signers: Sequence[Keypair],
    ) -> DispatchOutcome:
        raise NotImplementedError


class SequentialDispatcher(Dispatcher):
    """Sign, send and confirm one write at a time, each under its own deadline."""

    def __init__(
        self,
        network: RpcNetwork,
        timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if timeout <= 0:
            raise ConfigError("confirm timeout must be > 0")
        self.network = network
        self.timeout = timeout
        self.poll_interval = poll_interval

    def dispatch(
        self,
        plan: Sequence[WriteUnit],
        create_message: MessageFactory,
        signers: Sequence[Keypair],
    ) -> DispatchOutcome:
        failures: List[WriteFailure] = []
        for index, unit in enumerate(plan, start=1):
            try:
                # fresh blockhash per write
                tx = sign_unit(unit, create_message, signers, self.network.get_latest_blockhash())
                self.network.send_and_confirm(tx, timeout=self.timeout, poll_interval=self.poll_interval)
            except ConfirmationTimeout as exc:
                _record(failures, unit, str(exc), timed_out=True)
                continue
            except Exception as exc:  # recorded against this unit
                _record(failures, unit, str(exc))
                continue
            logger.debug("confirmed write %d/%d at offset %d", index, len(plan), unit.offset)
        return DispatchOutcome(total=len(plan), failures=failures)


class ConcurrentDispatcher(Dispatcher):
    """Submit every write up front, then wait for the batch under one deadline."""

    def __init__(
        self,
        network: RpcNetwork,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: float = DEFAULT_CONFIRM_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if max_workers <= 0:
            raise ConfigError("max_workers must be > 0")
        if timeout <= 0:
            raise ConfigError("confirm timeout must be > 0")
        self.network = network
        self.max_workers = max_workers
        self.timeout = timeout
        self.poll_interval = poll_interval

    def dispatch(
        self,
        plan: Sequence[WriteUnit],
        create_message: MessageFactory,
        signers: Sequence[Keypair],
    ) -> DispatchOutcome:
        failures: List[WriteFailure] = []
        signed_units: List[WriteUnit] = []
        transactions: List[Transaction] = []
        for unit in plan:
            try:
                transactions.append(sign_unit(unit, create_message, signers))
            except Exception as exc:  # recorded against this unit
                _record(failures, unit, f"signing failed: {exc}")
                continue
            signed_units.append(unit)

        if transactions:
            try:
                results = self.network.send_and_confirm_many(
                    transactions,
                    timeout=self.timeout,
                    max_workers=self.max_workers,
                    poll_interval=self.poll_interval,
                )
            except Exception as exc:  # the whole batch is unaccounted for
                for unit in signed_units:
                    _record(failures, unit, f"dispatch failed: {exc}")
            else:
                for unit, result in zip(signed_units, results):
                    if not result.ok:
                        _record(failures, unit, result.error or "unknown error", result.timed_out)

        failures.sort(key=lambda f: f.unit.offset)
        return DispatchOutcome(total=len(plan), failures=failures)


def make_dispatcher(
    mode: str,
    network: RpcNetwork,
    max_workers: int = DEFAULT_MAX_WORKERS,
    timeout: float = DEFAULT_CONFIRM_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> Dispatcher:
    value = (mode or DEFAULT_DISPATCH_MODE).strip().lower()
    if value not in DISPATCH_MODES:
        raise ConfigError(f"dispatch mode must be one of {sorted(DISPATCH_MODES)}, got {mode!r}")
    if value == "sequential":
        return SequentialDispatcher(network, timeout=timeout, poll_interval=poll_interval)
    return ConcurrentDispatcher(
        network,
        max_workers=max_workers,
        timeout=timeout,
        poll_interval=poll_interval,
    )
