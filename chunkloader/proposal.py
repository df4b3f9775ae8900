"""Relay round proposal records.

A proposal is the payload uploaded to the round loader: the round it
announces, the relay set elected for that round and the round end. The
record is encoded with fixed-width little-endian integers and a
count-prefixed relay list, then wrapped with its own byte length so the
on-chain reader knows how much of the account is meaningful.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field
from typing import List, Sequence

from solders.pubkey import Pubkey

from .constants import MAX_RELAYS, MIN_RELAYS, PUBKEY_BYTES
from .errors import ProposalError

_U32_MAX = 2**32 - 1
_U64_MAX = 2**64 - 1


def _check_u32(value: int, name: str) -> None:
    if not isinstance(value, int) or value < 0 or value > _U32_MAX:
        raise ProposalError(f"{name} must fit in u32")


def _relay_bytes(relay: Pubkey | bytes) -> bytes:
    raw = bytes(relay)
    if len(raw) != PUBKEY_BYTES:
        raise ProposalError(f"relay must be {PUBKEY_BYTES} bytes, got {len(raw)}")
    return raw


def parse_relay(text: str) -> Pubkey:
    """Accept a relay as 64 hex characters or a base58 pubkey."""
    value = text.strip()
    if len(value) == PUBKEY_BYTES * 2:
        try:
            raw = bytes.fromhex(value)
        except ValueError:
            raw = b""
        if len(raw) == PUBKEY_BYTES:
            return Pubkey.from_bytes(raw)
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise ProposalError(f"invalid relay identity: {text!r}") from exc


@dataclass(frozen=True)
class RelayRoundProposal:
    round_number: int
    relays: Sequence[Pubkey | bytes] = field(default_factory=list)
    round_end: int = 0

    def validate(self) -> None:
        _check_u32(self.round_number, "round_number")
        _check_u32(self.round_end, "round_end")
        count = len(self.relays)
        if count < MIN_RELAYS or count > MAX_RELAYS:
            raise ProposalError(
                f"relay set must contain between {MIN_RELAYS} and {MAX_RELAYS} relays, got {count}"
            )
        for relay in self.relays:
            _relay_bytes(relay)

    def serialize(self) -> bytes:
        self.validate()
        parts: List[bytes] = [struct.pack("<II", self.round_number, len(self.relays))]
        parts.extend(_relay_bytes(relay) for relay in self.relays)
        parts.append(struct.pack("<I", self.round_end))
        return b"".join(parts)

    def serialize_with_len(self) -> bytes:
        data = self.serialize()
        return struct.pack("<I", len(data)) + data


def serialize(round_number: int, relay_set: Sequence[Pubkey | bytes], round_end: int) -> bytes:
    return RelayRoundProposal(round_number, list(relay_set), round_end).serialize()


@dataclass(frozen=True)
class ProposalEvent:
    """Source event metadata that pins a proposal to one account address."""

    round_number: int
    event_timestamp: int
    event_transaction_lt: int
    event_configuration: Pubkey

    def __post_init__(self) -> None:
        _check_u32(self.round_number, "round_number")
        _check_u32(self.event_timestamp, "event_timestamp")
        if self.event_transaction_lt < 0 or self.event_transaction_lt > _U64_MAX:
            raise ProposalError("event_transaction_lt must fit in u64")
