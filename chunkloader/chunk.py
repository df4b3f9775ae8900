"""Chunk sizing and offset planning for account writes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List

from solders.message import Message
from solders.transaction import Transaction

from .constants import MAX_WRITE_OFFSET, PACKET_DATA_SIZE
from .errors import ChunkSizeError

logger = logging.getLogger(__name__)

MessageFactory = Callable[[int, bytes], Message]


@dataclass(frozen=True)
class WriteUnit:
    offset: int
    data: bytes

    @property
    def end(self) -> int:
        return self.offset + len(self.data)


def signed_size(message: Message) -> int:
    """Serialized length of ``message`` once every required signature slot is filled."""
    return len(bytes(Transaction.new_unsigned(message)))


def compute_max_chunk_size(create_message: MessageFactory, packet_limit: int = PACKET_DATA_SIZE) -> int:
    """Largest payload that keeps a signed write message under ``packet_limit``.

    The baseline is the template called with an empty payload. One byte is held
    back because the instruction data length is a compact-u16 that grows from
    one to two bytes once the payload passes 127 bytes.
    """
    baseline = signed_size(create_message(0, b""))
    chunk_size = max(packet_limit - baseline - 1, 0)
    if chunk_size == 0:
        raise ChunkSizeError(
            f"write template needs {baseline} bytes before payload; packet limit is {packet_limit}"
        )
    logger.debug("baseline write message %d bytes, chunk size %d", baseline, chunk_size)
    return chunk_size


def plan_chunks(payload: bytes, chunk_size: int) -> List[WriteUnit]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if len(payload) > MAX_WRITE_OFFSET + 1:
        raise ValueError("payload does not fit u32 write offsets")

    units: List[WriteUnit] = []
    view = memoryview(payload)
    for offset in range(0, len(payload), chunk_size):
        units.append(WriteUnit(offset=offset, data=bytes(view[offset : offset + chunk_size])))
    return units


def chunk_count(payload_len: int, chunk_size: int) -> int:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    return -(-payload_len // chunk_size)
