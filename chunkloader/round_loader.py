"""Instruction builders and addresses for the relay round loader program."""

from __future__ import annotations

import hashlib
import struct

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.sysvar import CLOCK, RENT

from .constants import (
    MAX_WRITE_OFFSET,
    PROPOSAL_SEED,
    ROUND_LOADER_CREATE_PROPOSAL,
    ROUND_LOADER_FINALIZE_PROPOSAL,
    ROUND_LOADER_WRITE_PROPOSAL,
    SETTINGS_SEED,
)
from .proposal import ProposalEvent


def get_settings_address(program_id: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address([SETTINGS_SEED], program_id)
    return address


def proposal_seeds(event: ProposalEvent, record: bytes) -> list[bytes]:
    # The record can exceed the 32-byte seed limit, so it is folded into a digest.
    return [
        PROPOSAL_SEED,
        struct.pack("<I", event.round_number),
        struct.pack("<I", event.event_timestamp),
        struct.pack("<Q", event.event_transaction_lt),
        bytes(event.event_configuration),
        hashlib.sha256(record).digest(),
    ]


def get_proposal_address(program_id: Pubkey, event: ProposalEvent, record: bytes) -> Pubkey:
    address, _ = Pubkey.find_program_address(proposal_seeds(event, record), program_id)
    return address


def create_proposal_ix(
    program_id: Pubkey,
    payer: Pubkey,
    event: ProposalEvent,
    record: bytes,
    account_len: int,
    lamports: int,
) -> Instruction:
    data = (
        struct.pack(
            "<BIIQ",
            ROUND_LOADER_CREATE_PROPOSAL,
            event.round_number,
            event.event_timestamp,
            event.event_transaction_lt,
        )
        + bytes(event.event_configuration)
        + hashlib.sha256(record).digest()
        + struct.pack("<IQ", account_len, lamports)
    )
    return Instruction(
        program_id,
        data,
        [
            AccountMeta(payer, True, True),
            AccountMeta(get_proposal_address(program_id, event, record), False, True),
            AccountMeta(get_settings_address(program_id), False, False),
            AccountMeta(SYSTEM_PROGRAM_ID, False, False),
            AccountMeta(RENT, False, False),
        ],
    )


def write_proposal_ix(
    program_id: Pubkey,
    payer: Pubkey,
    proposal: Pubkey,
    offset: int,
    data: bytes,
) -> Instruction:
    if offset < 0 or offset > MAX_WRITE_OFFSET:
        raise ValueError("write offset must fit in u32")
    payload = struct.pack("<BII", ROUND_LOADER_WRITE_PROPOSAL, offset, len(data)) + bytes(data)
    return Instruction(
        program_id,
        payload,
        [
            AccountMeta(payer, True, False),
            AccountMeta(proposal, False, True),
        ],
    )


def finalize_proposal_ix(
    program_id: Pubkey,
    payer: Pubkey,
    proposal: Pubkey,
    round_number: int,
) -> Instruction:
    return Instruction(
        program_id,
        struct.pack("<BI", ROUND_LOADER_FINALIZE_PROPOSAL, round_number),
        [
            AccountMeta(payer, True, True),
            AccountMeta(proposal, False, True),
            AccountMeta(get_settings_address(program_id), False, False),
            AccountMeta(CLOCK, False, False),
        ],
    )
