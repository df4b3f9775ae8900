"""Instruction builders for the upgradeable BPF loader."""

from __future__ import annotations

import struct
from typing import List, Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import CreateAccountParams, create_account
from solders.sysvar import CLOCK, RENT

from .constants import (
    BPF_LOADER_UPGRADEABLE_ID,
    BUFFER_METADATA_SIZE,
    LOADER_DEPLOY_WITH_MAX_DATA_LEN,
    LOADER_INITIALIZE_BUFFER,
    LOADER_SET_AUTHORITY,
    LOADER_WRITE,
    MAX_WRITE_OFFSET,
    PROGRAM_ACCOUNT_SIZE,
)

LOADER_ID = Pubkey.from_string(BPF_LOADER_UPGRADEABLE_ID)


def size_of_buffer(program_len: int) -> int:
    return BUFFER_METADATA_SIZE + program_len


def size_of_program() -> int:
    return PROGRAM_ACCOUNT_SIZE


def get_programdata_address(program: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address([bytes(program)], LOADER_ID)
    return address


def create_buffer(
    payer: Pubkey,
    buffer: Pubkey,
    authority: Pubkey,
    lamports: int,
    program_len: int,
) -> List[Instruction]:
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=buffer,
                lamports=lamports,
                space=size_of_buffer(program_len),
                owner=LOADER_ID,
            )
        ),
        Instruction(
            LOADER_ID,
            struct.pack("<I", LOADER_INITIALIZE_BUFFER),
            [
                AccountMeta(buffer, False, True),
                AccountMeta(authority, False, False),
            ],
        ),
    ]


def write(buffer: Pubkey, authority: Pubkey, offset: int, data: bytes) -> Instruction:
    if offset < 0 or offset > MAX_WRITE_OFFSET:
        raise ValueError("write offset must fit in u32")
    payload = struct.pack("<IIQ", LOADER_WRITE, offset, len(data)) + bytes(data)
    return Instruction(
        LOADER_ID,
        payload,
        [
            AccountMeta(buffer, False, True),
            AccountMeta(authority, True, False),
        ],
    )


def deploy_with_max_program_len(
    payer: Pubkey,
    program: Pubkey,
    buffer: Pubkey,
    upgrade_authority: Pubkey,
    program_lamports: int,
    max_data_len: int,
) -> List[Instruction]:
    programdata = get_programdata_address(program)
    return [
        create_account(
            CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=program,
                lamports=program_lamports,
                space=size_of_program(),
                owner=LOADER_ID,
            )
        ),
        Instruction(
            LOADER_ID,
            struct.pack("<IQ", LOADER_DEPLOY_WITH_MAX_DATA_LEN, max_data_len),
            [
                AccountMeta(payer, True, True),
                AccountMeta(programdata, False, True),
                AccountMeta(program, False, True),
                AccountMeta(buffer, False, True),
                AccountMeta(RENT, False, False),
                AccountMeta(CLOCK, False, False),
                AccountMeta(SYSTEM_PROGRAM_ID, False, False),
                AccountMeta(upgrade_authority, True, False),
            ],
        ),
    ]


def set_buffer_authority(buffer: Pubkey, current_authority: Pubkey, new_authority: Pubkey) -> Instruction:
    return Instruction(
        LOADER_ID,
        struct.pack("<I", LOADER_SET_AUTHORITY),
        [
            AccountMeta(buffer, False, True),
            AccountMeta(current_authority, True, False),
            AccountMeta(new_authority, False, False),
        ],
    )


def set_upgrade_authority(
    program: Pubkey,
    current_authority: Pubkey,
    new_authority: Optional[Pubkey],
) -> Instruction:
    metas = [
        AccountMeta(get_programdata_address(program), False, True),
        AccountMeta(current_authority, True, False),
    ]
    # Omitting the new authority makes the program immutable.
    if new_authority is not None:
        metas.append(AccountMeta(new_authority, False, False))
    return Instruction(LOADER_ID, struct.pack("<I", LOADER_SET_AUTHORITY), metas)
