"""In-memory stand-in for the RPC network used by the upload tests."""

import struct
from typing import Callable, Optional

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from chunkloader.loader import LOADER_ID
from chunkloader.network import Confirmation, ConfirmationTimeout


def instruction_program_ids(tx: Transaction) -> list:
    keys = tx.message.account_keys
    return [keys[ix.program_id_index] for ix in tx.message.instructions]


def decode_write(tx: Transaction, round_loader_id: Optional[Pubkey] = None):
    """Return ``(offset, data)`` for a chunk write transaction, else ``None``."""
    keys = tx.message.account_keys
    for ix in tx.message.instructions:
        program_id = keys[ix.program_id_index]
        data = bytes(ix.data)
        if program_id == LOADER_ID and data[:4] == struct.pack("<I", 1):
            _, offset, length = struct.unpack_from("<IIQ", data)
            return offset, data[16 : 16 + length]
        if round_loader_id is not None and program_id == round_loader_id and data[:1] == b"\x01":
            _, offset, length = struct.unpack_from("<BII", data)
            return offset, data[9 : 9 + length]
    return None


class FakeNetwork:
    def __init__(self, account_len: int = 0, round_loader_id: Optional[Pubkey] = None) -> None:
        self.account = bytearray(account_len)
        self.round_loader_id = round_loader_id
        self.sent: list = []
        self.batches: list = []
        self.reject_offsets: set = set()
        self.timeout_offsets: set = set()
        # address -> data length of accounts already on chain
        self.existing: dict = {}
        self.fail_when: Optional[Callable[[Transaction], bool]] = None

    def get_version(self) -> str:
        return "1.18.0"

    def get_latest_blockhash(self) -> Hash:
        return Hash.default()

    def get_minimum_balance_for_rent_exemption(self, size: int) -> int:
        return 1_000 + size

    def get_account_size(self, address: Pubkey) -> Optional[int]:
        return self.existing.get(address)

    def _apply(self, tx: Transaction) -> None:
        write = decode_write(tx, self.round_loader_id)
        if write is not None:
            offset, data = write
            self.account[offset : offset + len(data)] = data

    def send_and_confirm(self, tx: Transaction, timeout=None, poll_interval=None):
        self.sent.append(tx)
        if self.fail_when is not None and self.fail_when(tx):
            raise RuntimeError("Transaction simulation failed: custom program error: 0x1")
        write = decode_write(tx, self.round_loader_id)
        if write is not None and write[0] in self.reject_offsets:
            raise RuntimeError("custom program error: 0x2")
        if write is not None and write[0] in self.timeout_offsets:
            raise ConfirmationTimeout(f"transaction {tx.signatures[0]} not confirmed within {timeout:g}s")
        self._apply(tx)
        return tx.signatures[0]

    def send_and_confirm_many(self, transactions, timeout=None, max_workers=None, poll_interval=None):
        self.batches.append(list(transactions))
        results = []
        for tx in transactions:
            sig = tx.signatures[0]
            offset = decode_write(tx, self.round_loader_id)[0]
            if offset in self.reject_offsets:
                results.append(Confirmation(sig, error="custom program error: 0x2"))
            elif offset in self.timeout_offsets:
                results.append(Confirmation(sig, error=f"not confirmed within {timeout:g}s", timed_out=True))
            else:
                self._apply(tx)
                results.append(Confirmation(sig))
        return results
